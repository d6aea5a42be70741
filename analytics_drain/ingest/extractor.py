"""Locate the list of event records inside an arbitrarily shaped JSON body."""

import logging
from typing import Any

from analytics_drain.config import settings

logger = logging.getLogger(__name__)

# Wrapper keys probed in order when the body is an object rather than a bare list
NESTED_EVENT_KEYS = ("events", "data", "payload", "body")


def _records(items: list) -> list[dict[str, Any]]:
    """Keep only object-shaped elements with string keys."""
    return [
        item
        for item in items
        if isinstance(item, dict) and all(isinstance(key, str) for key in item)
    ]


def extract_events(payload: Any, max_depth: int | None = None, _depth: int = 0) -> list[dict[str, Any]]:
    """Return the event records carried by ``payload``, in delivery order.

    A top-level list is the event list itself. An object is searched through
    ``NESTED_EVENT_KEYS``; the first wrapper that yields a non-empty list wins,
    descending at most ``max_depth`` levels. Anything else yields ``[]``.
    """
    if max_depth is None:
        max_depth = settings.extract_max_depth

    if isinstance(payload, list):
        return _records(payload)

    if not isinstance(payload, dict) or _depth >= max_depth:
        return []

    for key in NESTED_EVENT_KEYS:
        candidate = payload.get(key)
        if not candidate:
            continue

        if isinstance(candidate, list):
            records = _records(candidate)
        elif isinstance(candidate, dict):
            records = extract_events(candidate, max_depth=max_depth, _depth=_depth + 1)
        else:
            continue

        if records:
            return records

    if _depth == 0:
        logger.debug(f"No event list found in payload with keys {sorted(payload)[:10]}")
    return []
