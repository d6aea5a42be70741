"""Analytics drain endpoint - verifies, normalizes and lands webhook deliveries."""

import json
import logging

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from slowapi import Limiter
from slowapi.util import get_remote_address

from analytics_drain.config import settings
from analytics_drain.dependencies import get_event_store, require_signed_body
from analytics_drain.errors import DrainError, describe_store_error
from analytics_drain.ingest import CanonicalEvent, extract_events, normalize_events
from analytics_drain.stores import EventStore, StoreError

logger = logging.getLogger(__name__)
router = APIRouter()

limiter = Limiter(key_func=get_remote_address)


class DrainResponse(BaseModel):
    processed: int


def collapse_duplicates(events: list[CanonicalEvent]) -> list[CanonicalEvent]:
    """Keep the last occurrence of each event_id within one delivery."""
    latest: dict[str, CanonicalEvent] = {}
    for event in events:
        latest[event.event_id] = event
    return list(latest.values())


@router.post("", response_model=DrainResponse)
@limiter.limit(settings.drain_rate_limit)
async def analytics_drain(
    request: Request,
    body: bytes = Depends(require_signed_body),
    store: EventStore = Depends(get_event_store),
):
    """Land one signed delivery of analytics events, idempotently."""
    try:
        payload = json.loads(body)
    except (ValueError, RecursionError) as e:
        logger.warning(f"Failed to parse analytics drain payload: {e}")
        raise DrainError(400, "Invalid JSON body", code="invalid_json")

    records = extract_events(payload)
    events = collapse_duplicates(normalize_events(records))

    if not events:
        logger.debug(f"Analytics drain delivery had no usable events ({len(records)} records)")
        return DrainResponse(processed=0)

    try:
        written = await store.upsert_events(events)
    except StoreError as e:
        logger.error(f"Failed to upsert analytics events: {e}")
        raise DrainError(
            500, "Failed to store events", code="store_failed", details=describe_store_error(e)
        )
    except Exception:
        logger.exception("Unexpected error storing analytics events")
        raise DrainError(500, "Failed to store events", code="store_failed")

    logger.info(f"Stored {written} analytics events from {len(records)} records")
    return DrainResponse(processed=written)
