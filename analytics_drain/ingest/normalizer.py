"""Map loosely-typed drain records onto CanonicalEvent.

The upstream sender has no fixed schema: most attributes appear under
several names or nesting levels. Each attribute is resolved from an ordered
tuple of ``Candidate(path, accessor)`` entries; the first candidate whose
accessor yields a usable value wins. Keeping the tables explicit makes the
fallback order for every field easy to audit and test.
"""

import hashlib
import logging
import math
import re
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Callable, Iterable, NamedTuple
from urllib.parse import urljoin, urlsplit

from babel import Locale

from analytics_drain.ingest.models import CanonicalEvent

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

# Epoch values above this are milliseconds, at or below it seconds.
# The sender does not declare units; ~10 billion seconds is year 2286.
MILLISECONDS_THRESHOLD = 9_999_999_999

IDENTITY_SEPARATOR = "|"

_NESTED_SEARCH_MAX_DEPTH = 10
_OBJECT_VALUE_KEYS = ("ua", "raw", "value", "name", "label")
_TERRITORIES = Locale("en").territories


# ---------------------------------------------------------------------------
# Accessors
# ---------------------------------------------------------------------------


def loose_string(value: Any) -> str | None:
    """Coerce a loosely-typed value to a trimmed, non-empty string."""
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        return str(int(value)) if value.is_integer() else str(value)
    if isinstance(value, list):
        for item in value:
            result = loose_string(item)
            if result:
                return result
        return None
    if isinstance(value, dict):
        for key in _OBJECT_VALUE_KEYS:
            if key in value:
                result = loose_string(value[key])
                if result:
                    return result
    return None


def identifier(value: Any) -> str | None:
    """Identifiers are scalar: non-blank strings verbatim, integers stringified."""
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        return value if value.strip() else None
    if isinstance(value, int):
        return str(value)
    return None


def scalar_string(value: Any) -> str | None:
    """Trimmed string or stringified finite number; containers are not coerced."""
    if isinstance(value, (list, dict)):
        return None
    return loose_string(value)


def _from_epoch(value: int | float) -> datetime | None:
    if isinstance(value, float) and not math.isfinite(value):
        return None
    try:
        if value > MILLISECONDS_THRESHOLD:
            return EPOCH + timedelta(milliseconds=value)
        return EPOCH + timedelta(seconds=value)
    except (OverflowError, ValueError):
        return None


def _from_rfc2822(text: str) -> datetime | None:
    # "Tue, 14 Nov 2023 22:13:20 GMT" style dates
    try:
        return parsedate_to_datetime(text)
    except (TypeError, ValueError, IndexError):
        return None


def _from_iso(text: str) -> datetime | None:
    iso = f"{text[:-1]}+00:00" if text[-1] in "zZ" else text
    try:
        parsed = datetime.fromisoformat(iso)
    except ValueError:
        parsed = _from_rfc2822(text)
        if parsed is None:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    try:
        return parsed.astimezone(timezone.utc)
    except (OverflowError, ValueError):
        return None


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an epoch number (seconds or milliseconds) or ISO-8601 / RFC 2822 string to UTC."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return _from_epoch(value)
    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None
    try:
        number = float(text)
    except ValueError:
        return _from_iso(text)
    if number.is_integer():
        return _from_epoch(int(number))
    return _from_epoch(number)


def header(name: str) -> Callable[[Any], str | None]:
    """Accessor reading one header from a header bag, ignoring key case."""
    target = name.lower()

    def read(headers: Any) -> str | None:
        if not isinstance(headers, dict):
            return None
        for key, value in headers.items():
            if isinstance(key, str) and key.lower() == target:
                return loose_string(value)
        return None

    return read


def forwarded_for(headers: Any) -> str | None:
    """First (client) hop of an X-Forwarded-For header."""
    value = header("x-forwarded-for")(headers)
    if not value:
        return None
    return value.split(",")[0].strip() or None


def _normalize_key(key: str) -> str:
    return re.sub(r"[^a-z]", "", key.lower())


def nested_search(*keys: str) -> Callable[[Any], str | None]:
    """Accessor searching a subtree for the first key matching any of ``keys``.

    Keys compare after lowercasing and dropping non-letters, so ``userAgent``,
    ``user_agent`` and ``User-Agent`` are the same key.
    """
    matchers = {_normalize_key(key) for key in keys}

    def search(value: Any, depth: int = 0) -> str | None:
        if depth > _NESTED_SEARCH_MAX_DEPTH:
            return None
        if isinstance(value, list):
            for item in value:
                result = search(item, depth + 1)
                if result:
                    return result
            return None
        if not isinstance(value, dict):
            return None
        for key, candidate in value.items():
            if isinstance(key, str) and _normalize_key(key) in matchers:
                result = loose_string(candidate)
                if result:
                    return result
            result = search(candidate, depth + 1)
            if result:
                return result
        return None

    return search


# ---------------------------------------------------------------------------
# Candidate tables
# ---------------------------------------------------------------------------


class Candidate(NamedTuple):
    """A key path into the raw record and how to read the value found there."""
    path: tuple[str, ...]
    accessor: Callable[[Any], Any] = loose_string


def _dig(record: Any, path: tuple[str, ...]) -> Any:
    value = record
    for key in path:
        if not isinstance(value, dict):
            return None
        value = value.get(key)
    return value


def resolve(record: dict[str, Any], candidates: Iterable[Candidate]) -> Any:
    """Return the first usable value produced by ``candidates``, in order."""
    for candidate in candidates:
        value = _dig(record, candidate.path)
        if value is None:
            continue
        result = candidate.accessor(value)
        if result is not None:
            return result
    return None


EVENT_ID = (
    Candidate(("id",), identifier),
    Candidate(("eventId",), identifier),
)

TIMESTAMP = (
    Candidate(("timestamp",), parse_timestamp),
    Candidate(("occurredAt",), parse_timestamp),
    Candidate(("occurred_at",), parse_timestamp),
    Candidate(("receivedAt",), parse_timestamp),
)

SESSION_ID = (
    Candidate(("sessionId",), scalar_string),
    Candidate(("session_id",), scalar_string),
)

VISIT_ID = (
    Candidate(("visitId",), scalar_string),
    Candidate(("visitorId",), scalar_string),
    Candidate(("deviceId",), scalar_string),
    Candidate(("visit_id",), scalar_string),
)

URL = (
    Candidate(("url",), scalar_string),
    Candidate(("properties", "url"), scalar_string),
)

PATH = (
    Candidate(("path",), scalar_string),
    Candidate(("properties", "path"), scalar_string),
    Candidate(("properties", "pathname"), scalar_string),
)

ORIGIN = (Candidate(("origin",), scalar_string),)
EVENT_TYPE = (Candidate(("eventType",), scalar_string),)
EVENT_NAME = (Candidate(("eventName",), scalar_string),)

REFERRER = (
    Candidate(("referrer",)),
    Candidate(("properties", "referrer")),
    Candidate(("headers",), header("referer")),
    Candidate(("headers",), header("referrer")),
    Candidate(("properties", "headers"), header("referer")),
    Candidate(("properties", "headers"), header("referrer")),
)

_find_user_agent = nested_search("userAgent", "user_agent", "ua")

USER_AGENT = (
    Candidate(("client", "ua")),
    Candidate(("client", "userAgent")),
    Candidate(("userAgent",)),
    Candidate(("user_agent",)),
    Candidate(("client", "user_agent")),
    Candidate(("client", "headers"), header("user-agent")),
    Candidate(("headers",), header("user-agent")),
    Candidate(("properties", "headers"), header("user-agent")),
    Candidate(("context",), _find_user_agent),
    Candidate(("properties",), _find_user_agent),
    Candidate((), _find_user_agent),
)

CLIENT_IP = (
    Candidate(("client", "ip")),
    Candidate(("ip",)),
    Candidate(("clientIp",)),
    Candidate(("client", "headers"), forwarded_for),
    Candidate(("headers",), forwarded_for),
    Candidate(("properties", "headers"), forwarded_for),
)

GEO_SOURCES = (
    ("location",),
    ("geo",),
    ("context", "location"),
    ("context", "geo"),
    ("properties", "location"),
    ("properties", "geo"),
)

_GEO_KEY_EXTRAS = {
    "country": ("countryCode", "country_code", "code"),
    "region": ("regionCode", "region_code", "state", "stateCode", "state_code"),
}


def _geo_candidates(field: str) -> tuple[Candidate, ...]:
    keys = (field, f"{field}Name", f"{field}_name", *_GEO_KEY_EXTRAS.get(field, ()))
    return tuple(Candidate(source + (key,)) for source in GEO_SOURCES for key in keys)


COUNTRY = _geo_candidates("country")
CITY = _geo_candidates("city")
REGION = _geo_candidates("region")


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


def country_display_name(value: str | None) -> str | None:
    """Expand an ISO 3166 alpha-2 code to its English name; pass others through."""
    if not value:
        return None
    value = value.strip()
    if len(value) == 2 and value.isascii() and value.isalpha():
        name = _TERRITORIES.get(value.upper())
        if name:
            return name
    if value.lower() == "unknown":
        return "Unknown"
    return value


def _is_absolute(url: str) -> bool:
    try:
        parts = urlsplit(url)
    except ValueError:
        return False
    return bool(parts.scheme and parts.netloc)


def path_from_url(url: str) -> str | None:
    """Path component of an absolute URL, or None when it cannot be parsed."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return None
    if not (parts.scheme and parts.netloc):
        return None
    return parts.path or "/"


def resolve_url_and_path(record: dict[str, Any]) -> tuple[str | None, str | None, str | None]:
    """Return ``(url, path, origin)`` for a record."""
    url = resolve(record, URL)
    path = resolve(record, PATH)
    origin = resolve(record, ORIGIN)

    if not url and origin and path and _is_absolute(origin):
        url = urljoin(origin, path if path.startswith("/") else f"/{path}")

    if not url and origin:
        url = origin

    if url and path is None:
        path = path_from_url(url)

    return url, path, origin


def epoch_milliseconds(moment: datetime) -> int:
    return (moment - EPOCH) // timedelta(milliseconds=1)


def synthesize_event_id(parts: Iterable[str | None]) -> str | None:
    """SHA-1 over the non-empty identity parts, or None if all are empty."""
    present = [part.strip() for part in parts if part and part.strip()]
    if not present:
        return None
    return hashlib.sha1(IDENTITY_SEPARATOR.join(present).encode("utf-8")).hexdigest()


def normalize_event(record: dict[str, Any]) -> CanonicalEvent | None:
    """Normalize one raw record, or return None if it must be dropped.

    A record is dropped when no timestamp parses or when no identifier can be
    found or synthesized.
    """
    occurred_at = resolve(record, TIMESTAMP)
    if occurred_at is None:
        logger.debug("Dropping drain record without a parseable timestamp")
        return None

    session_id = resolve(record, SESSION_ID)
    visit_id = resolve(record, VISIT_ID)
    url, path, origin = resolve_url_and_path(record)

    event_id = resolve(record, EVENT_ID)
    if event_id is None:
        event_id = synthesize_event_id(
            [
                str(epoch_milliseconds(occurred_at)),
                session_id,
                visit_id,
                url,
                path,
                origin,
                resolve(record, EVENT_TYPE),
                resolve(record, EVENT_NAME),
            ]
        )
    if event_id is None:
        logger.debug("Dropping drain record without an identifier")
        return None

    return CanonicalEvent(
        event_id=event_id,
        occurred_at=occurred_at,
        session_id=session_id,
        visit_id=visit_id,
        url=url,
        path=path,
        country=country_display_name(resolve(record, COUNTRY)),
        city=resolve(record, CITY),
        region=resolve(record, REGION),
        referrer=resolve(record, REFERRER),
        user_agent=resolve(record, USER_AGENT),
        client_ip=resolve(record, CLIENT_IP),
    )


def normalize_events(records: Iterable[dict[str, Any]]) -> list[CanonicalEvent]:
    """Normalize a batch; a failing record is skipped, never the whole batch."""
    events = []
    for index, record in enumerate(records):
        try:
            event = normalize_event(record)
        except Exception:
            logger.warning(f"Skipping drain record {index}: normalization failed", exc_info=True)
            continue
        if event is not None:
            events.append(event)
    return events
