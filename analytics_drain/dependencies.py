"""Shared FastAPI dependencies: API key, signed drain bodies, event store."""

import asyncio
import hmac
import logging

from fastapi import Header, HTTPException, Request
from starlette.requests import ClientDisconnect

from analytics_drain.auth.signature import verify_signature
from analytics_drain.config import settings
from analytics_drain.errors import DrainError
from analytics_drain.stores import EventStore, PostgresEventStore

logger = logging.getLogger(__name__)

_store: EventStore | None = None


async def verify_api_key(x_api_key: str | None = Header(default=None)) -> None:
    """Require X-API-Key when API_KEY is configured; open otherwise."""
    if not settings.api_key:
        return
    if not x_api_key or not hmac.compare_digest(x_api_key.encode(), settings.api_key.encode()):
        raise HTTPException(401, "Invalid or missing API key")


def get_event_store() -> EventStore:
    global _store
    if _store is None:
        _store = PostgresEventStore()
    return _store


async def close_event_store() -> None:
    global _store
    if _store is not None:
        await _store.close()
        _store = None


def _find_signature(request: Request) -> tuple[str | None, str | None]:
    for name in settings.signature_headers:
        value = request.headers.get(name)
        if value and value.strip():
            return name, value
    return None, None


async def require_signed_body(request: Request) -> bytes:
    """Read the raw body once and verify its HMAC signature.

    Fails closed when no secret is configured. Nothing downstream sees the
    body unless the signature matches.
    """
    secret = settings.analytics_drain_secret
    if not secret:
        logger.error("Analytics drain secret not configured (ANALYTICS_DRAIN_SECRET)")
        raise DrainError(500, "Server configuration error", code="server_misconfigured")

    client = request.client.host if request.client else "unknown"
    header_name, signature = _find_signature(request)
    if signature is None:
        logger.warning(f"Rejected analytics drain delivery without signature header (client={client})")
        raise DrainError(401, "Missing signature header", code="missing_signature")

    try:
        body = await asyncio.wait_for(request.body(), timeout=settings.body_read_timeout_seconds)
    except asyncio.TimeoutError:
        raise DrainError(408, "Timed out reading request body", code="body_timeout")
    except ClientDisconnect:
        raise DrainError(400, "Invalid body", code="invalid_body")

    if not verify_signature(secret, body, signature):
        logger.warning(
            f"Rejected analytics drain delivery with invalid signature "
            f"(header={header_name}, client={client}, bytes={len(body)})"
        )
        raise DrainError(403, "Invalid signature", code="invalid_signature")

    return body
