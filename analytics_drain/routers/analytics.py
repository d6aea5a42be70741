"""Read-side analytics summary over landed drain events."""

import logging
from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from analytics_drain.dependencies import get_event_store
from analytics_drain.stores import EventStore, StoreError

logger = logging.getLogger(__name__)
router = APIRouter()


class SummaryResponse(BaseModel):
    visitors: int
    page_views: int
    last_event_at: datetime | None = None
    window_hours: int


@router.get("/summary", response_model=SummaryResponse)
async def analytics_summary(
    hours: int = Query(default=24, ge=1, le=720, description="Look-back window in hours"),
    store: EventStore = Depends(get_event_store),
):
    """Visitors, page views and latest event time over the last `hours` hours."""
    since = datetime.now(timezone.utc) - timedelta(hours=hours)
    try:
        summary = await store.summarize(since)
    except StoreError as e:
        logger.error(f"Failed to load analytics summary: {e}")
        raise HTTPException(503, "Analytics store unavailable")

    return SummaryResponse(
        visitors=summary.visitors,
        page_views=summary.page_views,
        last_event_at=summary.last_event_at,
        window_hours=hours,
    )
