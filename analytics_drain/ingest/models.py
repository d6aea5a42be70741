"""Canonical analytics event persisted by the drain."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict

# Column order used by the store for inserts
EVENT_COLUMNS = (
    "event_id",
    "occurred_at",
    "session_id",
    "visit_id",
    "url",
    "path",
    "country",
    "city",
    "region",
    "referrer",
    "user_agent",
    "client_ip",
)


class CanonicalEvent(BaseModel):
    """One normalized analytics event, keyed by ``event_id``."""
    model_config = ConfigDict(frozen=True)

    event_id: str
    occurred_at: datetime
    session_id: str | None = None
    visit_id: str | None = None
    url: str | None = None
    path: str | None = None
    country: str | None = None
    city: str | None = None
    region: str | None = None
    referrer: str | None = None
    user_agent: str | None = None
    client_ip: str | None = None

    def as_row(self) -> tuple:
        return tuple(getattr(self, column) for column in EVENT_COLUMNS)
