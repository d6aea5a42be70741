"""Base store interface for landed analytics events."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Sequence

from pydantic import BaseModel

from analytics_drain.ingest.models import CanonicalEvent


class StoreError(Exception):
    """The store could not complete an operation; nothing was written."""


class AnalyticsSummary(BaseModel):
    """Counts over events landed since a point in time."""
    visitors: int
    page_views: int
    last_event_at: datetime | None = None


class EventStore(ABC):
    """Abstract base class for event stores."""

    @property
    @abstractmethod
    def store_name(self) -> str:
        """Return store identifier."""
        pass

    @abstractmethod
    async def upsert_events(self, events: Sequence[CanonicalEvent]) -> int:
        """Insert or overwrite events keyed by event_id, all or nothing.

        Returns the number of rows written. Raises StoreError on failure.
        """
        pass

    @abstractmethod
    async def summarize(self, since: datetime) -> AnalyticsSummary:
        """Summarize events with occurred_at >= since."""
        pass

    async def close(self) -> None:
        """Release any held connections."""
        return None
