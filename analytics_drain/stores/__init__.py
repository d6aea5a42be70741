"""
Event Stores

Persistence backends for canonical analytics events.
"""

from .base import AnalyticsSummary, EventStore, StoreError
from .postgres import PostgresEventStore

__all__ = ["AnalyticsSummary", "EventStore", "StoreError", "PostgresEventStore"]
