"""
Drain Ingestion

Payload extraction and normalization for analytics drain deliveries.
"""

from .extractor import extract_events
from .models import CanonicalEvent
from .normalizer import normalize_event, normalize_events

__all__ = ["CanonicalEvent", "extract_events", "normalize_event", "normalize_events"]
