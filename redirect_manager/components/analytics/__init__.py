"""
Analytics component - not-found request recording.
"""

from ._impl import (
    AnalyticsConfig,
    NotFoundRecorder,
    NullAnalyticsRecorder,
    anonymize_ip,
    hash_ip,
)
from .models import CleanupResult, NotFoundHit, NotFoundRecord
from .ports import NotFoundStorePort

__all__ = [
    "AnalyticsConfig",
    "CleanupResult",
    "NotFoundHit",
    "NotFoundRecord",
    "NotFoundRecorder",
    "NotFoundStorePort",
    "NullAnalyticsRecorder",
    "anonymize_ip",
    "hash_ip",
]
