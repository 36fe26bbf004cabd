"""
Lifecycle component - auto-redirects for content URI changes.
"""

from ._impl import (
    DEFAULT_CONFIG,
    LOOP_MESSAGE,
    UNDO_NOTICE,
    LifecycleConfig,
    LifecycleManager,
)
from .models import LifecycleAction, LifecycleOutcome
from .ports import ContentUriPort

__all__ = [
    "DEFAULT_CONFIG",
    "LOOP_MESSAGE",
    "UNDO_NOTICE",
    "ContentUriPort",
    "LifecycleAction",
    "LifecycleConfig",
    "LifecycleManager",
    "LifecycleOutcome",
]
