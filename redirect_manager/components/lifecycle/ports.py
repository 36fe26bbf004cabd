"""
Lifecycle component port definitions.
"""

from __future__ import annotations

from typing import Protocol


class ContentUriPort(Protocol):
    """Host lookup for the currently persisted URI of a content item."""

    def get_persisted_uri(self, content_id: int, site_id: int | None) -> str | None:
        """URI as stored before the pending save, or None for new content."""
        ...
