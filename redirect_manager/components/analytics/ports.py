"""
Analytics component port definitions.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from .models import NotFoundHit, NotFoundRecord


class NotFoundStorePort(Protocol):
    """Aggregated storage of not-found requests."""

    def record_hit(self, hit: NotFoundHit) -> bool:
        """
        Insert or increment the (url_normalized, site_id) aggregate.

        Returns True when a new aggregate was created.
        """
        ...

    def list_recent(
        self,
        limit: int = 100,
        handled: bool | None = None,
        site_id: int | None = None,
    ) -> list[NotFoundRecord]:
        """Aggregates ordered by last_seen_at descending."""
        ...

    def delete(self, url_normalized: str, site_id: int | None) -> bool:
        """Remove one aggregate. Returns False when it does not exist."""
        ...

    def clear(self, site_id: int | None = None) -> int:
        """Remove every aggregate, or only one site's. Returns the count."""
        ...

    def delete_older_than(self, cutoff: datetime) -> int:
        """Remove aggregates last seen before cutoff."""
        ...

    def trim(self, max_records: int) -> int:
        """
        Keep at most max_records aggregates.

        The least recently seen go first, lower counts first on ties.
        """
        ...
