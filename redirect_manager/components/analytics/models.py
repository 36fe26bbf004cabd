"""
Analytics component models.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class NotFoundHit:
    """One not-found request to aggregate."""

    url: str
    url_normalized: str
    site_id: int | None
    handled: bool
    source_plugin: str
    at: datetime
    redirect_id: int | None = None
    referrer: str | None = None
    ip_hash: str | None = None
    user_agent: str | None = None


@dataclass
class NotFoundRecord:
    """Aggregated not-found URL."""

    url_normalized: str
    site_id: int | None
    url: str
    count: int
    handled: bool
    source_plugin: str
    last_seen_at: datetime
    redirect_id: int | None = None
    referrer: str | None = None
    ip_hash: str | None = None
    user_agent: str | None = None


@dataclass(frozen=True)
class CleanupResult:
    """Rows removed by one retention pass."""

    expired: int = 0
    trimmed: int = 0

    @property
    def total(self) -> int:
        return self.expired + self.trimmed
