"""
Redirects component port definitions.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol

from .models import CreationType, MatchStrategy, RedirectRule, SourceScope


class RuleStorePort(Protocol):
    """Persistent collection of redirect rules."""

    def get_by_id(self, rule_id: int) -> RedirectRule | None:
        """Get rule by ID."""
        ...

    def list_all(self) -> list[RedirectRule]:
        """List all rules ordered by (priority, id)."""
        ...

    def save(self, rule: RedirectRule) -> RedirectRule:
        """Insert (id is None) or update a rule. Raises StoreError."""
        ...

    def delete(self, rule_id: int) -> None:
        """Delete rule."""
        ...

    def find_by_source(
        self,
        source_normalized: str,
        *,
        site_id: int | None = None,
        enabled_only: bool = True,
        exclude_id: int | None = None,
    ) -> list[RedirectRule]:
        """
        Rules whose normalized source equals the key (case-insensitive).

        site_id limits to that site plus site-agnostic rules; None means all.
        Ordered by (priority, id).
        """
        ...

    def find_conflicting(
        self,
        source_normalized: str,
        site_id: int | None,
        match_strategy: MatchStrategy,
        source_scope: SourceScope,
        exclude_id: int | None = None,
    ) -> RedirectRule | None:
        """Rule occupying the same uniqueness slot (site compared exactly)."""
        ...

    def list_enabled(self, site_id: int | None) -> list[RedirectRule]:
        """Enabled rules for a site plus site-agnostic ones, by (priority, id)."""
        ...

    def list_by_content(
        self,
        content_id: int,
        site_id: int | None,
        creation_type: CreationType,
    ) -> list[RedirectRule]:
        """Rules created for a content item, newest first."""
        ...

    def find_reverse(
        self,
        source: str,
        destination: str,
        site_id: int | None,
        creation_type: CreationType,
        source_plugin: str,
    ) -> RedirectRule | None:
        """Most recent rule with exactly this source and destination."""
        ...

    def increment_hit_count(self, rule_id: int, at: datetime) -> None:
        """Atomic relative increment of hit_count; sets last_hit_at."""
        ...


class RedirectCachePort(Protocol):
    """Fingerprint -> resolved rule cache with TTL."""

    def lookup(self, url: str, site_id: int | None) -> RedirectRule | None:
        """Cached rule, or None on miss/expiry."""
        ...

    def store(
        self,
        url: str,
        site_id: int | None,
        rule: RedirectRule,
        ttl_seconds: int,
    ) -> None:
        """Cache a matched rule."""
        ...

    def invalidate_all(self) -> None:
        """Drop every entry."""
        ...


class AnalyticsRecorderPort(Protocol):
    """Records matched/unmatched not-found requests. Never raises."""

    def record(
        self,
        url: str,
        handled: bool,
        context: dict[str, Any] | None = None,
    ) -> None:
        """Record a hit."""
        ...


class TimePort(Protocol):
    """Time provider interface."""

    def now_utc(self) -> datetime:
        """Get current UTC time."""
        ...
