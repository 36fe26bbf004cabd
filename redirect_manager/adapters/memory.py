"""
In-memory stores.

Used when no database is configured and by the test suite. Same contracts as
the SQLite repos, including the uniqueness constraint on rules.
"""

from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime

from redirect_manager.components.analytics import NotFoundHit, NotFoundRecord
from redirect_manager.components.redirects import (
    CreationType,
    DuplicateRuleError,
    MatchStrategy,
    RedirectRule,
    SourceScope,
)


def _slot(rule: RedirectRule) -> tuple[int | None, str, str, str]:
    return (
        rule.site_id,
        rule.match_strategy.value,
        rule.source_scope.value,
        rule.source_normalized.lower(),
    )


def _order(rule: RedirectRule) -> tuple[int, int]:
    return (rule.priority, rule.id or 0)


def _newest_first(rule: RedirectRule) -> tuple[datetime | None, int]:
    return (rule.created_at, rule.id or 0)


class InMemoryRuleStore:
    """Dict-backed RuleStorePort."""

    def __init__(self) -> None:
        self._rules: dict[int, RedirectRule] = {}
        self._next_id = 1
        self._lock = threading.Lock()

    def get_by_id(self, rule_id: int) -> RedirectRule | None:
        rule = self._rules.get(rule_id)
        return replace(rule) if rule else None

    def list_all(self) -> list[RedirectRule]:
        return [replace(r) for r in sorted(self._rules.values(), key=_order)]

    def save(self, rule: RedirectRule) -> RedirectRule:
        with self._lock:
            for existing in self._rules.values():
                if existing.id != rule.id and _slot(existing) == _slot(rule):
                    raise DuplicateRuleError(
                        f"Redirect already exists for {rule.source_normalized}"
                    )
            if rule.id is None:
                rule = replace(rule, id=self._next_id)
                self._next_id += 1
            elif rule.id in self._rules:
                current = self._rules[rule.id]
                rule = replace(rule, hit_count=current.hit_count, last_hit_at=current.last_hit_at)
            self._rules[rule.id] = replace(rule)
            return rule

    def delete(self, rule_id: int) -> None:
        with self._lock:
            self._rules.pop(rule_id, None)

    def _visible(self, rule: RedirectRule, site_id: int | None) -> bool:
        return site_id is None or rule.site_id is None or rule.site_id == site_id

    def find_by_source(
        self,
        source_normalized: str,
        *,
        site_id: int | None = None,
        enabled_only: bool = True,
        exclude_id: int | None = None,
    ) -> list[RedirectRule]:
        key = source_normalized.lower()
        found = [
            r
            for r in self._rules.values()
            if r.source_normalized.lower() == key
            and self._visible(r, site_id)
            and (r.enabled or not enabled_only)
            and r.id != exclude_id
        ]
        return [replace(r) for r in sorted(found, key=_order)]

    def find_conflicting(
        self,
        source_normalized: str,
        site_id: int | None,
        match_strategy: MatchStrategy,
        source_scope: SourceScope,
        exclude_id: int | None = None,
    ) -> RedirectRule | None:
        slot = (site_id, match_strategy.value, source_scope.value, source_normalized.lower())
        for rule in sorted(self._rules.values(), key=_order):
            if rule.id != exclude_id and _slot(rule) == slot:
                return replace(rule)
        return None

    def list_enabled(self, site_id: int | None) -> list[RedirectRule]:
        found = [r for r in self._rules.values() if r.enabled and self._visible(r, site_id)]
        return [replace(r) for r in sorted(found, key=_order)]

    def list_by_content(
        self,
        content_id: int,
        site_id: int | None,
        creation_type: CreationType,
    ) -> list[RedirectRule]:
        found = [
            r
            for r in self._rules.values()
            if r.origin_content_id == content_id
            and r.site_id == site_id
            and r.creation_type is creation_type
        ]
        return [replace(r) for r in sorted(found, key=_newest_first, reverse=True)]

    def find_reverse(
        self,
        source: str,
        destination: str,
        site_id: int | None,
        creation_type: CreationType,
        source_plugin: str,
    ) -> RedirectRule | None:
        found = [
            r
            for r in self._rules.values()
            if r.source_normalized.lower() == source.lower()
            and r.destination.lower() == destination.lower()
            and r.site_id == site_id
            and r.creation_type is creation_type
            and r.source_plugin == source_plugin
        ]
        if not found:
            return None
        return replace(max(found, key=_newest_first))

    def increment_hit_count(self, rule_id: int, at: datetime) -> None:
        with self._lock:
            rule = self._rules.get(rule_id)
            if rule is not None:
                rule.hit_count += 1
                rule.last_hit_at = at


class InMemoryNotFoundStore:
    """Dict-backed NotFoundStorePort."""

    def __init__(self) -> None:
        self._records: dict[tuple[str, int | None], NotFoundRecord] = {}
        self._lock = threading.Lock()

    def record_hit(self, hit: NotFoundHit) -> bool:
        key = (hit.url_normalized, hit.site_id)
        with self._lock:
            record = self._records.get(key)
            if record is None:
                self._records[key] = NotFoundRecord(
                    url_normalized=hit.url_normalized,
                    site_id=hit.site_id,
                    url=hit.url,
                    count=1,
                    handled=hit.handled,
                    source_plugin=hit.source_plugin,
                    last_seen_at=hit.at,
                    redirect_id=hit.redirect_id,
                    referrer=hit.referrer,
                    ip_hash=hit.ip_hash,
                    user_agent=hit.user_agent,
                )
                return True
            record.count += 1
            record.url = hit.url
            record.handled = hit.handled
            record.source_plugin = hit.source_plugin
            record.last_seen_at = hit.at
            record.redirect_id = hit.redirect_id
            record.referrer = hit.referrer
            record.ip_hash = hit.ip_hash
            record.user_agent = hit.user_agent
            return False

    def list_recent(
        self,
        limit: int = 100,
        handled: bool | None = None,
        site_id: int | None = None,
    ) -> list[NotFoundRecord]:
        records = [
            r
            for r in self._records.values()
            if (handled is None or r.handled == handled)
            and (site_id is None or r.site_id == site_id)
        ]
        records.sort(key=lambda r: r.last_seen_at, reverse=True)
        return [replace(r) for r in records[:limit]]

    def delete(self, url_normalized: str, site_id: int | None) -> bool:
        with self._lock:
            return self._records.pop((url_normalized, site_id), None) is not None

    def clear(self, site_id: int | None = None) -> int:
        with self._lock:
            keys = [k for k in self._records if site_id is None or k[1] == site_id]
            for key in keys:
                del self._records[key]
            return len(keys)

    def delete_older_than(self, cutoff: datetime) -> int:
        with self._lock:
            keys = [k for k, r in self._records.items() if r.last_seen_at < cutoff]
            for key in keys:
                del self._records[key]
            return len(keys)

    def trim(self, max_records: int) -> int:
        with self._lock:
            excess = len(self._records) - max_records
            if excess <= 0:
                return 0
            oldest = sorted(
                self._records,
                key=lambda k: (self._records[k].last_seen_at, self._records[k].count),
            )
            for key in oldest[:excess]:
                del self._records[key]
            return excess
