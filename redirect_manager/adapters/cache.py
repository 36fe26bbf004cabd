"""
Redirect cache adapters.

Entries are keyed by a fingerprint of (site, url), hold a snapshot of the
matched rule and expire after a TTL. invalidate_all() is the only
invalidation primitive.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import threading
from datetime import datetime, timedelta
from pathlib import Path
from tempfile import NamedTemporaryFile

from redirect_manager.components.redirects import RedirectRule, TimePort

logger = logging.getLogger(__name__)

CACHE_SUFFIX = ".cache.json"


def cache_fingerprint(url: str, site_id: int | None) -> str:
    """Stable key for a (site, url) pair."""
    raw = f"{site_id if site_id is not None else '*'}|{url.lower()}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


class _ClockMixin:
    _time_port: TimePort | None

    def _now(self) -> datetime:
        if self._time_port:
            return self._time_port.now_utc()
        from redirect_manager.adapters.clock import SystemClock

        return SystemClock().now_utc()


class InMemoryRedirectCache(_ClockMixin):
    """Process-local cache."""

    def __init__(self, time_port: TimePort | None = None) -> None:
        self._time_port = time_port
        self._entries: dict[str, tuple[datetime, RedirectRule]] = {}
        self._lock = threading.Lock()

    def lookup(self, url: str, site_id: int | None) -> RedirectRule | None:
        key = cache_fingerprint(url, site_id)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, rule = entry
            if self._now() >= expires_at:
                del self._entries[key]
                return None
            return RedirectRule.from_dict(rule.to_dict())

    def store(
        self,
        url: str,
        site_id: int | None,
        rule: RedirectRule,
        ttl_seconds: int,
    ) -> None:
        expires_at = self._now() + timedelta(seconds=ttl_seconds)
        snapshot = RedirectRule.from_dict(rule.to_dict())
        with self._lock:
            self._entries[cache_fingerprint(url, site_id)] = (expires_at, snapshot)

    def invalidate_all(self) -> None:
        with self._lock:
            self._entries.clear()
        logger.info("Redirect cache cleared")

    def __len__(self) -> int:
        return len(self._entries)


class FileRedirectCache(_ClockMixin):
    """One JSON file per entry under a cache directory."""

    def __init__(self, base_path: str, time_port: TimePort | None = None):
        self.base_path = Path(base_path).resolve()
        if not self.base_path.exists():
            os.makedirs(self.base_path, exist_ok=True)
        self._time_port = time_port

    def _path(self, url: str, site_id: int | None) -> Path:
        return self.base_path / f"{cache_fingerprint(url, site_id)}{CACHE_SUFFIX}"

    def lookup(self, url: str, site_id: int | None) -> RedirectRule | None:
        target = self._path(url, site_id)
        try:
            with open(target, encoding="utf-8") as f:
                payload = json.load(f)
            expires_at = datetime.fromisoformat(payload["expires_at"])
            rule = RedirectRule.from_dict(payload["rule"])
        except FileNotFoundError:
            return None
        except (OSError, ValueError, KeyError) as e:
            logger.warning("Discarding unreadable cache entry %s: %s", target.name, e)
            self._remove(target)
            return None

        if self._now() >= expires_at:
            self._remove(target)
            return None
        return rule

    def store(
        self,
        url: str,
        site_id: int | None,
        rule: RedirectRule,
        ttl_seconds: int,
    ) -> None:
        payload = {
            "url": url,
            "site_id": site_id,
            "expires_at": (self._now() + timedelta(seconds=ttl_seconds)).isoformat(),
            "rule": rule.to_dict(),
        }
        target = self._path(url, site_id)
        tmp_path: Path | None = None
        try:
            with NamedTemporaryFile(
                "w", encoding="utf-8", dir=self.base_path, suffix=".tmp", delete=False
            ) as f:
                tmp_path = Path(f.name)
                json.dump(payload, f)
            os.replace(tmp_path, target)
        except OSError as e:
            logger.error("Failed to write cache entry for %s: %s", url, e)
            if tmp_path is not None:
                self._remove(tmp_path)

    def invalidate_all(self) -> None:
        removed = 0
        for entry in self.base_path.glob(f"*{CACHE_SUFFIX}"):
            self._remove(entry)
            removed += 1
        logger.info("Redirect cache cleared (%d entries)", removed)

    @staticmethod
    def _remove(target: Path) -> None:
        try:
            os.remove(target)
        except FileNotFoundError:
            pass


class NullRedirectCache:
    """Cache that never holds anything."""

    def lookup(self, url: str, site_id: int | None) -> RedirectRule | None:
        return None

    def store(
        self,
        url: str,
        site_id: int | None,
        rule: RedirectRule,
        ttl_seconds: int,
    ) -> None:
        return None

    def invalidate_all(self) -> None:
        return None
