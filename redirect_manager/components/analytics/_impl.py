"""
NotFoundRecorder - aggregates matched and unmatched not-found requests.

Key behaviors:
- Fire-and-forget: record() never raises into the redirect path
- Query strings are stripped before aggregation when configured
- IPs are optionally subnet-masked, then salted and hashed; raw IPs are
  never stored
- A missing salt is a ConfigError for IP hashing only; the hit is still
  recorded without an IP
- The table is bounded: new aggregates trigger a trim to max_records, and
  cleanup() drops aggregates older than retention_days
"""

from __future__ import annotations

import hashlib
import ipaddress
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from redirect_manager.components.redirects import (
    ConfigError,
    TimePort,
    normalize_url,
    strip_query_string,
)
from redirect_manager.components.redirects.models import DEFAULT_SOURCE_PLUGIN

from .models import CleanupResult, NotFoundHit
from .ports import NotFoundStorePort

logger = logging.getLogger(__name__)

# --- Configuration ---


@dataclass(frozen=True)
class AnalyticsConfig:
    """Analytics configuration from rules."""

    enabled: bool = True
    strip_query_string: bool = True
    anonymize_ip: bool = False
    ip_hash_salt: str | None = None
    retention_days: int = 30  # 0 = keep forever
    max_records: int = 1000
    auto_trim: bool = True


DEFAULT_CONFIG = AnalyticsConfig()


def anonymize_ip(ip: str) -> str:
    """Mask the host part: last IPv4 octet, last 80 IPv6 bits."""
    address = ipaddress.ip_address(ip)
    prefix = 24 if address.version == 4 else 48
    network = ipaddress.ip_network(f"{address}/{prefix}", strict=False)
    return str(network.network_address)


def hash_ip(ip: str, salt: str | None) -> str:
    """Salted SHA-256 of an IP address."""
    if not salt:
        raise ConfigError("IP hash salt is not configured (analytics.ip_hash_salt)")
    return hashlib.sha256(f"{salt}{ip}".encode()).hexdigest()


class NotFoundRecorder:
    """Analytics recorder backed by a NotFoundStorePort."""

    def __init__(
        self,
        store: NotFoundStorePort,
        time_port: TimePort | None = None,
        config: AnalyticsConfig | None = None,
    ) -> None:
        self._store = store
        self._time_port = time_port
        self._config = config or DEFAULT_CONFIG

    def _now(self) -> datetime:
        if self._time_port:
            return self._time_port.now_utc()
        from redirect_manager.adapters.clock import SystemClock

        return SystemClock().now_utc()

    def record(
        self,
        url: str,
        handled: bool,
        context: dict[str, Any] | None = None,
    ) -> None:
        """Record a not-found hit. Errors are logged, never raised."""
        if not self._config.enabled:
            return

        context = context or {}
        try:
            created = self._store.record_hit(self._build_hit(url, handled, context))
            if created and self._config.auto_trim:
                self._trim()
        except Exception:
            logger.exception("Failed to record 404 for %s", url)

    def cleanup(self) -> CleanupResult:
        """
        Retention pass, meant to run periodically.

        Drops aggregates not seen for retention_days, then trims to
        max_records when auto_trim is on. Store errors propagate.
        """
        expired = 0
        if self._config.retention_days > 0:
            cutoff = self._now() - timedelta(days=self._config.retention_days)
            expired = self._store.delete_older_than(cutoff)
            if expired:
                logger.info(
                    "Cleaned up %d not-found record(s) older than %d days",
                    expired,
                    self._config.retention_days,
                )

        trimmed = self._trim() if self._config.auto_trim else 0
        return CleanupResult(expired=expired, trimmed=trimmed)

    def _trim(self) -> int:
        trimmed = self._store.trim(self._config.max_records)
        if trimmed:
            logger.info(
                "Trimmed %d not-found record(s) over the %d limit",
                trimmed,
                self._config.max_records,
            )
        return trimmed

    def _build_hit(self, url: str, handled: bool, context: dict[str, Any]) -> NotFoundHit:
        parsed = strip_query_string(url) if self._config.strip_query_string else url
        return NotFoundHit(
            url=url,
            url_normalized=normalize_url(parsed),
            site_id=context.get("site_id"),
            handled=handled,
            source_plugin=context.get("source") or DEFAULT_SOURCE_PLUGIN,
            at=self._now(),
            redirect_id=context.get("redirect_id"),
            referrer=context.get("referrer"),
            ip_hash=self._process_ip(context.get("ip")),
            user_agent=context.get("user_agent"),
        )

    def _process_ip(self, raw_ip: str | None) -> str | None:
        if not raw_ip:
            return None
        try:
            ip = anonymize_ip(raw_ip) if self._config.anonymize_ip else raw_ip
            return hash_ip(ip, self._config.ip_hash_salt)
        except ConfigError as e:
            logger.error("Failed to hash IP address: %s", e)
        except ValueError as e:
            logger.warning("Ignoring malformed IP address %r: %s", raw_ip, e)
        return None


class NullAnalyticsRecorder:
    """Recorder used when analytics is disabled."""

    def record(
        self,
        url: str,
        handled: bool,
        context: dict[str, Any] | None = None,
    ) -> None:
        return None
