"""
RedirectResolver - turns a not-found request into a redirect.

Resolution steps:
1. Normalize full URL and path; the query string is split off for matching
   and kept for optional pass-through
2. Skip excluded URLs entirely (no analytics, no hit counts)
3. Cache lookup on the query-stripped request URL
4. Scan enabled rules by (priority, id); first match wins
5. Follow the destination through further rules (bounded, cycle-safe)
6. Post-process: query pass-through, absolute URL, response headers

Resolution never raises: store failures, bad regexes and broken chains are
logged and degrade to NoMatch or the best known destination.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from urllib.parse import urlparse

from ._impl import DEFAULT_CONFIG, RedirectConfig, chain_keys
from ._matcher import apply_captures, is_excluded, match_with_captures
from ._urls import (
    append_query_string,
    is_absolute_url,
    make_absolute,
    normalize_request_url,
    split_query_string,
)
from .models import (
    DEFAULT_SOURCE_PLUGIN,
    GONE_STATUS_CODE,
    NoMatch,
    RedirectRule,
    ResolvedRedirect,
    SourceScope,
    StoreError,
)
from .ports import AnalyticsRecorderPort, RedirectCachePort, RuleStorePort, TimePort

logger = logging.getLogger(__name__)

NO_CACHE_HEADERS: tuple[tuple[str, str], ...] = (
    ("Cache-Control", "no-cache, no-store, must-revalidate, max-age=0"),
    ("Pragma", "no-cache"),
    ("Expires", "0"),
)

CYCLE_WARNING = "cycle"
DEPTH_WARNING = "depth_exceeded"


@dataclass(frozen=True)
class _Located:
    rule: RedirectRule
    captures: tuple[str, ...]
    from_cache: bool


class RedirectResolver:
    """
    Not-found request resolver.

    All collaborators are injected; nothing is looked up globally.
    """

    def __init__(
        self,
        store: RuleStorePort,
        cache: RedirectCachePort | None = None,
        analytics: AnalyticsRecorderPort | None = None,
        time_port: TimePort | None = None,
        config: RedirectConfig | None = None,
    ) -> None:
        self._store = store
        self._cache = cache
        self._analytics = analytics
        self._time_port = time_port
        self._config = config or DEFAULT_CONFIG

    def _now(self) -> datetime:
        if self._time_port:
            return self._time_port.now_utc()
        from redirect_manager.adapters.clock import SystemClock

        return SystemClock().now_utc()

    # --- Entry points ---

    def resolve(
        self,
        full_url: str,
        path_only: str,
        site_id: int | None = None,
        context: dict[str, Any] | None = None,
    ) -> ResolvedRedirect | NoMatch:
        """
        Resolve a not-found request.

        Args:
            full_url: Absolute request URL, query string included.
            path_only: Request path, query string included.
            site_id: Current site, or None for single-site setups.
            context: Analytics context (source, metadata).

        Returns:
            ResolvedRedirect for the caller to issue, or NoMatch.
        """
        context = dict(context or {})
        context.setdefault("source", DEFAULT_SOURCE_PLUGIN)
        context.setdefault("site_id", site_id)

        full_clean = normalize_request_url(full_url)
        path_clean = normalize_request_url(path_only)
        full_match, full_query = split_query_string(full_clean)
        path_match, path_query = split_query_string(path_clean)
        query = path_query or full_query

        logger.debug("Handling 404 path=%s full=%s", path_match, full_match)

        if is_excluded(path_match, self._config.exclude_patterns):
            logger.debug("URL excluded from redirect handling: %s", path_match)
            return NoMatch(reason="excluded")

        located = self._locate(full_match, path_match, site_id)
        if located is None:
            self._record(path_clean, False, context)
            return NoMatch()

        self._record(path_clean, True, {**context, "redirect_id": located.rule.id})
        return self._finish(located, query, site_id, context)

    def handle_external_404(
        self,
        url: str,
        context: dict[str, Any] | None = None,
        site_id: int | None = None,
    ) -> ResolvedRedirect | NoMatch:
        """
        Resolve a 404 reported by another module.

        Same semantics as resolve(); analytics are tagged with
        context["source"]. A site base path ("/ar") is stripped before
        matching, falling back to the unstripped path.
        """
        context = dict(context or {})
        context.setdefault("source", "unknown")
        context.setdefault("site_id", site_id)

        full_match, query = split_query_string(normalize_request_url(url))
        if is_absolute_url(full_match):
            path = urlparse(full_match).path or "/"
        else:
            path = full_match

        base_path = self._site_base_path(site_id)
        stripped = path
        if base_path != "/" and path.startswith(base_path + "/"):
            stripped = path[len(base_path) :]

        logger.debug(
            "Handling external 404 url=%s path=%s stripped=%s source=%s",
            url,
            path,
            stripped,
            context["source"],
        )

        if is_excluded(stripped, self._config.exclude_patterns):
            return NoMatch(reason="excluded")

        located = self._locate(full_match, stripped, site_id)
        if located is None and stripped != path:
            located = self._locate(full_match, path, site_id)

        if located is None:
            self._record(path, False, context)
            return NoMatch()

        self._record(path, True, {**context, "redirect_id": located.rule.id})
        result = self._finish(located, query, site_id, context)
        logger.info(
            "External 404 matched redirect source=%s url=%s destination=%s",
            context["source"],
            path,
            result.destination,
        )
        return result

    # --- Matching ---

    def _locate(self, full_url: str, path: str, site_id: int | None) -> _Located | None:
        located = self._from_cache(full_url, path, site_id)
        if located is None:
            located = self._scan(full_url, path, site_id)
        if located is not None:
            self._increment(located.rule)
        return located

    @staticmethod
    def _cache_key(full_url: str, path: str) -> str:
        # Full-URL rules see the host, so outcomes are per request URL.
        return path if full_url == path else f"{full_url} {path}"

    @staticmethod
    def _url_for(rule: RedirectRule, full_url: str, path: str) -> str:
        return full_url if rule.source_scope is SourceScope.FULL_URL else path

    def _from_cache(self, full_url: str, path: str, site_id: int | None) -> _Located | None:
        if self._cache is None or not self._config.cache_enabled:
            return None

        rule = self._cache.lookup(self._cache_key(full_url, path), site_id)
        if rule is None:
            return None

        # Captures are URL-specific, so re-run the cached rule's matcher.
        result = match_with_captures(
            rule.match_strategy, rule.source_normalized, self._url_for(rule, full_url, path)
        )
        if not result.matched:
            logger.debug("Stale cache entry for %s ignored", path)
            return None
        logger.debug("Redirect cache hit: %s", path)
        return _Located(rule=rule, captures=result.captures, from_cache=True)

    def _scan(self, full_url: str, path: str, site_id: int | None) -> _Located | None:
        try:
            rules = self._store.list_enabled(site_id)
        except StoreError as e:
            logger.error("Could not load redirects: %s", e)
            return None

        for rule in rules:
            result = match_with_captures(
                rule.match_strategy, rule.source_normalized, self._url_for(rule, full_url, path)
            )
            if not result.matched:
                continue

            if self._cache is not None and self._config.cache_enabled:
                self._cache.store(
                    self._cache_key(full_url, path), site_id, rule, self._config.cache_ttl_seconds
                )
            return _Located(rule=rule, captures=result.captures, from_cache=False)

        return None

    def _increment(self, rule: RedirectRule) -> None:
        if rule.id is None:
            return
        try:
            self._store.increment_hit_count(rule.id, self._now())
        except StoreError as e:
            logger.error("Failed to record hit for redirect %s: %s", rule.id, e)

    # --- Chain resolution ---

    def resolve_chain(
        self,
        destination: str,
        site_id: int | None = None,
        context: dict[str, Any] | None = None,
    ) -> tuple[str, tuple[str, ...], str | None]:
        """
        Follow a destination through further enabled rules.

        Returns (final destination, chain of visited destinations, warning).
        On a cycle or when max_chain_depth is reached the last resolved
        destination is returned with a warning instead of failing.
        """
        context = dict(context or {})
        visited: set[str] = set()
        current = destination
        chain = [destination]
        warning: str | None = None

        for _ in range(self._config.max_chain_depth):
            keys = chain_keys(current)
            if keys[-1].lower() in visited:
                warning = CYCLE_WARNING
                logger.warning("Redirect loop detected, chain=%s", chain)
                break
            visited.add(keys[-1].lower())

            next_rule = self._next_in_chain(keys, site_id)
            if next_rule is None:
                break

            logger.info(
                "Found next redirect in chain %s -> %s",
                next_rule.source_normalized,
                next_rule.destination,
            )
            self._record(keys[-1], True, {**context, "redirect_id": next_rule.id})
            current = next_rule.destination
            chain.append(current)
        else:
            warning = DEPTH_WARNING
            logger.warning(
                "Redirect chain exceeded %d hops, chain=%s", self._config.max_chain_depth, chain
            )

        if len(chain) > 1:
            logger.info(
                "Resolved redirect chain %s -> %s depth=%d", destination, current, len(chain) - 1
            )
        return current, tuple(chain), warning

    def _next_in_chain(self, keys: tuple[str, ...], site_id: int | None) -> RedirectRule | None:
        try:
            for key in keys:
                found = self._store.find_by_source(key, site_id=site_id, enabled_only=True)
                if found:
                    return found[0]
        except StoreError as e:
            logger.error("Failed to resolve redirect chain: %s", e)
        return None

    # --- Post-processing ---

    def _finish(
        self,
        located: _Located,
        query: str,
        site_id: int | None,
        context: dict[str, Any],
    ) -> ResolvedRedirect:
        rule = located.rule
        headers = self._response_headers()

        if rule.status_code == GONE_STATUS_CODE:
            return ResolvedRedirect(
                destination=rule.destination,
                status_code=GONE_STATUS_CODE,
                rule_id=rule.id,
                headers=headers,
                from_cache=located.from_cache,
            )

        destination = apply_captures(rule.destination, located.captures)
        if destination != rule.destination:
            logger.debug("Applied capture groups %s -> %s", rule.destination, destination)

        final, chain, warning = self.resolve_chain(destination, site_id, context)

        if self._config.preserve_query_string:
            final = append_query_string(final, query)
        final = make_absolute(final, self._config.base_url_for(site_id))

        logger.debug("Executing redirect to %s (%s)", final, rule.status_code)
        return ResolvedRedirect(
            destination=final,
            status_code=rule.status_code,
            rule_id=rule.id,
            headers=headers,
            chain=chain,
            warning=warning,
            from_cache=located.from_cache,
        )

    def _response_headers(self) -> tuple[tuple[str, str], ...]:
        headers = tuple(self._config.additional_headers)
        if self._config.set_no_cache_headers:
            headers = NO_CACHE_HEADERS + headers
        return headers

    def _site_base_path(self, site_id: int | None) -> str:
        base_url = self._config.base_url_for(site_id)
        if not base_url:
            return "/"
        return "/" + urlparse(base_url).path.strip("/")

    def _record(self, url: str, handled: bool, context: dict[str, Any]) -> None:
        if self._analytics is None:
            return
        try:
            self._analytics.record(url, handled, context)
        except Exception:
            logger.exception("Analytics recorder failed for %s", url)
