"""
RedirectService - rule management with validation and loop prevention.

Handles rule creation, update, deletion and write-time loop detection.

Key behaviors:
- Source is normalized (whitespace, control chars, repeated slashes)
- Source must agree with its scope (path-only "/...", full-url "http(s)://...")
- Regex sources must contain metacharacters and encode their scope
- (site, strategy, scope, source) is unique
- Self-loops and transitive loops are rejected before any write
- Every successful write invalidates the redirect cache before returning
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any

from ._urls import is_absolute_url, normalize_url, to_lookup_path
from .models import (
    DEFAULT_SOURCE_PLUGIN,
    VALID_STATUS_CODES,
    CreationType,
    MatchStrategy,
    RedirectRule,
    RedirectValidationError,
    SourceScope,
)
from .ports import RedirectCachePort, RuleStorePort, TimePort

logger = logging.getLogger(__name__)

# --- Configuration ---


@dataclass(frozen=True)
class RedirectConfig:
    """Redirect configuration from rules."""

    default_status_code: int = 301
    max_chain_depth: int = 10
    max_regex_length: int = 500

    # Resolution
    exclude_patterns: tuple[str, ...] = ()
    preserve_query_string: bool = False
    set_no_cache_headers: bool = True
    additional_headers: tuple[tuple[str, str], ...] = ()

    # Cache
    cache_enabled: bool = True
    cache_ttl_seconds: int = 3600

    # Site URLs, for absolute destinations
    default_base_url: str | None = None
    site_base_urls: dict[int, str] = field(default_factory=dict)

    def base_url_for(self, site_id: int | None) -> str | None:
        if site_id is not None and site_id in self.site_base_urls:
            return self.site_base_urls[site_id]
        return self.default_base_url


DEFAULT_CONFIG = RedirectConfig()

UPDATABLE_FIELDS = frozenset(
    {
        "source_pattern",
        "destination",
        "match_strategy",
        "source_scope",
        "status_code",
        "enabled",
        "priority",
        "site_id",
        "notes",
    }
)

_REGEX_METACHARACTERS = re.compile(r"[.^$*+?{}\[\]\\|()]")
_REGEX_SCHEME = re.compile(r"https?\??:(\\?/){2}", re.IGNORECASE)
# A quantified group that itself contains a quantifier: (a+)+, (.*)*, (\w+){2,}
_NESTED_QUANTIFIER = re.compile(r"\([^()]*[+*}][^()]*\)\s*[+*{]")


# --- Validation Functions ---


def loop_key(url: str) -> str:
    """Case-folded normalized form used for loop comparisons."""
    return normalize_url(url).lower()


def chain_keys(destination: str) -> tuple[str, ...]:
    """
    Source keys a destination can chain into.

    Relative destinations map to their path. Absolute destinations may hit a
    full-url rule directly or a path-only rule through their path.
    """
    keys = [to_lookup_path(destination)]
    if is_absolute_url(destination):
        keys.insert(0, normalize_url(destination))
    return tuple(dict.fromkeys(keys))


def is_self_loop(source: str, destination: str) -> bool:
    return loop_key(source) in {k.lower() for k in chain_keys(destination)}


def _error(code: str, message: str, field_name: str | None = None) -> RedirectValidationError:
    return RedirectValidationError(code=code, message=message, field=field_name)


def validate_regex_source(
    pattern: str,
    scope: SourceScope,
    config: RedirectConfig = DEFAULT_CONFIG,
) -> list[RedirectValidationError]:
    """Regex sources must look like regexes, compile, and encode their scope."""
    errors: list[RedirectValidationError] = []

    if not _REGEX_METACHARACTERS.search(pattern):
        errors.append(
            _error(
                "regex_requires_metacharacters",
                "Regex source must contain regular expression syntax; use exact match instead",
                "source_pattern",
            )
        )
        return errors

    if scope is SourceScope.PATH_ONLY and "/" not in pattern:
        errors.append(
            _error(
                "regex_scope_mismatch",
                "Path-only regex source must contain /",
                "source_pattern",
            )
        )
    elif scope is SourceScope.FULL_URL and not _REGEX_SCHEME.search(pattern):
        errors.append(
            _error(
                "regex_scope_mismatch",
                "Full-URL regex source must contain http:// or https://",
                "source_pattern",
            )
        )

    if len(pattern) > config.max_regex_length or _NESTED_QUANTIFIER.search(pattern):
        errors.append(
            _error(
                "regex_too_complex",
                "Regex source is too long or uses nested quantifiers",
                "source_pattern",
            )
        )
        return errors

    try:
        re.compile(pattern, re.IGNORECASE)
    except re.error as e:
        errors.append(_error("invalid_regex", f"Invalid regular expression: {e}", "source_pattern"))

    return errors


def validate_rule_fields(
    source_pattern: str,
    destination: str,
    match_strategy: Any,
    source_scope: Any,
    status_code: Any,
    config: RedirectConfig = DEFAULT_CONFIG,
) -> list[RedirectValidationError]:
    """Field-level validation shared by create, update and audit."""
    errors: list[RedirectValidationError] = []

    source = normalize_url(source_pattern or "")
    if not source:
        errors.append(_error("source_required", "Source URL is required", "source_pattern"))
    if not normalize_url(destination or ""):
        errors.append(_error("destination_required", "Destination URL is required", "destination"))

    if status_code not in VALID_STATUS_CODES:
        errors.append(
            _error(
                "invalid_status_code",
                f"Status code must be one of {sorted(VALID_STATUS_CODES)}",
                "status_code",
            )
        )

    try:
        strategy = MatchStrategy(match_strategy)
    except ValueError:
        errors.append(
            _error("invalid_match_strategy", f"Unknown match type '{match_strategy}'", "match_strategy")
        )
        strategy = None
    try:
        scope = SourceScope(source_scope)
    except ValueError:
        errors.append(
            _error("invalid_source_scope", f"Unknown source scope '{source_scope}'", "source_scope")
        )
        scope = None

    if not source or strategy is None or scope is None:
        return errors

    if strategy is MatchStrategy.REGEX:
        errors.extend(validate_regex_source(source, scope, config))
        return errors

    if scope is SourceScope.PATH_ONLY and not source.startswith("/"):
        errors.append(
            _error(
                "source_must_start_with_slash",
                "Path-only source must start with /",
                "source_pattern",
            )
        )
    elif scope is SourceScope.FULL_URL and not (
        is_absolute_url(source) and source.lower().startswith(("http://", "https://"))
    ):
        errors.append(
            _error(
                "source_requires_scheme",
                "Full-URL source must start with http:// or https://",
                "source_pattern",
            )
        )

    if strategy is MatchStrategy.WILDCARD and "*" not in source:
        errors.append(
            _error(
                "wildcard_requires_asterisk",
                "Wildcard source must contain at least one *",
                "source_pattern",
            )
        )
    elif strategy in (MatchStrategy.EXACT, MatchStrategy.PREFIX) and "*" in source:
        errors.append(
            _error(
                "wildcard_not_allowed",
                "Use the wildcard match type for sources containing *",
                "source_pattern",
            )
        )

    return errors


def would_create_loop(
    source: str,
    destination: str,
    store: RuleStorePort,
    exclude_rule_id: int | None = None,
    site_id: int | None = None,
    max_depth: int = 10,
) -> bool:
    """
    Check if a source -> destination rule would close a redirect cycle.

    Follows enabled rules whose source equals the evolving destination, up to
    max_depth hops, skipping exclude_rule_id (the rule being updated).
    """
    if is_self_loop(source, destination):
        return True
    source_key = loop_key(source)

    visited: set[str] = set()
    current = destination
    chain = [destination]

    for _ in range(max_depth):
        keys = chain_keys(current)
        if keys[0].lower() in visited:
            break
        visited.add(keys[0].lower())

        next_rule = _first_rule(store, keys, site_id, exclude_rule_id)
        if next_rule is None:
            return False

        chain.append(next_rule.destination)
        if source_key in {k.lower() for k in chain_keys(next_rule.destination)}:
            logger.warning(
                "Circular redirect detected: %s -> %s via %s",
                source,
                destination,
                " -> ".join(chain),
            )
            return True
        current = next_rule.destination

    return False


def _first_rule(
    store: RuleStorePort,
    keys: tuple[str, ...],
    site_id: int | None,
    exclude_rule_id: int | None,
) -> RedirectRule | None:
    for key in keys:
        found = store.find_by_source(
            key,
            site_id=site_id,
            enabled_only=True,
            exclude_id=exclude_rule_id,
        )
        if found:
            return found[0]
    return None


# --- Redirect Service ---


class RedirectService:
    """
    Redirect rule service.

    Manages redirect rules with validation. The cache is invalidated after
    every committed write.
    """

    def __init__(
        self,
        store: RuleStorePort,
        cache: RedirectCachePort | None = None,
        time_port: TimePort | None = None,
        config: RedirectConfig | None = None,
    ) -> None:
        """Initialize service."""
        self._store = store
        self._cache = cache
        self._time_port = time_port
        self._config = config or DEFAULT_CONFIG

    @property
    def config(self) -> RedirectConfig:
        return self._config

    def _now(self) -> datetime:
        if self._time_port:
            return self._time_port.now_utc()
        from redirect_manager.adapters.clock import SystemClock

        return SystemClock().now_utc()

    def _invalidate(self) -> None:
        if self._cache is not None:
            self._cache.invalidate_all()

    def get(self, rule_id: int) -> RedirectRule | None:
        """Get rule by ID."""
        return self._store.get_by_id(rule_id)

    def list_all(self) -> list[RedirectRule]:
        """List all rules."""
        return self._store.list_all()

    def would_create_loop(
        self,
        source: str,
        destination: str,
        exclude_rule_id: int | None = None,
        site_id: int | None = None,
    ) -> bool:
        return would_create_loop(
            source,
            destination,
            self._store,
            exclude_rule_id=exclude_rule_id,
            site_id=site_id,
            max_depth=self._config.max_chain_depth,
        )

    def _check_rule(
        self,
        rule: RedirectRule,
        exclude_id: int | None = None,
        check_loop: bool = True,
    ) -> list[RedirectValidationError]:
        errors = validate_rule_fields(
            rule.source_pattern,
            rule.destination,
            rule.match_strategy,
            rule.source_scope,
            rule.status_code,
            self._config,
        )
        if errors:
            return errors

        existing = self._store.find_conflicting(
            rule.source_normalized,
            rule.site_id,
            rule.match_strategy,
            rule.source_scope,
            exclude_id=exclude_id,
        )
        if existing is not None:
            logger.warning("Redirect already exists for %s", rule.source_normalized)
            errors.append(
                _error(
                    "source_exists",
                    f"Redirect already exists: {existing.source_pattern} -> {existing.destination}",
                    "source_pattern",
                )
            )
            return errors

        # Self-loops are rejected even for disabled rules.
        if is_self_loop(rule.source_normalized, rule.destination) or (
            check_loop
            and self.would_create_loop(
                rule.source_normalized,
                rule.destination,
                exclude_rule_id=exclude_id,
                site_id=rule.site_id,
            )
        ):
            errors.append(
                _error(
                    "redirect_loop",
                    "This would create a circular redirect loop. "
                    "The destination eventually redirects back to the source.",
                    "destination",
                )
            )
        return errors

    def create(
        self,
        source_pattern: str,
        destination: str,
        *,
        match_strategy: MatchStrategy | str = MatchStrategy.EXACT,
        source_scope: SourceScope | str = SourceScope.PATH_ONLY,
        status_code: int | None = None,
        site_id: int | None = None,
        enabled: bool = True,
        priority: int = 0,
        creation_type: CreationType | str = CreationType.MANUAL,
        origin_content_id: int | None = None,
        source_plugin: str = DEFAULT_SOURCE_PLUGIN,
        notes: str | None = None,
    ) -> tuple[RedirectRule | None, list[RedirectValidationError]]:
        """
        Create a new rule.

        Returns:
            Tuple of (rule, errors). Rule is None if validation fails.

        Raises:
            StoreError: the store rejected the write (e.g. a concurrent
                duplicate); nothing is cached or invalidated.
        """
        status = status_code if status_code is not None else self._config.default_status_code
        errors = validate_rule_fields(
            source_pattern, destination, match_strategy, source_scope, status, self._config
        )
        if errors:
            return None, errors

        now = self._now()
        rule = RedirectRule(
            id=None,
            source_pattern=source_pattern.strip(),
            source_normalized=normalize_url(source_pattern),
            destination=normalize_url(destination),
            site_id=site_id,
            source_scope=SourceScope(source_scope),
            match_strategy=MatchStrategy(match_strategy),
            status_code=status,
            enabled=enabled,
            priority=priority,
            creation_type=CreationType(creation_type),
            origin_content_id=origin_content_id,
            source_plugin=source_plugin,
            created_at=now,
            updated_at=now,
            notes=notes,
        )

        errors = self._check_rule(rule, check_loop=enabled)
        if errors:
            return None, errors

        saved = self._store.save(rule)
        self._invalidate()
        logger.info(
            "Redirect created id=%s %s -> %s", saved.id, saved.source_pattern, saved.destination
        )
        return saved, []

    def update(
        self,
        rule_id: int,
        updates: dict[str, Any],
    ) -> tuple[RedirectRule | None, list[RedirectValidationError]]:
        """
        Update an existing rule.

        Validates the merged rule with the same constraints as create; the
        loop check skips the rule itself.
        """
        rule = self._store.get_by_id(rule_id)
        if rule is None:
            logger.error("Redirect %s not found", rule_id)
            return None, [_error("not_found", f"Redirect {rule_id} not found")]

        unknown = set(updates) - UPDATABLE_FIELDS
        if unknown:
            return rule, [
                _error("invalid_field", f"Cannot update field '{name}'", name)
                for name in sorted(unknown)
            ]

        merged = {
            "source_pattern": rule.source_pattern,
            "destination": rule.destination,
            "match_strategy": rule.match_strategy,
            "source_scope": rule.source_scope,
            "status_code": rule.status_code,
            **updates,
        }
        errors = validate_rule_fields(
            merged["source_pattern"],
            merged["destination"],
            merged["match_strategy"],
            merged["source_scope"],
            merged["status_code"],
            self._config,
        )
        if errors:
            return rule, errors

        candidate = replace(
            rule,
            source_pattern=str(merged["source_pattern"]).strip(),
            source_normalized=normalize_url(merged["source_pattern"]),
            destination=normalize_url(merged["destination"]),
            match_strategy=MatchStrategy(merged["match_strategy"]),
            source_scope=SourceScope(merged["source_scope"]),
            status_code=merged["status_code"],
            enabled=updates.get("enabled", rule.enabled),
            priority=updates.get("priority", rule.priority),
            site_id=updates.get("site_id", rule.site_id),
            notes=updates.get("notes", rule.notes),
            updated_at=self._now(),
        )

        errors = self._check_rule(candidate, exclude_id=rule_id, check_loop=candidate.enabled)
        if errors:
            return rule, errors

        saved = self._store.save(candidate)
        self._invalidate()
        logger.info("Redirect updated id=%s", rule_id)
        return saved, []

    def delete(self, rule_id: int) -> bool:
        """Delete a rule."""
        if self._store.get_by_id(rule_id) is None:
            logger.error("Redirect %s not found", rule_id)
            return False

        self._store.delete(rule_id)
        self._invalidate()
        logger.info("Redirect deleted id=%s", rule_id)
        return True

    def delete_many(self, rule_ids: list[int] | tuple[int, ...]) -> int:
        """Bulk delete. Returns the number of rules removed."""
        deleted = 0
        for rule_id in rule_ids:
            if self._store.get_by_id(rule_id) is None:
                continue
            self._store.delete(rule_id)
            deleted += 1
        if deleted:
            self._invalidate()
            logger.info("Bulk deleted %d redirect(s)", deleted)
        return deleted

    def clear_cache(self) -> None:
        self._invalidate()

    def validate_all(self) -> list[tuple[RedirectRule, list[RedirectValidationError]]]:
        """
        Validate all existing rules.

        Returns list of (rule, errors) for rules with issues.
        """
        results = []
        for rule in self._store.list_all():
            errors = validate_rule_fields(
                rule.source_pattern,
                rule.destination,
                rule.match_strategy,
                rule.source_scope,
                rule.status_code,
                self._config,
            )
            if rule.enabled and self.would_create_loop(
                rule.source_normalized,
                rule.destination,
                exclude_rule_id=rule.id,
                site_id=rule.site_id,
            ):
                errors.append(
                    _error("redirect_loop", "Redirect is part of a circular chain", "destination")
                )
            if errors:
                results.append((rule, errors))
        return results


# --- Factory ---


def create_redirect_service(
    store: RuleStorePort,
    cache: RedirectCachePort | None = None,
    config: RedirectConfig | None = None,
) -> RedirectService:
    """Create a RedirectService."""
    return RedirectService(store=store, cache=cache, config=config)
