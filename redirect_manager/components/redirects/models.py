"""
Redirects component models.

Rule entity, enums, resolution outcomes, component input/output models and
the error types raised by stores and dependent features.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

VALID_STATUS_CODES = frozenset({301, 302, 303, 307, 308, 410})
GONE_STATUS_CODE = 410
DEFAULT_SOURCE_PLUGIN = "redirect-manager"


# --- Enums ---


class SourceScope(str, Enum):
    """Which part of the request URL a rule is matched against."""

    PATH_ONLY = "path-only"
    FULL_URL = "full-url"


class MatchStrategy(str, Enum):
    """Comparison algorithm used for a rule's source pattern."""

    EXACT = "exact"
    REGEX = "regex"
    WILDCARD = "wildcard"
    PREFIX = "prefix"


class CreationType(str, Enum):
    """How a rule came into existence."""

    MANUAL = "manual"
    IMPORT = "import"
    AUTO_URI_CHANGE = "auto-uri-change"


# --- Errors ---


@dataclass(frozen=True)
class RedirectValidationError:
    """Rule validation error, surfaced to the user."""

    code: str
    message: str
    field: str | None = None


class StoreError(Exception):
    """Rule store failure (connectivity, integrity)."""


class DuplicateRuleError(StoreError):
    """Unique constraint on (site, strategy, scope, source) violated."""


class ConfigError(Exception):
    """Missing or invalid configuration for a dependent feature."""


# --- Rule Model ---


@dataclass
class RedirectRule:
    """Configured source -> destination redirect mapping."""

    id: int | None
    source_pattern: str
    source_normalized: str
    destination: str
    site_id: int | None = None
    source_scope: SourceScope = SourceScope.PATH_ONLY
    match_strategy: MatchStrategy = MatchStrategy.EXACT
    status_code: int = 301
    enabled: bool = True
    priority: int = 0
    creation_type: CreationType = CreationType.MANUAL
    origin_content_id: int | None = None
    source_plugin: str = DEFAULT_SOURCE_PLUGIN
    hit_count: int = 0
    last_hit_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    notes: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-safe dict (cache snapshots, API)."""
        return {
            "id": self.id,
            "source_pattern": self.source_pattern,
            "source_normalized": self.source_normalized,
            "destination": self.destination,
            "site_id": self.site_id,
            "source_scope": self.source_scope.value,
            "match_strategy": self.match_strategy.value,
            "status_code": self.status_code,
            "enabled": self.enabled,
            "priority": self.priority,
            "creation_type": self.creation_type.value,
            "origin_content_id": self.origin_content_id,
            "source_plugin": self.source_plugin,
            "hit_count": self.hit_count,
            "last_hit_at": self.last_hit_at.isoformat() if self.last_hit_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RedirectRule:
        """Inverse of to_dict."""

        def _dt(value: str | None) -> datetime | None:
            return datetime.fromisoformat(value) if value else None

        return cls(
            id=data["id"],
            source_pattern=data["source_pattern"],
            source_normalized=data["source_normalized"],
            destination=data["destination"],
            site_id=data.get("site_id"),
            source_scope=SourceScope(data.get("source_scope", SourceScope.PATH_ONLY.value)),
            match_strategy=MatchStrategy(data.get("match_strategy", MatchStrategy.EXACT.value)),
            status_code=data.get("status_code", 301),
            enabled=bool(data.get("enabled", True)),
            priority=data.get("priority", 0),
            creation_type=CreationType(data.get("creation_type", CreationType.MANUAL.value)),
            origin_content_id=data.get("origin_content_id"),
            source_plugin=data.get("source_plugin", DEFAULT_SOURCE_PLUGIN),
            hit_count=data.get("hit_count", 0),
            last_hit_at=_dt(data.get("last_hit_at")),
            created_at=_dt(data.get("created_at")),
            updated_at=_dt(data.get("updated_at")),
            notes=data.get("notes"),
        )


# --- Matching / Resolution Outcomes ---


@dataclass(frozen=True)
class MatchResult:
    """Outcome of a single pattern test."""

    matched: bool
    captures: tuple[str, ...] = ()
    error: str | None = None


@dataclass(frozen=True)
class ResolvedRedirect:
    """Final redirect the caller should issue."""

    destination: str
    status_code: int
    rule_id: int | None
    headers: tuple[tuple[str, str], ...] = ()
    chain: tuple[str, ...] = ()
    warning: str | None = None
    from_cache: bool = False


@dataclass(frozen=True)
class NoMatch:
    """No rule applies; the caller falls through to its own 404."""

    reason: str = "no_rule"


# --- Input Models ---


@dataclass(frozen=True)
class CreateRuleInput:
    """Input for creating a new rule."""

    source_pattern: str
    destination: str
    match_strategy: str = MatchStrategy.EXACT.value
    source_scope: str = SourceScope.PATH_ONLY.value
    status_code: int | None = None
    site_id: int | None = None
    enabled: bool = True
    priority: int = 0
    creation_type: str = CreationType.MANUAL.value
    origin_content_id: int | None = None
    source_plugin: str = DEFAULT_SOURCE_PLUGIN
    notes: str | None = None


@dataclass(frozen=True)
class UpdateRuleInput:
    """Input for updating an existing rule."""

    rule_id: int
    updates: dict[str, Any]


@dataclass(frozen=True)
class DeleteRuleInput:
    """Input for deleting one or more rules."""

    rule_ids: tuple[int, ...]


@dataclass(frozen=True)
class ResolveInput:
    """Input for resolving a not-found request."""

    full_url: str
    path_only: str
    site_id: int | None = None


# --- Output Models ---


@dataclass(frozen=True)
class RuleOperationOutput:
    """Output for create/update/delete."""

    rule: RedirectRule | None = None
    deleted: int = 0
    errors: list[RedirectValidationError] = field(default_factory=list)
    success: bool = True


@dataclass(frozen=True)
class ResolveOutput:
    """Output for resolve."""

    outcome: ResolvedRedirect | NoMatch
    errors: list[RedirectValidationError] = field(default_factory=list)
    success: bool = True
