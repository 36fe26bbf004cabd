"""
Redirects component - rule store contract, matching, resolution, loop checks.
"""

from ._impl import (
    DEFAULT_CONFIG,
    RedirectConfig,
    RedirectService,
    create_redirect_service,
    validate_regex_source,
    validate_rule_fields,
    would_create_loop,
)
from ._matcher import (
    apply_captures,
    is_excluded,
    match_with_captures,
    matches,
    wildcard_to_regex,
)
from ._resolver import NO_CACHE_HEADERS, RedirectResolver
from ._urls import (
    is_absolute_url,
    make_absolute,
    normalize_request_url,
    normalize_url,
    strip_query_string,
    to_lookup_path,
    uri_to_path,
)
from .component import run, run_create, run_delete, run_resolve, run_update
from .models import (
    VALID_STATUS_CODES,
    ConfigError,
    CreateRuleInput,
    CreationType,
    DeleteRuleInput,
    DuplicateRuleError,
    MatchResult,
    MatchStrategy,
    NoMatch,
    RedirectRule,
    RedirectValidationError,
    ResolvedRedirect,
    ResolveInput,
    ResolveOutput,
    RuleOperationOutput,
    SourceScope,
    StoreError,
    UpdateRuleInput,
)
from .ports import AnalyticsRecorderPort, RedirectCachePort, RuleStorePort, TimePort

__all__ = [
    # Entry points
    "run",
    "run_create",
    "run_delete",
    "run_resolve",
    "run_update",
    # Models
    "VALID_STATUS_CODES",
    "CreateRuleInput",
    "CreationType",
    "DeleteRuleInput",
    "MatchResult",
    "MatchStrategy",
    "NoMatch",
    "RedirectRule",
    "RedirectValidationError",
    "ResolvedRedirect",
    "ResolveInput",
    "ResolveOutput",
    "RuleOperationOutput",
    "SourceScope",
    "UpdateRuleInput",
    # Errors
    "ConfigError",
    "DuplicateRuleError",
    "StoreError",
    # Ports
    "AnalyticsRecorderPort",
    "RedirectCachePort",
    "RuleStorePort",
    "TimePort",
    # Services
    "DEFAULT_CONFIG",
    "NO_CACHE_HEADERS",
    "RedirectConfig",
    "RedirectResolver",
    "RedirectService",
    "create_redirect_service",
    "validate_regex_source",
    "validate_rule_fields",
    "would_create_loop",
    # Matching / URLs
    "apply_captures",
    "is_absolute_url",
    "is_excluded",
    "make_absolute",
    "match_with_captures",
    "matches",
    "normalize_request_url",
    "normalize_url",
    "strip_query_string",
    "to_lookup_path",
    "uri_to_path",
    "wildcard_to_regex",
]
