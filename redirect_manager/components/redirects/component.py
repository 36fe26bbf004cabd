"""
Redirects component - rule management and not-found resolution.

Handles rule creation, validation, loop prevention and resolution.

Invariants:
- (site, match strategy, scope, normalized source) is unique
- No self-loops or circular chains are ever persisted
- Status code is one of 301, 302, 303, 307, 308, 410
- Disabled rules never match and never chain
- Any committed write invalidates the cache before returning
"""

from __future__ import annotations

from ._impl import RedirectConfig, RedirectService
from ._resolver import RedirectResolver
from .models import (
    CreateRuleInput,
    DeleteRuleInput,
    RedirectValidationError,
    ResolveInput,
    ResolveOutput,
    RuleOperationOutput,
    UpdateRuleInput,
)
from .ports import AnalyticsRecorderPort, RedirectCachePort, RuleStorePort, TimePort


def _create_service(
    store: RuleStorePort,
    cache: RedirectCachePort | None,
    time_port: TimePort | None,
    config: RedirectConfig | None,
) -> RedirectService:
    return RedirectService(store=store, cache=cache, time_port=time_port, config=config)


# --- Component Entry Points ---


def run_create(
    inp: CreateRuleInput,
    *,
    store: RuleStorePort,
    cache: RedirectCachePort | None = None,
    time_port: TimePort | None = None,
    config: RedirectConfig | None = None,
) -> RuleOperationOutput:
    """
    Create a new rule.

    Args:
        inp: Input containing source, destination and options.
        store: Rule store port.
        cache: Optional cache port, invalidated on success.
        time_port: Optional clock.
        config: Optional redirect configuration.

    Returns:
        RuleOperationOutput with created rule or errors.
    """
    service = _create_service(store, cache, time_port, config)

    rule, errors = service.create(
        inp.source_pattern,
        inp.destination,
        match_strategy=inp.match_strategy,
        source_scope=inp.source_scope,
        status_code=inp.status_code,
        site_id=inp.site_id,
        enabled=inp.enabled,
        priority=inp.priority,
        creation_type=inp.creation_type,
        origin_content_id=inp.origin_content_id,
        source_plugin=inp.source_plugin,
        notes=inp.notes,
    )
    return RuleOperationOutput(rule=rule, errors=errors, success=not errors)


def run_update(
    inp: UpdateRuleInput,
    *,
    store: RuleStorePort,
    cache: RedirectCachePort | None = None,
    time_port: TimePort | None = None,
    config: RedirectConfig | None = None,
) -> RuleOperationOutput:
    """Update an existing rule."""
    service = _create_service(store, cache, time_port, config)

    rule, errors = service.update(inp.rule_id, inp.updates)
    return RuleOperationOutput(rule=rule, errors=errors, success=not errors)


def run_delete(
    inp: DeleteRuleInput,
    *,
    store: RuleStorePort,
    cache: RedirectCachePort | None = None,
    time_port: TimePort | None = None,
    config: RedirectConfig | None = None,
) -> RuleOperationOutput:
    """Delete one or more rules; missing IDs are reported as not_found."""
    service = _create_service(store, cache, time_port, config)

    deleted = service.delete_many(inp.rule_ids)
    if deleted == 0:
        return RuleOperationOutput(
            errors=[
                RedirectValidationError(
                    code="not_found",
                    message=f"Redirect(s) {list(inp.rule_ids)} not found",
                )
            ],
            success=False,
        )
    return RuleOperationOutput(deleted=deleted)


def run_resolve(
    inp: ResolveInput,
    *,
    store: RuleStorePort,
    cache: RedirectCachePort | None = None,
    analytics: AnalyticsRecorderPort | None = None,
    time_port: TimePort | None = None,
    config: RedirectConfig | None = None,
) -> ResolveOutput:
    """
    Resolve a not-found request through the rule table.

    Returns:
        ResolveOutput whose outcome is a ResolvedRedirect or NoMatch.
    """
    resolver = RedirectResolver(
        store=store,
        cache=cache,
        analytics=analytics,
        time_port=time_port,
        config=config,
    )
    return ResolveOutput(outcome=resolver.resolve(inp.full_url, inp.path_only, inp.site_id))


def run(
    inp: CreateRuleInput | UpdateRuleInput | DeleteRuleInput | ResolveInput,
    *,
    store: RuleStorePort,
    cache: RedirectCachePort | None = None,
    analytics: AnalyticsRecorderPort | None = None,
    time_port: TimePort | None = None,
    config: RedirectConfig | None = None,
) -> RuleOperationOutput | ResolveOutput:
    """
    Main entry point for the redirects component.

    Dispatches to appropriate handler based on input type.
    """
    if isinstance(inp, CreateRuleInput):
        return run_create(inp, store=store, cache=cache, time_port=time_port, config=config)
    elif isinstance(inp, UpdateRuleInput):
        return run_update(inp, store=store, cache=cache, time_port=time_port, config=config)
    elif isinstance(inp, DeleteRuleInput):
        return run_delete(inp, store=store, cache=cache, time_port=time_port, config=config)
    elif isinstance(inp, ResolveInput):
        return run_resolve(
            inp,
            store=store,
            cache=cache,
            analytics=analytics,
            time_port=time_port,
            config=config,
        )
    else:
        raise ValueError(f"Unknown input type: {type(inp)}")
