"""
Admin Redirects API Routes.

Admin endpoints for managing redirect rules.

Write failures map to:
- 400: validation errors (including loops and duplicate sources)
- 404: unknown rule
- 409: concurrent duplicate rejected by the store
- 503: any other store failure
"""

from __future__ import annotations

import logging
from typing import Any, NoReturn

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from redirect_manager.api.deps import get_redirect_config, get_redirect_service, get_rule_store
from redirect_manager.components.redirects import (
    DuplicateRuleError,
    NoMatch,
    RedirectConfig,
    RedirectResolver,
    RedirectRule,
    RedirectService,
    RedirectValidationError,
    RuleStorePort,
    StoreError,
)

logger = logging.getLogger(__name__)

router = APIRouter()


class CreateRedirectRequest(BaseModel):
    """Request to create a redirect rule."""

    source_pattern: str = Field(..., description="Source path or URL (e.g., /old-page)")
    destination: str = Field(..., description="Destination path or URL")
    match_strategy: str = Field("exact", description="exact, regex, wildcard or prefix")
    source_scope: str = Field("path-only", description="path-only or full-url")
    status_code: int | None = Field(None, description="301, 302, 303, 307, 308 or 410")
    site_id: int | None = Field(None, description="Site, or null for all sites")
    enabled: bool = True
    priority: int = Field(0, description="Lower sorts first")
    notes: str | None = Field(None, description="Admin notes")


class UpdateRedirectRequest(BaseModel):
    """Request to update a redirect rule."""

    source_pattern: str | None = None
    destination: str | None = None
    match_strategy: str | None = None
    source_scope: str | None = None
    status_code: int | None = None
    site_id: int | None = None
    enabled: bool | None = None
    priority: int | None = None
    notes: str | None = None


class BulkDeleteRequest(BaseModel):
    ids: list[int] = Field(..., min_length=1)


class RedirectRuleResponse(BaseModel):
    """Redirect rule response."""

    id: int
    source_pattern: str
    source_normalized: str
    destination: str
    site_id: int | None = None
    source_scope: str
    match_strategy: str
    status_code: int
    enabled: bool
    priority: int
    creation_type: str
    origin_content_id: int | None = None
    source_plugin: str
    hit_count: int
    last_hit_at: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    notes: str | None = None


class RedirectListResponse(BaseModel):
    """List of redirect rules response."""

    redirects: list[RedirectRuleResponse]
    count: int


class ValidationErrorResponse(BaseModel):
    """Validation error response."""

    errors: list[dict[str, Any]]


# --- Helper Functions ---


def _rule_to_response(rule: RedirectRule) -> RedirectRuleResponse:
    return RedirectRuleResponse(**rule.to_dict())


def serialize_errors(
    errors: list[RedirectValidationError],
) -> list[dict[str, Any]]:
    """Serialize validation errors."""
    return [
        {
            "code": e.code,
            "message": e.message,
            "field": e.field,
        }
        for e in errors
    ]


def raise_store_error(e: StoreError) -> NoReturn:
    if isinstance(e, DuplicateRuleError):
        raise HTTPException(status_code=409, detail=str(e)) from e
    logger.error("Redirect store failure: %s", e)
    raise HTTPException(status_code=503, detail="Redirect store unavailable") from e


# --- Routes ---


@router.post(
    "/redirects",
    response_model=RedirectRuleResponse,
    responses={400: {"model": ValidationErrorResponse}},
)
def create_redirect(
    request: CreateRedirectRequest,
    service: RedirectService = Depends(get_redirect_service),
) -> RedirectRuleResponse:
    """Create a new redirect rule. Loops and duplicates are rejected."""
    try:
        rule, errors = service.create(
            request.source_pattern,
            request.destination,
            match_strategy=request.match_strategy,
            source_scope=request.source_scope,
            status_code=request.status_code,
            site_id=request.site_id,
            enabled=request.enabled,
            priority=request.priority,
            notes=request.notes,
        )
    except StoreError as e:
        raise_store_error(e)

    if errors:
        raise HTTPException(
            status_code=400,
            detail={"errors": serialize_errors(errors)},
        )

    assert rule is not None
    return _rule_to_response(rule)


@router.get("/redirects", response_model=RedirectListResponse)
def list_redirects(
    site_id: int | None = None,
    service: RedirectService = Depends(get_redirect_service),
) -> RedirectListResponse:
    """List redirect rules, optionally for a single site."""
    rules = service.list_all()
    if site_id is not None:
        rules = [r for r in rules if r.site_id in (site_id, None)]
    return RedirectListResponse(
        redirects=[_rule_to_response(r) for r in rules],
        count=len(rules),
    )


@router.get("/redirects/resolve/{path:path}")
def resolve_redirect(
    path: str,
    site_id: int | None = None,
    store: RuleStorePort = Depends(get_rule_store),
    config: RedirectConfig = Depends(get_redirect_config),
) -> dict[str, Any]:
    """
    Preview what a not-found request for a path would resolve to.

    Runs without cache or analytics; matched rules still count a hit.
    """
    if not path.startswith("/"):
        path = "/" + path

    resolver = RedirectResolver(store=store, config=config)
    outcome = resolver.resolve(path, path, site_id=site_id)
    if isinstance(outcome, NoMatch):
        raise HTTPException(status_code=404, detail=f"No redirect for this path ({outcome.reason})")

    return {
        "source": path,
        "destination": outcome.destination,
        "status_code": outcome.status_code,
        "rule_id": outcome.rule_id,
        "chain": list(outcome.chain),
        "warning": outcome.warning,
    }


@router.get(
    "/redirects/{rule_id}",
    response_model=RedirectRuleResponse,
    responses={404: {"description": "Redirect not found"}},
)
def get_redirect(
    rule_id: int,
    service: RedirectService = Depends(get_redirect_service),
) -> RedirectRuleResponse:
    """Get a redirect rule by ID."""
    rule = service.get(rule_id)
    if rule is None:
        raise HTTPException(status_code=404, detail="Redirect not found")
    return _rule_to_response(rule)


@router.put(
    "/redirects/{rule_id}",
    response_model=RedirectRuleResponse,
    responses={
        400: {"model": ValidationErrorResponse},
        404: {"description": "Redirect not found"},
    },
)
def update_redirect(
    rule_id: int,
    request: UpdateRedirectRequest,
    service: RedirectService = Depends(get_redirect_service),
) -> RedirectRuleResponse:
    """
    Update a redirect rule.

    Validates same constraints as create.
    """
    updates = request.model_dump(exclude_unset=True)
    if not updates:
        raise HTTPException(status_code=400, detail="No updates provided")

    try:
        rule, errors = service.update(rule_id, updates)
    except StoreError as e:
        raise_store_error(e)

    if errors:
        if any(e.code == "not_found" for e in errors):
            raise HTTPException(status_code=404, detail="Redirect not found")
        raise HTTPException(
            status_code=400,
            detail={"errors": serialize_errors(errors)},
        )

    assert rule is not None
    return _rule_to_response(rule)


@router.delete(
    "/redirects/{rule_id}",
    responses={404: {"description": "Redirect not found"}},
)
def delete_redirect(
    rule_id: int,
    service: RedirectService = Depends(get_redirect_service),
) -> dict[str, bool]:
    """Delete a redirect rule."""
    try:
        result = service.delete(rule_id)
    except StoreError as e:
        raise_store_error(e)
    if not result:
        raise HTTPException(status_code=404, detail="Redirect not found")
    return {"deleted": True}


@router.post("/redirects/bulk-delete")
def bulk_delete_redirects(
    request: BulkDeleteRequest,
    service: RedirectService = Depends(get_redirect_service),
) -> dict[str, int]:
    """Delete several rules; unknown IDs are skipped."""
    try:
        deleted = service.delete_many(request.ids)
    except StoreError as e:
        raise_store_error(e)
    return {"deleted": deleted}


@router.post("/redirects/validate")
def validate_redirects(
    service: RedirectService = Depends(get_redirect_service),
) -> dict[str, Any]:
    """
    Validate all existing rules.

    Returns any rules with validation issues.
    """
    rules = service.list_all()
    results = service.validate_all()

    issues = []
    for rule, errors in results:
        issues.append(
            {
                "redirect_id": rule.id,
                "source_pattern": rule.source_pattern,
                "errors": serialize_errors(errors),
            }
        )

    return {
        "valid": len(issues) == 0,
        "issues": issues,
        "total_checked": len(rules),
    }


@router.post("/redirects/cache/clear")
def clear_redirect_cache(
    service: RedirectService = Depends(get_redirect_service),
) -> dict[str, bool]:
    """Drop every cached resolution."""
    service.clear_cache()
    return {"cleared": True}
