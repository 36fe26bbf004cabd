"""
Host Hook Routes.

Entry points the host CMS calls around content saves, and the external 404
notifier used by sibling modules.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from redirect_manager.api.deps import get_lifecycle_manager, get_resolver
from redirect_manager.api.routes.admin_redirects import serialize_errors
from redirect_manager.components.lifecycle import LifecycleManager
from redirect_manager.components.redirects import NoMatch, RedirectResolver

router = APIRouter()


class BeforeSaveRequest(BaseModel):
    content_id: int
    site_id: int | None = None
    current_uri: str | None = Field(None, description="URI persisted before this save")


class AfterSaveRequest(BaseModel):
    content_id: int
    site_id: int | None = None
    new_uri: str | None = None


class External404Request(BaseModel):
    url: str = Field(..., description="Request URL or path that was not found")
    source: str = Field("unknown", description="Reporting module")
    site_id: int | None = None
    referrer: str | None = None
    ip: str | None = None
    user_agent: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


@router.post("/content/before-save")
def content_before_save(
    request: BeforeSaveRequest,
    manager: LifecycleManager = Depends(get_lifecycle_manager),
) -> dict[str, Any]:
    stashed = manager.on_before_content_save(
        request.content_id, request.site_id, request.current_uri
    )
    return {"stashed_uri": stashed}


@router.post("/content/after-save")
def content_after_save(
    request: AfterSaveRequest,
    manager: LifecycleManager = Depends(get_lifecycle_manager),
) -> dict[str, Any]:
    """
    Apply the auto-redirect state machine for a completed save.

    Always 200: a blocked redirect never fails the content save itself.
    """
    outcome = manager.on_after_content_save(request.content_id, request.site_id, request.new_uri)
    return {
        "action": outcome.action.value,
        "rule_id": outcome.rule.id if outcome.rule else None,
        "deleted_rule_ids": list(outcome.deleted_rule_ids),
        "errors": serialize_errors(outcome.errors),
        "notices": outcome.notices,
    }


@router.post("/external-404")
def external_404(
    request: External404Request,
    resolver: RedirectResolver = Depends(get_resolver),
) -> dict[str, Any]:
    """Resolve a 404 raised elsewhere; analytics are tagged with the source."""
    context = {
        **request.metadata,
        "source": request.source,
        "referrer": request.referrer,
        "ip": request.ip,
        "user_agent": request.user_agent,
    }
    outcome = resolver.handle_external_404(request.url, context=context, site_id=request.site_id)
    if isinstance(outcome, NoMatch):
        return {"matched": False, "reason": outcome.reason}

    return {
        "matched": True,
        "destination": outcome.destination,
        "status_code": outcome.status_code,
        "rule_id": outcome.rule_id,
        "headers": dict(outcome.headers),
        "chain": list(outcome.chain),
        "warning": outcome.warning,
    }
