"""
Public Redirects Routes.

Not-found fallback: any GET no other route handled is resolved against the
redirect rules.

Key behaviors:
- 3xx with Location and configured headers when a rule matches
- 410 Gone for gone rules
- 404 otherwise
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import RedirectResponse

from redirect_manager.api.deps import get_resolver
from redirect_manager.components.redirects import (
    NoMatch,
    RedirectResolver,
    ResolvedRedirect,
)
from redirect_manager.components.redirects.models import GONE_STATUS_CODE

router = APIRouter()

SITE_HEADER = "X-Site-Id"


def _site_id(request: Request) -> int | None:
    raw = request.headers.get(SITE_HEADER)
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def to_response(outcome: ResolvedRedirect) -> Response:
    headers = dict(outcome.headers)
    if outcome.status_code == GONE_STATUS_CODE:
        return Response(status_code=GONE_STATUS_CODE, headers=headers)
    return RedirectResponse(url=outcome.destination, status_code=outcome.status_code, headers=headers)


@router.get("/{path:path}")
def handle_not_found(
    path: str,
    request: Request,
    resolver: RedirectResolver = Depends(get_resolver),
) -> Response:
    """Resolve a request no other route served."""
    path_only = request.url.path
    if request.url.query:
        path_only = f"{path_only}?{request.url.query}"

    context = {
        "referrer": request.headers.get("referer"),
        "ip": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
    }
    outcome = resolver.resolve(str(request.url), path_only, site_id=_site_id(request), context=context)

    if isinstance(outcome, NoMatch):
        raise HTTPException(status_code=404, detail="Not found")
    return to_response(outcome)
