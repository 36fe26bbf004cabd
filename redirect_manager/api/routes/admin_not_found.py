"""
Admin Not-Found Routes.

Aggregated list of not-found URLs, handled or not, plus the retention
endpoints: clear, delete one aggregate, and the periodic cleanup run.
"""

from __future__ import annotations

import logging
from typing import Any, NoReturn

from fastapi import APIRouter, Depends, HTTPException, Query

from redirect_manager.api.deps import get_not_found_recorder, get_not_found_store
from redirect_manager.components.analytics import NotFoundRecorder, NotFoundStorePort
from redirect_manager.components.redirects import StoreError

logger = logging.getLogger(__name__)

router = APIRouter()


def raise_store_error(e: StoreError) -> NoReturn:
    logger.error("Not-found store failure: %s", e)
    raise HTTPException(status_code=503, detail="Not-found store unavailable") from e


@router.get("/not-found")
def list_not_found(
    limit: int = Query(100, ge=1, le=1000),
    handled: bool | None = None,
    site_id: int | None = None,
    store: NotFoundStorePort = Depends(get_not_found_store),
) -> dict[str, Any]:
    records = store.list_recent(limit=limit, handled=handled, site_id=site_id)
    return {
        "items": [
            {
                "url": r.url,
                "url_normalized": r.url_normalized,
                "site_id": r.site_id,
                "count": r.count,
                "handled": r.handled,
                "source_plugin": r.source_plugin,
                "redirect_id": r.redirect_id,
                "referrer": r.referrer,
                "last_seen_at": r.last_seen_at.isoformat(),
            }
            for r in records
        ],
        "count": len(records),
    }


@router.delete("/not-found")
def clear_not_found(
    site_id: int | None = None,
    store: NotFoundStorePort = Depends(get_not_found_store),
) -> dict[str, Any]:
    """Clear every aggregate, or only one site's."""
    try:
        deleted = store.clear(site_id)
    except StoreError as e:
        raise_store_error(e)
    logger.info("Cleared %d not-found record(s) site_id=%s", deleted, site_id)
    return {"deleted": deleted}


@router.delete("/not-found/entry")
def delete_not_found_entry(
    url: str = Query(..., min_length=1),
    site_id: int | None = None,
    store: NotFoundStorePort = Depends(get_not_found_store),
) -> dict[str, Any]:
    """Delete one aggregate by its normalized URL."""
    try:
        deleted = store.delete(url, site_id)
    except StoreError as e:
        raise_store_error(e)
    if not deleted:
        raise HTTPException(status_code=404, detail="Not-found record not found")
    return {"deleted": 1}


@router.post("/not-found/cleanup")
def run_not_found_cleanup(
    recorder: NotFoundRecorder = Depends(get_not_found_recorder),
) -> dict[str, Any]:
    """
    Run the retention pass.

    Meant to be triggered periodically (cron or a scheduler).
    """
    try:
        result = recorder.cleanup()
    except StoreError as e:
        raise_store_error(e)
    return {"expired": result.expired, "trimmed": result.trimmed, "deleted": result.total}
