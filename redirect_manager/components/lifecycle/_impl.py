"""
LifecycleManager - automatic redirects when content URIs change.

The host calls on_before_content_save() before a save overwrites the stored
URI, then on_after_content_save() once the new URI is persisted.

Transitions, evaluated in order when the URI changed to a non-empty value:
1. Immediate undo: the newest auto rule for the content is the exact
   inverse (new -> old) and younger than the undo window -> delete it, stop
2. Going backwards: the new URI is already the source of an auto rule for
   the content -> delete every auto rule for the content, continue
3. Forward: create old -> new (exact, 301) unless it would close a loop

Stashed URIs live only between the two hooks of a single save.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta

from redirect_manager.components.redirects import (
    CreationType,
    MatchStrategy,
    RedirectRule,
    RedirectService,
    RedirectValidationError,
    RuleStorePort,
    SourceScope,
    StoreError,
    TimePort,
    normalize_url,
    uri_to_path,
)
from redirect_manager.components.redirects.models import DEFAULT_SOURCE_PLUGIN

from .models import LifecycleAction, LifecycleOutcome
from .ports import ContentUriPort

logger = logging.getLogger(__name__)

# --- Configuration ---


@dataclass(frozen=True)
class LifecycleConfig:
    """Auto-redirect configuration from rules."""

    enabled: bool = True
    undo_window_minutes: int = 60  # 0 = undo regardless of age
    status_code: int = 301
    source_plugin: str = DEFAULT_SOURCE_PLUGIN


DEFAULT_CONFIG = LifecycleConfig()

UNDO_NOTICE = "Slug change undone - previous redirect removed."
LOOP_MESSAGE = (
    "Entry saved, but automatic redirect was not created because it would create "
    "a circular redirect loop. Please create a different redirect manually or change the slug."
)


def _same_url(a: str, b: str) -> bool:
    return normalize_url(a).lower() == normalize_url(b).lower()


class LifecycleManager:
    """
    Content URI change state machine.

    State is per (content_id, site_id).
    """

    def __init__(
        self,
        store: RuleStorePort,
        service: RedirectService,
        time_port: TimePort | None = None,
        config: LifecycleConfig | None = None,
        content_uris: ContentUriPort | None = None,
    ) -> None:
        self._store = store
        self._service = service
        self._time_port = time_port
        self._config = config or DEFAULT_CONFIG
        self._content_uris = content_uris
        self._stashed: dict[tuple[int, int | None], str] = {}
        self._lock = threading.Lock()

    def _now(self) -> datetime:
        if self._time_port:
            return self._time_port.now_utc()
        from redirect_manager.adapters.clock import SystemClock

        return SystemClock().now_utc()

    # --- Hooks ---

    def on_before_content_save(
        self,
        content_id: int,
        site_id: int | None,
        current_uri: str | None = None,
    ) -> str | None:
        """
        Stash the content's persisted URI before it is overwritten.

        current_uri is the stored URI; when omitted it is read through the
        ContentUriPort. Returns the stashed URI, if any.
        """
        if current_uri is None and self._content_uris is not None:
            current_uri = self._content_uris.get_persisted_uri(content_id, site_id)

        if not current_uri:
            return None

        with self._lock:
            self._stashed[(content_id, site_id)] = current_uri
        logger.info(
            "Stashed content URI content_id=%s site_id=%s uri=%s",
            content_id,
            site_id,
            current_uri,
        )
        return current_uri

    def on_after_content_save(
        self,
        content_id: int,
        site_id: int | None,
        new_uri: str | None,
    ) -> LifecycleOutcome:
        """Compare the stashed URI with the saved one and update auto rules."""
        with self._lock:
            old_uri = self._stashed.pop((content_id, site_id), None)

        if old_uri is None:
            logger.debug("No stashed URI for content_id=%s site_id=%s", content_id, site_id)
            return LifecycleOutcome(action=LifecycleAction.NONE)

        if not self._config.enabled:
            return LifecycleOutcome(action=LifecycleAction.SKIPPED)

        if not new_uri or old_uri == new_uri:
            logger.debug("URI unchanged for content_id=%s, no redirect needed", content_id)
            return LifecycleOutcome(action=LifecycleAction.NONE)

        logger.info(
            "Content URI changed content_id=%s site_id=%s %s -> %s",
            content_id,
            site_id,
            old_uri,
            new_uri,
        )
        return self._handle_change(content_id, site_id, uri_to_path(old_uri), uri_to_path(new_uri))

    # --- Transitions ---

    def _handle_change(
        self,
        content_id: int,
        site_id: int | None,
        old_url: str,
        new_url: str,
    ) -> LifecycleOutcome:
        history = self._store.list_by_content(content_id, site_id, CreationType.AUTO_URI_CHANGE)

        # 1. Immediate undo
        if history:
            latest = history[0]
            if _same_url(latest.source_normalized, new_url) and _same_url(
                latest.destination, old_url
            ):
                if self._undo(latest):
                    return LifecycleOutcome(
                        action=LifecycleAction.UNDO,
                        deleted_rule_ids=(latest.id,) if latest.id is not None else (),
                        notices=[UNDO_NOTICE],
                    )

        # 2. Going backwards in the chain
        notices: list[str] = []
        deleted: tuple[int, ...] = ()
        if any(_same_url(rule.source_normalized, new_url) for rule in history):
            ids = tuple(rule.id for rule in history if rule.id is not None)
            self._service.delete_many(ids)
            deleted = ids
            for rule in history:
                logger.info(
                    "Deleted auto-redirect id=%s %s -> %s: content returned to a previous URL",
                    rule.id,
                    rule.source_normalized,
                    rule.destination,
                )
            notices.append(
                f"{len(ids)} outdated automatic redirect(s) removed because "
                "entry returned to a previous URL."
            )

        # 3. Forward progression
        if self._service.would_create_loop(old_url, new_url, site_id=site_id):
            logger.error(
                "Cannot create redirect for content_id=%s: %s -> %s would create a loop",
                content_id,
                old_url,
                new_url,
            )
            return LifecycleOutcome(
                action=LifecycleAction.LOOP_BLOCKED,
                deleted_rule_ids=deleted,
                errors=[RedirectValidationError("redirect_loop", LOOP_MESSAGE, "destination")],
                notices=notices,
            )

        try:
            rule, errors = self._service.create(
                old_url,
                new_url,
                match_strategy=MatchStrategy.EXACT,
                source_scope=SourceScope.PATH_ONLY,
                status_code=self._config.status_code,
                site_id=site_id,
                enabled=True,
                priority=0,
                creation_type=CreationType.AUTO_URI_CHANGE,
                origin_content_id=content_id,
                source_plugin=self._config.source_plugin,
            )
        except StoreError as e:
            logger.error("Failed to save auto-redirect %s -> %s: %s", old_url, new_url, e)
            errors = [RedirectValidationError("store_error", "Could not save redirect")]
            rule = None

        if errors:
            return LifecycleOutcome(
                action=LifecycleAction.REJECTED,
                deleted_rule_ids=deleted,
                errors=errors,
                notices=notices,
            )

        logger.info(
            "Auto-created redirect for URI change content_id=%s site_id=%s %s -> %s",
            content_id,
            site_id,
            old_url,
            new_url,
        )
        notices.append(f"Redirect created: {old_url} → {new_url}")
        return LifecycleOutcome(
            action=LifecycleAction.CREATED,
            rule=rule,
            deleted_rule_ids=deleted,
            notices=notices,
        )

    def _within_undo_window(self, rule: RedirectRule) -> bool:
        window = self._config.undo_window_minutes
        if window == 0:
            return True
        if rule.created_at is None:
            return False
        age = self._now() - rule.created_at
        logger.debug("Undo check: reverse redirect is %s old (window %s min)", age, window)
        return age < timedelta(minutes=window)

    def _undo(self, rule: RedirectRule) -> bool:
        if rule.id is None or not self._within_undo_window(rule):
            return False
        self._service.delete(rule.id)
        logger.info(
            "Immediate undo detected - deleted reverse redirect %s -> %s",
            rule.source_normalized,
            rule.destination,
        )
        return True

    def handle_undo(
        self,
        old_url: str,
        new_url: str,
        site_id: int | None,
        creation_type: CreationType | str = CreationType.AUTO_URI_CHANGE,
        source_plugin: str | None = None,
    ) -> bool:
        """
        Flip-flop detection for other modules that auto-create rules.

        Deletes the newest new -> old rule of the given origin if it is
        inside the undo window. Returns True when an undo was handled.
        """
        reverse = self._store.find_reverse(
            normalize_url(new_url),
            normalize_url(old_url),
            site_id,
            CreationType(creation_type),
            source_plugin or self._config.source_plugin,
        )
        if reverse is None:
            return False
        return self._undo(reverse)

    def pending(self) -> dict[tuple[int, int | None], str]:
        """Snapshot of stashed URIs (saves in flight)."""
        with self._lock:
            return dict(self._stashed)
