"""
Tests for LifecycleManager.

Content URI changes create, undo and collapse automatic redirects.
"""

from __future__ import annotations

import pytest

from redirect_manager.adapters.clock import FrozenClock
from redirect_manager.adapters.memory import InMemoryRuleStore
from redirect_manager.components.lifecycle import (
    LOOP_MESSAGE,
    UNDO_NOTICE,
    LifecycleAction,
    LifecycleConfig,
    LifecycleManager,
)
from redirect_manager.components.redirects import (
    CreationType,
    MatchStrategy,
    RedirectService,
    SourceScope,
)


class StaticContentUris:
    """ContentUriPort backed by a dict."""

    def __init__(self, uris: dict[tuple[int, int | None], str]) -> None:
        self._uris = uris

    def get_persisted_uri(self, content_id: int, site_id: int | None) -> str | None:
        return self._uris.get((content_id, site_id))


@pytest.fixture
def manager(
    store: InMemoryRuleStore,
    service: RedirectService,
    clock: FrozenClock,
) -> LifecycleManager:
    return LifecycleManager(store=store, service=service, time_port=clock)


def save(manager: LifecycleManager, content_id: int, old: str, new: str, site_id: int | None = None):
    manager.on_before_content_save(content_id, site_id, old)
    return manager.on_after_content_save(content_id, site_id, new)


def auto_rules(store: InMemoryRuleStore, content_id: int = 1, site_id: int | None = None):
    return store.list_by_content(content_id, site_id, CreationType.AUTO_URI_CHANGE)


class TestForward:
    """A changed URI creates an automatic redirect."""

    def test_creates_auto_rule(self, manager: LifecycleManager, store: InMemoryRuleStore) -> None:
        outcome = save(manager, 1, "x", "y")

        assert outcome.action is LifecycleAction.CREATED
        assert outcome.success is True
        rule = outcome.rule
        assert rule is not None
        assert (rule.source_normalized, rule.destination) == ("/x", "/y")
        assert rule.creation_type is CreationType.AUTO_URI_CHANGE
        assert rule.match_strategy is MatchStrategy.EXACT
        assert rule.source_scope is SourceScope.PATH_ONLY
        assert rule.status_code == 301
        assert rule.priority == 0
        assert rule.enabled is True
        assert rule.origin_content_id == 1
        assert len(auto_rules(store)) == 1
        assert outcome.notices == ["Redirect created: /x → /y"]

    def test_unchanged_uri(self, manager: LifecycleManager, store: InMemoryRuleStore) -> None:
        outcome = save(manager, 1, "x", "x")

        assert outcome.action is LifecycleAction.NONE
        assert store.list_all() == []

    def test_empty_new_uri(self, manager: LifecycleManager, store: InMemoryRuleStore) -> None:
        outcome = save(manager, 1, "x", "")

        assert outcome.action is LifecycleAction.NONE
        assert store.list_all() == []

    def test_nothing_stashed(self, manager: LifecycleManager) -> None:
        outcome = manager.on_after_content_save(1, None, "y")

        assert outcome.action is LifecycleAction.NONE

    def test_new_content_has_no_stash(self, manager: LifecycleManager) -> None:
        assert manager.on_before_content_save(1, None, None) is None
        assert manager.pending() == {}

    def test_stash_cleared_after_processing(self, manager: LifecycleManager) -> None:
        save(manager, 1, "x", "y")

        assert manager.pending() == {}
        assert manager.on_after_content_save(1, None, "z").action is LifecycleAction.NONE

    def test_state_is_per_site(self, manager: LifecycleManager, store: InMemoryRuleStore) -> None:
        manager.on_before_content_save(1, 1, "x")

        outcome = manager.on_after_content_save(1, 2, "y")

        assert outcome.action is LifecycleAction.NONE
        assert manager.pending() == {(1, 1): "x"}

    def test_persisted_uri_from_port(
        self, store: InMemoryRuleStore, service: RedirectService, clock: FrozenClock
    ) -> None:
        manager = LifecycleManager(
            store=store,
            service=service,
            time_port=clock,
            content_uris=StaticContentUris({(5, 1): "old-uri"}),
        )

        assert manager.on_before_content_save(5, 1) == "old-uri"
        outcome = manager.on_after_content_save(5, 1, "new-uri")

        assert outcome.action is LifecycleAction.CREATED
        assert outcome.rule is not None
        assert outcome.rule.site_id == 1

    def test_disabled(self, store: InMemoryRuleStore, service: RedirectService) -> None:
        manager = LifecycleManager(store=store, service=service, config=LifecycleConfig(enabled=False))

        outcome = save(manager, 1, "x", "y")

        assert outcome.action is LifecycleAction.SKIPPED
        assert manager.pending() == {}
        assert store.list_all() == []


class TestUndo:
    """A quick A -> B -> A edit leaves no redirects."""

    def test_immediate_undo(
        self, manager: LifecycleManager, store: InMemoryRuleStore, clock: FrozenClock
    ) -> None:
        created = save(manager, 1, "x", "y")
        assert created.rule is not None
        clock.advance(minutes=10)

        outcome = save(manager, 1, "y", "x")

        assert outcome.action is LifecycleAction.UNDO
        assert outcome.deleted_rule_ids == (created.rule.id,)
        assert outcome.notices == [UNDO_NOTICE]
        assert auto_rules(store) == []

    def test_outside_window_collapses_and_recreates(
        self, manager: LifecycleManager, store: InMemoryRuleStore, clock: FrozenClock
    ) -> None:
        created = save(manager, 1, "x", "y")
        assert created.rule is not None
        clock.advance(minutes=61)

        outcome = save(manager, 1, "y", "x")

        assert outcome.action is LifecycleAction.CREATED
        assert outcome.deleted_rule_ids == (created.rule.id,)
        remaining = auto_rules(store)
        assert [(r.source_normalized, r.destination) for r in remaining] == [("/y", "/x")]

    def test_zero_window_always_undoes(
        self, store: InMemoryRuleStore, service: RedirectService, clock: FrozenClock
    ) -> None:
        manager = LifecycleManager(
            store=store,
            service=service,
            time_port=clock,
            config=LifecycleConfig(undo_window_minutes=0),
        )
        save(manager, 1, "x", "y")
        clock.advance(days=30)

        outcome = save(manager, 1, "y", "x")

        assert outcome.action is LifecycleAction.UNDO
        assert auto_rules(store) == []

    def test_undo_only_for_latest_rule(
        self, manager: LifecycleManager, store: InMemoryRuleStore, clock: FrozenClock
    ) -> None:
        save(manager, 1, "x", "y")
        clock.advance(minutes=1)
        save(manager, 1, "y", "z")
        clock.advance(minutes=1)

        outcome = save(manager, 1, "z", "y")

        assert outcome.action is LifecycleAction.UNDO
        assert [(r.source_normalized, r.destination) for r in auto_rules(store)] == [("/x", "/y")]

    def test_handle_undo_for_other_modules(
        self, manager: LifecycleManager, service: RedirectService, store: InMemoryRuleStore
    ) -> None:
        service.create("/b", "/a", creation_type=CreationType.AUTO_URI_CHANGE)

        assert manager.handle_undo("/a", "/b", None) is True
        assert store.list_all() == []
        assert manager.handle_undo("/a", "/b", None) is False

    def test_handle_undo_ignores_case(
        self, manager: LifecycleManager, service: RedirectService, store: InMemoryRuleStore
    ) -> None:
        service.create("/new", "/old", creation_type=CreationType.AUTO_URI_CHANGE)

        assert manager.handle_undo("/Old", "/NEW", None) is True
        assert store.list_all() == []

    def test_handle_undo_respects_plugin(
        self, manager: LifecycleManager, service: RedirectService
    ) -> None:
        service.create(
            "/b", "/a", creation_type=CreationType.AUTO_URI_CHANGE, source_plugin="other-module"
        )

        assert manager.handle_undo("/a", "/b", None) is False
        assert manager.handle_undo("/a", "/b", None, source_plugin="other-module") is True


class TestBackwards:
    """Returning to an earlier URI collapses the whole chain."""

    def test_chain_collapses(
        self, manager: LifecycleManager, store: InMemoryRuleStore, clock: FrozenClock
    ) -> None:
        first = save(manager, 1, "x", "y")
        clock.advance(minutes=1)
        second = save(manager, 1, "y", "z")
        clock.advance(minutes=1)
        assert first.rule is not None and second.rule is not None

        outcome = save(manager, 1, "z", "x")

        assert outcome.action is LifecycleAction.CREATED
        assert set(outcome.deleted_rule_ids) == {first.rule.id, second.rule.id}
        assert len(outcome.notices) == 2
        assert [(r.source_normalized, r.destination) for r in auto_rules(store)] == [("/z", "/x")]

    def test_other_content_untouched(
        self, manager: LifecycleManager, store: InMemoryRuleStore, clock: FrozenClock
    ) -> None:
        save(manager, 2, "other", "other-2")
        save(manager, 1, "x", "y")
        clock.advance(minutes=1)
        save(manager, 1, "y", "z")
        clock.advance(minutes=1)

        save(manager, 1, "z", "x")

        assert len(auto_rules(store, content_id=2)) == 1

    def test_manual_rules_survive(
        self,
        manager: LifecycleManager,
        service: RedirectService,
        store: InMemoryRuleStore,
        clock: FrozenClock,
    ) -> None:
        manual, _ = service.create("/legacy", "/x")
        assert manual is not None
        save(manager, 1, "x", "y")
        clock.advance(minutes=1)
        save(manager, 1, "y", "z")
        clock.advance(minutes=1)

        save(manager, 1, "z", "x")

        assert store.get_by_id(manual.id) is not None


class TestRejected:
    """Blocked redirects never fail the save itself."""

    def test_loop_blocked(
        self, manager: LifecycleManager, service: RedirectService, store: InMemoryRuleStore
    ) -> None:
        service.create("/y", "/x")

        outcome = save(manager, 1, "x", "y")

        assert outcome.action is LifecycleAction.LOOP_BLOCKED
        assert outcome.success is False
        assert [e.code for e in outcome.errors] == ["redirect_loop"]
        assert outcome.errors[0].message == LOOP_MESSAGE
        assert len(store.list_all()) == 1

    def test_existing_source_rejected(
        self, manager: LifecycleManager, service: RedirectService
    ) -> None:
        service.create("/x", "/elsewhere")

        outcome = save(manager, 1, "x", "y")

        assert outcome.action is LifecycleAction.REJECTED
        assert [e.code for e in outcome.errors] == ["source_exists"]
