"""
Tests for RedirectService.

Covers rule validation, uniqueness, write-time loop detection and cache
invalidation on writes.
"""

from __future__ import annotations

import pytest

from redirect_manager.adapters.cache import InMemoryRedirectCache
from redirect_manager.adapters.clock import FrozenClock
from redirect_manager.adapters.memory import InMemoryRuleStore
from redirect_manager.components.redirects import (
    CreationType,
    DuplicateRuleError,
    MatchStrategy,
    RedirectConfig,
    RedirectRule,
    RedirectService,
    SourceScope,
    validate_regex_source,
    validate_rule_fields,
    would_create_loop,
)


def _codes(errors: list) -> list[str]:
    return [e.code for e in errors]


class DuplicateOnSaveStore(InMemoryRuleStore):
    """Store that loses every insert race."""

    def save(self, rule: RedirectRule) -> RedirectRule:
        raise DuplicateRuleError(f"Redirect already exists for {rule.source_normalized}")


# --- Field Validation ---


class TestValidateRuleFields:
    """Field-level validation codes."""

    def test_valid_exact_rule(self) -> None:
        assert validate_rule_fields("/old", "/new", "exact", "path-only", 301) == []

    def test_source_required(self) -> None:
        errors = validate_rule_fields("  ", "/new", "exact", "path-only", 301)
        assert _codes(errors) == ["source_required"]

    def test_destination_required(self) -> None:
        errors = validate_rule_fields("/old", "", "exact", "path-only", 301)
        assert _codes(errors) == ["destination_required"]

    @pytest.mark.parametrize("status", [200, 304, 404, 500])
    def test_invalid_status_code(self, status: int) -> None:
        errors = validate_rule_fields("/old", "/new", "exact", "path-only", status)
        assert _codes(errors) == ["invalid_status_code"]

    @pytest.mark.parametrize("status", [301, 302, 303, 307, 308, 410])
    def test_valid_status_codes(self, status: int) -> None:
        assert validate_rule_fields("/old", "/new", "exact", "path-only", status) == []

    def test_unknown_strategy_and_scope(self) -> None:
        errors = validate_rule_fields("/old", "/new", "fuzzy", "anywhere", 301)
        assert _codes(errors) == ["invalid_match_strategy", "invalid_source_scope"]

    def test_path_only_needs_slash(self) -> None:
        errors = validate_rule_fields("old", "/new", "exact", "path-only", 301)
        assert _codes(errors) == ["source_must_start_with_slash"]

    def test_full_url_needs_scheme(self) -> None:
        errors = validate_rule_fields("/old", "/new", "exact", "full-url", 301)
        assert _codes(errors) == ["source_requires_scheme"]

    def test_full_url_valid(self) -> None:
        assert (
            validate_rule_fields("https://old.example.com/page", "/new", "exact", "full-url", 301)
            == []
        )

    def test_wildcard_needs_asterisk(self) -> None:
        errors = validate_rule_fields("/blog/", "/news/", "wildcard", "path-only", 301)
        assert _codes(errors) == ["wildcard_requires_asterisk"]

    @pytest.mark.parametrize("strategy", ["exact", "prefix"])
    def test_asterisk_needs_wildcard(self, strategy: str) -> None:
        errors = validate_rule_fields("/blog/*", "/news", strategy, "path-only", 301)
        assert _codes(errors) == ["wildcard_not_allowed"]


class TestValidateRegexSource:
    """Regex sources must look like regexes and encode their scope."""

    def test_valid_path_regex(self) -> None:
        assert validate_regex_source(r"^/blog/(\d+)$", SourceScope.PATH_ONLY) == []

    def test_valid_full_url_regex(self) -> None:
        assert validate_regex_source(r"^https?://old\.example\.com/(.*)$", SourceScope.FULL_URL) == []

    def test_requires_metacharacters(self) -> None:
        errors = validate_regex_source("/plain-path", SourceScope.PATH_ONLY)
        assert _codes(errors) == ["regex_requires_metacharacters"]

    def test_path_regex_needs_slash(self) -> None:
        errors = validate_regex_source("^blog.*$", SourceScope.PATH_ONLY)
        assert _codes(errors) == ["regex_scope_mismatch"]

    def test_full_url_regex_needs_scheme(self) -> None:
        errors = validate_regex_source("^/blog/.*", SourceScope.FULL_URL)
        assert _codes(errors) == ["regex_scope_mismatch"]

    def test_invalid_regex(self) -> None:
        errors = validate_regex_source("/blog/(", SourceScope.PATH_ONLY)
        assert _codes(errors) == ["invalid_regex"]

    @pytest.mark.parametrize("pattern", [r"^/(a+)+$", r"/(.*)*", r"/(\w+){2,}x"])
    def test_nested_quantifiers_rejected(self, pattern: str) -> None:
        errors = validate_regex_source(pattern, SourceScope.PATH_ONLY)
        assert "regex_too_complex" in _codes(errors)

    def test_length_limit(self) -> None:
        config = RedirectConfig(max_regex_length=20)
        errors = validate_regex_source("^/" + "a." * 20, SourceScope.PATH_ONLY, config)
        assert _codes(errors) == ["regex_too_complex"]


# --- Create ---


class TestCreate:
    """Rule creation."""

    def test_create_success(self, service: RedirectService, clock: FrozenClock) -> None:
        rule, errors = service.create("/old-page", "/new-page")

        assert errors == []
        assert rule is not None
        assert rule.id == 1
        assert rule.source_normalized == "/old-page"
        assert rule.status_code == 301
        assert rule.match_strategy is MatchStrategy.EXACT
        assert rule.source_scope is SourceScope.PATH_ONLY
        assert rule.creation_type is CreationType.MANUAL
        assert rule.created_at == clock.now_utc()

    def test_source_is_normalized(self, service: RedirectService) -> None:
        rule, _ = service.create("  /old//page ", "/new")

        assert rule is not None
        assert rule.source_pattern == "/old//page"
        assert rule.source_normalized == "/old/page"

    def test_default_status_from_config(self, store: InMemoryRuleStore) -> None:
        service = RedirectService(store=store, config=RedirectConfig(default_status_code=302))

        rule, _ = service.create("/a", "/b")

        assert rule is not None
        assert rule.status_code == 302

    def test_validation_errors_persist_nothing(
        self, service: RedirectService, store: InMemoryRuleStore
    ) -> None:
        rule, errors = service.create("no-slash", "/new")

        assert rule is None
        assert _codes(errors) == ["source_must_start_with_slash"]
        assert store.list_all() == []

    def test_duplicate_source_rejected(self, service: RedirectService) -> None:
        service.create("/old", "/new")

        rule, errors = service.create("/OLD", "/other")

        assert rule is None
        assert _codes(errors) == ["source_exists"]

    def test_same_source_other_strategy_allowed(self, service: RedirectService) -> None:
        service.create("/old", "/new")

        rule, errors = service.create("/old", "/other", match_strategy="prefix")

        assert errors == []
        assert rule is not None

    def test_same_source_other_site_allowed(self, service: RedirectService) -> None:
        service.create("/old", "/new", site_id=1)

        rule, errors = service.create("/old", "/new", site_id=2)

        assert errors == []
        assert rule is not None

    def test_store_race_propagates(self, cache: InMemoryRedirectCache) -> None:
        service = RedirectService(store=DuplicateOnSaveStore(), cache=cache)
        marker = RedirectRule(id=7, source_pattern="/x", source_normalized="/x", destination="/y")
        cache.store("/x", None, marker, 60)

        with pytest.raises(DuplicateRuleError):
            service.create("/a", "/b")

        assert cache.lookup("/x", None) is not None


# --- Loop Detection ---


class TestLoopDetection:
    """Self-loops and transitive loops are never persisted."""

    def test_self_loop_rejected(self, service: RedirectService, store: InMemoryRuleStore) -> None:
        rule, errors = service.create("/a", "/A")

        assert rule is None
        assert _codes(errors) == ["redirect_loop"]
        assert store.list_all() == []

    def test_disabled_self_loop_rejected(self, service: RedirectService) -> None:
        rule, errors = service.create("/a", "/a/", enabled=False)

        # "/a/" is a different path, so only an identical destination loops
        assert errors == []
        rule, errors = service.create("/b", "/b", enabled=False)
        assert rule is None
        assert _codes(errors) == ["redirect_loop"]

    def test_two_rule_loop_rejected(self, service: RedirectService, store: InMemoryRuleStore) -> None:
        service.create("/a", "/b")

        assert service.would_create_loop("/b", "/a") is True
        rule, errors = service.create("/b", "/a")

        assert rule is None
        assert _codes(errors) == ["redirect_loop"]
        assert len(store.list_all()) == 1

    def test_long_loop_rejected(self, service: RedirectService) -> None:
        service.create("/a", "/b")
        service.create("/b", "/c")
        service.create("/c", "/d")

        _, errors = service.create("/d", "/a")

        assert _codes(errors) == ["redirect_loop"]

    def test_chain_without_loop_allowed(self, service: RedirectService) -> None:
        service.create("/a", "/b")

        rule, errors = service.create("/b", "/c")

        assert errors == []
        assert rule is not None

    def test_disabled_rules_do_not_chain(self, service: RedirectService) -> None:
        service.create("/a", "/b", enabled=False)

        assert service.would_create_loop("/b", "/a") is False

    def test_absolute_destination_loops_through_path(self, service: RedirectService) -> None:
        service.create("/a", "https://example.com/b")

        assert service.would_create_loop("/b", "/a") is True

    def test_exclude_rule_id(self, store: InMemoryRuleStore, service: RedirectService) -> None:
        first, _ = service.create("/a", "/b")
        assert first is not None

        assert would_create_loop("/b", "/a", store) is True
        assert would_create_loop("/b", "/a", store, exclude_rule_id=first.id) is False

    def test_depth_bound(self, store: InMemoryRuleStore, service: RedirectService) -> None:
        for i in range(5):
            service.create(f"/p{i}", f"/p{i + 1}")

        assert would_create_loop("/p5", "/p0", store, max_depth=10) is True
        assert would_create_loop("/p5", "/p0", store, max_depth=2) is False


# --- Update ---


class TestUpdate:
    """Rule updates validate the merged rule."""

    def test_update_destination(self, service: RedirectService, clock: FrozenClock) -> None:
        rule, _ = service.create("/a", "/b")
        assert rule is not None
        clock.advance(minutes=5)

        updated, errors = service.update(rule.id, {"destination": "/c"})

        assert errors == []
        assert updated is not None
        assert updated.destination == "/c"
        assert updated.updated_at == clock.now_utc()
        assert updated.created_at != updated.updated_at

    def test_update_not_found(self, service: RedirectService) -> None:
        rule, errors = service.update(999, {"destination": "/c"})

        assert rule is None
        assert _codes(errors) == ["not_found"]

    def test_unknown_field(self, service: RedirectService) -> None:
        rule, _ = service.create("/a", "/b")
        assert rule is not None

        _, errors = service.update(rule.id, {"hit_count": 10})

        assert _codes(errors) == ["invalid_field"]

    def test_merged_validation(self, service: RedirectService) -> None:
        rule, _ = service.create("/a", "/b")
        assert rule is not None

        _, errors = service.update(rule.id, {"match_strategy": "wildcard"})

        assert _codes(errors) == ["wildcard_requires_asterisk"]

    def test_update_into_loop_rejected(self, service: RedirectService) -> None:
        service.create("/a", "/b")
        second, _ = service.create("/b", "/c")
        assert second is not None

        _, errors = service.update(second.id, {"destination": "/a"})

        assert _codes(errors) == ["redirect_loop"]
        assert service.get(second.id).destination == "/c"

    def test_update_into_duplicate_rejected(self, service: RedirectService) -> None:
        service.create("/a", "/x")
        second, _ = service.create("/b", "/y")
        assert second is not None

        _, errors = service.update(second.id, {"source_pattern": "/a"})

        assert _codes(errors) == ["source_exists"]

    def test_update_keeps_own_slot(self, service: RedirectService) -> None:
        rule, _ = service.create("/a", "/b")
        assert rule is not None

        updated, errors = service.update(rule.id, {"priority": 5, "notes": "moved"})

        assert errors == []
        assert updated is not None
        assert updated.priority == 5
        assert updated.notes == "moved"


# --- Delete ---


class TestDelete:
    def test_delete(self, service: RedirectService) -> None:
        rule, _ = service.create("/a", "/b")
        assert rule is not None

        assert service.delete(rule.id) is True
        assert service.get(rule.id) is None
        assert service.delete(rule.id) is False

    def test_delete_many(self, service: RedirectService) -> None:
        first, _ = service.create("/a", "/b")
        second, _ = service.create("/c", "/d")
        assert first is not None and second is not None

        assert service.delete_many([first.id, second.id, 999]) == 2
        assert service.list_all() == []


# --- Cache Invalidation ---


class TestCacheInvalidation:
    """Every committed write clears the cache before returning."""

    @pytest.fixture
    def primed(self, cache: InMemoryRedirectCache) -> InMemoryRedirectCache:
        marker = RedirectRule(id=99, source_pattern="/x", source_normalized="/x", destination="/y")
        cache.store("/x", None, marker, 3600)
        return cache

    def test_create_invalidates(
        self, service: RedirectService, primed: InMemoryRedirectCache
    ) -> None:
        service.create("/a", "/b")
        assert primed.lookup("/x", None) is None

    def test_failed_create_keeps_cache(
        self, service: RedirectService, primed: InMemoryRedirectCache
    ) -> None:
        service.create("/a", "/a")
        assert primed.lookup("/x", None) is not None

    def test_update_invalidates(self, service: RedirectService, cache: InMemoryRedirectCache) -> None:
        rule, _ = service.create("/a", "/b")
        assert rule is not None
        cache.store("/a", None, rule, 3600)

        service.update(rule.id, {"destination": "/c"})

        assert cache.lookup("/a", None) is None

    def test_delete_invalidates(self, service: RedirectService, cache: InMemoryRedirectCache) -> None:
        rule, _ = service.create("/a", "/b")
        assert rule is not None
        cache.store("/a", None, rule, 3600)

        service.delete(rule.id)

        assert cache.lookup("/a", None) is None


# --- Audit ---


class TestValidateAll:
    def test_reports_stored_loops(self, store: InMemoryRuleStore, service: RedirectService) -> None:
        store.save(RedirectRule(id=None, source_pattern="/a", source_normalized="/a", destination="/b"))
        store.save(RedirectRule(id=None, source_pattern="/b", source_normalized="/b", destination="/a"))
        service.create("/c", "/d")

        results = service.validate_all()

        assert sorted(rule.source_normalized for rule, _ in results) == ["/a", "/b"]
        for _, errors in results:
            assert _codes(errors) == ["redirect_loop"]

    def test_clean_rules(self, service: RedirectService) -> None:
        service.create("/a", "/b")
        assert service.validate_all() == []
