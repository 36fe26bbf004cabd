from __future__ import annotations

from typing import Any

import pytest

from redirect_manager.adapters.cache import InMemoryRedirectCache
from redirect_manager.adapters.clock import FrozenClock
from redirect_manager.adapters.memory import InMemoryNotFoundStore, InMemoryRuleStore
from redirect_manager.components.redirects import RedirectService


class RecordingAnalytics:
    """Analytics recorder that keeps every call."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, bool, dict[str, Any]]] = []

    def record(self, url: str, handled: bool, context: dict[str, Any] | None = None) -> None:
        self.calls.append((url, handled, dict(context or {})))

    @property
    def handled(self) -> list[str]:
        return [url for url, handled, _ in self.calls if handled]

    @property
    def unhandled(self) -> list[str]:
        return [url for url, handled, _ in self.calls if not handled]


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def store() -> InMemoryRuleStore:
    return InMemoryRuleStore()


@pytest.fixture
def cache(clock: FrozenClock) -> InMemoryRedirectCache:
    return InMemoryRedirectCache(time_port=clock)


@pytest.fixture
def analytics() -> RecordingAnalytics:
    return RecordingAnalytics()


@pytest.fixture
def not_found_store() -> InMemoryNotFoundStore:
    return InMemoryNotFoundStore()


@pytest.fixture
def service(
    store: InMemoryRuleStore,
    cache: InMemoryRedirectCache,
    clock: FrozenClock,
) -> RedirectService:
    return RedirectService(store=store, cache=cache, time_port=clock)
