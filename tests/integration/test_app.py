"""
End-to-end tests against the assembled application: startup migrations,
SQLite stores and the catch-all redirect route.
"""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from redirect_manager.api import deps
from redirect_manager.api.main import app

PROJECT_RULES = Path(__file__).resolve().parents[2] / "rules.yaml"

CACHED_DEPENDENCIES = (
    deps.get_settings,
    deps.get_rules,
    deps.get_redirect_cache,
    deps.get_lifecycle_manager,
)


@pytest.fixture
def client(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[TestClient]:
    monkeypatch.setenv("REDIRECTS_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("REDIRECTS_RULES_PATH", str(PROJECT_RULES))
    monkeypatch.setenv("REDIRECTS_IP_HASH_SALT", "test-salt")
    for dependency in CACHED_DEPENDENCIES:
        dependency.cache_clear()

    with TestClient(app) as test_client:
        yield test_client

    for dependency in CACHED_DEPENDENCIES:
        dependency.cache_clear()


def test_health(client: TestClient) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_startup_creates_database(client: TestClient, tmp_path: Path) -> None:
    assert (tmp_path / "data" / "redirects.db").exists()


def test_admin_rule_serves_redirect(client: TestClient) -> None:
    created = client.post(
        "/api/admin/redirects",
        json={"source_pattern": "/old-page", "destination": "/new-page"},
    )
    assert created.status_code == 200

    response = client.get("/old-page", follow_redirects=False)

    assert response.status_code == 301
    assert response.headers["location"] == "/new-page"
    assert client.get(f"/api/admin/redirects/{created.json()['id']}").json()["hit_count"] == 1


def test_unknown_path_is_recorded(client: TestClient) -> None:
    assert client.get("/does-not-exist?x=1", follow_redirects=False).status_code == 404

    items = client.get("/api/admin/not-found").json()["items"]

    assert [(i["url_normalized"], i["handled"]) for i in items] == [("/does-not-exist", False)]


def test_excluded_asset_not_recorded(client: TestClient) -> None:
    assert client.get("/static/app.css").status_code == 404

    assert client.get("/api/admin/not-found").json()["count"] == 0


def test_content_hooks_share_state(client: TestClient) -> None:
    client.post(
        "/api/hooks/content/before-save",
        json={"content_id": 9, "current_uri": "about"},
    )
    after = client.post(
        "/api/hooks/content/after-save",
        json={"content_id": 9, "new_uri": "about-us"},
    )

    assert after.json()["action"] == "created"
    response = client.get("/about", follow_redirects=False)
    assert response.headers["location"] == "/about-us"


def test_missing_rules_file_fails_startup(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("REDIRECTS_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("REDIRECTS_RULES_PATH", str(tmp_path / "missing.yaml"))
    deps.get_settings.cache_clear()

    try:
        with pytest.raises(FileNotFoundError):
            with TestClient(app):
                pass
    finally:
        deps.get_settings.cache_clear()


def test_not_found_retention_endpoints(client: TestClient) -> None:
    client.get("/first-missing")
    client.get("/second-missing")

    assert client.post("/api/admin/not-found/cleanup").json()["deleted"] == 0
    assert client.delete(
        "/api/admin/not-found/entry", params={"url": "/first-missing"}
    ).json() == {"deleted": 1}
    assert client.delete("/api/admin/not-found").json() == {"deleted": 1}
    assert client.get("/api/admin/not-found").json()["count"] == 0
