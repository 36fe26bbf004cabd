import logging
import os
from functools import lru_cache
from pathlib import Path

from fastapi import Depends

from redirect_manager.adapters.cache import (
    FileRedirectCache,
    InMemoryRedirectCache,
    NullRedirectCache,
)
from redirect_manager.adapters.clock import SystemClock
from redirect_manager.adapters.sqlite.repos import SQLiteNotFoundStore, SQLiteRuleStore
from redirect_manager.components.analytics import (
    AnalyticsConfig,
    NotFoundRecorder,
    NullAnalyticsRecorder,
)
from redirect_manager.components.lifecycle import LifecycleConfig, LifecycleManager
from redirect_manager.components.redirects import (
    AnalyticsRecorderPort,
    RedirectCachePort,
    RedirectConfig,
    RedirectResolver,
    RedirectService,
    RuleStorePort,
)
from redirect_manager.rules.loader import load_rules
from redirect_manager.rules.models import Rules

logger = logging.getLogger(__name__)

PACKAGE_ROOT = Path(__file__).resolve().parents[2]


# --- Settings ---
class Settings:
    def __init__(self) -> None:
        self.base_dir = Path(os.getcwd())
        self.data_dir = Path(os.environ.get("REDIRECTS_DATA_DIR", "./data"))
        self.db_path = str(self.data_dir / "redirects.db")
        self.rules_path = Path(
            os.environ.get("REDIRECTS_RULES_PATH", str(self.base_dir / "rules.yaml"))
        )
        self.migrations_dir = os.environ.get(
            "REDIRECTS_MIGRATIONS_DIR", str(PACKAGE_ROOT / "migrations")
        )
        self.ip_hash_salt = os.environ.get("REDIRECTS_IP_HASH_SALT")


@lru_cache
def get_settings() -> Settings:
    return Settings()


# --- Rules ---
@lru_cache
def get_rules() -> Rules:
    return load_rules(get_settings().rules_path)


def redirect_config_from_rules(rules: Rules) -> RedirectConfig:
    r = rules.redirects
    return RedirectConfig(
        default_status_code=r.default_status_code,
        max_chain_depth=r.max_chain_depth,
        max_regex_length=r.max_regex_length,
        exclude_patterns=tuple(r.exclude_patterns),
        preserve_query_string=r.preserve_query_string,
        set_no_cache_headers=r.set_no_cache_headers,
        additional_headers=tuple((h.name, h.value) for h in r.additional_headers),
        cache_enabled=rules.cache.enabled,
        cache_ttl_seconds=rules.cache.ttl_seconds,
        default_base_url=rules.sites.default_base_url,
        site_base_urls={site_id: s.base_url for site_id, s in rules.sites.sites.items()},
    )


def lifecycle_config_from_rules(rules: Rules) -> LifecycleConfig:
    return LifecycleConfig(
        enabled=rules.redirects.auto_create_redirects,
        undo_window_minutes=rules.redirects.undo_window_minutes,
    )


def analytics_config_from_rules(rules: Rules, salt: str | None = None) -> AnalyticsConfig:
    a = rules.analytics
    return AnalyticsConfig(
        enabled=a.enabled,
        strip_query_string=a.strip_query_string,
        anonymize_ip=a.anonymize_ip,
        ip_hash_salt=salt or a.ip_hash_salt,
        retention_days=a.retention_days,
        max_records=a.max_records,
        auto_trim=a.auto_trim,
    )


def get_redirect_config(rules: Rules = Depends(get_rules)) -> RedirectConfig:
    return redirect_config_from_rules(rules)


# --- Stores ---
def get_rule_store(settings: Settings = Depends(get_settings)) -> RuleStorePort:
    return SQLiteRuleStore(settings.db_path)


def get_not_found_store(settings: Settings = Depends(get_settings)) -> SQLiteNotFoundStore:
    return SQLiteNotFoundStore(settings.db_path)


@lru_cache
def get_redirect_cache() -> RedirectCachePort:
    """Process-wide cache; in-memory entries must outlive a single request."""
    cache_rules = get_rules().cache
    if not cache_rules.enabled:
        return NullRedirectCache()
    if cache_rules.storage == "file":
        return FileRedirectCache(cache_rules.path, time_port=SystemClock())
    return InMemoryRedirectCache(time_port=SystemClock())


# --- Component Services ---
def get_redirect_service(
    store: RuleStorePort = Depends(get_rule_store),
    cache: RedirectCachePort = Depends(get_redirect_cache),
    config: RedirectConfig = Depends(get_redirect_config),
) -> RedirectService:
    """Get redirect component service."""
    return RedirectService(store=store, cache=cache, time_port=SystemClock(), config=config)


def get_not_found_recorder(
    store: SQLiteNotFoundStore = Depends(get_not_found_store),
    rules: Rules = Depends(get_rules),
    settings: Settings = Depends(get_settings),
) -> NotFoundRecorder:
    """Recorder with retention settings; also used for cleanup runs."""
    config = analytics_config_from_rules(rules, settings.ip_hash_salt)
    return NotFoundRecorder(store=store, time_port=SystemClock(), config=config)


def get_analytics_recorder(
    recorder: NotFoundRecorder = Depends(get_not_found_recorder),
    rules: Rules = Depends(get_rules),
) -> AnalyticsRecorderPort:
    if not rules.analytics.enabled:
        return NullAnalyticsRecorder()
    return recorder


def get_resolver(
    store: RuleStorePort = Depends(get_rule_store),
    cache: RedirectCachePort = Depends(get_redirect_cache),
    analytics: AnalyticsRecorderPort = Depends(get_analytics_recorder),
    config: RedirectConfig = Depends(get_redirect_config),
) -> RedirectResolver:
    """Get not-found resolver."""
    return RedirectResolver(
        store=store,
        cache=cache,
        analytics=analytics,
        time_port=SystemClock(),
        config=config,
    )


@lru_cache
def get_lifecycle_manager() -> LifecycleManager:
    """Single manager so URIs stashed by before-save survive until after-save."""
    settings = get_settings()
    rules = get_rules()
    store = SQLiteRuleStore(settings.db_path)
    service = RedirectService(
        store=store,
        cache=get_redirect_cache(),
        time_port=SystemClock(),
        config=redirect_config_from_rules(rules),
    )
    return LifecycleManager(
        store=store,
        service=service,
        time_port=SystemClock(),
        config=lifecycle_config_from_rules(rules),
    )
