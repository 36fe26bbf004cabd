from pydantic import BaseModel, ConfigDict, Field, field_validator


class HeaderRule(BaseModel):
    name: str = Field(min_length=1)
    value: str


class RedirectsRules(BaseModel):
    auto_create_redirects: bool = True
    undo_window_minutes: int = Field(default=60, ge=0)  # 0 = always undo
    preserve_query_string: bool = False
    set_no_cache_headers: bool = True
    exclude_patterns: list[str] = Field(default_factory=list)
    additional_headers: list[HeaderRule] = Field(default_factory=list)
    max_chain_depth: int = Field(default=10, ge=1)
    max_regex_length: int = Field(default=500, ge=1)
    default_status_code: int = 301

    @field_validator("default_status_code")
    @classmethod
    def _known_status(cls, v: int) -> int:
        if v not in (301, 302, 303, 307, 308, 410):
            raise ValueError(f"unsupported redirect status code {v}")
        return v


class CacheRules(BaseModel):
    enabled: bool = True
    ttl_seconds: int = Field(default=3600, ge=1)
    storage: str = Field(default="memory", pattern="^(memory|file)$")
    path: str = "./data/cache/redirects"


class AnalyticsRules(BaseModel):
    enabled: bool = True
    strip_query_string: bool = True
    anonymize_ip: bool = False
    ip_hash_salt: str | None = None
    retention_days: int = Field(default=30, ge=0)  # 0 = keep forever
    max_records: int = Field(default=1000, ge=1)
    auto_trim: bool = True


class SiteRule(BaseModel):
    base_url: str


class SitesRules(BaseModel):
    default_base_url: str | None = None
    sites: dict[int, SiteRule] = Field(default_factory=dict)


class Rules(BaseModel):
    redirects: RedirectsRules = Field(default_factory=RedirectsRules)
    cache: CacheRules = Field(default_factory=CacheRules)
    analytics: AnalyticsRules = Field(default_factory=AnalyticsRules)
    sites: SitesRules = Field(default_factory=SitesRules)

    model_config = ConfigDict(extra="forbid")
