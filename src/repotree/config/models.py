from datetime import timedelta
from typing import Literal

from pydantic import BaseModel, Field, field_validator

_DEFAULT_BASE_URL = "https://api.github.com"


class GitHubConfig(BaseModel):
    base_url: str = _DEFAULT_BASE_URL
    token: str | None = None
    token_env: str = "GITHUB_TOKEN"
    timeout: float = Field(default=30.0, gt=0)
    user_agent: str = "repotree"

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"base_url must use http or https, got {v!r}")
        return v.rstrip("/")


class CacheConfig(BaseModel):
    directory: str = "~/.repotree/cache"
    ttl: timedelta = timedelta(minutes=10)
    max_age: timedelta = timedelta(days=30)

    @field_validator("ttl", "max_age")
    @classmethod
    def validate_positive(cls, v: timedelta) -> timedelta:
        if v <= timedelta(0):
            raise ValueError("duration must be positive")
        return v


class SyncConfig(BaseModel):
    max_concurrency: int = Field(default=4, gt=0)
    include_forks: bool = True
    include_archived: bool = True


class RepoTreeConfig(BaseModel):
    github: GitHubConfig = Field(default_factory=GitHubConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    log_level: Literal["debug", "info", "warn", "error"] = "info"
    log_format: Literal["text", "json"] = "text"
