"""Pydantic models for VCS data."""

from __future__ import annotations

from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field, field_validator


class RepositoryRef(BaseModel):
    """One repository at one ref (branch, tag, or commit sha)."""

    model_config = ConfigDict(frozen=True)

    owner: str = Field(min_length=1)
    name: str = Field(min_length=1)
    ref: str = Field(default="HEAD", min_length=1)

    @field_validator("owner", "name")
    @classmethod
    def validate_component(cls, v: str) -> str:
        if not v.strip() or "/" in v or "@" in v:
            raise ValueError(f"invalid repository component {v!r}")
        return v

    @field_validator("ref")
    @classmethod
    def validate_ref(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("ref cannot be empty or whitespace")
        return v

    @property
    def slug(self) -> str:
        return f"{self.owner}/{self.name}"

    @property
    def key(self) -> str:
        """Cache key. Owner and name are case-insensitive on the host, refs are not."""
        return f"{self.owner.lower()}/{self.name.lower()}@{self.ref}"

    @classmethod
    def parse(cls, text: str, default_ref: str = "HEAD") -> RepositoryRef:
        """Parse ``owner/name`` or ``owner/name@ref``."""
        repo_part, sep, ref = text.partition("@")
        parts = repo_part.split("/")
        if len(parts) != 2 or not parts[0] or not parts[1]:
            raise ValueError(f"Invalid repo identifier '{text}': expected 'owner/repo[@ref]'")
        if sep and not ref:
            raise ValueError(f"Invalid repo identifier '{text}': empty ref after '@'")
        return cls(owner=parts[0], name=parts[1], ref=ref or default_ref)

    def __str__(self) -> str:
        return f"{self.slug}@{self.ref}"


class RepoMetadata(BaseModel):
    """One repository as reported by an account listing."""

    owner: str
    name: str
    full_name: str = Field(description="Full name including owner (e.g. owner/repo)")
    default_branch: str = "main"
    fork: bool = False
    archived: bool = False

    def to_ref(self, ref: str | None = None) -> RepositoryRef:
        return RepositoryRef(owner=self.owner, name=self.name, ref=ref or self.default_branch)


class TransportResponse(BaseModel):
    """A response the transport considers usable (2xx or 304)."""

    model_config = ConfigDict(frozen=True)

    status: int
    body: bytes = b""
    validator: str | None = Field(
        default=None, description="ETag, or Last-Modified when no ETag was sent"
    )
    rate_remaining: int | None = None
    rate_reset_at: datetime | None = None
    next_url: str | None = None

    @property
    def not_modified(self) -> bool:
        return self.status == 304


class TreeFetch(BaseModel):
    """Outcome of a (possibly conditional) recursive tree request."""

    model_config = ConfigDict(frozen=True)

    not_modified: bool
    body: bytes = b""
    validator: str | None = None
    rate_remaining: int | None = None
    rate_reset_at: datetime | None = None
