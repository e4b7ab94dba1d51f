"""Exception hierarchy for repotree.

Transport errors describe what the host (or the network) did, normalization
errors describe an inconsistent tree listing, and sync errors are what callers
of the engine see.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from repotree.vcs.models import RepositoryRef


class RepoTreeError(Exception):
    """Base class for every error raised by repotree."""


# ── Transport ───────────────────────────────────────────────────────


class TransportError(RepoTreeError):
    """A call to the host API did not produce a usable response."""

    def __init__(self, message: str, url: str | None = None) -> None:
        self.url = url
        super().__init__(message)


class NetworkError(TransportError):
    """Timeout, DNS failure, connection reset, or any other transport fault."""


class RateLimitedError(TransportError):
    """The host refused the call because the rate limit is exhausted."""

    def __init__(
        self, message: str, retry_at: datetime | None, url: str | None = None
    ) -> None:
        self.retry_at = retry_at
        super().__init__(message, url=url)


class MalformedResponseError(TransportError):
    """The host answered 2xx but the payload has an unexpected shape."""


class HTTPStatusError(TransportError):
    """The host reported a 4xx/5xx status."""

    def __init__(self, status: int, message: str, url: str | None = None) -> None:
        self.status = status
        super().__init__(f"HTTP {status}: {message}", url=url)

    @property
    def transient(self) -> bool:
        return self.status >= 500


class NotFoundError(HTTPStatusError):
    """Repository or ref does not exist (HTTP 404). Never retried."""

    def __init__(self, message: str = "not found", url: str | None = None) -> None:
        super().__init__(404, message, url=url)


class EmptyRepositoryError(HTTPStatusError):
    """The repository exists but has no commits (HTTP 409 on the trees API)."""

    def __init__(self, message: str = "repository is empty", url: str | None = None) -> None:
        super().__init__(409, message, url=url)


# ── Normalization ───────────────────────────────────────────────────


class NormalizationError(RepoTreeError):
    """A tree listing cannot be turned into a consistent hierarchy."""

    def __init__(self, message: str, path: str = "") -> None:
        self.path = path
        super().__init__(message)


class MalformedEntryError(NormalizationError):
    """An entry is structurally invalid (empty path, unknown type, ...)."""


class ConflictError(NormalizationError):
    """Two entries disagree about what lives at the same path."""

    def __init__(self, path: str, detail: str) -> None:
        super().__init__(f"Conflicting entries at {path!r}: {detail}", path=path)


# ── Sync ────────────────────────────────────────────────────────────


class SyncError(RepoTreeError):
    """Resolving a repository tree (or an account listing) failed and nothing
    cached can stand in for it.

    *subject* is the repository ref, or the account name for listing failures.
    """

    def __init__(
        self,
        subject: RepositoryRef | str,
        message: str,
        cause: Exception | None = None,
    ) -> None:
        self.ref = None if isinstance(subject, str) else subject
        self.subject = subject if isinstance(subject, str) else subject.key
        super().__init__(f"{self.subject}: {message}")
        if cause is not None:
            self.__cause__ = cause


class SyncNotFoundError(SyncError):
    """The repository or ref no longer exists on the host."""


class SyncRateLimitedError(SyncError):
    """Rate limited with nothing cached to fall back on."""

    def __init__(
        self,
        subject: RepositoryRef | str,
        retry_at: datetime | None,
        cause: Exception | None = None,
    ) -> None:
        self.retry_at = retry_at
        when = retry_at.isoformat() if retry_at else "unknown"
        super().__init__(subject, f"rate limited (retry at {when})", cause)


class SyncTransientError(SyncError):
    """Network failure or host 5xx with nothing cached to fall back on."""


class SyncCorruptError(SyncError):
    """The host returned a listing that could not be normalized."""


class SyncRejectedError(SyncError):
    """The host rejected the request (401, 403, 422, ...)."""

    def __init__(
        self,
        subject: RepositoryRef | str,
        status: int,
        cause: Exception | None = None,
    ) -> None:
        self.status = status
        super().__init__(subject, f"request rejected with HTTP {status}", cause)
