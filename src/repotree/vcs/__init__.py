"""VCS providers for repotree."""

from repotree.config.loader import resolve_token
from repotree.config.models import GitHubConfig
from repotree.vcs.base import VCSProvider
from repotree.vcs.github import GitHubProvider
from repotree.vcs.models import (
    RepoMetadata,
    RepositoryRef,
    TransportResponse,
    TreeFetch,
)
from repotree.vcs.transport import HTTPTransport


def create_provider(config: GitHubConfig) -> VCSProvider:
    """Create a GitHub provider from config.

    The token is optional: without one the host applies its anonymous rate limit.
    """
    transport = HTTPTransport(
        base_url=config.base_url,
        token=resolve_token(config),
        timeout=config.timeout,
        user_agent=config.user_agent,
    )
    return GitHubProvider(transport)


__all__ = [
    "GitHubProvider",
    "HTTPTransport",
    "RepoMetadata",
    "RepositoryRef",
    "TransportResponse",
    "TreeFetch",
    "VCSProvider",
    "create_provider",
]
