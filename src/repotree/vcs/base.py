"""Abstract VCS interface for repotree."""

from abc import ABC, abstractmethod

from repotree.vcs.models import RepoMetadata, RepositoryRef, TreeFetch


class VCSProvider(ABC):
    """Abstract base class for VCS providers.

    Defines the two read-only calls the sync engine needs: enumerate an
    account's repositories and fetch one recursive tree listing.
    """

    @abstractmethod
    async def list_repos(self, owner: str) -> list[RepoMetadata]:
        """List repositories owned by a user or organization."""
        ...

    @abstractmethod
    async def fetch_tree(
        self, ref: RepositoryRef, validator: str | None = None
    ) -> TreeFetch:
        """Fetch the recursive tree listing for *ref*.

        Args:
            ref: Repository and ref to list.
            validator: Validator from a previous fetch. When given, the host
                may answer "not modified" without a body.
        """
        ...

    async def aclose(self) -> None:
        """Release network resources. No-op by default."""
