"""GitHub VCS provider speaking the REST API through HTTPTransport."""

from __future__ import annotations

import json
import logging
from urllib.parse import quote

from pydantic import ValidationError

from repotree.errors import EmptyRepositoryError, HTTPStatusError, MalformedResponseError
from repotree.vcs.base import VCSProvider
from repotree.vcs.models import RepoMetadata, RepositoryRef, TreeFetch
from repotree.vcs.transport import HTTPTransport

logger = logging.getLogger(__name__)

_PAGE_SIZE = 100
# Hard stop against a Link header that never ends.
_MAX_PAGES = 100


class GitHubProvider(VCSProvider):
    """GitHub (and GitHub Enterprise) implementation of VCSProvider."""

    def __init__(self, transport: HTTPTransport) -> None:
        self._transport = transport

    async def aclose(self) -> None:
        await self._transport.aclose()

    def _build_repo_metadata(self, item: object) -> RepoMetadata:
        """Validate one element of a repository listing."""
        if not isinstance(item, dict):
            raise MalformedResponseError(f"repository entry is not an object: {item!r}")
        owner = item.get("owner")
        try:
            return RepoMetadata(
                owner=owner.get("login", "") if isinstance(owner, dict) else "",
                name=item["name"],
                full_name=item["full_name"],
                default_branch=item.get("default_branch") or "main",
                fork=bool(item.get("fork", False)),
                archived=bool(item.get("archived", False)),
            )
        except (KeyError, ValidationError) as e:
            raise MalformedResponseError(f"invalid repository entry: {e}") from e

    async def list_repos(self, owner: str) -> list[RepoMetadata]:
        """List repositories for a GitHub user or organization, all pages."""
        url: str | None = self._transport.url_for(f"users/{quote(owner, safe='')}/repos")
        params: dict[str, str | int] | None = {"per_page": _PAGE_SIZE, "type": "owner"}
        repos: list[RepoMetadata] = []
        pages = 0
        while url and pages < _MAX_PAGES:
            resp = await self._transport.fetch(url, params=params)
            try:
                items = json.loads(resp.body)
            except ValueError as e:
                raise MalformedResponseError("repository listing is not JSON", url=url) from e
            if not isinstance(items, list):
                raise MalformedResponseError("repository listing is not a list", url=url)
            repos.extend(self._build_repo_metadata(item) for item in items)
            # The next link already carries the query string.
            url, params = resp.next_url, None
            pages += 1
        logger.debug("Listed %d repositories for %s", len(repos), owner)
        return repos

    async def fetch_tree(
        self, ref: RepositoryRef, validator: str | None = None
    ) -> TreeFetch:
        """GET /repos/{owner}/{repo}/git/trees/{ref}?recursive=1."""
        url = self._transport.url_for(
            f"repos/{quote(ref.owner, safe='')}/{quote(ref.name, safe='')}"
            f"/git/trees/{quote(ref.ref, safe='')}"
        )
        try:
            resp = await self._transport.fetch(
                url, validator=validator, params={"recursive": 1}
            )
        except HTTPStatusError as e:
            # The trees API answers 409 "Git Repository is empty".
            if e.status == 409:
                raise EmptyRepositoryError(url=url) from e
            raise
        return TreeFetch(
            not_modified=resp.not_modified,
            body=resp.body,
            validator=resp.validator or validator,
            rate_remaining=resp.rate_remaining,
            rate_reset_at=resp.rate_reset_at,
        )
