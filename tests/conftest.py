"""Shared test fixtures for repotree."""

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from repotree.cache.store import FileCacheStore
from repotree.config.models import RepoTreeConfig
from repotree.vcs.base import VCSProvider
from repotree.vcs.models import RepoMetadata, RepositoryRef, TreeFetch


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime.now(timezone.utc).replace(microsecond=0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


def make_listing(
    paths: dict[str, str] | None = None,
    root_id: str = "root1",
    truncated: bool = False,
) -> bytes:
    """Recursive tree body in the host's shape. *paths* maps path -> 'blob' | 'tree'."""
    if paths is None:
        paths = {"README.md": "blob", "src": "tree", "src/main.py": "blob"}
    tree = []
    for i, (path, kind) in enumerate(paths.items()):
        item = {"path": path, "type": kind, "sha": f"sha{i}", "mode": "100644"}
        if kind == "blob":
            item["size"] = 10 * (i + 1)
        tree.append(item)
    return json.dumps({"sha": root_id, "tree": tree, "truncated": truncated}).encode()


def tree_fetch(body: bytes | None = None, validator: str | None = '"etag-1"') -> TreeFetch:
    return TreeFetch(
        not_modified=False,
        body=body if body is not None else make_listing(),
        validator=validator,
    )


def not_modified(validator: str | None = '"etag-1"') -> TreeFetch:
    return TreeFetch(not_modified=True, validator=validator)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sample_ref():
    return RepositoryRef(owner="Acme", name="Widget-API", ref="main")


@pytest.fixture
def sample_repos():
    return [
        RepoMetadata(
            owner="acme",
            name="widget-api",
            full_name="acme/widget-api",
            default_branch="main",
        ),
        RepoMetadata(
            owner="acme",
            name="legacy",
            full_name="acme/legacy",
            default_branch="master",
            archived=True,
        ),
        RepoMetadata(
            owner="acme",
            name="forked-lib",
            full_name="acme/forked-lib",
            default_branch="trunk",
            fork=True,
        ),
    ]


@pytest.fixture
def mock_vcs_provider(sample_repos):
    provider = MagicMock(spec=VCSProvider)
    provider.list_repos = AsyncMock(return_value=sample_repos)
    provider.fetch_tree = AsyncMock(return_value=tree_fetch())
    provider.aclose = AsyncMock()
    return provider


@pytest.fixture
def cache_store(tmp_path, clock):
    return FileCacheStore(tmp_path / "cache", clock=clock)


@pytest.fixture
def sample_config(tmp_path):
    return RepoTreeConfig(cache={"directory": str(tmp_path / "cache")})
