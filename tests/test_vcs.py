"""Tests for repotree.vcs — HTTP transport, GitHub adapter, and models."""

import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from repotree.config.models import GitHubConfig
from repotree.errors import (
    EmptyRepositoryError,
    HTTPStatusError,
    MalformedResponseError,
    NetworkError,
    NotFoundError,
    RateLimitedError,
)
from repotree.vcs import GitHubProvider, HTTPTransport, create_provider
from repotree.vcs.models import RepoMetadata, RepositoryRef

from conftest import FakeClock, make_listing

BASE = "https://api.example.test"


def _transport(handler, token=None, clock=None) -> HTTPTransport:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HTTPTransport(BASE, token=token, client=client, clock=clock or FakeClock())


def _repo_item(name: str, **extra) -> dict:
    item = {
        "name": name,
        "full_name": f"acme/{name}",
        "owner": {"login": "acme"},
        "default_branch": "main",
        "html_url": f"https://github.com/acme/{name}",
    }
    item.update(extra)
    return item


# ── RepositoryRef ───────────────────────────────────────────────────


class TestRepositoryRef:
    def test_parse_with_ref(self):
        ref = RepositoryRef.parse("acme/widget@v1.2")
        assert (ref.owner, ref.name, ref.ref) == ("acme", "widget", "v1.2")

    def test_parse_defaults_ref(self):
        assert RepositoryRef.parse("acme/widget").ref == "HEAD"

    def test_parse_keeps_slashes_in_ref(self):
        assert RepositoryRef.parse("acme/widget@feature/x").ref == "feature/x"

    @pytest.mark.parametrize("text", ["acme", "acme/", "/widget", "a/b/c", "acme/widget@"])
    def test_parse_rejects_bad_identifiers(self, text):
        with pytest.raises(ValueError):
            RepositoryRef.parse(text)

    def test_key_is_case_insensitive_for_repo_only(self):
        a = RepositoryRef(owner="Acme", name="Widget", ref="Main")
        b = RepositoryRef(owner="acme", name="widget", ref="Main")
        assert a.key == b.key == "acme/widget@Main"
        assert a.key != RepositoryRef(owner="acme", name="widget", ref="main").key

    def test_is_frozen(self):
        ref = RepositoryRef(owner="acme", name="widget")
        with pytest.raises(Exception):
            ref.owner = "other"

    def test_repo_metadata_to_ref_uses_default_branch(self):
        meta = RepoMetadata(owner="acme", name="w", full_name="acme/w", default_branch="trunk")
        assert meta.to_ref().ref == "trunk"
        assert meta.to_ref("dev").ref == "dev"


# ── HTTPTransport ───────────────────────────────────────────────────


class TestHTTPTransport:
    async def test_sends_auth_and_api_headers(self):
        seen = {}

        def handler(request):
            seen.update(request.headers)
            return httpx.Response(200, json={})

        transport = _transport(handler, token="tok")
        await transport.fetch(transport.url_for("/rate_limit"))
        assert seen["authorization"] == "Bearer tok"
        assert seen["accept"] == "application/vnd.github+json"
        assert "x-github-api-version" in seen

    async def test_no_auth_header_without_token(self):
        seen = {}

        def handler(request):
            seen.update(request.headers)
            return httpx.Response(200, json={})

        transport = _transport(handler)
        await transport.fetch(f"{BASE}/x")
        assert "authorization" not in seen

    async def test_returns_body_and_validator(self):
        def handler(request):
            return httpx.Response(
                200,
                content=b'{"ok": true}',
                headers={"ETag": '"abc"', "X-RateLimit-Remaining": "4999"},
            )

        resp = await _transport(handler).fetch(f"{BASE}/x")
        assert resp.status == 200
        assert resp.body == b'{"ok": true}'
        assert resp.validator == '"abc"'
        assert resp.rate_remaining == 4999
        assert not resp.not_modified

    async def test_falls_back_to_last_modified(self):
        lm = "Wed, 21 Oct 2015 07:28:00 GMT"

        def handler(request):
            return httpx.Response(200, json={}, headers={"Last-Modified": lm})

        resp = await _transport(handler).fetch(f"{BASE}/x")
        assert resp.validator == lm

    async def test_entity_tag_sent_as_if_none_match(self):
        seen = {}

        def handler(request):
            seen.update(request.headers)
            return httpx.Response(304, headers={"ETag": '"abc"'})

        resp = await _transport(handler).fetch(f"{BASE}/x", validator='"abc"')
        assert seen["if-none-match"] == '"abc"'
        assert "if-modified-since" not in seen
        assert resp.not_modified
        assert resp.body == b""

    async def test_date_validator_sent_as_if_modified_since(self):
        seen = {}
        lm = "Wed, 21 Oct 2015 07:28:00 GMT"

        def handler(request):
            seen.update(request.headers)
            return httpx.Response(304)

        await _transport(handler).fetch(f"{BASE}/x", validator=lm)
        assert seen["if-modified-since"] == lm
        assert "if-none-match" not in seen

    async def test_primary_rate_limit(self):
        def handler(request):
            return httpx.Response(
                403,
                json={"message": "API rate limit exceeded"},
                headers={"X-RateLimit-Remaining": "0", "X-RateLimit-Reset": "1700000000"},
            )

        with pytest.raises(RateLimitedError) as exc_info:
            await _transport(handler).fetch(f"{BASE}/x")
        assert exc_info.value.retry_at == datetime.fromtimestamp(1700000000, tz=timezone.utc)
        assert "rate limit" in str(exc_info.value)

    async def test_secondary_rate_limit_retry_after(self):
        clock = FakeClock()

        def handler(request):
            return httpx.Response(429, headers={"Retry-After": "60"})

        with pytest.raises(RateLimitedError) as exc_info:
            await _transport(handler, clock=clock).fetch(f"{BASE}/x")
        assert exc_info.value.retry_at == clock.now + timedelta(seconds=60)

    async def test_forbidden_without_rate_headers_is_status_error(self):
        def handler(request):
            return httpx.Response(403, json={"message": "Resource not accessible"})

        with pytest.raises(HTTPStatusError) as exc_info:
            await _transport(handler).fetch(f"{BASE}/x")
        assert not isinstance(exc_info.value, RateLimitedError)
        assert exc_info.value.status == 403
        assert not exc_info.value.transient

    async def test_not_found(self):
        def handler(request):
            return httpx.Response(404, json={"message": "Not Found"})

        with pytest.raises(NotFoundError) as exc_info:
            await _transport(handler).fetch(f"{BASE}/x")
        assert exc_info.value.status == 404

    async def test_server_error_is_transient(self):
        def handler(request):
            return httpx.Response(502, text="Bad Gateway")

        with pytest.raises(HTTPStatusError) as exc_info:
            await _transport(handler).fetch(f"{BASE}/x")
        assert exc_info.value.transient

    async def test_connection_failure_is_network_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(NetworkError) as exc_info:
            await _transport(handler).fetch(f"{BASE}/x")
        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)

    async def test_timeout_is_network_error(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(NetworkError):
            await _transport(handler).fetch(f"{BASE}/x")

    async def test_exhausted_quota_on_success_is_returned(self, caplog):
        clock = FakeClock()
        reset = clock.now + timedelta(minutes=5)
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(
                200,
                json=[],
                headers={
                    "X-RateLimit-Remaining": "0",
                    "X-RateLimit-Reset": str(int(reset.timestamp())),
                },
            )

        transport = _transport(handler, clock=clock)
        with caplog.at_level("WARNING", logger="repotree.vcs.transport"):
            resp = await transport.fetch(f"{BASE}/x")
        assert resp.status == 200
        assert resp.rate_remaining == 0
        assert "Rate limit nearly exhausted" in caplog.text

        with pytest.raises(RateLimitedError) as exc_info:
            await transport.fetch(f"{BASE}/y")
        assert exc_info.value.retry_at == reset
        assert len(calls) == 1

    async def test_exhausted_quota_lifts_after_reset(self):
        clock = FakeClock()
        reset = clock.now + timedelta(minutes=5)
        calls = []

        def handler(request):
            calls.append(request)
            remaining = "0" if len(calls) == 1 else "4999"
            return httpx.Response(
                200,
                json=[],
                headers={
                    "X-RateLimit-Remaining": remaining,
                    "X-RateLimit-Reset": str(int(reset.timestamp())),
                },
            )

        transport = _transport(handler, clock=clock)
        await transport.fetch(f"{BASE}/x")
        clock.advance(minutes=6)

        resp = await transport.fetch(f"{BASE}/x")
        assert resp.rate_remaining == 4999
        assert len(calls) == 2
        await transport.fetch(f"{BASE}/x")
        assert len(calls) == 3

    async def test_follows_permanent_redirect(self):
        seen = []

        def handler(request):
            seen.append(request.url.path)
            if request.url.path == "/repos/acme/old":
                return httpx.Response(301, headers={"Location": f"{BASE}/repos/acme/new"})
            return httpx.Response(200, json={"name": "new"}, headers={"ETag": '"n1"'})

        resp = await _transport(handler, token="tok").fetch(f"{BASE}/repos/acme/old")
        assert resp.status == 200
        assert resp.validator == '"n1"'
        assert seen == ["/repos/acme/old", "/repos/acme/new"]

    async def test_does_not_close_injected_client(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        async with HTTPTransport(BASE, client=client):
            pass
        assert not client.is_closed
        await client.aclose()


# ── GitHubProvider ──────────────────────────────────────────────────


class TestGitHubProvider:
    async def test_list_repos_follows_pagination(self):
        calls = []

        def handler(request):
            calls.append(request.url)
            if request.url.params.get("page") == "2":
                return httpx.Response(200, json=[_repo_item("two")])
            return httpx.Response(
                200,
                json=[_repo_item("one", fork=True)],
                headers={"Link": f'<{BASE}/users/acme/repos?per_page=100&page=2>; rel="next"'},
            )

        provider = GitHubProvider(_transport(handler))
        repos = await provider.list_repos("acme")

        assert [r.name for r in repos] == ["one", "two"]
        assert repos[0].fork is True
        assert repos[0].owner == "acme"
        assert repos[1].default_branch == "main"
        assert len(calls) == 2
        assert calls[0].path == "/users/acme/repos"
        assert calls[0].params["per_page"] == "100"
        assert calls[0].params["type"] == "owner"

    async def test_list_repos_rejects_non_list(self):
        def handler(request):
            return httpx.Response(200, json={"message": "weird"})

        with pytest.raises(MalformedResponseError):
            await GitHubProvider(_transport(handler)).list_repos("acme")

    async def test_list_repos_rejects_bad_item(self):
        def handler(request):
            return httpx.Response(200, json=[{"name": "missing-full-name"}])

        with pytest.raises(MalformedResponseError):
            await GitHubProvider(_transport(handler)).list_repos("acme")

    async def test_list_repos_ignores_presentation_fields(self):
        def handler(request):
            item = _repo_item("mirror", html_url="git://mirror.example/acme/mirror", private=True)
            item["description"] = None
            return httpx.Response(200, json=[item])

        repos = await GitHubProvider(_transport(handler)).list_repos("acme")
        assert [r.full_name for r in repos] == ["acme/mirror"]
        assert set(repos[0].model_dump()) == {
            "owner", "name", "full_name", "default_branch", "fork", "archived",
        }

    async def test_list_repos_unknown_owner(self):
        def handler(request):
            return httpx.Response(404, json={"message": "Not Found"})

        with pytest.raises(NotFoundError):
            await GitHubProvider(_transport(handler)).list_repos("ghost")

    async def test_fetch_tree_requests_recursive_listing(self):
        seen = []
        body = make_listing()

        def handler(request):
            seen.append(request)
            return httpx.Response(200, content=body, headers={"ETag": '"t1"'})

        provider = GitHubProvider(_transport(handler))
        fetch = await provider.fetch_tree(RepositoryRef(owner="acme", name="widget", ref="feature/x"))

        assert not fetch.not_modified
        assert json.loads(fetch.body)["sha"] == "root1"
        assert fetch.validator == '"t1"'
        assert seen[0].url.raw_path.decode().startswith(
            "/repos/acme/widget/git/trees/feature%2Fx"
        )
        assert seen[0].url.params["recursive"] == "1"

    async def test_fetch_tree_not_modified_keeps_validator(self):
        def handler(request):
            return httpx.Response(304)

        provider = GitHubProvider(_transport(handler))
        fetch = await provider.fetch_tree(RepositoryRef(owner="acme", name="w"), validator='"old"')
        assert fetch.not_modified
        assert fetch.validator == '"old"'

    async def test_fetch_tree_follows_renamed_repository(self):
        seen = []
        body = make_listing()

        def handler(request):
            seen.append(request.url.path)
            if request.url.path.startswith("/repos/acme/old-name/"):
                return httpx.Response(
                    301,
                    headers={"Location": f"{BASE}/repositories/42/git/trees/main?recursive=1"},
                )
            return httpx.Response(200, content=body, headers={"ETag": '"t2"'})

        provider = GitHubProvider(_transport(handler))
        fetch = await provider.fetch_tree(RepositoryRef(owner="acme", name="old-name", ref="main"))

        assert json.loads(fetch.body)["sha"] == "root1"
        assert fetch.validator == '"t2"'
        assert seen == ["/repos/acme/old-name/git/trees/main", "/repositories/42/git/trees/main"]

    async def test_fetch_tree_empty_repository(self):
        def handler(request):
            return httpx.Response(409, json={"message": "Git Repository is empty."})

        with pytest.raises(EmptyRepositoryError) as exc_info:
            await GitHubProvider(_transport(handler)).fetch_tree(RepositoryRef(owner="a", name="b"))
        assert exc_info.value.status == 409

    async def test_create_provider_reads_token_from_env(self, monkeypatch):
        monkeypatch.setenv("REPOTREE_TEST_TOKEN", "secret")
        provider = create_provider(GitHubConfig(token_env="REPOTREE_TEST_TOKEN"))
        try:
            assert provider._transport._headers["Authorization"] == "Bearer secret"
        finally:
            await provider.aclose()
