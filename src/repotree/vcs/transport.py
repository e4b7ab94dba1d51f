"""HTTP transport for the host API, built on httpx.

The transport knows about conditional requests and rate-limit headers but
nothing about caching: it never retries and never stores anything.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
from typing import NoReturn

import httpx

from repotree.errors import (
    HTTPStatusError,
    NetworkError,
    NotFoundError,
    RateLimitedError,
)
from repotree.vcs.models import TransportResponse

logger = logging.getLogger(__name__)

_ACCEPT = "application/vnd.github+json"
_API_VERSION = "2022-11-28"
_LOW_RATE_WARNING = 10


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_int(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        return int(value.strip())
    except ValueError:
        return None


def _is_entity_tag(validator: str) -> bool:
    return validator.startswith(('"', "W/"))


class HTTPTransport:
    """Thin async wrapper around ``httpx.AsyncClient``.

    One client is shared by every call so connections are pooled; the
    timeout applies to each individual HTTP call. Redirects (renamed or
    transferred repositories) are followed. Once a response reports an
    exhausted quota, calls fail locally with
    :class:`~repotree.errors.RateLimitedError` until the reset time.
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout: float = 30.0,
        user_agent: str = "repotree",
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._clock = clock
        headers = {
            "Accept": _ACCEPT,
            "X-GitHub-Api-Version": _API_VERSION,
            "User-Agent": user_agent,
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._headers = headers
        self._client = client or httpx.AsyncClient(follow_redirects=True)
        self._owns_client = client is None
        # Set when a response reports zero calls left; cleared once past it.
        self._exhausted_until: datetime | None = None

    async def __aenter__(self) -> HTTPTransport:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def url_for(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    async def fetch(
        self,
        url: str,
        validator: str | None = None,
        params: Mapping[str, str | int] | None = None,
    ) -> TransportResponse:
        """GET *url*, conditionally when *validator* is given.

        Returns 2xx and 304 responses. Everything else is raised as a
        :class:`~repotree.errors.TransportError` subclass.
        """
        self._check_quota(url)

        headers = dict(self._headers)
        if validator:
            if _is_entity_tag(validator):
                headers["If-None-Match"] = validator
            else:
                headers["If-Modified-Since"] = validator

        try:
            resp = await self._client.get(
                url,
                headers=headers,
                params=params,
                timeout=self.timeout,
                follow_redirects=True,
            )
        except httpx.TransportError as e:
            # Timeouts, DNS failures and resets all land here.
            raise NetworkError(f"{type(e).__name__}: {e}", url=url) from e

        remaining = _parse_int(resp.headers.get("x-ratelimit-remaining"))
        reset_at = self._parse_reset(resp.headers)
        self._exhausted_until = reset_at if remaining == 0 else None

        if resp.status_code == 304 or resp.is_success:
            if remaining is not None and remaining < _LOW_RATE_WARNING:
                logger.warning(
                    "Rate limit nearly exhausted: %d calls left, resets at %s",
                    remaining,
                    reset_at.isoformat() if reset_at else "unknown",
                )
            return TransportResponse(
                status=resp.status_code,
                body=b"" if resp.status_code == 304 else resp.content,
                validator=resp.headers.get("etag") or resp.headers.get("last-modified"),
                rate_remaining=remaining,
                rate_reset_at=reset_at,
                next_url=resp.links.get("next", {}).get("url"),
            )

        self._raise_for_status(resp, url, remaining, reset_at)

    # ------------------------------------------------------------------

    def _check_quota(self, url: str) -> None:
        """Fail without a round trip while the quota is known to be spent."""
        if self._exhausted_until is None:
            return
        if self._clock() >= self._exhausted_until:
            self._exhausted_until = None
            return
        raise RateLimitedError(
            f"rate limit exhausted until {self._exhausted_until.isoformat()}",
            retry_at=self._exhausted_until,
            url=url,
        )

    def _parse_reset(self, headers: httpx.Headers) -> datetime | None:
        retry_after = headers.get("retry-after")
        if retry_after:
            seconds = _parse_int(retry_after)
            if seconds is not None:
                return self._clock() + timedelta(seconds=seconds)
            try:
                when = parsedate_to_datetime(retry_after)
            except (TypeError, ValueError):
                when = None
            if when is not None:
                return when if when.tzinfo else when.replace(tzinfo=timezone.utc)
        epoch = _parse_int(headers.get("x-ratelimit-reset"))
        if epoch is not None:
            return datetime.fromtimestamp(epoch, tz=timezone.utc)
        return None

    def _raise_for_status(
        self,
        resp: httpx.Response,
        url: str,
        remaining: int | None,
        reset_at: datetime | None,
    ) -> NoReturn:
        status = resp.status_code
        message = _error_message(resp)
        rate_limited = status == 429 or (
            status == 403 and (remaining == 0 or "retry-after" in resp.headers)
        )
        if rate_limited:
            raise RateLimitedError(
                f"HTTP {status}: {message}", retry_at=reset_at, url=url
            )
        if status == 404:
            raise NotFoundError(message, url=url)
        raise HTTPStatusError(status, message, url=url)


def _error_message(resp: httpx.Response) -> str:
    """The host's JSON ``message`` if there is one, else the reason phrase."""
    try:
        data = resp.json()
    except ValueError:
        return resp.reason_phrase or "error"
    if isinstance(data, dict) and isinstance(data.get("message"), str):
        return data["message"]
    return resp.reason_phrase or "error"
