"""HTTP fetch capability used by the source resolver.

The resolver only depends on the :class:`Fetch` contract: an async callable
taking a URL and returning an object exposing ``ok``, ``status``,
``status_text`` and ``json()``.  :class:`HttpxFetcher` is the production
implementation; tests either inject a plain coroutine or drive the fetcher
through ``httpx.MockTransport``.
"""
from __future__ import annotations

from typing import Any, Awaitable, Callable, Protocol

import httpx


class FetchResponse(Protocol):
    """Minimal response contract consumed by the resolver."""

    @property
    def ok(self) -> bool: ...

    @property
    def status(self) -> int: ...

    @property
    def status_text(self) -> str: ...

    def json(self) -> Any: ...


Fetch = Callable[[str], Awaitable[FetchResponse]]


class HttpxResponse:
    """Adapts :class:`httpx.Response` to :class:`FetchResponse`."""

    __slots__ = ("_response",)

    def __init__(self, response: httpx.Response) -> None:
        self._response = response

    @property
    def ok(self) -> bool:
        return self._response.is_success

    @property
    def status(self) -> int:
        return self._response.status_code

    @property
    def status_text(self) -> str:
        return self._response.reason_phrase

    def json(self) -> Any:
        return self._response.json()


class HttpxFetcher:
    """Issues GET requests with an :class:`httpx.AsyncClient`."""

    def __init__(
        self,
        *,
        base_url: str | None = None,
        timeout: float | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url
        # No timeout by default: the resolver's retry budget is the only timing control.
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None

    def _absolute(self, url: str) -> str:
        if self._base_url and not httpx.URL(url).is_absolute_url:
            return str(httpx.URL(self._base_url).join(url))
        return url

    async def __call__(self, url: str) -> HttpxResponse:
        response = await self._client.get(self._absolute(url))
        return HttpxResponse(response)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


__all__ = ["Fetch", "FetchResponse", "HttpxFetcher", "HttpxResponse"]
