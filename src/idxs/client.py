"""Index Supply client."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable, Mapping, Sequence
from typing import Any

import httpx

from idxs.config import Settings, get_settings
from idxs.emitter import Emitter
from idxs.fetch import FetchExecutor
from idxs.live import LiveExecutor
from idxs.types import Cursor, Query, Result

USER_AGENT = "idxs-python/0.1.0"


class IndexSupply:
    """Async client for the Index Supply query API.

    ``fetch`` runs one query and returns its decoded result; ``live``
    subscribes to a query and yields decoded results as the server streams
    them. Both retry transient failures with exponential backoff.

    Example:
        >>> async with IndexSupply(api_key="...") as client:
        ...     result = await client.fetch('select hash, "from", "to", value from txs limit 10')
        ...     async for batch in client.live("select block_num from blocks"):
        ...         print(batch.cursor, batch.rows)
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        *,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._api_key = api_key or self.settings.api_key
        self._base_url = (base_url or self.settings.base_url).rstrip("/")
        self._emitter = Emitter()
        self._http = httpx.AsyncClient(
            headers={"User-Agent": USER_AGENT},
            timeout=timeout if timeout is not None else self.settings.timeout_seconds,
            transport=transport,
        )
        self._fetch = FetchExecutor(self._http, self._emitter, self._base_url, self._api_key)
        self._live = LiveExecutor(self._http, self._emitter, self._base_url, self._api_key)

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def api_key(self) -> str | None:
        return self._api_key

    async def __aenter__(self) -> IndexSupply:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close HTTP connections."""
        await self._http.aclose()

    def on(self, kind: str, handler: Callable[..., None]) -> Callable[[], None]:
        """Listen for ``request``, ``response``, ``error``, ``log`` or ``"*"`` events."""
        return self._emitter.on(kind, handler)

    def off(self, kind: str, handler: Callable[..., None] | None = None) -> None:
        self._emitter.off(kind, handler)

    async def fetch(
        self,
        query: str,
        *,
        signatures: Sequence[str] | None = None,
        cursor: Cursor | None = None,
        retry_count: int | None = None,
        signal: asyncio.Event | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Result:
        """Run ``query`` once and return its decoded rows.

        Args:
            query: SQL text, sent as-is.
            signatures: Event/function signatures describing custom tables.
            cursor: Resume position, as returned with an earlier result.
            retry_count: Maximum attempts (defaults to settings, 5).
            signal: Set the event to cancel the call.
            headers: Extra request headers.

        Raises:
            FetchRequestError: The API rejected the request.
            DecodeError: A value did not match its column type.
            RequestCancelledError: ``signal`` was set.
        """
        return await self._fetch.execute(
            Query.build(query, signatures, cursor),
            retry_count=self.settings.fetch_retry_count if retry_count is None else retry_count,
            signal=signal,
            headers=headers,
        )

    def live(
        self,
        query: str,
        *,
        signatures: Sequence[str] | None = None,
        cursor: Cursor | None = None,
        retry_count: int | None = None,
        signal: asyncio.Event | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> AsyncIterator[Result]:
        """Stream results for ``query`` until the server ends it or ``signal`` is set."""
        return self._live.stream(
            Query.build(query, signatures, cursor),
            retry_count=self.settings.live_retry_count if retry_count is None else retry_count,
            signal=signal,
            headers=headers,
        )


def create(**kwargs: Any) -> IndexSupply:
    """Create an :class:`IndexSupply` client."""
    return IndexSupply(**kwargs)
