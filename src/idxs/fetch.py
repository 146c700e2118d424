"""Single-shot query execution with retries."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from typing import Any

import httpx
from loguru import logger

from idxs.cancel import guard
from idxs.decoding import build_signature_table
from idxs.emitter import Emitter
from idxs.errors import DecodeError, EmptyResultError, InvalidSignatureError, RetryExhaustedError
from idxs.retry import backoff_delay, should_retry
from idxs.rows import normalize
from idxs.transport import build_headers, clone_request, clone_response, raise_for_status
from idxs.types import Query, RawPayload, Result, RetryState, serialize_cursor

DEFAULT_FETCH_RETRY_COUNT = 5


def request_body(query: Query) -> list[dict[str, Any]]:
    """Build the ``[{query, signatures?, cursor?}]`` body for ``POST /query``."""

    body: dict[str, Any] = {"query": query.text}
    if query.signatures:
        body["signatures"] = list(query.signatures)
    cursor = serialize_cursor(query.cursor)
    if cursor is not None:
        body["cursor"] = cursor
    return [body]


class FetchExecutor:
    """Runs one request/response exchange against ``{base_url}/query``."""

    def __init__(self, http: httpx.AsyncClient, emitter: Emitter, base_url: str, api_key: str | None) -> None:
        self._http = http
        self._emitter = emitter
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key

    async def execute(
        self,
        query: Query,
        *,
        retry_count: int = DEFAULT_FETCH_RETRY_COUNT,
        signal: asyncio.Event | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Result:
        events = self._emitter.instance()
        log = logger.bind(instance=events.instance_id)
        try:
            signature_table = build_signature_table(query.signatures)
        except InvalidSignatureError as exc:
            events.emit("error", exc)
            raise
        state = RetryState()

        while state.attempt < retry_count:
            state.attempt += 1
            try:
                request = self._http.build_request(
                    "POST",
                    f"{self._base_url}/query",
                    json=request_body(query),
                    headers={"Content-Type": "application/json", **build_headers(self._api_key, headers)},
                )
                log.debug("idxs.fetch.attempt attempt={} url={}", state.attempt, request.url)
                events.emit("request", clone_request(request))

                response = await guard(self._http.send(request), signal)
                events.emit("response", clone_response(response))
                await raise_for_status(response)

                try:
                    payloads = response.json()
                except ValueError as exc:
                    raise DecodeError("Invalid JSON in response body") from exc
                if not isinstance(payloads, list) or not payloads:
                    raise EmptyResultError("No results returned")
                return normalize(RawPayload.from_json(payloads[0]), query, signature_table)
            except Exception as exc:
                events.emit("error", exc)
                if not should_retry(exc):
                    log.debug("idxs.fetch.failed attempt={} error={!r}", state.attempt, exc)
                    raise

                state.last_error = exc
                if state.attempt >= retry_count:
                    break
                delay = backoff_delay(state.attempt)
                log.warning("idxs.fetch.retry attempt={} delay={:.3f}s error={!r}", state.attempt, delay, exc)
                events.emit("log", f"retrying in {delay:.3f}s after attempt {state.attempt}: {exc}")
                await guard(asyncio.sleep(delay), signal)

        if state.last_error is not None:
            raise state.last_error
        raise RetryExhaustedError("Maximum retry attempts reached")
