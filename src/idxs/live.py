"""Live query streaming over server-sent events."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Mapping
from contextlib import aclosing
from enum import StrEnum
from typing import Any

import httpx
from loguru import logger

from idxs.cancel import guard, is_cancelled
from idxs.decoding import SignatureTable, build_signature_table
from idxs.emitter import Emitter, EmitterInstance
from idxs.errors import (
    IdxsError,
    InvalidSignatureError,
    RequestCancelledError,
    RetryExhaustedError,
    StreamProtocolError,
)
from idxs.retry import backoff_delay, should_retry
from idxs.rows import normalize
from idxs.sse import read_events
from idxs.transport import build_headers, clone_request, clone_response, raise_for_status
from idxs.types import Query, RawPayload, Result, RetryState, serialize_cursor

DEFAULT_LIVE_RETRY_COUNT = 50


class LiveState(StrEnum):
    CONNECTING = "connecting"
    STREAMING = "streaming"
    BACKING_OFF = "backing-off"
    DONE = "done"
    FAILED = "failed"


def live_params(query: Query, cursor: str | None) -> list[tuple[str, str]]:
    params = [("query", query.text)]
    params.extend(("signatures", signature) for signature in query.signatures)
    if cursor is not None:
        params.append(("cursor", cursor))
    return params


def stream_error(payload: Mapping[str, Any]) -> StreamProtocolError:
    kind = payload.get("error")
    message = str(payload.get("message") or "Live query failed")
    return StreamProtocolError(message, kind="server" if kind == "server" else "client")


async def _chunks(response: httpx.Response, signal: asyncio.Event | None) -> AsyncIterator[bytes]:
    iterator = response.aiter_bytes()
    while True:
        chunk = await guard(_next_chunk(iterator), signal)
        if chunk is None:
            return
        yield chunk


async def _next_chunk(iterator: AsyncIterator[bytes]) -> bytes | None:
    try:
        return await anext(iterator)
    except StopAsyncIteration:
        return None


class LiveSession:
    """State of one ``live`` call: retry counter, resume cursor and phase.

    The retry counter and the resume cursor are independent: the counter is
    reset on progress, the cursor only ever moves to the last yielded batch.
    """

    def __init__(self, query: Query, events: EmitterInstance) -> None:
        self.query = query
        self.events = events
        self.retry = RetryState()
        self.cursor = serialize_cursor(query.cursor)
        self.state = LiveState.CONNECTING
        self.log = logger.bind(instance=events.instance_id)

    def transition(self, state: LiveState) -> None:
        if state is not self.state:
            self.log.debug("idxs.live.state from={} to={}", self.state, state)
            self.state = state


class LiveExecutor:
    """Streams results from ``{base_url}/query-live``, reconnecting on transient failures."""

    def __init__(self, http: httpx.AsyncClient, emitter: Emitter, base_url: str, api_key: str | None) -> None:
        self._http = http
        self._emitter = emitter
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key

    async def stream(
        self,
        query: Query,
        *,
        retry_count: int = DEFAULT_LIVE_RETRY_COUNT,
        signal: asyncio.Event | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> AsyncIterator[Result]:
        session = LiveSession(query, self._emitter.instance())
        try:
            signature_table = build_signature_table(query.signatures)
        except InvalidSignatureError as exc:
            session.events.emit("error", exc)
            session.transition(LiveState.FAILED)
            raise

        while session.retry.attempt < retry_count:
            if is_cancelled(signal):
                session.transition(LiveState.DONE)
                return
            session.retry.attempt += 1
            session.transition(LiveState.CONNECTING)
            try:
                async with aclosing(self._connect(session, signature_table, signal, headers)) as results:
                    async for result in results:
                        yield result
                        session.cursor = result.cursor
                        session.retry.attempt = 0
                        if is_cancelled(signal):
                            break
                session.transition(LiveState.DONE)
                return
            except Exception as exc:
                if is_cancelled(signal) or isinstance(exc, RequestCancelledError):
                    session.transition(LiveState.DONE)
                    return

                session.events.emit("error", exc)
                if not should_retry(exc):
                    session.transition(LiveState.FAILED)
                    raise

                session.retry.last_error = exc
                if session.retry.attempt >= retry_count:
                    break
                session.transition(LiveState.BACKING_OFF)
                delay = backoff_delay(session.retry.attempt)
                session.log.warning(
                    "idxs.live.retry attempt={} delay={:.3f}s cursor={} error={!r}",
                    session.retry.attempt,
                    delay,
                    session.cursor,
                    exc,
                )
                session.events.emit("log", f"reconnecting in {delay:.3f}s after attempt {session.retry.attempt}: {exc}")
                try:
                    await guard(asyncio.sleep(delay), signal)
                except RequestCancelledError:
                    session.transition(LiveState.DONE)
                    return

        session.transition(LiveState.FAILED)
        if session.retry.last_error is not None:
            raise session.retry.last_error
        raise RetryExhaustedError("Maximum retry attempts reached")

    async def _connect(
        self,
        session: LiveSession,
        signature_table: SignatureTable,
        signal: asyncio.Event | None,
        headers: Mapping[str, str] | None,
    ) -> AsyncIterator[Result]:
        request = self._http.build_request(
            "GET",
            f"{self._base_url}/query-live",
            params=live_params(session.query, session.cursor),
            headers=build_headers(self._api_key, headers),
        )
        session.log.debug("idxs.live.connect attempt={} cursor={}", session.retry.attempt, session.cursor)
        session.events.emit("request", clone_request(request))

        response = await guard(self._http.send(request, stream=True), signal)
        try:
            session.events.emit("response", clone_response(response))
            await raise_for_status(response)
            if response.status_code == 204 or response.headers.get("content-length") == "0":
                raise IdxsError("Response body is empty")

            session.transition(LiveState.STREAMING)
            async with aclosing(read_events(_chunks(response, signal), response.aclose)) as payloads:
                async for payload in payloads:
                    if isinstance(payload, Mapping) and "error" in payload:
                        raise stream_error(payload)
                    if not isinstance(payload, list):
                        raise StreamProtocolError(f"Unexpected live payload: {payload!r}", kind="client")
                    for item in payload:
                        result = normalize(RawPayload.from_json(item), session.query, signature_table)
                        if result.rows:
                            yield result
        finally:
            await response.aclose()
