import asyncio
from collections.abc import AsyncIterator, Callable
from typing import Any

import httpx
import pytest
from conftest import raw_result, sse

from idxs import (
    FetchRequestError,
    FrameDecodeError,
    IdxsError,
    IndexSupply,
    InvalidSignatureError,
    Result,
    RetryExhaustedError,
    StreamProtocolError,
)
from idxs.live import LiveState, live_params, stream_error
from idxs.types import Query

BLOCKS = ["num", "hash"]


def _batch(cursor: str, *nums: int) -> dict[str, Any]:
    return raw_result(cursor, BLOCKS, [[str(num), f"0x{num:04x}"] for num in nums])


class _Server:
    """Mock transport handler producing one response per connection."""

    def __init__(self, *bodies: bytes | httpx.Response) -> None:
        self.bodies = list(bodies)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        body = self.bodies.pop(0) if len(self.bodies) > 1 else self.bodies[0]
        if isinstance(body, httpx.Response):
            return httpx.Response(body.status_code, headers=body.headers, content=body.content)
        return httpx.Response(200, headers={"Content-Type": "text/event-stream"}, content=body)


async def _collect(stream: AsyncIterator[Result]) -> list[Result]:
    return [result async for result in stream]


def test_live_params_repeat_signatures() -> None:
    query = Query.build("select 1", ["event A()", "event B()"])

    assert live_params(query, "1-2") == [
        ("query", "select 1"),
        ("signatures", "event A()"),
        ("signatures", "event B()"),
        ("cursor", "1-2"),
    ]
    assert live_params(query, None)[-1] == ("signatures", "event B()")


def test_stream_error_kind() -> None:
    assert stream_error({"error": "server", "message": "restarting"}).kind == "server"
    assert stream_error({"error": "user", "message": "bad sql"}).kind == "client"
    assert stream_error({"error": "server"}).message == "Live query failed"


@pytest.mark.asyncio
async def test_live_yields_decoded_batches(make_client: Callable[..., IndexSupply]) -> None:
    server = _Server(sse([_batch("8453-1", 1)], [_batch("8453-2", 2), _batch("8453-3", 3)]))

    async with make_client(server, api_key="secret") as client:
        results = await _collect(
            client.live("select num, hash from blocks", signatures=["event A()", "event B()"], cursor="8453-0")
        )

    assert [result.cursor for result in results] == ["8453-1", "8453-2", "8453-3"]
    assert dict(results[0].rows[0]) == {"num": 1, "hash": "0x0001"}

    (request,) = server.requests
    assert request.method == "GET"
    assert request.url.path == "/v2/query-live"
    assert request.url.params["query"] == "select num, hash from blocks"
    assert request.url.params.get_list("signatures") == ["event A()", "event B()"]
    assert request.url.params["cursor"] == "8453-0"
    assert request.headers["Api-Key"] == "secret"


@pytest.mark.asyncio
async def test_live_skips_empty_batches(make_client: Callable[..., IndexSupply]) -> None:
    server = _Server(sse([_batch("8453-1")], [_batch("8453-2", 2)], [_batch("8453-3")]))

    async with make_client(server) as client:
        results = await _collect(client.live("select num, hash from blocks"))

    assert [result.cursor for result in results] == ["8453-2"]


@pytest.mark.asyncio
async def test_live_ends_quietly_when_server_closes(make_client: Callable[..., IndexSupply]) -> None:
    errors: list[Any] = []
    async with make_client(_Server(sse([_batch("1-1")]))) as client:
        client.on("error", lambda payload, context: errors.append(payload))
        assert await _collect(client.live("select num, hash from blocks")) == []

    assert errors == []


@pytest.mark.asyncio
async def test_live_invalid_json_is_fatal(make_client: Callable[..., IndexSupply]) -> None:
    server = _Server(sse([_batch("1-1", 1)]) + b"data: {invalid json}\n\n")

    async with make_client(server) as client:
        seen: list[Result] = []
        with pytest.raises(FrameDecodeError):
            async for result in client.live("select num, hash from blocks"):
                seen.append(result)

    assert len(seen) == 1
    assert len(server.requests) == 1


@pytest.mark.asyncio
async def test_live_client_error_is_not_retried(make_client: Callable[..., IndexSupply]) -> None:
    server = _Server(sse({"error": "user", "message": "syntax error at or near selec"}))

    async with make_client(server) as client:
        with pytest.raises(StreamProtocolError, match="syntax error") as exc_info:
            await _collect(client.live("selec 1"))

    assert exc_info.value.kind == "client"
    assert len(server.requests) == 1


@pytest.mark.asyncio
async def test_live_unexpected_payload_is_client_error(make_client: Callable[..., IndexSupply]) -> None:
    async with make_client(_Server(sse("hello"))) as client:
        with pytest.raises(StreamProtocolError, match="Unexpected live payload"):
            await _collect(client.live("select num, hash from blocks"))


@pytest.mark.asyncio
async def test_live_server_error_reconnects_from_last_cursor(
    make_client: Callable[..., IndexSupply], backoff_delays: list[int]
) -> None:
    server = _Server(
        sse([_batch("8453-5", 5)], {"error": "server", "message": "restarting"}),
        sse([_batch("8453-6", 6)]),
    )
    errors: list[Any] = []

    async with make_client(server) as client:
        client.on("error", lambda payload, context: errors.append(payload))
        results = await _collect(client.live("select num, hash from blocks", cursor="8453-0"))

    assert [result.cursor for result in results] == ["8453-5", "8453-6"]
    assert [request.url.params["cursor"] for request in server.requests] == ["8453-0", "8453-5"]
    assert len(errors) == 1
    assert isinstance(errors[0], StreamProtocolError)
    assert errors[0].kind == "server"
    assert backoff_delays == [1]


@pytest.mark.asyncio
async def test_live_retries_failed_connections(
    make_client: Callable[..., IndexSupply], backoff_delays: list[int]
) -> None:
    server = _Server(
        httpx.Response(500, text="boom"),
        httpx.Response(503, text="busy"),
        sse([_batch("1-1", 1)]),
    )

    async with make_client(server) as client:
        results = await _collect(client.live("select num, hash from blocks"))

    assert len(results) == 1
    assert len(server.requests) == 3
    assert backoff_delays == [1, 2]
    assert "cursor" not in server.requests[-1].url.params


@pytest.mark.asyncio
async def test_live_progress_resets_attempts(
    make_client: Callable[..., IndexSupply], backoff_delays: list[int]
) -> None:
    restart = {"error": "server", "message": "restarting"}
    server = _Server(
        sse([_batch("1-1", 1)], restart),
        sse([_batch("1-2", 2)], restart),
        sse([_batch("1-3", 3)]),
    )

    async with make_client(server) as client:
        results = await _collect(client.live("select num, hash from blocks", retry_count=1))

    assert [result.cursor for result in results] == ["1-1", "1-2", "1-3"]
    assert backoff_delays == [0, 0]


@pytest.mark.asyncio
async def test_live_rejected_request_is_not_retried(make_client: Callable[..., IndexSupply]) -> None:
    server = _Server(httpx.Response(401, json={"message": "invalid api key"}))

    async with make_client(server) as client:
        with pytest.raises(FetchRequestError, match="invalid api key"):
            await _collect(client.live("select num, hash from blocks"))

    assert len(server.requests) == 1


@pytest.mark.asyncio
async def test_live_empty_body(make_client: Callable[..., IndexSupply]) -> None:
    async with make_client(_Server(httpx.Response(204))) as client:
        with pytest.raises(IdxsError, match="Response body is empty"):
            await _collect(client.live("select num, hash from blocks"))


@pytest.mark.asyncio
async def test_live_raises_last_error_when_attempts_run_out(
    make_client: Callable[..., IndexSupply], backoff_delays: list[int]
) -> None:
    server = _Server(sse({"error": "server", "message": "still restarting"}))

    async with make_client(server) as client:
        with pytest.raises(StreamProtocolError, match="still restarting"):
            await _collect(client.live("select num, hash from blocks", retry_count=3))

    assert len(server.requests) == 3
    assert backoff_delays == [1, 2]


@pytest.mark.asyncio
async def test_live_zero_attempts(make_client: Callable[..., IndexSupply]) -> None:
    server = _Server(sse([_batch("1-1", 1)]))

    async with make_client(server) as client:
        with pytest.raises(RetryExhaustedError):
            await _collect(client.live("select num, hash from blocks", retry_count=0))

    assert server.requests == []


@pytest.mark.asyncio
async def test_live_stops_between_batches_when_cancelled(make_client: Callable[..., IndexSupply]) -> None:
    server = _Server(sse([_batch("1-1", 1), _batch("1-2", 2)], [_batch("1-3", 3)]))
    signal = asyncio.Event()
    seen: list[Result] = []

    async with make_client(server) as client:
        async for result in client.live("select num, hash from blocks", signal=signal):
            seen.append(result)
            signal.set()

    assert [result.cursor for result in seen] == ["1-1"]
    assert len(server.requests) == 1


@pytest.mark.asyncio
async def test_live_cancel_interrupts_pending_read(make_client: Callable[..., IndexSupply]) -> None:
    never = asyncio.Event()

    async def body() -> AsyncIterator[bytes]:
        yield sse([_batch("1-1", 1)])
        await never.wait()
        yield sse([_batch("1-2", 2)])

    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, headers={"Content-Type": "text/event-stream"}, content=body())

    signal = asyncio.Event()
    seen: list[Result] = []
    async with make_client(handler) as client:
        stream = client.live("select num, hash from blocks", signal=signal)
        async for result in stream:
            seen.append(result)
            asyncio.get_running_loop().call_later(0.01, signal.set)

    assert [result.cursor for result in seen] == ["1-1"]
    assert len(requests) == 1


@pytest.mark.asyncio
async def test_live_with_set_signal_never_connects(make_client: Callable[..., IndexSupply]) -> None:
    server = _Server(sse([_batch("1-1", 1)]))
    signal = asyncio.Event()
    signal.set()

    async with make_client(server) as client:
        assert await _collect(client.live("select num, hash from blocks", signal=signal)) == []

    assert server.requests == []


@pytest.mark.asyncio
async def test_live_cancel_during_backoff(
    make_client: Callable[..., IndexSupply], monkeypatch: pytest.MonkeyPatch
) -> None:
    signal = asyncio.Event()
    server = _Server(httpx.Response(500, text="boom"))

    def slow_backoff(attempt: int) -> float:
        asyncio.get_running_loop().call_soon(signal.set)
        return 60.0

    monkeypatch.setattr("idxs.live.backoff_delay", slow_backoff)
    async with make_client(server) as client:
        results = await asyncio.wait_for(
            _collect(client.live("select num, hash from blocks", signal=signal)), timeout=5
        )

    assert results == []
    assert len(server.requests) == 1


def test_live_states() -> None:
    assert [state.value for state in LiveState] == ["connecting", "streaming", "backing-off", "done", "failed"]


@pytest.mark.asyncio
async def test_live_listeners_do_not_consume_the_stream(make_client: Callable[..., IndexSupply]) -> None:
    server = _Server(sse([_batch("1-1", 1)], [_batch("1-2", 2)]))
    statuses: list[int] = []

    def on_response(payload: httpx.Response, context: Any) -> None:
        statuses.append(payload.status_code)
        assert payload.content == b""

    async with make_client(server) as client:
        client.on("response", on_response)
        results = await _collect(client.live("select num, hash from blocks"))

    assert statuses == [200]
    assert [result.cursor for result in results] == ["1-1", "1-2"]


@pytest.mark.asyncio
async def test_live_invalid_signature_is_emitted(make_client: Callable[..., IndexSupply]) -> None:
    server = _Server(sse([_batch("1-1", 1)]))
    errors: list[Any] = []

    async with make_client(server) as client:
        client.on("error", lambda payload, context: errors.append(payload))
        with pytest.raises(InvalidSignatureError):
            await _collect(client.live("select num from blocks", signatures=["event Broken("]))

    assert [type(error) for error in errors] == [InvalidSignatureError]
    assert server.requests == []
