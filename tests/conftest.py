from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any, TypeAlias

import httpx
import pytest

from idxs.client import IndexSupply
from idxs.config import Settings

Handler: TypeAlias = Callable[[httpx.Request], Any]


@pytest.fixture(autouse=True)
def backoff_delays(monkeypatch: pytest.MonkeyPatch) -> list[int]:
    """Record backoff attempts instead of sleeping for them."""

    attempts: list[int] = []

    def no_wait(attempt: int) -> float:
        attempts.append(attempt)
        return 0.0

    monkeypatch.setattr("idxs.fetch.backoff_delay", no_wait)
    monkeypatch.setattr("idxs.live.backoff_delay", no_wait)
    return attempts


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, api_key=None)


@pytest.fixture
def make_client(settings: Settings) -> Callable[..., IndexSupply]:
    def _make(handler: Handler, **kwargs: Any) -> IndexSupply:
        return IndexSupply(settings=settings, transport=httpx.MockTransport(handler), **kwargs)

    return _make


def sse(*payloads: Any) -> bytes:
    return "".join(f"data: {json.dumps(payload)}\n\n" for payload in payloads).encode("utf-8")


def raw_result(cursor: str, columns: list[str], rows: list[list[Any]]) -> dict[str, Any]:
    return {
        "cursor": cursor,
        "columns": [{"name": name, "pgtype": "text"} for name in columns],
        "rows": rows,
    }
