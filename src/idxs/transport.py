"""HTTP helpers shared by the fetch and live executors."""

from __future__ import annotations

import json
from collections.abc import Mapping

import httpx

from idxs.errors import FetchRequestError


def build_headers(api_key: str | None, extra: Mapping[str, str] | None = None) -> dict[str, str]:
    headers = dict(extra or {})
    if api_key:
        headers["Api-Key"] = api_key
    return headers


def error_message(raw: str) -> str:
    """Prefer the ``message`` field of a JSON error body over the raw text."""

    try:
        data = json.loads(raw)
    except ValueError:
        return raw
    if isinstance(data, Mapping) and isinstance(data.get("message"), str):
        return data["message"]
    return raw


async def raise_for_status(response: httpx.Response) -> None:
    """Raise ``FetchRequestError`` for a non-2xx response."""

    if response.is_success:
        return
    await response.aread()
    raise FetchRequestError(error_message(response.text), response)


def clone_request(request: httpx.Request) -> httpx.Request:
    """Copy of ``request`` for listeners, built from its already-encoded body."""

    return httpx.Request(request.method, request.url, headers=request.headers, content=request.content)


def clone_response(response: httpx.Response) -> httpx.Response:
    """Copy of ``response`` for listeners.

    A streamed body is not copied: the clone of an unread response carries the
    status and headers only, so listeners never consume the caller's stream.
    """

    try:
        content = response.content
    except httpx.ResponseNotRead:
        content = b""
    headers = response.headers.copy()
    headers.pop("content-encoding", None)
    return httpx.Response(
        response.status_code,
        headers=headers,
        content=content,
        request=response.request,
    )
