"""Exception types raised by the idxs client."""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal

if TYPE_CHECKING:
    import httpx

StreamErrorKind = Literal["client", "server"]


class IdxsError(Exception):
    """Base exception for idxs."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class FetchRequestError(IdxsError):
    """Raised when the query API answers with a non-2xx status."""

    def __init__(self, message: str, response: httpx.Response) -> None:
        super().__init__(message)
        self.response = response
        self.status = response.status_code

    def __str__(self) -> str:
        return f"{self.message} (status: {self.status})"


class StreamProtocolError(IdxsError):
    """Raised when the live stream reports an error or breaks its framing.

    ``kind`` is ``"server"`` for faults the server expects to clear on
    reconnect and ``"client"`` for everything else.
    """

    def __init__(self, message: str, *, kind: StreamErrorKind) -> None:
        super().__init__(message)
        self.kind = kind


class DecodeError(IdxsError):
    """Raised when a value does not match the shape its column declares."""


class FrameDecodeError(StreamProtocolError, DecodeError):
    """Raised when a streamed ``data:`` line is not valid JSON."""

    def __init__(self, message: str) -> None:
        super().__init__(message, kind="client")


class InvalidSignatureError(IdxsError):
    """Raised when a function or event signature cannot be parsed."""


class RequestCancelledError(IdxsError):
    """Raised when a cancellation signal interrupts a request."""

    def __init__(self, message: str = "Request cancelled") -> None:
        super().__init__(message)


class EmptyResultError(IdxsError):
    """Raised when the query API returns no result payload."""


class RetryExhaustedError(IdxsError):
    """Raised when the retry loop ends without a captured error."""
