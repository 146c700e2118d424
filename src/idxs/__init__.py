"""idxs - async client for the Index Supply query API."""

from .client import IndexSupply, create
from .config import Settings, get_settings
from .emitter import EventContext
from .errors import (
    DecodeError,
    EmptyResultError,
    FetchRequestError,
    FrameDecodeError,
    IdxsError,
    InvalidSignatureError,
    RequestCancelledError,
    RetryExhaustedError,
    StreamProtocolError,
)
from .types import BlockCursor, Cursor, Query, Result

__version__ = "0.1.0"

__all__ = [
    "BlockCursor",
    "Cursor",
    "DecodeError",
    "EmptyResultError",
    "EventContext",
    "FetchRequestError",
    "FrameDecodeError",
    "IdxsError",
    "IndexSupply",
    "InvalidSignatureError",
    "Query",
    "RequestCancelledError",
    "Result",
    "RetryExhaustedError",
    "Settings",
    "StreamProtocolError",
    "create",
    "get_settings",
]
