"""Value types shared by the fetch and live paths."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, TypeAlias

from idxs.errors import DecodeError

Row: TypeAlias = Mapping[str, Any]


@dataclass(frozen=True)
class BlockCursor:
    """Structured cursor pointing at one block on one chain."""

    chain_id: int
    block_number: int

    def __str__(self) -> str:
        return f"{self.chain_id}-{self.block_number}"


Cursor: TypeAlias = str | BlockCursor


def serialize_cursor(cursor: Cursor | None) -> str | None:
    """Render a cursor the way the API expects it on the wire."""

    if cursor is None:
        return None
    if isinstance(cursor, BlockCursor):
        return str(cursor)
    return cursor


@dataclass(frozen=True)
class Query:
    """One logical query: SQL text, optional signatures and start cursor."""

    text: str
    signatures: tuple[str, ...] = ()
    cursor: Cursor | None = None

    @classmethod
    def build(
        cls,
        text: str,
        signatures: Sequence[str] | None = None,
        cursor: Cursor | None = None,
    ) -> Query:
        return cls(text=text, signatures=tuple(signatures or ()), cursor=cursor)


@dataclass(frozen=True)
class Column:
    name: str
    pgtype: str = ""


@dataclass(frozen=True)
class RawPayload:
    """Undecoded result as sent by the server."""

    columns: tuple[Column, ...]
    cursor: str
    rows: tuple[Sequence[Any], ...]

    @classmethod
    def from_json(cls, payload: Any) -> RawPayload:
        if not isinstance(payload, Mapping):
            raise DecodeError(f"Expected a result object, got {type(payload).__name__}")
        columns = payload.get("columns")
        rows = payload.get("rows")
        if not isinstance(columns, list) or not isinstance(rows, list):
            raise DecodeError("Result object is missing 'columns' or 'rows'")

        parsed_columns: list[Column] = []
        for column in columns:
            if not isinstance(column, Mapping) or not isinstance(column.get("name"), str):
                raise DecodeError(f"Invalid column descriptor: {column!r}")
            parsed_columns.append(Column(name=column["name"], pgtype=str(column.get("pgtype") or "")))

        for row in rows:
            if not isinstance(row, list):
                raise DecodeError(f"Invalid row: {row!r}")

        return cls(
            columns=tuple(parsed_columns),
            cursor=str(payload.get("cursor") or ""),
            rows=tuple(rows),
        )


@dataclass(frozen=True)
class Result:
    """Decoded result handed back to callers."""

    cursor: str
    rows: tuple[Row, ...] = ()


@dataclass
class RetryState:
    """Attempt bookkeeping for one fetch or one live session."""

    attempt: int = 0
    last_error: Exception | None = field(default=None, repr=False)
