"""Turn raw tabular payloads into typed rows."""

from __future__ import annotations

import re
from types import MappingProxyType
from typing import Any

from idxs.decoding import DecodeRule, SignatureTable, build_signature_table, resolve
from idxs.errors import DecodeError
from idxs.types import Query, RawPayload, Result

FROM_RE = re.compile(r"\bfrom\s+(\w+)", re.IGNORECASE)


def extract_table_name(query: str) -> str | None:
    """Return the first word after ``from``, lowercased."""

    match = FROM_RE.search(query)
    if match is None:
        return None
    return match.group(1).lower()


def column_table_name(column: str, query: str) -> str | None:
    """Return the table qualifier written before ``column`` in the query.

    Matches ``txs.col``, ``"txs".col``, ``txs."col"`` and ``"txs"."col"``.
    """

    pattern = re.compile(rf'"?(\w+)"?\."?{re.escape(column)}"?(?:\s|,|$)', re.IGNORECASE)
    match = pattern.search(query)
    if match is None:
        return None
    return match.group(1)


def column_rules(raw: RawPayload, query: str, signature_table: SignatureTable) -> list[DecodeRule]:
    source_table = extract_table_name(query)
    return [
        resolve(column.name, column_table_name(column.name, query) or source_table, signature_table)
        for column in raw.columns
    ]


def normalize(raw: RawPayload, query: Query, signature_table: SignatureTable | None = None) -> Result:
    """Decode every row of ``raw`` according to the columns it selects.

    ``signature_table`` may be passed in when the caller already built it for
    ``query.signatures``; otherwise it is derived here.
    """

    if signature_table is None:
        signature_table = build_signature_table(query.signatures)
    rules = column_rules(raw, query.text, signature_table)
    names = [column.name for column in raw.columns]

    rows: list[MappingProxyType[str, Any]] = []
    for index, raw_row in enumerate(raw.rows):
        if len(raw_row) < len(names):
            raise DecodeError(f"Row {index} has {len(raw_row)} values for {len(names)} columns")
        record: dict[str, Any] = {}
        for name, rule, value in zip(names, rules, raw_row, strict=False):
            try:
                record[name] = rule.decode(value)
            except DecodeError as exc:
                raise DecodeError(f"Failed to decode column {name!r} in row {index}: {exc.message}") from exc
        rows.append(MappingProxyType(record))

    return Result(cursor=raw.cursor, rows=tuple(rows))
