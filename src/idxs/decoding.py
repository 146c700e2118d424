"""Column decode rules for standard tables and signature-derived tables."""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, TypeAlias

from idxs.errors import DecodeError
from idxs.signatures import parse_signature

SAFE_INTEGER_BITS = 48
INT_WIDTH_RE = re.compile(r"^u?int(\d*)$")
SECONDS_RE = re.compile(r"^\d+")

SignatureTable: TypeAlias = "Mapping[str, Mapping[str, DecodeRule]]"


class RuleKind(StrEnum):
    HEX = "hex"
    BOOL = "bool"
    INTEGER = "integer"
    BIGINT = "bigint"
    STRING = "string"
    TIMESTAMP = "timestamp"
    PASSTHROUGH = "passthrough"


@dataclass(frozen=True)
class DecodeRule:
    """One way of turning a wire value into a Python value."""

    kind: RuleKind
    array: bool = False

    def decode(self, value: Any) -> Any:
        if value is None or self.kind is RuleKind.PASSTHROUGH:
            return value
        if not self.array:
            return _decode_scalar(self.kind, value)
        if not isinstance(value, list):
            raise DecodeError(f"Expected an array for {self.kind} values, got {value!r}")
        return [None if item is None else _decode_scalar(self.kind, item) for item in value]


PASSTHROUGH = DecodeRule(RuleKind.PASSTHROUGH)
HEX = DecodeRule(RuleKind.HEX)
BOOL = DecodeRule(RuleKind.BOOL)
INTEGER = DecodeRule(RuleKind.INTEGER)
BIGINT = DecodeRule(RuleKind.BIGINT)
STRING = DecodeRule(RuleKind.STRING)
TIMESTAMP = DecodeRule(RuleKind.TIMESTAMP)

STANDARD_TABLES = ("txs", "logs", "blocks")

STANDARD_COLUMN_TYPES: dict[str, DecodeRule] = {
    "address": HEX,
    "block_num": BIGINT,
    "block_timestamp": TIMESTAMP,
    "chain": INTEGER,
    "data": HEX,
    "extra_data": HEX,
    "from": HEX,
    "gas": BIGINT,
    "gas_limit": BIGINT,
    "gas_price": BIGINT,
    "gas_used": BIGINT,
    "hash": HEX,
    "idx": INTEGER,
    "input": HEX,
    "log_idx": INTEGER,
    "miner": HEX,
    "nonce": BIGINT,
    "num": BIGINT,
    "receipts_root": HEX,
    "size": INTEGER,
    "state_root": HEX,
    "timestamp": INTEGER,
    "to": HEX,
    "topics": DecodeRule(RuleKind.HEX, array=True),
    "tx_hash": HEX,
    "type": INTEGER,
    "value": BIGINT,
}


def _decode_scalar(kind: RuleKind, value: Any) -> Any:
    match kind:
        case RuleKind.HEX:
            if not isinstance(value, str) or not value.startswith("0x"):
                raise DecodeError(f"Expected a 0x-prefixed hex string, got {value!r}")
            return value
        case RuleKind.BOOL:
            if not isinstance(value, bool):
                raise DecodeError(f"Expected a boolean, got {value!r}")
            return value
        case RuleKind.INTEGER | RuleKind.BIGINT:
            return _to_int(value)
        case RuleKind.STRING:
            if not isinstance(value, str):
                raise DecodeError(f"Expected a string, got {value!r}")
            return value
        case RuleKind.TIMESTAMP:
            return parse_timestamp(value)
        case RuleKind.PASSTHROUGH:
            return value


def _to_int(value: Any) -> int:
    if isinstance(value, bool):
        raise DecodeError(f"Expected an integer, got {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not value.is_integer():
            raise DecodeError(f"Expected an integer, got {value!r}")
        return int(value)
    if isinstance(value, str):
        text = value.strip()
        try:
            if text[:2].lower() == "0x" or text[:3].lower() in {"-0x", "+0x"}:
                return int(text, 16)
            return int(text, 10)
        except ValueError:
            raise DecodeError(f"Expected an integer string, got {value!r}") from None
    raise DecodeError(f"Expected an integer, got {value!r}")


def parse_timestamp(value: Any) -> int:
    """Parse ``YYYY-MM-DD HH:MM:SS[.fff] [+-]HH:MM:SS`` into UTC epoch seconds.

    The seconds fraction and the trailing offset are ignored; the wall clock
    part is read as UTC.
    """

    if not isinstance(value, str):
        raise DecodeError(f"Invalid timestamp {value!r} (expected a string)")

    date_part, _, rest = value.partition(" ")
    time_part = rest.split(" ", 1)[0]
    if not time_part:
        raise DecodeError(f"Invalid timestamp {value!r} (missing time)")

    clock = time_part.split(".", 1)[0]
    pieces = clock.split(":")
    if len(pieces) < 3 or not all(pieces[:3]):
        raise DecodeError(f"Invalid timestamp {value!r} (invalid time)")

    hours, minutes, seconds = pieces[:3]
    seconds_match = SECONDS_RE.match(seconds)
    if seconds_match is None:
        raise DecodeError(f"Invalid timestamp {value!r} (invalid time)")
    seconds = seconds_match.group(0)
    try:
        parsed = datetime.strptime(
            f"{date_part}T{hours.zfill(2)}:{minutes}:{seconds}",
            "%Y-%m-%dT%H:%M:%S",
        ).replace(tzinfo=UTC)
    except ValueError:
        raise DecodeError(f"Invalid timestamp {value!r} (could not parse)") from None
    return int(parsed.timestamp())


def rule_for_abi_type(abi_type: str) -> DecodeRule:
    """Map a declared ABI parameter type to its decode rule."""

    is_array = abi_type.endswith("]")
    element = abi_type.split("[", 1)[0]

    if element == "address" or element.startswith("bytes"):
        return DecodeRule(RuleKind.HEX, array=is_array)
    if element == "bool":
        return DecodeRule(RuleKind.BOOL, array=is_array)

    width_match = INT_WIDTH_RE.match(element)
    if width_match is not None:
        width = int(width_match.group(1) or 256)
        kind = RuleKind.INTEGER if width <= SAFE_INTEGER_BITS else RuleKind.BIGINT
        return DecodeRule(kind, array=is_array)

    return DecodeRule(RuleKind.STRING, array=is_array)


def build_signature_table(signatures: Iterable[str]) -> dict[str, dict[str, DecodeRule]]:
    """Build ``{table: {column: rule}}`` from function/event signatures."""

    table: dict[str, dict[str, DecodeRule]] = {}
    for signature in signatures:
        item = parse_signature(signature)
        table[item.name.lower()] = {param.name: rule_for_abi_type(param.type) for param in item.inputs}
    return table


def resolve(column: str, table: str | None, signature_table: SignatureTable) -> DecodeRule:
    """Pick the decode rule for ``column`` read from ``table``."""

    if not table:
        return PASSTHROUGH
    table = table.lower()
    if table in STANDARD_TABLES:
        return STANDARD_COLUMN_TYPES.get(column, PASSTHROUGH)

    derived = signature_table.get(table, {}).get(column)
    if derived is not None:
        return derived
    return STANDARD_COLUMN_TYPES.get(column, PASSTHROUGH)
