"""Parser for human-readable function and event signatures."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Literal, cast

from idxs.errors import InvalidSignatureError

SignatureKind = Literal["function", "event"]

HEADER_RE = re.compile(r"^\s*(function|event)\s+([A-Za-z_$][A-Za-z0-9_$]*)\s*\(")
PARAM_MODIFIERS = frozenset({"indexed", "memory", "calldata", "storage", "payable"})


@dataclass(frozen=True)
class Parameter:
    name: str
    type: str


@dataclass(frozen=True)
class SignatureItem:
    """Name and named parameters of one contract interface member."""

    kind: SignatureKind
    name: str
    inputs: tuple[Parameter, ...]


def parse_signature(signature: str) -> SignatureItem:
    """Parse ``event Transfer(address indexed from, ...)`` style text.

    Only the member name and its input ``{name, type}`` pairs are extracted.
    Unnamed inputs are dropped since they cannot be selected as columns.
    """

    match = HEADER_RE.match(signature)
    if match is None:
        raise InvalidSignatureError(f"Invalid signature: {signature!r}")

    kind, name = match.group(1), match.group(2)
    body = _balanced_body(signature, match.end() - 1)
    if body is None:
        raise InvalidSignatureError(f"Unbalanced parentheses in signature: {signature!r}")

    inputs: list[Parameter] = []
    for raw_param in _split_top_level(body):
        param = _parse_parameter(raw_param, signature)
        if param.name:
            inputs.append(param)
    return SignatureItem(kind=cast(SignatureKind, kind), name=name, inputs=tuple(inputs))


def _balanced_body(text: str, open_index: int) -> str | None:
    depth = 0
    for index in range(open_index, len(text)):
        char = text[index]
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth == 0:
                return text[open_index + 1 : index]
    return None


def _split_top_level(body: str) -> list[str]:
    parts: list[str] = []
    depth = 0
    current: list[str] = []
    for char in body:
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
        if char == "," and depth == 0:
            parts.append("".join(current))
            current = []
            continue
        current.append(char)
    tail = "".join(current)
    if tail.strip() or parts:
        parts.append(tail)
    return [part.strip() for part in parts]


def _parse_parameter(raw: str, signature: str) -> Parameter:
    if not raw:
        raise InvalidSignatureError(f"Empty parameter in signature: {signature!r}")

    abi_type, rest = _take_type(raw)
    words = [word for word in rest.split() if word not in PARAM_MODIFIERS]
    if len(words) > 1:
        raise InvalidSignatureError(f"Invalid parameter {raw!r} in signature: {signature!r}")
    name = words[0] if words else ""
    return Parameter(name=name, type=normalize_type(abi_type))


def _take_type(raw: str) -> tuple[str, str]:
    depth = 0
    for index, char in enumerate(raw):
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
        elif char.isspace() and depth == 0:
            return raw[:index], raw[index:]
    return raw, ""


def normalize_type(abi_type: str) -> str:
    """Expand ``uint``/``int`` aliases to their 256-bit canonical names."""

    base, bracket, suffix = abi_type.partition("[")
    if base in {"uint", "int"}:
        base = f"{base}256"
    return f"{base}{bracket}{suffix}"
