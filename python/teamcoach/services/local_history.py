"""Parsing and salvage of client-held chat history.

Clients send history as the raw string they kept in browser storage. It is
either a JSON array of conversations or an export document whose
"conversations" key holds that array. Truncated writes leave it cut off
mid-document; salvage() recovers what it can.
"""

import json
import re
from collections import deque
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any

STRATEGY_PARSE = "parse"
STRATEGY_BALANCE = "balance_brackets"
STRATEGY_EXTRACT = "extract_objects"

_CLOSERS = {"[": "]", "{": "}"}
# Bounds the number of truncation points tried by the bracket balancer
_MAX_CUT_ATTEMPTS = 200
# Total characters handed to json.loads across those attempts
_MAX_PARSE_BYTES = 64 * 1024 * 1024
_STRUCTURAL = re.compile(r"[\\\"\[\]{}]")


class LocalHistoryFormatError(ValueError):
    """The history is valid JSON but not a list of conversations."""


@dataclass
class SalvageResult:
    strategy: str
    items: list[Any]


def extract_items(document: Any) -> list[Any]:
    """Return the conversation entries of a parsed history document."""
    if isinstance(document, list):
        return document
    if isinstance(document, dict) and isinstance(document.get("conversations"), list):
        return document["conversations"]
    raise LocalHistoryFormatError("expected a list of conversations")


def _scan_brackets(text: str) -> tuple[list[tuple[int, str]], str | None]:
    """Walk text once, recording where values close.

    Returns the offsets of the last closing brackets outside strings, each
    with the suffix that would close everything still open there, and the
    suffix that closes text as a whole. That final suffix is None when the
    brackets are mismatched, which no suffix can fix.
    """
    cuts: deque[tuple[int, str]] = deque(maxlen=_MAX_CUT_ATTEMPTS)
    stack: list[str] = []
    in_string = False
    escaped_at = -1
    for match in _STRUCTURAL.finditer(text):
        i = match.start()
        ch = match.group()
        if in_string:
            if i == escaped_at:
                continue
            if ch == "\\":
                escaped_at = i + 1
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in _CLOSERS:
            stack.append(_CLOSERS[ch])
        elif ch in "]}":
            if not stack or stack.pop() != ch:
                return list(cuts), None
            cuts.append((i, "".join(reversed(stack))))
    suffix = '"' if in_string else ""
    return list(cuts), suffix + "".join(reversed(stack))


def _balance_candidates(text: str) -> Iterator[str]:
    cuts, suffix = _scan_brackets(text)
    if suffix is not None:
        stripped = text if suffix.startswith('"') else text.rstrip().rstrip(",")
        if suffix or stripped != text:
            yield stripped + suffix
    for i, closing in reversed(cuts):
        yield text[: i + 1] + closing


def _balance(text: str) -> Any | None:
    """Close unbalanced brackets, cutting back to earlier value boundaries if needed."""
    budget = _MAX_PARSE_BYTES
    for candidate in _balance_candidates(text):
        budget -= len(candidate)
        if budget < 0:
            break
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            continue
    return None


def _looks_like_conversation(value: Any) -> bool:
    return isinstance(value, dict) and "title" in value and "messages" in value


def _extract_objects(text: str) -> list[dict]:
    """Decode every standalone conversation object found anywhere in text."""
    decoder = json.JSONDecoder()
    found = []
    i = text.find("{")
    while i != -1:
        try:
            value, end = decoder.raw_decode(text, i)
        except json.JSONDecodeError:
            i = text.find("{", i + 1)
            continue
        if _looks_like_conversation(value):
            found.append(value)
            i = text.find("{", end)
        else:
            i = text.find("{", i + 1)
    return found


def salvage(raw: str) -> SalvageResult | None:
    """Recover conversation entries from possibly corrupted history.

    Strategies, first success wins: parse as-is, close unbalanced brackets,
    extract individually decodable conversation objects. Returns None when
    nothing could be recovered.
    """
    try:
        return SalvageResult(STRATEGY_PARSE, extract_items(json.loads(raw)))
    except (json.JSONDecodeError, LocalHistoryFormatError):
        pass

    balanced = _balance(raw)
    if balanced is not None:
        try:
            items = extract_items(balanced)
        except LocalHistoryFormatError:
            items = []
        items = [item for item in items if _looks_like_conversation(item)]
        if items:
            return SalvageResult(STRATEGY_BALANCE, items)

    objects = _extract_objects(raw)
    if objects:
        return SalvageResult(STRATEGY_EXTRACT, objects)
    return None
