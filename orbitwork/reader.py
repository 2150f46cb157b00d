"""Unified reader for ledger records.

Depending on the read path a record arrives as a named struct (mapping or
attribute object), a positional tuple, or something that behaves as both.
Every decoder goes through :func:`read_field`, which tries a fixed list of
access strategies and falls back to a default.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from typing import Any

from eth_utils import is_address, is_same_address

MISSING = object()

Strategy = Callable[[Any, str, "int | None"], Any]


def by_name(record: Any, name: str, index: int | None) -> Any:
    if isinstance(record, Mapping):
        return record.get(name, MISSING)
    if isinstance(record, (str, bytes)):
        return MISSING
    return getattr(record, name, MISSING)


def by_index(record: Any, name: str, index: int | None) -> Any:
    if index is None or isinstance(record, (str, bytes)):
        return MISSING
    if isinstance(record, Sequence):
        return record[index] if -len(record) <= index < len(record) else MISSING
    if isinstance(record, Mapping):
        return record.get(index, MISSING)
    try:
        return record[index]
    except (IndexError, KeyError, TypeError):
        return MISSING


def by_accessor(record: Any, name: str, index: int | None) -> Any:
    """Call ``record.get(index)`` then ``record.get(name)`` on result-like objects."""
    get = getattr(record, "get", None)
    if not callable(get) or isinstance(record, Mapping):
        return MISSING
    for key in (index, name):
        if key is None:
            continue
        try:
            value = get(key)
        except (IndexError, KeyError, TypeError, ValueError):
            continue
        if value is not None:
            return value
    return MISSING


NAMED_FIRST: tuple[Strategy, ...] = (by_name, by_index)
INDEX_FIRST: tuple[Strategy, ...] = (by_index, by_name, by_accessor)


def read_field(
    record: Any,
    name: str,
    index: int | None = None,
    default: Any = None,
    strategies: Sequence[Strategy] = NAMED_FIRST,
) -> Any:
    """Return the first present, non-None value found by *strategies*."""
    if record is None:
        return default
    for strategy in strategies:
        value = strategy(record, name, index)
        if value is not MISSING and value is not None:
            return value
    return default


def to_int(value: Any, default: int = 0) -> int:
    """Coerce ledger numerics (int, numeric string, hex string) to int."""
    if value is None:
        return default
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    try:
        if isinstance(value, str):
            text = value.strip()
            return int(text, 16) if text.lower().startswith("0x") else int(text)
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return default


def to_text(value: Any, default: str = "") -> str:
    if value is None:
        return default
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1")
    return bool(value)


def same_address(a: str | None, b: str | None) -> bool:
    """Case-insensitive address comparison; empty values never match."""
    if not a or not b:
        return False
    if is_address(a) and is_address(b):
        return is_same_address(a, b)
    return a.lower() == b.lower()
