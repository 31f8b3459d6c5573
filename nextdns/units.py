"""Parsing of human-readable byte sizes."""

from __future__ import annotations

_UNITS = {
    "": 1,
    "b": 1,
    "k": 1 << 10,
    "kb": 1 << 10,
    "m": 1 << 20,
    "mb": 1 << 20,
    "g": 1 << 30,
    "gb": 1 << 30,
    "t": 1 << 40,
    "tb": 1 << 40,
    "p": 1 << 50,
    "pb": 1 << 50,
    "e": 1 << 60,
    "eb": 1 << 60,
}

_MAX_UINT64 = float(2**64)


def parse_bytes(s: str) -> int:
    """Return the number of bytes in a size such as ``1MB`` or ``1,234.5 kb``."""
    end = 0
    for ch in s:
        if not (ch.isdecimal() or ch in ".,"):
            break
        end += 1
    num = s[:end].replace(",", "")
    if not num:
        raise ValueError("invalid number")
    try:
        value = float(num)
    except ValueError as e:
        raise ValueError(f"invalid number: {num!r}") from e
    unit = s[end:].strip().lower()
    multiplier = _UNITS.get(unit)
    if multiplier is None:
        raise ValueError(f"unknown unit name: {unit}")
    value *= multiplier
    if value >= _MAX_UINT64:
        raise ValueError(f"too large: {s}")
    return int(value)