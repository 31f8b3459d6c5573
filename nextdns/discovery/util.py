"""Helpers shared by discovery sources."""

from __future__ import annotations

import os
import threading
from dataclasses import dataclass


def is_valid_name(name: str) -> bool:
    """Return False for empty or machine-generated looking host names."""
    if name in ("", "*"):
        return False
    if (
        len(name) == 36
        and name[8] == "-"
        and name[13] == "-"
        and name[18] == "-"
        and name[23] == "-"
        and name.strip("0123456789abcdef-") == ""
    ):
        return False
    if (
        len(name) == 17
        and all(name[i] == "_" for i in (2, 5, 8, 11, 14))
        and name.strip("0123456789ABCDEF_") == ""
    ):
        return False
    if 7 <= len(name) <= 15 and name.strip("0123456789-") == "":
        return False
    return True


def lower_ascii(s: str) -> str:
    """Lower-case only ASCII letters."""
    return "".join(chr(ord(c) + 32) if "A" <= c <= "Z" else c for c in s)


def abs_domain_name(name: str) -> str:
    """Return name with a trailing dot."""
    return name if name.endswith(".") else name + "."


def prepare_host_lookup(host: str) -> str:
    return abs_domain_name(lower_ascii(host))


def append_uniq(values, *args) -> list:
    """Return values extended with the items of args not already present."""
    result = list(values or [])
    for item in args:
        if item not in result:
            result.append(item)
    return result


class SemaphoreMap:
    """A set of keys that can each be held by one caller at a time."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._acquired: set[str] = set()

    def acquire(self, key: str) -> bool:
        with self._lock:
            if key in self._acquired:
                return False
            self._acquired.add(key)
            return True

    def release(self, key: str) -> None:
        with self._lock:
            self._acquired.discard(key)


@dataclass(frozen=True)
class FileInfo:
    path: str = ""
    mtime: float = 0.0
    size: int = -1

    @classmethod
    def from_path(cls, path: str) -> "FileInfo":
        st = os.stat(path)
        return cls(path, st.st_mtime, st.st_size)

    def same_as(self, path: str) -> bool:
        """True if path is this file and it has not changed since."""
        if self.path != path:
            return False
        try:
            other = FileInfo.from_path(path)
        except OSError:
            return False
        return self.mtime == other.mtime and self.size == other.size