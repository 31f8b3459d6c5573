"""Client names from the ASUSWRT-Merlin custom client list."""

from __future__ import annotations

import subprocess
import threading
import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Callable, Dict, List, Mapping, Optional, Union

from .util import append_uniq

# The client list only maps MAC addresses to names; no addresses or host
# names are ever learned from it.
_NO_ENTRIES: Mapping[str, List[str]] = MappingProxyType({})


def read_client_list(data: Union[bytes, str]) -> Optional[Dict[str, List[str]]]:
    """Parse ``<name>mac>...>>`` records into a MAC to names mapping."""
    if isinstance(data, bytes):
        data = data.decode(errors="replace")
    if not data:
        return None
    macs: Dict[str, List[str]] = {}
    b = data
    while b:
        if b[0] in "\n\r":
            b = b[1:]
            continue
        if b[0] != "<":
            raise ValueError(f"{b}: invalid format: missing item separator")
        b = b[1:]
        eol = b.find("<")
        if eol == -1:
            eol = len(b)
        idx = b.find(">")
        if idx == -1:
            raise ValueError(f"{b}: invalid format: missing host separator")
        idx2 = idx + 18
        if idx2 > eol or len(b) <= idx2 or b[idx2] != ">":
            raise ValueError(f"{b}: invalid format: missing MAC separator")
        if idx > 0:
            mac = b[idx + 1 : idx2].lower()
            macs[mac] = append_uniq(macs.get(mac), b[:idx])
        b = b[eol:]
    return macs


@dataclass
class Merlin:
    on_error: Optional[Callable[[Exception], None]] = None
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    _supported: Optional[bool] = None
    _macs: Dict[str, List[str]] = field(default_factory=dict, repr=False)
    _expires: float = 0.0

    def _check_supported(self) -> bool:
        if self._supported is None:
            try:
                out = subprocess.run(["uname", "-o"], capture_output=True).stdout
            except OSError:
                out = b""
            self._supported = out.startswith(b"ASUSWRT-Merlin")
        return self._supported

    def _refresh_locked(self) -> None:
        if not self._check_supported():
            return
        now = time.monotonic()
        if now < self._expires:
            return
        self._expires = now + 30
        try:
            self._client_list_locked()
        except (OSError, ValueError, subprocess.SubprocessError) as e:
            if self.on_error is not None:
                self.on_error(type(e)(f"clientList: {e}"))

    def _client_list_locked(self) -> None:
        out = subprocess.run(
            ["nvram", "get", "custom_clientlist"], capture_output=True, check=True
        ).stdout
        if out and out[:1] != b"<":
            out = b"<" + out
        self._macs = read_client_list(out) or {}

    def name(self) -> str:
        return "merlin"

    def visit(self, f) -> None:
        with self._lock:
            self._refresh_locked()
            by_name: Dict[str, List[str]] = {}
            for mac, names in self._macs.items():
                for n in names:
                    by_name.setdefault(n, []).append(mac)
        for n, macs in by_name.items():
            f(n, macs)

    def lookup_mac(self, mac: str) -> Optional[List[str]]:
        with self._lock:
            self._refresh_locked()
            return self._macs.get(mac)

    def lookup_addr(self, addr: str) -> Optional[List[str]]:
        return _NO_ENTRIES.get(addr)

    def lookup_host(self, name: str) -> Optional[List[str]]:
        return _NO_ENTRIES.get(name)