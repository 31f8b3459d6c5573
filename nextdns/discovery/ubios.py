"""Client names from the UniFi OS controller database."""

from __future__ import annotations

import json
import os
import subprocess
import threading
import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Callable, Dict, List, Mapping, Optional

from .util import append_uniq

_QUERY = """
		DBQuery.shellBatchSize = 1000;
		db.user.find({name: {$exists: true, $ne: ""}}, {_id:0, mac:1, name:1});"""

# The controller database only maps MAC addresses to names; no addresses or
# host names are ever learned from it.
_NO_ENTRIES: Mapping[str, List[str]] = MappingProxyType({})


def _field(obj: dict, name: str):
    for key, value in obj.items():
        if key.lower() == name:
            return value
    return None


def parse_client_records(text: str) -> Dict[str, List[str]]:
    """Parse a stream of JSON ``{mac, name}`` objects into MAC to names.

    Parsing stops at the first value that is not a valid record. Fields
    missing from a record keep the value of the previous record.
    """
    decoder = json.JSONDecoder()
    macs: Dict[str, List[str]] = {}
    mac = name = ""
    pos = 0
    while True:
        while pos < len(text) and text[pos].isspace():
            pos += 1
        if pos >= len(text):
            break
        try:
            obj, pos = decoder.raw_decode(text, pos)
        except json.JSONDecodeError:
            break
        if not isinstance(obj, dict):
            break
        new_mac, new_name = _field(obj, "mac"), _field(obj, "name")
        if new_mac is not None:
            if not isinstance(new_mac, str):
                break
            mac = new_mac
        if new_name is not None:
            if not isinstance(new_name, str):
                break
            name = new_name
        key = mac.lower()
        macs[key] = append_uniq(macs.get(key), name)
    return macs


@dataclass
class Ubios:
    on_error: Optional[Callable[[Exception], None]] = None
    unifi_dir: str = "/data/unifi"
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    _supported: Optional[bool] = None
    _macs: Dict[str, List[str]] = field(default_factory=dict, repr=False)
    _expires: float = 0.0

    def _refresh_locked(self) -> None:
        if self._supported is None:
            self._supported = os.path.isdir(self.unifi_dir)
        if not self._supported:
            return
        now = time.monotonic()
        if now < self._expires:
            return
        self._expires = now + 300
        try:
            out = subprocess.run(
                ["/usr/bin/mongo", "localhost:27117/ace", "--quiet", "--eval", _QUERY],
                capture_output=True,
                check=True,
            ).stdout
            self._macs = parse_client_records(out.decode(errors="replace"))
        except (OSError, subprocess.SubprocessError) as e:
            if self.on_error is not None:
                self.on_error(type(e)(f"clientList: {e}"))

    def name(self) -> str:
        return "ubios"

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