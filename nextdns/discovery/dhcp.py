"""Host names from DHCP server lease files."""

from __future__ import annotations

import os
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from .util import FileInfo, abs_domain_name, append_uniq, lower_ascii, prepare_host_lookup

LEASE_FILES = [
    ("/var/run/dhcpd.leases", "isc-dhcpd"),
    ("/var/lib/dhcp/dhcpd.leases", "isc-dhcpd"),
    ("/var/dhcpd/var/db/dhcpd.leases", "isc-dhcpd"),
    ("/var/lib/misc/dnsmasq.leases", "dnsmasq"),
    ("/tmp/dnsmasq.leases", "dnsmasq"),
    ("/tmp/dhcp.leases", "dnsmasq"),
    ("/etc/dhcpd/dhcpd.conf.leases", "dnsmasq"),
    ("/var/run/dnsmasq-dhcp.leases", "dnsmasq"),
    ("/config/dhcpd.leases", "dnsmasq"),
    ("/var/lib/dnsmasq/dhcp.leases", "dnsmasq"),
    ("/data/udapi-config/dnsmasq.lease", "dnsmasq"),
]

Maps = Tuple[Dict[str, List[str]], Dict[str, List[str]], Dict[str, List[str]]]


def _first_existing(files: Iterable[Tuple[str, str]]) -> Tuple[str, str]:
    for path, fmt in files:
        if os.path.exists(path):
            return path, fmt
    return "", ""


def find_lease_file() -> Tuple[str, str]:
    """Return (path, format) of the first known lease file present, or ("", "")."""
    return _first_existing(LEASE_FILES)


def _add(d: Dict[str, List[str]], key: str, value: str) -> None:
    d[key] = append_uniq(d.get(key), value)


def read_dhcpd_lease(stream: Iterable[str]) -> Maps:
    """Parse an ISC dhcpd lease file into (macs, addrs, names)."""
    macs: Dict[str, List[str]] = {}
    addrs: Dict[str, List[str]] = {}
    names: Dict[str, List[str]] = {}
    name = ip = mac = ""
    for line in stream:
        line = line.rstrip("\r\n")
        if line.startswith("}"):
            if name:
                host = abs_domain_name(name)
                if ip:
                    key = abs_domain_name(lower_ascii(host))
                    _add(names, key, ip)
                    _add(names, key + "local.", ip)
                    _add(addrs, ip, host)
                if mac:
                    _add(macs, mac, host)
            name = ip = mac = ""
            continue
        fields = line.split()
        if len(fields) < 2:
            continue
        if fields[0] == "lease":
            ip = fields[1].lower()
        elif fields[0] == "hardware":
            if len(fields) >= 3:
                mac = fields[2].rstrip(";").lower()
        elif fields[0] == "client-hostname":
            name = fields[1].strip('";')
    return macs, addrs, names


def read_dnsmasq_lease(stream: Iterable[str]) -> Maps:
    """Parse a dnsmasq lease file into (macs, addrs, names)."""
    macs: Dict[str, List[str]] = {}
    addrs: Dict[str, List[str]] = {}
    names: Dict[str, List[str]] = {}
    for line in stream:
        fields = line.split()
        if len(fields) < 5 or fields[3] == "*":
            continue
        host = abs_domain_name(fields[3])
        key = host.lower()
        mac = fields[1].lower()
        ip = fields[2].lower()
        _add(macs, mac, host)
        _add(addrs, ip, host)
        _add(names, key, ip)
        _add(names, key + "local.", ip)
    return macs, addrs, names


_READERS = {"isc-dhcpd": read_dhcpd_lease, "dnsmasq": read_dnsmasq_lease}


@dataclass
class DHCP:
    on_error: Optional[Callable[[Exception], None]] = None
    lease_files: Optional[List[Tuple[str, str]]] = None
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    _macs: Dict[str, List[str]] = field(default_factory=dict, repr=False)
    _addrs: Dict[str, List[str]] = field(default_factory=dict, repr=False)
    _names: Dict[str, List[str]] = field(default_factory=dict, repr=False)
    _file_info: FileInfo = field(default_factory=FileInfo, repr=False)
    _expires: float = 0.0

    def _find_file(self) -> Tuple[str, str]:
        if self.lease_files is None:
            return find_lease_file()
        return _first_existing(self.lease_files)

    def _refresh_locked(self) -> None:
        now = time.monotonic()
        if now < self._expires:
            return
        self._expires = now + 5
        path, fmt = self._find_file()
        if not path:
            return
        try:
            self._read_locked(path, fmt)
        except (OSError, ValueError) as e:
            if self.on_error is not None:
                self.on_error(type(e)(f"readLease({path}, {fmt}): {e}"))

    def _read_locked(self, path: str, fmt: str) -> None:
        if self._file_info.same_as(path):
            return
        reader = _READERS.get(fmt)
        if reader is None:
            raise ValueError(f"unknown format: {fmt}")
        with open(path, encoding="utf-8", errors="replace") as f:
            self._macs, self._addrs, self._names = reader(f)
        self._file_info = FileInfo.from_path(path)

    def name(self) -> str:
        return "dhcp"

    def visit(self, f) -> None:
        with self._lock:
            self._refresh_locked()
            items = list(self._names.items())
        for name, addrs in items:
            f(name, addrs)

    def lookup_mac(self, mac: str) -> Optional[List[str]]:
        with self._lock:
            self._refresh_locked()
            return self._macs.get(mac)

    def lookup_addr(self, addr: str) -> Optional[List[str]]:
        with self._lock:
            self._refresh_locked()
            return self._addrs.get(addr)

    def lookup_host(self, name: str) -> Optional[List[str]]:
        with self._lock:
            self._refresh_locked()
            return self._names.get(prepare_host_lookup(name))