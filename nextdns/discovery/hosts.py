"""Host names from the system hosts file."""

from __future__ import annotations

import ipaddress
import os
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from .util import FileInfo, abs_domain_name, lower_ascii, prepare_host_lookup

HOSTS_FILES = [
    "/etc/hosts.dnsmasq",
    "/tmp/hosts/dhcp.cfg01411c",
    r"C:\Windows\System32\Drivers\etc\hosts",
    "/etc/hosts",
]


def _first_existing(paths: Iterable[str]) -> str:
    for path in paths:
        if os.path.exists(path):
            return path
    return ""


def find_hosts_file() -> str:
    """Return the first known hosts file present on this system, or ""."""
    return _first_existing(HOSTS_FILES)


def split_host_zone(s: str) -> Tuple[str, str]:
    """Split an IPv6 literal from its zone, found after the last percent sign."""
    i = s.rfind("%")
    if i > 0:
        return s[:i], s[i + 1 :]
    return s, ""


def _ip_string(s: str) -> Optional[str]:
    if "%" in s:
        return None
    try:
        ip = ipaddress.ip_address(s)
    except ValueError:
        return None
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        return str(ip.ipv4_mapped)
    return str(ip)


def parse_literal_ip(addr: str) -> str:
    """Return the canonical form of an IP literal (with zone), or "" if invalid."""
    for ch in addr:
        if ch == ".":
            return _ip_string(addr) or ""
        if ch == ":":
            host, zone = split_host_zone(addr)
            ip = _ip_string(host)
            if ip is None:
                return ""
            return ip + "%" + zone if zone else ip
    return ""


def read_hosts_file(path: str) -> Tuple[Dict[str, List[str]], Dict[str, List[str]]]:
    """Parse a hosts file into (names -> addrs, addrs -> names)."""
    names: Dict[str, List[str]] = {}
    addrs: Dict[str, List[str]] = {}
    with open(path, encoding="utf-8", errors="replace") as f:
        for line in f:
            line = line.split("#", 1)[0]
            fields = line.split()
            if len(fields) < 2:
                continue
            addr = parse_literal_ip(fields[0])
            if not addr:
                continue
            for host in fields[1:]:
                key = abs_domain_name(lower_ascii(host))
                names.setdefault(key, []).append(addr)
                addrs.setdefault(addr, []).append(abs_domain_name(host))
    for lh in ("localhost", "localhost.localdomain."):
        if not names.get(lh):
            # Some systems ship an empty hosts file; keep localhost resolvable.
            names[lh] = ["127.0.0.1", "::1"]
    return names, addrs


@dataclass
class Hosts:
    on_error: Optional[Callable[[Exception], None]] = None
    files: Optional[List[str]] = None
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    _addrs: Dict[str, List[str]] = field(default_factory=dict, repr=False)
    _names: Dict[str, List[str]] = field(default_factory=dict, repr=False)
    _file_info: FileInfo = field(default_factory=FileInfo, repr=False)
    _expires: float = 0.0

    def _find_file(self) -> str:
        if self.files is None:
            return find_hosts_file()
        return _first_existing(self.files)

    def _refresh_locked(self) -> None:
        now = time.monotonic()
        if now < self._expires:
            return
        self._expires = now + 5
        path = self._find_file()
        if not path:
            return
        try:
            self._read_locked(path)
        except OSError as e:
            if self.on_error is not None:
                self.on_error(OSError(f"readHosts({path}): {e}"))

    def _read_locked(self, path: str) -> None:
        if self._file_info.same_as(path):
            return
        names, addrs = read_hosts_file(path)
        self._names, self._addrs = names, addrs
        self._file_info = FileInfo.from_path(path)

    def name(self) -> str:
        return "hosts"

    def visit(self, f) -> None:
        with self._lock:
            self._refresh_locked()
            items = list(self._names.items())
        for name, addrs in items:
            f(name, addrs)

    def lookup_addr(self, addr: str) -> Optional[List[str]]:
        with self._lock:
            self._refresh_locked()
            return self._addrs.get(addr)

    def lookup_host(self, name: str) -> Optional[List[str]]:
        with self._lock:
            self._refresh_locked()
            return self._names.get(prepare_host_lookup(name))