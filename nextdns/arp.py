"""ARP table reading and lookup by IP or MAC address."""

from __future__ import annotations

import ipaddress
import subprocess
import sys
import threading
import time
from dataclasses import dataclass
from typing import Optional, Union

IPLike = Union[str, ipaddress.IPv4Address, ipaddress.IPv6Address, None]

_REFRESH_INTERVAL = 30


def _parse_ip(value: IPLike):
    """Return a normalised IP address object, or None if it cannot be parsed."""
    if value is None:
        return None
    if isinstance(value, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
        ip = value
    else:
        try:
            ip = ipaddress.ip_address(value)
        except ValueError:
            return None
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        return ip.ipv4_mapped
    return ip


def _parse_hw(s: str) -> Optional[bytes]:
    """Parse a hardware address in colon, hyphen or dotted notation."""
    for sep in (":", "-"):
        if sep in s:
            parts = s.split(sep)
            if len(parts) not in (6, 8, 20):
                return None
            if any(len(p) != 2 for p in parts):
                return None
            try:
                return bytes(int(p, 16) for p in parts)
            except ValueError:
                return None
    if "." in s:
        parts = s.split(".")
        if len(parts) not in (3, 4, 10) or any(len(p) != 4 for p in parts):
            return None
        try:
            return b"".join(int(p, 16).to_bytes(2, "big") for p in parts)
        except ValueError:
            return None
    return None


def parse_mac(s: str) -> Optional[bytes]:
    """Parse a MAC address, accepting single-digit octets such as ``0:1:2:3:4:5``."""
    if len(s) < 17:
        comp = s.split(":")
        if len(comp) != 6:
            return None
        s = ":".join("0" + c if len(c) == 1 else c for c in comp)
    return _parse_hw(s)


@dataclass
class Entry:
    ip: Optional[Union[ipaddress.IPv4Address, ipaddress.IPv6Address]]
    mac: Optional[bytes]


class Table(list):
    """A list of ARP entries."""

    def search_mac(self, ip: IPLike) -> Optional[bytes]:
        target = _parse_ip(ip)
        if target is None:
            return None
        return next((e.mac for e in self if e.ip == target), None)

    def search_ip(self, mac: Optional[bytes]):
        if mac is None:
            mac = b""
        return next((e.ip for e in self if (e.mac or b"") == mac), None)


def parse_proc_arp(text: str) -> Table:
    """Parse the content of /proc/net/arp."""
    table = Table()
    for line in text.splitlines()[1:]:
        fields = line.split()
        if len(fields) < 4:
            continue
        table.append(Entry(_parse_ip(fields[0]), parse_mac(fields[3])))
    return table


def parse_arp_an(text: str) -> Table:
    """Parse the output of ``arp -an`` on BSD-like systems."""
    table = Table()
    for line in text.split("\n"):
        fields = line.split()
        if len(fields) < 4:
            continue
        ip = fields[1].replace("(", "").replace(")", "")
        table.append(Entry(_parse_ip(ip), parse_mac(fields[3])))
    return table


def parse_arp_windows(text: str) -> Table:
    """Parse the output of ``arp -a`` on Windows."""
    table = Table()
    skip_next = False
    for line in text.split("\n"):
        if not line:
            continue
        if line[0] != " ":
            skip_next = True
            continue
        if skip_next:
            skip_next = False
            continue
        fields = line.split()
        if len(fields) < 2:
            continue
        table.append(Entry(_parse_ip(fields[0]), parse_mac(fields[1])))
    return table


def get_table() -> Table:
    """Read the system ARP table."""
    if sys.platform.startswith("linux"):
        with open("/proc/net/arp", encoding="utf-8", errors="replace") as f:
            return parse_proc_arp(f.read())
    if sys.platform.startswith("win"):
        out = subprocess.run(["arp", "-a"], capture_output=True, check=True)
        return parse_arp_windows(out.stdout.decode(errors="replace"))
    out = subprocess.run(["arp", "-an"], capture_output=True, check=True)
    return parse_arp_an(out.stdout.decode(errors="replace"))


class _Cache:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._last_update = 0.0
        self._table = Table()

    def _refresh(self) -> None:
        try:
            table = get_table()
        except (OSError, subprocess.SubprocessError):
            table = Table()
        self._table = table

    def get(self) -> Table:
        now = time.time()
        with self._lock:
            due = now - self._last_update > _REFRESH_INTERVAL
            if due:
                self._last_update = now
        if due:
            threading.Thread(target=self._refresh, daemon=True).start()
        return self._table


_global = _Cache()


def search_mac(ip: IPLike) -> Optional[bytes]:
    """Look up the MAC address of ip in the cached system ARP table."""
    return _global.get().search_mac(ip)


def search_ip(mac: Optional[bytes]):
    """Look up the IP address of mac in the cached system ARP table."""
    return _global.get().search_ip(mac)