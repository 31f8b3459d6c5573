"""Profile selection by client subnet, MAC address or network interface."""

from __future__ import annotations

import ipaddress
import socket
from dataclasses import dataclass
from typing import Optional, Tuple, Union

import psutil

from .arp import parse_mac

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]
IPLike = Union[str, IPAddress, None]
MACLike = Union[bytes, bytearray, str, None]


def _to_ip(value: IPLike) -> Optional[IPAddress]:
    if value is None:
        return None
    if isinstance(value, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
        ip = value
    else:
        try:
            ip = ipaddress.ip_address(str(value).split("%", 1)[0])
        except ValueError:
            return None
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        return ip.ipv4_mapped
    return ip


def _to_mac(value: MACLike) -> bytes:
    if value is None:
        return b""
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    return parse_mac(value) or b""


def _parse_cidr(s: str) -> Optional[IPNetwork]:
    if "/" not in s:
        return None
    try:
        return ipaddress.ip_network(s, strict=False)
    except ValueError:
        return None


def _interface_ips(name: str) -> Optional[Tuple[IPAddress, ...]]:
    """Addresses of the named interface, or None if there is no such interface."""
    addrs = psutil.net_if_addrs().get(name)
    if addrs is None:
        return None
    ips = []
    for addr in addrs:
        if addr.family not in (socket.AF_INET, socket.AF_INET6):
            continue
        ip = _to_ip(addr.address)
        if ip is not None:
            ips.append(ip)
    return tuple(ips)


def _format_mac(mac: bytes) -> str:
    return ":".join(f"{b:02x}" for b in mac)


@dataclass(frozen=True)
class Profile:
    """A profile id with an optional condition on the client."""

    id: str
    prefix: Optional[IPNetwork] = None
    mac: Optional[bytes] = None
    dest_ips: Tuple[IPAddress, ...] = ()

    @classmethod
    def parse(cls, value: str) -> "Profile":
        """Parse ``ID`` or ``CONDITION=ID`` where CONDITION is a CIDR, MAC or interface."""
        idx = value.find("=")
        if idx == -1:
            return cls(value)
        cond = value[:idx].strip()
        profile_id = value[idx + 1 :].strip()
        prefix = _parse_cidr(cond)
        if prefix is not None:
            return cls(profile_id, prefix=prefix)
        mac = parse_mac(cond)
        if mac:
            return cls(profile_id, mac=mac)
        ips = _interface_ips(cond)
        if ips is not None:
            return cls(profile_id, dest_ips=ips)
        raise ValueError(f"{cond}: invalid condition format or non-existant interface name")

    def match(self, source_ip: IPLike, dest_ip: IPLike, mac: MACLike) -> bool:
        """True if the client described by the arguments meets the condition."""
        if self.prefix is not None:
            src = _to_ip(source_ip)
            if src is None or src not in self.prefix:
                return False
        if self.mac:
            client_mac = _to_mac(mac)
            if not client_mac or client_mac != self.mac:
                return False
        if self.dest_ips:
            dest = _to_ip(dest_ip)
            if dest is None:
                return False
            return dest in self.dest_ips
        return True

    def is_default(self) -> bool:
        return self.prefix is None and not self.mac and not self.dest_ips

    def __str__(self) -> str:
        if self.mac:
            return f"{_format_mac(self.mac)}={self.id}"
        if self.prefix is not None:
            return f"{self.prefix}={self.id}"
        return self.id


def _same_criteria(a: Profile, b: Profile) -> bool:
    return (
        (bool(a.mac) and bool(b.mac) and a.mac == b.mac)
        or (bool(a.dest_ips) and bool(b.dest_ips) and a.dest_ips == b.dest_ips)
        or (a.prefix is not None and b.prefix is not None and str(a.prefix) == str(b.prefix))
        or (a.is_default() and b.is_default())
    )


class Profiles(list):
    """Ordered profiles; the first conditional match wins over the default."""

    def get(self, source_ip: IPLike, dest_ip: IPLike, mac: MACLike) -> str:
        default = ""
        for profile in self:
            if not profile.match(source_ip, dest_ip, mac):
                continue
            if profile.is_default():
                default = profile.id
                continue
            return profile.id
        return default

    def set(self, value: str) -> None:
        """Add a profile, replacing an existing one with the same condition."""
        profile = Profile.parse(value)
        for i, existing in enumerate(self):
            if _same_criteria(profile, existing):
                self[i] = profile
                return
        self.append(profile)

    def strings(self) -> list:
        return [str(p) for p in self]

    def __str__(self) -> str:
        return "[" + " ".join(self.strings()) + "]"