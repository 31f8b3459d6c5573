"""Client names learned by listening to multicast DNS traffic."""

from __future__ import annotations

import errno
import ipaddress
import socket
import struct
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Tuple

import dns.exception
import dns.flags
import dns.message
import dns.name
import dns.rdataclass
import dns.rdatatype
import dns.rrset
import psutil

from .util import abs_domain_name, append_uniq, is_valid_name, lower_ascii, prepare_host_lookup

IPV4_GROUP = "224.0.0.251"
IPV6_GROUP = "ff02::fb"
MDNS_PORT = 5353

SERVICES = [
    "_hap._tcp.local.",
    "_homekit._tcp.local.",
    "_airplay._tcp.local.",
    "_raop._tcp.local.",
    "_sleep-proxy._udp.local.",
    "_companion-link._tcp.local.",
    "_googlezone._tcp.local.",
    "_googlerpc._tcp.local.",
    "_googlecast._tcp.local.",
    "_http._tcp.local.",
    "_https._tcp.local.",
]

_READ_TIMEOUT = 10.0
_INITIAL_BACKOFF = 0.1
_MAX_BACKOFF = 30.0


@dataclass(frozen=True)
class Interface:
    name: str
    index: int
    flags: frozenset
    addrs: Tuple[Tuple[int, str], ...]

    @property
    def is_loopback(self) -> bool:
        if "loopback" in self.flags:
            return True
        ips = [_host_ip(a) for _, a in self.addrs]
        return bool(ips) and all(ip is not None and ip.is_loopback for ip in ips)

    def ipv4(self) -> Optional[str]:
        return next((a for fam, a in self.addrs if fam == socket.AF_INET), None)


def _host_ip(addr: str):
    try:
        return ipaddress.ip_address(addr.split("%", 1)[0])
    except ValueError:
        return None


def multicast_interfaces() -> List[Interface]:
    """List the interfaces that are up and support multicast."""
    stats = psutil.net_if_stats()
    all_addrs = psutil.net_if_addrs()
    result = []
    for name, st in stats.items():
        if not st.isup:
            continue
        flags = frozenset(f for f in getattr(st, "flags", "").split(",") if f)
        if flags and "multicast" not in flags:
            continue
        try:
            index = socket.if_nametoindex(name)
        except OSError:
            index = 0
        addrs = tuple(
            (a.family, a.address)
            for a in all_addrs.get(name, [])
            if a.family in (socket.AF_INET, socket.AF_INET6)
        )
        result.append(Interface(name, index, flags, addrs))
    return result


def build_probe(services: Iterable[str]) -> bytes:
    """Build a query asking for the PTR records of every service."""
    msg = dns.message.Message(id=0)
    msg.flags = 0
    for service in services:
        try:
            qname = dns.name.from_text(service)
        except dns.exception.DNSException as e:
            raise ValueError(f"PTR {service}: {e}") from e
        msg.question.append(dns.rrset.RRset(qname, dns.rdataclass.IN, dns.rdatatype.PTR))
    return msg.to_wire()


def _rdata_ip(rd) -> Optional[str]:
    address = getattr(rd, "address", None)
    raw = address if address is not None else getattr(rd, "data", None)
    if isinstance(raw, bytes) and len(raw) not in (4, 16):
        return None
    try:
        ip = ipaddress.ip_address(raw)
    except ValueError:
        return None
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped
    return str(ip)


def parse_entries(data: bytes) -> Dict[str, str]:
    """Map each A/AAAA address in the answer and additional sections to its name."""
    try:
        msg = dns.message.from_wire(data)
    except (dns.exception.DNSException, ValueError, IndexError) as e:
        raise ValueError(f"invalid mDNS message: {e}") from e
    entries: Dict[str, str] = {}
    for section in (msg.answer, msg.additional):
        for rrset in section:
            if rrset.rdtype not in (dns.rdatatype.A, dns.rdatatype.AAAA):
                continue
            qname = rrset.name.to_text()
            for rd in rrset:
                ip = _rdata_ip(rd)
                if ip is not None:
                    entries[ip] = qname
    return entries


def _is_net_unreachable_or_invalid(err: BaseException) -> bool:
    return isinstance(err, OSError) and err.errno in (errno.ENETUNREACH, errno.EINVAL)


def _reuse(sock: socket.socket) -> None:
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    if hasattr(socket, "SO_REUSEPORT"):
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
        except OSError:
            pass


def _listen_v4(iface: Interface) -> Tuple[socket.socket, tuple]:
    local = iface.ipv4()
    if local is None:
        raise OSError(errno.EADDRNOTAVAIL, f"{iface.name}: no IPv4 address")
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        _reuse(sock)
        sock.bind(("", MDNS_PORT))
        mreq = socket.inet_aton(IPV4_GROUP) + socket.inet_aton(local)
        sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, mreq)
        sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_IF, socket.inet_aton(local))
    except OSError:
        sock.close()
        raise
    return sock, (IPV4_GROUP, MDNS_PORT)


def _listen_v6(iface: Interface) -> Tuple[socket.socket, tuple]:
    sock = socket.socket(socket.AF_INET6, socket.SOCK_DGRAM)
    try:
        _reuse(sock)
        sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 1)
        sock.bind(("::", MDNS_PORT))
        mreq = socket.inet_pton(socket.AF_INET6, IPV6_GROUP) + struct.pack("@I", iface.index)
        sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_JOIN_GROUP, mreq)
        sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_MULTICAST_IF, struct.pack("@I", iface.index))
    except OSError:
        sock.close()
        raise
    return sock, (IPV6_GROUP, MDNS_PORT, 0, iface.index)


@dataclass
class MDNS:
    on_error: Optional[Callable[[Exception], None]] = None
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    _addrs: Dict[str, List[str]] = field(default_factory=dict, repr=False)
    _names: Dict[str, List[str]] = field(default_factory=dict, repr=False)

    def start(self, stop: threading.Event, iface_filter: str) -> None:
        """Listen for mDNS traffic on matching interfaces until stop is set.

        iface_filter is "all", "disabled" or an interface name.
        """
        if iface_filter == "disabled":
            return
        ifaces = multicast_interfaces()
        if not ifaces:
            raise OSError("no interface found")
        conns: List[Tuple[socket.socket, tuple]] = []
        last_err: Optional[OSError] = None
        found = False
        for iface in ifaces:
            if iface_filter != "all" and iface.name != iface_filter:
                continue
            found = True
            if iface.is_loopback or not iface.addrs:
                continue
            for listen in (_listen_v4, _listen_v6):
                try:
                    conn = listen(iface)
                except OSError as e:
                    last_err = e
                    continue
                conns.append(conn)
                threading.Thread(target=self._read, args=(conn[0], stop), daemon=True).start()
        if not found:
            raise ValueError(f"unknown interface: {iface_filter}")
        if not conns:
            if last_err is not None:
                raise last_err
            return
        threading.Thread(target=self._probe_loop, args=(conns, stop), daemon=True).start()

    def _probe_loop(self, conns, stop: threading.Event) -> None:
        backoff = _INITIAL_BACKOFF
        while True:
            try:
                self._probe(conns, SERVICES)
            except OSError as e:
                if not _is_net_unreachable_or_invalid(e):
                    if self.on_error is not None:
                        self.on_error(OSError(f"probe: {e}"))
                    if not stop.wait(backoff):
                        backoff = min(backoff * 2, _MAX_BACKOFF)
                        continue
            break
        stop.wait()
        for sock, _ in conns:
            sock.close()

    def _probe(self, conns, services) -> None:
        wire = build_probe(services)
        err: Optional[OSError] = None
        for sock, dest in conns:
            try:
                sock.sendto(wire, dest)
            except OSError as e:
                err = e
        if err is not None:
            raise err

    def _read(self, sock: socket.socket, stop: threading.Event) -> None:
        with sock:
            sock.settimeout(_READ_TIMEOUT)
            while not stop.is_set():
                try:
                    data = sock.recv(65536)
                except socket.timeout:
                    continue
                except OSError:
                    return
                if len(data) < 12:
                    continue
                try:
                    entries = parse_entries(data)
                except ValueError:
                    continue
                self.add_entries(entries)

    def add_entries(self, entries: Dict[str, str]) -> None:
        """Record address to name pairs, ignoring machine-generated names."""
        with self._lock:
            for addr, name in entries.items():
                if not is_valid_name(name):
                    continue
                name = abs_domain_name(name)
                key = abs_domain_name(lower_ascii(name))
                self._addrs[addr] = append_uniq(self._addrs.get(addr), name)
                self._names[key] = append_uniq(self._names.get(key), addr)

    def name(self) -> str:
        return "mdns"

    def visit(self, f) -> None:
        with self._lock:
            items = list(self._names.items())
        for name, addrs in items:
            f(name, addrs)

    def lookup_addr(self, addr: str) -> Optional[List[str]]:
        with self._lock:
            return self._addrs.get(addr)

    def lookup_host(self, name: str) -> Optional[List[str]]:
        with self._lock:
            return self._names.get(prepare_host_lookup(name))