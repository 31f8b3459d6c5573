"""Client names learned by querying a local DNS server."""

from __future__ import annotations

import ipaddress
import socket
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple, Union

import dns.exception
import dns.flags
import dns.message
import dns.name
import dns.rcode
import dns.rdatatype
import dns.resolver

from .util import SemaphoreMap

IPLike = Union[str, ipaddress.IPv4Address, ipaddress.IPv6Address]

_CACHE_SIZE = 10000
_CACHE_TTL = 300.0
_QUERY_TIMEOUT = 0.1
_MAX_PACKET = 514
_MAX_RR = 100


class DNSError(Exception):
    """An upstream answer carried a non-success response code."""

    def __init__(self, rcode: int) -> None:
        self.rcode = dns.rcode.Rcode.make(rcode)
        super().__init__(dns.rcode.to_text(self.rcode))


def _to_ip(ip: IPLike):
    if isinstance(ip, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
        addr = ip
    else:
        addr = ipaddress.ip_address(ip)
    if isinstance(addr, ipaddress.IPv6Address) and addr.ipv4_mapped is not None:
        return addr.ipv4_mapped
    return addr


def is_private_ip(ip: str) -> bool:
    """True for RFC 1918 IPv4 addresses and fd00::/8 IPv6 addresses."""
    try:
        addr = _to_ip(ip)
    except ValueError:
        return False
    b = addr.packed
    if addr.version == 4:
        return b[0] == 10 or (b[0] == 172 and b[1] & 0xF0 == 16) or (b[0] == 192 and b[1] == 168)
    return b[0] == 0xFD


def reverse_ip(ip: IPLike) -> str:
    """Return the in-addr.arpa. or ip6.arpa. name used for PTR lookups of ip."""
    addr = _to_ip(ip)
    if addr.version == 4:
        return ".".join(str(b) for b in reversed(addr.packed)) + ".in-addr.arpa."
    hexdigit = "0123456789abcdef"
    parts = []
    for b in reversed(addr.packed):
        parts.append(hexdigit[b & 0xF])
        parts.append(hexdigit[b >> 4])
    return ".".join(parts) + ".ip6.arpa."


def _rdtype(rdtype) -> dns.rdatatype.RdataType:
    return dns.rdatatype.RdataType.make(rdtype)


def build_query(name: str, rdtype, rd: bool) -> bytes:
    """Build a wire-format query for name, with the RD flag set only if rd."""
    try:
        msg = dns.message.make_query(name, _rdtype(rdtype))
    except dns.exception.DNSException as e:
        raise ValueError(f"{name}: {e}") from e
    if rd:
        msg.flags |= dns.flags.RD
    else:
        msg.flags &= ~dns.flags.RD
    return msg.to_wire()


def _rdata_ip(rd) -> Optional[str]:
    address = getattr(rd, "address", None)
    raw = address if address is not None else getattr(rd, "data", None)
    if isinstance(raw, bytes) and len(raw) not in (4, 16):
        return None
    try:
        return str(_to_ip(ipaddress.ip_address(raw)))
    except ValueError:
        return None


def parse_answers(data: bytes, rdtype) -> List[str]:
    """Extract the answers of the given type from a wire-format response."""
    want = _rdtype(rdtype)
    try:
        msg = dns.message.from_wire(data)
    except (dns.exception.DNSException, ValueError, IndexError) as e:
        raise ValueError(f"invalid response: {e}") from e
    if msg.rcode() != dns.rcode.NOERROR:
        raise DNSError(msg.rcode())
    results: List[str] = []
    budget = _MAX_RR
    for rrset in msg.answer:
        for rd in rrset:
            if budget <= 0:
                return results
            budget -= 1
            if rrset.rdtype != want:
                continue
            if want == dns.rdatatype.PTR:
                target = getattr(rd, "target", None)
                if target is not None:
                    results.append(target.to_text())
            elif want in (dns.rdatatype.A, dns.rdatatype.AAAA):
                ip = _rdata_ip(rd)
                if ip is not None:
                    results.append(ip)
    return results


def _split_host_port(addr: str) -> Tuple[str, str]:
    if addr.startswith("["):
        end = addr.find("]")
        if end != -1:
            if addr[end + 1 : end + 2] == ":" and addr[end + 2 :]:
                return addr[1:end], addr[end + 2 :]
            return addr[1:end], "53"
        return addr, "53"
    if addr.count(":") == 1:
        host, port = addr.split(":")
        if port:
            return host, port
    return addr, "53"


def _send_query(upstream: str, wire: bytes, rdtype) -> List[str]:
    host, port = _split_host_port(upstream)
    family, stype, proto, _, sockaddr = socket.getaddrinfo(host, port, type=socket.SOCK_DGRAM)[0]
    deadline = time.monotonic() + _QUERY_TIMEOUT
    with socket.socket(family, stype, proto) as sock:
        sock.settimeout(_QUERY_TIMEOUT)
        sock.connect(sockaddr)
        sock.send(wire)
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise TimeoutError("i/o timeout")
            sock.settimeout(remaining)
            data = sock.recv(_MAX_PACKET)
            # Skip mismatched ids: they may answer an earlier timed-out query.
            if len(data) >= 2 and data[:2] == wire[:2]:
                break
    return parse_answers(data, rdtype)


def query_ptr(upstream: str, ip: IPLike, rd: bool) -> List[str]:
    """Send a PTR query for ip to upstream and return the names found."""
    ptr = dns.rdatatype.PTR
    return _send_query(upstream, build_query(reverse_ip(ip), ptr, rd), ptr)


def query_name(upstream: str, name: str, rdtype, rd: bool) -> List[str]:
    """Send a query of type rdtype for name to upstream and return the answers."""
    return _send_query(upstream, build_query(name, rdtype, rd), rdtype)


def probe_buggy_dnsmasq(upstream: str) -> bool:
    """True if upstream answers SERVFAIL to queries lacking the RD flag only."""
    errors: Dict[bool, Optional[Exception]] = {}

    def run(rd: bool) -> None:
        try:
            query_name(upstream, "localhost.", dns.rdatatype.A, rd)
            errors[rd] = None
        except Exception as e:  # any failure counts as an error for the probe
            errors[rd] = e

    threads = [threading.Thread(target=run, args=(rd,)) for rd in (False, True)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    err_no_rd, err_rd = errors.get(False), errors.get(True)
    return (
        isinstance(err_no_rd, DNSError)
        and err_rd is None
        and err_no_rd.rcode == dns.rcode.SERVFAIL
    )


def _system_servers() -> List[str]:
    try:
        return list(dns.resolver.Resolver().nameservers)
    except (dns.exception.DNSException, OSError):
        return []


class _LRU:
    def __init__(self, size: int) -> None:
        self._size = size
        self._lock = threading.Lock()
        self._data: "OrderedDict[str, Tuple[List[str], float]]" = OrderedDict()

    def get(self, key: str):
        with self._lock:
            value = self._data.get(key)
            if value is not None:
                self._data.move_to_end(key)
            return value

    def add(self, key: str, value) -> None:
        with self._lock:
            self._data[key] = value
            self._data.move_to_end(key)
            while len(self._data) > self._size:
                self._data.popitem(last=False)

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._data)


_LOOKUP_ERRORS = (OSError, ValueError, DNSError, dns.exception.DNSException)


@dataclass
class DNS:
    """Resolves client names through a local (private) DNS server."""

    upstream: str = ""
    system_servers: Optional[Callable[[], List[str]]] = None
    _cache: _LRU = field(default_factory=lambda: _LRU(_CACHE_SIZE), repr=False)
    _anti_loop: SemaphoreMap = field(default_factory=SemaphoreMap, repr=False)
    _init_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    _initialised: bool = False
    _rd: bool = False

    def _init(self) -> None:
        with self._init_lock:
            if self._initialised:
                return
            if not self.upstream:
                servers = (self.system_servers or _system_servers)()
                # Only send local PTR queries to private DNS servers.
                private = [ip for ip in servers if is_private_ip(ip)]
                if private:
                    self.upstream = private[0]
            # Buggy dnsmasq versions need the RD flag, at the risk of loops.
            self._rd = probe_buggy_dnsmasq(self.upstream) if self.upstream else False
            self._initialised = True

    def name(self) -> str:
        return "dns"

    def visit(self, f) -> None:
        self._init()
        for key in self._cache.keys():
            values = self._cache_get(key)
            if values is not None:
                f(key, values)

    def lookup_addr(self, addr: str) -> Optional[List[str]]:
        return self._run_single(self._lookup_addr, addr)

    def lookup_host(self, name: str) -> Optional[List[str]]:
        return self._run_single(self._lookup_host, name)

    def _lookup_addr(self, addr: str) -> Optional[List[str]]:
        self._init()
        if not self.upstream:
            return None
        names = self._cache_get(addr)
        if names is not None:
            return names
        try:
            names = query_ptr(self.upstream, addr, self._rd)
        except _LOOKUP_ERRORS:
            names = []
        self._cache_set(addr, names)
        return names

    def _lookup_host(self, name: str) -> Optional[List[str]]:
        self._init()
        if not self.upstream:
            return None
        addrs = self._cache_get(name)
        if addrs is not None:
            return addrs
        result: Dict[str, List[str]] = {}

        def query_a() -> None:
            try:
                result["a"] = query_name(self.upstream, name, dns.rdatatype.A, self._rd)
            except _LOOKUP_ERRORS:
                result["a"] = []

        t = threading.Thread(target=query_a)
        t.start()
        try:
            aaaa = query_name(self.upstream, name, dns.rdatatype.AAAA, self._rd)
        except _LOOKUP_ERRORS:
            aaaa = []
        t.join()
        addrs = result.get("a", []) + aaaa
        self._cache_set(name, addrs)
        return addrs

    def _run_single(self, f, arg: str):
        """Allow one in-flight query per key so DNS loops get an empty answer."""
        acquired = self._anti_loop.acquire(arg)
        try:
            return f(arg) if acquired else None
        finally:
            self._anti_loop.release(arg)

    def _cache_get(self, key: str) -> Optional[List[str]]:
        entry = self._cache.get(key)
        if entry is None:
            return None
        values, expiry = entry
        if time.monotonic() > expiry:
            return None
        return values

    def _cache_set(self, key: str, values: List[str]) -> None:
        self._cache.add(key, (values, time.monotonic() + _CACHE_TTL))