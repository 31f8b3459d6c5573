"""Chaining of discovery sources."""

from __future__ import annotations

from types import MappingProxyType
from typing import Callable, List, Mapping, Optional, Protocol


class Source(Protocol):
    def name(self) -> str: ...

    def visit(self, f: Callable[[str, List[str]], None]) -> None: ...

    def lookup_addr(self, addr: str) -> Optional[List[str]]: ...

    def lookup_host(self, name: str) -> Optional[List[str]]: ...


class Resolver(list):
    """An ordered list of sources; the first with an answer wins."""

    def visit(self, f: Callable[[str, str, List[str]], None]) -> None:
        for source in self:
            source_name = source.name()
            source.visit(lambda name, addrs, sn=source_name: f(sn, name, addrs))

    def lookup_addr(self, addr: str) -> Optional[List[str]]:
        addr = addr.lower()
        for source in self:
            names = source.lookup_addr(addr)
            if names:
                return names
        return None

    def lookup_host(self, name: str) -> Optional[List[str]]:
        name = name.lower()
        for source in self:
            addrs = source.lookup_host(name)
            if addrs:
                return addrs
        return None

    def lookup_mac(self, mac: str) -> Optional[List[str]]:
        mac = mac.lower()
        for source in self:
            lookup = getattr(source, "lookup_mac", None)
            if lookup is None:
                continue
            names = lookup(mac)
            if names:
                return names
        return None


class Dummy:
    """A source that knows nothing."""

    _entries: Mapping[str, List[str]] = MappingProxyType({})

    def name(self) -> str:
        return "dummy"

    def visit(self, f) -> None:
        for name, addrs in self._entries.items():
            f(name, addrs)

    def lookup_addr(self, addr: str) -> Optional[List[str]]:
        return self._entries.get(addr)

    def lookup_host(self, name: str) -> Optional[List[str]]:
        return self._entries.get(name)