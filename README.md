# nextdns

Building blocks for a local DNS proxy:

- **Client discovery** (`nextdns.discovery`): names for LAN clients from the
  hosts file, DHCP lease files (ISC dhcpd and dnsmasq), multicast DNS traffic,
  reverse lookups against a private DNS server, and router client lists
  (ASUSWRT-Merlin, UniFi OS).
- **ARP table** (`nextdns.arp`): read the system ARP table and look up a MAC
  address by IP or an IP by MAC address.
- **Profile selection** (`nextdns.profile`): choose a profile id by source
  subnet, MAC address or network interface.
- **Byte sizes** (`nextdns.units`): parse values such as `42MB` or
  `1,234.03 MB`.
- **Control socket** (`nextdns.ctl`): a newline-delimited JSON event channel
  over a Unix socket, with a `Server`, a `Client` and a small command line.

## Installation

```
pip install .
```

With the test dependencies:

```
pip install ".[test]"
```

## Client discovery

Every source has `name()`, `visit(f)`, `lookup_addr(addr)` and
`lookup_host(name)`; `DHCP`, `Merlin` and `Ubios` also have `lookup_mac(mac)`.
A `Resolver` is a list of sources asked in order; the first non-empty answer
wins. Names are returned with a trailing dot.

```python
from nextdns.discovery.resolver import Resolver
from nextdns.discovery.hosts import Hosts
from nextdns.discovery.dhcp import DHCP

resolver = Resolver([Hosts(), DHCP()])
print(resolver.lookup_addr("192.168.1.10"))
print(resolver.lookup_host("laptop"))
print(resolver.lookup_mac("02:00:00:00:00:01"))
```

The sources:

- `Hosts` reads the first hosts file found (`/etc/hosts.dnsmasq`, the OpenWRT
  DHCP hosts file, the Windows hosts file, `/etc/hosts`) and re-reads it when
  it changes, checking at most every five seconds. `localhost` resolves to
  `127.0.0.1` and `::1` when the file does not define it.
- `DHCP` reads the first known ISC dhcpd or dnsmasq lease file. Each host is
  also registered under `<name>.local.`. The parsers are available as
  `read_dhcpd_lease(stream)` and `read_dnsmasq_lease(stream)`.
- `MDNS` listens for mDNS traffic: `start(stop, iface_filter)` takes a
  `threading.Event` and `"all"`, `"disabled"` or an interface name, sends a
  PTR probe for common services, and records A/AAAA answers until `stop` is
  set. Machine-generated names (UUIDs, MAC-like and IP-like names) are ignored.
- `DNS` sends PTR, A and AAAA queries to `upstream`, or, if none is given, to
  the first private-address system name server. Answers are cached for five
  minutes, and only one query per key is in flight at a time.
- `Merlin` and `Ubios` map MAC addresses to client names on ASUSWRT-Merlin and
  UniFi OS routers; elsewhere they return nothing.
- `Dummy` knows nothing.

Sources that take an `on_error` callable report read failures to it.

## Profile selection

```python
from ipaddress import ip_address
from nextdns.profile import Profiles

profiles = Profiles()
profiles.set("10.10.10.0/27=office")
profiles.set("home")
print(profiles.get(ip_address("10.10.10.21"), None, None))  # office
```

A value is `ID` or `CONDITION=ID`, where the condition is a CIDR, a MAC
address or an interface name. Setting a value with the same condition as an
existing one replaces it. `get(source_ip, dest_ip, mac)` returns the first
conditional match, or else the last matching unconditional profile, or `""`.

## Byte sizes

```python
from nextdns.units import parse_bytes

parse_bytes("42.5 MB")  # 44564480
```

Units `b`, `k`/`kb` up to `e`/`eb` are powers of 1024, case-insensitive.
Invalid numbers, unknown units and values of 2**64 or more raise `ValueError`.

## Control socket

```python
from nextdns.ctl import Server, dial, Event

with Server(addr="/tmp/example.sock") as server:
    server.command("status", lambda data: {"ok": True})
    with dial("/tmp/example.sock") as client:
        print(client.send(Event(name="status")))  # {'ok': True}
```

Every event a client sends gets a reply with the same name; its data is the
registered handler's result, or `None` when there is no handler.
`Server.broadcast(event)` writes an event to every connected client.

## Command line

```
nextdns <command> [-control ADDRESS]
```

Sends `<command>` as an event to the control socket (by default
`/var/run/nextdns.sock`) and prints the reply: as text when it is a string,
otherwise as indented JSON. Connection errors are printed and the exit status
is 1; with no command it prints a usage line and exits with 2.

## What this package does not do

It does not run a DNS proxy: it neither receives nor forwards client queries.
It has no configuration file or stored settings, no commands to install,
activate or configure a daemon, and it does not change the system's DNS
settings. The command line only sends events to a control socket that some
other program serves, for instance one built with `nextdns.ctl.Server`. The
control socket works over Unix sockets only.