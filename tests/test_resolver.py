from nextdns.discovery.resolver import Dummy, Resolver


class _Static:
    def __init__(self, label, addrs, names, macs=None):
        self.label = label
        self.addrs = addrs
        self.names = names
        self.macs = macs

    def name(self):
        return self.label

    def visit(self, f):
        for n, a in self.names.items():
            f(n, a)

    def lookup_addr(self, addr):
        return self.addrs.get(addr)

    def lookup_host(self, name):
        return self.names.get(name)


class _WithMAC(_Static):
    def lookup_mac(self, mac):
        return self.macs.get(mac)


def test_dummy():
    d = Dummy()
    assert d.name() == "dummy"
    assert d.lookup_addr("192.0.2.1") is None
    assert d.lookup_host("foo.") is None


def test_first_match_wins_and_lowercases():
    a = _Static("a", {}, {"foo.": []})
    b = _Static("b", {"192.0.2.1": ["foo."]}, {"foo.": ["192.0.2.1"]})
    c = _Static("c", {"192.0.2.1": ["bar."]}, {"foo.": ["192.0.2.9"]})
    r = Resolver([Dummy(), a, b, c])
    assert r.lookup_host("FOO.") == ["192.0.2.1"]
    assert r.lookup_addr("192.0.2.1") == ["foo."]
    assert r.lookup_host("none.") is None


def test_lookup_mac_only_on_capable_sources():
    m = _WithMAC("m", {}, {}, {"00:00:5e:00:53:01": ["host."]})
    r = Resolver([_Static("s", {}, {}), m])
    assert r.lookup_mac("00:00:5E:00:53:01") == ["host."]
    assert Resolver([Dummy()]).lookup_mac("00:00:5e:00:53:01") is None


def test_visit_tags_source():
    seen = []
    r = Resolver([_Static("src", {}, {"foo.": ["192.0.2.1"]}), Dummy()])
    r.visit(lambda s, n, a: seen.append((s, n, a)))
    assert seen == [("src", "foo.", ["192.0.2.1"])]