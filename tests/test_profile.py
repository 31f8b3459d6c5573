from types import SimpleNamespace
import socket
from unittest import mock

import pytest

from nextdns.arp import parse_mac
from nextdns.profile import Profile, Profiles

RULES = [
    "10.10.10.128/27=profile1",
    "02:00:5e:00:00:66=profile2",
    "10.10.10.0/27=profile3",
    "profile4",
]


@pytest.mark.parametrize(
    "profiles, source, dest, mac, want",
    [
        (RULES, "10.10.10.21", "10.10.10.1", "02:00:5e:00:00:db", "profile3"),
        (RULES, "10.10.10.21", "10.10.10.1", "02:00:5e:00:00:66", "profile2"),
        (RULES, "1.2.3.4", "10.10.10.1", "02:00:5e:00:01:db", "profile4"),
        (
            ["profile4", RULES[0], RULES[1], RULES[2]],
            "10.10.10.21",
            "10.10.10.1",
            "02:00:5e:00:00:db",
            "profile3",
        ),
        (["profile1", "profile2"], None, None, None, "profile2"),
    ],
    ids=["PrefixMatch", "MACMatch", "DefaultMatch", "NonLastDefault", "MultipleDefaults"],
)
def test_profiles_get(profiles, source, dest, mac, want):
    ps = Profiles()
    for definition in profiles:
        ps.set(definition)
    mac_bytes = parse_mac(mac) if mac else None
    assert ps.get(source, dest, mac_bytes) == want


def test_mac_given_as_string():
    ps = Profiles()
    for definition in RULES:
        ps.set(definition)
    assert ps.get("10.10.10.21", None, "02:00:5e:00:00:66") == "profile2"


def test_set_replaces_same_prefix():
    ps = Profiles()
    ps.set("10.0.0.0/8=first")
    ps.set("10.0.0.0/8=second")
    assert ps.strings() == ["10.0.0.0/8=second"]


def test_set_replaces_same_mac():
    ps = Profiles()
    ps.set("02:00:00:00:00:01=first")
    ps.set("02:00:00:00:00:01=second")
    ps.set("02:00:00:00:00:02=third")
    assert ps.strings() == ["02:00:00:00:00:01=second", "02:00:00:00:00:02=third"]


def test_string_forms_round_trip():
    for value in ["10.0.3.0/24=abcdef", "02:00:00:00:00:01=abcdef", "abcdef"]:
        assert str(Profile.parse(value)) == value


def test_profiles_str():
    ps = Profiles()
    ps.set("10.0.3.0/24=abcdef")
    ps.set("fallback")
    assert str(ps) == "[10.0.3.0/24=abcdef fallback]"


def test_prefix_requires_source_ip():
    p = Profile.parse("10.0.0.0/8=abc")
    assert p.match(None, None, None) is False
    assert p.match("10.1.2.3", None, None) is True


def test_ipv6_prefix():
    p = Profile.parse("2001:db8::/64=abc")
    assert p.match("2001:db8::1", None, None) is True
    assert p.match("2001:db9::1", None, None) is False
    assert p.match("10.0.0.1", None, None) is False


def test_mac_requires_client_mac():
    p = Profile.parse("02:00:00:00:00:01=abc")
    assert p.match("10.0.0.1", None, None) is False
    assert p.match("10.0.0.1", None, b"\x02\x00\x00\x00\x00\x01") is True


def test_interface_condition():
    addrs = {
        "lan9": [
            SimpleNamespace(family=socket.AF_INET, address="192.168.7.1"),
            SimpleNamespace(family=socket.AF_INET6, address="fe80::1%lan9"),
        ]
    }
    with mock.patch("psutil.net_if_addrs", return_value=addrs):
        p = Profile.parse("lan9=abc")
    assert p.id == "abc"
    assert not p.is_default()
    assert p.match(None, "192.168.7.1", None) is True
    assert p.match(None, "fe80::1", None) is True
    assert p.match(None, "192.168.7.2", None) is False
    assert p.match(None, None, None) is False


def test_invalid_condition():
    with mock.patch("psutil.net_if_addrs", return_value={}):
        with pytest.raises(ValueError, match="invalid condition"):
            Profile.parse("no-such-iface=abc")


def test_default_profile():
    p = Profile.parse("abc")
    assert p.is_default()
    assert p.match(None, None, None) is True