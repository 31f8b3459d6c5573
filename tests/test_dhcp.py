import io
import os

from nextdns.discovery.dhcp import DHCP, find_lease_file, read_dhcpd_lease, read_dnsmasq_lease

DHCPD = """
# The format of this file is documented in the dhcpd.leases(5) manual page.

authoring-byte-order little-endian;

lease 10.0.1.4 {
	starts 0 2019/06/09 20:28:45;
	binding state free;
	hardware ethernet 00:00:5e:00:53:0a;
}
lease 10.0.1.5 {
	starts 1 2020/01/06 01:56:24;
	binding state active;
	hardware ethernet 00:00:5e:00:53:0b;
	client-hostname "iPad";
}
lease 10.0.1.3 {
	starts 1 2020/01/06 02:08:32;
	binding state active;
	hardware ethernet 00:00:5e:00:53:0a;
	client-hostname "Mac";
}"""

DNSMASQ = """
56789 00:00:5e:00:53:01 192.168.50.12 wrt54g *
86400 00:00:5e:00:53:02 192.168.50.11 GL-MT300N-V2-bb0 *
77060 00:00:5e:00:53:03 192.168.50.111 ubnt *
86400 00:00:5e:00:53:04 192.168.50.50 * *
			"""


def test_read_dhcpd_lease():
    macs, addrs, names = read_dhcpd_lease(io.StringIO(DHCPD))
    assert macs == {"00:00:5e:00:53:0b": ["iPad."], "00:00:5e:00:53:0a": ["Mac."]}
    assert addrs == {"10.0.1.5": ["iPad."], "10.0.1.3": ["Mac."]}
    assert names == {
        "ipad.": ["10.0.1.5"],
        "ipad.local.": ["10.0.1.5"],
        "mac.": ["10.0.1.3"],
        "mac.local.": ["10.0.1.3"],
    }


def test_read_dnsmasq_lease():
    macs, addrs, names = read_dnsmasq_lease(io.StringIO(DNSMASQ))
    assert macs == {
        "00:00:5e:00:53:01": ["wrt54g."],
        "00:00:5e:00:53:02": ["GL-MT300N-V2-bb0."],
        "00:00:5e:00:53:03": ["ubnt."],
    }
    assert addrs == {
        "192.168.50.12": ["wrt54g."],
        "192.168.50.11": ["GL-MT300N-V2-bb0."],
        "192.168.50.111": ["ubnt."],
    }
    assert names == {
        "wrt54g.": ["192.168.50.12"],
        "wrt54g.local.": ["192.168.50.12"],
        "gl-mt300n-v2-bb0.": ["192.168.50.11"],
        "gl-mt300n-v2-bb0.local.": ["192.168.50.11"],
        "ubnt.": ["192.168.50.111"],
        "ubnt.local.": ["192.168.50.111"],
    }


def test_find_lease_file_returns_existing_or_empty():
    path, fmt = find_lease_file()
    if path == "":
        assert fmt == ""
    else:
        assert os.path.exists(path)
        assert fmt in ("isc-dhcpd", "dnsmasq")


def test_dhcp_source(tmp_path):
    path = tmp_path / "dnsmasq.leases"
    path.write_text(DNSMASQ)
    files = [(str(tmp_path / "none"), "isc-dhcpd"), (str(path), "dnsmasq")]
    d = DHCP(lease_files=files)
    assert d.name() == "dhcp"
    assert d.lookup_host("UBNT") == ["192.168.50.111"]
    assert d.lookup_addr("192.168.50.12") == ["wrt54g."]
    assert d.lookup_mac("00:00:5e:00:53:03") == ["ubnt."]


def test_dhcp_unknown_format_reports_error(tmp_path):
    path = tmp_path / "leases"
    path.write_text("x")
    errors = []
    d = DHCP(on_error=errors.append, lease_files=[(str(path), "bogus")])
    assert d.lookup_host("x") is None
    assert len(errors) == 1
    assert "unknown format" in str(errors[0])