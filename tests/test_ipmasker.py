import ipaddress

import pytest

from hysteria.ipmasker import IPMasker


def _host_port(addr):
    host, _, port = addr.rpartition(":")
    return host.strip("[]"), port


@pytest.mark.parametrize("addr", ["1.2.3.4:80", "[2001:db8::1]:443", "example.com", "10.0.0.1"])
def test_no_masks_returns_input(addr):
    assert IPMasker().mask(addr) == addr


def test_ipv4_with_port():
    assert IPMasker(ipv4_prefix=24).mask("192.168.1.77:8080") == "192.168.1.0:8080"


def test_ipv6_with_port():
    masker = IPMasker(ipv6_prefix=64)
    assert masker.mask("[2001:db8:1:2:3:4:5:6]:443") == "[2001:db8:1:2::]:443"


def test_ipv4_host_only():
    assert IPMasker(ipv4_prefix=8).mask("10.1.2.3") == "10.0.0.0"


@pytest.mark.parametrize("addr", ["example.com:443", "localhost", "1.2.3.4:5:6", "[fe80::1%eth0]:53"])
def test_non_ip_left_alone(addr):
    assert IPMasker(ipv4_prefix=16, ipv6_prefix=48).mask(addr) == addr


def test_ipv6_untouched_with_only_ipv4_mask():
    addr = "[2001:db8::1]:80"
    assert IPMasker(ipv4_prefix=24).mask(addr) == addr


def test_ipv4_untouched_with_only_ipv6_prefix_above_mapped_part():
    addr = "192.0.2.9:53"
    assert IPMasker(ipv6_prefix=128).mask(addr) == addr


def test_ipv4_with_ipv6_mask_matches_ipv4_mask():
    addr = "192.0.2.77:53"
    assert IPMasker(ipv6_prefix=120).mask(addr) == IPMasker(ipv4_prefix=24).mask(addr)


def test_ipv4_mapped_treated_as_ipv4():
    masker = IPMasker(ipv4_prefix=8)
    assert masker.mask("::ffff:10.1.2.3") == masker.mask("10.1.2.3")


@pytest.mark.parametrize(
    "addr, prefix, family",
    [
        ("203.0.113.200:1234", 20, 4),
        ("198.51.100.7:9", 28, 4),
        ("[2001:db8:abcd:1234::99]:8443", 40, 6),
        ("[2001:db8::dead:beef]:1", 100, 6),
    ],
)
def test_masked_address_is_in_network_and_stable(addr, prefix, family):
    masker = IPMasker(ipv4_prefix=prefix) if family == 4 else IPMasker(ipv6_prefix=prefix)
    result = masker.mask(addr)
    orig_host, orig_port = _host_port(addr)
    host, port = _host_port(result)
    assert port == orig_port
    network = ipaddress.ip_network(f"{orig_host}/{prefix}", strict=False)
    assert ipaddress.ip_address(host) == network.network_address
    assert masker.mask(result) == result


def test_invalid_prefix_rejected():
    with pytest.raises(ValueError):
        IPMasker(ipv4_prefix=33)
    with pytest.raises(ValueError):
        IPMasker(ipv6_prefix=-1)