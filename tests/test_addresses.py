import logging
from ipaddress import IPv4Address

import dns.exception
import dns.resolver
import hypothesis.strategies as st
import pytest
from hypothesis import given

from firewall_normalizer.addresses import AddressKind, AddressResolver, classify, to_cidr
from firewall_normalizer.config import Settings
from firewall_normalizer.errors import AddressError, ResolutionError
from firewall_normalizer.model import Family


@pytest.mark.parametrize(
    "token, kind",
    [
        ("10.0.0.1", AddressKind.IPV4),
        ("10.0.0.0/8", AddressKind.IPV4),
        ("010.000.000.001", AddressKind.IPV4),
        ("0.0.0.0/0", AddressKind.IPV4),
        ("10.0.0.256", AddressKind.NEITHER),
        ("10.0.0.1/33", AddressKind.NEITHER),
        ("2001:db8::1", AddressKind.IPV6),
        ("2001:db8::/32", AddressKind.IPV6),
        ("::/0", AddressKind.IPV6),
        ("www.example.test", AddressKind.NEITHER),
        ("", AddressKind.NEITHER),
    ],
)
def test_classify(token: str, kind: AddressKind):
    assert classify(token) is kind


@given(st.integers(min_value=0, max_value=2**32 - 1), st.integers(min_value=0, max_value=32))
def test_classify_any_ipv4_with_prefix(value: int, prefix: int):
    assert classify(f"{IPv4Address(value)}/{prefix}") is AddressKind.IPV4


def test_to_cidr_adds_host_prefix_and_compresses_ipv6():
    assert to_cidr(["10.0.0.1", "2001:0db8:0000:0000:0000:0000:0000:0001"]) == [
        "10.0.0.1/32",
        "2001:db8::1/128",
    ]


def test_to_cidr_keeps_order_and_length():
    addresses = ["10.0.0.3", "10.0.0.1", "10.0.0.2"]
    assert to_cidr(addresses) == ["10.0.0.3/32", "10.0.0.1/32", "10.0.0.2/32"]


def test_to_cidr_strips_leading_zeros():
    assert to_cidr(["010.000.000.001"]) == ["10.0.0.1/32"]


def test_to_cidr_reduces_to_network_and_warns(caplog):
    with caplog.at_level(logging.WARNING, logger="firewall_normalizer"):
        result = to_cidr(["10.1.2.3/8"], verify=True, reduce_to_network=True)
    assert result == ["10.0.0.0/8"]
    assert "not a correct subnet address" in caplog.text


def test_to_cidr_without_reduce_keeps_host_bits():
    assert to_cidr(["10.1.2.3/8"]) == ["10.1.2.3/8"]


def test_to_cidr_fails_whole_batch():
    with pytest.raises(AddressError):
        to_cidr(["10.0.0.1", "not-an-address"])


def test_addresses_for_literals(resolver):
    assert resolver.addresses_for("10.0.0.1,10.0.0.0/24", Family.IPV4) == ["10.0.0.1/32", "10.0.0.0/24"]
    assert resolver.queries == []


def test_addresses_for_resolves_names(resolver):
    assert resolver.addresses_for("www.example.test", Family.IPV4) == ["192.0.2.10/32"]
    assert resolver.addresses_for("www.example.test", Family.IPV6) == ["2001:db8::10/128"]


def test_addresses_for_wrong_family_literal(resolver):
    with pytest.raises(AddressError, match="ipv6"):
        resolver.addresses_for("10.0.0.1,2001:db8::1", Family.IPV4)


def test_addresses_for_unresolvable_name(resolver):
    with pytest.raises(AddressError, match="Could not resolve"):
        resolver.addresses_for("v6only.example.test", Family.IPV4)


def test_addresses_for_empty_entry(resolver):
    with pytest.raises(AddressError):
        resolver.addresses_for("10.0.0.1,", Family.IPV4)


def test_round_robin_name_warns(resolver, caplog):
    with caplog.at_level(logging.WARNING, logger="firewall_normalizer"):
        result = resolver.addresses_for("rr.example.test", Family.IPV4)
    assert result == ["192.0.2.30/32", "192.0.2.31/32"]
    assert "round robin" in caplog.text


def test_families_of(resolver):
    assert resolver.families_of("10.0.0.1") == {Family.IPV4}
    assert resolver.families_of("2001:db8::1") == {Family.IPV6}
    assert resolver.families_of("www.example.test") == {Family.IPV4, Family.IPV6}
    assert resolver.families_of("v6only.example.test") == {Family.IPV6}
    with pytest.raises(AddressError):
        resolver.families_of("missing.example.test")


def test_names_are_resolved_again_without_cache(resolver):
    resolver.resolve("www.example.test", Family.IPV4)
    resolver.resolve("www.example.test", Family.IPV4)
    assert resolver.queries == [("www.example.test", "A")] * 2


def test_cache_resolves_each_name_once(make_resolver):
    resolver = make_resolver(settings=Settings(cache_dns=True))
    resolver.resolve("www.example.test", Family.IPV4)
    resolver.resolve("www.example.test", Family.IPV4)
    resolver.resolve("www.example.test", Family.IPV6)
    assert resolver.queries == [("www.example.test", "A"), ("www.example.test", "AAAA")]


class _StubDnsResolver:
    def __init__(self, error):
        self.error = error
        self.calls = 0

    def resolve(self, name, record_type, search=True):
        self.calls += 1
        raise self.error


def test_query_retries_timeouts_then_fails():
    resolver = AddressResolver(Settings(dns_retries=3))
    stub = _StubDnsResolver(dns.exception.Timeout())
    resolver._resolver = stub
    with pytest.raises(ResolutionError):
        resolver.resolve("slow.example.test", Family.IPV4)
    assert stub.calls == 3


def test_query_nxdomain_is_empty():
    resolver = AddressResolver(Settings())
    stub = _StubDnsResolver(dns.resolver.NXDOMAIN())
    resolver._resolver = stub
    assert resolver.resolve("missing.example.test", Family.IPV6) == []
    assert stub.calls == 1

