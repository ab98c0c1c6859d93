import logging

import pytest

from firewall_normalizer.errors import ExpansionError
from firewall_normalizer.expander import MacroExpander
from firewall_normalizer.model import Family


def test_family_macros_go_to_one_family(resolver):
    expanded = MacroExpander(resolver).expand(
        [
            "INPUT4 -p tcp --dport 22 -j ACCEPT",
            "OUTPUT6 -j DROP",
            "iptables -P FORWARD DROP",
            "ip6tables -t raw -A PREROUTING -j NOTRACK",
        ],
    )
    assert expanded.ipv4 == [
        "iptables -A INPUT -p tcp --dport 22 -j ACCEPT",
        "iptables -P FORWARD DROP",
    ]
    assert expanded.ipv6 == [
        "ip6tables -A OUTPUT -j DROP",
        "ip6tables -t raw -A PREROUTING -j NOTRACK",
    ]


def test_dual_stack_without_address_goes_to_both(resolver):
    expanded = MacroExpander(resolver).expand(["INPUT -i lo -j ACCEPT", "ip46tables -N LOGDROP"])
    assert expanded.ipv4 == ["iptables -A INPUT -i lo -j ACCEPT", "iptables -N LOGDROP"]
    assert expanded.ipv6 == ["ip6tables -A INPUT -i lo -j ACCEPT", "ip6tables -N LOGDROP"]
    assert resolver.queries == []


def test_dual_stack_filters_by_literal_address(resolver):
    expanded = MacroExpander(resolver).expand(
        [
            "INPUT -s 10.0.0.0/8 -j ACCEPT",
            "INPUT -d 2001:db8::/32 -j ACCEPT",
        ],
    )
    assert expanded.ipv4 == ["iptables -A INPUT -s 10.0.0.0/8 -j ACCEPT"]
    assert expanded.ipv6 == ["ip6tables -A INPUT -d 2001:db8::/32 -j ACCEPT"]


def test_dual_stack_mixed_address_list_goes_to_both(resolver):
    expanded = MacroExpander(resolver).expand(["FORWARD --source 10.0.0.1,2001:db8::1 -j ACCEPT"])
    assert expanded.ipv4 == ["iptables -A FORWARD --source 10.0.0.1,2001:db8::1 -j ACCEPT"]
    assert expanded.ipv6 == ["ip6tables -A FORWARD --source 10.0.0.1,2001:db8::1 -j ACCEPT"]


def test_dual_stack_filters_by_resolved_name(resolver):
    expanded = MacroExpander(resolver).expand(
        [
            "INPUT -s www.example.test -j ACCEPT",
            "INPUT -s v4only.example.test -j ACCEPT",
            "OUTPUT -d v6only.example.test -j ACCEPT",
        ],
    )
    assert expanded.ipv4 == [
        "iptables -A INPUT -s www.example.test -j ACCEPT",
        "iptables -A INPUT -s v4only.example.test -j ACCEPT",
    ]
    assert expanded.ipv6 == [
        "ip6tables -A INPUT -s www.example.test -j ACCEPT",
        "ip6tables -A OUTPUT -d v6only.example.test -j ACCEPT",
    ]


def test_comment_and_blank_lines_are_skipped(resolver):
    expanded = MacroExpander(resolver).expand(["", "   ", "# INPUT -j DROP", "INPUT4 -j DROP"])
    assert expanded.ipv4 == ["iptables -A INPUT -j DROP"]
    assert expanded.ipv6 == []


def test_unknown_macro_fails_whole_expansion(resolver, caplog):
    with caplog.at_level(logging.ERROR, logger="firewall_normalizer"):
        with pytest.raises(ExpansionError):
            MacroExpander(resolver).expand(["INPUT4 -j ACCEPT", "INPUT5 -j DROP"])
    assert "Found unknown line: 'INPUT5 -j DROP'" in caplog.text


def test_unresolvable_name_fails_and_reports_every_line(resolver, caplog):
    lines = [
        "INPUT -s missing.example.test -j ACCEPT",
        "INPUT -j ACCEPT",
        "OUTPUT -d other-missing.example.test -j DROP",
    ]
    with caplog.at_level(logging.ERROR, logger="firewall_normalizer"):
        with pytest.raises(ExpansionError, match="2 line"):
            MacroExpander(resolver).expand(lines)
    assert "missing.example.test" in caplog.text
    assert "other-missing.example.test" in caplog.text


def test_missing_address_after_flag(resolver):
    with pytest.raises(ExpansionError):
        MacroExpander(resolver).expand(["INPUT -j ACCEPT -s"])


def test_expanded_lines_for_family(resolver):
    expanded = MacroExpander(resolver).expand(["INPUT6 -j ACCEPT"])
    assert expanded.for_family(Family.IPV6) == ["ip6tables -A INPUT -j ACCEPT"]
    assert expanded.for_family(Family.IPV4) == []
