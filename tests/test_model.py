import hypothesis.strategies as st
import pytest
from hypothesis import given

from firewall_normalizer.config import Settings
from firewall_normalizer.model import Family, Rule, RuleSet

_fragments = st.lists(st.text(alphabet="abcdefgh-", min_size=1, max_size=8), min_size=1, max_size=4)


@given(st.dictionaries(st.sampled_from(["append", "source", "match", "jump"]), _fragments, min_size=1))
def test_clone_is_independent(parameters):
    rule = Rule({key: list(values) for key, values in parameters.items()})
    clone = rule.clone()
    assert clone == rule
    for key in parameters:
        clone.add(key, "extra")
    assert rule.parameters == parameters


def test_family_from_command():
    assert Family.from_command("iptables") is Family.IPV4
    assert Family.from_command("ip6tables") is Family.IPV6
    with pytest.raises(ValueError):
        Family.from_command("nft")


def test_rule_arguments_skip_negation_and_flag():
    rule = Rule({"insert": ["-I INPUT 2"], "source": ["! -s 10.0.0.1"]})
    assert rule.arguments("insert") == ["INPUT", "2"]
    assert rule.arguments("source") == ["10.0.0.1"]
    assert rule.arguments("jump") == []
    assert rule.commands() == ["insert"]


def test_new_ruleset_has_default_chains_with_accept():
    ruleset = RuleSet.create(Family.IPV4)
    assert ruleset.tables["filter"].policies == {"INPUT": "ACCEPT", "FORWARD": "ACCEPT", "OUTPUT": "ACCEPT"}
    assert ruleset.tables["raw"].policies == {"PREROUTING": "ACCEPT", "OUTPUT": "ACCEPT"}
    assert ruleset.table("nat") is None
    assert all(rules == [] for rules in ruleset.tables["raw"].rules.values())


def test_settings_from_env():
    settings = Settings.from_env(
        {
            "FWNORM_DNS_RETRIES": "4",
            "FWNORM_NAMESERVERS": "192.0.2.53, 2001:db8::53",
            "FWNORM_CACHE_DNS": "yes",
            "FWNORM_LOG_LEVEL": "debug",
        },
    )
    assert settings.dns_retries == 4
    assert settings.nameservers == ["192.0.2.53", "2001:db8::53"]
    assert settings.cache_dns is True
    assert settings.log_level == "DEBUG"


def test_settings_defaults():
    settings = Settings.from_env({})
    assert settings == Settings()
    assert settings.dns_retries == 2
    assert settings.cache_dns is False
