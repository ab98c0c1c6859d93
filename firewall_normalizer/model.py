"""Data structures shared by the normalizer stack."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence

TABLE_FILTER = "filter"
TABLE_RAW = "raw"

CHAIN_INPUT = "INPUT"
CHAIN_FORWARD = "FORWARD"
CHAIN_OUTPUT = "OUTPUT"
CHAIN_PREROUTING = "PREROUTING"

TARGET_ACCEPT = "ACCEPT"
TARGET_DROP = "DROP"
TARGET_QUEUE = "QUEUE"
TARGET_RETURN = "RETURN"

BUILTIN_TARGETS = (TARGET_ACCEPT, TARGET_DROP, TARGET_QUEUE, TARGET_RETURN)

# Default chains per table, in the order the dump tool lists them.
DEFAULT_CHAINS: Dict[str, Sequence[str]] = {
    TABLE_FILTER: (CHAIN_INPUT, CHAIN_FORWARD, CHAIN_OUTPUT),
    TABLE_RAW: (CHAIN_PREROUTING, CHAIN_OUTPUT),
}

# The dump tool emits tables in reverse order of first use. Every
# configuration touches raw (if at all) before filter, so the order is fixed.
TABLE_ORDER: Sequence[str] = (TABLE_RAW, TABLE_FILTER)

COMMANDS: Sequence[str] = (
    "append",
    "delete",
    "check",
    "insert",
    "replace",
    "flush",
    "zero",
    "new-chain",
    "delete-chain",
    "rename-chain",
    "policy",
)

# Precedence of parameter keys in a rendered rule line.
ARGUMENT_ORDER: Sequence[str] = (
    *COMMANDS,
    "source",
    "destination",
    "in-interface",
    "out-interface",
    "protocol",
    "match",
    "jump",
    "fragment",
    "modprobe",
    "goto",
    "ipv4",
    "ipv6",
)


class Family(Enum):
    IPV4 = "IPv4"
    IPV6 = "IPv6"

    @property
    def command(self) -> str:
        return "iptables" if self is Family.IPV4 else "ip6tables"

    @classmethod
    def from_command(cls, token: str) -> "Family":
        for family in cls:
            if family.command == token:
                return family
        raise ValueError(f"Unsupported command token: {token}")


@dataclass
class Rule:
    """Parsed command line: long option name mapped to its rendered fragments.

    Several fragments may share one key, e.g. two ``-m`` extensions on the
    same line, so every value is a list kept in command-line order.
    """

    parameters: Dict[str, List[str]] = field(default_factory=dict)

    def __contains__(self, key: str) -> bool:
        return key in self.parameters

    def add(self, key: str, fragment: str) -> None:
        self.parameters.setdefault(key, []).append(fragment)

    def get(self, key: str) -> List[str]:
        return self.parameters.get(key, [])

    def set(self, key: str, fragment: str) -> None:
        self.parameters[key] = [fragment]

    def remove(self, key: str) -> None:
        self.parameters.pop(key, None)

    def is_negated(self, key: str) -> bool:
        fragments = self.get(key)
        return bool(fragments) and fragments[0].startswith("!")

    def arguments(self, key: str) -> List[str]:
        """Arguments of the first fragment under ``key`` without the flag itself."""
        tokens = self.get(key)[0].split() if key in self.parameters else []
        if tokens and tokens[0] == "!":
            tokens = tokens[1:]
        return tokens[1:]

    def commands(self) -> List[str]:
        return [name for name in COMMANDS if name in self.parameters]

    def clone(self) -> "Rule":
        return Rule({key: list(values) for key, values in self.parameters.items()})


@dataclass
class Table:
    name: str
    default_chains: List[str]
    policies: Dict[str, str] = field(default_factory=dict)
    user_chains: List[str] = field(default_factory=list)
    rules: Dict[str, List[Rule]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        for chain in self.default_chains:
            self.policies.setdefault(chain, TARGET_ACCEPT)
            self.rules.setdefault(chain, [])

    def has_chain(self, name: str) -> bool:
        return name in self.rules

    def is_default_chain(self, name: str) -> bool:
        return name in self.default_chains

    def sorted_user_chains(self) -> List[str]:
        return sorted(self.user_chains)


@dataclass
class RuleSet:
    family: Family
    tables: Dict[str, Table]

    @classmethod
    def create(cls, family: Family) -> "RuleSet":
        tables = {name: Table(name=name, default_chains=list(chains)) for name, chains in DEFAULT_CHAINS.items()}
        return cls(family=family, tables=tables)

    def table(self, name: str) -> Optional[Table]:
        return self.tables.get(name)
