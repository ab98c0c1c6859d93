"""Expansion of macro lines into per-family iptables and ip6tables command lines."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Set, Tuple

from .addresses import AddressResolver
from .errors import AddressError, ExpansionError
from .model import Family

logger = logging.getLogger(__name__)

# Macros bound to one family: name -> (family, command prefix).
FAMILY_MACROS: Dict[str, Tuple[Family, str]] = {
    "iptables": (Family.IPV4, ""),
    "INPUT4": (Family.IPV4, "-A INPUT"),
    "OUTPUT4": (Family.IPV4, "-A OUTPUT"),
    "FORWARD4": (Family.IPV4, "-A FORWARD"),
    "PREROUTING4": (Family.IPV4, "-A PREROUTING"),
    "ip6tables": (Family.IPV6, ""),
    "INPUT6": (Family.IPV6, "-A INPUT"),
    "OUTPUT6": (Family.IPV6, "-A OUTPUT"),
    "FORWARD6": (Family.IPV6, "-A FORWARD"),
    "PREROUTING6": (Family.IPV6, "-A PREROUTING"),
}

# Macros applying to both families unless the addresses say otherwise.
DUAL_STACK_MACROS: Dict[str, str] = {
    "INPUT": "-A INPUT",
    "OUTPUT": "-A OUTPUT",
    "FORWARD": "-A FORWARD",
    "PREROUTING": "-A PREROUTING",
    "ip46tables": "",
}

ADDRESS_FLAGS = frozenset({"-s", "--source", "--src", "-d", "--destination", "--dst"})


@dataclass
class ExpandedLines:
    ipv4: List[str] = field(default_factory=list)
    ipv6: List[str] = field(default_factory=list)

    def for_family(self, family: Family) -> List[str]:
        return self.ipv4 if family is Family.IPV4 else self.ipv6


class MacroExpander:
    def __init__(self, resolver: AddressResolver):
        self.resolver = resolver

    def expand(self, lines: Iterable[str]) -> ExpandedLines:
        """Expand every line; any faulty line fails the whole expansion.

        All faulty lines are reported before the failure is raised.
        """
        result = ExpandedLines()
        failures = 0
        for raw_line in lines:
            line = raw_line.strip()
            if not line or line.startswith("#"):
                continue
            parts = line.split(None, 1)
            macro = parts[0]
            arguments = parts[1] if len(parts) > 1 else ""
            if macro in FAMILY_MACROS:
                family, prefix = FAMILY_MACROS[macro]
                result.for_family(family).append(_compose(family.command, prefix, arguments))
                continue
            if macro not in DUAL_STACK_MACROS:
                logger.error("Found unknown line: '%s'", line)
                failures += 1
                continue
            try:
                families = self._families_for(arguments)
            except AddressError as exc:
                logger.error("Line contains faulty address: '%s': %s", line, exc)
                failures += 1
                continue
            prefix = DUAL_STACK_MACROS[macro]
            for family in Family:
                if family in families:
                    result.for_family(family).append(_compose(family.command, prefix, arguments))
        if failures:
            raise ExpansionError(f"{failures} line(s) could not be expanded")
        return result

    def _families_for(self, arguments: str) -> Set[Family]:
        tokens = arguments.split()
        found_address = False
        families: Set[Family] = set()
        for index, token in enumerate(tokens):
            if token not in ADDRESS_FLAGS:
                continue
            if index + 1 >= len(tokens):
                raise AddressError(f"Missing address after '{token}'")
            found_address = True
            for entry in tokens[index + 1].split(","):
                families |= self.resolver.families_of(entry)
        if not found_address:
            return set(Family)
        return families


def _compose(command: str, prefix: str, arguments: str) -> str:
    return " ".join(part for part in (command, prefix, arguments) if part)
