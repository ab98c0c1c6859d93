"""High-level orchestration across expander, parser, applier and output layers."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

from .addresses import AddressResolver
from .applier import RuleSetApplier
from .config import Settings
from .errors import NormalizerError
from .expander import ExpandedLines, MacroExpander
from .model import Family, RuleSet
from .output import render
from .parser import CommandParser, read_save_lines

logger = logging.getLogger(__name__)


def strip_config_lines(lines: Iterable[str]) -> List[str]:
    """Drop blank and comment lines, trim the rest."""
    result = []
    for raw_line in lines:
        line = raw_line.strip()
        if line and not line.startswith("#"):
            result.append(line)
    return result


def read_config_files(paths: Sequence[Path]) -> List[str]:
    lines: List[str] = []
    for path in paths:
        lines.extend(strip_config_lines(path.read_text().splitlines()))
    return lines


@dataclass
class FamilyResult:
    family: Family
    output: Optional[str]
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.output is not None


class Normalizer:
    """Bundle macro expansion, parsing, rule application and rendering."""

    def __init__(self, settings: Optional[Settings] = None, resolver: Optional[AddressResolver] = None):
        self.settings = settings or Settings()
        self.resolver = resolver or AddressResolver(self.settings)

    def expand(self, lines: Iterable[str]) -> ExpandedLines:
        return MacroExpander(self.resolver).expand(strip_config_lines(lines))

    def build(self, commands: Iterable[str], family: Family) -> RuleSet:
        """Apply command lines one by one to a fresh rule set of ``family``."""
        ruleset = RuleSet.create(family)
        parser = CommandParser(family)
        applier = RuleSetApplier(ruleset, self.resolver)
        for line in commands:
            try:
                applier.apply(parser.parse(line))
            except NormalizerError:
                logger.error("Failed to process %s line: '%s'", family.value, line)
                raise
        return ruleset

    def render_family(self, commands: Iterable[str], family: Family) -> str:
        return render(self.build(commands, family))

    def renormalize(self, dump_text: str, family: Family) -> str:
        """Canonicalize iptables-save output by replaying it as commands."""
        return self.render_family(read_save_lines(dump_text, family), family)

    def normalize(self, lines: Iterable[str]) -> Dict[Family, FamilyResult]:
        """Expand config lines and render both families independently.

        A failed expansion fails both families; otherwise each family
        succeeds or fails on its own.
        """
        try:
            expanded = self.expand(lines)
        except NormalizerError as exc:
            logger.error("%s", exc)
            return {family: FamilyResult(family, None, str(exc)) for family in Family}
        results: Dict[Family, FamilyResult] = {}
        for family in Family:
            try:
                output = self.render_family(expanded.for_family(family), family)
            except NormalizerError as exc:
                logger.error("%s", exc)
                results[family] = FamilyResult(family, None, str(exc))
            else:
                results[family] = FamilyResult(family, output)
        return results


def expand_lines(lines: Iterable[str], resolver: Optional[AddressResolver] = None) -> Optional[ExpandedLines]:
    """Expand macro lines; ``None`` after logging the error when any line is faulty."""
    try:
        return Normalizer(resolver=resolver).expand(lines)
    except NormalizerError as exc:
        logger.error("%s", exc)
        return None


def generate_output(
    commands: Iterable[str],
    family: Family = Family.IPV4,
    resolver: Optional[AddressResolver] = None,
) -> Optional[str]:
    """Render iptables/ip6tables command lines like iptables-save would.

    Returns ``None`` after logging the error when any line fails; partial
    output is never returned.
    """
    try:
        return Normalizer(resolver=resolver).render_family(commands, family)
    except NormalizerError as exc:
        logger.error("%s", exc)
        return None
