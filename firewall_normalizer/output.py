"""Rendering of a rule set in iptables-save stanza form."""
from __future__ import annotations

from typing import List

from .model import ARGUMENT_ORDER, TABLE_ORDER, Rule, RuleSet, Table


def render_rule(rule: Rule) -> str:
    """Join the rule's fragments in the dump tool's key order; other keys are dropped."""
    return " ".join(" ".join(rule.get(key)) for key in ARGUMENT_ORDER if key in rule)


def render_table(table: Table) -> List[str]:
    lines = [f"*{table.name}"]
    for chain in table.default_chains:
        lines.append(f":{chain} {table.policies[chain]} [0:0]")
    user_chains = table.sorted_user_chains()
    for chain in user_chains:
        lines.append(f":{chain} - [0:0]")
    for chain in [*table.default_chains, *user_chains]:
        lines.extend(render_rule(rule) for rule in table.rules[chain])
    lines.append("COMMIT")
    return lines


def render_lines(ruleset: RuleSet) -> List[str]:
    lines: List[str] = []
    for name in TABLE_ORDER:
        lines.extend(render_table(ruleset.tables[name]))
    return lines


def render(ruleset: RuleSet) -> str:
    return "\n".join(render_lines(ruleset)) + "\n"
