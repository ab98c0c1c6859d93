"""Applies parsed command lines to a rule set."""
from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional, Tuple

from .addresses import AddressResolver
from .errors import RuleSetError, UnimplementedFeature
from .model import BUILTIN_TARGETS, TABLE_FILTER, Rule, RuleSet, Table

logger = logging.getLogger(__name__)

UNIMPLEMENTED_COMMANDS = ("check", "delete", "replace", "zero", "rename-chain")


class RuleSetApplier:
    """Folds ``Rule`` objects into one family's ``RuleSet``, line by line.

    Lines with several source or destination addresses fan out into one rule
    per address combination. Fan-out is not transactional: when a later clone
    fails, the clones applied before it stay in the rule set.
    """

    def __init__(self, ruleset: RuleSet, resolver: AddressResolver):
        self.ruleset = ruleset
        self.resolver = resolver
        self._commands: Dict[str, Callable[[Table, Rule], None]] = {
            "append": self._append,
            "insert": self._insert,
            "flush": self._flush,
            "new-chain": self._new_chain,
            "delete-chain": self._delete_chain,
            "policy": self._policy,
        }

    def apply(self, rule: Rule) -> None:
        command = self._single_command(rule)
        if command in UNIMPLEMENTED_COMMANDS:
            raise UnimplementedFeature(f"Not implemented yet: '{command}'")
        table = self._select_table(rule)
        for clone in self._fan_out(rule):
            logger.debug("Applying %s to table %s: %s", command, table.name, clone.parameters)
            self._commands[command](table, clone)

    def _single_command(self, rule: Rule) -> str:
        commands = rule.commands()
        count = sum(len(rule.get(command)) for command in commands)
        if count == 0:
            raise RuleSetError(f"No command found in parameters: {rule.parameters}")
        if count > 1:
            raise RuleSetError(f"Only one command allowed per line, found: {', '.join(commands)}")
        return commands[0]

    def _select_table(self, rule: Rule) -> Table:
        name = TABLE_FILTER
        if "table" in rule:
            arguments = rule.arguments("table")
            if not arguments:
                raise RuleSetError("Missing table name after '-t'")
            name = arguments[0]
        table = self.ruleset.table(name)
        if table is None:
            raise RuleSetError(f"Not implemented yet: handling of table '{name}'")
        return table

    def _addresses(self, rule: Rule, key: str) -> Tuple[List[str], bool]:
        if key not in rule:
            return [], False
        arguments = rule.arguments(key)
        if not arguments:
            raise RuleSetError(f"Missing address for parameter '{key}'")
        address_list = arguments[0]
        negated = rule.is_negated(key)
        if negated and "," in address_list:
            raise RuleSetError(f"Inversion of several addresses is not allowed: '{rule.get(key)[0]}'")
        return self.resolver.addresses_for(address_list, self.ruleset.family), negated

    def _fan_out(self, rule: Rule) -> List[Rule]:
        sources, sources_negated = self._addresses(rule, "source")
        destinations, destinations_negated = self._addresses(rule, "destination")
        if not sources and not destinations:
            return [rule]
        clones = []
        for source in sources or [None]:
            for destination in destinations or [None]:
                clone = rule.clone()
                if source is not None:
                    _place_address(clone, "source", "-s", source, sources_negated)
                if destination is not None:
                    _place_address(clone, "destination", "-d", destination, destinations_negated)
                clones.append(clone)
        return clones

    def _chain_rules(self, table: Table, chain: Optional[str], command: str) -> List[Rule]:
        if chain is None:
            raise RuleSetError(f"Missing chain name for command '{command}'")
        if not table.has_chain(chain):
            raise RuleSetError(
                f"Unknown chain was used with command '{command}': table is '{table.name}', chain is '{chain}'",
            )
        return table.rules[chain]

    def _append(self, table: Table, rule: Rule) -> None:
        chain = _first(rule.arguments("append"))
        self._chain_rules(table, chain, "append").append(rule)

    def _insert(self, table: Table, rule: Rule) -> None:
        arguments = rule.arguments("insert")
        chain = _first(arguments)
        rules = self._chain_rules(table, chain, "insert")
        position = 1
        if len(arguments) > 1:
            try:
                position = int(arguments[1])
            except ValueError as exc:
                raise RuleSetError(f"Rule number '{arguments[1]}' is not a number") from exc
        if position > len(rules) + 1:
            raise RuleSetError(f"Rule number '{position}' is too big; rule will not be inserted")
        if position < 1:
            raise RuleSetError(f"Rule number '{position}' is too small; rule will not be inserted")
        # The dump lists every rule as appended.
        rule.set("insert", f"-A {chain}")
        rules.insert(position - 1, rule)

    def _flush(self, table: Table, rule: Rule) -> None:
        chain = _first(rule.arguments("flush"))
        if chain is None:
            for name in table.rules:
                table.rules[name] = []
            return
        self._chain_rules(table, chain, "flush")
        table.rules[chain] = []

    def _new_chain(self, table: Table, rule: Rule) -> None:
        chain = _first(rule.arguments("new-chain"))
        if chain is None:
            raise RuleSetError("Missing chain name for command 'new-chain'")
        if table.has_chain(chain):
            raise RuleSetError(f"Chain '{chain}' already exists in table '{table.name}'")
        table.user_chains.append(chain)
        table.rules[chain] = []

    def _delete_chain(self, table: Table, rule: Rule) -> None:
        chain = _first(rule.arguments("delete-chain"))
        if chain is None:
            for name in table.user_chains:
                if table.rules[name]:
                    raise RuleSetError(
                        f"Chain '{name}' still contains rules. Will not delete all user-defined chains "
                        f"in table '{table.name}'",
                    )
            for name in table.user_chains:
                del table.rules[name]
            table.user_chains = []
            return
        if table.is_default_chain(chain):
            raise RuleSetError(f"Built-in chain '{chain}' cannot be deleted")
        if chain not in table.user_chains:
            raise RuleSetError(
                f"Unknown chain was used with command 'delete-chain': table is '{table.name}', chain is '{chain}'",
            )
        if table.rules[chain]:
            raise RuleSetError(f"Chain '{chain}' in table '{table.name}' is not empty")
        del table.rules[chain]
        table.user_chains.remove(chain)

    def _policy(self, table: Table, rule: Rule) -> None:
        arguments = rule.arguments("policy")
        if len(arguments) < 2:
            raise RuleSetError("Command 'policy' needs a chain and a target")
        chain, target = arguments[0], arguments[1]
        if not table.is_default_chain(chain):
            raise RuleSetError(f"The policy can only be set for built-in chains. Wrong chain is '{chain}'")
        if target not in BUILTIN_TARGETS:
            raise RuleSetError(
                f"The target for a policy can only be one of {', '.join(BUILTIN_TARGETS)}. Wrong target is '{target}'",
            )
        table.policies[chain] = target


def _first(arguments: List[str]) -> Optional[str]:
    return arguments[0] if arguments else None


def _place_address(clone: Rule, key: str, flag: str, address: str, negated: bool) -> None:
    # "anywhere" (prefix length zero) is not printed unless negated.
    if address.endswith("/0") and not negated:
        clone.remove(key)
    else:
        clone.set(key, f"{'! ' if negated else ''}{flag} {address}")
