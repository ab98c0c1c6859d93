"""iptables/ip6tables command line parser and iptables-save reader."""
from __future__ import annotations

import logging
import re
import shlex
from pathlib import Path
from typing import Callable, Dict, List, Optional

from .errors import MissingExtension, ParserError, UnknownCommand, UnknownExtension, UnknownParameter
from .extensions import TokenStream, match_extension, target_extension
from .model import BUILTIN_TARGETS, Family, Rule

logger = logging.getLogger(__name__)

OPTION_PATTERN = re.compile(r"^--?(\w(?:\w|-)*)")

# Every option iptables knows, long name -> short name. The dump tool prints
# short names, so fragments always use them.
LONG_TO_SHORT: Dict[str, str] = {
    "append": "A",
    "delete": "D",
    "check": "C",
    "insert": "I",
    "replace": "R",
    "list": "L",
    "list-rules": "S",
    "flush": "F",
    "zero": "Z",
    "new-chain": "N",
    "delete-chain": "X",
    "rename-chain": "E",
    "policy": "P",
    "source": "s",
    "destination": "d",
    "protocol": "p",
    "in-interface": "i",
    "jump": "j",
    "table": "t",
    "match": "m",
    "numeric": "n",
    "out-interface": "o",
    "verbose": "v",
    "exact": "x",
    "fragment": "f",
    "version": "V",
    "help": "h",
    "line-numbers": "0",
    "modprobe": "M",
    "set-counters": "c",
    "goto": "g",
    "ipv4": "4",
    "ipv6": "6",
}
SHORT_TO_LONG: Dict[str, str] = {short: long for long, short in LONG_TO_SHORT.items()}
LONG_ALIASES: Dict[str, str] = {"src": "source", "dst": "destination"}

PROTOCOL_ALIASES: Dict[str, str] = {"icmpv6": "ipv6-icmp"}
# Protocols whose implicit match extension has a different name.
PROTOCOL_EXTENSIONS: Dict[str, str] = {"ipv6-icmp": "icmp6"}

COMMAND_TOKENS = tuple(family.command for family in Family)


def tokenize(line: str) -> List[str]:
    """Split on whitespace; quoted substrings stay one token, quotes included."""
    lexer = shlex.shlex(line.strip(), posix=False)
    lexer.whitespace_split = True
    lexer.commenters = ""
    try:
        return list(lexer)
    except ValueError as exc:
        raise ParserError(f"Cannot split command line '{line}': {exc}") from exc


def option_name(token: str) -> Optional[str]:
    match = OPTION_PATTERN.match(token)
    return match.group(1) if match else None


def canonical_option(name: str) -> Optional[str]:
    """Long name for a short, long or aliased option name."""
    if name in SHORT_TO_LONG:
        return SHORT_TO_LONG[name]
    if name in LONG_TO_SHORT:
        return name
    return LONG_ALIASES.get(name)


def is_known_option(token: str) -> bool:
    name = option_name(token)
    return name is not None and canonical_option(name) is not None


def _is_unknown_option(token: Optional[str]) -> bool:
    if token is None:
        return False
    name = option_name(token)
    return name is not None and canonical_option(name) is None


class CommandParser:
    """Turns one iptables or ip6tables command line into a ``Rule``.

    Extensions need the family for their defaults (e.g. the REJECT reason),
    so one parser serves one family.
    """

    def __init__(self, family: Family):
        self.family = family
        self._handlers: Dict[str, Callable[[Rule, str, str, TokenStream], None]] = {
            "protocol": self._parse_protocol,
            "match": self._parse_match,
            "jump": self._parse_jump,
        }

    def parse(self, line: str) -> Rule:
        tokens = tokenize(line)
        logger.debug("Found tokens: %s", tokens)
        if not tokens or tokens[0] not in COMMAND_TOKENS:
            first = tokens[0] if tokens else ""
            raise UnknownCommand(f"First word of command line is neither 'iptables' nor 'ip6tables': '{first}'")

        rule = Rule()
        stream = TokenStream(tokens, 1)
        inverse = False
        while not stream.at_end():
            token = stream.next()
            if token == "!":
                if inverse:
                    raise ParserError(f"Repeated '!' in command line '{line}'")
                inverse = True
                continue
            name = option_name(token)
            long_name = canonical_option(name) if name is not None else None
            if long_name is None:
                remaining = " ".join(tokens[stream.position - 1:])
                raise UnknownParameter(f"Unknown parameter '{token}' found. Remaining line: '{remaining}'")
            fragment = "-" + LONG_TO_SHORT[long_name]
            if inverse:
                fragment = "! " + fragment
                inverse = False
            handler = self._handlers.get(long_name, self._parse_options)
            handler(rule, long_name, fragment, stream)
        if inverse:
            raise ParserError(f"Trailing '!' without a parameter in command line '{line}'")
        logger.debug("Found parameters: %s", rule.parameters)
        return rule

    def _parse_protocol(self, rule: Rule, long_name: str, fragment: str, stream: TokenStream) -> None:
        if stream.at_end():
            raise ParserError(f"Missing protocol name after '{fragment}'")
        protocol = stream.next().lower()
        protocol = PROTOCOL_ALIASES.get(protocol, protocol)
        extension_name = PROTOCOL_EXTENSIONS.get(protocol, protocol)
        rule.add("protocol", f"{fragment} {protocol}")

        # An option iptables itself does not know belongs to the protocol's
        # implicit match extension. The dump tool prints it as '-m <name>'.
        offset = 1 if stream.peek() == "!" else 0
        if not _is_unknown_option(stream.peek(offset)):
            return
        extension = match_extension(extension_name)
        if extension is None:
            raise MissingExtension(
                f"Parameter after the protocol is unknown to iptables. Either the parameter is missing "
                f"in the parameter list for iptables or the match extension '{extension_name}' is missing "
                f"for the protocol '{protocol}'. Remaining line: '{' '.join(stream.remaining())}'",
            )
        logger.debug("Calling match extension '%s' for protocol '%s'", extension_name, protocol)
        parameters = extension.parse(stream, self.family)
        if parameters:
            rule.add("match", f"-m {extension_name} {parameters}")

    def _parse_match(self, rule: Rule, long_name: str, fragment: str, stream: TokenStream) -> None:
        if stream.at_end():
            raise ParserError(f"Missing match extension after '{fragment}'")
        name = stream.next()
        extension = match_extension(name)
        if extension is None:
            raise UnknownExtension(f"Unknown match extension: '{name}'")
        logger.debug("Calling match extension '%s'", name)
        parameters = extension.parse(stream, self.family)
        rule.add("match", " ".join(part for part in (fragment, name, parameters) if part))

    def _parse_jump(self, rule: Rule, long_name: str, fragment: str, stream: TokenStream) -> None:
        if stream.at_end():
            raise ParserError(f"Missing jump target after '{fragment}'")
        target = stream.next()
        current = f"{fragment} {target}"
        extension = target_extension(target)
        if target in BUILTIN_TARGETS:
            pass
        elif extension is not None:
            logger.debug("Calling target extension '%s'", target)
            parameters = extension.parse(stream, self.family)
            if parameters:
                current = f"{current} {parameters}"
        else:
            # Either a user-defined chain, which cannot be checked here, or a
            # target extension that is not implemented. An option unknown to
            # iptables right after the target means the latter.
            offset = 1 if stream.peek() == "!" else 0
            if _is_unknown_option(stream.peek(offset)):
                raise MissingExtension(
                    f"The parameter after the jump target is not known to iptables. Either the parameter is "
                    f"missing in the parameter list for iptables or the target extension '{target}' is "
                    f"missing. Remaining line: '{' '.join(stream.remaining())}'",
                )
        rule.add("jump", current)

    def _parse_options(self, rule: Rule, long_name: str, fragment: str, stream: TokenStream) -> None:
        parts = [fragment]
        while not stream.at_end():
            token = stream.peek()
            if token == "!" or is_known_option(token):
                break
            if _is_unknown_option(token):
                raise UnknownParameter(
                    f"Unknown parameter '{token}' found while collecting options. "
                    f"Remaining line: '{' '.join(stream.remaining())}'",
                )
            parts.append(token)
            stream.advance()
        rule.add(long_name, " ".join(parts))


def parse_command(line: str, family: Family) -> Rule:
    return CommandParser(family).parse(line)


def read_save_lines(text: str, family: Family) -> List[str]:
    """Turn iptables-save output back into command lines.

    Policies become ``-P``, user chains ``-N`` and rules keep their ``-A``
    line, each with an explicit ``-t``. Counters are ignored.
    """
    commands: List[str] = []
    table: Optional[str] = None
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("*"):
            table = line[1:].strip()
            continue
        if line == "COMMIT":
            table = None
            continue
        if table is None:
            raise ParserError(f"Line outside of a table: {line}")
        if line.startswith(":"):
            # Format: :CHAIN POLICY [packets:bytes]
            try:
                chain, policy, *_ = line[1:].split()
            except ValueError as exc:
                raise ParserError(f"Invalid chain definition: {line}") from exc
            if policy == "-":
                commands.append(f"{family.command} -t {table} -N {chain}")
            else:
                commands.append(f"{family.command} -t {table} -P {chain} {policy}")
            continue
        if line.startswith("["):
            line = line.split("]", 1)[1].strip()
        commands.append(f"{family.command} -t {table} {line}")
    return commands


def read_save_file(path: Path, family: Family) -> List[str]:
    """Load a file containing iptables-save or ip6tables-save contents."""
    return read_save_lines(path.read_text(), family)
