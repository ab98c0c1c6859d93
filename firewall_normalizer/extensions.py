"""Match and target extensions.

An extension consumes its own options from the token stream of one command
line and returns them as a single fragment, ordered and normalized the way
iptables-save prints them. The stream is left on the first token the
extension does not understand.

To add an extension, subclass ``GenericExtension``, declare its options and
register it with ``register_match`` or ``register_target``. The command
parser looks extensions up by name and never needs to change.
"""
from __future__ import annotations

import re
from typing import Callable, Dict, FrozenSet, List, Mapping, Optional, Sequence, Tuple, Type

from .errors import ExtensionError, UnimplementedFeature
from .model import Family

TCP_FLAG_ORDER: Sequence[str] = ("FIN", "SYN", "RST", "PSH", "ACK", "URG", "ALL", "NONE")

RATE_UNITS: Mapping[str, str] = {
    "s": "sec",
    "sec": "sec",
    "second": "sec",
    "m": "min",
    "min": "min",
    "minute": "min",
    "h": "hour",
    "hour": "hour",
    "d": "day",
    "day": "day",
}

_SIMPLE_WORD = re.compile(r"^[A-Za-z0-9_-]+$")
_ICMP_TYPE = re.compile(r"^(any|\d+(/\d+)?)$")


class TokenStream:
    """Tokens of one command line with a shared read position."""

    def __init__(self, tokens: Sequence[str], position: int = 0):
        self.tokens = list(tokens)
        self.position = position

    def at_end(self) -> bool:
        return self.position >= len(self.tokens)

    def peek(self, offset: int = 0) -> Optional[str]:
        index = self.position + offset
        if 0 <= index < len(self.tokens):
            return self.tokens[index]
        return None

    def advance(self, count: int = 1) -> None:
        self.position += count

    def next(self) -> str:
        token = self.peek()
        if token is None:
            raise ExtensionError("Unexpected end of command line")
        self.position += 1
        return token

    def remaining(self) -> List[str]:
        return self.tokens[self.position:]


def normalize_quotes(token: str) -> str:
    """Quote an argument the way iptables-save does.

    Quotes around a plain word are dropped, any other quoted text is put in
    double quotes.
    """
    if len(token) < 2 or token[0] != token[-1] or token[0] not in "'\"":
        return token
    inner = token[1:-1]
    if _SIMPLE_WORD.match(inner):
        return inner
    return f'"{inner}"'


def sort_tcp_flags(flags: str) -> str:
    names = {flag.strip().upper() for flag in flags.split(",") if flag.strip()}
    if not names:
        raise ExtensionError("Empty TCP flag list")
    unknown = names - set(TCP_FLAG_ORDER)
    if unknown:
        raise ExtensionError(f"Unknown TCP flag(s): {', '.join(sorted(unknown))}")
    return ",".join(flag for flag in TCP_FLAG_ORDER if flag in names)


def normalize_rate(rate: str, default_unit: Optional[str] = None) -> str:
    amount, separator, unit = rate.partition("/")
    if not amount.isdigit():
        raise ExtensionError(f"Invalid rate '{rate}'")
    if not separator:
        if default_unit is None:
            return amount
        return f"{amount}/{default_unit}"
    if unit.lower() not in RATE_UNITS:
        raise ExtensionError(f"Invalid rate unit in '{rate}'")
    return f"{amount}/{RATE_UNITS[unit.lower()]}"


def _split_fragment(fragment: str) -> Tuple[str, List[str]]:
    """Split ``[!] --name args...`` into its negation prefix and tokens."""
    if fragment.startswith("! "):
        return "! ", fragment[2:].split(" ")
    return "", fragment.split(" ")


class Extension:
    """Parses the options of one match or target extension."""

    name: str = ""

    def parse(self, stream: TokenStream, family: Family) -> str:
        raise NotImplementedError


class GenericExtension(Extension):
    """Extension with a fixed number of arguments per option.

    Subclasses declare:

    * ``options``: option name -> number of arguments
    * ``defaults``: option name -> fragment used when the option is absent
    * ``invertible``: options that may follow ``!``
    * ``aliases``: option name -> canonical option name; canonical names may
      occur only once
    * ``substitutions``: shortcut option -> (option it expands to, fragment)
    * ``order``: output order; options not listed are dropped
    * ``required``: options that must be present after defaults are applied

    ``finish`` may post-process the ordered fragments.
    """

    options: Mapping[str, int] = {}
    defaults: Mapping[str, str] = {}
    invertible: FrozenSet[str] = frozenset()
    aliases: Mapping[str, str] = {}
    substitutions: Mapping[str, Tuple[str, str]] = {}
    order: Optional[Sequence[str]] = None
    required: Sequence[str] = ()

    def parse(self, stream: TokenStream, family: Family) -> str:
        start = stream.position
        found = self._collect(stream)
        for option in self.required:
            if option not in found:
                raise ExtensionError(f"Missing option '{option}' in extension '{self.name}'")
        if self.order is not None:
            parameters = [found[option] for option in self.order if option in found]
        else:
            parameters = list(found.values())
        return " ".join(self.finish(parameters, stream, start, family))

    def finish(
        self,
        parameters: List[str],
        stream: TokenStream,
        start: int,
        family: Family,
    ) -> List[str]:
        return parameters

    def _collect(self, stream: TokenStream) -> Dict[str, str]:
        found: Dict[str, str] = {}
        inverse = False
        while not stream.at_end():
            token = stream.peek()
            if token == "!" and not inverse:
                inverse = True
                stream.advance()
                continue
            if token not in self.options:
                break
            stream.advance()
            name = self.aliases.get(token, token)
            if name in found:
                raise ExtensionError(f"Only one '{name}' allowed in extension '{self.name}'")
            arguments = []
            for _ in range(self.options[name]):
                if stream.at_end():
                    raise ExtensionError(f"Missing argument in extension '{self.name}' for option '{name}'")
                arguments.append(normalize_quotes(stream.next()))
            fragment = " ".join([name, *arguments])
            if inverse:
                if name not in self.invertible:
                    raise ExtensionError(f"Option '{name}' of extension '{self.name}' must not be negated with '!'")
                fragment = "! " + fragment
                inverse = False
            found[name] = fragment
        if inverse:
            # The '!' belongs to whatever option comes next.
            stream.advance(-1)

        merged = {**self.defaults, **found}
        for shortcut, (target, replacement) in self.substitutions.items():
            if shortcut not in merged:
                continue
            if target in merged:
                raise ExtensionError(f"Shortcut '{shortcut}' and option '{target}' are not allowed at the same time")
            fragment = merged.pop(shortcut)
            merged[target] = "! " + replacement if fragment.startswith("!") else replacement
        return merged


MATCH_EXTENSIONS: Dict[str, Extension] = {}
TARGET_EXTENSIONS: Dict[str, Extension] = {}


def _register(registry: Dict[str, Extension], names: Sequence[str]) -> Callable[[Type[Extension]], Type[Extension]]:
    def decorator(cls: Type[Extension]) -> Type[Extension]:
        instance = cls()
        for name in names:
            registry[name] = instance
        return cls

    return decorator


def register_match(*names: str) -> Callable[[Type[Extension]], Type[Extension]]:
    return _register(MATCH_EXTENSIONS, names)


def register_target(*names: str) -> Callable[[Type[Extension]], Type[Extension]]:
    return _register(TARGET_EXTENSIONS, names)


def match_extension(name: str) -> Optional[Extension]:
    return MATCH_EXTENSIONS.get(name)


def target_extension(name: str) -> Optional[Extension]:
    return TARGET_EXTENSIONS.get(name)


_PORT_OPTIONS = {"--source-port": 1, "--sport": 1, "--destination-port": 1, "--dport": 1}
_PORT_ALIASES = {"--source-port": "--sport", "--destination-port": "--dport"}


@register_match("tcp")
class TcpMatch(GenericExtension):
    name = "tcp"
    options = {**_PORT_OPTIONS, "--tcp-flags": 2, "--syn": 0, "--tcp-option": 1}
    invertible = frozenset(options)
    aliases = _PORT_ALIASES
    substitutions = {"--syn": ("--tcp-flags", "--tcp-flags FIN,SYN,RST,ACK SYN")}
    order = ("--sport", "--dport", "--tcp-option", "--tcp-flags")

    def finish(self, parameters, stream, start, family):
        result = []
        for fragment in parameters:
            negation, tokens = _split_fragment(fragment)
            if tokens[0] == "--tcp-flags":
                fragment = f"{negation}--tcp-flags {sort_tcp_flags(tokens[1])} {sort_tcp_flags(tokens[2])}"
            result.append(fragment)
        return result


@register_match("udp")
class UdpMatch(GenericExtension):
    name = "udp"
    options = _PORT_OPTIONS
    invertible = frozenset(options)
    aliases = _PORT_ALIASES
    order = ("--sport", "--dport")


class _IcmpTypeMatch(GenericExtension):
    type_option = ""

    def finish(self, parameters, stream, start, family):
        for fragment in parameters:
            _, tokens = _split_fragment(fragment)
            if not _ICMP_TYPE.match(tokens[1]):
                raise UnimplementedFeature(
                    f"Translation of ICMP type name '{tokens[1]}' into a type code is not implemented; "
                    f"use the numeric type with '{self.type_option}'",
                )
        return parameters


@register_match("icmp")
class IcmpMatch(_IcmpTypeMatch):
    name = "icmp"
    type_option = "--icmp-type"
    options = {"--icmp-type": 1}
    invertible = frozenset(options)


@register_match("icmp6", "ipv6-icmp")
class Icmp6Match(_IcmpTypeMatch):
    name = "icmp6"
    type_option = "--icmpv6-type"
    options = {"--icmpv6-type": 1}
    invertible = frozenset(options)


@register_match("state")
class StateMatch(GenericExtension):
    name = "state"
    options = {"--state": 1}
    invertible = frozenset(options)


@register_match("conntrack")
class ConntrackMatch(GenericExtension):
    name = "conntrack"
    options = {"--ctstate": 1}
    invertible = frozenset(options)


@register_match("comment")
class CommentMatch(GenericExtension):
    name = "comment"
    options = {"--comment": 1}
    required = ("--comment",)


@register_match("multiport")
class MultiportMatch(GenericExtension):
    name = "multiport"
    options = {"--source-ports": 1, "--sports": 1, "--destination-ports": 1, "--dports": 1, "--ports": 1}
    invertible = frozenset(options)
    aliases = {"--source-ports": "--sports", "--destination-ports": "--dports"}
    order = ("--sports", "--dports", "--ports")

    def finish(self, parameters, stream, start, family):
        if not parameters:
            raise ExtensionError("Extension 'multiport' needs one of '--sports', '--dports' or '--ports'")
        return parameters


@register_match("limit")
class LimitMatch(GenericExtension):
    name = "limit"
    options = {"--limit": 1, "--limit-burst": 1}
    defaults = {"--limit": "--limit 3/hour"}
    order = ("--limit", "--limit-burst")

    def finish(self, parameters, stream, start, family):
        result = []
        for fragment in parameters:
            negation, tokens = _split_fragment(fragment)
            if tokens[0] == "--limit":
                fragment = f"{negation}--limit {normalize_rate(tokens[1], default_unit='sec')}"
            elif tokens[1] == "5":
                # iptables-save leaves out the default burst
                continue
            result.append(fragment)
        return result


@register_match("hashlimit")
class HashlimitMatch(GenericExtension):
    name = "hashlimit"
    options = {
        "--hashlimit-upto": 1,
        "--hashlimit-above": 1,
        "--hashlimit-burst": 1,
        "--hashlimit-mode": 1,
        "--hashlimit-srcmask": 1,
        "--hashlimit-dstmask": 1,
        "--hashlimit-name": 1,
        "--hashlimit-htable-size": 1,
        "--hashlimit-htable-max": 1,
        "--hashlimit-htable-expire": 1,
        "--hashlimit-htable-gcinterval": 1,
    }
    defaults = {
        "--hashlimit-burst": "--hashlimit-burst 5",
        "--hashlimit-htable-expire": "--hashlimit-htable-expire 1",
    }
    order = (
        "--hashlimit-upto",
        "--hashlimit-above",
        "--hashlimit-burst",
        "--hashlimit-mode",
        "--hashlimit-name",
        "--hashlimit-htable-size",
        "--hashlimit-htable-max",
        "--hashlimit-htable-gcinterval",
        "--hashlimit-htable-expire",
        "--hashlimit-srcmask",
        "--hashlimit-dstmask",
    )

    def finish(self, parameters, stream, start, family):
        # iptables-save always prints the unit of the rate; seconds if none was given.
        result = []
        for fragment in parameters:
            negation, tokens = _split_fragment(fragment)
            if tokens[0] in ("--hashlimit-upto", "--hashlimit-above"):
                fragment = f"{negation}{tokens[0]} {normalize_rate(tokens[1], default_unit='sec')}"
            result.append(fragment)
        return result


@register_match("recent")
class RecentMatch(GenericExtension):
    name = "recent"
    options = {
        "--name": 1,
        "--set": 0,
        "--rsource": 0,
        "--rdest": 0,
        "--rcheck": 0,
        "--update": 0,
        "--remove": 0,
        "--seconds": 1,
        "--reap": 0,
        "--hitcount": 1,
        "--rttl": 0,
    }
    defaults = {"--name": "--name DEFAULT"}
    invertible = frozenset({"--set", "--rcheck", "--update", "--remove"})
    order = (
        "--set",
        "--rcheck",
        "--update",
        "--remove",
        "--seconds",
        "--reap",
        "--hitcount",
        "--rttl",
        "--name",
        "--rsource",
        "--rdest",
    )

    def finish(self, parameters, stream, start, family):
        has_source = "--rsource" in parameters
        has_dest = "--rdest" in parameters
        if not has_source and not has_dest:
            return [*parameters, "--rsource"]
        if has_source and has_dest:
            # Mutually exclusive; the one given last on the command line wins.
            span = stream.tokens[start:stream.position]
            last = next(token for token in reversed(span) if token in ("--rsource", "--rdest"))
            loser = "--rdest" if last == "--rsource" else "--rsource"
            return [fragment for fragment in parameters if fragment != loser]
        return parameters


@register_target("LOG")
class LogTarget(GenericExtension):
    name = "LOG"
    options = {
        "--log-level": 1,
        "--log-prefix": 1,
        "--log-tcp-sequence": 0,
        "--log-tcp-options": 0,
        "--log-ip-options": 0,
        "--log-uid": 0,
    }
    order = (
        "--log-prefix",
        "--log-level",
        "--log-tcp-sequence",
        "--log-tcp-options",
        "--log-ip-options",
        "--log-uid",
    )


@register_target("REJECT")
class RejectTarget(GenericExtension):
    name = "REJECT"
    options = {"--reject-with": 1}

    def finish(self, parameters, stream, start, family):
        if parameters:
            return parameters
        if family is Family.IPV4:
            return ["--reject-with icmp-port-unreachable"]
        return ["--reject-with icmp6-port-unreachable"]


@register_target("NOTRACK")
class NotrackTarget(GenericExtension):
    name = "NOTRACK"
