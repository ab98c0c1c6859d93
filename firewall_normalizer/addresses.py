"""Address classification, DNS resolution and CIDR canonicalization."""
from __future__ import annotations

import logging
import re
from enum import Enum
from ipaddress import IPv4Interface, IPv6Interface, ip_interface
from typing import Dict, List, Optional, Sequence, Set, Tuple, Union

import dns.exception
import dns.resolver

from .config import Settings
from .errors import AddressError, ResolutionError
from .model import Family

logger = logging.getLogger(__name__)

_IPV4_PATTERN = re.compile(r"^(\d{1,3})\.(\d{1,3})\.(\d{1,3})\.(\d{1,3})$")

Interface = Union[IPv4Interface, IPv6Interface]


class AddressKind(Enum):
    IPV4 = "ipv4"
    IPV6 = "ipv6"
    NEITHER = "neither"

    @classmethod
    def for_family(cls, family: Family) -> "AddressKind":
        return cls.IPV4 if family is Family.IPV4 else cls.IPV6


def classify(token: str) -> AddressKind:
    """Structural check only, no DNS. Accepts an optional ``/prefix``."""
    if _is_ipv4(token):
        return AddressKind.IPV4
    if _is_ipv6(token):
        return AddressKind.IPV6
    return AddressKind.NEITHER


def _is_ipv4(token: str) -> bool:
    # Leading zeros are accepted, e.g. 010.000.000.001.
    address, separator, prefix = token.partition("/")
    if separator and not (prefix.isdigit() and int(prefix) <= 32):
        return False
    match = _IPV4_PATTERN.match(address)
    if not match:
        return False
    return all(int(octet) <= 255 for octet in match.groups())


def _is_ipv6(token: str) -> bool:
    try:
        return ip_interface(token).version == 6
    except ValueError:
        return False


def _parse_interface(address: str) -> Interface:
    text, separator, prefix = address.partition("/")
    match = _IPV4_PATTERN.match(text)
    if match:
        text = ".".join(str(int(octet)) for octet in match.groups())
    try:
        return ip_interface(text + separator + prefix)
    except ValueError as exc:
        raise AddressError(f"'{address}' is not a valid IP address") from exc


def to_cidr(
    addresses: Sequence[str],
    verify: bool = False,
    reduce_to_network: bool = False,
) -> List[str]:
    """Render addresses as ``address/prefix``, same length and order as the input.

    With ``verify`` a warning is logged for every address that is not the base
    address of its own network. With ``reduce_to_network`` each address is
    replaced by that network. IPv6 output is zero-compressed. One unparseable
    address fails the whole batch.
    """
    interfaces = [_parse_interface(address) for address in addresses]
    result: List[str] = []
    for interface in interfaces:
        network = interface.network
        if verify and interface.ip != network.network_address:
            logger.warning(
                "IP address '%s' is not a correct subnet address ('%s').",
                interface.with_prefixlen,
                network.with_prefixlen,
            )
        result.append(network.with_prefixlen if reduce_to_network else interface.with_prefixlen)
    return result


class AddressResolver:
    """Resolves names found in address flags through DNS."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or Settings()
        self._cache: Dict[Tuple[str, Family], List[str]] = {}
        self._resolver: Optional[dns.resolver.Resolver] = None

    def resolve(self, name: str, family: Family) -> List[str]:
        """A or AAAA lookup; an empty list when the name has no such records."""
        key = (name, family)
        if self.settings.cache_dns and key in self._cache:
            return list(self._cache[key])
        record_type = "A" if family is Family.IPV4 else "AAAA"
        addresses = self._query(name, record_type)
        logger.debug("Resolved %s %s: %s", record_type, name, addresses)
        if len(addresses) > 1:
            logger.warning(
                "Name '%s' resolved to several addresses: %s. This might break the comparison "
                "if round robin is used. How about using a subnet instead?",
                name,
                ", ".join(addresses),
            )
        if self.settings.cache_dns:
            self._cache[key] = list(addresses)
        return addresses

    def families_of(self, token: str) -> Set[Family]:
        """Families a literal address or a name belongs to."""
        if not token:
            raise AddressError("Empty address entry")
        kind = classify(token)
        if kind is AddressKind.IPV4:
            return {Family.IPV4}
        if kind is AddressKind.IPV6:
            return {Family.IPV6}
        families = {family for family in Family if self.resolve(token, family)}
        if not families:
            raise AddressError(f"Could not resolve name: '{token}'")
        return families

    def addresses_for(self, address_list: str, family: Family) -> List[str]:
        """Expand a comma separated address flag argument into network CIDRs."""
        expected = AddressKind.for_family(family)
        addresses: List[str] = []
        for token in address_list.split(","):
            if not token:
                raise AddressError(f"Empty entry in address list '{address_list}'")
            kind = classify(token)
            if kind is expected:
                addresses.append(token)
                continue
            if kind is not AddressKind.NEITHER:
                raise AddressError(f"Found {kind.value} address while processing {family.value}: '{token}'")
            resolved = self.resolve(token, family)
            if not resolved:
                raise AddressError(f"Could not resolve name: '{token}'")
            addresses.extend(resolved)
        return to_cidr(addresses, verify=self.settings.verify_networks, reduce_to_network=True)

    def _query(self, name: str, record_type: str) -> List[str]:
        resolver = self._get_resolver()
        attempts = max(1, self.settings.dns_retries)
        for attempt in range(1, attempts + 1):
            try:
                answer = resolver.resolve(name, record_type, search=False)
            except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer):
                return []
            except (dns.exception.Timeout, dns.resolver.NoNameservers) as exc:
                if attempt == attempts:
                    raise ResolutionError(f"DNS query {record_type} for '{name}' failed: {exc}") from exc
                logger.debug("DNS query %s for %s failed (attempt %d/%d): %s", record_type, name, attempt, attempts, exc)
            except dns.exception.DNSException as exc:
                raise ResolutionError(f"DNS query {record_type} for '{name}' failed: {exc}") from exc
            else:
                return [rdata.to_text() for rdata in answer]
        return []

    def _get_resolver(self) -> dns.resolver.Resolver:
        if self._resolver is None:
            self._resolver = dns.resolver.Resolver()
            if self.settings.nameservers:
                self._resolver.nameservers = list(self.settings.nameservers)
        return self._resolver
