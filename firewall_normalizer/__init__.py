"""Firewall normalizer public API surface."""

from .addresses import AddressResolver, classify, to_cidr
from .config import Settings
from .errors import NormalizerError
from .model import Family, Rule, RuleSet
from .parser import parse_command, read_save_lines
from .pipeline import Normalizer, expand_lines, generate_output

__all__ = [
    "AddressResolver",
    "Family",
    "Normalizer",
    "NormalizerError",
    "Rule",
    "RuleSet",
    "Settings",
    "classify",
    "expand_lines",
    "generate_output",
    "parse_command",
    "read_save_lines",
    "to_cidr",
]
