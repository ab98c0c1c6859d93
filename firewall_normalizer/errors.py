"""Exceptions raised across the normalization pipeline."""
from __future__ import annotations


class NormalizerError(RuntimeError):
    pass


class ExpansionError(NormalizerError):
    pass


class AddressError(NormalizerError):
    pass


class ResolutionError(AddressError):
    pass


class ParserError(NormalizerError):
    pass


class UnknownCommand(ParserError):
    pass


class UnknownParameter(ParserError):
    pass


class UnknownExtension(ParserError):
    pass


class MissingExtension(ParserError):
    """A flag follows a protocol or jump target but no extension handles it."""


class ExtensionError(ParserError):
    pass


class RuleSetError(NormalizerError):
    pass


class UnimplementedFeature(NormalizerError):
    """Raised for commands and options that are recognized but never modeled."""
