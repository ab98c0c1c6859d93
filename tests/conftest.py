from typing import Callable, Dict, List, Tuple

import pytest

from firewall_normalizer.addresses import AddressResolver
from firewall_normalizer.config import Settings

RECORDS: Dict[Tuple[str, str], List[str]] = {
    ("www.example.test", "A"): ["192.0.2.10"],
    ("www.example.test", "AAAA"): ["2001:db8::10"],
    ("v4only.example.test", "A"): ["192.0.2.20"],
    ("v6only.example.test", "AAAA"): ["2001:db8::20"],
    ("rr.example.test", "A"): ["192.0.2.30", "192.0.2.31"],
}


class FakeResolver(AddressResolver):
    """Answers from a fixed record table instead of querying DNS."""

    def __init__(self, records=None, settings=None):
        super().__init__(settings or Settings())
        self.records = RECORDS if records is None else records
        self.queries: List[Tuple[str, str]] = []

    def _query(self, name, record_type):
        self.queries.append((name, record_type))
        return list(self.records.get((name, record_type), []))


@pytest.fixture(scope="session")
def make_resolver() -> Callable[..., FakeResolver]:
    """Factory for resolvers with custom records or settings.

    Session scoped so hypothesis tests can take it.
    """
    return FakeResolver


@pytest.fixture
def resolver(make_resolver) -> FakeResolver:
    return make_resolver()
