import pytest

from client_dedup.config import Settings
from client_dedup.models import ClientRecord
from client_dedup.store import InMemoryClientStore


@pytest.fixture
def settings() -> Settings:
    return Settings(
        high_floor=60,
        medium_floor=40,
        low_floor=30,
        phone_country_codes=("55",),
        phone_national_length=11,
        relationship_timeout=5,
        notes_separator="\n\n=== MERGED ===\n\n",
    )


@pytest.fixture
def maria_pair() -> tuple[ClientRecord, ClientRecord]:
    first = ClientRecord(
        client_id="c1",
        name="Maria Da Silva",
        tax_id="123.456.789-00",
        phone="+55 11 98888-7777",
        notes="Prefers WhatsApp",
        account_id="acc-1",
    )
    second = ClientRecord(
        client_id="c2",
        name="MARIA DASILVA",
        tax_id="12345678900",
        phone="11988887777",
        email="maria@example.com",
        notes="Old intake form",
        account_id="acc-1",
    )
    return first, second


@pytest.fixture
def populated_store(maria_pair) -> InMemoryClientStore:
    """c1: 2 policies, 1 appointment, 0 claims; c2: 1 policy, 0 appointments, 3 claims."""
    store = InMemoryClientStore(maria_pair)
    store.add_relationship("policies", "p1", "c1")
    store.add_relationship("policies", "p2", "c1")
    store.add_relationship("appointments", "a1", "c1")
    store.add_relationship("policies", "p3", "c2")
    store.add_relationship("claims", "s1", "c2")
    store.add_relationship("claims", "s2", "c2")
    store.add_relationship("claims", "s3", "c2")
    return store
