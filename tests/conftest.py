"""
Pytest configuration and shared fixtures for swapchat tests.

WHAT: Centralized test configuration with markers and shared fixtures
WHY: Enable test organization, filtering, and shared test utilities
HOW: Define pytest markers, fixtures, and test helpers
"""

import pytest

from swapchat.core.identity import StaticIdentityProvider
from swapchat.models.message import Conversation, ExchangeParticipants
from swapchat.services.conversation_actor import ConversationActor
from swapchat.services.message_store import MessageStore
from swapchat.transport.factory import reset_data_service
from swapchat.transport.local_service import LocalDataService

from tests.fixtures.factories import BUYER_ID, CONVERSATION_ID, SELLER_ID
from tests.fixtures.fake_service import FakeDataService


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests (isolated component tests)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests (multiple components)"
    )
    config.addinivalue_line(
        "markers", "slow: Tests that take significant time to run"
    )


@pytest.fixture(autouse=True)
def reset_data_service_singleton():
    """
    Reset data service singleton before each test.

    WHAT: Clear service cache between tests
    WHY: Prevent test pollution and ensure clean state
    HOW: Call reset_data_service() before and after each test
    """
    reset_data_service()
    yield
    reset_data_service()


@pytest.fixture
def buyer_identity():
    return StaticIdentityProvider(BUYER_ID, "buyer-token")


@pytest.fixture
def seller_identity():
    return StaticIdentityProvider(SELLER_ID, "seller-token")


@pytest.fixture
def participants():
    return ExchangeParticipants(proposer_id=BUYER_ID, receiver_id=SELLER_ID)


@pytest.fixture
def conversation(participants):
    """Empty conversation between the buyer and the seller."""
    return Conversation(
        id=CONVERSATION_ID,
        participants=(BUYER_ID, SELLER_ID),
        exchange_participants=participants,
    )


@pytest.fixture
def fake_service():
    return FakeDataService()


@pytest.fixture
async def buyer_actor(conversation):
    """
    Running actor over an empty store owned by the buyer.

    WHAT: Single-writer actor ready to accept commands
    WHY: Adapters are tested against the real store and reconciler
    HOW: Start before the test, stop after
    """
    actor = ConversationActor(MessageStore(conversation, BUYER_ID))
    actor.start()
    yield actor
    await actor.stop()


@pytest.fixture
async def local_service():
    """
    In-memory local data service.

    WHAT: SQLite-backed DataService with a fresh schema per test
    WHY: Exercise real canonical ids and access checks without files
    HOW: sqlite:// with a shared StaticPool connection
    """
    service = LocalDataService("sqlite://")
    yield service
    service.engine.dispose()
