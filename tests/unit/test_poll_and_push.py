"""
Unit tests for the poll fetcher and push listener.

WHAT: Test cursor handling, error tolerance, subscription lifecycle
WHY: Both sources must feed the same reconciler without duplicates and
     must stop cleanly when the conversation changes
HOW: Scripted data service and the in-process push hub
"""

import asyncio
import pytest

from swapchat.adapters.poll_fetcher import PollFetcher
from swapchat.adapters.push_listener import PushListener
from swapchat.models.message import Conversation, DeliverySource
from swapchat.services.conversation_actor import ConversationActor
from swapchat.services.message_store import MessageStore
from swapchat.transport.push import InMemoryPushHub
from swapchat.utils.exceptions import NetworkFailure, NetworkTimeout

from tests.fixtures.factories import BUYER_ID, CONVERSATION_ID, SELLER_ID, make_message, wire_message


@pytest.mark.unit
class TestPollFetcher:

    async def test_poll_once_uses_highest_canonical_id(self, buyer_actor, fake_service, buyer_identity):
        await buyer_actor.apply(make_message("5"), DeliverySource.INITIAL_LOAD)
        fake_service.messages = [wire_message(5), wire_message(6, content="nuevo")]
        fetcher = PollFetcher(fake_service, buyer_identity, interval=10)

        accepted = await fetcher.poll_once(buyer_actor)

        assert accepted == 1
        assert fake_service.calls[-1][3] == 5
        snapshot = await buyer_actor.snapshot()
        assert [m.id for m in snapshot.messages] == ["5", "6"]

    async def test_poll_ignores_self_echo(self, buyer_actor, fake_service, buyer_identity):
        fake_service.messages = [wire_message(42, sender_id=BUYER_ID, content="hello")]
        fetcher = PollFetcher(fake_service, buyer_identity)

        assert await fetcher.poll_once(buyer_actor) == 0
        assert (await buyer_actor.snapshot()).messages == []

    async def test_malformed_items_dropped(self, buyer_actor, fake_service, buyer_identity):
        fake_service.messages = [{"id": 1, "conversationId": CONVERSATION_ID}, wire_message(2)]
        fetcher = PollFetcher(fake_service, buyer_identity)

        assert await fetcher.poll_once(buyer_actor) == 1

    async def test_poll_timeout(self, buyer_actor, fake_service, buyer_identity):
        fake_service.list_delay = 1.0
        fetcher = PollFetcher(fake_service, buyer_identity, timeout=0.05)

        with pytest.raises(NetworkTimeout):
            await fetcher.poll_once(buyer_actor)

    async def test_loop_survives_failures(self, buyer_actor, fake_service, buyer_identity):
        fake_service.list_error = NetworkFailure("down")
        fetcher = PollFetcher(fake_service, buyer_identity, interval=0.01)

        fetcher.start(buyer_actor)
        await asyncio.sleep(0.1)
        fake_service.list_error = None
        fake_service.messages = [wire_message(3)]
        await asyncio.sleep(0.1)
        await fetcher.stop()

        assert fetcher.failures >= 1
        assert fetcher.running is False
        assert [m.id for m in (await buyer_actor.snapshot()).messages] == ["3"]

    async def test_start_twice_raises(self, buyer_actor, fake_service, buyer_identity):
        fetcher = PollFetcher(fake_service, buyer_identity, interval=10)
        fetcher.start(buyer_actor)
        try:
            with pytest.raises(RuntimeError):
                fetcher.start(buyer_actor)
        finally:
            await fetcher.stop()


@pytest.mark.unit
class TestPushListener:

    async def test_events_reach_actor(self, buyer_actor):
        hub = InMemoryPushHub()
        listener = PushListener(hub)
        await listener.subscribe(buyer_actor)

        await hub.publish(CONVERSATION_ID, wire_message(7, sender_id=SELLER_ID))

        assert [m.id for m in (await buyer_actor.snapshot()).messages] == ["7"]
        assert listener.received == 1

    async def test_malformed_event_dropped(self, buyer_actor):
        hub = InMemoryPushHub()
        listener = PushListener(hub)
        await listener.subscribe(buyer_actor)

        await hub.publish(CONVERSATION_ID, {"unexpected": True})
        await hub.publish(CONVERSATION_ID, wire_message(8, conversation_id="99"))

        assert listener.dropped == 2
        assert (await buyer_actor.snapshot()).messages == []

    async def test_resubscribe_closes_previous(self, buyer_actor, participants):
        hub = InMemoryPushHub()
        listener = PushListener(hub)
        await listener.subscribe(buyer_actor)

        other = ConversationActor(MessageStore(
            Conversation(id="2", participants=(BUYER_ID, SELLER_ID), exchange_participants=participants),
            BUYER_ID,
        ))
        other.start()
        try:
            await listener.subscribe(other)

            assert hub.subscriber_count(CONVERSATION_ID) == 0
            assert hub.subscriber_count("2") == 1
            await hub.publish(CONVERSATION_ID, wire_message(9))
            assert (await buyer_actor.snapshot()).messages == []
        finally:
            await listener.unsubscribe()
            await other.stop()

    async def test_unsubscribe_stops_delivery(self, buyer_actor):
        hub = InMemoryPushHub()
        listener = PushListener(hub)
        await listener.subscribe(buyer_actor)
        await listener.unsubscribe()

        await hub.publish(CONVERSATION_ID, wire_message(10))

        assert listener.conversation_id is None
        assert (await buyer_actor.snapshot()).messages == []
