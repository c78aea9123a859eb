"""
Unit tests for OptimisticSender.

WHAT: Test confirm, rollback, timeout, cancellation, and draft restore
WHY: A failed send must leave no ghost message and keep the user's text
HOW: Real actor + store, scripted data service with latency and errors
"""

import asyncio
import pytest

from swapchat.adapters.optimistic_sender import OptimisticSender, SendStatus
from swapchat.core.identity import StaticIdentityProvider
from swapchat.models.message import DeliveryState, LocationMetadata, MessageKind
from swapchat.utils.exceptions import NetworkFailure, NetworkTimeout, Unauthorized, ValidationError


@pytest.fixture
def failures():
    return []


@pytest.fixture
def sender(buyer_actor, fake_service, buyer_identity, failures):
    return OptimisticSender(
        buyer_actor,
        fake_service,
        buyer_identity,
        timeout=0.5,
        on_failure=lambda conversation_id, error: failures.append((conversation_id, error)),
    )


@pytest.mark.unit
class TestSend:

    async def test_confirmation_replaces_temporary(self, sender, buyer_actor, fake_service):
        outcome = await sender.send("  hello  ")

        assert outcome.status == SendStatus.SENT
        assert outcome.temp_id.startswith("tmp-")
        assert outcome.message.id == "101"
        snapshot = await buyer_actor.snapshot()
        assert [m.id for m in snapshot.messages] == ["101"]
        assert snapshot.messages[0].content == "hello"
        assert snapshot.messages[0].delivery == DeliveryState.CONFIRMED

        payload = fake_service.calls[-1][3]
        assert payload["content"] == "hello"
        assert payload["clientRef"]

    async def test_temporary_visible_while_in_flight(self, sender, buyer_actor, fake_service):
        fake_service.send_delay = 0.2

        task = asyncio.create_task(sender.send("hello"))
        await asyncio.sleep(0.05)
        snapshot = await buyer_actor.snapshot()

        assert len(snapshot.messages) == 1
        assert snapshot.messages[0].is_pending
        assert sender.inflight_count == 1
        await task

    async def test_failure_rolls_back_and_restores_draft(self, sender, buyer_actor, fake_service, failures):
        fake_service.send_error = NetworkFailure("boom", status_code=503)

        outcome = await sender.send("hello")

        assert outcome.status == SendStatus.FAILED
        assert isinstance(outcome.error, NetworkFailure)
        assert (await buyer_actor.snapshot()).messages == []
        assert sender.take_draft() == "hello"
        assert sender.draft is None
        assert len(failures) == 1

    async def test_timeout_reported_as_network_timeout(self, sender, buyer_actor, fake_service, failures):
        fake_service.send_delay = 2.0

        outcome = await sender.send("hello")

        assert outcome.status == SendStatus.FAILED
        assert isinstance(outcome.error, NetworkTimeout)
        assert (await buyer_actor.snapshot()).messages == []
        assert [type(e) for _, e in failures] == [NetworkTimeout]

    async def test_unauthorized_rolls_back_and_raises(self, sender, buyer_actor, fake_service, failures):
        fake_service.send_error = Unauthorized()

        with pytest.raises(Unauthorized):
            await sender.send("hello")

        assert (await buyer_actor.snapshot()).messages == []
        assert sender.draft == "hello"
        assert failures == []

    async def test_missing_session_raises_before_insert(self, buyer_actor, fake_service):
        sender = OptimisticSender(buyer_actor, fake_service, StaticIdentityProvider(None, None))

        with pytest.raises(Unauthorized):
            await sender.send("hello")

        assert (await buyer_actor.snapshot()).messages == []
        assert fake_service.calls == []

    @pytest.mark.parametrize("content", ["", "   ", None])
    async def test_empty_text_rejected(self, sender, fake_service, content):
        with pytest.raises(ValidationError):
            await sender.send(content)
        assert fake_service.calls == []

    async def test_location_message(self, sender, fake_service):
        outcome = await sender.send(None, MessageKind.LOCATION, LocationMetadata(lat=4.6, lng=-74.1))

        assert outcome.status == SendStatus.SENT
        assert fake_service.calls[-1][3]["metadata"] == {"coordinates": {"lat": 4.6, "lng": -74.1}}

    async def test_mismatched_metadata_rejected(self, sender, buyer_actor):
        with pytest.raises(ValidationError):
            await sender.send("x", MessageKind.IMAGE, LocationMetadata(lat=0, lng=0))
        assert (await buyer_actor.snapshot()).messages == []


@pytest.mark.unit
class TestCancelAndAttachments:

    async def test_cancel_all_is_silent(self, sender, buyer_actor, fake_service, failures):
        fake_service.send_delay = 1.0
        task = asyncio.create_task(sender.send("hello"))
        await asyncio.sleep(0.05)

        cancelled = await sender.cancel_all()
        outcome = await task

        assert cancelled == 1
        assert outcome.status == SendStatus.CANCELLED
        assert (await buyer_actor.snapshot()).messages == []
        assert failures == []
        assert sender.draft is None

    async def test_image_attachment(self, sender, fake_service):
        outcome = await sender.send_attachment("foto.png", b"\x89PNG", "image/png", caption="mira")

        assert outcome.status == SendStatus.SENT
        assert outcome.message.kind == MessageKind.IMAGE
        assert outcome.message.metadata.image_url == "https://cdn.example.test/foto.png"
        assert fake_service.call_names()[:2] == ["upload_attachment", "send_message"]

    async def test_file_attachment(self, sender):
        outcome = await sender.send_attachment("doc.pdf", b"12345", "application/pdf")

        assert outcome.message.kind == MessageKind.FILE
        assert outcome.message.metadata.file_name == "doc.pdf"
        assert outcome.message.metadata.file_size == 5
