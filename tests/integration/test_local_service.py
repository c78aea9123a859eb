"""
Integration tests for the local reference data service.

WHAT: Test persistence, access checks, idempotent sends, product status
WHY: Local mode must enforce the same rules as the remote service
HOW: In-memory SQLite through the public DataService methods
"""

import pytest

from swapchat.core.identity import SessionContext
from swapchat.utils.exceptions import Conflict, Forbidden, NotFound, ValidationError

from tests.fixtures.factories import BUYER_ID, OUTSIDER_ID, SELLER_ID

BUYER = SessionContext(BUYER_ID, "buyer-token")
SELLER = SessionContext(SELLER_ID, "seller-token")
OUTSIDER = SessionContext(OUTSIDER_ID, "outsider-token")


@pytest.fixture
async def conversation_id(local_service):
    return await local_service.create_conversation(BUYER_ID, SELLER_ID, ["Bicicleta", "Casco"])


@pytest.mark.integration
class TestMessages:

    async def test_canonical_ids_increase(self, local_service, conversation_id):
        first = await local_service.send_message(BUYER, conversation_id, {"content": "hola"})
        second = await local_service.send_message(SELLER, conversation_id, {"content": "buenas"})

        assert second["id"] > first["id"]
        assert second["senderId"] == SELLER_ID

    async def test_send_is_idempotent_on_client_ref(self, local_service, conversation_id):
        payload = {"content": "hola", "clientRef": "ref-1"}

        first = await local_service.send_message(BUYER, conversation_id, payload)
        again = await local_service.send_message(BUYER, conversation_id, payload)

        assert again["id"] == first["id"]
        assert len(await local_service.list_messages(BUYER, conversation_id)) == 1

    async def test_list_since_cursor(self, local_service, conversation_id):
        ids = [
            (await local_service.send_message(BUYER, conversation_id, {"content": f"m{i}"}))["id"]
            for i in range(4)
        ]

        newer = await local_service.list_messages(BUYER, conversation_id, since_id=ids[1])
        latest = await local_service.list_messages(BUYER, conversation_id, limit=2)

        assert [m["id"] for m in newer] == ids[2:]
        assert [m["id"] for m in latest] == ids[2:]

    async def test_send_publishes_to_hub(self, local_service, conversation_id):
        received = []

        async def handler(payload):
            received.append(payload)

        subscription = await local_service.hub.subscribe(conversation_id, handler)
        await local_service.send_message(SELLER, conversation_id, {"content": "hola"})
        await subscription.close()
        await local_service.send_message(SELLER, conversation_id, {"content": "otra"})

        assert [p["content"] for p in received] == ["hola"]

    async def test_outsider_forbidden(self, local_service, conversation_id):
        with pytest.raises(Forbidden):
            await local_service.list_messages(OUTSIDER, conversation_id)

    async def test_unknown_conversation(self, local_service):
        with pytest.raises(NotFound):
            await local_service.get_conversation(BUYER, "999")
        with pytest.raises(NotFound):
            await local_service.get_conversation(BUYER, "abc")

    async def test_empty_message_rejected(self, local_service, conversation_id):
        with pytest.raises(ValidationError):
            await local_service.send_message(BUYER, conversation_id, {"content": "  "})

    async def test_mark_read_and_unread_count(self, local_service, conversation_id):
        await local_service.send_message(SELLER, conversation_id, {"content": "uno"})
        await local_service.send_message(SELLER, conversation_id, {"content": "dos"})

        assert (await local_service.get_conversation(BUYER, conversation_id))["unreadCount"] == 2
        assert await local_service.mark_read(BUYER, conversation_id) == 2
        assert (await local_service.get_conversation(BUYER, conversation_id))["unreadCount"] == 0

    async def test_attachment_round_trip(self, local_service):
        url = await local_service.upload_attachment(BUYER, "foto.png", b"png-bytes", "image/png")

        assert url.startswith("local://attachments/")
        assert local_service.attachment(url) == b"png-bytes"


@pytest.mark.integration
class TestProposalsAndExchanges:

    async def _accepted(self, local_service, conversation_id):
        proposal = await local_service.create_proposal(
            BUYER, conversation_id, {"type": "price", "description": "150000", "proposedPrice": 150000}
        )
        result = await local_service.respond_proposal(
            SELLER, conversation_id, str(proposal["id"]),
            {"action": "accept", "meeting": {"date": "2024-02-01", "time": "15:00", "place": "Mall X"}},
        )
        return result

    async def test_accept_reserves_products(self, local_service, conversation_id):
        result = await self._accepted(local_service, conversation_id)

        assert result["proposal"]["status"] == "accepted"
        assert result["proposal"]["meetingDate"] == "2024-02-01T15:00"
        assert result["exchange"]["status"] == "pending_validation"
        assert set(local_service.product_statuses(conversation_id).values()) == {"reserved"}

    async def test_only_buyer_creates(self, local_service, conversation_id):
        with pytest.raises(Forbidden):
            await local_service.create_proposal(
                SELLER, conversation_id, {"type": "price", "description": "x", "proposedPrice": 1}
            )

    async def test_second_accept_conflicts(self, local_service, conversation_id):
        await self._accepted(local_service, conversation_id)
        other = await local_service.create_proposal(
            BUYER, conversation_id, {"type": "terms", "description": "Entrega a domicilio"}
        )

        with pytest.raises(Conflict):
            await local_service.respond_proposal(
                SELLER, conversation_id, str(other["id"]),
                {"action": "accept", "meeting": {"date": "2024-02-02", "time": "10:00", "place": "Parque"}},
            )

    async def test_accept_without_meeting_rolls_back(self, local_service, conversation_id):
        proposal = await local_service.create_proposal(
            BUYER, conversation_id, {"type": "price", "description": "150000", "proposedPrice": 150000}
        )

        with pytest.raises(ValidationError):
            await local_service.respond_proposal(SELLER, conversation_id, str(proposal["id"]), {"action": "accept"})

        [stored] = await local_service.list_proposals(BUYER, conversation_id)
        assert stored["status"] == "pending"

    async def test_both_success_marks_products_exchanged(self, local_service, conversation_id):
        exchange_id = str((await self._accepted(local_service, conversation_id))["exchange"]["id"])

        await local_service.submit_validation(BUYER, exchange_id, {"isSuccessful": True, "rating": 5})
        again = await local_service.submit_validation(BUYER, exchange_id, {"isSuccessful": False})
        final = await local_service.submit_validation(SELLER, exchange_id, {"isSuccessful": True, "rating": 4})

        assert len(again["validations"]) == 1
        assert final["status"] == "completed"
        assert set(local_service.product_statuses(conversation_id).values()) == {"exchanged"}

    async def test_failure_and_release(self, local_service, conversation_id):
        exchange_id = str((await self._accepted(local_service, conversation_id))["exchange"]["id"])

        await local_service.submit_validation(BUYER, exchange_id, {"isSuccessful": True, "rating": 5})
        final = await local_service.submit_validation(
            SELLER, exchange_id, {"isSuccessful": False, "comment": "No se presentó"}
        )
        await local_service.release_products(SELLER, exchange_id)

        assert final["status"] == "failed"
        assert final["needsReview"] is True
        assert set(local_service.product_statuses(conversation_id).values()) == {"available"}
        assert (await local_service.get_exchange(BUYER, exchange_id))["productsReleased"] is True
