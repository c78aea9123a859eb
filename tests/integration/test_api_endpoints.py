"""
Integration tests for the HTTP API.

WHAT: Drive buyer and seller through the REST endpoints
WHY: Verify routing, auth headers, schemas and error mapping together
HOW: TestClient over the real app with a local in-memory data service;
     the client is used as a context manager so lifespan runs and the
     sessions' background tasks survive between requests
"""

import base64
import pytest
from fastapi.testclient import TestClient

from swapchat.main import app
from swapchat.transport.factory import set_data_service
from swapchat.transport.local_service import LocalDataService

from tests.fixtures.factories import BUYER_ID, OUTSIDER_ID, SELLER_ID

API = "/api/v1"


def headers(user_id):
    return {"Authorization": f"Bearer {user_id}-token", "X-User-Id": user_id}


BUYER = headers(BUYER_ID)
SELLER = headers(SELLER_ID)


@pytest.fixture
def service():
    return LocalDataService("sqlite://")


@pytest.fixture
def client(service):
    set_data_service(service)
    with TestClient(app) as client:
        yield client


@pytest.fixture
def conversation_id(client):
    response = client.post(
        f"{API}/conversations",
        json={"proposer_id": BUYER_ID, "receiver_id": SELLER_ID, "product_titles": ["Bicicleta"]},
    )
    assert response.status_code == 201
    return response.json()["conversation_id"]


@pytest.fixture
def opened(client, conversation_id):
    for who in (BUYER, SELLER):
        assert client.post(f"{API}/conversations/{conversation_id}/open", headers=who).status_code == 200
    return conversation_id


@pytest.mark.integration
class TestStatus:

    def test_root(self, client):
        assert client.get("/").json()["status"] == "running"

    def test_health(self, client):
        body = client.get(f"{API}/health").json()

        assert body["status"] == "healthy"
        assert body["components"]["data_service"]["mode"] == "local"

    def test_status_reports_database(self, client):
        body = client.get(f"{API}/status").json()

        assert body["data_service"]["available"] is True
        assert body["database"]["available"] is True
        assert body["active_sessions"] == 0


@pytest.mark.integration
class TestAuth:

    def test_missing_headers(self, client, conversation_id):
        response = client.post(f"{API}/conversations/{conversation_id}/open")

        assert response.status_code == 401
        assert response.json()["details"] == {"action": "REAUTHENTICATE"}

    def test_non_bearer_token(self, client, conversation_id):
        response = client.post(
            f"{API}/conversations/{conversation_id}/open",
            headers={"Authorization": "Basic abc", "X-User-Id": BUYER_ID},
        )

        assert response.status_code == 401

    def test_outsider_forbidden(self, client, conversation_id):
        response = client.post(f"{API}/conversations/{conversation_id}/open", headers=headers(OUTSIDER_ID))

        assert response.status_code == 403


@pytest.mark.integration
class TestConversations:

    def test_open_returns_role_and_permissions(self, client, conversation_id):
        response = client.post(f"{API}/conversations/{conversation_id}/open", headers=BUYER)

        assert response.status_code == 200
        body = response.json()
        assert body["role"] == "buyer"
        assert body["permissions"]["create"] is True
        assert body["permissions"]["respond"] is False
        assert body["conversation"]["messages"] == []

    def test_unknown_conversation(self, client):
        response = client.post(f"{API}/conversations/999/open", headers=BUYER)

        assert response.status_code == 404

    def test_send_reaches_other_party(self, client, opened):
        response = client.post(f"{API}/conversations/{opened}/messages", headers=BUYER, json={"content": "hola"})

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "sent"
        assert body["temp_id"].startswith("tmp-")
        state = client.get(f"{API}/conversations/{opened}", headers=SELLER).json()
        assert [m["id"] for m in state["conversation"]["messages"]] == [body["message"]["id"]]

    def test_send_location(self, client, opened):
        response = client.post(
            f"{API}/conversations/{opened}/messages",
            headers=BUYER,
            json={"kind": "location", "lat": 4.65, "lng": -74.05},
        )

        assert response.json()["message"]["kind"] == "location"

    def test_send_to_closed_conversation_conflicts(self, client, conversation_id):
        response = client.post(
            f"{API}/conversations/{conversation_id}/messages", headers=BUYER, json={"content": "hola"}
        )

        assert response.status_code == 409

    def test_empty_text_rejected(self, client, opened):
        response = client.post(f"{API}/conversations/{opened}/messages", headers=BUYER, json={"content": "  "})

        assert response.status_code == 400

    def test_attachment(self, client, opened):
        response = client.post(
            f"{API}/conversations/{opened}/attachments",
            headers=BUYER,
            json={
                "filename": "foto.png",
                "content_type": "image/png",
                "data_base64": base64.b64encode(b"png-bytes").decode(),
            },
        )

        body = response.json()
        assert body["status"] == "sent"
        assert body["message"]["kind"] == "image"

    def test_attachment_bad_base64(self, client, opened):
        response = client.post(
            f"{API}/conversations/{opened}/attachments",
            headers=BUYER,
            json={"filename": "foto.png", "content_type": "image/png", "data_base64": "###"},
        )

        assert response.status_code == 400

    def test_mark_read_and_refresh(self, client, opened):
        client.post(f"{API}/conversations/{opened}/messages", headers=SELLER, json={"content": "uno"})

        assert client.post(f"{API}/conversations/{opened}/refresh", headers=BUYER).json() == {"accepted": 0}
        assert client.post(f"{API}/conversations/{opened}/read", headers=BUYER).json() == {"updated": 1}


@pytest.mark.integration
class TestNegotiation:

    def _propose(self, client, conversation_id):
        response = client.post(
            f"{API}/conversations/{conversation_id}/proposals",
            headers=BUYER,
            json={"type": "price", "description": "Te ofrezco 150000", "proposed_price": 150000},
        )
        assert response.status_code == 201
        return response.json()["id"]

    def _accept(self, client, conversation_id, proposal_id):
        return client.patch(
            f"{API}/conversations/{conversation_id}/proposals/{proposal_id}/respond",
            headers=SELLER,
            json={"action": "accept", "meeting": {"date": "2024-02-01", "time": "15:00", "place": "Mall X"}},
        )

    def test_full_exchange(self, client, service, opened):
        proposal_id = self._propose(client, opened)

        accepted = self._accept(client, opened, proposal_id)
        assert accepted.status_code == 200
        exchange_id = accepted.json()["exchange"]["id"]
        assert accepted.json()["proposal"]["status"] == "accepted"

        first = client.post(
            f"{API}/exchanges/{exchange_id}/validate", headers=BUYER, json={"is_successful": True, "rating": 5}
        )
        final = client.post(
            f"{API}/exchanges/{exchange_id}/validate", headers=SELLER, json={"is_successful": True, "rating": 4}
        )

        assert first.json()["resolved"] is False
        assert final.json()["exchange"]["status"] == "completed"
        assert client.get(f"{API}/exchanges/{exchange_id}", headers=BUYER).json()["status"] == "completed"
        assert set(service.product_statuses(opened).values()) == {"exchanged"}

    def test_seller_cannot_propose(self, client, opened):
        response = client.post(
            f"{API}/conversations/{opened}/proposals",
            headers=SELLER,
            json={"type": "terms", "description": "Sólo efectivo"},
        )

        assert response.status_code == 403

    def test_price_proposal_needs_price(self, client, opened):
        response = client.post(
            f"{API}/conversations/{opened}/proposals",
            headers=BUYER,
            json={"type": "price", "description": "barato"},
        )

        assert response.status_code == 400

    def test_buyer_cannot_respond(self, client, opened):
        proposal_id = self._propose(client, opened)

        response = client.patch(
            f"{API}/conversations/{opened}/proposals/{proposal_id}/respond",
            headers=BUYER,
            json={"action": "reject"},
        )

        assert response.status_code == 403

    def test_accept_twice_conflicts(self, client, opened):
        proposal_id = self._propose(client, opened)
        self._accept(client, opened, proposal_id)

        assert self._accept(client, opened, proposal_id).status_code == 409

    def test_cancel(self, client, opened):
        proposal_id = self._propose(client, opened)

        response = client.post(f"{API}/conversations/{opened}/proposals/{proposal_id}/cancel", headers=BUYER)

        assert response.json()["status"] == "cancelled"
        proposals = client.get(f"{API}/conversations/{opened}/proposals", headers=SELLER).json()
        assert [p["status"] for p in proposals] == ["cancelled"]

    def test_rating_out_of_range_rejected(self, client, opened):
        proposal_id = self._propose(client, opened)
        exchange_id = self._accept(client, opened, proposal_id).json()["exchange"]["id"]

        response = client.post(
            f"{API}/exchanges/{exchange_id}/validate", headers=SELLER, json={"is_successful": True, "rating": 6}
        )

        assert response.status_code == 400

    def test_bare_validations_resolve(self, client, opened):
        proposal_id = self._propose(client, opened)
        exchange_id = self._accept(client, opened, proposal_id).json()["exchange"]["id"]

        client.post(f"{API}/exchanges/{exchange_id}/validate", headers=BUYER, json={"is_successful": False})
        final = client.post(
            f"{API}/exchanges/{exchange_id}/validate", headers=SELLER, json={"is_successful": False, "comment": "no"}
        )

        assert final.status_code == 200
        assert final.json()["exchange"]["status"] == "failed"
        assert final.json()["exchange"]["needs_review"] is False

    def test_proposal_from_other_conversation_not_found(self, client, opened):
        proposal_id = self._propose(client, opened)

        response = client.post(f"{API}/conversations/999/proposals/{proposal_id}/cancel", headers=BUYER)

        assert response.status_code == 404
