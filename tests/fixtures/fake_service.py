"""
Scripted data service for deterministic testing.

WHAT: In-memory DataService whose latency and failures are configurable
WHY: Test adapters and the engine without SQLite or HTTP
HOW: Implement the DataService protocol over plain dicts; record calls
"""

import asyncio
from typing import Any, Dict, List

from swapchat.transport.data_service import ServiceStatus

from tests.fixtures.factories import CONVERSATION_ID, wire_conversation


class FakeDataService:
    """
    Fake data service with scripted behavior.

    Set send_delay / send_error / list_error / list_delay to simulate
    slow or failing remote calls.
    """

    def __init__(self, conversation: Dict[str, Any] | None = None, messages: List[Dict] | None = None):
        self.conversation = conversation or wire_conversation()
        self.messages: List[Dict[str, Any]] = list(messages or [])
        self.proposals: Dict[str, Dict[str, Any]] = {}
        self.exchanges: Dict[str, Dict[str, Any]] = {}
        self.next_id = 100
        self.calls: List[tuple] = []

        self.send_delay = 0.0
        self.send_error: Exception | None = None
        self.list_delay = 0.0
        self.list_error: Exception | None = None
        self.respond_result: Dict[str, Any] | None = None
        self.validation_result: Dict[str, Any] | None = None
        self.released: List[str] = []

    async def ping(self) -> ServiceStatus:
        return ServiceStatus(available=True, mode="fake")

    async def get_conversation(self, session, conversation_id: str) -> Dict[str, Any]:
        self.calls.append(("get_conversation", session.user_id, conversation_id))
        return dict(self.conversation, id=conversation_id)

    async def list_messages(self, session, conversation_id: str, *, since_id=None, limit=50) -> List[Dict]:
        self.calls.append(("list_messages", session.user_id, conversation_id, since_id))
        if self.list_delay:
            await asyncio.sleep(self.list_delay)
        if self.list_error is not None:
            raise self.list_error
        items = [m for m in self.messages if since_id is None or int(m["id"]) > since_id]
        return items[:limit]

    async def send_message(self, session, conversation_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        self.calls.append(("send_message", session.user_id, conversation_id, payload))
        if self.send_delay:
            await asyncio.sleep(self.send_delay)
        if self.send_error is not None:
            raise self.send_error
        self.next_id += 1
        stored = dict(payload, id=self.next_id, conversationId=conversation_id, senderId=session.user_id)
        self.messages.append(stored)
        return stored

    async def mark_read(self, session, conversation_id: str) -> int:
        self.calls.append(("mark_read", session.user_id, conversation_id))
        return 0

    async def list_proposals(self, session, conversation_id: str) -> List[Dict]:
        self.calls.append(("list_proposals", session.user_id, conversation_id))
        return [p for p in self.proposals.values() if str(p.get("conversationId", CONVERSATION_ID)) == conversation_id]

    async def create_proposal(self, session, conversation_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        self.calls.append(("create_proposal", session.user_id, conversation_id, payload))
        self.next_id += 1
        proposal = dict(
            payload,
            id=self.next_id,
            conversationId=conversation_id,
            status="pending",
            proposerId=self.conversation["proposerId"],
            receiverId=self.conversation["receiverId"],
        )
        self.proposals[str(self.next_id)] = proposal
        return proposal

    async def respond_proposal(self, session, conversation_id: str, proposal_id: str, payload: Dict[str, Any]):
        self.calls.append(("respond_proposal", session.user_id, conversation_id, proposal_id, payload))
        if self.respond_result is not None:
            return self.respond_result
        status = {"accept": "accepted", "reject": "rejected", "counter": "counter"}[payload["action"]]
        proposal = dict(self.proposals[proposal_id], status=status, response=payload.get("reason"))
        self.proposals[proposal_id] = proposal
        return {"proposal": proposal, "exchange": None}

    async def cancel_proposal(self, session, conversation_id: str, proposal_id: str) -> Dict[str, Any]:
        self.calls.append(("cancel_proposal", session.user_id, conversation_id, proposal_id))
        proposal = dict(self.proposals[proposal_id], status="cancelled")
        self.proposals[proposal_id] = proposal
        return proposal

    async def get_exchange(self, session, exchange_id: str) -> Dict[str, Any]:
        self.calls.append(("get_exchange", session.user_id, exchange_id))
        return self.exchanges[exchange_id]

    async def submit_validation(self, session, exchange_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        self.calls.append(("submit_validation", session.user_id, exchange_id, payload))
        if self.validation_result is not None:
            return self.validation_result
        exchange = dict(self.exchanges[exchange_id])
        exchange["validations"] = [
            *exchange.get("validations", []),
            {"userId": session.user_id, "isSuccessful": payload["isSuccessful"], "rating": payload.get("rating")},
        ]
        self.exchanges[exchange_id] = exchange
        return exchange

    async def release_products(self, session, exchange_id: str) -> None:
        self.calls.append(("release_products", session.user_id, exchange_id))
        self.released.append(exchange_id)

    async def upload_attachment(self, session, filename: str, data: bytes, content_type: str) -> str:
        self.calls.append(("upload_attachment", session.user_id, filename, content_type))
        return f"https://cdn.example.test/{filename}"

    def call_names(self) -> List[str]:
        return [call[0] for call in self.calls]
