"""
Remote data service protocol.

WHAT: Abstract interface to the service that persists chat state
WHY: Engine code never depends on a concrete transport
HOW: Protocol of async methods returning raw dicts; the engine coerces
     them through models.wire at the boundary
"""

from dataclasses import dataclass
from typing import Any, Protocol

from ..core.identity import SessionContext

RawPayload = dict[str, Any]


@dataclass
class ServiceStatus:
    """Health status of a data service."""
    available: bool
    mode: str
    base_url: str | None = None
    error: str | None = None


class DataService(Protocol):
    """Protocol every data service implementation follows."""

    async def ping(self) -> ServiceStatus:
        """Check service health."""
        ...

    async def get_conversation(self, session: SessionContext, conversation_id: str) -> RawPayload:
        """Conversation descriptor: id, proposer/receiver ids, product ids, unread count."""
        ...

    async def list_messages(
        self,
        session: SessionContext,
        conversation_id: str,
        *,
        since_id: int | None = None,
        limit: int = 50,
    ) -> list[RawPayload]:
        """Messages with id greater than since_id, ascending, at most limit."""
        ...

    async def send_message(self, session: SessionContext, conversation_id: str, payload: RawPayload) -> RawPayload:
        """Persist a message; returns it with its canonical id."""
        ...

    async def mark_read(self, session: SessionContext, conversation_id: str) -> int:
        """Mark the other participant's messages read; returns how many changed."""
        ...

    async def list_proposals(self, session: SessionContext, conversation_id: str) -> list[RawPayload]:
        ...

    async def create_proposal(self, session: SessionContext, conversation_id: str, payload: RawPayload) -> RawPayload:
        ...

    async def respond_proposal(
        self, session: SessionContext, conversation_id: str, proposal_id: str, payload: RawPayload
    ) -> RawPayload:
        """Apply accept/reject/counter; returns {"proposal": ..., "exchange": ... | None}."""
        ...

    async def cancel_proposal(self, session: SessionContext, conversation_id: str, proposal_id: str) -> RawPayload:
        ...

    async def get_exchange(self, session: SessionContext, exchange_id: str) -> RawPayload:
        ...

    async def submit_validation(self, session: SessionContext, exchange_id: str, payload: RawPayload) -> RawPayload:
        """Record one participant's validation; returns the updated exchange."""
        ...

    async def release_products(self, session: SessionContext, exchange_id: str) -> None:
        """Return the exchange's products to available."""
        ...

    async def upload_attachment(
        self, session: SessionContext, filename: str, data: bytes, content_type: str
    ) -> str:
        """Store an attachment and return its stable URL."""
        ...
