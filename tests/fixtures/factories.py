"""
Test data builders.

WHAT: Canonical ids, fixed timestamps, and message builders
WHY: Keep test bodies focused on behavior instead of construction
HOW: Plain functions returning domain models or remote-shaped dicts
"""

from datetime import datetime, timedelta, timezone

from swapchat.models.message import DeliveryState, Message

BUYER_ID = "user-buyer"
SELLER_ID = "user-seller"
OUTSIDER_ID = "user-outsider"
CONVERSATION_ID = "1"
BASE_TIME = datetime(2024, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


def make_message(
    message_id: str,
    sender_id: str = SELLER_ID,
    content: str = "hola",
    *,
    seconds: float = 0,
    delivery: DeliveryState = DeliveryState.CONFIRMED,
    client_ref: str | None = None,
    local_seq: int = 0,
    conversation_id: str = CONVERSATION_ID,
) -> Message:
    """Build a message sent `seconds` after BASE_TIME."""
    return Message(
        id=message_id,
        conversation_id=conversation_id,
        sender_id=sender_id,
        content=content,
        sent_at=BASE_TIME + timedelta(seconds=seconds),
        delivery=delivery,
        client_ref=client_ref,
        local_seq=local_seq,
    )


def wire_message(
    message_id: int,
    sender_id: str = SELLER_ID,
    content: str = "hola",
    *,
    conversation_id: str = CONVERSATION_ID,
    sent_at: datetime | None = None,
    **extra,
) -> dict:
    """Remote-shaped message payload."""
    payload = {
        "id": message_id,
        "conversationId": conversation_id,
        "senderId": sender_id,
        "content": content,
        "sentAt": (sent_at or datetime.now(timezone.utc)).isoformat(),
        "kind": "text",
    }
    payload.update(extra)
    return payload


def wire_conversation(
    conversation_id: str = CONVERSATION_ID,
    proposer_id: str = BUYER_ID,
    receiver_id: str = SELLER_ID,
    unread: int = 0,
) -> dict:
    return {
        "id": conversation_id,
        "proposerId": proposer_id,
        "receiverId": receiver_id,
        "productIds": [],
        "unreadCount": unread,
    }


def wire_proposal(
    proposal_id: int,
    *,
    conversation_id: str = CONVERSATION_ID,
    status: str = "pending",
    proposal_type: str = "price",
    price: float | None = 150000,
    meeting_date: str | None = None,
    meeting_place: str | None = None,
    exchange_id: int | None = None,
) -> dict:
    return {
        "id": proposal_id,
        "conversationId": conversation_id,
        "type": proposal_type,
        "description": "Te ofrezco 150000 por la bicicleta",
        "proposedPrice": price,
        "meetingDate": meeting_date,
        "meetingPlace": meeting_place,
        "status": status,
        "proposerId": BUYER_ID,
        "receiverId": SELLER_ID,
        "createdAt": BASE_TIME.isoformat(),
        "exchangeId": exchange_id,
    }


def wire_exchange(
    exchange_id: int,
    *,
    proposal_id: int = 1,
    conversation_id: str = CONVERSATION_ID,
    status: str = "pending_validation",
    validations: list[dict] | None = None,
) -> dict:
    return {
        "id": exchange_id,
        "conversationId": conversation_id,
        "proposalId": proposal_id,
        "proposerId": BUYER_ID,
        "receiverId": SELLER_ID,
        "status": status,
        "validations": validations or [],
    }
