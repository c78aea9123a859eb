"""
Delivery reconciler for chat messages.

WHAT: Decide whether an incoming message enters the thread, and where
WHY: Optimistic writes, push events and poll results overlap; the thread
     must stay duplicate-free and totally ordered
HOW: Pure function over an immutable snapshot; rules are evaluated in a
     fixed order and the first match rejects
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from ..models.message import DeliverySource, Message
from ..utils.clock import utc_now

# Sources that can echo a message this client already holds optimistically
REMOTE_SOURCES = frozenset({DeliverySource.PUSH, DeliverySource.POLL})

# Locally authored messages are new intents, never copies of a server delivery
LOCAL_SOURCES = frozenset({DeliverySource.OPTIMISTIC, DeliverySource.SYSTEM})


class RejectReason(str, Enum):
    SELF_ECHO = "self_echo"
    DUPLICATE_ID = "duplicate_id"
    DUPLICATE_CLIENT_REF = "duplicate_client_ref"
    RACE_WINDOW = "race_window"


@dataclass(frozen=True)
class ReconcileResult:
    """Outcome of one reconcile call."""
    messages: list[Message]
    accepted: bool
    reason: RejectReason | None = None


def sort_key(message: Message) -> tuple[int, int]:
    """
    Total order over a thread.

    Canonical ids ascend by integer value. Non-canonical ids (temporary
    and synthetic) follow every canonical id, ordered by local_seq.
    """
    canonical = message.canonical_id
    if canonical is not None:
        return (0, canonical)
    return (1, message.local_seq)


def sort_messages(messages: list[Message]) -> list[Message]:
    return sorted(messages, key=sort_key)


def _content_equal(a: Message, b: Message) -> bool:
    return a.sender_id == b.sender_id and a.kind == b.kind and a.content == b.content


def reconcile(
    current: list[Message],
    incoming: Message,
    source_self_id: str,
    *,
    source: DeliverySource,
    now: datetime | None = None,
    duplicate_window: float = 5.0,
) -> ReconcileResult:
    """
    Merge one incoming message into the current thread.

    Args:
        current: Current ordered thread (not mutated)
        incoming: Candidate message
        source_self_id: Id of the user this client acts for
        source: Producer of the candidate
        now: Reference time for the race window (defaults to now)
        duplicate_window: Race window in seconds

    Returns:
        ReconcileResult with the new thread (same list object contents when rejected)
    """
    # 1. self echo of a message this client sent
    if source in REMOTE_SOURCES and incoming.sender_id == source_self_id:
        return ReconcileResult(messages=list(current), accepted=False, reason=RejectReason.SELF_ECHO)

    # 2. exact duplicate
    for existing in current:
        if existing.id == incoming.id:
            return ReconcileResult(messages=list(current), accepted=False, reason=RejectReason.DUPLICATE_ID)
        if (
            incoming.client_ref
            and existing.is_pending
            and existing.client_ref == incoming.client_ref
        ):
            return ReconcileResult(
                messages=list(current), accepted=False, reason=RejectReason.DUPLICATE_CLIENT_REF
            )

    # 3. race window against pending temporaries
    reference = now or utc_now()
    if source not in LOCAL_SOURCES and incoming.sent_at > reference - timedelta(seconds=duplicate_window):
        for existing in current:
            if not existing.is_pending:
                continue
            if existing.id == incoming.id or _content_equal(existing, incoming):
                return ReconcileResult(
                    messages=list(current), accepted=False, reason=RejectReason.RACE_WINDOW
                )

    # 4. insert
    return ReconcileResult(messages=sort_messages([*current, incoming]), accepted=True)
