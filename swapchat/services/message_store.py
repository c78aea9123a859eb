"""
In-memory message store for one open conversation.

WHAT: Holds the ordered thread plus last-message and unread caches
WHY: Single place where reconciled state lives and is observed
HOW: Every mutation goes through the reconciler; listeners are notified
     with a fresh Conversation snapshot after each accepted change.
     Not thread-safe on its own: the conversation actor serializes access.
"""

from datetime import datetime, timedelta
from typing import Callable
from uuid import uuid4

from ..models.message import (
    Conversation,
    DeliverySource,
    DeliveryState,
    Message,
    SYSTEM_ID_PREFIX,
    SYSTEM_SENDER_ID,
)
from ..utils.logger import get_logger
from .reconciler import REMOTE_SOURCES, ReconcileResult, reconcile, sort_messages

logger = get_logger(__name__)

StoreListener = Callable[[Conversation], None]


class MessageStore:
    """Reconciled thread for a single conversation."""

    def __init__(self, conversation: Conversation, self_id: str, duplicate_window: float = 5.0):
        self.conversation_id = conversation.id
        self.self_id = self_id
        self.duplicate_window = duplicate_window
        self._conversation = conversation.model_copy(update={"messages": sort_messages(conversation.messages)})
        self._local_seq = max((m.local_seq for m in conversation.messages), default=0)
        self._listeners: list[StoreListener] = []

    # ========== Observation ==========

    @property
    def messages(self) -> list[Message]:
        return list(self._conversation.messages)

    def snapshot(self) -> Conversation:
        """Immutable copy of the current conversation state."""
        return self._conversation.model_copy(deep=True)

    def add_listener(self, listener: StoreListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: StoreListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def highest_canonical_id(self) -> int | None:
        """Largest canonical id in the thread, used as the poll cursor."""
        ids = [m.canonical_id for m in self._conversation.messages if m.canonical_id is not None]
        return max(ids) if ids else None

    def find(self, message_id: str) -> Message | None:
        for message in self._conversation.messages:
            if message.id == message_id:
                return message
        return None

    def next_local_seq(self) -> int:
        self._local_seq += 1
        return self._local_seq

    # ========== Mutation ==========

    def apply(self, message: Message, source: DeliverySource, now: datetime | None = None) -> ReconcileResult:
        """
        Reconcile one message into the thread.

        Non-canonical messages without a local_seq get the next sequence
        number so creation order is preserved.
        """
        if message.canonical_id is None and message.local_seq == 0:
            message = message.model_copy(update={"local_seq": self.next_local_seq()})

        result = reconcile(
            self._conversation.messages,
            message,
            self.self_id,
            source=source,
            now=now,
            duplicate_window=self.duplicate_window,
        )
        if not result.accepted:
            logger.debug(
                f"Rejected message {message.id} from {source.value} in {self.conversation_id}: "
                f"{result.reason.value if result.reason else 'unknown'}"
            )
            return result

        unread = self._conversation.unread_count
        if source in REMOTE_SOURCES and message.sender_id != self.self_id and not message.is_system:
            unread += 1
        self._commit(result.messages, unread_count=unread)
        return result

    def append_system(self, text: str) -> Message:
        """Append a synthetic notice authored by the system sender."""
        notice = Message(
            id=f"{SYSTEM_ID_PREFIX}{uuid4()}",
            conversation_id=self.conversation_id,
            sender_id=SYSTEM_SENDER_ID,
            content=text,
            delivery=DeliveryState.LOCAL,
            local_seq=self.next_local_seq(),
        )
        self.apply(notice, DeliverySource.SYSTEM)
        return notice

    def replace_pending(self, temp_id: str, canonical: Message) -> Message | None:
        """
        Promote a pending temporary message to its canonical form.

        The temporary is located by id first, then by sender + content with
        a sent_at inside the duplicate window. If the canonical id is already
        in the thread the temporary is simply dropped.

        Returns:
            The temporary that was replaced, or None if none matched
        """
        temp = self._find_pending(temp_id, canonical)
        if temp is None:
            logger.warning(f"No pending message matched confirmation {canonical.id} in {self.conversation_id}")
            remaining = list(self._conversation.messages)
        else:
            remaining = [m for m in self._conversation.messages if m.id != temp.id]

        if not any(m.id == canonical.id for m in remaining):
            confirmed = canonical.model_copy(update={"delivery": DeliveryState.CONFIRMED})
            remaining.append(confirmed)

        self._commit(sort_messages(remaining))
        return temp

    def discard(self, temp_id: str) -> bool:
        """Remove a pending temporary message (send failure)."""
        kept = [m for m in self._conversation.messages if not (m.id == temp_id and m.is_pending)]
        if len(kept) == len(self._conversation.messages):
            return False
        self._commit(kept)
        return True

    def load(self, messages: list[Message], unread_count: int | None = None) -> None:
        """
        Replace the canonical part of the thread with an initial load.

        Pending temporaries and local notices survive the reload.
        """
        kept = [m for m in self._conversation.messages if m.canonical_id is None]
        by_id: dict[str, Message] = {}
        for message in messages:
            by_id.setdefault(message.id, message)
        ordered = sort_messages([*by_id.values(), *kept])
        self._commit(
            ordered,
            unread_count=self._conversation.unread_count if unread_count is None else max(unread_count, 0),
        )

    def mark_read(self, reader_id: str) -> int:
        """Mark every message from the other participant read; returns how many changed."""
        changed = 0
        updated: list[Message] = []
        for message in self._conversation.messages:
            if message.sender_id != reader_id and not message.is_system and not message.is_read:
                message = message.model_copy(update={"is_read": True})
                changed += 1
            updated.append(message)
        self._commit(updated, unread_count=0)
        return changed

    def reset(self) -> None:
        """Drop everything, used when leaving a conversation."""
        self._commit([], unread_count=0)

    # ========== Internals ==========

    def _find_pending(self, temp_id: str, canonical: Message) -> Message | None:
        for message in self._conversation.messages:
            if message.id == temp_id and message.is_pending:
                return message

        window = timedelta(seconds=self.duplicate_window)
        for message in self._conversation.messages:
            if (
                message.is_pending
                and message.sender_id == canonical.sender_id
                and message.content == canonical.content
                and abs(message.sent_at - canonical.sent_at) <= window
            ):
                return message
        return None

    def _commit(self, messages: list[Message], unread_count: int | None = None) -> None:
        tail = messages[-1] if messages else None
        update = {
            "messages": messages,
            "last_message": tail.preview() if tail else None,
            "last_message_time": tail.sent_at if tail else None,
        }
        if unread_count is not None:
            update["unread_count"] = unread_count
        self._conversation = self._conversation.model_copy(update=update)
        self._notify()

    def _notify(self) -> None:
        if not self._listeners:
            return
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.error(f"Store listener failed for {self.conversation_id}: {e}")
