"""
Single-writer actor for one conversation's message store.

WHAT: Serializes every message-list mutation for an open conversation
WHY: Optimistic sends, push events and polls run concurrently; the store
     must observe them one at a time in arrival order
HOW: asyncio.Queue of commands drained by one consumer task; callers
     await a future resolved with the command's result
"""

import asyncio
from datetime import datetime
from typing import Any, Callable

from ..models.message import Conversation, DeliverySource, Message
from ..utils.logger import get_logger
from .message_store import MessageStore
from .reconciler import ReconcileResult

logger = get_logger(__name__)

Command = Callable[[MessageStore], Any]


class ActorStopped(RuntimeError):
    """Command submitted to an actor that is not running."""


class ConversationActor:
    """FIFO command executor that owns a MessageStore."""

    def __init__(self, store: MessageStore):
        self.store = store
        self._queue: asyncio.Queue[tuple[Command, asyncio.Future] | None] = asyncio.Queue()
        self._task: asyncio.Task | None = None
        self._stopping = False

    @property
    def conversation_id(self) -> str:
        return self.store.conversation_id

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done() and not self._stopping

    def start(self) -> None:
        if self.running:
            return
        self._stopping = False
        self._task = asyncio.create_task(self._run(), name=f"actor-{self.conversation_id}")
        logger.debug(f"Conversation actor started for {self.conversation_id}")

    async def stop(self) -> None:
        """Drain queued commands, then stop the consumer."""
        if not self.running:
            return
        self._stopping = True
        await self._queue.put(None)
        await self._task
        self._task = None
        self._stopping = False
        logger.debug(f"Conversation actor stopped for {self.conversation_id}")

    async def submit(self, command: Command) -> Any:
        """Queue a command and wait for its result."""
        if not self.running:
            raise ActorStopped(f"Actor for conversation {self.conversation_id} is not running")
        future = asyncio.get_running_loop().create_future()
        await self._queue.put((command, future))
        return await future

    async def _run(self) -> None:
        while True:
            item = await self._queue.get()
            if item is None:
                break
            command, future = item
            if future.cancelled():
                continue
            try:
                result = command(self.store)
            except Exception as e:
                logger.error(f"Actor command failed for {self.conversation_id}: {e}")
                future.set_exception(e)
            else:
                future.set_result(result)

    # ========== Typed commands ==========

    async def apply(
        self, message: Message, source: DeliverySource, now: datetime | None = None
    ) -> ReconcileResult:
        return await self.submit(lambda store: store.apply(message, source, now))

    async def apply_many(self, messages: list[Message], source: DeliverySource) -> int:
        """Apply a batch in one command; returns how many were accepted."""
        def command(store: MessageStore) -> int:
            return sum(1 for m in messages if store.apply(m, source).accepted)
        return await self.submit(command)

    async def replace_pending(self, temp_id: str, canonical: Message) -> Message | None:
        return await self.submit(lambda store: store.replace_pending(temp_id, canonical))

    async def discard(self, temp_id: str) -> bool:
        return await self.submit(lambda store: store.discard(temp_id))

    async def append_system(self, text: str) -> Message:
        return await self.submit(lambda store: store.append_system(text))

    async def load(self, messages: list[Message], unread_count: int | None = None) -> None:
        return await self.submit(lambda store: store.load(messages, unread_count))

    async def mark_read(self, reader_id: str) -> int:
        return await self.submit(lambda store: store.mark_read(reader_id))

    async def next_local_seq(self) -> int:
        return await self.submit(lambda store: store.next_local_seq())

    async def highest_canonical_id(self) -> int | None:
        return await self.submit(lambda store: store.highest_canonical_id())

    async def snapshot(self) -> Conversation:
        return await self.submit(lambda store: store.snapshot())
