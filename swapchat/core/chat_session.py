"""
Chat session orchestration.

WHAT: Wires store, actor, adapters and proposal engine for one user
WHY: Switching conversations must tear down the old sources before the
     new ones start, or stale events leak into the new thread
HOW: One ChatSession per user; open_conversation runs as a cancellable
     task; a registry hands sessions to the HTTP layer
"""

import asyncio
from typing import Any

from .config import settings
from .identity import IdentityProvider, MutableIdentityProvider
from ..adapters.optimistic_sender import FailureCallback, OptimisticSender, SendOutcome
from ..adapters.poll_fetcher import PollFetcher
from ..adapters.push_listener import PushListener
from ..models.exchange import ValidationOutcome
from ..models.message import Conversation, MessageKind, MessageMetadata
from ..models.proposal import MeetingDetails, Proposal, ProposalAction, ProposalDraft
from ..models.wire import parse_conversation, parse_message
from ..services.conversation_actor import ConversationActor
from ..services.message_store import MessageStore, StoreListener
from ..services.proposal_engine import ProposalEngine, RespondOutcome
from ..transport.data_service import DataService
from ..transport.push import PushFeed
from ..utils.exceptions import Conflict, NetworkTimeout, ValidationError
from ..utils.logger import get_logger

logger = get_logger(__name__)


class ChatSession:
    """
    Everything one signed-in user needs to chat and negotiate.

    WHAT: Holds the open conversation and its synchronization sources
    WHY: Single owner for the conversation switch sequence
    HOW: Teardown order is poll, push, sends, actor; then load and restart
    """

    def __init__(
        self,
        identity: IdentityProvider,
        data_service: DataService,
        push_feed: PushFeed,
        *,
        poll_interval: float | None = None,
        load_timeout: float | None = None,
        send_timeout: float | None = None,
        duplicate_window: float | None = None,
        on_send_failure: FailureCallback | None = None,
    ):
        self.identity = identity
        self.data_service = data_service
        self.load_timeout = load_timeout or settings.LOAD_TIMEOUT_SECONDS
        self.send_timeout = send_timeout or settings.SEND_TIMEOUT_SECONDS
        self.duplicate_window = duplicate_window or settings.DUPLICATE_WINDOW_SECONDS
        self.on_send_failure = on_send_failure

        self.proposals = ProposalEngine(data_service, identity, notifier=self._append_notice)
        self.push = PushListener(push_feed)
        self.poller = PollFetcher(data_service, identity, interval=poll_interval, timeout=self.load_timeout)

        self.actor: ConversationActor | None = None
        self.sender: OptimisticSender | None = None
        self._listeners: list[StoreListener] = []
        self._load_task: asyncio.Task | None = None
        self.failures: list[dict[str, Any]] = []

    @property
    def conversation_id(self) -> str | None:
        return self.actor.conversation_id if self.actor else None

    # ========== Conversation switching ==========

    async def open_conversation(self, conversation_id: str) -> Conversation:
        """
        Make conversation_id the open conversation.

        A superseded open is cancelled; its caller receives Conflict.
        """
        if self._load_task is not None and not self._load_task.done():
            self._load_task.cancel()
            try:
                await self._load_task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.debug(f"Superseded conversation load ended with: {e}")

        task = asyncio.create_task(self._open(conversation_id), name=f"open-{conversation_id}")
        self._load_task = task
        try:
            return await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if task.cancelled() and current is not None and not current.cancelling():
                raise Conflict(f"Opening conversation {conversation_id} was superseded") from None
            raise

    async def _open(self, conversation_id: str) -> Conversation:
        await self._teardown()

        session = await self.identity.current()
        try:
            raw_conversation, raw_messages = await asyncio.wait_for(
                asyncio.gather(
                    self.data_service.get_conversation(session, conversation_id),
                    self.data_service.list_messages(session, conversation_id, limit=settings.POLL_PAGE_LIMIT),
                ),
                timeout=self.load_timeout,
            )
        except asyncio.TimeoutError:
            raise NetworkTimeout("load conversation", self.load_timeout) from None

        conversation = parse_conversation(raw_conversation)
        messages = []
        for item in raw_messages:
            try:
                messages.append(parse_message(item, conversation_id))
            except ValidationError as e:
                logger.warning(f"Dropping malformed message in {conversation_id}: {e.message}")

        store = MessageStore(conversation, session.user_id, self.duplicate_window)
        for listener in self._listeners:
            store.add_listener(listener)
        self.actor = ConversationActor(store)
        self.actor.start()
        try:
            await self.actor.load(messages, conversation.unread_count)
            self.proposals.set_participants(conversation_id, conversation.exchange_participants)
            await self.proposals.load(conversation_id)
        except Exception:
            await self._teardown()
            raise

        self.sender = OptimisticSender(
            self.actor,
            self.data_service,
            self.identity,
            timeout=self.send_timeout,
            on_failure=self._record_failure,
        )
        await self.push.subscribe(self.actor)
        self.poller.start(self.actor)

        logger.info(f"Opened conversation {conversation_id} with {len(messages)} messages")
        return await self.actor.snapshot()

    async def _teardown(self) -> None:
        """Stop every source for the current conversation, in order."""
        old_id = self.conversation_id
        await self.poller.stop()
        await self.push.unsubscribe()
        if self.sender is not None:
            await self.sender.cancel_all()
            self.sender = None
        if self.actor is not None:
            await self.actor.stop()
            self.actor = None
        if old_id is not None:
            self.proposals.forget(old_id)
            logger.info(f"Closed conversation {old_id}")

    async def close(self) -> None:
        if self._load_task is not None and not self._load_task.done():
            self._load_task.cancel()
            try:
                await self._load_task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.debug(f"Superseded conversation load ended with: {e}")
        await self._teardown()

    # ========== Observation ==========

    def add_listener(self, listener: StoreListener) -> None:
        """Observe every state change of whichever conversation is open."""
        self._listeners.append(listener)
        if self.actor is not None:
            self.actor.store.add_listener(listener)

    def remove_listener(self, listener: StoreListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)
        if self.actor is not None:
            self.actor.store.remove_listener(listener)

    async def snapshot(self, conversation_id: str) -> Conversation:
        return await self._require_open(conversation_id).snapshot()

    def _require_open(self, conversation_id: str) -> ConversationActor:
        if self.actor is None or self.actor.conversation_id != conversation_id:
            raise Conflict(
                f"Conversation {conversation_id} is not open",
                {"open_conversation_id": self.conversation_id},
            )
        return self.actor

    # ========== Messaging ==========

    async def send(
        self,
        conversation_id: str,
        content: str | None,
        kind: MessageKind | str = MessageKind.TEXT,
        metadata: MessageMetadata | None = None,
    ) -> SendOutcome:
        self._require_open(conversation_id)
        return await self.sender.send(content, kind, metadata)

    async def send_attachment(
        self, conversation_id: str, filename: str, data: bytes, content_type: str, caption: str | None = None
    ) -> SendOutcome:
        self._require_open(conversation_id)
        return await self.sender.send_attachment(filename, data, content_type, caption)

    async def mark_read(self, conversation_id: str) -> int:
        actor = self._require_open(conversation_id)
        session = await self.identity.current()
        await self.data_service.mark_read(session, conversation_id)
        return await actor.mark_read(session.user_id)

    async def refresh(self, conversation_id: str) -> int:
        """Immediate catch-up poll."""
        return await self.poller.poll_once(self._require_open(conversation_id))

    # ========== Negotiation ==========

    async def create_proposal(self, conversation_id: str, draft: ProposalDraft | dict) -> Proposal:
        self._require_open(conversation_id)
        return await self.proposals.create(conversation_id, draft)

    async def respond_proposal(
        self,
        proposal_id: str,
        action: ProposalAction | str,
        reason: str | None = None,
        meeting: MeetingDetails | dict | None = None,
        conversation_id: str | None = None,
    ) -> RespondOutcome:
        return await self.proposals.respond(proposal_id, action, reason, meeting, conversation_id=conversation_id)

    async def cancel_proposal(self, proposal_id: str, conversation_id: str | None = None) -> Proposal:
        return await self.proposals.cancel(proposal_id, conversation_id=conversation_id)

    async def validate_exchange(self, exchange_id: str, **kwargs) -> ValidationOutcome:
        return await self.proposals.validate_exchange(exchange_id, **kwargs)

    # ========== Internals ==========

    async def _append_notice(self, conversation_id: str, text: str) -> None:
        if self.actor is None or self.actor.conversation_id != conversation_id:
            logger.info(f"Notice for closed conversation {conversation_id} not shown: {text}")
            return
        await self.actor.append_system(text)

    def _record_failure(self, conversation_id: str, error) -> None:
        self.failures.append({"conversation_id": conversation_id, "code": error.code, "message": error.message})
        if self.on_send_failure is not None:
            self.on_send_failure(conversation_id, error)


class ChatSessionRegistry:
    """
    Per-user chat sessions for the HTTP layer.

    Credentials are refreshed on every request; sessions persist between
    requests so push and poll keep running for the open conversation.
    """

    def __init__(self):
        self._sessions: dict[str, ChatSession] = {}
        self._identities: dict[str, MutableIdentityProvider] = {}

    def get(self, user_id: str, auth_token: str) -> ChatSession:
        from ..transport.factory import get_data_service, get_push_feed

        identity = self._identities.get(user_id)
        if identity is None:
            identity = MutableIdentityProvider(user_id, auth_token)
            self._identities[user_id] = identity
        else:
            identity.update(user_id, auth_token)

        session = self._sessions.get(user_id)
        if session is None:
            session = ChatSession(identity, get_data_service(), get_push_feed(identity))
            self._sessions[user_id] = session
            logger.info(f"Chat session created for user {user_id}")
        return session

    def active_count(self) -> int:
        return len(self._sessions)

    async def close_all(self) -> None:
        for user_id, session in list(self._sessions.items()):
            try:
                await session.close()
                close_feed = getattr(session.push.feed, "aclose", None)
                if close_feed is not None:
                    await close_feed()
            except Exception as e:
                logger.error(f"Failed to close chat session for {user_id}: {e}")
        self._sessions.clear()
        self._identities.clear()


# Singleton instance
chat_sessions = ChatSessionRegistry()
