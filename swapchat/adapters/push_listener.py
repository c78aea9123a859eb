"""
Push listener.

WHAT: Feed realtime insert events of the open conversation into its actor
WHY: Push is how the other participant's messages arrive without waiting
     for the next poll
HOW: One subscription at a time; the previous one is closed before the
     next opens; payloads are coerced at the boundary and malformed ones
     are dropped
"""

from typing import Any

from ..models.message import DeliverySource
from ..models.wire import parse_message
from ..services.conversation_actor import ActorStopped, ConversationActor
from ..transport.push import PushFeed, PushSubscription
from ..utils.exceptions import ValidationError
from ..utils.logger import get_logger

logger = get_logger(__name__)


class PushListener:
    """Keeps at most one push subscription alive."""

    def __init__(self, feed: PushFeed):
        self.feed = feed
        self._subscription: PushSubscription | None = None
        self._actor: ConversationActor | None = None
        self.received = 0
        self.dropped = 0

    @property
    def conversation_id(self) -> str | None:
        return self._subscription.conversation_id if self._subscription else None

    async def subscribe(self, actor: ConversationActor) -> None:
        """Subscribe to actor's conversation, closing any previous subscription first."""
        if self._subscription is not None:
            if self._subscription.conversation_id == actor.conversation_id and self._actor is actor:
                return
            await self.unsubscribe()

        self._actor = actor
        conversation_id = actor.conversation_id

        async def handle(payload: Any) -> None:
            await self._on_event(actor, payload)

        self._subscription = await self.feed.subscribe(conversation_id, handle)
        logger.info(f"Push subscribed to conversation {conversation_id}")

    async def unsubscribe(self) -> None:
        if self._subscription is None:
            return
        conversation_id = self._subscription.conversation_id
        subscription, self._subscription, self._actor = self._subscription, None, None
        await subscription.close()
        logger.info(f"Push unsubscribed from conversation {conversation_id}")

    async def _on_event(self, actor: ConversationActor, payload: Any) -> None:
        if self._actor is not actor:
            # late event for a conversation we already left
            return
        self.received += 1
        try:
            message = parse_message(payload, actor.conversation_id)
        except ValidationError as e:
            self.dropped += 1
            logger.warning(f"Dropping malformed push event for {actor.conversation_id}: {e.message}")
            return
        try:
            await actor.apply(message, DeliverySource.PUSH)
        except ActorStopped:
            logger.debug(f"Push event {message.id} arrived after {actor.conversation_id} closed")
