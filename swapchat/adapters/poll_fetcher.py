"""
Poll fetcher.

WHAT: Periodically fetch messages newer than the highest canonical id
WHY: Push can miss events; polling closes the gap
HOW: Background asyncio task sleeping between rounds; each round runs
     under a deadline; errors are logged and the loop keeps going
"""

import asyncio

from ..core.config import settings
from ..core.identity import IdentityProvider
from ..models.message import DeliverySource
from ..models.wire import parse_message
from ..services.conversation_actor import ActorStopped, ConversationActor
from ..transport.data_service import DataService
from ..utils.exceptions import NetworkTimeout, SwapChatException, ValidationError
from ..utils.logger import get_logger

logger = get_logger(__name__)


class PollFetcher:
    """Polls the data service for the open conversation."""

    def __init__(
        self,
        data_service: DataService,
        identity: IdentityProvider,
        *,
        interval: float | None = None,
        timeout: float | None = None,
        limit: int | None = None,
    ):
        self.data_service = data_service
        self.identity = identity
        self.interval = interval or settings.POLL_INTERVAL_SECONDS
        self.timeout = timeout or settings.LOAD_TIMEOUT_SECONDS
        self.limit = limit or settings.POLL_PAGE_LIMIT
        self._actor: ConversationActor | None = None
        self._task: asyncio.Task | None = None
        self.rounds = 0
        self.failures = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, actor: ConversationActor) -> None:
        """Start polling actor's conversation; a running loop must be stopped first."""
        if self.running:
            raise RuntimeError(f"Poll fetcher already running for {self._actor.conversation_id}")
        self._actor = actor
        self._task = asyncio.create_task(self._loop(actor), name=f"poll-{actor.conversation_id}")
        logger.info(f"Polling conversation {actor.conversation_id} every {self.interval:g}s")

    async def stop(self) -> None:
        """Cancel the loop and any in-flight request."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info(f"Polling stopped for {self._actor.conversation_id if self._actor else 'unknown'}")
        self._actor = None

    async def _loop(self, actor: ConversationActor) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.poll_once(actor)
            except asyncio.CancelledError:
                raise
            except ActorStopped:
                return
            except SwapChatException as e:
                self.failures += 1
                logger.warning(f"Poll failed for {actor.conversation_id}: {e.message}")
            except Exception as e:
                self.failures += 1
                logger.error(f"Unexpected poll error for {actor.conversation_id}: {e}")

    async def poll_once(self, actor: ConversationActor | None = None) -> int:
        """
        Run one poll round.

        Returns:
            Number of messages the reconciler accepted

        Raises:
            NetworkTimeout: Request exceeded the poll deadline
        """
        actor = actor or self._actor
        if actor is None:
            raise RuntimeError("Poll fetcher has no conversation")

        session = await self.identity.current()
        since_id = await actor.highest_canonical_id()
        try:
            raw = await asyncio.wait_for(
                self.data_service.list_messages(
                    session, actor.conversation_id, since_id=since_id, limit=self.limit
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            raise NetworkTimeout("poll messages", self.timeout) from None

        messages = []
        for item in raw:
            try:
                messages.append(parse_message(item, actor.conversation_id))
            except ValidationError as e:
                logger.warning(f"Dropping malformed polled message in {actor.conversation_id}: {e.message}")

        self.rounds += 1
        if not messages:
            return 0
        accepted = await actor.apply_many(messages, DeliverySource.POLL)
        if accepted:
            logger.debug(f"Poll accepted {accepted}/{len(messages)} messages in {actor.conversation_id}")
        return accepted
