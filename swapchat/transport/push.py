"""
Push transports for realtime message delivery.

WHAT: Subscribe to a conversation's insert events
WHY: Push is the low-latency source of new messages from the other party
HOW: PushFeed protocol; in-process hub for local mode and tests, SSE
     stream over httpx for the remote service with reconnect on failure
"""

import asyncio
import json
from typing import Any, Awaitable, Callable, Protocol

import httpx

from .data_service import RawPayload
from ..core.config import settings
from ..core.identity import IdentityProvider
from ..utils.exceptions import Unauthorized
from ..utils.logger import get_logger

logger = get_logger(__name__)

PushHandler = Callable[[Any], Awaitable[None]]


class PushSubscription:
    """Handle for one active subscription; close() stops delivery."""

    def __init__(self, conversation_id: str, on_close: Callable[[], Awaitable[None]]):
        self.conversation_id = conversation_id
        self._on_close = on_close
        self.closed = False

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        await self._on_close()


class PushFeed(Protocol):
    """Source of realtime insert events for a conversation."""

    async def subscribe(self, conversation_id: str, handler: PushHandler) -> PushSubscription:
        ...


class InMemoryPushHub:
    """In-process fan-out used by the local data service."""

    def __init__(self):
        self._handlers: dict[str, list[PushHandler]] = {}

    def subscriber_count(self, conversation_id: str) -> int:
        return len(self._handlers.get(conversation_id, []))

    async def subscribe(self, conversation_id: str, handler: PushHandler) -> PushSubscription:
        self._handlers.setdefault(conversation_id, []).append(handler)
        logger.debug(f"Push subscriber added for conversation {conversation_id}")

        async def unsubscribe() -> None:
            handlers = self._handlers.get(conversation_id, [])
            if handler in handlers:
                handlers.remove(handler)
            if not handlers:
                self._handlers.pop(conversation_id, None)
            logger.debug(f"Push subscriber removed for conversation {conversation_id}")

        return PushSubscription(conversation_id, unsubscribe)

    async def publish(self, conversation_id: str, payload: RawPayload) -> None:
        """Deliver payload to every current subscriber; handler errors are logged."""
        for handler in list(self._handlers.get(conversation_id, [])):
            try:
                await handler(payload)
            except Exception as e:
                logger.error(f"Push handler failed for conversation {conversation_id}: {e}")


class SsePushFeed:
    """Server-sent events stream from the remote service."""

    def __init__(
        self,
        identity: IdentityProvider,
        base_url: str | None = None,
        *,
        path_template: str | None = None,
        reconnect_delay: float | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.identity = identity
        self.base_url = (base_url or settings.DATA_SERVICE_BASE_URL).rstrip("/")
        self.path_template = path_template or settings.PUSH_STREAM_PATH
        self.reconnect_delay = settings.PUSH_RECONNECT_DELAY if reconnect_delay is None else reconnect_delay
        self.client = client or httpx.AsyncClient(timeout=httpx.Timeout(5.0, read=None))

    async def subscribe(self, conversation_id: str, handler: PushHandler) -> PushSubscription:
        task = asyncio.create_task(
            self._run(conversation_id, handler), name=f"push-{conversation_id}"
        )

        async def stop() -> None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        return PushSubscription(conversation_id, stop)

    async def _run(self, conversation_id: str, handler: PushHandler) -> None:
        url = f"{self.base_url}{self.path_template.format(conversation_id=conversation_id)}"
        while True:
            try:
                session = await self.identity.current()
                async with self.client.stream(
                    "GET",
                    url,
                    headers={"Authorization": f"Bearer {session.auth_token}", "Accept": "text/event-stream"},
                ) as response:
                    response.raise_for_status()
                    logger.info(f"Push stream connected for conversation {conversation_id}")
                    async for line in response.aiter_lines():
                        line = line.strip()
                        # SSE format: "data: {json}"
                        if not line.startswith("data:"):
                            continue
                        data_str = line[5:].strip()
                        if not data_str:
                            continue
                        try:
                            payload = json.loads(data_str)
                        except json.JSONDecodeError:
                            logger.warning(f"Dropping non-JSON push event for {conversation_id}")
                            continue
                        await handler(payload)
            except asyncio.CancelledError:
                raise
            except Unauthorized:
                logger.error(f"Push stream for {conversation_id} stopped: session missing")
                return
            except httpx.HTTPError as e:
                logger.warning(f"Push stream for {conversation_id} dropped: {e}")
            await asyncio.sleep(self.reconnect_delay)

    async def aclose(self) -> None:
        await self.client.aclose()
