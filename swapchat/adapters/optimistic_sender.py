"""
Optimistic sender.

WHAT: Show a message immediately, then confirm or roll it back
WHY: Sending should feel instant even though the remote call takes time
HOW: Insert a pending temporary through the actor, call the data service
     under a deadline, then replace the temporary with the canonical
     message or discard it, restore the draft and notify once
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Callable
from uuid import uuid4

from pydantic import ValidationError as PydanticValidationError

from ..core.config import settings
from ..core.identity import IdentityProvider, SessionContext
from ..models.message import (
    DeliverySource,
    DeliveryState,
    FileMetadata,
    ImageMetadata,
    Message,
    MessageKind,
    MessageMetadata,
    TEMP_ID_PREFIX,
)
from ..models.wire import message_to_wire, parse_message
from ..services.conversation_actor import ActorStopped, ConversationActor
from ..transport.data_service import DataService
from ..utils.exceptions import NetworkTimeout, SwapChatException, Unauthorized, ValidationError
from ..utils.logger import get_logger

logger = get_logger(__name__)

FailureCallback = Callable[[str, SwapChatException], None]


class SendStatus(str, Enum):
    SENT = "sent"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class SendOutcome:
    status: SendStatus
    temp_id: str | None = None
    message: Message | None = None
    error: SwapChatException | None = None


class OptimisticSender:
    """Sends messages for one open conversation."""

    def __init__(
        self,
        actor: ConversationActor,
        data_service: DataService,
        identity: IdentityProvider,
        *,
        timeout: float | None = None,
        on_failure: FailureCallback | None = None,
    ):
        self.actor = actor
        self.data_service = data_service
        self.identity = identity
        self.timeout = timeout or settings.SEND_TIMEOUT_SECONDS
        self.on_failure = on_failure
        self.draft: str | None = None
        self._inflight: dict[str, asyncio.Task] = {}
        self._cancelled: set[str] = set()

    @property
    def conversation_id(self) -> str:
        return self.actor.conversation_id

    @property
    def inflight_count(self) -> int:
        return len(self._inflight)

    def take_draft(self) -> str | None:
        """Return and clear the draft restored after a failed send."""
        draft, self.draft = self.draft, None
        return draft

    def _build_temp(
        self,
        session: SessionContext,
        content: str | None,
        kind: MessageKind,
        metadata: MessageMetadata | None,
        local_seq: int,
    ) -> Message:
        try:
            return Message(
                id=f"{TEMP_ID_PREFIX}{uuid4()}",
                conversation_id=self.conversation_id,
                sender_id=session.user_id,
                content=content,
                kind=kind,
                metadata=metadata,
                delivery=DeliveryState.PENDING,
                client_ref=uuid4().hex,
                local_seq=local_seq,
            )
        except PydanticValidationError as e:
            raise ValidationError(
                "Invalid message",
                [{"field": ".".join(str(p) for p in err["loc"]), "error": err["msg"]} for err in e.errors()],
            ) from e

    async def send(
        self,
        content: str | None,
        kind: MessageKind | str = MessageKind.TEXT,
        metadata: MessageMetadata | None = None,
    ) -> SendOutcome:
        """
        Send one message optimistically.

        Returns:
            SendOutcome; failures are reported through the outcome and the
            on_failure callback, never raised

        Raises:
            Unauthorized: No active session (temporary rolled back, draft restored)
            ValidationError: Message invalid (raised before anything is shown)
        """
        try:
            kind = MessageKind(kind)
        except ValueError:
            raise ValidationError(f"Unknown message kind: {kind!r}") from None
        if kind == MessageKind.TEXT:
            content = (content or "").strip()
            if not content:
                raise ValidationError("Message content is required", [{"field": "content", "error": "required"}])

        session = await self.identity.current()
        local_seq = await self.actor.next_local_seq()
        temp = self._build_temp(session, content, kind, metadata, local_seq)
        await self.actor.apply(temp, DeliverySource.OPTIMISTIC)

        task = asyncio.create_task(
            self.data_service.send_message(session, self.conversation_id, message_to_wire(temp))
        )
        self._inflight[temp.id] = task
        try:
            raw = await asyncio.wait_for(task, timeout=self.timeout)
            canonical = parse_message(raw, self.conversation_id)
        except asyncio.TimeoutError:
            return await self._fail(temp, NetworkTimeout("send message", self.timeout))
        except asyncio.CancelledError:
            if temp.id in self._cancelled:
                await self._rollback(temp)
                logger.info(f"Send of {temp.id} cancelled")
                return SendOutcome(status=SendStatus.CANCELLED, temp_id=temp.id)
            await self._rollback(temp)
            raise
        except Unauthorized:
            await self._rollback(temp)
            self.draft = content
            raise
        except SwapChatException as e:
            return await self._fail(temp, e)
        finally:
            self._inflight.pop(temp.id, None)
            self._cancelled.discard(temp.id)

        try:
            await self.actor.replace_pending(temp.id, canonical)
        except ActorStopped:
            logger.debug(f"Conversation {self.conversation_id} closed before confirmation of {temp.id}")
        logger.info(f"Message {temp.id} confirmed as {canonical.id} in {self.conversation_id}")
        return SendOutcome(status=SendStatus.SENT, temp_id=temp.id, message=canonical)

    async def send_attachment(
        self,
        filename: str,
        data: bytes,
        content_type: str,
        caption: str | None = None,
    ) -> SendOutcome:
        """Upload an attachment, then send an image or file message referencing it."""
        session = await self.identity.current()
        try:
            url = await asyncio.wait_for(
                self.data_service.upload_attachment(session, filename, data, content_type),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            return self._report(NetworkTimeout("upload attachment", self.timeout), caption)
        except Unauthorized:
            raise
        except SwapChatException as e:
            return self._report(e, caption)

        if content_type.startswith("image/"):
            return await self.send(caption, MessageKind.IMAGE, ImageMetadata(image_url=url))
        return await self.send(
            caption,
            MessageKind.FILE,
            FileMetadata(file_name=filename, file_size=len(data), file_url=url),
        )

    async def cancel_all(self) -> int:
        """Cancel in-flight sends and clear draft state; returns how many were cancelled."""
        tasks = list(self._inflight.items())
        for temp_id, task in tasks:
            self._cancelled.add(temp_id)
            task.cancel()
        self.draft = None
        if tasks:
            await asyncio.gather(*(t for _, t in tasks), return_exceptions=True)
            logger.info(f"Cancelled {len(tasks)} in-flight sends for {self.conversation_id}")
        return len(tasks)

    # ========== Failure handling ==========

    async def _rollback(self, temp: Message) -> None:
        try:
            await self.actor.discard(temp.id)
        except ActorStopped:
            logger.debug(f"Conversation {self.conversation_id} closed before rollback of {temp.id}")

    async def _fail(self, temp: Message, error: SwapChatException) -> SendOutcome:
        await self._rollback(temp)
        outcome = self._report(error, temp.content)
        outcome.temp_id = temp.id
        return outcome

    def _report(self, error: SwapChatException, draft: str | None) -> SendOutcome:
        logger.warning(f"Send failed in {self.conversation_id}: {error.message}")
        self.draft = draft
        if self.on_failure is not None:
            try:
                self.on_failure(self.conversation_id, error)
            except Exception as e:
                logger.error(f"Send failure callback raised: {e}")
        return SendOutcome(status=SendStatus.FAILED, error=error)
