"""
Conversation and messaging endpoints.

WHAT: Open conversations, read their state, send messages, mark read
WHY: HTTP access to the caller's chat session
HOW: FastAPI router delegating to the ChatSession resolved per request
"""

import base64
import binascii

from fastapi import APIRouter, Depends, status

from ..deps import get_chat_session
from ....core.chat_session import ChatSession
from ....core.config import settings
from ....models.api_schemas import (
    ConversationStateResponse,
    CreateConversationRequest,
    CreateConversationResponse,
    MarkReadResponse,
    RefreshResponse,
    SendAttachmentRequest,
    SendMessageRequest,
    SendMessageResponse,
)
from ....models.message import LocationMetadata, MessageKind
from ....transport.factory import get_data_service
from ....utils.exceptions import Conflict, ValidationError
from ....utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()


async def build_state(chat: ChatSession, conversation_id: str) -> ConversationStateResponse:
    """Snapshot of the open conversation with its negotiation state."""
    conversation = await chat.snapshot(conversation_id)
    session = await chat.identity.current()
    proposals = chat.proposals.proposals(conversation_id)
    exchanges = [
        chat.proposals.exchange(p.exchange_id) for p in proposals if p.exchange_id
    ]
    return ConversationStateResponse(
        conversation=conversation,
        role=chat.proposals.role_of(conversation_id, session.user_id).value,
        permissions=chat.proposals.permissions(conversation_id, session.user_id),
        proposals=proposals,
        exchanges=[e for e in exchanges if e is not None],
        draft=chat.sender.draft if chat.sender else None,
    )


@router.post(
    "/conversations",
    response_model=CreateConversationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_conversation(request: CreateConversationRequest):
    """
    Create a conversation in local mode.

    Raises:
        Conflict: The configured data service does not create conversations
    """
    service = get_data_service()
    create = getattr(service, "create_conversation", None)
    if create is None:
        raise Conflict("Conversations are created by the remote service in this mode")
    conversation_id = await create(request.proposer_id, request.receiver_id, request.product_titles)
    return CreateConversationResponse(conversation_id=conversation_id)


@router.post("/conversations/{conversation_id}/open", response_model=ConversationStateResponse)
async def open_conversation(conversation_id: str, chat: ChatSession = Depends(get_chat_session)):
    """
    Make conversation_id the caller's open conversation.

    Tears down push, poll and in-flight sends of the previous one first.
    """
    await chat.open_conversation(conversation_id)
    return await build_state(chat, conversation_id)


@router.get("/conversations/{conversation_id}", response_model=ConversationStateResponse)
async def get_conversation(conversation_id: str, chat: ChatSession = Depends(get_chat_session)):
    return await build_state(chat, conversation_id)


@router.post("/conversations/{conversation_id}/messages", response_model=SendMessageResponse)
async def send_message(
    conversation_id: str,
    request: SendMessageRequest,
    chat: ChatSession = Depends(get_chat_session),
):
    """
    Send a message optimistically.

    A failed send still returns 200 with status "failed" and the restored
    draft; the thread no longer contains the temporary message.
    """
    if request.kind == "location":
        outcome = await chat.send(
            conversation_id,
            request.content,
            MessageKind.LOCATION,
            LocationMetadata(lat=request.lat, lng=request.lng),
        )
    else:
        outcome = await chat.send(conversation_id, request.content)

    return SendMessageResponse(
        status=outcome.status.value,
        temp_id=outcome.temp_id,
        message=outcome.message,
        error={"code": outcome.error.code, "message": outcome.error.message} if outcome.error else None,
        draft=chat.sender.draft if chat.sender else None,
    )


@router.post("/conversations/{conversation_id}/attachments", response_model=SendMessageResponse)
async def send_attachment(
    conversation_id: str,
    request: SendAttachmentRequest,
    chat: ChatSession = Depends(get_chat_session),
):
    try:
        data = base64.b64decode(request.data_base64, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValidationError("data_base64 is not valid base64", [{"field": "data_base64", "error": str(e)}])

    outcome = await chat.send_attachment(
        conversation_id, request.filename, data, request.content_type, request.caption
    )
    return SendMessageResponse(
        status=outcome.status.value,
        temp_id=outcome.temp_id,
        message=outcome.message,
        error={"code": outcome.error.code, "message": outcome.error.message} if outcome.error else None,
        draft=chat.sender.draft if chat.sender else None,
    )


@router.post("/conversations/{conversation_id}/read", response_model=MarkReadResponse)
async def mark_read(conversation_id: str, chat: ChatSession = Depends(get_chat_session)):
    return MarkReadResponse(updated=await chat.mark_read(conversation_id))


@router.post("/conversations/{conversation_id}/refresh", response_model=RefreshResponse)
async def refresh(conversation_id: str, chat: ChatSession = Depends(get_chat_session)):
    """Run a catch-up poll immediately instead of waiting for the next round."""
    accepted = await chat.refresh(conversation_id)
    logger.debug(f"Manual refresh of {conversation_id} accepted {accepted} (interval {settings.POLL_INTERVAL_SECONDS}s)")
    return RefreshResponse(accepted=accepted)
