"""
SSE streaming endpoint.

WHAT: Server-Sent Events stream of the caller's open conversation
WHY: Clients render the thread live without polling this API
HOW: EventSourceResponse fed by a store listener, with heartbeats
"""

from fastapi import APIRouter, Depends
from sse_starlette.sse import EventSourceResponse
from typing import AsyncIterator
import asyncio
import json
from datetime import datetime

from ..deps import get_chat_session
from ....core.chat_session import ChatSession
from ....core.config import settings
from ....models.message import Conversation
from ....utils.exceptions import Conflict
from ....utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()


def _event(event_type: str, conversation: Conversation) -> dict:
    data = conversation.model_dump(mode="json")
    data["type"] = event_type
    data["timestamp"] = datetime.now().isoformat()
    return {"event": event_type, "data": json.dumps(data)}


async def conversation_event_generator(chat: ChatSession, conversation_id: str) -> AsyncIterator[dict]:
    """
    Generate SSE events for one open conversation.

    Yields a snapshot first, then a messages event after every change.
    The stream ends when the caller opens a different conversation.
    """
    logger.info(f"Starting SSE stream for conversation {conversation_id}")

    try:
        snapshot = await chat.snapshot(conversation_id)
    except Conflict as e:
        yield {
            "event": "error",
            "data": json.dumps({
                "type": "error",
                "error": e.code,
                "message": e.message,
                "timestamp": datetime.now().isoformat()
            })
        }
        return

    queue: asyncio.Queue[Conversation] = asyncio.Queue()
    listener = queue.put_nowait
    chat.add_listener(listener)

    try:
        yield _event("snapshot", snapshot)
        while True:
            try:
                conversation = await asyncio.wait_for(queue.get(), timeout=settings.SSE_HEARTBEAT_INTERVAL)
            except asyncio.TimeoutError:
                if chat.conversation_id != conversation_id:
                    break
                yield {
                    "event": "heartbeat",
                    "data": json.dumps({
                        "type": "heartbeat",
                        "timestamp": datetime.now().isoformat()
                    })
                }
                continue

            if conversation.id != conversation_id:
                logger.info(f"Conversation {conversation_id} closed, ending SSE stream")
                break
            yield _event("messages", conversation)
    finally:
        chat.remove_listener(listener)
        logger.info(f"SSE stream closed for conversation {conversation_id}")


@router.get("/conversations/{conversation_id}/stream")
async def stream_conversation(conversation_id: str, chat: ChatSession = Depends(get_chat_session)):
    """
    Stream conversation updates via Server-Sent Events.

    Event types: snapshot, messages, heartbeat, error.
    """
    return EventSourceResponse(conversation_event_generator(chat, conversation_id))
