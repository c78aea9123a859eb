"""Request-scoped dependencies shared by v1 endpoints."""

from fastapi import Header

from ...core.chat_session import ChatSession, chat_sessions
from ...utils.exceptions import Unauthorized


async def get_chat_session(
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
) -> ChatSession:
    """
    Resolve the caller's chat session from Authorization and X-User-Id.

    Raises:
        Unauthorized: Either header missing or not a bearer token
    """
    if not authorization or not authorization.lower().startswith("bearer "):
        raise Unauthorized("Missing bearer token")
    token = authorization[7:].strip()
    user_id = (x_user_id or "").strip()
    if not token or not user_id:
        raise Unauthorized("Missing user identity")
    return chat_sessions.get(user_id, token)
