"""
Session and identity context.

WHAT: Who the engine acts for, and with which credential
WHY: Every remote call carries the user's token; role checks need the id
HOW: IdentityProvider protocol queried per operation, never cached
"""

from dataclasses import dataclass
from typing import Protocol

from ..utils.exceptions import Unauthorized


@dataclass(frozen=True)
class SessionContext:
    """Authenticated user for the duration of one operation."""
    user_id: str
    auth_token: str


class IdentityProvider(Protocol):
    """Source of the current session; implementations may refresh tokens."""

    async def current(self) -> SessionContext:
        """Return the active session or raise Unauthorized."""
        ...


class StaticIdentityProvider:
    """Identity fixed at construction time (HTTP request scope, tests)."""

    def __init__(self, user_id: str | None, auth_token: str | None):
        self._user_id = (user_id or "").strip()
        self._auth_token = (auth_token or "").strip()

    async def current(self) -> SessionContext:
        if not self._user_id or not self._auth_token:
            raise Unauthorized("No active session")
        return SessionContext(user_id=self._user_id, auth_token=self._auth_token)


class MutableIdentityProvider(StaticIdentityProvider):
    """Identity that can be replaced or cleared (token refresh, logout)."""

    def update(self, user_id: str | None, auth_token: str | None) -> None:
        self._user_id = (user_id or "").strip()
        self._auth_token = (auth_token or "").strip()

    def clear(self) -> None:
        self.update(None, None)
