"""
HTTP data service client.

WHAT: DataService implementation talking to the marketplace REST API
WHY: Production deployments persist chat state in the remote service
HOW: HTTPX async client, bearer token per call, exponential backoff on
     idempotent reads, status codes mapped onto the engine's error taxonomy
"""

import asyncio
import json
from typing import Any

import httpx

from .data_service import RawPayload, ServiceStatus
from ..core.config import settings
from ..core.identity import SessionContext
from ..utils.exceptions import (
    Conflict,
    Forbidden,
    NetworkFailure,
    NetworkTimeout,
    NotFound,
    SwapChatException,
    Unauthorized,
    ValidationError,
)
from ..utils.logger import get_logger

logger = get_logger(__name__)

# Envelope keys used by the remote API around lists and single objects
LIST_KEYS = ("items", "messages", "mensajes", "proposals", "propuestas", "data")
OBJECT_KEYS = ("message", "mensaje", "proposal", "propuesta", "exchange", "intercambio", "chat", "data")


def _error_text(response: httpx.Response) -> str:
    try:
        body = response.json()
    except (json.JSONDecodeError, ValueError):
        return response.text or response.reason_phrase
    if isinstance(body, dict):
        return str(body.get("error") or body.get("message") or body)
    return str(body)


def map_status_error(response: httpx.Response, resource: str, resource_id: Any) -> SwapChatException:
    """Translate a non-2xx response into the engine's error taxonomy."""
    status = response.status_code
    text = _error_text(response)
    if status == 401:
        return Unauthorized(text or "Session missing or expired")
    if status == 403:
        return Forbidden(resource, text)
    if status == 404:
        return NotFound(resource, resource_id)
    if status == 409:
        return Conflict(text)
    if status in (400, 422):
        return ValidationError(text)
    return NetworkFailure(f"Remote service error {status}: {text}", status_code=status)


def unwrap_list(body: Any) -> list[RawPayload]:
    if isinstance(body, list):
        return body
    if isinstance(body, dict):
        for key in LIST_KEYS:
            if isinstance(body.get(key), list):
                return body[key]
    raise ValidationError("Expected a list payload from remote service")


def unwrap_object(body: Any) -> RawPayload:
    if isinstance(body, dict):
        for key in OBJECT_KEYS:
            if isinstance(body.get(key), dict):
                return body[key]
        return body
    raise ValidationError("Expected an object payload from remote service")


class HttpDataService:
    """Remote data service client with retry logic."""

    def __init__(
        self,
        base_url: str | None = None,
        *,
        timeout: float | None = None,
        max_retries: int | None = None,
        retry_delay: float | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = (base_url or settings.DATA_SERVICE_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.LOAD_TIMEOUT_SECONDS
        self.max_retries = max_retries or settings.MAX_RETRIES
        self.retry_delay = settings.RETRY_DELAY if retry_delay is None else retry_delay

        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout),
            limits=httpx.Limits(max_keepalive_connections=10, max_connections=20),
        )

    async def aclose(self) -> None:
        await self.client.aclose()

    def _headers(self, session: SessionContext) -> dict[str, str]:
        return {"Authorization": f"Bearer {session.auth_token}", "Accept": "application/json"}

    async def _request(
        self,
        method: str,
        path: str,
        session: SessionContext | None,
        *,
        resource: str,
        resource_id: Any = None,
        retry: bool = False,
        **kwargs,
    ) -> Any:
        """
        Issue one request, retrying idempotent reads.

        Raises:
            NetworkTimeout: Request timed out on every attempt
            NetworkFailure: Service unreachable or 5xx on every attempt
            Unauthorized, Forbidden, NotFound, Conflict, ValidationError: 4xx responses
        """
        url = f"{self.base_url}{path}"
        headers = self._headers(session) if session else {}
        attempts = self.max_retries if retry else 1

        for attempt in range(attempts):
            try:
                response = await self.client.request(method, url, headers=headers, **kwargs)
                response.raise_for_status()
                if not response.content:
                    return None
                return response.json()

            except httpx.TimeoutException as e:
                logger.warning(f"{method} {path} timed out (attempt {attempt + 1}/{attempts})")
                if attempt == attempts - 1:
                    raise NetworkTimeout(f"{method} {path}", self.timeout) from e
                await asyncio.sleep(self.retry_delay * (2 ** attempt))

            except httpx.ConnectError as e:
                logger.error(f"Remote service not reachable (attempt {attempt + 1}/{attempts})")
                if attempt == attempts - 1:
                    raise NetworkFailure(f"Remote service is not reachable: {e}") from e
                await asyncio.sleep(self.retry_delay * (2 ** attempt))

            except httpx.HTTPStatusError as e:
                if e.response.status_code >= 500 and attempt < attempts - 1:
                    logger.error(
                        f"Remote server error {e.response.status_code} (attempt {attempt + 1}/{attempts})"
                    )
                    await asyncio.sleep(self.retry_delay * (2 ** attempt))
                    continue
                raise map_status_error(e.response, resource, resource_id) from e

            except json.JSONDecodeError as e:
                logger.error(f"Invalid JSON from {method} {path}: {e}")
                raise NetworkFailure(f"Invalid response format: {e}") from e

            except httpx.HTTPError as e:
                logger.error(f"{method} {path} failed: {e}")
                raise NetworkFailure(f"Request failed: {e}") from e

    # ========== Health ==========

    async def ping(self) -> ServiceStatus:
        try:
            response = await self.client.get(f"{self.base_url}/health", timeout=5.0)
            response.raise_for_status()
            return ServiceStatus(available=True, mode="http", base_url=self.base_url)
        except httpx.TimeoutException:
            logger.warning("Remote data service ping timed out")
            return ServiceStatus(available=False, mode="http", base_url=self.base_url, error="Connection timeout")
        except httpx.ConnectError:
            logger.warning("Remote data service not reachable")
            return ServiceStatus(available=False, mode="http", base_url=self.base_url, error="Connection refused")
        except httpx.HTTPError as e:
            logger.error(f"Remote data service ping failed: {e}")
            return ServiceStatus(available=False, mode="http", base_url=self.base_url, error=str(e))

    # ========== Conversations and messages ==========

    async def get_conversation(self, session: SessionContext, conversation_id: str) -> RawPayload:
        body = await self._request(
            "GET", f"/chat/{conversation_id}/info", session,
            resource="conversation", resource_id=conversation_id, retry=True,
        )
        return unwrap_object(body)

    async def list_messages(
        self,
        session: SessionContext,
        conversation_id: str,
        *,
        since_id: int | None = None,
        limit: int = 50,
    ) -> list[RawPayload]:
        params: dict[str, Any] = {"limit": limit}
        if since_id is not None:
            params["since"] = since_id
        body = await self._request(
            "GET", f"/chat/{conversation_id}/messages", session,
            resource="conversation", resource_id=conversation_id, retry=True, params=params,
        )
        return unwrap_list(body)

    async def send_message(self, session: SessionContext, conversation_id: str, payload: RawPayload) -> RawPayload:
        body = await self._request(
            "POST", f"/chat/{conversation_id}/send", session,
            resource="conversation", resource_id=conversation_id, json=payload,
        )
        return unwrap_object(body)

    async def mark_read(self, session: SessionContext, conversation_id: str) -> int:
        body = await self._request(
            "POST", f"/chat/{conversation_id}/mark-read", session,
            resource="conversation", resource_id=conversation_id,
        )
        if isinstance(body, dict):
            return int(body.get("updated") or body.get("count") or 0)
        return 0

    # ========== Proposals ==========

    async def list_proposals(self, session: SessionContext, conversation_id: str) -> list[RawPayload]:
        body = await self._request(
            "GET", f"/chat/{conversation_id}/proposals", session,
            resource="conversation", resource_id=conversation_id, retry=True,
        )
        return unwrap_list(body)

    async def create_proposal(self, session: SessionContext, conversation_id: str, payload: RawPayload) -> RawPayload:
        body = await self._request(
            "POST", f"/chat/{conversation_id}/proposals", session,
            resource="conversation", resource_id=conversation_id, json=payload,
        )
        return unwrap_object(body)

    async def respond_proposal(
        self, session: SessionContext, conversation_id: str, proposal_id: str, payload: RawPayload
    ) -> RawPayload:
        body = await self._request(
            "PATCH", f"/chat/{conversation_id}/proposals/{proposal_id}/respond", session,
            resource="proposal", resource_id=proposal_id, json=payload,
        )
        if not isinstance(body, dict):
            raise ValidationError("Expected an object payload from remote service")
        proposal = body.get("proposal") or body.get("propuesta") or body.get("data") or body
        exchange = body.get("exchange") or body.get("intercambio")
        return {"proposal": proposal, "exchange": exchange}

    async def cancel_proposal(self, session: SessionContext, conversation_id: str, proposal_id: str) -> RawPayload:
        body = await self._request(
            "POST", f"/chat/{conversation_id}/proposals/{proposal_id}/cancel", session,
            resource="proposal", resource_id=proposal_id,
        )
        return unwrap_object(body)

    # ========== Exchanges ==========

    async def get_exchange(self, session: SessionContext, exchange_id: str) -> RawPayload:
        body = await self._request(
            "GET", f"/intercambios/{exchange_id}", session,
            resource="exchange", resource_id=exchange_id, retry=True,
        )
        return unwrap_object(body)

    async def submit_validation(self, session: SessionContext, exchange_id: str, payload: RawPayload) -> RawPayload:
        body = await self._request(
            "POST", f"/intercambios/{exchange_id}/validate", session,
            resource="exchange", resource_id=exchange_id, json=payload,
        )
        return unwrap_object(body)

    async def release_products(self, session: SessionContext, exchange_id: str) -> None:
        await self._request(
            "POST", f"/intercambios/{exchange_id}/release", session,
            resource="exchange", resource_id=exchange_id,
        )

    # ========== Attachments ==========

    async def upload_attachment(
        self, session: SessionContext, filename: str, data: bytes, content_type: str
    ) -> str:
        body = await self._request(
            "POST", "/chat/upload-image", session,
            resource="attachment", resource_id=filename,
            files={"file": (filename, data, content_type)},
        )
        payload = unwrap_object(body) if body is not None else {}
        url = payload.get("url") or payload.get("imageUrl") or payload.get("publicUrl")
        if not url:
            raise NetworkFailure("Upload response did not include a URL")
        return url
