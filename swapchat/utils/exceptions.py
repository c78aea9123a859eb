"""
Business exceptions for the sync and negotiation engine.

WHAT: Error taxonomy shared by adapters, engine, and HTTP layer
WHY: Callers branch on error class, HTTP layer maps class to status code
HOW: Base exception with code/details, one subclass per failure category
"""

from typing import Optional, List, Dict, Any


class SwapChatException(Exception):
    """Base class for engine exceptions."""

    def __init__(self, message: str, code: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details


class NetworkTimeout(SwapChatException):
    """A remote call exceeded its deadline."""

    def __init__(self, operation: str, timeout: float):
        super().__init__(
            message=f"{operation} timed out after {timeout:g}s",
            code="NETWORK_TIMEOUT",
            details={"operation": operation, "timeout": timeout}
        )


class NetworkFailure(SwapChatException):
    """Remote service unreachable or returned a server error."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(
            message=message,
            code="NETWORK_FAILURE",
            details={"status_code": status_code} if status_code is not None else None
        )


class Unauthorized(SwapChatException):
    """Session missing or expired; caller must re-authenticate."""

    def __init__(self, message: str = "Session missing or expired"):
        super().__init__(
            message=message,
            code="UNAUTHORIZED",
            details={"action": "REAUTHENTICATE"}
        )


class Forbidden(SwapChatException):
    """Role-gated action attempted by the wrong party."""

    def __init__(self, action: str, reason: str):
        super().__init__(
            message=f"Not allowed to {action}: {reason}",
            code="FORBIDDEN",
            details={"action": action, "reason": reason}
        )


class Conflict(SwapChatException):
    """Action conflicts with current proposal or exchange state."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, code="CONFLICT", details=details)


class ValidationError(SwapChatException):
    """Input rejected before any network request is issued."""

    def __init__(self, message: str, field_errors: Optional[List[Dict[str, str]]] = None):
        super().__init__(
            message=message,
            code="VALIDATION_ERROR",
            details={"field_errors": field_errors} if field_errors else None
        )


class NotFound(SwapChatException):
    """Conversation, proposal, or exchange id unknown."""

    def __init__(self, resource: str, resource_id: Any):
        super().__init__(
            message=f"{resource.capitalize()} not found: {resource_id}",
            code=f"{resource.upper()}_NOT_FOUND",
            details={f"{resource}_id": str(resource_id)}
        )
        self.resource = resource
