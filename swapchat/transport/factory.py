"""
Data service factory with singleton pattern.

WHAT: Factory to get the configured data service and push feed
WHY: Centralize transport selection and avoid multiple clients
HOW: Read DATA_SERVICE_MODE from config, cache singletons, log selection
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .data_service import DataService
    from .push import PushFeed
    from ..core.identity import IdentityProvider

# Singleton instance
_service_instance: "DataService | None" = None


def get_data_service() -> "DataService":
    """
    Get the configured data service singleton.

    Returns:
        DataService instance based on settings.DATA_SERVICE_MODE

    Raises:
        ValueError: If the mode is unknown
    """
    global _service_instance

    if _service_instance is None:
        # Import here to avoid circular dependencies
        from ..core.config import settings
        from ..utils.logger import get_logger

        logger = get_logger(__name__)
        mode = settings.DATA_SERVICE_MODE

        if mode == "local":
            from .local_service import LocalDataService
            _service_instance = LocalDataService(settings.DATABASE_URL)
        elif mode == "http":
            from .http_service import HttpDataService
            _service_instance = HttpDataService(settings.DATA_SERVICE_BASE_URL)
        else:
            raise ValueError(f"Unknown data service mode: {mode}")

        logger.info(f"Data service initialized: {mode}")

    return _service_instance


def get_push_feed(identity: "IdentityProvider") -> "PushFeed":
    """
    Push feed matching the configured data service.

    Local mode shares the local service's in-process hub; http mode opens
    an SSE stream authenticated through identity.
    """
    service = get_data_service()
    hub = getattr(service, "hub", None)
    if hub is not None:
        return hub

    from .push import SsePushFeed
    return SsePushFeed(identity)


def set_data_service(service: "DataService | None") -> None:
    """Install a specific data service (tests, embedding applications)."""
    global _service_instance
    _service_instance = service


def reset_data_service() -> None:
    """Reset the data service singleton (useful for testing)."""
    set_data_service(None)
