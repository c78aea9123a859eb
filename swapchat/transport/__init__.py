"""Remote data service contract, implementations, and push transports."""

from .data_service import DataService, RawPayload, ServiceStatus
from .push import InMemoryPushHub, PushFeed, PushSubscription, SsePushFeed
from .factory import get_data_service, get_push_feed, reset_data_service, set_data_service

__all__ = [
    "DataService",
    "RawPayload",
    "ServiceStatus",
    "PushFeed",
    "PushSubscription",
    "InMemoryPushHub",
    "SsePushFeed",
    "get_data_service",
    "get_push_feed",
    "set_data_service",
    "reset_data_service",
]
