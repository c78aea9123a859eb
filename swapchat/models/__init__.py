"""Domain models and the wire-format layer."""

from .message import (
    Conversation,
    DeliverySource,
    DeliveryState,
    ExchangeParticipants,
    Message,
    MessageKind,
)
from .proposal import MeetingDetails, Proposal, ProposalAction, ProposalDraft, ProposalStatus, ProposalType
from .exchange import Exchange, ExchangeStatus, Validation, ValidationOutcome

__all__ = [
    "Conversation",
    "DeliverySource",
    "DeliveryState",
    "ExchangeParticipants",
    "Message",
    "MessageKind",
    "MeetingDetails",
    "Proposal",
    "ProposalAction",
    "ProposalDraft",
    "ProposalStatus",
    "ProposalType",
    "Exchange",
    "ExchangeStatus",
    "Validation",
    "ValidationOutcome",
]
