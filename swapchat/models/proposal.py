"""
Proposal domain models.

WHAT: Structured offers attached to a conversation
WHY: Proposal Engine transitions these through their lifecycle
HOW: Pydantic v2 models with enum-tagged type and status
"""

from enum import Enum
from datetime import date as DateValue, datetime, time as TimeValue

from pydantic import BaseModel, Field, field_validator, model_validator

from ..utils.clock import utc_now, ensure_utc


class ProposalType(str, Enum):
    PRICE = "price"
    EXCHANGE = "exchange"
    MEETING = "meeting"
    TERMS = "terms"
    OTHER = "other"


class ProposalStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    COUNTER = "counter"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        """Only pending proposals can still change."""
        return self != ProposalStatus.PENDING


class ProposalAction(str, Enum):
    """Actions that move a proposal out of pending."""
    ACCEPT = "accept"
    REJECT = "reject"
    COUNTER = "counter"
    CANCEL = "cancel"


class UserRef(BaseModel):
    """Lightweight reference to a marketplace user."""
    id: str
    name: str = ""
    avatar: str | None = None


class MeetingDetails(BaseModel):
    """Meeting arrangement supplied when accepting a proposal without one."""

    date: DateValue
    time: TimeValue
    place: str = Field(min_length=1, max_length=200)
    notes: str = Field(default="", max_length=1000)

    @field_validator("place")
    @classmethod
    def strip_place(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("meeting place is required")
        return v

    def date_text(self) -> str:
        return self.date.isoformat()

    def time_text(self) -> str:
        return self.time.strftime("%H:%M")


class ProposalDraft(BaseModel):
    """Fields supplied by the buyer when opening a proposal."""

    type: ProposalType
    description: str = Field(max_length=2000)
    proposed_price: float | None = None
    conditions: str | None = Field(default=None, max_length=2000)
    meeting_date: str | None = None
    meeting_place: str | None = Field(default=None, max_length=200)

    @model_validator(mode="after")
    def check_required_fields(self):
        """Description is mandatory, price proposals need a positive price."""
        if not self.description.strip():
            raise ValueError("description is required")
        if self.proposed_price is not None and self.proposed_price <= 0:
            raise ValueError("proposed_price must be positive")
        if self.type == ProposalType.PRICE and self.proposed_price is None:
            raise ValueError("price proposals require proposed_price")
        return self


class Proposal(BaseModel):
    """A proposal as known to the client."""

    id: str
    conversation_id: str
    type: ProposalType
    description: str
    proposed_price: float | None = None
    conditions: str | None = None
    meeting_date: str | None = None
    meeting_place: str | None = None
    status: ProposalStatus = ProposalStatus.PENDING
    created_at: datetime = Field(default_factory=utc_now)
    responded_at: datetime | None = None
    response: str | None = None
    proposer: UserRef
    receiver: UserRef
    exchange_id: str | None = None

    @field_validator("created_at", "responded_at")
    @classmethod
    def normalize_times(cls, v: datetime | None) -> datetime | None:
        return ensure_utc(v) if v is not None else None

    @property
    def has_meeting(self) -> bool:
        """True when both meeting date and place are already agreed."""
        return bool(self.meeting_date) and bool(self.meeting_place)
