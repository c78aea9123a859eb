"""
Pydantic API schemas for the HTTP surface.

WHAT: Request and response models for FastAPI
WHY: Type-safe validation and serialization for clients of the engine
HOW: Pydantic v2 models; engine-level rules (roles, drafts, meetings) stay
     in the engine so they apply to every caller, not just HTTP
"""

from typing import Optional, List, Dict, Literal, Any
from pydantic import BaseModel, Field, model_validator

from .message import Conversation, Message
from .proposal import Proposal
from .exchange import Exchange


# ========== Conversations ==========

class CreateConversationRequest(BaseModel):
    """Open a thread in local mode (the remote service owns this otherwise)."""
    proposer_id: str = Field(..., min_length=1, max_length=100, description="Initiating user (buyer)")
    receiver_id: str = Field(..., min_length=1, max_length=100, description="Receiving user (seller)")
    product_titles: List[str] = Field(default_factory=list, description="Products under negotiation")

    @model_validator(mode="after")
    def validate_distinct(self):
        if self.proposer_id == self.receiver_id:
            raise ValueError("proposer_id and receiver_id must be different")
        return self


class CreateConversationResponse(BaseModel):
    conversation_id: str


class ConversationStateResponse(BaseModel):
    """Everything a client needs to render one conversation."""
    conversation: Conversation
    role: Literal["buyer", "seller", "none"]
    permissions: Dict[str, bool]
    proposals: List[Proposal]
    exchanges: List[Exchange]
    draft: Optional[str] = None


# ========== Messages ==========

class SendMessageRequest(BaseModel):
    content: Optional[str] = Field(None, max_length=5000, description="Message text")
    kind: Literal["text", "location"] = "text"
    lat: Optional[float] = Field(None, ge=-90.0, le=90.0)
    lng: Optional[float] = Field(None, ge=-180.0, le=180.0)

    @model_validator(mode="after")
    def validate_location(self):
        """Location messages need coordinates."""
        if self.kind == "location" and (self.lat is None or self.lng is None):
            raise ValueError("location messages require lat and lng")
        return self


class SendAttachmentRequest(BaseModel):
    filename: str = Field(..., min_length=1, max_length=255)
    content_type: str = Field(..., min_length=1, max_length=100)
    data_base64: str = Field(..., min_length=1, description="Base64-encoded file content")
    caption: Optional[str] = Field(None, max_length=5000)


class SendMessageResponse(BaseModel):
    status: Literal["sent", "failed", "cancelled"]
    temp_id: Optional[str] = None
    message: Optional[Message] = None
    error: Optional[Dict[str, Any]] = None
    draft: Optional[str] = None


class MarkReadResponse(BaseModel):
    updated: int


class RefreshResponse(BaseModel):
    accepted: int


# ========== Proposals ==========

class CreateProposalRequest(BaseModel):
    type: str = Field(..., description="price, exchange, meeting, terms or other")
    description: str = Field(default="", max_length=2000)
    proposed_price: Optional[float] = None
    conditions: Optional[str] = Field(None, max_length=2000)
    meeting_date: Optional[str] = None
    meeting_place: Optional[str] = Field(None, max_length=200)


class MeetingRequest(BaseModel):
    date: str = Field(..., description="YYYY-MM-DD")
    time: str = Field(..., description="HH:MM")
    place: str = Field(..., max_length=200)
    notes: str = Field(default="", max_length=1000)


class RespondProposalRequest(BaseModel):
    action: Literal["accept", "reject", "counter"]
    reason: Optional[str] = Field(None, max_length=2000)
    meeting: Optional[MeetingRequest] = None


class RespondProposalResponse(BaseModel):
    proposal: Proposal
    exchange: Optional[Exchange] = None


class ValidateExchangeRequest(BaseModel):
    is_successful: bool
    comment: Optional[str] = Field(None, max_length=2000)
    rating: Optional[int] = Field(None, ge=1, le=5)
    aspects: Optional[str] = Field(None, max_length=2000)


class ValidateExchangeResponse(BaseModel):
    exchange: Exchange
    already_validated: bool
    resolved: bool
