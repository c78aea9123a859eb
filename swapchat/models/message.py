"""
Message and conversation domain models.

WHAT: Canonical message shape shared by every delivery source
WHY: Reconciler compares messages from optimistic, push, and poll sources
HOW: Pydantic v2 models with tagged metadata variants per message kind
"""

from enum import Enum
from typing import Annotated, Literal, Union
from datetime import datetime

from pydantic import BaseModel, Field, field_validator, model_validator

from ..utils.clock import utc_now, ensure_utc

SYSTEM_SENDER_ID = "system"
TEMP_ID_PREFIX = "tmp-"
SYSTEM_ID_PREFIX = "sys-"


class MessageKind(str, Enum):
    """Message content kinds."""
    TEXT = "text"
    IMAGE = "image"
    LOCATION = "location"
    FILE = "file"


class DeliveryState(str, Enum):
    """Where a message stands relative to the remote service."""
    PENDING = "pending"        # optimistic, awaiting canonical id
    CONFIRMED = "confirmed"    # carries a canonical id
    LOCAL = "local"            # synthetic, never sent to the remote service


class DeliverySource(str, Enum):
    """Producer that handed a message to the reconciler."""
    OPTIMISTIC = "optimistic"
    CONFIRMATION = "confirmation"
    PUSH = "push"
    POLL = "poll"
    INITIAL_LOAD = "initial_load"
    SYSTEM = "system"


class ImageMetadata(BaseModel):
    kind: Literal["image"] = "image"
    image_url: str = Field(min_length=1)


class FileMetadata(BaseModel):
    kind: Literal["file"] = "file"
    file_name: str = Field(min_length=1)
    file_size: int | None = Field(default=None, ge=0)
    file_url: str | None = None


class LocationMetadata(BaseModel):
    kind: Literal["location"] = "location"
    lat: float = Field(ge=-90.0, le=90.0)
    lng: float = Field(ge=-180.0, le=180.0)


MessageMetadata = Annotated[
    Union[ImageMetadata, FileMetadata, LocationMetadata],
    Field(discriminator="kind")
]


class Message(BaseModel):
    """A single chat message, canonical or temporary."""

    id: str = Field(min_length=1)
    conversation_id: str
    sender_id: str
    content: str | None = Field(default=None, max_length=5000)
    kind: MessageKind = MessageKind.TEXT
    metadata: MessageMetadata | None = None
    sent_at: datetime = Field(default_factory=utc_now)
    is_read: bool = False
    delivery: DeliveryState = DeliveryState.CONFIRMED
    client_ref: str | None = None
    local_seq: int = Field(default=0, ge=0)

    @field_validator("sent_at")
    @classmethod
    def normalize_sent_at(cls, v: datetime) -> datetime:
        """Store every timestamp as aware UTC."""
        return ensure_utc(v)

    @model_validator(mode="after")
    def check_metadata_kind(self):
        """Metadata variant must match the message kind."""
        if self.metadata is not None and self.metadata.kind != self.kind.value:
            raise ValueError(
                f"metadata kind '{self.metadata.kind}' does not match message kind '{self.kind.value}'"
            )
        if self.kind == MessageKind.TEXT and not (self.content or "").strip():
            raise ValueError("text messages require content")
        return self

    @property
    def canonical_id(self) -> int | None:
        """Integer id assigned by the remote service, None for client-only ids."""
        if self.id.isdecimal():
            return int(self.id)
        return None

    @property
    def is_pending(self) -> bool:
        return self.delivery == DeliveryState.PENDING

    @property
    def is_system(self) -> bool:
        return self.sender_id == SYSTEM_SENDER_ID

    def preview(self) -> str:
        """Short text used for the conversation's last-message cache."""
        if self.content:
            return self.content
        return self.kind.value


class ExchangeParticipants(BaseModel):
    """Initiating (buyer) and receiving (seller) participants of a conversation."""
    proposer_id: str
    receiver_id: str

    @model_validator(mode="after")
    def check_distinct(self):
        if self.proposer_id == self.receiver_id:
            raise ValueError("proposer and receiver must be different users")
        return self


class Conversation(BaseModel):
    """Snapshot of one chat thread as held in memory by the client."""

    id: str
    participants: tuple[str, str]
    exchange_participants: ExchangeParticipants
    product_ids: list[str] = Field(default_factory=list)
    last_message: str | None = None
    last_message_time: datetime | None = None
    unread_count: int = Field(default=0, ge=0)
    messages: list[Message] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_participants(self):
        """Exactly two distinct participants, matching the exchange participants."""
        if self.participants[0] == self.participants[1]:
            raise ValueError("a conversation needs two distinct participants")
        expected = {self.exchange_participants.proposer_id, self.exchange_participants.receiver_id}
        if set(self.participants) != expected:
            raise ValueError("exchange participants must be the conversation participants")
        return self

    def other_participant(self, user_id: str) -> str | None:
        """Return the counterpart of user_id, or None if user_id is not a participant."""
        if user_id == self.participants[0]:
            return self.participants[1]
        if user_id == self.participants[1]:
            return self.participants[0]
        return None
