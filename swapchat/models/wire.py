"""
Wire coercion for remote data service payloads.

WHAT: Parse untrusted message/proposal/exchange dicts into domain models
WHY: Remote payloads are loosely shaped and use two naming schemes
HOW: Pydantic payload models with alias choices, then explicit mapping
     into tagged domain variants; serializers produce the wire shape back
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Type, TypeVar

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from .message import (
    Conversation,
    FileMetadata,
    ImageMetadata,
    LocationMetadata,
    Message,
    MessageKind,
)
from .proposal import Proposal, ProposalStatus, ProposalType, UserRef
from .exchange import Exchange, ExchangeStatus, Validation
from ..utils.exceptions import ValidationError
from ..utils.logger import get_logger

logger = get_logger(__name__)

PayloadT = TypeVar("PayloadT", bound=BaseModel)

KIND_ALIASES: Dict[str, MessageKind] = {
    "text": MessageKind.TEXT,
    "texto": MessageKind.TEXT,
    "image": MessageKind.IMAGE,
    "imagen": MessageKind.IMAGE,
    "location": MessageKind.LOCATION,
    "ubicacion": MessageKind.LOCATION,
    "file": MessageKind.FILE,
    "archivo": MessageKind.FILE,
}

PROPOSAL_TYPE_ALIASES: Dict[str, ProposalType] = {
    "price": ProposalType.PRICE,
    "precio": ProposalType.PRICE,
    "exchange": ProposalType.EXCHANGE,
    "intercambio": ProposalType.EXCHANGE,
    "meeting": ProposalType.MEETING,
    "encuentro": ProposalType.MEETING,
    "terms": ProposalType.TERMS,
    "condiciones": ProposalType.TERMS,
    "other": ProposalType.OTHER,
    "otro": ProposalType.OTHER,
}

PROPOSAL_STATUS_ALIASES: Dict[str, ProposalStatus] = {
    "pending": ProposalStatus.PENDING,
    "pendiente": ProposalStatus.PENDING,
    "accepted": ProposalStatus.ACCEPTED,
    "aceptada": ProposalStatus.ACCEPTED,
    "pendiente_validacion": ProposalStatus.ACCEPTED,
    "rejected": ProposalStatus.REJECTED,
    "rechazada": ProposalStatus.REJECTED,
    "counter": ProposalStatus.COUNTER,
    "contrapropuesta": ProposalStatus.COUNTER,
    "cancelled": ProposalStatus.CANCELLED,
    "cancelada": ProposalStatus.CANCELLED,
}

# status -> (status, needs_review)
EXCHANGE_STATUS_ALIASES: Dict[str, tuple[ExchangeStatus, bool]] = {
    "pending_validation": (ExchangeStatus.PENDING_VALIDATION, False),
    "pendiente_validacion": (ExchangeStatus.PENDING_VALIDATION, False),
    "en_progreso": (ExchangeStatus.PENDING_VALIDATION, False),
    "completed": (ExchangeStatus.COMPLETED, False),
    "completado": (ExchangeStatus.COMPLETED, False),
    "failed": (ExchangeStatus.FAILED, False),
    "fallido": (ExchangeStatus.FAILED, False),
    "pendiente_revision": (ExchangeStatus.FAILED, True),
}


def _coerce_id(v: Any) -> Any:
    """Accept ints or non-empty strings as identifiers."""
    if v is None:
        return v
    if isinstance(v, bool):
        raise ValueError("identifier cannot be a boolean")
    if isinstance(v, int):
        return str(v)
    if isinstance(v, float) and v.is_integer():
        return str(int(v))
    if isinstance(v, str):
        v = v.strip()
        if not v:
            raise ValueError("identifier cannot be empty")
        return v
    raise ValueError(f"unsupported identifier type: {type(v).__name__}")


def _lookup(aliases: Dict[str, Any], raw: Any, what: str) -> Any:
    key = str(raw or "").strip().lower()
    if key not in aliases:
        raise ValidationError(f"Unknown {what}: {raw!r}", [{"field": what, "error": "unknown value"}])
    return aliases[key]


def _validate(model: Type[PayloadT], raw: Any, what: str) -> PayloadT:
    """Validate a raw payload, translating pydantic errors into the engine taxonomy."""
    if not isinstance(raw, dict):
        raise ValidationError(f"Malformed {what} payload: expected object, got {type(raw).__name__}")
    try:
        return model.model_validate(raw)
    except PydanticValidationError as e:
        field_errors = [
            {"field": ".".join(str(p) for p in err.get("loc", ())), "error": err.get("msg", "")}
            for err in e.errors()
        ]
        raise ValidationError(f"Malformed {what} payload", field_errors) from e


def _build(model: Type[PayloadT], what: str, **fields: Any) -> PayloadT:
    """Construct a domain model, translating pydantic errors into the engine taxonomy."""
    try:
        return model(**fields)
    except PydanticValidationError as e:
        field_errors = [
            {"field": ".".join(str(p) for p in err.get("loc", ())), "error": err.get("msg", "")}
            for err in e.errors()
        ]
        raise ValidationError(f"Invalid {what}", field_errors) from e


# ========== Payload models ==========

class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class MessagePayload(_Payload):
    id: str = Field(validation_alias=AliasChoices("id", "mensaje_id", "messageId"))
    sender_id: str = Field(validation_alias=AliasChoices("senderId", "usuario_id", "sender_id"))
    conversation_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("conversationId", "chatId", "chat_id")
    )
    content: Optional[str] = Field(default=None, validation_alias=AliasChoices("content", "contenido"))
    sent_at: Optional[datetime] = Field(
        default=None, validation_alias=AliasChoices("sentAt", "fecha_envio", "timestamp")
    )
    kind: Optional[str] = Field(default="text", validation_alias=AliasChoices("kind", "tipo", "type"))
    attachment_url: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("attachmentUrl", "archivo_url", "imageUrl")
    )
    is_read: bool = Field(default=False, validation_alias=AliasChoices("isRead", "leido"))
    client_ref: Optional[str] = Field(default=None, validation_alias=AliasChoices("clientRef", "client_ref"))
    metadata: Optional[Dict[str, Any]] = None

    @field_validator("id", "sender_id", "conversation_id", mode="before")
    @classmethod
    def coerce_ids(cls, v):
        return _coerce_id(v)

    @field_validator("is_read", mode="before")
    @classmethod
    def none_is_unread(cls, v):
        return False if v is None else v


class UserPayload(_Payload):
    id: str = Field(validation_alias=AliasChoices("id", "user_id", "userId"))
    name: str = Field(default="", validation_alias=AliasChoices("name", "nombre"))
    avatar: Optional[str] = Field(default=None, validation_alias=AliasChoices("avatar", "foto_perfil"))

    @field_validator("id", mode="before")
    @classmethod
    def coerce_ids(cls, v):
        return _coerce_id(v)

    @field_validator("name", mode="before")
    @classmethod
    def none_is_blank(cls, v):
        return "" if v is None else v


class ProposalPayload(_Payload):
    id: str = Field(validation_alias=AliasChoices("id", "propuesta_id"))
    conversation_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("conversationId", "chatId", "chat_id")
    )
    type: str = Field(validation_alias=AliasChoices("type", "tipo_propuesta"))
    description: str = Field(default="", validation_alias=AliasChoices("description", "descripcion"))
    proposed_price: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("proposedPrice", "precio_propuesto")
    )
    conditions: Optional[str] = Field(default=None, validation_alias=AliasChoices("conditions", "condiciones"))
    meeting_date: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("meetingDate", "fecha_encuentro")
    )
    meeting_place: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("meetingPlace", "lugar_encuentro")
    )
    status: str = Field(default="pending", validation_alias=AliasChoices("status", "estado"))
    proposer_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("proposerId", "usuario_propone_id")
    )
    receiver_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("receiverId", "usuario_recibe_id")
    )
    proposer: Optional[UserPayload] = None
    receiver: Optional[UserPayload] = None
    created_at: Optional[datetime] = Field(
        default=None, validation_alias=AliasChoices("createdAt", "fecha_creacion")
    )
    responded_at: Optional[datetime] = Field(
        default=None, validation_alias=AliasChoices("respondedAt", "fecha_respuesta")
    )
    response: Optional[str] = Field(default=None, validation_alias=AliasChoices("response", "respuesta"))
    exchange_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("exchangeId", "intercambioId", "intercambio_id")
    )

    @field_validator("id", "conversation_id", "proposer_id", "receiver_id", "exchange_id", mode="before")
    @classmethod
    def coerce_ids(cls, v):
        return _coerce_id(v)

    @field_validator("meeting_date", mode="before")
    @classmethod
    def date_to_text(cls, v):
        if v is None or isinstance(v, str):
            return v
        return v.isoformat() if hasattr(v, "isoformat") else str(v)


class ValidationPayload(_Payload):
    user_id: str = Field(validation_alias=AliasChoices("userId", "usuario_id", "user_id"))
    is_successful: bool = Field(validation_alias=AliasChoices("isSuccessful", "es_exitoso", "isValid"))
    validated_at: Optional[datetime] = Field(
        default=None, validation_alias=AliasChoices("validatedAt", "fecha_validacion")
    )
    comment: Optional[str] = Field(default=None, validation_alias=AliasChoices("comment", "comentario"))
    rating: Optional[int] = Field(default=None, validation_alias=AliasChoices("rating", "calificacion"))
    aspects: Optional[str] = Field(default=None, validation_alias=AliasChoices("aspects", "aspectos"))

    @field_validator("user_id", mode="before")
    @classmethod
    def coerce_ids(cls, v):
        return _coerce_id(v)


class ExchangePayload(_Payload):
    id: str = Field(validation_alias=AliasChoices("id", "intercambio_id", "exchangeId"))
    conversation_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("conversationId", "chatId", "chat_id")
    )
    proposal_id: str = Field(validation_alias=AliasChoices("proposalId", "propuesta_id"))
    proposer_id: str = Field(validation_alias=AliasChoices("proposerId", "usuario_propone_id"))
    receiver_id: str = Field(validation_alias=AliasChoices("receiverId", "usuario_recibe_id"))
    status: str = Field(default="pending_validation", validation_alias=AliasChoices("status", "estado"))
    validations: List[Dict[str, Any]] = Field(default_factory=list)
    needs_review: bool = Field(default=False, validation_alias=AliasChoices("needsReview", "adminReview"))
    products_released: bool = Field(default=False, validation_alias=AliasChoices("productsReleased"))
    created_at: Optional[datetime] = Field(
        default=None, validation_alias=AliasChoices("createdAt", "fecha_creacion")
    )

    @field_validator("id", "conversation_id", "proposal_id", "proposer_id", "receiver_id", mode="before")
    @classmethod
    def coerce_ids(cls, v):
        return _coerce_id(v)


class ConversationPayload(_Payload):
    id: str = Field(validation_alias=AliasChoices("id", "chat_id", "chatId"))
    proposer_id: str = Field(validation_alias=AliasChoices("proposerId", "usuario_propone_id"))
    receiver_id: str = Field(validation_alias=AliasChoices("receiverId", "usuario_recibe_id"))
    product_ids: List[Any] = Field(default_factory=list, validation_alias=AliasChoices("productIds", "productos"))
    unread_count: int = Field(default=0, validation_alias=AliasChoices("unreadCount", "no_leidos"))

    @field_validator("id", "proposer_id", "receiver_id", mode="before")
    @classmethod
    def coerce_ids(cls, v):
        return _coerce_id(v)


# ========== Parsers ==========

def _message_metadata(payload: MessagePayload, kind: MessageKind):
    extra = payload.metadata or {}
    if kind == MessageKind.TEXT:
        return None
    if kind == MessageKind.IMAGE:
        url = payload.attachment_url or extra.get("imageUrl") or extra.get("image_url")
        return _build(ImageMetadata, "image metadata", image_url=url or "")
    if kind == MessageKind.FILE:
        return _build(
            FileMetadata,
            "file metadata",
            file_name=extra.get("fileName") or extra.get("file_name") or "",
            file_size=extra.get("fileSize") or extra.get("file_size"),
            file_url=payload.attachment_url or extra.get("fileUrl"),
        )
    coords = extra.get("coordinates") or extra
    return _build(LocationMetadata, "location metadata", lat=coords.get("lat"), lng=coords.get("lng"))


def parse_message(raw: Any, conversation_id: Optional[str] = None) -> Message:
    """
    Coerce a remote message payload into a canonical Message.

    Args:
        raw: Untrusted payload from push, poll, or send response
        conversation_id: Conversation the payload was fetched for (used when absent)

    Returns:
        Message with delivery state confirmed

    Raises:
        ValidationError: Payload is malformed or belongs to another conversation
    """
    payload = _validate(MessagePayload, raw, "message")
    if payload.id is None or not payload.id.isdecimal():
        raise ValidationError(f"Remote message id must be numeric, got {payload.id!r}")

    resolved_conversation = payload.conversation_id or conversation_id
    if resolved_conversation is None:
        raise ValidationError("Message payload has no conversation id")
    if conversation_id is not None and payload.conversation_id not in (None, conversation_id):
        raise ValidationError(
            f"Message {payload.id} belongs to conversation {payload.conversation_id}, not {conversation_id}"
        )

    kind_key = str(payload.kind or "text").strip().lower()
    kind = KIND_ALIASES.get(kind_key)
    if kind is None:
        logger.debug(f"Unknown message kind {payload.kind!r} for message {payload.id}, treating as text")
        kind = MessageKind.TEXT

    fields: Dict[str, Any] = {
        "id": payload.id,
        "conversation_id": resolved_conversation,
        "sender_id": payload.sender_id,
        "content": payload.content,
        "kind": kind,
        "metadata": _message_metadata(payload, kind),
        "is_read": payload.is_read,
        "client_ref": payload.client_ref,
    }
    if payload.sent_at is not None:
        fields["sent_at"] = payload.sent_at
    return _build(Message, "message", **fields)


def _user_ref(user: Optional[UserPayload], fallback_id: Optional[str], role: str) -> UserRef:
    if user is not None:
        return UserRef(id=user.id, name=user.name, avatar=user.avatar)
    if fallback_id is None:
        raise ValidationError(f"Proposal payload has no {role} id")
    return UserRef(id=fallback_id)


def parse_proposal(raw: Any, conversation_id: Optional[str] = None) -> Proposal:
    """Coerce a remote proposal payload into a Proposal."""
    payload = _validate(ProposalPayload, raw, "proposal")
    resolved_conversation = payload.conversation_id or conversation_id
    if resolved_conversation is None:
        raise ValidationError("Proposal payload has no conversation id")

    fields: Dict[str, Any] = {
        "id": payload.id,
        "conversation_id": resolved_conversation,
        "type": _lookup(PROPOSAL_TYPE_ALIASES, payload.type, "proposal type"),
        "description": payload.description,
        "proposed_price": payload.proposed_price,
        "conditions": payload.conditions,
        "meeting_date": payload.meeting_date,
        "meeting_place": payload.meeting_place,
        "status": _lookup(PROPOSAL_STATUS_ALIASES, payload.status, "proposal status"),
        "responded_at": payload.responded_at,
        "response": payload.response,
        "proposer": _user_ref(payload.proposer, payload.proposer_id, "proposer"),
        "receiver": _user_ref(payload.receiver, payload.receiver_id, "receiver"),
        "exchange_id": payload.exchange_id,
    }
    if payload.created_at is not None:
        fields["created_at"] = payload.created_at
    return _build(Proposal, "proposal", **fields)


def parse_validation(raw: Any) -> Validation:
    """Coerce a remote validation payload into a Validation."""
    payload = _validate(ValidationPayload, raw, "validation")
    fields: Dict[str, Any] = {
        "user_id": payload.user_id,
        "is_successful": payload.is_successful,
        "comment": payload.comment,
        "rating": payload.rating,
        "aspects": payload.aspects,
    }
    if payload.validated_at is not None:
        fields["validated_at"] = payload.validated_at
    return _build(Validation, "validation", **fields)


def parse_exchange(raw: Any, conversation_id: Optional[str] = None) -> Exchange:
    """Coerce a remote exchange payload (with nested validations) into an Exchange."""
    payload = _validate(ExchangePayload, raw, "exchange")
    resolved_conversation = payload.conversation_id or conversation_id
    if resolved_conversation is None:
        raise ValidationError("Exchange payload has no conversation id")
    status, review = _lookup(EXCHANGE_STATUS_ALIASES, payload.status, "exchange status")
    fields: Dict[str, Any] = {
        "id": payload.id,
        "conversation_id": resolved_conversation,
        "proposal_id": payload.proposal_id,
        "proposer_id": payload.proposer_id,
        "receiver_id": payload.receiver_id,
        "status": status,
        "validations": [parse_validation(v) for v in payload.validations],
        "needs_review": payload.needs_review or review,
        "products_released": payload.products_released,
    }
    if payload.created_at is not None:
        fields["created_at"] = payload.created_at
    return _build(Exchange, "exchange", **fields)


def parse_conversation(raw: Any) -> Conversation:
    """Coerce a remote conversation descriptor into an empty Conversation."""
    payload = _validate(ConversationPayload, raw, "conversation")
    return _build(
        Conversation,
        "conversation",
        id=payload.id,
        participants=(payload.proposer_id, payload.receiver_id),
        exchange_participants={"proposer_id": payload.proposer_id, "receiver_id": payload.receiver_id},
        product_ids=[str(p) for p in payload.product_ids],
        unread_count=max(payload.unread_count, 0),
    )


# ========== Serializers (wire shape) ==========

def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def message_to_wire(message: Message) -> Dict[str, Any]:
    """Serialize a Message using the remote service's field names."""
    data: Dict[str, Any] = {
        "id": message.id,
        "conversationId": message.conversation_id,
        "senderId": message.sender_id,
        "content": message.content,
        "sentAt": _iso(message.sent_at),
        "kind": message.kind.value,
        "isRead": message.is_read,
    }
    meta = message.metadata
    if isinstance(meta, ImageMetadata):
        data["attachmentUrl"] = meta.image_url
    elif isinstance(meta, FileMetadata):
        data["attachmentUrl"] = meta.file_url
        data["metadata"] = {"fileName": meta.file_name, "fileSize": meta.file_size}
    elif isinstance(meta, LocationMetadata):
        data["metadata"] = {"coordinates": {"lat": meta.lat, "lng": meta.lng}}
    if message.client_ref:
        data["clientRef"] = message.client_ref
    return data
