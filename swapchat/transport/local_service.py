"""
Local reference data service.

WHAT: DataService backed by SQLAlchemy with an in-process push hub
WHY: Local mode and tests need a collaborator that behaves like the
     remote service: canonical ids, access checks, proposal invariants
HOW: Sync SQLAlchemy sessions inside async methods; every inserted
     message is published to the hub in wire shape
"""

from uuid import uuid4

from sqlalchemy import func, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session as DBSession

from .data_service import RawPayload, ServiceStatus
from .push import InMemoryPushHub
from ..core.database import build_engine, build_session_factory, init_db, ping_database, session_scope
from ..core.identity import SessionContext
from ..core.models import (
    ConversationRow,
    ExchangeRow,
    MessageRow,
    ProductRow,
    ProposalRow,
    ValidationRow,
)
from ..models.exchange import ExchangeStatus, Validation, resolve_exchange_status
from ..models.wire import KIND_ALIASES, PROPOSAL_TYPE_ALIASES
from ..utils.clock import ensure_utc, utc_now
from ..utils.exceptions import Conflict, Forbidden, NotFound, ValidationError
from ..utils.logger import get_logger

logger = get_logger(__name__)

ATTACHMENT_URL_PREFIX = "local://attachments"


def _iso(value) -> str | None:
    return ensure_utc(value).isoformat() if value is not None else None


def message_payload(row: MessageRow) -> RawPayload:
    payload: RawPayload = {
        "id": row.id,
        "conversationId": str(row.conversation_id),
        "senderId": row.sender_id,
        "content": row.content,
        "sentAt": _iso(row.sent_at),
        "kind": row.kind,
        "isRead": row.is_read,
    }
    if row.attachment_url:
        payload["attachmentUrl"] = row.attachment_url
    if row.meta:
        payload["metadata"] = row.meta
    if row.client_ref:
        payload["clientRef"] = row.client_ref
    return payload


def proposal_payload(row: ProposalRow) -> RawPayload:
    return {
        "id": row.id,
        "conversationId": str(row.conversation_id),
        "type": row.type,
        "description": row.description,
        "proposedPrice": row.proposed_price,
        "conditions": row.conditions,
        "meetingDate": row.meeting_date,
        "meetingPlace": row.meeting_place,
        "status": row.status,
        "proposerId": row.proposer_id,
        "receiverId": row.receiver_id,
        "createdAt": _iso(row.created_at),
        "respondedAt": _iso(row.responded_at),
        "response": row.response,
        "exchangeId": row.exchange_id,
    }


def exchange_payload(row: ExchangeRow) -> RawPayload:
    return {
        "id": row.id,
        "conversationId": str(row.conversation_id),
        "proposalId": row.proposal_id,
        "proposerId": row.proposer_id,
        "receiverId": row.receiver_id,
        "status": row.status,
        "needsReview": row.needs_review,
        "productsReleased": row.products_released,
        "createdAt": _iso(row.created_at),
        "validations": [
            {
                "userId": v.user_id,
                "isSuccessful": v.is_successful,
                "comment": v.comment,
                "rating": v.rating,
                "aspects": v.aspects,
                "validatedAt": _iso(v.validated_at),
            }
            for v in row.validations
        ],
    }


def _int_id(value: str, resource: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise NotFound(resource, value) from None


class LocalDataService:
    """SQLite-backed implementation of the DataService protocol."""

    def __init__(self, database_url: str | None = None, *, engine: Engine | None = None,
                 hub: InMemoryPushHub | None = None):
        self.engine = engine or build_engine(database_url)
        self._factory = build_session_factory(self.engine)
        self.hub = hub or InMemoryPushHub()
        self._attachments: dict[str, bytes] = {}
        init_db(self.engine)

    # ========== Helpers ==========

    def _conversation(self, db: DBSession, conversation_id: str, user_id: str) -> ConversationRow:
        row = db.get(ConversationRow, _int_id(conversation_id, "conversation"))
        if row is None:
            raise NotFound("conversation", conversation_id)
        if user_id not in row.participants():
            raise Forbidden("access conversation", "not a participant")
        return row

    def _proposal(self, db: DBSession, conversation_id: str, proposal_id: str, user_id: str) -> ProposalRow:
        conversation = self._conversation(db, conversation_id, user_id)
        row = db.get(ProposalRow, _int_id(proposal_id, "proposal"))
        if row is None or row.conversation_id != conversation.id:
            raise NotFound("proposal", proposal_id)
        return row

    def _exchange(self, db: DBSession, exchange_id: str, user_id: str) -> ExchangeRow:
        row = db.get(ExchangeRow, _int_id(exchange_id, "exchange"))
        if row is None:
            raise NotFound("exchange", exchange_id)
        if user_id not in (row.proposer_id, row.receiver_id):
            raise Forbidden("access exchange", "not a participant")
        return row

    # ========== Seeding ==========

    async def create_conversation(
        self, proposer_id: str, receiver_id: str, product_titles: list[str] | None = None
    ) -> str:
        """Open a thread between a buyer (proposer) and a seller (receiver)."""
        if proposer_id == receiver_id:
            raise ValidationError("A conversation needs two distinct participants")
        with session_scope(self._factory) as db:
            row = ConversationRow(proposer_id=proposer_id, receiver_id=receiver_id)
            for title in product_titles or []:
                row.products.append(ProductRow(owner_id=receiver_id, title=title))
            db.add(row)
            db.flush()
            conversation_id = str(row.id)
        logger.info(f"Created conversation {conversation_id} ({proposer_id} -> {receiver_id})")
        return conversation_id

    def product_statuses(self, conversation_id: str) -> dict[int, str]:
        with session_scope(self._factory) as db:
            row = db.get(ConversationRow, _int_id(conversation_id, "conversation"))
            if row is None:
                raise NotFound("conversation", conversation_id)
            return {p.id: p.status for p in row.products}

    # ========== Health ==========

    async def ping(self) -> ServiceStatus:
        status = ping_database(self.engine)
        return ServiceStatus(
            available=status["available"], mode="local", base_url=status["url"], error=status["error"]
        )

    # ========== Conversations and messages ==========

    async def get_conversation(self, session: SessionContext, conversation_id: str) -> RawPayload:
        with session_scope(self._factory) as db:
            row = self._conversation(db, conversation_id, session.user_id)
            unread = db.scalar(
                select(func.count(MessageRow.id)).where(
                    MessageRow.conversation_id == row.id,
                    MessageRow.sender_id != session.user_id,
                    MessageRow.is_read.is_(False),
                )
            )
            return {
                "id": str(row.id),
                "proposerId": row.proposer_id,
                "receiverId": row.receiver_id,
                "productIds": [p.id for p in row.products],
                "unreadCount": unread or 0,
            }

    async def list_messages(
        self,
        session: SessionContext,
        conversation_id: str,
        *,
        since_id: int | None = None,
        limit: int = 50,
    ) -> list[RawPayload]:
        with session_scope(self._factory) as db:
            row = self._conversation(db, conversation_id, session.user_id)
            query = select(MessageRow).where(MessageRow.conversation_id == row.id)
            if since_id is not None:
                # newer than the cursor, oldest first
                query = query.where(MessageRow.id > since_id).order_by(MessageRow.id.asc()).limit(limit)
                rows = db.scalars(query).all()
            else:
                # latest page, returned oldest first
                query = query.order_by(MessageRow.id.desc()).limit(limit)
                rows = list(reversed(db.scalars(query).all()))
            return [message_payload(m) for m in rows]

    async def send_message(self, session: SessionContext, conversation_id: str, payload: RawPayload) -> RawPayload:
        content = payload.get("content")
        attachment_url = payload.get("attachmentUrl")
        kind = KIND_ALIASES.get(str(payload.get("kind") or "text").lower())
        if kind is None:
            raise ValidationError(f"Unknown message kind: {payload.get('kind')!r}")
        if not (content or "").strip() and not attachment_url and not payload.get("metadata"):
            raise ValidationError("Content or attachment is required")
        client_ref = payload.get("clientRef")

        with session_scope(self._factory) as db:
            conversation = self._conversation(db, conversation_id, session.user_id)
            if client_ref:
                existing = db.scalar(
                    select(MessageRow).where(
                        MessageRow.conversation_id == conversation.id, MessageRow.client_ref == client_ref
                    )
                )
                if existing is not None:
                    logger.info(f"Duplicate send for clientRef {client_ref}, returning message {existing.id}")
                    return message_payload(existing)
            row = MessageRow(
                conversation_id=conversation.id,
                sender_id=session.user_id,
                content=content,
                kind=kind.value,
                attachment_url=attachment_url,
                meta=payload.get("metadata"),
                client_ref=client_ref,
            )
            db.add(row)
            try:
                db.flush()
            except IntegrityError as e:
                raise Conflict(f"Message with clientRef {client_ref} already exists") from e
            result = message_payload(row)

        logger.info(f"Message {result['id']} stored in conversation {conversation_id}")
        await self.hub.publish(conversation_id, result)
        return result

    async def mark_read(self, session: SessionContext, conversation_id: str) -> int:
        with session_scope(self._factory) as db:
            conversation = self._conversation(db, conversation_id, session.user_id)
            result = db.execute(
                update(MessageRow)
                .where(
                    MessageRow.conversation_id == conversation.id,
                    MessageRow.sender_id != session.user_id,
                    MessageRow.is_read.is_(False),
                )
                .values(is_read=True)
            )
            return result.rowcount or 0

    # ========== Proposals ==========

    async def list_proposals(self, session: SessionContext, conversation_id: str) -> list[RawPayload]:
        with session_scope(self._factory) as db:
            conversation = self._conversation(db, conversation_id, session.user_id)
            rows = db.scalars(
                select(ProposalRow)
                .where(ProposalRow.conversation_id == conversation.id)
                .order_by(ProposalRow.id.asc())
            ).all()
            return [proposal_payload(p) for p in rows]

    async def create_proposal(self, session: SessionContext, conversation_id: str, payload: RawPayload) -> RawPayload:
        proposal_type = PROPOSAL_TYPE_ALIASES.get(str(payload.get("type") or "").lower())
        description = (payload.get("description") or "").strip()
        if proposal_type is None or not description:
            raise ValidationError("Proposal type and description are required")

        with session_scope(self._factory) as db:
            conversation = self._conversation(db, conversation_id, session.user_id)
            if session.user_id != conversation.proposer_id:
                raise Forbidden("create proposal", "only the buyer can propose")
            row = ProposalRow(
                conversation_id=conversation.id,
                type=proposal_type.value,
                description=description,
                proposed_price=payload.get("proposedPrice"),
                conditions=payload.get("conditions"),
                meeting_date=payload.get("meetingDate"),
                meeting_place=payload.get("meetingPlace"),
                proposer_id=conversation.proposer_id,
                receiver_id=conversation.receiver_id,
            )
            db.add(row)
            db.flush()
            logger.info(f"Proposal {row.id} created in conversation {conversation_id}")
            return proposal_payload(row)

    async def respond_proposal(
        self, session: SessionContext, conversation_id: str, proposal_id: str, payload: RawPayload
    ) -> RawPayload:
        action = payload.get("action")
        if action not in ("accept", "reject", "counter"):
            raise ValidationError(f"Unknown response action: {action!r}")

        with session_scope(self._factory) as db:
            row = self._proposal(db, conversation_id, proposal_id, session.user_id)
            if session.user_id != row.receiver_id:
                raise Forbidden("respond to proposal", "only the receiver can respond")
            if row.status != "pending":
                raise Conflict(f"Proposal {proposal_id} is already {row.status}")

            exchange = None
            if action == "accept":
                accepted = db.scalar(
                    select(ProposalRow).where(
                        ProposalRow.conversation_id == row.conversation_id,
                        ProposalRow.status == "accepted",
                    )
                )
                if accepted is not None:
                    raise Conflict(
                        "Conversation already has an accepted proposal",
                        {"accepted_proposal_id": str(accepted.id)},
                    )
                meeting = payload.get("meeting") or {}
                if meeting:
                    row.meeting_date = f"{meeting['date']}T{meeting['time']}"
                    row.meeting_place = meeting["place"]
                if not (row.meeting_date and row.meeting_place):
                    raise ValidationError("Meeting date and place are required to accept")

                exchange = ExchangeRow(
                    conversation_id=row.conversation_id,
                    proposal_id=row.id,
                    proposer_id=row.proposer_id,
                    receiver_id=row.receiver_id,
                )
                db.add(exchange)
                db.flush()
                row.exchange_id = exchange.id
                for product in row.conversation.products:
                    product.status = "reserved"
                row.status = "accepted"
            elif action == "reject":
                row.status = "rejected"
            else:
                row.status = "counter"

            row.response = payload.get("reason")
            row.responded_at = utc_now()
            db.flush()
            logger.info(f"Proposal {proposal_id} -> {row.status}")
            return {
                "proposal": proposal_payload(row),
                "exchange": exchange_payload(exchange) if exchange is not None else None,
            }

    async def cancel_proposal(self, session: SessionContext, conversation_id: str, proposal_id: str) -> RawPayload:
        with session_scope(self._factory) as db:
            row = self._proposal(db, conversation_id, proposal_id, session.user_id)
            if session.user_id != row.proposer_id:
                raise Forbidden("cancel proposal", "only the proposer can cancel")
            if row.status != "pending":
                raise Conflict(f"Proposal {proposal_id} is already {row.status}")
            row.status = "cancelled"
            row.responded_at = utc_now()
            db.flush()
            return proposal_payload(row)

    # ========== Exchanges ==========

    async def get_exchange(self, session: SessionContext, exchange_id: str) -> RawPayload:
        with session_scope(self._factory) as db:
            return exchange_payload(self._exchange(db, exchange_id, session.user_id))

    async def submit_validation(self, session: SessionContext, exchange_id: str, payload: RawPayload) -> RawPayload:
        with session_scope(self._factory) as db:
            row = self._exchange(db, exchange_id, session.user_id)
            if any(v.user_id == session.user_id for v in row.validations):
                logger.info(f"User {session.user_id} already validated exchange {exchange_id}")
                return exchange_payload(row)

            row.validations.append(
                ValidationRow(
                    user_id=session.user_id,
                    is_successful=bool(payload.get("isSuccessful")),
                    comment=payload.get("comment"),
                    rating=payload.get("rating"),
                    aspects=payload.get("aspects"),
                )
            )
            db.flush()

            status, needs_review = resolve_exchange_status(
                [Validation(user_id=v.user_id, is_successful=v.is_successful) for v in row.validations]
            )
            row.status = status.value
            row.needs_review = needs_review
            if status == ExchangeStatus.COMPLETED:
                for product in db.get(ConversationRow, row.conversation_id).products:
                    product.status = "exchanged"
            db.flush()
            logger.info(f"Exchange {exchange_id} validation by {session.user_id}: status={row.status}")
            return exchange_payload(row)

    async def release_products(self, session: SessionContext, exchange_id: str) -> None:
        with session_scope(self._factory) as db:
            row = self._exchange(db, exchange_id, session.user_id)
            for product in db.get(ConversationRow, row.conversation_id).products:
                product.status = "available"
            row.products_released = True
            logger.info(f"Products released for exchange {exchange_id}")

    # ========== Attachments ==========

    async def upload_attachment(
        self, session: SessionContext, filename: str, data: bytes, content_type: str
    ) -> str:
        if not data:
            raise ValidationError("Attachment is empty")
        key = f"{uuid4().hex}/{filename}"
        self._attachments[key] = data
        logger.info(f"Stored attachment {key} ({len(data)} bytes, {content_type}) for {session.user_id}")
        return f"{ATTACHMENT_URL_PREFIX}/{key}"

    def attachment(self, url: str) -> bytes | None:
        return self._attachments.get(url.removeprefix(f"{ATTACHMENT_URL_PREFIX}/"))
