"""
ORM models for the local reference data service.

WHAT: SQLAlchemy tables for conversations, messages, proposals, exchanges
WHY: Local mode persists the same entities the remote service owns
HOW: Declarative models; integer primary keys are the canonical ids
"""

from sqlalchemy import (
    Boolean, CheckConstraint, Column, DateTime, Float, ForeignKey, Index,
    Integer, JSON, String, Table, Text, UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .database import Base
from ..utils.clock import utc_now


conversation_products = Table(
    "conversation_products",
    Base.metadata,
    Column("conversation_id", Integer, ForeignKey("conversations.id", ondelete="CASCADE"), primary_key=True),
    Column("product_id", Integer, ForeignKey("products.id", ondelete="CASCADE"), primary_key=True),
)


class ProductRow(Base):
    """Listed product whose availability an exchange reserves and releases."""
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(String(100), nullable=False)
    title = Column(String(200), nullable=False)
    status = Column(String(20), nullable=False, default="available")

    __table_args__ = (
        CheckConstraint("status IN ('available', 'reserved', 'exchanged')", name="check_product_status"),
    )

    def __repr__(self):
        return f"<ProductRow(id={self.id}, status={self.status})>"


class ConversationRow(Base):
    """
    Conversation table - one chat thread between two users.

    WHAT: Thread with its initiating (proposer) and receiving participant
    WHY: Role resolution and access checks need both ids
    HOW: Messages and proposals hang off it with CASCADE delete
    """
    __tablename__ = "conversations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    proposer_id = Column(String(100), nullable=False)
    receiver_id = Column(String(100), nullable=False)
    created_at = Column(DateTime, nullable=False, default=utc_now)

    messages = relationship("MessageRow", back_populates="conversation", cascade="all, delete-orphan")
    proposals = relationship("ProposalRow", back_populates="conversation", cascade="all, delete-orphan")
    products = relationship("ProductRow", secondary=conversation_products)

    __table_args__ = (
        CheckConstraint("proposer_id != receiver_id", name="check_distinct_participants"),
    )

    def participants(self) -> tuple[str, str]:
        return (self.proposer_id, self.receiver_id)

    def __repr__(self):
        return f"<ConversationRow(id={self.id}, proposer={self.proposer_id}, receiver={self.receiver_id})>"


class MessageRow(Base):
    """Message table - id is the canonical, monotonically increasing message id."""
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    conversation_id = Column(Integer, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False)
    sender_id = Column(String(100), nullable=False)
    content = Column(Text, nullable=True)
    kind = Column(String(20), nullable=False, default="text")
    attachment_url = Column(String(500), nullable=True)
    meta = Column(JSON, nullable=True)
    is_read = Column(Boolean, nullable=False, default=False)
    client_ref = Column(String(64), nullable=True)
    sent_at = Column(DateTime, nullable=False, default=utc_now)

    conversation = relationship("ConversationRow", back_populates="messages")

    __table_args__ = (
        Index("idx_messages_conversation_id", "conversation_id", "id"),
        UniqueConstraint("conversation_id", "client_ref", name="uq_message_client_ref"),
    )

    def __repr__(self):
        return f"<MessageRow(id={self.id}, conversation={self.conversation_id}, sender={self.sender_id})>"


class ProposalRow(Base):
    """Proposal table - structured offer inside a conversation."""
    __tablename__ = "proposals"

    id = Column(Integer, primary_key=True, autoincrement=True)
    conversation_id = Column(Integer, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False)
    type = Column(String(20), nullable=False)
    description = Column(Text, nullable=False)
    proposed_price = Column(Float, nullable=True)
    conditions = Column(Text, nullable=True)
    meeting_date = Column(String(40), nullable=True)
    meeting_place = Column(String(200), nullable=True)
    status = Column(String(20), nullable=False, default="pending")
    proposer_id = Column(String(100), nullable=False)
    receiver_id = Column(String(100), nullable=False)
    created_at = Column(DateTime, nullable=False, default=utc_now)
    responded_at = Column(DateTime, nullable=True)
    response = Column(Text, nullable=True)
    exchange_id = Column(Integer, ForeignKey("exchanges.id", ondelete="SET NULL"), nullable=True)

    conversation = relationship("ConversationRow", back_populates="proposals")

    __table_args__ = (
        Index("idx_proposals_conversation_id", "conversation_id"),
        CheckConstraint(
            "status IN ('pending', 'accepted', 'rejected', 'counter', 'cancelled')",
            name="check_proposal_status",
        ),
    )

    def __repr__(self):
        return f"<ProposalRow(id={self.id}, type={self.type}, status={self.status})>"


class ExchangeRow(Base):
    """Exchange table - spawned when a proposal is accepted."""
    __tablename__ = "exchanges"

    id = Column(Integer, primary_key=True, autoincrement=True)
    conversation_id = Column(Integer, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False)
    proposal_id = Column(Integer, nullable=False)
    proposer_id = Column(String(100), nullable=False)
    receiver_id = Column(String(100), nullable=False)
    status = Column(String(30), nullable=False, default="pending_validation")
    needs_review = Column(Boolean, nullable=False, default=False)
    products_released = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=utc_now)

    validations = relationship(
        "ValidationRow", back_populates="exchange", cascade="all, delete-orphan", order_by="ValidationRow.id"
    )

    def __repr__(self):
        return f"<ExchangeRow(id={self.id}, status={self.status})>"


class ValidationRow(Base):
    """Validation table - one row per participant per exchange."""
    __tablename__ = "validations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    exchange_id = Column(Integer, ForeignKey("exchanges.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String(100), nullable=False)
    is_successful = Column(Boolean, nullable=False)
    comment = Column(Text, nullable=True)
    rating = Column(Integer, nullable=True)
    aspects = Column(Text, nullable=True)
    validated_at = Column(DateTime, nullable=False, default=utc_now)

    exchange = relationship("ExchangeRow", back_populates="validations")

    __table_args__ = (
        UniqueConstraint("exchange_id", "user_id", name="uq_validation_per_user"),
        CheckConstraint("rating IS NULL OR (rating >= 1 AND rating <= 5)", name="check_rating_range"),
    )
