"""
Exchange and validation domain models.

WHAT: Transaction record spawned by an accepted proposal
WHY: Two-sided validation decides whether the exchange completed
HOW: Pydantic v2 models; resolution rule lives in the proposal engine
"""

from enum import Enum
from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from ..utils.clock import utc_now, ensure_utc


class ExchangeStatus(str, Enum):
    PENDING_VALIDATION = "pending_validation"
    COMPLETED = "completed"
    FAILED = "failed"


class Validation(BaseModel):
    """One participant's assertion about how the exchange went."""
    user_id: str
    is_successful: bool
    validated_at: datetime = Field(default_factory=utc_now)
    comment: str | None = None
    rating: int | None = Field(default=None, ge=1, le=5)
    aspects: str | None = None

    @field_validator("validated_at")
    @classmethod
    def normalize_validated_at(cls, v: datetime) -> datetime:
        return ensure_utc(v)


class Exchange(BaseModel):
    """Exchange record tracking per-participant validations."""

    id: str
    conversation_id: str
    proposal_id: str
    proposer_id: str
    receiver_id: str
    status: ExchangeStatus = ExchangeStatus.PENDING_VALIDATION
    validations: list[Validation] = Field(default_factory=list)
    needs_review: bool = False
    products_released: bool = False
    created_at: datetime = Field(default_factory=utc_now)

    @property
    def participant_ids(self) -> tuple[str, str]:
        return (self.proposer_id, self.receiver_id)

    def validation_for(self, user_id: str) -> Validation | None:
        """Return the validation submitted by user_id, if any."""
        for validation in self.validations:
            if validation.user_id == user_id:
                return validation
        return None


def resolve_exchange_status(validations: list[Validation]) -> tuple[ExchangeStatus, bool]:
    """
    Completion rule over the validations submitted so far.

    Returns:
        (status, needs_review): completed when two distinct participants both
        report success, failed when two exist and any reports failure (with
        needs_review when exactly one does), pending_validation otherwise
    """
    latest: dict[str, Validation] = {}
    for validation in validations:
        latest.setdefault(validation.user_id, validation)
    if len(latest) < 2:
        return ExchangeStatus.PENDING_VALIDATION, False

    failures = sum(1 for v in latest.values() if not v.is_successful)
    if failures == 0:
        return ExchangeStatus.COMPLETED, False
    return ExchangeStatus.FAILED, failures == 1


class ValidationOutcome(BaseModel):
    """Result of a validate_exchange call."""
    exchange: Exchange
    already_validated: bool = False
    resolved: bool = False
