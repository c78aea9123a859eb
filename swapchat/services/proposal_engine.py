"""
Proposal engine.

WHAT: Lifecycle of proposals and the exchanges they spawn
WHY: Turn a chat-embedded offer into a confirmed or failed exchange while
     enforcing roles, the single-accepted rule, and two-sided validation
HOW: One transition table queried by every caller; checks run before any
     network call; local state changes only after the data service agrees;
     notices are appended to the thread through the system notifier
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from pydantic import ValidationError as PydanticValidationError

from ..core.identity import IdentityProvider, SessionContext
from ..models.exchange import (
    Exchange,
    ExchangeStatus,
    ValidationOutcome,
    resolve_exchange_status,
)
from ..models.message import ExchangeParticipants
from ..models.proposal import (
    MeetingDetails,
    Proposal,
    ProposalAction,
    ProposalDraft,
    ProposalStatus,
)
from ..models.wire import parse_conversation, parse_exchange, parse_proposal
from ..transport.data_service import DataService
from ..utils.exceptions import Conflict, Forbidden, NotFound, ValidationError
from ..utils.logger import get_logger
from . import system_messages
from .role_resolver import Permission, Role, permitted_actions, require_role, resolve_role

logger = get_logger(__name__)

SystemNotifier = Callable[[str, str], Awaitable[Any]]

# (current status, action) -> next status; anything absent is not allowed
TRANSITIONS: dict[tuple[ProposalStatus, ProposalAction], ProposalStatus] = {
    (ProposalStatus.PENDING, ProposalAction.ACCEPT): ProposalStatus.ACCEPTED,
    (ProposalStatus.PENDING, ProposalAction.REJECT): ProposalStatus.REJECTED,
    (ProposalStatus.PENDING, ProposalAction.COUNTER): ProposalStatus.COUNTER,
    (ProposalStatus.PENDING, ProposalAction.CANCEL): ProposalStatus.CANCELLED,
}

RESPONSE_ACTIONS = frozenset({ProposalAction.ACCEPT, ProposalAction.REJECT, ProposalAction.COUNTER})


def next_status(current: ProposalStatus, action: ProposalAction) -> ProposalStatus | None:
    return TRANSITIONS.get((current, action))


def can_transition(current: ProposalStatus, action: ProposalAction) -> bool:
    return (current, action) in TRANSITIONS


def _field_errors(e: PydanticValidationError) -> list[dict[str, str]]:
    return [
        {"field": ".".join(str(p) for p in err.get("loc", ())), "error": err.get("msg", "")}
        for err in e.errors()
    ]


async def _log_notice(conversation_id: str, text: str) -> None:
    logger.info(f"[{conversation_id}] notice: {text}")


@dataclass
class RespondOutcome:
    proposal: Proposal
    exchange: Exchange | None = None


class ProposalEngine:
    """Owns proposal and exchange state for the conversations it has loaded."""

    def __init__(
        self,
        data_service: DataService,
        identity: IdentityProvider,
        *,
        notifier: SystemNotifier | None = None,
    ):
        self.data_service = data_service
        self.identity = identity
        self.notifier = notifier or _log_notice
        self._participants: dict[str, ExchangeParticipants] = {}
        self._proposals: dict[str, Proposal] = {}
        self._exchanges: dict[str, Exchange] = {}
        self._lock = asyncio.Lock()

    # ========== Queries ==========

    def proposals(self, conversation_id: str) -> list[Proposal]:
        items = [p for p in self._proposals.values() if p.conversation_id == conversation_id]
        return sorted(items, key=lambda p: (p.created_at, p.id))

    def exchange(self, exchange_id: str) -> Exchange | None:
        return self._exchanges.get(exchange_id)

    def accepted_proposal(self, conversation_id: str) -> Proposal | None:
        for proposal in self.proposals(conversation_id):
            if proposal.status == ProposalStatus.ACCEPTED:
                return proposal
        return None

    def role_of(self, conversation_id: str, user_id: str) -> Role:
        participants = self._participants.get(conversation_id)
        if participants is None:
            return Role.NONE
        return resolve_role(user_id, participants)

    def permissions(self, conversation_id: str, user_id: str) -> dict[str, bool]:
        return permitted_actions(self.role_of(conversation_id, user_id))

    # ========== Loading ==========

    def set_participants(self, conversation_id: str, participants: ExchangeParticipants) -> None:
        self._participants[conversation_id] = participants

    async def _participants_for(self, session: SessionContext, conversation_id: str) -> ExchangeParticipants:
        participants = self._participants.get(conversation_id)
        if participants is None:
            conversation = parse_conversation(
                await self.data_service.get_conversation(session, conversation_id)
            )
            participants = conversation.exchange_participants
            self._participants[conversation_id] = participants
        return participants

    async def load(self, conversation_id: str) -> list[Proposal]:
        """Refresh proposals and their exchanges for one conversation."""
        session = await self.identity.current()
        await self._participants_for(session, conversation_id)
        raw = await self.data_service.list_proposals(session, conversation_id)
        proposals = [parse_proposal(item, conversation_id) for item in raw]

        exchanges: dict[str, Exchange] = {}
        for proposal in proposals:
            if proposal.exchange_id:
                exchanges[proposal.exchange_id] = parse_exchange(
                    await self.data_service.get_exchange(session, proposal.exchange_id), conversation_id
                )

        async with self._lock:
            for key in [k for k, p in self._proposals.items() if p.conversation_id == conversation_id]:
                del self._proposals[key]
            self._proposals.update({p.id: p for p in proposals})
            self._exchanges.update(exchanges)

        logger.info(f"Loaded {len(proposals)} proposals for conversation {conversation_id}")
        return self.proposals(conversation_id)

    async def _find(self, proposal_id: str, conversation_id: str | None = None) -> Proposal:
        """
        Look a proposal up, reloading from the data service on a cache miss.

        Without a conversation id every conversation this engine has seen is
        reloaded until the proposal turns up.

        Raises:
            NotFound: Proposal unknown after reloading, or in another conversation
        """
        proposal = self._proposals.get(proposal_id)
        if proposal is None:
            candidates = [conversation_id] if conversation_id else list(self._participants)
            for candidate in candidates:
                logger.debug(f"Proposal {proposal_id} not cached, reloading conversation {candidate}")
                await self.load(candidate)
                proposal = self._proposals.get(proposal_id)
                if proposal is not None:
                    break
        if proposal is None or (conversation_id and proposal.conversation_id != conversation_id):
            raise NotFound("proposal", proposal_id)
        return proposal

    def forget(self, conversation_id: str) -> None:
        """Drop cached state for a conversation that was closed."""
        self._participants.pop(conversation_id, None)
        for key in [k for k, p in self._proposals.items() if p.conversation_id == conversation_id]:
            del self._proposals[key]
        for key in [k for k, e in self._exchanges.items() if e.conversation_id == conversation_id]:
            del self._exchanges[key]

    # ========== Proposal operations ==========

    async def create(self, conversation_id: str, draft: ProposalDraft | dict) -> Proposal:
        """
        Create a pending proposal as the buyer.

        Raises:
            ValidationError: Draft incomplete (raised before any network call)
            Forbidden: Current user is not the buyer
        """
        if not isinstance(draft, ProposalDraft):
            try:
                draft = ProposalDraft.model_validate(draft)
            except PydanticValidationError as e:
                raise ValidationError("Invalid proposal draft", _field_errors(e)) from e

        session = await self.identity.current()
        participants = await self._participants_for(session, conversation_id)
        require_role(session.user_id, participants, Permission.CREATE)

        async with self._lock:
            raw = await self.data_service.create_proposal(
                session,
                conversation_id,
                {
                    "type": draft.type.value,
                    "description": draft.description.strip(),
                    "proposedPrice": draft.proposed_price,
                    "conditions": draft.conditions,
                    "meetingDate": draft.meeting_date,
                    "meetingPlace": draft.meeting_place,
                },
            )
            proposal = parse_proposal(raw, conversation_id)
            self._proposals[proposal.id] = proposal

        logger.info(f"Proposal {proposal.id} ({proposal.type.value}) created in {conversation_id}")
        await self.notifier(conversation_id, system_messages.proposal_created(proposal))
        return proposal

    async def respond(
        self,
        proposal_id: str,
        action: ProposalAction | str,
        reason: str | None = None,
        meeting: MeetingDetails | dict | None = None,
        conversation_id: str | None = None,
    ) -> RespondOutcome:
        """
        Accept, reject, or counter a pending proposal as the seller.

        Raises:
            NotFound: Proposal unknown even after reloading
            Forbidden: Actor is the proposer or not the seller
            Conflict: Proposal not pending, or another proposal already accepted
            ValidationError: Accepting without meeting details when none are agreed
        """
        try:
            action = ProposalAction(action)
        except ValueError:
            raise ValidationError(f"Unknown response action: {action!r}") from None
        if action not in RESPONSE_ACTIONS:
            raise ValidationError(f"'{action.value}' is not a response action")

        session = await self.identity.current()
        proposal = await self._find(proposal_id, conversation_id)
        conversation_id = proposal.conversation_id

        if session.user_id == proposal.proposer.id:
            raise Forbidden(f"{action.value} proposal", "the proposer cannot respond to their own proposal")
        participants = await self._participants_for(session, conversation_id)
        require_role(session.user_id, participants, Permission.RESPOND)

        if not can_transition(proposal.status, action):
            raise Conflict(
                f"Proposal {proposal_id} is {proposal.status.value} and cannot be {action.value}ed",
                {"status": proposal.status.value},
            )

        if action == ProposalAction.ACCEPT:
            accepted = self.accepted_proposal(conversation_id)
            if accepted is not None and accepted.id != proposal_id:
                raise Conflict(
                    "Conversation already has an accepted proposal",
                    {"accepted_proposal_id": accepted.id},
                )
            if meeting is not None and not isinstance(meeting, MeetingDetails):
                try:
                    meeting = MeetingDetails.model_validate(meeting)
                except PydanticValidationError as e:
                    raise ValidationError("Invalid meeting details", _field_errors(e)) from e
            if meeting is None and not proposal.has_meeting:
                raise ValidationError(
                    "Meeting date, time and place are required to accept this proposal",
                    [{"field": "meeting", "error": "required"}],
                )

        payload: dict[str, Any] = {"action": action.value, "reason": reason}
        if isinstance(meeting, MeetingDetails):
            payload["meeting"] = {
                "date": meeting.date_text(),
                "time": meeting.time_text(),
                "place": meeting.place,
                "notes": meeting.notes,
            }

        async with self._lock:
            raw = await self.data_service.respond_proposal(session, conversation_id, proposal_id, payload)
            updated = parse_proposal(raw["proposal"], conversation_id)
            exchange = None
            if raw.get("exchange"):
                exchange = parse_exchange(raw["exchange"], conversation_id)
                self._exchanges[exchange.id] = exchange
                if updated.exchange_id is None:
                    updated = updated.model_copy(update={"exchange_id": exchange.id})
            self._proposals[updated.id] = updated

        logger.info(f"Proposal {proposal_id} -> {updated.status.value} by {session.user_id}")
        if updated.status == ProposalStatus.ACCEPTED:
            text = system_messages.proposal_accepted(meeting if isinstance(meeting, MeetingDetails) else None, updated)
        elif updated.status == ProposalStatus.REJECTED:
            text = system_messages.proposal_rejected(reason)
        else:
            text = system_messages.proposal_countered(reason)
        await self.notifier(conversation_id, text)
        return RespondOutcome(proposal=updated, exchange=exchange)

    async def cancel(self, proposal_id: str, conversation_id: str | None = None) -> Proposal:
        """
        Withdraw a pending proposal as its proposer.

        Raises:
            NotFound: Proposal unknown even after reloading
            Forbidden: Actor is not the proposer
            Conflict: Proposal is no longer pending
        """
        session = await self.identity.current()
        proposal = await self._find(proposal_id, conversation_id)
        if session.user_id != proposal.proposer.id:
            raise Forbidden("cancel proposal", "only the proposer can cancel")
        participants = await self._participants_for(session, proposal.conversation_id)
        require_role(session.user_id, participants, Permission.CANCEL)
        if not can_transition(proposal.status, ProposalAction.CANCEL):
            raise Conflict(
                f"Proposal {proposal_id} is {proposal.status.value} and cannot be cancelled",
                {"status": proposal.status.value},
            )

        async with self._lock:
            raw = await self.data_service.cancel_proposal(session, proposal.conversation_id, proposal_id)
            updated = parse_proposal(raw, proposal.conversation_id)
            self._proposals[updated.id] = updated

        await self.notifier(proposal.conversation_id, system_messages.proposal_cancelled())
        return updated

    # ========== Exchange validation ==========

    async def _exchange_for(self, session: SessionContext, exchange_id: str) -> Exchange:
        exchange = self._exchanges.get(exchange_id)
        if exchange is None:
            exchange = parse_exchange(await self.data_service.get_exchange(session, exchange_id))
            self._exchanges[exchange.id] = exchange
        return exchange

    async def validate_exchange(
        self,
        exchange_id: str,
        is_successful: bool,
        comment: str | None = None,
        rating: int | None = None,
        aspects: str | None = None,
    ) -> ValidationOutcome:
        """
        Record the current user's validation of an exchange.

        A second submission by the same user is a no-op success. Once both
        participants have validated, the completion rule decides the final
        status; a failed exchange releases its products.

        Raises:
            Forbidden: User is not a participant of the exchange
            ValidationError: Rating given outside 1-5
        """
        session = await self.identity.current()
        exchange = await self._exchange_for(session, exchange_id)

        if session.user_id not in exchange.participant_ids:
            raise Forbidden("validate exchange", "not a participant of this exchange")
        if exchange.validation_for(session.user_id) is not None:
            logger.info(f"User {session.user_id} already validated exchange {exchange_id}")
            return ValidationOutcome(
                exchange=exchange,
                already_validated=True,
                resolved=exchange.status != ExchangeStatus.PENDING_VALIDATION,
            )

        if rating is not None and not 1 <= rating <= 5:
            raise ValidationError(
                "Rating must be between 1 and 5",
                [{"field": "rating", "error": "must be between 1 and 5"}],
            )

        async with self._lock:
            raw = await self.data_service.submit_validation(
                session,
                exchange_id,
                {
                    "isSuccessful": is_successful,
                    "comment": comment.strip() if comment else None,
                    "rating": rating,
                    "aspects": aspects,
                },
            )
            updated = parse_exchange(raw, exchange.conversation_id)
            status, needs_review = resolve_exchange_status(updated.validations)
            if status != updated.status or needs_review != updated.needs_review:
                logger.warning(
                    f"Exchange {exchange_id} reported {updated.status.value}, "
                    f"validations resolve to {status.value}"
                )
                updated = updated.model_copy(update={"status": status, "needs_review": needs_review})
            self._exchanges[updated.id] = updated

        resolved = updated.status != ExchangeStatus.PENDING_VALIDATION
        if resolved and exchange.status == ExchangeStatus.PENDING_VALIDATION:
            await self._on_resolved(session, updated)
            updated = self._exchanges[updated.id]

        return ValidationOutcome(exchange=updated, already_validated=False, resolved=resolved)

    async def _on_resolved(self, session: SessionContext, exchange: Exchange) -> None:
        if exchange.status == ExchangeStatus.COMPLETED:
            logger.info(f"Exchange {exchange.id} completed")
            await self.notifier(exchange.conversation_id, system_messages.exchange_completed())
            return

        logger.info(f"Exchange {exchange.id} failed (needs_review={exchange.needs_review})")
        if not exchange.products_released:
            await self.data_service.release_products(session, exchange.id)
            self._exchanges[exchange.id] = exchange.model_copy(update={"products_released": True})
        await self.notifier(exchange.conversation_id, system_messages.exchange_failed(exchange.needs_review))
