"""
Proposal and exchange endpoints.

WHAT: Create, respond to, and cancel proposals; validate exchanges
WHY: HTTP access to the negotiation lifecycle of a conversation
HOW: FastAPI router delegating to the session's ProposalEngine
"""

from fastapi import APIRouter, Depends, status
from typing import List

from ..deps import get_chat_session
from ....core.chat_session import ChatSession
from ....models.api_schemas import (
    CreateProposalRequest,
    RespondProposalRequest,
    RespondProposalResponse,
    ValidateExchangeRequest,
    ValidateExchangeResponse,
)
from ....models.exchange import Exchange
from ....models.proposal import Proposal
from ....models.wire import parse_exchange
from ....utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()


@router.get("/conversations/{conversation_id}/proposals", response_model=List[Proposal])
async def list_proposals(conversation_id: str, chat: ChatSession = Depends(get_chat_session)):
    return await chat.proposals.load(conversation_id)


@router.post(
    "/conversations/{conversation_id}/proposals",
    response_model=Proposal,
    status_code=status.HTTP_201_CREATED,
)
async def create_proposal(
    conversation_id: str,
    request: CreateProposalRequest,
    chat: ChatSession = Depends(get_chat_session),
):
    """
    Create a pending proposal.

    Only the buyer of the conversation may propose. The draft is checked
    before anything is sent to the data service.
    """
    return await chat.create_proposal(conversation_id, request.model_dump())


@router.patch(
    "/conversations/{conversation_id}/proposals/{proposal_id}/respond",
    response_model=RespondProposalResponse,
)
async def respond_proposal(
    conversation_id: str,
    proposal_id: str,
    request: RespondProposalRequest,
    chat: ChatSession = Depends(get_chat_session),
):
    """
    Accept, reject or counter a pending proposal.

    Accepting spawns an exchange and needs meeting details unless the
    proposal already carries both date and place.
    """
    outcome = await chat.respond_proposal(
        proposal_id,
        request.action,
        request.reason,
        request.meeting.model_dump() if request.meeting else None,
        conversation_id=conversation_id,
    )
    return RespondProposalResponse(proposal=outcome.proposal, exchange=outcome.exchange)


@router.post(
    "/conversations/{conversation_id}/proposals/{proposal_id}/cancel",
    response_model=Proposal,
)
async def cancel_proposal(
    conversation_id: str,
    proposal_id: str,
    chat: ChatSession = Depends(get_chat_session),
):
    return await chat.cancel_proposal(proposal_id, conversation_id=conversation_id)


@router.get("/exchanges/{exchange_id}", response_model=Exchange)
async def get_exchange(exchange_id: str, chat: ChatSession = Depends(get_chat_session)):
    exchange = chat.proposals.exchange(exchange_id)
    if exchange is None:
        session = await chat.identity.current()
        exchange = parse_exchange(await chat.data_service.get_exchange(session, exchange_id))
    return exchange


@router.post("/exchanges/{exchange_id}/validate", response_model=ValidateExchangeResponse)
async def validate_exchange(
    exchange_id: str,
    request: ValidateExchangeRequest,
    chat: ChatSession = Depends(get_chat_session),
):
    """
    Record the caller's validation of an exchange.

    Submitting twice returns already_validated=true without changes.
    """
    outcome = await chat.validate_exchange(
        exchange_id,
        is_successful=request.is_successful,
        comment=request.comment,
        rating=request.rating,
        aspects=request.aspects,
    )
    return ValidateExchangeResponse(
        exchange=outcome.exchange,
        already_validated=outcome.already_validated,
        resolved=outcome.resolved,
    )
