# Proposal Endpoints
# Creator submission and brand approval / rejection

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import Optional

from database.config import get_db
from database.models import User
from auth.dependencies import get_current_user
from auth.decorators import require_permission
from auth.roles import Permission
from schemas.workflow import (
    ProposalCreate, ProposalDecision, ProposalResponse,
    CreatorProposalResponse, TransitionResponse
)
from services.proposal_state_machine import ProposalStateMachine
from routers.deps import (
    get_state_machine, proposal_for_brand, proposal_for_participant,
    is_admin, is_campaign_brand
)

router = APIRouter(prefix="/api/proposals", tags=["Proposals"])


@router.post("", response_model=TransitionResponse, status_code=201)
def submit_proposal(
    data: ProposalCreate,
    current_user: User = Depends(require_permission(Permission.SUBMIT_PROPOSALS)),
    machine: ProposalStateMachine = Depends(get_state_machine),
):
    """Submit a proposal against an active campaign."""
    outcome = machine.submit(
        data.campaign_id,
        current_user.id,
        data.proposal_text,
        data.proposed_compensation,
    )
    return TransitionResponse(
        transactionId=outcome.correlation_id,
        proposal=ProposalResponse.model_validate(outcome.proposal),
    )


@router.get("/{proposal_id}")
def get_proposal(
    proposal_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Brands see the full proposal; the creator sees their own view."""
    proposal = proposal_for_participant(db, proposal_id, current_user)
    if is_admin(current_user) or is_campaign_brand(proposal, current_user):
        return ProposalResponse.model_validate(proposal)
    return CreatorProposalResponse.model_validate(proposal)


@router.post("/{proposal_id}/approve", response_model=TransitionResponse)
def approve_proposal(
    proposal_id: str,
    data: Optional[ProposalDecision] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.REVIEW_PROPOSALS)),
    machine: ProposalStateMachine = Depends(get_state_machine),
):
    proposal_for_brand(db, proposal_id, current_user)
    outcome = machine.approve(proposal_id, current_user.id, feedback=data.feedback if data else None)
    return TransitionResponse(
        transactionId=outcome.correlation_id,
        proposal=ProposalResponse.model_validate(outcome.proposal),
        invoice_error=outcome.invoice_error,
    )


@router.post("/{proposal_id}/reject", response_model=TransitionResponse)
def reject_proposal(
    proposal_id: str,
    data: Optional[ProposalDecision] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.REVIEW_PROPOSALS)),
    machine: ProposalStateMachine = Depends(get_state_machine),
):
    proposal_for_brand(db, proposal_id, current_user)
    outcome = machine.reject(proposal_id, current_user.id, feedback=data.feedback if data else None)
    return TransitionResponse(
        transactionId=outcome.correlation_id,
        proposal=ProposalResponse.model_validate(outcome.proposal),
    )
