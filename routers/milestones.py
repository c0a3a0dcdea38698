# Milestone Endpoints
# Creator progress through the production checklist

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import Optional

from database.config import get_db
from database.models import User
from auth.dependencies import get_current_user
from auth.decorators import require_permission, require_admin
from auth.roles import Permission
from schemas.workflow import (
    MilestoneCompleteRequest, MilestoneResponse, MilestoneListResponse,
    MilestoneCompleteResponse, PaymentResponse
)
from services.milestone_tracker import MilestoneTracker, MilestoneOutcome
from routers.deps import (
    get_milestone_tracker, proposal_for_participant, proposal_for_creator, milestone_for_creator
)

router = APIRouter(prefix="/api", tags=["Milestones"])


def _complete_response(outcome: MilestoneOutcome) -> MilestoneCompleteResponse:
    bonus = outcome.bonus_payment.payment if outcome.bonus_payment else None
    return MilestoneCompleteResponse(
        transactionId=outcome.correlation_id,
        changed=outcome.changed,
        milestone=MilestoneResponse.model_validate(outcome.milestone),
        progress=outcome.progress,
        integrationStatus=outcome.integration_status,
        bonusPayment=PaymentResponse.model_validate(bonus) if bonus else None,
    )


@router.get("/proposals/{proposal_id}/milestones", response_model=MilestoneListResponse)
def list_milestones(
    proposal_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    tracker: MilestoneTracker = Depends(get_milestone_tracker),
):
    proposal_for_participant(db, proposal_id, current_user)
    return MilestoneListResponse(
        proposal_id=proposal_id,
        progress=tracker.progress_for(proposal_id),
        milestones=[MilestoneResponse.model_validate(m) for m in tracker.list_for(proposal_id)],
    )


@router.post("/proposals/{proposal_id}/milestones/initialize", response_model=MilestoneListResponse)
def initialize_milestones(
    proposal_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.COMPLETE_MILESTONES)),
    tracker: MilestoneTracker = Depends(get_milestone_tracker),
):
    """Create the default milestones if the upfront payment step did not already."""
    proposal_for_creator(db, proposal_id, current_user)
    milestones = tracker.initialize(proposal_id, current_user.id)
    return MilestoneListResponse(
        proposal_id=proposal_id,
        progress=tracker.progress_for(proposal_id),
        milestones=[MilestoneResponse.model_validate(m) for m in milestones],
    )


@router.post("/milestones/{milestone_id}/start", response_model=MilestoneCompleteResponse)
def start_milestone(
    milestone_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.COMPLETE_MILESTONES)),
    tracker: MilestoneTracker = Depends(get_milestone_tracker),
):
    milestone_for_creator(db, milestone_id, current_user)
    return _complete_response(tracker.start(milestone_id, current_user.id))


@router.post("/milestones/{milestone_id}/complete", response_model=MilestoneCompleteResponse)
def complete_milestone(
    milestone_id: str,
    data: Optional[MilestoneCompleteRequest] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.COMPLETE_MILESTONES)),
    tracker: MilestoneTracker = Depends(get_milestone_tracker),
):
    """
    Complete a milestone. Publishing requires `liveUrl` pointing at the live post;
    completing it publishes the submitted content and triggers the bonus payment.
    """
    milestone_for_creator(db, milestone_id, current_user)
    outcome = tracker.complete(
        milestone_id,
        current_user.id,
        live_url=data.live_url if data else None,
        notes=data.notes if data else None,
    )
    return _complete_response(outcome)


@router.post("/milestones/{milestone_id}/reset", response_model=MilestoneCompleteResponse)
def reset_milestone(
    milestone_id: str,
    current_user: User = Depends(require_admin()),
    tracker: MilestoneTracker = Depends(get_milestone_tracker),
):
    """Return a milestone stuck in manual intervention to pending."""
    return _complete_response(tracker.reset(milestone_id, current_user.id))
