# Content Endpoints
# Deliverable submission by the creator and review by the brand

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List

from database.config import get_db
from database.models import User
from database.workflow_models import CampaignContent
from auth.dependencies import get_current_user
from auth.decorators import require_permission
from auth.roles import Permission
from schemas.workflow import (
    ContentSubmit, ContentReview, ContentResponse, ContentOutcomeResponse,
    PaymentResponse, ReviewAction
)
from services.content_approval import ContentApprovalGate, ContentOutcome
from routers.deps import (
    get_content_gate, proposal_for_creator, proposal_for_participant, content_for_brand
)

router = APIRouter(prefix="/api", tags=["Content"])


def _outcome_response(outcome: ContentOutcome) -> ContentOutcomeResponse:
    payment = outcome.payment.payment if outcome.payment else None
    return ContentOutcomeResponse(
        transactionId=outcome.correlation_id,
        content=ContentResponse.model_validate(outcome.content),
        payment_status=outcome.proposal.payment_status,
        completionPayment=PaymentResponse.model_validate(payment) if payment else None,
    )


@router.post("/proposals/{proposal_id}/content", response_model=ContentOutcomeResponse, status_code=201)
def submit_content(
    proposal_id: str,
    data: ContentSubmit,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.SUBMIT_CONTENT)),
    gate: ContentApprovalGate = Depends(get_content_gate),
):
    proposal_for_creator(db, proposal_id, current_user)
    outcome = gate.submit(
        proposal_id,
        current_user.id,
        title=data.title,
        platform=data.platform,
        content_type=data.content_type,
        content_url=data.content_url,
        description=data.description,
    )
    return _outcome_response(outcome)


@router.get("/proposals/{proposal_id}/content", response_model=List[ContentResponse])
def list_content(
    proposal_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    proposal_for_participant(db, proposal_id, current_user)
    contents = db.query(CampaignContent).filter(
        CampaignContent.proposal_id == proposal_id
    ).order_by(CampaignContent.submitted_at.desc()).all()
    return [ContentResponse.model_validate(c) for c in contents]


@router.post("/content/{content_id}/review", response_model=ContentOutcomeResponse)
def review_content(
    content_id: str,
    data: ContentReview,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.REVIEW_CONTENT)),
    gate: ContentApprovalGate = Depends(get_content_gate),
):
    """Approve (releases the completion payment) or request a revision."""
    content_for_brand(db, content_id, current_user)
    if data.action == ReviewAction.APPROVE:
        outcome = gate.approve(content_id, current_user.id, feedback=data.feedback)
    else:
        outcome = gate.reject(content_id, current_user.id, feedback=data.feedback)
    return _outcome_response(outcome)
