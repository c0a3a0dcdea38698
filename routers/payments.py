# Payment Endpoints
# Brand-driven split payments: create, open a gateway order, confirm

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from config.app_config import RAZORPAY_KEY_ID
from database.config import get_db
from database.models import User
from auth.dependencies import get_current_user
from auth.decorators import require_permission
from auth.roles import Permission
from schemas.workflow import (
    PaymentType, PaymentResponse, CreatorPaymentResponse,
    PaymentOutcomeResponse, PaymentConfirmRequest, PaymentOrderResponse
)
from services.audit_service import new_correlation_id
from services.payment_orchestrator import PaymentOrchestrator, PaymentOutcome
from routers.deps import (
    get_payment_orchestrator, proposal_for_brand, proposal_for_participant,
    payment_for_brand, is_admin, is_campaign_brand
)

router = APIRouter(prefix="/api", tags=["Payments"])


def _outcome_response(outcome: PaymentOutcome) -> PaymentOutcomeResponse:
    return PaymentOutcomeResponse(
        created=outcome.created,
        transactionId=outcome.correlation_id,
        payment=PaymentResponse.model_validate(outcome.payment),
        message=None if outcome.created else "Existing payment returned",
    )


@router.post("/proposals/{proposal_id}/payments/{payment_type}", response_model=PaymentOutcomeResponse)
def create_payment(
    proposal_id: str,
    payment_type: PaymentType,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.MANAGE_PAYMENTS)),
    payments: PaymentOrchestrator = Depends(get_payment_orchestrator),
):
    """
    Create the upfront, completion or bonus payment for a proposal.
    Repeating the call returns the existing payment instead of a new one.
    """
    proposal_for_brand(db, proposal_id, current_user)

    if payment_type == PaymentType.UPFRONT:
        outcome = payments.create_upfront_payment(proposal_id, current_user.id)
    elif payment_type == PaymentType.COMPLETION:
        outcome = payments.create_completion_payment(proposal_id, current_user.id)
    else:
        correlation_id = new_correlation_id()
        outcome = payments.create_bonus_payment(proposal_id, current_user.id, correlation_id=correlation_id)
        if outcome is None:
            return PaymentOutcomeResponse(
                created=False,
                transactionId=correlation_id,
                payment=None,
                message="No bonus configured for this campaign",
            )
    return _outcome_response(outcome)


@router.get("/proposals/{proposal_id}/payments")
def list_payments(
    proposal_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    payments: PaymentOrchestrator = Depends(get_payment_orchestrator),
):
    """Brands see gross amounts and gateway references; creators see their net payout."""
    proposal = proposal_for_participant(db, proposal_id, current_user)
    records = payments.list_payments(proposal_id)
    if is_admin(current_user) or is_campaign_brand(proposal, current_user):
        return [PaymentResponse.model_validate(p) for p in records]
    return [CreatorPaymentResponse.model_validate(p) for p in records]


@router.post("/payments/{payment_id}/order", response_model=PaymentOrderResponse)
def create_payment_order(
    payment_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.MANAGE_PAYMENTS)),
    payments: PaymentOrchestrator = Depends(get_payment_orchestrator),
):
    """Open a gateway order the brand pays against at checkout."""
    payment_for_brand(db, payment_id, current_user)
    outcome = payments.process_payment_order(payment_id, current_user.id)
    return PaymentOrderResponse(
        transactionId=outcome.correlation_id,
        payment=PaymentResponse.model_validate(outcome.payment),
        key_id=RAZORPAY_KEY_ID or None,
    )


@router.post("/payments/{payment_id}/confirm", response_model=PaymentOutcomeResponse)
def confirm_payment(
    payment_id: str,
    data: PaymentConfirmRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.MANAGE_PAYMENTS)),
    payments: PaymentOrchestrator = Depends(get_payment_orchestrator),
):
    """Confirm a checkout with the gateway's payment id and signature."""
    payment_for_brand(db, payment_id, current_user)
    outcome = payments.confirm_payment(
        payment_id, data.gateway_payment_id, data.signature, current_user.id
    )
    return _outcome_response(outcome)
