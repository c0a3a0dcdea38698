# Shared router dependencies: collaborator providers and access checks.
# Every collaborator is resolved through a provider so it can be swapped
# with app.dependency_overrides.

from fastapi import Depends, HTTPException, status
from sqlalchemy.orm import Session
import time

from auth.decorators import get_user_type
from auth.roles import UserType
from config.app_config import RAZORPAY_WEBHOOK_SECRET
from core.razorpay_service import RazorpayService
from database.config import get_db
from database.models import User
from database.workflow_models import Proposal, Payment, Milestone, CampaignContent
from services.content_approval import ContentApprovalGate
from services.invoice_service import InvoiceGenerator
from services.milestone_tracker import MilestoneTracker
from services.payment_orchestrator import PaymentOrchestrator
from services.proposal_state_machine import ProposalStateMachine
from services.publishing_service import ContentPublisher
from services.rate_limiter import default_rate_limiter
from services.webhook_reconciler import WebhookReconciler


# ============================================================================
# COLLABORATORS
# ============================================================================

def get_payment_gateway():
    return RazorpayService()


def get_content_publisher(db: Session = Depends(get_db)):
    return ContentPublisher(db)


def get_invoice_generator(db: Session = Depends(get_db)):
    return InvoiceGenerator(db)


def get_rate_limiter():
    return default_rate_limiter


def get_retry_sleep():
    return time.sleep


def get_webhook_secret() -> str:
    return RAZORPAY_WEBHOOK_SECRET


def get_payment_orchestrator(
    db: Session = Depends(get_db),
    gateway=Depends(get_payment_gateway),
    invoices=Depends(get_invoice_generator),
    sleep=Depends(get_retry_sleep),
) -> PaymentOrchestrator:
    return PaymentOrchestrator(db, gateway=gateway, invoices=invoices, sleep=sleep)


def get_state_machine(
    db: Session = Depends(get_db),
    invoices=Depends(get_invoice_generator),
    payments: PaymentOrchestrator = Depends(get_payment_orchestrator),
) -> ProposalStateMachine:
    return ProposalStateMachine(db, audit=payments.audit, invoice_generator=invoices, payments=payments)


def get_milestone_tracker(
    db: Session = Depends(get_db),
    publisher=Depends(get_content_publisher),
    payments: PaymentOrchestrator = Depends(get_payment_orchestrator),
    rate_limiter=Depends(get_rate_limiter),
    sleep=Depends(get_retry_sleep),
) -> MilestoneTracker:
    return MilestoneTracker(db, publisher=publisher, payments=payments, audit=payments.audit,
                            rate_limiter=rate_limiter, sleep=sleep)


def get_content_gate(
    db: Session = Depends(get_db),
    payments: PaymentOrchestrator = Depends(get_payment_orchestrator),
) -> ContentApprovalGate:
    return ContentApprovalGate(db, payments=payments)


def get_webhook_reconciler(
    db: Session = Depends(get_db),
    payments: PaymentOrchestrator = Depends(get_payment_orchestrator),
    secret: str = Depends(get_webhook_secret),
) -> WebhookReconciler:
    return WebhookReconciler(db, payments=payments, webhook_secret=secret)


# ============================================================================
# ACCESS CHECKS
# ============================================================================

def is_admin(user: User) -> bool:
    return get_user_type(user) == UserType.ADMIN


def is_campaign_brand(proposal: Proposal, user: User) -> bool:
    return proposal.campaign is not None and proposal.campaign.brand_id == user.id


def is_proposal_creator(proposal: Proposal, user: User) -> bool:
    return proposal.influencer_id == user.id


def load_proposal(db: Session, proposal_id: str) -> Proposal:
    proposal = db.query(Proposal).filter(Proposal.id == proposal_id).first()
    if not proposal:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Proposal not found")
    return proposal


def proposal_for_brand(db: Session, proposal_id: str, user: User) -> Proposal:
    """The campaign's brand (or an admin). Others get 404, not 403."""
    proposal = load_proposal(db, proposal_id)
    if not (is_admin(user) or is_campaign_brand(proposal, user)):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Proposal not found")
    return proposal


def proposal_for_creator(db: Session, proposal_id: str, user: User) -> Proposal:
    proposal = load_proposal(db, proposal_id)
    if not (is_admin(user) or is_proposal_creator(proposal, user)):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Proposal not found")
    return proposal


def proposal_for_participant(db: Session, proposal_id: str, user: User) -> Proposal:
    proposal = load_proposal(db, proposal_id)
    if not (is_admin(user) or is_campaign_brand(proposal, user) or is_proposal_creator(proposal, user)):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Proposal not found")
    return proposal


def payment_for_brand(db: Session, payment_id: str, user: User) -> Payment:
    payment = db.query(Payment).filter(Payment.id == payment_id).first()
    if not payment or not (is_admin(user) or payment.brand_id == user.id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Payment not found")
    return payment


def milestone_for_creator(db: Session, milestone_id: str, user: User) -> Milestone:
    milestone = db.query(Milestone).filter(Milestone.id == milestone_id).first()
    if not milestone or not (is_admin(user) or milestone.proposal.influencer_id == user.id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Milestone not found")
    return milestone


def content_for_brand(db: Session, content_id: str, user: User) -> CampaignContent:
    content = db.query(CampaignContent).filter(CampaignContent.id == content_id).first()
    if not content or not (is_admin(user) or is_campaign_brand(content.proposal, user)):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Content not found")
    return content
