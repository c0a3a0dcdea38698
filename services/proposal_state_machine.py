# Proposal State Machine
# Owns the two independent state axes of a Proposal: approval and payment workflow.

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional, Dict, FrozenSet, Any
import logging

from sqlalchemy.orm import Session

from database.models import Campaign, CampaignStatusDB
from database.workflow_models import (
    Proposal, ApprovalStatusDB, PaymentWorkflowStatusDB, PaymentTypeDB
)
from services.audit_service import AuditLog, new_correlation_id
from services.errors import InvalidStateTransition, NotFound, ValidationError

logger = logging.getLogger(__name__)


# ============================================================================
# TRANSITION TABLES
# ============================================================================

APPROVAL_TRANSITIONS: Dict[ApprovalStatusDB, FrozenSet[ApprovalStatusDB]] = {
    ApprovalStatusDB.PENDING: frozenset({ApprovalStatusDB.APPROVED, ApprovalStatusDB.REJECTED}),
    ApprovalStatusDB.APPROVED: frozenset(),
    ApprovalStatusDB.REJECTED: frozenset(),
}

WORKFLOW_TRANSITIONS: Dict[PaymentWorkflowStatusDB, FrozenSet[PaymentWorkflowStatusDB]] = {
    PaymentWorkflowStatusDB.NONE: frozenset({PaymentWorkflowStatusDB.UPFRONT_PAYMENT_PENDING}),
    PaymentWorkflowStatusDB.UPFRONT_PAYMENT_PENDING: frozenset({
        PaymentWorkflowStatusDB.WORK_IN_PROGRESS,
        PaymentWorkflowStatusDB.DELIVERABLES_SUBMITTED,
    }),
    PaymentWorkflowStatusDB.WORK_IN_PROGRESS: frozenset({PaymentWorkflowStatusDB.DELIVERABLES_SUBMITTED}),
    PaymentWorkflowStatusDB.DELIVERABLES_SUBMITTED: frozenset({
        PaymentWorkflowStatusDB.COMPLETION_PAYMENT_PENDING,
        PaymentWorkflowStatusDB.WORK_IN_PROGRESS,  # revision requested
    }),
    PaymentWorkflowStatusDB.COMPLETION_PAYMENT_PENDING: frozenset({PaymentWorkflowStatusDB.PAID}),
    PaymentWorkflowStatusDB.PAID: frozenset(),
}

# Workflow state reached when a payment of the given type completes
PAYMENT_ADVANCES = {
    PaymentTypeDB.UPFRONT: (
        PaymentWorkflowStatusDB.UPFRONT_PAYMENT_PENDING,
        PaymentWorkflowStatusDB.WORK_IN_PROGRESS,
        "work_started_at",
    ),
    PaymentTypeDB.COMPLETION: (
        PaymentWorkflowStatusDB.COMPLETION_PAYMENT_PENDING,
        PaymentWorkflowStatusDB.PAID,
        "completed_at",
    ),
}


def can_transition_approval(current: ApprovalStatusDB, target: ApprovalStatusDB) -> bool:
    return target in APPROVAL_TRANSITIONS[ApprovalStatusDB(current)]


def can_transition_workflow(current: PaymentWorkflowStatusDB, target: PaymentWorkflowStatusDB) -> bool:
    return target in WORKFLOW_TRANSITIONS[PaymentWorkflowStatusDB(current)]


def proposal_state(proposal: Proposal) -> Dict[str, Any]:
    return {
        "status": proposal.status,
        "payment_status": proposal.payment_status,
        "progress_percentage": proposal.progress_percentage,
    }


@dataclass
class TransitionOutcome:
    proposal: Proposal
    correlation_id: str
    changed: bool = True
    payment: Any = None  # PaymentOutcome when the transition created a payment
    invoice_error: Optional[str] = None


class ProposalStateMachine:
    """
    Validates and applies proposal transitions with compare-and-swap writes.

    approve/reject commit. The payment-workflow transitions only flush, so the
    caller commits them together with the action that caused them.
    """

    def __init__(self, db: Session, audit: Optional[AuditLog] = None,
                 invoice_generator=None, payments=None):
        self.db = db
        self.audit = audit or AuditLog(db)
        self.invoice_generator = invoice_generator
        self.payments = payments

    def get(self, proposal_id: str) -> Proposal:
        proposal = self.db.query(Proposal).filter(Proposal.id == proposal_id).first()
        if not proposal:
            raise NotFound("Proposal not found")
        return proposal

    def submit(self, campaign_id: str, influencer_id: str, proposal_text: str,
               proposed_compensation: Decimal, correlation_id: Optional[str] = None) -> TransitionOutcome:
        """A creator offers to run a campaign. Starts in pending / none."""
        correlation_id = correlation_id or new_correlation_id()
        campaign = self.db.query(Campaign).filter(Campaign.id == campaign_id).first()
        if not campaign:
            raise NotFound("Campaign not found")
        if campaign.status != CampaignStatusDB.ACTIVE:
            raise InvalidStateTransition("Campaign is not accepting proposals", correlation_id=correlation_id)
        if proposed_compensation is None or Decimal(proposed_compensation) < 0:
            raise ValidationError("Compensation cannot be negative", correlation_id=correlation_id)

        open_proposal = self.db.query(Proposal).filter(
            Proposal.campaign_id == campaign_id,
            Proposal.influencer_id == influencer_id,
            Proposal.status != ApprovalStatusDB.REJECTED,
        ).first()
        if open_proposal:
            raise InvalidStateTransition(
                "You already have an open proposal for this campaign",
                correlation_id=correlation_id,
            )

        proposal = Proposal(
            campaign_id=campaign_id,
            influencer_id=influencer_id,
            proposal_text=proposal_text,
            proposed_compensation=Decimal(proposed_compensation),
            status=ApprovalStatusDB.PENDING,
            payment_status=PaymentWorkflowStatusDB.NONE,
            progress_percentage=0,
        )
        self.db.add(proposal)
        self.db.flush()
        self.audit.record(
            "proposal_submitted",
            correlation_id,
            actor_id=influencer_id,
            description="Proposal submitted",
            proposal_id=proposal.id,
            amount=proposal.proposed_compensation,
            after=proposal_state(proposal),
        )
        self.db.commit()
        self.db.refresh(proposal)
        return TransitionOutcome(proposal=proposal, correlation_id=correlation_id)

    # ------------------------------------------------------------------
    # Approval axis
    # ------------------------------------------------------------------

    def _apply_approval(self, proposal: Proposal, target: ApprovalStatusDB,
                        actor_id: str, correlation_id: str, values: dict) -> Proposal:
        current = ApprovalStatusDB(proposal.status)
        if not can_transition_approval(current, target):
            logger.warning(f"[ProposalStateMachine] {correlation_id} rejected {current.value} -> {target.value} for {proposal.id}")
            self.audit.record(
                "proposal_transition_refused",
                correlation_id,
                actor_id=actor_id,
                description=f"{current.value} -> {target.value} is not allowed",
                proposal_id=proposal.id,
                error=InvalidStateTransition.code,
            )
            self.db.commit()
            raise InvalidStateTransition(
                f"Cannot move proposal from {current.value} to {target.value}",
                correlation_id=correlation_id,
            )

        before = proposal_state(proposal)
        updated = self.db.query(Proposal).filter(
            Proposal.id == proposal.id,
            Proposal.status == current,
        ).update({Proposal.status: target, **values}, synchronize_session=False)
        if updated == 0:
            self.db.rollback()
            raise InvalidStateTransition(
                "Proposal was modified concurrently; reload and retry",
                correlation_id=correlation_id,
            )

        self.db.refresh(proposal)
        self.audit.record(
            f"proposal_{target.value}",
            correlation_id,
            actor_id=actor_id,
            description=f"Proposal {target.value}",
            proposal_id=proposal.id,
            amount=proposal.proposed_compensation,
            before=before,
            after=proposal_state(proposal),
        )
        return proposal

    def approve(self, proposal_id: str, actor_id: str, feedback: Optional[str] = None,
                correlation_id: Optional[str] = None) -> TransitionOutcome:
        correlation_id = correlation_id or new_correlation_id()
        proposal = self.get(proposal_id)
        values = {Proposal.approved_at: datetime.utcnow()}
        if feedback is not None:
            values[Proposal.brand_feedback] = feedback
        self._apply_approval(proposal, ApprovalStatusDB.APPROVED, actor_id, correlation_id, values)
        self.db.commit()
        logger.info(f"[ProposalStateMachine] {correlation_id} approved proposal {proposal_id}")

        outcome = TransitionOutcome(proposal=proposal, correlation_id=correlation_id)
        outcome.invoice_error = self._generate_invoice(proposal, actor_id, correlation_id)
        return outcome

    def _generate_invoice(self, proposal: Proposal, actor_id: str, correlation_id: str) -> Optional[str]:
        # Best-effort: the approval above is already committed
        if self.invoice_generator is None:
            return None
        try:
            self.invoice_generator.generate_invoice(proposal.campaign_id, proposal.id)
            self.db.commit()
            return None
        except Exception as e:
            self.db.rollback()
            logger.warning(f"[ProposalStateMachine] {correlation_id} invoice generation failed for {proposal.id}: {e}")
            self.audit.record(
                "invoice_generation_failed",
                correlation_id,
                actor_id=actor_id,
                description="Invoice generation failed after approval (recoverable)",
                proposal_id=proposal.id,
                error=str(e),
            )
            self.db.commit()
            return str(e)

    def reject(self, proposal_id: str, actor_id: str, feedback: Optional[str] = None,
               correlation_id: Optional[str] = None) -> TransitionOutcome:
        correlation_id = correlation_id or new_correlation_id()
        proposal = self.get(proposal_id)
        values = {Proposal.rejected_at: datetime.utcnow()}
        if feedback is not None:
            values[Proposal.brand_feedback] = feedback
        self._apply_approval(proposal, ApprovalStatusDB.REJECTED, actor_id, correlation_id, values)
        self.db.commit()
        logger.info(f"[ProposalStateMachine] {correlation_id} rejected proposal {proposal_id}")
        return TransitionOutcome(proposal=proposal, correlation_id=correlation_id)

    # ------------------------------------------------------------------
    # Payment-workflow axis
    # ------------------------------------------------------------------

    def transition_workflow(self, proposal: Proposal, target: PaymentWorkflowStatusDB,
                            actor_id: Optional[str], correlation_id: str,
                            values: Optional[dict] = None,
                            description: Optional[str] = None) -> Proposal:
        """Apply one payment-workflow transition from the table. Flushes, never commits."""
        if ApprovalStatusDB(proposal.status) != ApprovalStatusDB.APPROVED:
            raise InvalidStateTransition(
                "Payment workflow requires an approved proposal",
                correlation_id=correlation_id,
            )
        current = PaymentWorkflowStatusDB(proposal.payment_status)
        if not can_transition_workflow(current, target):
            logger.warning(f"[ProposalStateMachine] {correlation_id} rejected {current.value} -> {target.value} for {proposal.id}")
            raise InvalidStateTransition(
                f"Cannot move payment workflow from {current.value} to {target.value}",
                correlation_id=correlation_id,
            )

        before = proposal_state(proposal)
        updated = self.db.query(Proposal).filter(
            Proposal.id == proposal.id,
            Proposal.status == ApprovalStatusDB.APPROVED,
            Proposal.payment_status == current,
        ).update({Proposal.payment_status: target, **(values or {})}, synchronize_session=False)
        if updated == 0:
            raise InvalidStateTransition(
                "Proposal was modified concurrently; reload and retry",
                correlation_id=correlation_id,
            )

        self.db.refresh(proposal)
        self.audit.record(
            f"workflow_{target.value}",
            correlation_id,
            actor_id=actor_id,
            description=description or f"Payment workflow {current.value} -> {target.value}",
            proposal_id=proposal.id,
            before=before,
            after=proposal_state(proposal),
        )
        return proposal

    def begin_payment_workflow(self, proposal: Proposal, actor_id: str, correlation_id: str) -> Proposal:
        if PaymentWorkflowStatusDB(proposal.payment_status) == PaymentWorkflowStatusDB.UPFRONT_PAYMENT_PENDING:
            return proposal
        return self.transition_workflow(
            proposal, PaymentWorkflowStatusDB.UPFRONT_PAYMENT_PENDING, actor_id, correlation_id
        )

    def mark_deliverables_submitted(self, proposal: Proposal, actor_id: str, correlation_id: str) -> Proposal:
        return self.transition_workflow(
            proposal,
            PaymentWorkflowStatusDB.DELIVERABLES_SUBMITTED,
            actor_id,
            correlation_id,
            values={Proposal.deliverables_submitted_at: datetime.utcnow()},
        )

    def request_revision(self, proposal: Proposal, actor_id: str, correlation_id: str,
                         feedback: Optional[str] = None) -> Proposal:
        values = {Proposal.brand_feedback: feedback} if feedback is not None else None
        return self.transition_workflow(
            proposal,
            PaymentWorkflowStatusDB.WORK_IN_PROGRESS,
            actor_id,
            correlation_id,
            values=values,
            description="Content rejected; revision requested",
        )

    def mark_content_approved(self, proposal_id: str, actor_id: str,
                              correlation_id: Optional[str] = None) -> TransitionOutcome:
        """
        deliverables_submitted -> completion_payment_pending, then create the
        completion payment. The transition is committed before the payment
        step so a failed payment creation can be retried on its own.
        """
        correlation_id = correlation_id or new_correlation_id()
        proposal = self.get(proposal_id)
        self.transition_workflow(
            proposal, PaymentWorkflowStatusDB.COMPLETION_PAYMENT_PENDING, actor_id, correlation_id
        )
        self.db.commit()

        outcome = TransitionOutcome(proposal=proposal, correlation_id=correlation_id)
        if self.payments is not None:
            outcome.payment = self.payments.create_completion_payment(
                proposal_id, actor_id, correlation_id=correlation_id
            )
            self.db.refresh(proposal)
        return outcome

    def advance_after_payment(self, proposal: Proposal, payment_type: PaymentTypeDB,
                              actor_id: Optional[str], correlation_id: str) -> bool:
        """
        Cascade a completed payment onto the workflow. Returns False when the
        workflow is not in the state this payment advances from; the payment
        itself stays completed and the skip is audited.
        """
        advance = PAYMENT_ADVANCES.get(PaymentTypeDB(payment_type))
        if advance is None:
            return False
        source, target, stamp = advance
        if PaymentWorkflowStatusDB(proposal.payment_status) != source:
            logger.info(
                f"[ProposalStateMachine] {correlation_id} {payment_type.value} payment completed while "
                f"workflow is {proposal.payment_status.value}; no advance"
            )
            self.audit.record(
                "workflow_advance_skipped",
                correlation_id,
                actor_id=actor_id,
                description=f"{payment_type.value} payment completed outside {source.value}",
                proposal_id=proposal.id,
                before=proposal_state(proposal),
            )
            return False
        self.transition_workflow(
            proposal, target, actor_id, correlation_id,
            values={getattr(Proposal, stamp): datetime.utcnow()},
        )
        return True
