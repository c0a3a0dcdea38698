# Payment Orchestrator
# Creates upfront / completion / bonus payments, drives them to gateway
# orders and applies confirmations.

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional, Callable, List, Tuple
import logging
import time

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config.app_config import MAX_PAYMENT_ATTEMPTS_PER_TYPE, DEFAULT_CURRENCY
from core.retry import retry_call
from database.workflow_models import (
    Proposal, Payment, PaymentTransaction, Milestone,
    ApprovalStatusDB, PaymentWorkflowStatusDB, PaymentTypeDB, PaymentStatusDB,
    PaymentTransactionStatusDB, MilestoneStatusDB
)
from services.audit_service import AuditLog, new_correlation_id
from services.errors import (
    WorkflowError, ValidationError, NotFound, InvalidStateTransition,
    PaymentAttemptsExceeded, IntegrationFailure, SignatureInvalid
)
from services.payment_calculator import (
    PaymentStructure, PaymentSplit, calculate_split, platform_fee_for
)
from services.proposal_state_machine import ProposalStateMachine

logger = logging.getLogger(__name__)

PUBLISHING_TITLE = "Publishing"

# Workflow states in which the upfront payment may be created
UPFRONT_ALLOWED = {PaymentWorkflowStatusDB.NONE, PaymentWorkflowStatusDB.UPFRONT_PAYMENT_PENDING}

# Bonus is only meaningful once the upfront payment has been received
BONUS_ALLOWED = {
    PaymentWorkflowStatusDB.WORK_IN_PROGRESS,
    PaymentWorkflowStatusDB.DELIVERABLES_SUBMITTED,
    PaymentWorkflowStatusDB.COMPLETION_PAYMENT_PENDING,
    PaymentWorkflowStatusDB.PAID,
}


def active_key_for(proposal_id: str, payment_type: PaymentTypeDB) -> str:
    return f"{proposal_id}:{PaymentTypeDB(payment_type).value}"


def payment_state(payment: Payment) -> dict:
    return {
        "status": payment.status,
        "gateway_order_id": payment.gateway_order_id,
        "gateway_payment_id": payment.gateway_payment_id,
    }


@dataclass
class PaymentOutcome:
    payment: Payment
    created: bool
    correlation_id: str


class PaymentOrchestrator:
    """
    Payment creation is idempotent per (proposal, payment type): an existing
    non-failed payment is returned instead of creating another one. The
    check happens before any state guard so a retried request always gets
    the original record back.
    """

    def __init__(self, db: Session, gateway=None, audit: Optional[AuditLog] = None,
                 state_machine: Optional[ProposalStateMachine] = None, invoices=None,
                 sleep: Callable[[float], None] = time.sleep,
                 max_attempts_per_type: int = MAX_PAYMENT_ATTEMPTS_PER_TYPE):
        self.db = db
        self.gateway = gateway
        self.audit = audit or AuditLog(db)
        self.state_machine = state_machine or ProposalStateMachine(db, audit=self.audit)
        self.invoices = invoices
        self.sleep = sleep
        self.max_attempts_per_type = max_attempts_per_type

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_payment(self, payment_id: str) -> Payment:
        payment = self.db.query(Payment).filter(Payment.id == payment_id).first()
        if not payment:
            raise NotFound("Payment not found")
        return payment

    def list_payments(self, proposal_id: str) -> List[Payment]:
        return self.db.query(Payment).filter(
            Payment.proposal_id == proposal_id
        ).order_by(Payment.created_at.asc(), Payment.attempt_number.asc()).all()

    def find_active(self, proposal_id: str, payment_type: PaymentTypeDB) -> Optional[Payment]:
        return self.db.query(Payment).filter(
            Payment.proposal_id == proposal_id,
            Payment.payment_type == payment_type,
            Payment.status != PaymentStatusDB.FAILED,
        ).first()

    def _split_for(self, proposal: Proposal) -> Tuple[PaymentStructure, PaymentSplit]:
        structure = PaymentStructure.from_campaign(proposal.campaign.payment_structure if proposal.campaign else None)
        return structure, calculate_split(proposal.proposed_compensation or Decimal("0"), structure)

    def _refuse(self, error: WorkflowError, action: str, proposal_id: str,
                actor_id: Optional[str], payment_id: Optional[str] = None):
        """Audit a refused financial operation, commit the record and raise."""
        self.db.rollback()
        self.audit.record(
            action,
            error.correlation_id,
            actor_id=actor_id,
            description=error.message,
            proposal_id=proposal_id,
            payment_id=payment_id,
            error=error.code,
        )
        self.db.commit()
        raise error

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def _insert_payment(self, proposal: Proposal, payment_type: PaymentTypeDB, amount: Decimal,
                        actor_id: Optional[str], correlation_id: str) -> PaymentOutcome:
        attempts = self.db.query(Payment).filter(
            Payment.proposal_id == proposal.id,
            Payment.payment_type == payment_type,
        ).count()
        if attempts >= self.max_attempts_per_type:
            self._refuse(
                PaymentAttemptsExceeded(
                    f"{payment_type.value} payment already attempted {attempts} times",
                    correlation_id=correlation_id,
                ),
                "payment_attempts_exceeded", proposal.id, actor_id,
            )

        fee = platform_fee_for(amount)
        payment = Payment(
            proposal_id=proposal.id,
            campaign_id=proposal.campaign_id,
            brand_id=proposal.campaign.brand_id,
            influencer_id=proposal.influencer_id,
            payment_type=payment_type,
            attempt_number=attempts + 1,
            active_key=active_key_for(proposal.id, payment_type),
            amount=amount,
            platform_fee=fee,
            net_amount=amount - fee,
            currency=proposal.campaign.currency or DEFAULT_CURRENCY,
            status=PaymentStatusDB.CREATED,
        )
        try:
            self.db.add(payment)
            self.db.flush()
        except IntegrityError:
            # Lost the race to a concurrent create; return the winner
            self.db.rollback()
            existing = self.find_active(proposal.id, payment_type)
            if existing is None:
                raise
            logger.info(f"[PaymentOrchestrator] {correlation_id} concurrent {payment_type.value} create, returning {existing.id}")
            return PaymentOutcome(payment=existing, created=False, correlation_id=correlation_id)

        self.audit.record(
            "payment_created",
            correlation_id,
            actor_id=actor_id,
            description=f"{payment_type.value} payment created (attempt {payment.attempt_number})",
            proposal_id=proposal.id,
            payment_id=payment.id,
            amount=amount,
            after={"status": payment.status, "platform_fee": fee, "net_amount": payment.net_amount},
        )
        self.db.commit()
        self.db.refresh(payment)
        logger.info(f"[PaymentOrchestrator] {correlation_id} created {payment_type.value} payment {payment.id} for {amount}")
        return PaymentOutcome(payment=payment, created=True, correlation_id=correlation_id)

    def _existing_outcome(self, proposal_id: str, payment_type: PaymentTypeDB,
                          correlation_id: str) -> Optional[PaymentOutcome]:
        existing = self.find_active(proposal_id, payment_type)
        if existing is None:
            return None
        logger.info(f"[PaymentOrchestrator] {correlation_id} {payment_type.value} payment {existing.id} already exists")
        return PaymentOutcome(payment=existing, created=False, correlation_id=correlation_id)

    def create_upfront_payment(self, proposal_id: str, actor_id: Optional[str],
                               correlation_id: Optional[str] = None) -> PaymentOutcome:
        correlation_id = correlation_id or new_correlation_id()
        proposal = self.state_machine.get(proposal_id)

        existing = self._existing_outcome(proposal.id, PaymentTypeDB.UPFRONT, correlation_id)
        if existing:
            return existing

        if ApprovalStatusDB(proposal.status) != ApprovalStatusDB.APPROVED:
            self._refuse(InvalidStateTransition("Proposal must be approved before the upfront payment",
                                                correlation_id=correlation_id),
                         "payment_refused", proposal.id, actor_id)
        if PaymentWorkflowStatusDB(proposal.payment_status) not in UPFRONT_ALLOWED:
            self._refuse(InvalidStateTransition(
                f"Upfront payment not allowed in {proposal.payment_status.value}",
                correlation_id=correlation_id),
                "payment_refused", proposal.id, actor_id)

        _, split = self._split_for(proposal)
        if split.upfront_amount <= 0:
            self._refuse(ValidationError("Proposal has no compensation to pay", correlation_id=correlation_id),
                         "payment_refused", proposal.id, actor_id)

        from services.milestone_tracker import ensure_milestones  # Import here to avoid circular

        try:
            self.state_machine.begin_payment_workflow(proposal, actor_id, correlation_id)
        except InvalidStateTransition as e:
            # A concurrent create moved the workflow first; hand back its payment
            self.db.rollback()
            winner = self._existing_outcome(proposal_id, PaymentTypeDB.UPFRONT, correlation_id)
            if winner:
                return winner
            self._refuse(e, "payment_refused", proposal_id, actor_id)
        ensure_milestones(self.db, proposal, self.audit, correlation_id)
        return self._insert_payment(proposal, PaymentTypeDB.UPFRONT, split.upfront_amount, actor_id, correlation_id)

    def create_completion_payment(self, proposal_id: str, actor_id: Optional[str],
                                  correlation_id: Optional[str] = None) -> PaymentOutcome:
        correlation_id = correlation_id or new_correlation_id()
        proposal = self.state_machine.get(proposal_id)

        existing = self._existing_outcome(proposal.id, PaymentTypeDB.COMPLETION, correlation_id)
        if existing:
            return existing

        if PaymentWorkflowStatusDB(proposal.payment_status) != PaymentWorkflowStatusDB.COMPLETION_PAYMENT_PENDING:
            self._refuse(InvalidStateTransition(
                f"Completion payment not allowed in {proposal.payment_status.value}",
                correlation_id=correlation_id),
                "payment_refused", proposal.id, actor_id)

        _, split = self._split_for(proposal)
        if split.completion_amount <= 0:
            self._refuse(ValidationError("Proposal has no compensation to pay", correlation_id=correlation_id),
                         "payment_refused", proposal.id, actor_id)

        return self._insert_payment(proposal, PaymentTypeDB.COMPLETION, split.completion_amount, actor_id, correlation_id)

    def create_bonus_payment(self, proposal_id: str, actor_id: Optional[str],
                             correlation_id: Optional[str] = None) -> Optional[PaymentOutcome]:
        """Returns None when the campaign has no bonus configured."""
        correlation_id = correlation_id or new_correlation_id()
        proposal = self.state_machine.get(proposal_id)

        existing = self._existing_outcome(proposal.id, PaymentTypeDB.BONUS, correlation_id)
        if existing:
            return existing

        structure, split = self._split_for(proposal)
        if not structure.has_bonus or split.bonus_amount <= 0:
            logger.info(f"[PaymentOrchestrator] {correlation_id} no bonus configured for proposal {proposal.id}")
            return None

        if ApprovalStatusDB(proposal.status) != ApprovalStatusDB.APPROVED \
                or PaymentWorkflowStatusDB(proposal.payment_status) not in BONUS_ALLOWED:
            self._refuse(InvalidStateTransition(
                "Bonus payment requires the upfront payment to be received",
                correlation_id=correlation_id),
                "payment_refused", proposal.id, actor_id)

        published = self.db.query(Milestone).filter(
            Milestone.proposal_id == proposal.id,
            Milestone.title == PUBLISHING_TITLE,
            Milestone.status == MilestoneStatusDB.COMPLETED,
        ).first()
        if not published:
            self._refuse(InvalidStateTransition(
                "Bonus payment requires the Publishing milestone to be completed",
                correlation_id=correlation_id),
                "payment_refused", proposal.id, actor_id)

        return self._insert_payment(proposal, PaymentTypeDB.BONUS, split.bonus_amount, actor_id, correlation_id)

    # ------------------------------------------------------------------
    # Gateway order
    # ------------------------------------------------------------------

    def process_payment_order(self, payment_id: str, actor_id: Optional[str],
                              correlation_id: Optional[str] = None) -> PaymentOutcome:
        """
        Create the gateway order and move the payment to processing.
        On gateway failure the payment stays `created` so the call can be repeated.
        """
        correlation_id = correlation_id or new_correlation_id()
        payment = self.get_payment(payment_id)
        status = PaymentStatusDB(payment.status)

        if status == PaymentStatusDB.PROCESSING and payment.gateway_order_id:
            return PaymentOutcome(payment=payment, created=False, correlation_id=correlation_id)
        if status != PaymentStatusDB.CREATED:
            self._refuse(InvalidStateTransition(
                f"Cannot create a gateway order for a {status.value} payment",
                correlation_id=correlation_id),
                "payment_order_refused", payment.proposal_id, actor_id, payment.id)

        amount, currency, receipt = payment.amount, payment.currency, payment.id
        notes = {"proposal_id": payment.proposal_id, "payment_type": payment.payment_type.value}
        result = retry_call(
            lambda: self.gateway.create_order(amount, currency, receipt=receipt, notes=notes),
            label=f"[PaymentOrchestrator] {correlation_id} create_order {payment.id}",
            sleep=self.sleep,
        )
        if not result.ok:
            self._refuse(IntegrationFailure(
                "Payment gateway is unavailable; the payment can be retried",
                correlation_id=correlation_id,
                details={"attempts": result.attempts}),
                "payment_order_failed", payment.proposal_id, actor_id, payment.id)

        order_id = result.value["id"]
        before = payment_state(payment)
        updated = self.db.query(Payment).filter(
            Payment.id == payment.id,
            Payment.status == PaymentStatusDB.CREATED,
        ).update({
            Payment.status: PaymentStatusDB.PROCESSING,
            Payment.gateway_order_id: order_id,
        }, synchronize_session=False)
        if updated == 0:
            self._refuse(InvalidStateTransition(
                "Payment was modified concurrently; reload and retry",
                correlation_id=correlation_id),
                "payment_order_refused", payment.proposal_id, actor_id, payment.id)

        self.db.refresh(payment)
        self.audit.record(
            "payment_order_created",
            correlation_id,
            actor_id=actor_id,
            description=f"Gateway order {order_id} created",
            proposal_id=payment.proposal_id,
            payment_id=payment.id,
            amount=payment.amount,
            before=before,
            after=payment_state(payment),
        )
        self.db.commit()
        logger.info(f"[PaymentOrchestrator] {correlation_id} payment {payment.id} processing with order {order_id}")
        return PaymentOutcome(payment=payment, created=True, correlation_id=correlation_id)

    # ------------------------------------------------------------------
    # Confirmation
    # ------------------------------------------------------------------

    def confirm_payment(self, payment_id: str, gateway_payment_id: str, signature: str,
                        actor_id: Optional[str], correlation_id: Optional[str] = None) -> PaymentOutcome:
        """Client-driven confirmation after checkout."""
        correlation_id = correlation_id or new_correlation_id()
        payment = self.get_payment(payment_id)

        if not self.gateway.verify_payment_signature(payment.gateway_order_id, gateway_payment_id, signature):
            logger.warning(f"[PaymentOrchestrator] {correlation_id} invalid signature for payment {payment.id}")
            self._refuse(SignatureInvalid(correlation_id=correlation_id),
                         "payment_signature_invalid", payment.proposal_id, actor_id, payment.id)

        if PaymentStatusDB(payment.status) == PaymentStatusDB.COMPLETED:
            return PaymentOutcome(payment=payment, created=False, correlation_id=correlation_id)

        return self.complete_payment(
            payment, gateway_payment_id, source="client", actor_id=actor_id,
            correlation_id=correlation_id, gateway_response={"signature_verified": True},
        )

    def complete_payment(self, payment: Payment, gateway_payment_id: Optional[str], source: str,
                         actor_id: Optional[str], correlation_id: str,
                         gateway_response: Optional[dict] = None) -> PaymentOutcome:
        """
        processing -> completed, then cascade the proposal workflow.
        A concurrent completion of the same payment returns created=False.
        """
        before = payment_state(payment)
        values = {Payment.status: PaymentStatusDB.COMPLETED, Payment.paid_at: datetime.utcnow()}
        if gateway_payment_id:
            values[Payment.gateway_payment_id] = gateway_payment_id
        updated = self.db.query(Payment).filter(
            Payment.id == payment.id,
            Payment.status == PaymentStatusDB.PROCESSING,
        ).update(values, synchronize_session=False)

        if updated == 0:
            self.db.rollback()
            self.db.refresh(payment)
            if PaymentStatusDB(payment.status) == PaymentStatusDB.COMPLETED:
                return PaymentOutcome(payment=payment, created=False, correlation_id=correlation_id)
            self._refuse(InvalidStateTransition(
                f"Cannot complete a {payment.status.value} payment",
                correlation_id=correlation_id),
                "payment_completion_refused", payment.proposal_id, actor_id, payment.id)

        self.db.refresh(payment)
        self.db.add(PaymentTransaction(
            payment_id=payment.id,
            amount=payment.amount,
            gateway_payment_id=gateway_payment_id,
            source=source,
            status=PaymentTransactionStatusDB.SUCCESS,
            gateway_response=gateway_response,
        ))
        self.audit.record(
            "payment_completed",
            correlation_id,
            actor_id=actor_id,
            description=f"{payment.payment_type.value} payment completed via {source}",
            proposal_id=payment.proposal_id,
            payment_id=payment.id,
            amount=payment.amount,
            before=before,
            after=payment_state(payment),
        )

        proposal = self.state_machine.get(payment.proposal_id)
        self.state_machine.advance_after_payment(proposal, payment.payment_type, actor_id, correlation_id)
        self.db.commit()
        logger.info(f"[PaymentOrchestrator] {correlation_id} payment {payment.id} completed via {source}")

        self._sync_invoice(payment, correlation_id)
        return PaymentOutcome(payment=payment, created=True, correlation_id=correlation_id)

    def mark_failed(self, payment: Payment, reason: str, source: str, correlation_id: str,
                    gateway_payment_id: Optional[str] = None,
                    gateway_response: Optional[dict] = None) -> bool:
        """
        created/processing -> failed. Frees the (proposal, type) slot for a
        new attempt; the proposal itself is left untouched.
        Returns False when the payment was no longer open.
        """
        before = payment_state(payment)
        updated = self.db.query(Payment).filter(
            Payment.id == payment.id,
            Payment.status.in_([PaymentStatusDB.CREATED, PaymentStatusDB.PROCESSING]),
        ).update({
            Payment.status: PaymentStatusDB.FAILED,
            Payment.failure_reason: reason,
            Payment.active_key: None,
        }, synchronize_session=False)
        if updated == 0:
            return False

        self.db.refresh(payment)
        self.db.add(PaymentTransaction(
            payment_id=payment.id,
            amount=payment.amount,
            gateway_payment_id=gateway_payment_id,
            source=source,
            status=PaymentTransactionStatusDB.FAILED,
            gateway_response=gateway_response,
        ))
        self.audit.record_system(
            "payment_failed",
            correlation_id,
            description=f"{payment.payment_type.value} payment failed: {reason}",
            proposal_id=payment.proposal_id,
            payment_id=payment.id,
            amount=payment.amount,
            before=before,
            after=payment_state(payment),
            error=reason,
        )
        self.db.commit()
        logger.warning(f"[PaymentOrchestrator] {correlation_id} payment {payment.id} failed: {reason}")
        return True

    def _sync_invoice(self, payment: Payment, correlation_id: str) -> None:
        if self.invoices is None:
            return
        try:
            self.invoices.sync_after_payment(payment.proposal_id)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.warning(f"[PaymentOrchestrator] {correlation_id} invoice sync failed for {payment.proposal_id}: {e}")
