from decimal import Decimal

import pytest

from database.workflow_models import (
    AuditEntry, Invoice, Milestone, Payment, PaymentTransaction,
    PaymentStatusDB, PaymentTypeDB, PaymentWorkflowStatusDB, MilestoneStatusDB,
    InvoiceStatusDB, PaymentTransactionStatusDB
)
from services.errors import (
    InvalidStateTransition, IntegrationFailure, PaymentAttemptsExceeded,
    SignatureInvalid, ValidationError
)
from services.payment_orchestrator import PaymentOrchestrator

from conftest import no_sleep, payment_signature


def audit_actions(db, proposal_id):
    return [e.action for e in db.query(AuditEntry).filter(AuditEntry.proposal_id == proposal_id).all()]


class TestUpfrontPayment:
    def test_creates_upfront_payment_with_fee_and_milestones(self, db, payments, approved_proposal, brand):
        outcome = payments.create_upfront_payment(approved_proposal.id, brand.id)

        payment = outcome.payment
        assert outcome.created
        assert payment.payment_type == PaymentTypeDB.UPFRONT
        assert payment.amount == Decimal("5900.00")
        assert payment.platform_fee == Decimal("295.00")
        assert payment.net_amount == Decimal("5605.00")
        assert payment.status == PaymentStatusDB.CREATED
        assert payment.attempt_number == 1

        db.refresh(approved_proposal)
        assert approved_proposal.payment_status == PaymentWorkflowStatusDB.UPFRONT_PAYMENT_PENDING
        milestones = db.query(Milestone).filter(Milestone.proposal_id == approved_proposal.id).all()
        assert len(milestones) == 5
        assert "payment_created" in audit_actions(db, approved_proposal.id)

    def test_second_call_returns_existing_payment(self, db, payments, approved_proposal, brand):
        first = payments.create_upfront_payment(approved_proposal.id, brand.id)
        second = payments.create_upfront_payment(approved_proposal.id, brand.id)

        assert second.created is False
        assert second.payment.id == first.payment.id
        assert db.query(Payment).filter(Payment.proposal_id == approved_proposal.id).count() == 1

    def test_concurrent_orchestrators_create_one_payment(self, db, session_factory, gateway, approved_proposal, brand):
        other_session = session_factory()
        try:
            one = PaymentOrchestrator(db, gateway=gateway, sleep=no_sleep)
            two = PaymentOrchestrator(other_session, gateway=gateway, sleep=no_sleep)

            # `one` creates and commits right after `two` has found nothing
            check_existing = two._existing_outcome
            raced = []

            def check_then_interleave(proposal_id, payment_type, correlation_id):
                outcome = check_existing(proposal_id, payment_type, correlation_id)
                if not raced:
                    raced.append(one.create_upfront_payment(approved_proposal.id, brand.id))
                return outcome

            two._existing_outcome = check_then_interleave
            second = two.create_upfront_payment(approved_proposal.id, brand.id)
            first = raced[0]
        finally:
            other_session.close()

        assert first.created and not second.created
        assert second.payment.id == first.payment.id
        live = db.query(Payment).filter(
            Payment.proposal_id == approved_proposal.id,
            Payment.status != PaymentStatusDB.FAILED,
        ).count()
        assert live == 1

    def test_pending_proposal_is_refused_and_audited(self, db, payments, proposal, brand):
        with pytest.raises(InvalidStateTransition):
            payments.create_upfront_payment(proposal.id, brand.id)

        assert db.query(Payment).count() == 0
        assert "payment_refused" in audit_actions(db, proposal.id)

    def test_zero_compensation_is_refused(self, db, payments, approved_proposal, brand):
        approved_proposal.proposed_compensation = Decimal("0")
        db.commit()

        with pytest.raises(ValidationError):
            payments.create_upfront_payment(approved_proposal.id, brand.id)

        db.refresh(approved_proposal)
        assert approved_proposal.payment_status == PaymentWorkflowStatusDB.NONE

    def test_failed_payment_frees_slot_until_attempt_cap(self, db, payments, approved_proposal, brand):
        for attempt in range(1, 4):
            outcome = payments.create_upfront_payment(approved_proposal.id, brand.id)
            assert outcome.created
            assert outcome.payment.attempt_number == attempt
            assert payments.mark_failed(outcome.payment, "card declined", source="webhook", correlation_id=f"tx_{attempt}")
            assert outcome.payment.active_key is None

        with pytest.raises(PaymentAttemptsExceeded):
            payments.create_upfront_payment(approved_proposal.id, brand.id)

        assert "payment_attempts_exceeded" in audit_actions(db, approved_proposal.id)


class TestGatewayOrder:
    def test_order_moves_payment_to_processing(self, db, payments, gateway, approved_proposal, brand):
        payment = payments.create_upfront_payment(approved_proposal.id, brand.id).payment

        outcome = payments.process_payment_order(payment.id, brand.id)

        assert outcome.payment.status == PaymentStatusDB.PROCESSING
        assert outcome.payment.gateway_order_id == "order_test_1"
        method, endpoint, data = gateway.requests[0]
        assert (method, endpoint) == ("POST", "/orders")
        assert data["amount"] == 590000
        assert data["receipt"] == payment.id

    def test_repeated_order_call_is_idempotent(self, payments, gateway, approved_proposal, brand):
        payment = payments.create_upfront_payment(approved_proposal.id, brand.id).payment
        payments.process_payment_order(payment.id, brand.id)

        again = payments.process_payment_order(payment.id, brand.id)

        assert again.created is False
        assert len(gateway.requests) == 1

    def test_gateway_timeout_leaves_payment_created(self, db, payments, gateway, approved_proposal, brand):
        payment = payments.create_upfront_payment(approved_proposal.id, brand.id).payment
        gateway.fail_times = 3

        with pytest.raises(IntegrationFailure) as exc:
            payments.process_payment_order(payment.id, brand.id)

        db.refresh(payment)
        assert payment.status == PaymentStatusDB.CREATED
        assert payment.gateway_order_id is None
        assert len(gateway.requests) == 3
        assert exc.value.correlation_id
        assert "payment_order_failed" in audit_actions(db, approved_proposal.id)

        # and can be retried once the gateway recovers
        outcome = payments.process_payment_order(payment.id, brand.id)
        assert outcome.payment.status == PaymentStatusDB.PROCESSING

    def test_transient_gateway_error_is_retried(self, payments, gateway, approved_proposal, brand):
        payment = payments.create_upfront_payment(approved_proposal.id, brand.id).payment
        gateway.fail_times = 1

        outcome = payments.process_payment_order(payment.id, brand.id)

        assert outcome.payment.status == PaymentStatusDB.PROCESSING
        assert len(gateway.requests) == 2


class TestConfirmation:
    def _processing_upfront(self, payments, proposal, brand):
        payment = payments.create_upfront_payment(proposal.id, brand.id).payment
        payments.process_payment_order(payment.id, brand.id)
        return payment

    def test_confirm_completes_payment_and_starts_work(self, db, payments, approved_proposal, brand):
        payment = self._processing_upfront(payments, approved_proposal, brand)
        signature = payment_signature(payment.gateway_order_id, "pay_123")

        outcome = payments.confirm_payment(payment.id, "pay_123", signature, brand.id)

        assert outcome.created
        assert outcome.payment.status == PaymentStatusDB.COMPLETED
        assert outcome.payment.gateway_payment_id == "pay_123"
        db.refresh(approved_proposal)
        assert approved_proposal.payment_status == PaymentWorkflowStatusDB.WORK_IN_PROGRESS
        assert approved_proposal.work_started_at is not None

        transaction = db.query(PaymentTransaction).filter(PaymentTransaction.payment_id == payment.id).one()
        assert transaction.source == "client"
        assert transaction.status == PaymentTransactionStatusDB.SUCCESS

        invoice = db.query(Invoice).filter(Invoice.proposal_id == approved_proposal.id).one()
        assert invoice.status == InvoiceStatusDB.PARTIALLY_PAID
        assert invoice.paid_amount == Decimal("5900.00")

        correlated = db.query(AuditEntry).filter(AuditEntry.correlation_id == outcome.correlation_id).all()
        assert {"payment_completed", "workflow_work_in_progress"} <= {e.action for e in correlated}

    def test_invalid_signature_changes_nothing(self, db, payments, approved_proposal, brand):
        payment = self._processing_upfront(payments, approved_proposal, brand)

        with pytest.raises(SignatureInvalid):
            payments.confirm_payment(payment.id, "pay_123", "forged", brand.id)

        db.refresh(payment)
        db.refresh(approved_proposal)
        assert payment.status == PaymentStatusDB.PROCESSING
        assert approved_proposal.payment_status == PaymentWorkflowStatusDB.UPFRONT_PAYMENT_PENDING
        assert db.query(PaymentTransaction).count() == 0
        assert "payment_signature_invalid" in audit_actions(db, approved_proposal.id)

    def test_repeat_confirmation_is_idempotent(self, db, payments, approved_proposal, brand):
        payment = self._processing_upfront(payments, approved_proposal, brand)
        signature = payment_signature(payment.gateway_order_id, "pay_123")
        payments.confirm_payment(payment.id, "pay_123", signature, brand.id)

        again = payments.confirm_payment(payment.id, "pay_123", signature, brand.id)

        assert again.created is False
        assert db.query(PaymentTransaction).count() == 1
        assert audit_actions(db, approved_proposal.id).count("workflow_work_in_progress") == 1

    def test_created_payment_cannot_be_completed(self, payments, approved_proposal, brand):
        payment = payments.create_upfront_payment(approved_proposal.id, brand.id).payment

        with pytest.raises(InvalidStateTransition):
            payments.complete_payment(payment, "pay_early", source="client", actor_id=brand.id,
                                      correlation_id="tx_early")

    def test_failed_payment_is_not_failed_twice(self, payments, approved_proposal, brand):
        payment = payments.create_upfront_payment(approved_proposal.id, brand.id).payment

        assert payments.mark_failed(payment, "declined", source="webhook", correlation_id="tx_a")
        assert not payments.mark_failed(payment, "declined", source="webhook", correlation_id="tx_b")


class TestCompletionAndBonus:
    def test_completion_requires_content_approval(self, payments, work_in_progress, brand):
        with pytest.raises(InvalidStateTransition):
            payments.create_completion_payment(work_in_progress.id, brand.id)

    def test_completion_payment_after_content_approval(self, db, machine, work_in_progress, influencer, brand):
        machine.mark_deliverables_submitted(work_in_progress, influencer.id, "tx_submit")
        db.commit()

        outcome = machine.mark_content_approved(work_in_progress.id, brand.id)

        assert outcome.proposal.payment_status == PaymentWorkflowStatusDB.COMPLETION_PAYMENT_PENDING
        assert outcome.payment.created
        assert outcome.payment.payment.payment_type == PaymentTypeDB.COMPLETION
        assert outcome.payment.payment.amount == Decimal("5900.00")

    def test_invoice_settles_when_rounded_parts_fall_a_cent_short(self, db, machine, payments, proposal,
                                                                   influencer, brand):
        # 0.09 * 1.18 = 0.1062 -> total 0.11, each half 0.0531 -> 0.05
        proposal.proposed_compensation = Decimal("0.09")
        db.commit()
        machine.approve(proposal.id, brand.id)

        upfront = payments.create_upfront_payment(proposal.id, brand.id).payment
        payments.process_payment_order(upfront.id, brand.id)
        payments.confirm_payment(upfront.id, "pay_up", payment_signature(upfront.gateway_order_id, "pay_up"), brand.id)
        db.refresh(proposal)
        machine.mark_deliverables_submitted(proposal, influencer.id, "tx_submit")
        db.commit()

        completion = machine.mark_content_approved(proposal.id, brand.id).payment.payment
        payments.process_payment_order(completion.id, brand.id)
        payments.confirm_payment(completion.id, "pay_done",
                                 payment_signature(completion.gateway_order_id, "pay_done"), brand.id)

        invoice = db.query(Invoice).filter(Invoice.proposal_id == proposal.id).one()
        db.refresh(invoice)
        assert completion.amount == Decimal("0.05")
        assert invoice.total_amount == Decimal("0.11")
        assert invoice.paid_amount == Decimal("0.10")
        assert invoice.status == InvoiceStatusDB.PAID

    def test_bonus_requires_publishing_milestone(self, db, payments, work_in_progress, brand):
        with pytest.raises(InvalidStateTransition):
            payments.create_bonus_payment(work_in_progress.id, brand.id)

        db.query(Milestone).filter(Milestone.proposal_id == work_in_progress.id).update(
            {Milestone.status: MilestoneStatusDB.COMPLETED}, synchronize_session=False
        )
        db.commit()

        outcome = payments.create_bonus_payment(work_in_progress.id, brand.id)
        assert outcome.created
        assert outcome.payment.amount == Decimal("1180.00")

    def test_no_bonus_configured_returns_none(self, db, payments, work_in_progress, campaign, brand):
        campaign.payment_structure = {"upfront": 50, "completion": 50, "bonus": 0}
        db.commit()

        assert payments.create_bonus_payment(work_in_progress.id, brand.id) is None
