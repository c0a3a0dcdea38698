import json

import pytest

from database.workflow_models import (
    AuditEntry, Payment, PaymentTransaction, PaymentStatusDB, PaymentWorkflowStatusDB,
    PaymentTransactionStatusDB
)
from services.errors import ConfigurationError, SignatureInvalid, ValidationError
from services.webhook_reconciler import WebhookReconciler

from conftest import WEBHOOK_SECRET, webhook_body, webhook_signature


@pytest.fixture
def reconciler(db, payments):
    return WebhookReconciler(db, payments=payments, webhook_secret=WEBHOOK_SECRET)


@pytest.fixture
def processing_payment(db, payments, approved_proposal, brand):
    payment = payments.create_upfront_payment(approved_proposal.id, brand.id).payment
    payments.process_payment_order(payment.id, brand.id)
    db.refresh(payment)
    return payment


def deliver(reconciler, body, signature=None):
    return reconciler.handle(body, signature if signature is not None else webhook_signature(body))


def snapshot(db):
    return (
        [(p.id, p.status) for p in db.query(Payment).all()],
        db.query(PaymentTransaction).count(),
        db.query(AuditEntry).count(),
    )


def test_captured_event_completes_payment_and_advances_workflow(db, reconciler, processing_payment, approved_proposal):
    body = webhook_body("payment.captured", "pay_hook_1", processing_payment.gateway_order_id, 590000)

    outcome = deliver(reconciler, body)

    assert outcome.result == "completed"
    assert outcome.payment_id == processing_payment.id
    assert outcome.correlation_id == "webhook-pay_hook_1"

    db.refresh(processing_payment)
    db.refresh(approved_proposal)
    assert processing_payment.status == PaymentStatusDB.COMPLETED
    assert processing_payment.gateway_payment_id == "pay_hook_1"
    assert approved_proposal.payment_status == PaymentWorkflowStatusDB.WORK_IN_PROGRESS

    transaction = db.query(PaymentTransaction).one()
    assert transaction.source == "webhook"
    assert transaction.gateway_response["amount"] == "5900.00"

    entries = db.query(AuditEntry).filter(AuditEntry.correlation_id == "webhook-pay_hook_1").all()
    completed = [e for e in entries if e.action == "payment_completed"]
    assert len(completed) == 1
    assert completed[0].is_system_action
    assert completed[0].actor_id is None


def test_redelivered_capture_is_a_no_op(db, reconciler, processing_payment, approved_proposal):
    body = webhook_body("payment.captured", "pay_hook_1", processing_payment.gateway_order_id, 590000)
    deliver(reconciler, body)

    again = deliver(reconciler, body)

    assert again.result == "duplicate"
    completed = db.query(Payment).filter(Payment.status == PaymentStatusDB.COMPLETED).count()
    assert completed == 1
    assert db.query(PaymentTransaction).count() == 1
    advances = db.query(AuditEntry).filter(
        AuditEntry.proposal_id == approved_proposal.id,
        AuditEntry.action == "workflow_work_in_progress",
    ).count()
    assert advances == 1


def test_tampered_body_is_rejected_without_mutation(db, reconciler, processing_payment):
    body = webhook_body("payment.captured", "pay_hook_1", processing_payment.gateway_order_id, 590000)
    signature = webhook_signature(body)
    tampered = body.replace(b"590000", b"100")
    before = snapshot(db)

    with pytest.raises(SignatureInvalid) as exc:
        reconciler.handle(tampered, signature)

    assert exc.value.message == "Invalid signature"
    assert snapshot(db) == before


def test_missing_signature_is_rejected(reconciler, processing_payment):
    body = webhook_body("payment.captured", "pay_hook_1", processing_payment.gateway_order_id, 590000)

    with pytest.raises(SignatureInvalid):
        reconciler.handle(body, None)


def test_unconfigured_secret_is_a_configuration_error(db, payments):
    reconciler = WebhookReconciler(db, payments=payments, webhook_secret="")

    with pytest.raises(ConfigurationError):
        reconciler.handle(b"{}", "anything")


def test_signed_garbage_is_a_validation_error_and_audited(db, reconciler):
    body = b"not json"

    with pytest.raises(ValidationError) as exc:
        deliver(reconciler, body)

    entry = db.query(AuditEntry).filter(AuditEntry.action == "webhook_processing_failed").one()
    assert entry.is_system_action
    assert entry.correlation_id == exc.value.correlation_id
    assert entry.correlation_id.startswith("webhook_")


def test_processing_error_is_rolled_back_and_audited(db, reconciler, processing_payment, monkeypatch):
    def explode(*args, **kwargs):
        raise RuntimeError("database went away")

    monkeypatch.setattr(reconciler.payments, "complete_payment", explode)
    body = webhook_body("payment.captured", "pay_hook_9", processing_payment.gateway_order_id, 590000)

    with pytest.raises(RuntimeError):
        deliver(reconciler, body)

    db.refresh(processing_payment)
    assert processing_payment.status == PaymentStatusDB.PROCESSING
    entry = db.query(AuditEntry).filter(AuditEntry.action == "webhook_processing_failed").one()
    assert entry.correlation_id == "webhook-pay_hook_9"
    assert entry.error_message == "RuntimeError"
    assert "database went away" in entry.description


def test_failed_event_marks_payment_failed_and_frees_the_slot(db, reconciler, processing_payment, approved_proposal, payments, brand):
    body = webhook_body(
        "payment.failed", "pay_hook_2", processing_payment.gateway_order_id, 590000,
        error_code="BAD_REQUEST_ERROR", error_description="Card declined by issuer",
    )

    outcome = deliver(reconciler, body)

    assert outcome.result == "failed"
    db.refresh(processing_payment)
    db.refresh(approved_proposal)
    assert processing_payment.status == PaymentStatusDB.FAILED
    assert processing_payment.failure_reason == "Card declined by issuer"
    assert processing_payment.active_key is None
    # the proposal stays where it was
    assert approved_proposal.payment_status == PaymentWorkflowStatusDB.UPFRONT_PAYMENT_PENDING

    transaction = db.query(PaymentTransaction).one()
    assert transaction.status == PaymentTransactionStatusDB.FAILED

    retry = payments.create_upfront_payment(approved_proposal.id, brand.id)
    assert retry.created
    assert retry.payment.attempt_number == 2


def test_redelivered_failure_is_a_no_op(db, reconciler, processing_payment):
    body = webhook_body("payment.failed", "pay_hook_2", processing_payment.gateway_order_id, 590000)
    deliver(reconciler, body)

    again = deliver(reconciler, body)

    assert again.result == "duplicate"
    assert db.query(PaymentTransaction).count() == 1


def test_capture_after_failure_is_flagged_not_applied(db, reconciler, processing_payment):
    deliver(reconciler, webhook_body("payment.failed", "pay_hook_2", processing_payment.gateway_order_id, 590000))

    outcome = deliver(reconciler, webhook_body("payment.captured", "pay_hook_3", processing_payment.gateway_order_id, 590000))

    assert outcome.result == "conflict"
    db.refresh(processing_payment)
    assert processing_payment.status == PaymentStatusDB.FAILED
    assert db.query(AuditEntry).filter(AuditEntry.action == "webhook_conflict").count() == 1


def test_unknown_payment_is_acknowledged_and_audited(db, reconciler):
    outcome = deliver(reconciler, webhook_body("payment.captured", "pay_ghost", "order_ghost", 100))

    assert outcome.result == "not_found"
    entry = db.query(AuditEntry).filter(AuditEntry.action == "webhook_unmatched").one()
    assert entry.correlation_id == "webhook-pay_ghost"


def test_unsupported_event_is_ignored(db, reconciler):
    body = json.dumps({"event": "refund.processed", "payload": {}}).encode()

    outcome = deliver(reconciler, body)

    assert outcome.result == "ignored"
    entry = db.query(AuditEntry).one()
    assert entry.action == "webhook_ignored"
    assert entry.is_system_action
    assert entry.correlation_id == outcome.correlation_id
