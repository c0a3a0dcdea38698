# Webhook Reconciler
# Applies gateway payment events to internal Payment records.
# Redelivery of the same event is always safe.

from dataclasses import dataclass
from typing import Optional, Dict, Any
import json
import logging

from sqlalchemy.orm import Session

from config.app_config import RAZORPAY_WEBHOOK_SECRET
from core.razorpay_service import RazorpayWebhookHandler
from database.workflow_models import Payment, PaymentStatusDB
from services.audit_service import new_correlation_id
from services.errors import SignatureInvalid, ValidationError, ConfigurationError, AuditWriteError
from services.payment_orchestrator import PaymentOrchestrator

logger = logging.getLogger(__name__)


@dataclass
class WebhookOutcome:
    event: str
    result: str  # completed | failed | duplicate | ignored | not_found | conflict
    payment_id: Optional[str] = None
    correlation_id: Optional[str] = None


class WebhookReconciler:
    def __init__(self, db: Session, payments: PaymentOrchestrator,
                 webhook_secret: Optional[str] = None):
        self.db = db
        self.payments = payments
        self.audit = payments.audit
        self.webhook_secret = webhook_secret if webhook_secret is not None else RAZORPAY_WEBHOOK_SECRET

    def handle(self, raw_body: bytes, signature: Optional[str]) -> WebhookOutcome:
        """
        Verify, parse and apply one gateway event.

        The signature is checked before the body is parsed. Past that point
        every outcome, failures included, leaves a system audit entry.
        """
        if not self.webhook_secret:
            raise ConfigurationError("Webhook secret is not configured")
        if not RazorpayWebhookHandler.verify_webhook(raw_body, signature or "", self.webhook_secret):
            logger.warning("[WebhookReconciler] rejected webhook with invalid signature")
            raise SignatureInvalid()

        correlation_id = new_correlation_id("webhook")
        try:
            event = json.loads(raw_body)
            if not isinstance(event, dict):
                raise ValueError("not an object")
        except ValueError:
            error = ValidationError("Webhook body is not valid JSON", correlation_id=correlation_id)
            self._record_failure(correlation_id, "unknown", error)
            raise error

        data = RazorpayWebhookHandler.parse_payment_event(event)
        event_name = data["event"] or "unknown"
        reference = data["gateway_payment_id"] or data["gateway_order_id"]
        if reference:
            correlation_id = f"webhook-{reference}"

        try:
            return self._apply(event_name, data, correlation_id)
        except AuditWriteError:
            raise
        except Exception as e:
            logger.error(f"[WebhookReconciler] {correlation_id} failed to process {event_name}: {e}")
            self.db.rollback()
            self._record_failure(correlation_id, event_name, e)
            raise

    def _apply(self, event_name: str, data: Dict[str, Any], correlation_id: str) -> WebhookOutcome:
        if event_name not in RazorpayWebhookHandler.SUPPORTED_EVENTS:
            logger.info(f"[WebhookReconciler] ignoring event {event_name}")
            self.audit.record_system(
                "webhook_ignored",
                correlation_id,
                description=f"Unsupported event {event_name}",
            )
            self.db.commit()
            return WebhookOutcome(event=event_name, result="ignored", correlation_id=correlation_id)

        payment = self._find_payment(data)
        if payment is None:
            logger.info(
                f"[WebhookReconciler] {event_name} for unknown payment "
                f"{data['gateway_payment_id']} / order {data['gateway_order_id']}"
            )
            self.audit.record_system(
                "webhook_unmatched",
                correlation_id,
                description=f"{event_name} did not match any payment",
                metadata={"gateway_order_id": data["gateway_order_id"]},
            )
            self.db.commit()
            return WebhookOutcome(event=event_name, result="not_found", correlation_id=correlation_id)

        if event_name == "payment.captured":
            return self._captured(payment, data, correlation_id)
        return self._failed(payment, data, correlation_id)

    def _find_payment(self, data: Dict[str, Any]) -> Optional[Payment]:
        payment = None
        if data["gateway_payment_id"]:
            payment = self.db.query(Payment).filter(
                Payment.gateway_payment_id == data["gateway_payment_id"]
            ).first()
        if payment is None and data["gateway_order_id"]:
            payment = self.db.query(Payment).filter(
                Payment.gateway_order_id == data["gateway_order_id"]
            ).first()
        return payment

    def _captured(self, payment: Payment, data: Dict[str, Any], correlation_id: str) -> WebhookOutcome:
        status = PaymentStatusDB(payment.status)

        if status == PaymentStatusDB.COMPLETED:
            self._note(payment, correlation_id, "webhook_duplicate", "payment.captured redelivered; already completed")
            return WebhookOutcome("payment.captured", "duplicate", payment.id, correlation_id)

        if status == PaymentStatusDB.FAILED:
            # Money moved for a payment we already gave up on: needs a human
            logger.error(f"[WebhookReconciler] {correlation_id} capture for failed payment {payment.id}; reconcile manually")
            self._note(payment, correlation_id, "webhook_conflict",
                       "payment.captured received for a failed payment", error="captured_after_failure")
            return WebhookOutcome("payment.captured", "conflict", payment.id, correlation_id)

        if data["amount"] is not None and data["amount"] != payment.amount:
            logger.warning(
                f"[WebhookReconciler] {correlation_id} captured amount {data['amount']} "
                f"differs from payment amount {payment.amount}"
            )

        outcome = self.payments.complete_payment(
            payment,
            data["gateway_payment_id"],
            source="webhook",
            actor_id=None,
            correlation_id=correlation_id,
            gateway_response={"method": data["method"], "amount": str(data["amount"]) if data["amount"] is not None else None},
        )
        result = "completed" if outcome.created else "duplicate"
        return WebhookOutcome("payment.captured", result, payment.id, correlation_id)

    def _failed(self, payment: Payment, data: Dict[str, Any], correlation_id: str) -> WebhookOutcome:
        reason = data["error_description"] or data["error_code"] or "Payment failed at gateway"
        changed = self.payments.mark_failed(
            payment,
            reason,
            source="webhook",
            correlation_id=correlation_id,
            gateway_payment_id=data["gateway_payment_id"],
            gateway_response={"error_code": data["error_code"], "method": data["method"]},
        )
        if not changed:
            self.db.rollback()
            self._note(payment, correlation_id, "webhook_duplicate",
                       f"payment.failed ignored; payment is {payment.status.value}")
            return WebhookOutcome("payment.failed", "duplicate", payment.id, correlation_id)
        return WebhookOutcome("payment.failed", "failed", payment.id, correlation_id)

    def _record_failure(self, correlation_id: str, event_name: str, error: Exception) -> None:
        self.audit.record_system(
            "webhook_processing_failed",
            correlation_id,
            description=f"{event_name}: {error}",
            error=getattr(error, "code", type(error).__name__),
        )
        self.db.commit()

    def _note(self, payment: Payment, correlation_id: str, action: str, description: str,
              error: Optional[str] = None) -> None:
        self.audit.record_system(
            action,
            correlation_id,
            description=description,
            proposal_id=payment.proposal_id,
            payment_id=payment.id,
            amount=payment.amount,
            error=error,
        )
        self.db.commit()
