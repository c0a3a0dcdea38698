# Invoice Generation
# One invoice per approved proposal; status follows completed payments.

from datetime import datetime
from decimal import Decimal
import logging
import random
import string

from sqlalchemy.orm import Session

from database.workflow_models import (
    Proposal, Payment, Invoice, PaymentTypeDB, PaymentStatusDB, InvoiceStatusDB
)
from services.errors import NotFound
from services.payment_calculator import PaymentStructure, calculate_split, CENT

logger = logging.getLogger(__name__)


def generate_invoice_number() -> str:
    """Generate unique invoice number like INV-2026-001234."""
    year = datetime.now().year
    random_part = ''.join(random.choices(string.digits, k=6))
    return f"INV-{year}-{random_part}"


class InvoiceGenerator:
    def __init__(self, db: Session):
        self.db = db

    def generate_invoice(self, campaign_id: str, proposal_id: str) -> Invoice:
        existing = self.db.query(Invoice).filter(Invoice.proposal_id == proposal_id).first()
        if existing:
            return existing

        proposal = self.db.query(Proposal).filter(
            Proposal.id == proposal_id,
            Proposal.campaign_id == campaign_id,
        ).first()
        if not proposal:
            raise NotFound("Proposal not found for campaign")

        structure = PaymentStructure.from_campaign(proposal.campaign.payment_structure)
        split = calculate_split(proposal.proposed_compensation, structure)
        invoice = Invoice(
            invoice_number=generate_invoice_number(),
            campaign_id=campaign_id,
            proposal_id=proposal_id,
            subtotal=split.compensation,
            tax_amount=split.tax_amount,
            total_amount=split.total_with_tax,
            paid_amount=Decimal("0"),
            currency=proposal.campaign.currency,
            status=InvoiceStatusDB.SENT,
        )
        self.db.add(invoice)
        self.db.flush()
        logger.info(f"Invoice {invoice.invoice_number} generated for proposal {proposal_id}")
        return invoice

    def sync_after_payment(self, proposal_id: str) -> None:
        """Recompute paid_amount from completed upfront/completion payments."""
        invoice = self.db.query(Invoice).filter(Invoice.proposal_id == proposal_id).first()
        if not invoice:
            return

        payments = self.db.query(Payment).filter(
            Payment.proposal_id == proposal_id,
            Payment.status == PaymentStatusDB.COMPLETED,
            Payment.payment_type.in_([PaymentTypeDB.UPFRONT, PaymentTypeDB.COMPLETION]),
        ).all()
        paid = sum((p.amount for p in payments), Decimal("0"))

        settled = any(p.payment_type == PaymentTypeDB.COMPLETION for p in payments)

        invoice.paid_amount = paid
        # Parts are rounded separately and may fall one cent short of the total
        if paid >= invoice.total_amount or (settled and paid >= invoice.total_amount - CENT):
            invoice.status = InvoiceStatusDB.PAID
            invoice.paid_at = invoice.paid_at or datetime.utcnow()
        elif paid > 0:
            invoice.status = InvoiceStatusDB.PARTIALLY_PAID
        self.db.flush()
