# Proposal Lifecycle & Payment Workflow Models
# Proposals, production milestones, split payments, content submissions,
# invoices and the append-only audit trail.

from sqlalchemy import (
    Column, String, Integer, DateTime, ForeignKey, Text, JSON, Enum, Boolean,
    Numeric, UniqueConstraint, event
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from datetime import datetime
import enum

from database.models import Base, generate_uuid


# ============================================================================
# ENUMS
# ============================================================================

class ApprovalStatusDB(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class PaymentWorkflowStatusDB(str, enum.Enum):
    NONE = "none"
    UPFRONT_PAYMENT_PENDING = "upfront_payment_pending"
    WORK_IN_PROGRESS = "work_in_progress"
    DELIVERABLES_SUBMITTED = "deliverables_submitted"
    COMPLETION_PAYMENT_PENDING = "completion_payment_pending"
    PAID = "paid"


class MilestoneStatusDB(str, enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    MANUAL_INTERVENTION = "manual_intervention"  # retries exhausted


class PaymentTypeDB(str, enum.Enum):
    UPFRONT = "upfront"
    COMPLETION = "completion"
    BONUS = "bonus"


class PaymentStatusDB(str, enum.Enum):
    CREATED = "created"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class PaymentTransactionStatusDB(str, enum.Enum):
    SUCCESS = "success"
    FAILED = "failed"


class ContentStatusDB(str, enum.Enum):
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"
    PUBLISHED = "published"


class InvoiceStatusDB(str, enum.Enum):
    SENT = "sent"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"


def _enum(enum_cls, name):
    return Enum(enum_cls, values_callable=lambda x: [e.value for e in x], name=name)


# ============================================================================
# PROPOSAL
# ============================================================================

class Proposal(Base):
    """A creator's offer against a campaign.

    Carries two independent state axes: `status` (approval) and
    `payment_status` (payment workflow).
    """
    __tablename__ = "proposals"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    campaign_id = Column(String(36), ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False, index=True)
    influencer_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)

    proposal_text = Column(Text)
    proposed_compensation = Column(Numeric(12, 2), nullable=False, default=0)

    status = Column(_enum(ApprovalStatusDB, "approvalstatusdb"), nullable=False, default=ApprovalStatusDB.PENDING)
    payment_status = Column(_enum(PaymentWorkflowStatusDB, "paymentworkflowstatusdb"), nullable=False, default=PaymentWorkflowStatusDB.NONE)

    brand_feedback = Column(Text)
    progress_percentage = Column(Integer, default=0)

    approved_at = Column(DateTime)
    rejected_at = Column(DateTime)
    work_started_at = Column(DateTime)  # upfront payment received
    deliverables_submitted_at = Column(DateTime)
    completed_at = Column(DateTime)  # completion payment received

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    # Relationships
    campaign = relationship("Campaign", back_populates="proposals")
    influencer = relationship("User")
    milestones = relationship("Milestone", back_populates="proposal", order_by="Milestone.order", cascade="all, delete-orphan")
    payments = relationship("Payment", back_populates="proposal", cascade="all, delete-orphan")
    contents = relationship("CampaignContent", back_populates="proposal", cascade="all, delete-orphan")


# ============================================================================
# MILESTONE
# ============================================================================

class Milestone(Base):
    """One ordered production step of a proposal."""
    __tablename__ = "proposal_milestones"
    __table_args__ = (
        UniqueConstraint("proposal_id", "milestone_order", name="uq_milestone_proposal_order"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    proposal_id = Column(String(36), ForeignKey("proposals.id", ondelete="CASCADE"), nullable=False, index=True)

    title = Column(String(100), nullable=False)
    description = Column(Text)
    order = Column("milestone_order", Integer, nullable=False)

    status = Column(_enum(MilestoneStatusDB, "milestonestatusdb"), nullable=False, default=MilestoneStatusDB.PENDING)
    retry_count = Column(Integer, nullable=False, default=0)
    max_retries = Column(Integer, nullable=False, default=3)
    requires_url = Column(Boolean, nullable=False, default=False)

    live_url = Column(String(2048))
    last_error = Column(Text)
    metadata_json = Column(JSON)

    started_at = Column(DateTime)
    completed_by = Column(String(36), ForeignKey("users.id"), nullable=True)
    completed_at = Column(DateTime)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    # Relationships
    proposal = relationship("Proposal", back_populates="milestones")


# ============================================================================
# PAYMENT
# ============================================================================

class Payment(Base):
    """One monetary transfer tied to a proposal.

    `active_key` is "{proposal_id}:{payment_type}" while the payment is not
    failed and NULL afterwards; the unique index on it holds the
    one-live-payment-per-type guarantee at the database level.
    """
    __tablename__ = "payments"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    proposal_id = Column(String(36), ForeignKey("proposals.id", ondelete="CASCADE"), nullable=False, index=True)
    campaign_id = Column(String(36), ForeignKey("campaigns.id"), nullable=False)
    brand_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    influencer_id = Column(String(36), ForeignKey("users.id"), nullable=False)

    payment_type = Column(_enum(PaymentTypeDB, "paymenttypedb"), nullable=False)
    attempt_number = Column(Integer, nullable=False, default=1)
    active_key = Column(String(100), unique=True, nullable=True)

    amount = Column(Numeric(12, 2), nullable=False)  # Brand pays, tax inclusive
    platform_fee = Column(Numeric(12, 2), nullable=False, default=0)
    net_amount = Column(Numeric(12, 2), nullable=False, default=0)  # Creator receives
    currency = Column(String(3), default="INR")

    status = Column(_enum(PaymentStatusDB, "paymentstatusdb"), nullable=False, default=PaymentStatusDB.CREATED)
    gateway_order_id = Column(String(100), index=True)
    gateway_payment_id = Column(String(100), unique=True, nullable=True)
    failure_reason = Column(Text)
    notes = Column(Text)

    paid_at = Column(DateTime)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    # Relationships
    proposal = relationship("Proposal", back_populates="payments")
    transactions = relationship("PaymentTransaction", back_populates="payment", cascade="all, delete-orphan")


class PaymentTransaction(Base):
    """Gateway-facing record of each confirmation attempt."""
    __tablename__ = "payment_transactions"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    payment_id = Column(String(36), ForeignKey("payments.id", ondelete="CASCADE"), nullable=False, index=True)

    amount = Column(Numeric(12, 2), nullable=False)
    gateway_payment_id = Column(String(100))
    source = Column(String(20), nullable=False)  # client | webhook
    status = Column(_enum(PaymentTransactionStatusDB, "paymenttransactionstatusdb"), nullable=False)
    gateway_response = Column(JSON)

    processed_at = Column(DateTime, server_default=func.now())

    # Relationships
    payment = relationship("Payment", back_populates="transactions")


# ============================================================================
# CONTENT
# ============================================================================

class CampaignContent(Base):
    """Content a creator submits for brand review and later publishes."""
    __tablename__ = "campaign_contents"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    proposal_id = Column(String(36), ForeignKey("proposals.id", ondelete="CASCADE"), nullable=False, index=True)
    campaign_id = Column(String(36), ForeignKey("campaigns.id"), nullable=False)
    influencer_id = Column(String(36), ForeignKey("users.id"), nullable=False)

    title = Column(String(255), nullable=False)
    description = Column(Text)
    platform = Column(String(50), nullable=False)
    content_type = Column(String(50), nullable=False)  # post, story, reel, video
    content_url = Column(String(2048))
    live_post_url = Column(String(2048))

    status = Column(_enum(ContentStatusDB, "contentstatusdb"), nullable=False, default=ContentStatusDB.SUBMITTED)
    brand_feedback = Column(Text)

    submitted_at = Column(DateTime, server_default=func.now())
    approved_at = Column(DateTime)
    rejected_at = Column(DateTime)
    published_at = Column(DateTime)
    published_by = Column(String(36), ForeignKey("users.id"), nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    # Relationships
    proposal = relationship("Proposal", back_populates="contents")


# ============================================================================
# INVOICE
# ============================================================================

class Invoice(Base):
    """Invoice raised against an approved proposal."""
    __tablename__ = "invoices"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    invoice_number = Column(String(50), unique=True, nullable=False)
    campaign_id = Column(String(36), ForeignKey("campaigns.id"), nullable=False)
    proposal_id = Column(String(36), ForeignKey("proposals.id", ondelete="CASCADE"), unique=True, nullable=False)

    subtotal = Column(Numeric(12, 2), nullable=False)
    tax_amount = Column(Numeric(12, 2), nullable=False)
    total_amount = Column(Numeric(12, 2), nullable=False)
    paid_amount = Column(Numeric(12, 2), nullable=False, default=0)
    currency = Column(String(3), default="INR")

    status = Column(_enum(InvoiceStatusDB, "invoicestatusdb"), nullable=False, default=InvoiceStatusDB.SENT)
    paid_at = Column(DateTime)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


# ============================================================================
# AUDIT TRAIL
# ============================================================================

class AuditEntry(Base):
    """Append-only record of a financial or state-changing action."""
    __tablename__ = "audit_entries"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    timestamp = Column(DateTime, nullable=False, default=datetime.utcnow)

    actor_id = Column(String(36), nullable=True)  # NULL for system actions
    is_system_action = Column(Boolean, nullable=False, default=False)
    action = Column(String(100), nullable=False, index=True)
    description = Column(Text)
    correlation_id = Column(String(100), nullable=False, index=True)
    amount_affected = Column(Numeric(12, 2))

    proposal_id = Column(String(36), index=True)
    payment_id = Column(String(36))
    milestone_id = Column(String(36))

    before_state = Column(JSON)
    after_state = Column(JSON)
    error_message = Column(Text)
    metadata_json = Column(JSON)


class AppendOnlyViolation(Exception):
    pass


@event.listens_for(AuditEntry, "before_update")
def _reject_audit_update(mapper, connection, target):
    raise AppendOnlyViolation(f"Audit entry {target.id} is append-only")


@event.listens_for(AuditEntry, "before_delete")
def _reject_audit_delete(mapper, connection, target):
    raise AppendOnlyViolation(f"Audit entry {target.id} cannot be deleted")
