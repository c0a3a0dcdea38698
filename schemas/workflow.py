# Pydantic Schemas for the proposal lifecycle and payment workflow
# Request bodies are validated here before anything reaches the services.

from pydantic import BaseModel, Field
from typing import Optional, List, Any, Dict
from datetime import datetime
from decimal import Decimal
from enum import Enum


# ============================================================================
# ENUMS
# ============================================================================

class ApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class PaymentWorkflowStatus(str, Enum):
    NONE = "none"
    UPFRONT_PAYMENT_PENDING = "upfront_payment_pending"
    WORK_IN_PROGRESS = "work_in_progress"
    DELIVERABLES_SUBMITTED = "deliverables_submitted"
    COMPLETION_PAYMENT_PENDING = "completion_payment_pending"
    PAID = "paid"


class MilestoneStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    MANUAL_INTERVENTION = "manual_intervention"


class PaymentType(str, Enum):
    UPFRONT = "upfront"
    COMPLETION = "completion"
    BONUS = "bonus"


class PaymentStatus(str, Enum):
    CREATED = "created"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ContentStatus(str, Enum):
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"
    PUBLISHED = "published"


class ReviewAction(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


# ============================================================================
# PROPOSAL SCHEMAS
# ============================================================================

class ProposalCreate(BaseModel):
    """Schema for a creator submitting a proposal."""
    campaign_id: str
    proposal_text: str = Field(..., min_length=10, max_length=5000)
    proposed_compensation: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)


class ProposalDecision(BaseModel):
    feedback: Optional[str] = Field(None, max_length=2000)


class ProposalResponse(BaseModel):
    """Proposal as the campaign's brand (or an admin) sees it."""
    id: str
    campaign_id: str
    influencer_id: str
    proposal_text: Optional[str] = None
    proposed_compensation: Decimal
    status: ApprovalStatus
    payment_status: PaymentWorkflowStatus
    progress_percentage: int = 0
    brand_feedback: Optional[str] = None
    approved_at: Optional[datetime] = None
    work_started_at: Optional[datetime] = None
    deliverables_submitted_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CreatorProposalResponse(BaseModel):
    """Proposal as its creator sees it: own payout, no brand-internal notes."""
    id: str
    campaign_id: str
    proposal_text: Optional[str] = None
    proposed_compensation: Decimal
    status: ApprovalStatus
    payment_status: PaymentWorkflowStatus
    progress_percentage: int = 0
    approved_at: Optional[datetime] = None
    work_started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class TransitionResponse(BaseModel):
    success: bool = True
    transactionId: str
    proposal: ProposalResponse
    invoice_error: Optional[str] = None


# ============================================================================
# PAYMENT SCHEMAS
# ============================================================================

class PaymentResponse(BaseModel):
    """Payment as the paying brand sees it."""
    id: str
    proposal_id: str
    payment_type: PaymentType
    attempt_number: int
    amount: Decimal
    platform_fee: Decimal
    net_amount: Decimal
    currency: str
    status: PaymentStatus
    gateway_order_id: Optional[str] = None
    gateway_payment_id: Optional[str] = None
    failure_reason: Optional[str] = None
    paid_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CreatorPaymentResponse(BaseModel):
    """Payment as the receiving creator sees it: net payout only."""
    id: str
    proposal_id: str
    payment_type: PaymentType
    net_amount: Decimal
    currency: str
    status: PaymentStatus
    paid_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PaymentOutcomeResponse(BaseModel):
    success: bool = True
    created: bool
    transactionId: str
    payment: Optional[PaymentResponse] = None
    message: Optional[str] = None


class PaymentConfirmRequest(BaseModel):
    gateway_payment_id: str = Field(..., min_length=1, max_length=100)
    gateway_order_id: Optional[str] = Field(None, max_length=100)
    signature: str = Field(..., min_length=1, max_length=256)


class PaymentOrderResponse(BaseModel):
    success: bool = True
    transactionId: str
    payment: PaymentResponse
    key_id: Optional[str] = None  # public checkout key


# ============================================================================
# MILESTONE SCHEMAS
# ============================================================================

class MilestoneCompleteRequest(BaseModel):
    live_url: Optional[str] = Field(None, max_length=2048, alias="liveUrl")
    notes: Optional[str] = Field(None, max_length=2000)

    class Config:
        populate_by_name = True


class MilestoneResponse(BaseModel):
    id: str
    proposal_id: str
    title: str
    description: Optional[str] = None
    order: int
    status: MilestoneStatus
    retry_count: int
    max_retries: int
    requires_url: bool
    live_url: Optional[str] = None
    last_error: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_by: Optional[str] = None
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class MilestoneListResponse(BaseModel):
    proposal_id: str
    progress: int
    milestones: List[MilestoneResponse]


class MilestoneCompleteResponse(BaseModel):
    success: bool = True
    transactionId: str
    changed: bool
    milestone: MilestoneResponse
    progress: int
    integrationStatus: Dict[str, str] = {}
    bonusPayment: Optional[PaymentResponse] = None


# ============================================================================
# CONTENT SCHEMAS
# ============================================================================

class ContentSubmit(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=5000)
    platform: str = Field(..., min_length=1, max_length=50)
    content_type: str = Field(..., min_length=1, max_length=50)
    content_url: Optional[str] = Field(None, max_length=2048)


class ContentReview(BaseModel):
    action: ReviewAction
    feedback: Optional[str] = Field(None, max_length=2000)


class ContentResponse(BaseModel):
    id: str
    proposal_id: str
    title: str
    description: Optional[str] = None
    platform: str
    content_type: str
    content_url: Optional[str] = None
    live_post_url: Optional[str] = None
    status: ContentStatus
    brand_feedback: Optional[str] = None
    submitted_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    published_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ContentOutcomeResponse(BaseModel):
    success: bool = True
    transactionId: str
    content: ContentResponse
    payment_status: PaymentWorkflowStatus
    completionPayment: Optional[PaymentResponse] = None


# ============================================================================
# WEBHOOK & AUDIT SCHEMAS
# ============================================================================

class WebhookAck(BaseModel):
    success: bool = True
    event: str
    result: str
    transactionId: Optional[str] = None


class AuditEntryResponse(BaseModel):
    id: str
    timestamp: datetime
    actor_id: Optional[str] = None
    is_system_action: bool
    action: str
    description: Optional[str] = None
    correlation_id: str
    amount_affected: Optional[Decimal] = None
    proposal_id: Optional[str] = None
    payment_id: Optional[str] = None
    milestone_id: Optional[str] = None
    before_state: Optional[Dict[str, Any]] = None
    after_state: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    metadata_json: Optional[Dict[str, Any]] = None

    class Config:
        from_attributes = True
