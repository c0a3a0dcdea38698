# Schemas module for Collabflow
# Pydantic request/response models for the proposal and payment workflow

from schemas.workflow import (
    # Enums
    ApprovalStatus,
    PaymentWorkflowStatus,
    MilestoneStatus,
    PaymentType,
    PaymentStatus,
    ContentStatus,
    ReviewAction,

    # Proposal schemas
    ProposalCreate,
    ProposalDecision,
    ProposalResponse,
    CreatorProposalResponse,
    TransitionResponse,

    # Payment schemas
    PaymentResponse,
    CreatorPaymentResponse,
    PaymentOutcomeResponse,
    PaymentConfirmRequest,
    PaymentOrderResponse,

    # Milestone schemas
    MilestoneCompleteRequest,
    MilestoneResponse,
    MilestoneListResponse,
    MilestoneCompleteResponse,

    # Content schemas
    ContentSubmit,
    ContentReview,
    ContentResponse,
    ContentOutcomeResponse,

    # Webhook & audit
    WebhookAck,
    AuditEntryResponse,
)

__all__ = [
    'ApprovalStatus', 'PaymentWorkflowStatus', 'MilestoneStatus', 'PaymentType',
    'PaymentStatus', 'ContentStatus', 'ReviewAction',
    'ProposalCreate', 'ProposalDecision', 'ProposalResponse', 'CreatorProposalResponse',
    'TransitionResponse',
    'PaymentResponse', 'CreatorPaymentResponse', 'PaymentOutcomeResponse',
    'PaymentConfirmRequest', 'PaymentOrderResponse',
    'MilestoneCompleteRequest', 'MilestoneResponse', 'MilestoneListResponse',
    'MilestoneCompleteResponse',
    'ContentSubmit', 'ContentReview', 'ContentResponse', 'ContentOutcomeResponse',
    'WebhookAck', 'AuditEntryResponse',
]
