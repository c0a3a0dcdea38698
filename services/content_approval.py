# Content Approval Gate
# Creator submits deliverables; the brand approves (releasing the completion
# payment) or sends them back for revision.

from dataclasses import dataclass
from datetime import datetime
from typing import Optional
import logging

from sqlalchemy.orm import Session

from database.workflow_models import (
    Proposal, CampaignContent, ContentStatusDB, PaymentWorkflowStatusDB
)
from services.audit_service import AuditLog, new_correlation_id
from services.errors import NotFound, InvalidStateTransition, ValidationError
from services.payment_orchestrator import PaymentOrchestrator, PaymentOutcome
from services.proposal_state_machine import ProposalStateMachine

logger = logging.getLogger(__name__)


@dataclass
class ContentOutcome:
    content: CampaignContent
    proposal: Proposal
    correlation_id: str
    payment: Optional[PaymentOutcome] = None


class ContentApprovalGate:
    def __init__(self, db: Session, payments: PaymentOrchestrator,
                 audit: Optional[AuditLog] = None):
        self.db = db
        self.audit = audit or payments.audit
        self.payments = payments
        self.state_machine = ProposalStateMachine(db, audit=self.audit, payments=payments)

    def get(self, content_id: str) -> CampaignContent:
        content = self.db.query(CampaignContent).filter(CampaignContent.id == content_id).first()
        if not content:
            raise NotFound("Content not found")
        return content

    def submit(self, proposal_id: str, actor_id: str, title: str, platform: str,
               content_type: str, content_url: Optional[str] = None,
               description: Optional[str] = None,
               correlation_id: Optional[str] = None) -> ContentOutcome:
        correlation_id = correlation_id or new_correlation_id()
        proposal = self.state_machine.get(proposal_id)
        if not title or not platform or not content_type:
            raise ValidationError("title, platform and content_type are required", correlation_id=correlation_id)

        content = CampaignContent(
            proposal_id=proposal.id,
            campaign_id=proposal.campaign_id,
            influencer_id=proposal.influencer_id,
            title=title,
            description=description,
            platform=platform,
            content_type=content_type,
            content_url=content_url,
            status=ContentStatusDB.SUBMITTED,
            submitted_at=datetime.utcnow(),
        )
        self.db.add(content)
        self.db.flush()

        # Resubmission after approval keeps the workflow where it is
        if PaymentWorkflowStatusDB(proposal.payment_status) != PaymentWorkflowStatusDB.DELIVERABLES_SUBMITTED:
            self.state_machine.mark_deliverables_submitted(proposal, actor_id, correlation_id)

        self.audit.record(
            "content_submitted",
            correlation_id,
            actor_id=actor_id,
            description=f"Content '{title}' submitted for review",
            proposal_id=proposal.id,
            metadata={"content_id": content.id, "platform": platform, "content_type": content_type},
        )
        self.db.commit()
        self.db.refresh(content)
        logger.info(f"[ContentApproval] {correlation_id} content {content.id} submitted for proposal {proposal.id}")
        return ContentOutcome(content=content, proposal=proposal, correlation_id=correlation_id)

    def approve(self, content_id: str, actor_id: str, feedback: Optional[str] = None,
                correlation_id: Optional[str] = None) -> ContentOutcome:
        correlation_id = correlation_id or new_correlation_id()
        content = self._review(content_id, ContentStatusDB.APPROVED, actor_id, feedback, correlation_id)

        outcome = self.state_machine.mark_content_approved(content.proposal_id, actor_id, correlation_id)
        logger.info(f"[ContentApproval] {correlation_id} content {content.id} approved")
        return ContentOutcome(
            content=content,
            proposal=outcome.proposal,
            correlation_id=correlation_id,
            payment=outcome.payment,
        )

    def reject(self, content_id: str, actor_id: str, feedback: Optional[str] = None,
               correlation_id: Optional[str] = None) -> ContentOutcome:
        correlation_id = correlation_id or new_correlation_id()
        if not feedback:
            raise ValidationError("Feedback is required when requesting a revision", correlation_id=correlation_id)
        content = self._review(content_id, ContentStatusDB.REJECTED, actor_id, feedback, correlation_id)

        proposal = self.state_machine.get(content.proposal_id)
        self.state_machine.request_revision(proposal, actor_id, correlation_id, feedback)
        self.db.commit()
        logger.info(f"[ContentApproval] {correlation_id} content {content.id} sent back for revision")
        return ContentOutcome(content=content, proposal=proposal, correlation_id=correlation_id)

    def _review(self, content_id: str, target: ContentStatusDB, actor_id: str,
                feedback: Optional[str], correlation_id: str) -> CampaignContent:
        """submitted -> approved|rejected. Checks the workflow before touching the content. Flushes only."""
        content = self.get(content_id)
        proposal = self.state_machine.get(content.proposal_id)
        if PaymentWorkflowStatusDB(proposal.payment_status) != PaymentWorkflowStatusDB.DELIVERABLES_SUBMITTED:
            raise InvalidStateTransition(
                f"Content can only be reviewed while deliverables are submitted (now {proposal.payment_status.value})",
                correlation_id=correlation_id,
            )

        stamp = CampaignContent.approved_at if target == ContentStatusDB.APPROVED else CampaignContent.rejected_at
        updated = self.db.query(CampaignContent).filter(
            CampaignContent.id == content.id,
            CampaignContent.status == ContentStatusDB.SUBMITTED,
        ).update({
            CampaignContent.status: target,
            CampaignContent.brand_feedback: feedback,
            stamp: datetime.utcnow(),
        }, synchronize_session=False)
        if updated == 0:
            raise InvalidStateTransition(
                f"Content is already {content.status.value}",
                correlation_id=correlation_id,
            )

        self.db.refresh(content)
        self.audit.record(
            f"content_{target.value}",
            correlation_id,
            actor_id=actor_id,
            description=feedback or f"Content {target.value}",
            proposal_id=content.proposal_id,
            metadata={"content_id": content.id},
        )
        return content
