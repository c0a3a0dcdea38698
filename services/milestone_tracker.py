# Milestone Tracker
# Ordered production checklist per proposal and the completion protocol,
# including the Publishing side effects with retry and rollback.

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, List, Callable, Any
import logging
import time

from sqlalchemy.orm import Session

from core.retry import retry_call, run_with_rollback
from core.url_validation import detect_platform, normalize_url
from database.workflow_models import (
    Proposal, Milestone, MilestoneStatusDB, PaymentWorkflowStatusDB
)
from services.audit_service import AuditLog, new_correlation_id
from services.errors import (
    NotFound, InvalidStateTransition, MilestoneOrderViolation,
    UrlRequired, InvalidUrlFormat, PublishingIntegrationError, RateLimited, WorkflowError
)
from services.payment_orchestrator import PaymentOrchestrator, PaymentOutcome
from services.rate_limiter import ActionRateLimiter, default_rate_limiter

logger = logging.getLogger(__name__)

PUBLISHING = "Publishing"

DEFAULT_MILESTONES = [
    {"title": "Script Writing", "description": "Create compelling script and concept", "max_retries": 3},
    {"title": "Content Creation", "description": "Film or create the content", "max_retries": 3},
    {"title": "Editing", "description": "Edit and polish the content", "max_retries": 3},
    {"title": "Review & Revisions", "description": "Review feedback and make revisions", "max_retries": 3},
    {"title": PUBLISHING, "description": "Publish content live and add URL", "max_retries": 5, "requires_url": True},
]

# Milestones can only be worked on once the upfront payment is in
WORK_STATES = {
    PaymentWorkflowStatusDB.WORK_IN_PROGRESS,
    PaymentWorkflowStatusDB.DELIVERABLES_SUBMITTED,
    PaymentWorkflowStatusDB.COMPLETION_PAYMENT_PENDING,
    PaymentWorkflowStatusDB.PAID,
}


def milestone_state(milestone: Milestone) -> dict:
    return {
        "status": milestone.status,
        "retry_count": milestone.retry_count,
        "live_url": milestone.live_url,
    }


def ensure_milestones(db: Session, proposal: Proposal, audit: AuditLog,
                      correlation_id: str, actor_id: Optional[str] = None) -> List[Milestone]:
    """Create the default milestone set once per proposal. Flushes, never commits."""
    existing = db.query(Milestone).filter(
        Milestone.proposal_id == proposal.id
    ).order_by(Milestone.order.asc()).all()
    if existing:
        return existing

    milestones = []
    for order, template in enumerate(DEFAULT_MILESTONES, start=1):
        milestone = Milestone(
            proposal_id=proposal.id,
            title=template["title"],
            description=template["description"],
            order=order,
            status=MilestoneStatusDB.PENDING,
            retry_count=0,
            max_retries=template["max_retries"],
            requires_url=template.get("requires_url", False),
        )
        db.add(milestone)
        milestones.append(milestone)
    db.flush()

    audit.record(
        "milestones_initialized",
        correlation_id,
        actor_id=actor_id,
        description=f"{len(milestones)} milestones created",
        proposal_id=proposal.id,
        metadata={"titles": [m.title for m in milestones]},
    )
    return milestones


@dataclass
class MilestoneOutcome:
    milestone: Milestone
    progress: int
    correlation_id: str
    changed: bool = True
    integration_status: dict = field(default_factory=dict)
    bonus_payment: Optional[PaymentOutcome] = None


@dataclass
class MilestoneSnapshot:
    status: MilestoneStatusDB
    retry_count: int
    live_url: Optional[str]
    completed_by: Optional[str]
    completed_at: Optional[datetime]


class MilestoneTracker:
    def __init__(self, db: Session, publisher=None, payments: Optional[PaymentOrchestrator] = None,
                 audit: Optional[AuditLog] = None, rate_limiter: Optional[ActionRateLimiter] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.db = db
        self.audit = audit or AuditLog(db)
        self.publisher = publisher
        self.payments = payments or PaymentOrchestrator(db, audit=self.audit, sleep=sleep)
        self.rate_limiter = rate_limiter or default_rate_limiter
        self.sleep = sleep

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, milestone_id: str) -> Milestone:
        milestone = self.db.query(Milestone).filter(Milestone.id == milestone_id).first()
        if not milestone:
            raise NotFound("Milestone not found")
        return milestone

    def list_for(self, proposal_id: str) -> List[Milestone]:
        return self.db.query(Milestone).filter(
            Milestone.proposal_id == proposal_id
        ).order_by(Milestone.order.asc()).all()

    def progress_for(self, proposal_id: str) -> int:
        milestones = self.list_for(proposal_id)
        if not milestones:
            return 0
        done = sum(1 for m in milestones if m.status == MilestoneStatusDB.COMPLETED)
        return round(done * 100 / len(milestones))

    def initialize(self, proposal_id: str, actor_id: Optional[str],
                   correlation_id: Optional[str] = None) -> List[Milestone]:
        correlation_id = correlation_id or new_correlation_id()
        proposal = self.db.query(Proposal).filter(Proposal.id == proposal_id).first()
        if not proposal:
            raise NotFound("Proposal not found")
        if PaymentWorkflowStatusDB(proposal.payment_status) == PaymentWorkflowStatusDB.NONE:
            raise InvalidStateTransition(
                "Milestones are created when the payment workflow starts",
                correlation_id=correlation_id,
            )
        milestones = ensure_milestones(self.db, proposal, self.audit, correlation_id, actor_id)
        self.db.commit()
        return milestones

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    def _check_workflow(self, milestone: Milestone, correlation_id: str) -> Proposal:
        proposal = milestone.proposal
        if PaymentWorkflowStatusDB(proposal.payment_status) not in WORK_STATES:
            raise InvalidStateTransition(
                f"Milestones cannot be worked on while payment workflow is {proposal.payment_status.value}",
                correlation_id=correlation_id,
            )
        return proposal

    def _check_order(self, milestone: Milestone, correlation_id: str) -> None:
        blocking = self.db.query(Milestone).filter(
            Milestone.proposal_id == milestone.proposal_id,
            Milestone.order < milestone.order,
            Milestone.status != MilestoneStatusDB.COMPLETED,
        ).order_by(Milestone.order.asc()).first()
        if blocking:
            raise MilestoneOrderViolation(
                f"Complete '{blocking.title}' (step {blocking.order}) before '{milestone.title}'",
                correlation_id=correlation_id,
            )

    def _validate_live_url(self, milestone: Milestone, live_url: Optional[str],
                           actor_id: str, correlation_id: str) -> Optional[str]:
        if not milestone.requires_url and milestone.title != PUBLISHING:
            return live_url.strip() if live_url else None

        error = None
        if not live_url or not live_url.strip():
            error = UrlRequired("A live post URL is required to complete Publishing", correlation_id=correlation_id)
        elif detect_platform(live_url) is None:
            error = InvalidUrlFormat(
                "Live URL must be an Instagram, TikTok, YouTube, Facebook or Twitter post",
                correlation_id=correlation_id,
            )
        if error:
            self.audit.record(
                "milestone_validation_failed",
                correlation_id,
                actor_id=actor_id,
                description=error.message,
                proposal_id=milestone.proposal_id,
                milestone_id=milestone.id,
                error=error.code,
                metadata={"live_url": live_url},
            )
            self.db.commit()
            raise error
        return normalize_url(live_url)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def start(self, milestone_id: str, actor_id: str, correlation_id: Optional[str] = None) -> MilestoneOutcome:
        correlation_id = correlation_id or new_correlation_id()
        milestone = self.get(milestone_id)
        if milestone.status == MilestoneStatusDB.IN_PROGRESS:
            return MilestoneOutcome(milestone, self.progress_for(milestone.proposal_id), correlation_id, changed=False)
        if milestone.status != MilestoneStatusDB.PENDING:
            raise InvalidStateTransition(f"Cannot start a {milestone.status.value} milestone", correlation_id=correlation_id)
        self._check_workflow(milestone, correlation_id)
        self._check_order(milestone, correlation_id)

        before = milestone_state(milestone)
        self._cas(milestone, MilestoneStatusDB.PENDING, {
            Milestone.status: MilestoneStatusDB.IN_PROGRESS,
            Milestone.started_at: datetime.utcnow(),
        }, correlation_id)
        self.audit.record(
            "milestone_started",
            correlation_id,
            actor_id=actor_id,
            description=f"Started '{milestone.title}'",
            proposal_id=milestone.proposal_id,
            milestone_id=milestone.id,
            before=before,
            after=milestone_state(milestone),
        )
        self.db.commit()
        return MilestoneOutcome(milestone, self.progress_for(milestone.proposal_id), correlation_id)

    def reset(self, milestone_id: str, actor_id: str, correlation_id: Optional[str] = None) -> MilestoneOutcome:
        """Admin action: manual_intervention -> pending with a fresh retry budget."""
        correlation_id = correlation_id or new_correlation_id()
        milestone = self.get(milestone_id)
        if milestone.status != MilestoneStatusDB.MANUAL_INTERVENTION:
            raise InvalidStateTransition("Only milestones awaiting manual intervention can be reset",
                                         correlation_id=correlation_id)
        before = milestone_state(milestone)
        self._cas(milestone, MilestoneStatusDB.MANUAL_INTERVENTION, {
            Milestone.status: MilestoneStatusDB.PENDING,
            Milestone.retry_count: 0,
            Milestone.last_error: None,
        }, correlation_id)
        self.audit.record(
            "milestone_reset",
            correlation_id,
            actor_id=actor_id,
            description=f"Reset '{milestone.title}' after manual intervention",
            proposal_id=milestone.proposal_id,
            milestone_id=milestone.id,
            before=before,
            after=milestone_state(milestone),
        )
        self.db.commit()
        return MilestoneOutcome(milestone, self.progress_for(milestone.proposal_id), correlation_id)

    def _record_refusal(self, error: WorkflowError, milestone_id: str,
                        proposal_id: Optional[str], actor_id: str) -> None:
        logger.warning(f"[MilestoneCompletion] {error.correlation_id} refused: {error.message}")
        self.audit.record(
            "milestone_completion_refused",
            error.correlation_id,
            actor_id=actor_id,
            description=error.message,
            proposal_id=proposal_id,
            milestone_id=milestone_id,
            error=error.code,
        )
        self.db.commit()

    def _cas(self, milestone: Milestone, expected: MilestoneStatusDB, values: dict, correlation_id: str) -> None:
        updated = self.db.query(Milestone).filter(
            Milestone.id == milestone.id,
            Milestone.status == expected,
        ).update(values, synchronize_session=False)
        if updated == 0:
            self.db.rollback()
            raise InvalidStateTransition(
                "Milestone was modified concurrently; reload and retry",
                correlation_id=correlation_id,
            )
        self.db.refresh(milestone)

    def complete(self, milestone_id: str, actor_id: str, live_url: Optional[str] = None,
                 notes: Optional[str] = None, correlation_id: Optional[str] = None) -> MilestoneOutcome:
        """
        Complete one milestone.

        Publishing additionally publishes the proposal's content with the
        live URL and triggers the bonus payment. Publishing the content is
        required: if it still fails after retries the milestone is restored
        to its previous status with retry_count + 1 and
        PublishingIntegrationError is raised. The bonus step is best-effort.
        """
        correlation_id = correlation_id or new_correlation_id()
        tag = f"[MilestoneCompletion] {correlation_id}"
        try:
            self.rate_limiter.check(actor_id, correlation_id)
        except RateLimited as e:
            self._record_refusal(e, milestone_id, None, actor_id)
            raise

        milestone = self.get(milestone_id)
        status = MilestoneStatusDB(milestone.status)
        if status == MilestoneStatusDB.COMPLETED:
            logger.info(f"{tag} milestone {milestone.id} already completed")
            return MilestoneOutcome(milestone, self.progress_for(milestone.proposal_id), correlation_id, changed=False)

        try:
            if status == MilestoneStatusDB.MANUAL_INTERVENTION:
                raise InvalidStateTransition(
                    f"'{milestone.title}' is awaiting manual intervention",
                    correlation_id=correlation_id,
                )
            self._check_order(milestone, correlation_id)
            proposal = self._check_workflow(milestone, correlation_id)
        except InvalidStateTransition as e:
            self._record_refusal(e, milestone.id, milestone.proposal_id, actor_id)
            raise

        snapshot = MilestoneSnapshot(
            status=status,
            retry_count=milestone.retry_count,
            live_url=milestone.live_url,
            completed_by=milestone.completed_by,
            completed_at=milestone.completed_at,
        )
        live_url = self._validate_live_url(milestone, live_url, actor_id, correlation_id)

        # Optimistic write
        values = {
            Milestone.status: MilestoneStatusDB.COMPLETED,
            Milestone.completed_by: actor_id,
            Milestone.completed_at: datetime.utcnow(),
            Milestone.last_error: None,
        }
        if live_url:
            values[Milestone.live_url] = live_url
        if notes:
            values[Milestone.metadata_json] = {**(milestone.metadata_json or {}), "notes": notes}
        self._cas(milestone, snapshot.status, values, correlation_id)
        self.db.commit()
        logger.info(f"{tag} '{milestone.title}' marked completed")

        outcome = MilestoneOutcome(milestone, 0, correlation_id)
        if milestone.title == PUBLISHING:
            self._publish(milestone, proposal, snapshot, actor_id, live_url, correlation_id, outcome)
            outcome.bonus_payment = self._trigger_bonus(milestone, actor_id, correlation_id, outcome)

        outcome.progress = self.progress_for(milestone.proposal_id)
        before_progress = proposal.progress_percentage
        self.db.query(Proposal).filter(Proposal.id == proposal.id).update(
            {Proposal.progress_percentage: outcome.progress}, synchronize_session=False
        )
        self.audit.record(
            "milestone_completed",
            correlation_id,
            actor_id=actor_id,
            description=f"Completed '{milestone.title}'",
            proposal_id=proposal.id,
            milestone_id=milestone.id,
            before={"milestone": snapshot.status, "progress_percentage": before_progress},
            after={"milestone": milestone.status, "progress_percentage": outcome.progress},
            metadata={"live_url": live_url, "integration_status": outcome.integration_status},
        )
        self.db.commit()
        self.db.refresh(proposal)
        logger.info(f"{tag} proposal {proposal.id} progress {outcome.progress}%")
        return outcome

    def _publish(self, milestone: Milestone, proposal: Proposal, snapshot: MilestoneSnapshot,
                 actor_id: str, live_url: str, correlation_id: str, outcome: MilestoneOutcome) -> None:
        tag = f"[MilestoneCompletion] {correlation_id}"
        content = self.publisher.latest_content_for(proposal.id) if self.publisher else None
        if content is None:
            logger.warning(f"{tag} no submitted content to publish for proposal {proposal.id}")
            outcome.integration_status["content_published"] = "skipped"
            return

        def publish():
            attempt = retry_call(
                lambda: self.publisher.publish_content(content.id, actor_id, live_url),
                label=f"{tag} publish_content {content.id}",
                sleep=self.sleep,
            )
            if not attempt.ok:
                raise attempt.error
            self.db.commit()
            return attempt.value

        result = run_with_rollback(
            snapshot,
            publish,
            lambda snap, error: self._rollback(milestone, snap, actor_id, correlation_id, error),
            label=f"{tag} publishing side effects",
        )
        if not result.ok:
            raise PublishingIntegrationError(
                "Publishing failed; the milestone was restored and can be retried",
                correlation_id=correlation_id,
                details={"retry_count": milestone.retry_count, "status": milestone.status.value},
            )
        outcome.integration_status["content_published"] = "ok"

    def _rollback(self, milestone: Milestone, snapshot: MilestoneSnapshot, actor_id: str,
                  correlation_id: str, error: BaseException) -> None:
        self.db.rollback()
        self.db.refresh(milestone)
        retry_count = snapshot.retry_count + 1
        exhausted = retry_count >= milestone.max_retries
        status = MilestoneStatusDB.MANUAL_INTERVENTION if exhausted else snapshot.status
        message = error.message if isinstance(error, WorkflowError) else str(error)

        self.db.query(Milestone).filter(Milestone.id == milestone.id).update({
            Milestone.status: status,
            Milestone.retry_count: retry_count,
            Milestone.live_url: snapshot.live_url,
            Milestone.completed_by: snapshot.completed_by,
            Milestone.completed_at: snapshot.completed_at,
            Milestone.last_error: message,
        }, synchronize_session=False)
        self.audit.record(
            "milestone_rollback",
            correlation_id,
            actor_id=actor_id,
            description=f"Rolled back '{milestone.title}' after publishing failure",
            proposal_id=milestone.proposal_id,
            milestone_id=milestone.id,
            before={"status": MilestoneStatusDB.COMPLETED},
            after={"status": status, "retry_count": retry_count},
            error=message,
        )
        self.db.commit()
        self.db.refresh(milestone)
        if exhausted:
            logger.error(f"[MilestoneCompletion] {correlation_id} '{milestone.title}' needs manual intervention after {retry_count} failures")

    def _trigger_bonus(self, milestone: Milestone, actor_id: str, correlation_id: str,
                       outcome: MilestoneOutcome) -> Optional[PaymentOutcome]:
        tag = f"[MilestoneCompletion] {correlation_id}"
        attempt = retry_call(
            lambda: self.payments.create_bonus_payment(milestone.proposal_id, actor_id, correlation_id=correlation_id),
            label=f"{tag} create_bonus_payment",
            sleep=self.sleep,
        )
        if attempt.ok:
            outcome.integration_status["bonus_payment"] = "created" if attempt.value else "not_configured"
            return attempt.value

        # Recoverable: the bonus can be created manually later
        self.db.rollback()
        message = attempt.error.message if isinstance(attempt.error, WorkflowError) else str(attempt.error)
        outcome.integration_status["bonus_payment"] = "failed"
        logger.warning(f"{tag} bonus payment not created: {message}")
        self.audit.record(
            "bonus_payment_failed",
            correlation_id,
            actor_id=actor_id,
            description="Bonus payment could not be created (recoverable)",
            proposal_id=milestone.proposal_id,
            milestone_id=milestone.id,
            error=message,
        )
        self.db.commit()
        return None
