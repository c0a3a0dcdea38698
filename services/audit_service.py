# Audit Log Service
# Append-only sink for every financial and state-changing action.

from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
from typing import Optional, List, Any
from datetime import datetime
from decimal import Decimal
import enum
import logging
import uuid

from database.workflow_models import AuditEntry
from services.errors import AuditWriteError

logger = logging.getLogger(__name__)


def new_correlation_id(prefix: str = "tx") -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


class AuditLog:
    """
    Writes AuditEntry rows inside the caller's transaction.

    A failed audit write raises AuditWriteError: a financial action is never
    committed without its audit record.
    """

    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        action: str,
        correlation_id: str,
        actor_id: Optional[str] = None,
        description: Optional[str] = None,
        proposal_id: Optional[str] = None,
        payment_id: Optional[str] = None,
        milestone_id: Optional[str] = None,
        amount: Optional[Decimal] = None,
        before: Optional[dict] = None,
        after: Optional[dict] = None,
        error: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> AuditEntry:
        entry = AuditEntry(
            actor_id=actor_id,
            is_system_action=actor_id is None,
            action=action,
            description=description,
            correlation_id=correlation_id,
            amount_affected=amount,
            proposal_id=proposal_id,
            payment_id=payment_id,
            milestone_id=milestone_id,
            before_state=_jsonable(before) if before else None,
            after_state=_jsonable(after) if after else None,
            error_message=error,
            metadata_json=_jsonable(metadata) if metadata else None,
        )
        try:
            self.db.add(entry)
            self.db.flush()
        except SQLAlchemyError as e:
            logger.critical(f"[Audit] {correlation_id} failed to write '{action}': {e}")
            raise AuditWriteError(
                "Audit record could not be written; operation aborted",
                correlation_id=correlation_id,
            ) from e
        return entry

    def record_system(self, action: str, correlation_id: str, **kwargs) -> AuditEntry:
        """Record an action taken by the system itself (webhooks, retries)."""
        kwargs.pop("actor_id", None)
        return self.record(action, correlation_id, actor_id=None, **kwargs)

    def for_proposal(self, proposal_id: str) -> List[AuditEntry]:
        return self.db.query(AuditEntry).filter(
            AuditEntry.proposal_id == proposal_id
        ).order_by(AuditEntry.timestamp.asc(), AuditEntry.id.asc()).all()

    def for_correlation(self, correlation_id: str) -> List[AuditEntry]:
        return self.db.query(AuditEntry).filter(
            AuditEntry.correlation_id == correlation_id
        ).order_by(AuditEntry.timestamp.asc(), AuditEntry.id.asc()).all()
