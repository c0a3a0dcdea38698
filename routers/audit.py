# Audit Trail Endpoints
# Read-only access to the append-only audit log

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from typing import List

from database.config import get_db
from database.models import User
from auth.decorators import require_permission
from auth.roles import Permission
from schemas.workflow import AuditEntryResponse
from services.audit_service import AuditLog
from routers.deps import proposal_for_brand

router = APIRouter(prefix="/api", tags=["Audit"])


@router.get("/proposals/{proposal_id}/audit", response_model=List[AuditEntryResponse])
def get_proposal_audit(
    proposal_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.VIEW_AUDIT_TRAIL)),
):
    """Every recorded action for a proposal, oldest first."""
    proposal_for_brand(db, proposal_id, current_user)
    return [AuditEntryResponse.model_validate(e) for e in AuditLog(db).for_proposal(proposal_id)]


@router.get("/audit/{correlation_id}", response_model=List[AuditEntryResponse])
def get_correlated_audit(
    correlation_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_permission(Permission.VIEW_ALL_TRANSACTIONS)),
):
    """Trace one transaction id (or webhook-<payment id>) across every record it touched."""
    entries = AuditLog(db).for_correlation(correlation_id)
    if not entries:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No audit entries for this transaction")
    return [AuditEntryResponse.model_validate(e) for e in entries]
