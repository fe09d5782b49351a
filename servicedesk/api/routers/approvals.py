"""Approver inbox endpoints."""

from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from servicedesk.api.deps import get_db, get_current_user
from servicedesk.api.schemas.approvals import PendingApprovalResponse
from servicedesk.db.models import User
from servicedesk.core.rbac import require_permission
from servicedesk.core.approval.service import ApprovalService

router = APIRouter(prefix="/approvals", tags=["approvals"])


@router.get("/pending", response_model=List[PendingApprovalResponse])
@require_permission("approvals:list")
async def list_pending_approvals(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """
    Approvals waiting on the caller.

    Only the active level of each change is listed; superseded approvals and
    levels that are not reached yet are left out.
    """
    pending = ApprovalService(db).pending_for_approver(current_user.id)
    return [PendingApprovalResponse(**p) for p in pending]
