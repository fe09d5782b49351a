"""Change request API endpoints."""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session

from servicedesk.api.deps import get_db, get_current_user
from servicedesk.api.errors import DOMAIN_ERRORS, to_http_exception
from servicedesk.api.schemas.changes import (
    ChangeCreate,
    ChangeUpdate,
    ChangeResponse,
    ChangeListResponse,
    ChangeHistoryResponse,
    CommentCreate,
)
from servicedesk.api.schemas.common import PaginationParams, ErrorResponse
from servicedesk.api.schemas.approvals import (
    ApprovalResponse,
    ApprovalDecisionRequest,
    ApprovalDecisionResponse,
    WorkflowResponse,
)
from servicedesk.db.models import User
from servicedesk.core.rbac import require_permission
from servicedesk.core.approval.service import ApprovalService
from servicedesk.core.changes import ChangeService

router = APIRouter(prefix="/changes", tags=["changes"])


@router.post("", response_model=ChangeResponse, status_code=status.HTTP_201_CREATED)
@require_permission("changes:create")
async def create_change(
    payload: ChangeCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Create a change request and start its approval workflow."""
    service = ChangeService(db)
    try:
        change = service.create_change(payload.model_dump(), user=current_user)
        db.commit()
    except DOMAIN_ERRORS as e:
        db.rollback()
        raise to_http_exception(e)

    db.refresh(change)
    return ChangeResponse.model_validate(change)


@router.get("", response_model=ChangeListResponse)
@require_permission("changes:list")
async def list_changes(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    status_filter: Optional[str] = Query(None, alias="status"),
    risk_level: Optional[str] = None,
    change_type: Optional[str] = None,
    requested_by: Optional[int] = None,
):
    """List change requests, newest first."""
    pagination = PaginationParams(page=page, per_page=per_page)
    items, total = ChangeService(db).search_changes(
        status=status_filter,
        risk_level=risk_level,
        change_type=change_type,
        requested_by=requested_by,
        limit=pagination.limit,
        offset=pagination.offset,
    )

    return ChangeListResponse.create(
        [ChangeResponse.model_validate(c) for c in items],
        total,
        pagination.page,
        pagination.per_page,
    )


@router.get("/{change_id}", response_model=ChangeResponse)
@require_permission("changes:read")
async def get_change(
    change_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        change = ChangeService(db).get_change(change_id)
    except DOMAIN_ERRORS as e:
        raise to_http_exception(e)
    return ChangeResponse.model_validate(change)


@router.patch("/{change_id}", response_model=ChangeResponse)
@require_permission("changes:update")
async def update_change(
    change_id: int,
    payload: ChangeUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """
    Update a change request.

    Status changes go through the lifecycle guard. Setting a rejected change
    back to ``pending`` revises it and restarts approvals at the first level.
    """
    data = payload.model_dump(exclude_unset=True)
    notes = data.pop("notes", None)

    service = ChangeService(db)
    try:
        change = service.update_change(change_id, data, user=current_user, notes=notes)
        db.commit()
    except DOMAIN_ERRORS as e:
        db.rollback()
        raise to_http_exception(e)

    db.refresh(change)
    return ChangeResponse.model_validate(change)


@router.get("/{change_id}/approvals", response_model=List[ApprovalResponse])
@require_permission("approvals:read")
async def list_change_approvals(
    change_id: int,
    current_only: bool = False,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Approval instances of a change, every submission cycle unless ``current_only``."""
    try:
        approvals = ApprovalService(db).list_approvals(change_id, current_only=current_only)
    except DOMAIN_ERRORS as e:
        raise to_http_exception(e)
    return [ApprovalResponse(**a) for a in approvals]


@router.post(
    "/{change_id}/approve",
    response_model=ApprovalDecisionResponse,
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
@require_permission("approvals:approve")
async def submit_approval(
    change_id: int,
    decision: ApprovalDecisionRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Approve or reject a change at the caller's approval level."""
    if decision.approver_id is not None and decision.approver_id != current_user.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Decisions can only be submitted for the authenticated user",
        )

    service = ApprovalService(db)
    try:
        result = service.submit_decision(
            change_id,
            current_user.id,
            decision.action,
            decision.comments,
        )
        db.commit()
    except DOMAIN_ERRORS as e:
        db.rollback()
        raise to_http_exception(e)

    return ApprovalDecisionResponse(
        completed=result.completed,
        approved=result.approved,
        next_level=result.next_level,
        state=str(result.state),
    )


@router.get("/{change_id}/workflow", response_model=WorkflowResponse)
@require_permission("approvals:read")
async def get_workflow(
    change_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Derived approval workflow of a change from the caller's point of view."""
    try:
        view = ApprovalService(db).workflow_view(change_id, current_user.id)
    except DOMAIN_ERRORS as e:
        raise to_http_exception(e)
    return WorkflowResponse(**view)


@router.get("/{change_id}/history", response_model=List[ChangeHistoryResponse])
@require_permission("changes:read")
async def get_change_history(
    change_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        history = ChangeService(db).get_history(change_id)
    except DOMAIN_ERRORS as e:
        raise to_http_exception(e)
    return [ChangeHistoryResponse.model_validate(h) for h in history]


@router.post("/{change_id}/comments", response_model=ChangeHistoryResponse, status_code=status.HTTP_201_CREATED)
@require_permission("changes:read")
async def add_comment(
    change_id: int,
    payload: CommentCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    service = ChangeService(db)
    try:
        entry = service.add_comment(change_id, payload.comment, user=current_user)
        db.commit()
    except DOMAIN_ERRORS as e:
        db.rollback()
        raise to_http_exception(e)

    db.refresh(entry)
    return ChangeHistoryResponse.model_validate(entry)


@router.get("/{change_id}/transitions", response_model=List[str])
@require_permission("changes:read")
async def get_available_transitions(
    change_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Statuses the caller may set on this change right now."""
    try:
        return ChangeService(db).available_statuses(change_id, user=current_user)
    except DOMAIN_ERRORS as e:
        raise to_http_exception(e)
