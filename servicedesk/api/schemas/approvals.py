"""Approval workflow schemas."""

from datetime import datetime
from typing import Optional, List

from pydantic import BaseModel


class ApprovalResponse(BaseModel):
    id: int
    change_id: int
    approver_id: Optional[int]
    approver_name: Optional[str]
    approval_level: int
    cycle: int
    require_all_approvals: bool
    status: str
    superseded: bool
    comments: Optional[str]
    approved_at: Optional[datetime]
    created_at: Optional[datetime]


class PendingApprovalResponse(ApprovalResponse):
    change_title: str
    change_status: str
    risk_level: str
    change_type: str
    requested_by: Optional[int]


class ApprovalDecisionRequest(BaseModel):
    # Must match the authenticated user; kept in the body for API compatibility
    approver_id: Optional[int] = None
    action: str
    comments: Optional[str] = None


class ApprovalDecisionResponse(BaseModel):
    completed: bool
    approved: bool
    next_level: Optional[int]
    state: str


class WorkflowLevel(BaseModel):
    level: int
    require_all: bool
    complete: bool
    approvals: List[ApprovalResponse]


class WorkflowResponse(BaseModel):
    change_id: int
    change_status: str
    cycle: int
    state: str
    current_level: Optional[int]
    levels: List[WorkflowLevel]
    pending_approvers: List[int]
    your_action_required: bool
    waiting_on_others: bool
    workflow_complete: bool
