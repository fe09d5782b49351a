"""Change request schemas."""

from datetime import datetime
from typing import Optional, List, Literal

from pydantic import BaseModel, ConfigDict, Field

from servicedesk.api.schemas.common import PaginatedResponse

RiskLevelField = Literal["low", "medium", "high"]
ChangeTypeField = Literal["standard", "normal", "emergency"]
CategoryField = Literal["system", "application", "infrastructure", "policy", "product"]
PriorityField = Literal["low", "medium", "high", "critical"]
StatusField = Literal[
    "submitted", "pending", "approved", "rejected", "in-progress",
    "testing", "completed", "failed", "rollback", "closed",
]


class ChangeCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., min_length=1)
    rollback_plan: Optional[str] = None
    category: CategoryField = "system"
    priority: PriorityField = "medium"
    risk_level: RiskLevelField
    change_type: ChangeTypeField = "normal"
    product_id: Optional[int] = None
    group_id: Optional[int] = None
    planned_date: Optional[datetime] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class ChangeUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, min_length=1)
    rollback_plan: Optional[str] = None
    category: Optional[CategoryField] = None
    priority: Optional[PriorityField] = None
    risk_level: Optional[RiskLevelField] = None
    change_type: Optional[ChangeTypeField] = None
    product_id: Optional[int] = None
    group_id: Optional[int] = None
    planned_date: Optional[datetime] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    implemented_by: Optional[int] = None
    status: Optional[StatusField] = None
    notes: Optional[str] = None


class ChangeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    description: str
    rollback_plan: Optional[str]
    category: str
    priority: str
    risk_level: str
    change_type: str
    status: str
    product_id: Optional[int]
    group_id: Optional[int]
    requested_by: Optional[int]
    approved_by: Optional[str]
    implemented_by: Optional[int]
    planned_date: Optional[datetime]
    start_date: Optional[datetime]
    end_date: Optional[datetime]
    completed_date: Optional[datetime]
    approval_cycle: int
    created_at: datetime
    updated_at: datetime


ChangeListResponse = PaginatedResponse[ChangeResponse]


class ChangeHistoryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    change_id: int
    action: str
    from_status: Optional[str]
    to_status: Optional[str]
    user_id: Optional[int]
    notes: Optional[str]
    created_at: datetime


class CommentCreate(BaseModel):
    comment: str = Field(..., min_length=1)
