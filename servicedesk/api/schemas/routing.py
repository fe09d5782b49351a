"""Approval routing schemas."""

from datetime import datetime
from typing import Optional, List, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator


class RoutingRuleCreate(BaseModel):
    product_id: Optional[int] = None
    group_id: Optional[int] = None
    risk_level: Literal["low", "medium", "high"]
    approval_level: int = Field(1, ge=1)
    approver_id: int
    require_all_approvals: bool = True
    is_active: bool = True

    @model_validator(mode="after")
    def check_routing_key(self):
        if (self.product_id is None) == (self.group_id is None):
            raise ValueError("Exactly one of product_id or group_id must be set")
        return self


class RoutingRuleUpdate(BaseModel):
    approval_level: Optional[int] = Field(None, ge=1)
    approver_id: Optional[int] = None
    require_all_approvals: Optional[bool] = None
    is_active: Optional[bool] = None


class RoutingRuleResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    product_id: Optional[int]
    group_id: Optional[int]
    risk_level: str
    approval_level: int
    approver_id: int
    require_all_approvals: bool
    is_active: bool
    created_at: datetime
    updated_at: datetime


class PlanLevelResponse(BaseModel):
    level: int
    require_all: bool
    approver_ids: List[int]


class ResolvedPlanResponse(BaseModel):
    product_id: Optional[int]
    group_id: Optional[int]
    risk_level: str
    levels: List[PlanLevelResponse]
