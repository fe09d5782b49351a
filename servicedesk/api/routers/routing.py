"""Approval routing administration endpoints."""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session
from sqlalchemy import and_

from servicedesk.api.deps import get_db, get_current_user
from servicedesk.api.errors import DOMAIN_ERRORS, to_http_exception
from servicedesk.api.schemas.routing import (
    RoutingRuleCreate,
    RoutingRuleUpdate,
    RoutingRuleResponse,
    ResolvedPlanResponse,
    PlanLevelResponse,
)
from servicedesk.db.models import RoutingRule, Product, Group, User, AuditLog
from servicedesk.core.rbac import has_permission, require_permission
from servicedesk.core.approval import RoutingRuleSet, SqlAlchemyRoutingRuleRepository

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/approval-routing", tags=["approval-routing"])


def _rule_values(rule: RoutingRule) -> dict:
    return {
        "product_id": rule.product_id,
        "group_id": rule.group_id,
        "risk_level": rule.risk_level,
        "approval_level": rule.approval_level,
        "approver_id": rule.approver_id,
        "require_all_approvals": rule.require_all_approvals,
        "is_active": rule.is_active,
    }


def _get_rule(db: Session, rule_id: int) -> RoutingRule:
    rule = db.query(RoutingRule).filter(RoutingRule.id == rule_id).first()
    if not rule:
        raise HTTPException(status_code=404, detail="Routing rule not found")
    return rule


def _check_references(db: Session, product_id: Optional[int], group_id: Optional[int], approver_id: int) -> None:
    if product_id is not None and not db.query(Product).filter(Product.id == product_id).first():
        raise HTTPException(status_code=404, detail="Product not found")
    if group_id is not None and not db.query(Group).filter(Group.id == group_id).first():
        raise HTTPException(status_code=404, detail="Group not found")

    approver = db.query(User).filter(User.id == approver_id).first()
    if not approver:
        raise HTTPException(status_code=404, detail="Approver not found")
    if not approver.is_active:
        raise HTTPException(status_code=400, detail="Approver account is inactive")
    if not has_permission(approver, "approvals:approve"):
        raise HTTPException(status_code=400, detail="Approver lacks the approvals:approve permission")


def _check_duplicate(db: Session, values: dict, exclude_id: Optional[int] = None) -> None:
    """The same approver may appear only once per key, risk level and level."""
    query = db.query(RoutingRule).filter(
        and_(
            RoutingRule.product_id.is_(None) if values["product_id"] is None
            else RoutingRule.product_id == values["product_id"],
            RoutingRule.group_id.is_(None) if values["group_id"] is None
            else RoutingRule.group_id == values["group_id"],
            RoutingRule.risk_level == values["risk_level"],
            RoutingRule.approval_level == values["approval_level"],
            RoutingRule.approver_id == values["approver_id"],
        )
    )
    if exclude_id is not None:
        query = query.filter(RoutingRule.id != exclude_id)
    if query.first():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="A routing rule for this approver at this level already exists",
        )


@router.get("", response_model=List[RoutingRuleResponse])
@require_permission("approval_routing:list")
async def list_routing_rules(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    product_id: Optional[int] = None,
    group_id: Optional[int] = None,
    risk_level: Optional[str] = None,
    include_inactive: bool = False,
):
    """List routing rules ordered by key, risk level and approval level."""
    query = db.query(RoutingRule)
    if product_id is not None:
        query = query.filter(RoutingRule.product_id == product_id)
    if group_id is not None:
        query = query.filter(RoutingRule.group_id == group_id)
    if risk_level:
        query = query.filter(RoutingRule.risk_level == risk_level)
    if not include_inactive:
        query = query.filter(RoutingRule.is_active.is_(True))

    rules = query.order_by(
        RoutingRule.product_id.asc(),
        RoutingRule.group_id.asc(),
        RoutingRule.risk_level.asc(),
        RoutingRule.approval_level.asc(),
        RoutingRule.id.asc(),
    ).all()
    return [RoutingRuleResponse.model_validate(r) for r in rules]


@router.get("/resolve", response_model=ResolvedPlanResponse)
@require_permission("approval_routing:read")
async def resolve_routing(
    risk_level: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    product_id: Optional[int] = Query(None),
    group_id: Optional[int] = Query(None),
):
    """Preview the leveled approval plan a change with these keys would get."""
    rule_set = RoutingRuleSet(SqlAlchemyRoutingRuleRepository(db))
    try:
        plan = rule_set.resolve(risk_level, product_id=product_id, group_id=group_id)
    except DOMAIN_ERRORS as e:
        raise to_http_exception(e)

    return ResolvedPlanResponse(
        product_id=product_id,
        group_id=group_id,
        risk_level=risk_level,
        levels=[
            PlanLevelResponse(level=lvl.level, require_all=lvl.require_all, approver_ids=lvl.approver_ids)
            for lvl in plan.levels
        ],
    )


@router.get("/{rule_id}", response_model=RoutingRuleResponse)
@require_permission("approval_routing:read")
async def get_routing_rule(
    rule_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return RoutingRuleResponse.model_validate(_get_rule(db, rule_id))


@router.post("", response_model=RoutingRuleResponse, status_code=status.HTTP_201_CREATED)
@require_permission("approval_routing:create")
async def create_routing_rule(
    payload: RoutingRuleCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Add an approver to a level of a product's or group's routing."""
    values = payload.model_dump()
    _check_references(db, values["product_id"], values["group_id"], values["approver_id"])
    _check_duplicate(db, values)

    rule = RoutingRule(**values)
    db.add(rule)
    db.flush()

    db.add(AuditLog.create_entry(
        "create",
        "approval_routing",
        user_id=current_user.id,
        resource_id=rule.id,
        new_values=_rule_values(rule),
    ))
    db.commit()
    db.refresh(rule)

    logger.info("Routing rule %s created by user %s", rule.id, current_user.id)
    return RoutingRuleResponse.model_validate(rule)


@router.patch("/{rule_id}", response_model=RoutingRuleResponse)
@require_permission("approval_routing:update")
async def update_routing_rule(
    rule_id: int,
    payload: RoutingRuleUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """
    Update a routing rule.

    Changes apply to changes submitted afterwards; approvals already created
    keep the gate they were created with.
    """
    rule = _get_rule(db, rule_id)
    old_values = _rule_values(rule)

    updates = payload.model_dump(exclude_unset=True, exclude_none=True)
    merged = {**old_values, **updates}
    if "approver_id" in updates:
        _check_references(db, None, None, updates["approver_id"])
    _check_duplicate(db, merged, exclude_id=rule.id)

    for field, value in updates.items():
        setattr(rule, field, value)

    db.add(AuditLog.create_entry(
        "update",
        "approval_routing",
        user_id=current_user.id,
        resource_id=rule.id,
        old_values=old_values,
        new_values=_rule_values(rule),
    ))
    db.commit()
    db.refresh(rule)
    return RoutingRuleResponse.model_validate(rule)


@router.delete("/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
@require_permission("approval_routing:delete")
async def delete_routing_rule(
    rule_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    rule = _get_rule(db, rule_id)

    db.add(AuditLog.create_entry(
        "delete",
        "approval_routing",
        user_id=current_user.id,
        resource_id=rule.id,
        old_values=_rule_values(rule),
    ))
    db.delete(rule)
    db.commit()

    logger.info("Routing rule %s deleted by user %s", rule_id, current_user.id)
