"""Approval routing resolution.

Turns the routing rules configured for a (product or group, risk level) pair
into a leveled plan: ascending approval levels, each with its approvers and
its gate ("all approvers" or "any one approver").
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional, Protocol, Tuple, NamedTuple

from sqlalchemy.orm import Session
from sqlalchemy import and_

from .states import RiskLevel
from .errors import InvalidRiskLevel


class RuleLike(Protocol):
    approval_level: int
    approver_id: int
    require_all_approvals: bool


class PlanEntry(NamedTuple):
    approver_id: int
    require_all: bool


class PlanLevel(NamedTuple):
    level: int
    entries: Tuple[PlanEntry, ...]

    @property
    def require_all(self) -> bool:
        # A level is "any one approver" only if none of its rules asks for all
        return any(entry.require_all for entry in self.entries)

    @property
    def approver_ids(self) -> List[int]:
        return [entry.approver_id for entry in self.entries]


@dataclass(frozen=True)
class LeveledPlan:
    """Ordered approval levels for one change."""
    levels: Tuple[PlanLevel, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.levels

    @property
    def level_numbers(self) -> List[int]:
        return [lvl.level for lvl in self.levels]

    @property
    def first_level(self) -> Optional[int]:
        return self.levels[0].level if self.levels else None

    def __len__(self) -> int:
        return len(self.levels)


class RoutingRuleRepository(Protocol):
    """Read access to active routing rules."""

    def find_rules(
        self,
        risk_level: str,
        *,
        product_id: Optional[int] = None,
        group_id: Optional[int] = None,
    ) -> Iterable[RuleLike]:
        ...


class SqlAlchemyRoutingRuleRepository:
    """Routing rules stored in the ``approval_routing`` table."""

    def __init__(self, db: Session):
        self.db = db

    def find_rules(
        self,
        risk_level: str,
        *,
        product_id: Optional[int] = None,
        group_id: Optional[int] = None,
    ) -> List[RuleLike]:
        from servicedesk.db.models import RoutingRule

        if product_id is not None:
            key = RoutingRule.product_id == product_id
        elif group_id is not None:
            key = RoutingRule.group_id == group_id
        else:
            return []

        return self.db.query(RoutingRule).filter(
            and_(
                key,
                RoutingRule.risk_level == risk_level,
                RoutingRule.is_active.is_(True),
            )
        ).order_by(RoutingRule.approval_level.asc(), RoutingRule.id.asc()).all()


def validate_risk_level(risk_level: str) -> RiskLevel:
    try:
        return RiskLevel(risk_level)
    except ValueError:
        allowed = ", ".join(r.value for r in RiskLevel)
        raise InvalidRiskLevel(f"Unknown risk level {risk_level!r}; expected one of: {allowed}")


def build_plan(rules: Iterable[RuleLike]) -> LeveledPlan:
    """Group rules by level in ascending order; gaps between levels are kept as-is."""
    by_level: dict[int, list[PlanEntry]] = {}
    for rule in rules:
        entries = by_level.setdefault(rule.approval_level, [])
        # Same approver configured twice at one level counts once
        existing = next((e for e in entries if e.approver_id == rule.approver_id), None)
        if existing is not None:
            if rule.require_all_approvals and not existing.require_all:
                entries[entries.index(existing)] = PlanEntry(rule.approver_id, True)
            continue
        entries.append(PlanEntry(rule.approver_id, bool(rule.require_all_approvals)))

    return LeveledPlan(
        levels=tuple(
            PlanLevel(level, tuple(by_level[level]))
            for level in sorted(by_level)
        )
    )


class RoutingRuleSet:
    """Resolves leveled approval plans from a rule repository."""

    def __init__(self, repository: RoutingRuleRepository):
        self.repository = repository

    def resolve(
        self,
        risk_level: str,
        *,
        product_id: Optional[int] = None,
        group_id: Optional[int] = None,
    ) -> LeveledPlan:
        """
        Resolve the approval plan for a product or group.

        Product rules win; group rules apply when the change has no product
        or its product has no rules for this risk level. Returns an empty
        plan when nothing matches; callers decide what an unrouted change
        means.

        Raises:
            InvalidRiskLevel: If risk_level is not low, medium or high
        """
        risk = validate_risk_level(risk_level)

        rules: List[RuleLike] = []
        if product_id is not None:
            rules = list(self.repository.find_rules(risk.value, product_id=product_id))
        if not rules and group_id is not None:
            rules = list(self.repository.find_rules(risk.value, group_id=group_id))

        return build_plan(rules)
