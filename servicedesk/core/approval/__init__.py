"""Multilevel change approval workflow.

Routing resolution, the approval engine, and the persistence-aware service
that drives change status from approval outcomes.
"""

from .states import (
    ApprovalStatus,
    Decision,
    RiskLevel,
    ChangeType,
    WorkflowPhase,
    WorkflowState,
)
from .errors import (
    ApprovalError,
    ChangeNotFound,
    NotAuthorizedApprover,
    AlreadyDecided,
    ApprovalOutOfOrder,
    NoMatchingRoute,
    InvalidDecision,
    InvalidRiskLevel,
    ConcurrentUpdate,
    ConcurrentDecision,
)
from .routing import LeveledPlan, RoutingRuleSet, SqlAlchemyRoutingRuleRepository
from .engine import ApprovalEngine, DecisionResult, derive_state, is_workflow_complete

__all__ = [
    "ApprovalStatus",
    "Decision",
    "RiskLevel",
    "ChangeType",
    "WorkflowPhase",
    "WorkflowState",
    "ApprovalError",
    "ChangeNotFound",
    "NotAuthorizedApprover",
    "AlreadyDecided",
    "ApprovalOutOfOrder",
    "NoMatchingRoute",
    "InvalidDecision",
    "InvalidRiskLevel",
    "ConcurrentUpdate",
    "ConcurrentDecision",
    "LeveledPlan",
    "RoutingRuleSet",
    "SqlAlchemyRoutingRuleRepository",
    "ApprovalEngine",
    "DecisionResult",
    "derive_state",
    "is_workflow_complete",
]
