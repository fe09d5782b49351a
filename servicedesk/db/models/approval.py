"""Approval workflow database models.

Stores routing configuration and the per-approver approval instances created
when a change is submitted.
"""

from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Boolean, ForeignKey, Text, CheckConstraint
from sqlalchemy.orm import relationship

from servicedesk.db.base import Base


class RoutingRule(Base):
    """
    Maps (product or group, risk level, approval level) to a required approver.

    Several rows with the same key and level make up one level with several
    approvers; ``require_all_approvals`` selects the level's gate.
    """
    __tablename__ = "approval_routing"
    __table_args__ = (
        CheckConstraint(
            "(product_id IS NULL) <> (group_id IS NULL)",
            name="ck_approval_routing_product_xor_group",
        ),
        CheckConstraint("approval_level >= 1", name="ck_approval_routing_level_positive"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)

    # Routing key: exactly one of product/group
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=True, index=True)
    group_id = Column(Integer, ForeignKey("groups.id", ondelete="CASCADE"), nullable=True, index=True)
    risk_level = Column(String(20), nullable=False, index=True)

    approval_level = Column(Integer, nullable=False, default=1)
    approver_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    require_all_approvals = Column(Boolean, nullable=False, default=True)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    product = relationship("Product", back_populates="routing_rules")
    group = relationship("Group", back_populates="routing_rules")
    approver = relationship("User")

    def __repr__(self) -> str:
        key = f"product={self.product_id}" if self.product_id else f"group={self.group_id}"
        return f"<RoutingRule {key} {self.risk_level} L{self.approval_level} -> user {self.approver_id}>"


class ApprovalInstance(Base):
    """
    One approver's vote at one level for one submission of a change.

    Rows are never deleted. A resubmitted change gets a new ``cycle`` of
    instances; earlier cycles stay as the audit trail.
    """
    __tablename__ = "change_approvals"

    id = Column(Integer, primary_key=True, autoincrement=True)
    change_id = Column(Integer, ForeignKey("changes.id", ondelete="CASCADE"), nullable=False, index=True)
    approver_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)

    approval_level = Column(Integer, nullable=False)
    cycle = Column(Integer, nullable=False, default=1)

    # Gate snapshot taken from the routing rule at submission time
    require_all_approvals = Column(Boolean, nullable=False, default=True)

    status = Column(String(20), nullable=False, default="pending", index=True)
    comments = Column(Text, nullable=True)
    approved_at = Column(DateTime, nullable=True)

    # Optimistic concurrency token
    version = Column(Integer, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)

    change = relationship("Change", back_populates="approvals")
    approver = relationship("User")

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<ApprovalInstance change={self.change_id} cycle={self.cycle} "
            f"L{self.approval_level} user={self.approver_id} [{self.status}]>"
        )
