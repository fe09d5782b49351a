"""Change request database models.

Stores change requests and their history entries.
"""

from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text
from sqlalchemy.orm import relationship

from servicedesk.db.base import Base


class Change(Base):
    """
    A request to modify a system or process.

    Normal and emergency changes go through multilevel approval before they
    can be implemented; standard changes are pre-approved.
    """
    __tablename__ = "changes"

    id = Column(Integer, primary_key=True, autoincrement=True)

    # Description
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    rollback_plan = Column(Text, nullable=True)
    category = Column(String(50), nullable=False, default="system")  # system, application, infrastructure, ...
    priority = Column(String(20), nullable=False, default="medium")

    # Routing keys
    risk_level = Column(String(20), nullable=False, index=True)  # low, medium, high
    change_type = Column(String(20), nullable=False, default="normal")  # standard, normal, emergency
    product_id = Column(Integer, ForeignKey("products.id", ondelete="SET NULL"), nullable=True, index=True)
    group_id = Column(Integer, ForeignKey("groups.id", ondelete="SET NULL"), nullable=True, index=True)

    # Workflow state
    status = Column(String(20), nullable=False, default="submitted", index=True)
    approval_cycle = Column(Integer, nullable=False, default=0)

    # People
    requested_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    approved_by = Column(String(255), nullable=True)
    implemented_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    # Schedule
    planned_date = Column(DateTime, nullable=True)
    start_date = Column(DateTime, nullable=True)
    end_date = Column(DateTime, nullable=True)
    completed_date = Column(DateTime, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Optimistic concurrency token; bumped by every status change and decision
    version = Column(Integer, nullable=False)

    # Relationships
    product = relationship("Product")
    group = relationship("Group")
    requester = relationship("User", foreign_keys=[requested_by])
    implementer = relationship("User", foreign_keys=[implemented_by])
    approvals = relationship(
        "ApprovalInstance",
        back_populates="change",
        order_by="[ApprovalInstance.cycle, ApprovalInstance.approval_level, ApprovalInstance.id]",
    )
    history = relationship("ChangeHistory", back_populates="change", order_by="ChangeHistory.id")

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<Change #{self.id} {self.title!r} [{self.status}]>"


class ChangeHistory(Base):
    """
    Records status transitions, approval decisions and comments on a change.
    """
    __tablename__ = "change_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    change_id = Column(Integer, ForeignKey("changes.id", ondelete="CASCADE"), nullable=False, index=True)

    action = Column(String(50), nullable=False)  # created, status_changed, approval_decision, revised, comment_added
    from_status = Column(String(20), nullable=True)
    to_status = Column(String(20), nullable=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    change = relationship("Change", back_populates="history")
    user = relationship("User")

    def __repr__(self) -> str:
        return f"<ChangeHistory {self.action} {self.from_status} -> {self.to_status}>"
