"""
Student class history: one row per promotion/demotion. Append-only; nothing updates or deletes rows.
"""

import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, String, Text, Uuid
from sqlalchemy.orm import relationship

from schoolcore.db.session import Base


class StudentClassHistory(Base):
    __tablename__ = "student_class_history"
    __table_args__ = (
        Index("ix_class_history_tenant_student_created", "tenant_id", "student_id", "created_at"),
        Index("ix_class_history_tenant_year_action", "tenant_id", "academic_year", "action_type"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid(as_uuid=True), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    student_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    from_class = Column(String(50), nullable=True)
    from_section = Column(String(50), nullable=True)
    to_class = Column(String(50), nullable=False)
    to_section = Column(String(50), nullable=True)
    academic_year = Column(String(20), nullable=False)
    action_type = Column(String(20), nullable=False)  # promoted | demoted | admitted | transferred
    performed_by = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    remarks = Column(Text, nullable=False, default="")
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    student = relationship("User", foreign_keys=[student_id])
