"""Tenant-scoped classes (e.g. Grade 5 for 2024-2025). Model named SchoolClass to avoid Python 'class' keyword."""
import uuid
from datetime import datetime

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Index, String, Text, Uuid
from sqlalchemy.orm import relationship

from schoolcore.db.session import Base


class SchoolClass(Base):
    """
    Class per tenant and academic year. `grade` is the label legacy student rows carry in
    users.class_name, so it is the join key for string-based lookups.
    subject_teachers: embedded [{"subject": "Maths", "teacher_id": "<uuid>"}, ...].
    """

    __tablename__ = "classes"
    __table_args__ = (
        Index("ix_classes_tenant_year_grade", "tenant_id", "academic_year", "grade"),
        Index("ix_classes_tenant_teacher", "tenant_id", "class_teacher_id"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid(as_uuid=True), ForeignKey("tenants.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    grade = Column(String(50), nullable=False)
    academic_year = Column(String(20), nullable=False)
    academic_session_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("academic_sessions.id", ondelete="SET NULL"),
        nullable=True,
    )
    class_teacher_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    subject_teachers = Column(JSON, nullable=False, default=list)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    tenant = relationship("Tenant", backref="school_classes")
    class_teacher = relationship("User", foreign_keys=[class_teacher_id])
