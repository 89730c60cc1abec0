import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, String, Uuid
from sqlalchemy.orm import relationship

from schoolcore.db.session import Base


class TeacherAssignment(Base):
    """Links teacher to a class (and optionally one section) for an academic session.
    section_id NULL = all sections of the class. Only is_active rows grant access.
    """

    __tablename__ = "teacher_assignments"
    __table_args__ = (
        Index("ix_teacher_assignments_tenant_teacher", "tenant_id", "teacher_id", "is_active"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid(as_uuid=True), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    teacher_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    class_id = Column(Uuid(as_uuid=True), ForeignKey("classes.id", ondelete="CASCADE"), nullable=False)
    section_id = Column(Uuid(as_uuid=True), ForeignKey("sections.id", ondelete="CASCADE"), nullable=True)
    academic_session_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("academic_sessions.id", ondelete="CASCADE"),
        nullable=True,
    )
    subject_name = Column(String(100), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    teacher = relationship("User", foreign_keys=[teacher_id])
    school_class = relationship("SchoolClass", foreign_keys=[class_id])
    section = relationship("Section", foreign_keys=[section_id])
    academic_session = relationship("AcademicSession", foreign_keys=[academic_session_id])
