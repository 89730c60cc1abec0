"""Tenant-scoped sections (e.g. A, B, C) under a class. Section name is unique per class."""
import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import backref, relationship

from schoolcore.db.session import Base


def normalize_section_name(name: str) -> str:
    """Sections are stored trimmed and upper-case, so the unique constraint is case-insensitive."""
    return (name or "").strip().upper()


class Section(Base):
    """Section belongs to a class. Its id survives renames; students point at it via users.section_id."""

    __tablename__ = "sections"
    __table_args__ = (
        UniqueConstraint("tenant_id", "class_id", "name", name="uq_section_tenant_class_name"),
        CheckConstraint("capacity >= 1", name="ck_section_capacity_positive"),
        CheckConstraint("current_strength >= 0 AND current_strength <= capacity", name="ck_section_strength_within_capacity"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid(as_uuid=True), ForeignKey("tenants.id"), nullable=False, index=True)
    class_id = Column(Uuid(as_uuid=True), ForeignKey("classes.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(50), nullable=False)
    capacity = Column(Integer, nullable=False, default=40)
    current_strength = Column(Integer, nullable=False, default=0)
    section_teacher_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    tenant = relationship("Tenant", backref="sections")
    school_class = relationship(
        "SchoolClass",
        backref=backref("sections", cascade="all, delete-orphan"),
        foreign_keys=[class_id],
    )
    section_teacher = relationship("User", foreign_keys=[section_teacher_id])
