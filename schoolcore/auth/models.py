import uuid
from datetime import datetime

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Index, String, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from schoolcore.db.session import Base


class User(Base):
    """User within a tenant. role: admin | teacher | student | parent."""

    __tablename__ = "users"
    __table_args__ = (
        # Email must be unique per tenant
        UniqueConstraint("tenant_id", "email", name="uq_user_tenant_email"),
        # Roll number unique within (class, section, academic year); NULL roll numbers never collide
        UniqueConstraint(
            "tenant_id", "class_name", "section_name", "academic_year", "roll_number",
            name="uq_user_tenant_roll_number",
        ),
        Index("ix_users_tenant_role", "tenant_id", "role"),
        Index("ix_users_tenant_class_section_year", "tenant_id", "class_id", "section_id", "academic_year"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    # Owning tenant
    tenant_id = Column(Uuid(as_uuid=True), ForeignKey("tenants.id"), nullable=False)
    full_name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False)
    role = Column(String(20), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    # ----- Student enrollment -----
    # Legacy denormalized labels; class_name holds the class *grade* label (e.g. "5").
    class_name = Column(String(50), nullable=True)
    section_name = Column(String(50), nullable=True)
    # Normalized references. No FK: a reference may be stale, and lookups fall back to the labels.
    class_id = Column(Uuid(as_uuid=True), nullable=True)
    section_id = Column(Uuid(as_uuid=True), nullable=True)
    academic_year = Column(String(20), nullable=True)
    roll_number = Column(String(50), nullable=True)
    # Captured on the first promotion/demotion, never overwritten
    admission_class = Column(String(50), nullable=True)
    admission_section = Column(String(50), nullable=True)

    # ----- Teacher: legacy list of grade labels -----
    assigned_classes = Column(JSON, nullable=False, default=list)

    # ----- Parent: student ids (as strings) -----
    children = Column(JSON, nullable=False, default=list)

    tenant = relationship("Tenant", back_populates="users")
