"""
Student class history ledger. Rows are appended by the promotion/demotion workflow only;
nothing here updates or deletes them.
"""

from collections import Counter
from datetime import date, datetime, time, timedelta
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from schoolcore.auth.models import User
from schoolcore.core.enums import ClassActionType
from schoolcore.core.models import StudentClassHistory

from .schemas import ClassHistoryResponse, PromotionReport


def _history_to_response(h: StudentClassHistory, student_name: Optional[str] = None) -> ClassHistoryResponse:
    return ClassHistoryResponse(
        id=h.id,
        student_id=h.student_id,
        student_name=student_name,
        from_class=h.from_class,
        from_section=h.from_section,
        to_class=h.to_class,
        to_section=h.to_section,
        academic_year=h.academic_year,
        action_type=h.action_type,
        performed_by=h.performed_by,
        remarks=h.remarks or "",
        created_at=h.created_at,
    )


async def append_history(
    db: AsyncSession,
    tenant_id: UUID,
    student_id: UUID,
    action_type: ClassActionType,
    *,
    from_class: Optional[str],
    from_section: Optional[str],
    to_class: str,
    to_section: Optional[str],
    academic_year: str,
    performed_by: Optional[UUID] = None,
    remarks: Optional[str] = None,
) -> StudentClassHistory:
    """Append one history row. Caller must commit."""
    entry = StudentClassHistory(
        tenant_id=tenant_id,
        student_id=student_id,
        from_class=from_class,
        from_section=from_section,
        to_class=to_class,
        to_section=to_section,
        academic_year=academic_year,
        action_type=action_type.value,
        performed_by=performed_by,
        remarks=remarks or "",
        created_at=datetime.utcnow(),
    )
    db.add(entry)
    return entry


async def has_action(
    db: AsyncSession,
    tenant_id: UUID,
    student_id: UUID,
    academic_year: str,
    action_type: ClassActionType,
) -> bool:
    result = await db.execute(
        select(StudentClassHistory.id).where(
            StudentClassHistory.tenant_id == tenant_id,
            StudentClassHistory.student_id == student_id,
            StudentClassHistory.academic_year == academic_year,
            StudentClassHistory.action_type == action_type.value,
        ).limit(1)
    )
    return result.scalar_one_or_none() is not None


async def list_student_history(
    db: AsyncSession,
    tenant_id: UUID,
    student_id: UUID,
) -> List[ClassHistoryResponse]:
    result = await db.execute(
        select(StudentClassHistory)
        .where(
            StudentClassHistory.tenant_id == tenant_id,
            StudentClassHistory.student_id == student_id,
        )
        .order_by(StudentClassHistory.created_at.desc())
    )
    return [_history_to_response(h) for h in result.scalars().all()]


async def promotion_report(
    db: AsyncSession,
    tenant_id: UUID,
    academic_year: Optional[str] = None,
    action_type: Optional[ClassActionType] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
) -> PromotionReport:
    """Ledger rows for the tenant, filtered by year, action and created_at date range (inclusive)."""
    stmt = (
        select(StudentClassHistory, User.full_name)
        .outerjoin(
            User,
            (User.id == StudentClassHistory.student_id) & (User.tenant_id == StudentClassHistory.tenant_id),
        )
        .where(StudentClassHistory.tenant_id == tenant_id)
    )
    if academic_year:
        stmt = stmt.where(StudentClassHistory.academic_year == academic_year)
    if action_type is not None:
        stmt = stmt.where(StudentClassHistory.action_type == action_type.value)
    if date_from is not None:
        stmt = stmt.where(StudentClassHistory.created_at >= datetime.combine(date_from, time.min))
    if date_to is not None:
        stmt = stmt.where(StudentClassHistory.created_at < datetime.combine(date_to + timedelta(days=1), time.min))
    stmt = stmt.order_by(StudentClassHistory.created_at.desc())

    result = await db.execute(stmt)
    rows = result.all()
    totals = Counter(h.action_type for h, _ in rows)
    return PromotionReport(
        items=[_history_to_response(h, name) for h, name in rows],
        total=len(rows),
        totals_by_action=dict(totals),
    )
