import logging
import math
from typing import List, Optional
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from schoolcore.api.v1.access_scope.scope import AccessScope
from schoolcore.api.v1.access_scope.service import ensure_student_in_scope, student_scope_clause
from schoolcore.api.v1.class_history import service as history_service
from schoolcore.api.v1.enrollment.resolver import (
    EnrolledSection,
    EnrollmentRef,
    ResolvedEnrollment,
    StructureIndex,
    in_grade_clause,
    lower_label,
    normalize_label,
    resolve_class,
    resolve_enrollment,
    resolve_section,
    student_query,
)
from schoolcore.auth.models import User
from schoolcore.core.config import settings
from schoolcore.core.enums import ClassActionType
from schoolcore.core.exceptions import (
    ConflictError,
    DuplicateActionRequiresOverride,
    NotFoundError,
    ServiceError,
    ValidationFailedError,
)
from schoolcore.core.models import StudentClassHistory

from .schemas import (
    BulkClassActionError,
    BulkClassActionRequest,
    BulkClassActionResult,
    ClassActionRequest,
    ClassActionResult,
    StudentPaginatedResponse,
    StudentResponse,
)

logger = logging.getLogger(__name__)


def student_to_response(u: User, enrollment: ResolvedEnrollment) -> StudentResponse:
    school_class, section = enrollment
    return StudentResponse(
        id=u.id,
        tenant_id=u.tenant_id,
        full_name=u.full_name,
        email=u.email,
        is_active=u.is_active,
        class_name=u.class_name,
        section_name=u.section_name,
        class_id=u.class_id,
        section_id=u.section_id,
        academic_year=u.academic_year,
        roll_number=u.roll_number,
        admission_class=u.admission_class,
        admission_section=u.admission_section,
        effective_class_id=school_class.id if school_class else None,
        effective_grade=school_class.grade if school_class else None,
        effective_section_id=section.id if section else None,
        effective_section_name=section.name if section else None,
        is_enrolled=enrollment.is_enrolled,
        created_at=u.created_at,
    )


def students_to_response(students: List[User], index: StructureIndex) -> List[StudentResponse]:
    return [student_to_response(u, resolve_enrollment(EnrollmentRef.from_student(u), index)) for u in students]


async def list_students(
    db: AsyncSession,
    tenant_id: UUID,
    scope: AccessScope,
    class_name: Optional[str] = None,
    section_name: Optional[str] = None,
    academic_year: Optional[str] = None,
    is_active: Optional[bool] = None,
    search: Optional[str] = None,
    page: int = 1,
    page_size: int = 20,
) -> StudentPaginatedResponse:
    """
    Students visible in scope. class_name / section_name filter on the effective (resolved) grade and
    section name; search matches name or roll number.
    """
    if scope.is_empty:
        return StudentPaginatedResponse(items=[], total=0, page=page, page_size=page_size, total_pages=0)

    stmt = student_query(tenant_id).where(student_scope_clause(scope))
    if class_name:
        stmt = stmt.where(in_grade_clause([class_name]))
    if section_name:
        stmt = stmt.where(
            lower_label(func.coalesce(EnrolledSection.name, User.section_name)) == normalize_label(section_name)
        )
    if academic_year:
        stmt = stmt.where(User.academic_year == academic_year)
    if is_active is not None:
        stmt = stmt.where(User.is_active.is_(is_active))
    if search and search.strip():
        pattern = f"%{search.strip()}%"
        stmt = stmt.where(or_(User.full_name.ilike(pattern), User.roll_number.ilike(pattern)))

    total = (await db.execute(select(func.count()).select_from(stmt.subquery()))).scalar_one()
    result = await db.execute(
        stmt.order_by(User.full_name, User.id).offset((page - 1) * page_size).limit(page_size)
    )
    students = list(result.scalars().all())
    index = await StructureIndex.load(db, tenant_id)
    return StudentPaginatedResponse(
        items=students_to_response(students, index),
        total=total,
        page=page,
        page_size=page_size,
        total_pages=math.ceil(total / page_size) if total else 0,
    )


async def get_student(
    db: AsyncSession,
    tenant_id: UUID,
    scope: AccessScope,
    student_id: UUID,
) -> StudentResponse:
    student = await ensure_student_in_scope(db, tenant_id, scope, student_id)
    index = await StructureIndex.load(db, tenant_id)
    return student_to_response(student, resolve_enrollment(EnrollmentRef.from_student(student), index))


async def _get_student(db: AsyncSession, tenant_id: UUID, student_id: UUID) -> User:
    result = await db.execute(student_query(tenant_id).where(User.id == student_id))
    student = result.scalar_one_or_none()
    if not student:
        raise NotFoundError("Student not found", student_id=str(student_id))
    return student


async def _has_any_history(db: AsyncSession, tenant_id: UUID, student_id: UUID) -> bool:
    result = await db.execute(
        select(StudentClassHistory.id).where(
            StudentClassHistory.tenant_id == tenant_id,
            StudentClassHistory.student_id == student_id,
        ).limit(1)
    )
    return result.scalar_one_or_none() is not None


async def _stage_class_action(
    db: AsyncSession,
    tenant_id: UUID,
    student: User,
    index: StructureIndex,
    action_type: ClassActionType,
    payload: ClassActionRequest,
    performed_by: Optional[UUID],
) -> StudentClassHistory:
    """Mutate the student and append its history row. Nothing is committed here."""
    to_class = (payload.to_class or "").strip()
    to_section = (payload.to_section or "").strip() or None
    academic_year = (payload.academic_year or "").strip()
    if not to_class:
        raise ValidationFailedError("Target class is required", student_id=str(student.id))
    if not academic_year:
        raise ValidationFailedError("Academic year is required", student_id=str(student.id))

    if not payload.force_override and await history_service.has_action(
        db, tenant_id, student.id, academic_year, action_type
    ):
        raise DuplicateActionRequiresOverride(
            f"Student was already {action_type.value} for {academic_year}; confirm to record it again",
            student_id=str(student.id),
            academic_year=academic_year,
            action_type=action_type.value,
        )

    current = resolve_enrollment(EnrollmentRef.from_student(student), index)
    from_class = current.school_class.grade if current.school_class else student.class_name
    from_section = current.section.name if current.section else student.section_name

    # Admission snapshot is taken once, before the first ever move.
    if student.admission_class is None and not await _has_any_history(db, tenant_id, student.id):
        student.admission_class = from_class
        student.admission_section = from_section

    target_ref = EnrollmentRef(None, to_class, None, to_section, academic_year)
    target_class = resolve_class(target_ref, index)
    target_section = resolve_section(target_ref, target_class, index) if to_section else None

    student.class_name = to_class
    student.section_name = target_section.name if target_section else to_section
    student.academic_year = academic_year
    student.class_id = target_class.id if target_class else None
    student.section_id = target_section.id if target_section else None
    if payload.reset_roll_number:
        student.roll_number = None

    return await history_service.append_history(
        db,
        tenant_id,
        student.id,
        action_type,
        from_class=from_class,
        from_section=from_section,
        to_class=to_class,
        to_section=student.section_name,
        academic_year=academic_year,
        performed_by=performed_by,
        remarks=payload.remarks,
    )


async def _commit_class_action(
    db: AsyncSession,
    tenant_id: UUID,
    student: User,
    action_type: ClassActionType,
    payload: ClassActionRequest,
    performed_by: Optional[UUID],
) -> ClassActionResult:
    index = await StructureIndex.load(db, tenant_id)
    student_id = student.id
    entry = await _stage_class_action(db, tenant_id, student, index, action_type, payload, performed_by)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError(
            "Roll number already exists in the target class/section for this academic year",
            student_id=str(student_id),
        )
    logger.info(
        "Student %s %s: %s/%s -> %s/%s (%s)",
        student.id, action_type.value, entry.from_class, entry.from_section,
        entry.to_class, entry.to_section, entry.academic_year,
    )
    return ClassActionResult(
        student=student_to_response(student, resolve_enrollment(EnrollmentRef.from_student(student), index)),
        history_id=entry.id,
    )


async def apply_class_action(
    db: AsyncSession,
    tenant_id: UUID,
    student_id: UUID,
    action_type: ClassActionType,
    payload: ClassActionRequest,
    performed_by: Optional[UUID] = None,
) -> ClassActionResult:
    """
    Promote/demote one student: update class, section and year, then append one history row.
    All-or-nothing. A repeat of the same action for the same year needs force_override.
    """
    student = await _get_student(db, tenant_id, student_id)
    return await _commit_class_action(db, tenant_id, student, action_type, payload, performed_by)


async def apply_bulk_class_action(
    db: AsyncSession,
    tenant_id: UUID,
    payload: BulkClassActionRequest,
    performed_by: Optional[UUID] = None,
) -> BulkClassActionResult:
    """Same action per student, each in its own transaction. Failures are collected, never abort the batch."""
    student_ids = list(dict.fromkeys(payload.student_ids))
    if len(student_ids) > settings.bulk_class_action_limit:
        raise ValidationFailedError(
            f"At most {settings.bulk_class_action_limit} students per bulk action",
            limit=settings.bulk_class_action_limit,
        )

    success_count = 0
    errors: List[BulkClassActionError] = []
    for student_id in student_ids:
        student_name = None
        try:
            student = await _get_student(db, tenant_id, student_id)
            student_name = student.full_name
            await _commit_class_action(db, tenant_id, student, payload.action_type, payload, performed_by)
            success_count += 1
        except ServiceError as e:
            await db.rollback()
            errors.append(
                BulkClassActionError(
                    student_id=student_id,
                    student_name=student_name,
                    code=e.code,
                    message=e.message,
                )
            )

    if errors:
        logger.warning(
            "Bulk %s in tenant %s: %d succeeded, %d failed",
            payload.action_type.value, tenant_id, success_count, len(errors),
        )
    else:
        logger.info("Bulk %s in tenant %s: %d succeeded", payload.action_type.value, tenant_id, success_count)
    return BulkClassActionResult(success_count=success_count, errors=errors)
