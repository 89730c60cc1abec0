import logging
import uuid
from typing import Iterable, List, Optional
from uuid import UUID

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from schoolcore.api.v1.access_scope.scope import AccessScope
from schoolcore.api.v1.access_scope.service import ensure_class_in_scope, student_scope_clause
from schoolcore.api.v1.enrollment.resolver import (
    EnrolledClass,
    StructureIndex,
    count_enrollments,
    in_class_clause,
    in_section_clause,
    load_student_refs,
    lower_label,
    normalize_label,
    student_query,
)
from schoolcore.api.v1.sections import service as section_service
from schoolcore.api.v1.sections.schemas import SectionSyncItem
from schoolcore.api.v1.students.schemas import StudentResponse
from schoolcore.api.v1.students.service import students_to_response
from schoolcore.auth.models import User
from schoolcore.core.config import settings
from schoolcore.core.enums import UserRole
from schoolcore.core.exceptions import BlockedError, ConflictError, NotFoundError, ValidationFailedError
from schoolcore.core.models import AcademicSession, SchoolClass, Section

from .schemas import ClassCreate, ClassResponse, ClassUpdate, SubjectTeacher

logger = logging.getLogger(__name__)


def _grade_sort_key(grade: Optional[str]):
    """Numeric grades in numeric order ('2' < '10'), then named grades alphabetically."""
    label = normalize_label(grade)
    return (0, int(label), "") if label.isdigit() else (1, 0, label)


def _subject_pairs(raw) -> List[SubjectTeacher]:
    pairs = []
    for item in raw or []:
        if not isinstance(item, dict) or not item.get("subject") or not item.get("teacher_id"):
            continue
        try:
            pairs.append(SubjectTeacher(subject=item["subject"], teacher_id=UUID(str(item["teacher_id"]))))
        except ValueError:
            logger.warning("Skipping malformed subject teacher entry %r", item)
    return pairs


def _class_to_response(
    c: SchoolClass,
    sections: Iterable[Section],
    student_count: int,
    section_counts: dict,
) -> ClassResponse:
    return ClassResponse(
        id=c.id,
        tenant_id=c.tenant_id,
        name=c.name,
        grade=c.grade,
        academic_year=c.academic_year,
        academic_session_id=c.academic_session_id,
        class_teacher_id=c.class_teacher_id,
        subject_teachers=_subject_pairs(c.subject_teachers),
        description=c.description,
        is_active=c.is_active,
        student_count=student_count,
        sections=[section_service.section_to_response(s, section_counts.get(s.id, 0)) for s in sections],
        created_at=c.created_at,
        updated_at=c.updated_at,
    )


async def get_class_by_id_for_tenant(
    db: AsyncSession,
    tenant_id: UUID,
    class_id: UUID,
    active_only: bool = False,
) -> Optional[SchoolClass]:
    stmt = select(SchoolClass).where(
        SchoolClass.id == class_id,
        SchoolClass.tenant_id == tenant_id,
    )
    if active_only:
        stmt = stmt.where(SchoolClass.is_active.is_(True))
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def _require_class(db: AsyncSession, tenant_id: UUID, class_id: UUID) -> SchoolClass:
    obj = await get_class_by_id_for_tenant(db, tenant_id, class_id)
    if not obj:
        raise NotFoundError("Class not found", class_id=str(class_id))
    return obj


async def _validate_teachers(db: AsyncSession, tenant_id: UUID, teacher_ids: Iterable[UUID]) -> None:
    ids = {t for t in teacher_ids if t is not None}
    if not ids:
        return
    result = await db.execute(
        select(User.id).where(
            User.tenant_id == tenant_id,
            User.id.in_(ids),
            User.role == UserRole.TEACHER.value,
        )
    )
    missing = ids - set(result.scalars().all())
    if missing:
        raise ValidationFailedError(
            "Teacher not found for this tenant", teacher_id=str(sorted(missing, key=str)[0])
        )


async def _validate_session(db: AsyncSession, tenant_id: UUID, session_id: Optional[UUID]) -> None:
    if session_id is None:
        return
    ay = await db.get(AcademicSession, session_id)
    if not ay or ay.tenant_id != tenant_id:
        raise ValidationFailedError(
            "Invalid academic session for this tenant", academic_session_id=str(session_id)
        )


def _required(value: Optional[str], field: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValidationFailedError(f"{field} is required", field=field)
    return value


async def create_class(
    db: AsyncSession,
    tenant_id: UUID,
    payload: ClassCreate,
) -> ClassResponse:
    """Create a class with the supplied sections, or the configured default sections when none are given."""
    name = _required(payload.name, "name")
    grade = _required(payload.grade, "grade")
    academic_year = _required(payload.academic_year, "academic_year")
    await _validate_session(db, tenant_id, payload.academic_session_id)
    await _validate_teachers(
        db, tenant_id, [payload.class_teacher_id] + [p.teacher_id for p in payload.subject_teachers]
    )

    if payload.sections is not None:
        desired = payload.sections
    else:
        desired = [
            SectionSyncItem(name=n, capacity=settings.default_section_capacity)
            for n in settings.default_section_names
        ]

    obj = SchoolClass(
        id=uuid.uuid4(),
        tenant_id=tenant_id,
        name=name,
        grade=grade,
        academic_year=academic_year,
        academic_session_id=payload.academic_session_id,
        class_teacher_id=payload.class_teacher_id,
        subject_teachers=[{"subject": p.subject, "teacher_id": str(p.teacher_id)} for p in payload.subject_teachers],
        description=payload.description,
        is_active=True,
    )
    plan = await section_service.plan_section_sync(db, tenant_id, obj, desired)
    try:
        db.add(obj)
        await db.flush()
        await section_service.apply_section_sync(db, tenant_id, plan)
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("Class or section already exists for this tenant", grade=grade)
    logger.info("Created class %s (grade %s, %s) with %d sections", obj.id, grade, academic_year, len(plan.creates))
    return await get_class(db, tenant_id, obj.id, AccessScope.all())


async def _class_with_counts(
    db: AsyncSession,
    tenant_id: UUID,
    scope: AccessScope,
    classes: List[SchoolClass],
    index: StructureIndex,
    active_sections_only: bool = False,
) -> List[ClassResponse]:
    refs = await load_student_refs(db, tenant_id, student_scope_clause(scope))
    by_class, by_section = count_enrollments(refs, index)
    out = []
    for c in classes:
        sections = scope.visible_sections(c, index.sections_of(c.id))
        if active_sections_only:
            sections = [s for s in sections if s.is_active]
        sections.sort(key=lambda s: normalize_label(s.name))
        out.append(_class_to_response(c, sections, by_class.get(c.id, 0), by_section))
    return out


async def get_class(
    db: AsyncSession,
    tenant_id: UUID,
    class_id: UUID,
    scope: AccessScope,
) -> ClassResponse:
    index = await StructureIndex.load(db, tenant_id)
    obj = index.classes.get(class_id)
    if obj is None:
        raise NotFoundError("Class not found", class_id=str(class_id))
    ensure_class_in_scope(scope, obj)
    return (await _class_with_counts(db, tenant_id, scope, [obj], index))[0]


async def list_classes_with_counts(
    db: AsyncSession,
    tenant_id: UUID,
    scope: AccessScope,
    academic_year: Optional[str] = None,
    grade: Optional[str] = None,
    active_only: bool = True,
) -> List[ClassResponse]:
    """
    Classes visible in scope with their visible sections and live active-student counts.
    Sorted by grade then name; sections by name. Counts only include students inside the scope.
    """
    if scope.is_empty:
        return []
    index = await StructureIndex.load(db, tenant_id)
    classes = [c for c in index.classes.values() if scope.allows_class(c)]
    if academic_year:
        classes = [c for c in classes if c.academic_year == academic_year]
    if grade:
        classes = [c for c in classes if normalize_label(c.grade) == normalize_label(grade)]
    if active_only:
        classes = [c for c in classes if c.is_active]
    if not classes:
        return []
    classes.sort(key=lambda c: (_grade_sort_key(c.grade), normalize_label(c.name)))
    return await _class_with_counts(db, tenant_id, scope, classes, index, active_sections_only=active_only)


async def _count_students(db: AsyncSession, tenant_id: UUID, *criteria) -> int:
    result = await db.execute(student_query(tenant_id, func.count(User.id)).where(*criteria))
    return result.scalar_one()


async def update_class(
    db: AsyncSession,
    tenant_id: UUID,
    class_id: UUID,
    payload: ClassUpdate,
) -> ClassResponse:
    """
    Update class fields and, when `sections` is present, sync its sections. One transaction:
    a blocked section change leaves the class fields untouched too.
    """
    obj = await _require_class(db, tenant_id, class_id)
    fields = payload.model_fields_set

    new_grade = None
    if payload.grade is not None:
        new_grade = _required(payload.grade, "grade")
        if new_grade == obj.grade:
            new_grade = None
        elif normalize_label(new_grade) != normalize_label(obj.grade):
            # Students with no resolvable class reference find this class only by its old grade label.
            count = await _count_students(
                db,
                tenant_id,
                User.is_active.is_(True),
                EnrolledClass.id.is_(None),
                lower_label(User.class_name) == normalize_label(obj.grade),
            )
            if count:
                logger.warning(
                    "Blocked grade change of class %s from %s to %s: %d students use the old label",
                    obj.id, obj.grade, new_grade, count,
                )
                raise BlockedError(
                    f"Cannot change grade '{obj.grade}': {count} active student(s) are enrolled by grade label",
                    entity="class",
                    name=obj.grade,
                    count=count,
                    class_id=str(obj.id),
                )
    academic_year = _required(payload.academic_year, "academic_year") if payload.academic_year is not None else None
    name = _required(payload.name, "name") if payload.name is not None else None
    if "academic_session_id" in fields:
        await _validate_session(db, tenant_id, payload.academic_session_id)
    teacher_ids = [payload.class_teacher_id] if "class_teacher_id" in fields else []
    if payload.subject_teachers is not None:
        teacher_ids += [p.teacher_id for p in payload.subject_teachers]
    await _validate_teachers(db, tenant_id, teacher_ids)

    plan = None
    if payload.sections is not None:
        plan = await section_service.plan_section_sync(db, tenant_id, obj, payload.sections)

    if name is not None:
        obj.name = name
    if academic_year is not None:
        obj.academic_year = academic_year
    if "academic_session_id" in fields:
        obj.academic_session_id = payload.academic_session_id
    if "class_teacher_id" in fields:
        obj.class_teacher_id = payload.class_teacher_id
    if payload.subject_teachers is not None:
        obj.subject_teachers = [
            {"subject": p.subject, "teacher_id": str(p.teacher_id)} for p in payload.subject_teachers
        ]
    if "description" in fields:
        obj.description = payload.description
    if payload.is_active is not None:
        obj.is_active = payload.is_active
    try:
        if new_grade is not None:
            obj.grade = new_grade
            # Keep the denormalized label of reference holders in step with the class.
            await db.execute(
                update(User)
                .where(User.tenant_id == tenant_id, User.class_id == obj.id)
                .values(class_name=new_grade)
            )
        if plan is not None:
            await section_service.apply_section_sync(db, tenant_id, plan)
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("Section name already exists for this class", class_id=str(class_id))
    logger.info("Updated class %s%s", class_id, " with section sync" if plan is not None else "")
    return await get_class(db, tenant_id, class_id, AccessScope.all())


async def delete_class(
    db: AsyncSession,
    tenant_id: UUID,
    class_id: UUID,
) -> None:
    """Delete a class and its sections. Blocked while any student holds it by reference or grade label."""
    obj = await _require_class(db, tenant_id, class_id)
    count = await _count_students(
        db,
        tenant_id,
        or_(
            User.class_id == obj.id,
            lower_label(User.class_name) == normalize_label(obj.grade),
        ),
    )
    if count:
        logger.warning("Blocked delete of class %s (grade %s): %d students", obj.id, obj.grade, count)
        raise BlockedError(
            f"Cannot delete class '{obj.name}': {count} student(s) enrolled under grade '{obj.grade}'",
            entity="class",
            name=obj.name,
            count=count,
            class_id=str(obj.id),
        )
    await db.delete(obj)
    await db.commit()
    logger.info("Deleted class %s (grade %s)", class_id, obj.grade)


async def list_class_students(
    db: AsyncSession,
    tenant_id: UUID,
    scope: AccessScope,
    class_id: UUID,
    section_id: Optional[UUID] = None,
    active_only: bool = True,
) -> List[StudentResponse]:
    """Students of one class (optionally one section), intersected with the scope."""
    index = await StructureIndex.load(db, tenant_id)
    obj = index.classes.get(class_id)
    if obj is None:
        raise NotFoundError("Class not found", class_id=str(class_id))
    ensure_class_in_scope(scope, obj)

    stmt = student_query(tenant_id).where(in_class_clause(obj), student_scope_clause(scope))
    if section_id is not None:
        section = index.sections.get(section_id)
        if section is None or section.class_id != obj.id:
            raise NotFoundError("Section not found in this class", section_id=str(section_id))
        stmt = stmt.where(in_section_clause(section, obj))
    if active_only:
        stmt = stmt.where(User.is_active.is_(True))
    result = await db.execute(stmt.order_by(User.roll_number, User.full_name))
    return students_to_response(list(result.scalars().all()), index)
