import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from schoolcore.api.v1.access_scope.scope import AccessScope
from schoolcore.api.v1.access_scope.service import student_scope_clause
from schoolcore.api.v1.enrollment.resolver import (
    StructureIndex,
    count_enrollments,
    in_section_clause,
    load_student_refs,
    normalize_label,
    student_query,
)
from schoolcore.auth.models import User
from schoolcore.core.config import settings
from schoolcore.core.enums import UserRole
from schoolcore.core.exceptions import BlockedError, ConflictError, NotFoundError, ValidationFailedError
from schoolcore.core.models import SchoolClass, Section, normalize_section_name

from .schemas import SectionResponse, SectionSyncItem

logger = logging.getLogger(__name__)


def section_to_response(s: Section, student_count: int = 0) -> SectionResponse:
    return SectionResponse(
        id=s.id,
        tenant_id=s.tenant_id,
        class_id=s.class_id,
        name=s.name,
        capacity=s.capacity,
        current_strength=s.current_strength or 0,
        student_count=student_count,
        section_teacher_id=s.section_teacher_id,
        description=s.description,
        is_active=s.is_active,
        created_at=s.created_at,
        updated_at=s.updated_at,
    )


@dataclass
class SectionSyncPlan:
    """Outcome of matching a desired section list against a class's sections. Nothing is written yet."""

    school_class: SchoolClass
    updates: List[Tuple[Section, SectionSyncItem]] = field(default_factory=list)
    creates: List[SectionSyncItem] = field(default_factory=list)
    removals: List[Section] = field(default_factory=list)

    @property
    def renames(self) -> List[Tuple[Section, str]]:
        return [
            (s, normalize_section_name(item.name))
            for s, item in self.updates
            if normalize_section_name(item.name) != normalize_section_name(s.name)
        ]


async def _get_class(db: AsyncSession, tenant_id: UUID, class_id: UUID) -> SchoolClass:
    result = await db.execute(
        select(SchoolClass).where(
            SchoolClass.id == class_id,
            SchoolClass.tenant_id == tenant_id,
        )
    )
    obj = result.scalar_one_or_none()
    if not obj:
        raise NotFoundError("Class not found", class_id=str(class_id))
    return obj


async def get_class_sections(db: AsyncSession, tenant_id: UUID, class_id: UUID) -> List[Section]:
    result = await db.execute(
        select(Section)
        .where(Section.tenant_id == tenant_id, Section.class_id == class_id)
        .order_by(Section.name)
    )
    return list(result.scalars().all())


async def _count_active_students(db: AsyncSession, tenant_id: UUID, clause) -> int:
    result = await db.execute(
        student_query(tenant_id, func.count(User.id)).where(User.is_active.is_(True), clause)
    )
    return result.scalar_one()


def _validate_desired(school_class: SchoolClass, desired: Sequence[SectionSyncItem]) -> None:
    names = set()
    ids = set()
    for item in desired:
        name = normalize_section_name(item.name)
        if not name:
            raise ValidationFailedError("Section name is required", class_id=str(school_class.id))
        if name in names:
            raise ConflictError(
                f"Section '{name}' appears more than once for this class",
                class_id=str(school_class.id),
                name=name,
            )
        names.add(name)
        if item.id is not None:
            if item.id in ids:
                raise ValidationFailedError(
                    "Section reference appears more than once", section_id=str(item.id)
                )
            ids.add(item.id)
        if item.capacity is not None and item.capacity < 1:
            raise ValidationFailedError(
                f"Capacity of section '{name}' must be at least 1", name=name, capacity=item.capacity
            )


async def _validate_section_teachers(db: AsyncSession, tenant_id: UUID, desired: Sequence[SectionSyncItem]) -> None:
    teacher_ids = {item.section_teacher_id for item in desired if item.section_teacher_id is not None}
    if not teacher_ids:
        return
    result = await db.execute(
        select(User.id).where(
            User.tenant_id == tenant_id,
            User.id.in_(teacher_ids),
            User.role == UserRole.TEACHER.value,
        )
    )
    missing = teacher_ids - set(result.scalars().all())
    if missing:
        raise ValidationFailedError(
            "Section teacher must be a teacher of this tenant",
            teacher_id=str(sorted(missing, key=str)[0]),
        )


def match_sections(
    school_class: SchoolClass,
    existing: Sequence[Section],
    desired: Sequence[SectionSyncItem],
) -> SectionSyncPlan:
    """Reference matches first, then name matches against sections not yet claimed, else new."""
    by_id = {s.id: s for s in existing}
    claimed: Dict[UUID, SectionSyncItem] = {}
    by_name: List[SectionSyncItem] = []
    for item in desired:
        if item.id is not None and item.id in by_id:
            claimed[item.id] = item
        else:
            by_name.append(item)

    plan = SectionSyncPlan(school_class=school_class)
    for item in by_name:
        name = normalize_section_name(item.name)
        match = next(
            (s for s in existing if s.id not in claimed and normalize_section_name(s.name) == name),
            None,
        )
        if match is not None:
            claimed[match.id] = item
        else:
            plan.creates.append(item)

    plan.updates = [(by_id[sid], item) for sid, item in claimed.items()]
    plan.removals = [s for s in existing if s.id not in claimed]
    return plan


async def plan_section_sync(
    db: AsyncSession,
    tenant_id: UUID,
    school_class: SchoolClass,
    desired: Sequence[SectionSyncItem],
) -> SectionSyncPlan:
    """
    Validate and match the desired list, then run every safety check.
    Raises before anything is written: a plan returned from here can be applied as a whole.
    """
    _validate_desired(school_class, desired)
    await _validate_section_teachers(db, tenant_id, desired)
    existing = await get_class_sections(db, tenant_id, school_class.id)
    plan = match_sections(school_class, existing, desired)

    for section in plan.removals:
        count = await _count_active_students(db, tenant_id, in_section_clause(section, school_class))
        if count:
            logger.warning(
                "Blocked removal of section %s (%s) of class %s: %d active students",
                section.name, section.id, school_class.id, count,
            )
            raise BlockedError(
                f"Cannot remove section '{section.name}': {count} active student(s) enrolled",
                entity="section",
                name=section.name,
                count=count,
                section_id=str(section.id),
            )

    for section, new_name in plan.renames:
        count = await _count_active_students(db, tenant_id, in_section_clause(section, school_class))
        if count:
            logger.warning(
                "Blocked rename of section %s to %s in class %s: %d active students",
                section.name, new_name, school_class.id, count,
            )
            raise BlockedError(
                f"Cannot rename section '{section.name}': {count} active student(s) enrolled",
                entity="section",
                name=section.name,
                count=count,
                section_id=str(section.id),
            )

    for section, item in plan.updates:
        if item.capacity is not None and item.capacity < (section.current_strength or 0):
            raise ValidationFailedError(
                f"Capacity of section '{section.name}' cannot be below its current strength",
                name=section.name,
                capacity=item.capacity,
                current_strength=section.current_strength,
            )
    return plan


async def apply_section_sync(db: AsyncSession, tenant_id: UUID, plan: SectionSyncPlan) -> None:
    """Write a checked plan: deletes, then updates, then creates. Flushes only; the caller commits."""
    for section in plan.removals:
        # Only inactive students can still point here; their stale reference is dropped.
        await db.execute(
            update(User)
            .where(User.tenant_id == tenant_id, User.section_id == section.id)
            .values(section_id=None)
        )
        await db.delete(section)
    await db.flush()

    renamed_ids = {section.id for section, _ in plan.renames}
    # Free every old name before assigning new ones; two sections may swap names in one call.
    for section, _ in plan.renames:
        section.name = f"~{section.id.hex}"
    await db.flush()

    for section, item in plan.updates:
        new_name = normalize_section_name(item.name)
        renamed = section.id in renamed_ids
        section.name = new_name
        if item.capacity is not None:
            section.capacity = item.capacity
        if "section_teacher_id" in item.model_fields_set:
            section.section_teacher_id = item.section_teacher_id
        if "description" in item.model_fields_set:
            section.description = item.description
        if renamed:
            await db.execute(
                update(User)
                .where(User.tenant_id == tenant_id, User.section_id == section.id)
                .values(section_name=new_name)
            )
    await db.flush()

    for item in plan.creates:
        db.add(
            Section(
                tenant_id=tenant_id,
                class_id=plan.school_class.id,
                name=normalize_section_name(item.name),
                capacity=item.capacity or settings.default_section_capacity,
                current_strength=0,
                section_teacher_id=item.section_teacher_id,
                description=item.description,
                is_active=True,
            )
        )
    await db.flush()


async def sync_sections(
    db: AsyncSession,
    tenant_id: UUID,
    class_id: UUID,
    desired: Sequence[SectionSyncItem],
) -> List[SectionResponse]:
    """
    Reconcile a class's sections with the desired list in one transaction.
    Any failed check rejects the whole call. Renames may swap names between kept sections.
    A uniqueness violation from the store (e.g. a concurrent writer) rolls back and becomes Conflict.
    """
    school_class = await _get_class(db, tenant_id, class_id)
    plan = await plan_section_sync(db, tenant_id, school_class, desired)
    try:
        await apply_section_sync(db, tenant_id, plan)
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("Section name already exists for this class", class_id=str(class_id))
    logger.info(
        "Synced sections of class %s: %d kept, %d created, %d removed",
        class_id, len(plan.updates), len(plan.creates), len(plan.removals),
    )
    return await list_class_sections(db, tenant_id, class_id, AccessScope.all())


async def list_class_sections(
    db: AsyncSession,
    tenant_id: UUID,
    class_id: UUID,
    scope: AccessScope,
) -> List[SectionResponse]:
    return await list_sections(db, tenant_id, scope, class_id=class_id, active_only=False)


async def list_sections(
    db: AsyncSession,
    tenant_id: UUID,
    scope: AccessScope,
    class_id: Optional[UUID] = None,
    active_only: bool = True,
) -> List[SectionResponse]:
    """Sections visible in scope, sorted by name, each with its live active-student count."""
    if scope.is_empty:
        return []
    index = await StructureIndex.load(db, tenant_id)
    if class_id is not None and class_id not in index.classes:
        raise NotFoundError("Class not found", class_id=str(class_id))

    visible: List[Section] = []
    classes = [index.classes[class_id]] if class_id is not None else list(index.classes.values())
    for school_class in classes:
        visible.extend(scope.visible_sections(school_class, index.sections_of(school_class.id)))
    if active_only:
        visible = [s for s in visible if s.is_active]
    if not visible:
        return []

    refs = await load_student_refs(db, tenant_id, student_scope_clause(scope))
    _, by_section = count_enrollments(refs, index)
    visible.sort(key=lambda s: (normalize_label(s.name), str(s.class_id)))
    return [section_to_response(s, by_section.get(s.id, 0)) for s in visible]
