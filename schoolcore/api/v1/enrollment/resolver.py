"""
Resolve which class/section a student is in.

A student row carries two descriptions of its enrollment:
- references: users.class_id / users.section_id (authoritative when they resolve)
- legacy labels: users.class_name (matched against SchoolClass.grade) / users.section_name

Labels are matched case-insensitively and only when the reference is absent or does not resolve
inside the tenant. A student whose class resolves to nothing is unenrolled, not an error.
The pure functions below are the single source of that rule; in_class_clause / in_section_clause
are the same rule written as SQL for list and count queries.
"""

from collections import Counter
from typing import Dict, Iterable, List, NamedTuple, Optional, Tuple
from uuid import UUID

from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from schoolcore.auth.models import User
from schoolcore.core.enums import UserRole
from schoolcore.core.models import SchoolClass, Section


def normalize_label(value: Optional[str]) -> str:
    return (value or "").strip().lower()


class EnrollmentRef(NamedTuple):
    class_id: Optional[UUID]
    class_label: Optional[str]
    section_id: Optional[UUID]
    section_label: Optional[str]
    academic_year: Optional[str] = None

    @classmethod
    def from_student(cls, student) -> "EnrollmentRef":
        return cls(
            class_id=student.class_id,
            class_label=student.class_name,
            section_id=student.section_id,
            section_label=student.section_name,
            academic_year=student.academic_year,
        )


class ResolvedEnrollment(NamedTuple):
    school_class: Optional[SchoolClass]
    section: Optional[Section]

    @property
    def is_enrolled(self) -> bool:
        return self.school_class is not None


class StructureIndex:
    """A tenant's classes and sections, indexed for the pure lookups."""

    def __init__(self, classes: Iterable[SchoolClass], sections: Iterable[Section]) -> None:
        self.classes: Dict[UUID, SchoolClass] = {c.id: c for c in classes}
        self.sections: Dict[UUID, Section] = {s.id: s for s in sections}
        self._by_grade: Dict[str, List[SchoolClass]] = {}
        for c in self.classes.values():
            self._by_grade.setdefault(normalize_label(c.grade), []).append(c)
        self._by_class: Dict[UUID, List[Section]] = {}
        for s in self.sections.values():
            self._by_class.setdefault(s.class_id, []).append(s)

    @classmethod
    async def load(cls, db: AsyncSession, tenant_id: UUID) -> "StructureIndex":
        classes = await db.execute(select(SchoolClass).where(SchoolClass.tenant_id == tenant_id))
        sections = await db.execute(select(Section).where(Section.tenant_id == tenant_id))
        return cls(classes.scalars().all(), sections.scalars().all())

    def classes_for_grade(self, label: Optional[str]) -> List[SchoolClass]:
        return list(self._by_grade.get(normalize_label(label), []))

    def sections_of(self, class_id: UUID) -> List[Section]:
        return list(self._by_class.get(class_id, []))


def resolve_class(ref: EnrollmentRef, index: StructureIndex) -> Optional[SchoolClass]:
    if ref.class_id is not None:
        found = index.classes.get(ref.class_id)
        if found is not None:
            return found
    candidates = index.classes_for_grade(ref.class_label)
    if not normalize_label(ref.class_label) or not candidates:
        return None
    # Same grade can exist once per academic year: prefer the student's year, then active, then latest.
    if ref.academic_year:
        for c in candidates:
            if c.academic_year == ref.academic_year:
                return c
    return max(candidates, key=lambda c: (bool(c.is_active), c.academic_year or ""))


def resolve_section(
    ref: EnrollmentRef,
    school_class: Optional[SchoolClass],
    index: StructureIndex,
) -> Optional[Section]:
    if school_class is None:
        return None
    if ref.section_id is not None:
        found = index.sections.get(ref.section_id)
        if found is not None and found.class_id == school_class.id:
            return found
    label = normalize_label(ref.section_label)
    if not label:
        return None
    for s in index.sections_of(school_class.id):
        if normalize_label(s.name) == label:
            return s
    return None


def resolve_enrollment(ref: EnrollmentRef, index: StructureIndex) -> ResolvedEnrollment:
    school_class = resolve_class(ref, index)
    return ResolvedEnrollment(school_class, resolve_section(ref, school_class, index))


def matches_class(ref: EnrollmentRef, school_class: SchoolClass, index: StructureIndex) -> bool:
    """True if the ref belongs to this class: by reference, or by grade label when the reference doesn't resolve."""
    if ref.class_id is not None and ref.class_id in index.classes:
        return ref.class_id == school_class.id
    label = normalize_label(ref.class_label)
    return bool(label) and label == normalize_label(school_class.grade)


def matches_section(
    ref: EnrollmentRef,
    section: Section,
    school_class: SchoolClass,
    index: StructureIndex,
) -> bool:
    if ref.section_id is not None and ref.section_id in index.sections:
        return ref.section_id == section.id
    if not matches_class(ref, school_class, index):
        return False
    label = normalize_label(ref.section_label)
    return bool(label) and label == normalize_label(section.name)


def count_enrollments(
    refs: Iterable[EnrollmentRef],
    index: StructureIndex,
) -> Tuple[Dict[UUID, int], Dict[UUID, int]]:
    """
    Tally refs per class and per section with the matches_class / matches_section rule.
    Class totals are counted on their own, not summed from sections: a student may hold a class
    and no section.
    """
    by_class: Counter = Counter()
    by_section: Counter = Counter()
    for ref in refs:
        if ref.class_id is not None and ref.class_id in index.classes:
            classes = [index.classes[ref.class_id]]
        elif normalize_label(ref.class_label):
            classes = index.classes_for_grade(ref.class_label)
        else:
            classes = []
        for c in classes:
            by_class[c.id] += 1

        if ref.section_id is not None and ref.section_id in index.sections:
            by_section[ref.section_id] += 1
            continue
        label = normalize_label(ref.section_label)
        if not label:
            continue
        for c in classes:
            for s in index.sections_of(c.id):
                if normalize_label(s.name) == label:
                    by_section[s.id] += 1
    return dict(by_class), dict(by_section)


async def resolve_student_enrollment(db: AsyncSession, tenant_id: UUID, student: User) -> ResolvedEnrollment:
    index = await StructureIndex.load(db, tenant_id)
    return resolve_enrollment(EnrollmentRef.from_student(student), index)


# ----- SQL rendition (student list/count queries) -----

EnrolledClass = aliased(SchoolClass, name="enrolled_class")
EnrolledSection = aliased(Section, name="enrolled_section")


def student_query(tenant_id: UUID, *columns):
    """select(User) (or the given columns) joined to the student's referenced class/section, if they resolve."""
    stmt = select(*columns) if columns else select(User)
    return (
        stmt.select_from(User)
        .outerjoin(
            EnrolledClass,
            and_(EnrolledClass.id == User.class_id, EnrolledClass.tenant_id == User.tenant_id),
        )
        .outerjoin(
            EnrolledSection,
            and_(EnrolledSection.id == User.section_id, EnrolledSection.tenant_id == User.tenant_id),
        )
        .where(User.tenant_id == tenant_id, User.role == UserRole.STUDENT.value)
    )


def lower_label(column):
    return func.lower(func.trim(column))


def class_match_clause(class_id: UUID, grade: str):
    return or_(
        User.class_id == class_id,
        and_(EnrolledClass.id.is_(None), lower_label(User.class_name) == normalize_label(grade)),
    )


def section_match_clause(section_id: UUID, section_name: str, class_id: UUID, grade: str):
    return or_(
        User.section_id == section_id,
        and_(
            EnrolledSection.id.is_(None),
            class_match_clause(class_id, grade),
            lower_label(User.section_name) == normalize_label(section_name),
        ),
    )


def in_class_clause(school_class: SchoolClass):
    return class_match_clause(school_class.id, school_class.grade)


def in_section_clause(section: Section, school_class: SchoolClass):
    return section_match_clause(section.id, section.name, school_class.id, school_class.grade)


def in_grade_clause(labels: Iterable[str]):
    """Student's effective grade (referenced class's grade, else its class_name label) is one of labels."""
    return lower_label(func.coalesce(EnrolledClass.grade, User.class_name)).in_(
        [normalize_label(v) for v in labels]
    )


async def load_student_refs(db: AsyncSession, tenant_id: UUID, *criteria, active_only: bool = True) -> List[EnrollmentRef]:
    """EnrollmentRefs of the tenant's students, optionally narrowed by extra WHERE criteria."""
    stmt = student_query(
        tenant_id,
        User.class_id,
        User.class_name,
        User.section_id,
        User.section_name,
        User.academic_year,
    )
    if active_only:
        stmt = stmt.where(User.is_active.is_(True))
    if criteria:
        stmt = stmt.where(*criteria)
    result = await db.execute(stmt)
    return [EnrollmentRef(*row) for row in result.all()]
