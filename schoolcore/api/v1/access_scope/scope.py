"""
AccessScope: which classes, sections and students one requester may see for one request.

Teacher access is recorded three ways, and all three are honoured as a logical OR:
- legacy users.assigned_classes (grade labels)
- classes that name the teacher (class_teacher_id / subject_teachers) and sections that name
  them as section teacher
- active TeacherAssignment rows (whole class, or one section)

build_teacher_scope() is a pure union of the three. An empty union is an explicitly empty scope:
an unassigned teacher sees nothing.
"""

from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, List, NamedTuple, Optional
from uuid import UUID

from schoolcore.api.v1.enrollment.resolver import normalize_label
from schoolcore.core.enums import ScopeKind
from schoolcore.core.models import SchoolClass, Section


class LegacyGradeMatch(NamedTuple):
    grade: str


class SectionGrant(NamedTuple):
    section_id: UUID
    class_id: UUID
    grade: str
    section_name: str


class EmbeddedClassMatch(NamedTuple):
    """Class naming the teacher. section is set when only one of its sections names them (section teacher)."""

    class_id: UUID
    grade: str
    section: Optional[SectionGrant] = None


class AssignmentMatch(NamedTuple):
    class_id: UUID
    grade: str
    section: Optional[SectionGrant] = None


@dataclass(frozen=True)
class AccessScope:
    kind: ScopeKind
    # whole-class grants by reference, and their grade labels for students with unresolved references
    class_ids: FrozenSet[UUID] = field(default_factory=frozenset)
    class_grades: FrozenSet[str] = field(default_factory=frozenset)
    # whole-grade grants from legacy labels
    grades: FrozenSet[str] = field(default_factory=frozenset)
    sections: FrozenSet[SectionGrant] = field(default_factory=frozenset)
    student_ids: FrozenSet[UUID] = field(default_factory=frozenset)

    @classmethod
    def all(cls) -> "AccessScope":
        return cls(kind=ScopeKind.ALL)

    @classmethod
    def empty(cls) -> "AccessScope":
        return cls(kind=ScopeKind.EXPLICIT)

    @classmethod
    def for_students(cls, student_ids: Iterable[UUID]) -> "AccessScope":
        return cls(kind=ScopeKind.EXPLICIT, student_ids=frozenset(student_ids))

    @property
    def is_all(self) -> bool:
        return self.kind is ScopeKind.ALL

    @property
    def is_empty(self) -> bool:
        return not self.is_all and not (
            self.class_ids or self.grades or self.sections or self.student_ids
        )

    @property
    def section_ids(self) -> FrozenSet[UUID]:
        return frozenset(g.section_id for g in self.sections)

    def grants_whole_class(self, school_class: SchoolClass) -> bool:
        if self.is_all:
            return True
        return school_class.id in self.class_ids or normalize_label(school_class.grade) in self.grades

    def allows_class(self, school_class: SchoolClass) -> bool:
        if self.grants_whole_class(school_class):
            return True
        return any(g.class_id == school_class.id for g in self.sections)

    def visible_sections(self, school_class: SchoolClass, sections: Iterable[Section]) -> List[Section]:
        if self.grants_whole_class(school_class):
            return list(sections)
        allowed = self.section_ids
        return [s for s in sections if s.id in allowed]

    def as_dict(self) -> dict:
        """{kind, classIds?, sectionIds?, studentIds?} shape for callers outside the engine."""
        if self.is_all:
            return {"kind": self.kind.value}
        return {
            "kind": self.kind.value,
            "class_ids": sorted(str(c) for c in self.class_ids),
            "grades": sorted(self.grades),
            "section_ids": sorted(str(s) for s in self.section_ids),
            "student_ids": sorted(str(s) for s in self.student_ids),
        }


def build_teacher_scope(
    legacy: Iterable[LegacyGradeMatch],
    embedded: Iterable[EmbeddedClassMatch],
    assignments: Iterable[AssignmentMatch],
) -> AccessScope:
    grades = {normalize_label(m.grade) for m in legacy if normalize_label(m.grade)}
    class_ids = set()
    class_grades = set()
    sections = set()

    for m in list(embedded) + list(assignments):
        if m.section is None:
            class_ids.add(m.class_id)
            class_grades.add(normalize_label(m.grade))
        else:
            sections.add(m.section)

    return AccessScope(
        kind=ScopeKind.EXPLICIT,
        class_ids=frozenset(class_ids),
        class_grades=frozenset(g for g in class_grades if g),
        grades=frozenset(grades),
        sections=frozenset(sections),
    )
