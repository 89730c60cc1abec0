from uuid import uuid4

from schoolcore.api.v1.enrollment.resolver import (
    EnrollmentRef,
    StructureIndex,
    count_enrollments,
    matches_class,
    matches_section,
    resolve_class,
    resolve_enrollment,
)
from schoolcore.core.models import SchoolClass, Section


TENANT_ID = uuid4()


def _class(grade: str, academic_year: str = "2024-2025", is_active: bool = True) -> SchoolClass:
    return SchoolClass(
        id=uuid4(),
        tenant_id=TENANT_ID,
        name=f"Grade {grade}",
        grade=grade,
        academic_year=academic_year,
        is_active=is_active,
    )


def _section(school_class: SchoolClass, name: str) -> Section:
    return Section(id=uuid4(), tenant_id=TENANT_ID, class_id=school_class.id, name=name, capacity=40)


def test_reference_wins_over_stale_label() -> None:
    grade_8 = _class("8")
    grade_9 = _class("9")
    index = StructureIndex([grade_8, grade_9], [])

    # Label still says 8, reference points at 9.
    ref = EnrollmentRef(grade_9.id, "8", None, None)

    resolved = resolve_enrollment(ref, index)
    assert resolved.school_class is grade_9
    assert resolved.school_class.grade == "9"
    assert matches_class(ref, grade_9, index)
    assert not matches_class(ref, grade_8, index)


def test_unresolvable_reference_falls_back_to_label() -> None:
    grade_5 = _class("5")
    index = StructureIndex([grade_5], [])

    ref = EnrollmentRef(uuid4(), " 5 ", None, None)

    assert resolve_class(ref, index) is grade_5
    assert matches_class(ref, grade_5, index)


def test_label_match_is_case_insensitive() -> None:
    nursery = _class("Nursery")
    section = _section(nursery, "ROSE")
    index = StructureIndex([nursery], [section])

    resolved = resolve_enrollment(EnrollmentRef(None, "nursery", None, "rose"), index)

    assert resolved.school_class is nursery
    assert resolved.section is section


def test_section_reference_of_another_class_is_ignored() -> None:
    grade_5 = _class("5")
    grade_6 = _class("6")
    a5 = _section(grade_5, "A")
    a6 = _section(grade_6, "A")
    index = StructureIndex([grade_5, grade_6], [a5, a6])

    # Section reference points into grade 6, class reference into grade 5: section is matched by name in 5.
    resolved = resolve_enrollment(EnrollmentRef(grade_5.id, None, a6.id, "A"), index)

    assert resolved.school_class is grade_5
    assert resolved.section is a5


def test_no_class_means_unenrolled() -> None:
    index = StructureIndex([_class("5")], [])

    resolved = resolve_enrollment(EnrollmentRef(None, "12", None, "A"), index)

    assert resolved.school_class is None
    assert resolved.section is None
    assert not resolved.is_enrolled


def test_same_grade_prefers_students_academic_year() -> None:
    old = _class("5", academic_year="2023-2024")
    current = _class("5", academic_year="2024-2025")
    index = StructureIndex([current, old], [])

    assert resolve_class(EnrollmentRef(None, "5", None, None, "2023-2024"), index) is old
    assert resolve_class(EnrollmentRef(None, "5", None, None, "2024-2025"), index) is current
    # No year on the student: latest active class of that grade.
    assert resolve_class(EnrollmentRef(None, "5", None, None), index) is current


def test_section_name_match_requires_class_match() -> None:
    grade_5 = _class("5")
    section_b = _section(grade_5, "B")
    index = StructureIndex([grade_5], [section_b])

    assert matches_section(EnrollmentRef(None, "5", None, "b"), section_b, grade_5, index)
    assert not matches_section(EnrollmentRef(None, "6", None, "B"), section_b, grade_5, index)
    assert matches_section(EnrollmentRef(None, None, section_b.id, None), section_b, grade_5, index)


def test_counts_sections_and_class_separately() -> None:
    grade_5 = _class("5")
    section_a = _section(grade_5, "A")
    section_b = _section(grade_5, "B")
    index = StructureIndex([grade_5], [section_a, section_b])

    refs = [
        EnrollmentRef(grade_5.id, "5", section_a.id, "A"),
        EnrollmentRef(grade_5.id, "5", section_a.id, "A"),
        EnrollmentRef(None, "5", None, "b"),
        # class only, no section
        EnrollmentRef(None, "5", None, None),
    ]

    by_class, by_section = count_enrollments(refs, index)

    assert by_section[section_a.id] == 2
    assert by_section[section_b.id] == 1
    assert by_class[grade_5.id] == 4
