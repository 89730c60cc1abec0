"""Load a requester's access sources and turn the resulting AccessScope into query filters."""

import logging
from typing import List, Optional
from uuid import UUID

from sqlalchemy import and_, false, or_, select, true
from sqlalchemy.ext.asyncio import AsyncSession

from schoolcore.api.v1.enrollment.resolver import (
    EnrolledClass,
    in_grade_clause,
    lower_label,
    section_match_clause,
    student_query,
)
from schoolcore.auth.models import User
from schoolcore.auth.schemas import CurrentUser
from schoolcore.core.enums import UserRole
from schoolcore.core.exceptions import AuthorizationDeniedError, NotFoundError
from schoolcore.core.models import AcademicSession, SchoolClass, Section, TeacherAssignment

from .scope import (
    AccessScope,
    AssignmentMatch,
    EmbeddedClassMatch,
    LegacyGradeMatch,
    SectionGrant,
    build_teacher_scope,
)

logger = logging.getLogger(__name__)


async def get_active_session_id(db: AsyncSession, tenant_id: UUID) -> Optional[UUID]:
    """Active academic session for tenant, or None."""
    result = await db.execute(
        select(AcademicSession.id).where(
            AcademicSession.tenant_id == tenant_id,
            AcademicSession.is_active.is_(True),
        )
    )
    return result.scalars().first()


def legacy_matches(teacher: User) -> List[LegacyGradeMatch]:
    return [
        LegacyGradeMatch(str(label).strip())
        for label in (teacher.assigned_classes or [])
        if label is not None and str(label).strip()
    ]


def _class_names_teacher(school_class: SchoolClass, teacher_id: UUID) -> bool:
    if school_class.class_teacher_id == teacher_id:
        return True
    tid = str(teacher_id)
    return any(
        isinstance(pair, dict) and str(pair.get("teacher_id")) == tid
        for pair in (school_class.subject_teachers or [])
    )


async def embedded_matches(db: AsyncSession, tenant_id: UUID, teacher_id: UUID) -> List[EmbeddedClassMatch]:
    """Classes naming the teacher (class teacher or a subject pair), and sections naming them as section teacher."""
    result = await db.execute(select(SchoolClass).where(SchoolClass.tenant_id == tenant_id))
    matches = [
        EmbeddedClassMatch(c.id, c.grade)
        for c in result.scalars().all()
        if _class_names_teacher(c, teacher_id)
    ]
    sec_rows = await db.execute(
        select(Section, SchoolClass.grade)
        .join(SchoolClass, SchoolClass.id == Section.class_id)
        .where(
            Section.tenant_id == tenant_id,
            SchoolClass.tenant_id == tenant_id,
            Section.section_teacher_id == teacher_id,
        )
    )
    for section, grade in sec_rows.all():
        grant = SectionGrant(section.id, section.class_id, grade, section.name)
        matches.append(EmbeddedClassMatch(section.class_id, grade, grant))
    return matches


async def assignment_matches(db: AsyncSession, tenant_id: UUID, teacher_id: UUID) -> List[AssignmentMatch]:
    """Active TeacherAssignment rows for the tenant's active session (rows without a session always count)."""
    stmt = (
        select(TeacherAssignment, SchoolClass.grade, Section.name)
        .join(SchoolClass, SchoolClass.id == TeacherAssignment.class_id)
        .outerjoin(Section, Section.id == TeacherAssignment.section_id)
        .where(
            TeacherAssignment.tenant_id == tenant_id,
            SchoolClass.tenant_id == tenant_id,
            TeacherAssignment.teacher_id == teacher_id,
            TeacherAssignment.is_active.is_(True),
        )
    )
    session_id = await get_active_session_id(db, tenant_id)
    if session_id is not None:
        stmt = stmt.where(
            or_(
                TeacherAssignment.academic_session_id == session_id,
                TeacherAssignment.academic_session_id.is_(None),
            )
        )
    result = await db.execute(stmt)
    matches: List[AssignmentMatch] = []
    for assignment, grade, section_name in result.all():
        if assignment.section_id is None:
            matches.append(AssignmentMatch(assignment.class_id, grade))
        elif section_name is not None:
            grant = SectionGrant(assignment.section_id, assignment.class_id, grade, section_name)
            matches.append(AssignmentMatch(assignment.class_id, grade, grant))
        # section-specific row whose section no longer exists grants nothing
    return matches


def _parse_children(parent: User) -> List[UUID]:
    ids = []
    for raw in parent.children or []:
        try:
            ids.append(raw if isinstance(raw, UUID) else UUID(str(raw)))
        except ValueError:
            logger.warning("Ignoring malformed child id %r on parent %s", raw, parent.id)
    return ids


async def resolve_scope(
    db: AsyncSession,
    tenant_id: UUID,
    role: str,
    requester_id: UUID,
) -> AccessScope:
    """Compute the requester's scope for this request. Unknown roles and unknown users get an empty scope."""
    try:
        role = UserRole(role)
    except ValueError:
        return AccessScope.empty()

    if role is UserRole.ADMIN:
        return AccessScope.all()
    if role is UserRole.STUDENT:
        return AccessScope.for_students([requester_id])

    result = await db.execute(
        select(User).where(User.id == requester_id, User.tenant_id == tenant_id)
    )
    requester = result.scalar_one_or_none()
    if requester is None or requester.role != role.value:
        return AccessScope.empty()

    if role is UserRole.PARENT:
        return AccessScope.for_students(_parse_children(requester))

    scope = build_teacher_scope(
        legacy_matches(requester),
        await embedded_matches(db, tenant_id, requester_id),
        await assignment_matches(db, tenant_id, requester_id),
    )
    if scope.is_empty:
        logger.warning("Teacher %s in tenant %s has no class assignments; scope is empty", requester_id, tenant_id)
    return scope


async def scope_for_user(db: AsyncSession, current_user: CurrentUser) -> AccessScope:
    return await resolve_scope(db, current_user.tenant_id, current_user.role, current_user.id)


def student_scope_clause(scope: AccessScope):
    """WHERE clause limiting a student_query() to the scope. Empty scope matches nothing."""
    if scope.is_all:
        return true()
    clauses = []
    if scope.student_ids:
        clauses.append(User.id.in_(scope.student_ids))
    if scope.class_ids:
        clauses.append(User.class_id.in_(scope.class_ids))
    if scope.class_grades:
        clauses.append(and_(EnrolledClass.id.is_(None), lower_label(User.class_name).in_(scope.class_grades)))
    if scope.grades:
        clauses.append(in_grade_clause(scope.grades))
    for grant in scope.sections:
        clauses.append(section_match_clause(grant.section_id, grant.section_name, grant.class_id, grant.grade))
    return or_(*clauses) if clauses else false()


async def ensure_student_in_scope(
    db: AsyncSession,
    tenant_id: UUID,
    scope: AccessScope,
    student_id: UUID,
) -> User:
    """Load a student of the tenant, refusing ids outside the scope (authorization by filter)."""
    result = await db.execute(student_query(tenant_id).where(User.id == student_id))
    student = result.scalar_one_or_none()
    if student is None:
        raise NotFoundError("Student not found", student_id=str(student_id))
    if scope.is_all:
        return student
    allowed = await db.execute(
        student_query(tenant_id, User.id).where(User.id == student_id, student_scope_clause(scope))
    )
    if allowed.scalar_one_or_none() is None:
        logger.warning("Student %s is outside the requester's scope in tenant %s", student_id, tenant_id)
        raise AuthorizationDeniedError("You can only access students in your scope", student_id=str(student_id))
    return student


def ensure_class_in_scope(scope: AccessScope, school_class: SchoolClass) -> None:
    if not scope.allows_class(school_class):
        raise AuthorizationDeniedError("You can only access your assigned classes", class_id=str(school_class.id))
