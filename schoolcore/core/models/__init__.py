from schoolcore.core.models.academic_session import AcademicSession
from schoolcore.core.models.class_history import StudentClassHistory
from schoolcore.core.models.class_model import SchoolClass
from schoolcore.core.models.section_model import Section, normalize_section_name
from schoolcore.core.models.teacher_assignment import TeacherAssignment
from schoolcore.core.models.tenant import Tenant

__all__ = [
    "AcademicSession",
    "SchoolClass",
    "Section",
    "StudentClassHistory",
    "TeacherAssignment",
    "Tenant",
    "normalize_section_name",
]
