from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from schoolcore.api.v1.sections.schemas import SectionResponse, SectionSyncItem


class SubjectTeacher(BaseModel):
    subject: str = Field(..., max_length=100)
    teacher_id: UUID


class ClassCreate(BaseModel):
    name: str = Field(..., max_length=100, description="Display name, e.g. 'Grade 5'")
    grade: str = Field(..., max_length=50, description="Grade label students carry in class_name, e.g. '5'")
    academic_year: str = Field(..., max_length=20, description="e.g. 2024-2025")
    academic_session_id: Optional[UUID] = None
    class_teacher_id: Optional[UUID] = None
    subject_teachers: List[SubjectTeacher] = Field(default_factory=list)
    description: Optional[str] = None
    sections: Optional[List[SectionSyncItem]] = Field(
        None, description="Sections to create; omitted = default sections from settings"
    )


class ClassUpdate(BaseModel):
    name: Optional[str] = Field(None, max_length=100)
    grade: Optional[str] = Field(None, max_length=50)
    academic_year: Optional[str] = Field(None, max_length=20)
    academic_session_id: Optional[UUID] = None
    class_teacher_id: Optional[UUID] = None
    subject_teachers: Optional[List[SubjectTeacher]] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None
    sections: Optional[List[SectionSyncItem]] = Field(
        None, description="Desired section list; when present the class's sections are synced to it"
    )


class ClassResponse(BaseModel):
    id: UUID
    tenant_id: UUID
    name: str
    grade: str
    academic_year: str
    academic_session_id: Optional[UUID] = None
    class_teacher_id: Optional[UUID] = None
    subject_teachers: List[SubjectTeacher] = Field(default_factory=list)
    description: Optional[str] = None
    is_active: bool
    student_count: int = Field(0, description="Live count of active students in the class (not a sum of sections)")
    sections: List[SectionResponse] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
