from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from schoolcore.core.enums import ClassActionType


class StudentResponse(BaseModel):
    id: UUID
    tenant_id: UUID
    full_name: str
    email: str
    is_active: bool
    # stored enrollment (legacy labels + references)
    class_name: Optional[str] = None
    section_name: Optional[str] = None
    class_id: Optional[UUID] = None
    section_id: Optional[UUID] = None
    academic_year: Optional[str] = None
    roll_number: Optional[str] = None
    admission_class: Optional[str] = None
    admission_section: Optional[str] = None
    # resolved enrollment
    effective_class_id: Optional[UUID] = None
    effective_grade: Optional[str] = None
    effective_section_id: Optional[UUID] = None
    effective_section_name: Optional[str] = None
    is_enrolled: bool = False
    created_at: datetime

    class Config:
        from_attributes = True


class StudentPaginatedResponse(BaseModel):
    """Paginated response for GET /api/v1/students."""

    items: List[StudentResponse] = Field(..., description="List of students")
    total: int = Field(..., ge=0, description="Total count matching the query")
    page: int = Field(..., ge=1, description="Current page")
    page_size: int = Field(..., ge=1, le=100, description="Page size")
    total_pages: int = Field(..., ge=0, description="Total pages")


class ClassActionRequest(BaseModel):
    """Move a student to another class/section. to_class is a grade label, e.g. '9'."""

    to_class: str = Field(..., max_length=50)
    to_section: Optional[str] = Field(None, max_length=50)
    academic_year: str = Field(..., max_length=20, description="e.g. 2024-2025")
    remarks: str = ""
    force_override: bool = Field(False, description="Record again even if this action exists for the year")
    reset_roll_number: bool = Field(False, description="Clear roll number (new class assigns a new one)")


class BulkClassActionRequest(ClassActionRequest):
    student_ids: List[UUID] = Field(..., min_length=1)
    action_type: ClassActionType = ClassActionType.PROMOTED


class ClassActionResult(BaseModel):
    student: StudentResponse
    history_id: UUID


class BulkClassActionError(BaseModel):
    student_id: UUID
    student_name: Optional[str] = None
    code: str
    message: str


class BulkClassActionResult(BaseModel):
    success_count: int
    errors: List[BulkClassActionError] = Field(default_factory=list)
