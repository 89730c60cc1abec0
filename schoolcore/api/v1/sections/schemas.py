from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class SectionSyncItem(BaseModel):
    """
    One entry of the desired section list for a class.
    id: existing section to keep/rename (identity is preserved). Without id the entry is matched by name, else created.
    """
    id: Optional[UUID] = Field(None, description="Existing section reference; keeps the section across renames")
    name: str = Field(..., max_length=50)
    capacity: Optional[int] = Field(None, description="Max students; default from settings for new sections")
    section_teacher_id: Optional[UUID] = None
    description: Optional[str] = None


class SectionResponse(BaseModel):
    id: UUID
    tenant_id: UUID
    class_id: UUID
    name: str
    capacity: int = Field(..., description="Max students per section")
    current_strength: int
    student_count: int = Field(0, description="Live count of active students in this section")
    section_teacher_id: Optional[UUID] = None
    description: Optional[str] = None
    is_active: bool
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
