from datetime import datetime
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class ClassHistoryResponse(BaseModel):
    id: UUID
    student_id: UUID
    student_name: Optional[str] = None
    from_class: Optional[str] = None
    from_section: Optional[str] = None
    to_class: str
    to_section: Optional[str] = None
    academic_year: str
    action_type: str
    performed_by: Optional[UUID] = None
    remarks: str = ""
    created_at: datetime

    class Config:
        from_attributes = True


class PromotionReport(BaseModel):
    """Ledger rows matching the filters, newest first, with per-action totals."""

    items: List[ClassHistoryResponse] = Field(default_factory=list)
    total: int = 0
    totals_by_action: Dict[str, int] = Field(default_factory=dict)
