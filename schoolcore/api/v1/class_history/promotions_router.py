from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from schoolcore.auth.rbac import require_admin
from schoolcore.auth.schemas import CurrentUser
from schoolcore.core.enums import ClassActionType
from schoolcore.db.session import get_db

from .schemas import PromotionReport
from . import service

router = APIRouter(prefix="/api/v1/promotions", tags=["promotions"])


@router.get("/report", response_model=PromotionReport)
async def promotion_report(
    academic_year: Optional[str] = Query(None, description="e.g. 2024-2025"),
    action_type: Optional[ClassActionType] = Query(None),
    date_from: Optional[date] = Query(None, description="Created on or after (inclusive)"),
    date_to: Optional[date] = Query(None, description="Created on or before (inclusive)"),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
) -> PromotionReport:
    if date_from and date_to and date_from > date_to:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "validation_error", "message": "date_from must not be after date_to"},
        )
    return await service.promotion_report(
        db,
        current_user.tenant_id,
        academic_year=academic_year,
        action_type=action_type,
        date_from=date_from,
        date_to=date_to,
    )
