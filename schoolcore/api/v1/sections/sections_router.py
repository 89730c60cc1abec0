from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from schoolcore.api.v1.access_scope.service import scope_for_user
from schoolcore.auth.rbac import require_roles
from schoolcore.auth.schemas import CurrentUser
from schoolcore.core.enums import UserRole
from schoolcore.core.exceptions import ServiceError
from schoolcore.db.session import get_db

from .schemas import SectionResponse
from . import service

router = APIRouter(prefix="/api/v1/sections", tags=["sections"])


@router.get("", response_model=List[SectionResponse])
async def list_sections(
    class_id: Optional[UUID] = Query(None, description="Filter by class (sections under this class)"),
    active_only: bool = Query(True, description="Return only is_active=true by default"),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_roles(UserRole.ADMIN, UserRole.TEACHER)),
) -> List[SectionResponse]:
    """Sections the caller may see, with live student counts. Teachers see only their assigned classes/sections."""
    try:
        scope = await scope_for_user(db, current_user)
        return await service.list_sections(
            db, current_user.tenant_id, scope, class_id=class_id, active_only=active_only
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
