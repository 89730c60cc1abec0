from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from schoolcore.api.v1.access_scope.service import scope_for_user
from schoolcore.api.v1.students.schemas import StudentResponse
from schoolcore.auth.rbac import require_admin, require_roles
from schoolcore.auth.schemas import CurrentUser
from schoolcore.core.enums import UserRole
from schoolcore.core.exceptions import ServiceError
from schoolcore.db.session import get_db

from .schemas import ClassCreate, ClassResponse, ClassUpdate
from . import service

router = APIRouter(prefix="/api/v1/classes", tags=["classes"])

require_staff = require_roles(UserRole.ADMIN, UserRole.TEACHER)


@router.get("", response_model=List[ClassResponse])
async def list_classes(
    academic_year: Optional[str] = Query(None, description="e.g. 2024-2025"),
    grade: Optional[str] = Query(None),
    active_only: bool = Query(True, description="Return only is_active=true by default"),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_staff),
) -> List[ClassResponse]:
    """Classes with sections and live student counts. Teachers see only classes they are assigned to."""
    scope = await scope_for_user(db, current_user)
    return await service.list_classes_with_counts(
        db,
        current_user.tenant_id,
        scope,
        academic_year=academic_year,
        grade=grade,
        active_only=active_only,
    )


@router.post("", response_model=ClassResponse, status_code=status.HTTP_201_CREATED)
async def create_class(
    payload: ClassCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
) -> ClassResponse:
    """Create a class. Without `sections`, the default sections from settings are created."""
    try:
        return await service.create_class(db, current_user.tenant_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.get("/{class_id}", response_model=ClassResponse)
async def get_class(
    class_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_staff),
) -> ClassResponse:
    try:
        scope = await scope_for_user(db, current_user)
        return await service.get_class(db, current_user.tenant_id, class_id, scope)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.put("/{class_id}", response_model=ClassResponse)
async def update_class(
    class_id: UUID,
    payload: ClassUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
) -> ClassResponse:
    """Update class fields; a `sections` list syncs the class's sections (rename/remove blocked while students hold them)."""
    try:
        return await service.update_class(db, current_user.tenant_id, class_id, payload)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.delete("/{class_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_class(
    class_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
) -> None:
    try:
        await service.delete_class(db, current_user.tenant_id, class_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.get("/{class_id}/students", response_model=List[StudentResponse])
async def list_class_students(
    class_id: UUID,
    section_id: Optional[UUID] = Query(None, description="Only students of this section"),
    active_only: bool = Query(True),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_staff),
) -> List[StudentResponse]:
    try:
        scope = await scope_for_user(db, current_user)
        return await service.list_class_students(
            db, current_user.tenant_id, scope, class_id, section_id=section_id, active_only=active_only
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
