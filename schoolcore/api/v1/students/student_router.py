from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from schoolcore.api.v1.access_scope.service import ensure_student_in_scope, scope_for_user
from schoolcore.api.v1.class_history import service as history_service
from schoolcore.api.v1.class_history.schemas import ClassHistoryResponse
from schoolcore.auth.dependencies import get_current_user
from schoolcore.auth.rbac import require_admin
from schoolcore.auth.schemas import CurrentUser
from schoolcore.core.enums import ClassActionType
from schoolcore.core.exceptions import ServiceError
from schoolcore.db.session import get_db

from .schemas import (
    BulkClassActionRequest,
    BulkClassActionResult,
    ClassActionRequest,
    ClassActionResult,
    StudentPaginatedResponse,
    StudentResponse,
)
from . import service

router = APIRouter(prefix="/api/v1/students", tags=["students"])


@router.get("", response_model=StudentPaginatedResponse)
async def list_students(
    class_name: Optional[str] = Query(None, description="Grade label, e.g. '5'"),
    section_name: Optional[str] = Query(None),
    academic_year: Optional[str] = Query(None),
    is_active: Optional[bool] = Query(None),
    search: Optional[str] = Query(None, description="Matches name or roll number"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> StudentPaginatedResponse:
    """Students the caller may see: admin all, teacher assigned classes, parent children, student self."""
    scope = await scope_for_user(db, current_user)
    return await service.list_students(
        db,
        current_user.tenant_id,
        scope,
        class_name=class_name,
        section_name=section_name,
        academic_year=academic_year,
        is_active=is_active,
        search=search,
        page=page,
        page_size=page_size,
    )


@router.post("/bulk-class-action", response_model=BulkClassActionResult)
async def bulk_class_action(
    payload: BulkClassActionRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
) -> BulkClassActionResult:
    """Promote/demote many students. Partial success: failed students are listed in `errors`."""
    try:
        return await service.apply_bulk_class_action(db, current_user.tenant_id, payload, current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.get("/{student_id}", response_model=StudentResponse)
async def get_student(
    student_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> StudentResponse:
    try:
        scope = await scope_for_user(db, current_user)
        return await service.get_student(db, current_user.tenant_id, scope, student_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.post("/{student_id}/promote", response_model=ClassActionResult)
async def promote_student(
    student_id: UUID,
    payload: ClassActionRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
) -> ClassActionResult:
    try:
        return await service.apply_class_action(
            db, current_user.tenant_id, student_id, ClassActionType.PROMOTED, payload, current_user.id
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.post("/{student_id}/demote", response_model=ClassActionResult)
async def demote_student(
    student_id: UUID,
    payload: ClassActionRequest,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(require_admin),
) -> ClassActionResult:
    try:
        return await service.apply_class_action(
            db, current_user.tenant_id, student_id, ClassActionType.DEMOTED, payload, current_user.id
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.get("/{student_id}/class-history", response_model=List[ClassHistoryResponse])
async def get_class_history(
    student_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[ClassHistoryResponse]:
    try:
        scope = await scope_for_user(db, current_user)
        await ensure_student_in_scope(db, current_user.tenant_id, scope, student_id)
        return await history_service.list_student_history(db, current_user.tenant_id, student_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
