import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from coursehub.admin import category_service as service
from coursehub.admin.schemas import CategoryCreate, CategoryUpdate
from coursehub.auth.dependencies import AdminContext, get_current_admin, get_current_super_admin
from coursehub.core.errors import ApiError, internal
from coursehub.db.database import get_db

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/categories", tags=["Admin Categories"])


@router.post("", status_code=201)
async def create_category(
    data: CategoryCreate,
    admin: AdminContext = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await service.create_category(db, admin, data.dict())
    except ApiError:
        raise
    except Exception:
        logger.exception("Failed to create category")
        raise internal("Failed to create category")


@router.get("")
async def get_categories(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: Optional[str] = None,
    admin: AdminContext = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    return await service.get_categories(db, page, limit, search)


@router.get("/selection")
async def get_categories_for_selection(
    admin: AdminContext = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    return await service.get_categories_for_selection(db)


@router.get("/stats")
async def get_category_stats(
    admin: AdminContext = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    return await service.get_category_stats(db)


@router.get("/{category_id}")
async def get_category(
    category_id: str,
    admin: AdminContext = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    return await service.get_category(db, category_id)


@router.patch("/{category_id}")
async def update_category(
    category_id: str,
    data: CategoryUpdate,
    admin: AdminContext = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await service.update_category(db, admin, category_id, data.dict(exclude_none=True))
    except ApiError:
        raise
    except Exception:
        logger.exception("Failed to update category %s", category_id)
        raise internal("Failed to update category")


@router.delete("/{category_id}")
async def delete_category(
    category_id: str,
    admin: AdminContext = Depends(get_current_super_admin),
    db: AsyncSession = Depends(get_db),
):
    """Super admins only; rejected while any course uses the category"""
    try:
        return await service.delete_category(db, admin, category_id)
    except ApiError:
        raise
    except Exception:
        logger.exception("Failed to delete category %s", category_id)
        raise internal("Failed to delete category")
