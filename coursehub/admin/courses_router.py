import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from coursehub.admin import course_service as service
from coursehub.admin.schemas import (
    CourseCreate,
    CourseUpdate,
    LessonAssetCreate,
    LessonCreate,
    LessonOrderUpdate,
    LessonUpdate,
)
from coursehub.auth.dependencies import AdminContext, get_current_admin, get_current_super_admin
from coursehub.core.errors import ApiError, internal
from coursehub.db.database import get_db

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/courses", tags=["Admin Courses"])


# ==================== COURSES ====================

@router.post("", status_code=201)
async def create_course(
    data: CourseCreate,
    admin: AdminContext = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await service.create_course(db, admin, data.dict())
    except ApiError:
        raise
    except Exception:
        logger.exception("Failed to create course")
        raise internal("Failed to create course")


@router.get("")
async def get_courses(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: Optional[str] = None,
    category_id: Optional[str] = None,
    published: Optional[bool] = None,
    featured: Optional[bool] = None,
    creator_id: Optional[str] = None,
    admin: AdminContext = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    return await service.get_courses(db, page, limit, search, category_id, published, featured, creator_id)


@router.get("/{course_id}")
async def get_course(
    course_id: str,
    admin: AdminContext = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    """Course with creator, category, lessons and their assets, linked coupons and counts"""
    return await service.get_course(db, course_id)


@router.patch("/{course_id}")
async def update_course(
    course_id: str,
    data: CourseUpdate,
    admin: AdminContext = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await service.update_course(db, admin, course_id, data.dict(exclude_none=True))
    except ApiError:
        raise
    except Exception:
        logger.exception("Failed to update course %s", course_id)
        raise internal("Failed to update course")


@router.delete("/{course_id}")
async def delete_course(
    course_id: str,
    admin: AdminContext = Depends(get_current_super_admin),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await service.delete_course(db, admin, course_id)
    except ApiError:
        raise
    except Exception:
        logger.exception("Failed to delete course %s", course_id)
        raise internal("Failed to delete course")


# ==================== LESSONS ====================

@router.post("/{course_id}/lessons", status_code=201)
async def create_lesson(
    course_id: str,
    data: LessonCreate,
    admin: AdminContext = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await service.create_lesson(db, admin, course_id, data.dict())
    except ApiError:
        raise
    except Exception:
        logger.exception("Failed to create lesson in %s", course_id)
        raise internal("Failed to create lesson")


@router.put("/{course_id}/lessons/order")
async def bulk_update_lesson_order(
    course_id: str,
    data: LessonOrderUpdate,
    admin: AdminContext = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await service.bulk_update_lesson_order(db, admin, course_id, [item.dict() for item in data.lessons])
    except ApiError:
        raise
    except Exception:
        logger.exception("Failed to reorder lessons in %s", course_id)
        raise internal("Failed to update lesson order")


@router.patch("/lessons/{lesson_id}")
async def update_lesson(
    lesson_id: str,
    data: LessonUpdate,
    admin: AdminContext = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await service.update_lesson(db, admin, lesson_id, data.dict(exclude_none=True))
    except ApiError:
        raise
    except Exception:
        logger.exception("Failed to update lesson %s", lesson_id)
        raise internal("Failed to update lesson")


@router.delete("/lessons/{lesson_id}")
async def delete_lesson(
    lesson_id: str,
    admin: AdminContext = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await service.delete_lesson(db, admin, lesson_id)
    except ApiError:
        raise
    except Exception:
        logger.exception("Failed to delete lesson %s", lesson_id)
        raise internal("Failed to delete lesson")


@router.post("/lessons/{lesson_id}/assets", status_code=201)
async def add_lesson_asset(
    lesson_id: str,
    data: LessonAssetCreate,
    admin: AdminContext = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await service.add_lesson_asset(db, lesson_id, data.dict())
    except ApiError:
        raise
    except Exception:
        logger.exception("Failed to add asset to lesson %s", lesson_id)
        raise internal("Failed to add lesson asset")


@router.delete("/assets/{asset_id}")
async def remove_lesson_asset(
    asset_id: str,
    admin: AdminContext = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await service.remove_lesson_asset(db, asset_id)
    except ApiError:
        raise
    except Exception:
        logger.exception("Failed to remove lesson asset %s", asset_id)
        raise internal("Failed to remove lesson asset")
