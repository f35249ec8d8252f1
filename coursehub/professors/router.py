"""
Professor API Router
Dashboard, course/lesson analytics and revenue for the signed-in professor
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from coursehub.auth.dependencies import UserContext, get_current_professor, verify_course_ownership
from coursehub.core.errors import ApiError, internal
from coursehub.db.database import get_db
from coursehub.professors import professor_service as service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/professor", tags=["Professor"])


@router.get("/dashboard")
async def get_dashboard_overview(
    professor: UserContext = Depends(get_current_professor),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await service.get_dashboard_overview(db, professor.user_id)
    except Exception:
        logger.exception("Failed to fetch dashboard overview for %s", professor.user_id)
        raise internal("Failed to fetch dashboard overview")


@router.get("/courses")
async def get_my_courses(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=50),
    search: Optional[str] = None,
    published: Optional[bool] = None,
    category_id: Optional[str] = None,
    professor: UserContext = Depends(get_current_professor),
    db: AsyncSession = Depends(get_db),
):
    return await service.get_my_courses(db, professor.user_id, page, limit, search, published, category_id)


@router.get("/courses/stats")
async def get_course_stats(
    professor: UserContext = Depends(get_current_professor),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await service.get_course_stats(db, professor.user_id)
    except Exception:
        logger.exception("Failed to fetch course statistics for %s", professor.user_id)
        raise internal("Failed to fetch course statistics")


@router.get("/courses/{course_id}/analytics")
async def get_course_analytics(
    course_id: str,
    professor: UserContext = Depends(get_current_professor),
    db: AsyncSession = Depends(get_db),
):
    course = await verify_course_ownership(db, course_id, professor)
    try:
        return await service.get_course_analytics(db, course)
    except ApiError:
        raise
    except Exception:
        logger.exception("Failed to fetch analytics for course %s", course_id)
        raise internal("Failed to fetch course analytics")


@router.get("/courses/{course_id}/students")
async def get_course_student_progress(
    course_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: Optional[str] = None,
    completion_filter: str = Query("all", pattern="^(all|completed|in_progress|not_started)$"),
    professor: UserContext = Depends(get_current_professor),
    db: AsyncSession = Depends(get_db),
):
    await verify_course_ownership(db, course_id, professor)
    return await service.get_course_student_progress(db, course_id, page, limit, search, completion_filter)


@router.get("/courses/{course_id}/lessons/analytics")
async def get_lesson_analytics(
    course_id: str,
    lesson_id: Optional[str] = None,
    professor: UserContext = Depends(get_current_professor),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await service.get_lesson_analytics(db, professor.user_id, course_id, lesson_id)
    except ApiError:
        raise
    except Exception:
        logger.exception("Failed to fetch lesson analytics for course %s", course_id)
        raise internal("Failed to fetch lesson analytics")


@router.get("/revenue")
async def get_revenue_analytics(
    time_range: str = Query("30d", pattern="^(7d|30d|90d|1y|all)$"),
    course_id: Optional[str] = None,
    professor: UserContext = Depends(get_current_professor),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await service.get_revenue_analytics(db, professor.user_id, time_range, course_id)
    except Exception:
        logger.exception("Failed to fetch revenue analytics for %s", professor.user_id)
        raise internal("Failed to fetch revenue analytics")
