"""
Student API Router
Enrollment, lesson progress and the study view
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from coursehub.auth.dependencies import UserContext, get_current_user
from coursehub.core.errors import ApiError, internal
from coursehub.db.database import get_db
from coursehub.db.models import EnrollmentStatus
from coursehub.students import enrollment_service, progress_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/student", tags=["Student"])


class EnrollRequest(BaseModel):
    course_id: str
    coupon_code: Optional[str] = None


class LessonProgressUpdate(BaseModel):
    lesson_id: str
    watch_time: int = Field(..., ge=0)
    last_position: int = Field(..., ge=0)
    completed: Optional[bool] = None


class LessonCompleteRequest(BaseModel):
    lesson_id: str
    watch_time: int = Field(0, ge=0)


@router.post("/enroll", status_code=201)
async def enroll_course(
    data: EnrollRequest,
    user: UserContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Enroll in a free course, or a paid one fully covered by a coupon.
    Anything left to pay is answered with 402 and goes through checkout.
    """
    try:
        return await enrollment_service.enroll_course(db, user.user_id, data.course_id, data.coupon_code)
    except ApiError:
        raise
    except Exception:
        logger.exception("Enrollment failed for user %s in course %s", user.user_id, data.course_id)
        raise internal("Failed to enroll in course")


@router.get("/courses")
async def get_enrolled_courses(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=50),
    status: Optional[EnrollmentStatus] = None,
    search: Optional[str] = None,
    user: UserContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await enrollment_service.get_enrolled_courses(db, user.user_id, page, limit, status, search)


@router.get("/courses/{course_id}/progress")
async def get_course_progress(
    course_id: str,
    user: UserContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await progress_service.get_course_progress(db, user.user_id, course_id)


@router.get("/lessons/{lesson_id}")
async def get_lesson_for_study(
    lesson_id: str,
    user: UserContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await progress_service.get_lesson_for_study(db, user.user_id, lesson_id)


@router.post("/progress")
async def update_lesson_progress(
    data: LessonProgressUpdate,
    user: UserContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await progress_service.update_lesson_progress(
            db, user.user_id, data.lesson_id, data.watch_time, data.last_position, data.completed
        )
    except ApiError:
        raise
    except Exception:
        logger.exception("Progress update failed for lesson %s", data.lesson_id)
        raise internal("Failed to update lesson progress")


@router.post("/lessons/complete")
async def mark_lesson_complete(
    data: LessonCompleteRequest,
    user: UserContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await progress_service.mark_lesson_complete(db, user.user_id, data.lesson_id, data.watch_time)
    except ApiError:
        raise
    except Exception:
        logger.exception("Marking lesson %s complete failed", data.lesson_id)
        raise internal("Failed to mark lesson as complete")
