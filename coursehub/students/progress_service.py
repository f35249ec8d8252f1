"""
Lesson progress tracking and study views
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from coursehub.core.errors import bad_request, forbidden, not_found
from coursehub.core.serializers import serialize_row
from coursehub.db.models import (
    Category,
    Course,
    Lesson,
    LessonAsset,
    LessonProgress,
    StudentProgress,
    User,
)
from coursehub.students.enrollment_service import find_enrollment
from coursehub.students.progress import can_access_lesson, completion_rate, missing_prerequisites, neighbours
from coursehub.uploads.bunny_cdn import sign_url

logger = logging.getLogger(__name__)


async def _get_lesson(db: AsyncSession, lesson_id: str) -> Lesson:
    lesson = await db.get(Lesson, lesson_id)
    if not lesson:
        raise not_found("Lesson not found")
    return lesson


async def _course_lessons(db: AsyncSession, course_id: str) -> list:
    rows = await db.execute(select(Lesson).where(Lesson.course_id == course_id).order_by(Lesson.order))
    return list(rows.scalars().all())


async def _student_progress(db: AsyncSession, user_id: str, course_id: str) -> Optional[StudentProgress]:
    result = await db.execute(
        select(StudentProgress).where(StudentProgress.user_id == user_id, StudentProgress.course_id == course_id)
    )
    return result.scalar_one_or_none()


async def _lesson_progress_map(db: AsyncSession, user_id: str, lesson_ids: list) -> dict:
    if not lesson_ids:
        return {}
    rows = await db.execute(
        select(LessonProgress).where(LessonProgress.user_id == user_id, LessonProgress.lesson_id.in_(lesson_ids))
    )
    return {progress.lesson_id: progress for progress in rows.scalars().all()}


async def _upsert_lesson_progress(
    db: AsyncSession,
    user_id: str,
    lesson_id: str,
    student_progress: StudentProgress,
) -> LessonProgress:
    result = await db.execute(
        select(LessonProgress).where(LessonProgress.user_id == user_id, LessonProgress.lesson_id == lesson_id)
    )
    progress = result.scalar_one_or_none()
    if progress is None:
        progress = LessonProgress(
            user_id=user_id,
            lesson_id=lesson_id,
            student_progress_id=student_progress.id,
            watch_time=0,
            last_position=0,
            completed=False,
        )
        db.add(progress)
    return progress


async def recalculate_course_progress(db: AsyncSession, user_id: str, course_id: str) -> float:
    """
    Recompute completion rate and total watch time for one student in one course

    Mirrors the rate onto the enrollment and stamps completed_at at 100%.
    Runs inside the caller's transaction.
    """
    await db.flush()

    total_lessons = (
        await db.execute(select(func.count(Lesson.id)).where(Lesson.course_id == course_id))
    ).scalar_one()

    in_course = (LessonProgress.user_id == user_id, Lesson.course_id == course_id)
    completed_lessons = (
        await db.execute(
            select(func.count(LessonProgress.id))
            .join(Lesson, Lesson.id == LessonProgress.lesson_id)
            .where(*in_course, LessonProgress.completed.is_(True))
        )
    ).scalar_one()
    total_watch_time = (
        await db.execute(
            select(func.coalesce(func.sum(LessonProgress.watch_time), 0))
            .join(Lesson, Lesson.id == LessonProgress.lesson_id)
            .where(*in_course)
        )
    ).scalar_one()

    rate = completion_rate(completed_lessons, total_lessons)

    student_progress = await _student_progress(db, user_id, course_id)
    if student_progress:
        student_progress.completion_rate = rate
        student_progress.total_watch_time = int(total_watch_time)

    enrollment = await find_enrollment(db, user_id, course_id)
    if enrollment:
        enrollment.progress = rate
        if rate >= 100 and enrollment.completed_at is None:
            enrollment.completed_at = datetime.utcnow()

    return rate


async def update_lesson_progress(
    db: AsyncSession,
    user_id: str,
    lesson_id: str,
    watch_time: int,
    last_position: int,
    completed: Optional[bool] = None,
) -> dict:
    lesson = await _get_lesson(db, lesson_id)

    if not await find_enrollment(db, user_id, lesson.course_id):
        raise forbidden("You must be enrolled in this course to track progress")

    student_progress = await _student_progress(db, user_id, lesson.course_id)
    if not student_progress:
        raise not_found("Student progress record not found")

    progress = await _upsert_lesson_progress(db, user_id, lesson_id, student_progress)
    progress.watch_time = watch_time
    progress.last_position = last_position
    if completed is not None:
        if completed and not progress.completed:
            progress.completed_at = datetime.utcnow()
        progress.completed = completed

    rate = await recalculate_course_progress(db, user_id, lesson.course_id)
    student_progress.last_accessed_at = datetime.utcnow()

    await db.commit()

    return {"success": True, "lesson_progress": serialize_row(progress), "completion_rate": rate}


async def mark_lesson_complete(db: AsyncSession, user_id: str, lesson_id: str, watch_time: int = 0) -> dict:
    """
    Raises:
        404: Lesson not found
        403: Not enrolled
        400: A previous required lesson is still incomplete
    """
    lesson = await _get_lesson(db, lesson_id)

    if not await find_enrollment(db, user_id, lesson.course_id):
        raise forbidden("You must be enrolled in this course")

    student_progress = await _student_progress(db, user_id, lesson.course_id)
    if not student_progress:
        raise not_found("Student progress record not found")

    if lesson.is_required:
        lessons = await _course_lessons(db, lesson.course_id)
        progress_map = await _lesson_progress_map(db, user_id, [l.id for l in lessons])
        completed_ids = {lesson_id for lesson_id, p in progress_map.items() if p.completed}
        if missing_prerequisites(lessons, lesson, completed_ids):
            raise bad_request("You must complete all previous required lessons first")

    progress = await _upsert_lesson_progress(db, user_id, lesson_id, student_progress)
    progress.completed = True
    progress.completed_at = datetime.utcnow()
    progress.watch_time = max(progress.watch_time or 0, watch_time)

    rate = await recalculate_course_progress(db, user_id, lesson.course_id)
    student_progress.last_accessed_at = datetime.utcnow()

    await db.commit()

    return {"success": True, "lesson_progress": serialize_row(progress), "completion_rate": rate}


async def get_course_progress(db: AsyncSession, user_id: str, course_id: str) -> dict:
    enrollment = await find_enrollment(db, user_id, course_id)
    if not enrollment:
        raise forbidden("You are not enrolled in this course")

    course = await db.get(Course, course_id)
    creator = await db.get(User, course.creator_id)
    category = await db.get(Category, course.category_id)

    lessons = await _course_lessons(db, course_id)
    progress_map = await _lesson_progress_map(db, user_id, [l.id for l in lessons])
    student_progress = await _student_progress(db, user_id, course_id)

    return {
        "enrollment": serialize_row(enrollment),
        "course": {
            **serialize_row(course),
            "creator": {"id": creator.id, "name": creator.name},
            "category": {"id": category.id, "name": category.name},
        },
        "student_progress": serialize_row(student_progress),
        "lessons": [
            {**serialize_row(lesson), "user_progress": serialize_row(progress_map.get(lesson.id))}
            for lesson in lessons
        ],
    }


def _nav_card(lesson: Optional[Lesson]) -> Optional[dict]:
    if lesson is None:
        return None
    return {"id": lesson.id, "title": lesson.title, "order": lesson.order}


async def get_lesson_for_study(db: AsyncSession, user_id: str, lesson_id: str) -> dict:
    lesson = await _get_lesson(db, lesson_id)

    if not await find_enrollment(db, user_id, lesson.course_id):
        raise forbidden("You must be enrolled in this course to access lessons")

    course = await db.get(Course, lesson.course_id)
    lessons = await _course_lessons(db, lesson.course_id)
    progress_map = await _lesson_progress_map(db, user_id, [l.id for l in lessons])
    completed_ids = {lesson_id for lesson_id, p in progress_map.items() if p.completed}

    previous_lesson, next_lesson = neighbours(lessons, lesson)

    assets = await db.execute(
        select(LessonAsset).where(LessonAsset.lesson_id == lesson.id).order_by(LessonAsset.order)
    )

    student_progress = await _student_progress(db, user_id, lesson.course_id)
    if student_progress:
        student_progress.last_accessed_at = datetime.utcnow()
        await db.commit()

    data = serialize_row(lesson)
    data["video_url"] = sign_url(lesson.video_url) if lesson.video_url else None
    data["course"] = {"id": course.id, "title": course.title, "slug": course.slug}
    data["assets"] = [serialize_row(asset) for asset in assets.scalars().all()]
    data["user_progress"] = serialize_row(progress_map.get(lesson.id))

    return {
        "lesson": data,
        "navigation": {"previous": _nav_card(previous_lesson), "next": _nav_card(next_lesson)},
        "can_access": can_access_lesson(lessons, lesson, completed_ids),
    }
