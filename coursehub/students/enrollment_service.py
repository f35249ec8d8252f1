"""
Enrollment
Free or fully-discounted enrollment, plus the shared write path used
when a paid order is captured
"""

import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from coursehub.admin.analytics import lesson_count_subquery
from coursehub.admin.course_service import creator_card
from coursehub.core.errors import ApiError, bad_request, conflict, not_found
from coursehub.core.pagination import page_offset, paginate
from coursehub.core.serializers import serialize_row
from coursehub.coupons.coupon_service import consume_coupon, resolve_coupon_for_course
from coursehub.coupons.discount import final_price, to_money
from coursehub.db.models import (
    Category,
    Coupon,
    Course,
    Enrollment,
    EnrollmentStatus,
    Lesson,
    LessonProgress,
    StudentProgress,
    User,
)

logger = logging.getLogger(__name__)

ALREADY_ENROLLED = "You are already enrolled in this course"


async def find_enrollment(db: AsyncSession, user_id: str, course_id: str) -> Optional[Enrollment]:
    result = await db.execute(
        select(Enrollment).where(Enrollment.user_id == user_id, Enrollment.course_id == course_id)
    )
    return result.scalar_one_or_none()


async def ensure_not_enrolled(db: AsyncSession, user_id: str, course_id: str) -> None:
    if await find_enrollment(db, user_id, course_id):
        raise conflict(ALREADY_ENROLLED)


async def get_enrollable_course(db: AsyncSession, course_id: str) -> Course:
    course = await db.get(Course, course_id)
    if not course:
        raise not_found("Course not found")
    if not course.published:
        raise bad_request("Course is not available for enrollment")
    return course


async def create_enrollment(
    db: AsyncSession,
    user_id: str,
    course: Course,
    coupon: Optional[Coupon] = None,
    discount: Decimal = Decimal("0"),
) -> Enrollment:
    """
    Stage an enrollment with its progress rows inside the caller's transaction

    Creates the Enrollment, one StudentProgress, one LessonProgress per lesson
    and, when a coupon is applied, consumes one use of it first. Nothing is committed.
    """
    if coupon:
        await consume_coupon(db, coupon, user_id, course.id, discount)

    enrollment = Enrollment(
        user_id=user_id,
        course_id=course.id,
        status=EnrollmentStatus.ACTIVE,
        applied_coupon_id=coupon.id if coupon else None,
        progress=0.0,
    )
    student_progress = StudentProgress(
        user_id=user_id,
        course_id=course.id,
        completion_rate=0.0,
        total_watch_time=0,
    )
    db.add_all([enrollment, student_progress])
    await db.flush()

    lesson_ids = (await db.execute(select(Lesson.id).where(Lesson.course_id == course.id))).scalars().all()
    db.add_all(
        [
            LessonProgress(
                user_id=user_id,
                lesson_id=lesson_id,
                student_progress_id=student_progress.id,
                watch_time=0,
                last_position=0,
                completed=False,
            )
            for lesson_id in lesson_ids
        ]
    )

    return enrollment


async def enroll_course(db: AsyncSession, user_id: str, course_id: str, coupon_code: Optional[str] = None) -> dict:
    """
    Enroll the user when nothing is left to pay

    Raises:
        409: Already enrolled
        404: Course or coupon not found
        400: Course unpublished or coupon rejected
        402: The course still costs money after the coupon
    """
    await ensure_not_enrolled(db, user_id, course_id)
    course = await get_enrollable_course(db, course_id)

    coupon, discount = None, Decimal("0")
    if coupon_code:
        coupon, discount = await resolve_coupon_for_course(db, coupon_code, course, user_id)

    price = Decimal("0") if course.is_free else to_money(course.price)
    amount_due = final_price(price, discount)
    if amount_due > 0:
        raise ApiError(
            "PAYMENT_REQUIRED",
            "This course requires payment. Complete checkout to enroll.",
            extra={"amount_due": float(amount_due), "checkout": "/payments/checkout"},
        )

    try:
        enrollment = await create_enrollment(db, user_id, course, coupon, discount)
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise conflict(ALREADY_ENROLLED)

    logger.info("User %s enrolled in course %s", user_id, course.id)

    data = serialize_row(enrollment)
    data["course"] = {"id": course.id, "title": course.title, "slug": course.slug}
    data["applied_coupon"] = (
        {"id": coupon.id, "code": coupon.code, "name": coupon.name} if coupon else None
    )
    return {"success": True, "enrollment": data, "message": "Successfully enrolled in course"}


async def get_enrolled_courses(
    db: AsyncSession,
    user_id: str,
    page: int,
    limit: int,
    status: Optional[EnrollmentStatus] = None,
    search: Optional[str] = None,
) -> dict:
    filters = [Enrollment.user_id == user_id]
    if status:
        filters.append(Enrollment.status == status)
    if search:
        pattern = f"%{search.lower()}%"
        filters.append(or_(func.lower(Course.title).like(pattern), func.lower(Course.description).like(pattern)))

    total = (
        await db.execute(
            select(func.count(Enrollment.id)).join(Course, Course.id == Enrollment.course_id).where(*filters)
        )
    ).scalar_one()

    rows = await db.execute(
        select(Enrollment, Course, User, Category, Coupon, StudentProgress, lesson_count_subquery())
        .join(Course, Course.id == Enrollment.course_id)
        .join(User, User.id == Course.creator_id)
        .join(Category, Category.id == Course.category_id)
        .outerjoin(Coupon, Coupon.id == Enrollment.applied_coupon_id)
        .outerjoin(
            StudentProgress,
            (StudentProgress.user_id == Enrollment.user_id) & (StudentProgress.course_id == Enrollment.course_id),
        )
        .where(*filters)
        .order_by(Enrollment.enrolled_at.desc())
        .offset(page_offset(page, limit))
        .limit(limit)
    )

    enrollments = []
    for enrollment, course, creator, category, coupon, progress, lesson_count in rows.all():
        item = serialize_row(enrollment)
        item["course"] = {
            **serialize_row(course),
            "creator": creator_card(creator),
            "category": serialize_row(category),
            "lesson_count": lesson_count,
        }
        item["applied_coupon"] = (
            {
                "code": coupon.code,
                "name": coupon.name,
                "discount_type": coupon.discount_type.value,
                "discount_value": float(coupon.discount_value),
            }
            if coupon
            else None
        )
        item["student_progress"] = serialize_row(progress) if progress else None
        enrollments.append(item)

    return paginate(enrollments, total, page, limit, key="enrollments")
