"""
Professor dashboard and analytics
All queries are scoped to courses the professor created
"""

from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from coursehub.admin.analytics import enrollment_count_subquery, lesson_count_subquery
from coursehub.core.errors import bad_request, forbidden
from coursehub.core.pagination import page_offset, paginate
from coursehub.core.serializers import serialize_row
from coursehub.db.models import (
    Category,
    Coupon,
    Course,
    Enrollment,
    Lesson,
    LessonProgress,
    Order,
    OrderItem,
    OrderStatus,
    StudentProgress,
    User,
)
from coursehub.professors.metrics import (
    COMPLETION_FILTERS,
    average,
    daily_revenue,
    lesson_engagement,
    time_range_start,
)


def _student_card(user: User) -> dict:
    return {"id": user.id, "name": user.name, "email": user.email, "avatar": user.avatar}


async def _course_ids(db: AsyncSession, professor_id: str, course_id: Optional[str] = None) -> List[str]:
    stmt = select(Course.id).where(Course.creator_id == professor_id)
    if course_id:
        stmt = stmt.where(Course.id == course_id)
    return list((await db.execute(stmt)).scalars().all())


def _paid_orders_for(course_ids: List[str], since: Optional[datetime] = None) -> list:
    """Filters for PAID orders containing at least one of the courses"""
    filters = [
        Order.status == OrderStatus.PAID,
        Order.id.in_(select(OrderItem.order_id).where(OrderItem.course_id.in_(course_ids))),
    ]
    if since:
        filters.append(Order.created_at >= since)
    return filters


async def _revenue(db: AsyncSession, course_ids: List[str], since: Optional[datetime] = None) -> tuple:
    if not course_ids:
        return 0.0, 0
    total, count = (
        await db.execute(
            select(func.coalesce(func.sum(Order.total), 0), func.count(Order.id)).where(
                *_paid_orders_for(course_ids, since)
            )
        )
    ).one()
    return float(total), count


async def _enrollment_total(db: AsyncSession, professor_id: str, since: Optional[datetime] = None) -> int:
    stmt = (
        select(func.count(Enrollment.id))
        .join(Course, Course.id == Enrollment.course_id)
        .where(Course.creator_id == professor_id)
    )
    if since:
        stmt = stmt.where(Enrollment.enrolled_at >= since)
    return (await db.execute(stmt)).scalar_one()


# ==================== DASHBOARD ====================

async def get_dashboard_overview(db: AsyncSession, professor_id: str) -> dict:
    course_ids = await _course_ids(db, professor_id)

    published = (
        await db.execute(
            select(func.count(Course.id)).where(Course.creator_id == professor_id, Course.published.is_(True))
        )
    ).scalar_one()
    total_students = await _enrollment_total(db, professor_id)
    recent_students = await _enrollment_total(db, professor_id, datetime.utcnow() - timedelta(days=30))
    total_revenue, _ = await _revenue(db, course_ids)

    enrollments = enrollment_count_subquery()
    top = await db.execute(
        select(Course, Category, enrollments, lesson_count_subquery())
        .join(Category, Category.id == Course.category_id)
        .where(Course.creator_id == professor_id)
        .order_by(enrollments.desc())
        .limit(5)
    )

    return {
        "courses": {"total": len(course_ids), "published": published, "draft": len(course_ids) - published},
        "students": {"total": total_students, "recent": recent_students},
        "revenue": {"total": total_revenue},
        "top_courses": [
            {
                **serialize_row(course),
                "category": {"id": category.id, "name": category.name},
                "counts": {"enrollments": enrollment_count, "lessons": lesson_count},
            }
            for course, category, enrollment_count, lesson_count in top.all()
        ],
    }


async def get_my_courses(
    db: AsyncSession,
    professor_id: str,
    page: int,
    limit: int,
    search: Optional[str] = None,
    published: Optional[bool] = None,
    category_id: Optional[str] = None,
) -> dict:
    filters = [Course.creator_id == professor_id]
    if search:
        pattern = f"%{search.lower()}%"
        filters.append(or_(func.lower(Course.title).like(pattern), func.lower(Course.description).like(pattern)))
    if published is not None:
        filters.append(Course.published.is_(published))
    if category_id:
        filters.append(Course.category_id == category_id)

    total = (await db.execute(select(func.count(Course.id)).where(*filters))).scalar_one()
    rows = await db.execute(
        select(Course, Category, lesson_count_subquery(), enrollment_count_subquery())
        .join(Category, Category.id == Course.category_id)
        .where(*filters)
        .order_by(Course.updated_at.desc())
        .offset(page_offset(page, limit))
        .limit(limit)
    )

    courses = [
        {
            **serialize_row(course),
            "category": {"id": category.id, "name": category.name, "slug": category.slug},
            "counts": {"lessons": lesson_count, "enrollments": enrollment_count},
        }
        for course, category, lesson_count, enrollment_count in rows.all()
    ]
    return paginate(courses, total, page, limit, key="courses")


# ==================== COURSE ANALYTICS ====================

async def get_course_analytics(db: AsyncSession, course: Course) -> dict:
    """Caller has already checked ownership"""
    category = await db.get(Category, course.category_id)

    lessons = await db.execute(
        select(Lesson, func.count(LessonProgress.id))
        .outerjoin(LessonProgress, LessonProgress.lesson_id == Lesson.id)
        .where(Lesson.course_id == course.id)
        .group_by(Lesson.id)
        .order_by(Lesson.order)
    )
    lesson_rows = [
        {**serialize_row(lesson), "progress_count": progress_count} for lesson, progress_count in lessons.all()
    ]

    enrollments = await db.execute(
        select(Enrollment, User, Coupon)
        .join(User, User.id == Enrollment.user_id)
        .outerjoin(Coupon, Coupon.id == Enrollment.applied_coupon_id)
        .where(Enrollment.course_id == course.id)
        .order_by(Enrollment.enrolled_at.desc())
    )
    enrollment_rows = [
        {
            **serialize_row(enrollment),
            "user": _student_card(user),
            "applied_coupon": {"id": coupon.id, "code": coupon.code, "name": coupon.name} if coupon else None,
        }
        for enrollment, user, coupon in enrollments.all()
    ]

    stats = (
        await db.execute(
            select(StudentProgress.completion_rate, StudentProgress.total_watch_time).where(
                StudentProgress.course_id == course.id
            )
        )
    ).all()
    revenue, order_count = await _revenue(db, [course.id])

    data = serialize_row(course)
    data["category"] = serialize_row(category)
    data["lessons"] = lesson_rows
    data["enrollments"] = enrollment_rows
    return {
        "course": data,
        "analytics": {
            "enrollment_count": len(enrollment_rows),
            "lesson_count": len(lesson_rows),
            "avg_completion_rate": average([rate for rate, _ in stats]),
            "total_watch_time": sum(watch_time for _, watch_time in stats),
            "revenue": {"total": revenue, "order_count": order_count},
        },
    }


async def get_course_student_progress(
    db: AsyncSession,
    course_id: str,
    page: int,
    limit: int,
    search: Optional[str] = None,
    completion_filter: str = "all",
) -> dict:
    if completion_filter not in COMPLETION_FILTERS:
        raise bad_request(f"Completion filter must be one of: {', '.join(COMPLETION_FILTERS)}")

    filters = [StudentProgress.course_id == course_id]
    if completion_filter == "completed":
        filters.append(StudentProgress.completion_rate >= 100)
    elif completion_filter == "in_progress":
        filters.append(StudentProgress.completion_rate > 0)
        filters.append(StudentProgress.completion_rate < 100)
    elif completion_filter == "not_started":
        filters.append(StudentProgress.completion_rate == 0)
    if search:
        pattern = f"%{search.lower()}%"
        filters.append(or_(func.lower(User.name).like(pattern), func.lower(User.email).like(pattern)))

    total = (
        await db.execute(
            select(func.count(StudentProgress.id)).join(User, User.id == StudentProgress.user_id).where(*filters)
        )
    ).scalar_one()
    rows = (
        await db.execute(
            select(StudentProgress, User)
            .join(User, User.id == StudentProgress.user_id)
            .where(*filters)
            .order_by(StudentProgress.last_accessed_at.desc())
            .offset(page_offset(page, limit))
            .limit(limit)
        )
    ).all()

    progress_ids = [progress.id for progress, _ in rows]
    lessons_by_progress = {progress_id: [] for progress_id in progress_ids}
    if progress_ids:
        lesson_progress = await db.execute(
            select(LessonProgress, Lesson)
            .join(Lesson, Lesson.id == LessonProgress.lesson_id)
            .where(LessonProgress.student_progress_id.in_(progress_ids))
            .order_by(Lesson.order)
        )
        for progress, lesson in lesson_progress.all():
            lessons_by_progress[progress.student_progress_id].append(
                {
                    **serialize_row(progress),
                    "lesson": {"id": lesson.id, "title": lesson.title, "order": lesson.order},
                }
            )

    results = [
        {**serialize_row(progress), "user": _student_card(user), "lesson_progress": lessons_by_progress[progress.id]}
        for progress, user in rows
    ]
    return paginate(results, total, page, limit, key="student_progress")


async def get_lesson_analytics(
    db: AsyncSession,
    professor_id: str,
    course_id: str,
    lesson_id: Optional[str] = None,
) -> dict:
    course = await db.get(Course, course_id)
    if not course or course.creator_id != professor_id:
        raise forbidden("You can only view analytics for your own courses")

    lesson_filters = [Lesson.course_id == course_id]
    if lesson_id:
        lesson_filters.append(Lesson.id == lesson_id)

    lessons = (await db.execute(select(Lesson).where(*lesson_filters).order_by(Lesson.order))).scalars().all()
    progress_rows = (
        await db.execute(
            select(LessonProgress).join(Lesson, Lesson.id == LessonProgress.lesson_id).where(*lesson_filters)
        )
    ).scalars().all()

    by_lesson = {lesson.id: [] for lesson in lessons}
    for progress in progress_rows:
        by_lesson[progress.lesson_id].append(progress)

    lesson_analytics = [
        {
            "lesson": {
                "id": lesson.id,
                "title": lesson.title,
                "order": lesson.order,
                "video_duration": lesson.video_duration,
            },
            "analytics": lesson_engagement(by_lesson[lesson.id], lesson.video_duration),
        }
        for lesson in lessons
    ]

    return {
        "lesson_analytics": lesson_analytics,
        "summary": {
            "total_lessons": len(lessons),
            "total_views": len(progress_rows),
            "avg_completion_rate": average([item["analytics"]["completion_rate"] for item in lesson_analytics]),
            "total_watch_time": sum(progress.watch_time for progress in progress_rows),
        },
    }


# ==================== REVENUE ====================

async def get_revenue_analytics(
    db: AsyncSession,
    professor_id: str,
    time_range: str = "30d",
    course_id: Optional[str] = None,
) -> dict:
    course_ids = await _course_ids(db, professor_id, course_id)
    if not course_ids:
        return {
            "total_revenue": 0,
            "order_count": 0,
            "avg_order_value": 0,
            "revenue_by_time": [],
            "top_courses": [],
        }

    since = time_range_start(time_range)
    total_revenue, order_count = await _revenue(db, course_ids, since)

    orders = await db.execute(
        select(Order.created_at, Order.total).where(*_paid_orders_for(course_ids, since)).order_by(Order.created_at)
    )

    top = await db.execute(
        select(Course, func.sum(OrderItem.price).label("revenue"), func.count(OrderItem.id))
        .join(OrderItem, OrderItem.course_id == Course.id)
        .join(Order, Order.id == OrderItem.order_id)
        .where(Course.id.in_(course_ids), *_paid_orders_for(course_ids, since))
        .group_by(Course.id)
        .order_by(func.sum(OrderItem.price).desc())
        .limit(5)
    )

    return {
        "total_revenue": total_revenue,
        "order_count": order_count,
        "avg_order_value": total_revenue / order_count if order_count else 0,
        "revenue_by_time": daily_revenue(orders.all()),
        "top_courses": [
            {
                "course": {"id": course.id, "title": course.title, "slug": course.slug, "price": float(course.price)},
                "revenue": float(revenue),
                "orders": orders_count,
            }
            for course, revenue, orders_count in top.all()
        ],
    }


async def get_course_stats(db: AsyncSession, professor_id: str) -> dict:
    course_ids = await _course_ids(db, professor_id)
    published = (
        await db.execute(
            select(func.count(Course.id)).where(Course.creator_id == professor_id, Course.published.is_(True))
        )
    ).scalar_one()
    total_lessons = (
        await db.execute(
            select(func.count(Lesson.id)).join(Course, Course.id == Lesson.course_id).where(Course.creator_id == professor_id)
        )
    ).scalar_one()
    total_enrollments = await _enrollment_total(db, professor_id)
    total_revenue, _ = await _revenue(db, course_ids)

    return {
        "total_courses": len(course_ids),
        "published_courses": published,
        "draft_courses": len(course_ids) - published,
        "total_lessons": total_lessons,
        "total_enrollments": total_enrollments,
        "avg_enrollments_per_course": total_enrollments / len(course_ids) if course_ids else 0,
        "total_revenue": total_revenue,
    }
