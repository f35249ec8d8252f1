from decimal import Decimal
from typing import Optional

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from coursehub.admin.analytics import enrollment_count_subquery, lesson_count_subquery
from coursehub.admin.audit import log_audit
from coursehub.core.errors import bad_request, conflict, not_found
from coursehub.core.pagination import page_offset, paginate
from coursehub.core.serializers import serialize_row
from coursehub.db.models import (
    Category,
    Coupon,
    Course,
    CourseCoupon,
    Enrollment,
    Lesson,
    LessonAsset,
    LessonProgress,
    OrderItem,
    User,
    UserRole,
)
from coursehub.uploads.readiness import publish_errors


def creator_card(user: User) -> dict:
    return {"id": user.id, "name": user.name, "email": user.email, "role": user.role.value}


async def ensure_slug_available(db: AsyncSession, slug: str, exclude_id: str = None) -> None:
    stmt = select(Course.id).where(Course.slug == slug)
    if exclude_id:
        stmt = stmt.where(Course.id != exclude_id)
    if (await db.execute(stmt)).first():
        raise conflict("A course with this slug already exists")


async def ensure_professor(db: AsyncSession, user_id: str) -> User:
    creator = await db.get(User, user_id)
    if not creator or creator.role != UserRole.PROFESSOR:
        raise bad_request("Creator must be a valid professor")
    return creator


async def ensure_category(db: AsyncSession, category_id: str) -> Category:
    category = await db.get(Category, category_id)
    if not category:
        raise not_found("Category not found")
    return category


async def get_course_or_404(db: AsyncSession, course_id: str) -> Course:
    course = await db.get(Course, course_id)
    if not course:
        raise not_found("Course not found")
    return course


# ==================== COURSES ====================

async def create_course(db: AsyncSession, admin, data: dict) -> dict:
    await ensure_slug_available(db, data["slug"])
    creator = await ensure_professor(db, data["creator_id"])
    category = await ensure_category(db, data["category_id"])

    course = Course(**{**data, "price": Decimal(str(data["price"]))})
    db.add(course)
    await db.flush()

    log_audit(db, admin, "CREATE_COURSE", "COURSE", course.id, {
        "course_name": course.title,
        "course_slug": course.slug,
        "creator_id": creator.id,
    })
    await db.commit()

    result = serialize_row(course)
    result["creator"] = creator_card(creator)
    result["category"] = serialize_row(category)
    return result


async def update_course(db: AsyncSession, admin, course_id: str, updates: dict) -> dict:
    course = await get_course_or_404(db, course_id)

    if "slug" in updates and updates["slug"] != course.slug:
        await ensure_slug_available(db, updates["slug"], exclude_id=course.id)
    if "category_id" in updates:
        await ensure_category(db, updates["category_id"])
    if "price" in updates:
        updates["price"] = Decimal(str(updates["price"]))

    publishing = updates.get("published") is True and not course.published
    for field, value in updates.items():
        setattr(course, field, value)

    if publishing:
        lessons = (
            await db.execute(select(Lesson).where(Lesson.course_id == course.id).order_by(Lesson.order))
        ).scalars().all()
        errors = publish_errors(course, lessons)
        if errors:
            raise bad_request(f"Course is not ready for publishing: {', '.join(errors)}")

    log_audit(db, admin, "UPDATE_COURSE", "COURSE", course.id, {
        "course_name": course.title,
        "changes": sorted(updates.keys()),
    })
    await db.commit()
    return serialize_row(course)


async def delete_course(db: AsyncSession, admin, course_id: str) -> dict:
    course = await get_course_or_404(db, course_id)

    enrollment_count = (
        await db.execute(select(func.count(Enrollment.id)).where(Enrollment.course_id == course_id))
    ).scalar_one()
    if enrollment_count > 0:
        raise conflict("Cannot delete course with active enrollments")

    order_count = (
        await db.execute(select(func.count(OrderItem.id)).where(OrderItem.course_id == course_id))
    ).scalar_one()
    if order_count > 0:
        raise conflict("Cannot delete course with orders")

    lesson_count = (
        await db.execute(select(func.count(Lesson.id)).where(Lesson.course_id == course_id))
    ).scalar_one()

    await db.delete(course)
    log_audit(db, admin, "DELETE_COURSE", "COURSE", course_id, {
        "course_name": course.title,
        "lesson_count": lesson_count,
    })
    await db.commit()
    return {"success": True}


async def get_courses(
    db: AsyncSession,
    page: int,
    limit: int,
    search: Optional[str] = None,
    category_id: Optional[str] = None,
    published: Optional[bool] = None,
    featured: Optional[bool] = None,
    creator_id: Optional[str] = None,
) -> dict:
    filters = []
    if search:
        pattern = f"%{search.lower()}%"
        filters.append(
            or_(
                func.lower(Course.title).like(pattern),
                func.lower(Course.description).like(pattern),
                func.lower(User.name).like(pattern),
            )
        )
    if category_id:
        filters.append(Course.category_id == category_id)
    if published is not None:
        filters.append(Course.published.is_(published))
    if featured is not None:
        filters.append(Course.featured.is_(featured))
    if creator_id:
        filters.append(Course.creator_id == creator_id)

    total = (
        await db.execute(
            select(func.count(Course.id)).join(User, User.id == Course.creator_id).where(*filters)
        )
    ).scalar_one()

    rows = await db.execute(
        select(Course, User, Category, lesson_count_subquery(), enrollment_count_subquery())
        .join(User, User.id == Course.creator_id)
        .join(Category, Category.id == Course.category_id)
        .where(*filters)
        .order_by(Course.created_at.desc())
        .offset(page_offset(page, limit))
        .limit(limit)
    )

    courses = []
    for course, creator, category, lesson_count, enrollment_count in rows.all():
        item = serialize_row(course)
        item["creator"] = creator_card(creator)
        item["category"] = serialize_row(category)
        item["counts"] = {"lessons": lesson_count, "enrollments": enrollment_count}
        courses.append(item)

    return paginate(courses, total, page, limit, key="courses")


async def get_course(db: AsyncSession, course_id: str) -> dict:
    course = await get_course_or_404(db, course_id)
    creator = await db.get(User, course.creator_id)
    category = await db.get(Category, course.category_id)

    lessons = (
        await db.execute(select(Lesson).where(Lesson.course_id == course_id).order_by(Lesson.order))
    ).scalars().all()
    lesson_ids = [lesson.id for lesson in lessons]

    assets_by_lesson = {lesson_id: [] for lesson_id in lesson_ids}
    progress_counts = {}
    if lesson_ids:
        assets = await db.execute(
            select(LessonAsset).where(LessonAsset.lesson_id.in_(lesson_ids)).order_by(LessonAsset.order)
        )
        for asset in assets.scalars().all():
            assets_by_lesson[asset.lesson_id].append(serialize_row(asset))

        counts = await db.execute(
            select(LessonProgress.lesson_id, func.count(LessonProgress.id))
            .where(LessonProgress.lesson_id.in_(lesson_ids))
            .group_by(LessonProgress.lesson_id)
        )
        progress_counts = dict(counts.all())

    coupons = await db.execute(
        select(Coupon).join(CourseCoupon, CourseCoupon.coupon_id == Coupon.id).where(CourseCoupon.course_id == course_id)
    )
    enrollment_count = (
        await db.execute(select(func.count(Enrollment.id)).where(Enrollment.course_id == course_id))
    ).scalar_one()

    data = serialize_row(course)
    data["creator"] = creator_card(creator) if creator else None
    data["category"] = serialize_row(category)
    data["lessons"] = [
        {
            **serialize_row(lesson),
            "assets": assets_by_lesson[lesson.id],
            "progress_count": progress_counts.get(lesson.id, 0),
        }
        for lesson in lessons
    ]
    data["coupons"] = [serialize_row(coupon) for coupon in coupons.scalars().all()]
    data["counts"] = {"lessons": len(lessons), "enrollments": enrollment_count}
    return data


# ==================== LESSONS ====================

async def create_lesson(db: AsyncSession, admin, course_id: str, data: dict) -> dict:
    course = await get_course_or_404(db, course_id)

    lesson = Lesson(course_id=course.id, **data)
    db.add(lesson)
    await db.flush()

    log_audit(db, admin, "CREATE_LESSON", "LESSON", lesson.id, {
        "lesson_title": lesson.title,
        "course_id": course.id,
        "order": lesson.order,
    })
    await db.commit()

    result = serialize_row(lesson)
    result["course"] = {"id": course.id, "title": course.title}
    return result


async def update_lesson(db: AsyncSession, admin, lesson_id: str, updates: dict) -> dict:
    lesson = await db.get(Lesson, lesson_id)
    if not lesson:
        raise not_found("Lesson not found")

    for field, value in updates.items():
        setattr(lesson, field, value)

    log_audit(db, admin, "UPDATE_LESSON", "LESSON", lesson.id, {
        "lesson_title": lesson.title,
        "changes": sorted(updates.keys()),
    })
    await db.commit()
    return serialize_row(lesson)


async def delete_lesson(db: AsyncSession, admin, lesson_id: str) -> dict:
    lesson = await db.get(Lesson, lesson_id)
    if not lesson:
        raise not_found("Lesson not found")

    await db.delete(lesson)
    log_audit(db, admin, "DELETE_LESSON", "LESSON", lesson_id, {
        "lesson_title": lesson.title,
        "course_id": lesson.course_id,
    })
    await db.commit()
    return {"success": True}


async def add_lesson_asset(db: AsyncSession, lesson_id: str, data: dict) -> dict:
    lesson = await db.get(Lesson, lesson_id)
    if not lesson:
        raise not_found("Lesson not found")

    asset = LessonAsset(lesson_id=lesson.id, **data)
    db.add(asset)
    await db.commit()

    result = serialize_row(asset)
    result["lesson"] = {"id": lesson.id, "title": lesson.title, "course_id": lesson.course_id}
    return result


async def remove_lesson_asset(db: AsyncSession, asset_id: str) -> dict:
    asset = await db.get(LessonAsset, asset_id)
    if not asset:
        raise not_found("Lesson asset not found")

    await db.delete(asset)
    await db.commit()
    return {"success": True}


async def bulk_update_lesson_order(db: AsyncSession, admin, course_id: str, lessons: list) -> dict:
    """Apply all new positions in one transaction"""
    await get_course_or_404(db, course_id)

    wanted = {item["id"]: item["order"] for item in lessons}
    rows = await db.execute(select(Lesson).where(Lesson.course_id == course_id, Lesson.id.in_(list(wanted))))
    found = {lesson.id: lesson for lesson in rows.scalars().all()}

    missing = sorted(set(wanted) - set(found))
    if missing:
        raise bad_request(f"Lessons not found in this course: {', '.join(missing)}")

    for lesson_id, order in wanted.items():
        found[lesson_id].order = order

    log_audit(db, admin, "BULK_UPDATE_LESSON_ORDER", "COURSE", course_id, {
        "lesson_updates": len(wanted),
    })
    await db.commit()
    return {"success": True}
