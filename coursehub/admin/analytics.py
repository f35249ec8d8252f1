"""
Analytics & Listings for the Admin Panel
Dashboard counters plus paged users, enrollments and orders
"""

from datetime import datetime, timedelta
from typing import Dict, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from coursehub.core.pagination import page_offset, paginate
from coursehub.core.serializers import public_user, serialize_row, serialize_user
from coursehub.db.models import (
    Category,
    Coupon,
    Course,
    Enrollment,
    EnrollmentStatus,
    Lesson,
    Order,
    OrderItem,
    OrderStatus,
    Payment,
    User,
    UserRole,
)


async def _scalar(db: AsyncSession, stmt):
    return (await db.execute(stmt)).scalar_one()


def enrollment_count_subquery():
    return (
        select(func.count(Enrollment.id))
        .where(Enrollment.course_id == Course.id)
        .correlate(Course)
        .scalar_subquery()
    )


def lesson_count_subquery():
    return (
        select(func.count(Lesson.id))
        .where(Lesson.course_id == Course.id)
        .correlate(Course)
        .scalar_subquery()
    )


# ==================== DASHBOARD ====================

async def get_dashboard_stats(db: AsyncSession) -> Dict:
    """
    Overview counters for the admin dashboard
    """
    total_courses = await _scalar(db, select(func.count(Course.id)))
    published_courses = await _scalar(db, select(func.count(Course.id)).where(Course.published.is_(True)))

    total_students = await _scalar(db, select(func.count(User.id)).where(User.role == UserRole.STUDENT))
    total_professors = await _scalar(db, select(func.count(User.id)).where(User.role == UserRole.PROFESSOR))

    total_enrollments = await _scalar(db, select(func.count(Enrollment.id)))
    thirty_days_ago = datetime.utcnow() - timedelta(days=30)
    recent_enrollments = await _scalar(
        db, select(func.count(Enrollment.id)).where(Enrollment.enrolled_at >= thirty_days_ago)
    )

    total_revenue = await _scalar(
        db, select(func.coalesce(func.sum(Order.total), 0)).where(Order.status == OrderStatus.PAID)
    )

    # Top courses by enrollment
    enrollments = enrollment_count_subquery().label("enrollments")
    lessons = lesson_count_subquery().label("lessons")
    top_rows = await db.execute(
        select(Course, User, Category, enrollments, lessons)
        .join(User, User.id == Course.creator_id)
        .join(Category, Category.id == Course.category_id)
        .order_by(enrollments.desc(), Course.created_at.desc())
        .limit(5)
    )
    top_courses = [
        {
            "id": course.id,
            "title": course.title,
            "slug": course.slug,
            "price": float(course.price),
            "published": course.published,
            "creator": {"id": creator.id, "name": creator.name},
            "category": {"id": category.id, "name": category.name},
            "enrollments": enrollment_count,
            "lessons": lesson_count,
        }
        for course, creator, category, enrollment_count, lesson_count in top_rows.all()
    ]

    # Category distribution
    course_count = func.count(Course.id).label("courses")
    category_rows = await db.execute(
        select(Category.id, Category.name, course_count)
        .outerjoin(Course, Course.category_id == Category.id)
        .group_by(Category.id, Category.name)
        .order_by(course_count.desc())
        .limit(10)
    )
    categories = [{"id": row.id, "name": row.name, "courses": row.courses} for row in category_rows.all()]

    coupon_totals = (
        await db.execute(select(func.count(Coupon.id), func.coalesce(func.sum(Coupon.used_count), 0)))
    ).one()

    return {
        "courses": {
            "total": total_courses,
            "published": published_courses,
            "draft": total_courses - published_courses,
            "top_courses": top_courses,
        },
        "users": {
            "total_students": total_students,
            "total_professors": total_professors,
            "total": total_students + total_professors,
        },
        "enrollments": {
            "total": total_enrollments,
            "recent": recent_enrollments,
        },
        "revenue": {
            "total": float(total_revenue or 0),
        },
        "categories": categories,
        "coupons": {
            "total": coupon_totals[0],
            "total_usage": int(coupon_totals[1] or 0),
        },
    }


# ==================== USERS ====================

async def get_users(
    db: AsyncSession,
    page: int,
    limit: int,
    search: Optional[str] = None,
    role: Optional[UserRole] = None,
    verified: Optional[bool] = None,
) -> dict:
    filters = []
    if search:
        pattern = f"%{search.lower()}%"
        filters.append(
            or_(
                func.lower(User.name).like(pattern),
                func.lower(User.email).like(pattern),
                func.lower(User.username).like(pattern),
            )
        )
    if role:
        filters.append(User.role == role)
    if verified is not None:
        filters.append(User.verified.is_(verified))

    created_courses = (
        select(func.count(Course.id)).where(Course.creator_id == User.id).correlate(User).scalar_subquery()
    )
    enrollments = (
        select(func.count(Enrollment.id)).where(Enrollment.user_id == User.id).correlate(User).scalar_subquery()
    )
    orders = select(func.count(Order.id)).where(Order.user_id == User.id).correlate(User).scalar_subquery()

    total = await _scalar(db, select(func.count(User.id)).where(*filters))
    rows = await db.execute(
        select(User, created_courses, enrollments, orders)
        .where(*filters)
        .order_by(User.created_at.desc())
        .offset(page_offset(page, limit))
        .limit(limit)
    )

    users = []
    for user, course_count, enrollment_count, order_count in rows.all():
        item = serialize_user(user)
        item["counts"] = {
            "created_courses": course_count,
            "enrollments": enrollment_count,
            "orders": order_count,
        }
        users.append(item)

    return paginate(users, total, page, limit, key="users")


async def set_user_verified(db: AsyncSession, user_id: str, verified: bool) -> Optional[User]:
    user = await db.get(User, user_id)
    if not user:
        return None
    user.verified = verified
    return user


# ==================== ENROLLMENTS & ORDERS ====================

async def get_enrollments(
    db: AsyncSession,
    page: int,
    limit: int,
    course_id: Optional[str] = None,
    user_id: Optional[str] = None,
    status: Optional[EnrollmentStatus] = None,
) -> dict:
    filters = []
    if course_id:
        filters.append(Enrollment.course_id == course_id)
    if user_id:
        filters.append(Enrollment.user_id == user_id)
    if status:
        filters.append(Enrollment.status == status)

    total = await _scalar(db, select(func.count(Enrollment.id)).where(*filters))
    rows = await db.execute(
        select(Enrollment, User, Course, Coupon)
        .join(User, User.id == Enrollment.user_id)
        .join(Course, Course.id == Enrollment.course_id)
        .outerjoin(Coupon, Coupon.id == Enrollment.applied_coupon_id)
        .where(*filters)
        .order_by(Enrollment.enrolled_at.desc())
        .offset(page_offset(page, limit))
        .limit(limit)
    )

    items = []
    for enrollment, user, course, coupon in rows.all():
        item = serialize_row(enrollment)
        item["user"] = {**public_user(user), "avatar": user.avatar}
        item["course"] = {
            "id": course.id,
            "title": course.title,
            "slug": course.slug,
            "price": float(course.price),
            "thumbnail": course.thumbnail,
        }
        item["applied_coupon"] = (
            {
                "id": coupon.id,
                "code": coupon.code,
                "name": coupon.name,
                "discount_type": coupon.discount_type.value,
                "discount_value": float(coupon.discount_value),
            }
            if coupon
            else None
        )
        items.append(item)

    return paginate(items, total, page, limit, key="enrollments")


async def get_orders(
    db: AsyncSession,
    page: int,
    limit: int,
    status: Optional[OrderStatus] = None,
    user_id: Optional[str] = None,
) -> dict:
    filters = []
    if status:
        filters.append(Order.status == status)
    if user_id:
        filters.append(Order.user_id == user_id)

    total = await _scalar(db, select(func.count(Order.id)).where(*filters))
    rows = await db.execute(
        select(Order, User)
        .join(User, User.id == Order.user_id)
        .where(*filters)
        .order_by(Order.created_at.desc())
        .offset(page_offset(page, limit))
        .limit(limit)
    )
    order_rows = rows.all()
    order_ids = [order.id for order, _ in order_rows]

    items_by_order: Dict[str, list] = {order_id: [] for order_id in order_ids}
    payments_by_order: Dict[str, list] = {order_id: [] for order_id in order_ids}
    if order_ids:
        item_rows = await db.execute(select(OrderItem).where(OrderItem.order_id.in_(order_ids)))
        for item in item_rows.scalars().all():
            items_by_order[item.order_id].append(serialize_row(item))

        payment_rows = await db.execute(
            select(Payment).where(Payment.order_id.in_(order_ids)).order_by(Payment.created_at)
        )
        for payment in payment_rows.scalars().all():
            payments_by_order[payment.order_id].append(serialize_row(payment, exclude=("provider_data",)))

    orders = []
    for order, user in order_rows:
        data = serialize_row(order)
        data["user"] = public_user(user)
        data["items"] = items_by_order[order.id]
        data["payments"] = payments_by_order[order.id]
        orders.append(data)

    return paginate(orders, total, page, limit, key="orders")
