import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional, Tuple

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from coursehub.core.errors import bad_request, conflict, not_found
from coursehub.core.pagination import page_offset, paginate
from coursehub.core.serializers import serialize_row
from coursehub.coupons.discount import (
    calculate_discount,
    check_coupon,
    price_breakdown,
    rejection_message,
    to_money,
)
from coursehub.db.models import Coupon, CouponUsage, Course, CourseCoupon, Enrollment

logger = logging.getLogger(__name__)

COUPON_SUMMARY_FIELDS = (
    "id", "code", "name", "description", "discount_type", "discount_value",
    "is_global", "max_uses", "used_count", "valid_until",
)


def coupon_summary(coupon: Coupon) -> dict:
    data = serialize_row(coupon)
    return {key: data[key] for key in COUPON_SUMMARY_FIELDS}


# ==================== LOOKUPS ====================

async def find_coupon(db: AsyncSession, code: str) -> Optional[Coupon]:
    """Codes are stored upper-case; lookups are case-insensitive"""
    result = await db.execute(select(Coupon).where(Coupon.code == code.strip().upper()))
    return result.scalar_one_or_none()


async def coupon_applies_to_course(db: AsyncSession, coupon: Coupon, course_id: str) -> bool:
    if coupon.is_global:
        return True
    result = await db.execute(
        select(CourseCoupon.id).where(CourseCoupon.coupon_id == coupon.id, CourseCoupon.course_id == course_id)
    )
    return result.first() is not None


async def count_user_uses(db: AsyncSession, coupon_id: str, user_id: str) -> int:
    result = await db.execute(
        select(func.count(CouponUsage.id)).where(CouponUsage.coupon_id == coupon_id, CouponUsage.user_id == user_id)
    )
    return result.scalar_one()


async def resolve_coupon_for_course(
    db: AsyncSession,
    code: str,
    course: Course,
    user_id: Optional[str] = None,
) -> Tuple[Coupon, Decimal]:
    """
    Full coupon validation for a purchase or enrollment

    Returns:
        (coupon, discount amount)

    Raises:
        404: Unknown code
        400: Any failing coupon rule
    """
    coupon = await find_coupon(db, code)
    if not coupon:
        raise not_found("Coupon not found")

    applies = await coupon_applies_to_course(db, coupon, course.id)
    user_uses = await count_user_uses(db, coupon.id, user_id) if user_id else None

    reason = check_coupon(coupon, applies_to_course=applies, user_uses=user_uses)
    if reason:
        raise bad_request(rejection_message(reason))

    return coupon, calculate_discount(course.price, coupon.discount_type, coupon.discount_value)


async def consume_coupon(
    db: AsyncSession,
    coupon: Coupon,
    user_id: str,
    course_id: str,
    discount_amount: Decimal,
) -> None:
    """
    Record one use of the coupon inside the caller's transaction

    The increment is a single guarded UPDATE so concurrent redemptions
    can never push used_count past max_uses.
    """
    result = await db.execute(
        update(Coupon)
        .where(
            Coupon.id == coupon.id,
            or_(Coupon.max_uses.is_(None), Coupon.used_count < Coupon.max_uses),
        )
        .values(used_count=Coupon.used_count + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise bad_request(rejection_message("exhausted"))

    db.add(
        CouponUsage(
            user_id=user_id,
            coupon_id=coupon.id,
            course_id=course_id,
            discount_amount=to_money(discount_amount),
        )
    )
    logger.info("Coupon %s redeemed by %s for course %s", coupon.code, user_id, course_id)


# ==================== STOREFRONT ====================

async def validate_coupon(db: AsyncSession, code: str, course_id: Optional[str] = None) -> dict:
    """Soft validation: never raises for a rejected coupon"""
    coupon = await find_coupon(db, code)
    if not coupon:
        return {"valid": False, "error": "Coupon not found"}

    applies = await coupon_applies_to_course(db, coupon, course_id) if course_id else True
    reason = check_coupon(coupon, applies_to_course=applies)
    if reason:
        return {"valid": False, "error": rejection_message(reason, public=True)}

    return {"valid": True, "coupon": coupon_summary(coupon)}


async def calculate_discount_for_code(db: AsyncSession, code: str, course_id: str, original_price: float) -> dict:
    coupon = await find_coupon(db, code)
    if not coupon:
        raise not_found("Coupon not found")

    applies = await coupon_applies_to_course(db, coupon, course_id)
    reason = check_coupon(coupon, applies_to_course=applies)
    if reason:
        raise bad_request(rejection_message(reason))

    return {
        **price_breakdown(original_price, coupon),
        "coupon": {
            "code": coupon.code,
            "name": coupon.name,
            "discount_type": coupon.discount_type.value,
            "discount_value": float(coupon.discount_value),
        },
    }


async def apply_coupon(db: AsyncSession, code: str, course_id: str, user_id: str) -> dict:
    """Pricing preview for a signed-in student; writes nothing"""
    coupon = await find_coupon(db, code)
    if not coupon:
        raise not_found("Coupon not found")

    applies = await coupon_applies_to_course(db, coupon, course_id)
    user_uses = await count_user_uses(db, coupon.id, user_id)
    reason = check_coupon(coupon, applies_to_course=applies, user_uses=user_uses)
    if reason:
        raise bad_request(rejection_message(reason))

    enrolled = await db.execute(
        select(Enrollment.id).where(Enrollment.user_id == user_id, Enrollment.course_id == course_id)
    )
    if enrolled.first():
        raise conflict("You are already enrolled in this course")

    course = await db.get(Course, course_id)
    if not course:
        raise not_found("Course not found")
    if course.is_free:
        raise bad_request("Coupons cannot be applied to free courses")

    pricing = price_breakdown(course.price, coupon)
    return {
        "success": True,
        "coupon": {"id": coupon.id, "code": coupon.code, "name": coupon.name},
        "pricing": pricing,
        "course": {"id": course.id, "title": course.title},
    }


async def get_user_coupon_history(db: AsyncSession, user_id: str, page: int, limit: int) -> dict:
    total = (
        await db.execute(select(func.count(CouponUsage.id)).where(CouponUsage.user_id == user_id))
    ).scalar_one()

    rows = await db.execute(
        select(CouponUsage, Coupon, Course)
        .join(Coupon, Coupon.id == CouponUsage.coupon_id)
        .outerjoin(Course, Course.id == CouponUsage.course_id)
        .where(CouponUsage.user_id == user_id)
        .order_by(CouponUsage.created_at.desc())
        .offset(page_offset(page, limit))
        .limit(limit)
    )

    history = []
    for usage, coupon, course in rows.all():
        item = serialize_row(usage)
        item["coupon"] = {
            "id": coupon.id,
            "code": coupon.code,
            "name": coupon.name,
            "discount_type": coupon.discount_type.value,
            "discount_value": float(coupon.discount_value),
        }
        item["course"] = {"id": course.id, "title": course.title, "slug": course.slug} if course else None
        history.append(item)

    return paginate(history, total, page, limit, key="coupon_usage")


def _usable_now(now: datetime):
    return and_(
        Coupon.is_active.is_(True),
        or_(Coupon.valid_from.is_(None), Coupon.valid_from <= now),
        or_(Coupon.valid_until.is_(None), Coupon.valid_until >= now),
        or_(Coupon.max_uses.is_(None), Coupon.used_count < Coupon.max_uses),
    )


async def get_available_coupons(db: AsyncSession, course_id: Optional[str] = None) -> dict:
    now = datetime.utcnow()

    global_rows = await db.execute(
        select(Coupon)
        .where(_usable_now(now), Coupon.is_global.is_(True))
        .order_by(Coupon.discount_value.desc())
    )
    global_coupons = [coupon_summary(c) for c in global_rows.scalars().all()]

    course_coupons = []
    if course_id:
        course_rows = await db.execute(
            select(Coupon)
            .join(CourseCoupon, CourseCoupon.coupon_id == Coupon.id)
            .where(_usable_now(now), Coupon.is_global.is_(False), CourseCoupon.course_id == course_id)
            .order_by(Coupon.discount_value.desc())
        )
        course_coupons = [coupon_summary(c) for c in course_rows.scalars().all()]

    return {
        "global_coupons": global_coupons,
        "course_specific_coupons": course_coupons,
        "total": len(global_coupons) + len(course_coupons),
    }


async def get_coupon_by_code(db: AsyncSession, code: str) -> dict:
    coupon = await find_coupon(db, code)
    if not coupon:
        raise not_found("Coupon not found")

    rows = await db.execute(
        select(Course)
        .join(CourseCoupon, CourseCoupon.course_id == Course.id)
        .where(CourseCoupon.coupon_id == coupon.id)
    )

    data = serialize_row(coupon, exclude=("created_by_id",))
    data["courses"] = [
        {"id": c.id, "title": c.title, "slug": c.slug, "price": float(c.price)} for c in rows.scalars().all()
    ]
    return data
