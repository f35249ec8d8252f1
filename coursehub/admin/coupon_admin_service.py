from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from coursehub.admin.audit import log_audit
from coursehub.core.errors import bad_request, conflict, not_found
from coursehub.core.pagination import page_offset, paginate
from coursehub.core.serializers import serialize_row
from coursehub.coupons.coupon_service import coupon_applies_to_course, count_user_uses, find_coupon
from coursehub.coupons.discount import check_coupon, price_breakdown, rejection_message
from coursehub.db.models import Coupon, CouponUsage, Course, CourseCoupon, DiscountType, Enrollment, Order, User

USER_LIMIT_MESSAGE = "User usage limit reached for this coupon"


async def _ensure_code_available(db: AsyncSession, code: str, exclude_id: str = None) -> None:
    stmt = select(Coupon.id).where(Coupon.code == code)
    if exclude_id:
        stmt = stmt.where(Coupon.id != exclude_id)
    if (await db.execute(stmt)).first():
        raise conflict("A coupon with this code already exists")


async def _ensure_courses_exist(db: AsyncSession, course_ids: List[str]) -> None:
    unique_ids = set(course_ids)
    found = (await db.execute(select(func.count(Course.id)).where(Course.id.in_(unique_ids)))).scalar_one()
    if found != len(unique_ids):
        raise bad_request("One or more courses not found")


async def _linked_courses(db: AsyncSession, coupon_id: str, with_price: bool = False) -> list:
    rows = await db.execute(
        select(Course)
        .join(CourseCoupon, CourseCoupon.course_id == Course.id)
        .where(CourseCoupon.coupon_id == coupon_id)
        .order_by(Course.title)
    )
    courses = []
    for course in rows.scalars().all():
        item = {"id": course.id, "title": course.title, "slug": course.slug}
        if with_price:
            item["price"] = float(course.price)
        courses.append(item)
    return courses


async def _counts(db: AsyncSession, coupon_id: str) -> dict:
    enrollments = (
        await db.execute(select(func.count(Enrollment.id)).where(Enrollment.applied_coupon_id == coupon_id))
    ).scalar_one()
    usages = (
        await db.execute(select(func.count(CouponUsage.id)).where(CouponUsage.coupon_id == coupon_id))
    ).scalar_one()
    links = (
        await db.execute(select(func.count(CourseCoupon.id)).where(CourseCoupon.coupon_id == coupon_id))
    ).scalar_one()
    return {"enrollments": enrollments, "coupon_usage": usages, "course_coupons": links}


# ==================== MUTATIONS ====================

async def create_coupon(db: AsyncSession, admin, data: dict) -> dict:
    await _ensure_code_available(db, data["code"])

    course_ids = data.pop("course_ids", None) or []
    if course_ids:
        await _ensure_courses_exist(db, course_ids)

    coupon = Coupon(
        **{
            **data,
            "discount_value": Decimal(str(data["discount_value"])),
            "valid_from": data.get("valid_from") or datetime.utcnow(),
            "created_by_id": admin.admin_id,
        }
    )
    db.add(coupon)
    await db.flush()

    for course_id in set(course_ids):
        db.add(CourseCoupon(coupon_id=coupon.id, course_id=course_id))

    log_audit(db, admin, "CREATE_COUPON", "COUPON", coupon.id, {
        "coupon_code": coupon.code,
        "discount_type": coupon.discount_type.value,
        "discount_value": float(coupon.discount_value),
        "course_count": len(set(course_ids)),
    })
    await db.commit()

    result = serialize_row(coupon)
    result["courses"] = await _linked_courses(db, coupon.id)
    return result


async def update_coupon(db: AsyncSession, admin, coupon_id: str, updates: dict) -> dict:
    coupon = await db.get(Coupon, coupon_id)
    if not coupon:
        raise not_found("Coupon not found")

    if "code" in updates and updates["code"] != coupon.code:
        await _ensure_code_available(db, updates["code"], exclude_id=coupon.id)

    # Cross-field rules checked against the merged state
    discount_type = updates.get("discount_type", coupon.discount_type)
    discount_value = updates.get("discount_value", coupon.discount_value)
    if discount_type == DiscountType.PERCENTAGE and Decimal(str(discount_value)) > 100:
        raise bad_request("Percentage discount cannot exceed 100%")

    valid_from = updates.get("valid_from", coupon.valid_from)
    valid_until = updates.get("valid_until", coupon.valid_until)
    if valid_from and valid_until and valid_from >= valid_until:
        raise bad_request("Valid until date must be after valid from date")

    course_ids = updates.pop("course_ids", None)
    if course_ids:
        await _ensure_courses_exist(db, course_ids)

    if "discount_value" in updates:
        updates["discount_value"] = Decimal(str(updates["discount_value"]))
    for field, value in updates.items():
        setattr(coupon, field, value)

    if course_ids is not None:
        await db.execute(delete(CourseCoupon).where(CourseCoupon.coupon_id == coupon.id))
        for course_id in set(course_ids):
            db.add(CourseCoupon(coupon_id=coupon.id, course_id=course_id))

    changes = sorted(updates.keys()) + (["course_ids"] if course_ids is not None else [])
    log_audit(db, admin, "UPDATE_COUPON", "COUPON", coupon.id, {
        "coupon_code": coupon.code,
        "changes": changes,
    })
    await db.commit()

    result = serialize_row(coupon)
    result["courses"] = await _linked_courses(db, coupon.id)
    return result


async def delete_coupon(db: AsyncSession, admin, coupon_id: str) -> dict:
    coupon = await db.get(Coupon, coupon_id)
    if not coupon:
        raise not_found("Coupon not found")

    usage_count = (
        await db.execute(select(func.count(CouponUsage.id)).where(CouponUsage.coupon_id == coupon_id))
    ).scalar_one()
    order_count = (
        await db.execute(select(func.count(Order.id)).where(Order.coupon_id == coupon_id))
    ).scalar_one()
    if usage_count > 0 or order_count > 0 or coupon.used_count > 0:
        raise conflict("Cannot delete coupon that has been used. Deactivate it instead.")

    await db.delete(coupon)
    log_audit(db, admin, "DELETE_COUPON", "COUPON", coupon_id, {
        "coupon_code": coupon.code,
    })
    await db.commit()
    return {"success": True}


async def deactivate_expired_coupons(db: AsyncSession, admin) -> dict:
    result = await db.execute(
        update(Coupon)
        .where(Coupon.valid_until < datetime.utcnow(), Coupon.is_active.is_(True))
        .values(is_active=False)
        .execution_options(synchronize_session=False)
    )
    deactivated = result.rowcount or 0

    log_audit(db, admin, "DEACTIVATE_EXPIRED_COUPONS", "COUPON", None, {
        "deactivated_count": deactivated,
    })
    await db.commit()
    return {"success": True, "deactivated_count": deactivated}


# ==================== QUERIES ====================

async def get_coupons(
    db: AsyncSession,
    page: int,
    limit: int,
    search: Optional[str] = None,
    is_active: Optional[bool] = None,
    is_global: Optional[bool] = None,
    discount_type: Optional[DiscountType] = None,
) -> dict:
    filters = []
    if search:
        pattern = f"%{search.lower()}%"
        filters.append(or_(func.lower(Coupon.code).like(pattern), func.lower(Coupon.name).like(pattern)))
    if is_active is not None:
        filters.append(Coupon.is_active.is_(is_active))
    if is_global is not None:
        filters.append(Coupon.is_global.is_(is_global))
    if discount_type:
        filters.append(Coupon.discount_type == discount_type)

    total = (await db.execute(select(func.count(Coupon.id)).where(*filters))).scalar_one()
    rows = await db.execute(
        select(Coupon)
        .where(*filters)
        .order_by(Coupon.created_at.desc())
        .offset(page_offset(page, limit))
        .limit(limit)
    )

    coupons = []
    for coupon in rows.scalars().all():
        item = serialize_row(coupon)
        item["counts"] = await _counts(db, coupon.id)
        item["courses"] = await _linked_courses(db, coupon.id)
        coupons.append(item)

    return paginate(coupons, total, page, limit, key="coupons")


async def get_coupon(db: AsyncSession, coupon_id: str) -> dict:
    coupon = await db.get(Coupon, coupon_id)
    if not coupon:
        raise not_found("Coupon not found")

    usages = await db.execute(
        select(CouponUsage, User)
        .join(User, User.id == CouponUsage.user_id)
        .where(CouponUsage.coupon_id == coupon_id)
        .order_by(CouponUsage.created_at.desc())
        .limit(10)
    )

    data = serialize_row(coupon)
    data["counts"] = await _counts(db, coupon.id)
    data["courses"] = await _linked_courses(db, coupon.id, with_price=True)
    data["recent_usage"] = [
        {**serialize_row(usage), "user": {"id": user.id, "name": user.name, "email": user.email}}
        for usage, user in usages.all()
    ]
    return data


async def validate_coupon_for_user(db: AsyncSession, code: str, user_id: str, course_id: Optional[str]) -> dict:
    """Admin-side check including the target user's own usage"""
    coupon = await find_coupon(db, code)
    if not coupon:
        return {"valid": False, "error": "Coupon not found"}

    applies = await coupon_applies_to_course(db, coupon, course_id) if course_id else True
    user_uses = await count_user_uses(db, coupon.id, user_id)
    reason = check_coupon(coupon, applies_to_course=applies, user_uses=user_uses)
    if reason == "user_limit":
        return {"valid": False, "error": USER_LIMIT_MESSAGE}
    if reason:
        return {"valid": False, "error": rejection_message(reason)}

    return {
        "valid": True,
        "coupon": {
            "id": coupon.id,
            "code": coupon.code,
            "name": coupon.name,
            "discount_type": coupon.discount_type.value,
            "discount_value": float(coupon.discount_value),
            "is_global": coupon.is_global,
        },
    }


async def calculate_discount(db: AsyncSession, coupon_id: str, original_price: float) -> dict:
    coupon = await db.get(Coupon, coupon_id)
    if not coupon:
        raise not_found("Coupon not found")

    breakdown = price_breakdown(original_price, coupon)
    breakdown.pop("savings")
    return breakdown


async def get_coupon_stats(db: AsyncSession) -> dict:
    now = datetime.utcnow()

    async def count(*filters):
        return (await db.execute(select(func.count(Coupon.id)).where(*filters))).scalar_one()

    total = await count()
    active = await count(Coupon.is_active.is_(True))
    expired = await count(Coupon.valid_until < now, Coupon.is_active.is_(True))
    global_coupons = await count(Coupon.is_global.is_(True))
    total_usage = (await db.execute(select(func.count(CouponUsage.id)))).scalar_one()

    top = await db.execute(select(Coupon).order_by(Coupon.used_count.desc()).limit(5))

    return {
        "total_coupons": total,
        "active_coupons": active,
        "inactive_coupons": total - active,
        "expired_coupons": expired,
        "total_usage": total_usage,
        "global_coupons": global_coupons,
        "course_specific_coupons": total - global_coupons,
        "top_coupons": [
            {
                "id": c.id,
                "code": c.code,
                "name": c.name,
                "used_count": c.used_count,
                "discount_type": c.discount_type.value,
                "discount_value": float(c.discount_value),
            }
            for c in top.scalars().all()
        ],
    }
