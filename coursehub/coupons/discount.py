"""
Coupon rules and price arithmetic

Pure functions only: callers load the coupon, usage counts and course
links, these decide whether the coupon applies and what it is worth.
"""

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from coursehub.db.models import DiscountType

CENT = Decimal("0.01")
HUNDRED = Decimal("100")

# reason -> (error message, public validation message)
REJECTIONS = {
    "inactive": ("Coupon is not active", "This coupon is no longer active"),
    "not_started": ("Coupon is not yet valid", "This coupon is not yet valid"),
    "expired": ("Coupon has expired", "This coupon has expired"),
    "exhausted": ("Coupon usage limit reached", "This coupon has reached its usage limit"),
    "user_limit": (
        "You have reached the usage limit for this coupon",
        "You have reached the usage limit for this coupon",
    ),
    "not_applicable": (
        "Coupon is not applicable to this course",
        "This coupon is not applicable to this course",
    ),
}


def to_money(value) -> Decimal:
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def calculate_discount(price, discount_type: DiscountType, discount_value) -> Decimal:
    """
    Discount for one course price

    PERCENTAGE: price * value / 100, value capped at 100
    FIXED_AMOUNT: min(value, price)
    """
    price = to_money(price)
    value = Decimal(str(discount_value))

    if price <= 0 or value <= 0:
        return to_money(0)

    if DiscountType(discount_type) == DiscountType.PERCENTAGE:
        discount = price * min(value, HUNDRED) / HUNDRED
    else:
        discount = min(value, price)

    return min(to_money(discount), price)


def final_price(price, discount) -> Decimal:
    return max(to_money(0), to_money(price) - to_money(discount))


def price_breakdown(price, coupon) -> dict:
    """Pricing summary returned by the discount endpoints"""
    original = to_money(price)
    discount = calculate_discount(original, coupon.discount_type, coupon.discount_value)
    final = final_price(original, discount)
    percentage = float(discount / original * HUNDRED) if original > 0 else 0.0

    return {
        "original_price": float(original),
        "discount_amount": float(discount),
        "final_price": float(final),
        "discount_percentage": round(percentage, 2),
        "savings": float(discount),
    }


def check_coupon(
    coupon,
    now: Optional[datetime] = None,
    applies_to_course: bool = True,
    user_uses: Optional[int] = None,
) -> Optional[str]:
    """
    Run the coupon checks in order and return the first failing reason

    Args:
        coupon: Coupon row
        now: Reference time (defaults to utcnow)
        applies_to_course: False when the coupon is course-scoped and the
            target course is not linked to it
        user_uses: Times the caller already used it (None skips the check)

    Returns:
        A key of REJECTIONS, or None when the coupon is usable
    """
    now = now or datetime.utcnow()

    if not coupon.is_active:
        return "inactive"
    if coupon.valid_from and coupon.valid_from > now:
        return "not_started"
    if coupon.valid_until and coupon.valid_until < now:
        return "expired"
    if coupon.max_uses is not None and coupon.used_count >= coupon.max_uses:
        return "exhausted"
    if user_uses is not None and coupon.max_uses_per_user is not None and user_uses >= coupon.max_uses_per_user:
        return "user_limit"
    if not coupon.is_global and not applies_to_course:
        return "not_applicable"
    return None


def rejection_message(reason: str, public: bool = False) -> str:
    return REJECTIONS[reason][1 if public else 0]
