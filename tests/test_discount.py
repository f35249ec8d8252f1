from datetime import datetime, timedelta
from decimal import Decimal
from types import SimpleNamespace

import pytest

from coursehub.coupons.discount import (
    calculate_discount,
    check_coupon,
    final_price,
    price_breakdown,
    rejection_message,
)
from coursehub.db.models import DiscountType


def make_coupon(**overrides):
    values = {
        "is_active": True,
        "valid_from": None,
        "valid_until": None,
        "max_uses": None,
        "used_count": 0,
        "max_uses_per_user": None,
        "is_global": True,
        "discount_type": DiscountType.PERCENTAGE,
        "discount_value": Decimal("20"),
    }
    values.update(overrides)
    return SimpleNamespace(**values)


@pytest.mark.parametrize(
    "price, discount_type, value, expected",
    [
        ("100.00", DiscountType.PERCENTAGE, "20", "20.00"),
        ("99.99", DiscountType.PERCENTAGE, "20", "20.00"),
        ("100.00", DiscountType.PERCENTAGE, "150", "100.00"),
        ("100.00", DiscountType.FIXED_AMOUNT, "30", "30.00"),
        ("100.00", DiscountType.FIXED_AMOUNT, "150", "100.00"),
        ("0", DiscountType.PERCENTAGE, "50", "0.00"),
    ],
)
def test_calculate_discount(price, discount_type, value, expected):
    assert calculate_discount(Decimal(price), discount_type, value) == Decimal(expected)


def test_final_price_never_negative():
    assert final_price(Decimal("40"), Decimal("50")) == Decimal("0.00")
    assert final_price(Decimal("100"), Decimal("20")) == Decimal("80.00")


def test_price_breakdown():
    breakdown = price_breakdown(99.99, make_coupon())

    assert breakdown["original_price"] == 99.99
    assert breakdown["discount_amount"] == 20.0
    assert breakdown["final_price"] == 79.99
    assert breakdown["savings"] == breakdown["discount_amount"]
    assert breakdown["discount_percentage"] == 20.0


def test_price_breakdown_free_course():
    breakdown = price_breakdown(0, make_coupon())
    assert breakdown["final_price"] == 0.0
    assert breakdown["discount_percentage"] == 0.0


def test_check_coupon_accepts_usable_coupon():
    assert check_coupon(make_coupon()) is None


def test_check_coupon_reasons_in_order():
    now = datetime(2024, 6, 1)

    assert check_coupon(make_coupon(is_active=False, used_count=5, max_uses=5), now=now) == "inactive"
    assert check_coupon(make_coupon(valid_from=now + timedelta(days=1)), now=now) == "not_started"
    assert check_coupon(make_coupon(valid_until=now - timedelta(seconds=1)), now=now) == "expired"
    assert check_coupon(make_coupon(max_uses=5, used_count=5), now=now) == "exhausted"
    assert check_coupon(make_coupon(max_uses_per_user=1), now=now, user_uses=1) == "user_limit"
    assert check_coupon(make_coupon(is_global=False), now=now, applies_to_course=False) == "not_applicable"


def test_user_limit_skipped_without_usage_count():
    assert check_coupon(make_coupon(max_uses_per_user=1)) is None


def test_rejection_messages():
    assert rejection_message("expired") == "Coupon has expired"
    assert rejection_message("expired", public=True) == "This coupon has expired"
