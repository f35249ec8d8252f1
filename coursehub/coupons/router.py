"""
Storefront coupon endpoints
Validation and price previews; redemption happens at enrollment or checkout
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from coursehub.auth.dependencies import UserContext, get_current_user
from coursehub.core.errors import ApiError, internal
from coursehub.coupons import coupon_service as service
from coursehub.db.database import get_db

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/coupons", tags=["Coupons"])


class CalculateDiscountRequest(BaseModel):
    coupon_code: str = Field(..., min_length=1)
    course_id: str
    original_price: float = Field(..., ge=0)


class ApplyCouponRequest(BaseModel):
    code: str = Field(..., min_length=1)
    course_id: str


@router.get("/validate")
async def validate_coupon(
    code: str = Query(..., min_length=1),
    course_id: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
):
    try:
        return await service.validate_coupon(db, code, course_id)
    except Exception:
        logger.exception("Coupon validation failed")
        raise internal("Failed to validate coupon")


@router.post("/calculate")
async def calculate_discount(data: CalculateDiscountRequest, db: AsyncSession = Depends(get_db)):
    try:
        return await service.calculate_discount_for_code(db, data.coupon_code, data.course_id, data.original_price)
    except ApiError:
        raise
    except Exception:
        logger.exception("Discount calculation failed")
        raise internal("Failed to calculate discount")


@router.post("/apply")
async def apply_coupon(
    data: ApplyCouponRequest,
    current: UserContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await service.apply_coupon(db, data.code, data.course_id, current.user_id)
    except ApiError:
        raise
    except Exception:
        logger.exception("Applying coupon failed")
        raise internal("Failed to apply coupon")


@router.get("/history")
async def get_user_coupon_history(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=50),
    current: UserContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await service.get_user_coupon_history(db, current.user_id, page, limit)


@router.get("/available")
async def get_available_coupons(course_id: Optional[str] = None, db: AsyncSession = Depends(get_db)):
    return await service.get_available_coupons(db, course_id)


@router.get("/code/{code}")
async def get_coupon_by_code(code: str, db: AsyncSession = Depends(get_db)):
    return await service.get_coupon_by_code(db, code)
