import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from coursehub.admin import coupon_admin_service as service
from coursehub.admin.schemas import AdminCouponValidate, AdminDiscountCalculate, CouponCreate, CouponUpdate
from coursehub.auth.dependencies import AdminContext, get_current_admin, get_current_super_admin
from coursehub.core.errors import ApiError, internal
from coursehub.db.database import get_db
from coursehub.db.models import DiscountType

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/coupons", tags=["Admin Coupons"])


@router.post("", status_code=201)
async def create_coupon(
    data: CouponCreate,
    admin: AdminContext = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await service.create_coupon(db, admin, data.dict())
    except ApiError:
        raise
    except Exception:
        logger.exception("Failed to create coupon")
        raise internal("Failed to create coupon")


@router.get("")
async def get_coupons(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: Optional[str] = None,
    is_active: Optional[bool] = None,
    is_global: Optional[bool] = None,
    discount_type: Optional[DiscountType] = None,
    admin: AdminContext = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    return await service.get_coupons(db, page, limit, search, is_active, is_global, discount_type)


@router.get("/stats")
async def get_coupon_stats(
    admin: AdminContext = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    return await service.get_coupon_stats(db)


@router.post("/validate")
async def validate_coupon(
    data: AdminCouponValidate,
    admin: AdminContext = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    return await service.validate_coupon_for_user(db, data.code, data.user_id, data.course_id)


@router.post("/calculate")
async def calculate_discount(
    data: AdminDiscountCalculate,
    admin: AdminContext = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    return await service.calculate_discount(db, data.coupon_id, data.original_price)


@router.post("/deactivate-expired")
async def deactivate_expired_coupons(
    admin: AdminContext = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await service.deactivate_expired_coupons(db, admin)
    except Exception:
        logger.exception("Failed to deactivate expired coupons")
        raise internal("Failed to deactivate expired coupons")


@router.get("/{coupon_id}")
async def get_coupon(
    coupon_id: str,
    admin: AdminContext = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    """Coupon with linked courses and its ten most recent usages"""
    return await service.get_coupon(db, coupon_id)


@router.patch("/{coupon_id}")
async def update_coupon(
    coupon_id: str,
    data: CouponUpdate,
    admin: AdminContext = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await service.update_coupon(db, admin, coupon_id, data.dict(exclude_none=True))
    except ApiError:
        raise
    except Exception:
        logger.exception("Failed to update coupon %s", coupon_id)
        raise internal("Failed to update coupon")


@router.delete("/{coupon_id}")
async def delete_coupon(
    coupon_id: str,
    admin: AdminContext = Depends(get_current_super_admin),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await service.delete_coupon(db, admin, coupon_id)
    except ApiError:
        raise
    except Exception:
        logger.exception("Failed to delete coupon %s", coupon_id)
        raise internal("Failed to delete coupon")
