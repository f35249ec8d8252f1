"""
Payment API Router
Razorpay checkout for paid courses
"""

import logging
from typing import Optional

import razorpay
from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from coursehub.auth.dependencies import UserContext, get_current_user
from coursehub.core.errors import ApiError, internal
from coursehub.db.database import get_db
from coursehub.payments import payment_service as service
from coursehub.payments.payment_service import get_razorpay_client

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])


class CheckoutRequest(BaseModel):
    course_id: str
    coupon_code: Optional[str] = None


class PaymentVerifyRequest(BaseModel):
    razorpay_order_id: str
    razorpay_payment_id: str
    razorpay_signature: str


@router.post("/checkout", status_code=201)
async def checkout(
    data: CheckoutRequest,
    user: UserContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    client: razorpay.Client = Depends(get_razorpay_client),
):
    try:
        return await service.checkout(db, client, user.user_id, data.course_id, data.coupon_code)
    except ApiError:
        raise
    except Exception:
        logger.exception("Checkout failed for user %s, course %s", user.user_id, data.course_id)
        raise internal("Failed to start checkout")


@router.post("/verify")
async def verify_payment(
    data: PaymentVerifyRequest,
    user: UserContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    client: razorpay.Client = Depends(get_razorpay_client),
):
    """
    Verify the checkout signature returned to the browser and enroll.
    Calling it again for a verified payment is a no-op.
    """
    try:
        return await service.verify_payment(
            db,
            client,
            user.user_id,
            data.razorpay_order_id,
            data.razorpay_payment_id,
            data.razorpay_signature,
        )
    except ApiError:
        raise
    except Exception:
        logger.exception("Payment verification failed for %s", data.razorpay_order_id)
        raise internal("Failed to verify payment")


@router.post("/webhook")
async def razorpay_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    client: razorpay.Client = Depends(get_razorpay_client),
):
    """Razorpay webhook - no session, authenticated by X-Razorpay-Signature"""
    body = await request.body()
    try:
        return await service.handle_webhook(db, client, body, request.headers.get("X-Razorpay-Signature"))
    except ApiError:
        raise
    except Exception:
        logger.exception("Webhook processing failed")
        raise internal("Failed to process webhook")


@router.get("/orders")
async def get_my_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=50),
    user: UserContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await service.get_my_orders(db, user.user_id, page, limit)
