"""
Razorpay checkout for paid courses

Flow:
    checkout -> PENDING Order + OrderItem + PENDING Payment + Razorpay order
    verify (frontend) or payment.captured (webhook) -> Payment SUCCESS,
    Order PAID, enrollment created, coupon consumed
    payment.failed (webhook) -> Payment/Order FAILED

Capture is idempotent: whichever of verify/webhook arrives second is a no-op.
"""

import hashlib
import hmac
import json
import logging
from decimal import Decimal
from typing import Optional

import razorpay
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from coursehub.config import settings
from coursehub.core.errors import ApiError, bad_request, not_found
from coursehub.core.pagination import page_offset, paginate
from coursehub.core.serializers import serialize_row
from coursehub.coupons.coupon_service import consume_coupon, resolve_coupon_for_course
from coursehub.coupons.discount import final_price, to_money
from coursehub.db.models import (
    Coupon,
    Course,
    Order,
    OrderItem,
    OrderStatus,
    Payment,
    PaymentMethod,
    PaymentStatus,
)
from coursehub.students.enrollment_service import (
    create_enrollment,
    ensure_not_enrolled,
    find_enrollment,
    get_enrollable_course,
)

logger = logging.getLogger(__name__)

_razorpay_client: Optional[razorpay.Client] = None


def get_razorpay_client() -> razorpay.Client:
    """Shared Razorpay client, created on first use"""
    global _razorpay_client
    if _razorpay_client is None:
        _razorpay_client = razorpay.Client(
            auth=(settings.require("RAZORPAY_KEY_ID"), settings.require("RAZORPAY_KEY_SECRET"))
        )
    return _razorpay_client


def to_minor_units(amount: Decimal) -> int:
    """Razorpay amounts are integers in the smallest currency unit"""
    return int(to_money(amount) * 100)


def verify_razorpay_signature(order_id: str, payment_id: str, signature: str) -> bool:
    """Verify Razorpay payment signature"""
    message = f"{order_id}|{payment_id}"
    generated_signature = hmac.new(
        settings.require("RAZORPAY_KEY_SECRET").encode(),
        message.encode(),
        hashlib.sha256,
    ).hexdigest()
    return hmac.compare_digest(generated_signature, signature or "")


# ==================== CHECKOUT ====================

async def checkout(
    db: AsyncSession,
    client: razorpay.Client,
    user_id: str,
    course_id: str,
    coupon_code: Optional[str] = None,
) -> dict:
    """
    Raises:
        409: Already enrolled
        404: Course or coupon not found
        400: Unpublished/free course, rejected coupon, or nothing left to pay
    """
    await ensure_not_enrolled(db, user_id, course_id)
    course = await get_enrollable_course(db, course_id)

    if course.is_free:
        raise bad_request("This course is free. Enroll directly.")

    coupon, discount = None, Decimal("0")
    if coupon_code:
        coupon, discount = await resolve_coupon_for_course(db, coupon_code, course, user_id)

    price = to_money(course.price)
    amount = final_price(price, discount)
    if amount <= 0:
        raise bad_request("Nothing to pay for this course. Enroll directly.")

    currency = settings.DEFAULT_CURRENCY
    order = Order(
        user_id=user_id,
        total=amount,
        currency=currency,
        status=OrderStatus.PENDING,
        coupon_id=coupon.id if coupon else None,
    )
    db.add(order)
    await db.flush()
    # amount charged for the course, after any coupon
    db.add(OrderItem(order_id=order.id, course_id=course.id, price=amount))

    razorpay_order = client.order.create(data={
        "amount": to_minor_units(amount),
        "currency": currency,
        "receipt": order.id,
        "notes": {"order_id": order.id, "user_id": user_id, "course_id": course.id},
    })

    db.add(
        Payment(
            order_id=order.id,
            amount=amount,
            method=PaymentMethod.CARD,
            status=PaymentStatus.PENDING,
            provider_id=razorpay_order["id"],
            provider_data={"course_id": course.id, "discount_amount": str(discount)},
        )
    )
    await db.commit()
    logger.info("Checkout %s created for user %s, course %s (%s %s)", order.id, user_id, course.id, amount, currency)

    return {
        "order_id": order.id,
        "razorpay_order_id": razorpay_order["id"],
        "amount": float(amount),
        "original_price": float(price),
        "discount_amount": float(discount),
        "currency": currency,
        "key_id": settings.RAZORPAY_KEY_ID,
        "course": {"id": course.id, "title": course.title},
    }


# ==================== CAPTURE ====================

async def _find_payment(db: AsyncSession, razorpay_order_id: str) -> Optional[Payment]:
    result = await db.execute(select(Payment).where(Payment.provider_id == razorpay_order_id))
    return result.scalar_one_or_none()


async def capture_payment(db: AsyncSession, payment: Payment, razorpay_payment_id: str, source: str) -> Order:
    """
    Mark the payment captured and enroll the buyer in one transaction

    Safe to call twice for the same payment.
    """
    order = await db.get(Order, payment.order_id)
    if payment.status == PaymentStatus.SUCCESS:
        return order

    payment.status = PaymentStatus.SUCCESS
    payment.provider_data = {
        **(payment.provider_data or {}),
        "razorpay_payment_id": razorpay_payment_id,
        "verified_via": source,
    }
    order.status = OrderStatus.PAID

    items = (await db.execute(select(OrderItem).where(OrderItem.order_id == order.id))).scalars().all()
    coupon = await db.get(Coupon, order.coupon_id) if order.coupon_id else None
    discount = Decimal((payment.provider_data or {}).get("discount_amount", "0"))

    for item in items:
        if await find_enrollment(db, order.user_id, item.course_id):
            continue
        course = await db.get(Course, item.course_id)
        try:
            await create_enrollment(db, order.user_id, course, coupon, discount)
        except ApiError as e:
            # coupon ran out between checkout and capture; the buyer already paid
            logger.warning("Coupon not recorded for order %s: %s", order.id, e.message)
            await create_enrollment(db, order.user_id, course)

    await db.commit()
    logger.info("Order %s paid via %s (payment %s)", order.id, source, razorpay_payment_id)
    return order


async def verify_payment(
    db: AsyncSession,
    client: razorpay.Client,
    user_id: str,
    razorpay_order_id: str,
    razorpay_payment_id: str,
    razorpay_signature: str,
) -> dict:
    payment = await _find_payment(db, razorpay_order_id)
    order = await db.get(Order, payment.order_id) if payment else None
    if not payment or order.user_id != user_id:
        raise not_found("Payment record not found")

    if payment.status == PaymentStatus.SUCCESS:
        return {"success": True, "message": "Payment already verified", "order_id": order.id, "already_verified": True}

    if not verify_razorpay_signature(razorpay_order_id, razorpay_payment_id, razorpay_signature):
        raise bad_request("Invalid payment signature")

    try:
        details = client.payment.fetch(razorpay_payment_id)
    except razorpay.errors.BadRequestError as e:
        raise bad_request(f"Invalid payment ID: {e}")

    if details.get("order_id") != razorpay_order_id:
        raise bad_request("Payment order_id mismatch")
    if details.get("amount") != to_minor_units(payment.amount):
        raise bad_request(
            f"Payment amount mismatch. Expected {to_minor_units(payment.amount)}, got {details.get('amount')}"
        )
    if details.get("status") not in ("captured", "authorized"):
        raise bad_request(f"Payment not captured. Status: {details.get('status')}")

    order = await capture_payment(db, payment, razorpay_payment_id, "frontend")
    return {"success": True, "message": "Payment verified", "order_id": order.id, "already_verified": False}


async def handle_webhook(db: AsyncSession, client: razorpay.Client, body: bytes, signature: Optional[str]) -> dict:
    """Razorpay webhook, authenticated by its signature only"""
    if not signature:
        raise bad_request("Missing signature")

    try:
        client.utility.verify_webhook_signature(
            body.decode(), signature, settings.require("RAZORPAY_WEBHOOK_SECRET")
        )
    except razorpay.errors.SignatureVerificationError:
        logger.warning("Webhook signature verification failed")
        raise bad_request("Invalid signature")

    event_data = json.loads(body)
    event = event_data.get("event")
    entity = event_data.get("payload", {}).get("payment", {}).get("entity", {})
    razorpay_order_id = entity.get("order_id")

    payment = await _find_payment(db, razorpay_order_id) if razorpay_order_id else None
    if not payment:
        logger.warning("Webhook %s: payment record not found for order %s", event, razorpay_order_id)
        return {"status": "ok"}

    if event == "payment.captured":
        if entity.get("amount") != to_minor_units(payment.amount):
            logger.error("Webhook: amount mismatch for %s", razorpay_order_id)
            return {"status": "error", "message": "Amount mismatch"}
        await capture_payment(db, payment, entity.get("id"), "webhook")

    elif event == "payment.failed" and payment.status != PaymentStatus.SUCCESS:
        order = await db.get(Order, payment.order_id)
        payment.status = PaymentStatus.FAILED
        payment.provider_data = {
            **(payment.provider_data or {}),
            "failure_reason": entity.get("error_description"),
        }
        order.status = OrderStatus.FAILED
        await db.commit()
        logger.info("Webhook: payment failed for order %s", order.id)

    return {"status": "ok"}


# ==================== ORDERS ====================

async def get_my_orders(db: AsyncSession, user_id: str, page: int, limit: int) -> dict:
    total = (await db.execute(select(func.count(Order.id)).where(Order.user_id == user_id))).scalar_one()
    orders = (
        await db.execute(
            select(Order)
            .where(Order.user_id == user_id)
            .order_by(Order.created_at.desc())
            .offset(page_offset(page, limit))
            .limit(limit)
        )
    ).scalars().all()

    order_ids = [order.id for order in orders]
    items_by_order = {order_id: [] for order_id in order_ids}
    payments_by_order = {order_id: [] for order_id in order_ids}
    if order_ids:
        items = await db.execute(
            select(OrderItem, Course)
            .join(Course, Course.id == OrderItem.course_id)
            .where(OrderItem.order_id.in_(order_ids))
        )
        for item, course in items.all():
            items_by_order[item.order_id].append(
                {**serialize_row(item), "course": {"id": course.id, "title": course.title, "slug": course.slug}}
            )

        payments = await db.execute(select(Payment).where(Payment.order_id.in_(order_ids)))
        for payment in payments.scalars().all():
            payments_by_order[payment.order_id].append(serialize_row(payment, exclude=("provider_data",)))

    results = [
        {**serialize_row(order), "items": items_by_order[order.id], "payments": payments_by_order[order.id]}
        for order in orders
    ]
    return paginate(results, total, page, limit, key="orders")
