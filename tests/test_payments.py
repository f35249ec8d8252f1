import hashlib
import hmac
import json
from types import SimpleNamespace

import pytest
import razorpay
from sqlalchemy import select

from coursehub.db.models import (
    Coupon,
    CouponUsage,
    Enrollment,
    Order,
    OrderItem,
    OrderStatus,
    Payment,
    PaymentStatus,
)
from coursehub.main import app
from coursehub.payments.payment_service import get_razorpay_client, to_minor_units, verify_razorpay_signature
from factories import auth_headers, create_coupon, create_course, create_user


class StubRazorpay:
    """Just enough of razorpay.Client for checkout, verify and webhooks"""

    def __init__(self):
        self.created_orders = []
        self.payments = {}
        self.webhook_valid = True
        self.order = SimpleNamespace(create=self._create_order)
        self.payment = SimpleNamespace(fetch=self._fetch_payment)
        self.utility = SimpleNamespace(verify_webhook_signature=self._verify_webhook)

    def _create_order(self, data):
        order = {"id": f"order_RZP{len(self.created_orders) + 1}", "status": "created", **data}
        self.created_orders.append(order)
        return order

    def _fetch_payment(self, payment_id):
        if payment_id not in self.payments:
            raise razorpay.errors.BadRequestError("The id provided does not exist")
        return self.payments[payment_id]

    def _verify_webhook(self, body, signature, secret):
        if not self.webhook_valid:
            raise razorpay.errors.SignatureVerificationError("Razorpay Signature Verification Failed")
        return True

    def captured(self, payment_id, order_id, amount, status="captured"):
        self.payments[payment_id] = {"id": payment_id, "order_id": order_id, "amount": amount, "status": status}


@pytest.fixture
def razorpay_stub(client):
    stub = StubRazorpay()
    app.dependency_overrides[get_razorpay_client] = lambda: stub
    return stub


def sign(order_id, payment_id):
    return hmac.new(b"rzp_test_secret", f"{order_id}|{payment_id}".encode(), hashlib.sha256).hexdigest()


async def checkout(client, headers, course_id, coupon_code=None):
    response = await client.post(
        "/payments/checkout", json={"course_id": course_id, "coupon_code": coupon_code}, headers=headers
    )
    assert response.status_code == 201, response.text
    return response.json()


async def verify(client, headers, razorpay_order_id, payment_id="pay_1", signature=None):
    return await client.post(
        "/payments/verify",
        json={
            "razorpay_order_id": razorpay_order_id,
            "razorpay_payment_id": payment_id,
            "razorpay_signature": signature or sign(razorpay_order_id, payment_id),
        },
        headers=headers,
    )


def test_signature_helpers():
    assert to_minor_units(79.99) == 7999
    assert verify_razorpay_signature("order_1", "pay_1", sign("order_1", "pay_1"))
    assert not verify_razorpay_signature("order_1", "pay_1", "bad")
    assert not verify_razorpay_signature("order_1", "pay_1", None)


# ==================== CHECKOUT ====================

async def test_checkout_creates_pending_order(client, session_factory, db, razorpay_stub, student, professor, category):
    course = await create_course(db, professor, category, price="100.00")

    result = await checkout(client, auth_headers(student), course.id)

    assert result["amount"] == 100.0
    assert result["currency"] == "EGP"
    assert result["key_id"] == "rzp_test_key"
    assert result["razorpay_order_id"] == "order_RZP1"
    sent = razorpay_stub.created_orders[0]
    assert sent["amount"] == 10000
    assert sent["receipt"] == result["order_id"]

    async with session_factory() as session:
        order = await session.get(Order, result["order_id"])
        assert order.status == OrderStatus.PENDING
        payment = (await session.execute(select(Payment))).scalar_one()
        assert payment.status == PaymentStatus.PENDING
        assert payment.provider_id == "order_RZP1"


async def test_checkout_free_course(client, db, razorpay_stub, student, professor, category):
    course = await create_course(db, professor, category, price="0")

    response = await client.post("/payments/checkout", json={"course_id": course.id}, headers=auth_headers(student))

    assert response.status_code == 400
    assert response.json()["error"]["message"] == "This course is free. Enroll directly."


async def test_checkout_fully_discounted(client, db, razorpay_stub, student, professor, category):
    course = await create_course(db, professor, category, price="100.00")
    await create_coupon(db, code="ALLFREE", discount_value="100")

    response = await client.post(
        "/payments/checkout", json={"course_id": course.id, "coupon_code": "ALLFREE"}, headers=auth_headers(student)
    )

    assert response.status_code == 400
    assert response.json()["error"]["message"] == "Nothing to pay for this course. Enroll directly."
    assert razorpay_stub.created_orders == []


async def test_checkout_when_enrolled(client, db, razorpay_stub, student, professor, category):
    course = await create_course(db, professor, category, price="0")
    headers = auth_headers(student)
    await client.post("/student/enroll", json={"course_id": course.id}, headers=headers)

    response = await client.post("/payments/checkout", json={"course_id": course.id}, headers=headers)
    assert response.status_code == 409


# ==================== VERIFY ====================

async def test_verify_enrolls_buyer(client, session_factory, db, razorpay_stub, student, professor, category):
    course = await create_course(db, professor, category, price="100.00", lessons=2)
    headers = auth_headers(student)
    result = await checkout(client, headers, course.id)
    razorpay_stub.captured("pay_1", result["razorpay_order_id"], 10000)

    response = await verify(client, headers, result["razorpay_order_id"])

    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "message": "Payment verified",
        "order_id": result["order_id"],
        "already_verified": False,
    }

    again = await verify(client, headers, result["razorpay_order_id"])
    assert again.json()["already_verified"] is True

    async with session_factory() as session:
        order = await session.get(Order, result["order_id"])
        assert order.status == OrderStatus.PAID
        payment = (await session.execute(select(Payment))).scalar_one()
        assert payment.status == PaymentStatus.SUCCESS
        assert payment.provider_data["razorpay_payment_id"] == "pay_1"
        assert payment.provider_data["verified_via"] == "frontend"
        enrollments = (await session.execute(select(Enrollment))).scalars().all()
        assert [(e.user_id, e.course_id) for e in enrollments] == [(student.id, course.id)]

    progress = await client.get(f"/student/courses/{course.id}/progress", headers=headers)
    assert len(progress.json()["lessons"]) == 2


async def test_verify_rejects_bad_signature(client, db, razorpay_stub, student, professor, category):
    course = await create_course(db, professor, category)
    headers = auth_headers(student)
    result = await checkout(client, headers, course.id)

    response = await verify(client, headers, result["razorpay_order_id"], signature="forged")

    assert response.status_code == 400
    assert response.json()["error"]["message"] == "Invalid payment signature"


async def test_verify_rejects_amount_mismatch(client, db, razorpay_stub, student, professor, category):
    course = await create_course(db, professor, category, price="100.00")
    headers = auth_headers(student)
    result = await checkout(client, headers, course.id)
    razorpay_stub.captured("pay_1", result["razorpay_order_id"], 100)

    response = await verify(client, headers, result["razorpay_order_id"])

    assert response.status_code == 400
    assert response.json()["error"]["message"] == "Payment amount mismatch. Expected 10000, got 100"


async def test_verify_rejects_uncaptured_payment(client, db, razorpay_stub, student, professor, category):
    course = await create_course(db, professor, category, price="100.00")
    headers = auth_headers(student)
    result = await checkout(client, headers, course.id)
    razorpay_stub.captured("pay_1", result["razorpay_order_id"], 10000, status="failed")

    response = await verify(client, headers, result["razorpay_order_id"])

    assert response.status_code == 400
    assert response.json()["error"]["message"] == "Payment not captured. Status: failed"


async def test_verify_other_users_order(client, db, razorpay_stub, student, professor, category):
    course = await create_course(db, professor, category)
    result = await checkout(client, auth_headers(student), course.id)
    intruder = await create_user(db)

    response = await verify(client, auth_headers(intruder), result["razorpay_order_id"])

    assert response.status_code == 404
    assert response.json()["error"]["message"] == "Payment record not found"


async def test_paid_coupon_is_consumed_on_capture(client, session_factory, db, razorpay_stub, student, professor, category):
    course = await create_course(db, professor, category, price="100.00")
    coupon = await create_coupon(db, code="SAVE20")
    headers = auth_headers(student)

    result = await checkout(client, headers, course.id, coupon_code="SAVE20")
    assert result["amount"] == 80.0
    assert result["discount_amount"] == 20.0

    async with session_factory() as session:
        assert (await session.get(Coupon, coupon.id)).used_count == 0

    razorpay_stub.captured("pay_1", result["razorpay_order_id"], 8000)
    assert (await verify(client, headers, result["razorpay_order_id"])).status_code == 200

    async with session_factory() as session:
        assert (await session.get(Coupon, coupon.id)).used_count == 1
        usage = (await session.execute(select(CouponUsage))).scalar_one()
        assert float(usage.discount_amount) == 20.0
        enrollment = (await session.execute(select(Enrollment))).scalar_one()
        assert enrollment.applied_coupon_id == coupon.id
        item = (await session.execute(select(OrderItem))).scalar_one()
        assert float(item.price) == 80.0


async def test_capture_survives_exhausted_coupon(client, session_factory, db, razorpay_stub, student, professor, category):
    course = await create_course(db, professor, category, price="100.00")
    coupon = await create_coupon(db, code="LASTONE", max_uses=1)
    headers = auth_headers(student)
    result = await checkout(client, headers, course.id, coupon_code="LASTONE")

    coupon.used_count = 1
    await db.commit()

    razorpay_stub.captured("pay_1", result["razorpay_order_id"], 8000)
    response = await verify(client, headers, result["razorpay_order_id"])

    assert response.status_code == 200
    async with session_factory() as session:
        enrollment = (await session.execute(select(Enrollment))).scalar_one()
        assert enrollment.applied_coupon_id is None
        assert (await session.get(Order, result["order_id"])).status == OrderStatus.PAID


# ==================== WEBHOOK ====================

def webhook_body(event, razorpay_order_id, amount, payment_id="pay_wh"):
    return json.dumps(
        {
            "event": event,
            "payload": {
                "payment": {
                    "entity": {
                        "id": payment_id,
                        "order_id": razorpay_order_id,
                        "amount": amount,
                        "error_description": "Card declined",
                    }
                }
            },
        }
    ).encode()


async def test_webhook_captures_payment(client, session_factory, db, razorpay_stub, student, professor, category):
    course = await create_course(db, professor, category, price="100.00")
    result = await checkout(client, auth_headers(student), course.id)

    response = await client.post(
        "/payments/webhook",
        content=webhook_body("payment.captured", result["razorpay_order_id"], 10000),
        headers={"X-Razorpay-Signature": "signature"},
    )

    assert response.json() == {"status": "ok"}
    async with session_factory() as session:
        assert (await session.get(Order, result["order_id"])).status == OrderStatus.PAID
        payment = (await session.execute(select(Payment))).scalar_one()
        assert payment.provider_data["verified_via"] == "webhook"
        assert (await session.execute(select(Enrollment))).scalar_one().user_id == student.id

    # the browser arriving second is a no-op
    response = await verify(client, auth_headers(student), result["razorpay_order_id"], payment_id="pay_wh")
    assert response.json()["already_verified"] is True


async def test_webhook_amount_mismatch(client, session_factory, db, razorpay_stub, student, professor, category):
    course = await create_course(db, professor, category, price="100.00")
    result = await checkout(client, auth_headers(student), course.id)

    response = await client.post(
        "/payments/webhook",
        content=webhook_body("payment.captured", result["razorpay_order_id"], 1),
        headers={"X-Razorpay-Signature": "signature"},
    )

    assert response.json() == {"status": "error", "message": "Amount mismatch"}
    async with session_factory() as session:
        assert (await session.get(Order, result["order_id"])).status == OrderStatus.PENDING


async def test_webhook_payment_failed(client, session_factory, db, razorpay_stub, student, professor, category):
    course = await create_course(db, professor, category, price="100.00")
    result = await checkout(client, auth_headers(student), course.id)

    await client.post(
        "/payments/webhook",
        content=webhook_body("payment.failed", result["razorpay_order_id"], 10000),
        headers={"X-Razorpay-Signature": "signature"},
    )

    async with session_factory() as session:
        assert (await session.get(Order, result["order_id"])).status == OrderStatus.FAILED
        payment = (await session.execute(select(Payment))).scalar_one()
        assert payment.status == PaymentStatus.FAILED
        assert payment.provider_data["failure_reason"] == "Card declined"


async def test_webhook_signature_required(client, razorpay_stub):
    body = webhook_body("payment.captured", "order_X", 100)

    response = await client.post("/payments/webhook", content=body)
    assert response.status_code == 400
    assert response.json()["error"]["message"] == "Missing signature"

    razorpay_stub.webhook_valid = False
    response = await client.post("/payments/webhook", content=body, headers={"X-Razorpay-Signature": "forged"})
    assert response.status_code == 400
    assert response.json()["error"]["message"] == "Invalid signature"


async def test_webhook_unknown_order_is_acknowledged(client, razorpay_stub):
    response = await client.post(
        "/payments/webhook",
        content=webhook_body("payment.captured", "order_UNKNOWN", 100),
        headers={"X-Razorpay-Signature": "signature"},
    )
    assert response.json() == {"status": "ok"}


# ==================== ORDERS ====================

async def test_my_orders(client, db, razorpay_stub, student, professor, category):
    course = await create_course(db, professor, category, price="100.00", title="Tennis Masterclass")
    headers = auth_headers(student)
    result = await checkout(client, headers, course.id)

    response = await client.get("/payments/orders", headers=headers)

    body = response.json()
    assert body["pagination"]["total"] == 1
    order = body["orders"][0]
    assert order["id"] == result["order_id"]
    assert order["status"] == "PENDING"
    assert order["items"][0]["course"]["title"] == "Tennis Masterclass"
    assert "provider_data" not in order["payments"][0]
