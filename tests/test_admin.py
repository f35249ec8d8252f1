from sqlalchemy import select

from coursehub.db.models import AuditLog, Course
from coursehub.students.enrollment_service import create_enrollment
from factories import auth_headers, create_course, create_paid_order, create_user


# ==================== ACCESS ====================

async def test_student_is_not_admin(client, student):
    response = await client.get("/admin/categories", headers=auth_headers(student))

    assert response.status_code == 403
    assert response.json()["error"] == {"code": "FORBIDDEN", "message": "Admin access required"}


async def test_admin_requires_session(client):
    response = await client.get("/admin/dashboard/stats")
    assert response.status_code == 401


# ==================== CATEGORIES ====================

async def test_create_category_is_audited(client, db, admin_user):
    response = await client.post(
        "/admin/categories",
        json={"name": "Tennis", "slug": "tennis", "color": "#ef4444"},
        headers=auth_headers(admin_user),
    )

    assert response.status_code == 201
    category = response.json()
    assert category["slug"] == "tennis"

    entries = (await db.execute(select(AuditLog).where(AuditLog.resource_id == category["id"]))).scalars().all()
    assert [entry.action for entry in entries] == ["CREATE_CATEGORY"]
    assert entries[0].details["category_name"] == "Tennis"


async def test_category_slug_validation(client, admin_user):
    response = await client.post(
        "/admin/categories", json={"name": "Tennis", "slug": "Not A Slug"}, headers=auth_headers(admin_user)
    )
    assert response.status_code == 400


async def test_duplicate_category_slug(client, admin_user, category):
    response = await client.post(
        "/admin/categories", json={"name": "Another", "slug": category.slug}, headers=auth_headers(admin_user)
    )

    assert response.status_code == 409
    assert response.json()["error"]["message"] == "A category with this slug already exists"


async def test_list_categories_with_course_count(client, db, admin_user, professor, category):
    await create_course(db, professor, category)

    response = await client.get("/admin/categories", headers=auth_headers(admin_user))

    body = response.json()
    assert body["pagination"]["total"] == 1
    assert body["categories"][0]["course_count"] == 1


async def test_delete_category_needs_super_admin(client, admin_user, category):
    response = await client.delete(f"/admin/categories/{category.id}", headers=auth_headers(admin_user))
    assert response.status_code == 403


async def test_delete_category_in_use(client, db, super_admin_user, professor, category):
    await create_course(db, professor, category)

    response = await client.delete(f"/admin/categories/{category.id}", headers=auth_headers(super_admin_user))

    assert response.status_code == 409
    assert response.json()["error"]["message"].startswith("Cannot delete category with existing courses")


async def test_delete_empty_category(client, super_admin_user, category):
    headers = auth_headers(super_admin_user)

    response = await client.delete(f"/admin/categories/{category.id}", headers=headers)
    assert response.json() == {"success": True}

    response = await client.get(f"/admin/categories/{category.id}", headers=headers)
    assert response.status_code == 404


# ==================== COURSES ====================

def course_payload(professor, category, **overrides):
    payload = {
        "title": "Basketball Basics",
        "slug": "basketball-basics",
        "description": "Dribbling and shooting",
        "price": 79.99,
        "difficulty": "BEGINNER",
        "category_id": category.id,
        "creator_id": professor.id,
    }
    payload.update(overrides)
    return payload


async def test_create_course(client, admin_user, professor, category):
    response = await client.post(
        "/admin/courses", json=course_payload(professor, category), headers=auth_headers(admin_user)
    )

    assert response.status_code == 201
    course = response.json()
    assert course["price"] == 79.99
    assert course["published"] is False
    assert course["creator"]["id"] == professor.id
    assert course["category"]["id"] == category.id


async def test_course_creator_must_be_professor(client, admin_user, student, category):
    response = await client.post(
        "/admin/courses", json=course_payload(student, category), headers=auth_headers(admin_user)
    )

    assert response.status_code == 400
    assert response.json()["error"]["message"] == "Creator must be a valid professor"


async def test_duplicate_course_slug(client, db, admin_user, professor, category):
    existing = await create_course(db, professor, category)

    response = await client.post(
        "/admin/courses", json=course_payload(professor, category, slug=existing.slug), headers=auth_headers(admin_user)
    )
    assert response.status_code == 409


async def test_update_course(client, db, admin_user, professor, category):
    course = await create_course(db, professor, category)

    response = await client.patch(
        f"/admin/courses/{course.id}", json={"title": "Renamed", "price": 120}, headers=auth_headers(admin_user)
    )

    assert response.status_code == 200
    assert response.json()["title"] == "Renamed"
    assert response.json()["price"] == 120.0


async def test_update_cannot_publish_unready_course(client, session_factory, db, admin_user, professor, category):
    course = await create_course(db, professor, category, lessons=2, with_videos=False, published=False)

    response = await client.patch(
        f"/admin/courses/{course.id}", json={"published": True}, headers=auth_headers(admin_user)
    )

    assert response.status_code == 400
    assert "2 lessons are missing videos" in response.json()["error"]["message"]
    async with session_factory() as session:
        assert (await session.get(Course, course.id)).published is False


async def test_update_publishes_ready_course(client, db, admin_user, professor, category):
    course = await create_course(
        db, professor, category, lessons=1, published=False, thumbnail="https://cdn.example.com/thumb.jpg"
    )

    response = await client.patch(
        f"/admin/courses/{course.id}", json={"published": True}, headers=auth_headers(admin_user)
    )

    assert response.status_code == 200
    assert response.json()["published"] is True


async def test_delete_course_with_enrollments(client, db, super_admin_user, student, professor, category):
    course = await create_course(db, professor, category, lessons=1)
    await create_enrollment(db, student.id, course)
    await db.commit()

    response = await client.delete(f"/admin/courses/{course.id}", headers=auth_headers(super_admin_user))

    assert response.status_code == 409
    assert response.json()["error"]["message"] == "Cannot delete course with active enrollments"


async def test_delete_course_with_orders(client, session_factory, db, super_admin_user, student, professor, category):
    course = await create_course(db, professor, category, lessons=1)
    await create_paid_order(db, student, course)

    response = await client.delete(f"/admin/courses/{course.id}", headers=auth_headers(super_admin_user))

    assert response.status_code == 409
    assert response.json()["error"] == {"code": "CONFLICT", "message": "Cannot delete course with orders"}
    async with session_factory() as session:
        assert await session.get(Course, course.id) is not None


async def test_delete_course(client, session_factory, super_admin_user, db, professor, category):
    course = await create_course(db, professor, category, lessons=2)

    response = await client.delete(f"/admin/courses/{course.id}", headers=auth_headers(super_admin_user))
    assert response.status_code == 200

    async with session_factory() as session:
        assert await session.get(Course, course.id) is None


async def test_lesson_order_conflict(client, db, admin_user, professor, category):
    course = await create_course(db, professor, category, lessons=1)

    response = await client.post(
        f"/admin/courses/{course.id}/lessons",
        json={"title": "Duplicate", "order": 1},
        headers=auth_headers(admin_user),
    )
    assert response.status_code == 409


# ==================== COUPONS ====================

async def test_percentage_coupon_cannot_exceed_100(client, admin_user):
    response = await client.post(
        "/admin/coupons",
        json={"code": "TOOMUCH", "name": "Too much", "discount_type": "PERCENTAGE", "discount_value": 150},
        headers=auth_headers(admin_user),
    )

    assert response.status_code == 400
    assert "Percentage discount cannot exceed 100%" in response.json()["error"]["message"]


async def test_coupon_code_must_be_upper_case(client, admin_user):
    response = await client.post(
        "/admin/coupons",
        json={"code": "lower", "name": "Lower", "discount_type": "FIXED_AMOUNT", "discount_value": 10},
        headers=auth_headers(admin_user),
    )
    assert response.status_code == 400


async def test_create_course_scoped_coupon(client, db, admin_user, professor, category):
    course = await create_course(db, professor, category)
    headers = auth_headers(admin_user)
    payload = {
        "code": "TENNIS10",
        "name": "Tennis 10",
        "discount_type": "FIXED_AMOUNT",
        "discount_value": 10,
        "course_ids": [course.id],
    }

    response = await client.post("/admin/coupons", json=payload, headers=headers)
    assert response.status_code == 201
    coupon = response.json()
    assert coupon["is_global"] is False
    assert [c["id"] for c in coupon["courses"]] == [course.id]

    response = await client.post("/admin/coupons", json=payload, headers=headers)
    assert response.status_code == 409


async def test_coupon_for_unknown_course(client, admin_user):
    response = await client.post(
        "/admin/coupons",
        json={
            "code": "GHOST",
            "name": "Ghost",
            "discount_type": "FIXED_AMOUNT",
            "discount_value": 10,
            "course_ids": ["CRS_MISSING"],
        },
        headers=auth_headers(admin_user),
    )

    assert response.status_code == 400
    assert response.json()["error"]["message"] == "One or more courses not found"


# ==================== DASHBOARD & USERS ====================

async def test_dashboard_stats(client, db, admin_user, professor, category):
    await create_course(db, professor, category, published=True)
    await create_course(db, professor, category, published=False)

    response = await client.get("/admin/dashboard/stats", headers=auth_headers(admin_user))

    assert response.status_code == 200
    stats = response.json()
    assert stats["courses"]["total"] == 2
    assert stats["courses"]["published"] == 1
    assert stats["courses"]["draft"] == 1
    assert stats["users"]["total_professors"] == 1
    assert stats["revenue"]["total"] == 0


async def test_verify_user_shows_in_activity(client, db, admin_user):
    user = await create_user(db, email="pending@example.com", verified=False)
    headers = auth_headers(admin_user)

    response = await client.patch(f"/admin/users/{user.id}/status", json={"verified": True}, headers=headers)
    assert response.status_code == 200
    assert response.json()["verified"] is True

    activity = (await client.get("/admin/activity", headers=headers)).json()
    assert activity[0]["message"] == 'User "pending@example.com" was verified'
    assert activity[0]["type"] == "user"


async def test_audit_logs_need_super_admin(client, db, admin_user, super_admin_user):
    await client.post("/admin/categories", json={"name": "Golf", "slug": "golf"}, headers=auth_headers(admin_user))

    response = await client.get("/admin/audit-logs", headers=auth_headers(admin_user))
    assert response.status_code == 403

    response = await client.get(
        "/admin/audit-logs", params={"action": "CREATE_CATEGORY"}, headers=auth_headers(super_admin_user)
    )
    logs = response.json()["logs"]
    assert len(logs) == 1
    assert logs[0]["metadata"]["category_slug"] == "golf"
    assert logs[0]["actor_type"] == "ADMIN"
