from sqlalchemy import func, select

from coursehub.config import settings
from coursehub.db.models import Coupon, CouponUsage, Enrollment, LessonProgress, StudentProgress
from coursehub.students.enrollment_service import create_enrollment
from factories import auth_headers, create_coupon, create_course


async def enroll(db, user, course):
    await create_enrollment(db, user.id, course)
    await db.commit()


async def lesson_ids(client, headers, course_id):
    response = await client.get(f"/student/courses/{course_id}/progress", headers=headers)
    return [lesson["id"] for lesson in response.json()["lessons"]]


# ==================== ENROLLMENT ====================

async def test_enroll_in_free_course(client, session_factory, db, student, professor, category):
    course = await create_course(db, professor, category, price="0", lessons=3)

    response = await client.post("/student/enroll", json={"course_id": course.id}, headers=auth_headers(student))

    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["message"] == "Successfully enrolled in course"
    assert body["enrollment"]["status"] == "ACTIVE"
    assert body["enrollment"]["course"]["id"] == course.id
    assert body["enrollment"]["applied_coupon"] is None

    async with session_factory() as session:
        progress = (await session.execute(select(StudentProgress))).scalars().all()
        assert len(progress) == 1
        lessons = await session.execute(
            select(func.count(LessonProgress.id)).where(LessonProgress.student_progress_id == progress[0].id)
        )
        assert lessons.scalar_one() == 3


async def test_enroll_twice(client, db, student, professor, category):
    course = await create_course(db, professor, category, price="0")
    headers = auth_headers(student)

    await client.post("/student/enroll", json={"course_id": course.id}, headers=headers)
    response = await client.post("/student/enroll", json={"course_id": course.id}, headers=headers)

    assert response.status_code == 409
    assert response.json()["error"]["message"] == "You are already enrolled in this course"


async def test_paid_course_requires_checkout(client, session_factory, db, student, professor, category):
    course = await create_course(db, professor, category, price="100.00")

    response = await client.post("/student/enroll", json={"course_id": course.id}, headers=auth_headers(student))

    assert response.status_code == 402
    error = response.json()["error"]
    assert error["code"] == "PAYMENT_REQUIRED"
    assert error["amount_due"] == 100.0
    assert error["checkout"] == "/payments/checkout"

    async with session_factory() as session:
        assert (await session.execute(select(func.count(Enrollment.id)))).scalar_one() == 0


async def test_partial_coupon_still_requires_payment(client, db, student, professor, category):
    course = await create_course(db, professor, category, price="100.00")
    await create_coupon(db, code="SAVE20")

    response = await client.post(
        "/student/enroll", json={"course_id": course.id, "coupon_code": "SAVE20"}, headers=auth_headers(student)
    )

    assert response.status_code == 402
    assert response.json()["error"]["amount_due"] == 80.0


async def test_full_coupon_enrolls_and_records_usage(client, session_factory, db, student, professor, category):
    course = await create_course(db, professor, category, price="100.00", lessons=1)
    coupon = await create_coupon(db, code="FREEPASS", discount_value="100", max_uses=10)

    response = await client.post(
        "/student/enroll", json={"course_id": course.id, "coupon_code": "freepass"}, headers=auth_headers(student)
    )

    assert response.status_code == 201
    assert response.json()["enrollment"]["applied_coupon"]["code"] == "FREEPASS"

    async with session_factory() as session:
        stored = await session.get(Coupon, coupon.id)
        assert stored.used_count == 1
        usage = (await session.execute(select(CouponUsage))).scalar_one()
        assert usage.user_id == student.id
        assert float(usage.discount_amount) == 100.0


async def test_unpublished_course(client, db, student, professor, category):
    course = await create_course(db, professor, category, price="0", published=False)

    response = await client.post("/student/enroll", json={"course_id": course.id}, headers=auth_headers(student))

    assert response.status_code == 400
    assert response.json()["error"]["message"] == "Course is not available for enrollment"


async def test_unknown_course(client, student):
    response = await client.post("/student/enroll", json={"course_id": "CRS_MISSING"}, headers=auth_headers(student))
    assert response.status_code == 404


async def test_enrolled_courses(client, db, student, professor, category):
    course = await create_course(db, professor, category, price="0", lessons=2, title="Swimming Basics")
    await create_course(db, professor, category, price="0")
    await enroll(db, student, course)

    response = await client.get("/student/courses", headers=auth_headers(student))

    body = response.json()
    assert body["pagination"]["total"] == 1
    enrollment = body["enrollments"][0]
    assert enrollment["course"]["title"] == "Swimming Basics"
    assert enrollment["course"]["lesson_count"] == 2
    assert enrollment["student_progress"]["completion_rate"] == 0.0

    response = await client.get("/student/courses", params={"search": "tennis"}, headers=auth_headers(student))
    assert response.json()["enrollments"] == []


# ==================== PROGRESS ====================

async def test_lessons_complete_in_order(client, session_factory, db, student, professor, category):
    course = await create_course(db, professor, category, price="0", lessons=2)
    await enroll(db, student, course)
    headers = auth_headers(student)
    first, second = await lesson_ids(client, headers, course.id)

    response = await client.post("/student/lessons/complete", json={"lesson_id": second}, headers=headers)
    assert response.status_code == 400
    assert response.json()["error"]["message"] == "You must complete all previous required lessons first"

    response = await client.post(
        "/student/lessons/complete", json={"lesson_id": first, "watch_time": 540}, headers=headers
    )
    assert response.status_code == 200
    assert response.json()["completion_rate"] == 50.0
    assert response.json()["lesson_progress"]["watch_time"] == 540

    response = await client.post("/student/lessons/complete", json={"lesson_id": second}, headers=headers)
    assert response.json()["completion_rate"] == 100.0

    async with session_factory() as session:
        enrollment = (await session.execute(select(Enrollment))).scalar_one()
        assert enrollment.progress == 100.0
        assert enrollment.completed_at is not None
        progress = (await session.execute(select(StudentProgress))).scalar_one()
        assert progress.total_watch_time == 540


async def test_update_progress(client, db, student, professor, category):
    course = await create_course(db, professor, category, price="0", lessons=4)
    await enroll(db, student, course)
    headers = auth_headers(student)
    lessons = await lesson_ids(client, headers, course.id)

    response = await client.post(
        "/student/progress",
        json={"lesson_id": lessons[0], "watch_time": 120, "last_position": 118},
        headers=headers,
    )
    assert response.status_code == 200
    assert response.json()["completion_rate"] == 0.0
    assert response.json()["lesson_progress"]["last_position"] == 118

    response = await client.post(
        "/student/progress",
        json={"lesson_id": lessons[0], "watch_time": 600, "last_position": 600, "completed": True},
        headers=headers,
    )
    body = response.json()
    assert body["completion_rate"] == 25.0
    assert body["lesson_progress"]["completed"] is True
    assert body["lesson_progress"]["completed_at"] is not None


async def test_progress_requires_enrollment(client, db, student, professor, category):
    course = await create_course(db, professor, category, price="0", lessons=1)
    other = await create_course(db, professor, category, price="0", lessons=1)
    await enroll(db, student, other)
    headers = auth_headers(student)
    lesson_id = (await lesson_ids(client, headers, other.id))[0]

    response = await client.get(f"/student/courses/{course.id}/progress", headers=headers)
    assert response.status_code == 403
    assert response.json()["error"]["message"] == "You are not enrolled in this course"

    response = await client.post(
        "/student/progress", json={"lesson_id": "LSN_MISSING", "watch_time": 1, "last_position": 1}, headers=headers
    )
    assert response.status_code == 404

    response = await client.post(
        "/student/progress", json={"lesson_id": lesson_id, "watch_time": -1, "last_position": 1}, headers=headers
    )
    assert response.status_code == 400


# ==================== STUDY VIEW ====================

async def test_lesson_study_view(client, db, student, professor, category):
    course = await create_course(db, professor, category, price="0", lessons=3)
    await enroll(db, student, course)
    headers = auth_headers(student)
    lessons = await lesson_ids(client, headers, course.id)

    response = await client.get(f"/student/lessons/{lessons[1]}", headers=headers)

    assert response.status_code == 200
    body = response.json()
    assert body["lesson"]["course"]["id"] == course.id
    assert body["lesson"]["assets"] == []
    assert body["lesson"]["user_progress"]["completed"] is False
    assert body["navigation"]["previous"]["id"] == lessons[0]
    assert body["navigation"]["next"]["id"] == lessons[2]
    assert body["can_access"] is False


async def test_study_view_signs_video_url(client, db, student, professor, category, monkeypatch):
    monkeypatch.setattr(settings, "BUNNY_TOKEN_KEY", "token-key")
    course = await create_course(db, professor, category, price="0", lessons=1)
    await enroll(db, student, course)
    headers = auth_headers(student)
    lesson_id = (await lesson_ids(client, headers, course.id))[0]

    response = await client.get(f"/student/lessons/{lesson_id}", headers=headers)

    body = response.json()
    assert body["can_access"] is True
    assert "?token=" in body["lesson"]["video_url"]
    assert "&expires=" in body["lesson"]["video_url"]


async def test_study_view_requires_enrollment(client, db, student, professor, category):
    course = await create_course(db, professor, category, price="0", lessons=1)
    await enroll(db, student, course)
    lesson_id = (await lesson_ids(client, auth_headers(student), course.id))[0]

    response = await client.get(f"/student/lessons/{lesson_id}", headers=auth_headers(professor))

    assert response.status_code == 403
    assert response.json()["error"]["message"] == "You must be enrolled in this course to access lessons"
