from datetime import datetime, timedelta

import pytest
from sqlalchemy import select

from coursehub.db.models import Lesson, UserRole
from coursehub.students.enrollment_service import create_enrollment
from coursehub.students.progress_service import mark_lesson_complete
from factories import auth_headers, create_course, create_paid_order, create_user


async def course_lessons(db, course_id):
    rows = await db.execute(select(Lesson).where(Lesson.course_id == course_id).order_by(Lesson.order))
    return rows.scalars().all()


@pytest.fixture
async def catalog(db, professor, student, category):
    """Two courses by the professor, one enrolled and paid for"""
    paid = await create_course(db, professor, category, price="100.00", lessons=2, title="Football Fundamentals")
    draft = await create_course(db, professor, category, price="50.00", published=False, title="Draft Course")
    await create_enrollment(db, student.id, paid)
    await db.commit()
    await create_paid_order(db, student, paid)
    return paid, draft


async def test_professor_only(client, student):
    response = await client.get("/professor/dashboard", headers=auth_headers(student))

    assert response.status_code == 403
    assert response.json()["error"]["message"] == "Access denied. Professor privileges required."


async def test_dashboard(client, catalog, professor):
    response = await client.get("/professor/dashboard", headers=auth_headers(professor))

    body = response.json()
    assert body["courses"] == {"total": 2, "published": 1, "draft": 1}
    assert body["students"] == {"total": 1, "recent": 1}
    assert body["revenue"]["total"] == 100.0
    assert body["top_courses"][0]["title"] == "Football Fundamentals"
    assert body["top_courses"][0]["counts"] == {"enrollments": 1, "lessons": 2}


async def test_my_courses(client, catalog, professor):
    headers = auth_headers(professor)

    response = await client.get("/professor/courses", headers=headers)
    assert response.json()["pagination"]["total"] == 2

    response = await client.get("/professor/courses", params={"published": "false"}, headers=headers)
    courses = response.json()["courses"]
    assert [course["title"] for course in courses] == ["Draft Course"]


async def test_course_stats(client, catalog, professor):
    response = await client.get("/professor/courses/stats", headers=auth_headers(professor))

    assert response.json() == {
        "total_courses": 2,
        "published_courses": 1,
        "draft_courses": 1,
        "total_lessons": 2,
        "total_enrollments": 1,
        "avg_enrollments_per_course": 0.5,
        "total_revenue": 100.0,
    }


async def test_course_analytics(client, catalog, professor, student):
    paid, _ = catalog

    response = await client.get(f"/professor/courses/{paid.id}/analytics", headers=auth_headers(professor))

    body = response.json()
    assert body["analytics"]["enrollment_count"] == 1
    assert body["analytics"]["lesson_count"] == 2
    assert body["analytics"]["revenue"] == {"total": 100.0, "order_count": 1}
    assert body["course"]["enrollments"][0]["user"]["id"] == student.id
    assert [lesson["progress_count"] for lesson in body["course"]["lessons"]] == [1, 1]


async def test_course_analytics_ownership(client, db, catalog):
    paid, _ = catalog
    rival = await create_user(db, role=UserRole.PROFESSOR)
    headers = auth_headers(rival)

    response = await client.get(f"/professor/courses/{paid.id}/analytics", headers=headers)
    assert response.status_code == 403
    assert response.json()["error"]["message"] == "You don't have access to this course"

    response = await client.get("/professor/courses/CRS_MISSING/analytics", headers=headers)
    assert response.status_code == 404

    response = await client.get(f"/professor/courses/{paid.id}/lessons/analytics", headers=headers)
    assert response.status_code == 403
    assert response.json()["error"]["message"] == "You can only view analytics for your own courses"


async def test_student_progress_filters(client, db, catalog, professor, student):
    paid, _ = catalog
    for lesson in await course_lessons(db, paid.id):
        await mark_lesson_complete(db, student.id, lesson.id, watch_time=600)
    headers = auth_headers(professor)
    url = f"/professor/courses/{paid.id}/students"

    completed = (await client.get(url, params={"completion_filter": "completed"}, headers=headers)).json()
    assert completed["pagination"]["total"] == 1
    row = completed["student_progress"][0]
    assert row["completion_rate"] == 100.0
    assert row["user"]["id"] == student.id
    assert [item["lesson"]["order"] for item in row["lesson_progress"]] == [1, 2]

    not_started = (await client.get(url, params={"completion_filter": "not_started"}, headers=headers)).json()
    assert not_started["student_progress"] == []

    response = await client.get(url, params={"completion_filter": "bogus"}, headers=headers)
    assert response.status_code == 400


async def test_lesson_analytics(client, db, catalog, professor, student):
    paid, _ = catalog
    lessons = await course_lessons(db, paid.id)
    await mark_lesson_complete(db, student.id, lessons[0].id, watch_time=300)

    response = await client.get(f"/professor/courses/{paid.id}/lessons/analytics", headers=auth_headers(professor))

    body = response.json()
    first = body["lesson_analytics"][0]
    assert first["lesson"]["order"] == 1
    assert first["analytics"]["completed_views"] == 1
    assert first["analytics"]["engagement_rate"] == 50.0
    assert body["summary"]["total_lessons"] == 2
    assert body["summary"]["total_views"] == 2
    assert body["summary"]["total_watch_time"] == 300


async def test_revenue_time_range(client, db, catalog, professor, student):
    paid, _ = catalog
    await create_paid_order(db, student, paid, total="60.00", created_at=datetime.utcnow() - timedelta(days=40))
    headers = auth_headers(professor)

    recent = (await client.get("/professor/revenue", params={"time_range": "30d"}, headers=headers)).json()
    assert recent["total_revenue"] == 100.0
    assert recent["order_count"] == 1

    everything = (await client.get("/professor/revenue", params={"time_range": "all"}, headers=headers)).json()
    assert everything["total_revenue"] == 160.0
    assert everything["avg_order_value"] == 80.0
    assert len(everything["revenue_by_time"]) == 2
    assert everything["top_courses"][0]["course"]["id"] == paid.id
    assert everything["top_courses"][0]["revenue"] == 160.0
    assert everything["top_courses"][0]["orders"] == 2

    response = await client.get("/professor/revenue", params={"time_range": "2w"}, headers=headers)
    assert response.status_code == 400


async def test_revenue_without_courses(client, db):
    newcomer = await create_user(db, role=UserRole.PROFESSOR)

    response = await client.get("/professor/revenue", headers=auth_headers(newcomer))

    assert response.json()["total_revenue"] == 0
    assert response.json()["revenue_by_time"] == []
