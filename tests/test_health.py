from sqlalchemy import func, select

from coursehub.db.models import Coupon, Course, Enrollment, Lesson
from coursehub.db.seed import seed


async def test_root(client):
    response = await client.get("/")
    assert response.json() == {"service": "CourseHub API", "version": "1.0.0", "status": "running"}


async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["database"] == "UP"
    assert body["cdn_configured"] is False


async def test_unknown_route_uses_error_shape(client):
    response = await client.get("/no-such-route")

    assert response.status_code == 404
    assert response.json()["error"]["code"] == "NOT_FOUND"


async def test_seed_is_repeatable(db):
    await seed(db)
    await seed(db)

    async def count(model):
        return (await db.execute(select(func.count(model.id)))).scalar_one()

    assert await count(Course) == 4
    assert await count(Lesson) == 20
    assert await count(Coupon) == 2
    assert await count(Enrollment) == 1
