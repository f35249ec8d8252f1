import os

os.environ.setdefault("SESSION_SECRET", "test-session-secret")
os.environ.setdefault("RAZORPAY_KEY_ID", "rzp_test_key")
os.environ.setdefault("RAZORPAY_KEY_SECRET", "rzp_test_secret")
os.environ.setdefault("RAZORPAY_WEBHOOK_SECRET", "rzp_webhook_secret")

import httpx  # noqa: E402
import pytest  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker  # noqa: E402

from coursehub.db.database import build_engine, get_db, init_models  # noqa: E402
from coursehub.db.models import AdminRole, AdminUser, UserRole  # noqa: E402
from coursehub.main import app  # noqa: E402
from factories import create_category, create_user  # noqa: E402


@pytest.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_models(bind=engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
async def student(db):
    return await create_user(db)


@pytest.fixture
async def professor(db):
    return await create_user(db, role=UserRole.PROFESSOR)


@pytest.fixture
async def category(db):
    return await create_category(db)


async def _make_admin(db, role):
    user = await create_user(db)
    db.add(AdminUser(email=user.email, name=user.name, role=role))
    await db.commit()
    return user


@pytest.fixture
async def admin_user(db):
    return await _make_admin(db, AdminRole.ADMIN)


@pytest.fixture
async def super_admin_user(db):
    return await _make_admin(db, AdminRole.SUPER_ADMIN)
