import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from coursehub.auth.security import create_session_token, hash_password, verify_password
from coursehub.core.errors import conflict, unauthorized
from coursehub.core.serializers import serialize_user
from coursehub.db.models import AdminUser, User

logger = logging.getLogger(__name__)


async def sign_up(db: AsyncSession, data: dict) -> dict:
    """Register a student or professor account"""
    checks = (
        (User.username == data["username"], "Username already taken"),
        (User.email == data["email"], "Email already registered"),
        (User.phone == data["phone"], "Phone number already registered"),
    )
    for clause, message in checks:
        existing = await db.execute(select(User.id).where(clause))
        if existing.first():
            raise conflict(message)

    user = User(
        username=data["username"],
        email=data["email"],
        phone=data["phone"],
        second_phone=data.get("second_phone"),
        name=data["name"],
        role=data["role"],
        password_hash=hash_password(data["password"]),
    )
    db.add(user)
    await db.commit()

    logger.info("New %s account %s", user.role.value.lower(), user.username)
    return serialize_user(user)


async def sign_in(db: AsyncSession, username: str, password: str) -> dict:
    """Credentials check; returns a signed session and the user"""
    result = await db.execute(select(User).where(User.username == username))
    user = result.scalar_one_or_none()

    if not user or not verify_password(password, user.password_hash):
        raise unauthorized("Invalid username or password")

    session = create_session_token(user.id, user.role.value, user.username)
    return {**session, "user": serialize_user(user)}


async def get_me(db: AsyncSession, user: User) -> dict:
    result = await db.execute(select(AdminUser).where(AdminUser.email == user.email))
    admin = result.scalar_one_or_none()

    data = serialize_user(user)
    data["is_admin"] = admin is not None
    data["admin_role"] = admin.role.value if admin else None
    return data


async def update_profile(db: AsyncSession, user: User, updates: dict) -> dict:
    if "name" in updates and updates["name"] is not None:
        user.name = updates["name"]
    if "second_phone" in updates:
        user.second_phone = updates["second_phone"] or None

    await db.commit()
    return serialize_user(user)
