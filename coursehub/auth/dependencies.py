"""
Role guards for route handlers

    public              no dependency
    authenticated       get_current_user
    professor-only      get_current_professor (+ verify_course_ownership)
    admin-only          get_current_admin
    super-admin-only    get_current_super_admin
"""

from typing import Optional

from fastapi import Depends, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from coursehub.auth.security import decode_session_token
from coursehub.config import settings
from coursehub.core.errors import forbidden, not_found, unauthorized
from coursehub.db.database import get_db
from coursehub.db.models import AdminRole, AdminUser, Course, User, UserRole


class UserContext:
    """
    Signed-in user plus the claims of the session that authenticated them
    """
    def __init__(self, user: User, session: dict):
        self.user = user
        self.session = session
        self.user_id = user.id
        self.role = user.role
        self.email = user.email
        self.name = user.name


class AdminContext(UserContext):
    """UserContext for a user that also holds an AdminUser record"""
    def __init__(self, user: User, session: dict, admin: AdminUser):
        super().__init__(user, session)
        self.admin = admin
        self.admin_id = admin.id
        self.admin_role = admin.role

    @property
    def is_super_admin(self) -> bool:
        return self.admin_role == AdminRole.SUPER_ADMIN


def extract_token(request: Request) -> Optional[str]:
    """Bearer header first, then the session cookie"""
    authorization = request.headers.get("Authorization")
    if authorization and authorization.startswith("Bearer "):
        return authorization.split(" ", 1)[1].strip() or None
    return request.cookies.get(settings.SESSION_COOKIE)


async def get_optional_user(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> Optional[UserContext]:
    token = extract_token(request)
    if not token:
        return None

    payload = decode_session_token(token)
    user = await db.get(User, payload.get("sub"))
    if not user:
        raise unauthorized("Account no longer exists")

    return UserContext(user, payload)


async def get_current_user(
    current: Optional[UserContext] = Depends(get_optional_user),
) -> UserContext:
    """
    Dependency: any signed-in user

    Raises:
        401: Missing, invalid, expired or revoked session
    """
    if current is None:
        raise unauthorized("Authentication required")
    return current


async def get_current_professor(
    current: UserContext = Depends(get_current_user),
) -> UserContext:
    if current.role != UserRole.PROFESSOR:
        raise forbidden("Access denied. Professor privileges required.")
    return current


async def get_current_admin(
    current: UserContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> AdminContext:
    """
    Dependency: user whose e-mail matches an AdminUser

    Raises:
        401: Not signed in
        403: No admin record for this e-mail
    """
    result = await db.execute(select(AdminUser).where(AdminUser.email == current.email))
    admin = result.scalar_one_or_none()
    if not admin:
        raise forbidden("Admin access required")

    return AdminContext(current.user, current.session, admin)


async def get_current_super_admin(
    admin: AdminContext = Depends(get_current_admin),
) -> AdminContext:
    if not admin.is_super_admin:
        raise forbidden("Super admin access required")
    return admin


async def verify_course_ownership(db: AsyncSession, course_id: str, professor: UserContext) -> Course:
    """
    Validates the professor created this course

    Raises:
        404: Course not found
        403: Not the owner
    """
    course = await db.get(Course, course_id)
    if not course:
        raise not_found("Course not found")

    if course.creator_id != professor.user_id:
        raise forbidden("You don't have access to this course")

    return course
