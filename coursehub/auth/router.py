"""
Session authentication endpoints
Sign-up, credentials sign-in, sign-out and the caller's profile
"""

from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from coursehub.auth import auth_service as service
from coursehub.auth.dependencies import UserContext, get_current_user
from coursehub.auth.schemas import ProfileUpdate, SignInRequest, SignUpRequest
from coursehub.auth.security import revoke_session
from coursehub.config import settings
from coursehub.db.database import get_db

router = APIRouter(prefix="/auth", tags=["Auth"])


@router.post("/sign-up", status_code=201)
async def sign_up(data: SignUpRequest, db: AsyncSession = Depends(get_db)):
    user = await service.sign_up(db, data.dict())
    return {"message": "Account created successfully", "user": user}


@router.post("/sign-in")
async def sign_in(data: SignInRequest, response: Response, db: AsyncSession = Depends(get_db)):
    """
    Verify credentials and issue a session token
    The token is returned in the body and set as an httponly cookie
    """
    session = await service.sign_in(db, data.username, data.password)
    response.set_cookie(
        settings.SESSION_COOKIE,
        session["token"],
        max_age=settings.SESSION_TTL_HOURS * 3600,
        httponly=True,
        samesite="lax",
    )
    return session


@router.post("/sign-out")
async def sign_out(response: Response, current: UserContext = Depends(get_current_user)):
    revoke_session(current.session)
    response.delete_cookie(settings.SESSION_COOKIE)
    return {"success": True}


@router.get("/me")
async def get_me(current: UserContext = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return await service.get_me(db, current.user)


@router.patch("/me")
async def update_profile(
    data: ProfileUpdate,
    current: UserContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await service.update_profile(db, current.user, data.dict(exclude_unset=True))
