import re
from typing import Optional

from pydantic import BaseModel, EmailStr, Field, validator

from coursehub.db.models import UserRole

USERNAME_RE = re.compile(r"^[A-Za-z0-9_]+$")
PHONE_RE = re.compile(r"^\+[1-9]\d{1,14}$")


def check_phone(value: str) -> str:
    if not PHONE_RE.match(value):
        raise ValueError("Phone number must be in international format (e.g. +201234567890)")
    return value


class SignUpRequest(BaseModel):
    username: str = Field(..., min_length=3, max_length=20)
    email: EmailStr
    password: str = Field(..., min_length=6)
    name: str = Field(..., min_length=2, max_length=50)
    phone: str
    second_phone: Optional[str] = None
    role: UserRole = UserRole.STUDENT

    @validator("username")
    def validate_username(cls, v):
        if not USERNAME_RE.match(v):
            raise ValueError("Username can only contain letters, numbers and underscores")
        return v

    @validator("email")
    def validate_email(cls, v):
        return v.lower()

    @validator("phone")
    def validate_phone(cls, v):
        return check_phone(v)

    @validator("second_phone")
    def validate_second_phone(cls, v):
        if v in (None, ""):
            return None
        return check_phone(v)


class SignInRequest(BaseModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=50)
    second_phone: Optional[str] = None

    @validator("second_phone")
    def validate_second_phone(cls, v):
        # "" clears the stored number
        if v is None or v == "":
            return v
        return check_phone(v)
