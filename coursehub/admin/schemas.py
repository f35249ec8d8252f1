import re
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, Field, validator

from coursehub.db.models import AssetType, Difficulty, DiscountType

SLUG_RE = re.compile(r"^[a-z0-9-]+$")
HEX_COLOR_RE = re.compile(r"^#[0-9A-Fa-f]{6}$")
COUPON_CODE_RE = re.compile(r"^[A-Z0-9_-]+$")


def check_slug(value: str) -> str:
    if not SLUG_RE.match(value):
        raise ValueError("Slug must contain only lowercase letters, numbers, and hyphens")
    return value


def check_url(value: str) -> str:
    if not value.startswith(("http://", "https://")):
        raise ValueError("Must be a valid URL")
    return value


def naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Timestamps are stored as naive UTC"""
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


# ==================== USERS ====================

class UserStatusUpdate(BaseModel):
    verified: bool


# ==================== CATEGORIES ====================

class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    slug: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    icon: Optional[str] = None
    color: Optional[str] = None

    @validator("slug")
    def validate_slug(cls, v):
        return check_slug(v)

    @validator("color")
    def validate_color(cls, v):
        if v is not None and not HEX_COLOR_RE.match(v):
            raise ValueError("Color must be a valid hex color")
        return v


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    slug: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    icon: Optional[str] = None
    color: Optional[str] = None

    @validator("slug")
    def validate_slug(cls, v):
        return check_slug(v) if v is not None else v

    @validator("color")
    def validate_color(cls, v):
        if v is not None and not HEX_COLOR_RE.match(v):
            raise ValueError("Color must be a valid hex color")
        return v


# ==================== COURSES ====================

class CourseCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    slug: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    difficulty: Difficulty
    category_id: str
    creator_id: str
    language: str = "en"
    is_free: bool = False
    thumbnail: Optional[str] = None
    cover_image: Optional[str] = None

    @validator("slug")
    def validate_slug(cls, v):
        return check_slug(v)

    @validator("thumbnail", "cover_image")
    def validate_urls(cls, v):
        return check_url(v) if v is not None else v


class CourseUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    slug: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, min_length=1)
    price: Optional[float] = Field(None, ge=0)
    difficulty: Optional[Difficulty] = None
    category_id: Optional[str] = None
    language: Optional[str] = None
    is_free: Optional[bool] = None
    published: Optional[bool] = None
    featured: Optional[bool] = None
    thumbnail: Optional[str] = None
    cover_image: Optional[str] = None

    @validator("slug")
    def validate_slug(cls, v):
        return check_slug(v) if v is not None else v

    @validator("thumbnail", "cover_image")
    def validate_urls(cls, v):
        return check_url(v) if v is not None else v


class LessonCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    order: int = Field(..., ge=1)
    video_url: Optional[str] = None
    video_duration: Optional[int] = Field(None, ge=0)
    thumbnail: Optional[str] = None
    transcript: Optional[str] = None
    free_preview: bool = False
    is_required: bool = True
    can_skip: bool = False

    @validator("video_url", "thumbnail")
    def validate_urls(cls, v):
        return check_url(v) if v is not None else v


class LessonUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    order: Optional[int] = Field(None, ge=1)
    video_url: Optional[str] = None
    video_duration: Optional[int] = Field(None, ge=0)
    thumbnail: Optional[str] = None
    transcript: Optional[str] = None
    free_preview: Optional[bool] = None
    is_required: Optional[bool] = None
    can_skip: Optional[bool] = None

    @validator("video_url", "thumbnail")
    def validate_urls(cls, v):
        return check_url(v) if v is not None else v


class LessonAssetCreate(BaseModel):
    name: str = Field(..., min_length=1)
    url: str
    type: AssetType
    size: int = Field(..., ge=0)
    mime_type: str
    order: int = Field(0, ge=0)

    @validator("url")
    def validate_url(cls, v):
        return check_url(v)


class LessonOrderItem(BaseModel):
    id: str
    order: int = Field(..., ge=1)


class LessonOrderUpdate(BaseModel):
    lessons: List[LessonOrderItem]


# ==================== COUPONS ====================

class CouponCreate(BaseModel):
    code: str = Field(..., min_length=3, max_length=50)
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    discount_type: DiscountType
    discount_value: float = Field(..., ge=0)
    max_uses: Optional[int] = Field(None, ge=1)
    max_uses_per_user: Optional[int] = Field(None, ge=1)
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    is_global: bool = False
    course_ids: Optional[List[str]] = None
    is_active: bool = True

    @validator("code")
    def validate_code(cls, v):
        if not COUPON_CODE_RE.match(v):
            raise ValueError(
                "Coupon code must contain only uppercase letters, numbers, underscores, and hyphens"
            )
        return v

    @validator("discount_value")
    def validate_discount_value(cls, v, values):
        if values.get("discount_type") == DiscountType.PERCENTAGE and v > 100:
            raise ValueError("Percentage discount cannot exceed 100%")
        return v

    @validator("valid_from")
    def validate_valid_from(cls, v):
        return naive_utc(v)

    @validator("valid_until")
    def validate_valid_until(cls, v, values):
        v = naive_utc(v)
        valid_from = values.get("valid_from")
        if v is not None and valid_from is not None and valid_from >= v:
            raise ValueError("Valid until date must be after valid from date")
        return v


class CouponUpdate(BaseModel):
    code: Optional[str] = Field(None, min_length=3, max_length=50)
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    discount_type: Optional[DiscountType] = None
    discount_value: Optional[float] = Field(None, ge=0)
    max_uses: Optional[int] = Field(None, ge=1)
    max_uses_per_user: Optional[int] = Field(None, ge=1)
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    is_global: Optional[bool] = None
    course_ids: Optional[List[str]] = None
    is_active: Optional[bool] = None

    @validator("code")
    def validate_code(cls, v):
        if v is not None and not COUPON_CODE_RE.match(v):
            raise ValueError(
                "Coupon code must contain only uppercase letters, numbers, underscores, and hyphens"
            )
        return v

    @validator("discount_value")
    def validate_discount_value(cls, v, values):
        if v is not None and values.get("discount_type") == DiscountType.PERCENTAGE and v > 100:
            raise ValueError("Percentage discount cannot exceed 100%")
        return v

    @validator("valid_from")
    def validate_valid_from(cls, v):
        return naive_utc(v)

    @validator("valid_until")
    def validate_valid_until(cls, v, values):
        v = naive_utc(v)
        valid_from = values.get("valid_from")
        if v is not None and valid_from is not None and valid_from >= v:
            raise ValueError("Valid until date must be after valid from date")
        return v


class AdminCouponValidate(BaseModel):
    code: str = Field(..., min_length=1)
    user_id: str
    course_id: Optional[str] = None


class AdminDiscountCalculate(BaseModel):
    coupon_id: str
    original_price: float = Field(..., ge=0)
