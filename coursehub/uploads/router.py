"""
Upload API Router
Admin course-authoring wizard; files travel base64-encoded in JSON
"""

import logging
from typing import List

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, validator
from sqlalchemy.ext.asyncio import AsyncSession

from coursehub.admin.schemas import CourseCreate, LessonCreate
from coursehub.auth.dependencies import AdminContext, get_current_admin
from coursehub.core.errors import ApiError, internal
from coursehub.db.database import get_db
from coursehub.db.models import AssetType
from coursehub.uploads import upload_service as service
from coursehub.uploads.bunny_cdn import BunnyCDNClient, get_cdn_client
from coursehub.uploads.file_validation import FilePayload

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/uploads", tags=["Admin Uploads"])

ASSET_TYPES = (AssetType.PDF, AssetType.IMAGE, AssetType.DOCUMENT)


class FileUpload(BaseModel):
    file: FilePayload


class AssetUpload(BaseModel):
    asset_type: AssetType
    file: FilePayload

    @validator("asset_type")
    def validate_asset_type(cls, v):
        if v not in ASSET_TYPES:
            raise ValueError("Asset type must be PDF, IMAGE or DOCUMENT")
        return v


class BulkLessonCreate(BaseModel):
    lessons: List[LessonCreate] = Field(..., min_length=1, max_length=50)


class PublishRequest(BaseModel):
    published: bool


@router.post("/courses", status_code=201)
async def create_course_step1(
    data: CourseCreate,
    admin: AdminContext = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    """Step 1: basic information, always created as a draft"""
    try:
        return await service.create_course_draft(db, admin, data.dict())
    except ApiError:
        raise
    except Exception:
        logger.exception("Failed to create course draft")
        raise internal("Failed to create course")


@router.post("/courses/{course_id}/thumbnail")
async def upload_course_thumbnail(
    course_id: str,
    data: FileUpload,
    admin: AdminContext = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
    cdn: BunnyCDNClient = Depends(get_cdn_client),
):
    try:
        return await service.upload_course_thumbnail(db, admin, cdn, course_id, data.file)
    except ApiError:
        raise
    except Exception:
        logger.exception("Thumbnail upload failed for course %s", course_id)
        raise internal("Failed to upload course thumbnail")


@router.post("/courses/{course_id}/lessons", status_code=201)
async def add_lesson(
    course_id: str,
    data: LessonCreate,
    admin: AdminContext = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await service.add_lesson(db, admin, course_id, data.dict())
    except ApiError:
        raise
    except Exception:
        logger.exception("Failed to add lesson to course %s", course_id)
        raise internal("Failed to add lesson")


@router.post("/courses/{course_id}/lessons/bulk", status_code=201)
async def bulk_add_lessons(
    course_id: str,
    data: BulkLessonCreate,
    admin: AdminContext = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await service.bulk_add_lessons(db, admin, course_id, [lesson.dict() for lesson in data.lessons])
    except ApiError:
        raise
    except Exception:
        logger.exception("Failed to bulk add lessons to course %s", course_id)
        raise internal("Failed to bulk add lessons")


@router.post("/lessons/{lesson_id}/video")
async def upload_lesson_video(
    lesson_id: str,
    data: FileUpload,
    admin: AdminContext = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
    cdn: BunnyCDNClient = Depends(get_cdn_client),
):
    try:
        return await service.upload_lesson_video(db, admin, cdn, lesson_id, data.file)
    except ApiError:
        raise
    except Exception:
        logger.exception("Video upload failed for lesson %s", lesson_id)
        raise internal("Failed to upload lesson video")


@router.post("/lessons/{lesson_id}/assets", status_code=201)
async def upload_lesson_asset(
    lesson_id: str,
    data: AssetUpload,
    admin: AdminContext = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
    cdn: BunnyCDNClient = Depends(get_cdn_client),
):
    try:
        return await service.upload_lesson_asset(db, admin, cdn, lesson_id, data.asset_type, data.file)
    except ApiError:
        raise
    except Exception:
        logger.exception("Asset upload failed for lesson %s", lesson_id)
        raise internal("Failed to upload lesson asset")


@router.get("/courses/{course_id}/review")
async def get_course_for_review(
    course_id: str,
    admin: AdminContext = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    return await service.get_course_for_review(db, course_id)


@router.post("/courses/{course_id}/publish")
async def publish_course(
    course_id: str,
    data: PublishRequest,
    admin: AdminContext = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await service.set_course_published(db, admin, course_id, data.published)
    except ApiError:
        raise
    except Exception:
        logger.exception("Failed to update publication status for course %s", course_id)
        raise internal("Failed to update course publication status")


@router.get("/courses/{course_id}/progress")
async def get_upload_progress(
    course_id: str,
    admin: AdminContext = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    return await service.get_upload_progress(db, course_id)
