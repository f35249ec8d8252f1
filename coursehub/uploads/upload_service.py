"""
Course authoring wizard
basic info -> thumbnail -> lessons -> videos -> assets -> review & publish
"""

import logging
import re
import time
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from coursehub.admin.audit import log_audit
from coursehub.admin.course_service import (
    creator_card,
    ensure_category,
    ensure_professor,
    ensure_slug_available,
    get_course_or_404,
)
from coursehub.core.errors import bad_request, conflict, not_found
from coursehub.core.serializers import serialize_row
from coursehub.db.models import AssetType, Category, Course, Lesson, LessonAsset, User
from coursehub.uploads.bunny_cdn import (
    BunnyCDNClient,
    CdnError,
    video_embed_url,
    video_playlist_url,
    video_thumbnail_url,
)
from coursehub.uploads.file_validation import (
    FilePayload,
    validate_image_file,
    validate_pdf_file,
    validate_video_file,
)
from coursehub.uploads.readiness import completion_checks, publish_errors, wizard_steps

logger = logging.getLogger(__name__)

UNSAFE_NAME_CHARS = re.compile(r"[^a-zA-Z0-9.-]")


def _timestamp() -> int:
    return int(time.time() * 1000)


def _decode(file: FilePayload) -> bytes:
    try:
        return file.decode()
    except ValueError as e:
        raise bad_request(str(e))


async def _get_lesson(db: AsyncSession, lesson_id: str) -> Lesson:
    lesson = await db.get(Lesson, lesson_id)
    if not lesson:
        raise not_found("Lesson not found")
    return lesson


async def _course_lessons(db: AsyncSession, course_id: str) -> list:
    rows = await db.execute(select(Lesson).where(Lesson.course_id == course_id).order_by(Lesson.order))
    return list(rows.scalars().all())


async def _course_card(db: AsyncSession, course: Course) -> dict:
    creator = await db.get(User, course.creator_id)
    category = await db.get(Category, course.category_id)
    data = serialize_row(course)
    data["creator"] = creator_card(creator) if creator else None
    data["category"] = serialize_row(category)
    return data


# ==================== STEP 1: BASIC INFO ====================

async def create_course_draft(db: AsyncSession, admin, data: dict) -> dict:
    creator = await ensure_professor(db, data["creator_id"])
    await ensure_slug_available(db, data["slug"])
    await ensure_category(db, data["category_id"])

    course = Course(**{**data, "price": Decimal(str(data["price"])), "published": False})
    db.add(course)
    await db.flush()

    log_audit(db, admin, "CREATE_COURSE_DRAFT", "COURSE", course.id, {
        "course_name": course.title,
        "creator_id": creator.id,
        "step": "basic_info",
    })
    await db.commit()

    return {"course": await _course_card(db, course), "next_step": "thumbnail"}


# ==================== STEP 2: THUMBNAIL ====================

async def upload_course_thumbnail(db: AsyncSession, admin, cdn: BunnyCDNClient, course_id: str, file: FilePayload) -> dict:
    course = await get_course_or_404(db, course_id)

    content = _decode(file)
    error = validate_image_file(file, content)
    if error:
        raise bad_request(error)

    file_name = f"thumbnail-{_timestamp()}.{file.extension or 'jpg'}"
    try:
        result = await cdn.upload_file(content, f"courses/{course_id}/thumbnails", file_name)
    except CdnError as e:
        raise bad_request(str(e))

    course.thumbnail = result["url"]
    log_audit(db, admin, "UPLOAD_COURSE_THUMBNAIL", "COURSE", course_id, {
        "thumbnail_url": result["url"],
        "step": "thumbnail",
    })
    await db.commit()

    return {
        "course": await _course_card(db, course),
        "thumbnail": {"url": result["url"], "path": result["path"]},
        "next_step": "lessons",
    }


# ==================== STEP 3: LESSONS ====================

async def add_lesson(db: AsyncSession, admin, course_id: str, data: dict) -> dict:
    course = await get_course_or_404(db, course_id)

    existing = await db.execute(select(Lesson.id).where(Lesson.course_id == course_id, Lesson.order == data["order"]))
    if existing.first():
        raise conflict("A lesson with this order already exists")

    lesson = Lesson(course_id=course.id, **data)
    db.add(lesson)
    await db.flush()

    log_audit(db, admin, "CREATE_LESSON", "LESSON", lesson.id, {
        "lesson_title": lesson.title,
        "course_id": course.id,
        "order": lesson.order,
    })
    await db.commit()

    result = serialize_row(lesson)
    result["course"] = {"id": course.id, "title": course.title}
    return {"lesson": result, "next_step": "video_upload"}


async def bulk_add_lessons(db: AsyncSession, admin, course_id: str, lessons: list) -> dict:
    """
    Create many lessons in one transaction

    Raises:
        400: Duplicate orders in the request
        409: Orders already taken in the course
    """
    await get_course_or_404(db, course_id)

    orders = [lesson["order"] for lesson in lessons]
    if len(orders) != len(set(orders)):
        raise bad_request("Duplicate lesson orders are not allowed")

    taken = await db.execute(
        select(Lesson.order).where(Lesson.course_id == course_id, Lesson.order.in_(orders)).order_by(Lesson.order)
    )
    conflicting = taken.scalars().all()
    if conflicting:
        raise conflict(f"Lessons with orders {', '.join(str(o) for o in conflicting)} already exist")

    created = [Lesson(course_id=course_id, **lesson) for lesson in lessons]
    db.add_all(created)
    await db.flush()

    log_audit(db, admin, "BULK_ADD_LESSONS", "COURSE", course_id, {
        "lesson_count": len(created),
        "step": "lessons",
    })
    await db.commit()

    return {
        "lessons": [serialize_row(lesson) for lesson in sorted(created, key=lambda l: l.order)],
        "next_step": "video_uploads",
    }


# ==================== STEP 4: VIDEO ====================

async def upload_lesson_video(db: AsyncSession, admin, cdn: BunnyCDNClient, lesson_id: str, file: FilePayload) -> dict:
    lesson = await _get_lesson(db, lesson_id)
    course = await db.get(Course, lesson.course_id)

    content = _decode(file)
    error = validate_video_file(file, content)
    if error:
        raise bad_request(error)

    try:
        video = await cdn.upload_video(content, f"{course.title} - {lesson.title}")
    except CdnError as e:
        raise bad_request(str(e))

    guid = video["guid"]
    lesson.video_id = guid
    lesson.video_url = video_playlist_url(guid)
    lesson.thumbnail = video_thumbnail_url(guid)
    lesson.video_duration = video.get("length") or None

    log_audit(db, admin, "UPLOAD_LESSON_VIDEO", "LESSON", lesson.id, {
        "video_id": guid,
        "duration": lesson.video_duration,
        "step": "video_upload",
    })
    await db.commit()

    result = serialize_row(lesson)
    result["course"] = {"id": course.id, "title": course.title}
    return {
        "lesson": result,
        "video": {
            "id": guid,
            "url": lesson.video_url,
            "thumbnail_url": lesson.thumbnail,
            "embed_url": video_embed_url(guid),
            "duration": lesson.video_duration,
        },
        "next_step": "assets",
    }


# ==================== STEP 5: ASSETS ====================

async def upload_lesson_asset(
    db: AsyncSession,
    admin,
    cdn: BunnyCDNClient,
    lesson_id: str,
    asset_type: AssetType,
    file: FilePayload,
) -> dict:
    lesson = await _get_lesson(db, lesson_id)
    base_path = f"courses/{lesson.course_id}/lessons/{lesson_id}"
    content = _decode(file)

    if asset_type == AssetType.IMAGE:
        error = validate_image_file(file, content)
        path = f"{base_path}/thumbnails"
        file_name = f"lesson-thumbnail-{_timestamp()}.{file.extension or 'jpg'}"
    else:
        error = validate_pdf_file(file, content)
        path = f"{base_path}/documents"
        file_name = f"{_timestamp()}-{UNSAFE_NAME_CHARS.sub('_', file.name)}"
    if error:
        raise bad_request(error)

    try:
        result = await cdn.upload_file(content, path, file_name)
    except CdnError as e:
        raise bad_request(str(e))

    asset = LessonAsset(
        lesson_id=lesson.id,
        name=file.name,
        url=result["url"],
        type=asset_type,
        size=len(content),
        mime_type=file.type,
        order=0,
    )
    db.add(asset)
    await db.flush()

    log_audit(db, admin, "UPLOAD_LESSON_ASSET", "LESSON", lesson.id, {
        "asset_id": asset.id,
        "asset_type": asset_type.value,
        "asset_name": asset.name,
        "step": "assets",
    })
    await db.commit()

    return {"asset": serialize_row(asset), "next_step": "review"}


# ==================== STEP 6: REVIEW & PUBLISH ====================

async def _asset_counts(db: AsyncSession, lesson_ids: list) -> dict:
    if not lesson_ids:
        return {}
    rows = await db.execute(
        select(LessonAsset.lesson_id, func.count(LessonAsset.id))
        .where(LessonAsset.lesson_id.in_(lesson_ids))
        .group_by(LessonAsset.lesson_id)
    )
    return dict(rows.all())


async def get_course_for_review(db: AsyncSession, course_id: str) -> dict:
    course = await get_course_or_404(db, course_id)
    lessons = await _course_lessons(db, course_id)
    lesson_ids = [lesson.id for lesson in lessons]

    assets_by_lesson = {lesson_id: [] for lesson_id in lesson_ids}
    if lesson_ids:
        assets = await db.execute(
            select(LessonAsset).where(LessonAsset.lesson_id.in_(lesson_ids)).order_by(LessonAsset.order)
        )
        for asset in assets.scalars().all():
            assets_by_lesson[asset.lesson_id].append(serialize_row(asset))

    checks = completion_checks(course, lessons)

    data = await _course_card(db, course)
    data["lessons"] = [{**serialize_row(lesson), "assets": assets_by_lesson[lesson.id]} for lesson in lessons]
    return {
        "course": data,
        "completion_checks": checks,
        "is_ready_to_publish": all(checks.values()),
        "total_lessons": len(lessons),
        "total_assets": sum(len(items) for items in assets_by_lesson.values()),
    }


async def set_course_published(db: AsyncSession, admin, course_id: str, published: bool) -> dict:
    course = await get_course_or_404(db, course_id)
    lessons = await _course_lessons(db, course_id)

    if published:
        errors = publish_errors(course, lessons)
        if errors:
            raise bad_request(f"Course is not ready for publishing: {', '.join(errors)}")

    course.published = published
    log_audit(db, admin, "PUBLISH_COURSE" if published else "UNPUBLISH_COURSE", "COURSE", course_id, {
        "course_name": course.title,
        "lesson_count": len(lessons),
    })
    await db.commit()
    logger.info("Course %s %s by admin %s", course_id, "published" if published else "unpublished", admin.admin_id)

    data = await _course_card(db, course)
    data["counts"] = {"lessons": len(lessons)}
    return {
        "course": data,
        "message": "Course published successfully!" if published else "Course unpublished successfully!",
    }


async def get_upload_progress(db: AsyncSession, course_id: str) -> dict:
    course = await get_course_or_404(db, course_id)
    lessons = await _course_lessons(db, course_id)
    steps = wizard_steps(course, lessons, await _asset_counts(db, [lesson.id for lesson in lessons]))

    completed = len([step for step in steps if step["completed"]])
    return {
        "course": {"id": course.id, "title": course.title, "published": course.published},
        "steps": steps,
        "progress": {
            "completed": completed,
            "total": len(steps),
            "percentage": completed / len(steps) * 100,
        },
    }
