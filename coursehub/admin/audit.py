from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from coursehub.core.pagination import page_offset, paginate
from coursehub.core.serializers import serialize_row
from coursehub.db.models import AuditLog

ACTOR_TYPE_ADMIN = "ADMIN"

ACTIVITY_MESSAGES = {
    "CREATE_COURSE": ('New course "{course_name}" was created', ("course_name",)),
    "UPDATE_COURSE": ('Course "{course_name}" was updated', ("course_name",)),
    "DELETE_COURSE": ('Course "{course_name}" was deleted', ("course_name",)),
    "PUBLISH_COURSE": ('Course "{course_name}" was published', ("course_name",)),
    "UNPUBLISH_COURSE": ('Course "{course_name}" was unpublished', ("course_name",)),
    "CREATE_COUPON": ('New coupon "{coupon_code}" was created', ("coupon_code",)),
    "CREATE_CATEGORY": ('New category "{category_name}" was created', ("category_name",)),
    "VERIFY_USER": ('User "{user_email}" was verified', ("user_email",)),
    "UNVERIFY_USER": ('User "{user_email}" was unverified', ("user_email",)),
}


def log_audit(
    db: AsyncSession,
    admin,
    action: str,
    resource_type: str,
    resource_id: Optional[str],
    metadata: dict = None,
) -> AuditLog:
    """
    Record an administrative action

    The row joins the caller's transaction so it commits (or rolls back)
    together with the change it describes.

    Args:
        admin: AdminContext of the acting admin
        action: e.g. 'CREATE_COURSE', 'DELETE_COUPON'
        resource_type: e.g. 'COURSE', 'LESSON', 'COUPON'
        resource_id: ID of the resource
        metadata: Additional context (optional)
    """
    entry = AuditLog(
        action=action,
        actor_id=admin.admin_id,
        actor_type=ACTOR_TYPE_ADMIN,
        resource_id=resource_id,
        resource_type=resource_type,
        details=metadata or {},
    )
    db.add(entry)
    return entry


def serialize_audit_log(entry: AuditLog) -> dict:
    data = serialize_row(entry)
    data["metadata"] = data.pop("details")
    return data


def format_activity_message(action: str, metadata: Optional[dict]) -> str:
    metadata = metadata or {}
    if action in ACTIVITY_MESSAGES:
        template, keys = ACTIVITY_MESSAGES[action]
        return template.format(**{key: metadata.get(key) or "Unknown" for key in keys})
    return action.replace("_", " ").lower()


def get_activity_type(action: str) -> str:
    if action.startswith("CREATE_"):
        return "create"
    if action.startswith("UPDATE_"):
        return "update"
    if action.startswith("DELETE_"):
        return "delete"
    if "USER" in action or "ENROLLMENT" in action:
        return "user"
    return "other"


async def get_audit_logs(
    db: AsyncSession,
    page: int,
    limit: int,
    action: Optional[str] = None,
    actor_id: Optional[str] = None,
    resource_type: Optional[str] = None,
) -> dict:
    filters = []
    if action:
        filters.append(AuditLog.action == action)
    if actor_id:
        filters.append(AuditLog.actor_id == actor_id)
    if resource_type:
        filters.append(AuditLog.resource_type == resource_type)

    total = (await db.execute(select(func.count(AuditLog.id)).where(*filters))).scalar_one()
    rows = await db.execute(
        select(AuditLog)
        .where(*filters)
        .order_by(AuditLog.created_at.desc())
        .offset(page_offset(page, limit))
        .limit(limit)
    )

    logs = [serialize_audit_log(entry) for entry in rows.scalars().all()]
    return paginate(logs, total, page, limit, key="logs")


async def get_recent_activity(db: AsyncSession, limit: int) -> list:
    rows = await db.execute(select(AuditLog).order_by(AuditLog.created_at.desc()).limit(limit))
    return [
        {
            "id": entry.id,
            "message": format_activity_message(entry.action, entry.details),
            "type": get_activity_type(entry.action),
            "timestamp": entry.created_at.isoformat(),
        }
        for entry in rows.scalars().all()
    ]
