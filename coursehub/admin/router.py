"""
Admin API Router
Dashboard, user verification, enrollment/order listings, audit trail
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from coursehub.admin import analytics, audit
from coursehub.admin.schemas import UserStatusUpdate
from coursehub.auth.dependencies import AdminContext, get_current_admin, get_current_super_admin
from coursehub.core.errors import ApiError, internal, not_found
from coursehub.db.database import Base, get_db
from coursehub.db.models import EnrollmentStatus, OrderStatus, UserRole

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"])


# ============================================================================
# DASHBOARD
# ============================================================================

@router.get("/dashboard/stats")
async def get_dashboard_stats(
    admin: AdminContext = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await analytics.get_dashboard_stats(db)
    except Exception:
        logger.exception("Failed to fetch dashboard statistics")
        raise internal("Failed to fetch dashboard statistics")


@router.get("/activity")
async def get_recent_activity(
    limit: int = Query(10, ge=1, le=50),
    admin: AdminContext = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await audit.get_recent_activity(db, limit)
    except Exception:
        logger.exception("Failed to fetch recent activity")
        raise internal("Failed to fetch recent activity")


@router.get("/system-health")
async def system_health(
    admin: AdminContext = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    try:
        await db.execute(text("SELECT 1"))
        return {
            "status": "healthy",
            "timestamp": datetime.utcnow().isoformat(),
            "database": {"connected": True, "tables": len(Base.metadata.tables)},
        }
    except Exception as e:
        logger.error("Database health check failed: %s", e)
        return {
            "status": "unhealthy",
            "timestamp": datetime.utcnow().isoformat(),
            "error": str(e),
            "database": {"connected": False},
        }


# ============================================================================
# USERS
# ============================================================================

@router.get("/users")
async def get_users(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: Optional[str] = None,
    role: Optional[UserRole] = None,
    verified: Optional[bool] = None,
    admin: AdminContext = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    return await analytics.get_users(db, page, limit, search, role, verified)


@router.patch("/users/{user_id}/status")
async def update_user_status(
    user_id: str,
    data: UserStatusUpdate,
    admin: AdminContext = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    try:
        user = await analytics.set_user_verified(db, user_id, data.verified)
        if not user:
            raise not_found("User not found")

        audit.log_audit(
            db,
            admin,
            "VERIFY_USER" if data.verified else "UNVERIFY_USER",
            "USER",
            user.id,
            {"user_name": user.name, "user_email": user.email},
        )
        await db.commit()

        return {"id": user.id, "name": user.name, "email": user.email, "verified": user.verified}
    except ApiError:
        raise
    except Exception:
        logger.exception("Failed to update user status for %s", user_id)
        raise internal("Failed to update user status")


# ============================================================================
# ENROLLMENTS & ORDERS
# ============================================================================

@router.get("/enrollments")
async def get_enrollments(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    course_id: Optional[str] = None,
    user_id: Optional[str] = None,
    status: Optional[EnrollmentStatus] = None,
    admin: AdminContext = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    return await analytics.get_enrollments(db, page, limit, course_id, user_id, status)


@router.get("/orders")
async def get_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[OrderStatus] = None,
    user_id: Optional[str] = None,
    admin: AdminContext = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    return await analytics.get_orders(db, page, limit, status, user_id)


# ============================================================================
# AUDIT LOG (super admin)
# ============================================================================

@router.get("/audit-logs")
async def get_audit_logs(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    action: Optional[str] = None,
    actor_id: Optional[str] = None,
    resource_type: Optional[str] = None,
    admin: AdminContext = Depends(get_current_super_admin),
    db: AsyncSession = Depends(get_db),
):
    return await audit.get_audit_logs(db, page, limit, action, actor_id, resource_type)
