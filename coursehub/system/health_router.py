import logging
from datetime import datetime

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from coursehub.db.database import get_db
from coursehub.uploads.bunny_cdn import is_configured as cdn_configured

logger = logging.getLogger(__name__)

router = APIRouter(tags=["System"])

VERSION = "1.0.0"


@router.get("/")
async def root():
    return {"service": "CourseHub API", "version": VERSION, "status": "running"}


@router.get("/health")
async def health(db: AsyncSession = Depends(get_db)):
    """Liveness plus a database round trip"""
    try:
        await db.execute(text("SELECT 1"))
    except Exception as e:
        logger.error("Health check database ping failed: %s", e)
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "database": "DOWN", "timestamp": datetime.utcnow().isoformat()},
        )

    return {
        "status": "ok",
        "database": "UP",
        "cdn_configured": cdn_configured(),
        "timestamp": datetime.utcnow().isoformat(),
    }
