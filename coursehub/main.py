import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from coursehub.admin.categories_router import router as admin_categories_router
from coursehub.admin.coupons_router import router as admin_coupons_router
from coursehub.admin.courses_router import router as admin_courses_router
from coursehub.admin.router import router as admin_router
from coursehub.auth.router import router as auth_router
from coursehub.config import settings
from coursehub.core.errors import register_error_handlers
from coursehub.coupons.router import router as coupons_router
from coursehub.db.database import init_models
from coursehub.payments.router import router as payments_router
from coursehub.professors.router import router as professor_router
from coursehub.students.router import router as student_router
from coursehub.system.health_router import router as health_router
from coursehub.uploads.router import router as uploads_router

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("coursehub")

app = FastAPI(title="CourseHub API")


@app.on_event("startup")
async def startup_event():
    await init_models()
    logger.info("CourseHub API started")


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)


# ==================== ROUTER REGISTRATION ====================
app.include_router(health_router)
app.include_router(auth_router)
app.include_router(student_router)
app.include_router(professor_router)
app.include_router(coupons_router)
app.include_router(payments_router)
app.include_router(admin_router)
app.include_router(admin_categories_router)
app.include_router(admin_courses_router)
app.include_router(admin_coupons_router)
app.include_router(uploads_router)
# ============================================================
