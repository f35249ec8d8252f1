"""
Sample data for local development

    python -m coursehub.db.seed

Rows are looked up by their unique keys first, so running it twice is safe.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from coursehub.auth.security import hash_password
from coursehub.db.database import SessionLocal, init_models
from coursehub.db.models import (
    AdminRole,
    AdminUser,
    Category,
    Coupon,
    Course,
    Difficulty,
    DiscountType,
    Lesson,
    User,
    UserRole,
)
from coursehub.students.enrollment_service import create_enrollment, find_enrollment

logger = logging.getLogger("coursehub.seed")

SAMPLE_PASSWORD = "password123"

CATEGORIES = [
    {"name": "Football/Soccer", "slug": "football-soccer", "description": "Football/Soccer training courses and techniques", "icon": "soccer", "color": "#10b981"},
    {"name": "Basketball", "slug": "basketball", "description": "Basketball fundamentals and advanced techniques", "icon": "basketball", "color": "#f59e0b"},
    {"name": "Tennis", "slug": "tennis", "description": "Tennis training from beginner to professional", "icon": "tennis", "color": "#ef4444"},
    {"name": "Fitness & Training", "slug": "fitness", "description": "General fitness and strength training", "icon": "dumbbell", "color": "#8b5cf6"},
    {"name": "Swimming", "slug": "swimming", "description": "Swimming techniques and water sports", "icon": "swimmer", "color": "#06b6d4"},
]

USERS = [
    {"username": "admin", "email": "admin@coursehub.dev", "name": "Admin User", "phone": "+201000000001", "role": UserRole.STUDENT},
    {"username": "professor", "email": "professor@coursehub.dev", "name": "John Professor", "phone": "+201000000002", "role": UserRole.PROFESSOR},
    {"username": "student", "email": "student@coursehub.dev", "name": "Jane Student", "phone": "+201000000003", "role": UserRole.STUDENT},
]

COURSES = [
    {"title": "Football Fundamentals", "slug": "football-fundamentals", "category": "football-soccer", "price": "99.99", "difficulty": Difficulty.BEGINNER, "featured": True,
     "description": "Learn the basic skills and techniques needed to excel in football: passing, dribbling, shooting and tactical awareness."},
    {"title": "Basketball Basics", "slug": "basketball-basics", "category": "basketball", "price": "79.99", "difficulty": Difficulty.BEGINNER, "featured": False,
     "description": "Master the fundamentals of basketball including shooting, dribbling, passing and defense techniques."},
    {"title": "Tennis Masterclass", "slug": "tennis-masterclass", "category": "tennis", "price": "149.99", "difficulty": Difficulty.ADVANCED, "featured": True,
     "description": "Advanced tennis techniques and strategies for competitive play."},
    {"title": "Fitness Bootcamp", "slug": "fitness-bootcamp", "category": "fitness", "price": "0", "difficulty": Difficulty.INTERMEDIATE, "featured": False,
     "description": "High-intensity fitness training program designed to improve strength and endurance."},
]

COUPONS = [
    {"code": "WELCOME20", "name": "Welcome Discount", "description": "20% off for new users", "discount_type": DiscountType.PERCENTAGE, "discount_value": "20", "max_uses": 100, "days": 30},
    {"code": "SUMMER50", "name": "Summer Sale", "description": "50 off any course", "discount_type": DiscountType.FIXED_AMOUNT, "discount_value": "50", "max_uses": 50, "days": 60},
]

LESSONS_PER_COURSE = 5


async def _get_or_create(db: AsyncSession, model, lookup: dict, values: dict):
    result = await db.execute(select(model).filter_by(**lookup))
    row = result.scalar_one_or_none()
    if row is None:
        row = model(**lookup, **values)
        db.add(row)
        await db.flush()
    return row


async def seed(db: AsyncSession) -> None:
    categories = {}
    for data in CATEGORIES:
        category = await _get_or_create(db, Category, {"slug": data["slug"]}, {k: v for k, v in data.items() if k != "slug"})
        categories[category.slug] = category
    logger.info("Categories ready (%d)", len(categories))

    password_hash = hash_password(SAMPLE_PASSWORD)
    users = {}
    for data in USERS:
        values = {k: v for k, v in data.items() if k != "email"}
        user = await _get_or_create(db, User, {"email": data["email"]}, {**values, "password_hash": password_hash, "verified": True})
        users[data["username"]] = user

    admin = await _get_or_create(
        db, AdminUser, {"email": users["admin"].email}, {"name": users["admin"].name, "role": AdminRole.SUPER_ADMIN}
    )
    logger.info("Users ready (admin: %s)", admin.email)

    courses = []
    for data in COURSES:
        price = Decimal(data["price"])
        course = await _get_or_create(
            db,
            Course,
            {"slug": data["slug"]},
            {
                "title": data["title"],
                "description": data["description"],
                "price": price,
                "is_free": price == 0,
                "difficulty": data["difficulty"],
                "language": "en",
                "published": True,
                "featured": data["featured"],
                "creator_id": users["professor"].id,
                "category_id": categories[data["category"]].id,
            },
        )
        courses.append(course)

        for order in range(1, LESSONS_PER_COURSE + 1):
            await _get_or_create(
                db,
                Lesson,
                {"course_id": course.id, "order": order},
                {
                    "title": f"{course.title} - Lesson {order}",
                    "description": f"This is lesson {order} of the {course.title} course.",
                    "video_duration": 300 + 60 * order,
                    "free_preview": order == 1,
                },
            )
    logger.info("Courses ready (%d, %d lessons each)", len(courses), LESSONS_PER_COURSE)

    for data in COUPONS:
        values = {k: v for k, v in data.items() if k not in ("code", "days")}
        await _get_or_create(
            db,
            Coupon,
            {"code": data["code"]},
            {
                **values,
                "discount_value": Decimal(data["discount_value"]),
                "max_uses_per_user": 1,
                "valid_from": datetime.utcnow(),
                "valid_until": datetime.utcnow() + timedelta(days=data["days"]),
                "is_active": True,
                "is_global": True,
                "created_by_id": admin.id,
            },
        )

    free_course = next(course for course in courses if course.is_free)
    if not await find_enrollment(db, users["student"].id, free_course.id):
        await create_enrollment(db, users["student"].id, free_course)

    await db.commit()
    logger.info("Seeding complete. Sample accounts use password %r", SAMPLE_PASSWORD)


async def main() -> None:
    await init_models()
    async with SessionLocal() as db:
        await seed(db)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    asyncio.run(main())
