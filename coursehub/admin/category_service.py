from typing import Optional

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from coursehub.admin.analytics import enrollment_count_subquery, lesson_count_subquery
from coursehub.admin.audit import log_audit
from coursehub.core.errors import conflict, not_found
from coursehub.core.pagination import page_offset, paginate
from coursehub.core.serializers import serialize_row
from coursehub.db.models import Category, Course, User


def course_count_subquery():
    return (
        select(func.count(Course.id))
        .where(Course.category_id == Category.id)
        .correlate(Category)
        .scalar_subquery()
    )


async def _ensure_unique(db: AsyncSession, name: Optional[str], slug: Optional[str], exclude_id: str = None):
    for column, value, message in (
        (Category.name, name, "A category with this name already exists"),
        (Category.slug, slug, "A category with this slug already exists"),
    ):
        if value is None:
            continue
        stmt = select(Category.id).where(column == value)
        if exclude_id:
            stmt = stmt.where(Category.id != exclude_id)
        if (await db.execute(stmt)).first():
            raise conflict(message)


async def create_category(db: AsyncSession, admin, data: dict) -> dict:
    await _ensure_unique(db, data["name"], data["slug"])

    category = Category(**data)
    db.add(category)
    await db.flush()

    log_audit(db, admin, "CREATE_CATEGORY", "CATEGORY", category.id, {
        "category_name": category.name,
        "category_slug": category.slug,
    })
    await db.commit()
    return serialize_row(category)


async def update_category(db: AsyncSession, admin, category_id: str, updates: dict) -> dict:
    category = await db.get(Category, category_id)
    if not category:
        raise not_found("Category not found")

    name = updates.get("name") if updates.get("name") != category.name else None
    slug = updates.get("slug") if updates.get("slug") != category.slug else None
    await _ensure_unique(db, name, slug, exclude_id=category.id)

    for field, value in updates.items():
        setattr(category, field, value)

    log_audit(db, admin, "UPDATE_CATEGORY", "CATEGORY", category.id, {
        "category_name": category.name,
        "changes": sorted(updates.keys()),
    })
    await db.commit()
    return serialize_row(category)


async def delete_category(db: AsyncSession, admin, category_id: str) -> dict:
    category = await db.get(Category, category_id)
    if not category:
        raise not_found("Category not found")

    course_count = (
        await db.execute(select(func.count(Course.id)).where(Course.category_id == category_id))
    ).scalar_one()
    if course_count > 0:
        raise conflict("Cannot delete category with existing courses. Move courses to another category first.")

    await db.delete(category)
    log_audit(db, admin, "DELETE_CATEGORY", "CATEGORY", category_id, {
        "category_name": category.name,
    })
    await db.commit()
    return {"success": True}


async def get_categories(db: AsyncSession, page: int, limit: int, search: Optional[str] = None) -> dict:
    filters = []
    if search:
        pattern = f"%{search.lower()}%"
        filters.append(or_(func.lower(Category.name).like(pattern), func.lower(Category.description).like(pattern)))

    total = (await db.execute(select(func.count(Category.id)).where(*filters))).scalar_one()
    rows = await db.execute(
        select(Category, course_count_subquery())
        .where(*filters)
        .order_by(Category.name.asc())
        .offset(page_offset(page, limit))
        .limit(limit)
    )

    categories = [{**serialize_row(category), "course_count": count} for category, count in rows.all()]
    return paginate(categories, total, page, limit, key="categories")


async def get_category(db: AsyncSession, category_id: str) -> dict:
    category = await db.get(Category, category_id)
    if not category:
        raise not_found("Category not found")

    rows = await db.execute(
        select(Course, User, lesson_count_subquery(), enrollment_count_subquery())
        .join(User, User.id == Course.creator_id)
        .where(Course.category_id == category_id)
        .order_by(Course.title.asc())
    )

    courses = []
    for course, creator, lesson_count, enrollment_count in rows.all():
        item = serialize_row(course)
        item["creator"] = {"id": creator.id, "name": creator.name, "email": creator.email}
        item["counts"] = {"lessons": lesson_count, "enrollments": enrollment_count}
        courses.append(item)

    data = serialize_row(category)
    data["courses"] = courses
    data["course_count"] = len(courses)
    return data


async def get_categories_for_selection(db: AsyncSession) -> list:
    rows = await db.execute(select(Category, course_count_subquery()).order_by(Category.name.asc()))
    return [
        {
            "id": category.id,
            "name": category.name,
            "slug": category.slug,
            "color": category.color,
            "icon": category.icon,
            "course_count": count,
        }
        for category, count in rows.all()
    ]


async def get_category_stats(db: AsyncSession) -> dict:
    total_categories = (await db.execute(select(func.count(Category.id)))).scalar_one()
    categories_with_courses = (
        await db.execute(select(func.count(func.distinct(Course.category_id))))
    ).scalar_one()
    total_courses = (await db.execute(select(func.count(Course.id)))).scalar_one()

    count = course_count_subquery().label("course_count")
    rows = await db.execute(select(Category.id, Category.name, count).order_by(count.desc()).limit(5))

    return {
        "total_categories": total_categories,
        "categories_with_courses": categories_with_courses,
        "categories_without_courses": total_categories - categories_with_courses,
        "total_courses": total_courses,
        "top_categories": [{"id": r.id, "name": r.name, "course_count": r.course_count} for r in rows.all()],
        "average_courses_per_category": total_courses / total_categories if total_categories else 0,
    }
