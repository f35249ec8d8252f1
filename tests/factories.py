from datetime import datetime
from decimal import Decimal
from itertools import count

from coursehub.auth.security import create_session_token, hash_password
from coursehub.db.models import (
    Category,
    Coupon,
    Course,
    Difficulty,
    DiscountType,
    Lesson,
    Order,
    OrderItem,
    OrderStatus,
    User,
    UserRole,
)

_sequence = count(1)


async def create_user(db, role=UserRole.STUDENT, password="password123", **overrides) -> User:
    n = next(_sequence)
    user = User(
        username=overrides.pop("username", f"user{n}"),
        email=overrides.pop("email", f"user{n}@example.com"),
        phone=overrides.pop("phone", f"+2010000{n:05d}"),
        name=overrides.pop("name", f"User {n}"),
        password_hash=hash_password(password),
        role=role,
        verified=overrides.pop("verified", True),
        **overrides,
    )
    db.add(user)
    await db.commit()
    return user


async def create_category(db, **overrides) -> Category:
    n = next(_sequence)
    category = Category(
        name=overrides.pop("name", f"Category {n}"),
        slug=overrides.pop("slug", f"category-{n}"),
        **overrides,
    )
    db.add(category)
    await db.commit()
    return category


async def create_course(db, creator, category, lessons=0, with_videos=True, **overrides) -> Course:
    n = next(_sequence)
    price = Decimal(str(overrides.pop("price", "100.00")))
    course = Course(
        title=overrides.pop("title", f"Course {n}"),
        slug=overrides.pop("slug", f"course-{n}"),
        description=overrides.pop("description", "A course used in tests"),
        price=price,
        is_free=overrides.pop("is_free", price == 0),
        difficulty=overrides.pop("difficulty", Difficulty.BEGINNER),
        published=overrides.pop("published", True),
        creator_id=creator.id,
        category_id=category.id,
        **overrides,
    )
    db.add(course)
    await db.flush()
    for order in range(1, lessons + 1):
        db.add(
            Lesson(
                course_id=course.id,
                title=f"Lesson {order}",
                order=order,
                video_url=f"https://cdn.example.com/{course.slug}/{order}.m3u8" if with_videos else None,
                video_duration=600,
            )
        )
    await db.commit()
    return course


async def create_coupon(db, code="SAVE20", discount_type=DiscountType.PERCENTAGE, discount_value="20", **overrides) -> Coupon:
    coupon = Coupon(
        code=code,
        name=overrides.pop("name", f"{code} coupon"),
        discount_type=discount_type,
        discount_value=Decimal(str(discount_value)),
        is_global=overrides.pop("is_global", True),
        is_active=overrides.pop("is_active", True),
        **overrides,
    )
    db.add(coupon)
    await db.commit()
    return coupon


def auth_headers(user: User) -> dict:
    session = create_session_token(user.id, user.role.value, user.username)
    return {"Authorization": f"Bearer {session['token']}"}


async def create_paid_order(db, user, course, total=None, created_at=None) -> Order:
    amount = Decimal(str(total if total is not None else course.price))
    order = Order(
        user_id=user.id,
        total=amount,
        currency="EGP",
        status=OrderStatus.PAID,
        created_at=created_at or datetime.utcnow(),
    )
    db.add(order)
    await db.flush()
    db.add(OrderItem(order_id=order.id, course_id=course.id, price=amount))
    await db.commit()
    return order
