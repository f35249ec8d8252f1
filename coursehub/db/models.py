import secrets
from datetime import datetime
from enum import Enum

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum as SAEnum,
    Float,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from coursehub.db.database import Base


def generate_id(prefix: str) -> str:
    """Generate unique ID with prefix"""
    return f"{prefix}_{secrets.token_hex(8).upper()}"


def _id_column(prefix: str) -> Column:
    return Column(String(32), primary_key=True, default=lambda: generate_id(prefix))


# ==================== ENUMS ====================

class UserRole(str, Enum):
    STUDENT = "STUDENT"
    PROFESSOR = "PROFESSOR"


class AdminRole(str, Enum):
    ADMIN = "ADMIN"
    SUPER_ADMIN = "SUPER_ADMIN"


class Difficulty(str, Enum):
    BEGINNER = "BEGINNER"
    INTERMEDIATE = "INTERMEDIATE"
    ADVANCED = "ADVANCED"
    EXPERT = "EXPERT"


class AssetType(str, Enum):
    VIDEO = "VIDEO"
    PDF = "PDF"
    IMAGE = "IMAGE"
    DOCUMENT = "DOCUMENT"
    AUDIO = "AUDIO"
    ARCHIVE = "ARCHIVE"


class EnrollmentStatus(str, Enum):
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    REFUNDED = "REFUNDED"


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class PaymentMethod(str, Enum):
    CARD = "CARD"
    WALLET = "WALLET"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class DiscountType(str, Enum):
    PERCENTAGE = "PERCENTAGE"
    FIXED_AMOUNT = "FIXED_AMOUNT"


# ==================== ACCOUNTS ====================

class User(Base):
    __tablename__ = "users"

    id = _id_column("USR")
    username = Column(String(20), unique=True, nullable=False, index=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    phone = Column(String(16), unique=True, nullable=False)
    second_phone = Column(String(16), nullable=True)
    name = Column(String(50), nullable=False)
    password_hash = Column(String(255), nullable=False)
    role = Column(SAEnum(UserRole, name="user_role"), nullable=False, default=UserRole.STUDENT)
    avatar = Column(Text, nullable=True)
    verified = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<User(id={self.id}, username='{self.username}', role={self.role})>"


class AdminUser(Base):
    """
    Separate administrative identity space.
    A signed-in user acts as admin when an AdminUser shares their e-mail.
    """

    __tablename__ = "admin_users"

    id = _id_column("ADM")
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(100), nullable=False)
    role = Column(SAEnum(AdminRole, name="admin_role"), nullable=False, default=AdminRole.ADMIN)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)


class AuditLog(Base):
    """Append-only record of administrative actions"""

    __tablename__ = "audit_logs"

    id = _id_column("AUD")
    action = Column(String(64), nullable=False, index=True)
    actor_id = Column(String(32), nullable=False, index=True)
    actor_type = Column(String(32), nullable=False)
    resource_id = Column(String(32), nullable=True)
    resource_type = Column(String(32), nullable=True)
    details = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)


# ==================== CATALOG ====================

class Category(Base):
    __tablename__ = "categories"

    id = _id_column("CAT")
    name = Column(String(100), unique=True, nullable=False)
    slug = Column(String(100), unique=True, nullable=False, index=True)
    description = Column(Text, nullable=True)
    icon = Column(String(100), nullable=True)
    color = Column(String(7), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)


class Course(Base):
    __tablename__ = "courses"

    id = _id_column("CRS")
    slug = Column(String(200), unique=True, nullable=False, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False)
    price = Column(Numeric(10, 2), nullable=False, default=0)
    is_free = Column(Boolean, nullable=False, default=False)
    difficulty = Column(SAEnum(Difficulty, name="difficulty"), nullable=False, default=Difficulty.BEGINNER)
    language = Column(String(10), nullable=False, default="en")
    thumbnail = Column(Text, nullable=True)
    cover_image = Column(Text, nullable=True)
    published = Column(Boolean, nullable=False, default=False)
    featured = Column(Boolean, nullable=False, default=False)

    creator_id = Column(String(32), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    category_id = Column(String(32), ForeignKey("categories.id", ondelete="RESTRICT"), nullable=False, index=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    creator = relationship("User", lazy="raise")
    category = relationship("Category", lazy="raise")
    lessons = relationship(
        "Lesson",
        back_populates="course",
        order_by="Lesson.order",
        passive_deletes=True,
        lazy="raise",
    )

    def __repr__(self):
        return f"<Course(id={self.id}, slug='{self.slug}', price={self.price})>"


class Lesson(Base):
    __tablename__ = "lessons"

    id = _id_column("LSN")
    course_id = Column(String(32), ForeignKey("courses.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    order = Column(Integer, nullable=False)
    video_url = Column(Text, nullable=True)
    video_id = Column(String(64), nullable=True)  # Bunny Stream guid
    video_duration = Column(Integer, nullable=True)  # seconds
    thumbnail = Column(Text, nullable=True)
    transcript = Column(Text, nullable=True)
    free_preview = Column(Boolean, nullable=False, default=False)
    is_required = Column(Boolean, nullable=False, default=True)
    can_skip = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    course = relationship("Course", back_populates="lessons", lazy="raise")
    assets = relationship(
        "LessonAsset",
        order_by="LessonAsset.order",
        passive_deletes=True,
        lazy="raise",
    )


class LessonAsset(Base):
    __tablename__ = "lesson_assets"

    id = _id_column("AST")
    lesson_id = Column(String(32), ForeignKey("lessons.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    url = Column(Text, nullable=False)
    type = Column(SAEnum(AssetType, name="asset_type"), nullable=False)
    size = Column(Integer, nullable=False)
    mime_type = Column(String(100), nullable=False)
    order = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


# ==================== COUPONS ====================

class Coupon(Base):
    __tablename__ = "coupons"

    id = _id_column("CPN")
    code = Column(String(50), unique=True, nullable=False, index=True)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    discount_type = Column(SAEnum(DiscountType, name="discount_type"), nullable=False)
    discount_value = Column(Numeric(10, 2), nullable=False)
    max_uses = Column(Integer, nullable=True)
    max_uses_per_user = Column(Integer, nullable=True)
    used_count = Column(Integer, nullable=False, default=0)
    valid_from = Column(DateTime, nullable=True)
    valid_until = Column(DateTime, nullable=True)
    is_global = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_by_id = Column(String(32), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    course_links = relationship("CourseCoupon", passive_deletes=True, lazy="raise")


class CourseCoupon(Base):
    __tablename__ = "course_coupons"
    __table_args__ = (UniqueConstraint("coupon_id", "course_id", name="uq_course_coupon"),)

    id = _id_column("CCP")
    coupon_id = Column(String(32), ForeignKey("coupons.id", ondelete="CASCADE"), nullable=False, index=True)
    course_id = Column(String(32), ForeignKey("courses.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    course = relationship("Course", lazy="raise")


class CouponUsage(Base):
    __tablename__ = "coupon_usages"

    id = _id_column("CPU")
    user_id = Column(String(32), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    coupon_id = Column(String(32), ForeignKey("coupons.id", ondelete="RESTRICT"), nullable=False, index=True)
    course_id = Column(String(32), ForeignKey("courses.id", ondelete="SET NULL"), nullable=True)
    discount_amount = Column(Numeric(10, 2), nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


# ==================== ENROLLMENT & PROGRESS ====================

class Enrollment(Base):
    __tablename__ = "enrollments"
    __table_args__ = (UniqueConstraint("user_id", "course_id", name="uq_enrollment_user_course"),)

    id = _id_column("ENR")
    user_id = Column(String(32), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    course_id = Column(String(32), ForeignKey("courses.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(SAEnum(EnrollmentStatus, name="enrollment_status"), nullable=False, default=EnrollmentStatus.ACTIVE)
    applied_coupon_id = Column(String(32), ForeignKey("coupons.id", ondelete="RESTRICT"), nullable=True)
    progress = Column(Float, nullable=False, default=0.0)
    enrolled_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    expires_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    user = relationship("User", lazy="raise")
    course = relationship("Course", lazy="raise")
    applied_coupon = relationship("Coupon", lazy="raise")


class StudentProgress(Base):
    __tablename__ = "student_progress"
    __table_args__ = (UniqueConstraint("user_id", "course_id", name="uq_student_progress_user_course"),)

    id = _id_column("SPR")
    user_id = Column(String(32), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    course_id = Column(String(32), ForeignKey("courses.id", ondelete="CASCADE"), nullable=False, index=True)
    completion_rate = Column(Float, nullable=False, default=0.0)
    total_watch_time = Column(Integer, nullable=False, default=0)
    last_accessed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", lazy="raise")


class LessonProgress(Base):
    __tablename__ = "lesson_progress"
    __table_args__ = (UniqueConstraint("user_id", "lesson_id", name="uq_lesson_progress_user_lesson"),)

    id = _id_column("LPR")
    user_id = Column(String(32), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    lesson_id = Column(String(32), ForeignKey("lessons.id", ondelete="CASCADE"), nullable=False, index=True)
    student_progress_id = Column(
        String(32), ForeignKey("student_progress.id", ondelete="CASCADE"), nullable=False, index=True
    )
    watch_time = Column(Integer, nullable=False, default=0)
    last_position = Column(Integer, nullable=False, default=0)
    completed = Column(Boolean, nullable=False, default=False)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)


# ==================== ORDERS & PAYMENTS ====================

class Order(Base):
    __tablename__ = "orders"

    id = _id_column("ORD")
    user_id = Column(String(32), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)
    total = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="EGP")
    status = Column(SAEnum(OrderStatus, name="order_status"), nullable=False, default=OrderStatus.PENDING)
    coupon_id = Column(String(32), ForeignKey("coupons.id", ondelete="RESTRICT"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    items = relationship("OrderItem", passive_deletes=True, lazy="raise")
    payments = relationship("Payment", lazy="raise")


class OrderItem(Base):
    __tablename__ = "order_items"

    id = _id_column("OIT")
    order_id = Column(String(32), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    course_id = Column(String(32), ForeignKey("courses.id", ondelete="RESTRICT"), nullable=False, index=True)
    price = Column(Numeric(10, 2), nullable=False)


class Payment(Base):
    __tablename__ = "payments"

    id = _id_column("PAY")
    order_id = Column(String(32), ForeignKey("orders.id", ondelete="RESTRICT"), nullable=False, index=True)
    amount = Column(Numeric(10, 2), nullable=False)
    method = Column(SAEnum(PaymentMethod, name="payment_method"), nullable=False, default=PaymentMethod.CARD)
    status = Column(SAEnum(PaymentStatus, name="payment_status"), nullable=False, default=PaymentStatus.PENDING)
    provider_id = Column(String(64), unique=True, nullable=True)  # razorpay order id
    provider_data = Column(JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
