from sqlalchemy import CheckConstraint, Column, Date, DateTime, Enum as SAEnum, ForeignKey, Integer, JSON, Numeric, Text, Uuid, Index, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from core.database import Base
import enum
import uuid


class Role(str, enum.Enum):
    STUDENT = "STUDENT"
    INSTRUCTOR = "INSTRUCTOR"
    ADMIN = "ADMIN"


class GoalStatus(str, enum.Enum):
    PENDING_INSTRUCTOR_ASSIGNMENT = "PENDING_INSTRUCTOR_ASSIGNMENT"
    ASSIGNED = "ASSIGNED"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class SubmissionStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class PaymentStatus(str, enum.Enum):
    HELD = "HELD"
    REFUNDED = "REFUNDED"
    CAPTURED = "CAPTURED"


class PaymentProvider(str, enum.Enum):
    STRIPE = "stripe"
    PAYPAL = "paypal"


def _enum_column(enum_cls, **kwargs) -> Column:
    # Stored as plain text (no native enum type) so migrations stay portable.
    return Column(
        SAEnum(enum_cls, native_enum=False, length=40, values_callable=lambda e: [m.value for m in e]),
        **kwargs,
    )


class User(Base):
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    email = Column(Text, unique=True, nullable=False, index=True)
    name = Column(Text, nullable=True)
    password_hash = Column(Text, nullable=True)
    role = _enum_column(Role, default=Role.STUDENT, nullable=False)
    # IANA timezone (e.g. "America/New_York"); decides which calendar day a submission lands on.
    timezone = Column(Text, nullable=True)

    goals = relationship(
        "Goal",
        back_populates="user",
        foreign_keys="Goal.user_id",
        cascade="all, delete-orphan",
    )
    instructed_goals = relationship(
        "Goal",
        back_populates="instructor",
        foreign_keys="Goal.instructor_id",
    )


class Goal(Base):
    """
    A staked commitment.

    Status only moves forward through services.goal_lifecycle; end_date is
    null until the owner starts the goal.
    """

    __tablename__ = "goals"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    title = Column(Text, nullable=False)
    description = Column(Text, nullable=False)
    duration_days = Column(Integer, nullable=False)
    stake_amount = Column(Numeric(10, 2), nullable=False)
    start_date = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    started_at = Column(DateTime(timezone=True), nullable=True)
    end_date = Column(DateTime(timezone=True), nullable=True)
    status = _enum_column(
        GoalStatus,
        default=GoalStatus.PENDING_INSTRUCTOR_ASSIGNMENT,
        nullable=False,
        index=True,
    )

    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    instructor_id = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    user = relationship("User", back_populates="goals", foreign_keys=[user_id])
    instructor = relationship("User", back_populates="instructed_goals", foreign_keys=[instructor_id])
    submissions = relationship(
        "DailySubmission",
        back_populates="goal",
        cascade="all, delete-orphan",
        order_by="DailySubmission.submission_date",
    )
    payment = relationship("Payment", back_populates="goal", uselist=False, cascade="all, delete-orphan")

    __table_args__ = (
        CheckConstraint("user_id <> instructor_id", name="ck_goals_instructor_not_owner"),
    )


class DailySubmission(Base):
    __tablename__ = "daily_submissions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    goal_id = Column(Uuid, ForeignKey("goals.id", ondelete="CASCADE"), nullable=False, index=True)
    submission_date = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    # Calendar day in the owner's timezone; at most one row per goal per day.
    submission_day = Column(Date, nullable=False)
    content = Column(Text, nullable=False)
    file_url = Column(Text, nullable=True)
    status = _enum_column(SubmissionStatus, default=SubmissionStatus.PENDING, nullable=False, index=True)
    reviewer_id = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    reviewer_comment = Column(Text, nullable=True)

    goal = relationship("Goal", back_populates="submissions")

    __table_args__ = (
        UniqueConstraint("goal_id", "submission_day", name="uq_daily_submissions_goal_day"),
    )


class Payment(Base):
    """
    Stake held against a goal.

    HELD -> REFUNDED (goal completed) or HELD -> CAPTURED (goal failed); never reversed.
    """

    __tablename__ = "payments"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    goal_id = Column(Uuid, ForeignKey("goals.id", ondelete="CASCADE"), nullable=False, unique=True, index=True)
    provider = _enum_column(PaymentProvider, default=PaymentProvider.STRIPE, nullable=False)
    # Stripe charge id (ch_*) or PayPal authorization id
    provider_charge_id = Column(Text, nullable=False, index=True)
    amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(Text, nullable=False, default="usd")
    status = _enum_column(PaymentStatus, default=PaymentStatus.HELD, nullable=False, index=True)
    type = Column(Text, nullable=False, default="STAKE")
    # Who receives the funds: the payer while held/refunded, null (platform) once captured.
    recipient_id = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    goal = relationship("Goal", back_populates="payment")


class AdminAuditEvent(Base):
    """
    Append-only audit log for admin actions.

    Non-negotiable invariants:
    - write-only from the application (no update/delete in code paths)
    - bounded payload (no secrets; minimal PII)
    """

    __tablename__ = "admin_audit_event"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    actor_user_id = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    action = Column(Text, nullable=False, index=True)  # e.g., user.update | goal.delete

    target_type = Column(Text, nullable=True)  # user | goal
    target_id = Column(Text, nullable=True, index=True)
    reason = Column(Text, nullable=True)

    ip_address = Column(Text, nullable=True)
    user_agent = Column(Text, nullable=True)

    payload = Column(JSON, nullable=False, default=dict)

    __table_args__ = (
        Index("ix_admin_audit_event_target", "target_type", "target_id"),
    )
