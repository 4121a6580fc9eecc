"""
Goal lifecycle engine.

    PENDING_INSTRUCTOR_ASSIGNMENT --assign--> ASSIGNED --start--> ACTIVE
    ACTIVE --complete--> COMPLETED   (stake refunded)
    ACTIVE --fail-->     FAILED      (stake captured)

Transitions are looked up in GOAL_TRANSITIONS; any (status, action) pair not
in the table raises InvalidStateError. Every transition is persisted with a
compare-and-set UPDATE on the current status, so two concurrent requests
cannot both move the same goal.

Payment settlement gates the terminal transitions: the gateway call must
succeed before the goal or payment rows change.
"""
from __future__ import annotations

import enum
import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Optional
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload, selectinload

from core.auth import Capability, RequestContext
from core.config import settings
from core.exceptions import (
    AuthorizationError,
    InvalidStateError,
    NotFoundError,
    PaymentError,
    PaymentStateError,
    SelfAssignmentError,
    ValidationError,
)
from models import Goal, GoalStatus, Payment, PaymentProvider, PaymentStatus
from services.payment_gateway import GatewayResolver, PaymentGateway, get_payment_gateway

logger = logging.getLogger(__name__)


class GoalAction(str, enum.Enum):
    ASSIGN = "assign"
    START = "start"
    COMPLETE = "complete"
    FAIL = "fail"


class PaymentAction(str, enum.Enum):
    REFUND = "refund"
    CAPTURE = "capture"


GOAL_TRANSITIONS: dict[tuple[GoalStatus, GoalAction], GoalStatus] = {
    (GoalStatus.PENDING_INSTRUCTOR_ASSIGNMENT, GoalAction.ASSIGN): GoalStatus.ASSIGNED,
    (GoalStatus.ASSIGNED, GoalAction.START): GoalStatus.ACTIVE,
    (GoalStatus.ACTIVE, GoalAction.COMPLETE): GoalStatus.COMPLETED,
    (GoalStatus.ACTIVE, GoalAction.FAIL): GoalStatus.FAILED,
}

PAYMENT_TRANSITIONS: dict[tuple[PaymentStatus, PaymentAction], PaymentStatus] = {
    (PaymentStatus.HELD, PaymentAction.REFUND): PaymentStatus.REFUNDED,
    (PaymentStatus.HELD, PaymentAction.CAPTURE): PaymentStatus.CAPTURED,
}

# Outcome chosen by the instructor -> (goal action, settlement action)
FINAL_OUTCOMES: dict[GoalStatus, tuple[GoalAction, PaymentAction]] = {
    GoalStatus.COMPLETED: (GoalAction.COMPLETE, PaymentAction.REFUND),
    GoalStatus.FAILED: (GoalAction.FAIL, PaymentAction.CAPTURE),
}

_REJECTION_MESSAGES = {
    GoalAction.ASSIGN: "Goal is not pending instructor assignment",
    GoalAction.START: "Goal is not in a state to be started",
    GoalAction.COMPLETE: "Only active goals can be finalized",
    GoalAction.FAIL: "Only active goals can be finalized",
}


def next_status(current: GoalStatus, action: GoalAction) -> GoalStatus:
    try:
        return GOAL_TRANSITIONS[(GoalStatus(current), GoalAction(action))]
    except KeyError:
        raise InvalidStateError(f"{_REJECTION_MESSAGES[GoalAction(action)]} (status: {GoalStatus(current).value})")


def next_payment_status(current: PaymentStatus, action: PaymentAction) -> PaymentStatus:
    try:
        return PAYMENT_TRANSITIONS[(PaymentStatus(current), PaymentAction(action))]
    except KeyError:
        raise PaymentStateError(f"Cannot {PaymentAction(action).value} a payment that is {PaymentStatus(current).value}")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _log_transition(goal: Goal, action: GoalAction, new_status: GoalStatus, actor_id: UUID, **fields: Any) -> None:
    logger.info(
        f"Goal {goal.id}: {action.value} -> {new_status.value}",
        extra={
            "extra_fields": {
                "goal_id": str(goal.id),
                "action": action.value,
                "status": new_status.value,
                "actor_id": str(actor_id),
                **fields,
            }
        },
    )


def _compare_and_set(db: Session, model, row_id: UUID, expected_status, values: dict[str, Any]) -> bool:
    updated = (
        db.query(model)
        .filter(model.id == row_id, model.status == expected_status)
        .update(values, synchronize_session=False)
    )
    return updated == 1


def _transition(db: Session, goal: Goal, action: GoalAction, **values: Any) -> GoalStatus:
    """Move goal along `action`, flushing a guarded UPDATE. Caller commits."""
    current = GoalStatus(goal.status)
    new_status = next_status(current, action)
    if not _compare_and_set(db, Goal, goal.id, current, {"status": new_status, **values}):
        db.rollback()
        raise InvalidStateError(f"Goal {goal.id} changed state concurrently; reload and retry")
    return new_status


def _get_goal(db: Session, goal_id: UUID) -> Goal:
    goal = db.query(Goal).filter(Goal.id == goal_id).first()
    if not goal:
        raise NotFoundError("Goal", goal_id)
    return goal


# --- Validation -------------------------------------------------------------

def _require_text(value: Optional[str], field: str) -> str:
    text = (value or "").strip() if isinstance(value, str) or value is None else str(value).strip()
    if not text:
        raise ValidationError(f"{field} is required", field=field)
    return text


def _parse_duration(value: Any) -> int:
    try:
        days = int(value)
    except (TypeError, ValueError):
        raise ValidationError("duration_days must be a whole number of days", field="duration_days")
    if isinstance(value, float) and not value.is_integer():
        raise ValidationError("duration_days must be a whole number of days", field="duration_days")
    if days <= 0:
        raise ValidationError("duration_days must be positive", field="duration_days")
    if days > settings.MAX_GOAL_DURATION_DAYS:
        raise ValidationError(
            f"duration_days cannot exceed {settings.MAX_GOAL_DURATION_DAYS}", field="duration_days"
        )
    return days


def _parse_stake(value: Any) -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError("stake_amount must be a number", field="stake_amount")
    if not amount.is_finite() or amount <= 0:
        raise ValidationError("stake_amount must be positive", field="stake_amount")
    if amount > Decimal(str(settings.MAX_STAKE_AMOUNT)):
        raise ValidationError(f"stake_amount cannot exceed {settings.MAX_STAKE_AMOUNT}", field="stake_amount")
    if amount != amount.quantize(Decimal("0.01")):
        raise ValidationError("stake_amount cannot have fractional cents", field="stake_amount")
    return amount.quantize(Decimal("0.01"))


def _parse_provider(value: Optional[str]) -> PaymentProvider:
    try:
        return PaymentProvider((value or settings.PAYMENT_PROVIDER).lower())
    except ValueError:
        raise ValidationError(f"Unsupported payment provider: {value}", field="provider")


# --- Commands ---------------------------------------------------------------

def create_goal(
    db: Session,
    ctx: RequestContext,
    *,
    title: Optional[str],
    description: Optional[str],
    duration_days: Any,
    stake_amount: Any,
    payment_token: Optional[str],
    provider: Optional[str] = None,
    resolve_gateway: GatewayResolver = get_payment_gateway,
) -> Goal:
    """
    Hold the stake, then persist Goal + Payment in one transaction.

    If the hold is declined nothing is written. If the write fails after a
    successful hold, the hold is released before the error propagates.
    """
    ctx.require(Capability.MANAGE_OWN_GOALS)

    title = _require_text(title, "title")
    description = _require_text(description, "description")
    days = _parse_duration(duration_days)
    amount = _parse_stake(stake_amount)
    token = _require_text(payment_token, "payment_token")
    payment_provider = _parse_provider(provider)

    gateway = resolve_gateway(payment_provider)
    charge_id = gateway.hold(
        amount=amount,
        source_token=token,
        description=f"Stake for goal: {title}",
        metadata={"user_id": str(ctx.user_id), "goal_title": title[:200]},
    )

    goal = Goal(
        title=title,
        description=description,
        duration_days=days,
        stake_amount=amount,
        start_date=_now(),
        status=GoalStatus.PENDING_INSTRUCTOR_ASSIGNMENT,
        user_id=ctx.user_id,
    )
    goal.payment = Payment(
        provider=payment_provider,
        provider_charge_id=charge_id,
        amount=amount,
        currency=settings.STAKE_CURRENCY,
        status=PaymentStatus.HELD,
        type="STAKE",
        recipient_id=ctx.user_id,
    )
    try:
        db.add(goal)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.error(f"Goal insert failed after hold {charge_id}; releasing hold", exc_info=True)
        _release_orphan_hold(gateway, charge_id)
        raise

    db.refresh(goal)
    logger.info(
        f"Goal {goal.id} created with {payment_provider.value} hold",
        extra={
            "extra_fields": {
                "goal_id": str(goal.id),
                "user_id": str(ctx.user_id),
                "stake_amount": str(amount),
                "provider": payment_provider.value,
            }
        },
    )
    return goal


def _release_orphan_hold(gateway: PaymentGateway, charge_id: str) -> None:
    try:
        gateway.refund(charge_id, idempotency_key=f"orphan-{charge_id}")
    except PaymentError:
        # Nothing else can be done in-request; the log line is the paper trail.
        logger.critical(f"Failed to release orphaned hold {charge_id}", exc_info=True)


def assign_goal(db: Session, ctx: RequestContext, goal_id: UUID) -> Goal:
    """Instructor claims a goal that is waiting for one."""
    ctx.require(Capability.CLAIM_GOALS)
    goal = _get_goal(db, goal_id)

    next_status(goal.status, GoalAction.ASSIGN)
    if goal.user_id == ctx.user_id:
        raise SelfAssignmentError()

    new_status = _transition(db, goal, GoalAction.ASSIGN, instructor_id=ctx.user_id)
    db.commit()
    db.refresh(goal)
    _log_transition(goal, GoalAction.ASSIGN, new_status, ctx.user_id)
    return goal


def start_goal(db: Session, ctx: RequestContext, goal_id: UUID, *, now: Optional[datetime] = None) -> Goal:
    """Owner starts an assigned goal; the clock for duration_days begins now."""
    goal = db.query(Goal).filter(Goal.id == goal_id, Goal.user_id == ctx.user_id).first()
    if not goal:
        raise NotFoundError("Goal not found or you are not the owner")

    started_at = now or _now()
    end_date = started_at + timedelta(days=goal.duration_days)
    new_status = _transition(db, goal, GoalAction.START, started_at=started_at, end_date=end_date)
    db.commit()
    db.refresh(goal)
    _log_transition(goal, GoalAction.START, new_status, ctx.user_id, end_date=end_date.isoformat())
    return goal


def finalize_goal(
    db: Session,
    ctx: RequestContext,
    goal_id: UUID,
    outcome: Any,
    *,
    resolve_gateway: GatewayResolver = get_payment_gateway,
) -> Goal:
    """
    Assigned instructor closes an active goal.

    COMPLETED refunds the held stake; FAILED captures it. The gateway call
    happens first; if it raises, neither row is touched.
    """
    goal = _get_goal(db, goal_id)
    if goal.instructor_id is None or goal.instructor_id != ctx.user_id:
        raise AuthorizationError("You are not the instructor for this goal")

    try:
        final_status = GoalStatus(outcome)
        goal_action, payment_action = FINAL_OUTCOMES[final_status]
    except (ValueError, KeyError):
        raise ValidationError("Invalid status provided", field="status")

    next_status(goal.status, goal_action)

    payment = db.query(Payment).filter(Payment.goal_id == goal.id).first()
    if not payment or not payment.provider_charge_id:
        raise PaymentStateError("No held payment found for this goal.")
    new_payment_status = next_payment_status(payment.status, payment_action)

    gateway = resolve_gateway(PaymentProvider(payment.provider))
    # Same key on every retry of this settlement, so the gateway dedupes it.
    idempotency_key = f"payment-{payment.id}-{payment_action.value}"
    if payment_action is PaymentAction.REFUND:
        gateway.refund(payment.provider_charge_id, idempotency_key=idempotency_key)
    else:
        gateway.capture(payment.provider_charge_id, idempotency_key=idempotency_key)

    payment_values: dict[str, Any] = {"status": new_payment_status}
    if payment_action is PaymentAction.CAPTURE:
        payment_values["recipient_id"] = None  # platform
    if not _compare_and_set(db, Payment, payment.id, PaymentStatus.HELD, payment_values):
        db.rollback()
        raise PaymentStateError("Payment changed state concurrently")
    new_status = _transition(db, goal, goal_action)

    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.critical(
            f"Payment {payment.id} settled ({payment_action.value}) but goal {goal.id} was not recorded; "
            "a retry is safe (idempotent gateway call)",
            exc_info=True,
        )
        raise

    db.refresh(goal)
    _log_transition(
        goal,
        goal_action,
        new_status,
        ctx.user_id,
        payment_id=str(payment.id),
        payment_status=new_payment_status.value,
    )
    return goal


# --- Queries ----------------------------------------------------------------

def list_owner_goals(db: Session, ctx: RequestContext) -> list[Goal]:
    return (
        db.query(Goal)
        .options(selectinload(Goal.submissions), selectinload(Goal.payment))
        .filter(Goal.user_id == ctx.user_id)
        .order_by(Goal.start_date.desc())
        .all()
    )


def get_owner_goal(db: Session, ctx: RequestContext, goal_id: UUID) -> Goal:
    goal = (
        db.query(Goal)
        .options(selectinload(Goal.submissions), selectinload(Goal.payment))
        .filter(Goal.id == goal_id, Goal.user_id == ctx.user_id)
        .first()
    )
    if not goal:
        raise NotFoundError("Goal", goal_id)
    return goal


def list_pending_goals(db: Session, ctx: RequestContext) -> list[Goal]:
    """Goals an instructor could claim (never their own)."""
    ctx.require(Capability.CLAIM_GOALS)
    return (
        db.query(Goal)
        .options(joinedload(Goal.user))
        .filter(
            Goal.status == GoalStatus.PENDING_INSTRUCTOR_ASSIGNMENT,
            Goal.user_id != ctx.user_id,
        )
        .order_by(Goal.start_date.asc())
        .all()
    )


def list_assigned_goals(db: Session, ctx: RequestContext) -> list[Goal]:
    ctx.require(Capability.REVIEW_SUBMISSIONS)
    return (
        db.query(Goal)
        .options(joinedload(Goal.user))
        .filter(
            Goal.instructor_id == ctx.user_id,
            Goal.status.in_([GoalStatus.ASSIGNED, GoalStatus.ACTIVE]),
        )
        .order_by(Goal.start_date.asc())
        .all()
    )


def get_instructor_goal(db: Session, ctx: RequestContext, goal_id: UUID) -> Goal:
    ctx.require(Capability.REVIEW_SUBMISSIONS)
    goal = (
        db.query(Goal)
        .options(joinedload(Goal.user), selectinload(Goal.submissions))
        .filter(Goal.id == goal_id, Goal.instructor_id == ctx.user_id)
        .first()
    )
    if not goal:
        raise NotFoundError("Goal not found or not assigned to you")
    return goal
