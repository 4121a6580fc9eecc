"""
Admin API Router

Direct user and goal management. Admin writes skip lifecycle ordering but
still keep the stored invariants:
- role / status must be valid enum values
- a goal's instructor is never its owner
- an ASSIGNED or ACTIVE goal always has an instructor
- an ACTIVE goal always has started_at and end_date
- emails stay unique
- payment rows are never edited here, and a goal cannot be moved to a
  terminal status while its stake is still held (use finalize instead)

Every write appends an AdminAuditEvent.
"""
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List
from uuid import UUID
import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload, selectinload

from core.auth import RequestContext, require_admin
from core.database import get_db
from core.exceptions import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    SelfAssignmentError,
    ValidationError,
)
from models import Goal, GoalStatus, Payment, PaymentProvider, PaymentStatus, Role, User
from schemas import AdminGoalResponse, AdminGoalUpdate, AdminUserUpdate, MessageResponse, UserResponse
from services.admin_audit import record_admin_audit_event
from services.payment_gateway import GatewayResolver, get_gateway_resolver
from services.submission_review import validate_timezone

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])

TERMINAL_STATUSES = (GoalStatus.COMPLETED, GoalStatus.FAILED)
# Statuses in which only the assigned instructor can move the goal on
INSTRUCTED_STATUSES = (GoalStatus.ASSIGNED, GoalStatus.ACTIVE)


def _get_user(db: Session, user_id: UUID) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise NotFoundError("User", user_id)
    return user


def _get_goal(db: Session, goal_id: UUID) -> Goal:
    goal = (
        db.query(Goal)
        .options(joinedload(Goal.user), joinedload(Goal.instructor), joinedload(Goal.payment))
        .filter(Goal.id == goal_id)
        .first()
    )
    if not goal:
        raise NotFoundError("Goal", goal_id)
    return goal


def _diff(obj: Any, updates: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    return {
        field: {"before": getattr(obj, field), "after": value}
        for field, value in updates.items()
        if getattr(obj, field) != value
    }


def _release_held_stake(payment: Payment, resolve_gateway: GatewayResolver) -> None:
    """Refund a still-held stake before its goal row disappears."""
    if payment is None or payment.status != PaymentStatus.HELD:
        return
    gateway = resolve_gateway(PaymentProvider(payment.provider))
    gateway.refund(payment.provider_charge_id, idempotency_key=f"payment-{payment.id}-refund")
    payment.status = PaymentStatus.REFUNDED
    logger.info(f"Released held stake {payment.id} before admin delete")


# --- Users ------------------------------------------------------------------

@router.get("/users", response_model=List[UserResponse])
def list_users(
    ctx: RequestContext = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return db.query(User).order_by(User.created_at.desc()).all()


@router.get("/users/{user_id}", response_model=UserResponse)
def get_user(
    user_id: UUID,
    ctx: RequestContext = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return _get_user(db, user_id)


@router.api_route("/users/{user_id}", methods=["PUT", "PATCH"], response_model=UserResponse)
def update_user(
    user_id: UUID,
    body: AdminUserUpdate,
    http_request: Request,
    ctx: RequestContext = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Update a user's profile or role. Only fields present in the body change."""
    user = _get_user(db, user_id)
    fields = body.model_dump(exclude_unset=True, exclude={"reason"})
    updates: Dict[str, Any] = {}

    if "email" in fields:
        if not fields["email"]:
            raise ValidationError("email cannot be empty", field="email")
        email = str(fields["email"]).lower()
        taken = db.query(User).filter(User.email == email, User.id != user.id).first()
        if taken:
            raise ConflictError("Email already registered")
        updates["email"] = email
    if "name" in fields:
        updates["name"] = fields["name"]
    if "timezone" in fields:
        updates["timezone"] = validate_timezone(fields["timezone"]) if fields["timezone"] else None
    if "role" in fields:
        try:
            role = Role(str(fields["role"]).upper())
        except ValueError:
            raise ValidationError(f"Invalid role: {fields['role']}", field="role")
        if user.id == ctx.user_id and role is not Role.ADMIN:
            raise InvalidStateError("Admins cannot remove their own admin role")
        updates["role"] = role

    changes = _diff(user, updates)
    for field, value in updates.items():
        setattr(user, field, value)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise ConflictError("Email already registered")

    record_admin_audit_event(
        db,
        request=http_request,
        actor=ctx,
        action="user.update",
        target_type="user",
        target_id=user.id,
        reason=body.reason,
        payload=changes,
    )
    db.commit()
    db.refresh(user)
    return user


@router.delete("/users/{user_id}", response_model=MessageResponse)
def delete_user(
    user_id: UUID,
    http_request: Request,
    ctx: RequestContext = Depends(require_admin),
    db: Session = Depends(get_db),
    resolve_gateway: GatewayResolver = Depends(get_gateway_resolver),
):
    """
    Delete a user and their goals. Held stakes on those goals are refunded first.

    An instructor with ASSIGNED or ACTIVE goals must have them reassigned first.
    """
    user = _get_user(db, user_id)
    if user.id == ctx.user_id:
        raise InvalidStateError("Admins cannot delete their own account")
    running = [g for g in user.instructed_goals if g.status in INSTRUCTED_STATUSES]
    if running:
        raise InvalidStateError(f"Instructor still has {len(running)} running goal(s); reassign them first")

    for goal in user.goals:
        _release_held_stake(goal.payment, resolve_gateway)

    record_admin_audit_event(
        db,
        request=http_request,
        actor=ctx,
        action="user.delete",
        target_type="user",
        target_id=user.id,
        payload={"email": user.email, "role": user.role, "goals": len(user.goals)},
    )
    db.delete(user)
    db.commit()
    return {"message": "User deleted successfully"}


# --- Goals ------------------------------------------------------------------

@router.get("/goals", response_model=List[AdminGoalResponse])
def list_goals(
    ctx: RequestContext = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return (
        db.query(Goal)
        .options(selectinload(Goal.user), selectinload(Goal.instructor), selectinload(Goal.payment))
        .order_by(Goal.start_date.desc())
        .all()
    )


@router.get("/goals/{goal_id}", response_model=AdminGoalResponse)
def get_goal(
    goal_id: UUID,
    ctx: RequestContext = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return _get_goal(db, goal_id)


def _validated_goal_updates(db: Session, goal: Goal, fields: Dict[str, Any]) -> Dict[str, Any]:
    updates: Dict[str, Any] = {}

    for text_field in ("title", "description"):
        if text_field in fields:
            value = (fields[text_field] or "").strip()
            if not value:
                raise ValidationError(f"{text_field} cannot be empty", field=text_field)
            updates[text_field] = value

    if "duration_days" in fields:
        if fields["duration_days"] is None or fields["duration_days"] <= 0:
            raise ValidationError("duration_days must be positive", field="duration_days")
        updates["duration_days"] = fields["duration_days"]

    if "stake_amount" in fields:
        amount = fields["stake_amount"]
        if amount is None or amount <= 0:
            raise ValidationError("stake_amount must be positive", field="stake_amount")
        amount = Decimal(amount).quantize(Decimal("0.01"))
        if goal.payment is not None and amount != Decimal(goal.payment.amount):
            raise InvalidStateError("stake_amount must match the recorded payment; payments cannot be edited")
        updates["stake_amount"] = amount

    if "instructor_id" in fields:
        instructor_id = fields["instructor_id"]
        if instructor_id is not None:
            if instructor_id == goal.user_id:
                raise SelfAssignmentError("A goal's owner cannot be its instructor")
            instructor = db.query(User).filter(User.id == instructor_id).first()
            if not instructor:
                raise NotFoundError("User", instructor_id)
            if Role(instructor.role) is Role.STUDENT:
                raise ValidationError("Assigned user must be an instructor", field="instructor_id")
        updates["instructor_id"] = instructor_id

    if "status" in fields:
        try:
            new_status = GoalStatus(str(fields["status"]).upper())
        except ValueError:
            raise ValidationError(f"Invalid goal status: {fields['status']}", field="status")
        if (
            new_status in TERMINAL_STATUSES
            and goal.payment is not None
            and goal.payment.status == PaymentStatus.HELD
        ):
            raise InvalidStateError("Stake is still held; finalize the goal as its instructor instead")
        updates["status"] = new_status

    for date_field in ("start_date", "end_date"):
        if date_field in fields:
            if date_field == "start_date" and fields[date_field] is None:
                raise ValidationError("start_date cannot be empty", field="start_date")
            updates[date_field] = fields[date_field]

    if "status" in fields or "instructor_id" in fields:
        resulting_status = updates.get("status", goal.status)
        instructor_id = updates["instructor_id"] if "instructor_id" in updates else goal.instructor_id
        if resulting_status in INSTRUCTED_STATUSES and instructor_id is None:
            raise InvalidStateError(f"A {GoalStatus(resulting_status).value} goal needs an instructor")

    if updates.get("status", goal.status) == GoalStatus.ACTIVE:
        started_at = goal.started_at or datetime.now(timezone.utc)
        if goal.started_at is None:
            updates["started_at"] = started_at
        if updates.get("end_date", goal.end_date) is None:
            duration = updates.get("duration_days", goal.duration_days)
            updates["end_date"] = started_at + timedelta(days=duration)

    return updates


@router.api_route("/goals/{goal_id}", methods=["PUT", "PATCH"], response_model=AdminGoalResponse)
def update_goal(
    goal_id: UUID,
    body: AdminGoalUpdate,
    http_request: Request,
    ctx: RequestContext = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Edit a goal directly. Only fields present in the body change."""
    goal = _get_goal(db, goal_id)
    fields = body.model_dump(exclude_unset=True, exclude={"reason"})
    updates = _validated_goal_updates(db, goal, fields)

    changes = _diff(goal, updates)
    for field, value in updates.items():
        setattr(goal, field, value)

    record_admin_audit_event(
        db,
        request=http_request,
        actor=ctx,
        action="goal.update",
        target_type="goal",
        target_id=goal.id,
        reason=body.reason,
        payload=changes,
    )
    db.commit()
    db.refresh(goal)
    return goal


@router.delete("/goals/{goal_id}", response_model=MessageResponse)
def delete_goal(
    goal_id: UUID,
    http_request: Request,
    ctx: RequestContext = Depends(require_admin),
    db: Session = Depends(get_db),
    resolve_gateway: GatewayResolver = Depends(get_gateway_resolver),
):
    """Delete a goal with its submissions and payment. A held stake is refunded first."""
    goal = _get_goal(db, goal_id)
    _release_held_stake(goal.payment, resolve_gateway)

    record_admin_audit_event(
        db,
        request=http_request,
        actor=ctx,
        action="goal.delete",
        target_type="goal",
        target_id=goal.id,
        payload={
            "title": goal.title,
            "status": goal.status,
            "user_id": goal.user_id,
            "payment_status": goal.payment.status if goal.payment else None,
        },
    )
    db.delete(goal)
    db.commit()
    return {"message": "Goal deleted successfully"}
