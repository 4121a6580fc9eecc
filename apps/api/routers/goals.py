"""
Goal endpoints for the goal owner.

POST /goals holds the stake and creates the goal; the owner then waits for an
instructor to claim it and starts it with POST /goals/{id}/start.
"""
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from core.auth import Capability, RequestContext, require_capability
from core.database import get_db
from models import Goal
from schemas import GoalCreate, GoalDetailResponse, GoalResponse
from services import goal_lifecycle
from services.payment_gateway import GatewayResolver, get_gateway_resolver
from services.submission_review import next_due_date

router = APIRouter(prefix="/goals", tags=["goals"])

owner = require_capability(Capability.MANAGE_OWN_GOALS)


def goal_detail(goal: Goal) -> GoalDetailResponse:
    """Owner view: submissions newest first, plus the next due day."""
    detail = GoalDetailResponse.model_validate(goal)
    return detail.model_copy(
        update={
            "submissions": sorted(detail.submissions, key=lambda s: s.submission_day, reverse=True),
            "next_due_date": next_due_date(goal, goal.submissions),
        }
    )


@router.post("", response_model=GoalDetailResponse, status_code=status.HTTP_201_CREATED)
def create_goal(
    body: GoalCreate,
    ctx: RequestContext = Depends(owner),
    db: Session = Depends(get_db),
    resolve_gateway: GatewayResolver = Depends(get_gateway_resolver),
):
    """Create a goal and hold its stake with the payment provider."""
    goal = goal_lifecycle.create_goal(
        db,
        ctx,
        title=body.title,
        description=body.description,
        duration_days=body.duration_days,
        stake_amount=body.stake_amount,
        payment_token=body.payment_token,
        provider=body.provider,
        resolve_gateway=resolve_gateway,
    )
    return goal_detail(goal)


@router.get("", response_model=List[GoalDetailResponse])
def list_goals(
    ctx: RequestContext = Depends(owner),
    db: Session = Depends(get_db),
):
    """The caller's goals, newest first, each with its submissions."""
    return [goal_detail(g) for g in goal_lifecycle.list_owner_goals(db, ctx)]


@router.get("/{goal_id}", response_model=GoalDetailResponse)
def get_goal(
    goal_id: UUID,
    ctx: RequestContext = Depends(owner),
    db: Session = Depends(get_db),
):
    return goal_detail(goal_lifecycle.get_owner_goal(db, ctx, goal_id))


@router.post("/{goal_id}/start", response_model=GoalResponse)
def start_goal(
    goal_id: UUID,
    ctx: RequestContext = Depends(owner),
    db: Session = Depends(get_db),
):
    """Owner starts an assigned goal; end_date = now + duration_days."""
    return goal_lifecycle.start_goal(db, ctx, goal_id)
