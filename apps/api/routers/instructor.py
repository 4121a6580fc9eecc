"""
Instructor endpoints: claim goals, review daily submissions, finalize outcomes.
"""
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from core.auth import RequestContext, require_role
from core.database import get_db
from core.exceptions import ValidationError
from models import Role
from schemas import (
    ClaimGoalRequest,
    FinalizeGoalRequest,
    GoalResponse,
    InstructorGoalResponse,
    PendingSubmissionResponse,
    ReviewSubmissionRequest,
    SubmissionResponse,
)
from services import goal_lifecycle, submission_review
from services.payment_gateway import GatewayResolver, get_gateway_resolver

router = APIRouter(prefix="/instructor", tags=["instructor"])

instructor = require_role(Role.INSTRUCTOR)


@router.get("/pending-goals", response_model=List[InstructorGoalResponse])
def pending_goals(
    ctx: RequestContext = Depends(instructor),
    db: Session = Depends(get_db),
):
    """Goals waiting for an instructor, excluding the caller's own."""
    return goal_lifecycle.list_pending_goals(db, ctx)


@router.get("/assigned-goals", response_model=List[InstructorGoalResponse])
def assigned_goals(
    ctx: RequestContext = Depends(instructor),
    db: Session = Depends(get_db),
):
    return goal_lifecycle.list_assigned_goals(db, ctx)


@router.get("/goals/{goal_id}/submissions", response_model=InstructorGoalResponse)
def goal_submissions(
    goal_id: UUID,
    ctx: RequestContext = Depends(instructor),
    db: Session = Depends(get_db),
):
    goal = goal_lifecycle.get_instructor_goal(db, ctx, goal_id)
    response = InstructorGoalResponse.model_validate(goal)
    return response.model_copy(
        update={"submissions": sorted(response.submissions, key=lambda s: s.submission_day)}
    )


@router.put("/goals/{goal_id}", response_model=GoalResponse)
def claim_goal(
    goal_id: UUID,
    body: ClaimGoalRequest,
    ctx: RequestContext = Depends(instructor),
    db: Session = Depends(get_db),
):
    """Claim a pending goal. The only supported action is "accept"."""
    if body.action != "accept":
        raise ValidationError("Invalid action", field="action")
    return goal_lifecycle.assign_goal(db, ctx, goal_id)


@router.patch("/goals/{goal_id}", response_model=GoalResponse)
def finalize_goal(
    goal_id: UUID,
    body: FinalizeGoalRequest,
    ctx: RequestContext = Depends(instructor),
    db: Session = Depends(get_db),
    resolve_gateway: GatewayResolver = Depends(get_gateway_resolver),
):
    """Close an active goal: COMPLETED refunds the stake, FAILED captures it."""
    return goal_lifecycle.finalize_goal(db, ctx, goal_id, body.status, resolve_gateway=resolve_gateway)


@router.get("/submissions", response_model=List[PendingSubmissionResponse])
def pending_submissions(
    ctx: RequestContext = Depends(instructor),
    db: Session = Depends(get_db),
):
    """Pending submissions on goals assigned to the caller, oldest first."""
    return submission_review.list_pending_submissions(db, ctx)


@router.patch("/submissions/{submission_id}", response_model=SubmissionResponse)
def review_submission(
    submission_id: UUID,
    body: ReviewSubmissionRequest,
    ctx: RequestContext = Depends(instructor),
    db: Session = Depends(get_db),
):
    return submission_review.review(db, ctx, submission_id, body.status, body.reviewer_comment)
