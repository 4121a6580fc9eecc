"""
Daily submissions: the owner posts evidence, the assigned instructor reviews it.

One submission per goal per calendar day. The day is taken in the owner's
timezone (User.timezone, UTC when unset), so an 11pm post in New York lands
on that New York day rather than the next UTC day.

A review is final: once approved or rejected, the day's row no longer accepts
new evidence from the owner.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Iterable, Optional
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from core.auth import Capability, RequestContext
from core.exceptions import AuthorizationError, InvalidStateError, NotFoundError, ValidationError
from models import DailySubmission, Goal, GoalStatus, SubmissionStatus
from services.blob_storage import BlobStorage, check_upload_size

logger = logging.getLogger(__name__)

REVIEW_DECISIONS = (SubmissionStatus.APPROVED, SubmissionStatus.REJECTED)


@dataclass(frozen=True)
class Upload:
    content: bytes
    filename: Optional[str] = None
    content_type: Optional[str] = None


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes (SQLite round-trips) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _zone(tz_name: Optional[str]):
    if not tz_name:
        return timezone.utc
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r; falling back to UTC", tz_name)
        return timezone.utc


def validate_timezone(tz_name: str) -> str:
    try:
        ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValidationError(f"Unknown timezone: {tz_name}", field="timezone")
    return tz_name


def calendar_day(moment: datetime, tz_name: Optional[str] = None) -> date:
    return as_utc(moment).astimezone(_zone(tz_name)).date()


def _owner_timezone(goal: Goal) -> Optional[str]:
    return goal.user.timezone if goal.user is not None else None


def next_due_date(goal: Goal, submissions: Iterable[DailySubmission]) -> Optional[date]:
    """
    The next calendar day a submission is expected, or None.

    Days are the owner's local days. None when the goal is not running, or
    when the day after the latest submission falls past the goal's end date.
    """
    if goal.status != GoalStatus.ACTIVE or goal.started_at is None or goal.end_date is None:
        return None

    tz_name = _owner_timezone(goal)
    days = [s.submission_day or calendar_day(s.submission_date, tz_name) for s in submissions]
    base = max(days) if days else calendar_day(goal.started_at, tz_name)
    candidate = base + timedelta(days=1)
    if candidate > calendar_day(goal.end_date, tz_name):
        return None
    return candidate


def _require_content(content: Optional[str]) -> str:
    text = (content or "").strip()
    if not text:
        raise ValidationError("Content is required", field="content")
    return text


def _require_pending(submission: DailySubmission) -> None:
    if submission.status != SubmissionStatus.PENDING:
        raise InvalidStateError(f"Submission has already been reviewed ({submission.status.value})")


def _store(storage: Optional[BlobStorage], upload: Optional[Upload]) -> Optional[str]:
    if upload is None or not upload.content:
        return None
    if storage is None:
        raise ValidationError("File uploads are not available", field="file")
    check_upload_size(upload.content)
    return storage.put(upload.content, filename=upload.filename, content_type=upload.content_type)


def _replace_evidence(submission: DailySubmission, content: str, file_url: Optional[str]) -> None:
    submission.content = content
    if file_url:
        submission.file_url = file_url


def _day_row(db: Session, goal_id: UUID, day: date) -> Optional[DailySubmission]:
    return (
        db.query(DailySubmission)
        .filter(DailySubmission.goal_id == goal_id, DailySubmission.submission_day == day)
        .first()
    )


def submit(
    db: Session,
    ctx: RequestContext,
    goal_id: UUID,
    content: Optional[str],
    upload: Optional[Upload] = None,
    *,
    storage: Optional[BlobStorage] = None,
    now: Optional[datetime] = None,
) -> tuple[DailySubmission, bool]:
    """
    Create today's submission, or replace its evidence if it is still pending.

    Returns (row, created). A day that has already been reviewed raises
    InvalidStateError.
    """
    goal = (
        db.query(Goal)
        .options(joinedload(Goal.user))
        .filter(Goal.id == goal_id, Goal.user_id == ctx.user_id)
        .first()
    )
    if not goal:
        raise NotFoundError("Goal not found or you do not have permission to access it")
    if goal.status != GoalStatus.ACTIVE:
        raise InvalidStateError(f"Submissions are only accepted for active goals (status: {goal.status.value})")
    text = _require_content(content)

    now = as_utc(now or datetime.now(timezone.utc))
    day = calendar_day(now, _owner_timezone(goal))

    submission = _day_row(db, goal.id, day)
    if submission is not None:
        _require_pending(submission)
    file_url = _store(storage, upload)

    created = False
    if submission is None:
        submission = DailySubmission(
            goal_id=goal.id,
            submission_date=now,
            submission_day=day,
            content=text,
            file_url=file_url,
            status=SubmissionStatus.PENDING,
        )
        try:
            with db.begin_nested():
                db.add(submission)
                db.flush()
            created = True
        except IntegrityError:
            # Lost the race for this day; update the row that won.
            submission = _day_row(db, goal.id, day)
            _require_pending(submission)

    if not created:
        _replace_evidence(submission, text, file_url)

    db.commit()
    db.refresh(submission)
    logger.info(
        f"Submission {'created' if created else 'updated'} for goal {goal.id} on {day.isoformat()}",
        extra={
            "extra_fields": {
                "goal_id": str(goal.id),
                "submission_id": str(submission.id),
                "submission_day": day.isoformat(),
                "created": created,
            }
        },
    )
    return submission, created


def _get_submission(db: Session, submission_id: UUID) -> DailySubmission:
    submission = (
        db.query(DailySubmission)
        .options(joinedload(DailySubmission.goal).joinedload(Goal.user))
        .filter(DailySubmission.id == submission_id)
        .first()
    )
    if not submission:
        raise NotFoundError("Submission", submission_id)
    return submission


def edit_submission(
    db: Session,
    ctx: RequestContext,
    submission_id: UUID,
    content: Optional[str],
    upload: Optional[Upload] = None,
    *,
    storage: Optional[BlobStorage] = None,
    now: Optional[datetime] = None,
) -> DailySubmission:
    """Owner edits today's pending submission on a running goal."""
    text = _require_content(content)
    submission = _get_submission(db, submission_id)
    goal = submission.goal
    if goal.user_id != ctx.user_id:
        raise AuthorizationError("You do not have permission to update this submission")
    if goal.status != GoalStatus.ACTIVE:
        raise InvalidStateError(f"Submissions can only be edited while the goal is active (status: {goal.status.value})")
    _require_pending(submission)

    today = calendar_day(now or datetime.now(timezone.utc), _owner_timezone(goal))
    if submission.submission_day != today:
        raise InvalidStateError("Only today's submission can be edited")

    _replace_evidence(submission, text, _store(storage, upload))
    db.commit()
    db.refresh(submission)
    return submission


def review(
    db: Session,
    ctx: RequestContext,
    submission_id: UUID,
    decision: Optional[str],
    comment: Optional[str] = None,
) -> DailySubmission:
    """Approve or reject a pending submission. Rejections must say why."""
    try:
        status = SubmissionStatus(decision)
    except ValueError:
        status = None
    if status not in REVIEW_DECISIONS:
        raise ValidationError("Invalid submission status provided", field="status")

    submission = _get_submission(db, submission_id)
    if submission.goal.instructor_id is None or submission.goal.instructor_id != ctx.user_id:
        raise AuthorizationError("You are not the instructor for this goal")
    _require_pending(submission)

    comment = (comment or "").strip() or None
    if status is SubmissionStatus.REJECTED and not comment:
        raise ValidationError("A comment is required when rejecting a submission", field="reviewer_comment")

    submission.status = status
    submission.reviewer_id = ctx.user_id
    submission.reviewer_comment = comment if status is SubmissionStatus.REJECTED else None
    db.commit()
    db.refresh(submission)

    logger.info(
        f"Submission {submission.id} {status.value.lower()}",
        extra={
            "extra_fields": {
                "submission_id": str(submission.id),
                "goal_id": str(submission.goal_id),
                "reviewer_id": str(ctx.user_id),
                "status": status.value,
            }
        },
    )
    return submission


def list_pending_submissions(db: Session, ctx: RequestContext) -> list[DailySubmission]:
    """Pending submissions on goals assigned to the caller, oldest first."""
    ctx.require(Capability.REVIEW_SUBMISSIONS)
    return (
        db.query(DailySubmission)
        .join(Goal, DailySubmission.goal_id == Goal.id)
        .options(joinedload(DailySubmission.goal).joinedload(Goal.user))
        .filter(
            DailySubmission.status == SubmissionStatus.PENDING,
            Goal.instructor_id == ctx.user_id,
        )
        .order_by(DailySubmission.submission_date.asc())
        .all()
    )


def list_goal_submissions(goal: Goal) -> list[DailySubmission]:
    return sorted(goal.submissions, key=lambda s: as_utc(s.submission_date))
