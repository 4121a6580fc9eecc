"""
next_due_date is a pure function of the goal window and its submissions.
"""
from datetime import date, datetime, timedelta, timezone

import pytest

from models import DailySubmission, Goal, GoalStatus, User
from services.submission_review import next_due_date


def _goal(started: datetime, days: int, status: GoalStatus = GoalStatus.ACTIVE) -> Goal:
    return Goal(
        title="t",
        description="d",
        duration_days=days,
        status=status,
        started_at=started,
        end_date=started + timedelta(days=days),
    )


def _on(day: date) -> DailySubmission:
    return DailySubmission(
        content="x",
        submission_day=day,
        submission_date=datetime(day.year, day.month, day.day, 12, tzinfo=timezone.utc),
    )


JAN_1 = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)


class TestNextDueDate:
    def test_window_of_two_days(self):
        goal = _goal(JAN_1, 2)  # ends 2024-01-03

        assert next_due_date(goal, []) == date(2024, 1, 2)
        assert next_due_date(goal, [_on(date(2024, 1, 2))]) == date(2024, 1, 3)
        assert next_due_date(goal, [_on(date(2024, 1, 2)), _on(date(2024, 1, 3))]) is None

    def test_uses_the_latest_submission_regardless_of_order(self):
        goal = _goal(JAN_1, 10)
        subs = [_on(date(2024, 1, 4)), _on(date(2024, 1, 2)), _on(date(2024, 1, 3))]

        assert next_due_date(goal, subs) == date(2024, 1, 5)

    def test_year_rollover(self):
        goal = _goal(datetime(2023, 12, 30, 8, tzinfo=timezone.utc), 5)

        assert next_due_date(goal, [_on(date(2023, 12, 31))]) == date(2024, 1, 1)

    def test_leap_day(self):
        goal = _goal(datetime(2024, 2, 27, 8, tzinfo=timezone.utc), 5)

        assert next_due_date(goal, [_on(date(2024, 2, 28))]) == date(2024, 2, 29)

    def test_one_day_goal(self):
        goal = _goal(JAN_1, 1)

        assert next_due_date(goal, []) == date(2024, 1, 2)
        assert next_due_date(goal, [_on(date(2024, 1, 2))]) is None

    def test_falls_back_to_submission_timestamp(self):
        goal = _goal(JAN_1, 5)
        legacy = DailySubmission(content="x", submission_date=datetime(2024, 1, 3, 10))

        assert next_due_date(goal, [legacy]) == date(2024, 1, 4)

    @pytest.mark.parametrize(
        "status",
        [
            GoalStatus.PENDING_INSTRUCTOR_ASSIGNMENT,
            GoalStatus.ASSIGNED,
            GoalStatus.COMPLETED,
            GoalStatus.FAILED,
        ],
    )
    def test_only_active_goals_have_a_due_date(self, status):
        assert next_due_date(_goal(JAN_1, 5, status=status), []) is None

    def test_not_started(self):
        goal = Goal(title="t", description="d", duration_days=3, status=GoalStatus.ACTIVE)

        assert next_due_date(goal, []) is None


class TestOwnerTimezone:
    # Noon UTC on Jan 1 is 01:00 on Jan 2 in Auckland (UTC+13 in January)
    def _auckland_goal(self, days: int) -> Goal:
        goal = _goal(datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc), days)
        goal.user = User(email="kiwi@example.com", timezone="Pacific/Auckland")
        return goal

    def test_first_due_day_is_the_day_after_the_local_start(self):
        assert next_due_date(self._auckland_goal(2), []) == date(2024, 1, 3)

    def test_end_boundary_is_the_local_end_day(self):
        goal = self._auckland_goal(2)  # ends 01:00 on Jan 4, Auckland

        assert next_due_date(goal, [_on(date(2024, 1, 3))]) == date(2024, 1, 4)
        assert next_due_date(goal, [_on(date(2024, 1, 4))]) is None

    def test_legacy_rows_are_bucketed_in_the_owners_zone(self):
        goal = self._auckland_goal(5)
        # 20:00 UTC on Jan 2 is already Jan 3 in Auckland
        legacy = DailySubmission(content="x", submission_date=datetime(2024, 1, 2, 20, 0, tzinfo=timezone.utc))

        assert next_due_date(goal, [legacy]) == date(2024, 1, 4)

    def test_owner_without_timezone_uses_utc(self):
        goal = _goal(JAN_1, 2)
        goal.user = User(email="utc@example.com", timezone=None)

        assert next_due_date(goal, []) == date(2024, 1, 2)
