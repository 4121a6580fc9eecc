"""
Admin CRUD: direct edits that still keep stored invariants, and an audit
event for every write.
"""
from datetime import timedelta
from uuid import uuid4

import pytest

from conftest import auth_headers, make_goal, make_user
from models import AdminAuditEvent, Goal, GoalStatus, Payment, PaymentStatus, Role, User


def _headers(user) -> dict:
    return {**auth_headers(user), "User-Agent": "pytest"}


def _latest_event(db, *, action: str, target_id) -> AdminAuditEvent:
    return (
        db.query(AdminAuditEvent)
        .filter(AdminAuditEvent.action == action, AdminAuditEvent.target_id == str(target_id))
        .order_by(AdminAuditEvent.created_at.desc())
        .first()
    )


class TestAdminGate:
    def test_instructor_is_forbidden(self, client, instructor):
        resp = client.get("/admin/users", headers=_headers(instructor))

        assert resp.status_code == 403

    def test_anonymous_is_unauthenticated(self, client):
        assert client.get("/admin/goals").status_code == 401


class TestAdminUsers:
    def test_list_and_get(self, client, admin, student):
        listed = client.get("/admin/users", headers=_headers(admin))
        assert listed.status_code == 200
        assert str(student.id) in {u["id"] for u in listed.json()}

        one = client.get(f"/admin/users/{student.id}", headers=_headers(admin))
        assert one.status_code == 200
        assert one.json()["email"] == student.email

    def test_promote_student_is_audited(self, client, db_session, admin, student):
        resp = client.patch(
            f"/admin/users/{student.id}",
            json={"role": "instructor", "reason": "verified coach"},
            headers=_headers(admin),
        )

        assert resp.status_code == 200, resp.text
        assert resp.json()["role"] == "INSTRUCTOR"
        event = _latest_event(db_session, action="user.update", target_id=student.id)
        assert event is not None
        assert event.actor_user_id == admin.id
        assert event.reason == "verified coach"
        assert event.user_agent == "pytest"
        assert event.payload == {"role": {"before": "STUDENT", "after": "INSTRUCTOR"}}

    def test_put_behaves_like_patch(self, client, admin, student):
        resp = client.put(f"/admin/users/{student.id}", json={"name": "Renamed"}, headers=_headers(admin))

        assert resp.status_code == 200
        assert resp.json()["name"] == "Renamed"
        assert resp.json()["email"] == student.email
        assert resp.json()["role"] == "STUDENT"

    def test_invalid_role(self, client, admin, student):
        resp = client.patch(f"/admin/users/{student.id}", json={"role": "OWNER"}, headers=_headers(admin))

        assert resp.status_code == 400
        assert resp.json()["error_code"] == "VALIDATION_ERROR_ROLE"

    def test_duplicate_email(self, client, admin, student, other_student):
        resp = client.patch(
            f"/admin/users/{student.id}", json={"email": other_student.email}, headers=_headers(admin)
        )

        assert resp.status_code == 409

    def test_invalid_timezone(self, client, admin, student):
        resp = client.patch(f"/admin/users/{student.id}", json={"timezone": "Nowhere/Land"}, headers=_headers(admin))

        assert resp.status_code == 400
        assert resp.json()["error_code"] == "VALIDATION_ERROR_TIMEZONE"

    def test_admin_cannot_demote_self(self, client, admin):
        resp = client.patch(f"/admin/users/{admin.id}", json={"role": "STUDENT"}, headers=_headers(admin))

        assert resp.status_code == 400
        assert resp.json()["error_code"] == "INVALID_STATE"

    def test_delete_user_refunds_held_stakes(self, client, db_session, admin, student, gateway):
        goal = make_goal(db_session, student)
        charge_id = goal.payment.provider_charge_id

        resp = client.delete(f"/admin/users/{student.id}", headers=_headers(admin))

        assert resp.status_code == 200, resp.text
        assert [c for c, _ in gateway.refunds] == [charge_id]
        db_session.expire_all()
        assert db_session.get(User, student.id) is None
        assert db_session.query(Goal).filter(Goal.user_id == student.id).count() == 0
        event = _latest_event(db_session, action="user.delete", target_id=student.id)
        assert event.payload["goals"] == 1

    @pytest.mark.parametrize("status", [GoalStatus.ASSIGNED, GoalStatus.ACTIVE])
    def test_instructor_with_running_goals_cannot_be_deleted(
        self, client, db_session, admin, student, instructor, status
    ):
        goal = make_goal(db_session, student, status=status, instructor=instructor)

        resp = client.delete(f"/admin/users/{instructor.id}", headers=_headers(admin))

        assert resp.status_code == 400
        assert resp.json()["error_code"] == "INVALID_STATE"
        db_session.expire_all()
        assert db_session.get(Goal, goal.id).instructor_id == instructor.id

    def test_delete_instructor_unlinks_finished_goals(self, client, db_session, admin, student, instructor):
        goal = make_goal(
            db_session,
            student,
            status=GoalStatus.COMPLETED,
            instructor=instructor,
            payment_status=PaymentStatus.REFUNDED,
        )

        resp = client.delete(f"/admin/users/{instructor.id}", headers=_headers(admin))

        assert resp.status_code == 200, resp.text
        db_session.expire_all()
        assert db_session.get(Goal, goal.id).instructor_id is None

    def test_admin_cannot_delete_self(self, client, admin):
        resp = client.delete(f"/admin/users/{admin.id}", headers=_headers(admin))

        assert resp.status_code == 400

    def test_unknown_user(self, client, admin):
        assert client.get(f"/admin/users/{uuid4()}", headers=_headers(admin)).status_code == 404


class TestAdminGoals:
    def test_list_includes_everyone(self, client, db_session, admin, student, other_student):
        a = make_goal(db_session, student)
        b = make_goal(db_session, other_student)

        resp = client.get("/admin/goals", headers=_headers(admin))

        assert resp.status_code == 200
        ids = {g["id"] for g in resp.json()}
        assert {str(a.id), str(b.id)} <= ids

    def test_edit_title_is_audited(self, client, db_session, admin, student):
        goal = make_goal(db_session, student)

        resp = client.patch(
            f"/admin/goals/{goal.id}", json={"title": "Run twice a day", "reason": "typo"}, headers=_headers(admin)
        )

        assert resp.status_code == 200, resp.text
        assert resp.json()["title"] == "Run twice a day"
        assert resp.json()["user"]["id"] == str(student.id)
        event = _latest_event(db_session, action="goal.update", target_id=goal.id)
        assert event.payload == {"title": {"before": "Run every day", "after": "Run twice a day"}}

    def test_assign_instructor_directly(self, client, db_session, admin, student, instructor):
        goal = make_goal(db_session, student)

        resp = client.put(
            f"/admin/goals/{goal.id}",
            json={"instructorId": str(instructor.id), "status": "ASSIGNED"},
            headers=_headers(admin),
        )

        assert resp.status_code == 200, resp.text
        assert resp.json()["instructor"]["id"] == str(instructor.id)
        assert resp.json()["status"] == "ASSIGNED"

    def test_owner_cannot_be_instructor(self, client, db_session, admin, instructor):
        goal = make_goal(db_session, instructor)

        resp = client.patch(
            f"/admin/goals/{goal.id}", json={"instructorId": str(instructor.id)}, headers=_headers(admin)
        )

        assert resp.status_code == 400
        assert resp.json()["error_code"] == "SELF_ASSIGNMENT"

    def test_student_cannot_be_instructor(self, client, db_session, admin, student, other_student):
        goal = make_goal(db_session, student)

        resp = client.patch(
            f"/admin/goals/{goal.id}", json={"instructorId": str(other_student.id)}, headers=_headers(admin)
        )

        assert resp.status_code == 400

    def test_invalid_status(self, client, db_session, admin, student):
        goal = make_goal(db_session, student)

        resp = client.patch(f"/admin/goals/{goal.id}", json={"status": "PAUSED"}, headers=_headers(admin))

        assert resp.status_code == 400
        assert resp.json()["error_code"] == "VALIDATION_ERROR_STATUS"

    def test_cannot_close_goal_with_held_stake(self, client, db_session, admin, student, instructor):
        goal = make_goal(db_session, student, status=GoalStatus.ACTIVE, instructor=instructor)

        resp = client.patch(f"/admin/goals/{goal.id}", json={"status": "COMPLETED"}, headers=_headers(admin))

        assert resp.status_code == 400
        assert resp.json()["error_code"] == "INVALID_STATE"
        db_session.expire_all()
        assert db_session.get(Goal, goal.id).status == GoalStatus.ACTIVE

    def test_stake_must_match_payment(self, client, db_session, admin, student):
        goal = make_goal(db_session, student, stake="10.00")

        resp = client.patch(f"/admin/goals/{goal.id}", json={"stakeAmount": "99"}, headers=_headers(admin))

        assert resp.status_code == 400
        assert resp.json()["error_code"] == "INVALID_STATE"

    def test_non_positive_duration(self, client, db_session, admin, student):
        goal = make_goal(db_session, student)

        resp = client.patch(f"/admin/goals/{goal.id}", json={"durationDays": 0}, headers=_headers(admin))

        assert resp.status_code == 400

    def test_activate_sets_started_at_and_end_date(self, client, db_session, admin, student, instructor):
        goal = make_goal(db_session, student, status=GoalStatus.ASSIGNED, instructor=instructor, duration_days=7)

        resp = client.patch(f"/admin/goals/{goal.id}", json={"status": "ACTIVE"}, headers=_headers(admin))

        assert resp.status_code == 200, resp.text
        assert resp.json()["started_at"] is not None
        assert resp.json()["end_date"] is not None
        db_session.expire_all()
        stored = db_session.get(Goal, goal.id)
        assert stored.end_date - stored.started_at == timedelta(days=7)
        event = _latest_event(db_session, action="goal.update", target_id=goal.id)
        assert set(event.payload) == {"status", "started_at", "end_date"}

    def test_activated_goal_has_a_due_date(self, client, db_session, admin, student, instructor):
        goal = make_goal(db_session, student, status=GoalStatus.ASSIGNED, instructor=instructor)
        client.patch(f"/admin/goals/{goal.id}", json={"status": "ACTIVE"}, headers=_headers(admin))

        resp = client.get(f"/goals/{goal.id}", headers=auth_headers(student))

        assert resp.status_code == 200, resp.text
        assert resp.json()["next_due_date"] is not None

    def test_activate_uses_the_new_duration(self, client, db_session, admin, student, instructor):
        goal = make_goal(db_session, student, status=GoalStatus.ASSIGNED, instructor=instructor, duration_days=7)

        resp = client.patch(
            f"/admin/goals/{goal.id}", json={"status": "ACTIVE", "durationDays": 3}, headers=_headers(admin)
        )

        assert resp.status_code == 200, resp.text
        db_session.expire_all()
        stored = db_session.get(Goal, goal.id)
        assert stored.end_date - stored.started_at == timedelta(days=3)

    @pytest.mark.parametrize("status", ["ASSIGNED", "ACTIVE"])
    def test_instructed_status_needs_an_instructor(self, client, db_session, admin, student, status):
        goal = make_goal(db_session, student)

        resp = client.patch(f"/admin/goals/{goal.id}", json={"status": status}, headers=_headers(admin))

        assert resp.status_code == 400
        assert resp.json()["error_code"] == "INVALID_STATE"
        db_session.expire_all()
        stored = db_session.get(Goal, goal.id)
        assert stored.status == GoalStatus.PENDING_INSTRUCTOR_ASSIGNMENT
        assert stored.started_at is None

    @pytest.mark.parametrize("status", [GoalStatus.ASSIGNED, GoalStatus.ACTIVE])
    def test_cannot_unassign_a_running_goal(self, client, db_session, admin, student, instructor, status):
        goal = make_goal(db_session, student, status=status, instructor=instructor)

        resp = client.patch(f"/admin/goals/{goal.id}", json={"instructorId": None}, headers=_headers(admin))

        assert resp.status_code == 400
        assert resp.json()["error_code"] == "INVALID_STATE"
        db_session.expire_all()
        assert db_session.get(Goal, goal.id).instructor_id == instructor.id

    def test_unassign_with_status_reset_is_allowed(self, client, db_session, admin, student, instructor):
        goal = make_goal(db_session, student, status=GoalStatus.ASSIGNED, instructor=instructor)

        resp = client.patch(
            f"/admin/goals/{goal.id}",
            json={"instructorId": None, "status": "PENDING_INSTRUCTOR_ASSIGNMENT"},
            headers=_headers(admin),
        )

        assert resp.status_code == 200, resp.text
        assert resp.json()["instructor_id"] is None

    def test_swap_instructor_on_active_goal(self, client, db_session, admin, student, instructor, other_instructor):
        goal = make_goal(db_session, student, status=GoalStatus.ACTIVE, instructor=instructor)

        resp = client.patch(
            f"/admin/goals/{goal.id}", json={"instructorId": str(other_instructor.id)}, headers=_headers(admin)
        )

        assert resp.status_code == 200, resp.text
        assert resp.json()["instructor_id"] == str(other_instructor.id)

    def test_delete_goal_refunds_held_stake(self, client, db_session, admin, student, gateway):
        goal = make_goal(db_session, student)
        payment_id = goal.payment.id

        resp = client.delete(f"/admin/goals/{goal.id}", headers=_headers(admin))

        assert resp.status_code == 200, resp.text
        assert gateway.refunds == [(goal.payment.provider_charge_id, f"payment-{payment_id}-refund")]
        db_session.expire_all()
        assert db_session.get(Goal, goal.id) is None
        assert db_session.get(Payment, payment_id) is None
        event = _latest_event(db_session, action="goal.delete", target_id=goal.id)
        assert event.payload["payment_status"] == "REFUNDED"

    def test_delete_settled_goal_skips_the_gateway(self, client, db_session, admin, student, instructor, gateway):
        goal = make_goal(
            db_session, student, status=GoalStatus.FAILED, instructor=instructor,
            payment_status=PaymentStatus.CAPTURED,
        )

        resp = client.delete(f"/admin/goals/{goal.id}", headers=_headers(admin))

        assert resp.status_code == 200
        assert gateway.refunds == []

    def test_refund_failure_blocks_delete(self, client, db_session, admin, student, gateway):
        goal = make_goal(db_session, student)
        gateway.fail_on = "refund"

        resp = client.delete(f"/admin/goals/{goal.id}", headers=_headers(admin))

        assert resp.status_code == 402
        db_session.expire_all()
        assert db_session.get(Goal, goal.id) is not None


class TestRequestInstructor:
    def test_student_is_promoted(self, client, db_session, student):
        resp = client.post("/user/request-instructor", headers=auth_headers(student))

        assert resp.status_code == 200
        assert resp.json()["message"] == "Role updated to INSTRUCTOR successfully!"
        db_session.expire_all()
        assert db_session.get(User, student.id).role == Role.INSTRUCTOR

    def test_promotion_applies_to_the_next_request(self, client, student):
        headers = auth_headers(student)
        assert client.get("/instructor/pending-goals", headers=headers).status_code == 403

        client.post("/user/request-instructor", headers=headers)

        assert client.get("/instructor/pending-goals", headers=headers).status_code == 200

    def test_instructor_is_a_no_op(self, client, instructor):
        resp = client.post("/user/request-instructor", headers=auth_headers(instructor))

        assert resp.status_code == 200
        assert resp.json()["message"] == "You are already an instructor"

    def test_admin_is_rejected(self, client, db_session):
        admin = make_user(db_session, Role.ADMIN)

        resp = client.post("/user/request-instructor", headers=auth_headers(admin))

        assert resp.status_code == 400
