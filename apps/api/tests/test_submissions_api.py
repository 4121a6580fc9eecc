"""
POST/PATCH /submissions with multipart form data.
"""
from uuid import UUID, uuid4

from conftest import auth_headers, make_goal
from models import DailySubmission, GoalStatus, SubmissionStatus


def _post(client, user, goal_id, content="Did it", files=None):
    return client.post(
        "/submissions",
        data={"goalId": str(goal_id), "content": content},
        files=files,
        headers=auth_headers(user),
    )


class TestCreateSubmission:
    def test_first_post_is_201(self, client, db_session, student, instructor):
        goal = make_goal(db_session, student, status=GoalStatus.ACTIVE, instructor=instructor)

        resp = _post(client, student, goal.id)

        assert resp.status_code == 201, resp.text
        data = resp.json()
        assert data["created"] is True
        assert data["status"] == "PENDING"
        assert data["goal_id"] == str(goal.id)

    def test_same_day_repost_is_200_and_overwrites(self, client, db_session, student, instructor):
        goal = make_goal(db_session, student, status=GoalStatus.ACTIVE, instructor=instructor)
        first = _post(client, student, goal.id, content="Morning").json()

        resp = _post(client, student, goal.id, content="Evening")

        assert resp.status_code == 200, resp.text
        assert resp.json()["created"] is False
        assert resp.json()["id"] == first["id"]
        assert resp.json()["content"] == "Evening"
        assert db_session.query(DailySubmission).filter(DailySubmission.goal_id == goal.id).count() == 1

    def test_repost_after_review_is_400(self, client, db_session, student, instructor):
        goal = make_goal(db_session, student, status=GoalStatus.ACTIVE, instructor=instructor)
        first = _post(client, student, goal.id, content="Ran 5k").json()
        approved = client.patch(
            f"/instructor/submissions/{first['id']}", json={"status": "APPROVED"}, headers=auth_headers(instructor)
        )
        assert approved.status_code == 200, approved.text

        resp = _post(client, student, goal.id, content="Ran 10k")

        assert resp.status_code == 400
        assert resp.json()["error_code"] == "INVALID_STATE"
        row = db_session.get(DailySubmission, UUID(first["id"]))
        assert row.status == SubmissionStatus.APPROVED
        assert row.reviewer_id == instructor.id
        assert row.content == "Ran 5k"

    def test_file_is_stored_and_linked(self, client, db_session, student, instructor, upload_root):
        goal = make_goal(db_session, student, status=GoalStatus.ACTIVE, instructor=instructor)

        resp = _post(client, student, goal.id, files={"file": ("proof.png", b"\x89PNG fake", "image/png")})

        assert resp.status_code == 201, resp.text
        file_url = resp.json()["file_url"]
        assert file_url.startswith("/uploads/submissions/")
        assert file_url.endswith("-proof.png")
        assert (upload_root / file_url[len("/uploads/"):]).read_bytes() == b"\x89PNG fake"

    def test_empty_content(self, client, db_session, student, instructor):
        goal = make_goal(db_session, student, status=GoalStatus.ACTIVE, instructor=instructor)

        resp = _post(client, student, goal.id, content="")

        assert resp.status_code == 400
        assert resp.json()["error_code"] == "VALIDATION_ERROR_CONTENT"

    def test_inactive_goal(self, client, db_session, student):
        goal = make_goal(db_session, student)

        resp = _post(client, student, goal.id)

        assert resp.status_code == 400
        assert resp.json()["error_code"] == "INVALID_STATE"

    def test_not_my_goal(self, client, db_session, student, other_student, instructor):
        goal = make_goal(db_session, student, status=GoalStatus.ACTIVE, instructor=instructor)

        resp = _post(client, other_student, goal.id)

        assert resp.status_code == 404

    def test_missing_goal_id(self, client, student):
        resp = client.post("/submissions", data={"content": "x"}, headers=auth_headers(student))

        assert resp.status_code == 400
        assert resp.json()["error_code"] == "VALIDATION_ERROR"

    def test_oversized_file(self, client, db_session, student, instructor, monkeypatch):
        from core.config import settings

        monkeypatch.setattr(settings, "MAX_UPLOAD_BYTES", 4)
        goal = make_goal(db_session, student, status=GoalStatus.ACTIVE, instructor=instructor)

        resp = _post(client, student, goal.id, files={"file": ("big.bin", b"0123456789", "application/octet-stream")})

        assert resp.status_code == 400
        assert resp.json()["error_code"] == "VALIDATION_ERROR_FILE"
        assert db_session.query(DailySubmission).count() == 0


class TestEditSubmission:
    def test_owner_edits_pending(self, client, db_session, student, instructor):
        goal = make_goal(db_session, student, status=GoalStatus.ACTIVE, instructor=instructor)
        created = _post(client, student, goal.id, content="Typo").json()

        resp = client.patch(
            f"/submissions/{created['id']}", data={"content": "Fixed"}, headers=auth_headers(student)
        )

        assert resp.status_code == 200, resp.text
        assert resp.json()["content"] == "Fixed"

    def test_finished_goal_is_locked(self, client, db_session, student, instructor):
        goal = make_goal(db_session, student, status=GoalStatus.ACTIVE, instructor=instructor)
        created = _post(client, student, goal.id, content="Honest").json()
        goal.status = GoalStatus.COMPLETED
        db_session.commit()

        resp = client.patch(
            f"/submissions/{created['id']}", data={"content": "Rewritten"}, headers=auth_headers(student)
        )

        assert resp.status_code == 400
        assert resp.json()["error_code"] == "INVALID_STATE"

    def test_other_user_is_forbidden(self, client, db_session, student, other_student, instructor):
        goal = make_goal(db_session, student, status=GoalStatus.ACTIVE, instructor=instructor)
        created = _post(client, student, goal.id).json()

        resp = client.patch(
            f"/submissions/{created['id']}", data={"content": "Mine now"}, headers=auth_headers(other_student)
        )

        assert resp.status_code == 403

    def test_unknown_submission(self, client, student):
        resp = client.patch(f"/submissions/{uuid4()}", data={"content": "x"}, headers=auth_headers(student))

        assert resp.status_code == 404
