from __future__ import annotations

import json
from datetime import datetime, time, timedelta
from unittest.mock import MagicMock, patch
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.orm import Session as OrmSession

from auth import issue_session_token
from db import SessionLocal
from models import AuditLog, Candidate, EmailLog, Interview, OnboardingTask, User
from utils import iso_utc_now


NY = ZoneInfo("America/New_York")


def _api(client, payload: dict):
    return client.post("/api", data=json.dumps(payload), content_type="text/plain; charset=utf-8")


def _seed_user(app, *, user_id: str, email: str, role: str) -> str:
    cfg = app.config["CFG"]
    now = iso_utc_now()
    with SessionLocal() as db:
        db.add(
            User(
                userId=user_id,
                email=email,
                fullName="Test User",
                role=role,
                status="ACTIVE",
                createdAt=now,
                createdBy="TEST",
                updatedAt=now,
                updatedBy="TEST",
            )
        )
        out = issue_session_token(db, user_id=user_id, email=email, role=role, session_ttl_minutes=cfg.SESSION_TTL_MINUTES)
        db.commit()
    return out["sessionToken"]


def _seed_candidate(candidate_id: str, *, status: str = "REACH_OUT_EMAIL_SENT", token: str = "") -> None:
    now = iso_utc_now()
    with SessionLocal() as db:
        db.add(
            Candidate(
                candidateId=candidate_id,
                firstName="Casey",
                lastName="Nguyen",
                email=f"{candidate_id.lower()}@example.com",
                status=status,
                schedulingToken=token,
                schedulingTokenIssuedAt=now if token else "",
                createdAt=now,
                createdBy="TEST",
                updatedAt=now,
                updatedBy="TEST",
            )
        )
        db.commit()


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _next_local(weekdays: set[int], at: time, *, min_days: int = 3) -> datetime:
    day = datetime.now(NY).date() + timedelta(days=min_days)
    while day.weekday() not in weekdays:
        day += timedelta(days=1)
    return datetime.combine(day, at, tzinfo=NY)


def _next_bookable(at: time = time(11, 0)) -> datetime:
    return _next_local({6, 0, 1, 2, 3}, at)


def test_health(app_client):
    _app, client = app_client
    res = client.get("/health")
    assert res.status_code == 200
    body = res.get_json()
    assert body["ok"] is True
    assert body["data"]["status"] == "ok"
    assert res.headers["X-Request-ID"]


def test_admin_booking_requires_session(app_client):
    _app, client = app_client
    _seed_candidate("C1")

    res = client.post("/api/admin/interviews", json={"candidateId": "C1", "scheduledAt": _next_bookable().isoformat()})

    assert res.status_code == 401
    assert res.get_json()["error"]["code"] == "AUTH_INVALID"


def test_hr_cannot_book_but_can_list(app_client):
    app, client = app_client
    token = _seed_user(app, user_id="USR-HR", email="hr@example.com", role="HR")
    _seed_candidate("C1")

    res = client.post(
        "/api/admin/interviews",
        json={"candidateId": "C1", "scheduledAt": _next_bookable().isoformat()},
        headers=_bearer(token),
    )
    assert res.status_code == 403
    assert res.get_json()["error"]["code"] == "FORBIDDEN"

    res = client.get("/api/admin/interviews", headers=_bearer(token))
    assert res.status_code == 200
    assert res.get_json()["data"]["items"] == []


def test_admin_booking_and_conflict(app_client):
    app, client = app_client
    token = _seed_user(app, user_id="USR-ADMIN", email="admin@example.com", role="ADMIN")
    _seed_candidate("C1")
    _seed_candidate("C2")
    start = _next_local({4}, time(17, 0))  # a Friday evening

    res = client.post(
        "/api/admin/interviews",
        json={"candidateId": "C1", "scheduledAt": start.isoformat(), "interviewerName": "Dana Reyes"},
        headers=_bearer(token),
    )
    assert res.status_code == 200
    data = res.get_json()["data"]
    assert data["bookedVia"] == "ADMIN"
    assert data["interviewerName"] == "Dana Reyes"
    assert data["notifications"] == {"sent": 1, "failed": 0}

    res = client.post(
        "/api/admin/interviews",
        json={"candidateId": "C2", "scheduledAt": (start + timedelta(minutes=10)).isoformat()},
        headers=_bearer(token),
    )
    assert res.status_code == 409
    assert res.get_json()["error"]["code"] == "SLOT_CONFLICT"

    with SessionLocal() as db:
        assert db.get(Candidate, "C1").status == "INTERVIEW_SCHEDULED"
        assert db.get(Candidate, "C2").status == "REACH_OUT_EMAIL_SENT"
        assert len(db.execute(select(Interview)).scalars().all()) == 1
        emails = db.execute(select(EmailLog)).scalars().all()
        assert [(e.templateType, e.toEmail, e.status) for e in emails] == [("INTERVIEW_INVITE", "c1@example.com", "LOGGED")]
        errors = db.execute(select(AuditLog).where(AuditLog.stageTag == "API_ERROR")).scalars().all()
        assert any(e.remark.startswith("SLOT_CONFLICT") for e in errors)


def test_action_endpoint_dispatches(app_client):
    app, client = app_client
    token = _seed_user(app, user_id="USR-ADMIN", email="admin@example.com", role="ADMIN")
    _seed_candidate("C1")

    res = _api(
        client,
        {
            "action": "INTERVIEW_BOOK",
            "token": token,
            "data": {"candidateId": "C1", "scheduledAt": _next_bookable(time(13, 0)).isoformat()},
        },
    )
    assert res.status_code == 200
    assert res.get_json()["data"]["status"] == "SCHEDULED"

    res = _api(client, {"action": "NOT_A_THING", "token": token, "data": {}})
    assert res.status_code == 400
    assert res.get_json()["error"]["code"] == "BAD_REQUEST"


def test_public_booking_flow(app_client):
    app, client = app_client
    _seed_user(app, user_id="USR-ADMIN", email="admin@example.com", role="ADMIN")
    _seed_candidate("C1", token="SCH-c1")
    _seed_candidate("C2", token="SCH-c2")
    start = _next_bookable()

    res = client.get("/api/public/validate-scheduling-token", query_string={"token": "SCH-c1", "candidateId": "C1"})
    assert res.status_code == 200
    assert res.get_json()["data"]["valid"] is True

    res = client.get(
        "/api/public/available-slots",
        query_string={"token": "SCH-c1", "candidateId": "C1", "date": start.date().isoformat()},
    )
    assert res.status_code == 200
    assert len(res.get_json()["data"]["slots"]) == 7

    res = client.post(
        "/api/public/schedule-interview",
        json={"token": "SCH-c1", "candidateId": "C1", "scheduledAt": start.isoformat()},
    )
    assert res.status_code == 200
    assert res.get_json()["data"]["message"] == "Interview scheduled successfully"

    res = client.post(
        "/api/public/schedule-interview",
        json={"token": "SCH-c2", "candidateId": "C2", "scheduledAt": start.isoformat()},
    )
    assert res.status_code == 409
    assert res.get_json()["error"]["code"] == "SLOT_CONFLICT"

    res = client.get("/api/public/validate-scheduling-token", query_string={"token": "SCH-c1", "candidateId": "C1"})
    assert res.get_json()["data"]["alreadyScheduled"] is True

    with SessionLocal() as db:
        templates = sorted(e.templateType for e in db.execute(select(EmailLog)).scalars().all())
        assert templates == ["INTERVIEW_BOOKED_ADMIN", "INTERVIEW_INVITE"]
        iv = db.execute(select(Interview)).scalars().one()
        assert iv.bookedVia == "PUBLIC"
        assert iv.createdBy == "CANDIDATE:C1"


def test_public_booking_rejections(app_client):
    _app, client = app_client
    _seed_candidate("C1", token="SCH-c1")

    res = client.post(
        "/api/public/schedule-interview",
        json={"token": "SCH-c1", "candidateId": "C1", "scheduledAt": _next_local({4}, time(11, 0)).isoformat()},
    )
    assert res.status_code == 400
    err = res.get_json()["error"]
    assert err["code"] == "WINDOW_REJECTED"
    assert "Sunday through Thursday" in err["message"]

    res = client.post(
        "/api/public/schedule-interview",
        json={"token": "SCH-nope", "candidateId": "C1", "scheduledAt": _next_bookable().isoformat()},
    )
    assert res.status_code == 401
    assert res.get_json()["error"]["code"] == "INVALID_TOKEN"

    res = client.post(
        "/api/public/schedule-interview",
        json={"token": "SCH-c1", "candidateId": "C1", "scheduledAt": _next_bookable().isoformat(), "durationMinutes": 45},
    )
    assert res.status_code == 400
    assert res.get_json()["error"]["code"] == "INVALID_DURATION"

    with SessionLocal() as db:
        assert db.execute(select(Interview)).scalars().all() == []


def test_reach_out_then_public_booking_with_new_token(app_client):
    app, client = app_client
    token = _seed_user(app, user_id="USR-ADMIN", email="admin@example.com", role="ADMIN")
    _seed_candidate("C1", status="NEW", token="SCH-old")

    res = client.post("/api/admin/candidates/C1/reach-out", headers=_bearer(token))
    assert res.status_code == 200
    assert res.get_json()["data"]["status"] == "REACH_OUT_EMAIL_SENT"

    with SessionLocal() as db:
        new_token = db.get(Candidate, "C1").schedulingToken
        mail = db.execute(select(EmailLog).where(EmailLog.templateType == "REACH_OUT")).scalars().one()
    assert new_token != "SCH-old"
    assert new_token in mail.body

    start = _next_bookable(time(12, 30))
    res = client.post("/api/public/schedule-interview", json={"token": "SCH-old", "candidateId": "C1", "scheduledAt": start.isoformat()})
    assert res.get_json()["error"]["code"] == "INVALID_TOKEN"
    res = client.post("/api/public/schedule-interview", json={"token": new_token, "candidateId": "C1", "scheduledAt": start.isoformat()})
    assert res.status_code == 200


def test_status_patch_to_hired_builds_checklist(app_client):
    app, client = app_client
    token = _seed_user(app, user_id="USR-ADMIN", email="admin@example.com", role="ADMIN")
    _seed_candidate("C1", status="INTERVIEW_COMPLETED")

    res = client.patch("/api/admin/candidates/C1/status", json={"status": "HIRED"}, headers=_bearer(token))
    assert res.status_code == 200
    assert res.get_json()["data"]["hiredAt"]

    res = client.post("/api/admin/candidates/C1/prerequisite-course", json={"completed": True}, headers=_bearer(token))
    assert res.status_code == 200
    assert res.get_json()["data"]["repair"]["deleted"] == 1

    res = client.get("/api/admin/candidates/C1/onboarding-tasks", headers=_bearer(token))
    tasks = res.get_json()["data"]["tasks"]
    assert len(tasks) == 6
    assert tasks[-1]["taskType"] == "SIGNATURE"

    res = client.patch("/api/admin/candidates/C1/status", json={"status": "PROMOTED"}, headers=_bearer(token))
    assert res.status_code == 400

    with SessionLocal() as db:
        offers = db.execute(select(EmailLog).where(EmailLog.templateType == "OFFER")).scalars().all()
        assert [e.toEmail for e in offers] == ["c1@example.com"]


def test_repair_sweep_route(app_client):
    app, client = app_client
    token = _seed_user(app, user_id="USR-ADMIN", email="admin@example.com", role="ADMIN")
    _seed_candidate("C1", status="HIRED")
    _seed_candidate("C2", status="HIRED")

    res = client.post("/api/admin/onboarding/repair-tasks", headers=_bearer(token))
    assert res.status_code == 200
    assert res.get_json()["data"]["repairedCount"] == 2

    res = client.post("/api/admin/candidates/C1/fix-onboarding-tasks", headers=_bearer(token))
    assert res.get_json()["data"]["repaired"] is False

    with SessionLocal() as db:
        assert len(db.execute(select(OnboardingTask)).scalars().all()) == 14


def test_reminder_job_accepts_internal_token(app_client):
    _app, client = app_client

    res = client.post("/api/jobs/interview-reminders")
    assert res.status_code == 401

    res = client.post("/api/jobs/interview-reminders", headers={"X-Internal-Token": "wrong"})
    assert res.status_code == 401

    res = client.post("/api/jobs/interview-reminders", headers={"X-Internal-Token": "cron-secret"})
    assert res.status_code == 200
    assert res.get_json()["data"]["processed"] == 0


def test_booking_email_is_sent_after_commit(app_client):
    app, client = app_client
    token = _seed_user(app, user_id="USR-ADMIN", email="admin@example.com", role="ADMIN")
    _seed_candidate("C1")
    app.config["CFG"].RESEND_API_KEY = "re_test"
    committed_at_send: list[int] = []

    def fake_post(url, **kwargs):
        with SessionLocal() as db:
            committed_at_send.append(len(db.execute(select(Interview)).scalars().all()))
        return MagicMock(status_code=200, text="{}")

    with patch("services.mailer.requests.post", side_effect=fake_post):
        res = client.post(
            "/api/admin/interviews",
            json={"candidateId": "C1", "scheduledAt": _next_bookable().isoformat()},
            headers=_bearer(token),
        )

    assert res.status_code == 200
    assert res.get_json()["data"]["notifications"] == {"sent": 1, "failed": 0}
    assert committed_at_send == [1]
    with SessionLocal() as db:
        mail = db.execute(select(EmailLog)).scalars().one()
        assert (mail.templateType, mail.status) == ("INTERVIEW_INVITE", "SENT")


def test_rolled_back_booking_sends_no_email(app_client, monkeypatch):
    app, client = app_client
    token = _seed_user(app, user_id="USR-ADMIN", email="admin@example.com", role="ADMIN")
    _seed_candidate("C1")
    app.config["CFG"].RESEND_API_KEY = "re_test"

    real_commit = OrmSession.commit
    calls = {"n": 0}

    def commit_fails_once(self):
        calls["n"] += 1
        if calls["n"] == 1:
            raise RuntimeError("disk I/O error")
        return real_commit(self)

    monkeypatch.setattr(OrmSession, "commit", commit_fails_once)

    with patch("services.mailer.requests.post") as post:
        res = client.post(
            "/api/admin/interviews",
            json={"candidateId": "C1", "scheduledAt": _next_bookable().isoformat()},
            headers=_bearer(token),
        )

    assert res.status_code == 500
    assert res.get_json()["error"]["code"] == "INTERNAL"
    post.assert_not_called()
    with SessionLocal() as db:
        assert db.execute(select(Interview)).scalars().all() == []
        assert db.execute(select(EmailLog)).scalars().all() == []
        assert db.get(Candidate, "C1").status == "REACH_OUT_EMAIL_SENT"


def test_reject_sends_rejection_email(app_client):
    app, client = app_client
    token = _seed_user(app, user_id="USR-ADMIN", email="admin@example.com", role="ADMIN")
    _seed_candidate("C1", status="INTERVIEW_COMPLETED")

    res = client.patch("/api/admin/candidates/C1/status", json={"status": "REJECTED"}, headers=_bearer(token))

    assert res.status_code == 200
    assert res.get_json()["data"]["notifications"] == {"sent": 1, "failed": 0}
    with SessionLocal() as db:
        mails = db.execute(select(EmailLog)).scalars().all()
        assert [(m.templateType, m.toEmail) for m in mails] == [("REJECTION", "c1@example.com")]
