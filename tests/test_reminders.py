from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

from sqlalchemy import select

from actions.reminders import send_interview_reminders
from models import Candidate, EmailLog, Interview, User
from utils import iso_utc_now, to_iso_utc


NOW = datetime(2026, 3, 3, 15, 45, tzinfo=timezone.utc)


def _seed(db, *, interview_id: str, start: datetime, status: str = "SCHEDULED", reminded: str = ""):
    now = iso_utc_now()
    if db.get(Candidate, "C1") is None:
        db.add(Candidate(candidateId="C1", firstName="Avery", lastName="Kim", email="avery@example.com", status="INTERVIEW_SCHEDULED"))
        db.add(User(userId="USR-ADMIN", email="admin@example.com", fullName="Admin", role="ADMIN", status="ACTIVE"))
    db.add(
        Interview(
            interviewId=interview_id,
            candidateId="C1",
            scheduledAt=to_iso_utc(start),
            durationMinutes=30,
            interviewerName="Dana Reyes",
            meetingUrl="https://meet.example.com/room",
            status=status,
            reminderSentAt=reminded,
            createdAt=now,
            updatedAt=now,
        )
    )
    db.flush()


def test_reminds_interviews_starting_soon(db_session, cfg):
    _seed(db_session, interview_id="INT-SOON", start=NOW + timedelta(minutes=15))
    _seed(db_session, interview_id="INT-LATER", start=NOW + timedelta(minutes=45))
    _seed(db_session, interview_id="INT-PAST", start=NOW - timedelta(minutes=5))
    _seed(db_session, interview_id="INT-CANCELED", start=NOW + timedelta(minutes=10), status="CANCELED")

    out = send_interview_reminders(db_session, cfg, now=NOW)

    assert out == {"processed": 1, "sentCount": 1, "errorCount": 0}
    assert db_session.get(Interview, "INT-SOON").reminderSentAt
    assert db_session.get(Interview, "INT-LATER").reminderSentAt == ""

    emails = db_session.execute(select(EmailLog).order_by(EmailLog.toEmail.asc())).scalars().all()
    assert [e.toEmail for e in emails] == ["admin@example.com", "avery@example.com"]
    assert all(e.templateType == "INTERVIEW_REMINDER" for e in emails)
    assert all(e.status == "LOGGED" for e in emails)
    assert "Avery Kim" in next(e.subject for e in emails if e.toEmail == "admin@example.com")


def test_reminder_sent_only_once(db_session, cfg):
    _seed(db_session, interview_id="INT-SOON", start=NOW + timedelta(minutes=20))

    assert send_interview_reminders(db_session, cfg, now=NOW)["sentCount"] == 1
    assert send_interview_reminders(db_session, cfg, now=NOW + timedelta(minutes=5)) == {
        "processed": 0,
        "sentCount": 0,
        "errorCount": 0,
    }


def test_failed_delivery_is_retried_next_run(db_session, cfg):
    _seed(db_session, interview_id="INT-SOON", start=NOW + timedelta(minutes=20))
    cfg.RESEND_API_KEY = "re_test"

    with patch("services.mailer.requests.post", return_value=MagicMock(status_code=500, text="boom")) as post:
        out = send_interview_reminders(db_session, cfg, now=NOW)

    assert post.call_count == 2
    assert out["errorCount"] == 1
    assert db_session.get(Interview, "INT-SOON").reminderSentAt == ""
    failed = db_session.execute(select(EmailLog).where(EmailLog.status == "FAILED")).scalars().all()
    assert len(failed) == 2

    with patch("services.mailer.requests.post", return_value=MagicMock(status_code=200, text="{}")):
        again = send_interview_reminders(db_session, cfg, now=NOW)
    assert again["sentCount"] == 1


def test_partial_failure_retries_only_failed_recipients(db_session, cfg):
    _seed(db_session, interview_id="INT-SOON", start=NOW + timedelta(minutes=20))
    cfg.RESEND_API_KEY = "re_test"
    ok = MagicMock(status_code=200, text="{}")
    rejected = MagicMock(status_code=500, text="boom")

    with patch("services.mailer.requests.post", side_effect=[ok, rejected]):
        first = send_interview_reminders(db_session, cfg, now=NOW)
    assert first["errorCount"] == 1
    assert db_session.get(Interview, "INT-SOON").reminderSentAt == ""

    with patch("services.mailer.requests.post", return_value=ok) as post:
        again = send_interview_reminders(db_session, cfg, now=NOW)

    assert again["sentCount"] == 1
    assert post.call_count == 1
    assert post.call_args.kwargs["json"]["to"] == ["admin@example.com"]
    assert db_session.get(Interview, "INT-SOON").reminderSentAt
    sent = db_session.execute(select(EmailLog).where(EmailLog.status == "SENT")).scalars().all()
    assert sorted(e.toEmail for e in sent) == ["admin@example.com", "avery@example.com"]
    assert {e.referenceId for e in sent} == {"INT-SOON"}
