from __future__ import annotations

import threading
import warnings
from datetime import datetime, timedelta, timezone

from sqlalchemy import func, select
from sqlalchemy.exc import SADeprecationWarning
from sqlalchemy.orm import Session

from actions.interview_booking import AdminCaller, book_interview
from actions.slot_conflicts import find_conflicting_interview, has_slot_conflict, lock_schedule_resource
from models import Candidate, Interview, ScheduleResource
from utils import AuthContext, iso_utc_now, to_iso_utc


BASE = datetime(2026, 3, 3, 16, 0, tzinfo=timezone.utc)
ADMIN = AuthContext(valid=True, userId="USR-ADMIN", email="admin@example.com", role="ADMIN", expiresAt="")


def _interview(interview_id: str, candidate_id: str, start: datetime, status: str = "SCHEDULED") -> Interview:
    now = iso_utc_now()
    return Interview(
        interviewId=interview_id,
        candidateId=candidate_id,
        scheduledAt=to_iso_utc(start),
        durationMinutes=30,
        status=status,
        decision="PENDING",
        createdAt=now,
        createdBy="TEST",
        updatedAt=now,
        updatedBy="TEST",
    )


def test_conflict_within_thirty_minutes(db_session):
    db_session.add(_interview("INT-1", "C1", BASE))
    db_session.flush()

    assert has_slot_conflict(db_session, BASE) is True
    assert has_slot_conflict(db_session, BASE + timedelta(minutes=15)) is True
    assert has_slot_conflict(db_session, BASE + timedelta(minutes=29, seconds=59)) is True
    assert has_slot_conflict(db_session, BASE - timedelta(minutes=29)) is True


def test_no_conflict_at_exactly_thirty_minutes(db_session):
    db_session.add(_interview("INT-1", "C1", BASE))
    db_session.flush()

    assert has_slot_conflict(db_session, BASE + timedelta(minutes=30)) is False
    assert has_slot_conflict(db_session, BASE - timedelta(minutes=30)) is False
    assert has_slot_conflict(db_session, BASE + timedelta(hours=2)) is False


def test_only_scheduled_interviews_block(db_session):
    db_session.add(_interview("INT-1", "C1", BASE, status="CANCELED"))
    db_session.add(_interview("INT-2", "C1", BASE + timedelta(hours=1), status="COMPLETED"))
    db_session.flush()

    assert has_slot_conflict(db_session, BASE) is False
    assert has_slot_conflict(db_session, BASE + timedelta(hours=1)) is False


def test_candidate_scope_only_sees_own_interviews(db_session):
    db_session.add(_interview("INT-1", "C1", BASE))
    db_session.flush()

    assert has_slot_conflict(db_session, BASE, candidate_id="C2") is False
    assert has_slot_conflict(db_session, BASE, candidate_id="C1") is True
    hit = find_conflicting_interview(db_session, BASE + timedelta(minutes=10), candidate_id="C1")
    assert hit is not None and hit.interviewId == "INT-1"


def test_lock_schedule_resource_creates_row_once(db_session):
    with warnings.catch_warnings():
        warnings.simplefilter("error", SADeprecationWarning)
        first = lock_schedule_resource(db_session)
    second = lock_schedule_resource(db_session)
    assert first is second
    count = db_session.execute(select(func.count()).select_from(ScheduleResource)).scalar_one()
    assert count == 1


def test_unlocked_check_then_insert_lets_both_bookings_in(engine):
    """
    The checker alone does not serialize bookings: two callers that both check
    before either inserts end up with two overlapping interviews.
    """
    s1 = Session(bind=engine, expire_on_commit=False)
    s2 = Session(bind=engine, expire_on_commit=False)
    try:
        first = BASE
        second = BASE + timedelta(minutes=15)

        assert has_slot_conflict(s1, first) is False
        s1.rollback()
        assert has_slot_conflict(s2, second) is False
        s2.rollback()

        s1.add(_interview("INT-A", "C1", first))
        s1.commit()
        s2.add(_interview("INT-B", "C2", second))
        s2.commit()

        rows = s1.execute(select(Interview).where(Interview.status == "SCHEDULED")).scalars().all()
        assert {r.interviewId for r in rows} == {"INT-A", "INT-B"}
        assert has_slot_conflict(s1, first + timedelta(minutes=5)) is True
    finally:
        s1.close()
        s2.close()


def test_schedule_lock_serializes_concurrent_bookings(engine, cfg):
    seed = Session(bind=engine, expire_on_commit=False)
    now = iso_utc_now()
    for cid in ("C1", "C2"):
        seed.add(
            Candidate(
                candidateId=cid,
                firstName="Sam",
                lastName=cid,
                email=f"{cid.lower()}@example.com",
                status="REACH_OUT_EMAIL_SENT",
                createdAt=now,
                createdBy="TEST",
                updatedAt=now,
                updatedBy="TEST",
            )
        )
    seed.commit()
    seed.close()

    caller = AdminCaller(interviewer_name="Dana Reyes", auth=ADMIN)
    s1 = Session(bind=engine, expire_on_commit=False)
    s2 = Session(bind=engine, expire_on_commit=False)
    second: dict = {}

    def book_second():
        try:
            res = book_interview(s2, candidate_id="C2", proposed_start=BASE + timedelta(minutes=15), caller=caller, cfg=cfg)
            second["result"] = res
            if res.ok:
                s2.commit()
            else:
                s2.rollback()
        except Exception as e:  # surfaced by the assertions below
            s2.rollback()
            second["error"] = e

    try:
        first = book_interview(s1, candidate_id="C1", proposed_start=BASE, caller=caller, cfg=cfg)
        assert first.ok is True

        worker = threading.Thread(target=book_second)
        worker.start()
        worker.join(timeout=0.5)
        assert worker.is_alive(), "second booking must wait for the first transaction"

        s1.commit()
        worker.join(timeout=10)
        assert not worker.is_alive()

        assert "error" not in second
        assert second["result"].ok is False
        assert second["result"].rejection.kind == "SLOT_CONFLICT"

        rows = s1.execute(select(Interview).where(Interview.status == "SCHEDULED")).scalars().all()
        assert [r.candidateId for r in rows] == ["C1"]
        assert s1.get(Candidate, "C2").status == "REACH_OUT_EMAIL_SENT"
    finally:
        s1.close()
        s2.close()
