from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy import select

from models import Interview, ScheduleResource
from utils import iso_utc_now, to_iso_utc


SLOT_MINUTES = 30
INTERVIEW_RESOURCE_KEY = "INTERVIEW"


def _overlap_bounds(proposed_start: datetime) -> tuple[str, str]:
    span = timedelta(minutes=SLOT_MINUTES)
    return to_iso_utc(proposed_start - span), to_iso_utc(proposed_start + span)


def find_conflicting_interview(db, proposed_start: datetime, *, candidate_id: str = "") -> Interview | None:
    """
    First SCHEDULED interview whose start lies strictly inside
    (proposed_start - 30min, proposed_start + 30min).

    With `candidate_id` the search is limited to that candidate's interviews.
    """
    lower, upper = _overlap_bounds(proposed_start)
    q = (
        select(Interview)
        .where(Interview.status == "SCHEDULED")
        .where(Interview.scheduledAt > lower)
        .where(Interview.scheduledAt < upper)
    )
    cid = str(candidate_id or "").strip()
    if cid:
        q = q.where(Interview.candidateId == cid)
    return db.execute(q.order_by(Interview.scheduledAt.asc())).scalars().first()


def has_slot_conflict(db, proposed_start: datetime, *, candidate_id: str = "") -> bool:
    return find_conflicting_interview(db, proposed_start, candidate_id=candidate_id) is not None


def lock_schedule_resource(db, *, resource_key: str = INTERVIEW_RESOURCE_KEY) -> ScheduleResource:
    """
    SELECT .. FOR UPDATE on the shared resource row.

    Holding this lock until commit serializes every conflict-check + insert pair
    against the same resource.
    """
    row = (
        db.execute(
            select(ScheduleResource)
            .where(ScheduleResource.resourceKey == resource_key)
            .with_for_update(of=ScheduleResource)
        )
        .scalars()
        .first()
    )
    if row is None:
        row = ScheduleResource(resourceKey=resource_key, label=resource_key.title(), updatedAt=iso_utc_now())
        db.add(row)
        db.flush()
    return row
