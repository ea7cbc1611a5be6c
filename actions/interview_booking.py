"""
Interview booking against the single shared interviewer resource.

Two callers reach `book_interview`:

- AdminCaller: any day and time, limited only by the global 30 minute
  conflict check.
- PublicTokenCaller: a candidate holding the scheduling token from the
  reach-out email. Runs the weekly booking window, the global conflict check
  and the candidate's own conflict check.

Rejections come back as `BookingResult.rejection` values and leave no
interview behind. Outbound email is returned as intents; the handlers queue
them on the session and they go out only after the booking commits.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Optional, Union
from zoneinfo import ZoneInfo

from sqlalchemy import select

from actions.booking_window import check_booking_window, window_slot_starts
from actions.candidate_repo import candidate_display_name, find_candidate, find_candidate_by_scheduling_token
from actions.helpers import append_audit
from actions.lifecycle_service import transition_candidate_status
from actions.slot_conflicts import SLOT_MINUTES, find_conflicting_interview, lock_schedule_resource
from models import Candidate, Interview
from services.email_templates import admin_booking_notice_email, interview_invite_email
from services.mailer import NotificationIntent, active_admin_emails, queue_notifications
from utils import ApiError, AuthContext, iso_utc_now, parse_datetime_maybe, to_iso_utc, utc_now


log = logging.getLogger("booking")

INVALID_TOKEN_MESSAGE = "Invalid or expired scheduling link"
SLOT_CONFLICT_MESSAGE = "This time slot is already booked. Please choose another time."
SELF_CONFLICT_MESSAGE = "You already have an interview scheduled at this time"


@dataclass(frozen=True)
class AdminCaller:
    interviewer_name: str
    auth: AuthContext


@dataclass(frozen=True)
class PublicTokenCaller:
    token: str


Caller = Union[AdminCaller, PublicTokenCaller]


@dataclass(frozen=True)
class BookingRejection:
    kind: str
    message: str


@dataclass
class BookingResult:
    ok: bool
    interview: Optional[Interview] = None
    rejection: Optional[BookingRejection] = None
    intents: list[NotificationIntent] = field(default_factory=list)

    @classmethod
    def rejected(cls, kind: str, message: str) -> "BookingResult":
        log.info("booking rejected kind=%s message=%s", kind, message)
        return cls(ok=False, rejection=BookingRejection(kind=kind, message=message))

    def raise_for_rejection(self) -> None:
        if self.rejection is not None:
            raise ApiError(self.rejection.kind, self.rejection.message)


def _public_actor(cand: Candidate) -> AuthContext:
    return AuthContext(
        valid=True,
        userId=f"CANDIDATE:{cand.candidateId}",
        email=str(cand.email or ""),
        role="PUBLIC",
        expiresAt="",
    )


def _meeting_url(cfg) -> str:
    return cfg.INTERVIEW_MEETING_URL or f"https://meet.google.com/{os.urandom(5).hex()}"


def _app_tz(cfg) -> ZoneInfo:
    return ZoneInfo(cfg.APP_TIMEZONE)


def book_interview(
    db,
    *,
    candidate_id: str,
    proposed_start: Any,
    caller: Caller,
    cfg,
    now: Optional[datetime] = None,
    duration_minutes: Any = None,
) -> BookingResult:
    cid = str(candidate_id or "").strip()
    if not cid or proposed_start in (None, ""):
        return BookingResult.rejected("BAD_REQUEST", "Missing required fields")

    tz = _app_tz(cfg)
    start = parse_datetime_maybe(proposed_start, app_timezone=cfg.APP_TIMEZONE)
    if start is None:
        return BookingResult.rejected("BAD_REQUEST", "Invalid scheduledAt")

    if duration_minutes in (None, ""):
        duration = SLOT_MINUTES
    else:
        try:
            duration = int(duration_minutes)
        except (TypeError, ValueError):
            duration = -1
    if duration != SLOT_MINUTES:
        return BookingResult.rejected("INVALID_DURATION", f"Interviews are {SLOT_MINUTES} minutes long")

    now = now or utc_now()
    is_public = isinstance(caller, PublicTokenCaller)

    if is_public:
        cand = find_candidate_by_scheduling_token(db, candidate_id=cid, token=caller.token)
        if cand is None:
            return BookingResult.rejected("INVALID_TOKEN", INVALID_TOKEN_MESSAGE)
        window = check_booking_window(start, now=now, tz=tz)
        if not window.ok:
            return BookingResult.rejected("WINDOW_REJECTED", window.reason)
        actor = _public_actor(cand)
        interviewer = cfg.DEFAULT_INTERVIEWER_NAME
    else:
        try:
            cand = find_candidate(db, candidate_id=cid)
        except ApiError as e:
            return BookingResult.rejected(e.code, e.message)
        actor = caller.auth
        interviewer = str(caller.interviewer_name or "").strip() or cfg.DEFAULT_INTERVIEWER_NAME

    resource = lock_schedule_resource(db)

    if find_conflicting_interview(db, start) is not None:
        return BookingResult.rejected("SLOT_CONFLICT", SLOT_CONFLICT_MESSAGE)
    if is_public and find_conflicting_interview(db, start, candidate_id=cid) is not None:
        return BookingResult.rejected("CANDIDATE_SELF_CONFLICT", SELF_CONFLICT_MESSAGE)

    ts = iso_utc_now()
    meeting_url = _meeting_url(cfg)
    interview = Interview(
        interviewId=f"INT-{os.urandom(12).hex()}",
        candidateId=cid,
        scheduledAt=to_iso_utc(start),
        durationMinutes=duration,
        interviewerName=interviewer,
        meetingUrl=meeting_url,
        status="SCHEDULED",
        decision="PENDING",
        reminderSentAt="",
        bookedVia="PUBLIC" if is_public else "ADMIN",
        createdAt=ts,
        createdBy=actor.userId,
        updatedAt=ts,
        updatedBy=actor.userId,
    )
    db.add(interview)
    resource.lastBookedAt = interview.scheduledAt
    resource.updatedAt = ts

    append_audit(
        db,
        entityType="INTERVIEW",
        entityId=interview.interviewId,
        action="INTERVIEW_BOOK",
        toState="SCHEDULED",
        stageTag="INTERVIEW",
        actor=actor,
        at=ts,
        meta={"candidateId": cid, "scheduledAt": interview.scheduledAt, "bookedVia": interview.bookedVia},
    )
    db.flush()

    transition_candidate_status(
        db,
        candidate_id=cid,
        to_status="INTERVIEW_SCHEDULED",
        action="INTERVIEW_SCHEDULED",
        stage_tag="INTERVIEW",
        auth=actor,
        meta={"interviewId": interview.interviewId, "scheduledAt": interview.scheduledAt},
    )

    intents: list[NotificationIntent] = []
    if str(cand.email or "").strip():
        subject, html = interview_invite_email(
            first_name=str(cand.firstName or ""),
            scheduled_at=start,
            duration_minutes=duration,
            interviewer_name=interviewer,
            meeting_url=meeting_url,
            tz=tz,
        )
        intents.append(
            NotificationIntent(to=str(cand.email).strip(), subject=subject, html=html, template_type="INTERVIEW_INVITE", candidate_id=cid)
        )
    if is_public:
        subject, html = admin_booking_notice_email(
            candidate_name=candidate_display_name(cand),
            scheduled_at=start,
            duration_minutes=duration,
            meeting_url=meeting_url,
            tz=tz,
        )
        for email in active_admin_emails(db):
            intents.append(
                NotificationIntent(to=email, subject=subject, html=html, template_type="INTERVIEW_BOOKED_ADMIN", candidate_id=cid)
            )

    log.info("interview booked id=%s candidate=%s at=%s via=%s", interview.interviewId, cid, interview.scheduledAt, interview.bookedVia)
    return BookingResult(ok=True, interview=interview, intents=intents)


def validate_scheduling_token(db, *, candidate_id: str, token: str) -> dict[str, Any]:
    cand = find_candidate_by_scheduling_token(db, candidate_id=candidate_id, token=token)
    if cand is None:
        return {"valid": False, "error": INVALID_TOKEN_MESSAGE}

    existing = db.execute(
        select(Interview.interviewId)
        .where(Interview.candidateId == cand.candidateId)
        .where(Interview.status == "SCHEDULED")
    ).first()
    if existing is not None:
        return {
            "valid": False,
            "alreadyScheduled": True,
            "error": "You already have a scheduled interview. Please contact support if you need to reschedule.",
        }
    return {"valid": True, "alreadyScheduled": False, "candidateName": candidate_display_name(cand)}


def list_open_slots(db, day: date, *, now: datetime, tz) -> list[datetime]:
    out: list[datetime] = []
    for start in window_slot_starts(day, tz):
        if not check_booking_window(start, now=now, tz=tz).ok:
            continue
        if find_conflicting_interview(db, start) is not None:
            continue
        out.append(start)
    return out


def complete_interview(db, *, interview_id: str, auth: AuthContext) -> Interview:
    iid = str(interview_id or "").strip()
    if not iid:
        raise ApiError("BAD_REQUEST", "Missing interviewId")

    iv = db.execute(select(Interview).where(Interview.interviewId == iid).with_for_update(of=Interview)).scalars().first()
    if not iv:
        raise ApiError("NOT_FOUND", "Interview not found")
    if str(iv.status or "").upper() != "SCHEDULED":
        raise ApiError("CONFLICT", f"Interview is {iv.status}, not SCHEDULED")

    now = iso_utc_now()
    iv.status = "COMPLETED"
    iv.updatedAt = now
    iv.updatedBy = auth.userId
    append_audit(
        db,
        entityType="INTERVIEW",
        entityId=iid,
        action="INTERVIEW_COMPLETE",
        fromState="SCHEDULED",
        toState="COMPLETED",
        stageTag="INTERVIEW",
        actor=auth,
        at=now,
        meta={"candidateId": iv.candidateId},
    )
    transition_candidate_status(
        db,
        candidate_id=iv.candidateId,
        to_status="INTERVIEW_COMPLETED",
        action="INTERVIEW_COMPLETE",
        stage_tag="INTERVIEW",
        auth=auth,
        meta={"interviewId": iid},
    )
    return iv


def _interview_out(iv: Interview) -> dict[str, Any]:
    return {
        "interviewId": iv.interviewId,
        "candidateId": iv.candidateId,
        "scheduledAt": iv.scheduledAt,
        "durationMinutes": int(iv.durationMinutes or 0),
        "interviewerName": iv.interviewerName,
        "meetingUrl": iv.meetingUrl,
        "status": iv.status,
        "decision": iv.decision,
        "bookedVia": iv.bookedVia,
        "reminderSentAt": iv.reminderSentAt or "",
    }


def _book_and_queue(db, cfg, *, data: dict, caller: Caller) -> dict[str, Any]:
    res = book_interview(
        db,
        candidate_id=data.get("candidateId"),
        proposed_start=data.get("scheduledAt"),
        caller=caller,
        cfg=cfg,
        duration_minutes=data.get("durationMinutes"),
    )
    res.raise_for_rejection()
    queue_notifications(db, res.intents)
    return _interview_out(res.interview)


def interview_book(data, auth: AuthContext | None, db, cfg):
    data = dict(data or {})
    if data.get("durationMinutes") in (None, ""):
        data["durationMinutes"] = SLOT_MINUTES
    caller = AdminCaller(interviewer_name=str(data.get("interviewerName") or ""), auth=auth)
    return _book_and_queue(db, cfg, data=data, caller=caller)


def interview_book_public(data, auth: AuthContext | None, db, cfg):
    data = data or {}
    token = str(data.get("token") or data.get("schedulingToken") or "").strip()
    out = _book_and_queue(db, cfg, data=data, caller=PublicTokenCaller(token=token))
    return {
        "interviewId": out["interviewId"],
        "scheduledAt": out["scheduledAt"],
        "durationMinutes": out["durationMinutes"],
        "meetingUrl": out["meetingUrl"],
        "message": "Interview scheduled successfully",
    }


def scheduling_token_validate(data, auth: AuthContext | None, db, cfg):
    data = data or {}
    candidate_id = str(data.get("candidateId") or "").strip()
    token = str(data.get("token") or "").strip()
    if not candidate_id or not token:
        raise ApiError("BAD_REQUEST", "Missing token or candidateId")
    return validate_scheduling_token(db, candidate_id=candidate_id, token=token)


def interview_slots_get(data, auth: AuthContext | None, db, cfg):
    data = data or {}
    if find_candidate_by_scheduling_token(db, candidate_id=data.get("candidateId"), token=data.get("token")) is None:
        raise ApiError("INVALID_TOKEN", INVALID_TOKEN_MESSAGE)
    try:
        day = date.fromisoformat(str(data.get("date") or "").strip())
    except ValueError:
        raise ApiError("BAD_REQUEST", "date must be YYYY-MM-DD")

    tz = _app_tz(cfg)
    slots = list_open_slots(db, day, now=utc_now(), tz=tz)
    return {
        "date": day.isoformat(),
        "timezone": cfg.APP_TIMEZONE,
        "slots": [{"scheduledAt": to_iso_utc(s), "local": s.strftime("%H:%M")} for s in slots],
    }


def interview_complete(data, auth: AuthContext | None, db, cfg):
    iv = complete_interview(db, interview_id=(data or {}).get("interviewId"), auth=auth)
    return _interview_out(iv)


def interview_list(data, auth: AuthContext | None, db, cfg):
    data = data or {}
    q = select(Interview)
    status = str(data.get("status") or "").upper().strip()
    if status:
        q = q.where(Interview.status == status)
    candidate_id = str(data.get("candidateId") or "").strip()
    if candidate_id:
        q = q.where(Interview.candidateId == candidate_id)
    frm = parse_datetime_maybe(data.get("from"), app_timezone=cfg.APP_TIMEZONE)
    if frm is not None:
        q = q.where(Interview.scheduledAt >= to_iso_utc(frm))
    to = parse_datetime_maybe(data.get("to"), app_timezone=cfg.APP_TIMEZONE)
    if to is not None:
        q = q.where(Interview.scheduledAt < to_iso_utc(to))

    rows = db.execute(q.order_by(Interview.scheduledAt.asc())).scalars().all()
    return {"items": [_interview_out(iv) for iv in rows], "total": len(rows)}
