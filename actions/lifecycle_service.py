from __future__ import annotations

import logging
import os
from typing import Any, Iterable, Optional
from urllib.parse import urlencode

from sqlalchemy import select

from actions.candidate_repo import candidate_display_name, lock_candidate, update_candidate
from actions.helpers import append_audit
from actions.onboarding import ensure_onboarding_tasks
from models import Candidate, Interview
from services.email_templates import offer_email, reach_out_email, rejection_email
from services.mailer import NotificationIntent, queue_notifications
from utils import ApiError, AuthContext, iso_utc_now


log = logging.getLogger("lifecycle")

PIPELINE_STATUSES = (
    "NEW",
    "REACH_OUT",
    "REACH_OUT_EMAIL_SENT",
    "TO_INTERVIEW",
    "INTERVIEW_SCHEDULED",
    "INTERVIEW_COMPLETED",
    "HIRED",
    "REJECTED",
    "STALLED",
)

# Every status may currently move to every status (including itself); narrow a
# row here to forbid a move.
ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {s: frozenset(PIPELINE_STATUSES) for s in PIPELINE_STATUSES}


class InvalidTransition(ApiError):
    def __init__(self, from_status: str, to_status: str):
        super().__init__("BAD_REQUEST", f"Invalid status transition {from_status or '-'} -> {to_status or '-'}")
        self.from_status = from_status
        self.to_status = to_status


def assert_transition_allowed(from_status: str, to_status: str) -> None:
    f = str(from_status or "").upper().strip()
    t = str(to_status or "").upper().strip()
    if t not in ALLOWED_TRANSITIONS.get(f, frozenset()):
        raise InvalidTransition(f, t)


def transition_candidate_status(
    db,
    *,
    candidate_id: str,
    to_status: str,
    action: str,
    stage_tag: str,
    auth: AuthContext,
    remark: str = "",
    meta: Any = None,
    patch: Optional[dict[str, Any]] = None,
    require_from: Optional[Iterable[str]] = None,
) -> Candidate:
    """
    Single-transaction, audited status change.

    Locks the Candidate row, checks the move against ALLOWED_TRANSITIONS,
    updates the candidate in place and writes one AuditLog row. Entering
    HIRED stamps `hiredAt` and creates the onboarding checklist when the
    candidate has none.

    Does not commit; the API router owns the transaction boundary.
    """
    if not auth or not auth.valid:
        raise ApiError("AUTH_INVALID", "Login required")

    to_u = str(to_status or "").upper().strip()
    if not to_u:
        raise ApiError("BAD_REQUEST", "Missing to_status")

    now = iso_utc_now()
    cand = lock_candidate(db, candidate_id=candidate_id)
    from_status = str(cand.status or "").upper().strip()

    if require_from is not None:
        allowed = {str(x or "").upper().strip() for x in require_from}
        if from_status not in allowed:
            raise ApiError("BAD_REQUEST", "Candidate not in expected state")
    assert_transition_allowed(from_status, to_u)

    patch2 = dict(patch or {})
    patch2["status"] = to_u
    if to_u == "HIRED" and from_status != "HIRED":
        patch2["hiredAt"] = now
    update_candidate(db, cand=cand, patch=patch2, auth=auth)

    append_audit(
        db,
        entityType="CANDIDATE",
        entityId=cand.candidateId,
        action=str(action or "").upper(),
        fromState=from_status,
        toState=to_u,
        stageTag=str(stage_tag or ""),
        remark=str(remark or ""),
        actor=auth,
        at=now,
        meta=meta,
    )
    log.info("candidate %s status %s -> %s by %s", cand.candidateId, from_status, to_u, auth.userId)

    if to_u == "HIRED":
        db.flush()
        ensure_onboarding_tasks(db, cand, auth=auth)

    return cand


def complete_scheduled_interviews(db, *, candidate_id: str, auth: AuthContext) -> int:
    rows = (
        db.execute(
            select(Interview)
            .where(Interview.candidateId == str(candidate_id))
            .where(Interview.status == "SCHEDULED")
        )
        .scalars()
        .all()
    )
    now = iso_utc_now()
    for iv in rows:
        iv.status = "COMPLETED"
        iv.updatedAt = now
        iv.updatedBy = auth.userId
        append_audit(
            db,
            entityType="INTERVIEW",
            entityId=iv.interviewId,
            action="INTERVIEW_COMPLETE",
            fromState="SCHEDULED",
            toState="COMPLETED",
            stageTag="INTERVIEW",
            actor=auth,
            at=now,
            meta={"candidateId": candidate_id},
        )
    return len(rows)


def new_scheduling_token() -> str:
    return f"SCH-{os.urandom(24).hex()}"


def scheduling_url(cfg, *, candidate_id: str, token: str) -> str:
    return f"{cfg.PUBLIC_BASE_URL}/schedule-interview?" + urlencode({"token": token, "candidateId": candidate_id})


def send_reach_out(db, *, candidate_id: str, auth: AuthContext, cfg) -> tuple[Candidate, list[NotificationIntent]]:
    """
    Issue a fresh scheduling token and move the candidate to REACH_OUT_EMAIL_SENT.

    The previous token stops working as soon as this commits.
    """
    token = new_scheduling_token()
    now = iso_utc_now()
    cand = transition_candidate_status(
        db,
        candidate_id=candidate_id,
        to_status="REACH_OUT_EMAIL_SENT",
        action="REACH_OUT_SEND",
        stage_tag="REACH_OUT",
        auth=auth,
        patch={"schedulingToken": token, "schedulingTokenIssuedAt": now},
    )
    to = str(cand.email or "").strip()
    if not to:
        raise ApiError("BAD_REQUEST", "Candidate has no email address")

    subject, html = reach_out_email(
        first_name=str(cand.firstName or ""),
        scheduling_url=scheduling_url(cfg, candidate_id=cand.candidateId, token=token),
    )
    return cand, [NotificationIntent(to=to, subject=subject, html=html, template_type="REACH_OUT", candidate_id=cand.candidateId)]


def status_change_notifications(cand: Candidate, *, from_status: str, cfg) -> list[NotificationIntent]:
    """Offer email on entering HIRED, rejection email on entering REJECTED."""
    to_status = str(cand.status or "").upper()
    to = str(cand.email or "").strip()
    if not to or to_status == str(from_status or "").upper():
        return []
    first_name = str(cand.firstName or "")
    if to_status == "HIRED":
        subject, html = offer_email(first_name=first_name, email=to, portal_url=f"{cfg.PUBLIC_BASE_URL}/login")
        template_type = "OFFER"
    elif to_status == "REJECTED":
        subject, html = rejection_email(first_name=first_name)
        template_type = "REJECTION"
    else:
        return []
    return [NotificationIntent(to=to, subject=subject, html=html, template_type=template_type, candidate_id=cand.candidateId)]


def reach_out_send(data, auth: AuthContext | None, db, cfg):
    candidate_id = str((data or {}).get("candidateId") or "").strip()
    cand, intents = send_reach_out(db, candidate_id=candidate_id, auth=auth, cfg=cfg)
    queue_notifications(db, intents)
    return {
        "candidateId": cand.candidateId,
        "candidateName": candidate_display_name(cand),
        "status": cand.status,
        "schedulingTokenIssuedAt": cand.schedulingTokenIssuedAt,
    }


def candidate_status_set(data, auth: AuthContext | None, db, cfg):
    data = data or {}
    candidate_id = str(data.get("candidateId") or "").strip()
    to_status = str(data.get("status") or "").upper().strip()
    remark = str(data.get("remark") or "").strip()
    if not to_status:
        raise ApiError("BAD_REQUEST", "Missing status")
    if to_status not in PIPELINE_STATUSES:
        raise ApiError("BAD_REQUEST", f"Unknown status {to_status}")

    from_status = str(lock_candidate(db, candidate_id=candidate_id).status or "").upper()
    cand = transition_candidate_status(
        db,
        candidate_id=candidate_id,
        to_status=to_status,
        action="CANDIDATE_STATUS_SET",
        stage_tag="MANUAL_STATUS",
        auth=auth,
        remark=remark,
    )

    completed = 0
    if to_status == "INTERVIEW_COMPLETED":
        completed = complete_scheduled_interviews(db, candidate_id=cand.candidateId, auth=auth)
    queue_notifications(db, status_change_notifications(cand, from_status=from_status, cfg=cfg))

    return {
        "candidateId": cand.candidateId,
        "status": cand.status,
        "hiredAt": cand.hiredAt or "",
        "interviewsCompleted": completed,
    }
