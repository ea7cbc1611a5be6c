from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Optional
from zoneinfo import ZoneInfo

from sqlalchemy import select

from actions.candidate_repo import candidate_display_name
from actions.helpers import append_audit
from models import Candidate, EmailLog, Interview
from services.email_templates import interview_reminder_email
from services.mailer import NotificationIntent, active_admin_emails, send_email
from utils import AuthContext, iso_utc_now, parse_datetime_maybe, to_iso_utc, utc_now


log = logging.getLogger("scheduler")

REMINDER_LEAD_MINUTES = 30


def _reminder_intents(iv: Interview, cand: Optional[Candidate], admins: list[str], tz) -> list[NotificationIntent]:
    start = parse_datetime_maybe(iv.scheduledAt)
    name = candidate_display_name(cand) if cand else iv.candidateId
    common = {
        "first_name": str(getattr(cand, "firstName", "") or ""),
        "candidate_name": name,
        "scheduled_at": start,
        "duration_minutes": int(iv.durationMinutes or 30),
        "interviewer_name": str(iv.interviewerName or ""),
        "meeting_url": str(iv.meetingUrl or ""),
        "tz": tz,
    }

    out: list[NotificationIntent] = []
    if cand is not None and str(cand.email or "").strip():
        subject, html = interview_reminder_email(for_admin=False, **common)
        out.append(NotificationIntent(to=str(cand.email).strip(), subject=subject, html=html, template_type="INTERVIEW_REMINDER", candidate_id=iv.candidateId, reference_id=iv.interviewId))
    if admins:
        subject, html = interview_reminder_email(for_admin=True, **common)
        for email in admins:
            out.append(NotificationIntent(to=email, subject=subject, html=html, template_type="INTERVIEW_REMINDER", candidate_id=iv.candidateId, reference_id=iv.interviewId))
    return out


def _already_reminded(db, interview_id: str) -> set[str]:
    rows = db.execute(
        select(EmailLog.toEmail)
        .where(EmailLog.templateType == "INTERVIEW_REMINDER")
        .where(EmailLog.referenceId == interview_id)
        .where(EmailLog.status != "FAILED")
    ).all()
    return {str(to or "").strip().lower() for (to,) in rows}


def send_interview_reminders(db, cfg, now: Optional[datetime] = None) -> dict[str, Any]:
    """
    Remind the candidate and every active admin about SCHEDULED interviews
    starting within the next REMINDER_LEAD_MINUTES.

    An interview is stamped with `reminderSentAt` only when every recipient
    has a delivered reminder in `email_log`. A partial failure is retried on
    the next run for the recipients that failed; the others are skipped.
    """
    now = now or utc_now()
    lower = to_iso_utc(now)
    upper = to_iso_utc(now + timedelta(minutes=REMINDER_LEAD_MINUTES))
    tz = ZoneInfo(cfg.APP_TIMEZONE)

    upcoming = (
        db.execute(
            select(Interview)
            .where(Interview.status == "SCHEDULED")
            .where(Interview.reminderSentAt == "")
            .where(Interview.scheduledAt > lower)
            .where(Interview.scheduledAt <= upper)
            .order_by(Interview.scheduledAt.asc())
        )
        .scalars()
        .all()
    )
    if not upcoming:
        return {"processed": 0, "sentCount": 0, "errorCount": 0}

    admins = active_admin_emails(db)
    sent = 0
    errors = 0
    for iv in upcoming:
        cand = db.execute(select(Candidate).where(Candidate.candidateId == iv.candidateId)).scalars().first()
        done = _already_reminded(db, iv.interviewId)
        results = [
            send_email(db, intent, cfg)
            for intent in _reminder_intents(iv, cand, admins, tz)
            if intent.to.strip().lower() not in done
        ]
        if all(results):
            iv.reminderSentAt = iso_utc_now()
            sent += 1
        else:
            errors += 1
            log.warning("interview reminder incomplete id=%s failed=%s", iv.interviewId, results.count(False))

    log.info("interview reminders processed=%s sent=%s errors=%s", len(upcoming), sent, errors)
    return {"processed": len(upcoming), "sentCount": sent, "errorCount": errors}


def interview_reminders_send(data, auth: AuthContext | None, db, cfg):
    out = send_interview_reminders(db, cfg)
    if out["processed"]:
        append_audit(
            db,
            entityType="JOB",
            entityId="INTERVIEW_REMINDERS",
            action="INTERVIEW_REMINDERS_SEND",
            stageTag="SCHEDULER",
            remark=f"processed={out['processed']} sent={out['sentCount']} errors={out['errorCount']}",
            actor=auth,
            meta=out,
        )
    return out
