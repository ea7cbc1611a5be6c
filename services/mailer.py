"""
Outbound email adapter.

Workflow handlers never send mail themselves. They `queue_notifications` on
their database session; the request runner pops the queue after a successful
commit and calls `deliver_notifications` with a fresh session, so a rolled
back booking or status change sends nothing and no row lock is held across
an HTTP call to the mail provider.

A failed send is logged and recorded in `email_log`; it never raises into the
caller. Without RESEND_API_KEY the message is only logged (dev mode).
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Iterable

import requests
from sqlalchemy import select

from models import EmailLog, User
from utils import iso_utc_now, mask_email


log = logging.getLogger("mailer")

OUTBOX_KEY = "notification_outbox"


@dataclass(frozen=True)
class NotificationIntent:
    to: str
    subject: str
    html: str
    template_type: str
    candidate_id: str = ""
    reference_id: str = ""


def queue_notifications(db, intents: Iterable[NotificationIntent]) -> None:
    db.info.setdefault(OUTBOX_KEY, []).extend(intents)


def pop_queued_notifications(db) -> list[NotificationIntent]:
    return list(db.info.pop(OUTBOX_KEY, None) or [])


def active_admin_emails(db) -> list[str]:
    rows = db.execute(select(User.email).where(User.role == "ADMIN").where(User.status == "ACTIVE")).all()
    seen: set[str] = set()
    out: list[str] = []
    for (email,) in rows:
        e = str(email or "").strip().lower()
        if e and e not in seen:
            seen.add(e)
            out.append(e)
    return out


def send_email(db, intent: NotificationIntent, cfg) -> bool:
    status = "LOGGED"
    error = ""

    if not cfg.RESEND_API_KEY:
        log.info("dev mode email to=%s subject=%s type=%s", mask_email(intent.to), intent.subject, intent.template_type)
    else:
        try:
            resp = requests.post(
                cfg.RESEND_API_URL,
                json={"from": cfg.EMAIL_FROM, "to": [intent.to], "subject": intent.subject, "html": intent.html},
                headers={"Authorization": f"Bearer {cfg.RESEND_API_KEY}"},
                timeout=cfg.EMAIL_TIMEOUT_SECONDS,
            )
            if resp.status_code >= 400:
                status = "FAILED"
                error = f"HTTP {resp.status_code}: {str(resp.text or '')[:300]}"
                log.warning("email rejected to=%s type=%s status=%s", mask_email(intent.to), intent.template_type, resp.status_code)
            else:
                status = "SENT"
        except requests.RequestException as e:
            status = "FAILED"
            error = f"{type(e).__name__}: {str(e)[:300]}"
            log.exception("email send failed to=%s type=%s", mask_email(intent.to), intent.template_type)

    db.add(
        EmailLog(
            emailId=f"EML-{os.urandom(12).hex()}",
            candidateId=str(intent.candidate_id or ""),
            referenceId=str(intent.reference_id or ""),
            templateType=str(intent.template_type or ""),
            toEmail=str(intent.to or ""),
            subject=str(intent.subject or ""),
            body=str(intent.html or ""),
            status=status,
            error=error,
            at=iso_utc_now(),
        )
    )
    return status != "FAILED"


def deliver_notifications(db, intents: Iterable[NotificationIntent], cfg) -> dict[str, int]:
    sent = 0
    failed = 0
    for intent in intents:
        if not str(intent.to or "").strip():
            continue
        if send_email(db, intent, cfg):
            sent += 1
        else:
            failed += 1
    return {"sent": sent, "failed": failed}
