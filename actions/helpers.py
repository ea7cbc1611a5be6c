from __future__ import annotations

import json
import os
from typing import Any, Optional

from flask import g, has_request_context

from models import AuditLog
from utils import AuthContext, iso_utc_now


def _correlation_id() -> str:
    if not has_request_context():
        return ""
    return str(getattr(g, "request_id", "") or "")


def append_audit(
    db,
    *,
    entityType: str,
    entityId: str,
    action: str,
    fromState: str = "",
    toState: str = "",
    stageTag: str = "",
    remark: str = "",
    actor: Optional[AuthContext] = None,
    at: str = "",
    meta: Any = None,
) -> AuditLog:
    """Append-only; callers never update or delete AuditLog rows."""
    row = AuditLog(
        logId=f"LOG-{os.urandom(16).hex()}",
        entityType=str(entityType or ""),
        entityId=str(entityId or ""),
        action=str(action or "").upper(),
        fromState=str(fromState or ""),
        toState=str(toState or ""),
        stageTag=str(stageTag or ""),
        remark=str(remark or ""),
        actorUserId=str(actor.userId) if actor else "SYSTEM",
        actorRole=str(actor.role) if actor else "SYSTEM",
        actorEmail=str(getattr(actor, "email", "") or "") if actor else "",
        at=at or iso_utc_now(),
        correlationId=_correlation_id(),
        metaJson=json.dumps(meta) if meta is not None else "",
    )
    db.add(row)
    return row
