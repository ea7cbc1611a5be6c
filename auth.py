from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from sqlalchemy import select

from cache_layer import cache_get, cache_invalidate_prefix, cache_set
from models import Role, Session as DbSession, User
from utils import ApiError, AuthContext, iso_utc_now, new_uuid, normalize_role, parse_datetime_maybe, sha256_hex, to_iso_utc


KNOWN_ROLES = ("ADMIN", "HR")

PUBLIC_ACTIONS = {
    "INTERVIEW_BOOK_PUBLIC",
    "SCHEDULING_TOKEN_VALIDATE",
    "INTERVIEW_SLOTS_GET",
}


STATIC_RBAC_PERMISSIONS: dict[str, list[str]] = {
    "SESSION_VALIDATE": ["ADMIN", "HR"],
    # Interview booking
    "INTERVIEW_BOOK": ["ADMIN"],
    "INTERVIEW_COMPLETE": ["ADMIN"],
    "INTERVIEW_LIST": ["ADMIN", "HR"],
    "INTERVIEW_BOOK_PUBLIC": ["PUBLIC"],
    "SCHEDULING_TOKEN_VALIDATE": ["PUBLIC"],
    "INTERVIEW_SLOTS_GET": ["PUBLIC"],
    "INTERVIEW_REMINDERS_SEND": ["ADMIN"],
    # Pipeline
    "REACH_OUT_SEND": ["ADMIN"],
    "CANDIDATE_STATUS_SET": ["ADMIN"],
    "CANDIDATE_COURSE_STATUS_SET": ["ADMIN"],
    # Onboarding checklist
    "ONBOARDING_TASKS_GET": ["ADMIN", "HR"],
    "ONBOARDING_TASKS_FIX": ["ADMIN"],
    "ONBOARDING_TASKS_REPAIR": ["ADMIN"],
}


_RBAC_CACHE_PREFIX = "RBAC:"
_RBAC_ROLES_INDEX_KEY = f"{_RBAC_CACHE_PREFIX}ROLES_INDEX"

_INVALID = AuthContext(valid=False, userId="", email="", role="", expiresAt="")


def is_public_action(action: str) -> bool:
    return str(action or "").upper() in PUBLIC_ACTIONS


def issue_session_token(db, *, user_id: str, email: str, role: str, session_ttl_minutes: int) -> dict[str, str]:
    """
    Persist a new session and return the raw token once.

    Only the sha256 of the token is stored. Login flows that call this live
    outside this service; tests use it to mint admin sessions.
    """
    token = "ST-" + new_uuid().replace("-", "") + new_uuid().replace("-", "")
    now = datetime.now(timezone.utc)
    issued_at = to_iso_utc(now)
    expires_at = to_iso_utc(now + timedelta(minutes=session_ttl_minutes))

    db.add(
        DbSession(
            sessionId="SES-" + new_uuid(),
            tokenHash=sha256_hex(token),
            tokenPrefix=token[:12],
            userId=str(user_id or ""),
            email=str(email or ""),
            role=normalize_role(role),
            issuedAt=issued_at,
            expiresAt=expires_at,
            lastSeenAt=issued_at,
            revokedAt="",
            revokedBy="",
        )
    )
    return {"sessionToken": token, "expiresAt": expires_at}


def validate_session_token(db, token: Any, *, action: str | None = None) -> AuthContext:
    if not token or not isinstance(token, str):
        return _INVALID

    ses = db.execute(select(DbSession).where(DbSession.tokenHash == sha256_hex(token))).scalar_one_or_none()
    if not ses or ses.revokedAt:
        return _INVALID

    exp_dt = parse_datetime_maybe(ses.expiresAt)
    if exp_dt and exp_dt < datetime.now(timezone.utc):
        return _INVALID

    user_id = str(ses.userId or "").strip()
    usr = db.execute(select(User).where(User.userId == user_id)).scalar_one_or_none()
    if not usr:
        return _INVALID
    if str(usr.status or "").upper().strip() != "ACTIVE":
        raise ApiError("FORBIDDEN", "User is disabled")

    # Avoid writing on every request: update lastSeenAt at most once per interval.
    try:
        interval_s = int(str(os.getenv("SESSION_LAST_SEEN_UPDATE_SECONDS", "300") or "300"))
    except ValueError:
        interval_s = 300
    last_dt = parse_datetime_maybe(ses.lastSeenAt)
    if interval_s <= 0 or not last_dt or (datetime.now(timezone.utc) - last_dt).total_seconds() >= interval_s:
        ses.lastSeenAt = iso_utc_now()

    return AuthContext(
        valid=True,
        userId=user_id,
        email=str(ses.email or ""),
        role=normalize_role(ses.role),
        expiresAt=str(ses.expiresAt or ""),
    )


def _roles_index(db) -> dict[str, dict[str, Any]]:
    cached = cache_get(_RBAC_ROLES_INDEX_KEY)
    if isinstance(cached, dict):
        return cached

    out: dict[str, dict[str, Any]] = {}
    rows = db.execute(select(Role)).scalars().all()
    if not rows:
        out = {rc: {"roleCode": rc, "roleName": rc, "status": "ACTIVE"} for rc in KNOWN_ROLES}
    for r in rows:
        code = normalize_role(r.roleCode)
        if code:
            out[code] = {"roleCode": code, "roleName": str(r.roleName or code), "status": str(r.status or "ACTIVE").upper()}
    cache_set(_RBAC_ROLES_INDEX_KEY, out)
    return out


def invalidate_rbac_cache() -> int:
    return cache_invalidate_prefix(_RBAC_CACHE_PREFIX)


def is_role_active(db, role: str) -> bool:
    r = normalize_role(role)
    if not r:
        return False
    it = _roles_index(db).get(r)
    return bool(it) and str(it.get("status", "")).upper() == "ACTIVE"


def assert_permission(db, role: str, action: str) -> None:
    role_u = normalize_role(role)
    action_u = str(action or "").upper().strip()

    if is_public_action(action_u):
        return

    allowed = STATIC_RBAC_PERMISSIONS.get(action_u)
    if not allowed:
        raise ApiError("BAD_REQUEST", f"Unknown action: {action_u}")
    if not role_u or role_u == "PUBLIC":
        raise ApiError("AUTH_INVALID", "Login required")
    if not is_role_active(db, role_u):
        raise ApiError("FORBIDDEN", f"Inactive or unknown role: {role_u}")
    if role_u not in allowed:
        raise ApiError("FORBIDDEN", f"Not allowed for role: {role_u}")


def serialize_auth(auth: AuthContext) -> dict[str, Any]:
    return {"valid": bool(auth.valid), "expiresAt": auth.expiresAt, "me": {"email": auth.email, "role": role_or_public(auth)}}


def role_or_public(auth: Optional[AuthContext]) -> str:
    if not auth or not auth.valid:
        return "PUBLIC"
    return normalize_role(auth.role) or "PUBLIC"
