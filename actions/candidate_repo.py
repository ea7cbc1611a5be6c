from __future__ import annotations

from typing import Any

from sqlalchemy import select

from models import Candidate
from utils import ApiError, AuthContext, iso_utc_now, parse_bool


_SYSTEM_AUTH = AuthContext(valid=True, userId="SYSTEM", email="SYSTEM", role="SYSTEM", expiresAt="")


def find_candidate(db, *, candidate_id: str) -> Candidate:
    cid = str(candidate_id or "").strip()
    if not cid:
        raise ApiError("BAD_REQUEST", "Missing candidateId")
    cand = db.execute(select(Candidate).where(Candidate.candidateId == cid)).scalar_one_or_none()
    if not cand:
        raise ApiError("NOT_FOUND", "Candidate not found")
    return cand


def lock_candidate(db, *, candidate_id: str) -> Candidate:
    cid = str(candidate_id or "").strip()
    if not cid:
        raise ApiError("BAD_REQUEST", "Missing candidateId")

    cand = (
        db.execute(select(Candidate).where(Candidate.candidateId == cid).with_for_update(of=Candidate))
        .scalars()
        .first()
    )
    if not cand:
        raise ApiError("NOT_FOUND", "Candidate not found")
    return cand


def find_candidate_by_scheduling_token(db, *, candidate_id: str, token: str) -> Candidate | None:
    """Both parts must match; callers must not reveal which one failed."""
    cid = str(candidate_id or "").strip()
    tok = str(token or "").strip()
    if not cid or not tok:
        return None
    return (
        db.execute(
            select(Candidate)
            .where(Candidate.candidateId == cid)
            .where(Candidate.schedulingToken == tok)
        )
        .scalars()
        .first()
    )


def candidate_display_name(cand: Candidate) -> str:
    return " ".join(x for x in [str(cand.firstName or "").strip(), str(cand.lastName or "").strip()] if x)


def update_candidate(db, *, cand: Candidate, patch: dict[str, Any], auth: AuthContext | None):
    def set_str(key: str, value: Any):
        setattr(cand, key, str(value or ""))

    for key in ("status", "schedulingToken", "schedulingTokenIssuedAt", "hiredAt"):
        if key in patch and patch[key] is not None:
            set_str(key, patch[key])
    if "prerequisiteCourseCompleted" in patch and patch["prerequisiteCourseCompleted"] is not None:
        cand.prerequisiteCourseCompleted = parse_bool(patch["prerequisiteCourseCompleted"])

    actor = auth or _SYSTEM_AUTH
    cand.updatedAt = iso_utc_now()
    cand.updatedBy = str(actor.userId or actor.email or "")
    return cand
