"""
Onboarding checklist reconciliation.

The checklist of a HIRED candidate is derived from one policy input,
`prerequisiteCourseCompleted`. `canonical_tasks` computes the desired list;
`reconcile_onboarding_tasks` brings the stored rows in line with it by
inserting missing tasks, deleting extra ones and fixing order/content in
place. Rows present in both keep their completion state.
"""
from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass
from typing import Any, Optional

from sqlalchemy import func, select

from actions.candidate_repo import find_candidate, lock_candidate, update_candidate
from actions.helpers import append_audit
from models import Candidate, OnboardingTask
from utils import ApiError, AuthContext, iso_utc_now, parse_bool


log = logging.getLogger("onboarding")

TASK_DOCUMENT_REVIEW = "DOCUMENT_REVIEW"
TASK_PREREQUISITE_COURSE_UPLOAD = "PREREQUISITE_COURSE_UPLOAD"
TASK_SIGNATURE = "SIGNATURE"
TASK_TYPES = (TASK_DOCUMENT_REVIEW, TASK_PREREQUISITE_COURSE_UPLOAD, TASK_SIGNATURE)


@dataclass(frozen=True)
class TaskSpec:
    task_type: str
    title: str
    description: str
    document_download_url: str
    sort_order: int


_DOCUMENT_REVIEWS = (
    (
        "HIPAA Security Overview",
        "Review the HIPAA Security Rule overview from HHS",
        "https://www.hhs.gov/hipaa/for-professionals/security/index.html",
    ),
    (
        "HIPAA Privacy Overview",
        "Review the HIPAA Privacy Rule overview from HHS",
        "https://www.hhs.gov/hipaa/for-professionals/privacy/index.html",
    ),
    (
        "HIPAA Patient Security",
        "Review HIPAA patient safety guidelines from HHS",
        "https://www.hhs.gov/hipaa/for-professionals/patient-safety/index.html",
    ),
    (
        "HIPAA Basics PDF",
        "Download and review the HIPAA Basics for Providers document from CMS",
        "https://www.cms.gov/files/document/mln909001-hipaa-basics-providers-privacy-security-breach-notification-rules.pdf",
    ),
    (
        "HIPAA IT Security Guide",
        "Review the Guide to Privacy and Security of Electronic Health Information",
        "https://www.healthit.gov/topic/health-it-resources/guide-privacy-security-electronic-health-information",
    ),
)

_COURSE_TASK = (
    "Complete 40-Hour Course & Upload Certificate",
    "Complete the 40-hour training course and upload your certificate of completion",
    "https://courses.autismpartnershipfoundation.org/offers/it285gs6/checkout",
)

_SIGNATURE_TASK = (
    "Digital Signature Confirmation",
    "Sign to confirm you have read and understood all onboarding documents and training materials",
    "",
)


def canonical_tasks(prerequisite_course_completed: bool) -> list[TaskSpec]:
    """Five document reviews, the course upload only when not yet completed, then the signature."""
    rows: list[tuple[str, tuple[str, str, str]]] = [(TASK_DOCUMENT_REVIEW, d) for d in _DOCUMENT_REVIEWS]
    if not prerequisite_course_completed:
        rows.append((TASK_PREREQUISITE_COURSE_UPLOAD, _COURSE_TASK))
    rows.append((TASK_SIGNATURE, _SIGNATURE_TASK))

    return [
        TaskSpec(task_type=task_type, title=title, description=desc, document_download_url=url, sort_order=i)
        for i, (task_type, (title, desc, url)) in enumerate(rows, start=1)
    ]


@dataclass(frozen=True)
class RepairResult:
    candidateId: str
    repaired: bool
    inserted: int = 0
    deleted: int = 0
    updated: int = 0
    taskCount: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _spec_fields(spec: TaskSpec) -> dict[str, Any]:
    return {
        "taskType": spec.task_type,
        "title": spec.title,
        "description": spec.description,
        "documentDownloadUrl": spec.document_download_url,
        "sortOrder": spec.sort_order,
    }


def _row_matches(row: OnboardingTask, spec: TaskSpec) -> bool:
    return all(str(getattr(row, k) or "") == str(v or "") for k, v in _spec_fields(spec).items())


def _load_tasks(db, candidate_id: str) -> list[OnboardingTask]:
    return (
        db.execute(
            select(OnboardingTask)
            .where(OnboardingTask.candidateId == candidate_id)
            .order_by(OnboardingTask.sortOrder.asc(), OnboardingTask.createdAt.asc())
        )
        .scalars()
        .all()
    )


def reconcile_onboarding_tasks(db, cand: Candidate, *, auth: Optional[AuthContext] = None) -> RepairResult:
    candidate_id = str(cand.candidateId)
    desired = canonical_tasks(bool(cand.prerequisiteCourseCompleted))
    existing = _load_tasks(db, candidate_id)

    if len(existing) == len(desired) and all(_row_matches(r, s) for r, s in zip(existing, desired)):
        return RepairResult(candidateId=candidate_id, repaired=False, taskCount=len(existing))

    now = iso_utc_now()
    pool: dict[tuple[str, str], list[OnboardingTask]] = {}
    for row in existing:
        pool.setdefault((str(row.taskType or ""), str(row.title or "")), []).append(row)

    inserted = updated = 0
    for spec in desired:
        matches = pool.get((spec.task_type, spec.title)) or []
        if matches:
            row = matches.pop(0)
            if not _row_matches(row, spec):
                for k, v in _spec_fields(spec).items():
                    setattr(row, k, v)
                row.updatedAt = now
                updated += 1
            continue
        db.add(
            OnboardingTask(
                taskId=f"OBT-{os.urandom(12).hex()}",
                candidateId=candidate_id,
                isCompleted=False,
                completedAt="",
                createdAt=now,
                updatedAt=now,
                **_spec_fields(spec),
            )
        )
        inserted += 1

    deleted = 0
    for leftovers in pool.values():
        for row in leftovers:
            db.delete(row)
            deleted += 1

    db.flush()

    result = RepairResult(
        candidateId=candidate_id,
        repaired=True,
        inserted=inserted,
        deleted=deleted,
        updated=updated,
        taskCount=len(desired),
    )
    append_audit(
        db,
        entityType="CANDIDATE",
        entityId=candidate_id,
        action="ONBOARDING_TASKS_RECONCILE",
        stageTag="ONBOARDING",
        remark=f"inserted={inserted} deleted={deleted} updated={updated}",
        actor=auth,
        at=now,
        meta={"prerequisiteCourseCompleted": bool(cand.prerequisiteCourseCompleted), **result.to_dict()},
    )
    log.info("onboarding reconciled candidate=%s inserted=%s deleted=%s updated=%s", candidate_id, inserted, deleted, updated)
    return result


def ensure_onboarding_tasks(db, cand: Candidate, *, auth: Optional[AuthContext] = None) -> Optional[RepairResult]:
    """Create the checklist the first time a candidate is hired; existing checklists are left alone."""
    count = db.execute(
        select(func.count()).select_from(OnboardingTask).where(OnboardingTask.candidateId == str(cand.candidateId))
    ).scalar_one()
    if int(count or 0) > 0:
        return None
    return reconcile_onboarding_tasks(db, cand, auth=auth)


def repair_onboarding_tasks(db, *, auth: Optional[AuthContext] = None) -> dict[str, Any]:
    """
    Reconcile every HIRED candidate.

    Each candidate runs in its own savepoint: a failure is reported in
    `errors` and leaves the others intact. Safe to re-run.
    """
    hired = db.execute(select(Candidate).where(Candidate.status == "HIRED").order_by(Candidate.candidateId.asc())).scalars().all()

    repaired = 0
    already_correct = 0
    errors: list[dict[str, str]] = []
    for cand in hired:
        cid = str(cand.candidateId)
        try:
            with db.begin_nested():
                res = reconcile_onboarding_tasks(db, cand, auth=auth)
        except Exception as e:
            log.exception("onboarding repair failed candidate=%s", cid)
            errors.append({"candidateId": cid, "message": str(e) or type(e).__name__})
            continue
        if res.repaired:
            repaired += 1
        else:
            already_correct += 1

    return {
        "repairedCount": repaired,
        "alreadyCorrectCount": already_correct,
        "totalCount": len(hired),
        "errors": errors,
    }


def _task_out(t: OnboardingTask) -> dict[str, Any]:
    return {
        "taskId": t.taskId,
        "taskType": t.taskType,
        "title": t.title,
        "description": t.description,
        "documentDownloadUrl": t.documentDownloadUrl or None,
        "sortOrder": int(t.sortOrder or 0),
        "isCompleted": bool(t.isCompleted),
        "completedAt": t.completedAt or "",
    }


def onboarding_tasks_repair(data, auth: AuthContext | None, db, cfg):
    out = repair_onboarding_tasks(db, auth=auth)
    append_audit(
        db,
        entityType="ONBOARDING",
        entityId="ALL_HIRED",
        action="ONBOARDING_TASKS_REPAIR",
        stageTag="ONBOARDING_REPAIR_SWEEP",
        remark=f"repaired={out['repairedCount']} correct={out['alreadyCorrectCount']} total={out['totalCount']}",
        actor=auth,
        meta={k: v for k, v in out.items() if k != "errors"},
    )
    return out


def onboarding_tasks_fix(data, auth: AuthContext | None, db, cfg):
    candidate_id = str((data or {}).get("candidateId") or "").strip()
    if not candidate_id:
        raise ApiError("BAD_REQUEST", "Missing candidateId")
    cand = lock_candidate(db, candidate_id=candidate_id)
    res = reconcile_onboarding_tasks(db, cand, auth=auth)
    return {**res.to_dict(), "tasks": [_task_out(t) for t in _load_tasks(db, candidate_id)]}


def onboarding_tasks_get(data, auth: AuthContext | None, db, cfg):
    candidate_id = str((data or {}).get("candidateId") or "").strip()
    cand = find_candidate(db, candidate_id=candidate_id)
    tasks = _load_tasks(db, str(cand.candidateId))
    return {
        "candidateId": cand.candidateId,
        "status": cand.status,
        "prerequisiteCourseCompleted": bool(cand.prerequisiteCourseCompleted),
        "tasks": [_task_out(t) for t in tasks],
    }


def candidate_course_status_set(data, auth: AuthContext | None, db, cfg):
    candidate_id = str((data or {}).get("candidateId") or "").strip()
    raw = (data or {}).get("completed")
    if raw is None:
        raise ApiError("BAD_REQUEST", "Missing completed")
    completed = parse_bool(raw)

    cand = lock_candidate(db, candidate_id=candidate_id)
    before = bool(cand.prerequisiteCourseCompleted)
    update_candidate(db, cand=cand, patch={"prerequisiteCourseCompleted": completed}, auth=auth)
    append_audit(
        db,
        entityType="CANDIDATE",
        entityId=candidate_id,
        action="CANDIDATE_COURSE_STATUS_SET",
        fromState=str(before).upper(),
        toState=str(completed).upper(),
        stageTag="ONBOARDING_POLICY_INPUT",
        actor=auth,
    )

    repair: Optional[RepairResult] = None
    if str(cand.status or "").upper() == "HIRED":
        repair = reconcile_onboarding_tasks(db, cand, auth=auth)

    return {
        "candidateId": candidate_id,
        "prerequisiteCourseCompleted": completed,
        "repair": repair.to_dict() if repair else None,
    }
