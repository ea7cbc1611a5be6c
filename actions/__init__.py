from __future__ import annotations

from typing import Any, Callable, Optional

from actions.interview_booking import (
    interview_book,
    interview_book_public,
    interview_complete,
    interview_list,
    interview_slots_get,
    scheduling_token_validate,
)
from actions.lifecycle_service import candidate_status_set, reach_out_send
from actions.onboarding import (
    candidate_course_status_set,
    onboarding_tasks_fix,
    onboarding_tasks_get,
    onboarding_tasks_repair,
)
from actions.reminders import interview_reminders_send
from auth import serialize_auth
from utils import ApiError, AuthContext


def _session_validate(data, auth: AuthContext | None, db, cfg):
    return serialize_auth(auth)


Handler = Callable[[dict, Optional[AuthContext], Any, Any], Any]

ACTION_HANDLERS: dict[str, Handler] = {
    "SESSION_VALIDATE": _session_validate,
    "INTERVIEW_BOOK": interview_book,
    "INTERVIEW_BOOK_PUBLIC": interview_book_public,
    "INTERVIEW_COMPLETE": interview_complete,
    "INTERVIEW_LIST": interview_list,
    "INTERVIEW_SLOTS_GET": interview_slots_get,
    "SCHEDULING_TOKEN_VALIDATE": scheduling_token_validate,
    "INTERVIEW_REMINDERS_SEND": interview_reminders_send,
    "REACH_OUT_SEND": reach_out_send,
    "CANDIDATE_STATUS_SET": candidate_status_set,
    "CANDIDATE_COURSE_STATUS_SET": candidate_course_status_set,
    "ONBOARDING_TASKS_GET": onboarding_tasks_get,
    "ONBOARDING_TASKS_FIX": onboarding_tasks_fix,
    "ONBOARDING_TASKS_REPAIR": onboarding_tasks_repair,
}


def dispatch(action: str, data: dict, auth: Optional[AuthContext], db, cfg) -> Any:
    handler = ACTION_HANDLERS.get(str(action or "").upper().strip())
    if handler is None:
        raise ApiError("BAD_REQUEST", f"Unknown action: {action}")
    if not isinstance(data, dict):
        raise ApiError("BAD_REQUEST", "data must be an object")
    return handler(data, auth, db, cfg)
