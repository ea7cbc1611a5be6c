from __future__ import annotations

import json
import logging
import os
import re
import threading
import time
from typing import Any

from dotenv import load_dotenv
from flask import Blueprint, Flask, current_app, g, request
from flask_cors import CORS
from sqlalchemy.exc import DBAPIError

from actions import dispatch
from actions.slot_conflicts import INTERVIEW_RESOURCE_KEY
from auth import KNOWN_ROLES, assert_permission, invalidate_rbac_cache, is_public_action, role_or_public, validate_session_token
from config import Config
from db import SessionLocal, init_engine
from models import AuditLog, Role, ScheduleResource
from services.mailer import NotificationIntent, deliver_notifications, pop_queued_notifications
from utils import ApiError, AuthContext, SimpleRateLimiter, err, iso_utc_now, now_monotonic, ok, parse_json_body, redact_for_audit


rest_api = Blueprint("rest_api", __name__)

_SYSTEM_ADMIN = AuthContext(valid=True, userId="SYSTEM", email="SYSTEM", role="ADMIN", expiresAt="")


def _rest_token() -> str:
    authz = str(request.headers.get("Authorization") or "").strip()
    if authz.lower().startswith("bearer "):
        return authz.split(" ", 1)[1].strip()
    return str(request.headers.get("X-Session-Token") or "").strip()


def _client_ip() -> str:
    return str(request.headers.get("X-Forwarded-For", request.remote_addr or "") or "").split(",")[0].strip()


def _check_rate_limit(cfg: Config, action_u: str) -> None:
    limiter: SimpleRateLimiter = current_app.config["LIMITER"]
    ip = _client_ip()
    limiter.check(f"{ip}:GLOBAL", cfg.RATE_LIMIT_GLOBAL)
    if is_public_action(action_u):
        limiter.check(f"{ip}:PUBLIC:{action_u}", cfg.RATE_LIMIT_PUBLIC)
    else:
        limiter.check(f"{ip}:API:{action_u}", cfg.RATE_LIMIT_DEFAULT)


def _resolve_auth(db, token: Any, action_u: str, *, allow_internal: bool = False):
    if allow_internal:
        internal = str(request.headers.get("X-Internal-Token") or "").strip()
        expected = str(current_app.config["CFG"].INTERNAL_CRON_TOKEN or "")
        if expected and internal and internal == expected:
            return _SYSTEM_ADMIN

    if is_public_action(action_u):
        if not token:
            return None
        try:
            maybe = validate_session_token(db, token, action=action_u)
        except ApiError:
            return None
        return maybe if maybe.valid else None

    auth_ctx = validate_session_token(db, token, action=action_u)
    if not auth_ctx.valid:
        raise ApiError("AUTH_INVALID", "Invalid or expired session")
    return auth_ctx


def _audit_call(db, action_u: str, auth_ctx, data: Any, stage_tag: str) -> None:
    db.add(
        AuditLog(
            logId=f"LOG-{os.urandom(16).hex()}",
            entityType="API",
            entityId=str(auth_ctx.userId or auth_ctx.email or "") if auth_ctx else "PUBLIC",
            action=action_u,
            stageTag=stage_tag,
            actorUserId=str(auth_ctx.userId) if auth_ctx else "PUBLIC",
            actorRole=str(auth_ctx.role) if auth_ctx else "PUBLIC",
            actorEmail=str(getattr(auth_ctx, "email", "") or "") if auth_ctx else "",
            at=iso_utc_now(),
            correlationId=str(getattr(g, "request_id", "") or ""),
            metaJson=json.dumps({"data": redact_for_audit(data or {})}),
        )
    )


def _internal_error(cfg: Config, e: Exception) -> ApiError:
    request_id = str(getattr(g, "request_id", "") or "").strip()
    if isinstance(e, DBAPIError):
        label = "Database error"
        orig = re.sub(r"\s+", " ", str(getattr(e, "orig", "") or "")).strip()[:300]
    else:
        label = "Unexpected error"
        orig = type(e).__name__
    if cfg.IS_PRODUCTION or not orig:
        msg = f"{label} (requestId: {request_id})"
    else:
        msg = f"{label}: {orig} (requestId: {request_id})"
    return ApiError("INTERNAL", msg, http_status=500)


def _run_action(action: str, data: Any, token: Any, *, allow_internal: bool = False, stage_tag: str = "API_CALL"):
    """
    One request, one transaction: authorize, dispatch, commit.

    Handlers never commit. Any error rolls the whole unit back and is
    recorded as an API_ERROR audit row in a separate session. Email queued by
    the handler goes out only after the commit succeeds.
    """
    cfg: Config = current_app.config["CFG"]
    action_u = str(action or "").upper().strip()
    db = None
    auth_ctx = None
    try:
        if not action_u:
            raise ApiError("BAD_REQUEST", "Missing action")
        _check_rate_limit(cfg, action_u)

        db = SessionLocal()
        auth_ctx = _resolve_auth(db, token, action_u, allow_internal=allow_internal)
        assert_permission(db, role_or_public(auth_ctx), action_u)

        out = dispatch(action_u, data if data is not None else {}, auth_ctx, db, cfg)
        _audit_call(db, action_u, auth_ctx, data, stage_tag)
        outbox = pop_queued_notifications(db)
        db.commit()

        if outbox:
            delivery = _deliver_after_commit(cfg, outbox)
            if isinstance(out, dict):
                out = {**out, "notifications": delivery}

        logging.getLogger("api").info(
            "request_id=%s action=%s user=%s role=%s latency_ms=%s",
            g.request_id,
            action_u,
            (auth_ctx.userId if auth_ctx else "PUBLIC"),
            (auth_ctx.role if auth_ctx else "PUBLIC"),
            int((now_monotonic() - g.start_ts) * 1000),
        )
        return ok(out)
    except ApiError as e:
        if db is not None:
            db.rollback()
        _write_error_audit(action_u, auth_ctx, data, e)
        return err(e.code, e.message, http_status=e.http_status)
    except Exception as e:
        if db is not None:
            db.rollback()
        api_err = _internal_error(cfg, e)
        _write_error_audit(action_u, auth_ctx, data, api_err)
        logging.getLogger("api").exception("request_id=%s action=%s", getattr(g, "request_id", ""), action_u)
        return err(api_err.code, api_err.message, http_status=api_err.http_status)
    finally:
        if db is not None:
            db.close()


def _deliver_after_commit(cfg: Config, outbox: list[NotificationIntent]) -> dict[str, int]:
    db2 = None
    try:
        db2 = SessionLocal()
        delivery = deliver_notifications(db2, outbox, cfg)
        db2.commit()
        return delivery
    except Exception:
        if db2 is not None:
            db2.rollback()
        logging.getLogger("mailer").exception("post-commit delivery failed count=%s", len(outbox))
        return {"sent": 0, "failed": len(outbox)}
    finally:
        if db2 is not None:
            db2.close()


def _rest_handle(action: str, data: dict, *, allow_internal: bool = False):
    return _run_action(action, data, _rest_token(), allow_internal=allow_internal, stage_tag="API_CALL_REST")


def _json_body() -> dict[str, Any]:
    body = request.get_json(silent=True)
    return dict(body) if isinstance(body, dict) else {}


@rest_api.post("/api/admin/interviews")
def rest_interview_book():
    return _rest_handle("INTERVIEW_BOOK", _json_body())


@rest_api.get("/api/admin/interviews")
def rest_interview_list():
    return _rest_handle("INTERVIEW_LIST", {k: request.args.get(k) for k in ("status", "candidateId", "from", "to")})


@rest_api.post("/api/admin/interviews/<interview_id>/complete")
def rest_interview_complete(interview_id: str):
    return _rest_handle("INTERVIEW_COMPLETE", {"interviewId": interview_id})


@rest_api.post("/api/public/schedule-interview")
def rest_schedule_interview_public():
    return _rest_handle("INTERVIEW_BOOK_PUBLIC", _json_body())


@rest_api.get("/api/public/validate-scheduling-token")
def rest_validate_scheduling_token():
    return _rest_handle(
        "SCHEDULING_TOKEN_VALIDATE",
        {"token": request.args.get("token"), "candidateId": request.args.get("candidateId")},
    )


@rest_api.get("/api/public/available-slots")
def rest_available_slots():
    return _rest_handle(
        "INTERVIEW_SLOTS_GET",
        {"token": request.args.get("token"), "candidateId": request.args.get("candidateId"), "date": request.args.get("date")},
    )


@rest_api.post("/api/admin/candidates/<candidate_id>/reach-out")
def rest_reach_out(candidate_id: str):
    return _rest_handle("REACH_OUT_SEND", {"candidateId": candidate_id})


@rest_api.patch("/api/admin/candidates/<candidate_id>/status")
def rest_candidate_status_set(candidate_id: str):
    data = _json_body()
    data["candidateId"] = candidate_id
    return _rest_handle("CANDIDATE_STATUS_SET", data)


@rest_api.post("/api/admin/candidates/<candidate_id>/prerequisite-course")
def rest_candidate_course_status_set(candidate_id: str):
    data = _json_body()
    data["candidateId"] = candidate_id
    return _rest_handle("CANDIDATE_COURSE_STATUS_SET", data)


@rest_api.get("/api/admin/candidates/<candidate_id>/onboarding-tasks")
def rest_onboarding_tasks_get(candidate_id: str):
    return _rest_handle("ONBOARDING_TASKS_GET", {"candidateId": candidate_id})


@rest_api.post("/api/admin/candidates/<candidate_id>/fix-onboarding-tasks")
def rest_onboarding_tasks_fix(candidate_id: str):
    return _rest_handle("ONBOARDING_TASKS_FIX", {"candidateId": candidate_id})


@rest_api.post("/api/admin/onboarding/repair-tasks")
def rest_onboarding_tasks_repair():
    return _rest_handle("ONBOARDING_TASKS_REPAIR", {})


@rest_api.post("/api/jobs/interview-reminders")
def rest_interview_reminders():
    return _rest_handle("INTERVIEW_REMINDERS_SEND", {}, allow_internal=True)


def _maybe_start_internal_scheduler(cfg: Config):
    """
    In-process reminder loop for single-instance deployments.

    With more than one instance, leave ENABLE_SCHEDULER off and call
    `POST /api/jobs/interview-reminders` with `X-Internal-Token` =
    `INTERNAL_CRON_TOKEN` from cron, or run the Celery beat schedule.
    """
    if not cfg.ENABLE_SCHEDULER:
        return

    interval_s = cfg.SCHEDULER_REMINDER_INTERVAL_MINUTES * 60
    log = logging.getLogger("scheduler")

    def _loop():
        while True:
            time.sleep(interval_s)
            db = None
            try:
                db = SessionLocal()
                res = dispatch("INTERVIEW_REMINDERS_SEND", {}, _SYSTEM_ADMIN, db, cfg)
                db.commit()
                log.info("INTERVIEW_REMINDERS_SEND processed=%s sent=%s", res.get("processed"), res.get("sentCount"))
            except Exception:
                if db is not None:
                    db.rollback()
                log.exception("INTERVIEW_REMINDERS_SEND failed")
            finally:
                if db is not None:
                    db.close()

    t = threading.Thread(target=_loop, name="scheduler", daemon=True)
    t.start()


def _configure_logging(level: str):
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def _seed_reference_rows(db):
    now = iso_utc_now()
    actor = "SYSTEM_INIT"

    existing_roles = {str(r.roleCode or "").upper() for r in db.query(Role).all()}
    for rc in KNOWN_ROLES:
        if rc in existing_roles:
            continue
        db.add(Role(roleCode=rc, roleName=rc, status="ACTIVE", createdAt=now, createdBy=actor, updatedAt=now, updatedBy=actor))

    if db.get(ScheduleResource, INTERVIEW_RESOURCE_KEY) is None:
        db.add(ScheduleResource(resourceKey=INTERVIEW_RESOURCE_KEY, label="Interviewer", lastBookedAt="", updatedAt=now))


def create_app() -> Flask:
    load_dotenv()
    cfg = Config()
    cfg.validate()
    _configure_logging(cfg.LOG_LEVEL)

    engine = init_engine(cfg.DATABASE_URL)

    from models import Base  # imported after engine init

    Base.metadata.create_all(bind=engine)

    app = Flask(__name__)
    app.config["CFG"] = cfg
    app.config["LIMITER"] = SimpleRateLimiter()

    CORS(app, origins=cfg.ALLOWED_ORIGINS, supports_credentials=False)
    app.register_blueprint(rest_api)

    db0 = SessionLocal()
    try:
        _seed_reference_rows(db0)
        db0.commit()
        invalidate_rbac_cache()
    finally:
        db0.close()

    @app.before_request
    def _before():
        g.request_id = os.urandom(8).hex()
        g.start_ts = now_monotonic()

    @app.after_request
    def _after(resp):
        resp.headers["X-Request-ID"] = str(getattr(g, "request_id", "") or "")
        resp.headers.setdefault("X-Content-Type-Options", "nosniff")
        resp.headers.setdefault("X-Frame-Options", "DENY")
        resp.headers.setdefault("Referrer-Policy", "no-referrer")
        resp.headers.setdefault("Cache-Control", "no-store")
        return resp

    @app.get("/health")
    def health():
        from cache_layer import cache_stats
        from db import get_pool_stats

        return ok({"status": "ok", "db_pool": get_pool_stats(), "cache": cache_stats()})

    @app.errorhandler(404)
    def not_found(_e):
        return err("NOT_FOUND", f"Unknown endpoint: {request.path}", http_status=404)

    @app.errorhandler(405)
    def method_not_allowed(_e):
        return err("BAD_REQUEST", "Method not allowed", http_status=405)

    @app.post("/api")
    def api_route():
        action_u = ""
        token = None
        data: Any = {}
        try:
            body = parse_json_body(request.get_data(as_text=True))
            action_u = str(body.get("action") or "").upper().strip()
            token = body.get("token") or _rest_token()
            data = body.get("data") or {}
        except ApiError as e:
            _write_error_audit(action_u, None, data, e)
            return err(e.code, e.message, http_status=e.http_status)
        return _run_action(action_u, data, token)

    _maybe_start_internal_scheduler(cfg)
    return app


def _write_error_audit(action: str, auth_ctx, data: Any, err_obj: ApiError):
    db2 = None
    try:
        db2 = SessionLocal()
        db2.add(
            AuditLog(
                logId=f"LOG-{os.urandom(16).hex()}",
                entityType="API",
                entityId=str(auth_ctx.userId or auth_ctx.email or "") if auth_ctx else "PUBLIC",
                action=str(action or "").upper() or "UNKNOWN",
                stageTag="API_ERROR",
                remark=f"{err_obj.code}: {err_obj.message}",
                actorUserId=str(auth_ctx.userId) if auth_ctx else "PUBLIC",
                actorRole=str(auth_ctx.role) if auth_ctx else "PUBLIC",
                actorEmail=str(getattr(auth_ctx, "email", "") or "") if auth_ctx else "",
                at=iso_utc_now(),
                correlationId=str(getattr(g, "request_id", "") or ""),
                metaJson=json.dumps(
                    {
                        "data": redact_for_audit(data or {}),
                        "error": {"code": err_obj.code, "message": err_obj.message},
                    }
                ),
            )
        )
        db2.commit()
    except Exception:
        logging.getLogger("api").exception("failed to write API_ERROR audit action=%s", action)
    finally:
        if db2 is not None:
            db2.close()


if __name__ == "__main__":
    app = create_app()
    cfg = app.config["CFG"]
    app.run(host=cfg.HOST, port=cfg.PORT)
