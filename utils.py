from __future__ import annotations

import hashlib
import json
import threading
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional
from zoneinfo import ZoneInfo

from flask import jsonify


_DEFAULT_HTTP_STATUS = {
    "BAD_REQUEST": 400,
    "INVALID_DURATION": 400,
    "WINDOW_REJECTED": 400,
    "AUTH_INVALID": 401,
    "INVALID_TOKEN": 401,
    "FORBIDDEN": 403,
    "NOT_FOUND": 404,
    "CONFLICT": 409,
    "SLOT_CONFLICT": 409,
    "CANDIDATE_SELF_CONFLICT": 409,
    "RATE_LIMITED": 429,
    "INTERNAL": 500,
}


class ApiError(Exception):
    def __init__(self, code: str, message: str, http_status: Optional[int] = None):
        super().__init__(message)
        self.code = str(code or "INTERNAL").upper()
        self.message = str(message or "")
        self.http_status = int(http_status or _DEFAULT_HTTP_STATUS.get(self.code, 400))


@dataclass(frozen=True)
class AuthContext:
    valid: bool
    userId: str
    email: str
    role: str
    expiresAt: str


def ok(data: Any, http_status: int = 200):
    return jsonify({"ok": True, "data": data}), http_status


def err(code: str, message: str, http_status: int = 400):
    return jsonify({"ok": False, "error": {"code": code, "message": message}}), http_status


def new_uuid() -> str:
    return str(uuid.uuid4())


def sha256_hex(value: str) -> str:
    return hashlib.sha256(str(value or "").encode("utf-8")).hexdigest()


def now_monotonic() -> float:
    return time.monotonic()


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso_utc(dt: datetime) -> str:
    """Second-precision UTC string; lexical order of these strings is time order."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def iso_utc_now() -> str:
    return to_iso_utc(utc_now())


def parse_datetime_maybe(value: Any, *, app_timezone: str = "UTC") -> Optional[datetime]:
    """
    Parse an ISO-8601 string into an aware datetime.

    Naive values are read as wall-clock time in `app_timezone`.
    """
    if isinstance(value, datetime):
        dt = value
    else:
        s = str(value or "").strip()
        if not s:
            return None
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(s)
        except ValueError:
            return None
    if dt.tzinfo is None:
        try:
            tz = ZoneInfo(app_timezone)
        except Exception:
            tz = timezone.utc
        dt = dt.replace(tzinfo=tz)
    return dt


def parse_json_body(raw: str) -> dict[str, Any]:
    s = str(raw or "").strip()
    if not s:
        raise ApiError("BAD_REQUEST", "Empty body")
    try:
        body = json.loads(s)
    except Exception:
        raise ApiError("BAD_REQUEST", "Invalid JSON body")
    if not isinstance(body, dict):
        raise ApiError("BAD_REQUEST", "Body must be a JSON object")
    return body


def normalize_role(role: Any) -> str:
    return str(role or "").upper().strip()


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in {"1", "true", "yes", "y", "on"}


def mask_email(email: str) -> str:
    """Mask email: test@example.com -> te***@example.com"""
    e = str(email or "").strip()
    if "@" not in e:
        return "****"
    local, domain = e.rsplit("@", 1)
    if len(local) <= 2:
        return (local[:1] or "*") + "***@" + domain
    return local[:2] + "***@" + domain


_REDACT_KEYS = {"token", "schedulingtoken", "sessiontoken", "password", "idtoken"}


def redact_for_audit(data: Any) -> Any:
    if isinstance(data, dict):
        out: dict[str, Any] = {}
        for k, v in data.items():
            if str(k or "").lower() in _REDACT_KEYS:
                s = str(v or "")
                out[k] = (s[:6] + "...") if s else ""
            else:
                out[k] = redact_for_audit(v)
        return out
    if isinstance(data, list):
        return [redact_for_audit(x) for x in data[:50]]
    return data


class SimpleRateLimiter:
    """Fixed-window in-process limiter. `spec` is "<count>/<seconds>", e.g. "60/60"."""

    def __init__(self):
        self._lock = threading.Lock()
        self._windows: dict[str, tuple[int, int]] = {}

    @staticmethod
    def _parse(spec: str) -> tuple[int, int]:
        try:
            count_s, per_s = str(spec or "").split("/", 1)
            return max(1, int(count_s)), max(1, int(per_s))
        except Exception:
            return 60, 60

    def check(self, key: str, spec: str) -> None:
        limit, per = self._parse(spec)
        window_id = int(time.time() // per)
        with self._lock:
            wid, count = self._windows.get(key, (window_id, 0))
            if wid != window_id:
                wid, count = window_id, 0
            count += 1
            self._windows[key] = (wid, count)
            if len(self._windows) > 50_000:
                self._windows = {k: v for k, v in self._windows.items() if v[0] == window_id}
        if count > limit:
            raise ApiError("RATE_LIMITED", "Too many requests, slow down")
