"""
Weekly window in which a candidate may self-book an interview.

Only the public (token) booking path runs these rules. Administrators book
any day/time and are limited solely by the slot conflict check.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, tzinfo

# datetime.weekday(): Monday=0 .. Sunday=6. Sunday through Thursday are bookable.
BOOKABLE_WEEKDAYS = frozenset({6, 0, 1, 2, 3})
WINDOW_START = time(11, 0)
WINDOW_LAST_START = time(14, 0)
BOOKABLE_MINUTES = (0, 30)

WINDOW_MESSAGES = {
    "PAST_DATE": "Interview date cannot be in the past",
    "PAST_TIME": "Interview time must be in the future",
    "WEEKDAY": "Interviews are only available Sunday through Thursday",
    "HOURS": "Interview time must be between 11:00 AM and 2:00 PM",
    "GRANULARITY": "Interview time must start on the hour or half hour (:00 or :30)",
}


@dataclass(frozen=True)
class WindowCheck:
    ok: bool
    rule: str = ""
    reason: str = ""


def _reject(rule: str) -> WindowCheck:
    return WindowCheck(ok=False, rule=rule, reason=WINDOW_MESSAGES[rule])


def check_booking_window(proposed: datetime, *, now: datetime, tz: tzinfo) -> WindowCheck:
    """
    Apply the rules in order and report the first one that fails.

    `proposed` and `now` must be timezone-aware; both are read as civil
    time in `tz`.
    """
    local = proposed.astimezone(tz)
    today = now.astimezone(tz).date()

    if local.date() < today:
        return _reject("PAST_DATE")
    if local.date() == today and proposed <= now:
        return _reject("PAST_TIME")
    if local.weekday() not in BOOKABLE_WEEKDAYS:
        return _reject("WEEKDAY")

    hm = time(local.hour, local.minute)
    if hm < WINDOW_START or hm > WINDOW_LAST_START:
        return _reject("HOURS")
    if local.minute not in BOOKABLE_MINUTES or local.second or local.microsecond:
        return _reject("GRANULARITY")

    return WindowCheck(ok=True)


def window_slot_starts(day: date, tz: tzinfo) -> list[datetime]:
    """Every :00/:30 start between the first and last bookable time on `day` (weekday not checked)."""
    out: list[datetime] = []
    hour = WINDOW_START.hour
    while hour <= WINDOW_LAST_START.hour:
        for minute in BOOKABLE_MINUTES:
            t = time(hour, minute)
            if WINDOW_START <= t <= WINDOW_LAST_START:
                out.append(datetime.combine(day, t, tzinfo=tz))
        hour += 1
    return out
