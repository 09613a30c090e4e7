from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta, timezone, tzinfo

from .errors import ValidationError

_TIME_LABEL_RE = re.compile(r"^(?P<hour>[01]?\d|2[0-3]):(?P<minute>[0-5]\d)$")
_SHORT_OFFSET_RE = re.compile(r"([+-]\d{2})$")


def parse_time_label(label: str) -> time:
    match = _TIME_LABEL_RE.match(str(label).strip())
    if match is None:
        raise ValidationError(f"Invalid time slot label: {label!r} (expected HH:MM).")
    return time(int(match.group("hour")), int(match.group("minute")))


def normalize_time_label(label: str) -> str:
    return parse_time_label(label).strftime("%H:%M")


def local_time_key(instant: datetime, tz: tzinfo) -> str:
    """Return the HH:MM wall-clock label of an aware instant in ``tz``.

    The offset is looked up per instant, so slots on either side of a
    daylight-saving change map to their real local time.
    """
    if instant.tzinfo is None:
        raise ValueError("instant must be timezone aware")
    return instant.astimezone(tz).strftime("%H:%M")


def local_date(instant: datetime, tz: tzinfo) -> date:
    if instant.tzinfo is None:
        raise ValueError("instant must be timezone aware")
    return instant.astimezone(tz).date()


def slot_bounds(day: date, label: str, tz: tzinfo, slot_minutes: int) -> tuple[datetime, datetime]:
    """Local start/end instants of the slot starting at ``label`` on ``day``.

    End is computed on the wall clock, so 09:30 + 30 becomes 10:00 and
    23:30 + 30 rolls into the next day.
    """
    wall_start = datetime.combine(day, parse_time_label(label))
    wall_end = wall_start + timedelta(minutes=slot_minutes)
    start = wall_start.replace(tzinfo=tz)
    # Wall times skipped by a daylight-saving jump do not survive a round trip.
    if start.astimezone(timezone.utc).astimezone(tz).replace(tzinfo=None) != wall_start:
        raise ValidationError(f"{normalize_time_label(label)} does not exist on {day.isoformat()} in {tz}.")
    return start, wall_end.replace(tzinfo=tz)


def local_day_range(start_date: date, end_date: date, tz: tzinfo) -> tuple[datetime, datetime]:
    """[start_date 00:00, end_date 23:59:59.999] in the local zone."""
    start = datetime.combine(start_date, time(0, 0), tzinfo=tz)
    end = datetime.combine(end_date, time(23, 59, 59, 999000), tzinfo=tz)
    return start, end


def format_instant(value: datetime) -> str:
    return value.isoformat(timespec="seconds")


def parse_instant(text: str) -> datetime:
    parsed = datetime.fromisoformat(str(text).strip())
    if parsed.tzinfo is None:
        raise ValueError(f"stored instant has no UTC offset: {text!r}")
    return parsed


def parse_external_timestamp(text: str) -> datetime:
    """Parse an exported timestamp as an absolute instant.

    Accepts ``Z``, ``+00`` and ``+00:00`` suffixes and a space separator.
    Values without an offset are taken as UTC, never as local time.
    """
    cleaned = str(text or "").strip().replace(" ", "T", 1)
    if not cleaned:
        raise ValueError("empty timestamp")
    if cleaned.endswith(("Z", "z")):
        cleaned = cleaned[:-1] + "+00:00"
    if "T" in cleaned:
        cleaned = _SHORT_OFFSET_RE.sub(r"\1:00", cleaned)

    parsed = datetime.fromisoformat(cleaned)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
