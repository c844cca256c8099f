"""Mapping of instants to rollover-adjusted calendar days.

A day key is an ISO ``YYYY-MM-DD`` string, so plain string comparison orders
day keys chronologically.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from lifeflow.core.errors import InvalidSettingError


DEFAULT_ROLLOVER_HOUR = 4
MIN_ROLLOVER_HOUR = 0
MAX_ROLLOVER_HOUR = 23


def clamp_rollover_hour(rollover_hour: int) -> int:
    return max(MIN_ROLLOVER_HOUR, min(MAX_ROLLOVER_HOUR, int(rollover_hour)))


def validate_rollover_hour(rollover_hour: object) -> int:
    """Rejects anything that is not an integer hour in 0..23."""
    if isinstance(rollover_hour, bool) or not isinstance(rollover_hour, int):
        raise InvalidSettingError("rollover_hour", rollover_hour, "must be an integer")
    if not MIN_ROLLOVER_HOUR <= rollover_hour <= MAX_ROLLOVER_HOUR:
        raise InvalidSettingError("rollover_hour", rollover_hour, "must be between 0 and 23")
    return rollover_hour


def resolve_timezone(name: str | None) -> tzinfo | None:
    """Turn a settings timezone name into a tzinfo.

    ``None`` or ``"local"`` means the system local zone and is returned as
    ``None``, which ``datetime.fromtimestamp`` understands as local time.
    """
    if name is None or name == "local":
        return None
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise InvalidSettingError("timezone", name, "unknown timezone") from exc


def resolve_day_key(instant_ms: int, rollover_hour: int, tz: tzinfo | None = None) -> str:
    """Return the day key an instant belongs to.

    An instant whose local hour is strictly before ``rollover_hour`` is filed
    under the previous calendar day. Out-of-range hours are clamped.
    """
    hour = clamp_rollover_hour(rollover_hour)
    moment = datetime.fromtimestamp(instant_ms / 1000, tz)
    day = moment.date()
    if moment.hour < hour:
        day -= timedelta(days=1)
    return day.isoformat()


def parse_day_key(day_key: str) -> date:
    return date.fromisoformat(day_key)


def shift_day_key(day_key: str, days: int) -> str:
    return (parse_day_key(day_key) + timedelta(days=days)).isoformat()


def day_keys_back(end_day_key: str, count: int) -> list[str]:
    """Day keys from ``end_day_key`` backwards, newest first, ``count`` long."""
    end = parse_day_key(end_day_key)
    return [(end - timedelta(days=offset)).isoformat() for offset in range(count)]
