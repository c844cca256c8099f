"""Current and longest completion streaks over day-keyed logs.

Everything here is pure: streaks are derived on read and never stored.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import tzinfo
from typing import Iterable

from lifeflow.core.day_key import DEFAULT_ROLLOVER_HOUR, day_keys_back, resolve_day_key


DEFAULT_WINDOW_DAYS = 30


@dataclass(frozen=True)
class DailyLog:
    item_id: str
    date_key: str
    done: bool | None = None
    value: float | None = None
    target: float | None = None
    note: str = ""

    @property
    def is_complete(self) -> bool:
        if self.done is True:
            return True
        return self.value is not None and self.target is not None and self.value >= self.target


@dataclass(frozen=True)
class StreakResult:
    current_streak: int = 0
    longest_streak: int = 0
    completed_days: int = 0


def streak_for_days(days: list[str], complete_days: set[str]) -> StreakResult:
    """Scan ``days`` (newest first). A day not in ``complete_days`` ends a run."""
    current = 0
    while current < len(days) and days[current] in complete_days:
        current += 1

    longest = 0
    run = 0
    completed = 0
    for day in days:
        if day in complete_days:
            run += 1
            completed += 1
            longest = max(longest, run)
        else:
            run = 0
    return StreakResult(current_streak=current, longest_streak=longest, completed_days=completed)


def compute_streaks(
    logs: Iterable[DailyLog],
    window_end: str | int,
    rollover_hour: int = DEFAULT_ROLLOVER_HOUR,
    window_days: int = DEFAULT_WINDOW_DAYS,
    item_ids: Iterable[str] | None = None,
    tz: tzinfo | None = None,
) -> dict[str, StreakResult]:
    """Streaks per item for the ``window_days`` days ending at ``window_end``.

    ``window_end`` is a day key, or an epoch-ms instant resolved with
    ``rollover_hour``. Days without a log count as incomplete.
    """
    if window_days < 1:
        raise ValueError("window_days must be at least 1")
    if isinstance(window_end, int):
        window_end = resolve_day_key(window_end, rollover_hour, tz)

    days = day_keys_back(window_end, window_days)
    in_window = set(days)

    complete_by_item: dict[str, set[str]] = {item_id: set() for item_id in item_ids or ()}
    for log in logs:
        complete = complete_by_item.setdefault(log.item_id, set())
        if log.date_key in in_window and log.is_complete:
            complete.add(log.date_key)

    return {item_id: streak_for_days(days, complete) for item_id, complete in complete_by_item.items()}
