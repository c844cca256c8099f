from __future__ import annotations

import uuid
from dataclasses import dataclass, replace
from datetime import tzinfo
from typing import TYPE_CHECKING

from lifeflow.core.day_key import resolve_day_key

if TYPE_CHECKING:
    from lifeflow.core.timer import RunningTimer


@dataclass(frozen=True)
class TimeSession:
    id: str
    subject_id: str
    start_at: int
    end_at: int
    duration_sec: int
    date_key: str
    note: str
    created_at: int
    updated_at: int

    def with_note(self, note: str, now_ms: int) -> TimeSession:
        return replace(self, note=note, updated_at=now_ms)


def commit_session(
    timer: RunningTimer,
    now_ms: int,
    rollover_hour: int,
    tz: tzinfo | None = None,
    session_id: str | None = None,
) -> TimeSession:
    """Flatten a running timer into one finished session ending at ``now_ms``.

    Banked seconds from earlier pause/resume cycles and the live interval are
    merged into a single interval that starts ``elapsed`` seconds before now.
    The individual sub-intervals are not kept. The day key is taken from the
    reconstructed start so a session crossing the rollover hour stays on the
    day it began.
    """
    duration_sec = timer.elapsed_seconds(now_ms)
    start_at = now_ms - duration_sec * 1000
    return TimeSession(
        id=session_id or uuid.uuid4().hex,
        subject_id=timer.subject_id,
        start_at=start_at,
        end_at=now_ms,
        duration_sec=duration_sec,
        date_key=resolve_day_key(start_at, rollover_hour, tz),
        note="",
        created_at=now_ms,
        updated_at=now_ms,
    )
