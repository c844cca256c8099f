from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar

from lifeflow.core.sessions import TimeSession


class EngineEvent(str, Enum):
    TIMER_STARTED = "TIMER_STARTED"
    TIMER_PAUSED = "TIMER_PAUSED"
    TIMER_RESUMED = "TIMER_RESUMED"
    TIMER_STOPPED = "TIMER_STOPPED"
    TIMER_DISCARDED = "TIMER_DISCARDED"
    SESSION_CREATED = "SESSION_CREATED"
    SESSION_UPDATED = "SESSION_UPDATED"
    SESSION_DELETED = "SESSION_DELETED"
    POMODORO_STARTED = "POMODORO_STARTED"
    POMODORO_COMPLETED = "POMODORO_COMPLETED"
    POMODORO_STOPPED = "POMODORO_STOPPED"
    SETTINGS_CHANGED = "SETTINGS_CHANGED"


@dataclass(frozen=True)
class TimerStarted:
    kind: ClassVar[EngineEvent] = EngineEvent.TIMER_STARTED
    timer_id: str
    subject_id: str
    started_at: int
    mode: str


@dataclass(frozen=True)
class TimerPaused:
    kind: ClassVar[EngineEvent] = EngineEvent.TIMER_PAUSED
    timer_id: str
    subject_id: str
    accumulated_seconds: int


@dataclass(frozen=True)
class TimerResumed:
    kind: ClassVar[EngineEvent] = EngineEvent.TIMER_RESUMED
    timer_id: str
    subject_id: str


@dataclass(frozen=True)
class TimerStopped:
    kind: ClassVar[EngineEvent] = EngineEvent.TIMER_STOPPED
    timer_id: str
    subject_id: str
    duration_sec: int
    session_id: str


@dataclass(frozen=True)
class TimerDiscarded:
    kind: ClassVar[EngineEvent] = EngineEvent.TIMER_DISCARDED
    timer_id: str
    subject_id: str


@dataclass(frozen=True)
class SessionCreated:
    kind: ClassVar[EngineEvent] = EngineEvent.SESSION_CREATED
    session: TimeSession


@dataclass(frozen=True)
class SessionUpdated:
    kind: ClassVar[EngineEvent] = EngineEvent.SESSION_UPDATED
    session: TimeSession
    previous_session: TimeSession


@dataclass(frozen=True)
class SessionDeleted:
    kind: ClassVar[EngineEvent] = EngineEvent.SESSION_DELETED
    session_id: str
    subject_id: str
    date_key: str


@dataclass(frozen=True)
class PomodoroStarted:
    kind: ClassVar[EngineEvent] = EngineEvent.POMODORO_STARTED
    subject_id: str
    config_id: str
    duration: int


@dataclass(frozen=True)
class PomodoroCompleted:
    kind: ClassVar[EngineEvent] = EngineEvent.POMODORO_COMPLETED
    subject_id: str | None
    session_number: int
    is_long_break_next: bool


@dataclass(frozen=True)
class PomodoroStopped:
    kind: ClassVar[EngineEvent] = EngineEvent.POMODORO_STOPPED
    subject_id: str | None
    phase: str
    sessions_completed: int


@dataclass(frozen=True)
class SettingsChanged:
    kind: ClassVar[EngineEvent] = EngineEvent.SETTINGS_CHANGED
    key: str
    old_value: Any
    new_value: Any
