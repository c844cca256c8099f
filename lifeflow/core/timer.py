from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, replace
from datetime import tzinfo
from enum import Enum
from typing import TYPE_CHECKING

from PyQt6.QtCore import QObject, pyqtSignal

from lifeflow.core.clock import SystemClock
from lifeflow.core.errors import TimerAlreadyRunningError, TimerNotFoundError
from lifeflow.core.events import (
    SessionCreated,
    TimerDiscarded,
    TimerPaused,
    TimerResumed,
    TimerStarted,
    TimerStopped,
)
from lifeflow.core.sessions import TimeSession, commit_session

if TYPE_CHECKING:
    from lifeflow.core.clock import ManualClock
    from lifeflow.data.storage import Storage


logger = logging.getLogger(__name__)


class TimerMode(str, Enum):
    NORMAL = "normal"
    POMODORO_LINKED = "pomodoro"


@dataclass(frozen=True)
class Running:
    started_at: int
    accumulated_seconds: int = 0


@dataclass(frozen=True)
class Paused:
    accumulated_seconds: int
    paused_at: int


@dataclass(frozen=True)
class RunningTimer:
    id: str
    subject_id: str
    mode: TimerMode
    state: Running | Paused
    created_at: int

    @property
    def is_paused(self) -> bool:
        return isinstance(self.state, Paused)

    @property
    def accumulated_seconds(self) -> int:
        return self.state.accumulated_seconds

    def elapsed_seconds(self, now_ms: int) -> int:
        if isinstance(self.state, Paused):
            return self.state.accumulated_seconds
        live_seconds = max(0, now_ms - self.state.started_at) // 1000
        return self.state.accumulated_seconds + live_seconds

    def paused(self, now_ms: int) -> RunningTimer:
        if isinstance(self.state, Paused):
            return self
        # Truncates the live interval to whole seconds, the remainder is dropped.
        return replace(self, state=Paused(accumulated_seconds=self.elapsed_seconds(now_ms), paused_at=now_ms))

    def resumed(self, now_ms: int) -> RunningTimer:
        if isinstance(self.state, Running):
            return self
        return replace(self, state=Running(started_at=now_ms, accumulated_seconds=self.state.accumulated_seconds))


class TimerLedger(QObject):
    """In-memory set of open timers, mirrored to storage when one is attached."""

    timer_started = pyqtSignal(object)
    timer_paused = pyqtSignal(object)
    timer_resumed = pyqtSignal(object)
    timer_stopped = pyqtSignal(object)
    timer_discarded = pyqtSignal(object)
    session_created = pyqtSignal(object)
    ticked = pyqtSignal(object)

    def __init__(self, clock: SystemClock | ManualClock | None = None, storage: Storage | None = None) -> None:
        super().__init__()
        self._clock = clock or SystemClock()
        self._storage = storage
        self._timers: dict[str, RunningTimer] = {}

    def load_from_storage(self, storage: Storage) -> None:
        """Rehydrates open timers; elapsed time continues from the persisted values."""
        self._storage = storage
        self._timers = {timer.id: timer for timer in storage.list_running_timers()}
        logger.info("Restored %d running timer(s)", len(self._timers))

    @property
    def timers(self) -> list[RunningTimer]:
        return list(self._timers.values())

    def get(self, timer_id: str) -> RunningTimer:
        try:
            return self._timers[timer_id]
        except KeyError:
            raise TimerNotFoundError(timer_id) from None

    def timer_for_subject(self, subject_id: str) -> RunningTimer | None:
        for timer in self._timers.values():
            if timer.subject_id == subject_id:
                return timer
        return None

    def start(self, subject_id: str, mode: TimerMode = TimerMode.NORMAL) -> str:
        existing = self.timer_for_subject(subject_id)
        if existing is not None:
            raise TimerAlreadyRunningError(subject_id, existing.id)
        now = self._clock.now_ms()
        timer = RunningTimer(
            id=uuid.uuid4().hex,
            subject_id=subject_id,
            mode=TimerMode(mode),
            state=Running(started_at=now),
            created_at=now,
        )
        if self._storage:
            self._storage.insert_running_timer(timer)
        self._timers[timer.id] = timer
        logger.info("Timer %s started for subject %s (%s)", timer.id, subject_id, timer.mode.value)
        self.timer_started.emit(
            TimerStarted(timer_id=timer.id, subject_id=subject_id, started_at=now, mode=timer.mode.value)
        )
        return timer.id

    def pause(self, timer_id: str) -> RunningTimer:
        timer = self.get(timer_id)
        if timer.is_paused:
            return timer
        paused = timer.paused(self._clock.now_ms())
        self._replace(paused)
        self.timer_paused.emit(
            TimerPaused(timer_id=timer_id, subject_id=timer.subject_id, accumulated_seconds=paused.accumulated_seconds)
        )
        return paused

    def resume(self, timer_id: str) -> RunningTimer:
        timer = self.get(timer_id)
        if not timer.is_paused:
            return timer
        resumed = timer.resumed(self._clock.now_ms())
        self._replace(resumed)
        self.timer_resumed.emit(TimerResumed(timer_id=timer_id, subject_id=timer.subject_id))
        return resumed

    def elapsed_seconds(self, timer_id: str, now_ms: int | None = None) -> int:
        if now_ms is None:
            now_ms = self._clock.now_ms()
        return self.get(timer_id).elapsed_seconds(now_ms)

    def elapsed_all(self, now_ms: int | None = None) -> dict[str, int]:
        """Elapsed seconds of every timer, all read against the same instant."""
        if now_ms is None:
            now_ms = self._clock.now_ms()
        return {timer_id: timer.elapsed_seconds(now_ms) for timer_id, timer in self._timers.items()}

    def tick(self) -> dict[str, int]:
        elapsed = self.elapsed_all()
        if elapsed:
            self.ticked.emit(elapsed)
        return elapsed

    def stop(
        self,
        timer_id: str,
        rollover_hour: int,
        tz: tzinfo | None = None,
        end_ms: int | None = None,
    ) -> TimeSession:
        """Commits the timer as a session and drops it from the ledger.

        The timer leaves memory only after the store accepted the session, so a
        failed write leaves it running and the time is not lost. ``end_ms`` pins
        the stop instant, defaulting to now.
        """
        timer = self.get(timer_id)
        if end_ms is None:
            end_ms = self._clock.now_ms()
        session = commit_session(timer, end_ms, rollover_hour, tz)
        if self._storage:
            self._storage.commit_session(timer.id, session)
        del self._timers[timer_id]
        logger.info(
            "Timer %s stopped: %ds filed under %s as session %s",
            timer_id,
            session.duration_sec,
            session.date_key,
            session.id,
        )
        self.timer_stopped.emit(
            TimerStopped(
                timer_id=timer_id,
                subject_id=timer.subject_id,
                duration_sec=session.duration_sec,
                session_id=session.id,
            )
        )
        self.session_created.emit(SessionCreated(session=session))
        return session

    def discard(self, timer_id: str) -> None:
        timer = self.get(timer_id)
        if self._storage:
            self._storage.delete_running_timer(timer_id)
        del self._timers[timer_id]
        logger.info("Timer %s discarded", timer_id)
        self.timer_discarded.emit(TimerDiscarded(timer_id=timer_id, subject_id=timer.subject_id))

    def _replace(self, timer: RunningTimer) -> None:
        if self._storage:
            self._storage.update_running_timer(timer)
        self._timers[timer.id] = timer
