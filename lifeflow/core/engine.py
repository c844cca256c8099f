from __future__ import annotations

import logging
from dataclasses import replace
from datetime import tzinfo
from typing import Any, Iterable

from PyQt6.QtCore import QObject, pyqtSignal

from lifeflow.core.clock import ManualClock, SystemClock
from lifeflow.core.day_key import resolve_day_key, shift_day_key
from lifeflow.core.errors import TimerNotFoundError
from lifeflow.core.events import SessionDeleted, SessionUpdated, SettingsChanged
from lifeflow.core.pomodoro import PomodoroConfig, PomodoroMachine, PomodoroPhase, PomodoroState
from lifeflow.core.sessions import TimeSession
from lifeflow.core.settings import EngineSettings
from lifeflow.core.streaks import DEFAULT_WINDOW_DAYS, DailyLog, StreakResult, compute_streaks
from lifeflow.core.timer import Running, TimerLedger, TimerMode
from lifeflow.data.storage import DailyTotalRow, Storage


logger = logging.getLogger(__name__)


class TimeEngine(QObject):
    """Operation surface of the accounting engine.

    Owns one timer ledger and one pomodoro machine, keeps them in step with
    the store and settings, and republishes every domain event on
    ``event_emitted``. Unknown timer ids are logged and ignored here; the
    ledger itself raises for them.
    """

    event_emitted = pyqtSignal(object)
    settings_changed = pyqtSignal(object)
    session_updated = pyqtSignal(object)
    session_deleted = pyqtSignal(object)
    pomodoro_state_changed = pyqtSignal(object)
    timers_ticked = pyqtSignal(object)

    def __init__(self, clock: SystemClock | ManualClock | None = None, settings: EngineSettings | None = None) -> None:
        super().__init__()
        self.clock = clock or SystemClock()
        self.settings = settings or EngineSettings()
        self.ledger = TimerLedger(self.clock)
        self.pomodoro = PomodoroMachine(
            auto_start_breaks=self.settings.auto_start_breaks,
            auto_start_work=self.settings.auto_start_work,
            last_config_id=self.settings.last_pomodoro_config_id,
        )
        self._storage: Storage | None = None
        self._linked_timer_id: str | None = None
        self._linked_stop_at: int | None = None
        self._pomodoro_mark = (self.pomodoro.phase, self.pomodoro.is_active)

        for signal in (
            self.ledger.timer_started,
            self.ledger.timer_paused,
            self.ledger.timer_resumed,
            self.ledger.timer_stopped,
            self.ledger.timer_discarded,
            self.ledger.session_created,
            self.pomodoro.pomodoro_started,
            self.pomodoro.pomodoro_completed,
            self.pomodoro.pomodoro_stopped,
            self.settings_changed,
            self.session_updated,
            self.session_deleted,
        ):
            signal.connect(self.event_emitted)
        self.pomodoro.state_changed.connect(self.pomodoro_state_changed)
        self.ledger.ticked.connect(self.timers_ticked)

    @property
    def tz(self) -> tzinfo | None:
        return self.settings.tzinfo

    @property
    def linked_timer_id(self) -> str | None:
        return self._linked_timer_id

    def load_from_storage(self, storage: Storage) -> None:
        self._storage = storage
        self.settings = EngineSettings.from_mapping(storage.get_setting("settings", {}))
        self._apply_settings()
        self.ledger.load_from_storage(storage)
        self.pomodoro.set_configs(storage.list_pomodoro_configs())
        self._close_orphaned_linked_timers()

    # Settings

    def update_settings(self, **changes: Any) -> EngineSettings:
        previous = self.settings
        self.settings = previous.updated(**changes)
        if self._storage:
            self._storage.set_setting("settings", self.settings.to_dict())
        self._apply_settings()
        old_values = previous.to_dict()
        for key, value in self.settings.to_dict().items():
            if old_values[key] != value:
                self.settings_changed.emit(SettingsChanged(key=key, old_value=old_values[key], new_value=value))
        return self.settings

    def today_key(self) -> str:
        return resolve_day_key(self.clock.now_ms(), self.settings.rollover_hour, self.tz)

    # Running timers

    def start_timer(self, subject_id: str, mode: TimerMode = TimerMode.NORMAL) -> str:
        return self.ledger.start(subject_id, mode)

    def pause_timer(self, timer_id: str) -> None:
        try:
            self.ledger.pause(timer_id)
        except TimerNotFoundError:
            logger.warning("pause ignored: timer %s no longer exists", timer_id)

    def resume_timer(self, timer_id: str) -> None:
        try:
            self.ledger.resume(timer_id)
        except TimerNotFoundError:
            logger.warning("resume ignored: timer %s no longer exists", timer_id)

    def stop_timer(self, timer_id: str, rollover_hour: int | None = None) -> TimeSession | None:
        if rollover_hour is None:
            rollover_hour = self.settings.rollover_hour
        try:
            session = self.ledger.stop(timer_id, rollover_hour, self.tz)
        except TimerNotFoundError:
            logger.warning("stop ignored: timer %s no longer exists", timer_id)
            return None
        if timer_id == self._linked_timer_id:
            self._linked_timer_id = None
            self._linked_stop_at = None
        return session

    def discard_timer(self, timer_id: str) -> None:
        try:
            self.ledger.discard(timer_id)
        except TimerNotFoundError:
            logger.warning("discard ignored: timer %s no longer exists", timer_id)
            return
        if timer_id == self._linked_timer_id:
            self._linked_timer_id = None
            self._linked_stop_at = None

    def get_elapsed_seconds(self, timer_id: str) -> int:
        try:
            return self.ledger.elapsed_seconds(timer_id)
        except TimerNotFoundError:
            logger.warning("elapsed requested for missing timer %s", timer_id)
            return 0

    def elapsed_all(self) -> dict[str, int]:
        return self.ledger.elapsed_all()

    # Pomodoro

    def start_pomodoro(self, subject_id: str, config_id: str | None = None) -> bool:
        started = self.pomodoro.start(subject_id, config_id)
        if started and self.pomodoro.last_config_id != self.settings.last_pomodoro_config_id:
            self.update_settings(last_pomodoro_config_id=self.pomodoro.last_config_id)
        self._sync_linked_timer()
        return started

    def pause_pomodoro(self) -> None:
        self.pomodoro.pause()
        self._sync_linked_timer()

    def resume_pomodoro(self) -> None:
        self.pomodoro.resume()
        self._sync_linked_timer()

    def skip_phase(self) -> None:
        self.pomodoro.skip()
        self._sync_linked_timer()

    def stop_pomodoro(self) -> None:
        self.pomodoro.stop()
        self._sync_linked_timer()

    def tick_pomodoro(self) -> PomodoroState:
        state = self.pomodoro.tick()
        if (state.phase, state.is_active) != self._pomodoro_mark or self._linked_stop_at is not None:
            self._sync_linked_timer()
        return state

    def tick(self) -> PomodoroState:
        """One scheduler beat: refresh elapsed times, then advance the pomodoro."""
        self.ledger.tick()
        return self.tick_pomodoro()

    def save_pomodoro_config(self, config: PomodoroConfig) -> None:
        if self._storage:
            self._storage.save_pomodoro_config(config)
            self.pomodoro.set_configs(self._storage.list_pomodoro_configs())
            return
        configs = {item.id: item for item in self.pomodoro.configs}
        if config.is_default:
            configs = {key: replace(item, is_default=False) for key, item in configs.items()}
        configs[config.id] = config
        self.pomodoro.set_configs(configs.values())

    def delete_pomodoro_config(self, config_id: str) -> None:
        if self._storage:
            self._storage.delete_pomodoro_config(config_id)
        self.pomodoro.set_configs(item for item in self.pomodoro.configs if item.id != config_id)

    def pomodoro_configs(self) -> list[PomodoroConfig]:
        return self.pomodoro.configs

    # Sessions

    def update_session_note(self, session_id: str, note: str) -> TimeSession | None:
        if not self._storage:
            return None
        previous = self._storage.get_session(session_id)
        if previous is None:
            logger.warning("note update ignored: session %s no longer exists", session_id)
            return None
        session = self._storage.update_session_note(session_id, note, self.clock.now_ms())
        if session is None:
            return None
        self.session_updated.emit(SessionUpdated(session=session, previous_session=previous))
        return session

    def delete_session(self, session_id: str) -> bool:
        if not self._storage:
            return False
        session = self._storage.delete_session(session_id)
        if session is None:
            logger.warning("delete ignored: session %s no longer exists", session_id)
            return False
        self.session_deleted.emit(
            SessionDeleted(session_id=session.id, subject_id=session.subject_id, date_key=session.date_key)
        )
        return True

    def sessions_for_day(self, date_key: str | None = None) -> list[TimeSession]:
        if not self._storage:
            return []
        return self._storage.list_sessions(date_key=date_key or self.today_key(), limit=1000)

    def daily_totals(self, since_key: str, until_key: str) -> list[DailyTotalRow]:
        if not self._storage:
            return []
        return self._storage.daily_totals(since_key, until_key)

    # Daily logs and streaks

    def check_item(
        self,
        item_id: str,
        value: float | None = None,
        target: float | None = None,
        note: str = "",
    ) -> DailyLog | None:
        if not self._storage:
            return None
        log = DailyLog(
            item_id=item_id,
            date_key=self.today_key(),
            done=True if value is None else None,
            value=value,
            target=target,
            note=note,
        )
        self._storage.upsert_daily_log(log, self.clock.now_ms())
        return log

    def uncheck_item(self, item_id: str) -> bool:
        if not self._storage:
            return False
        return self._storage.delete_daily_log(item_id, self.today_key())

    def compute_streaks(
        self,
        logs: Iterable[DailyLog],
        window_end_date_key: str | None = None,
        rollover_hour: int | None = None,
        window_days: int = DEFAULT_WINDOW_DAYS,
        item_ids: Iterable[str] | None = None,
    ) -> dict[str, StreakResult]:
        if rollover_hour is None:
            rollover_hour = self.settings.rollover_hour
        window_end: str | int = window_end_date_key or self.clock.now_ms()
        return compute_streaks(logs, window_end, rollover_hour, window_days, item_ids, self.tz)

    def streaks(
        self,
        window_days: int = DEFAULT_WINDOW_DAYS,
        item_ids: Iterable[str] | None = None,
    ) -> dict[str, StreakResult]:
        """Streaks over stored logs for the window ending today."""
        if window_days < 1:
            raise ValueError("window_days must be at least 1")
        end_key = self.today_key()
        logs: list[DailyLog] = []
        if self._storage:
            logs = self._storage.list_daily_logs(since_key=shift_day_key(end_key, 1 - window_days), until_key=end_key)
        return self.compute_streaks(logs, end_key, window_days=window_days, item_ids=item_ids)

    def _apply_settings(self) -> None:
        self.pomodoro.auto_start_breaks = self.settings.auto_start_breaks
        self.pomodoro.auto_start_work = self.settings.auto_start_work

    def _close_orphaned_linked_timers(self) -> None:
        """Commit linked timers restored without the work phase that owned them.

        A running one is cut off at the longest configured work duration so the
        downtime is not filed as work.
        """
        limits = [config.work_duration for config in self.pomodoro.configs]
        now = self.clock.now_ms()
        for timer in self.ledger.timers:
            if timer.mode != TimerMode.POMODORO_LINKED:
                continue
            end_ms = now
            if limits and isinstance(timer.state, Running) and timer.elapsed_seconds(now) > max(limits):
                end_ms = timer.state.started_at + max(0, max(limits) - timer.state.accumulated_seconds) * 1000
            logger.info("Closing linked timer %s left over from a previous run", timer.id)
            self._file_linked_timer(timer.id, end_ms)

    def _sync_linked_timer(self) -> None:
        """Keep a pomodoro-linked timer running exactly while the machine is in work.

        The stop instant of a finished work phase is kept until its session is
        stored, so a failed commit is retried on the next tick without counting
        the break.
        """
        state = self.pomodoro.snapshot()
        in_work = state.phase == PomodoroPhase.WORK and state.linked_subject_id is not None

        if self._linked_timer_id is not None and (not in_work or self._linked_stop_at is not None):
            if self._linked_stop_at is None:
                self._linked_stop_at = self.clock.now_ms()
            self._file_linked_timer(self._linked_timer_id, self._linked_stop_at)
            self._linked_timer_id = None
            self._linked_stop_at = None

        if in_work:
            self._track_work_phase(state)
        self._pomodoro_mark = (state.phase, state.is_active)

    def _track_work_phase(self, state: PomodoroState) -> None:
        timer_id = self._linked_timer_id
        if timer_id is None:
            # Nothing to track until the phase actually runs.
            if not state.is_active or self.ledger.timer_for_subject(state.linked_subject_id) is not None:
                return
            self._linked_timer_id = self.ledger.start(state.linked_subject_id, TimerMode.POMODORO_LINKED)
        elif state.is_active:
            self.ledger.resume(timer_id)
        else:
            self.ledger.pause(timer_id)

    def _file_linked_timer(self, timer_id: str, end_ms: int) -> None:
        if self.ledger.elapsed_seconds(timer_id, end_ms) == 0:
            self.ledger.discard(timer_id)
        else:
            self.ledger.stop(timer_id, self.settings.rollover_hour, self.tz, end_ms=end_ms)
