from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable

from PyQt6.QtCore import QObject, pyqtSignal

from lifeflow.core.errors import ConfigurationMissingError
from lifeflow.core.events import PomodoroCompleted, PomodoroStarted, PomodoroStopped


logger = logging.getLogger(__name__)


class PomodoroPhase(str, Enum):
    IDLE = "idle"
    WORK = "work"
    SHORT_BREAK = "shortBreak"
    LONG_BREAK = "longBreak"


@dataclass(frozen=True)
class PomodoroConfig:
    id: str
    name: str
    work_duration: int = 25 * 60
    short_break_duration: int = 5 * 60
    long_break_duration: int = 15 * 60
    sessions_before_long_break: int = 4
    is_default: bool = False

    def __post_init__(self) -> None:
        if min(self.work_duration, self.short_break_duration, self.long_break_duration) <= 0:
            raise ValueError("Durations must be positive")
        if self.sessions_before_long_break < 1:
            raise ValueError("sessions_before_long_break must be at least 1")


@dataclass(frozen=True)
class PomodoroState:
    phase: PomodoroPhase
    is_active: bool
    time_remaining_sec: int
    sessions_completed: int
    linked_subject_id: str | None
    config_id: str | None


class PomodoroMachine(QObject):
    """Work/break cycle driven by one-second ticks, detached from any UI."""

    pomodoro_started = pyqtSignal(object)
    pomodoro_completed = pyqtSignal(object)
    pomodoro_stopped = pyqtSignal(object)
    state_changed = pyqtSignal(object)

    def __init__(
        self,
        configs: Iterable[PomodoroConfig] = (),
        auto_start_breaks: bool = True,
        auto_start_work: bool = False,
        last_config_id: str | None = None,
    ) -> None:
        super().__init__()
        self._configs: dict[str, PomodoroConfig] = {config.id: config for config in configs}
        self._auto_start_breaks = auto_start_breaks
        self._auto_start_work = auto_start_work
        self._last_config_id = last_config_id
        self._config: PomodoroConfig | None = None
        self._phase = PomodoroPhase.IDLE
        self._is_active = False
        self._time_remaining_sec = 0
        self._sessions_completed = 0
        self._linked_subject_id: str | None = None

    @property
    def phase(self) -> PomodoroPhase:
        return self._phase

    @property
    def is_active(self) -> bool:
        return self._is_active

    @property
    def time_remaining_sec(self) -> int:
        return self._time_remaining_sec

    @property
    def sessions_completed(self) -> int:
        return self._sessions_completed

    @property
    def linked_subject_id(self) -> str | None:
        return self._linked_subject_id

    @property
    def config(self) -> PomodoroConfig | None:
        return self._config

    @property
    def configs(self) -> list[PomodoroConfig]:
        return list(self._configs.values())

    @property
    def last_config_id(self) -> str | None:
        return self._last_config_id

    @property
    def auto_start_breaks(self) -> bool:
        return self._auto_start_breaks

    @auto_start_breaks.setter
    def auto_start_breaks(self, value: bool) -> None:
        self._auto_start_breaks = value

    @property
    def auto_start_work(self) -> bool:
        return self._auto_start_work

    @auto_start_work.setter
    def auto_start_work(self, value: bool) -> None:
        self._auto_start_work = value

    def set_configs(self, configs: Iterable[PomodoroConfig]) -> None:
        # A cycle in progress keeps the config it was started with.
        self._configs = {config.id: config for config in configs}

    def select_config(self, config_id: str | None = None) -> PomodoroConfig:
        if config_id and config_id in self._configs:
            return self._configs[config_id]
        if self._last_config_id and self._last_config_id in self._configs:
            return self._configs[self._last_config_id]
        for config in self._configs.values():
            if config.is_default:
                return config
        for config in self._configs.values():
            return config
        raise ConfigurationMissingError("No pomodoro config available")

    def snapshot(self) -> PomodoroState:
        return PomodoroState(
            phase=self._phase,
            is_active=self._is_active,
            time_remaining_sec=self._time_remaining_sec,
            sessions_completed=self._sessions_completed,
            linked_subject_id=self._linked_subject_id,
            config_id=self._config.id if self._config else None,
        )

    def start(self, subject_id: str, config_id: str | None = None) -> bool:
        if self._phase != PomodoroPhase.IDLE:
            return False
        config = self.select_config(config_id)
        self._config = config
        self._last_config_id = config.id
        self._phase = PomodoroPhase.WORK
        self._time_remaining_sec = config.work_duration
        self._sessions_completed = 0
        self._is_active = True
        self._linked_subject_id = subject_id
        logger.info("Pomodoro started for subject %s with config %s", subject_id, config.id)
        self.pomodoro_started.emit(
            PomodoroStarted(subject_id=subject_id, config_id=config.id, duration=config.work_duration)
        )
        self.state_changed.emit(self.snapshot())
        return True

    def pause(self) -> None:
        if self._phase == PomodoroPhase.IDLE or not self._is_active:
            return
        self._is_active = False
        self.state_changed.emit(self.snapshot())

    def resume(self) -> None:
        if self._phase == PomodoroPhase.IDLE or self._is_active:
            return
        self._is_active = True
        self.state_changed.emit(self.snapshot())

    def skip(self) -> None:
        if self._phase == PomodoroPhase.IDLE or self._config is None:
            return
        self._advance(notify=False)
        self.state_changed.emit(self.snapshot())

    def stop(self) -> None:
        if self._phase == PomodoroPhase.IDLE:
            return
        stopped = None
        if self._phase == PomodoroPhase.WORK and self._linked_subject_id is not None:
            stopped = PomodoroStopped(
                subject_id=self._linked_subject_id,
                phase=self._phase.value,
                sessions_completed=self._sessions_completed,
            )
        completed = self._sessions_completed
        self._phase = PomodoroPhase.IDLE
        self._is_active = False
        self._time_remaining_sec = 0
        self._sessions_completed = 0
        self._linked_subject_id = None
        self._config = None
        logger.info("Pomodoro stopped after %d completed session(s)", completed)
        if stopped is not None:
            self.pomodoro_stopped.emit(stopped)
        self.state_changed.emit(self.snapshot())

    def tick(self) -> PomodoroState:
        if not self._is_active or self._time_remaining_sec <= 0 or self._config is None:
            return self.snapshot()
        self._time_remaining_sec -= 1
        if self._time_remaining_sec <= 0:
            self._advance(notify=True)
        state = self.snapshot()
        self.state_changed.emit(state)
        return state

    def _advance(self, notify: bool) -> None:
        config = self._config
        if self._phase == PomodoroPhase.WORK:
            self._sessions_completed += 1
            is_long_break = self._sessions_completed % config.sessions_before_long_break == 0
            if is_long_break:
                self._phase = PomodoroPhase.LONG_BREAK
                self._time_remaining_sec = config.long_break_duration
            else:
                self._phase = PomodoroPhase.SHORT_BREAK
                self._time_remaining_sec = config.short_break_duration
            self._is_active = self._auto_start_breaks
            if notify:
                self.pomodoro_completed.emit(
                    PomodoroCompleted(
                        subject_id=self._linked_subject_id,
                        session_number=self._sessions_completed,
                        is_long_break_next=is_long_break,
                    )
                )
            return
        self._phase = PomodoroPhase.WORK
        self._time_remaining_sec = config.work_duration
        self._is_active = self._auto_start_work
