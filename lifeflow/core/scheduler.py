from __future__ import annotations

import logging
import sqlite3

from PyQt6.QtCore import QObject, QTimer

from lifeflow.core.engine import TimeEngine


logger = logging.getLogger(__name__)

TICK_INTERVAL_MS = 1000


class TickScheduler(QObject):
    """Calls ``TimeEngine.tick`` once per second from the Qt event loop."""

    def __init__(self, engine: TimeEngine, interval_ms: int = TICK_INTERVAL_MS, parent: QObject | None = None) -> None:
        super().__init__(parent)
        self.engine = engine
        self.timer = QTimer(self)
        self.timer.setInterval(interval_ms)
        self.timer.timeout.connect(self._on_timeout)

    @property
    def is_running(self) -> bool:
        return self.timer.isActive()

    def start(self) -> None:
        self.timer.start()

    def stop(self) -> None:
        self.timer.stop()

    def _on_timeout(self) -> None:
        # Exceptions must not leave a Qt slot. A failed commit keeps its timer
        # in the ledger; a finished pomodoro work phase is retried next tick.
        try:
            self.engine.tick()
        except sqlite3.Error:
            logger.exception("Tick failed while committing a session")
