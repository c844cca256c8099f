"""Точка входа движка LifeFlow.

Модуль поднимает Qt-цикл событий без окон, подключает хранилище,
восстанавливает открытые таймеры и запускает секундный тик.
"""

from __future__ import annotations

import sys
from pathlib import Path

from PyQt6.QtCore import QCoreApplication

from lifeflow.core.engine import TimeEngine
from lifeflow.core.logging_handler import setup_logger
from lifeflow.core.scheduler import TickScheduler
from lifeflow.data.storage import Storage


def default_db_path() -> Path:
    """Возвращает стандартный путь к SQLite-файлу в текущей директории."""
    return Path.cwd() / "lifeflow.db"


def main() -> int:
    """Создает зависимости движка и запускает цикл событий."""
    app = QCoreApplication(sys.argv)
    logger = setup_logger(log_file=Path.cwd() / "logs" / "lifeflow.log")

    storage = Storage(default_db_path())
    storage.init_db()

    engine = TimeEngine()
    engine.load_from_storage(storage)
    logger.info("Engine ready with %d open timer(s)", len(engine.ledger.timers))

    scheduler = TickScheduler(engine)
    scheduler.start()
    return app.exec()


if __name__ == "__main__":
    raise SystemExit(main())
