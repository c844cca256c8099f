"""SQLite-слой хранения: открытые таймеры, сессии, конфиги помидоров, дневные отметки и настройки."""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import closing, contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator

from lifeflow.core.pomodoro import PomodoroConfig
from lifeflow.core.sessions import TimeSession
from lifeflow.core.streaks import DailyLog
from lifeflow.core.timer import Paused, Running, RunningTimer, TimerMode


logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

_SESSION_COLUMNS = "id, subject_id, start_at, end_at, duration_sec, date_key, note, created_at, updated_at"
_CONFIG_COLUMNS = (
    "id, name, work_duration, short_break_duration, long_break_duration, sessions_before_long_break, is_default"
)


@dataclass(frozen=True)
class DailyTotalRow:
    date_key: str
    subject_id: str
    total_sec: int
    session_count: int


class Storage:
    """Инкапсулирует подключение к SQLite и транзакционные операции."""

    def __init__(self, db_path: str | Path, busy_timeout: float = 5.0) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.busy_timeout = busy_timeout

    def _open(self) -> sqlite3.Connection:
        """Открывает соединение; если WAL недоступен, остается журнал по умолчанию."""
        conn = sqlite3.connect(self.db_path, timeout=self.busy_timeout)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        mode = conn.execute("PRAGMA journal_mode = WAL").fetchone()[0]
        if str(mode).lower() != "wal":
            logger.warning("WAL journal unavailable for %s, staying on %s", self.db_path, mode)
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Одна транзакция: фиксация при успехе, откат при исключении."""
        with closing(self._open()) as conn, conn:
            yield conn

    @contextmanager
    def _reader(self) -> Iterator[sqlite3.Connection]:
        with closing(self._open()) as conn:
            yield conn

    def init_db(self) -> None:
        """Создает все таблицы приложения при первом запуске."""
        with self._transaction() as conn:
            conn.execute("CREATE TABLE IF NOT EXISTS schema_version (version INTEGER NOT NULL)")
            row = conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
            if not row:
                conn.execute("INSERT INTO schema_version(version) VALUES (?)", (SCHEMA_VERSION,))
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS running_timers(
                    id TEXT PRIMARY KEY,
                    subject_id TEXT NOT NULL,
                    mode TEXT NOT NULL,
                    started_at INTEGER NOT NULL,
                    accumulated_seconds INTEGER NOT NULL DEFAULT 0,
                    paused_at INTEGER,
                    created_at INTEGER NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS time_sessions(
                    id TEXT PRIMARY KEY,
                    subject_id TEXT NOT NULL,
                    start_at INTEGER NOT NULL,
                    end_at INTEGER NOT NULL,
                    duration_sec INTEGER NOT NULL,
                    date_key TEXT NOT NULL,
                    note TEXT NOT NULL DEFAULT '',
                    created_at INTEGER NOT NULL,
                    updated_at INTEGER NOT NULL
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_time_sessions_date_key ON time_sessions(date_key)")
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS pomodoro_configs(
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    work_duration INTEGER NOT NULL,
                    short_break_duration INTEGER NOT NULL,
                    long_break_duration INTEGER NOT NULL,
                    sessions_before_long_break INTEGER NOT NULL,
                    is_default INTEGER NOT NULL DEFAULT 0
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS daily_logs(
                    item_id TEXT NOT NULL,
                    date_key TEXT NOT NULL,
                    done INTEGER,
                    value REAL,
                    target REAL,
                    note TEXT NOT NULL DEFAULT '',
                    created_at INTEGER NOT NULL,
                    updated_at INTEGER NOT NULL,
                    PRIMARY KEY(item_id, date_key)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS settings(
                    key TEXT PRIMARY KEY,
                    value TEXT
                )
                """
            )

    def get_setting(self, key: str, default: Any = None) -> Any:
        """Значение настройки из JSON или default, если ключа нет."""
        with self._reader() as conn:
            row = conn.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
        if row is None or row["value"] is None:
            return default
        return json.loads(row["value"])

    def set_setting(self, key: str, value: Any) -> None:
        with self._transaction() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO settings(key, value) VALUES (?, ?)",
                (key, json.dumps(value, ensure_ascii=False, sort_keys=True)),
            )

    # Running timers

    def list_running_timers(self) -> list[RunningTimer]:
        """Возвращает все незавершенные таймеры в порядке создания."""
        with self._reader() as conn:
            rows = conn.execute(
                """
                SELECT id, subject_id, mode, started_at, accumulated_seconds, paused_at, created_at
                FROM running_timers ORDER BY created_at ASC
                """
            ).fetchall()
        return [_timer_from_row(row) for row in rows]

    def insert_running_timer(self, timer: RunningTimer) -> None:
        started_at, paused_at = _timer_instants(timer)
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO running_timers(id, subject_id, mode, started_at, accumulated_seconds, paused_at, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    timer.id,
                    timer.subject_id,
                    timer.mode.value,
                    started_at,
                    timer.accumulated_seconds,
                    paused_at,
                    timer.created_at,
                ),
            )

    def update_running_timer(self, timer: RunningTimer) -> None:
        started_at, paused_at = _timer_instants(timer)
        with self._transaction() as conn:
            conn.execute(
                "UPDATE running_timers SET started_at = ?, accumulated_seconds = ?, paused_at = ? WHERE id = ?",
                (started_at, timer.accumulated_seconds, paused_at, timer.id),
            )

    def delete_running_timer(self, timer_id: str) -> None:
        with self._transaction() as conn:
            conn.execute("DELETE FROM running_timers WHERE id = ?", (timer_id,))

    # Sessions

    def commit_session(self, timer_id: str, session: TimeSession) -> None:
        """Удаляет таймер и записывает сессию одной транзакцией: либо оба шага, либо ни одного."""
        with self._transaction() as conn:
            conn.execute("DELETE FROM running_timers WHERE id = ?", (timer_id,))
            conn.execute(
                f"INSERT INTO time_sessions({_SESSION_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    session.id,
                    session.subject_id,
                    session.start_at,
                    session.end_at,
                    session.duration_sec,
                    session.date_key,
                    session.note,
                    session.created_at,
                    session.updated_at,
                ),
            )

    def get_session(self, session_id: str) -> TimeSession | None:
        with self._reader() as conn:
            row = conn.execute(f"SELECT {_SESSION_COLUMNS} FROM time_sessions WHERE id = ?", (session_id,)).fetchone()
        return _session_from_row(row) if row else None

    def list_sessions(
        self,
        date_key: str | None = None,
        subject_id: str | None = None,
        limit: int = 100,
    ) -> list[TimeSession]:
        """Возвращает последние сессии в обратном хронологическом порядке."""
        query = f"SELECT {_SESSION_COLUMNS} FROM time_sessions"
        clauses: list[str] = []
        params: list[Any] = []
        if date_key is not None:
            clauses.append("date_key = ?")
            params.append(date_key)
        if subject_id is not None:
            clauses.append("subject_id = ?")
            params.append(subject_id)
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY start_at DESC LIMIT ?"
        params.append(limit)
        with self._reader() as conn:
            rows = conn.execute(query, params).fetchall()
        return [_session_from_row(row) for row in rows]

    def update_session_note(self, session_id: str, note: str, updated_at: int) -> TimeSession | None:
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE time_sessions SET note = ?, updated_at = ? WHERE id = ?",
                (note, updated_at, session_id),
            )
            if cursor.rowcount == 0:
                return None
        return self.get_session(session_id)

    def delete_session(self, session_id: str) -> TimeSession | None:
        """Удаляет сессию и возвращает ее последнее состояние (или `None`, если ее нет)."""
        with self._transaction() as conn:
            row = conn.execute(f"SELECT {_SESSION_COLUMNS} FROM time_sessions WHERE id = ?", (session_id,)).fetchone()
            if not row:
                return None
            conn.execute("DELETE FROM time_sessions WHERE id = ?", (session_id,))
        return _session_from_row(row)

    def daily_totals(self, since_key: str, until_key: str) -> list[DailyTotalRow]:
        """Суммы длительности по дням и предметам в закрытом диапазоне ключей дней."""
        with self._reader() as conn:
            rows = conn.execute(
                """
                SELECT date_key, subject_id, SUM(duration_sec) AS total_sec, COUNT(*) AS session_count
                FROM time_sessions
                WHERE date_key BETWEEN ? AND ?
                GROUP BY date_key, subject_id
                ORDER BY date_key ASC, subject_id ASC
                """,
                (since_key, until_key),
            ).fetchall()
        return [
            DailyTotalRow(
                date_key=row["date_key"],
                subject_id=row["subject_id"],
                total_sec=int(row["total_sec"]),
                session_count=int(row["session_count"]),
            )
            for row in rows
        ]

    # Pomodoro configs

    def list_pomodoro_configs(self) -> list[PomodoroConfig]:
        with self._reader() as conn:
            rows = conn.execute(f"SELECT {_CONFIG_COLUMNS} FROM pomodoro_configs ORDER BY rowid ASC").fetchall()
        return [
            PomodoroConfig(
                id=row["id"],
                name=row["name"],
                work_duration=row["work_duration"],
                short_break_duration=row["short_break_duration"],
                long_break_duration=row["long_break_duration"],
                sessions_before_long_break=row["sessions_before_long_break"],
                is_default=bool(row["is_default"]),
            )
            for row in rows
        ]

    def save_pomodoro_config(self, config: PomodoroConfig) -> None:
        """Создает или обновляет конфиг; флаг `is_default` может быть только у одного."""
        with self._transaction() as conn:
            if config.is_default:
                conn.execute("UPDATE pomodoro_configs SET is_default = 0 WHERE id != ?", (config.id,))
            conn.execute(
                f"""
                INSERT INTO pomodoro_configs({_CONFIG_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name = excluded.name,
                    work_duration = excluded.work_duration,
                    short_break_duration = excluded.short_break_duration,
                    long_break_duration = excluded.long_break_duration,
                    sessions_before_long_break = excluded.sessions_before_long_break,
                    is_default = excluded.is_default
                """,
                (
                    config.id,
                    config.name,
                    config.work_duration,
                    config.short_break_duration,
                    config.long_break_duration,
                    config.sessions_before_long_break,
                    int(config.is_default),
                ),
            )

    def delete_pomodoro_config(self, config_id: str) -> None:
        with self._transaction() as conn:
            conn.execute("DELETE FROM pomodoro_configs WHERE id = ?", (config_id,))

    # Daily logs

    def upsert_daily_log(self, log: DailyLog, now_ms: int) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO daily_logs(item_id, date_key, done, value, target, note, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(item_id, date_key) DO UPDATE SET
                    done = excluded.done,
                    value = excluded.value,
                    target = excluded.target,
                    note = excluded.note,
                    updated_at = excluded.updated_at
                """,
                (
                    log.item_id,
                    log.date_key,
                    None if log.done is None else int(log.done),
                    log.value,
                    log.target,
                    log.note,
                    now_ms,
                    now_ms,
                ),
            )

    def delete_daily_log(self, item_id: str, date_key: str) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM daily_logs WHERE item_id = ? AND date_key = ?", (item_id, date_key))
            return cursor.rowcount > 0

    def list_daily_logs(
        self,
        item_id: str | None = None,
        since_key: str | None = None,
        until_key: str | None = None,
    ) -> list[DailyLog]:
        """Возвращает дневные отметки, отсортированные по ключу дня."""
        query = "SELECT item_id, date_key, done, value, target, note FROM daily_logs"
        clauses: list[str] = []
        params: list[Any] = []
        if item_id is not None:
            clauses.append("item_id = ?")
            params.append(item_id)
        if since_key is not None:
            clauses.append("date_key >= ?")
            params.append(since_key)
        if until_key is not None:
            clauses.append("date_key <= ?")
            params.append(until_key)
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY date_key ASC, item_id ASC"
        with self._reader() as conn:
            rows = conn.execute(query, params).fetchall()
        return [
            DailyLog(
                item_id=row["item_id"],
                date_key=row["date_key"],
                done=None if row["done"] is None else bool(row["done"]),
                value=row["value"],
                target=row["target"],
                note=row["note"],
            )
            for row in rows
        ]


def _timer_instants(timer: RunningTimer) -> tuple[int, int | None]:
    # Paused rows keep paused_at in started_at; it is reset on resume anyway.
    if isinstance(timer.state, Paused):
        return timer.state.paused_at, timer.state.paused_at
    return timer.state.started_at, None


def _timer_from_row(row: sqlite3.Row) -> RunningTimer:
    if row["paused_at"] is not None:
        state: Running | Paused = Paused(accumulated_seconds=row["accumulated_seconds"], paused_at=row["paused_at"])
    else:
        state = Running(started_at=row["started_at"], accumulated_seconds=row["accumulated_seconds"])
    return RunningTimer(
        id=row["id"],
        subject_id=row["subject_id"],
        mode=TimerMode(row["mode"]),
        state=state,
        created_at=row["created_at"],
    )


def _session_from_row(row: sqlite3.Row) -> TimeSession:
    return TimeSession(
        id=row["id"],
        subject_id=row["subject_id"],
        start_at=row["start_at"],
        end_at=row["end_at"],
        duration_sec=row["duration_sec"],
        date_key=row["date_key"],
        note=row["note"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )
