import sqlite3

import pytest

from lifeflow.core.clock import ManualClock
from lifeflow.core.day_key import resolve_day_key, shift_day_key
from lifeflow.core.engine import TimeEngine
from lifeflow.core.errors import ConfigurationMissingError, InvalidSettingError
from lifeflow.core.events import EngineEvent
from lifeflow.core.pomodoro import PomodoroConfig, PomodoroPhase
from lifeflow.core.scheduler import TickScheduler
from lifeflow.core.streaks import DailyLog, StreakResult
from lifeflow.core.timer import TimerMode
from lifeflow.data.storage import Storage


SPRINT = PomodoroConfig(
    id="sprint",
    name="Sprint",
    work_duration=3,
    short_break_duration=2,
    long_break_duration=4,
    sessions_before_long_break=2,
    is_default=True,
)


def make_engine(tmp_path, start_ms: int) -> tuple[TimeEngine, ManualClock, Storage]:
    storage = Storage(tmp_path / "app.db")
    storage.init_db()
    clock = ManualClock(start_ms)
    engine = TimeEngine(clock=clock)
    engine.load_from_storage(storage)
    return engine, clock, storage


def test_timer_lifecycle_events_are_forwarded(tmp_path, day_start_ms) -> None:
    engine, clock, storage = make_engine(tmp_path, day_start_ms)
    events = []
    engine.event_emitted.connect(events.append)

    timer_id = engine.start_timer("code")
    clock.advance(10)
    engine.pause_timer(timer_id)
    engine.resume_timer(timer_id)
    clock.advance(5)
    session = engine.stop_timer(timer_id)

    assert [event.kind for event in events] == [
        EngineEvent.TIMER_STARTED,
        EngineEvent.TIMER_PAUSED,
        EngineEvent.TIMER_RESUMED,
        EngineEvent.TIMER_STOPPED,
        EngineEvent.SESSION_CREATED,
    ]
    assert session.duration_sec == 15
    assert session.date_key == resolve_day_key(session.start_at, 4)
    assert storage.list_sessions() == [session]


def test_unknown_timer_ids_are_harmless(tmp_path, day_start_ms, caplog) -> None:
    engine, _, _ = make_engine(tmp_path, day_start_ms)

    engine.pause_timer("gone")
    engine.resume_timer("gone")
    engine.discard_timer("gone")

    assert engine.stop_timer("gone") is None
    assert engine.get_elapsed_seconds("gone") == 0
    assert "no longer exists" in caplog.text


def test_open_timer_continues_after_restart(tmp_path, day_start_ms) -> None:
    engine, clock, storage = make_engine(tmp_path, day_start_ms)
    timer_id = engine.start_timer("code")
    clock.advance(100)

    reloaded = TimeEngine(clock=clock)
    reloaded.load_from_storage(storage)

    assert reloaded.get_elapsed_seconds(timer_id) == 100
    clock.advance(20)
    assert reloaded.stop_timer(timer_id).duration_sec == 120


def test_settings_are_validated_and_persisted(tmp_path, day_start_ms) -> None:
    engine, _, storage = make_engine(tmp_path, day_start_ms)
    changes = []
    engine.settings_changed.connect(changes.append)

    engine.update_settings(rollover_hour=6, auto_start_work=True)

    with pytest.raises(InvalidSettingError):
        engine.update_settings(rollover_hour=24)
    with pytest.raises(InvalidSettingError):
        engine.update_settings(bedtime=22)

    reloaded = TimeEngine(clock=ManualClock(day_start_ms))
    reloaded.load_from_storage(storage)
    assert reloaded.settings.rollover_hour == 6
    assert reloaded.pomodoro.auto_start_work is True
    assert {change.key for change in changes} == {"rollover_hour", "auto_start_work"}


def test_stop_timer_uses_explicit_rollover_hour(tmp_path, day_start_ms) -> None:
    engine, clock, _ = make_engine(tmp_path, day_start_ms)
    timer_id = engine.start_timer("code")
    clock.advance(30)

    session = engine.stop_timer(timer_id, rollover_hour=0)

    assert session.date_key == resolve_day_key(session.start_at, 0)


def test_start_pomodoro_without_config_fails_loudly(tmp_path, day_start_ms) -> None:
    engine, _, _ = make_engine(tmp_path, day_start_ms)

    with pytest.raises(ConfigurationMissingError):
        engine.start_pomodoro("study")

    assert engine.pomodoro.phase == PomodoroPhase.IDLE
    assert engine.ledger.timers == []


def test_pomodoro_work_phase_is_tracked_as_a_session(tmp_path, day_start_ms) -> None:
    engine, clock, storage = make_engine(tmp_path, day_start_ms)
    engine.save_pomodoro_config(SPRINT)
    kinds = []
    engine.event_emitted.connect(lambda event: kinds.append(event.kind))

    assert engine.start_pomodoro("study") is True
    linked = engine.ledger.get(engine.linked_timer_id)
    assert linked.mode == TimerMode.POMODORO_LINKED

    for _ in range(3):
        clock.advance(1)
        engine.tick()

    assert engine.pomodoro.phase == PomodoroPhase.SHORT_BREAK
    assert engine.linked_timer_id is None
    [session] = storage.list_sessions()
    assert session.subject_id == "study"
    assert session.duration_sec == 3
    assert EngineEvent.POMODORO_COMPLETED in kinds
    assert kinds.index(EngineEvent.POMODORO_COMPLETED) < kinds.index(EngineEvent.SESSION_CREATED)
    assert engine.settings.last_pomodoro_config_id == "sprint"


def test_paused_pomodoro_pauses_its_timer_and_stop_commits(tmp_path, day_start_ms) -> None:
    engine, clock, storage = make_engine(tmp_path, day_start_ms)
    engine.save_pomodoro_config(SPRINT)
    engine.start_pomodoro("study")
    clock.advance(1)
    engine.tick()

    engine.pause_pomodoro()
    clock.advance(60)
    engine.tick()
    assert engine.get_elapsed_seconds(engine.linked_timer_id) == 1

    engine.resume_pomodoro()
    clock.advance(1)
    engine.tick()
    engine.stop_pomodoro()

    assert engine.pomodoro.phase == PomodoroPhase.IDLE
    assert engine.ledger.timers == []
    assert [session.duration_sec for session in storage.list_sessions()] == [2]


def test_next_work_phase_gets_a_fresh_linked_timer(tmp_path, day_start_ms) -> None:
    engine, clock, storage = make_engine(tmp_path, day_start_ms)
    engine.save_pomodoro_config(SPRINT)
    engine.update_settings(auto_start_breaks=True, auto_start_work=True)
    engine.start_pomodoro("study")

    for _ in range(3 + 2 + 3):
        clock.advance(1)
        engine.tick()

    assert engine.pomodoro.sessions_completed == 2
    assert engine.pomodoro.phase == PomodoroPhase.LONG_BREAK
    assert [session.duration_sec for session in storage.list_sessions()] == [3, 3]


def test_pomodoro_does_not_take_over_a_manual_timer(tmp_path, day_start_ms) -> None:
    engine, clock, storage = make_engine(tmp_path, day_start_ms)
    engine.save_pomodoro_config(SPRINT)
    manual_id = engine.start_timer("study")

    engine.start_pomodoro("study")
    engine.skip_phase()

    assert engine.linked_timer_id is None
    assert [timer.id for timer in engine.ledger.timers] == [manual_id]
    assert storage.list_sessions() == []


def test_session_note_and_delete_emit_events(tmp_path, day_start_ms) -> None:
    engine, clock, _ = make_engine(tmp_path, day_start_ms)
    events = []
    engine.event_emitted.connect(events.append)
    timer_id = engine.start_timer("code")
    clock.advance(60)
    session = engine.stop_timer(timer_id)
    clock.advance(5)

    updated = engine.update_session_note(session.id, "deep work")

    assert updated.note == "deep work"
    assert updated.updated_at == clock.now_ms()
    assert engine.sessions_for_day(session.date_key) == [updated]
    assert engine.daily_totals(session.date_key, session.date_key)[0].total_sec == 60
    assert engine.delete_session(session.id) is True
    assert engine.delete_session(session.id) is False
    assert engine.update_session_note(session.id, "again") is None
    assert [event.kind for event in events[-2:]] == [EngineEvent.SESSION_UPDATED, EngineEvent.SESSION_DELETED]
    assert events[-2].previous_session.note == ""


def test_checked_items_feed_streaks(tmp_path, day_start_ms) -> None:
    engine, _, storage = make_engine(tmp_path, day_start_ms)
    today = engine.today_key()
    for offset in (3, 2):
        storage.upsert_daily_log(DailyLog(item_id="run", date_key=shift_day_key(today, -offset), done=True), now_ms=0)

    engine.check_item("run")
    engine.check_item("water", value=6, target=8)

    streaks = engine.streaks(window_days=7, item_ids=["read"])

    assert streaks["run"] == StreakResult(current_streak=1, longest_streak=2, completed_days=3)
    assert streaks["water"] == StreakResult()
    assert streaks["read"] == StreakResult()

    engine.check_item("water", value=8, target=8)
    assert engine.streaks()["water"].current_streak == 1
    assert engine.uncheck_item("run") is True
    assert engine.streaks()["run"].current_streak == 0


def test_compute_streaks_defaults_to_today(tmp_path, day_start_ms) -> None:
    engine, _, _ = make_engine(tmp_path, day_start_ms)
    today = engine.today_key()
    logs = [DailyLog(item_id="run", date_key=today, done=True)]

    assert engine.compute_streaks(logs)["run"].current_streak == 1
    assert engine.compute_streaks(logs, shift_day_key(today, 1))["run"].current_streak == 0


class FlakyStorage(Storage):
    failures = 0

    def commit_session(self, timer_id, session) -> None:
        if self.failures:
            self.failures -= 1
            raise sqlite3.OperationalError("database is locked")
        super().commit_session(timer_id, session)


def test_linked_timer_from_a_previous_run_is_committed_on_restore(tmp_path, day_start_ms) -> None:
    engine, clock, storage = make_engine(tmp_path, day_start_ms)
    engine.save_pomodoro_config(SPRINT)
    engine.start_pomodoro("study")
    clock.advance(2)

    restored = TimeEngine(clock=clock)
    restored.load_from_storage(storage)

    assert restored.pomodoro.phase == PomodoroPhase.IDLE
    assert restored.ledger.timers == []
    assert storage.list_running_timers() == []
    assert [session.duration_sec for session in storage.list_sessions()] == [2]

    assert restored.start_pomodoro("study") is True
    assert restored.linked_timer_id is not None
    for _ in range(3 + 2):
        clock.advance(1)
        restored.tick()

    assert [session.duration_sec for session in storage.list_sessions()] == [3, 2]
    assert restored.ledger.timers == []


def test_restored_linked_timer_is_capped_at_the_work_duration(tmp_path, day_start_ms) -> None:
    engine, clock, storage = make_engine(tmp_path, day_start_ms)
    engine.save_pomodoro_config(SPRINT)
    engine.start_pomodoro("study")
    clock.advance(3600)

    restored = TimeEngine(clock=clock)
    restored.load_from_storage(storage)

    [session] = storage.list_sessions()
    assert session.duration_sec == SPRINT.work_duration
    assert session.start_at == day_start_ms
    restored.start_timer("study")


def test_failed_commit_at_break_is_retried_without_counting_the_break(tmp_path, day_start_ms) -> None:
    storage = FlakyStorage(tmp_path / "app.db")
    storage.init_db()
    clock = ManualClock(day_start_ms)
    engine = TimeEngine(clock=clock)
    engine.load_from_storage(storage)
    engine.save_pomodoro_config(SPRINT)
    engine.update_settings(auto_start_breaks=True, auto_start_work=True)
    scheduler = TickScheduler(engine)
    engine.start_pomodoro("study")
    storage.failures = 2

    for _ in range(3 + 2 + 3):
        clock.advance(1)
        scheduler._on_timeout()  # noqa: SLF001

    assert storage.failures == 0
    assert [session.duration_sec for session in storage.list_sessions()] == [3, 3]
    assert engine.ledger.timers == []


def test_work_phase_waiting_to_start_has_no_timer(tmp_path, day_start_ms) -> None:
    engine, clock, storage = make_engine(tmp_path, day_start_ms)
    engine.save_pomodoro_config(SPRINT)
    engine.start_pomodoro("study")
    for _ in range(3 + 2):
        clock.advance(1)
        engine.tick()

    assert engine.pomodoro.phase == PomodoroPhase.WORK
    assert engine.pomodoro.is_active is False
    assert engine.linked_timer_id is None

    engine.stop_pomodoro()

    assert [session.duration_sec for session in storage.list_sessions()] == [3]
    assert engine.ledger.timers == []


def test_resuming_a_waiting_work_phase_starts_its_timer(tmp_path, day_start_ms) -> None:
    engine, clock, storage = make_engine(tmp_path, day_start_ms)
    engine.save_pomodoro_config(SPRINT)
    engine.start_pomodoro("study")
    for _ in range(3 + 2):
        clock.advance(1)
        engine.tick()

    engine.resume_pomodoro()
    for _ in range(3):
        clock.advance(1)
        engine.tick()

    assert [session.duration_sec for session in storage.list_sessions()] == [3, 3]
