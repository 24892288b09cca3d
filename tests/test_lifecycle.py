# tests/test_lifecycle.py

from __future__ import annotations

import gc
from concurrent.futures import ThreadPoolExecutor
from datetime import date

import pytest

from habit_tracker.core.errors import ConflictError, NotFoundError, ValidationError
from habit_tracker.tasks.lifecycle import TaskLifecycleManager
from habit_tracker.tasks.task_models import (
    Category,
    Frequency,
    ProgressInput,
    SessionStatus,
    Task,
    TaskKind,
    TaskSpec,
)
from habit_tracker.tasks.task_store import TaskStore


def _spec(category: Category, **overrides) -> TaskSpec:
    fields = dict(
        name="Drink Water",
        kind=TaskKind.YES_NO,
        frequency=Frequency.DAILY,
        goal=8,
        category_id=category.id,
        start_date=date(2024, 6, 1),
    )
    fields.update(overrides)
    return TaskSpec(**fields)


def _log(engine: TaskLifecycleManager, task: Task, amount: int, **kw):
    return engine.record_progress(
        task.id, ProgressInput(date=kw.pop("on", date(2024, 6, 1)), magnitude=amount, **kw)
    )


# ---- creation ----


def test_create_task_starts_open_template_with_fresh_period(engine, category) -> None:
    task = engine.create_task(_spec(category, start_date="2024-06-01"))

    assert task.is_template
    assert task.parent_task_id is None
    assert task.completed_count == 0
    assert not task.is_completed
    assert task.period.start == date(2024, 6, 1)
    assert task.period.end == date(2024, 6, 2)


def test_create_monthly_task_from_month_end(engine, category) -> None:
    task = engine.create_task(
        _spec(category, frequency="MONTHLY", start_date=date(2024, 1, 31))
    )
    assert task.period.end == date(2024, 2, 29)


@pytest.mark.parametrize(
    "overrides",
    [
        {"name": "   "},
        {"goal": 0},
        {"goal": -5},
        {"goal": 2.5},
        {"kind": "MAYBE"},
        {"frequency": "HOURLY"},
        {"start_date": "not-a-date"},
        {"category_id": 999},
    ],
)
def test_create_task_rejects_invalid_input(engine, store: TaskStore, category, overrides) -> None:
    with pytest.raises(ValidationError):
        engine.create_task(_spec(category, **overrides))
    assert store.count_tasks() == 0


def test_lenient_engine_defaults_unknown_frequency_to_daily(store, category) -> None:
    engine = TaskLifecycleManager(store, strict_frequency=False)
    task = engine.create_task(_spec(category, frequency="HOURLY"))
    assert task.frequency is Frequency.DAILY
    assert task.period.end == date(2024, 6, 2)


def test_create_task_in_archived_category_conflicts(engine, category) -> None:
    engine.archive_category(category.id)
    with pytest.raises(ConflictError):
        engine.create_task(_spec(category))


def test_category_validation(engine) -> None:
    with pytest.raises(ValidationError):
        engine.create_category("X", "#FFF")
    with pytest.raises(ValidationError):
        engine.create_category("Work", "blue")
    cat = engine.create_category("  Work ", "#3b82f6")
    assert cat.name == "Work"
    assert cat.color == "#3B82F6"


# ---- completion ----


def test_yes_no_five_plus_three_completes(engine, category) -> None:
    task = engine.create_task(_spec(category))
    _log(engine, task, 5)
    result = _log(engine, task, 3)

    assert result.task.completed_count == 8
    assert result.task.is_completed
    assert result.event.period_completed


def test_yes_no_five_plus_two_stays_open(engine, category) -> None:
    task = engine.create_task(_spec(category))
    _log(engine, task, 5)
    result = _log(engine, task, 2)

    assert result.task.completed_count == 7
    assert not result.task.is_completed
    assert result.spawned_successor_id is None


def test_completing_template_spawns_exactly_one_successor(engine, store, category) -> None:
    task = engine.create_task(_spec(category, goal=1))
    assert task.period.end == date(2024, 6, 2)

    result = _log(engine, task, 1)
    assert result.spawned_successor_id is not None

    successor = store.get_task(result.spawned_successor_id)
    assert successor is not None
    assert successor.name == "Drink Water"
    assert successor.period.start == date(2024, 6, 2)
    assert successor.period.end == date(2024, 6, 3)
    assert not successor.is_template
    assert successor.parent_task_id == task.id
    assert successor.completed_count == 0
    assert not successor.is_completed
    assert successor.kind is task.kind
    assert successor.goal == task.goal
    assert successor.category_id == task.category_id

    # More progress on the completed template never spawns a second successor.
    again = _log(engine, task, 1)
    assert again.spawned_successor_id is None
    with store.reading() as s:
        assert len(s.list_successors(task.id)) == 1


def test_completed_instance_rejects_more_progress(engine, store, category) -> None:
    task = engine.create_task(_spec(category, goal=1))
    successor_id = _log(engine, task, 1).spawned_successor_id
    successor = store.get_task(successor_id)

    done = _log(engine, successor, 1, on=date(2024, 6, 2))
    assert done.task.is_completed
    assert done.spawned_successor_id is None

    with pytest.raises(ConflictError):
        _log(engine, successor, 1, on=date(2024, 6, 2))


def test_time_based_remaining_snapshot_clamped(engine, category) -> None:
    task = engine.create_task(_spec(category, kind="TIME_BASED", goal=30, name="Read"))
    first = _log(engine, task, 10)
    assert first.event.remaining == 20

    result = _log(engine, task, 25)
    assert result.event.remaining == 0
    assert result.task.is_completed
    assert result.task.completed_count == 35


def test_cancelled_sessions_do_not_complete(engine, category) -> None:
    task = engine.create_task(_spec(category, kind="TIME_BASED", goal=30))
    result = _log(engine, task, 45, status=SessionStatus.CANCELLED)
    assert not result.task.is_completed
    assert result.task.completed_count == 0
    assert result.event.remaining == 30


def test_counter_is_monotonic_across_records(engine, category) -> None:
    task = engine.create_task(_spec(category, goal=20))
    seen = []
    for amount in (1, 0, 3, 2, 0, 5):
        seen.append(_log(engine, task, amount).task.completed_count)
    assert seen == sorted(seen)
    assert seen[-1] == 11


def test_events_share_period_id(engine, category) -> None:
    task = engine.create_task(_spec(category, frequency="WEEKLY"))
    a = _log(engine, task, 1, on=date(2024, 6, 1))
    b = _log(engine, task, 1, on=date(2024, 6, 4))
    assert a.event.period_id == b.event.period_id == f"{task.id}_2024-06-01"


# ---- idempotence ----


def test_replayed_event_id_is_not_double_counted(engine, store, category) -> None:
    task = engine.create_task(_spec(category))
    first = _log(engine, task, 5, event_id="evt-1")
    replay = _log(engine, task, 5, event_id="evt-1")

    assert not first.replayed
    assert replay.replayed
    assert replay.task.completed_count == 5
    with store.reading() as s:
        assert len(s.list_period_events(task.id, task.period_id)) == 1


def test_event_id_reused_on_other_task_conflicts(engine, category) -> None:
    a = engine.create_task(_spec(category, name="A"))
    b = engine.create_task(_spec(category, name="B"))
    _log(engine, a, 1, event_id="shared")
    with pytest.raises(ConflictError):
        _log(engine, b, 1, event_id="shared")


def test_replay_of_completing_event_reports_successor(engine, category) -> None:
    task = engine.create_task(_spec(category, goal=2))
    first = _log(engine, task, 2, event_id="complete-me")
    replay = _log(engine, task, 2, event_id="complete-me")
    assert replay.replayed
    assert replay.spawned_successor_id == first.spawned_successor_id


# ---- archiving / not found ----


def test_archived_task_rejects_progress_without_mutation(engine, store, category) -> None:
    task = engine.create_task(_spec(category))
    _log(engine, task, 2)
    engine.archive_task(task.id)

    with pytest.raises(ConflictError) as exc:
        _log(engine, task, 6)
    assert exc.value.kind == "conflict"

    after = store.get_task(task.id)
    assert after.is_archived
    assert after.completed_count == 2
    assert not after.is_completed
    assert store.count_tasks() == 1


def test_archived_category_blocks_progress(engine, category) -> None:
    task = engine.create_task(_spec(category))
    engine.archive_category(category.id)
    with pytest.raises(ConflictError):
        _log(engine, task, 1)


def test_archive_is_soft_and_idempotent(engine, store, category) -> None:
    task = engine.create_task(_spec(category))
    engine.archive_task(task.id)
    engine.archive_task(task.id)
    engine.archive_category(category.id)
    engine.archive_category(category.id)

    assert store.get_task(task.id).is_archived
    assert store.get_category(category.id).is_archived


def test_missing_task_raises_not_found(engine) -> None:
    with pytest.raises(NotFoundError):
        engine.record_progress(404, ProgressInput(date="2024-06-01", magnitude=1))
    with pytest.raises(NotFoundError):
        engine.archive_task(404)
    with pytest.raises(NotFoundError):
        engine.archive_category(404)


# ---- edits / removals ----


def test_update_progress_resums_and_completes(engine, store, category) -> None:
    task = engine.create_task(_spec(category))
    _log(engine, task, 5)
    second = _log(engine, task, 2)

    result = engine.update_progress(second.event.id, magnitude=3)
    assert result.event.magnitude == 3
    assert result.event.period_completed
    assert result.task.completed_count == 8
    assert result.task.is_completed
    assert result.spawned_successor_id is not None


def test_cancelling_an_event_keeps_counter_as_high_water_mark(engine, category) -> None:
    task = engine.create_task(_spec(category))
    first = _log(engine, task, 5)
    _log(engine, task, 1)

    result = engine.update_progress(first.event.id, status="CANCELLED")
    assert result.event.status is SessionStatus.CANCELLED
    assert not result.event.period_completed
    assert result.task.completed_count == 6
    assert not result.task.is_completed

    # Completion still follows the ledger sum: 1 + 7 reaches the goal of 8.
    done = _log(engine, task, 7)
    assert done.task.completed_count == 8
    assert done.task.is_completed
    assert done.spawned_successor_id is not None


def test_remove_progress_keeps_counter_and_completion(engine, store, category) -> None:
    task = engine.create_task(_spec(category, goal=3))
    done = _log(engine, task, 3)
    assert done.task.is_completed

    after = engine.remove_progress(done.event.id)
    assert after.completed_count == 3
    assert after.is_completed
    assert store.get_event(done.event.id) is None


def test_counter_never_decreases_across_edits_and_removals(engine, category) -> None:
    task = engine.create_task(_spec(category, goal=10))
    first = _log(engine, task, 5)
    second = _log(engine, task, 1)

    seen = [second.task]
    seen.append(engine.update_progress(first.event.id, status="CANCELLED").task)
    seen.append(engine.update_progress(second.event.id, magnitude=0).task)
    seen.append(engine.remove_progress(second.event.id))
    seen.append(engine.update_progress(first.event.id, status="COMPLETED", magnitude=9).task)

    counts = [t.completed_count for t in seen]
    assert counts == sorted(counts)
    assert counts[-1] == 9
    for t in seen:
        assert t.is_completed == (t.completed_count >= t.goal)


def test_remove_missing_event_raises_not_found(engine) -> None:
    with pytest.raises(NotFoundError):
        engine.remove_progress("nope")
    with pytest.raises(NotFoundError):
        engine.update_progress("nope", magnitude=1)


def test_mark_completion_defaults(engine, category) -> None:
    yes_no = engine.create_task(_spec(category, goal=2))
    assert engine.mark_completion(yes_no.id, on_date="2024-06-01").task.completed_count == 1

    timed = engine.create_task(_spec(category, kind="TIME_BASED", goal=30, name="Run"))
    _log(engine, timed, 10)
    result = engine.mark_completion(timed.id, on_date="2024-06-01")
    assert result.event.magnitude == 20
    assert result.task.is_completed


def test_mark_completion_fills_what_the_ledger_still_misses(engine, category) -> None:
    timed = engine.create_task(_spec(category, kind="TIME_BASED", goal=30, name="Run"))
    long_run = _log(engine, timed, 20)
    _log(engine, timed, 5)
    engine.update_progress(long_run.event.id, status="CANCELLED")

    result = engine.mark_completion(timed.id, on_date="2024-06-01")
    assert result.event.magnitude == 25
    assert result.event.remaining == 0
    assert result.task.is_completed


def test_concurrent_mark_completion_records_remaining_once(engine, store, category) -> None:
    timed = engine.create_task(_spec(category, kind="TIME_BASED", goal=30, name="Run"))
    _log(engine, timed, 10)

    with ThreadPoolExecutor(max_workers=4) as pool:
        results = list(
            pool.map(lambda _: engine.mark_completion(timed.id, on_date="2024-06-01"), range(4))
        )

    assert sorted(r.event.magnitude for r in results) == [0, 0, 0, 20]
    assert store.get_task(timed.id).completed_count == 30
    assert sum(1 for r in results if r.spawned_successor_id is not None) == 1


def test_task_locks_are_released_after_writes(engine, category) -> None:
    task = engine.create_task(_spec(category))
    _log(engine, task, 1)
    engine.archive_task(task.id)

    gc.collect()
    assert len(engine._locks) == 0


def test_end_date_is_validated_and_carried_to_successor(engine, store, category) -> None:
    with pytest.raises(ValidationError):
        engine.create_task(_spec(category, end_date="2024-05-31"))

    task = engine.create_task(_spec(category, goal=1, end_date="2024-12-31"))
    assert task.end_date == date(2024, 12, 31)

    result = _log(engine, task, 1)
    successor = store.get_task(result.spawned_successor_id)
    assert successor.end_date == date(2024, 12, 31)

    other = engine.create_task(_spec(category, name="Stretch"))
    assert other.end_date is None
    assert engine.update_task(other.id, end_date="2024-07-01").end_date == date(2024, 7, 1)
    with pytest.raises(ValidationError):
        engine.update_task(other.id, end_date="2024-01-01")


def test_update_task_recomputes_period_and_lowered_goal_completes(engine, category) -> None:
    task = engine.create_task(_spec(category))
    moved = engine.update_task(task.id, frequency="WEEKLY", start_date="10-06-2024")
    assert moved.period.start == date(2024, 6, 10)
    assert moved.period.end == date(2024, 6, 17)

    _log(engine, moved, 4, on=date(2024, 6, 10))
    with pytest.raises(ConflictError):
        engine.update_task(task.id, start_date="2024-06-20")

    lowered = engine.update_task(task.id, goal=4)
    assert lowered.is_completed
    with pytest.raises(ConflictError):
        engine.update_task(task.id, name="Too late")


# ---- concurrency ----


def test_concurrent_writers_do_not_lose_updates(settings, category) -> None:
    # Two managers on one database: per-task locks are not shared, the store must serialize.
    store_a = TaskStore(settings.tasks_db_path)
    store_b = TaskStore(settings.tasks_db_path)
    engine_a = TaskLifecycleManager(store_a)
    engine_b = TaskLifecycleManager(store_b)
    task = engine_a.create_task(_spec(category, goal=16))

    def worker(i: int):
        eng = engine_a if i % 2 else engine_b
        return eng.record_progress(
            task.id, ProgressInput(date="2024-06-01", magnitude=1, event_id=f"w{i}")
        )

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(worker, range(16)))

    final = store_a.get_task(task.id)
    assert final.completed_count == 16
    assert final.is_completed
    assert sum(1 for r in results if r.spawned_successor_id is not None) == 1
    with store_a.reading() as s:
        assert len(s.list_successors(task.id)) == 1
