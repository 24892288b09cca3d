# tests/test_task_api.py

from __future__ import annotations

from datetime import date

import pytest

from habit_tracker.core.errors import NotFoundError, ValidationError
from habit_tracker.tasks import task_api


def test_compute_period_contract(state) -> None:
    p = task_api.compute_period(state, "MONTHLY", "2024-01-31")
    assert (p.start, p.end) == (date(2024, 1, 31), date(2024, 2, 29))

    with pytest.raises(ValidationError):
        task_api.compute_period(state, "YEARLY", "2024-01-31")

    state.settings.strict_frequency = False
    assert task_api.compute_period(state, "YEARLY", "2024-01-31").end == date(2024, 2, 1)


def test_create_record_and_serialize(state, category) -> None:
    task = task_api.create_task_instance(
        state,
        name="Meditate",
        kind="TIME_BASED",
        frequency="DAILY",
        goal=20,
        category_id=category.id,
        start_date="2024-06-01",
    )
    result = task_api.record_progress(
        state, task.id, on_date="2024-06-01", magnitude=20, event_id="m-1"
    )

    assert task_api.task_to_dict(result.task) == {
        "id": task.id,
        "name": "Meditate",
        "kind": "TIME_BASED",
        "frequency": "DAILY",
        "goal": 20,
        "category_id": category.id,
        "start_date": "2024-06-01",
        "period_start": "2024-06-01",
        "period_end": "2024-06-02",
        "accumulated_count": 20,
        "is_completed": True,
        "is_template": True,
        "parent_task_id": None,
        "end_date": None,
        "status": "ACTIVE",
    }
    assert task_api.event_to_dict(result.event) == {
        "id": "m-1",
        "task_id": task.id,
        "date": "2024-06-01",
        "status": "COMPLETED",
        "magnitude": 20,
        "remaining_snapshot": 0,
        "period_completed_snapshot": True,
        "period_id": f"{task.id}_2024-06-01",
    }

    successors = task_api.list_successors(state, task.id)
    assert [s.id for s in successors] == [result.spawned_successor_id]
    assert [e.id for e in task_api.list_progress(state, task_id=task.id)] == ["m-1"]
    assert task_api.get_progress(state, "m-1").magnitude == 20


def test_archive_helpers_hide_records_from_listing(state, category) -> None:
    task = task_api.create_task_instance(
        state,
        name="Walk",
        kind="YES_NO",
        frequency="WEEKLY",
        goal=3,
        category_id=category.id,
        start_date=date(2024, 6, 3),
    )
    task_api.archive_task(state, task.id)
    task_api.archive_category(state, category.id)

    assert task_api.list_tasks(state) == []
    assert [t.id for t in task_api.list_tasks(state, include_archived=True)] == [task.id]
    assert task_api.list_categories(state) == []


def test_lookups_raise_not_found(state) -> None:
    with pytest.raises(NotFoundError):
        task_api.get_task(state, 1)
    with pytest.raises(NotFoundError):
        task_api.get_progress(state, "missing")


@pytest.mark.parametrize(
    ("minutes", "text"),
    [(0, "0m"), (45, "45m"), (60, "1h"), (90, "1h 30m"), (125, "2h 5m")],
)
def test_format_duration(minutes: int, text: str) -> None:
    assert task_api.format_duration(minutes) == text


def test_summarize_handles_empty_list() -> None:
    summary = task_api.summarize([])
    assert summary.total == 0
    assert summary.percentage == 0.0
