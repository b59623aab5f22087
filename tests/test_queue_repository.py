from __future__ import annotations

import threading
from datetime import UTC, datetime, timedelta
from pathlib import Path

import allure
import pytest

from task_broker.queue.models import Task, TaskStatus
from task_broker.queue.repository import (
    QueueRepository,
    QueueStoreError,
    TaskNotFoundError,
)
from task_broker.storage.common import utc_now

pytestmark = [
    allure.epic("Task Queue"),
    allure.feature("Task Store"),
]


def _task(
    task_id: str,
    *,
    handler: str = "ok",
    start_at: datetime | None = None,
    created_at: datetime | None = None,
) -> Task:
    now = utc_now()
    return Task(
        id=task_id,
        handler=handler,
        params={"id": task_id},
        start_at=start_at or now,
        timeout=None,
        status=TaskStatus.PENDING,
        info="",
        error="",
        retries=0,
        created_at=created_at or now,
        updated_at=created_at or now,
    )


def test_insert_and_get_task_roundtrip_keeps_params_and_utc(repository: QueueRepository) -> None:
    start_at = datetime(2026, 10, 18, 12, 30, tzinfo=UTC)
    repository.insert_task(_task("t-1", start_at=start_at))

    task = repository.get_task(task_id="t-1")

    assert task is not None
    assert task.params == {"id": "t-1"}
    assert task.start_at == start_at
    assert task.start_at.tzinfo is not None
    assert task.status is TaskStatus.PENDING
    assert repository.get_task(task_id="missing") is None


def test_find_next_pending_orders_by_start_at_then_created_at(
    repository: QueueRepository,
) -> None:
    base = utc_now() - timedelta(minutes=10)
    repository.insert_task(_task("late", start_at=base + timedelta(minutes=2)))
    repository.insert_task(
        _task("second", start_at=base, created_at=base + timedelta(seconds=2)),
    )
    repository.insert_task(
        _task("first", start_at=base, created_at=base + timedelta(seconds=1)),
    )

    picked = repository.find_next_pending(now=utc_now())

    assert picked is not None
    assert picked.id == "first"


def test_find_next_pending_skips_future_and_non_pending_tasks(
    repository: QueueRepository,
) -> None:
    now = utc_now()
    repository.insert_task(_task("future", start_at=now + timedelta(hours=1)))
    repository.insert_task(_task("claimed", start_at=now - timedelta(seconds=5)))
    assert repository.claim_task(task_id="claimed") is not None

    assert repository.find_next_pending(now=now) is None
    picked = repository.find_next_pending(now=now + timedelta(hours=2))
    assert picked is not None
    assert picked.id == "future"


def test_find_next_pending_applies_include_and_exclude_filters(
    repository: QueueRepository,
) -> None:
    base = utc_now() - timedelta(minutes=1)
    repository.insert_task(_task("a", handler="alpha", start_at=base))
    repository.insert_task(_task("b", handler="beta", start_at=base + timedelta(seconds=1)))

    included = repository.find_next_pending(now=utc_now(), include=("beta",))
    excluded = repository.find_next_pending(now=utc_now(), exclude=("alpha",))
    nothing = repository.find_next_pending(
        now=utc_now(),
        include=("alpha",),
        exclude=("alpha",),
    )

    assert included is not None and included.id == "b"
    assert excluded is not None and excluded.id == "b"
    assert nothing is None


def test_claim_task_moves_to_process_and_counts_attempt(repository: QueueRepository) -> None:
    repository.insert_task(_task("t-claim"))

    claimed = repository.claim_task(task_id="t-claim")
    second = repository.claim_task(task_id="t-claim")

    assert claimed is not None
    assert claimed.status is TaskStatus.PROCESS
    assert claimed.retries == 1
    assert second is None
    stored = repository.get_task(task_id="t-claim")
    assert stored is not None
    assert stored.status is TaskStatus.PROCESS
    assert stored.retries == 1


def test_claim_task_returns_none_for_unknown_id(repository: QueueRepository) -> None:
    assert repository.claim_task(task_id="nope") is None


def test_concurrent_claims_have_exactly_one_winner(db_path: Path) -> None:
    seed = QueueRepository(db_path)
    seed.init_schema()
    seed.insert_task(_task("contested"))
    seed.close()

    start_event = threading.Event()
    results: list[Task | None] = []
    errors: list[BaseException] = []
    lock = threading.Lock()

    def _claim() -> None:
        repository = QueueRepository(db_path)
        try:
            start_event.wait(timeout=2)
            claimed = repository.claim_task(task_id="contested")
            with lock:
                results.append(claimed)
        except BaseException as error:  # noqa: BLE001
            with lock:
                errors.append(error)
        finally:
            repository.close()

    threads = [threading.Thread(target=_claim) for _ in range(6)]
    for thread in threads:
        thread.start()
    start_event.set()
    for thread in threads:
        thread.join(timeout=10)

    assert errors == []
    winners = [task for task in results if task is not None]
    assert len(winners) == 1
    assert winners[0].retries == 1


def test_save_task_overwrites_mutable_fields(repository: QueueRepository) -> None:
    repository.insert_task(_task("t-save"))
    claimed = repository.claim_task(task_id="t-save")
    assert claimed is not None

    claimed.status = TaskStatus.DONE
    claimed.info = "finished"
    repository.save_task(claimed)

    stored = repository.get_task(task_id="t-save")
    assert stored is not None
    assert stored.status is TaskStatus.DONE
    assert stored.info == "finished"
    assert stored.retries == 1


def test_save_task_raises_for_unknown_task(repository: QueueRepository) -> None:
    with pytest.raises(TaskNotFoundError, match="Task not found: ghost"):
        repository.save_task(_task("ghost"))


def test_list_tasks_filters_by_status_and_handler(repository: QueueRepository) -> None:
    base = utc_now() - timedelta(minutes=1)
    repository.insert_task(_task("a", handler="alpha", created_at=base))
    repository.insert_task(_task("b", handler="beta", created_at=base + timedelta(seconds=1)))
    assert repository.claim_task(task_id="a") is not None

    newest_first = repository.list_tasks()
    processing = repository.list_tasks(status=TaskStatus.PROCESS)
    beta = repository.list_tasks(handler="beta")

    assert [task.id for task in newest_first] == ["b", "a"]
    assert [task.id for task in processing] == ["a"]
    assert [task.id for task in beta] == ["b"]


def test_store_errors_are_wrapped_when_schema_is_missing(tmp_path: Path) -> None:
    repository = QueueRepository(tmp_path / "no-schema.db")
    try:
        with pytest.raises(QueueStoreError, match="Queue store operation failed"):
            repository.find_next_pending(now=utc_now())
    finally:
        repository.close()
