"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from task_broker.queue.models import Task
from task_broker.queue.process import Process
from task_broker.queue.registry import HandlerRegistry
from task_broker.queue.repository import QueueRepository
from task_broker.queue.service import QueueService


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "queue.db"


@pytest.fixture()
def repository(db_path: Path) -> Iterator[QueueRepository]:
    repo = QueueRepository(db_path)
    repo.init_schema()
    try:
        yield repo
    finally:
        repo.close()


@pytest.fixture()
def registry() -> HandlerRegistry:
    """Registry with a succeeding ``ok`` and a raising ``boom`` handler."""

    registry = HandlerRegistry()

    @registry.register("ok")
    def ok(process: Process) -> Task:
        return process.done(f"ok:{process.params.get('n', '')}")

    @registry.register("boom")
    def boom(process: Process) -> Task:
        raise RuntimeError("handler exploded")

    return registry


@pytest.fixture()
def service(repository: QueueRepository, registry: HandlerRegistry) -> QueueService:
    return QueueService(repository=repository, registry=registry)
