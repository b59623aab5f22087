"""Controllers for queue CLI commands."""

from __future__ import annotations

import json
import signal
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import timedelta
from pathlib import Path

from task_broker.config import Settings, normalize_names
from task_broker.handlers import build_default_registry
from task_broker.queue.broker import Broker
from task_broker.queue.models import BrokerOptions, HandleOptions, Task, TaskStatus
from task_broker.queue.registry import HandlerRegistry
from task_broker.queue.repository import QueueRepository, TaskNotFoundError
from task_broker.queue.service import QueueService
from task_broker.storage.common import utc_now


@dataclass(slots=True)
class PushCommand:
    """CLI input for task submission."""

    db_path: Path | None
    handler: str
    params_json: str
    timeout: int | None
    delay_seconds: int


@dataclass(slots=True)
class ListTasksCommand:
    """CLI input for task listing."""

    db_path: Path | None
    status: str | None
    handler: str | None
    limit: int


@dataclass(slots=True)
class InspectTaskCommand:
    """CLI input for task inspection."""

    db_path: Path | None
    task_id: str


@dataclass(slots=True)
class ResetTaskCommand:
    """CLI input for operator reset."""

    db_path: Path | None
    task_id: str


@dataclass(slots=True)
class BrokerCommand:
    """CLI input for broker execution."""

    db_path: Path | None
    interval_seconds: float | None
    include: tuple[str, ...]
    exclude: tuple[str, ...]
    once: bool
    max_tasks: int | None = None
    max_idle_polls: int | None = None


class QueueCliController:
    """Coordinates submission, broker, and inspection CLI operations."""

    def __init__(
        self,
        registry_factory: Callable[[Settings], HandlerRegistry] = build_default_registry,
    ) -> None:
        self.registry_factory = registry_factory

    def push(self, command: PushCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        params = _parse_params(command.params_json)
        start_at = utc_now() + timedelta(seconds=max(0, command.delay_seconds))
        with self._service(settings) as service:
            task = service.push(
                command.handler,
                params,
                timeout=command.timeout,
                start_at=start_at,
            )
        return [
            f"Task pushed: task_id={task.id} handler={task.handler} status={task.status.value}",
            f"Start at: {task.start_at.isoformat()}",
        ]

    def list_tasks(self, command: ListTasksCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        status_filter = _parse_status(command.status)
        with self._service(settings) as service:
            tasks = service.list_tasks(
                status=status_filter,
                handler=command.handler,
                limit=command.limit,
            )

        lines = [f"Tasks: {len(tasks)}"]
        for task in tasks:
            lines.append(
                f"  {task.id} handler={task.handler} status={task.status.value} "
                f"retries={task.retries} start_at={task.start_at.isoformat()}",
            )
        return lines

    def inspect_task(self, command: InspectTaskCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with self._service(settings) as service:
            task = service.get_task(command.task_id)
        if task is None:
            return [f"Task not found: {command.task_id}"]
        return _task_lines(task)

    def reset_task(self, command: ResetTaskCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with self._service(settings) as service:
            task = service.get_task(command.task_id)
            if task is None:
                raise TaskNotFoundError(command.task_id)
            previous = task.status
            updated = service.reset_and_restart(task)
        return [
            f"Task reset: {updated.id} {previous.value} -> {updated.status.value} "
            f"retries={updated.retries}",
        ]

    def run_broker(self, command: BrokerCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        broker_settings = replace(
            settings.broker,
            interval_seconds=(
                command.interval_seconds
                if command.interval_seconds is not None
                else settings.broker.interval_seconds
            ),
            include=normalize_names(command.include) or settings.broker.include,
            exclude=normalize_names(command.exclude) or settings.broker.exclude,
        )
        settings = replace(settings, broker=broker_settings)
        settings.validate_for_broker()

        with self._service(settings) as service:
            broker = service.create_broker(
                BrokerOptions(
                    interval_seconds=broker_settings.interval_seconds,
                    handler=HandleOptions(
                        include=broker_settings.include,
                        exclude=broker_settings.exclude,
                    ),
                ),
            )
            if command.once:
                summary = broker.run(max_tasks=1, max_idle_polls=1)
            else:
                with _stop_on_signals(broker):
                    summary = broker.run(
                        max_tasks=command.max_tasks,
                        max_idle_polls=command.max_idle_polls,
                    )

        return [
            "Broker summary: "
            f"polls={summary.polls} handled={summary.handled} "
            f"idle_polls={summary.idle_polls} failed_polls={summary.failed_polls}",
        ]

    def list_handlers(self) -> list[str]:
        registry = self.registry_factory(Settings.from_env())
        names = registry.names()
        return [f"Handlers: {len(names)}", *(f"  {name}" for name in names)]

    @contextmanager
    def _service(self, settings: Settings) -> Iterator[QueueService]:
        repository = QueueRepository(
            settings.db_path,
            sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
        )
        try:
            repository.init_schema()
            yield QueueService(repository=repository, registry=self.registry_factory(settings))
        finally:
            repository.close()


def _task_lines(task: Task) -> list[str]:
    return [
        f"Task: {task.id}",
        f"Handler: {task.handler}",
        f"Status: {task.status.value}",
        f"Retries: {task.retries}",
        f"Start at: {task.start_at.isoformat()}",
        f"Timeout: {task.timeout if task.timeout is not None else '-'}",
        f"Params: {json.dumps(task.params, ensure_ascii=False, sort_keys=True)}",
        f"Info: {task.info or '-'}",
        f"Error: {task.error or '-'}",
        f"Created: {task.created_at.isoformat()}",
        f"Updated: {task.updated_at.isoformat()}",
    ]


def _parse_status(value: str | None) -> TaskStatus | None:
    if value is None:
        return None
    return TaskStatus(value.strip().lower())


def _parse_params(raw: str) -> dict[str, object]:
    try:
        parsed = json.loads(raw or "{}")
    except json.JSONDecodeError as error:
        raise ValueError(f"Task params must be valid JSON: {error}") from error
    if not isinstance(parsed, dict):
        raise ValueError("Task params must be a JSON object.")
    return parsed


@contextmanager
def _stop_on_signals(broker: Broker) -> Iterator[None]:
    if not hasattr(signal, "SIGTERM"):
        yield
        return

    def _handler(_signum: int, _: object | None) -> None:
        broker.stop()

    try:
        original_sigint = signal.signal(signal.SIGINT, _handler)
        original_sigterm = signal.signal(signal.SIGTERM, _handler)
    except ValueError:
        # Signal handlers can only be installed in main thread.
        yield
        return

    try:
        yield
    finally:
        signal.signal(signal.SIGINT, original_sigint)
        signal.signal(signal.SIGTERM, original_sigterm)
