"""Queue service: submission, claim, dispatch and outcome persistence."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import replace
from datetime import datetime
from typing import Any
from uuid import uuid4

from task_broker.queue.broker import Broker
from task_broker.queue.models import BrokerOptions, HandleOptions, Task, TaskStatus
from task_broker.queue.process import Process
from task_broker.queue.registry import HandlerRegistry, UnknownHandlerError
from task_broker.queue.repository import QueueRepository
from task_broker.storage.common import utc_now

logger = logging.getLogger(__name__)


class QueueService:
    """Owns every status transition of queue tasks."""

    def __init__(self, *, repository: QueueRepository, registry: HandlerRegistry) -> None:
        self.repository = repository
        self.registry = registry

    def push(
        self,
        handler: str,
        params: dict[str, Any] | None = None,
        timeout: int | None = None,
        start_at: datetime | None = None,
    ) -> Task:
        """Enqueue a pending task for ``handler``."""

        if not self.registry.has(handler):
            raise UnknownHandlerError(handler)
        if timeout is not None and timeout <= 0:
            raise ValueError(f"Task timeout must be positive, got {timeout}")

        now = utc_now()
        task = Task(
            id=str(uuid4()),
            handler=handler,
            params=dict(params or {}),
            start_at=start_at or now,
            timeout=timeout,
            status=TaskStatus.PENDING,
            info="",
            error="",
            retries=0,
            created_at=now,
            updated_at=now,
        )
        self.repository.insert_task(task)
        logger.debug("Task pushed: %s handler=%s start_at=%s", task.id, handler, task.start_at)
        return task

    def handle(self, options: HandleOptions | None = None) -> bool:
        """Run one poll cycle.

        Returns True when a task was claimed and its outcome persisted, False
        when nothing was eligible or another poller won the claim. Store
        failures propagate as ``QueueStoreError``.
        """

        options = options or HandleOptions()
        candidate = self.repository.find_next_pending(
            now=utc_now(),
            include=options.include,
            exclude=options.exclude,
        )
        if candidate is None:
            return False

        claimed = self.repository.claim_task(task_id=candidate.id)
        if claimed is None:
            logger.debug("Claim lost: %s", candidate.id)
            return False

        process = Process(claimed)
        logger.info(
            "Handle task: %s handler=%s attempt=%d",
            claimed.id,
            claimed.handler,
            claimed.retries,
        )
        outcome = self._dispatch(process)
        self.repository.save_task(outcome)
        logger.info("Task %s -> %s", outcome.id, outcome.status.value)
        return True

    def reset_and_restart(self, task: Task) -> Task:
        """Return a task to pending, eligible immediately; retries are kept."""

        now = utc_now()
        updated = replace(
            task,
            status=TaskStatus.PENDING,
            start_at=now,
            error="",
            updated_at=now,
        )
        self.repository.save_task(updated)
        logger.info("Task reset: %s (was %s)", task.id, task.status.value)
        return updated

    def create_broker(self, options: BrokerOptions | None = None) -> Broker:
        """Build a broker after checking its handler filter against the registry."""

        options = options or BrokerOptions()
        missing = self.registry.missing((*options.handler.include, *options.handler.exclude))
        if missing:
            raise UnknownHandlerError(missing[0])
        if options.interval_seconds < 0:
            raise ValueError(
                f"Broker interval must be >= 0, got {options.interval_seconds}",
            )
        return Broker(service=self, options=options)

    def get_task(self, task_id: str) -> Task | None:
        return self.repository.get_task(task_id=task_id)

    def list_tasks(
        self,
        *,
        status: TaskStatus | None = None,
        handler: str | None = None,
        limit: int = 50,
    ) -> list[Task]:
        return self.repository.list_tasks(status=status, handler=handler, limit=limit)

    def _dispatch(self, process: Process) -> Task:
        task = process.task
        started = time.monotonic()
        try:
            handler = self.registry.resolve(task.handler)
            result = handler(process)
            if asyncio.iscoroutine(result):
                result = asyncio.run(result)
        except Exception as error:  # noqa: BLE001
            logger.warning("Task %s handler %s failed: %s", task.id, task.handler, error)
            return process.error(error)
        finally:
            _warn_on_timeout_overrun(task, elapsed=time.monotonic() - started)

        if not isinstance(result, Task) or result.id != task.id:
            return process.error(
                TypeError(f"Handler {task.handler!r} must return the claimed task outcome"),
            )
        status = result.status
        if not isinstance(status, TaskStatus) or not status.is_terminal:
            return process.error(
                ValueError(
                    f"Handler {task.handler!r} returned non-terminal status "
                    f"{getattr(status, 'value', status)!r}",
                ),
            )
        if not isinstance(result.info, str) or not isinstance(result.error, str):
            return process.error(
                TypeError(f"Handler {task.handler!r} returned non-string info or error"),
            )
        return result


def _warn_on_timeout_overrun(task: Task, *, elapsed: float) -> None:
    if task.timeout is not None and elapsed > task.timeout:
        logger.warning(
            "Task %s ran %.1fs, over its declared timeout of %ds",
            task.id,
            elapsed,
            task.timeout,
        )
