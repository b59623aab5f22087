"""Execution context handed to task handlers."""

from __future__ import annotations

from dataclasses import replace
from typing import Any

from task_broker.queue.models import Task, TaskStatus
from task_broker.storage.common import utc_now


class Process:
    """Wraps one claimed task and builds its terminal outcome.

    ``done`` and ``error`` return new ``Task`` values and never touch storage;
    the queue service persists whichever outcome comes back.
    """

    def __init__(self, task: Task) -> None:
        self.task = task

    @property
    def id(self) -> str:
        return self.task.id

    @property
    def handler(self) -> str:
        return self.task.handler

    @property
    def params(self) -> dict[str, Any]:
        return self.task.params

    def done(self, info: str | None = "") -> Task:
        """Successful outcome with an optional annotation."""

        return replace(
            self.task,
            status=TaskStatus.DONE,
            info="" if info is None else str(info),
            updated_at=utc_now(),
        )

    def error(self, failure: object) -> Task:
        """Failed outcome carrying a non-empty description of ``failure``."""

        return replace(
            self.task,
            status=TaskStatus.ERROR,
            error=describe_failure(failure),
            updated_at=utc_now(),
        )


def describe_failure(failure: object) -> str:
    description = str(failure).strip()
    if description:
        return description
    if isinstance(failure, BaseException):
        return type(failure).__name__
    return "Unknown failure"
