"""Domain models for the task queue."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class TaskStatus(str, Enum):
    """Durable task lifecycle states."""

    PENDING = "pending"
    PROCESS = "process"
    DONE = "done"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in {TaskStatus.DONE, TaskStatus.ERROR}


@dataclass(slots=True)
class Task:
    """One unit of work as stored in the queue."""

    id: str
    handler: str
    params: dict[str, Any]
    start_at: datetime
    timeout: int | None
    status: TaskStatus
    info: str
    error: str
    retries: int
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class HandleOptions:
    """Handler filter applied when selecting the next task."""

    include: tuple[str, ...] = ()
    exclude: tuple[str, ...] = ()


@dataclass(slots=True)
class BrokerOptions:
    """Broker poll settings."""

    interval_seconds: float = 1.0
    handler: HandleOptions = field(default_factory=HandleOptions)


@dataclass(slots=True)
class BrokerRunSummary:
    """Aggregate broker counters for CLI reporting."""

    polls: int = 0
    handled: int = 0
    idle_polls: int = 0
    failed_polls: int = 0
