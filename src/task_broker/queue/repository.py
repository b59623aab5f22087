"""Persistent store for queue tasks."""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

from sqlalchemy import update as sa_update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select

from task_broker.queue.models import Task, TaskStatus
from task_broker.storage.alembic_runner import upgrade_head
from task_broker.storage.common import (
    build_sqlite_engine,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from task_broker.storage.sqlmodel_models import QueueTask


class QueueStoreError(RuntimeError):
    """Storage-level failure, distinct from an empty queue or a lost claim."""


class TaskNotFoundError(QueueStoreError):
    def __init__(self, task_id: str) -> None:
        self.task_id = task_id
        super().__init__(f"Task not found: {task_id}")


class QueueRepository:
    """Queue persistence facade backed by SQLModel + SQLite."""

    def __init__(self, db_path: Path, *, sqlite_busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=sqlite_busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        try:
            upgrade_head(self.db_path)
        except SQLAlchemyError as error:
            raise QueueStoreError(f"Schema migration failed: {error}") from error

    def insert_task(self, task: Task) -> None:
        """Persist a new task."""

        with self._session() as session:
            session.add(
                QueueTask(
                    id=task.id,
                    handler=task.handler,
                    params_json=json.dumps(task.params, ensure_ascii=False, sort_keys=True),
                    start_at=to_db_datetime(task.start_at),
                    timeout=task.timeout,
                    status=task.status.value,
                    info=task.info,
                    error=task.error,
                    retries=task.retries,
                    created_at=to_db_datetime(task.created_at),
                    updated_at=to_db_datetime(task.updated_at),
                ),
            )
            session.commit()

    def find_next_pending(
        self,
        *,
        now: datetime,
        include: tuple[str, ...] = (),
        exclude: tuple[str, ...] = (),
    ) -> Task | None:
        """Return the earliest eligible pending task without locking it."""

        statement = select(QueueTask).where(
            QueueTask.status == TaskStatus.PENDING.value,
            col(QueueTask.start_at) <= to_db_datetime(now),
        )
        if include:
            statement = statement.where(col(QueueTask.handler).in_(include))
        if exclude:
            statement = statement.where(col(QueueTask.handler).not_in(exclude))
        statement = statement.order_by(
            col(QueueTask.start_at).asc(),
            col(QueueTask.created_at).asc(),
        ).limit(1)

        with self._session() as session:
            row = session.exec(statement).first()
            return _to_task(row) if row is not None else None

    def claim_task(self, *, task_id: str) -> Task | None:
        """Atomically move a pending task to process.

        Returns the claimed task, or None when another poller got it first.
        """

        now = utc_now()
        with self._session() as session:
            result = session.exec(
                sa_update(QueueTask)
                .where(
                    col(QueueTask.id) == task_id,
                    col(QueueTask.status) == TaskStatus.PENDING.value,
                )
                .values(
                    status=TaskStatus.PROCESS.value,
                    retries=QueueTask.retries + 1,
                    updated_at=to_db_datetime(now),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return None

            claimed = session.exec(select(QueueTask).where(QueueTask.id == task_id)).one()
            session.commit()
            return _to_task(claimed)

    def save_task(self, task: Task) -> None:
        """Unconditionally write every mutable field of ``task``."""

        with self._session() as session:
            result = session.exec(
                sa_update(QueueTask)
                .where(col(QueueTask.id) == task.id)
                .values(
                    start_at=to_db_datetime(task.start_at),
                    timeout=task.timeout,
                    status=task.status.value,
                    info=task.info,
                    error=task.error,
                    retries=task.retries,
                    updated_at=to_db_datetime(task.updated_at),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                raise TaskNotFoundError(task.id)
            session.commit()

    def get_task(self, *, task_id: str) -> Task | None:
        with self._session() as session:
            row = session.exec(select(QueueTask).where(QueueTask.id == task_id)).one_or_none()
            return _to_task(row) if row is not None else None

    def list_tasks(
        self,
        *,
        status: TaskStatus | None = None,
        handler: str | None = None,
        limit: int = 50,
    ) -> list[Task]:
        """List recent tasks, optionally filtered by status and handler."""

        statement = select(QueueTask)
        if status is not None:
            statement = statement.where(QueueTask.status == status.value)
        if handler is not None:
            statement = statement.where(QueueTask.handler == handler)
        statement = statement.order_by(col(QueueTask.created_at).desc()).limit(limit)

        with self._session() as session:
            rows = session.exec(statement).all()
            return [_to_task(row) for row in rows]

    @contextmanager
    def _session(self) -> Iterator[Session]:
        try:
            with Session(self.engine) as session:
                yield session
        except SQLAlchemyError as error:
            raise QueueStoreError(f"Queue store operation failed: {error}") from error


def _to_task(row: QueueTask) -> Task:
    params = json.loads(row.params_json) if row.params_json else {}
    return Task(
        id=row.id,
        handler=row.handler,
        params=params if isinstance(params, dict) else {},
        start_at=to_utc_aware_datetime(row.start_at),
        timeout=row.timeout,
        status=TaskStatus(row.status),
        info=row.info,
        error=row.error,
        retries=row.retries,
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )
