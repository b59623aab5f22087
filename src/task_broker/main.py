"""CLI entrypoint for task-broker."""

import logging
from collections.abc import Callable
from pathlib import Path

import rich_click as click

from task_broker import __version__
from task_broker.logging_setup import setup_logging
from task_broker.queue.controllers import (
    BrokerCommand,
    InspectTaskCommand,
    ListTasksCommand,
    PushCommand,
    QueueCliController,
    ResetTaskCommand,
)
from task_broker.queue.repository import QueueStoreError

click.rich_click.USE_MARKDOWN = True
QUEUE_CONTROLLER = QueueCliController()

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


@click.group()
@click.version_option(version=__version__, prog_name="task-broker")
@click.option(
    "--log-level",
    type=click.Choice(_LOG_LEVELS, case_sensitive=False),
    default="INFO",
    show_default=True,
    help="Log level for stderr output.",
)
def task_broker(log_level: str) -> None:
    """Persisted task queue CLI."""

    setup_logging(getattr(logging, log_level.upper()))


@task_broker.command("push")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--handler", required=True, help="Registered handler name.")
@click.option(
    "--params",
    "params_json",
    default="{}",
    show_default=True,
    help="Task params as a JSON object.",
)
@click.option(
    "--timeout",
    type=click.IntRange(min=1),
    default=None,
    help="Advisory execution timeout in seconds.",
)
@click.option(
    "--delay-seconds",
    type=click.IntRange(min=0),
    default=0,
    show_default=True,
    help="Delay before the task becomes eligible.",
)
def push(
    db_path: Path | None,
    handler: str,
    params_json: str,
    timeout: int | None,
    delay_seconds: int,
) -> None:
    """Submit one task to the queue."""

    _emit_lines(
        _invoke(
            lambda: QUEUE_CONTROLLER.push(
                PushCommand(
                    db_path=db_path,
                    handler=handler,
                    params_json=params_json,
                    timeout=timeout,
                    delay_seconds=delay_seconds,
                ),
            ),
        ),
    )


@task_broker.command("tasks")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--status",
    type=click.Choice(["pending", "process", "done", "error"], case_sensitive=False),
    default=None,
    help="Optional status filter.",
)
@click.option("--handler", default=None, help="Optional handler filter.")
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=500),
    default=20,
    show_default=True,
    help="Max tasks to print.",
)
def tasks(db_path: Path | None, status: str | None, handler: str | None, limit: int) -> None:
    """List queue tasks, newest first."""

    _emit_lines(
        _invoke(
            lambda: QUEUE_CONTROLLER.list_tasks(
                ListTasksCommand(
                    db_path=db_path,
                    status=status,
                    handler=handler,
                    limit=limit,
                ),
            ),
        ),
    )


@task_broker.command("inspect")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--task-id", required=True, help="Task id.")
def inspect(db_path: Path | None, task_id: str) -> None:
    """Show one task with its outcome."""

    _emit_lines(
        _invoke(
            lambda: QUEUE_CONTROLLER.inspect_task(
                InspectTaskCommand(db_path=db_path, task_id=task_id),
            ),
        ),
    )


@task_broker.command("reset")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--task-id", required=True, help="Task id.")
def reset(db_path: Path | None, task_id: str) -> None:
    """Reset a task to pending and make it eligible immediately."""

    _emit_lines(
        _invoke(
            lambda: QUEUE_CONTROLLER.reset_task(
                ResetTaskCommand(db_path=db_path, task_id=task_id),
            ),
        ),
    )


@task_broker.command("broker")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--interval",
    "interval_seconds",
    type=click.FloatRange(min=0),
    default=None,
    help="Idle backoff in seconds (defaults to TASK_BROKER_INTERVAL_SECONDS).",
)
@click.option(
    "--include",
    multiple=True,
    help="Only handle these handler names. Can be repeated.",
)
@click.option(
    "--exclude",
    multiple=True,
    help="Never handle these handler names. Can be repeated.",
)
@click.option("--once/--loop", default=True, show_default=True, help="Run one poll or loop.")
@click.option(
    "--max-tasks",
    type=click.IntRange(min=1),
    default=None,
    help="Optional max tasks to handle in loop mode.",
)
@click.option(
    "--max-idle-polls",
    type=click.IntRange(min=1),
    default=None,
    help="Exit loop mode after this many consecutive idle polls.",
)
def broker(  # noqa: PLR0913
    db_path: Path | None,
    interval_seconds: float | None,
    include: tuple[str, ...],
    exclude: tuple[str, ...],
    once: bool,
    max_tasks: int | None,
    max_idle_polls: int | None,
) -> None:
    """Run a broker over the queue."""

    _emit_lines(
        _invoke(
            lambda: QUEUE_CONTROLLER.run_broker(
                BrokerCommand(
                    db_path=db_path,
                    interval_seconds=interval_seconds,
                    include=include,
                    exclude=exclude,
                    once=once,
                    max_tasks=max_tasks,
                    max_idle_polls=max_idle_polls,
                ),
            ),
        ),
    )


@task_broker.command("handlers")
def handlers() -> None:
    """List registered handler names."""

    _emit_lines(QUEUE_CONTROLLER.list_handlers())


def _invoke(action: Callable[[], list[str]]) -> list[str]:
    try:
        return action()
    except (LookupError, ValueError, QueueStoreError) as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    task_broker()
