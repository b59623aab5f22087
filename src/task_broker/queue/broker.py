"""Poll/backoff loop over one queue service."""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from task_broker.queue.models import BrokerOptions, BrokerRunSummary
from task_broker.queue.repository import QueueStoreError

if TYPE_CHECKING:
    from task_broker.queue.service import QueueService

logger = logging.getLogger(__name__)


class Broker:
    """Repeatedly handles tasks, backing off for ``interval_seconds`` when idle.

    The broker holds no lock: exclusivity comes from the store's conditional
    claim, so any number of brokers may poll the same database. ``stop()``
    is cooperative and never interrupts a handler that is already running.
    """

    def __init__(self, *, service: QueueService, options: BrokerOptions) -> None:
        self.service = service
        self.options = options
        self._started = False
        self._generation = 0
        self._wakeup = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def is_started(self) -> bool:
        return self._started

    def start(self) -> None:
        """Start polling in a background thread.

        A no-op while already started. After ``stop()`` the new thread first
        waits for the previous one to finish its in-flight task.
        """

        if self._started and self._thread is not None and self._thread.is_alive():
            return
        generation, wakeup = self._begin()
        previous = self._thread
        self._thread = threading.Thread(
            target=self._run_started,
            args=(generation, wakeup, previous),
            daemon=True,
            name="task-broker",
        )
        self._thread.start()
        logger.info("Broker thread started")

    def stop(self) -> None:
        """Request the loop to exit at its next check."""

        self._started = False
        self._wakeup.set()

    def join(self, timeout: float | None = None) -> bool:
        """Wait for the background thread; returns True once it has exited."""

        if self._thread is None:
            return True
        self._thread.join(timeout=timeout)
        if self._thread.is_alive():
            return False
        self._thread = None
        logger.info("Broker thread stopped")
        return True

    def run(
        self,
        *,
        max_tasks: int | None = None,
        max_idle_polls: int | None = None,
    ) -> BrokerRunSummary:
        """Run the loop in the calling thread.

        Args:
            max_tasks: Return after handling this many tasks (None = unlimited).
            max_idle_polls: Return after this many consecutive polls without
                work, failed polls included (None = keep polling until stopped).
        """

        generation, wakeup = self._begin()
        return self._loop(
            generation,
            wakeup,
            max_tasks=max_tasks,
            max_idle_polls=max_idle_polls,
        )

    def _begin(self) -> tuple[int, threading.Event]:
        self._generation += 1
        self._wakeup = threading.Event()
        self._started = True
        return self._generation, self._wakeup

    def _run_started(
        self,
        generation: int,
        wakeup: threading.Event,
        previous: threading.Thread | None,
    ) -> None:
        if previous is not None:
            previous.join()
        self._loop(generation, wakeup, max_tasks=None, max_idle_polls=None)

    def _is_current(self, generation: int) -> bool:
        return self._started and generation == self._generation

    def _loop(
        self,
        generation: int,
        wakeup: threading.Event,
        *,
        max_tasks: int | None,
        max_idle_polls: int | None,
    ) -> BrokerRunSummary:
        summary = BrokerRunSummary()
        consecutive_idle = 0
        while self._is_current(generation):
            if max_tasks is not None and summary.handled >= max_tasks:
                break

            summary.polls += 1
            try:
                handled = self.service.handle(self.options.handler)
            except QueueStoreError:
                logger.exception("Broker poll failed")
                summary.failed_polls += 1
            else:
                if handled:
                    summary.handled += 1
                    consecutive_idle = 0
                    continue
                summary.idle_polls += 1

            consecutive_idle += 1
            if max_idle_polls is not None and consecutive_idle >= max_idle_polls:
                break
            self._backoff(wakeup)

        if generation == self._generation:
            self._started = False
        return summary

    def _backoff(self, wakeup: threading.Event) -> None:
        if self.options.interval_seconds > 0:
            wakeup.wait(timeout=self.options.interval_seconds)
