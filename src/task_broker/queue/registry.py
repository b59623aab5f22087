"""Handler registry: maps handler names to callables.

Handlers receive a ``Process`` and return a terminal ``Task`` built with
``process.done(...)`` or ``process.error(...)``. Both plain functions and
coroutine functions are accepted. The registry is filled once at process
start and then only read.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import TYPE_CHECKING, Union

if TYPE_CHECKING:
    from task_broker.queue.models import Task
    from task_broker.queue.process import Process

logger = logging.getLogger(__name__)

HandlerFunc = Callable[["Process"], Union["Task", Awaitable["Task"]]]


class UnknownHandlerError(LookupError):
    """Raised when a handler name is not registered."""

    def __init__(self, handler_name: str) -> None:
        self.handler_name = handler_name
        super().__init__(f'Invalid queue handler "{handler_name}"')


class DuplicateHandlerError(ValueError):
    """Raised when a handler name is already registered."""

    def __init__(self, handler_name: str) -> None:
        self.handler_name = handler_name
        super().__init__(f"Handler already registered: {handler_name}")


class HandlerRegistry:
    """Static name -> handler table."""

    def __init__(self) -> None:
        self._handlers: dict[str, HandlerFunc] = {}

    def register(
        self,
        name: str,
        func: HandlerFunc | None = None,
    ) -> HandlerFunc | Callable[[HandlerFunc], HandlerFunc]:
        """Register ``func`` under ``name``; without ``func`` acts as a decorator.

        Example:
            @registry.register("echo")
            def echo(process: Process) -> Task:
                return process.done()
        """

        def decorator(handler: HandlerFunc) -> HandlerFunc:
            if not name or not name.strip():
                raise ValueError("Handler name is required")
            if name in self._handlers:
                raise DuplicateHandlerError(name)
            self._handlers[name] = handler
            logger.debug(
                "Registered handler: %s (%s)",
                name,
                getattr(handler, "__name__", handler),
            )
            return handler

        if func is not None:
            return decorator(func)
        return decorator

    def has(self, name: str) -> bool:
        return name in self._handlers

    def resolve(self, name: str) -> HandlerFunc:
        handler = self._handlers.get(name)
        if handler is None:
            raise UnknownHandlerError(name)
        return handler

    def names(self) -> list[str]:
        return sorted(self._handlers)

    def missing(self, names: Iterable[str]) -> list[str]:
        """Return the given names that are not registered, in input order."""

        return [name for name in names if name not in self._handlers]

    def __contains__(self, name: object) -> bool:
        return name in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)
