"""Built-in task handlers and the default registry."""

from __future__ import annotations

import json

import httpx

from task_broker.config import Settings
from task_broker.handlers.callback import build_callback_handler
from task_broker.queue.models import Task
from task_broker.queue.process import Process
from task_broker.queue.registry import HandlerRegistry


def echo(process: Process) -> Task:
    """Complete immediately, echoing params into ``info``."""

    return process.done(json.dumps(process.params, ensure_ascii=False, sort_keys=True))


def build_default_registry(
    settings: Settings | None = None,
    *,
    callback_transport: httpx.AsyncBaseTransport | None = None,
) -> HandlerRegistry:
    """Registry with every built-in handler, created once at process start."""

    settings = settings or Settings()
    registry = HandlerRegistry()
    registry.register("echo", echo)
    registry.register(
        "callback",
        build_callback_handler(settings.callback, transport=callback_transport),
    )
    return registry
