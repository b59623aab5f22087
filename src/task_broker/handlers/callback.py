"""Webhook delivery handler: posts task events to a callback URL in batches."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from task_broker.config import CallbackSettings
from task_broker.queue.models import Task
from task_broker.queue.process import Process
from task_broker.queue.registry import HandlerFunc

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "task-broker-callback/1.0"


def chunk(items: list[Any], size: int) -> list[list[Any]]:
    """Split ``items`` into consecutive batches of at most ``size``."""

    if size <= 0:
        raise ValueError(f"Batch size must be positive, got {size}")
    return [items[index : index + size] for index in range(0, len(items), size)]


def build_callback_handler(
    settings: CallbackSettings,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> HandlerFunc:
    """Create the ``callback`` handler bound to delivery settings.

    Task params:
        url: Absolute callback URL.
        event_name: Name sent alongside every batch.
        events: List of JSON-serializable event payloads.
    """

    async def call_callback(process: Process) -> Task:
        url, event_name, events = _parse_params(process)
        batches = chunk(events, settings.batch_size)
        if not batches:
            return process.done("No events to deliver")

        async with httpx.AsyncClient(
            timeout=httpx.Timeout(settings.timeout_seconds, connect=10.0),
            headers={"User-Agent": DEFAULT_USER_AGENT},
            transport=transport or httpx.AsyncHTTPTransport(retries=settings.max_retries),
        ) as client:
            try:
                responses = await asyncio.gather(
                    *(
                        client.post(url, json={"eventName": event_name, "events": batch})
                        for batch in batches
                    ),
                )
                for response in responses:
                    response.raise_for_status()
            except httpx.HTTPError as error:
                logger.warning("Callback delivery to %s failed: %s", url, error)
                return process.error(error)

        return process.done(f"Delivered {len(events)} events in {len(batches)} batches")

    return call_callback


def _parse_params(process: Process) -> tuple[str, str, list[Any]]:
    params = process.params
    url = params.get("url")
    if not isinstance(url, str) or not url.strip():
        raise ValueError(f'Callback url is required for task "{process.id}"')
    events = params.get("events") or []
    if not isinstance(events, list):
        raise ValueError(f'Callback events must be a list for task "{process.id}"')
    return url.strip(), str(params.get("event_name", "")), events
