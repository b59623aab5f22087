"""Runtime configuration for the queue, brokers and built-in handlers."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path


@dataclass(slots=True)
class BrokerSettings:
    """Broker poll settings."""

    interval_seconds: float = 1.0
    include: tuple[str, ...] = ()
    exclude: tuple[str, ...] = ()


@dataclass(slots=True)
class CallbackSettings:
    """Webhook delivery handler settings."""

    timeout_seconds: float = 30.0
    batch_size: int = 100
    max_retries: int = 3


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    db_path: Path = Path(".task_broker.db")
    sqlite_busy_timeout_ms: int = 5_000
    broker: BrokerSettings = field(default_factory=BrokerSettings)
    callback: CallbackSettings = field(default_factory=CallbackSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            db_path=db_path or Path(os.getenv("TASK_BROKER_DB_PATH", ".task_broker.db")),
            sqlite_busy_timeout_ms=int(os.getenv("TASK_BROKER_SQLITE_BUSY_TIMEOUT_MS", "5000")),
            broker=BrokerSettings(
                interval_seconds=float(os.getenv("TASK_BROKER_INTERVAL_SECONDS", "1.0")),
                include=_env_csv("TASK_BROKER_INCLUDE"),
                exclude=_env_csv("TASK_BROKER_EXCLUDE"),
            ),
            callback=CallbackSettings(
                timeout_seconds=float(
                    os.getenv("TASK_BROKER_CALLBACK_TIMEOUT_SECONDS", "30.0"),
                ),
                batch_size=int(os.getenv("TASK_BROKER_CALLBACK_BATCH_SIZE", "100")),
                max_retries=int(os.getenv("TASK_BROKER_CALLBACK_MAX_RETRIES", "3")),
            ),
        )

    def validate_for_broker(self) -> None:
        """Raise configuration error before any polling starts."""

        if self.sqlite_busy_timeout_ms <= 0:
            raise ValueError("TASK_BROKER_SQLITE_BUSY_TIMEOUT_MS must be > 0.")
        if self.broker.interval_seconds < 0:
            raise ValueError("TASK_BROKER_INTERVAL_SECONDS must be >= 0.")
        overlap = sorted(set(self.broker.include) & set(self.broker.exclude))
        if overlap:
            raise ValueError(
                "Handlers cannot be both included and excluded: " + ", ".join(overlap),
            )
        if self.callback.timeout_seconds <= 0:
            raise ValueError("TASK_BROKER_CALLBACK_TIMEOUT_SECONDS must be > 0.")
        if self.callback.batch_size <= 0:
            raise ValueError("TASK_BROKER_CALLBACK_BATCH_SIZE must be a positive integer.")
        if self.callback.max_retries < 0:
            raise ValueError("TASK_BROKER_CALLBACK_MAX_RETRIES must be >= 0.")


def _env_csv(name: str) -> tuple[str, ...]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return ()
    return normalize_names(raw.split(","))


def normalize_names(values: tuple[str, ...] | list[str]) -> tuple[str, ...]:
    """Strip and de-duplicate names, preserving first-seen order."""

    deduped: list[str] = []
    seen: set[str] = set()
    for value in values:
        normalized = value.strip()
        if not normalized or normalized in seen:
            continue
        seen.add(normalized)
        deduped.append(normalized)
    return tuple(deduped)
