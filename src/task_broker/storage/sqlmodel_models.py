"""SQLModel ORM tables for queue storage."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, Index, Text
from sqlmodel import Field, SQLModel


class QueueTask(SQLModel, table=True):
    __tablename__ = "queue_tasks"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_queue_tasks_poll", "status", "start_at"),)

    id: str = Field(primary_key=True)
    handler: str = Field(index=True)
    params_json: str = Field(default="{}", sa_column=Column(Text, nullable=False))
    start_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    timeout: int | None = None
    status: str
    info: str = Field(default="", sa_column=Column(Text, nullable=False))
    error: str = Field(default="", sa_column=Column(Text, nullable=False))
    retries: int = Field(default=0)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
