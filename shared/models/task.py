"""Pydantic models for background tasks."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import Field

from shared.models.base import CamelModel
from shared.models.document import utc_now


class TaskStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    DEAD = "dead"


class TaskInfo(CamelModel):
    """State of one submitted task.

    Attributes:
        attempts:   Number of started runs, including the current one.
        last_error: Message of the most recent failure, kept after a later success.
        result:     Return value of the job once it succeeded.
    """

    task_id: str
    name: str
    status: TaskStatus = TaskStatus.QUEUED
    attempts: int = 0
    max_attempts: int = 1
    last_error: str | None = None
    result: Any = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def is_finished(self) -> bool:
        return self.status in (TaskStatus.SUCCEEDED, TaskStatus.DEAD)
