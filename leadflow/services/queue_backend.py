"""
Queue backend interface.

Both backends (arq on Redis, in-process fallback) expose the same
capability surface; the delivery service picks one at startup.
"""
import abc
from typing import Literal, Optional
from pydantic import BaseModel

from leadflow.models.job import WebhookJob


class QueueStats(BaseModel):
    """Queue counters. Fields are None when the backend cannot report them."""
    type: Literal["durable", "fallback"]
    waiting: Optional[int] = None
    active: Optional[int] = None
    completed: Optional[int] = None
    failed: Optional[int] = None
    error: Optional[str] = None


class QueueBackend(abc.ABC):
    """Stores webhook jobs and hands them to the delivery worker."""

    kind: str

    @abc.abstractmethod
    async def enqueue(self, job: WebhookJob) -> str:
        """Store a job. Returns an opaque job id."""

    @abc.abstractmethod
    async def stats(self) -> QueueStats:
        """Current queue counters."""

    async def start(self) -> None:
        """Begin consuming jobs."""

    async def close(self) -> None:
        """Stop consuming and release resources."""
