"""
Webhook job model for queued delivery.

A job is a transient unit of work: "send this payload to this partner
endpoint". It lives in the queue backend, never in the database.
"""
import uuid
from datetime import datetime, timezone
from typing import Any, Optional
from pydantic import BaseModel, Field


DEFAULT_CONTENT_TYPE = "application/json"


class WebhookJob(BaseModel):
    """
    One delivery job.

    attempt_count is owned by the queue backend; it is incremented each
    time the job is handed to the delivery worker.
    """
    lead_id: str
    partner_id: str
    target_url: str
    payload: Any = Field(default_factory=dict)
    auth_config: Optional[dict[str, Any]] = None
    content_type: Optional[str] = None
    attempt_count: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def effective_content_type(self) -> str:
        return self.content_type or DEFAULT_CONTENT_TYPE

    def to_queue_message(self) -> dict:
        """Serialize for the broker (JSON-safe)."""
        return self.model_dump(mode="json")

    @classmethod
    def from_queue_message(cls, data: dict) -> "WebhookJob":
        return cls.model_validate(data)


def generate_fallback_job_id() -> str:
    """Opaque id for in-memory jobs: mem_<epoch ms>_<random>."""
    millis = int(datetime.now(timezone.utc).timestamp() * 1000)
    return f"mem_{millis}_{uuid.uuid4().hex[:9]}"
