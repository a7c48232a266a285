# ============================================================================
# src/bloodwork_analysis/config/queue_config.py
# ============================================================================
"""
Work Queue Settings
- Delivery attempts
- Exponential backoff
- Worker pool size
"""

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

class QueueSettings(BaseSettings):
    QUEUE_MAX_ATTEMPTS: int = Field(
        default=3,
        description="Delivery attempts per work item before the job is failed"
    )
    QUEUE_BACKOFF_SECONDS: float = Field(
        default=2.0,
        description="Base delay for exponential redelivery backoff"
    )
    WORKER_CONCURRENCY: int = Field(
        default=1,
        description="Number of pipeline workers consuming the queue"
    )

    @field_validator("QUEUE_MAX_ATTEMPTS", "WORKER_CONCURRENCY")
    @classmethod
    def at_least_one(cls, v):
        if v < 1:
            raise ValueError("must be at least 1")
        return v

queue_settings = QueueSettings()
