"""
Filter queue data shapes - one QueueItem per unit of work, plus the aggregate
stats record and the per-post result record that outlives pruned items.
"""
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator


class QueueStatus(str, Enum):
    PENDING = "pending"
    LEASED = "leased"
    COMPLETED = "completed"
    FAILED = "failed"


class PostPayload(BaseModel):
    """A candidate post handed to the producer. `selftext` is accepted as an alias for body."""

    id: str = Field(min_length=1)
    title: str = ""
    body: str = Field("", validation_alias=AliasChoices("body", "selftext"))

    @field_validator("id", mode="before")
    @classmethod
    def stringify_numeric_id(cls, v):
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v


class ClassificationResult(BaseModel):
    relevant: bool
    reasoning: str = ""
    confidence: float = Field(0.0, ge=0.0, le=1.0)


class QueueItem(BaseModel):
    key: str
    post_id: str
    title: str = ""
    body: str = ""
    keyword: str
    status: QueueStatus = QueueStatus.PENDING
    created_at: datetime
    lease_holder: Optional[str] = None
    lease_started_at: Optional[datetime] = None
    lease_resets: int = 0
    completed_at: Optional[datetime] = None
    completed_by: Optional[str] = None
    failed_at: Optional[datetime] = None
    result: Optional[ClassificationResult] = None

    def to_store(self) -> dict:
        return self.model_dump(mode="json")

    def clear_lease(self) -> None:
        self.lease_holder = None
        self.lease_started_at = None


class QueueStats(BaseModel):
    """Advisory counters, maintained incrementally. Drift under crashes is accepted."""

    total: int = 0
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0


class ResultRecord(BaseModel):
    post_id: str
    relevant: bool
    reasoning: str = ""
    confidence: float = 0.0
    keyword: str
    queue_key: str
    worker_id: str
    completed_at: datetime


class ClaimedItem(BaseModel):
    key: str
    item: QueueItem


class EnqueueResult(BaseModel):
    count: int
    keys: list[str]
    items: list[QueueItem]
