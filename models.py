# models.py
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class JobStatus(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    THROTTLED = "THROTTLED"
    # Local only: tracking gave up after repeated poll failures
    ERROR = "ERROR"


TERMINAL_STATUSES = frozenset(
    {JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.CANCELLED, JobStatus.ERROR}
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class JobRecord(BaseModel):
    """One image->video generation task as seen by this service.

    Field names follow the vendor's task payload (camelCase on the wire),
    so a task fetched from Runway validates straight into a record.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    status: JobStatus
    created_at: datetime = Field(default_factory=utc_now, alias="createdAt")
    output: List[str] = Field(default_factory=list)
    progress: Optional[float] = None
    failure: Optional[str] = None
    failure_code: Optional[str] = Field(default=None, alias="failureCode")
    error: Optional[str] = None

    @field_validator("status", mode="before")
    @classmethod
    def _normalise_status(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip().upper()
            if value == "CANCELED":
                return "CANCELLED"
        return value

    @field_validator("output", mode="before")
    @classmethod
    def _normalise_output(cls, value: Any) -> Any:
        # some responses use a dict with "uri", or null before completion
        if value is None:
            return []
        if isinstance(value, dict):
            return [value["uri"]] if value.get("uri") else []
        return value

    @field_validator("created_at")
    @classmethod
    def _ensure_aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_storage(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_storage(cls, data: Dict[str, Any]) -> "JobRecord":
        return cls.model_validate(data)


class GenerateRequest(BaseModel):
    url: Optional[str] = Field(None, description="Public image URL or data: URI")
