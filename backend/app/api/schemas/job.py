"""Import job request/response payloads."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class JobCreate(BaseModel):
    source_id: str = Field(..., min_length=1, description="Import source to pull the catalog from")
    type: Literal["full", "delta"] = "full"
    created_by: str = Field(..., min_length=1)


class JobStatus(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    source_id: str
    type: str = Field(..., description="full|delta")
    status: str = Field(..., description="queued|running|success|failed")
    progress: float | None = Field(None, description="0-1 range for UI progress bars")
    message: str | None = None
    created_by: str
    total_items: int = 0
    processed_items: int = 0
    error_count: int = 0
    attempt: int = 0
    last_checkpoint: str | None = None
    created_at: datetime | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None


class JobLogEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    level: str
    message: str
    details: dict | None = None
    created_at: datetime


class JobErrorEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    stage: str
    error_message: str
    error_code: str | None = None
    external_id: str | None = None
    retry_count: int = 0
    resolved: bool = False
    created_at: datetime
