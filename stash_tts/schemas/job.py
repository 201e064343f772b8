"""
Pydantic schemas for TTS job API operations.
"""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class TtsJobCreate(BaseModel):
    """Schema for requesting audio for an item."""
    voice: Optional[str] = Field(None, description='Voice name (blank = default voice)')
    format: Optional[str] = Field(None, description='mp3 (default) or wav')
    wait: bool = Field(False, description='Block until the job finishes')


class JobResponse(BaseModel):
    """Schema for a TTS job."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    item_id: int
    status: Literal['queued', 'running', 'succeeded', 'failed']
    voice: str
    format: str
    error_code: Optional[str]
    error_message: Optional[str]
    output_file_name: Optional[str]
    created_at: datetime
    started_at: Optional[datetime]
    finished_at: Optional[datetime]
    updated_at: datetime


class EnqueueResponse(BaseModel):
    """Returned when a job is queued (or an active one already exists)."""
    ok: bool = True
    created: bool
    job: JobResponse
    poll_interval_ms: int
    poll_url: str


class CompletedJobResponse(BaseModel):
    """Returned by POST /items/{id}/tts with wait=true once the job succeeded."""
    ok: bool = True
    job: JobResponse
    playback_url: str
    download_url: str


class JobDetailResponse(BaseModel):
    ok: bool = True
    job: JobResponse


class Paging(BaseModel):
    limit: int
    offset: int
    returned: int


class JobListResponse(BaseModel):
    """Schema for paginated job list response."""
    ok: bool = True
    jobs: List[JobResponse]
    paging: Paging


class ErrorDetail(BaseModel):
    code: str
    message: str


class ErrorResponse(BaseModel):
    ok: bool = False
    error: ErrorDetail
