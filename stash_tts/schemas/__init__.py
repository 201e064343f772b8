"""
Pydantic schemas for API request/response validation.
"""
from stash_tts.schemas.job import (
    CompletedJobResponse,
    EnqueueResponse,
    ErrorDetail,
    ErrorResponse,
    JobDetailResponse,
    JobListResponse,
    JobResponse,
    TtsJobCreate,
)

__all__ = [
    'TtsJobCreate',
    'JobResponse',
    'EnqueueResponse',
    'CompletedJobResponse',
    'JobDetailResponse',
    'JobListResponse',
    'ErrorDetail',
    'ErrorResponse',
]
