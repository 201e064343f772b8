"""
Health check endpoint.
"""
from typing import Dict

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from stash_tts import config
from stash_tts.database import get_db
from stash_tts.services.job_queue import count_jobs_by_status


router = APIRouter(tags=['health'])


class HealthResponse(BaseModel):
    """Health check response schema."""
    status: str
    version: str
    tts_provider: str
    jobs: Dict[str, int]


@router.get('/health', response_model=HealthResponse)
async def health_check(db: AsyncSession = Depends(get_db)) -> HealthResponse:
    """
    Check server health status.

    Returns server version, the configured TTS provider and job counts per status.
    """
    return HealthResponse(
        status='ok',
        version=config.APP_VERSION,
        tts_provider=config.TTS_PROVIDER,
        jobs=await count_jobs_by_status(db),
    )
