"""
FastAPI routers.
"""
from stash_tts.routers.health import router as health_router
from stash_tts.routers.jobs import router as jobs_router

__all__ = ['health_router', 'jobs_router']
