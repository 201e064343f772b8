#!/usr/bin/env python3
"""
Stash TTS FastAPI Server

Queues text-to-speech jobs for saved items and serves job status and audio.
The background worker runs in-process unless STASH_RUN_WORKER=false (run
worker.py separately in that case).
"""
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from stash_tts import config
from stash_tts.database import init_db, close_db
from stash_tts.errors import ErrorCode, StashError
from stash_tts.routers import health_router, jobs_router
from stash_tts.schemas.job import ErrorDetail, ErrorResponse
from stash_tts.services.job_worker import get_job_worker
from stash_tts.services.synthesis import reset_synthesizer


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan context manager.

    Startup:
        - Initialize database and create tables
        - Start the TTS worker (recovers orphaned jobs, prunes old ones)

    Shutdown:
        - Stop the worker after its current job
        - Release synthesizer resources
        - Close database connections
    """
    print(f'Starting {config.APP_NAME} v{config.APP_VERSION}...')

    print('Initializing database...')
    await init_db()

    worker = None
    if config.RUN_WORKER_IN_SERVER:
        print(f'Starting TTS worker (provider: {config.TTS_PROVIDER})...')
        worker = await get_job_worker().start()
    else:
        print('In-process worker disabled; run worker.py to process jobs')

    print(f'Server ready at http://{config.SERVER_HOST}:{config.SERVER_PORT}')
    print('API documentation available at /docs')

    yield

    print('Shutting down...')

    if worker is not None:
        await worker.stop()

    reset_synthesizer()

    await close_db()

    print('Shutdown complete.')


def error_response(status_code: int, code: str, message: str) -> JSONResponse:
    body = ErrorResponse(error=ErrorDetail(code=code, message=message))
    return JSONResponse(status_code=status_code, content=body.model_dump())


def register_error_handlers(app: FastAPI):
    """Render every error as {"ok": false, "error": {"code", "message"}}."""

    @app.exception_handler(StashError)
    async def stash_error_handler(request: Request, exc: StashError):
        return error_response(exc.http_status, exc.code.value, exc.message)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        message = errors[0].get('msg', 'Invalid request.') if errors else 'Invalid request.'
        return error_response(400, ErrorCode.VALIDATION_ERROR.value, message)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        code = ErrorCode.NOT_FOUND.value if exc.status_code == 404 else ErrorCode.INTERNAL_ERROR.value
        message = 'Route not found.' if exc.status_code == 404 else str(exc.detail)
        return error_response(exc.status_code, code, message)


# Create FastAPI application
app = FastAPI(
    title=config.APP_NAME,
    description='Background text-to-speech jobs for saved items.',
    version=config.APP_VERSION,
    lifespan=lifespan,
)

register_error_handlers(app)

# Register routers
app.include_router(health_router)
app.include_router(jobs_router)


if __name__ == '__main__':
    uvicorn.run(
        app,
        host=config.SERVER_HOST,
        port=config.SERVER_PORT,
        reload=False,
        log_level='info',
    )
