#!/usr/bin/env python3
"""
Stash TTS worker process.

Usage:
    python worker.py              # run until SIGINT/SIGTERM
    python worker.py --once       # process at most one job, print it as JSON
    python worker.py --poll-ms 500
"""
import argparse
import asyncio
import json
import logging
import signal
import sys

from stash_tts import config
from stash_tts.database import close_db, init_db
from stash_tts.schemas.job import JobResponse
from stash_tts.services.job_worker import get_job_worker, run_one_job
from stash_tts.services.synthesis import reset_synthesizer

logger = logging.getLogger('stash_tts.worker')


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description='Process queued TTS jobs.')
    parser.add_argument('--once', action='store_true', help='process at most one job and exit')
    parser.add_argument(
        '--poll-ms',
        type=int,
        default=config.DEFAULT_POLL_INTERVAL_MS,
        help='idle poll interval in milliseconds (default: %(default)s)',
    )
    parser.add_argument('--verbose', '-v', action='store_true', help='debug logging')
    return parser.parse_args(argv)


async def run_once() -> int:
    worker = get_job_worker()
    job = await run_one_job(worker.executor, retention_ms=worker.retention_ms)
    if job is None:
        print(json.dumps({'ok': True, 'job': None}))
        return 0

    payload = JobResponse.model_validate(job).model_dump(mode='json')
    print(json.dumps({'ok': job.status == 'succeeded', 'job': payload}, indent=2))
    return 0 if job.status == 'succeeded' else 1


async def run_forever(poll_ms: int) -> int:
    worker = get_job_worker()
    worker.poll_interval_ms = poll_ms

    stop_requested = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_requested.set)

    await worker.start()
    logger.info('Worker running (provider: %s). Press Ctrl+C to stop.', config.TTS_PROVIDER)
    await stop_requested.wait()

    logger.info('Stopping worker, waiting for the current job...')
    await worker.stop()
    return 0


async def main(argv=None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )

    await init_db()
    try:
        if args.once:
            return await run_once()
        return await run_forever(args.poll_ms)
    finally:
        reset_synthesizer()
        await close_db()


if __name__ == '__main__':
    sys.exit(asyncio.run(main()))
