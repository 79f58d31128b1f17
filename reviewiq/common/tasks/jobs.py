"""
Celery tasks that run orchestrator jobs.

Each worker process keeps one orchestrator and one event loop for its
lifetime, so job statistics and the tuned batch size persist between
beat ticks exactly as in the in-process loop. Runs of the same job are
serialized across worker processes by a Redis lock.
"""

import asyncio
from typing import Optional

import redis.asyncio as redis
from celery import Task

from reviewiq.common.config import get_config
from reviewiq.common.logger import app_logger
from reviewiq.common.tasks.celery_app import TASK_NAME, app
from reviewiq.common.tasks.locking import run_exclusive
from reviewiq.review.orchestrator import JobName, ReviewBatchOrchestrator

logger = app_logger.getChild("tasks.jobs")


class OrchestratorTask(Task):
    """Task base owning the worker process's orchestrator."""

    _loop: Optional[asyncio.AbstractEventLoop] = None
    _orchestrator: Optional[ReviewBatchOrchestrator] = None
    _redis: Optional[redis.Redis] = None

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            type(self)._loop = asyncio.new_event_loop()
        return self._loop

    @property
    def orchestrator(self) -> ReviewBatchOrchestrator:
        if self._orchestrator is None:
            # imported lazily so the beat process never builds the app
            from reviewiq.main import build_components

            components = self.loop.run_until_complete(build_components())
            type(self)._orchestrator = components.orchestrator
            logger.info("Orchestrator initialized for worker process")
        return self._orchestrator

    @property
    def redis_client(self) -> redis.Redis:
        if self._redis is None:
            type(self)._redis = redis.Redis.from_url(get_config().redis.connection_string)
        return self._redis


@app.task(name=TASK_NAME, base=OrchestratorTask, bind=True)
def run_orchestrator_job(self, job_name: str) -> str:
    """Run one orchestrator job and report its outcome."""
    outcome = self.loop.run_until_complete(run_exclusive(
        self.orchestrator,
        self.redis_client,
        JobName(job_name),
        timeout=self.app.conf.task_time_limit,
    ))
    return outcome.value
