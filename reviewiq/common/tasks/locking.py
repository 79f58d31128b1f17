"""
Job Locks

Cross-process exclusion for orchestrator jobs run by Celery workers.
The orchestrator's in-flight guard only sees its own process; a Redis
lock per job name is shared by every worker on the same Redis.
"""

import redis.asyncio as redis
from redis.exceptions import LockError

from reviewiq.common.logger import app_logger
from reviewiq.review.orchestrator import JobName, JobOutcome, ReviewBatchOrchestrator

logger = app_logger.getChild("tasks.locking")

LOCK_PREFIX = "reviewiq:job-lock:"


def lock_name(job: JobName) -> str:
    return f"{LOCK_PREFIX}{job.value}"


async def run_exclusive(
    orchestrator: ReviewBatchOrchestrator,
    redis_client: redis.Redis,
    job: JobName,
    timeout: int
) -> JobOutcome:
    """
    Run ``job`` unless another worker holds its lock.

    Args:
        orchestrator: Orchestrator of this worker process
        redis_client: Client of the Redis holding the locks
        job: Job to run
        timeout: Seconds after which an unreleased lock expires

    Returns:
        The job outcome, SKIPPED when the lock is taken
    """
    lock = redis_client.lock(lock_name(job), timeout=timeout, blocking=False)
    if not await lock.acquire():
        logger.warning(f"Job {job.value} is running in another worker, skipping")
        return JobOutcome.SKIPPED

    try:
        return await orchestrator.run_job(job)
    finally:
        try:
            await lock.release()
        except LockError as e:
            logger.warning(f"Lock of job {job.value} expired before release: {e}")
