"""
Review Batch Orchestrator

Periodic background jobs that keep derived scheduling views fresh:

1. Daily full regeneration of every recently active user's schedule
2. Hourly refresh of stale schedules for users active in the last hour
3. Overdue scan publishing per-user overdue lists with urgency
4. Self-tuning of the daily batch size from observed job durations
5. Weekly analytics and cache cleanup housekeeping

One orchestrator instance is created per process and handed to whatever
needs to trigger jobs or inspect their state. Each named job is guarded
so that two runs of it never overlap; a failing job is logged at the job
boundary and retried at its next tick.
"""

import asyncio
import collections
import datetime
import enum
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Set, Tuple
from zoneinfo import ZoneInfo

import psutil

from reviewiq.common.config import OrchestratorConfig
from reviewiq.common.exceptions import CacheError, log_error
from reviewiq.common.logger import LoggerAdapter, app_logger
from reviewiq.review.forgetting import calculate_review_priority
from reviewiq.review.models import (
    BatchRun,
    BatchStatus,
    OverdueItem,
    Problem,
    ReviewItem,
    ReviewScheduleItem,
    UrgencyLevel,
)
from reviewiq.review.service import ReviewService

logger = app_logger.getChild("review.orchestrator")

# (minimum overdue hours, urgency), most severe first
URGENCY_THRESHOLDS = (
    (168, UrgencyLevel.CRITICAL),
    (72, UrgencyLevel.HIGH),
    (24, UrgencyLevel.MEDIUM),
)

SUGGESTED_ACTIONS = {
    UrgencyLevel.CRITICAL: "Review immediately: most of this material has likely been forgotten",
    UrgencyLevel.HIGH: "Prioritise this review: retention is dropping quickly",
    UrgencyLevel.MEDIUM: "Review today: the optimal review time has passed",
    UrgencyLevel.LOW: "Review soon: the material is still mostly retained",
}


class JobName(str, enum.Enum):
    DAILY_REGENERATION = "daily-schedule-generation"
    HOURLY_REFRESH = "hourly-schedule-refresh"
    OVERDUE_SCAN = "overdue-monitoring"
    SELF_TUNING = "performance-tuning"
    WEEKLY_ANALYTICS = "weekly-analytics"
    CACHE_CLEANUP = "cache-cleanup"


class JobOutcome(enum.Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class JobTiming:
    """
    When a job ticks: either every ``interval_seconds`` or at a wall-clock
    time ``at`` (hour, minute), optionally only on ``weekday`` (Monday=0).
    """
    interval_seconds: Optional[float] = None
    at: Optional[Tuple[int, int]] = None
    weekday: Optional[int] = None

    def next_delay(self, now: datetime.datetime) -> float:
        """Seconds from ``now`` until the next tick."""
        if self.interval_seconds is not None:
            return float(self.interval_seconds)

        hour, minute = self.at or (0, 0)
        target = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
        if self.weekday is not None:
            target += datetime.timedelta(days=(self.weekday - now.weekday()) % 7)
        if target <= now:
            target += datetime.timedelta(days=7 if self.weekday is not None else 1)
        return (target - now).total_seconds()


@dataclass
class JobStats:
    """Run counters and a rolling window of durations for one job."""
    window: int = 20
    total_runs: int = 0
    successful_runs: int = 0
    failed_runs: int = 0
    skipped_runs: int = 0
    last_run_time: Optional[datetime.datetime] = None
    last_error: Optional[str] = None
    durations: Deque[float] = field(default_factory=collections.deque)

    @property
    def average_execution_time(self) -> float:
        return sum(self.durations) / len(self.durations) if self.durations else 0.0

    def record(self, started_at: datetime.datetime, duration: float, error: Optional[Exception] = None) -> None:
        self.total_runs += 1
        self.last_run_time = started_at
        self.durations.append(duration)
        while len(self.durations) > self.window:
            self.durations.popleft()
        if error is None:
            self.successful_runs += 1
        else:
            self.failed_runs += 1
            self.last_error = str(error)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_runs": self.total_runs,
            "successful_runs": self.successful_runs,
            "failed_runs": self.failed_runs,
            "skipped_runs": self.skipped_runs,
            "last_run_time": self.last_run_time.isoformat() if self.last_run_time else None,
            "last_error": self.last_error,
            "average_execution_time": round(self.average_execution_time, 3),
        }


def classify_urgency(overdue_hours: float) -> UrgencyLevel:
    for threshold, level in URGENCY_THRESHOLDS:
        if overdue_hours > threshold:
            return level
    return UrgencyLevel.LOW


def impact_score(overdue_hours: float, difficulty: float, failure_rate: float) -> int:
    """Learning impact of leaving a review undone, 0-100."""
    score = 50 + min(50.0, overdue_hours * 2) + difficulty * 2 + failure_rate * 20
    return min(100, round(score))


def system_memory_pressure() -> float:
    """Share of physical memory in use, 0-1."""
    return psutil.virtual_memory().percent / 100


class ReviewBatchOrchestrator:
    """
    Owns the periodic jobs of one process.

    Args:
        service: Review service used to generate schedules
        config: Orchestrator settings; defaults to the service's configuration
        clock: Time source for domain timestamps; defaults to the service's
        memory_probe: Returns memory pressure in [0, 1]
        sleep: Awaitable sleep used for inter-batch pauses
    """

    def __init__(
        self,
        service: ReviewService,
        config: Optional[OrchestratorConfig] = None,
        clock: Optional[Callable[[], datetime.datetime]] = None,
        memory_probe: Callable[[], float] = system_memory_pressure,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        self.service = service
        self.store = service.store
        self.cache = service.cache
        self.config = config or service.config.orchestrator
        self.clock = clock or service.clock
        self.batch_size = self.config.batch_size
        self._memory_probe = memory_probe
        self._sleep = sleep
        self._zone = ZoneInfo(self.config.timezone)

        self._running_jobs: Set[JobName] = set()
        self._job_slots = asyncio.Semaphore(self.config.max_concurrent_jobs)
        self._stats = {name: JobStats(window=self.config.duration_window) for name in JobName}
        self._batch_runs: "collections.OrderedDict[str, BatchRun]" = collections.OrderedDict()
        self._loops: Dict[JobName, asyncio.Task] = {}
        self._inflight: Set[asyncio.Task] = set()
        self._stopping = False

        self._handlers: Dict[JobName, Callable[[], Awaitable[Any]]] = {
            JobName.DAILY_REGENERATION: self.regenerate_all_schedules,
            JobName.HOURLY_REFRESH: self.refresh_active_schedules,
            JobName.OVERDUE_SCAN: self.scan_overdue_items,
            JobName.SELF_TUNING: self.tune_performance,
            JobName.WEEKLY_ANALYTICS: self.generate_weekly_analytics,
            JobName.CACHE_CLEANUP: self.cleanup_caches,
        }
        self.timings: Dict[JobName, JobTiming] = {
            JobName.DAILY_REGENERATION: JobTiming(at=tuple(self.config.daily_time)),
            JobName.HOURLY_REFRESH: JobTiming(interval_seconds=self.config.hourly_interval_seconds),
            JobName.OVERDUE_SCAN: JobTiming(interval_seconds=self.config.overdue_interval_seconds),
            JobName.SELF_TUNING: JobTiming(interval_seconds=self.config.tuning_interval_seconds),
            JobName.WEEKLY_ANALYTICS: JobTiming(at=(0, 0), weekday=self.config.weekly_weekday),
            JobName.CACHE_CLEANUP: JobTiming(at=tuple(self.config.cleanup_time)),
        }

    # Lifecycle

    @property
    def is_running(self) -> bool:
        return bool(self._loops)

    def start(self) -> None:
        """Start one tick loop per job on the running event loop."""
        if self._loops:
            return
        if not self.config.enabled:
            logger.info("Batch orchestrator disabled by configuration")
            return
        self._stopping = False
        for name, timing in self.timings.items():
            self._loops[name] = asyncio.create_task(self._tick_loop(name, timing), name=f"orchestrator:{name.value}")
        logger.info(f"Batch orchestrator started with {len(self._loops)} jobs (batch size {self.batch_size})")

    async def stop(self, wait: bool = True) -> None:
        """
        Stop scheduling new ticks. Runs already in flight are not aborted;
        with ``wait`` they are awaited before returning.
        """
        self._stopping = True
        loops = list(self._loops.values())
        for task in loops:
            task.cancel()
        await asyncio.gather(*loops, return_exceptions=True)
        self._loops.clear()
        if wait and self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)
        logger.info("Batch orchestrator stopped")

    async def _tick_loop(self, name: JobName, timing: JobTiming) -> None:
        while not self._stopping:
            await asyncio.sleep(timing.next_delay(datetime.datetime.now(self._zone)))
            if self._stopping:
                break
            task = asyncio.ensure_future(self.run_job(name))
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)
            # cancelling the loop must not cancel the run
            await asyncio.shield(task)

    async def run_job(self, name: JobName) -> JobOutcome:
        """
        Run a job now unless a run of it is already in flight.

        Errors are logged here and never propagate; the guard is always
        released so the next tick can retry.
        """
        name = JobName(name)
        stats = self._stats[name]
        if name in self._running_jobs:
            stats.skipped_runs += 1
            logger.warning(f"Job {name.value} is already running, skipping this tick")
            return JobOutcome.SKIPPED

        self._running_jobs.add(name)
        started_at = self.clock()
        started = time.perf_counter()
        error: Optional[Exception] = None
        try:
            async with self._job_slots:
                await self._handlers[name]()
        except Exception as e:
            error = e
            log_error(e, logger, {"job": name.value})
        finally:
            self._running_jobs.discard(name)

        duration = time.perf_counter() - started
        stats.record(started_at, duration, error)
        if error is None:
            logger.info(f"Job {name.value} completed in {duration:.2f}s")
            return JobOutcome.COMPLETED
        return JobOutcome.FAILED

    # Accessors

    def get_running_jobs(self) -> List[str]:
        return sorted(name.value for name in self._running_jobs)

    def get_job_stats(self, name: Optional[JobName] = None) -> Dict[str, Any]:
        if name is not None:
            return self._stats[JobName(name)].to_dict()
        return {job.value: stats.to_dict() for job, stats in self._stats.items()}

    def get_config(self) -> Dict[str, Any]:
        config = self.config.model_dump()
        config["batch_size"] = self.batch_size
        return config

    async def get_batch_run(self, batch_id: str) -> Optional[BatchRun]:
        run = self._batch_runs.get(batch_id)
        if run is not None:
            return run
        return await self.cache.get_batch_run(batch_id)

    async def _publish(self, run: BatchRun) -> None:
        self._batch_runs[run.batch_id] = run
        self._batch_runs.move_to_end(run.batch_id)
        while len(self._batch_runs) > self.config.duration_window:
            self._batch_runs.popitem(last=False)
        try:
            await self.cache.cache_batch_run(run)
        except CacheError as e:
            logger.warning(f"Could not publish progress of batch {run.batch_id}: {e}")

    # Per-user work

    async def _regenerate_user(self, user_id: str) -> bool:
        try:
            items = await self.service.generate_personalized_schedule(
                user_id, {"max_items": self.config.schedule_max_items}
            )
            await self.cache.cache_user_schedule(user_id, items, self.clock())
        except Exception as e:
            # isolated per user; counted by the caller
            log_error(e, logger, {"user_id": user_id})
            return False
        return True

    async def _run_in_batches(self, user_ids: List[str], work: Callable[[str], Awaitable[Any]]) -> List[Any]:
        results: List[Any] = []
        batch_size = self.batch_size
        for start in range(0, len(user_ids), batch_size):
            batch = user_ids[start:start + batch_size]
            results.extend(await asyncio.gather(*(work(user_id) for user_id in batch)))
        return results

    # Jobs

    async def regenerate_all_schedules(self) -> BatchRun:
        """
        Regenerate and cache the schedule of every user active in the
        configured window, publishing progress after each batch.
        """
        now = self.clock()
        batch_size = self.batch_size
        run = BatchRun(
            batch_id=f"daily-{now:%Y%m%d%H%M%S}-{uuid.uuid4().hex[:8]}",
            job_name=JobName.DAILY_REGENERATION.value,
            started_at=now,
        )
        log = LoggerAdapter(logger, {"batch_id": run.batch_id})

        try:
            user_ids = await self.store.list_active_user_ids(
                now - datetime.timedelta(days=self.config.active_user_days)
            )
            run.total_users = len(user_ids)
            await self._publish(run)
            log.info(f"Regenerating schedules for {run.total_users} users in batches of {batch_size}")

            for start in range(0, len(user_ids), batch_size):
                batch = user_ids[start:start + batch_size]
                results = await asyncio.gather(*(self._regenerate_user(user_id) for user_id in batch))
                succeeded = sum(1 for ok in results if ok)

                run.users_processed += len(batch)
                run.schedules_generated += succeeded
                run.errors += len(batch) - succeeded
                remaining = run.total_users - run.users_processed
                run.estimated_completion = self.clock() + datetime.timedelta(
                    seconds=remaining * self.config.seconds_per_user_estimate
                )
                await self._publish(run)
                log.debug(f"Batch progress {run.users_processed}/{run.total_users} ({run.errors} errors)")

                if remaining > 0:
                    await self._sleep(self.config.batch_pause_seconds)
        except Exception:
            run.status = BatchStatus.FAILED
            run.finished_at = self.clock()
            await self._publish(run)
            raise

        run.status = BatchStatus.COMPLETED
        run.finished_at = self.clock()
        await self._publish(run)
        log.info(
            f"Regenerated {run.schedules_generated}/{run.total_users} schedules",
            extra={"data": {"errors": run.errors}}
        )
        return run

    async def refresh_active_schedules(self) -> Dict[str, int]:
        """Regenerate cached schedules of recently active users once they go stale."""
        now = self.clock()
        user_ids = await self.store.list_active_user_ids(
            now - datetime.timedelta(hours=self.config.recent_activity_hours),
            limit=self.config.refresh_user_limit,
        )
        stale_after = datetime.timedelta(hours=self.config.stale_schedule_hours)

        async def refresh(user_id: str) -> Optional[bool]:
            cached = await self.cache.get_user_schedule(user_id)
            if cached is not None and cached.age(now) <= stale_after:
                return None
            return await self._regenerate_user(user_id)

        results = await self._run_in_batches(user_ids, refresh)
        summary = {
            "active_users": len(user_ids),
            "refreshed": sum(1 for result in results if result is True),
            "errors": sum(1 for result in results if result is False),
        }
        await self._update_realtime_metrics(now, summary)
        logger.info(f"Hourly refresh: {summary['refreshed']} of {summary['active_users']} schedules regenerated")
        return summary

    async def _update_realtime_metrics(self, now: datetime.datetime, refresh: Dict[str, int]) -> None:
        cache_stats = await self.cache.get_stats()
        metrics = {
            "timestamp": now.isoformat(),
            "active_users": refresh["active_users"],
            "refreshed_schedules": refresh["refreshed"],
            "refresh_errors": refresh["errors"],
            "running_jobs": self.get_running_jobs(),
            "batch_size": self.batch_size,
            "cache_hit_rate": cache_stats.get("hit_rate", 0.0),
        }
        try:
            await self.cache.update_realtime_metrics(metrics)
        except CacheError as e:
            logger.warning(f"Could not publish realtime metrics: {e}")

    def _overdue_entry(
        self,
        item: ReviewScheduleItem,
        problem: Optional[Problem],
        now: datetime.datetime
    ) -> OverdueItem:
        overdue_hours = (now - item.scheduled_at).total_seconds() / 3600
        difficulty = problem.difficulty if problem else self.service.config.scheduling.default_difficulty
        success_rate = item.consecutive_successes / max(item.completion_count, 1)
        days_since = (
            (now - item.last_completed_at).total_seconds() / 86400
            if item.last_completed_at else self.service.config.scheduling.default_days_since_review
        )
        urgency = classify_urgency(overdue_hours)
        review_item = ReviewItem(
            id=item.id,
            problem_id=item.problem_id,
            problem_title=problem.title if problem else "",
            current_level=item.current_level,
            scheduled_at=item.scheduled_at,
            due_at=item.scheduled_at,
            priority_score=float(calculate_review_priority(
                item.scheduled_at, difficulty, success_rate, days_since, now=now
            )),
            retention_rate=item.retention_rate,
            difficulty=difficulty,
            consecutive_successes=item.consecutive_successes,
            total_attempts=item.completion_count,
            is_overdue=True,
            overdue_hours=round(overdue_hours, 2),
            category_name=problem.category_name if problem else None,
        )
        return OverdueItem(
            item=review_item,
            urgency_level=urgency,
            suggested_action=SUGGESTED_ACTIONS[urgency],
            impact_score=impact_score(overdue_hours, difficulty, 1 - success_rate),
        )

    async def scan_overdue_items(self) -> Dict[str, Any]:
        """Publish per-user overdue lists for the most overdue rows of all users."""
        now = self.clock()
        items = await self.store.list_overdue_items(now, self.config.overdue_scan_limit)
        problems = await self.store.get_problems(sorted({item.problem_id for item in items}))

        by_user: Dict[str, List[OverdueItem]] = collections.defaultdict(list)
        for item in items:
            by_user[item.user_id].append(self._overdue_entry(item, problems.get(item.problem_id), now))

        async def publish(user_id: str) -> bool:
            entries = sorted(by_user[user_id], key=lambda entry: entry.impact_score, reverse=True)
            try:
                await self.cache.cache_overdue_items(user_id, entries, now)
            except CacheError as e:
                log_error(e, logger, {"user_id": user_id})
                return False
            return True

        results = await self._run_in_batches(sorted(by_user), publish)
        summary = {
            "total_overdue": len(items),
            "users": len(by_user),
            "critical": sum(
                1 for entries in by_user.values() for entry in entries
                if entry.urgency_level is UrgencyLevel.CRITICAL
            ),
            "errors": sum(1 for ok in results if not ok),
        }
        if summary["critical"]:
            logger.warning(f"{summary['critical']} reviews are more than a week overdue")
        logger.info(f"Overdue scan: {summary['total_overdue']} items across {summary['users']} users")
        return summary

    async def tune_performance(self) -> Dict[str, Any]:
        """
        Resize the daily batch from its rolling average duration and warn
        about a low cache hit rate or high memory pressure.
        """
        stats = self._stats[JobName.DAILY_REGENERATION]
        average = stats.average_execution_time
        previous = self.batch_size

        if stats.durations:
            if average > self.config.slow_job_seconds:
                self.batch_size = max(self.config.min_batch_size, previous - self.config.batch_size_step)
            elif average < self.config.fast_job_seconds:
                self.batch_size = min(self.config.max_batch_size, previous + self.config.batch_size_step)
        if self.batch_size != previous:
            logger.info(f"Batch size tuned {previous} -> {self.batch_size} (average run {average:.2f}s)")

        cache_stats = await self.cache.get_stats()
        hit_rate = cache_stats.get("hit_rate", 0.0)
        requests = cache_stats.get("hits", 0) + cache_stats.get("misses", 0)
        if requests and hit_rate < self.config.min_cache_hit_rate:
            logger.warning(f"Cache hit rate {hit_rate:.2%} is below {self.config.min_cache_hit_rate:.0%}")

        memory_pressure = self._memory_probe()
        if memory_pressure > self.config.max_memory_pressure:
            logger.warning(f"Memory pressure {memory_pressure:.2%} is above {self.config.max_memory_pressure:.0%}")

        return {
            "batch_size": self.batch_size,
            "average_execution_time": average,
            "cache_hit_rate": hit_rate,
            "memory_pressure": memory_pressure,
        }

    async def generate_weekly_analytics(self) -> Dict[str, Any]:
        now = self.clock()
        completed = await self.store.list_completed_items(now - datetime.timedelta(days=7))

        per_day = collections.Counter(item.last_completed_at.date().isoformat() for item in completed)
        levels = collections.Counter(item.current_level.value for item in completed)
        analytics = {
            "generated_at": now.isoformat(),
            "total_reviews": len(completed),
            "active_learners": len({item.user_id for item in completed}),
            "reviews_per_day": dict(sorted(per_day.items())),
            "level_distribution": dict(levels),
            "job_stats": self.get_job_stats(),
        }
        await self.cache.cache_weekly_analytics(analytics)
        logger.info(f"Weekly analytics: {analytics['total_reviews']} reviews by {analytics['active_learners']} learners")
        return analytics

    async def cleanup_caches(self) -> int:
        removed = await self.cache.cleanup_expired()
        logger.info(f"Cache cleanup removed {removed} expired entries")
        return removed
