import asyncio
import datetime
from unittest.mock import AsyncMock, patch

import pytest

from reviewiq.common.config import OrchestratorConfig
from reviewiq.common.exceptions import TransientStoreError
from reviewiq.review.models import BatchStatus, ReviewPerformance, ReviewScheduleItem, UrgencyLevel, User
from reviewiq.review.orchestrator import (
    JobName,
    JobOutcome,
    JobTiming,
    ReviewBatchOrchestrator,
    classify_urgency,
    impact_score,
)


@pytest.fixture
def sleep():
    return AsyncMock()


@pytest.fixture
def orchestrator(service, sleep):
    return ReviewBatchOrchestrator(service, memory_probe=lambda: 0.2, sleep=sleep)


async def add_overdue(store, clock, item_id, user_id, problem_id, hours_late):
    await store.save_schedule_item(ReviewScheduleItem(
        id=item_id,
        user_id=user_id,
        problem_id=problem_id,
        scheduled_at=clock.now - datetime.timedelta(hours=hours_late),
        completion_count=2,
        consecutive_successes=1,
    ))


class TestUrgency:

    @pytest.mark.parametrize("hours, level", [
        (200, UrgencyLevel.CRITICAL),
        (168, UrgencyLevel.HIGH),
        (100, UrgencyLevel.HIGH),
        (30, UrgencyLevel.MEDIUM),
        (24, UrgencyLevel.LOW),
        (0.5, UrgencyLevel.LOW),
    ])
    def test_classify_urgency(self, hours, level):
        assert classify_urgency(hours) is level

    def test_impact_score(self):
        assert impact_score(10, 5, 0.5) == 90
        assert impact_score(100, 10, 1.0) == 100


class TestJobTiming:

    def test_interval(self):
        assert JobTiming(interval_seconds=300).next_delay(datetime.datetime(2024, 3, 4, 8)) == 300

    def test_daily_time(self):
        timing = JobTiming(at=(2, 0))
        assert timing.next_delay(datetime.datetime(2024, 3, 4, 1, 0)) == 3600
        assert timing.next_delay(datetime.datetime(2024, 3, 4, 3, 0)) == 23 * 3600

    def test_weekly_time(self):
        # Monday 08:00 -> Sunday 00:00
        timing = JobTiming(at=(0, 0), weekday=6)
        delay = timing.next_delay(datetime.datetime(2024, 3, 4, 8, 0))
        assert delay == datetime.timedelta(days=5, hours=16).total_seconds()


class TestRunJob:

    async def test_overlapping_run_is_skipped(self, orchestrator):
        release = asyncio.Event()

        async def slow_cleanup():
            await release.wait()

        orchestrator._handlers[JobName.CACHE_CLEANUP] = slow_cleanup
        first = asyncio.create_task(orchestrator.run_job(JobName.CACHE_CLEANUP))
        await asyncio.sleep(0)

        assert orchestrator.get_running_jobs() == [JobName.CACHE_CLEANUP.value]
        assert await orchestrator.run_job(JobName.CACHE_CLEANUP) is JobOutcome.SKIPPED

        release.set()
        assert await first is JobOutcome.COMPLETED
        stats = orchestrator.get_job_stats(JobName.CACHE_CLEANUP)
        assert stats["skipped_runs"] == 1
        assert stats["successful_runs"] == 1

    async def test_failing_job_releases_guard(self, orchestrator):
        orchestrator._handlers[JobName.OVERDUE_SCAN] = AsyncMock(side_effect=TransientStoreError("store down"))

        assert await orchestrator.run_job(JobName.OVERDUE_SCAN) is JobOutcome.FAILED
        assert orchestrator.get_running_jobs() == []
        assert await orchestrator.run_job(JobName.OVERDUE_SCAN) is JobOutcome.FAILED

        stats = orchestrator.get_job_stats(JobName.OVERDUE_SCAN)
        assert stats["failed_runs"] == 2
        assert stats["last_error"] == "store down"

    async def test_run_job_accepts_names(self, orchestrator):
        assert await orchestrator.run_job("cache-cleanup") is JobOutcome.COMPLETED

    async def test_whole_job_failure_is_contained(self, orchestrator, store):
        with patch.object(store, "list_active_user_ids", AsyncMock(side_effect=TransientStoreError("down"))):
            assert await orchestrator.run_job(JobName.DAILY_REGENERATION) is JobOutcome.FAILED
        assert orchestrator.get_running_jobs() == []


class TestDailyRegeneration:

    async def test_regenerates_every_active_user(self, orchestrator, service, store, cache, users, problems, clock):
        await add_overdue(store, clock, "s1", "u1", "p-mid", 3)

        run = await orchestrator.regenerate_all_schedules()

        assert run.status is BatchStatus.COMPLETED
        assert (run.total_users, run.users_processed, run.schedules_generated, run.errors) == (3, 3, 3, 0)
        cached = await cache.get_user_schedule("u1")
        assert [item.id for item in cached.items] == ["s1"]
        assert (await orchestrator.get_batch_run(run.batch_id)).status is BatchStatus.COMPLETED
        assert (await cache.get_batch_run(run.batch_id)).users_processed == 3

    async def test_inactive_users_are_skipped(self, orchestrator, store, users, clock):
        await store.save_user(User(id="old", last_login_at=clock.now - datetime.timedelta(days=40)))
        await store.save_user(User(id="off", is_active=False, last_login_at=clock.now))
        run = await orchestrator.regenerate_all_schedules()
        assert run.total_users == 3

    async def test_per_user_failure_is_isolated(self, orchestrator, service, users):
        async def generate(user_id, options=None):
            if user_id == "u2":
                raise TransientStoreError("timeout")
            return []

        with patch.object(service, "generate_personalized_schedule", AsyncMock(side_effect=generate)):
            run = await orchestrator.regenerate_all_schedules()

        assert run.status is BatchStatus.COMPLETED
        assert run.schedules_generated == 2
        assert run.errors == 1

    async def test_progress_is_published_per_batch(self, orchestrator, cache, users, sleep):
        orchestrator.batch_size = 2
        published = []
        original = cache.cache_batch_run

        async def record(run):
            published.append((run.users_processed, run.status))
            await original(run)

        with patch.object(cache, "cache_batch_run", side_effect=record):
            run = await orchestrator.regenerate_all_schedules()

        assert published == [
            (0, BatchStatus.RUNNING),
            (2, BatchStatus.RUNNING),
            (3, BatchStatus.RUNNING),
            (3, BatchStatus.COMPLETED),
        ]
        assert run.estimated_completion is not None
        sleep.assert_awaited_once_with(orchestrator.config.batch_pause_seconds)


class TestHourlyRefresh:

    async def test_only_stale_schedules_are_refreshed(self, orchestrator, store, cache, users, clock):
        first = await orchestrator.refresh_active_schedules()
        assert first == {"active_users": 3, "refreshed": 3, "errors": 0}

        second = await orchestrator.refresh_active_schedules()
        assert second["refreshed"] == 0

        clock.advance(hours=5)
        for user in users:
            user.last_login_at = clock.now
            await store.save_user(user)
        third = await orchestrator.refresh_active_schedules()
        assert third["refreshed"] == 3

        metrics = await cache.get_realtime_metrics()
        assert metrics["active_users"] == 3
        assert metrics["batch_size"] == orchestrator.batch_size


class TestOverdueScan:

    async def test_publishes_overdue_lists(self, orchestrator, store, cache, problems, clock):
        await add_overdue(store, clock, "a", "u1", "p-hard", 200)
        await add_overdue(store, clock, "b", "u1", "p-easy", 2)
        await add_overdue(store, clock, "c", "u2", "p-mid", 30)

        summary = await orchestrator.scan_overdue_items()

        assert summary == {"total_overdue": 3, "users": 2, "critical": 1, "errors": 0}
        overdue = await cache.get_overdue_items("u1")
        assert overdue["total_count"] == 2
        assert overdue["critical_count"] == 1
        assert [item["id"] for item in overdue["items"]] == ["a", "b"]
        assert overdue["items"][0]["urgency_level"] == "CRITICAL"
        assert overdue["items"][0]["impact_score"] == 100
        assert (await cache.get_overdue_items("u2"))["items"][0]["urgency_level"] == "MEDIUM"


class TestSelfTuning:

    async def test_no_runs_keeps_batch_size(self, orchestrator):
        result = await orchestrator.tune_performance()
        assert result["batch_size"] == 50

    async def test_slow_runs_shrink_batches(self, orchestrator, clock):
        orchestrator._stats[JobName.DAILY_REGENERATION].record(clock.now, 45.0)
        await orchestrator.tune_performance()
        assert orchestrator.batch_size == 40

    async def test_fast_runs_grow_batches(self, orchestrator, clock):
        orchestrator._stats[JobName.DAILY_REGENERATION].record(clock.now, 1.0)
        await orchestrator.tune_performance()
        assert orchestrator.batch_size == 60
        assert orchestrator.get_config()["batch_size"] == 60

    async def test_batch_size_stays_within_bounds(self, service, clock):
        config = OrchestratorConfig(batch_size=10)
        orchestrator = ReviewBatchOrchestrator(service, config=config, memory_probe=lambda: 0.95)
        orchestrator._stats[JobName.DAILY_REGENERATION].record(clock.now, 60.0)

        result = await orchestrator.tune_performance()

        assert orchestrator.batch_size == 10
        assert result["memory_pressure"] == 0.95


class TestHousekeeping:

    async def test_weekly_analytics(self, orchestrator, service, cache, problems, users):
        first = await service.schedule_review("u1", "p-mid", ReviewPerformance(is_success=True))
        await service.complete_review(first.id, True)

        analytics = await orchestrator.generate_weekly_analytics()

        assert analytics["total_reviews"] == 1
        assert analytics["active_learners"] == 1
        assert (await cache.get_weekly_analytics())["total_reviews"] == 1

    async def test_cleanup(self, orchestrator):
        assert await orchestrator.run_job(JobName.CACHE_CLEANUP) is JobOutcome.COMPLETED


class TestLifecycle:

    async def test_start_and_stop(self, orchestrator):
        orchestrator.start()
        assert orchestrator.is_running
        await orchestrator.stop()
        assert not orchestrator.is_running

    async def test_disabled_orchestrator_does_not_start(self, service):
        orchestrator = ReviewBatchOrchestrator(service, config=OrchestratorConfig(enabled=False))
        orchestrator.start()
        assert not orchestrator.is_running
