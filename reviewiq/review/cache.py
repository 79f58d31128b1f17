"""
Review Cache

Typed facade over a ``CacheBackend`` for the derived views the
scheduling core publishes: per-user schedules, overdue lists, batch
progress, difficulty predictions, realtime metrics and weekly analytics.

Reads never fail: a backend error is logged and reported as a miss, so
callers always fall back to recomputing from the store. Writes raise
``CacheError`` so that batch jobs can count them as per-user failures.
"""

import datetime
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from reviewiq.common.cache import CacheBackend, KeyBuilder
from reviewiq.common.config import CacheConfig
from reviewiq.common.exceptions import CacheError
from reviewiq.common.logger import app_logger
from reviewiq.review.models import BatchRun, DifficultyPrediction, OverdueItem, ReviewItem, UrgencyLevel

logger = app_logger.getChild("review.cache")

NAMESPACE = "review"
CACHE_VERSION = "1"


@dataclass
class CachedSchedule:
    user_id: str
    items: List[ReviewItem]
    generated_at: datetime.datetime

    def age(self, now: datetime.datetime) -> datetime.timedelta:
        return now - self.generated_at


class ReviewCache:
    """Cache entries for the review scheduling core."""

    def __init__(self, backend: CacheBackend, config: Optional[CacheConfig] = None):
        self.backend = backend
        self.config = config or CacheConfig()

    @staticmethod
    def _key(*parts: Any) -> str:
        return KeyBuilder.build(*parts, namespace=NAMESPACE, version=CACHE_VERSION)

    async def _read(self, key: str) -> Optional[Any]:
        try:
            result = await self.backend.get(key)
        except CacheError as e:
            logger.warning(f"Cache read failed for {key}, treating as miss: {e}")
            return None
        return result.value if result.hit else None

    async def _write(self, key: str, value: Any, ttl: int) -> None:
        result = await self.backend.set(key, value, ttl=ttl)
        if not result.success:
            raise CacheError(f"Cache write failed for {key}", details={"error": result.error})

    async def _delete(self, key: str) -> None:
        try:
            await self.backend.delete(key)
        except CacheError as e:
            # the entry still expires by TTL
            logger.warning(f"Cache delete failed for {key}: {e}")

    # Schedules

    async def cache_user_schedule(
        self,
        user_id: str,
        items: List[ReviewItem],
        generated_at: datetime.datetime
    ) -> None:
        payload = {
            "user_id": user_id,
            "generated_at": generated_at.isoformat(),
            "items": [item.to_dict() for item in items],
        }
        await self._write(self._key("schedule", user_id), payload, self.config.schedule_ttl)

    async def get_user_schedule(self, user_id: str) -> Optional[CachedSchedule]:
        payload = await self._read(self._key("schedule", user_id))
        if payload is None:
            return None
        return CachedSchedule(
            user_id=payload["user_id"],
            items=[ReviewItem.from_dict(item) for item in payload["items"]],
            generated_at=datetime.datetime.fromisoformat(payload["generated_at"]),
        )

    async def invalidate_user_schedule(self, user_id: str) -> None:
        await self._delete(self._key("schedule", user_id))

    # Overdue lists

    async def cache_overdue_items(
        self,
        user_id: str,
        items: List[OverdueItem],
        scanned_at: datetime.datetime
    ) -> None:
        hours = [entry.item.overdue_hours for entry in items]
        payload = {
            "user_id": user_id,
            "scanned_at": scanned_at.isoformat(),
            "total_count": len(items),
            "critical_count": sum(1 for entry in items if entry.urgency_level is UrgencyLevel.CRITICAL),
            "average_overdue_hours": round(sum(hours) / len(hours), 2) if hours else 0.0,
            "items": [entry.to_dict() for entry in items],
        }
        await self._write(self._key("overdue", user_id), payload, self.config.overdue_ttl)

    async def get_overdue_items(self, user_id: str) -> Optional[Dict[str, Any]]:
        return await self._read(self._key("overdue", user_id))

    # Batch progress

    async def cache_batch_run(self, run: BatchRun) -> None:
        await self._write(self._key("batch", run.batch_id), run.to_dict(), self.config.batch_ttl)

    async def get_batch_run(self, batch_id: str) -> Optional[BatchRun]:
        payload = await self._read(self._key("batch", batch_id))
        return BatchRun.from_dict(payload) if payload is not None else None

    # Predictions
    #
    # Prediction keys embed a generation per user and per problem. Bumping a
    # generation orphans every prediction of that user or problem at once;
    # orphaned entries age out by TTL.

    async def _generation(self, scope: str, owner_id: str) -> str:
        return await self._read(self._key("generation", scope, owner_id)) or "0"

    async def _bump_generation(self, scope: str, owner_id: str) -> None:
        key = self._key("generation", scope, owner_id)
        try:
            await self._write(key, uuid.uuid4().hex, 0)
        except CacheError as e:
            logger.warning(f"Could not invalidate predictions of {scope} {owner_id}: {e}")

    async def _prediction_key(self, user_id: str, problem_id: str) -> str:
        return self._key(
            "prediction",
            user_id,
            problem_id,
            await self._generation("user", user_id),
            await self._generation("problem", problem_id),
        )

    async def cache_prediction(
        self,
        user_id: str,
        problem_id: str,
        current_difficulty: float,
        prediction: DifficultyPrediction
    ) -> None:
        payload = {"current_difficulty": current_difficulty, "prediction": prediction.to_dict()}
        key = await self._prediction_key(user_id, problem_id)
        await self._write(key, payload, self.config.prediction_ttl)

    async def get_prediction(
        self,
        user_id: str,
        problem_id: str,
        current_difficulty: float
    ) -> Optional[DifficultyPrediction]:
        payload = await self._read(await self._prediction_key(user_id, problem_id))
        if payload is None or payload["current_difficulty"] != current_difficulty:
            return None
        return DifficultyPrediction.from_dict(payload["prediction"])

    async def invalidate_user_predictions(self, user_id: str) -> None:
        await self._bump_generation("user", user_id)

    async def invalidate_problem_predictions(self, problem_id: str) -> None:
        await self._bump_generation("problem", problem_id)

    # Metrics and analytics

    async def update_realtime_metrics(self, metrics: Dict[str, Any]) -> None:
        await self._write(self._key("metrics", "realtime"), metrics, self.config.realtime_ttl)

    async def get_realtime_metrics(self) -> Optional[Dict[str, Any]]:
        return await self._read(self._key("metrics", "realtime"))

    async def cache_weekly_analytics(self, analytics: Dict[str, Any]) -> None:
        await self._write(self._key("analytics", "weekly"), analytics, self.config.analytics_ttl)

    async def get_weekly_analytics(self) -> Optional[Dict[str, Any]]:
        return await self._read(self._key("analytics", "weekly"))

    # Housekeeping

    async def cleanup_expired(self) -> int:
        return await self.backend.cleanup_expired()

    async def get_stats(self) -> Dict[str, Any]:
        return await self.backend.get_stats()
