"""
Review Service

Entry points of the review scheduling core. The service loads state
from the ``ReviewStore``, runs the pure calculators (forgetting curve,
difficulty predictor, priority scheduler) and persists the results.
Derived views are published to the ``ReviewCache``.
"""

import asyncio
import collections
import dataclasses
import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from pydantic import ValidationError as PydanticValidationError

from reviewiq.common.config import AppConfig
from reviewiq.common.exceptions import CacheError, NotFoundError, ValidationError
from reviewiq.common.logger import app_logger, log_execution_time
from reviewiq.review.cache import ReviewCache
from reviewiq.review.difficulty import (
    DifficultyPredictor,
    FeedbackAnalysis,
    PredictionContext,
    adjustment_trend,
    analyze_learning_pattern,
    clamp_difficulty,
    consistency_score,
)
from reviewiq.review.forgetting import ForgettingCurveCalculator
from reviewiq.review.models import (
    DifficultyFeedback,
    DifficultyPrediction,
    DynamicDifficultyAdjustment,
    ForgettingCurveLevel,
    PersonalizedDifficultyProfile,
    Problem,
    ProblemDifficultyFeedback,
    ReviewItem,
    ReviewPerformance,
    ReviewScheduleItem,
    ReviewStatus,
    SchedulingOptions,
)
from reviewiq.review.priority import PriorityScheduler
from reviewiq.review.repository import ReviewStore

logger = app_logger.getChild("review.service")

Clock = Callable[[], datetime.datetime]


class ReviewService:
    """
    Scheduling and difficulty operations for one store/cache pair.

    Args:
        store: Source of truth for all entities
        cache: Derived-view cache
        config: Application configuration (policy constants)
        clock: Returns the current time; injectable for tests
    """

    def __init__(
        self,
        store: ReviewStore,
        cache: ReviewCache,
        config: Optional[AppConfig] = None,
        clock: Clock = datetime.datetime.now
    ):
        self.store = store
        self.cache = cache
        self.config = config or AppConfig()
        self.clock = clock
        self.calculator = ForgettingCurveCalculator(self.config.forgetting)
        self.predictor = DifficultyPredictor(self.config.difficulty)
        self.scheduler = PriorityScheduler(self.config.scheduling)
        self._problem_locks: Dict[str, asyncio.Lock] = collections.defaultdict(asyncio.Lock)

    async def _require_problem(self, problem_id: str) -> Problem:
        problem = await self.store.get_problem(problem_id)
        if problem is None:
            raise NotFoundError("Problem", problem_id)
        return problem

    # Difficulty feedback and prediction

    async def submit_feedback(
        self,
        user_id: str,
        problem_id: str,
        feedback: Union[DifficultyFeedback, str],
        response_time: Optional[float] = None,
        is_correct: Optional[bool] = None,
        session_id: Optional[str] = None
    ) -> str:
        """
        Record a feedback event and update the user's difficulty profile.

        May trigger an automatic difficulty adjustment of the problem.

        Returns:
            Id of the stored feedback event

        Raises:
            ValidationError: unknown feedback value or negative response time
            NotFoundError: the problem does not exist
        """
        feedback = _parse_feedback(feedback)
        if response_time is not None and response_time < 0:
            raise ValidationError("response_time must not be negative", {"response_time": response_time})
        await self._require_problem(problem_id)

        now = self.clock()
        event = ProblemDifficultyFeedback(
            user_id=user_id,
            problem_id=problem_id,
            feedback=feedback,
            submitted_at=now,
            response_time=response_time,
            is_correct=is_correct,
            session_id=session_id,
            time_of_day=now.hour,
        )
        await self.store.add_feedback(event)

        profile = await self.store.get_or_create_difficulty_profile(user_id)
        await self.store.save_difficulty_profile(self.predictor.apply_feedback(profile, feedback, now))
        # the feedback shifts every learner's prediction for this problem
        await self.cache.invalidate_problem_predictions(problem_id)
        await self.cache.invalidate_user_predictions(user_id)

        logger.info(
            f"Feedback {feedback.value} on problem {problem_id}",
            extra={"data": {"user_id": user_id, "problem_id": problem_id, "feedback_id": event.id}}
        )

        await self._maybe_adjust_automatically(problem_id, now)
        return event.id

    async def _maybe_adjust_automatically(
        self,
        problem_id: str,
        now: datetime.datetime
    ) -> Optional[DynamicDifficultyAdjustment]:
        config = self.config.difficulty
        # check and write under one lock so concurrent feedback cannot double-fire
        async with self._problem_locks[problem_id]:
            window_start = now - datetime.timedelta(hours=config.trigger_window_hours)
            recent = await self.store.list_problem_feedback(problem_id, window_start)
            recent_automatic = await self.store.list_adjustments(
                problem_id, since=window_start, automatic_only=True
            )
            if not self.predictor.should_trigger_adjustment(recent, bool(recent_automatic)):
                return None

            analysis = FeedbackAnalysis.from_feedbacks(await self.store.list_problem_feedback(
                problem_id, now - datetime.timedelta(days=config.feedback_window_days)
            ))
            problem = await self._require_problem(problem_id)
            value = self.predictor.automatic_adjustment_value(problem.difficulty, analysis)
            if value == 0:
                logger.info(f"Automatic adjustment of {problem_id} skipped, difficulty already at bound")
                return None

            return await self._apply_adjustment(
                problem,
                value,
                reason="Automatic adjustment after sustained negative feedback",
                is_automatic=True,
                analysis=analysis,
            )

    async def _apply_adjustment(
        self,
        problem: Problem,
        value: float,
        reason: str,
        trigger_user_id: Optional[str] = None,
        is_automatic: bool = False,
        analysis: Optional[FeedbackAnalysis] = None,
        feedback_summary: Optional[Dict[str, Any]] = None
    ) -> DynamicDifficultyAdjustment:
        original = problem.difficulty
        adjusted = clamp_difficulty(original + value)
        adjustment = DynamicDifficultyAdjustment(
            problem_id=problem.id,
            original_difficulty=original,
            adjusted_difficulty=adjusted,
            adjustment_value=value,
            reason=reason,
            created_at=self.clock(),
            trigger_user_id=trigger_user_id,
            is_personalized=trigger_user_id is not None,
            is_automatic=is_automatic,
            feedback_count=analysis.total_feedbacks if analysis else 0,
            retry_rate=analysis.retry_rate if analysis else 0.0,
            feedback_summary=feedback_summary or (analysis.to_dict() if analysis else {}),
        )
        await self.store.add_adjustment(adjustment)
        problem.difficulty = adjusted
        await self.store.save_problem(problem)
        await self.cache.invalidate_problem_predictions(problem.id)

        logger.info(
            f"Difficulty of problem {problem.id} changed {original} -> {adjusted}: {reason}",
            extra={"data": {"adjustment_id": adjustment.id, "automatic": is_automatic}}
        )
        return adjustment

    async def adjust_difficulty(
        self,
        problem_id: str,
        adjustment_value: float,
        trigger_user_id: Optional[str] = None,
        reason: Optional[str] = None,
        feedback_summary: Optional[Dict[str, Any]] = None
    ) -> str:
        """
        Shift a problem's stored difficulty and record the audit entry.

        Returns:
            Id of the DynamicDifficultyAdjustment

        Raises:
            NotFoundError: the problem does not exist
        """
        # unknown ids must not leave a lock behind
        await self._require_problem(problem_id)
        async with self._problem_locks[problem_id]:
            problem = await self._require_problem(problem_id)
            adjustment = await self._apply_adjustment(
                problem,
                adjustment_value,
                reason=reason or "Manual adjustment",
                trigger_user_id=trigger_user_id,
                feedback_summary=feedback_summary,
            )
        return adjustment.id

    async def predict_difficulty(
        self,
        user_id: str,
        problem_id: str,
        current_difficulty: Optional[float] = None,
        response_time: Optional[float] = None,
        is_correct: Optional[bool] = None
    ) -> DifficultyPrediction:
        """
        Predict a personalised difficulty of a problem for a user.

        Missing history falls back to defaults. Predictions without
        per-attempt context are cached briefly.

        Raises:
            ValidationError: current difficulty outside 1-10
            NotFoundError: the problem does not exist
        """
        problem = await self._require_problem(problem_id)
        current = problem.difficulty if current_difficulty is None else current_difficulty
        if not 1 <= current <= 10:
            raise ValidationError("current_difficulty must be between 1 and 10", {"current_difficulty": current})

        cacheable = response_time is None and is_correct is None
        if cacheable:
            cached = await self.cache.get_prediction(user_id, problem_id, current)
            if cached is not None:
                return cached

        config = self.config.difficulty
        now = self.clock()
        profile = await self.store.get_or_create_difficulty_profile(user_id)
        problem_feedback = await self.store.list_problem_feedback(
            problem_id,
            now - datetime.timedelta(days=config.feedback_window_days),
            exclude_user_id=user_id,
        )
        user_feedback = await self.store.list_user_feedback(
            user_id, now - datetime.timedelta(days=config.pattern_window_days)
        )
        adjustments = await self.store.list_adjustments(
            problem_id, since=now - datetime.timedelta(days=config.trend_window_days)
        )

        prediction = self.predictor.predict(PredictionContext(
            current_difficulty=current,
            profile=profile,
            feedback=FeedbackAnalysis.from_feedbacks(problem_feedback),
            pattern=analyze_learning_pattern(user_feedback, config.trend_sample_size),
            adjustment_trend=adjustment_trend(adjustments),
            response_time=response_time,
            is_correct=is_correct,
        ))

        if cacheable:
            try:
                await self.cache.cache_prediction(user_id, problem_id, current, prediction)
            except CacheError as e:
                logger.warning(f"Could not cache prediction for {user_id}/{problem_id}: {e}")
        return prediction

    async def update_user_profile(self, user_id: str, is_correct: bool) -> PersonalizedDifficultyProfile:
        """Fold a solve outcome into the user's difficulty profile."""
        profile = await self.store.get_or_create_difficulty_profile(user_id)
        profile = self.predictor.apply_performance(profile, is_correct)
        await self.store.save_difficulty_profile(profile)
        await self.cache.invalidate_user_predictions(user_id)
        return profile

    async def get_personalized_problems(
        self,
        user_id: str,
        category_name: Optional[str] = None,
        limit: int = 10
    ) -> List[Tuple[Problem, float]]:
        """Problems near the user's ideal difficulty, best fit first."""
        if limit < 1:
            raise ValidationError("limit must be positive", {"limit": limit})

        profile = await self.store.get_or_create_difficulty_profile(user_id)
        candidates = await self.store.list_problems_by_difficulty(
            max(1.0, profile.ideal_difficulty - 1),
            min(10.0, profile.ideal_difficulty + 1),
            category_name=category_name,
            limit=limit * 2,
        )

        now = self.clock()
        scored = []
        for problem in candidates:
            last_feedback = await self.store.latest_user_feedback(user_id, problem.id)
            adjustments = await self.store.list_adjustments(problem.id, trigger_user_id=user_id)
            score = self.predictor.personalized_score(
                problem,
                profile,
                last_feedback,
                any(adjustment.is_personalized for adjustment in adjustments),
                now,
            )
            scored.append((problem, score))

        scored.sort(key=lambda entry: entry[1], reverse=True)
        return scored[:limit]

    async def get_consistency_score(self, user_id: str) -> float:
        """How uniform the user's recent feedback is, from 0 to 1."""
        since = self.clock() - datetime.timedelta(days=self.config.difficulty.pattern_window_days)
        feedback = await self.store.list_user_feedback(user_id, since)
        return consistency_score([event.feedback.score for event in feedback])

    # Review scheduling

    async def schedule_review(
        self,
        user_id: str,
        problem_id: str,
        performance: ReviewPerformance,
        problem_set_id: Optional[str] = None
    ) -> ReviewScheduleItem:
        """
        Record a review of a problem and schedule the next repetition.

        If the user has an open row for the problem it is completed;
        otherwise the review counts as the first one at the lowest level.

        Returns:
            The newly scheduled row
        """
        _check_performance(performance)
        problem = await self._require_problem(problem_id)
        now = self.clock()

        open_item = await self.store.find_open_schedule_item(user_id, problem_id)
        if open_item is not None:
            return await self._advance(open_item, performance, now)

        if performance.difficulty_score is None:
            performance = dataclasses.replace(performance, difficulty_score=problem.difficulty)
        profile = await self.store.get_or_create_forgetting_profile(user_id)
        result = self.calculator.calculate_next_review(
            ForgettingCurveLevel.first(), performance, profile, last_review_time=now
        )
        item = ReviewScheduleItem(
            user_id=user_id,
            problem_id=problem_id,
            problem_set_id=problem_set_id,
            scheduled_at=result.next_schedule_time,
            current_level=result.next_level,
            retention_rate=result.adjusted_retention_rate,
            consecutive_successes=1 if performance.is_success else 0,
            completion_count=1,
            difficulty_score=performance.difficulty_score,
            last_completed_at=now,
            created_at=now,
            updated_at=now,
        )
        await self.store.save_schedule_item(item)
        await self.store.save_forgetting_profile(self.calculator.record_review(profile, performance, now))
        await self.cache.invalidate_user_schedule(user_id)
        return item

    async def complete_review(
        self,
        schedule_id: str,
        is_success: bool,
        response_time: Optional[float] = None,
        confidence_level: Optional[int] = None
    ) -> ReviewScheduleItem:
        """
        Complete an open schedule row and create the next repetition.

        Returns:
            The newly scheduled row

        Raises:
            NotFoundError: no SCHEDULED or IN_PROGRESS row with that id
            ValidationError: out-of-range response time or confidence
        """
        item = await self.store.get_schedule_item(schedule_id)
        if item is None or not item.status.is_open:
            raise NotFoundError("Review schedule", schedule_id)

        problem = await self.store.get_problem(item.problem_id)
        performance = ReviewPerformance(
            is_success=is_success,
            response_time=30.0 if response_time is None else response_time,
            confidence_level=3 if confidence_level is None else confidence_level,
            difficulty_score=problem.difficulty if problem else self.config.scheduling.default_difficulty,
        )
        _check_performance(performance)
        return await self._advance(item, performance, self.clock())

    async def _advance(
        self,
        item: ReviewScheduleItem,
        performance: ReviewPerformance,
        now: datetime.datetime
    ) -> ReviewScheduleItem:
        profile = await self.store.get_or_create_forgetting_profile(item.user_id)
        result = self.calculator.calculate_next_review(
            item.current_level, performance, profile, last_review_time=now
        )

        item.status = ReviewStatus.COMPLETED
        item.last_completed_at = now
        item.updated_at = now

        next_item = ReviewScheduleItem(
            user_id=item.user_id,
            problem_id=item.problem_id,
            problem_set_id=item.problem_set_id,
            scheduled_at=result.next_schedule_time,
            current_level=result.next_level,
            retention_rate=result.adjusted_retention_rate,
            consecutive_successes=item.consecutive_successes + 1 if performance.is_success else 0,
            completion_count=item.completion_count + 1,
            difficulty_score=performance.difficulty_score,
            last_completed_at=now,
            previous_schedule_id=item.id,
            created_at=now,
            updated_at=now,
        )

        await self.store.save_schedule_item(item)
        await self.store.save_schedule_item(next_item)
        await self.store.save_forgetting_profile(self.calculator.record_review(profile, performance, now))
        await self.cache.invalidate_user_schedule(item.user_id)

        logger.info(
            f"Review {item.id} completed, next {result.next_level.value} at {result.next_schedule_time:%Y-%m-%d %H:%M}",
            extra={"data": {
                "user_id": item.user_id,
                "schedule_id": next_item.id,
                "action": result.recommended_action.value,
            }}
        )
        return next_item

    def resolve_options(
        self,
        options: Union[SchedulingOptions, Dict[str, Any], None] = None
    ) -> SchedulingOptions:
        """Validate caller options, filling gaps from configured defaults."""
        if isinstance(options, SchedulingOptions):
            return options
        defaults = self.scheduler.default_options().model_dump()
        if options:
            for key, value in options.items():
                if isinstance(value, dict) and isinstance(defaults.get(key), dict):
                    defaults[key] = {**defaults[key], **value}
                else:
                    defaults[key] = value
        try:
            return SchedulingOptions.model_validate(defaults)
        except PydanticValidationError as e:
            raise ValidationError(
                "Invalid scheduling options",
                {".".join(str(p) for p in err["loc"]): err["msg"] for err in e.errors()}
            ) from e

    @log_execution_time(logger)
    async def generate_personalized_schedule(
        self,
        user_id: str,
        options: Union[SchedulingOptions, Dict[str, Any], None] = None
    ) -> List[ReviewItem]:
        """
        Build the user's prioritised, time-slotted review list.

        Raises:
            ValidationError: invalid options
        """
        options = self.resolve_options(options)
        now = self.clock()
        items = await self.store.list_schedule_items(
            user_id, status=ReviewStatus.SCHEDULED, due_before=self.scheduler.horizon(now)
        )
        problems = await self.store.get_problems(sorted({item.problem_id for item in items}))
        return self.scheduler.generate(items, problems, options, now)

    async def get_schedule(self, user_id: str) -> List[ReviewItem]:
        """The cached schedule, regenerated and cached on a miss."""
        cached = await self.cache.get_user_schedule(user_id)
        if cached is not None:
            return cached.items

        items = await self.generate_personalized_schedule(user_id)
        try:
            await self.cache.cache_user_schedule(user_id, items, self.clock())
        except CacheError as e:
            logger.warning(f"Could not cache schedule for {user_id}: {e}")
        return items

    async def get_schedule_by_time_range(
        self,
        user_id: str,
        start: datetime.datetime,
        end: datetime.datetime
    ) -> List[ReviewScheduleItem]:
        if start > end:
            raise ValidationError("start must not be after end", {"start": str(start), "end": str(end)})
        return await self.store.list_schedule_items(user_id, due_after=start, due_before=end)

    async def get_schedule_stats(self, user_id: str) -> Dict[str, Any]:
        """Counts and averages over a user's schedule rows."""
        now = self.clock()
        items = await self.store.list_schedule_items(user_id)
        open_items = [item for item in items if item.status.is_open]
        week_ago = now - datetime.timedelta(days=7)

        levels = collections.Counter(item.current_level.value for item in open_items)
        return {
            "total_scheduled": len(open_items),
            "overdue": sum(1 for item in open_items if item.scheduled_at < now),
            "due_today": sum(1 for item in open_items if item.scheduled_at.date() == now.date()),
            "completed_this_week": sum(
                1 for item in items
                if item.status is ReviewStatus.COMPLETED
                and item.last_completed_at is not None
                and item.last_completed_at >= week_ago
            ),
            "level_distribution": {level.value: levels.get(level.value, 0) for level in ForgettingCurveLevel},
            "average_retention": round(
                sum(item.retention_rate for item in open_items) / len(open_items), 3
            ) if open_items else 0.0,
        }


def _parse_feedback(feedback: Union[DifficultyFeedback, str]) -> DifficultyFeedback:
    if isinstance(feedback, DifficultyFeedback):
        return feedback
    try:
        return DifficultyFeedback(feedback)
    except ValueError:
        raise ValidationError(
            f"Unknown feedback {feedback!r}",
            {"feedback": [kind.value for kind in DifficultyFeedback]}
        ) from None


def _check_performance(performance: ReviewPerformance) -> None:
    errors = {}
    if performance.response_time < 0:
        errors["response_time"] = "must not be negative"
    if not 1 <= performance.confidence_level <= 5:
        errors["confidence_level"] = "must be between 1 and 5"
    if performance.difficulty_score is not None and not 1 <= performance.difficulty_score <= 10:
        errors["difficulty_score"] = "must be between 1 and 10"
    if errors:
        raise ValidationError("Invalid review performance", errors)
