"""
Forgetting Curve Calculator

Ebbinghaus-style spaced repetition: eight fixed review levels, each with
a base interval and an expected retention, personalised by the user's
memory retention factor and by how the last review went.

All functions here are pure; persistence of profiles and schedule rows
happens in the review service.
"""

import datetime
from typing import Dict, List, Optional, Sequence

from reviewiq.common.config import ForgettingConfig
from reviewiq.common.exceptions import ComputationInvariantViolation
from reviewiq.common.logger import app_logger
from reviewiq.review.models import (
    ForgettingCurveLevel,
    ForgettingCurveProfile,
    ForgettingCurveResult,
    RecommendedAction,
    ReviewPerformance,
)

logger = app_logger.getChild("review.forgetting")

# Base interval of each level, in minutes
BASE_INTERVALS: Dict[ForgettingCurveLevel, int] = {
    ForgettingCurveLevel.LEVEL_1: 20,
    ForgettingCurveLevel.LEVEL_2: 60,
    ForgettingCurveLevel.LEVEL_3: 480,
    ForgettingCurveLevel.LEVEL_4: 1440,
    ForgettingCurveLevel.LEVEL_5: 4320,
    ForgettingCurveLevel.LEVEL_6: 10080,
    ForgettingCurveLevel.LEVEL_7: 20160,
    ForgettingCurveLevel.LEVEL_8: 43200,
}

# Expected retention when reviewed right at the level's interval
BASE_RETENTION: Dict[ForgettingCurveLevel, float] = {
    ForgettingCurveLevel.LEVEL_1: 0.58,
    ForgettingCurveLevel.LEVEL_2: 0.44,
    ForgettingCurveLevel.LEVEL_3: 0.36,
    ForgettingCurveLevel.LEVEL_4: 0.33,
    ForgettingCurveLevel.LEVEL_5: 0.28,
    ForgettingCurveLevel.LEVEL_6: 0.25,
    ForgettingCurveLevel.LEVEL_7: 0.21,
    ForgettingCurveLevel.LEVEL_8: 0.18,
}

SUCCESS_BONUS = 1.2
RETENTION_SUCCESS_BONUS = 1.2
RETENTION_FAILURE_PENALTY = 0.8

# (upper bound in seconds, factor); anything slower gets SLOW_RESPONSE_FACTOR
RESPONSE_TIME_FACTORS = (
    (3, 1.3),
    (10, 1.1),
    (30, 1.0),
    (60, 0.9),
)
SLOW_RESPONSE_FACTOR = 0.8


def clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(upper, value))


def response_time_factor(response_time: float) -> float:
    """Faster answers indicate stronger recall."""
    for limit, factor in RESPONSE_TIME_FACTORS:
        if response_time <= limit:
            return factor
    return SLOW_RESPONSE_FACTOR


class ForgettingCurveCalculator:
    """
    Compute the next review of a problem for a user.

    The adjusted interval of a review is the base interval of the current
    level multiplied by the personal retention factor and a performance
    factor; the combined multiplier is clamped to
    ``[min_adjustment, max_adjustment]``.
    """

    def __init__(self, config: Optional[ForgettingConfig] = None):
        self.config = config or ForgettingConfig()

    def calculate_next_review(
        self,
        current_level: ForgettingCurveLevel,
        performance: ReviewPerformance,
        profile: ForgettingCurveProfile,
        last_review_time: Optional[datetime.datetime] = None,
        now: Optional[datetime.datetime] = None
    ) -> ForgettingCurveResult:
        """
        Calculate the next review time and level.

        Args:
            current_level: Level the problem is currently reviewed at
            performance: Outcome of the review just taken
            profile: The user's forgetting-curve profile
            last_review_time: Anchor for the next due time; defaults to ``now``
            now: Current time

        Returns:
            ForgettingCurveResult with next level, due time and retention

        Raises:
            ComputationInvariantViolation: if the interval is not positive
        """
        anchor = last_review_time or now or datetime.datetime.now()

        next_level = self.determine_next_level(current_level, performance)
        interval_minutes = self.adjusted_interval(current_level, performance, profile)
        if interval_minutes <= 0:
            raise ComputationInvariantViolation(
                "Non-positive review interval",
                details={"level": current_level.value, "interval_minutes": interval_minutes}
            )

        retention = self.adjusted_retention(current_level, performance, profile)
        action = self.determine_recommended_action(current_level, next_level)

        logger.debug(
            f"{current_level.value} -> {next_level.value} in {interval_minutes:.1f} min "
            f"(retention {retention:.2f}, user {profile.user_id})"
        )

        return ForgettingCurveResult(
            next_level=next_level,
            next_schedule_time=anchor + datetime.timedelta(minutes=interval_minutes),
            adjusted_retention_rate=retention,
            recommended_action=action,
            interval_minutes=interval_minutes,
        )

    def performance_factor(
        self,
        performance: ReviewPerformance,
        profile: Optional[ForgettingCurveProfile] = None
    ) -> float:
        """
        Multiplicative adjustment derived from a single review.

        Combines outcome, response time, confidence, the optional difficulty
        score and the user's historical success rate, clamped to the
        configured adjustment range.
        """
        factor = SUCCESS_BONUS if performance.is_success else self.config.failure_penalty
        factor *= response_time_factor(performance.response_time)

        # confidence 1..5 maps to 0.8..1.2
        factor *= 0.8 + (performance.confidence_level - 1) * 0.1

        if performance.difficulty_score is not None:
            # difficulty 1..10 maps to 0.97..0.70
            factor *= 0.7 + (11 - performance.difficulty_score) * 0.03

        if profile is not None and profile.success_rate > 0:
            factor *= 0.8 + profile.success_rate * 0.4

        return clamp(factor, self.config.min_adjustment, self.config.max_adjustment)

    def adjusted_interval(
        self,
        level: ForgettingCurveLevel,
        performance: ReviewPerformance,
        profile: ForgettingCurveProfile
    ) -> float:
        """Adjusted interval in minutes for a review taken at ``level``."""
        multiplier = profile.memory_retention_factor * self.performance_factor(performance, profile)
        multiplier = clamp(multiplier, self.config.min_adjustment, self.config.max_adjustment)
        return BASE_INTERVALS[level] * multiplier

    def adjusted_retention(
        self,
        level: ForgettingCurveLevel,
        performance: ReviewPerformance,
        profile: ForgettingCurveProfile
    ) -> float:
        bonus = RETENTION_SUCCESS_BONUS if performance.is_success else RETENTION_FAILURE_PENALTY
        retention = BASE_RETENTION[level] * profile.memory_retention_factor * bonus
        return min(self.config.max_retention, retention)

    @staticmethod
    def determine_next_level(
        current_level: ForgettingCurveLevel,
        performance: ReviewPerformance
    ) -> ForgettingCurveLevel:
        """
        Success advances one level (capped at the last). A failure with low
        confidence (1-2) drops one level unless already at the first; any
        other failure repeats the level.
        """
        index = current_level.index
        if performance.is_success:
            return ForgettingCurveLevel.from_index(index + 1)
        if performance.confidence_level <= 2 and index > 0:
            return ForgettingCurveLevel.from_index(index - 1)
        return current_level

    @staticmethod
    def determine_recommended_action(
        current_level: ForgettingCurveLevel,
        next_level: ForgettingCurveLevel
    ) -> RecommendedAction:
        if next_level.index > current_level.index:
            return RecommendedAction.ADVANCE
        if next_level.index < current_level.index:
            return RecommendedAction.DEMOTE
        return RecommendedAction.REPEAT

    def analyze_and_update_profile(
        self,
        profile: ForgettingCurveProfile,
        recent_reviews: Sequence[ReviewPerformance]
    ) -> ForgettingCurveProfile:
        """
        Self-tune a profile from a window of recent reviews.

        High recent success lengthens intervals (factor x1.05, at most 1.5),
        low success shortens them (x0.95, at least 0.5); fast confident
        answers nudge a further 2% up and slow unsure ones 2% down. The
        success rate becomes a 70/30 moving average with the window's rate.

        Returns:
            A new profile; the input is not modified
        """
        if not recent_reviews:
            return profile

        count = len(recent_reviews)
        recent_success = sum(1 for r in recent_reviews if r.is_success) / count
        avg_response = sum(r.response_time for r in recent_reviews) / count
        avg_confidence = sum(r.confidence_level for r in recent_reviews) / count

        factor = self.tuned_retention_factor(
            profile.memory_retention_factor, recent_success, avg_response, avg_confidence
        )

        return ForgettingCurveProfile(
            user_id=profile.user_id,
            memory_retention_factor=factor,
            difficulty_adjustment=profile.difficulty_adjustment,
            success_rate=profile.success_rate * 0.7 + recent_success * 0.3,
            total_reviews=profile.total_reviews + count,
            subject_adjustments=dict(profile.subject_adjustments),
            recent_reviews=list(profile.recent_reviews),
            updated_at=profile.updated_at,
        )

    def tuned_retention_factor(
        self,
        factor: float,
        recent_success: float,
        avg_response: float,
        avg_confidence: float
    ) -> float:
        if recent_success > 0.8:
            factor = min(1.5, factor * 1.05)
        elif recent_success < 0.6:
            factor = max(0.5, factor * 0.95)

        if avg_response < 10 and avg_confidence > 3.5:
            factor *= 1.02
        elif avg_response > 30 and avg_confidence < 2.5:
            factor *= 0.98

        return clamp(factor, self.config.min_adjustment, self.config.max_adjustment)

    def record_review(
        self,
        profile: ForgettingCurveProfile,
        performance: ReviewPerformance,
        now: Optional[datetime.datetime] = None
    ) -> ForgettingCurveProfile:
        """
        Fold one completed review into a profile.

        The review joins the bounded recent window; once the window holds
        enough reviews the retention factor is re-tuned over it. The success
        rate moves as a 70/30 moving average of individual outcomes.

        Returns:
            A new profile; the input is not modified
        """
        window: List[ReviewPerformance] = (list(profile.recent_reviews) + [performance])
        window = window[-self.config.profile_window:]

        outcome = 1.0 if performance.is_success else 0.0
        if profile.total_reviews == 0:
            success_rate = outcome
        else:
            success_rate = profile.success_rate * 0.7 + outcome * 0.3

        factor = profile.memory_retention_factor
        if len(window) >= self.config.min_reviews_for_tuning:
            count = len(window)
            factor = self.tuned_retention_factor(
                factor,
                sum(1 for r in window if r.is_success) / count,
                sum(r.response_time for r in window) / count,
                sum(r.confidence_level for r in window) / count,
            )

        return ForgettingCurveProfile(
            user_id=profile.user_id,
            memory_retention_factor=factor,
            difficulty_adjustment=profile.difficulty_adjustment,
            success_rate=success_rate,
            total_reviews=profile.total_reviews + 1,
            subject_adjustments=dict(profile.subject_adjustments),
            recent_reviews=window,
            updated_at=now or datetime.datetime.now(),
        )


def calculate_review_priority(
    scheduled_time: datetime.datetime,
    difficulty: float,
    success_rate: float,
    days_since_last_review: float,
    now: Optional[datetime.datetime] = None
) -> int:
    """
    Coarse urgency of a review, used to break ties between equal priority
    scores. Grows with lateness, difficulty, failure rate and staleness.
    """
    now = now or datetime.datetime.now()
    overdue_hours = max(0.0, (now - scheduled_time).total_seconds() / 3600)
    priority = (
        overdue_hours * 10
        + difficulty * 5
        + (1 - success_rate) * 20
        + days_since_last_review * 2
    )
    return round(priority)
