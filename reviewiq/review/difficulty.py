"""
Adaptive Difficulty

Predicts a personalised difficulty for a (user, problem) pair from four
weighted factors and evolves the user's difficulty profile from feedback.

The functions in this module are pure: they take already-loaded feedback,
adjustments and profiles and return new values. The review service does
the loading and persisting.
"""

import datetime
import statistics
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Sequence

from reviewiq.common.config import DifficultyConfig
from reviewiq.common.logger import app_logger
from reviewiq.common.scoring import ScoringFactor, WeightedScorer
from reviewiq.review.models import (
    ChallengePreference,
    DifficultyAction,
    DifficultyFeedback,
    DifficultyPrediction,
    DynamicDifficultyAdjustment,
    PersonalizedDifficultyProfile,
    Problem,
    ProblemDifficultyFeedback,
)

logger = app_logger.getChild("review.difficulty")

MIN_DIFFICULTY = 1.0
MAX_DIFFICULTY = 10.0

# Change of ideal difficulty per feedback, before scaling by adaptation rate
IDEAL_DIFFICULTY_DELTAS: Dict[DifficultyFeedback, float] = {
    DifficultyFeedback.TOO_EASY: 0.1,
    DifficultyFeedback.JUST_RIGHT: 0.0,
    DifficultyFeedback.TOO_HARD: -0.1,
    DifficultyFeedback.RETRY: -0.2,
}

FRUSTRATION_DELTAS: Dict[DifficultyFeedback, float] = {
    DifficultyFeedback.TOO_EASY: 0.01,
    DifficultyFeedback.RETRY: -0.01,
}


def clamp_difficulty(value: float) -> float:
    return max(MIN_DIFFICULTY, min(MAX_DIFFICULTY, value))


@dataclass
class FeedbackAnalysis:
    """Aggregate of feedback events for one problem."""
    total_feedbacks: int = 0
    average_feedback: float = 0.0
    retry_rate: float = 0.0
    distribution: Dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_feedbacks(cls, feedbacks: Sequence[ProblemDifficultyFeedback]) -> 'FeedbackAnalysis':
        if not feedbacks:
            return cls()
        distribution = {kind.value: 0 for kind in DifficultyFeedback}
        for event in feedbacks:
            distribution[event.feedback.value] += 1
        total = len(feedbacks)
        return cls(
            total_feedbacks=total,
            average_feedback=sum(event.feedback.score for event in feedbacks) / total,
            retry_rate=distribution[DifficultyFeedback.RETRY.value] / total,
            distribution=distribution,
        )

    def to_dict(self) -> Dict[str, object]:
        return {
            "total_feedbacks": self.total_feedbacks,
            "average_feedback": self.average_feedback,
            "retry_rate": self.retry_rate,
            "distribution": dict(self.distribution),
        }


@dataclass
class LearningPattern:
    """
    A user's recent feedback behaviour.

    ``recent_values`` are feedback scores oldest first, so a positive
    ``trend`` means the user finds problems increasingly easy.
    """
    recent_values: List[int] = field(default_factory=list)
    trend: float = 0.0
    frustration_level: float = 0.0
    average_response_time: float = 0.0
    consistency: float = 0.5


def feedback_trend(values: Sequence[float]) -> float:
    """Least-squares slope of values in chronological order; 0 below three points."""
    if len(values) < 3:
        return 0.0
    return statistics.linear_regression(range(len(values)), values).slope


def consistency_score(values: Sequence[float]) -> float:
    """1 for identical feedback, falling towards 0 as the spread grows."""
    if len(values) < 2:
        return 0.5
    return max(0.0, 1 - statistics.pstdev(values) / 2)


def analyze_learning_pattern(
    feedbacks: Sequence[ProblemDifficultyFeedback],
    sample_size: int = 5
) -> LearningPattern:
    """
    Summarise a user's recent feedback.

    Args:
        feedbacks: The user's feedback events, in any order
        sample_size: How many of the newest events feed the trend

    Returns:
        LearningPattern for the window
    """
    if not feedbacks:
        return LearningPattern()

    ordered = sorted(feedbacks, key=lambda event: event.submitted_at)
    values = [event.feedback.score for event in ordered]
    sample = values[-sample_size:]
    timed = [event.response_time for event in ordered if event.response_time is not None]

    return LearningPattern(
        recent_values=sample,
        trend=feedback_trend(sample),
        frustration_level=sum(1 for event in ordered if event.feedback.is_negative) / len(ordered),
        average_response_time=sum(timed) / len(timed) if timed else 0.0,
        consistency=consistency_score(values),
    )


def adjustment_trend(adjustments: Sequence[DynamicDifficultyAdjustment]) -> float:
    """Net movement of a problem's difficulty across the given adjustments."""
    if len(adjustments) < 2:
        return 0.0
    ordered = sorted(adjustments, key=lambda adjustment: adjustment.created_at)
    return ordered[-1].adjusted_difficulty - ordered[0].adjusted_difficulty


@dataclass
class PredictionContext:
    """Everything the predictor needs about one (user, problem) pair."""
    current_difficulty: float
    profile: PersonalizedDifficultyProfile
    feedback: FeedbackAnalysis = field(default_factory=FeedbackAnalysis)
    pattern: LearningPattern = field(default_factory=LearningPattern)
    adjustment_trend: float = 0.0
    response_time: Optional[float] = None
    is_correct: Optional[bool] = None


class DifficultyPredictor:
    """
    Weighted four-factor difficulty predictor.

    Factors (default weights):
    - profile (0.4): pull towards the user's ideal difficulty
    - feedback (0.3): other learners' verdicts on this problem
    - pattern (0.2): the user's own trend, frustration and speed
    - trend (0.1): recent global adjustments of the problem
    """

    def __init__(self, config: Optional[DifficultyConfig] = None):
        self.config = config or DifficultyConfig()
        self.scorer: WeightedScorer[PredictionContext] = WeightedScorer([
            ScoringFactor("profile", self.config.profile_weight, self.profile_factor),
            ScoringFactor("feedback", self.config.feedback_weight, self.feedback_factor),
            ScoringFactor("pattern", self.config.pattern_weight, self.pattern_factor),
            ScoringFactor("trend", self.config.trend_weight, self.trend_factor),
        ])

    def _bounded(self, value: float) -> float:
        bound = self.config.factor_bound
        return max(-bound, min(bound, value))

    def profile_factor(self, context: PredictionContext) -> float:
        profile = context.profile
        gap = profile.ideal_difficulty - context.current_difficulty
        return self._bounded(gap * profile.adaptation_rate * profile.stability_factor)

    def feedback_factor(self, context: PredictionContext) -> float:
        analysis = context.feedback
        if analysis.total_feedbacks == 0:
            return 0.0
        factor = analysis.average_feedback * 0.5
        if analysis.retry_rate > self.config.retry_rate_threshold:
            factor -= analysis.retry_rate
        return self._bounded(factor)

    def pattern_factor(self, context: PredictionContext) -> float:
        pattern = context.pattern
        factor = pattern.trend * 0.3

        if pattern.frustration_level > self.config.frustration_threshold:
            factor -= pattern.frustration_level * 0.5

        if context.response_time and pattern.average_response_time > 0 and context.is_correct:
            ratio = context.response_time / pattern.average_response_time
            if ratio < 0.7:
                factor += 0.2
            elif ratio > 1.3:
                factor -= 0.2

        return self._bounded(factor)

    def trend_factor(self, context: PredictionContext) -> float:
        return self._bounded(context.adjustment_trend * 0.1)

    def predict(self, context: PredictionContext) -> DifficultyPrediction:
        """
        Predict a personalised difficulty.

        Returns:
            DifficultyPrediction with the clamped prediction (one decimal),
            a confidence that grows with the feedback other learners gave the
            problem and the
            unweighted factor breakdown
        """
        delta, factors = self.scorer.evaluate(context)
        predicted = clamp_difficulty(context.current_difficulty + delta)
        change = predicted - context.current_difficulty

        return DifficultyPrediction(
            predicted_difficulty=round(predicted, 1),
            confidence=min(0.95, 0.5 + context.feedback.total_feedbacks * 0.05),
            adjustment_reason=self._describe(factors, change),
            recommended_action=self.recommended_action(change),
            factors=factors,
        )

    @staticmethod
    def recommended_action(change: float) -> DifficultyAction:
        if abs(change) < 0.1:
            return DifficultyAction.MAINTAIN
        if change > 1:
            return DifficultyAction.INCREASE
        if change < -1:
            return DifficultyAction.DECREASE
        return DifficultyAction.PERSONALIZE

    def _describe(self, factors: Dict[str, float], change: float) -> str:
        if abs(change) < 0.1:
            return "Current difficulty suits the learner"

        reasons = []
        if abs(factors["profile"]) > 0.1:
            direction = "above" if factors["profile"] > 0 else "below"
            reasons.append(f"ideal difficulty is {direction} the current level")
        if abs(factors["feedback"]) > 0.1:
            verdict = "easy" if factors["feedback"] > 0 else "hard"
            reasons.append(f"other learners found it too {verdict}")
        if abs(factors["pattern"]) > 0.1:
            reasons.append("recent learning pattern")
        if abs(factors["trend"]) > 0.05:
            reasons.append("recent difficulty adjustments")

        if not reasons:
            return "Minor personalisation"
        return "Adjusted for " + ", ".join(reasons)

    def apply_feedback(
        self,
        profile: PersonalizedDifficultyProfile,
        feedback: DifficultyFeedback,
        now: datetime.datetime
    ) -> PersonalizedDifficultyProfile:
        """Return ``profile`` nudged by one feedback event."""
        ideal = profile.ideal_difficulty + IDEAL_DIFFICULTY_DELTAS[feedback] * profile.adaptation_rate
        tolerance = profile.frustration_tolerance + FRUSTRATION_DELTAS.get(feedback, 0.0)
        return replace(
            profile,
            ideal_difficulty=clamp_difficulty(ideal),
            frustration_tolerance=max(0.0, min(1.0, tolerance)),
            total_feedbacks=profile.total_feedbacks + 1,
            last_feedback_at=now,
            recent_performance=list(profile.recent_performance),
        )

    def apply_performance(
        self,
        profile: PersonalizedDifficultyProfile,
        is_correct: bool
    ) -> PersonalizedDifficultyProfile:
        """
        Record a solve outcome in the bounded performance window and move
        the ideal difficulty by 0.1 when the window's success rate is high
        (above 0.8) or low (below 0.4).
        """
        window = (list(profile.recent_performance) + [1.0 if is_correct else 0.0])
        window = window[-self.config.recent_performance_size:]
        success_rate = sum(window) / len(window)

        ideal = profile.ideal_difficulty
        if success_rate > 0.8:
            ideal = min(MAX_DIFFICULTY, ideal + 0.1)
        elif success_rate < 0.4:
            ideal = max(MIN_DIFFICULTY, ideal - 0.1)

        return replace(profile, ideal_difficulty=ideal, recent_performance=window)

    def should_trigger_adjustment(
        self,
        recent_feedbacks: Sequence[ProblemDifficultyFeedback],
        has_recent_automatic_adjustment: bool
    ) -> bool:
        """
        Decide whether the trigger window warrants an automatic adjustment.

        Requires enough feedback, a large enough share of negative verdicts,
        and no automatic adjustment of the problem inside the window.
        """
        if has_recent_automatic_adjustment:
            return False
        if len(recent_feedbacks) < self.config.trigger_min_feedbacks:
            return False
        negative = sum(1 for event in recent_feedbacks if event.feedback.is_negative)
        return negative / len(recent_feedbacks) >= self.config.trigger_negative_ratio

    def automatic_adjustment_value(self, current_difficulty: float, analysis: FeedbackAnalysis) -> float:
        """Signed step to apply, bounded so the result stays within 1-10."""
        step = 0.0
        if analysis.average_feedback < -0.5:
            step = -self.config.automatic_step
        elif analysis.average_feedback > 0.5:
            step = self.config.automatic_step
        return clamp_difficulty(current_difficulty + step) - current_difficulty

    @staticmethod
    def personalized_score(
        problem: Problem,
        profile: PersonalizedDifficultyProfile,
        last_feedback: Optional[ProblemDifficultyFeedback],
        has_personalized_adjustment: bool,
        now: datetime.datetime
    ) -> float:
        """Rank a candidate problem for a user; higher is a better fit."""
        score = 100 + (5 - abs(problem.difficulty - profile.ideal_difficulty)) * 8

        if last_feedback is not None:
            if now - last_feedback.submitted_at < datetime.timedelta(days=7):
                score -= 30
            elif last_feedback.feedback is DifficultyFeedback.JUST_RIGHT:
                score += 20

        if has_personalized_adjustment:
            score += 15

        preference = profile.challenge_preference
        if preference is ChallengePreference.CHALLENGE and problem.difficulty >= 7:
            score += 10
        elif preference is ChallengePreference.COMFORT and problem.difficulty <= 4:
            score += 10

        return max(0.0, score)
