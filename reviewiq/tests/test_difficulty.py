import datetime
import unittest

from reviewiq.review.difficulty import (
    DifficultyPredictor,
    FeedbackAnalysis,
    LearningPattern,
    PredictionContext,
    adjustment_trend,
    analyze_learning_pattern,
    consistency_score,
    feedback_trend,
)
from reviewiq.review.models import (
    ChallengePreference,
    DifficultyAction,
    DifficultyFeedback,
    DynamicDifficultyAdjustment,
    PersonalizedDifficultyProfile,
    Problem,
    ProblemDifficultyFeedback,
)

NOW = datetime.datetime(2024, 3, 4, 12, 0)


def make_feedback(kind, minutes_ago=0, user_id="u1", problem_id="p1", response_time=None):
    return ProblemDifficultyFeedback(
        user_id=user_id,
        problem_id=problem_id,
        feedback=kind,
        submitted_at=NOW - datetime.timedelta(minutes=minutes_ago),
        response_time=response_time,
    )


class TestFeedbackAnalysis(unittest.TestCase):

    def test_empty(self):
        analysis = FeedbackAnalysis.from_feedbacks([])
        self.assertEqual(analysis.total_feedbacks, 0)
        self.assertEqual(analysis.average_feedback, 0.0)

    def test_average_and_retry_rate(self):
        analysis = FeedbackAnalysis.from_feedbacks([
            make_feedback(DifficultyFeedback.TOO_HARD),
            make_feedback(DifficultyFeedback.TOO_HARD),
            make_feedback(DifficultyFeedback.TOO_HARD),
            make_feedback(DifficultyFeedback.RETRY),
            make_feedback(DifficultyFeedback.RETRY),
        ])
        self.assertEqual(analysis.total_feedbacks, 5)
        self.assertAlmostEqual(analysis.average_feedback, -1.4)
        self.assertAlmostEqual(analysis.retry_rate, 0.4)
        self.assertEqual(analysis.distribution["TOO_HARD"], 3)
        self.assertEqual(analysis.distribution["TOO_EASY"], 0)


class TestLearningPattern(unittest.TestCase):

    def test_trend_needs_three_points(self):
        self.assertEqual(feedback_trend([]), 0.0)
        self.assertEqual(feedback_trend([-1, 1]), 0.0)

    def test_trend_is_least_squares_slope(self):
        self.assertAlmostEqual(feedback_trend([-2, -1, 0, 1, 1]), 0.8)

    def test_consistency(self):
        self.assertEqual(consistency_score([1]), 0.5)
        self.assertEqual(consistency_score([0, 0, 0]), 1.0)
        self.assertLess(consistency_score([-2, 1, -2, 1]), consistency_score([0, 1, 0, 1]))

    def test_pattern_uses_chronological_order(self):
        # newest first on input; scores improve over time
        feedbacks = [
            make_feedback(DifficultyFeedback.TOO_EASY, minutes_ago=0),
            make_feedback(DifficultyFeedback.JUST_RIGHT, minutes_ago=10),
            make_feedback(DifficultyFeedback.TOO_HARD, minutes_ago=20),
            make_feedback(DifficultyFeedback.RETRY, minutes_ago=30),
        ]
        pattern = analyze_learning_pattern(feedbacks)
        self.assertEqual(pattern.recent_values, [-2, -1, 0, 1])
        self.assertGreater(pattern.trend, 0)
        self.assertAlmostEqual(pattern.frustration_level, 0.5)

    def test_pattern_samples_newest_values(self):
        feedbacks = [make_feedback(DifficultyFeedback.RETRY, minutes_ago=100 + i) for i in range(5)]
        feedbacks += [make_feedback(DifficultyFeedback.TOO_EASY, minutes_ago=i) for i in range(3)]
        pattern = analyze_learning_pattern(feedbacks, sample_size=5)
        self.assertEqual(pattern.recent_values, [-2, -2, 1, 1, 1])

    def test_average_response_time_ignores_missing(self):
        pattern = analyze_learning_pattern([
            make_feedback(DifficultyFeedback.JUST_RIGHT, minutes_ago=2, response_time=20),
            make_feedback(DifficultyFeedback.JUST_RIGHT, minutes_ago=1),
            make_feedback(DifficultyFeedback.JUST_RIGHT, minutes_ago=0, response_time=40),
        ])
        self.assertEqual(pattern.average_response_time, 30)

    def test_adjustment_trend(self):
        adjustments = [
            DynamicDifficultyAdjustment("p1", 5, 6, 1, "r", created_at=NOW),
            DynamicDifficultyAdjustment("p1", 4, 5, 1, "r", created_at=NOW - datetime.timedelta(days=2)),
            DynamicDifficultyAdjustment("p1", 6, 7.5, 1.5, "r", created_at=NOW + datetime.timedelta(hours=1)),
        ]
        self.assertEqual(adjustment_trend(adjustments), 2.5)
        self.assertEqual(adjustment_trend(adjustments[:1]), 0.0)


class TestDifficultyPredictor(unittest.TestCase):

    def setUp(self):
        self.predictor = DifficultyPredictor()
        self.profile = PersonalizedDifficultyProfile(user_id="u1")

    def test_no_history_keeps_current_difficulty(self):
        prediction = self.predictor.predict(PredictionContext(current_difficulty=5.0, profile=self.profile))
        self.assertEqual(prediction.predicted_difficulty, 5.0)
        self.assertIs(prediction.recommended_action, DifficultyAction.MAINTAIN)
        self.assertEqual(prediction.confidence, 0.5)
        self.assertEqual(set(prediction.factors), {"profile", "feedback", "pattern", "trend"})

    def test_confidence_follows_problem_feedback(self):
        context = PredictionContext(
            current_difficulty=5.0,
            profile=self.profile,
            feedback=FeedbackAnalysis(total_feedbacks=4),
        )
        self.assertAlmostEqual(self.predictor.predict(context).confidence, 0.7)

        context.feedback = FeedbackAnalysis(total_feedbacks=40)
        self.assertEqual(self.predictor.predict(context).confidence, 0.95)

    def test_confidence_ignores_learner_history(self):
        profile = PersonalizedDifficultyProfile(user_id="u1", total_feedbacks=12)
        prediction = self.predictor.predict(PredictionContext(current_difficulty=5.0, profile=profile))
        self.assertEqual(prediction.confidence, 0.5)

    def test_profile_factor_pulls_towards_ideal(self):
        context = PredictionContext(current_difficulty=7.0, profile=self.profile)
        self.assertAlmostEqual(self.predictor.profile_factor(context), -2 * 0.1 * 0.8)

    def test_feedback_factor_penalises_retries(self):
        context = PredictionContext(
            current_difficulty=5.0,
            profile=self.profile,
            feedback=FeedbackAnalysis(total_feedbacks=5, average_feedback=-1.2, retry_rate=0.4),
        )
        self.assertAlmostEqual(self.predictor.feedback_factor(context), -1.0)

    def test_pattern_factor_rewards_fast_correct_answers(self):
        pattern = LearningPattern(average_response_time=60.0)
        fast = PredictionContext(5.0, self.profile, pattern=pattern, response_time=30, is_correct=True)
        slow = PredictionContext(5.0, self.profile, pattern=pattern, response_time=90, is_correct=True)
        wrong = PredictionContext(5.0, self.profile, pattern=pattern, response_time=30, is_correct=False)
        self.assertAlmostEqual(self.predictor.pattern_factor(fast), 0.2)
        self.assertAlmostEqual(self.predictor.pattern_factor(slow), -0.2)
        self.assertEqual(self.predictor.pattern_factor(wrong), 0.0)

    def test_factors_are_bounded(self):
        context = PredictionContext(current_difficulty=5.0, profile=self.profile, adjustment_trend=500.0)
        self.assertEqual(self.predictor.trend_factor(context), 9.0)

    def test_prediction_is_clamped(self):
        profile = PersonalizedDifficultyProfile(user_id="u1", ideal_difficulty=10.0, adaptation_rate=1.0)
        prediction = self.predictor.predict(PredictionContext(
            current_difficulty=10.0,
            profile=profile,
            adjustment_trend=50.0,
        ))
        self.assertEqual(prediction.predicted_difficulty, 10.0)

    def test_negative_feedback_lowers_prediction(self):
        prediction = self.predictor.predict(PredictionContext(
            current_difficulty=5.0,
            profile=self.profile,
            feedback=FeedbackAnalysis(total_feedbacks=5, average_feedback=-2.0, retry_rate=1.0),
        ))
        self.assertLess(prediction.predicted_difficulty, 5.0)
        self.assertIn("too hard", prediction.adjustment_reason)

    def test_recommended_action_thresholds(self):
        self.assertIs(DifficultyPredictor.recommended_action(0.05), DifficultyAction.MAINTAIN)
        self.assertIs(DifficultyPredictor.recommended_action(0.5), DifficultyAction.PERSONALIZE)
        self.assertIs(DifficultyPredictor.recommended_action(1.5), DifficultyAction.INCREASE)
        self.assertIs(DifficultyPredictor.recommended_action(-1.5), DifficultyAction.DECREASE)

    def test_apply_feedback_nudges_profile(self):
        updated = self.predictor.apply_feedback(self.profile, DifficultyFeedback.TOO_EASY, NOW)
        self.assertAlmostEqual(updated.ideal_difficulty, 5.01)
        self.assertAlmostEqual(updated.frustration_tolerance, 0.51)
        self.assertEqual(updated.total_feedbacks, 1)
        self.assertEqual(updated.last_feedback_at, NOW)
        self.assertEqual(self.profile.total_feedbacks, 0)

        retry = self.predictor.apply_feedback(self.profile, DifficultyFeedback.RETRY, NOW)
        self.assertAlmostEqual(retry.ideal_difficulty, 4.98)
        self.assertAlmostEqual(retry.frustration_tolerance, 0.49)

    def test_apply_performance_moves_ideal(self):
        profile = self.profile
        for _ in range(5):
            profile = self.predictor.apply_performance(profile, True)
        self.assertAlmostEqual(profile.ideal_difficulty, 5.5)
        self.assertEqual(profile.recent_performance, [1.0] * 5)

        profile = PersonalizedDifficultyProfile(user_id="u1")
        profile = self.predictor.apply_performance(profile, False)
        self.assertAlmostEqual(profile.ideal_difficulty, 4.9)

    def test_trigger_requires_volume_and_negativity(self):
        negative = [make_feedback(DifficultyFeedback.TOO_HARD) for _ in range(5)]
        self.assertFalse(self.predictor.should_trigger_adjustment(negative[:4], False))
        self.assertTrue(self.predictor.should_trigger_adjustment(negative, False))
        self.assertFalse(self.predictor.should_trigger_adjustment(negative, True))

        mixed = negative[:3] + [make_feedback(DifficultyFeedback.JUST_RIGHT) for _ in range(2)]
        self.assertFalse(self.predictor.should_trigger_adjustment(mixed, False))

    def test_automatic_adjustment_value(self):
        hard = FeedbackAnalysis(total_feedbacks=5, average_feedback=-1.2)
        easy = FeedbackAnalysis(total_feedbacks=5, average_feedback=0.8)
        neutral = FeedbackAnalysis(total_feedbacks=5, average_feedback=0.0)
        self.assertEqual(self.predictor.automatic_adjustment_value(5.0, hard), -1.0)
        self.assertEqual(self.predictor.automatic_adjustment_value(5.0, easy), 1.0)
        self.assertEqual(self.predictor.automatic_adjustment_value(5.0, neutral), 0.0)
        self.assertEqual(self.predictor.automatic_adjustment_value(1.0, hard), 0.0)
        self.assertAlmostEqual(self.predictor.automatic_adjustment_value(9.5, easy), 0.5)


class TestPersonalizedScore(unittest.TestCase):

    def setUp(self):
        self.profile = PersonalizedDifficultyProfile(user_id="u1")
        self.problem = Problem(id="p1", title="Two Sum", difficulty=5.0)

    def test_perfect_fit(self):
        score = DifficultyPredictor.personalized_score(self.problem, self.profile, None, False, NOW)
        self.assertEqual(score, 140)

    def test_recent_feedback_is_penalised(self):
        feedback = make_feedback(DifficultyFeedback.TOO_HARD, minutes_ago=2 * 24 * 60)
        score = DifficultyPredictor.personalized_score(self.problem, self.profile, feedback, False, NOW)
        self.assertEqual(score, 110)

    def test_old_just_right_feedback_is_rewarded(self):
        feedback = make_feedback(DifficultyFeedback.JUST_RIGHT, minutes_ago=10 * 24 * 60)
        score = DifficultyPredictor.personalized_score(self.problem, self.profile, feedback, True, NOW)
        self.assertEqual(score, 175)

    def test_challenge_preference(self):
        profile = PersonalizedDifficultyProfile(user_id="u1", challenge_preference=ChallengePreference.CHALLENGE)
        hard = Problem(id="p2", title="Hard", difficulty=8.0)
        self.assertEqual(DifficultyPredictor.personalized_score(hard, profile, None, False, NOW), 126)
