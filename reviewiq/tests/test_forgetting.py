import datetime
import unittest

from reviewiq.common.config import ForgettingConfig
from reviewiq.review.forgetting import (
    BASE_INTERVALS,
    ForgettingCurveCalculator,
    calculate_review_priority,
    response_time_factor,
)
from reviewiq.review.models import (
    ForgettingCurveLevel,
    ForgettingCurveProfile,
    RecommendedAction,
    ReviewPerformance,
)

NOW = datetime.datetime(2024, 3, 4, 12, 0)


class TestForgettingCurveLevel(unittest.TestCase):

    def test_levels_are_ordered(self):
        levels = list(ForgettingCurveLevel)
        self.assertEqual([level.index for level in levels], list(range(8)))
        self.assertIs(ForgettingCurveLevel.first(), ForgettingCurveLevel.LEVEL_1)
        self.assertIs(ForgettingCurveLevel.last(), ForgettingCurveLevel.LEVEL_8)

    def test_from_index_is_clamped(self):
        self.assertIs(ForgettingCurveLevel.from_index(-3), ForgettingCurveLevel.LEVEL_1)
        self.assertIs(ForgettingCurveLevel.from_index(42), ForgettingCurveLevel.LEVEL_8)

    def test_base_intervals_increase(self):
        intervals = [BASE_INTERVALS[level] for level in ForgettingCurveLevel]
        self.assertEqual(intervals, sorted(intervals))
        self.assertEqual(intervals[0], 20)
        self.assertEqual(intervals[-1], 30 * 24 * 60)


class TestNextReview(unittest.TestCase):

    def setUp(self):
        self.calculator = ForgettingCurveCalculator()
        self.profile = ForgettingCurveProfile(user_id="u1")

    def test_fast_confident_success_is_clamped_to_forty_minutes(self):
        profile = ForgettingCurveProfile(user_id="u1", memory_retention_factor=1.0, success_rate=0.7)
        performance = ReviewPerformance(is_success=True, response_time=2, confidence_level=5)

        result = self.calculator.calculate_next_review(
            ForgettingCurveLevel.LEVEL_1, performance, profile, last_review_time=NOW
        )

        self.assertAlmostEqual(result.interval_minutes, 40.0)
        self.assertEqual(result.next_schedule_time, NOW + datetime.timedelta(minutes=40))
        self.assertIs(result.next_level, ForgettingCurveLevel.LEVEL_2)
        self.assertIs(result.recommended_action, RecommendedAction.ADVANCE)
        self.assertAlmostEqual(result.adjusted_retention_rate, 0.58 * 1.2)

    def test_success_at_last_level_repeats(self):
        result = self.calculator.calculate_next_review(
            ForgettingCurveLevel.LEVEL_8, ReviewPerformance(is_success=True), self.profile, NOW
        )
        self.assertIs(result.next_level, ForgettingCurveLevel.LEVEL_8)
        self.assertIs(result.recommended_action, RecommendedAction.REPEAT)

    def test_unsure_failure_demotes(self):
        result = self.calculator.calculate_next_review(
            ForgettingCurveLevel.LEVEL_3,
            ReviewPerformance(is_success=False, confidence_level=2),
            self.profile,
            NOW,
        )
        self.assertIs(result.next_level, ForgettingCurveLevel.LEVEL_2)
        self.assertIs(result.recommended_action, RecommendedAction.DEMOTE)

    def test_confident_failure_repeats(self):
        result = self.calculator.calculate_next_review(
            ForgettingCurveLevel.LEVEL_3,
            ReviewPerformance(is_success=False, confidence_level=3),
            self.profile,
            NOW,
        )
        self.assertIs(result.next_level, ForgettingCurveLevel.LEVEL_3)
        self.assertIs(result.recommended_action, RecommendedAction.REPEAT)

    def test_failure_at_first_level_never_goes_below(self):
        result = self.calculator.calculate_next_review(
            ForgettingCurveLevel.LEVEL_1,
            ReviewPerformance(is_success=False, confidence_level=1),
            self.profile,
            NOW,
        )
        self.assertIs(result.next_level, ForgettingCurveLevel.LEVEL_1)

    def test_multiplier_stays_within_bounds(self):
        config = ForgettingConfig()
        extremes = [
            (ForgettingCurveProfile(user_id="u", memory_retention_factor=2.0, success_rate=1.0),
             ReviewPerformance(is_success=True, response_time=1, confidence_level=5, difficulty_score=1)),
            (ForgettingCurveProfile(user_id="u", memory_retention_factor=0.1, success_rate=0.01),
             ReviewPerformance(is_success=False, response_time=300, confidence_level=1, difficulty_score=10)),
        ]
        for profile, performance in extremes:
            for level in ForgettingCurveLevel:
                interval = self.calculator.adjusted_interval(level, performance, profile)
                multiplier = interval / BASE_INTERVALS[level]
                self.assertGreaterEqual(multiplier, config.min_adjustment - 1e-9)
                self.assertLessEqual(multiplier, config.max_adjustment + 1e-9)

    def test_retention_is_capped(self):
        profile = ForgettingCurveProfile(user_id="u", memory_retention_factor=2.0)
        retention = self.calculator.adjusted_retention(
            ForgettingCurveLevel.LEVEL_1, ReviewPerformance(is_success=True), profile
        )
        self.assertEqual(retention, 0.95)

    def test_success_rate_factor_skipped_without_history(self):
        performance = ReviewPerformance(is_success=True)
        fresh = self.calculator.performance_factor(performance, ForgettingCurveProfile(user_id="u"))
        self.assertAlmostEqual(fresh, 1.2)

    def test_response_time_buckets(self):
        self.assertEqual(response_time_factor(3), 1.3)
        self.assertEqual(response_time_factor(10), 1.1)
        self.assertEqual(response_time_factor(30), 1.0)
        self.assertEqual(response_time_factor(60), 0.9)
        self.assertEqual(response_time_factor(61), 0.8)


class TestProfileTuning(unittest.TestCase):

    def setUp(self):
        self.calculator = ForgettingCurveCalculator()

    def test_first_review_sets_success_rate(self):
        profile = self.calculator.record_review(
            ForgettingCurveProfile(user_id="u1"), ReviewPerformance(is_success=False), NOW
        )
        self.assertEqual(profile.success_rate, 0.0)
        self.assertEqual(profile.total_reviews, 1)

        profile = self.calculator.record_review(profile, ReviewPerformance(is_success=True), NOW)
        self.assertAlmostEqual(profile.success_rate, 0.3)

    def test_retention_factor_tunes_after_enough_reviews(self):
        profile = ForgettingCurveProfile(user_id="u1")
        strong = ReviewPerformance(is_success=True, response_time=2, confidence_level=5)

        for _ in range(4):
            profile = self.calculator.record_review(profile, strong, NOW)
        self.assertEqual(profile.memory_retention_factor, 1.0)

        profile = self.calculator.record_review(profile, strong, NOW)
        self.assertAlmostEqual(profile.memory_retention_factor, 1.05 * 1.02)

    def test_recent_window_is_bounded(self):
        profile = ForgettingCurveProfile(user_id="u1")
        for _ in range(25):
            profile = self.calculator.record_review(profile, ReviewPerformance(is_success=True), NOW)
        self.assertEqual(len(profile.recent_reviews), 20)
        self.assertEqual(profile.total_reviews, 25)

    def test_analyze_and_update_profile_shortens_weak_recall(self):
        profile = ForgettingCurveProfile(user_id="u1")
        reviews = (
            [ReviewPerformance(is_success=True, response_time=45, confidence_level=2)] * 3
            + [ReviewPerformance(is_success=False, response_time=45, confidence_level=2)] * 7
        )

        updated = self.calculator.analyze_and_update_profile(profile, reviews)

        self.assertAlmostEqual(updated.memory_retention_factor, 0.95 * 0.98)
        self.assertAlmostEqual(updated.success_rate, 0.09)
        self.assertEqual(updated.total_reviews, 10)
        self.assertEqual(profile.memory_retention_factor, 1.0)

    def test_analyze_without_reviews_returns_profile(self):
        profile = ForgettingCurveProfile(user_id="u1")
        self.assertIs(self.calculator.analyze_and_update_profile(profile, []), profile)


class TestReviewPriority(unittest.TestCase):

    def test_priority_combines_lateness_difficulty_failure_and_staleness(self):
        scheduled = NOW - datetime.timedelta(hours=2)
        self.assertEqual(calculate_review_priority(scheduled, 6, 0.5, 3, now=NOW), 66)

    def test_future_items_have_no_lateness(self):
        scheduled = NOW + datetime.timedelta(hours=5)
        self.assertEqual(calculate_review_priority(scheduled, 2, 1.0, 0, now=NOW), 10)
