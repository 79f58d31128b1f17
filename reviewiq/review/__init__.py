"""
Review Scheduling Core

Forgetting-curve scheduling, adaptive difficulty, priority ranking and
the background jobs that keep per-user schedules fresh.
"""

from .cache import CachedSchedule, ReviewCache
from .difficulty import DifficultyPredictor, FeedbackAnalysis
from .forgetting import ForgettingCurveCalculator, calculate_review_priority
from .models import (
    DifficultyFeedback,
    DifficultyPrediction,
    ForgettingCurveLevel,
    ForgettingCurveProfile,
    PersonalizedDifficultyProfile,
    Problem,
    ReviewItem,
    ReviewPerformance,
    ReviewScheduleItem,
    ReviewStatus,
    SchedulingOptions,
    User,
)
from .orchestrator import JobName, JobOutcome, ReviewBatchOrchestrator
from .priority import PriorityScheduler
from .repository import InMemoryReviewStore, ReviewStore
from .service import ReviewService

__all__ = [
    'CachedSchedule',
    'ReviewCache',
    'DifficultyPredictor',
    'FeedbackAnalysis',
    'ForgettingCurveCalculator',
    'calculate_review_priority',
    'DifficultyFeedback',
    'DifficultyPrediction',
    'ForgettingCurveLevel',
    'ForgettingCurveProfile',
    'PersonalizedDifficultyProfile',
    'Problem',
    'ReviewItem',
    'ReviewPerformance',
    'ReviewScheduleItem',
    'ReviewStatus',
    'SchedulingOptions',
    'User',
    'JobName',
    'JobOutcome',
    'ReviewBatchOrchestrator',
    'PriorityScheduler',
    'InMemoryReviewStore',
    'ReviewStore',
    'ReviewService',
]
