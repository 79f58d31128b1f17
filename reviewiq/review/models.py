"""
Review Domain Models

Entities, value objects and enumerations shared by the forgetting-curve
calculator, the difficulty predictor, the priority scheduler and the
batch orchestrator.
"""

import enum
import uuid
import datetime
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


def new_id() -> str:
    return str(uuid.uuid4())


def _iso(value: Optional[datetime.datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_dt(value: Any) -> Optional[datetime.datetime]:
    if value is None or isinstance(value, datetime.datetime):
        return value
    return datetime.datetime.fromisoformat(value)


class ForgettingCurveLevel(enum.Enum):
    """Ordered spaced-repetition stages; each maps to a base interval."""
    LEVEL_1 = "LEVEL_1"    # 20 minutes
    LEVEL_2 = "LEVEL_2"    # 1 hour
    LEVEL_3 = "LEVEL_3"    # 8 hours
    LEVEL_4 = "LEVEL_4"    # 1 day
    LEVEL_5 = "LEVEL_5"    # 3 days
    LEVEL_6 = "LEVEL_6"    # 1 week
    LEVEL_7 = "LEVEL_7"    # 2 weeks
    LEVEL_8 = "LEVEL_8"    # 1 month

    @property
    def index(self) -> int:
        return _LEVEL_ORDER.index(self)

    @classmethod
    def from_index(cls, index: int) -> 'ForgettingCurveLevel':
        return _LEVEL_ORDER[max(0, min(index, len(_LEVEL_ORDER) - 1))]

    @classmethod
    def first(cls) -> 'ForgettingCurveLevel':
        return _LEVEL_ORDER[0]

    @classmethod
    def last(cls) -> 'ForgettingCurveLevel':
        return _LEVEL_ORDER[-1]


_LEVEL_ORDER = list(ForgettingCurveLevel)


class ReviewStatus(enum.Enum):
    """Lifecycle of a review schedule row."""
    SCHEDULED = "SCHEDULED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"

    @property
    def is_open(self) -> bool:
        return self in (ReviewStatus.SCHEDULED, ReviewStatus.IN_PROGRESS)


class RecommendedAction(enum.Enum):
    """Level transition suggested after a review."""
    ADVANCE = "ADVANCE"
    REPEAT = "REPEAT"
    DEMOTE = "DEMOTE"


class DifficultyFeedback(enum.Enum):
    """Learner's subjective verdict on a problem."""
    TOO_EASY = "TOO_EASY"
    JUST_RIGHT = "JUST_RIGHT"
    TOO_HARD = "TOO_HARD"
    RETRY = "RETRY"

    @property
    def score(self) -> int:
        """Numeric value used for averaging; negative means too hard."""
        return _FEEDBACK_SCORES[self]

    @property
    def is_negative(self) -> bool:
        return self in (DifficultyFeedback.TOO_HARD, DifficultyFeedback.RETRY)


_FEEDBACK_SCORES = {
    DifficultyFeedback.RETRY: -2,
    DifficultyFeedback.TOO_HARD: -1,
    DifficultyFeedback.JUST_RIGHT: 0,
    DifficultyFeedback.TOO_EASY: 1,
}


class DifficultyAction(enum.Enum):
    """What the predictor recommends doing with a problem's difficulty."""
    MAINTAIN = "MAINTAIN"
    INCREASE = "INCREASE"
    DECREASE = "DECREASE"
    PERSONALIZE = "PERSONALIZE"


class LearningPace(enum.Enum):
    SLOW = "SLOW"
    MODERATE = "MODERATE"
    FAST = "FAST"


class ChallengePreference(enum.Enum):
    COMFORT = "COMFORT"
    BALANCED = "BALANCED"
    CHALLENGE = "CHALLENGE"


class UrgencyLevel(enum.Enum):
    """Overdue severity buckets."""
    LOW = "LOW"              # up to 24 hours late
    MEDIUM = "MEDIUM"        # up to 3 days late
    HIGH = "HIGH"            # up to a week late
    CRITICAL = "CRITICAL"    # more than a week late


class BatchStatus(enum.Enum):
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


@dataclass
class User:
    id: str
    is_active: bool = True
    last_login_at: Optional[datetime.datetime] = None


@dataclass
class Problem:
    id: str
    title: str
    difficulty: float = 5.0
    category_name: Optional[str] = None
    is_active: bool = True


@dataclass
class ReviewPerformance:
    """Outcome of a single review attempt."""
    is_success: bool
    response_time: float = 30.0
    confidence_level: int = 3
    difficulty_score: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ReviewPerformance':
        return cls(**data)


@dataclass
class ForgettingCurveProfile:
    """
    Per-user personal memory model.

    ``memory_retention_factor`` scales every interval and retention estimate
    for the user and is kept inside [0.1, 2.0]. ``recent_reviews`` holds the
    bounded window used for self-tuning.
    """
    user_id: str
    memory_retention_factor: float = 1.0
    difficulty_adjustment: float = 1.0
    success_rate: float = 0.0
    total_reviews: int = 0
    subject_adjustments: Dict[str, float] = field(default_factory=dict)
    recent_reviews: List[ReviewPerformance] = field(default_factory=list)
    updated_at: Optional[datetime.datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "memory_retention_factor": self.memory_retention_factor,
            "difficulty_adjustment": self.difficulty_adjustment,
            "success_rate": self.success_rate,
            "total_reviews": self.total_reviews,
            "subject_adjustments": dict(self.subject_adjustments),
            "recent_reviews": [review.to_dict() for review in self.recent_reviews],
            "updated_at": _iso(self.updated_at),
        }


@dataclass
class PersonalizedDifficultyProfile:
    """Per-user difficulty preferences, nudged by every feedback event."""
    user_id: str
    ideal_difficulty: float = 5.0
    preferred_min_difficulty: float = 3.0
    preferred_max_difficulty: float = 7.0
    learning_pace: LearningPace = LearningPace.MODERATE
    challenge_preference: ChallengePreference = ChallengePreference.BALANCED
    frustration_tolerance: float = 0.5
    adaptation_rate: float = 0.1
    stability_factor: float = 0.8
    total_feedbacks: int = 0
    last_feedback_at: Optional[datetime.datetime] = None
    recent_performance: List[float] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "ideal_difficulty": self.ideal_difficulty,
            "preferred_min_difficulty": self.preferred_min_difficulty,
            "preferred_max_difficulty": self.preferred_max_difficulty,
            "learning_pace": self.learning_pace.value,
            "challenge_preference": self.challenge_preference.value,
            "frustration_tolerance": self.frustration_tolerance,
            "adaptation_rate": self.adaptation_rate,
            "stability_factor": self.stability_factor,
            "total_feedbacks": self.total_feedbacks,
            "last_feedback_at": _iso(self.last_feedback_at),
            "recent_performance": list(self.recent_performance),
        }


@dataclass
class ReviewScheduleItem:
    """One scheduled repetition of a problem for a user."""
    user_id: str
    problem_id: str
    scheduled_at: datetime.datetime
    current_level: ForgettingCurveLevel = ForgettingCurveLevel.LEVEL_1
    status: ReviewStatus = ReviewStatus.SCHEDULED
    retention_rate: float = 0.5
    consecutive_successes: int = 0
    completion_count: int = 0
    difficulty_score: Optional[float] = None
    last_completed_at: Optional[datetime.datetime] = None
    previous_schedule_id: Optional[str] = None
    problem_set_id: Optional[str] = None
    id: str = field(default_factory=new_id)
    created_at: Optional[datetime.datetime] = None
    updated_at: Optional[datetime.datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "problem_id": self.problem_id,
            "problem_set_id": self.problem_set_id,
            "current_level": self.current_level.value,
            "status": self.status.value,
            "scheduled_at": _iso(self.scheduled_at),
            "retention_rate": self.retention_rate,
            "consecutive_successes": self.consecutive_successes,
            "completion_count": self.completion_count,
            "difficulty_score": self.difficulty_score,
            "last_completed_at": _iso(self.last_completed_at),
            "previous_schedule_id": self.previous_schedule_id,
        }


@dataclass(frozen=True)
class ProblemDifficultyFeedback:
    """Immutable feedback event."""
    user_id: str
    problem_id: str
    feedback: DifficultyFeedback
    submitted_at: datetime.datetime
    response_time: Optional[float] = None
    is_correct: Optional[bool] = None
    session_id: Optional[str] = None
    time_of_day: Optional[int] = None
    id: str = field(default_factory=new_id)


@dataclass(frozen=True)
class DynamicDifficultyAdjustment:
    """Append-only audit record of a difficulty mutation."""
    problem_id: str
    original_difficulty: float
    adjusted_difficulty: float
    adjustment_value: float
    reason: str
    created_at: datetime.datetime
    trigger_user_id: Optional[str] = None
    is_personalized: bool = False
    is_automatic: bool = False
    feedback_count: int = 0
    retry_rate: float = 0.0
    feedback_summary: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=new_id)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["created_at"] = _iso(self.created_at)
        return data


@dataclass
class ForgettingCurveResult:
    """Next-review calculation result."""
    next_level: ForgettingCurveLevel
    next_schedule_time: datetime.datetime
    adjusted_retention_rate: float
    recommended_action: RecommendedAction
    interval_minutes: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "next_level": self.next_level.value,
            "next_schedule_time": _iso(self.next_schedule_time),
            "adjusted_retention_rate": self.adjusted_retention_rate,
            "recommended_action": self.recommended_action.value,
            "interval_minutes": self.interval_minutes,
        }


@dataclass
class DifficultyPrediction:
    predicted_difficulty: float
    confidence: float
    adjustment_reason: str
    recommended_action: DifficultyAction
    factors: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "predicted_difficulty": self.predicted_difficulty,
            "confidence": self.confidence,
            "adjustment_reason": self.adjustment_reason,
            "recommended_action": self.recommended_action.value,
            "factors": dict(self.factors),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DifficultyPrediction':
        return cls(
            predicted_difficulty=data["predicted_difficulty"],
            confidence=data["confidence"],
            adjustment_reason=data["adjustment_reason"],
            recommended_action=DifficultyAction(data["recommended_action"]),
            factors=dict(data.get("factors") or {}),
        )


@dataclass
class ReviewItem:
    """
    A ranked, time-slotted review in a generated schedule.

    ``scheduled_at`` is the packed slot inside the review window while
    ``due_at`` keeps the repetition's original due time.
    """
    id: str
    problem_id: str
    problem_title: str
    current_level: ForgettingCurveLevel
    scheduled_at: datetime.datetime
    due_at: datetime.datetime
    priority_score: float
    retention_rate: float
    difficulty: float
    consecutive_successes: int
    total_attempts: int
    is_overdue: bool
    overdue_hours: float
    category_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "problem_id": self.problem_id,
            "problem_title": self.problem_title,
            "current_level": self.current_level.value,
            "scheduled_at": _iso(self.scheduled_at),
            "due_at": _iso(self.due_at),
            "priority_score": self.priority_score,
            "retention_rate": self.retention_rate,
            "difficulty": self.difficulty,
            "consecutive_successes": self.consecutive_successes,
            "total_attempts": self.total_attempts,
            "is_overdue": self.is_overdue,
            "overdue_hours": self.overdue_hours,
            "category_name": self.category_name,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ReviewItem':
        values = dict(data)
        values["current_level"] = ForgettingCurveLevel(values["current_level"])
        values["scheduled_at"] = _parse_dt(values["scheduled_at"])
        values["due_at"] = _parse_dt(values["due_at"])
        return cls(**values)


@dataclass
class OverdueItem:
    """An overdue repetition annotated with urgency and impact."""
    item: ReviewItem
    urgency_level: UrgencyLevel
    suggested_action: str
    impact_score: int

    def to_dict(self) -> Dict[str, Any]:
        data = self.item.to_dict()
        data.update({
            "urgency_level": self.urgency_level.value,
            "suggested_action": self.suggested_action,
            "impact_score": self.impact_score,
        })
        return data


@dataclass
class BatchRun:
    """Progress record of one orchestrator batch job."""
    batch_id: str
    job_name: str
    started_at: datetime.datetime
    total_users: int = 0
    users_processed: int = 0
    schedules_generated: int = 0
    errors: int = 0
    estimated_completion: Optional[datetime.datetime] = None
    finished_at: Optional[datetime.datetime] = None
    status: BatchStatus = BatchStatus.RUNNING

    def to_dict(self) -> Dict[str, Any]:
        return {
            "batch_id": self.batch_id,
            "job_name": self.job_name,
            "started_at": _iso(self.started_at),
            "total_users": self.total_users,
            "users_processed": self.users_processed,
            "schedules_generated": self.schedules_generated,
            "errors": self.errors,
            "estimated_completion": _iso(self.estimated_completion),
            "finished_at": _iso(self.finished_at),
            "status": self.status.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BatchRun':
        values = dict(data)
        for key in ("started_at", "estimated_completion", "finished_at"):
            values[key] = _parse_dt(values.get(key))
        values["status"] = BatchStatus(values["status"])
        return cls(**values)


class TimeWindow(BaseModel):
    """Hours of the day in which reviews may be slotted."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    start_hour: int = Field(default=9, ge=0, le=23)
    end_hour: int = Field(default=22, ge=0, le=23)

    @model_validator(mode='after')
    def validate_order(self):
        if self.start_hour >= self.end_hour:
            raise ValueError("start_hour must be before end_hour")
        return self


class PriorityWeights(BaseModel):
    """Weights of the five priority sub-scores."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    retention: float = Field(default=0.35, ge=0)
    difficulty: float = Field(default=0.25, ge=0)
    overdue: float = Field(default=0.20, ge=0)
    frequency: float = Field(default=0.10, ge=0)
    recency: float = Field(default=0.10, ge=0)

    @model_validator(mode='after')
    def validate_sum(self):
        if self.retention + self.difficulty + self.overdue + self.frequency + self.recency <= 0:
            raise ValueError("priority weights must have a positive sum")
        return self


class SchedulingOptions(BaseModel):
    """Per-request knobs for schedule generation."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    max_items: int = Field(default=20, ge=1)
    time_window: TimeWindow = Field(default_factory=TimeWindow)
    priority_weights: PriorityWeights = Field(default_factory=PriorityWeights)
