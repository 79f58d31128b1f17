"""
Review Priority Scheduler

Ranks a user's due repetitions by a weighted five-factor priority score
and packs the top items into increasing time slots inside the user's
review window.
"""

import datetime
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

from reviewiq.common.config import SchedulingConfig
from reviewiq.common.exceptions import ComputationInvariantViolation
from reviewiq.common.logger import app_logger
from reviewiq.common.scoring import WeightedScorer
from reviewiq.review.forgetting import calculate_review_priority
from reviewiq.review.models import (
    Problem,
    ReviewItem,
    ReviewScheduleItem,
    SchedulingOptions,
    TimeWindow,
)

logger = app_logger.getChild("review.priority")


@dataclass
class ScoringSubject:
    """A schedule row together with what is needed to score it at ``now``."""
    item: ReviewScheduleItem
    problem: Optional[Problem]
    now: datetime.datetime
    default_difficulty: float = 5.0
    default_days_since_review: int = 7

    @property
    def difficulty(self) -> float:
        if self.problem is not None:
            return self.problem.difficulty
        if self.item.difficulty_score is not None:
            return self.item.difficulty_score
        return self.default_difficulty

    @property
    def hours_late(self) -> float:
        """Positive when overdue, negative while still in the future."""
        return (self.now - self.item.scheduled_at).total_seconds() / 3600

    @property
    def success_rate(self) -> float:
        return self.item.consecutive_successes / max(self.item.completion_count, 1)

    @property
    def days_since_review(self) -> float:
        if self.item.last_completed_at is None:
            return float(self.default_days_since_review)
        return max(0.0, (self.now - self.item.last_completed_at).total_seconds() / 86400)


def retention_score(subject: ScoringSubject) -> float:
    return (1 - subject.item.retention_rate) * 100


def difficulty_score(subject: ScoringSubject) -> float:
    return subject.difficulty * 10


def frequency_score(subject: ScoringSubject) -> float:
    return (1 - subject.success_rate) * 100


def recency_score(subject: ScoringSubject) -> float:
    return min(100.0, subject.days_since_review * 10)


class PriorityScheduler:
    """
    Build a personalised, time-slotted review list.

    The overdue sub-score ramps up to ``due_ramp_ceiling`` while an item
    approaches its due time and then grows ten points per overdue hour,
    never dropping below the ceiling once due and capped at 100.
    """

    def __init__(self, config: Optional[SchedulingConfig] = None):
        self.config = config or SchedulingConfig()

    def default_options(self) -> SchedulingOptions:
        weights = self.config.weights()
        return SchedulingOptions(
            max_items=self.config.max_items,
            time_window=TimeWindow(start_hour=self.config.start_hour, end_hour=self.config.end_hour),
            priority_weights=weights,
        )

    def overdue_score(self, subject: ScoringSubject) -> float:
        ceiling = self.config.due_ramp_ceiling
        hours_late = subject.hours_late
        if hours_late > 0:
            return min(100.0, max(ceiling, hours_late * 10))
        return max(0.0, ceiling + hours_late)

    def scorer(self, options: SchedulingOptions) -> WeightedScorer[ScoringSubject]:
        return WeightedScorer.from_weights(
            options.priority_weights.model_dump(),
            {
                "retention": retention_score,
                "difficulty": difficulty_score,
                "overdue": self.overdue_score,
                "frequency": frequency_score,
                "recency": recency_score,
            },
        )

    def horizon(self, now: datetime.datetime) -> datetime.datetime:
        return now + datetime.timedelta(hours=self.config.horizon_hours)

    def rank(
        self,
        items: Iterable[ReviewScheduleItem],
        problems: dict,
        options: SchedulingOptions,
        now: datetime.datetime
    ) -> List[Tuple[float, ScoringSubject]]:
        """
        Score and order items, highest priority first.

        Items whose inputs violate their contracts are logged and skipped.
        Ties are broken by the coarse review priority, then due time, then
        id, so the order is deterministic.
        """
        scorer = self.scorer(options)
        ranked = []
        for item in items:
            subject = ScoringSubject(
                item=item,
                problem=problems.get(item.problem_id),
                now=now,
                default_difficulty=self.config.default_difficulty,
                default_days_since_review=self.config.default_days_since_review,
            )
            try:
                self._check_item(item)
                score = round(scorer.score(subject), 2)
            except ComputationInvariantViolation as e:
                logger.error(f"Skipping schedule item {item.id}: {e}", extra={"data": e.details})
                continue
            tie_break = calculate_review_priority(
                item.scheduled_at, subject.difficulty, subject.success_rate,
                subject.days_since_review, now=now
            )
            ranked.append((score, tie_break, subject))

        ranked.sort(key=lambda entry: (-entry[0], -entry[1], entry[2].item.scheduled_at, entry[2].item.id))
        return [(score, subject) for score, _, subject in ranked]

    @staticmethod
    def _check_item(item: ReviewScheduleItem) -> None:
        if not 0.0 <= item.retention_rate <= 1.0:
            raise ComputationInvariantViolation(
                "Retention rate out of range",
                details={"schedule_id": item.id, "retention_rate": item.retention_rate}
            )
        if item.consecutive_successes < 0 or item.completion_count < 0:
            raise ComputationInvariantViolation(
                "Negative review counters",
                details={"schedule_id": item.id}
            )

    def generate(
        self,
        items: Sequence[ReviewScheduleItem],
        problems: dict,
        options: SchedulingOptions,
        now: datetime.datetime
    ) -> List[ReviewItem]:
        """
        Rank due items, keep the top ``options.max_items`` and assign slots.

        Args:
            items: The user's SCHEDULED rows due within the horizon
            problems: Problems by id
            options: Validated scheduling options
            now: Current time

        Returns:
            ReviewItems in descending priority with strictly increasing slots
        """
        ranked = self.rank(items, problems, options, now)[:options.max_items]
        slots = pack_time_slots(
            len(ranked),
            options.time_window,
            now,
            slot_minutes=self.config.slot_minutes,
            compressed_minutes=self.config.compressed_slot_minutes,
        )

        schedule = []
        for (score, subject), slot in zip(ranked, slots):
            item = subject.item
            hours_late = subject.hours_late
            problem = subject.problem
            schedule.append(ReviewItem(
                id=item.id,
                problem_id=item.problem_id,
                problem_title=problem.title if problem else "",
                current_level=item.current_level,
                scheduled_at=slot,
                due_at=item.scheduled_at,
                priority_score=score,
                retention_rate=item.retention_rate,
                difficulty=subject.difficulty,
                consecutive_successes=item.consecutive_successes,
                total_attempts=item.completion_count,
                is_overdue=hours_late > 0,
                overdue_hours=round(max(0.0, hours_late), 2),
                category_name=problem.category_name if problem else None,
            ))
        return schedule


def pack_time_slots(
    count: int,
    window: TimeWindow,
    now: datetime.datetime,
    slot_minutes: int = 15,
    compressed_minutes: int = 5
) -> List[datetime.datetime]:
    """
    Assign ``count`` strictly increasing times inside the daily window.

    Slots start at today's ``start_hour`` and are ``slot_minutes`` apart.
    When today's start is already past, slots re-anchor at ``now`` with
    ``compressed_minutes`` spacing while they fit before ``end_hour``. A
    slot that would reach ``end_hour`` rolls to ``start_hour`` of the next
    day, where regular spacing resumes.
    """
    slots: List[datetime.datetime] = []
    day = now.date()
    cursor = datetime.datetime.combine(day, datetime.time(window.start_hour))
    step = datetime.timedelta(minutes=slot_minutes)

    if cursor < now:
        current = now.replace(microsecond=0)
        if current < _window_end(day, window):
            cursor = current
            step = datetime.timedelta(minutes=compressed_minutes)
        else:
            day += datetime.timedelta(days=1)
            cursor = datetime.datetime.combine(day, datetime.time(window.start_hour))

    for _ in range(count):
        if cursor >= _window_end(day, window):
            day += datetime.timedelta(days=1)
            cursor = datetime.datetime.combine(day, datetime.time(window.start_hour))
            step = datetime.timedelta(minutes=slot_minutes)
        slots.append(cursor)
        cursor += step

    return slots


def _window_end(day: datetime.date, window: TimeWindow) -> datetime.datetime:
    return datetime.datetime.combine(day, datetime.time(window.end_hour))
