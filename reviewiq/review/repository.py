"""
Review Store

Persistence boundary of the review scheduling core. ``ReviewStore`` is
the interface the service and orchestrator depend on; profile reads are
upserts so callers never construct default profiles themselves.

``InMemoryReviewStore`` backs tests and single-process development; the
SQLAlchemy implementation lives in ``reviewiq.common.db.store``.
"""

import asyncio
import copy
import datetime
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from reviewiq.common.logger import app_logger
from reviewiq.review.models import (
    DynamicDifficultyAdjustment,
    ForgettingCurveProfile,
    PersonalizedDifficultyProfile,
    Problem,
    ProblemDifficultyFeedback,
    ReviewScheduleItem,
    ReviewStatus,
    User,
)

logger = app_logger.getChild("review.repository")


class ReviewStore(ABC):
    """
    Abstract store for users, problems, profiles, schedule rows, feedback
    and difficulty adjustments.

    Implementations raise ``TransientStoreError`` when the backing store is
    unreachable. Entities returned are detached copies; changes are only
    persisted through the ``save_*``/``add_*`` methods.
    """

    # Users and problems

    @abstractmethod
    async def save_user(self, user: User) -> User:
        pass

    @abstractmethod
    async def list_active_user_ids(
        self,
        since: datetime.datetime,
        limit: Optional[int] = None
    ) -> List[str]:
        """Ids of active users who logged in at or after ``since``, most recent first."""

    @abstractmethod
    async def get_problem(self, problem_id: str) -> Optional[Problem]:
        pass

    @abstractmethod
    async def get_problems(self, problem_ids: List[str]) -> Dict[str, Problem]:
        pass

    @abstractmethod
    async def save_problem(self, problem: Problem) -> Problem:
        pass

    @abstractmethod
    async def list_problems_by_difficulty(
        self,
        min_difficulty: float,
        max_difficulty: float,
        category_name: Optional[str] = None,
        limit: Optional[int] = None
    ) -> List[Problem]:
        """Active problems whose difficulty lies in the inclusive range."""

    # Profiles

    @abstractmethod
    async def get_or_create_forgetting_profile(self, user_id: str) -> ForgettingCurveProfile:
        """Return the user's profile, persisting a default one if none exists."""

    @abstractmethod
    async def save_forgetting_profile(self, profile: ForgettingCurveProfile) -> ForgettingCurveProfile:
        pass

    @abstractmethod
    async def get_or_create_difficulty_profile(self, user_id: str) -> PersonalizedDifficultyProfile:
        """Return the user's profile, persisting a default one if none exists."""

    @abstractmethod
    async def save_difficulty_profile(
        self,
        profile: PersonalizedDifficultyProfile
    ) -> PersonalizedDifficultyProfile:
        pass

    # Schedule rows

    @abstractmethod
    async def get_schedule_item(self, schedule_id: str) -> Optional[ReviewScheduleItem]:
        pass

    @abstractmethod
    async def save_schedule_item(self, item: ReviewScheduleItem) -> ReviewScheduleItem:
        pass

    @abstractmethod
    async def find_open_schedule_item(self, user_id: str, problem_id: str) -> Optional[ReviewScheduleItem]:
        """The user's SCHEDULED or IN_PROGRESS row for a problem, if any."""

    @abstractmethod
    async def list_schedule_items(
        self,
        user_id: str,
        status: Optional[ReviewStatus] = None,
        due_after: Optional[datetime.datetime] = None,
        due_before: Optional[datetime.datetime] = None
    ) -> List[ReviewScheduleItem]:
        """A user's rows filtered by status and inclusive due range, earliest first."""

    @abstractmethod
    async def list_overdue_items(self, now: datetime.datetime, limit: int) -> List[ReviewScheduleItem]:
        """SCHEDULED rows of all users due before ``now``, most overdue first."""

    @abstractmethod
    async def list_completed_items(
        self,
        since: datetime.datetime,
        user_id: Optional[str] = None
    ) -> List[ReviewScheduleItem]:
        """COMPLETED rows whose completion time is at or after ``since``."""

    # Feedback

    @abstractmethod
    async def add_feedback(self, feedback: ProblemDifficultyFeedback) -> ProblemDifficultyFeedback:
        pass

    @abstractmethod
    async def list_problem_feedback(
        self,
        problem_id: str,
        since: datetime.datetime,
        exclude_user_id: Optional[str] = None
    ) -> List[ProblemDifficultyFeedback]:
        pass

    @abstractmethod
    async def list_user_feedback(
        self,
        user_id: str,
        since: datetime.datetime
    ) -> List[ProblemDifficultyFeedback]:
        pass

    @abstractmethod
    async def latest_user_feedback(self, user_id: str, problem_id: str) -> Optional[ProblemDifficultyFeedback]:
        pass

    # Difficulty adjustments

    @abstractmethod
    async def add_adjustment(self, adjustment: DynamicDifficultyAdjustment) -> DynamicDifficultyAdjustment:
        pass

    @abstractmethod
    async def list_adjustments(
        self,
        problem_id: str,
        since: Optional[datetime.datetime] = None,
        automatic_only: bool = False,
        trigger_user_id: Optional[str] = None
    ) -> List[DynamicDifficultyAdjustment]:
        """Adjustments of a problem, oldest first."""


class InMemoryReviewStore(ReviewStore):
    """Dictionary-backed store guarded by a single asyncio lock."""

    def __init__(self):
        self._lock = asyncio.Lock()
        self._users: Dict[str, User] = {}
        self._problems: Dict[str, Problem] = {}
        self._forgetting_profiles: Dict[str, ForgettingCurveProfile] = {}
        self._difficulty_profiles: Dict[str, PersonalizedDifficultyProfile] = {}
        self._schedules: Dict[str, ReviewScheduleItem] = {}
        self._feedback: List[ProblemDifficultyFeedback] = []
        self._adjustments: List[DynamicDifficultyAdjustment] = []

    async def save_user(self, user: User) -> User:
        async with self._lock:
            self._users[user.id] = copy.deepcopy(user)
            return user

    async def list_active_user_ids(self, since, limit=None):
        async with self._lock:
            users = [
                user for user in self._users.values()
                if user.is_active and user.last_login_at is not None and user.last_login_at >= since
            ]
        users.sort(key=lambda user: user.last_login_at, reverse=True)
        ids = [user.id for user in users]
        return ids[:limit] if limit is not None else ids

    async def get_problem(self, problem_id):
        async with self._lock:
            problem = self._problems.get(problem_id)
            return copy.deepcopy(problem)

    async def get_problems(self, problem_ids):
        async with self._lock:
            return {
                pid: copy.deepcopy(self._problems[pid])
                for pid in problem_ids if pid in self._problems
            }

    async def save_problem(self, problem):
        async with self._lock:
            self._problems[problem.id] = copy.deepcopy(problem)
            return problem

    async def list_problems_by_difficulty(self, min_difficulty, max_difficulty, category_name=None, limit=None):
        async with self._lock:
            problems = [
                copy.deepcopy(problem) for problem in self._problems.values()
                if problem.is_active
                and min_difficulty <= problem.difficulty <= max_difficulty
                and (category_name is None or problem.category_name == category_name)
            ]
        return problems[:limit] if limit is not None else problems

    async def get_or_create_forgetting_profile(self, user_id):
        async with self._lock:
            if user_id not in self._forgetting_profiles:
                logger.debug(f"Creating default forgetting-curve profile for {user_id}")
                self._forgetting_profiles[user_id] = ForgettingCurveProfile(user_id=user_id)
            return copy.deepcopy(self._forgetting_profiles[user_id])

    async def save_forgetting_profile(self, profile):
        async with self._lock:
            self._forgetting_profiles[profile.user_id] = copy.deepcopy(profile)
            return profile

    async def get_or_create_difficulty_profile(self, user_id):
        async with self._lock:
            if user_id not in self._difficulty_profiles:
                logger.debug(f"Creating default difficulty profile for {user_id}")
                self._difficulty_profiles[user_id] = PersonalizedDifficultyProfile(user_id=user_id)
            return copy.deepcopy(self._difficulty_profiles[user_id])

    async def save_difficulty_profile(self, profile):
        async with self._lock:
            self._difficulty_profiles[profile.user_id] = copy.deepcopy(profile)
            return profile

    async def get_schedule_item(self, schedule_id):
        async with self._lock:
            return copy.deepcopy(self._schedules.get(schedule_id))

    async def save_schedule_item(self, item):
        async with self._lock:
            self._schedules[item.id] = copy.deepcopy(item)
            return item

    async def find_open_schedule_item(self, user_id, problem_id):
        async with self._lock:
            for item in self._schedules.values():
                if item.user_id == user_id and item.problem_id == problem_id and item.status.is_open:
                    return copy.deepcopy(item)
        return None

    async def list_schedule_items(self, user_id, status=None, due_after=None, due_before=None):
        async with self._lock:
            items = [
                copy.deepcopy(item) for item in self._schedules.values()
                if item.user_id == user_id
                and (status is None or item.status is status)
                and (due_after is None or item.scheduled_at >= due_after)
                and (due_before is None or item.scheduled_at <= due_before)
            ]
        items.sort(key=lambda item: (item.scheduled_at, item.id))
        return items

    async def list_overdue_items(self, now, limit):
        async with self._lock:
            items = [
                copy.deepcopy(item) for item in self._schedules.values()
                if item.status is ReviewStatus.SCHEDULED and item.scheduled_at < now
            ]
        items.sort(key=lambda item: (item.scheduled_at, item.id))
        return items[:limit]

    async def list_completed_items(self, since, user_id=None):
        async with self._lock:
            return [
                copy.deepcopy(item) for item in self._schedules.values()
                if item.status is ReviewStatus.COMPLETED
                and item.last_completed_at is not None
                and item.last_completed_at >= since
                and (user_id is None or item.user_id == user_id)
            ]

    async def add_feedback(self, feedback):
        async with self._lock:
            self._feedback.append(feedback)
            return feedback

    async def list_problem_feedback(self, problem_id, since, exclude_user_id=None):
        async with self._lock:
            return [
                event for event in self._feedback
                if event.problem_id == problem_id
                and event.submitted_at >= since
                and (exclude_user_id is None or event.user_id != exclude_user_id)
            ]

    async def list_user_feedback(self, user_id, since):
        async with self._lock:
            return [
                event for event in self._feedback
                if event.user_id == user_id and event.submitted_at >= since
            ]

    async def latest_user_feedback(self, user_id, problem_id):
        async with self._lock:
            matches = [
                event for event in self._feedback
                if event.user_id == user_id and event.problem_id == problem_id
            ]
        return max(matches, key=lambda event: event.submitted_at, default=None)

    async def add_adjustment(self, adjustment):
        async with self._lock:
            self._adjustments.append(adjustment)
            return adjustment

    async def list_adjustments(self, problem_id, since=None, automatic_only=False, trigger_user_id=None):
        async with self._lock:
            adjustments = [
                adjustment for adjustment in self._adjustments
                if adjustment.problem_id == problem_id
                and (since is None or adjustment.created_at >= since)
                and (not automatic_only or adjustment.is_automatic)
                and (trigger_user_id is None or adjustment.trigger_user_id == trigger_user_id)
            ]
        adjustments.sort(key=lambda adjustment: adjustment.created_at)
        return adjustments
