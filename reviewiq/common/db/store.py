"""
SQLAlchemy Review Store

``ReviewStore`` implementation on an async SQLAlchemy session factory.
Every method runs in its own transaction; driver and connection errors
surface as ``TransientStoreError``.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from reviewiq.common.db.models import (
    DynamicDifficultyAdjustmentModel,
    ForgettingCurveProfileModel,
    PersonalizedDifficultyProfileModel,
    ProblemDifficultyFeedbackModel,
    ProblemModel,
    ReviewScheduleModel,
    UserModel,
)
from reviewiq.common.exceptions import TransientStoreError
from reviewiq.common.logger import app_logger
from reviewiq.review.models import (
    ChallengePreference,
    DifficultyFeedback,
    DynamicDifficultyAdjustment,
    ForgettingCurveLevel,
    ForgettingCurveProfile,
    LearningPace,
    PersonalizedDifficultyProfile,
    Problem,
    ProblemDifficultyFeedback,
    ReviewPerformance,
    ReviewScheduleItem,
    ReviewStatus,
    User,
)
from reviewiq.review.repository import ReviewStore

logger = app_logger.getChild("db.store")

OPEN_STATUSES = [ReviewStatus.SCHEDULED.value, ReviewStatus.IN_PROGRESS.value]


def _problem(row: ProblemModel) -> Problem:
    return Problem(
        id=row.id,
        title=row.title,
        difficulty=row.difficulty,
        category_name=row.category_name,
        is_active=row.is_active,
    )


def _forgetting_profile(row: ForgettingCurveProfileModel) -> ForgettingCurveProfile:
    return ForgettingCurveProfile(
        user_id=row.user_id,
        memory_retention_factor=row.memory_retention_factor,
        difficulty_adjustment=row.difficulty_adjustment,
        success_rate=row.success_rate,
        total_reviews=row.total_reviews,
        subject_adjustments=dict(row.subject_adjustments or {}),
        recent_reviews=[ReviewPerformance.from_dict(data) for data in row.recent_reviews or []],
        updated_at=row.updated_at,
    )


def _forgetting_values(profile: ForgettingCurveProfile) -> dict:
    return {
        "user_id": profile.user_id,
        "memory_retention_factor": profile.memory_retention_factor,
        "difficulty_adjustment": profile.difficulty_adjustment,
        "success_rate": profile.success_rate,
        "total_reviews": profile.total_reviews,
        "subject_adjustments": dict(profile.subject_adjustments),
        "recent_reviews": [review.to_dict() for review in profile.recent_reviews],
        "updated_at": profile.updated_at,
    }


def _difficulty_profile(row: PersonalizedDifficultyProfileModel) -> PersonalizedDifficultyProfile:
    return PersonalizedDifficultyProfile(
        user_id=row.user_id,
        ideal_difficulty=row.ideal_difficulty,
        preferred_min_difficulty=row.preferred_min_difficulty,
        preferred_max_difficulty=row.preferred_max_difficulty,
        learning_pace=LearningPace(row.learning_pace),
        challenge_preference=ChallengePreference(row.challenge_preference),
        frustration_tolerance=row.frustration_tolerance,
        adaptation_rate=row.adaptation_rate,
        stability_factor=row.stability_factor,
        total_feedbacks=row.total_feedbacks,
        last_feedback_at=row.last_feedback_at,
        recent_performance=list(row.recent_performance or []),
    )


def _difficulty_values(profile: PersonalizedDifficultyProfile) -> dict:
    values = profile.to_dict()
    values["last_feedback_at"] = profile.last_feedback_at
    return values


def _schedule_item(row: ReviewScheduleModel) -> ReviewScheduleItem:
    return ReviewScheduleItem(
        id=row.id,
        user_id=row.user_id,
        problem_id=row.problem_id,
        problem_set_id=row.problem_set_id,
        current_level=ForgettingCurveLevel(row.current_level),
        status=ReviewStatus(row.status),
        scheduled_at=row.scheduled_at,
        retention_rate=row.retention_rate,
        consecutive_successes=row.consecutive_successes,
        completion_count=row.completion_count,
        difficulty_score=row.difficulty_score,
        last_completed_at=row.last_completed_at,
        previous_schedule_id=row.previous_schedule_id,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _schedule_values(item: ReviewScheduleItem) -> dict:
    values = item.to_dict()
    values.update({
        "scheduled_at": item.scheduled_at,
        "last_completed_at": item.last_completed_at,
        "created_at": item.created_at,
        "updated_at": item.updated_at,
    })
    return values


def _feedback(row: ProblemDifficultyFeedbackModel) -> ProblemDifficultyFeedback:
    return ProblemDifficultyFeedback(
        id=row.id,
        user_id=row.user_id,
        problem_id=row.problem_id,
        feedback=DifficultyFeedback(row.feedback),
        submitted_at=row.submitted_at,
        response_time=row.response_time,
        is_correct=row.is_correct,
        session_id=row.session_id,
        time_of_day=row.time_of_day,
    )


def _adjustment(row: DynamicDifficultyAdjustmentModel) -> DynamicDifficultyAdjustment:
    return DynamicDifficultyAdjustment(
        id=row.id,
        problem_id=row.problem_id,
        original_difficulty=row.original_difficulty,
        adjusted_difficulty=row.adjusted_difficulty,
        adjustment_value=row.adjustment_value,
        reason=row.reason,
        created_at=row.created_at,
        trigger_user_id=row.trigger_user_id,
        is_personalized=row.is_personalized,
        is_automatic=row.is_automatic,
        feedback_count=row.feedback_count,
        retry_rate=row.retry_rate,
        feedback_summary=dict(row.feedback_summary or {}),
    )


class SQLAlchemyReviewStore(ReviewStore):
    """Relational ``ReviewStore``; the single source of truth in deployments."""

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    yield session
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Database operation failed: {e}")
            raise TransientStoreError("Database operation failed", cause=e) from e

    async def save_user(self, user: User) -> User:
        async with self._session() as session:
            await session.merge(UserModel(
                id=user.id, is_active=user.is_active, last_login_at=user.last_login_at
            ))
        return user

    async def list_active_user_ids(self, since, limit=None):
        query = (
            select(UserModel.id)
            .where(UserModel.is_active.is_(True), UserModel.last_login_at >= since)
            .order_by(UserModel.last_login_at.desc())
        )
        if limit is not None:
            query = query.limit(limit)
        async with self._session() as session:
            return list((await session.execute(query)).scalars().all())

    async def get_problem(self, problem_id):
        async with self._session() as session:
            row = await session.get(ProblemModel, problem_id)
            return _problem(row) if row is not None else None

    async def get_problems(self, problem_ids) -> Dict[str, Problem]:
        if not problem_ids:
            return {}
        async with self._session() as session:
            rows = (await session.execute(
                select(ProblemModel).where(ProblemModel.id.in_(problem_ids))
            )).scalars().all()
            return {row.id: _problem(row) for row in rows}

    async def save_problem(self, problem):
        async with self._session() as session:
            await session.merge(ProblemModel(
                id=problem.id,
                title=problem.title,
                difficulty=problem.difficulty,
                category_name=problem.category_name,
                is_active=problem.is_active,
            ))
        return problem

    async def list_problems_by_difficulty(self, min_difficulty, max_difficulty, category_name=None, limit=None):
        query = select(ProblemModel).where(
            ProblemModel.is_active.is_(True),
            ProblemModel.difficulty >= min_difficulty,
            ProblemModel.difficulty <= max_difficulty,
        ).order_by(ProblemModel.id)
        if category_name is not None:
            query = query.where(ProblemModel.category_name == category_name)
        if limit is not None:
            query = query.limit(limit)
        async with self._session() as session:
            return [_problem(row) for row in (await session.execute(query)).scalars().all()]

    async def get_or_create_forgetting_profile(self, user_id):
        async with self._session() as session:
            row = await session.get(ForgettingCurveProfileModel, user_id)
            if row is None:
                logger.debug(f"Creating default forgetting-curve profile for {user_id}")
                row = ForgettingCurveProfileModel(**_forgetting_values(ForgettingCurveProfile(user_id=user_id)))
                session.add(row)
            return _forgetting_profile(row)

    async def save_forgetting_profile(self, profile):
        async with self._session() as session:
            await session.merge(ForgettingCurveProfileModel(**_forgetting_values(profile)))
        return profile

    async def get_or_create_difficulty_profile(self, user_id):
        async with self._session() as session:
            row = await session.get(PersonalizedDifficultyProfileModel, user_id)
            if row is None:
                logger.debug(f"Creating default difficulty profile for {user_id}")
                row = PersonalizedDifficultyProfileModel(
                    **_difficulty_values(PersonalizedDifficultyProfile(user_id=user_id))
                )
                session.add(row)
            return _difficulty_profile(row)

    async def save_difficulty_profile(self, profile):
        async with self._session() as session:
            await session.merge(PersonalizedDifficultyProfileModel(**_difficulty_values(profile)))
        return profile

    async def get_schedule_item(self, schedule_id):
        async with self._session() as session:
            row = await session.get(ReviewScheduleModel, schedule_id)
            return _schedule_item(row) if row is not None else None

    async def save_schedule_item(self, item):
        async with self._session() as session:
            await session.merge(ReviewScheduleModel(**_schedule_values(item)))
        return item

    async def find_open_schedule_item(self, user_id, problem_id):
        query = (
            select(ReviewScheduleModel)
            .where(
                ReviewScheduleModel.user_id == user_id,
                ReviewScheduleModel.problem_id == problem_id,
                ReviewScheduleModel.status.in_(OPEN_STATUSES),
            )
            .order_by(ReviewScheduleModel.scheduled_at)
            .limit(1)
        )
        async with self._session() as session:
            row = (await session.execute(query)).scalars().first()
            return _schedule_item(row) if row is not None else None

    async def list_schedule_items(self, user_id, status=None, due_after=None, due_before=None):
        query = select(ReviewScheduleModel).where(ReviewScheduleModel.user_id == user_id)
        if status is not None:
            query = query.where(ReviewScheduleModel.status == status.value)
        if due_after is not None:
            query = query.where(ReviewScheduleModel.scheduled_at >= due_after)
        if due_before is not None:
            query = query.where(ReviewScheduleModel.scheduled_at <= due_before)
        query = query.order_by(ReviewScheduleModel.scheduled_at, ReviewScheduleModel.id)
        async with self._session() as session:
            return [_schedule_item(row) for row in (await session.execute(query)).scalars().all()]

    async def list_overdue_items(self, now, limit):
        query = (
            select(ReviewScheduleModel)
            .where(
                ReviewScheduleModel.status == ReviewStatus.SCHEDULED.value,
                ReviewScheduleModel.scheduled_at < now,
            )
            .order_by(ReviewScheduleModel.scheduled_at, ReviewScheduleModel.id)
            .limit(limit)
        )
        async with self._session() as session:
            return [_schedule_item(row) for row in (await session.execute(query)).scalars().all()]

    async def list_completed_items(self, since, user_id=None):
        query = select(ReviewScheduleModel).where(
            ReviewScheduleModel.status == ReviewStatus.COMPLETED.value,
            ReviewScheduleModel.last_completed_at >= since,
        )
        if user_id is not None:
            query = query.where(ReviewScheduleModel.user_id == user_id)
        async with self._session() as session:
            return [_schedule_item(row) for row in (await session.execute(query)).scalars().all()]

    async def add_feedback(self, feedback):
        async with self._session() as session:
            session.add(ProblemDifficultyFeedbackModel(
                id=feedback.id,
                user_id=feedback.user_id,
                problem_id=feedback.problem_id,
                feedback=feedback.feedback.value,
                response_time=feedback.response_time,
                is_correct=feedback.is_correct,
                session_id=feedback.session_id,
                time_of_day=feedback.time_of_day,
                submitted_at=feedback.submitted_at,
            ))
        return feedback

    async def list_problem_feedback(self, problem_id, since, exclude_user_id=None):
        query = select(ProblemDifficultyFeedbackModel).where(
            ProblemDifficultyFeedbackModel.problem_id == problem_id,
            ProblemDifficultyFeedbackModel.submitted_at >= since,
        )
        if exclude_user_id is not None:
            query = query.where(ProblemDifficultyFeedbackModel.user_id != exclude_user_id)
        query = query.order_by(ProblemDifficultyFeedbackModel.submitted_at)
        async with self._session() as session:
            return [_feedback(row) for row in (await session.execute(query)).scalars().all()]

    async def list_user_feedback(self, user_id, since):
        query = (
            select(ProblemDifficultyFeedbackModel)
            .where(
                ProblemDifficultyFeedbackModel.user_id == user_id,
                ProblemDifficultyFeedbackModel.submitted_at >= since,
            )
            .order_by(ProblemDifficultyFeedbackModel.submitted_at)
        )
        async with self._session() as session:
            return [_feedback(row) for row in (await session.execute(query)).scalars().all()]

    async def latest_user_feedback(self, user_id, problem_id):
        query = (
            select(ProblemDifficultyFeedbackModel)
            .where(
                ProblemDifficultyFeedbackModel.user_id == user_id,
                ProblemDifficultyFeedbackModel.problem_id == problem_id,
            )
            .order_by(ProblemDifficultyFeedbackModel.submitted_at.desc())
            .limit(1)
        )
        async with self._session() as session:
            row = (await session.execute(query)).scalars().first()
            return _feedback(row) if row is not None else None

    async def add_adjustment(self, adjustment):
        async with self._session() as session:
            session.add(DynamicDifficultyAdjustmentModel(
                id=adjustment.id,
                problem_id=adjustment.problem_id,
                original_difficulty=adjustment.original_difficulty,
                adjusted_difficulty=adjustment.adjusted_difficulty,
                adjustment_value=adjustment.adjustment_value,
                reason=adjustment.reason,
                trigger_user_id=adjustment.trigger_user_id,
                is_personalized=adjustment.is_personalized,
                is_automatic=adjustment.is_automatic,
                feedback_count=adjustment.feedback_count,
                retry_rate=adjustment.retry_rate,
                feedback_summary=dict(adjustment.feedback_summary),
                created_at=adjustment.created_at,
            ))
        return adjustment

    async def list_adjustments(self, problem_id, since=None, automatic_only=False, trigger_user_id=None):
        query = select(DynamicDifficultyAdjustmentModel).where(
            DynamicDifficultyAdjustmentModel.problem_id == problem_id
        )
        if since is not None:
            query = query.where(DynamicDifficultyAdjustmentModel.created_at >= since)
        if automatic_only:
            query = query.where(DynamicDifficultyAdjustmentModel.is_automatic.is_(True))
        if trigger_user_id is not None:
            query = query.where(DynamicDifficultyAdjustmentModel.trigger_user_id == trigger_user_id)
        query = query.order_by(DynamicDifficultyAdjustmentModel.created_at)
        async with self._session() as session:
            return [_adjustment(row) for row in (await session.execute(query)).scalars().all()]
