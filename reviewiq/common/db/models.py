"""
Database Models

Tables backing the review scheduling store.
"""

from sqlalchemy import JSON, Boolean, Column, DateTime, Float, ForeignKey, Index, Integer, String, Text

from reviewiq.common.db.base import ModelBase


class UserModel(ModelBase):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True)
    is_active = Column(Boolean, nullable=False, default=True)
    last_login_at = Column(DateTime, index=True)


class ProblemModel(ModelBase):
    __tablename__ = "problems"

    id = Column(String(36), primary_key=True)
    title = Column(String(255), nullable=False)
    difficulty = Column(Float, nullable=False, default=5.0)
    category_name = Column(String(100), index=True)
    is_active = Column(Boolean, nullable=False, default=True)


class ForgettingCurveProfileModel(ModelBase):
    __tablename__ = "forgetting_curve_profiles"

    user_id = Column(String(36), primary_key=True)
    memory_retention_factor = Column(Float, nullable=False, default=1.0)
    difficulty_adjustment = Column(Float, nullable=False, default=1.0)
    success_rate = Column(Float, nullable=False, default=0.0)
    total_reviews = Column(Integer, nullable=False, default=0)
    subject_adjustments = Column(JSON, nullable=False, default=dict)
    recent_reviews = Column(JSON, nullable=False, default=list)
    updated_at = Column(DateTime)


class PersonalizedDifficultyProfileModel(ModelBase):
    __tablename__ = "personalized_difficulty_profiles"

    user_id = Column(String(36), primary_key=True)
    ideal_difficulty = Column(Float, nullable=False, default=5.0)
    preferred_min_difficulty = Column(Float, nullable=False, default=3.0)
    preferred_max_difficulty = Column(Float, nullable=False, default=7.0)
    learning_pace = Column(String(20), nullable=False, default="MODERATE")
    challenge_preference = Column(String(20), nullable=False, default="BALANCED")
    frustration_tolerance = Column(Float, nullable=False, default=0.5)
    adaptation_rate = Column(Float, nullable=False, default=0.1)
    stability_factor = Column(Float, nullable=False, default=0.8)
    total_feedbacks = Column(Integer, nullable=False, default=0)
    last_feedback_at = Column(DateTime)
    recent_performance = Column(JSON, nullable=False, default=list)


class ReviewScheduleModel(ModelBase):
    __tablename__ = "review_schedules"
    __table_args__ = (
        Index("ix_review_schedules_user_status_due", "user_id", "status", "scheduled_at"),
        Index("ix_review_schedules_status_due", "status", "scheduled_at"),
    )

    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), nullable=False)
    problem_id = Column(String(36), ForeignKey("problems.id"), nullable=False, index=True)
    problem_set_id = Column(String(36))
    current_level = Column(String(16), nullable=False)
    status = Column(String(16), nullable=False)
    scheduled_at = Column(DateTime, nullable=False)
    retention_rate = Column(Float, nullable=False, default=0.5)
    consecutive_successes = Column(Integer, nullable=False, default=0)
    completion_count = Column(Integer, nullable=False, default=0)
    difficulty_score = Column(Float)
    last_completed_at = Column(DateTime, index=True)
    previous_schedule_id = Column(String(36))
    created_at = Column(DateTime)
    updated_at = Column(DateTime)


class ProblemDifficultyFeedbackModel(ModelBase):
    __tablename__ = "problem_difficulty_feedback"
    __table_args__ = (
        Index("ix_problem_difficulty_feedback_problem_time", "problem_id", "submitted_at"),
        Index("ix_problem_difficulty_feedback_user_time", "user_id", "submitted_at"),
    )

    id = Column(String(36), primary_key=True)
    user_id = Column(String(36), nullable=False)
    problem_id = Column(String(36), ForeignKey("problems.id"), nullable=False)
    feedback = Column(String(16), nullable=False)
    response_time = Column(Float)
    is_correct = Column(Boolean)
    session_id = Column(String(64))
    time_of_day = Column(Integer)
    submitted_at = Column(DateTime, nullable=False)


class DynamicDifficultyAdjustmentModel(ModelBase):
    __tablename__ = "dynamic_difficulty_adjustments"
    __table_args__ = (
        Index("ix_dynamic_difficulty_adjustments_problem_time", "problem_id", "created_at"),
    )

    id = Column(String(36), primary_key=True)
    problem_id = Column(String(36), ForeignKey("problems.id"), nullable=False)
    original_difficulty = Column(Float, nullable=False)
    adjusted_difficulty = Column(Float, nullable=False)
    adjustment_value = Column(Float, nullable=False)
    reason = Column(Text, nullable=False)
    trigger_user_id = Column(String(36))
    is_personalized = Column(Boolean, nullable=False, default=False)
    is_automatic = Column(Boolean, nullable=False, default=False)
    feedback_count = Column(Integer, nullable=False, default=0)
    retry_rate = Column(Float, nullable=False, default=0.0)
    feedback_summary = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime, nullable=False)
