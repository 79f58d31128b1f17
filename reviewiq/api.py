"""
HTTP API for the review scheduling core.

This module provides:
- The review router exposing the service and orchestrator operations
- Request models validated by pydantic
- The standard success envelope and the ReviewIQError handler
"""

import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from reviewiq.common.exceptions import NotFoundError, ReviewIQError, ValidationError, error_response, log_error
from reviewiq.common.logger import app_logger
from reviewiq.review.models import DifficultyFeedback, ReviewPerformance
from reviewiq.review.orchestrator import JobName, ReviewBatchOrchestrator
from reviewiq.review.service import ReviewService

logger = app_logger.getChild("api")

router = APIRouter()


class APIResponse:
    """Standard API response structure"""

    @staticmethod
    def success(data: Any = None, message: str = "Success") -> Dict[str, Any]:
        return {
            "status": "success",
            "message": message,
            "data": data
        }


async def review_error_handler(request: Request, exc: ReviewIQError) -> JSONResponse:
    """Map domain errors to their HTTP status and the error payload."""
    log_error(exc, logger, {"path": request.url.path})
    return JSONResponse(status_code=exc.status_code, content=error_response(exc))


def get_service(request: Request) -> ReviewService:
    return request.app.state.service


def get_orchestrator(request: Request) -> ReviewBatchOrchestrator:
    return request.app.state.orchestrator


# Request models

class FeedbackRequest(BaseModel):
    user_id: str
    problem_id: str
    feedback: DifficultyFeedback
    response_time: Optional[float] = Field(default=None, ge=0)
    is_correct: Optional[bool] = None
    session_id: Optional[str] = None


class PredictRequest(BaseModel):
    user_id: str
    problem_id: str
    current_difficulty: Optional[float] = Field(default=None, ge=1, le=10)
    response_time: Optional[float] = Field(default=None, ge=0)
    is_correct: Optional[bool] = None


class AdjustRequest(BaseModel):
    problem_id: str
    adjustment_value: float
    trigger_user_id: Optional[str] = None
    reason: Optional[str] = None
    feedback_summary: Optional[Dict[str, Any]] = None


class PerformanceRequest(BaseModel):
    user_id: str
    is_correct: bool


class ReviewRequest(BaseModel):
    user_id: str
    problem_id: str
    is_success: bool
    response_time: float = Field(default=30.0, ge=0)
    confidence_level: int = Field(default=3, ge=1, le=5)
    difficulty_score: Optional[float] = Field(default=None, ge=1, le=10)
    problem_set_id: Optional[str] = None


class CompleteRequest(BaseModel):
    is_success: bool
    response_time: Optional[float] = Field(default=None, ge=0)
    confidence_level: Optional[int] = Field(default=None, ge=1, le=5)


class GenerateRequest(BaseModel):
    user_id: str
    options: Dict[str, Any] = Field(default_factory=dict)


# Difficulty

@router.post("/feedback")
async def submit_feedback(body: FeedbackRequest, service: ReviewService = Depends(get_service)):
    feedback_id = await service.submit_feedback(
        body.user_id,
        body.problem_id,
        body.feedback,
        response_time=body.response_time,
        is_correct=body.is_correct,
        session_id=body.session_id,
    )
    return APIResponse.success({"feedback_id": feedback_id}, "Feedback recorded")


@router.post("/difficulty/predict")
async def predict_difficulty(body: PredictRequest, service: ReviewService = Depends(get_service)):
    prediction = await service.predict_difficulty(
        body.user_id,
        body.problem_id,
        current_difficulty=body.current_difficulty,
        response_time=body.response_time,
        is_correct=body.is_correct,
    )
    return APIResponse.success(prediction.to_dict())


@router.post("/difficulty/adjust")
async def adjust_difficulty(body: AdjustRequest, service: ReviewService = Depends(get_service)):
    adjustment_id = await service.adjust_difficulty(
        body.problem_id,
        body.adjustment_value,
        trigger_user_id=body.trigger_user_id,
        reason=body.reason,
        feedback_summary=body.feedback_summary,
    )
    return APIResponse.success({"adjustment_id": adjustment_id}, "Difficulty adjusted")


@router.post("/profiles/performance")
async def update_profile(body: PerformanceRequest, service: ReviewService = Depends(get_service)):
    profile = await service.update_user_profile(body.user_id, body.is_correct)
    return APIResponse.success(profile.to_dict())


@router.get("/profiles/{user_id}/consistency")
async def get_consistency(user_id: str, service: ReviewService = Depends(get_service)):
    return APIResponse.success({"consistency_score": await service.get_consistency_score(user_id)})


@router.get("/problems/personalized/{user_id}")
async def get_personalized_problems(
    user_id: str,
    category: Optional[str] = None,
    limit: int = Query(default=10, ge=1, le=100),
    service: ReviewService = Depends(get_service)
):
    scored = await service.get_personalized_problems(user_id, category_name=category, limit=limit)
    return APIResponse.success([
        {
            "problem_id": problem.id,
            "title": problem.title,
            "difficulty": problem.difficulty,
            "category_name": problem.category_name,
            "score": score,
        }
        for problem, score in scored
    ])


# Scheduling

@router.post("/reviews")
async def schedule_review(body: ReviewRequest, service: ReviewService = Depends(get_service)):
    item = await service.schedule_review(
        body.user_id,
        body.problem_id,
        ReviewPerformance(
            is_success=body.is_success,
            response_time=body.response_time,
            confidence_level=body.confidence_level,
            difficulty_score=body.difficulty_score,
        ),
        problem_set_id=body.problem_set_id,
    )
    return APIResponse.success(item.to_dict(), "Review scheduled")


@router.post("/schedules/generate")
async def generate_schedule(body: GenerateRequest, service: ReviewService = Depends(get_service)):
    items = await service.generate_personalized_schedule(body.user_id, body.options)
    return APIResponse.success([item.to_dict() for item in items])


@router.get("/schedules/{user_id}")
async def get_schedule(user_id: str, service: ReviewService = Depends(get_service)):
    items = await service.get_schedule(user_id)
    return APIResponse.success([item.to_dict() for item in items])


@router.get("/schedules/{user_id}/stats")
async def get_schedule_stats(user_id: str, service: ReviewService = Depends(get_service)):
    return APIResponse.success(await service.get_schedule_stats(user_id))


@router.get("/schedules/{user_id}/range")
async def get_schedule_range(
    user_id: str,
    start: datetime.datetime,
    end: datetime.datetime,
    service: ReviewService = Depends(get_service)
):
    items = await service.get_schedule_by_time_range(user_id, start, end)
    return APIResponse.success([item.to_dict() for item in items])


@router.post("/schedules/{schedule_id}/complete")
async def complete_review(
    schedule_id: str,
    body: CompleteRequest,
    service: ReviewService = Depends(get_service)
):
    item = await service.complete_review(
        schedule_id,
        body.is_success,
        response_time=body.response_time,
        confidence_level=body.confidence_level,
    )
    return APIResponse.success(item.to_dict(), "Review completed")


# Orchestrator

@router.get("/orchestrator/status")
async def orchestrator_status(orchestrator: ReviewBatchOrchestrator = Depends(get_orchestrator)):
    return APIResponse.success({
        "is_running": orchestrator.is_running,
        "running_jobs": orchestrator.get_running_jobs(),
        "job_stats": orchestrator.get_job_stats(),
        "config": orchestrator.get_config(),
    })


@router.get("/orchestrator/batches/{batch_id}")
async def get_batch(batch_id: str, orchestrator: ReviewBatchOrchestrator = Depends(get_orchestrator)):
    run = await orchestrator.get_batch_run(batch_id)
    if run is None:
        raise NotFoundError("Batch", batch_id)
    return APIResponse.success(run.to_dict())


@router.post("/orchestrator/jobs/{name}")
async def trigger_job(name: str, orchestrator: ReviewBatchOrchestrator = Depends(get_orchestrator)):
    try:
        job = JobName(name)
    except ValueError:
        raise ValidationError(f"Unknown job {name!r}", {"name": [job.value for job in JobName]}) from None
    outcome = await orchestrator.run_job(job)
    return APIResponse.success({"job": job.value, "outcome": outcome.value})
