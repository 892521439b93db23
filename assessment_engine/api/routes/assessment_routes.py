"""
Assessment Routes

POST   /assessments                        - Create assessment (recruiter/admin)
GET    /assessments                        - List assessments the caller can take
GET    /assessments/my-attempts            - Caller's attempt history
GET    /assessments/{id}                   - Assessment detail (no answers) + resumable attempt
PUT    /assessments/{id}                   - Update assessment (creator/admin)
DELETE /assessments/{id}                   - Delete assessment without attempts (creator/admin)
POST   /assessments/{id}/deactivate        - Stop new attempts (creator/admin)
POST   /assessments/{id}/refresh-stats     - Recompute counters (admin)
GET    /assessments/{id}/leaderboard       - Ranked best submitted attempts
POST   /assessments/{id}/start             - Start or resume an attempt
PUT    /assessments/attempts/{id}/answer   - Save one answer
POST   /assessments/attempts/{id}/submit   - Submit and grade
POST   /assessments/attempts/{id}/tab-switch - Report a tab switch
GET    /assessments/attempts/{id}/result   - Graded result
"""

from fastapi import APIRouter, Depends, Query
from typing import List, Optional

from assessment_engine.api.dependencies import (
    get_assessment_service, get_attempt_service, get_leaderboard_service
)
from assessment_engine.core.auth import get_current_admin, get_current_user
from assessment_engine.schemas.schemas import (
    Actor, Assessment, AssessmentCreate, AssessmentDetailResponse, AssessmentPublic,
    AssessmentUpdate, Attempt, AttemptResultResponse, LeaderboardPage, MessageResponse,
    SaveAnswerRequest, StartAttemptResponse, SubmitResponse, TabSwitchResult
)
from assessment_engine.services.assessment_service import AssessmentService
from assessment_engine.services.attempt_service import AttemptService
from assessment_engine.services.leaderboard_service import LeaderboardService

router = APIRouter(prefix="/assessments", tags=["Assessments"])


# ============================================================
# ASSESSMENT MANAGEMENT
# ============================================================

@router.post("", response_model=Assessment, status_code=201)
def create_assessment(
    payload: AssessmentCreate,
    actor: Actor = Depends(get_current_user),
    service: AssessmentService = Depends(get_assessment_service)
):
    """Create an assessment. Only recruiters and admins can create assessments."""
    return service.create_assessment(actor, payload)


@router.get("", response_model=List[AssessmentPublic])
def list_assessments(
    category: Optional[str] = Query(None),
    difficulty: Optional[str] = Query(None),
    search: Optional[str] = Query(None, description="Search in title"),
    actor: Actor = Depends(get_current_user),
    service: AssessmentService = Depends(get_assessment_service)
):
    return service.list_assessments(actor, category=category, difficulty=difficulty, search=search)


@router.get("/my-attempts", response_model=List[Attempt])
def my_attempts(
    actor: Actor = Depends(get_current_user),
    service: AttemptService = Depends(get_attempt_service)
):
    return service.list_my_attempts(actor)


@router.get("/{assessment_id}", response_model=AssessmentDetailResponse)
def get_assessment(
    assessment_id: str,
    actor: Actor = Depends(get_current_user),
    service: AssessmentService = Depends(get_assessment_service)
):
    return service.get_assessment(assessment_id, actor)


@router.put("/{assessment_id}", response_model=Assessment)
def update_assessment(
    assessment_id: str,
    payload: AssessmentUpdate,
    actor: Actor = Depends(get_current_user),
    service: AssessmentService = Depends(get_assessment_service)
):
    return service.update_assessment(assessment_id, actor, payload)


@router.delete("/{assessment_id}", response_model=MessageResponse)
def delete_assessment(
    assessment_id: str,
    actor: Actor = Depends(get_current_user),
    service: AssessmentService = Depends(get_assessment_service)
):
    service.delete_assessment(assessment_id, actor)
    return MessageResponse(message="Assessment deleted")


@router.post("/{assessment_id}/deactivate", response_model=MessageResponse)
def deactivate_assessment(
    assessment_id: str,
    actor: Actor = Depends(get_current_user),
    service: AssessmentService = Depends(get_assessment_service)
):
    service.deactivate_assessment(assessment_id, actor)
    return MessageResponse(message="Assessment deactivated")


@router.post("/{assessment_id}/refresh-stats", response_model=MessageResponse)
def refresh_stats(
    assessment_id: str,
    admin: Actor = Depends(get_current_admin),
    service: AssessmentService = Depends(get_assessment_service)
):
    total, average = service.refresh_stats(assessment_id)
    return MessageResponse(message=f"{total} attempts, average score {average}")


@router.get("/{assessment_id}/leaderboard", response_model=LeaderboardPage)
def assessment_leaderboard(
    assessment_id: str,
    page: int = Query(1),
    limit: Optional[int] = Query(None),
    actor: Actor = Depends(get_current_user),
    service: LeaderboardService = Depends(get_leaderboard_service)
):
    return service.get_assessment_leaderboard(assessment_id, page=page, limit=limit)


# ============================================================
# ATTEMPTS
# ============================================================

@router.post("/{assessment_id}/start", response_model=StartAttemptResponse)
def start_attempt(
    assessment_id: str,
    actor: Actor = Depends(get_current_user),
    service: AttemptService = Depends(get_attempt_service)
):
    """Start the assessment, or resume the attempt already in progress."""
    return service.open_attempt(assessment_id, actor)


@router.put("/attempts/{attempt_id}/answer", response_model=MessageResponse)
def save_answer(
    attempt_id: str,
    payload: SaveAnswerRequest,
    actor: Actor = Depends(get_current_user),
    service: AttemptService = Depends(get_attempt_service)
):
    service.save_answer(attempt_id, actor, payload.question_id, payload.answer, payload.time_taken)
    return MessageResponse(message="Answer saved")


@router.post("/attempts/{attempt_id}/submit", response_model=SubmitResponse)
def submit_attempt(
    attempt_id: str,
    actor: Actor = Depends(get_current_user),
    service: AttemptService = Depends(get_attempt_service)
):
    return service.submit_attempt(attempt_id, actor)


@router.post("/attempts/{attempt_id}/tab-switch", response_model=TabSwitchResult)
def report_tab_switch(
    attempt_id: str,
    actor: Actor = Depends(get_current_user),
    service: AttemptService = Depends(get_attempt_service)
):
    return service.report_tab_switch(attempt_id, actor)


@router.get("/attempts/{attempt_id}/result", response_model=AttemptResultResponse)
def attempt_result(
    attempt_id: str,
    actor: Actor = Depends(get_current_user),
    service: AttemptService = Depends(get_attempt_service)
):
    return service.get_attempt_result(attempt_id, actor)
