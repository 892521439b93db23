"""
Event Routes

POST   /events                        - Create event (recruiter/admin)
GET    /events                        - List visible events (search, category, status, paginated)
GET    /events/my-registrations       - Caller's registrations and progress
GET    /events/{id}                   - Event detail (no quiz answers) + caller's progress
PUT    /events/{id}                   - Edit details, schedule or rounds (organizer/admin)
DELETE /events/{id}                   - Delete event and everything under it (organizer/admin)
POST   /events/{id}/register          - Register the caller
POST   /events/{id}/submit            - Submit an entry for the current round
GET    /events/{id}/submissions       - Entry records (organizer/admin)
POST   /events/{id}/evaluate          - Record a round decision (organizer/admin)
PUT    /events/{id}/quiz/answer       - Save one quiz answer
POST   /events/{id}/quiz/submit       - Submit and grade the quiz
POST   /events/{id}/quiz/tab-switch   - Report a tab switch during the quiz
GET    /events/{id}/leaderboard       - Ranked participants (paginated)
POST   /events/{id}/finalize          - Persist ranks and winners (organizer/admin)
"""

from fastapi import APIRouter, Depends, Query
from typing import List, Optional

from assessment_engine.api.dependencies import get_event_service, get_leaderboard_service
from assessment_engine.core.auth import get_current_user
from assessment_engine.schemas.schemas import (
    Actor, EvaluateRoundRequest, EvaluationResponse, Event, EventCreate, EventDetailResponse,
    EventListResponse, EventPhase, EventUpdate, FinalizeRequest, LeaderboardPage, MessageResponse,
    Participant, QuizSubmitResult, RegisterRequest, RegistrationsResponse, SaveQuizAnswerRequest,
    SubmissionListResponse, SubmitEntryRequest, SubmitQuizRequest, Submission, TabSwitchResult
)
from assessment_engine.services.event_service import EventService
from assessment_engine.services.leaderboard_service import LeaderboardService

router = APIRouter(prefix="/events", tags=["Events"])


@router.post("", response_model=Event, status_code=201)
def create_event(
    payload: EventCreate,
    actor: Actor = Depends(get_current_user),
    service: EventService = Depends(get_event_service)
):
    return service.create_event(actor, payload)


@router.get("", response_model=EventListResponse)
def list_events(
    search: Optional[str] = Query(None, description="Search in title or exact tag"),
    category: Optional[str] = Query(None),
    status: Optional[EventPhase] = Query(None),
    page: int = Query(1),
    limit: Optional[int] = Query(None),
    actor: Actor = Depends(get_current_user),
    service: EventService = Depends(get_event_service)
):
    return service.list_events(actor, search=search, category=category, status=status, page=page, limit=limit)


@router.get("/my-registrations", response_model=RegistrationsResponse)
def my_registrations(
    actor: Actor = Depends(get_current_user),
    service: EventService = Depends(get_event_service)
):
    return service.list_my_registrations(actor)


@router.get("/{event_id}", response_model=EventDetailResponse)
def get_event(
    event_id: str,
    actor: Actor = Depends(get_current_user),
    service: EventService = Depends(get_event_service)
):
    return service.get_event(event_id, actor)


@router.put("/{event_id}", response_model=Event)
def update_event(
    event_id: str,
    payload: EventUpdate,
    actor: Actor = Depends(get_current_user),
    service: EventService = Depends(get_event_service)
):
    return service.update_event(event_id, actor, payload)


@router.delete("/{event_id}", response_model=MessageResponse)
def delete_event(
    event_id: str,
    actor: Actor = Depends(get_current_user),
    service: EventService = Depends(get_event_service)
):
    service.delete_event(event_id, actor)
    return MessageResponse(message="Event deleted")


# ============================================================
# PARTICIPATION
# ============================================================

@router.post("/{event_id}/register", response_model=Participant, status_code=201)
def register(
    event_id: str,
    payload: RegisterRequest,
    actor: Actor = Depends(get_current_user),
    service: EventService = Depends(get_event_service)
):
    return service.register_participant(
        event_id, actor, team_name=payload.team_name, name=payload.name,
        email=str(payload.email) if payload.email else None
    )


@router.post("/{event_id}/submit", response_model=Submission)
def submit_entry(
    event_id: str,
    payload: SubmitEntryRequest,
    actor: Actor = Depends(get_current_user),
    service: EventService = Depends(get_event_service)
):
    return service.submit_entry(event_id, actor, payload.submission_link, payload.file_url)


@router.get("/{event_id}/submissions", response_model=SubmissionListResponse)
def list_submissions(
    event_id: str,
    actor: Actor = Depends(get_current_user),
    service: EventService = Depends(get_event_service)
):
    return service.list_submissions(event_id, actor)


@router.post("/{event_id}/evaluate", response_model=EvaluationResponse)
def evaluate(
    event_id: str,
    payload: EvaluateRoundRequest,
    actor: Actor = Depends(get_current_user),
    service: EventService = Depends(get_event_service)
):
    """Evaluate one participant's round: qualified advances, disqualified eliminates."""
    participant = service.evaluate_round(
        event_id, actor, payload.user_id, payload.round_id,
        score=payload.score, feedback=payload.feedback, status=payload.status
    )
    return EvaluationResponse(message="Evaluation saved", participant=participant)


# ============================================================
# EMBEDDED QUIZ
# ============================================================

@router.put("/{event_id}/quiz/answer", response_model=MessageResponse)
def save_quiz_answer(
    event_id: str,
    payload: SaveQuizAnswerRequest,
    actor: Actor = Depends(get_current_user),
    service: EventService = Depends(get_event_service)
):
    service.save_quiz_answer(event_id, actor, payload.question_id, payload.option)
    return MessageResponse(message="Answer saved")


@router.post("/{event_id}/quiz/submit", response_model=QuizSubmitResult)
def submit_quiz(
    event_id: str,
    payload: SubmitQuizRequest,
    actor: Actor = Depends(get_current_user),
    service: EventService = Depends(get_event_service)
):
    return service.submit_quiz(event_id, actor, payload.answers)


@router.post("/{event_id}/quiz/tab-switch", response_model=TabSwitchResult)
def report_quiz_tab_switch(
    event_id: str,
    actor: Actor = Depends(get_current_user),
    service: EventService = Depends(get_event_service)
):
    return service.report_quiz_tab_switch(event_id, actor)


# ============================================================
# RESULTS
# ============================================================

@router.get("/{event_id}/leaderboard", response_model=LeaderboardPage)
def event_leaderboard(
    event_id: str,
    page: int = Query(1),
    limit: Optional[int] = Query(None),
    actor: Actor = Depends(get_current_user),
    service: LeaderboardService = Depends(get_leaderboard_service)
):
    return service.get_event_leaderboard(event_id, page=page, limit=limit)


@router.post("/{event_id}/finalize", response_model=List[Participant])
def finalize(
    event_id: str,
    payload: FinalizeRequest,
    actor: Actor = Depends(get_current_user),
    service: EventService = Depends(get_event_service)
):
    return service.finalize_results(event_id, actor, winners=payload.winners)
