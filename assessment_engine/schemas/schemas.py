"""
Pydantic Schemas - Records and Request/Response Validation

All engine records (stored documents) and API schemas in one file.
Records are owned by their aggregate: Attempts by an Assessment,
Participants by an Event. Only the services mutate them.
"""

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator
from typing import Optional, List, Dict, Any, Union
from datetime import datetime
from enum import Enum

from assessment_engine.utils.helpers import ensure_aware, new_id, utcnow


class EngineModel(BaseModel):
    """Stores enums as their plain string values so documents serialize to BSON."""

    model_config = ConfigDict(use_enum_values=True, validate_default=True)


# ============================================================
# ENUMS
# ============================================================

class UserRole(str, Enum):
    student = "student"
    recruiter = "recruiter"
    admin = "admin"
    superadmin = "superadmin"


class QuestionType(str, Enum):
    single_choice = "single-choice"
    multi_select = "multi-select"
    boolean = "boolean"
    short_text = "short-text"


class Difficulty(str, Enum):
    easy = "Easy"
    medium = "Medium"
    hard = "Hard"


class AttemptStatus(str, Enum):
    in_progress = "in-progress"
    submitted = "submitted"
    expired = "expired"
    flagged = "flagged"


TERMINAL_ATTEMPT_STATUSES = (
    AttemptStatus.submitted,
    AttemptStatus.expired,
    AttemptStatus.flagged,
)


class RoundType(str, Enum):
    quiz = "quiz"
    submission = "submission"
    interview = "interview"
    other = "other"


class RoundStatus(str, Enum):
    pending = "pending"
    qualified = "qualified"
    disqualified = "disqualified"


class SubmissionStatus(str, Enum):
    not_submitted = "not_submitted"
    submitted = "submitted"
    reviewed = "reviewed"
    shortlisted = "shortlisted"
    rejected = "rejected"


class EntryStatus(str, Enum):
    submitted = "submitted"
    under_review = "under_review"
    reviewed = "reviewed"
    rejected = "rejected"


class EventCategory(str, Enum):
    hackathon = "hackathon"
    quiz = "quiz"
    case = "case"
    job_challenge = "job-challenge"
    workshop = "workshop"
    other = "other"


class EventPhase(str, Enum):
    upcoming = "upcoming"
    ongoing = "ongoing"
    ended = "ended"


# ============================================================
# IDENTITY
# ============================================================

class Actor(BaseModel):
    """The authenticated caller, as decoded from the access token."""
    user_id: str
    role: str = UserRole.student.value
    name: Optional[str] = None
    email: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role in (UserRole.admin.value, UserRole.superadmin.value)


# ============================================================
# ASSESSMENT RECORDS
# ============================================================

class Question(EngineModel):
    """
    One evaluable item as stored.

    correct_answer is a string for single-choice / boolean / short-text and
    a list of strings for multi-select. Stored questions are not re-validated
    here: grading must survive a malformed question instead of failing.
    """
    id: str = Field(default_factory=new_id)
    type: str
    question: str = ""
    options: List[str] = []
    correct_answer: Any = None
    explanation: Optional[str] = None
    difficulty: Difficulty = Difficulty.medium
    tags: List[str] = []
    points: float = 1


class Assessment(EngineModel):
    id: str = Field(default_factory=new_id)
    title: str
    description: Optional[str] = None

    created_by: str
    creator_role: str

    questions: List[Question] = []

    duration: int  # minutes
    passing_score: float = 60
    allow_review: bool = True
    shuffle_questions: bool = False
    show_results: bool = True

    tab_switch_limit: int = 3

    is_public: bool = True
    allowed_users: List[str] = []

    category: str = "General"
    difficulty: Difficulty = Difficulty.medium
    tags: List[str] = []

    # Recomputed from attempt records, never incremented in place
    total_attempts: int = 0
    average_score: float = 0

    is_active: bool = True
    published_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    version: int = 0

    def question_by_id(self, question_id: str) -> Optional[Question]:
        return next((q for q in self.questions if q.id == question_id), None)

    def can_be_taken_by(self, actor: Actor) -> bool:
        return self.is_public or actor.user_id in self.allowed_users or actor.user_id == self.created_by

    def can_be_managed_by(self, actor: Actor) -> bool:
        return actor.is_admin or actor.user_id == self.created_by


class AnswerEntry(EngineModel):
    question_id: str
    answer: Any = None
    is_correct: Optional[bool] = None
    points_earned: Optional[float] = None
    time_taken: Optional[float] = None  # seconds spent on this question


class Attempt(EngineModel):
    id: str = Field(default_factory=new_id)
    assessment_id: str
    user_id: str

    answers: List[AnswerEntry] = []

    total_score: float = 0
    percentage: float = 0
    passed: bool = False

    started_at: datetime = Field(default_factory=utcnow)
    submitted_at: Optional[datetime] = None
    time_spent: Optional[int] = None  # seconds

    tab_switches: int = 0
    flagged: bool = False
    flag_reason: Optional[str] = None

    status: AttemptStatus = AttemptStatus.in_progress
    version: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_ATTEMPT_STATUSES

    def answer_for(self, question_id: str) -> Optional[AnswerEntry]:
        return next((a for a in self.answers if a.question_id == question_id), None)


# ============================================================
# EVENT RECORDS
# ============================================================

class Round(EngineModel):
    round_number: int = Field(..., ge=1)
    title: str
    type: RoundType = RoundType.submission
    description: str = ""
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    is_elimination: bool = True


class QuizQuestion(EngineModel):
    id: str = Field(default_factory=new_id)
    question: str
    options: List[str] = []
    correct_option: int
    marks: float = 1


class Quiz(EngineModel):
    questions: List[QuizQuestion] = []
    duration: int = 15  # minutes
    tab_switch_limit: int = 3

    def question_by_id(self, question_id: str) -> Optional[QuizQuestion]:
        return next((q for q in self.questions if q.id == question_id), None)


class RoundResult(EngineModel):
    round_id: int
    status: RoundStatus = RoundStatus.pending
    score: Optional[float] = None
    feedback: str = ""
    evaluated_at: Optional[datetime] = None


class Participant(EngineModel):
    """
    A registrant's progress inside one Event.

    score is None until the first numeric evaluation; 0 is a real score.
    """
    user_id: str
    name: Optional[str] = None
    email: Optional[str] = None
    team_name: str = ""

    submission_status: SubmissionStatus = SubmissionStatus.not_submitted

    current_round: int = 1
    round_status: List[RoundResult] = []

    score: Optional[float] = None
    feedback: str = ""
    registered_at: datetime = Field(default_factory=utcnow)
    last_updated: Optional[datetime] = None

    # Written only by the explicit finalization action
    certificate_url: str = ""
    is_winner: bool = False
    rank: Optional[int] = None

    def result_for(self, round_id: int) -> Optional[RoundResult]:
        return next((r for r in self.round_status if r.round_id == round_id), None)


class Event(EngineModel):
    id: str = Field(default_factory=new_id)
    title: str
    subtitle: str = ""
    description: str = ""
    organizer: str = ""
    category: EventCategory = EventCategory.other
    tags: List[str] = []
    location: str = "Online"

    start_date: datetime
    end_date: datetime
    registration_deadline: datetime

    rounds: List[Round] = []
    quiz: Optional[Quiz] = None
    max_team_size: int = 1

    visibility: str = "public"
    created_by: str
    participants: List[Participant] = []

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    version: int = 0

    def participant_for(self, user_id: str) -> Optional[Participant]:
        return next((p for p in self.participants if p.user_id == user_id), None)

    def round_numbers(self) -> List[int]:
        return [r.round_number for r in self.rounds]

    def round_by_number(self, round_number: int) -> Optional[Round]:
        return next((r for r in self.rounds if r.round_number == round_number), None)

    def next_round_after(self, round_number: int) -> Optional[Round]:
        later = [r for r in self.rounds if r.round_number > round_number]
        return min(later, key=lambda r: r.round_number) if later else None

    def can_be_managed_by(self, actor: Actor) -> bool:
        return actor.is_admin or actor.user_id == self.created_by

    def phase(self, now: datetime) -> EventPhase:
        if now < ensure_aware(self.start_date):
            return EventPhase.upcoming
        if now > ensure_aware(self.end_date):
            return EventPhase.ended
        return EventPhase.ongoing

    def can_be_seen_by(self, actor: Actor) -> bool:
        if self.visibility == "public" or self.can_be_managed_by(actor):
            return True
        return self.participant_for(actor.user_id) is not None


class QuizAttempt(EngineModel):
    """One participant's run through an event's embedded quiz, one per (event, user)."""
    id: str = Field(default_factory=new_id)
    event_id: str
    user_id: str
    answers: Dict[str, Any] = {}  # quiz question id -> submitted option index

    score: Optional[float] = None
    max_score: float = 0
    correct_count: int = 0

    tab_switches: int = 0
    flagged: bool = False
    flag_reason: Optional[str] = None

    status: AttemptStatus = AttemptStatus.in_progress
    started_at: datetime = Field(default_factory=utcnow)
    submitted_at: Optional[datetime] = None
    version: int = 0


class Submission(EngineModel):
    """A participant's entry for an event, one per (event, user)."""
    id: str = Field(default_factory=new_id)
    event_id: str
    user_id: str
    team_name: str = ""
    submission_link: str = ""
    file_url: str = ""
    status: EntryStatus = EntryStatus.submitted
    final_score: Optional[float] = None
    feedback: str = ""
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


# ============================================================
# ASSESSMENT REQUEST SCHEMAS
# ============================================================

class QuestionCreate(BaseModel):
    type: QuestionType
    question: str = Field(..., min_length=1)
    options: List[str] = []
    correct_answer: Union[str, List[str]]
    explanation: Optional[str] = None
    difficulty: Difficulty = Difficulty.medium
    tags: List[str] = []
    points: float = Field(1, ge=0)

    @field_validator("options")
    @classmethod
    def strip_options(cls, v: List[str]) -> List[str]:
        cleaned = [option.strip() for option in v]
        if any(not option for option in cleaned):
            raise ValueError("Option text cannot be empty")
        return cleaned

    @model_validator(mode="after")
    def check_correct_answer(self):
        if self.type == QuestionType.multi_select:
            if not isinstance(self.correct_answer, list) or not self.correct_answer:
                raise ValueError("Multi-select questions need a non-empty list of correct answers")
            answers = [a.strip() for a in self.correct_answer]
            if len(set(answers)) != len(answers):
                raise ValueError("Correct answers must not repeat")
            if self.options and any(a not in self.options for a in answers):
                raise ValueError("Correct answers must be chosen from options")
            self.correct_answer = answers
        else:
            if not isinstance(self.correct_answer, str) or not self.correct_answer.strip():
                raise ValueError("Correct answer must be a non-empty string")
            answer = self.correct_answer.strip()
            if self.options and answer.casefold() not in [o.casefold() for o in self.options]:
                raise ValueError("Correct answer must be one of the options")
            self.correct_answer = answer
        if self.type in (QuestionType.single_choice, QuestionType.multi_select) and not self.options:
            raise ValueError("Choice questions need options")
        return self


class AssessmentCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    questions: List[QuestionCreate] = Field(..., min_length=1)
    duration: int = Field(..., gt=0)
    passing_score: Optional[float] = Field(None, ge=0, le=100)
    tab_switch_limit: Optional[int] = Field(None, ge=0)
    allow_review: bool = True
    shuffle_questions: bool = False
    show_results: bool = True
    is_public: bool = True
    allowed_users: List[str] = []
    category: str = "General"
    difficulty: Difficulty = Difficulty.medium
    tags: List[str] = []
    expires_at: Optional[datetime] = None


class AssessmentUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    questions: Optional[List[QuestionCreate]] = None
    duration: Optional[int] = Field(None, gt=0)
    passing_score: Optional[float] = Field(None, ge=0, le=100)
    tab_switch_limit: Optional[int] = Field(None, ge=0)
    is_public: Optional[bool] = None
    allowed_users: Optional[List[str]] = None
    category: Optional[str] = None
    difficulty: Optional[Difficulty] = None
    tags: Optional[List[str]] = None
    expires_at: Optional[datetime] = None


class QuestionPublic(BaseModel):
    """Question as shown to a candidate: no correct answer, no explanation."""
    id: str
    type: str
    question: str
    options: List[str] = []
    points: float
    difficulty: str
    tags: List[str] = []


class AssessmentPublic(BaseModel):
    id: str
    title: str
    description: Optional[str] = None
    created_by: str
    questions: List[QuestionPublic]
    duration: int
    passing_score: float
    tab_switch_limit: int
    is_public: bool
    category: str
    difficulty: str
    tags: List[str] = []
    total_attempts: int
    average_score: float
    is_active: bool


class AssessmentDetailResponse(BaseModel):
    assessment: AssessmentPublic
    has_active_attempt: bool
    attempt_id: Optional[str] = None


class SaveAnswerRequest(BaseModel):
    question_id: str
    answer: Any = None
    time_taken: Optional[float] = Field(None, ge=0)


# ============================================================
# ASSESSMENT RESPONSE SCHEMAS
# ============================================================

class StartAttemptResponse(BaseModel):
    message: str
    attempt: Attempt
    duration: int
    resumed: bool = False


class SubmitResult(BaseModel):
    score: float
    total_points: float
    percentage: float
    passed: bool
    time_spent: int
    status: str


class SubmitResponse(BaseModel):
    message: str
    result: SubmitResult
    attempt: Attempt


class TabSwitchResult(BaseModel):
    message: str
    tab_switches: int
    limit: int
    warning: bool = False
    flagged: bool = False
    auto_submit: bool = False
    ignored: bool = False
    status: str


class AttemptResultResponse(BaseModel):
    attempt: Attempt
    assessment: AssessmentPublic


# ============================================================
# EVENT REQUEST SCHEMAS
# ============================================================

class QuizQuestionCreate(BaseModel):
    question: str = Field(..., min_length=1)
    options: List[str] = Field(..., min_length=2)
    correct_option: int = Field(..., ge=0)
    marks: float = Field(1, ge=0)

    @model_validator(mode="after")
    def check_correct_option(self):
        if self.correct_option >= len(self.options):
            raise ValueError("correct_option must index into options")
        return self


class QuizCreate(BaseModel):
    questions: List[QuizQuestionCreate] = Field(..., min_length=1)
    duration: Optional[int] = Field(None, gt=0)
    tab_switch_limit: Optional[int] = Field(None, ge=0)


class RoundCreate(BaseModel):
    round_number: int = Field(..., ge=1)
    title: str = Field(..., min_length=1)
    type: RoundType = RoundType.submission
    description: str = ""
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    is_elimination: bool = True


def check_round_order(rounds) -> None:
    numbers = [r.round_number for r in rounds]
    if any(later <= earlier for earlier, later in zip(numbers, numbers[1:])):
        raise ValueError("Round numbers must be unique and strictly increasing")


class EventCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    subtitle: str = ""
    description: str = ""
    organizer: str = ""
    category: EventCategory = EventCategory.other
    tags: List[str] = []
    location: str = "Online"
    start_date: datetime
    end_date: datetime
    registration_deadline: datetime
    rounds: List[RoundCreate] = []
    quiz: Optional[QuizCreate] = None
    max_team_size: int = Field(1, ge=1)
    visibility: str = "public"

    @model_validator(mode="after")
    def check_schedule(self):
        check_round_order(self.rounds)
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class EventUpdate(BaseModel):
    """Partial edit. The quiz and the participants are not editable here."""
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    subtitle: Optional[str] = None
    description: Optional[str] = None
    organizer: Optional[str] = None
    category: Optional[EventCategory] = None
    tags: Optional[List[str]] = None
    location: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    registration_deadline: Optional[datetime] = None
    rounds: Optional[List[RoundCreate]] = None
    max_team_size: Optional[int] = Field(None, ge=1)
    visibility: Optional[str] = None

    @model_validator(mode="after")
    def check_rounds(self):
        if self.rounds is not None:
            check_round_order(self.rounds)
        return self


class RegisterRequest(BaseModel):
    team_name: str = ""
    name: Optional[str] = None
    email: Optional[EmailStr] = None


class SubmitEntryRequest(BaseModel):
    submission_link: str = ""
    file_url: str = ""


class EvaluateRoundRequest(BaseModel):
    user_id: str
    round_id: int = Field(1, ge=1)
    score: Optional[float] = Field(None, ge=0)
    feedback: str = ""
    status: RoundStatus = RoundStatus.pending


class SaveQuizAnswerRequest(BaseModel):
    question_id: str
    option: Any = None


class SubmitQuizRequest(BaseModel):
    answers: Dict[str, Any] = {}


class FinalizeRequest(BaseModel):
    winners: int = Field(3, ge=0)


# ============================================================
# EVENT RESPONSE SCHEMAS
# ============================================================

class QuizSubmitResult(BaseModel):
    message: str
    score: float
    max_score: float
    correct_count: int
    total_questions: int
    flagged: bool = False


class EvaluationResponse(BaseModel):
    message: str
    participant: Participant


class QuizQuestionPublic(BaseModel):
    """Quiz question without its correct option."""
    id: str
    question: str
    options: List[str]
    marks: float


class QuizPublic(BaseModel):
    questions: List[QuizQuestionPublic]
    duration: int
    tab_switch_limit: int


class EventPublic(BaseModel):
    id: str
    title: str
    subtitle: str = ""
    description: str = ""
    organizer: str = ""
    category: str
    tags: List[str] = []
    location: str
    start_date: datetime
    end_date: datetime
    registration_deadline: datetime
    status: EventPhase
    rounds: List[Round] = []
    quiz: Optional[QuizPublic] = None
    max_team_size: int
    visibility: str
    created_by: str
    participant_count: int


class EventDetailResponse(BaseModel):
    event: EventPublic
    is_registered: bool
    participant: Optional[Participant] = None  # the caller's own progress
    participants: List[Participant] = []  # everyone, organizer/admin only


class EventListResponse(BaseModel):
    events: List[EventPublic]
    total: int
    page: int
    pages: int


class Registration(BaseModel):
    """One event the caller registered for, with their progress in it."""
    event_id: str
    title: str
    category: str
    status: EventPhase
    start_date: datetime
    end_date: datetime
    registration_deadline: datetime
    registered_at: Optional[datetime] = None
    team_name: str = ""
    current_round: int
    submission_status: str
    score: Optional[float] = None
    feedback: str = ""
    rank: Optional[int] = None
    is_winner: bool = False


class RegistrationsResponse(BaseModel):
    registrations: List[Registration]


class SubmissionListResponse(BaseModel):
    event_id: str
    total: int
    submissions: List[Submission]


# ============================================================
# LEADERBOARD SCHEMAS
# ============================================================

class LeaderboardEntry(BaseModel):
    rank: int
    user_id: str
    name: Optional[str] = None
    email: Optional[str] = None
    team_name: str = ""
    score: float
    feedback: str = ""
    last_updated: Optional[datetime] = None


class LeaderboardPage(BaseModel):
    subject_id: str
    total_participants: int
    total_ranked: int
    page: int
    total_pages: int
    leaderboard: List[LeaderboardEntry]


# ============================================================
# GENERIC SCHEMAS
# ============================================================

class MessageResponse(BaseModel):
    message: str
    success: bool = True


class ErrorResponse(BaseModel):
    detail: str
    field: Optional[str] = None
