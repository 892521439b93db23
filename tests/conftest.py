"""
Shared fixtures: in-memory repositories with the same compare-and-swap
contract as the MongoDB ones, recording notifier/audit sinks and a clock
the tests can move.
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Tuple

import pytest

from assessment_engine.core.config import Settings
from assessment_engine.core.errors import ConcurrentUpdateError
from assessment_engine.schemas.schemas import (
    Actor, Assessment, Attempt, AttemptStatus, Event, QuizAttempt, Submission, UserRole
)
from assessment_engine.services.assessment_service import AssessmentService
from assessment_engine.services.attempt_service import AttemptService
from assessment_engine.services.event_service import EventService
from assessment_engine.services.interfaces import (
    AssessmentRepository, AttemptRepository, AuditLog, EventRepository, Notifier,
    QuizAttemptRepository, SubmissionRepository
)
from assessment_engine.services.leaderboard_service import LeaderboardService


# ============================================================
# CLOCK
# ============================================================

class FakeClock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


# ============================================================
# IN-MEMORY REPOSITORIES
# ============================================================

def _cas(store: dict, key, record):
    stored = store.get(key)
    if stored is None or stored.version != record.version:
        raise ConcurrentUpdateError()
    saved = record.model_copy(update={"version": record.version + 1}, deep=True)
    store[key] = saved
    return saved.model_copy(deep=True)


class MemoryAssessmentRepository(AssessmentRepository):
    def __init__(self):
        self.docs: Dict[str, Assessment] = {}

    def get(self, assessment_id):
        doc = self.docs.get(assessment_id)
        return doc.model_copy(deep=True) if doc else None

    def list_active(self):
        active = [a for a in self.docs.values() if a.is_active]
        return [a.model_copy(deep=True) for a in sorted(active, key=lambda a: a.created_at, reverse=True)]

    def insert(self, assessment):
        self.docs[assessment.id] = assessment.model_copy(deep=True)
        return assessment

    def save(self, assessment):
        return _cas(self.docs, assessment.id, assessment)

    def update_stats(self, assessment_id, total_attempts, average_score):
        stored = self.docs.get(assessment_id)
        if stored is not None:
            self.docs[assessment_id] = stored.model_copy(update={
                "total_attempts": total_attempts,
                "average_score": average_score,
                "version": stored.version + 1,
            })

    def delete(self, assessment_id):
        return self.docs.pop(assessment_id, None) is not None


class MemoryAttemptRepository(AttemptRepository):
    def __init__(self):
        self.docs: Dict[str, Attempt] = {}

    def get(self, attempt_id):
        doc = self.docs.get(attempt_id)
        return doc.model_copy(deep=True) if doc else None

    def find_in_progress(self, assessment_id, user_id):
        for doc in self.docs.values():
            if (doc.assessment_id, doc.user_id, doc.status) == (assessment_id, user_id, AttemptStatus.in_progress.value):
                return doc.model_copy(deep=True)
        return None

    def insert(self, attempt):
        if self.find_in_progress(attempt.assessment_id, attempt.user_id) is not None:
            raise ConcurrentUpdateError("An attempt is already in progress")
        self.docs[attempt.id] = attempt.model_copy(deep=True)
        return attempt

    def save(self, attempt):
        return _cas(self.docs, attempt.id, attempt)

    def list_for_assessment(self, assessment_id, status=None):
        return [
            d.model_copy(deep=True) for d in self.docs.values()
            if d.assessment_id == assessment_id and (status is None or d.status == status)
        ]

    def list_for_user(self, user_id):
        mine = [d for d in self.docs.values() if d.user_id == user_id]
        return [d.model_copy(deep=True) for d in sorted(mine, key=lambda d: d.started_at, reverse=True)]

    def count_for_assessment(self, assessment_id):
        return sum(1 for d in self.docs.values() if d.assessment_id == assessment_id)


class MemoryEventRepository(EventRepository):
    def __init__(self):
        self.docs: Dict[str, Event] = {}

    def get(self, event_id):
        doc = self.docs.get(event_id)
        return doc.model_copy(deep=True) if doc else None

    def list_all(self):
        ordered = sorted(self.docs.values(), key=lambda e: e.start_date)
        return [e.model_copy(deep=True) for e in ordered]

    def list_for_participant(self, user_id):
        return [e for e in self.list_all() if e.participant_for(user_id) is not None]

    def insert(self, event):
        self.docs[event.id] = event.model_copy(deep=True)
        return event

    def save(self, event):
        return _cas(self.docs, event.id, event)

    def delete(self, event_id):
        return self.docs.pop(event_id, None) is not None


class MemoryQuizAttemptRepository(QuizAttemptRepository):
    def __init__(self):
        self.docs: Dict[Tuple[str, str], QuizAttempt] = {}

    def get(self, event_id, user_id):
        doc = self.docs.get((event_id, user_id))
        return doc.model_copy(deep=True) if doc else None

    def save(self, quiz_attempt):
        key = (quiz_attempt.event_id, quiz_attempt.user_id)
        if quiz_attempt.version == 0:
            if key in self.docs:
                raise ConcurrentUpdateError()
            saved = quiz_attempt.model_copy(update={"version": 1}, deep=True)
            self.docs[key] = saved
            return saved.model_copy(deep=True)
        return _cas(self.docs, key, quiz_attempt)

    def delete_for_event(self, event_id):
        keys = [k for k in self.docs if k[0] == event_id]
        for key in keys:
            del self.docs[key]
        return len(keys)


class MemorySubmissionRepository(SubmissionRepository):
    def __init__(self):
        self.docs: Dict[Tuple[str, str], Submission] = {}

    def get(self, event_id, user_id):
        doc = self.docs.get((event_id, user_id))
        return doc.model_copy(deep=True) if doc else None

    def upsert(self, submission):
        key = (submission.event_id, submission.user_id)
        existing = self.docs.get(key)
        if existing is not None:
            submission = submission.model_copy(update={"id": existing.id, "created_at": existing.created_at})
        self.docs[key] = submission.model_copy(deep=True)
        return submission

    def list_for_event(self, event_id):
        mine = [s for s in self.docs.values() if s.event_id == event_id]
        return [s.model_copy(deep=True) for s in sorted(mine, key=lambda s: s.updated_at, reverse=True)]

    def delete_for_event(self, event_id):
        keys = [k for k in self.docs if k[0] == event_id]
        for key in keys:
            del self.docs[key]
        return len(keys)


class RecordingNotifier(Notifier):
    def __init__(self):
        self.sent: List[dict] = []

    def notify(self, recipient_id, title, message, type="system", link=""):
        self.sent.append({"recipient_id": recipient_id, "title": title, "message": message, "type": type})


class RecordingAuditLog(AuditLog):
    def __init__(self):
        self.records: List[Tuple[str, str, str]] = []

    def record(self, action, actor_id, detail):
        self.records.append((action, actor_id, detail))

    def actions(self) -> List[str]:
        return [action for action, _, _ in self.records]


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def settings():
    return Settings(_env_file=None)


@pytest.fixture
def assessments():
    return MemoryAssessmentRepository()


@pytest.fixture
def attempts():
    return MemoryAttemptRepository()


@pytest.fixture
def events():
    return MemoryEventRepository()


@pytest.fixture
def quiz_attempts():
    return MemoryQuizAttemptRepository()


@pytest.fixture
def submissions():
    return MemorySubmissionRepository()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def audit():
    return RecordingAuditLog()


@pytest.fixture
def assessment_service(assessments, attempts, audit, settings, clock):
    return AssessmentService(assessments, attempts, audit, settings=settings, clock=clock)


@pytest.fixture
def attempt_service(assessments, attempts, notifier, audit, settings, clock):
    return AttemptService(assessments, attempts, notifier, audit, settings=settings, clock=clock)


@pytest.fixture
def event_service(events, quiz_attempts, submissions, notifier, audit, settings, clock):
    return EventService(events, quiz_attempts, submissions, notifier, audit, settings=settings, clock=clock)


@pytest.fixture
def leaderboard_service(events, assessments, attempts, settings):
    return LeaderboardService(events, assessments, attempts, settings=settings)


@pytest.fixture
def student():
    return Actor(user_id="stu-1", role=UserRole.student.value, name="Asha", email="asha@example.com")


@pytest.fixture
def other_student():
    return Actor(user_id="stu-2", role=UserRole.student.value, name="Ben", email="ben@example.com")


@pytest.fixture
def recruiter():
    return Actor(user_id="rec-1", role=UserRole.recruiter.value, name="Riya", email="riya@example.com")


@pytest.fixture
def admin():
    return Actor(user_id="adm-1", role=UserRole.admin.value, name="Admin")


# ============================================================
# BUILDERS
# ============================================================

def two_question_payload(**overrides) -> dict:
    payload = {
        "title": "Python Basics",
        "duration": 30,
        "passing_score": 50,
        "questions": [
            {
                "type": "single-choice",
                "question": "Which keyword defines a function?",
                "options": ["def", "func", "lambda"],
                "correct_answer": "def",
            },
            {
                "type": "multi-select",
                "question": "Which are immutable?",
                "options": ["A", "B", "C"],
                "correct_answer": ["A", "B"],
            },
        ],
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def make_assessment(assessment_service, recruiter):
    def _make(**overrides) -> Assessment:
        return assessment_service.create_assessment(recruiter, two_question_payload(**overrides))
    return _make


def event_payload(now: datetime, **overrides) -> dict:
    payload = {
        "title": "Code Sprint",
        "organizer": "Placement Cell",
        "category": "hackathon",
        "start_date": now + timedelta(days=2),
        "end_date": now + timedelta(days=5),
        "registration_deadline": now + timedelta(days=1),
        "rounds": [
            {"round_number": 1, "title": "Idea", "type": "submission"},
            {"round_number": 2, "title": "Quiz", "type": "quiz"},
            {"round_number": 3, "title": "Interview", "type": "interview"},
        ],
        "quiz": {
            "questions": [
                {"question": "2 + 2?", "options": ["3", "4"], "correct_option": 1},
                {"question": "Capital of France?", "options": ["Paris", "Rome", "Oslo"], "correct_option": 0},
            ],
        },
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def make_event(event_service, recruiter, clock):
    def _make(**overrides) -> Event:
        return event_service.create_event(recruiter, event_payload(clock(), **overrides))
    return _make


def participant_of(events_repo: MemoryEventRepository, event_id: str, user_id: str):
    return events_repo.get(event_id).participant_for(user_id)
