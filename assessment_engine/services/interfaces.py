"""
Collaborator Interfaces

What the engine needs from the outside world:
- Repositories: load/save one document at a time, with per-document
  compare-and-swap on the record's `version` (no cross-document transactions)
- Notifier: best-effort, fire-and-forget user notifications
- AuditLog: best-effort append-only trail

MongoDB implementations live in mongo_service.py and notification_service.py;
tests use in-memory fakes.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from assessment_engine.schemas.schemas import (
    Assessment, Attempt, Event, QuizAttempt, Submission
)


class AssessmentRepository(ABC):
    @abstractmethod
    def get(self, assessment_id: str) -> Optional[Assessment]:
        raise NotImplementedError

    @abstractmethod
    def list_active(self) -> List[Assessment]:
        raise NotImplementedError

    @abstractmethod
    def insert(self, assessment: Assessment) -> Assessment:
        raise NotImplementedError

    @abstractmethod
    def save(self, assessment: Assessment) -> Assessment:
        """Write if the stored version still matches; returns the record with the bumped version."""
        raise NotImplementedError

    @abstractmethod
    def update_stats(self, assessment_id: str, total_attempts: int, average_score: float) -> None:
        """Overwrite the derived counters (recomputed by the caller from attempt records)."""
        raise NotImplementedError

    @abstractmethod
    def delete(self, assessment_id: str) -> bool:
        raise NotImplementedError


class AttemptRepository(ABC):
    @abstractmethod
    def get(self, attempt_id: str) -> Optional[Attempt]:
        raise NotImplementedError

    @abstractmethod
    def find_in_progress(self, assessment_id: str, user_id: str) -> Optional[Attempt]:
        raise NotImplementedError

    @abstractmethod
    def insert(self, attempt: Attempt) -> Attempt:
        """Raise ConcurrentUpdateError if an in-progress attempt already exists for the pair."""
        raise NotImplementedError

    @abstractmethod
    def save(self, attempt: Attempt) -> Attempt:
        raise NotImplementedError

    @abstractmethod
    def list_for_assessment(self, assessment_id: str, status: Optional[str] = None) -> List[Attempt]:
        raise NotImplementedError

    @abstractmethod
    def list_for_user(self, user_id: str) -> List[Attempt]:
        raise NotImplementedError

    @abstractmethod
    def count_for_assessment(self, assessment_id: str) -> int:
        raise NotImplementedError


class EventRepository(ABC):
    @abstractmethod
    def get(self, event_id: str) -> Optional[Event]:
        raise NotImplementedError

    @abstractmethod
    def list_all(self) -> List[Event]:
        """Every event, earliest start_date first."""
        raise NotImplementedError

    @abstractmethod
    def list_for_participant(self, user_id: str) -> List[Event]:
        raise NotImplementedError

    @abstractmethod
    def insert(self, event: Event) -> Event:
        raise NotImplementedError

    @abstractmethod
    def save(self, event: Event) -> Event:
        raise NotImplementedError

    @abstractmethod
    def delete(self, event_id: str) -> bool:
        raise NotImplementedError


class QuizAttemptRepository(ABC):
    @abstractmethod
    def get(self, event_id: str, user_id: str) -> Optional[QuizAttempt]:
        raise NotImplementedError

    @abstractmethod
    def save(self, quiz_attempt: QuizAttempt) -> QuizAttempt:
        """Upsert keyed by (event, user); version 0 means the record is new."""
        raise NotImplementedError

    @abstractmethod
    def delete_for_event(self, event_id: str) -> int:
        raise NotImplementedError


class SubmissionRepository(ABC):
    @abstractmethod
    def get(self, event_id: str, user_id: str) -> Optional[Submission]:
        raise NotImplementedError

    @abstractmethod
    def upsert(self, submission: Submission) -> Submission:
        raise NotImplementedError

    @abstractmethod
    def list_for_event(self, event_id: str) -> List[Submission]:
        """Most recently updated first."""
        raise NotImplementedError

    @abstractmethod
    def delete_for_event(self, event_id: str) -> int:
        raise NotImplementedError


class Notifier(ABC):
    @abstractmethod
    def notify(self, recipient_id: str, title: str, message: str, type: str = "system", link: str = "") -> None:
        raise NotImplementedError


class AuditLog(ABC):
    @abstractmethod
    def record(self, action: str, actor_id: str, detail: str) -> None:
        raise NotImplementedError
