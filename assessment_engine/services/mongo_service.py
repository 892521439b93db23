"""
MongoDB Service - repository implementations for the engine's collections.

Collections in this database:
1. assessments          - Assessment definitions (questions embedded)
2. assessment_attempts  - One candidate's run through an assessment
3. events               - Multi-round events (participants embedded)
4. quiz_attempts        - Event quiz runs, one per (event, user)
5. submissions          - Event entries, one per (event, user)

CONCURRENCY:
- Every record carries a `version` counter
- save() only writes when the stored version still matches (compare-and-swap)
- A lost race raises ConcurrentUpdateError; the services reload and retry
"""

from typing import List, Optional, Type, TypeVar

from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING
from pymongo.collection import Collection
from pymongo.errors import DuplicateKeyError

from assessment_engine.core.errors import ConcurrentUpdateError
from assessment_engine.db.mongodb import get_collection, COLLECTIONS
from assessment_engine.schemas.schemas import (
    Assessment, Attempt, AttemptStatus, Event, QuizAttempt, Submission
)
from assessment_engine.services.interfaces import (
    AssessmentRepository, AttemptRepository, EventRepository,
    QuizAttemptRepository, SubmissionRepository
)
from assessment_engine.utils.helpers import utcnow

ModelT = TypeVar("ModelT", bound=BaseModel)


# ============================================================
# HELPER: Convert between records and MongoDB documents
# ============================================================

def to_doc(record: BaseModel) -> dict:
    """Record -> document, with the record id stored as _id."""
    doc = record.model_dump()
    doc["_id"] = doc.pop("id")
    return doc


def from_doc(doc: Optional[dict], model: Type[ModelT]) -> Optional[ModelT]:
    """Document -> record, or None when nothing was found."""
    if doc is None:
        return None
    doc = dict(doc)
    doc["id"] = str(doc.pop("_id"))
    return model.model_validate(doc)


def compare_and_swap(collection: Collection, record: ModelT, extra_filter: Optional[dict] = None) -> ModelT:
    """Replace the document only if nobody wrote since `record` was read."""
    saved = record.model_copy(update={"version": record.version + 1})
    query = {"_id": record.id, "version": record.version}
    if extra_filter:
        query.update(extra_filter)
    result = collection.replace_one(query, to_doc(saved))
    if result.matched_count == 0:
        raise ConcurrentUpdateError()
    return saved


# ============================================================
# ASSESSMENTS COLLECTION
# ============================================================

class MongoAssessmentRepository(AssessmentRepository):
    """Assessment definitions. Never deleted while attempts reference them."""

    def __init__(self):
        self.collection: Collection = get_collection(COLLECTIONS["assessments"])

    def get(self, assessment_id: str) -> Optional[Assessment]:
        return from_doc(self.collection.find_one({"_id": assessment_id}), Assessment)

    def list_active(self) -> List[Assessment]:
        cursor = self.collection.find({"is_active": True}).sort("created_at", DESCENDING)
        return [from_doc(doc, Assessment) for doc in cursor]

    def insert(self, assessment: Assessment) -> Assessment:
        self.collection.insert_one(to_doc(assessment))
        return assessment

    def save(self, assessment: Assessment) -> Assessment:
        return compare_and_swap(self.collection, assessment)

    def update_stats(self, assessment_id: str, total_attempts: int, average_score: float) -> None:
        # Derived values, recomputed from attempts each time: last writer is always correct
        self.collection.update_one(
            {"_id": assessment_id},
            {
                "$set": {
                    "total_attempts": total_attempts,
                    "average_score": average_score,
                    "updated_at": utcnow()
                },
                "$inc": {"version": 1}
            }
        )

    def delete(self, assessment_id: str) -> bool:
        result = self.collection.delete_one({"_id": assessment_id})
        return result.deleted_count > 0


# ============================================================
# ASSESSMENT ATTEMPTS COLLECTION
# ============================================================

class MongoAttemptRepository(AttemptRepository):
    """
    Candidate attempts.
    The partial unique index from init_mongo_indexes() keeps one
    in-progress attempt per (assessment, user).
    """

    def __init__(self):
        self.collection: Collection = get_collection(COLLECTIONS["attempts"])

    def get(self, attempt_id: str) -> Optional[Attempt]:
        return from_doc(self.collection.find_one({"_id": attempt_id}), Attempt)

    def find_in_progress(self, assessment_id: str, user_id: str) -> Optional[Attempt]:
        doc = self.collection.find_one({
            "assessment_id": assessment_id,
            "user_id": user_id,
            "status": AttemptStatus.in_progress.value
        })
        return from_doc(doc, Attempt)

    def insert(self, attempt: Attempt) -> Attempt:
        try:
            self.collection.insert_one(to_doc(attempt))
        except DuplicateKeyError as e:
            raise ConcurrentUpdateError("An attempt is already in progress") from e
        return attempt

    def save(self, attempt: Attempt) -> Attempt:
        return compare_and_swap(self.collection, attempt)

    def list_for_assessment(self, assessment_id: str, status: Optional[str] = None) -> List[Attempt]:
        query = {"assessment_id": assessment_id}
        if status:
            query["status"] = status
        return [from_doc(doc, Attempt) for doc in self.collection.find(query)]

    def list_for_user(self, user_id: str) -> List[Attempt]:
        cursor = self.collection.find({"user_id": user_id}).sort("started_at", DESCENDING)
        return [from_doc(doc, Attempt) for doc in cursor]

    def count_for_assessment(self, assessment_id: str) -> int:
        return self.collection.count_documents({"assessment_id": assessment_id})


# ============================================================
# EVENTS COLLECTION
# Participants are embedded, so every participant change is one event write
# ============================================================

class MongoEventRepository(EventRepository):

    def __init__(self):
        self.collection: Collection = get_collection(COLLECTIONS["events"])

    def get(self, event_id: str) -> Optional[Event]:
        return from_doc(self.collection.find_one({"_id": event_id}), Event)

    def list_all(self) -> List[Event]:
        cursor = self.collection.find().sort("start_date", ASCENDING)
        return [from_doc(doc, Event) for doc in cursor]

    def list_for_participant(self, user_id: str) -> List[Event]:
        cursor = self.collection.find({"participants.user_id": user_id}).sort("start_date", ASCENDING)
        return [from_doc(doc, Event) for doc in cursor]

    def insert(self, event: Event) -> Event:
        self.collection.insert_one(to_doc(event))
        return event

    def save(self, event: Event) -> Event:
        return compare_and_swap(self.collection, event)

    def delete(self, event_id: str) -> bool:
        result = self.collection.delete_one({"_id": event_id})
        return result.deleted_count > 0


# ============================================================
# QUIZ ATTEMPTS COLLECTION
# ============================================================

class MongoQuizAttemptRepository(QuizAttemptRepository):

    def __init__(self):
        self.collection: Collection = get_collection(COLLECTIONS["quiz_attempts"])

    def get(self, event_id: str, user_id: str) -> Optional[QuizAttempt]:
        doc = self.collection.find_one({"event_id": event_id, "user_id": user_id})
        return from_doc(doc, QuizAttempt)

    def save(self, quiz_attempt: QuizAttempt) -> QuizAttempt:
        if quiz_attempt.version == 0:
            saved = quiz_attempt.model_copy(update={"version": 1})
            try:
                self.collection.insert_one(to_doc(saved))
            except DuplicateKeyError as e:
                raise ConcurrentUpdateError() from e
            return saved
        return compare_and_swap(self.collection, quiz_attempt)

    def delete_for_event(self, event_id: str) -> int:
        return self.collection.delete_many({"event_id": event_id}).deleted_count


# ============================================================
# SUBMISSIONS COLLECTION
# ============================================================

class MongoSubmissionRepository(SubmissionRepository):
    """
    Event entries. File contents live in external storage;
    only the resulting URL is kept here.
    """

    def __init__(self):
        self.collection: Collection = get_collection(COLLECTIONS["submissions"])

    def get(self, event_id: str, user_id: str) -> Optional[Submission]:
        doc = self.collection.find_one({"event_id": event_id, "user_id": user_id})
        return from_doc(doc, Submission)

    def upsert(self, submission: Submission) -> Submission:
        doc = to_doc(submission)
        doc_id = doc.pop("_id")
        created_at = doc.pop("created_at")
        doc["updated_at"] = utcnow()
        self.collection.update_one(
            {"event_id": submission.event_id, "user_id": submission.user_id},
            {"$set": doc, "$setOnInsert": {"_id": doc_id, "created_at": created_at}},
            upsert=True
        )
        return self.get(submission.event_id, submission.user_id)

    def list_for_event(self, event_id: str) -> List[Submission]:
        cursor = self.collection.find({"event_id": event_id}).sort("updated_at", DESCENDING)
        return [from_doc(doc, Submission) for doc in cursor]

    def delete_for_event(self, event_id: str) -> int:
        return self.collection.delete_many({"event_id": event_id}).deleted_count


# ============================================================
# CONVENIENCE FUNCTION: Get all repositories
# ============================================================

def get_mongo_services() -> dict:
    """
    Get all MongoDB repository instances.

    Usage:
        repos = get_mongo_services()
        repos['attempts'].get(attempt_id)
    """
    return {
        "assessments": MongoAssessmentRepository(),
        "attempts": MongoAttemptRepository(),
        "events": MongoEventRepository(),
        "quiz_attempts": MongoQuizAttemptRepository(),
        "submissions": MongoSubmissionRepository()
    }
