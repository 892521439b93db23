"""
MongoDB Connection Utility

MongoDB stores:
- Assessments (questions embedded)
- Assessment attempts (answers embedded)
- Events (rounds, quiz and participants embedded)
- Event quiz attempts and entry submissions
- In-app notifications and the audit trail

WHY MongoDB for these?
- Aggregate roots map to single documents: a participant only ever
  changes together with its event, an answer together with its attempt
- Single-document writes are atomic, which is all the engine relies on
"""
import logging

from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database
from pymongo.collection import Collection
from assessment_engine.core.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)

# Global client (connection pooling handled internally by pymongo)
_client: MongoClient = None
_db: Database = None


def get_mongo_client() -> MongoClient:
    """Get or create MongoDB client (singleton pattern)"""
    global _client
    if _client is None:
        # tz_aware so stored datetimes come back comparable with utcnow()
        _client = MongoClient(settings.mongodb_uri, tz_aware=True)
    return _client


def get_mongo_db() -> Database:
    """Get the engine database"""
    global _db
    if _db is None:
        client = get_mongo_client()
        _db = client[settings.mongodb_db]
    return _db


def get_collection(name: str) -> Collection:
    """Get a specific collection by its real name (see COLLECTIONS)."""
    db = get_mongo_db()
    return db[name]


def test_mongo_connection() -> bool:
    """
    Test if MongoDB is reachable.
    Returns True if connection successful, False otherwise.
    """
    try:
        client = get_mongo_client()
        # ping command checks connection
        client.admin.command('ping')
        return True
    except Exception as e:
        logger.warning("MongoDB connection failed: %s", e)
        return False


# Collection name constants (avoid typos)
COLLECTIONS = {
    "assessments": "assessments",
    "attempts": "assessment_attempts",
    "events": "events",
    "quiz_attempts": "quiz_attempts",
    "submissions": "submissions",
    "notifications": "notifications",
    "audit_logs": "audit_logs"
}


def init_mongo_indexes():
    """
    Create indexes for better query performance and the uniqueness rules.
    Call this once during app startup.
    """
    db = get_mongo_db()

    # At most one in-progress attempt per (assessment, candidate)
    db[COLLECTIONS["attempts"]].create_index(
        [("assessment_id", ASCENDING), ("user_id", ASCENDING)],
        unique=True,
        partialFilterExpression={"status": "in-progress"},
        name="one_in_progress_attempt"
    )
    db[COLLECTIONS["attempts"]].create_index([("assessment_id", ASCENDING), ("status", ASCENDING)])
    db[COLLECTIONS["attempts"]].create_index([("user_id", ASCENDING), ("started_at", DESCENDING)])

    db[COLLECTIONS["assessments"]].create_index([("is_active", ASCENDING), ("created_at", DESCENDING)])

    # Participant lookups inside events
    db[COLLECTIONS["events"]].create_index("participants.user_id")
    db[COLLECTIONS["events"]].create_index([("start_date", ASCENDING)])

    # One quiz attempt and one submission per (event, user)
    db[COLLECTIONS["quiz_attempts"]].create_index(
        [("event_id", ASCENDING), ("user_id", ASCENDING)], unique=True
    )
    db[COLLECTIONS["submissions"]].create_index(
        [("event_id", ASCENDING), ("user_id", ASCENDING)], unique=True
    )

    db[COLLECTIONS["notifications"]].create_index([("recipient_id", ASCENDING), ("created_at", DESCENDING)])
    db[COLLECTIONS["audit_logs"]].create_index([("created_at", DESCENDING)])

    logger.info("MongoDB indexes created successfully")
