"""
Service wiring for the routes.

Each getter builds a service over the MongoDB repositories. Routes take
them through Depends(), so tests swap in services built over in-memory
repositories with app.dependency_overrides.
"""

from assessment_engine.services.assessment_service import AssessmentService
from assessment_engine.services.attempt_service import AttemptService
from assessment_engine.services.event_service import EventService
from assessment_engine.services.leaderboard_service import LeaderboardService
from assessment_engine.services.mongo_service import get_mongo_services
from assessment_engine.services.notification_service import MongoAuditLog, MongoNotifier


def get_assessment_service() -> AssessmentService:
    repos = get_mongo_services()
    return AssessmentService(repos["assessments"], repos["attempts"], MongoAuditLog())


def get_attempt_service() -> AttemptService:
    repos = get_mongo_services()
    return AttemptService(repos["assessments"], repos["attempts"], MongoNotifier(), MongoAuditLog())


def get_event_service() -> EventService:
    repos = get_mongo_services()
    return EventService(
        repos["events"], repos["quiz_attempts"], repos["submissions"],
        MongoNotifier(), MongoAuditLog()
    )


def get_leaderboard_service() -> LeaderboardService:
    repos = get_mongo_services()
    return LeaderboardService(repos["events"], repos["assessments"], repos["attempts"])
