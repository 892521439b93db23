"""
Assessment Service

Create, browse, edit and retire assessments.

RULES:
- Only recruiters and admins create assessments
- Only the creator (or an admin) edits, deactivates or deletes one
- Questions are frozen once any attempt exists
- An assessment with attempts is never deleted, only deactivated
- total_attempts / average_score are recomputed from attempt records
"""

import logging
from statistics import mean
from typing import List, Optional, Tuple, Union

from assessment_engine.core.config import Settings, get_settings
from assessment_engine.core.errors import (
    AssessmentNotFound, Forbidden, InvalidState, parse_payload
)
from assessment_engine.schemas.schemas import (
    Actor, Assessment, AssessmentCreate, AssessmentDetailResponse, AssessmentPublic,
    AssessmentUpdate, AttemptStatus, Question, QuestionCreate, QuestionPublic, UserRole
)
from assessment_engine.services.interfaces import AssessmentRepository, AttemptRepository, AuditLog
from assessment_engine.services.notification_service import audit_safely
from assessment_engine.utils.helpers import run_with_retries, utcnow

logger = logging.getLogger(__name__)

CREATOR_ROLES = (UserRole.recruiter.value, UserRole.admin.value, UserRole.superadmin.value)


# ============================================================
# VIEWS & STATS
# ============================================================

def to_public(assessment: Assessment) -> AssessmentPublic:
    """Strip correct answers and explanations before showing an assessment to a candidate."""
    return AssessmentPublic(
        id=assessment.id,
        title=assessment.title,
        description=assessment.description,
        created_by=assessment.created_by,
        questions=[
            QuestionPublic(
                id=q.id, type=q.type, question=q.question, options=q.options,
                points=q.points, difficulty=q.difficulty, tags=q.tags
            )
            for q in assessment.questions
        ],
        duration=assessment.duration,
        passing_score=assessment.passing_score,
        tab_switch_limit=assessment.tab_switch_limit,
        is_public=assessment.is_public,
        category=assessment.category,
        difficulty=assessment.difficulty,
        tags=assessment.tags,
        total_attempts=assessment.total_attempts,
        average_score=assessment.average_score,
        is_active=assessment.is_active,
    )


def recompute_assessment_stats(
    assessments: AssessmentRepository,
    attempts: AttemptRepository,
    assessment_id: str
) -> Tuple[int, float]:
    """
    Recompute the derived counters from the full attempt set.

    average_score is the mean percentage of exactly the `submitted`
    attempts; flagged and expired attempts do not count.
    """
    total = attempts.count_for_assessment(assessment_id)
    submitted = attempts.list_for_assessment(assessment_id, status=AttemptStatus.submitted.value)
    average = round(mean(a.percentage for a in submitted), 2) if submitted else 0.0
    assessments.update_stats(assessment_id, total, average)
    return total, average


def build_question(payload: QuestionCreate) -> Question:
    return Question(
        type=payload.type.value,
        question=payload.question.strip(),
        options=payload.options,
        correct_answer=payload.correct_answer,
        explanation=payload.explanation,
        difficulty=payload.difficulty,
        tags=payload.tags,
        points=payload.points,
    )


# ============================================================
# SERVICE
# ============================================================

class AssessmentService:

    def __init__(
        self,
        assessments: AssessmentRepository,
        attempts: AttemptRepository,
        audit: AuditLog,
        settings: Optional[Settings] = None,
        clock=utcnow
    ):
        self.assessments = assessments
        self.attempts = attempts
        self.audit = audit
        self.settings = settings or get_settings()
        self.clock = clock

    def _load(self, assessment_id: str) -> Assessment:
        assessment = self.assessments.get(assessment_id)
        if assessment is None:
            raise AssessmentNotFound()
        return assessment

    def _load_managed(self, assessment_id: str, actor: Actor) -> Assessment:
        assessment = self._load(assessment_id)
        if not assessment.can_be_managed_by(actor):
            raise Forbidden("Only the creator or an admin can modify this assessment")
        return assessment

    def create_assessment(self, actor: Actor, payload: Union[AssessmentCreate, dict]) -> Assessment:
        """Create an assessment owned by the actor. Question ids are assigned here."""
        if actor.role not in CREATOR_ROLES:
            raise Forbidden("Only recruiters and admins can create assessments")
        data = parse_payload(AssessmentCreate, payload)

        now = self.clock()
        assessment = Assessment(
            title=data.title.strip(),
            description=data.description,
            created_by=actor.user_id,
            creator_role=actor.role,
            questions=[build_question(q) for q in data.questions],
            duration=data.duration,
            passing_score=(
                data.passing_score if data.passing_score is not None
                else self.settings.default_passing_score
            ),
            tab_switch_limit=(
                data.tab_switch_limit if data.tab_switch_limit is not None
                else self.settings.default_tab_switch_limit
            ),
            allow_review=data.allow_review,
            shuffle_questions=data.shuffle_questions,
            show_results=data.show_results,
            is_public=data.is_public,
            allowed_users=data.allowed_users,
            category=data.category,
            difficulty=data.difficulty,
            tags=data.tags,
            published_at=now,
            expires_at=data.expires_at,
            created_at=now,
            updated_at=now,
        )
        self.assessments.insert(assessment)

        logger.info("Assessment %s created by %s with %d questions",
                    assessment.id, actor.user_id, len(assessment.questions))
        audit_safely(self.audit, "CREATE_ASSESSMENT", actor.user_id,
                     f'Created assessment "{assessment.title}" ({assessment.id})')
        return assessment

    def get_assessment(self, assessment_id: str, actor: Actor) -> AssessmentDetailResponse:
        """Candidate view, plus the id of an attempt the actor can resume."""
        assessment = self._load(assessment_id)
        if not assessment.is_active and not assessment.can_be_managed_by(actor):
            raise AssessmentNotFound("Assessment not available")
        if not assessment.can_be_taken_by(actor):
            raise Forbidden()

        active = self.attempts.find_in_progress(assessment.id, actor.user_id)
        return AssessmentDetailResponse(
            assessment=to_public(assessment),
            has_active_attempt=active is not None,
            attempt_id=active.id if active else None,
        )

    def list_assessments(
        self,
        actor: Actor,
        category: Optional[str] = None,
        difficulty: Optional[str] = None,
        search: Optional[str] = None
    ) -> List[AssessmentPublic]:
        """Active assessments the actor may take, newest first."""
        results = []
        for assessment in self.assessments.list_active():
            if not assessment.can_be_taken_by(actor):
                continue
            if category and assessment.category != category:
                continue
            if difficulty and assessment.difficulty != difficulty:
                continue
            if search and search.casefold() not in assessment.title.casefold():
                continue
            results.append(to_public(assessment))
        return results

    def update_assessment(
        self,
        assessment_id: str,
        actor: Actor,
        changes: Union[AssessmentUpdate, dict]
    ) -> Assessment:
        data = parse_payload(AssessmentUpdate, changes)
        fields = data.model_dump(exclude_unset=True)

        def operation() -> Assessment:
            assessment = self._load_managed(assessment_id, actor)
            update = dict(fields)
            if "questions" in update:
                if self.attempts.count_for_assessment(assessment.id) > 0:
                    raise InvalidState("Questions cannot change once attempts exist")
                update["questions"] = [build_question(q) for q in data.questions]
            update["updated_at"] = self.clock()
            # Re-validate so enum fields are stored as plain values
            updated = Assessment.model_validate({**assessment.model_dump(), **update})
            return self.assessments.save(updated)

        assessment = run_with_retries(operation, self.settings.max_write_retries, "update_assessment")
        audit_safely(self.audit, "UPDATE_ASSESSMENT", actor.user_id,
                     f"Updated assessment {assessment.id}: {', '.join(sorted(fields)) or 'no fields'}")
        return assessment

    def deactivate_assessment(self, assessment_id: str, actor: Actor) -> Assessment:
        """Soft-disable: existing attempts keep their reference, no new attempts start."""
        def operation() -> Assessment:
            assessment = self._load_managed(assessment_id, actor)
            return self.assessments.save(
                assessment.model_copy(update={"is_active": False, "updated_at": self.clock()})
            )

        assessment = run_with_retries(operation, self.settings.max_write_retries, "deactivate_assessment")
        logger.info("Assessment %s deactivated by %s", assessment.id, actor.user_id)
        audit_safely(self.audit, "DEACTIVATE_ASSESSMENT", actor.user_id, f"Deactivated assessment {assessment.id}")
        return assessment

    def delete_assessment(self, assessment_id: str, actor: Actor) -> None:
        assessment = self._load_managed(assessment_id, actor)
        if self.attempts.count_for_assessment(assessment.id) > 0:
            raise InvalidState("Assessment has attempts; deactivate it instead")
        self.assessments.delete(assessment.id)
        audit_safely(self.audit, "DELETE_ASSESSMENT", actor.user_id,
                     f'Deleted assessment "{assessment.title}" ({assessment.id})')

    def refresh_stats(self, assessment_id: str) -> Tuple[int, float]:
        self._load(assessment_id)
        return recompute_assessment_stats(self.assessments, self.attempts, assessment_id)
