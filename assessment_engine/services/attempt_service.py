"""
Attempt Service - the timed assessment state machine.

STATES:
    in-progress --submit--------------> submitted
    in-progress --submit after time---> expired
    in-progress --tab switch limit----> flagged

in-progress is the only mutable state. The other three are terminal:
no answer saves, no second scoring, no resurrection.

HOW IT WORKS:
1. start_attempt() resumes the open attempt or opens a new one
2. save_answer() upserts one answer per question while in progress
3. submit_attempt() grades everything once and closes the attempt
4. report_tab_switch() asks the proctoring monitor, and on a flag
   grades the saved answers and closes the attempt as flagged

Every write is load -> validate -> mutate a copy -> compare-and-swap.
If submit and an auto-submit race, the loser reloads, finds a terminal
status and backs off without scoring again.
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from assessment_engine.core.config import Settings, get_settings
from assessment_engine.core.errors import (
    AlreadySubmitted, AssessmentNotFound, AttemptClosed, AttemptNotFound,
    Forbidden, InvalidState, NotFound, ValidationError
)
from assessment_engine.schemas.schemas import (
    Actor, AnswerEntry, Assessment, Attempt, AttemptResultResponse, AttemptStatus,
    StartAttemptResponse, SubmitResponse, SubmitResult, TabSwitchResult
)
from assessment_engine.services.assessment_service import recompute_assessment_stats, to_public
from assessment_engine.services.interfaces import (
    AssessmentRepository, AttemptRepository, AuditLog, Notifier
)
from assessment_engine.services.notification_service import audit_safely, notify_safely
from assessment_engine.services.proctoring_service import ProctoringMonitor, get_proctoring_monitor
from assessment_engine.services.scoring_service import AttemptScore, score_attempt
from assessment_engine.utils.helpers import ensure_aware, run_with_retries, utcnow

logger = logging.getLogger(__name__)


class AttemptService:

    def __init__(
        self,
        assessments: AssessmentRepository,
        attempts: AttemptRepository,
        notifier: Notifier,
        audit: AuditLog,
        settings: Optional[Settings] = None,
        clock=utcnow,
        monitor: Optional[ProctoringMonitor] = None
    ):
        self.assessments = assessments
        self.attempts = attempts
        self.notifier = notifier
        self.audit = audit
        self.settings = settings or get_settings()
        self.clock = clock
        self.monitor = monitor or get_proctoring_monitor()

    # ============================================================
    # LOOKUPS
    # ============================================================

    def _load_assessment(self, assessment_id: str) -> Assessment:
        assessment = self.assessments.get(assessment_id)
        if assessment is None:
            raise AssessmentNotFound()
        return assessment

    def _load_owned_attempt(self, attempt_id: str, actor: Actor) -> Attempt:
        attempt = self.attempts.get(attempt_id)
        if attempt is None:
            raise AttemptNotFound()
        if attempt.user_id != actor.user_id:
            raise Forbidden("You can only act on your own attempt")
        return attempt

    def _deadline(self, attempt: Attempt, assessment: Assessment) -> datetime:
        return (
            ensure_aware(attempt.started_at)
            + timedelta(minutes=assessment.duration)
            + timedelta(seconds=self.settings.submission_grace_seconds)
        )

    def _is_overdue(self, attempt: Attempt, assessment: Assessment, now: datetime) -> bool:
        return now > self._deadline(attempt, assessment)

    # ============================================================
    # SCORING & CLOSING
    # ============================================================

    def _close(
        self,
        attempt: Attempt,
        assessment: Assessment,
        status: AttemptStatus,
        now: datetime,
        **extra
    ) -> Tuple[Attempt, AttemptScore]:
        """Grade the saved answers and stamp the terminal fields onto a copy of the attempt."""
        score = score_attempt(assessment.questions, attempt.answers)
        if score.skipped_question_ids:
            logger.warning(
                "Attempt %s: skipped ungradable questions %s on assessment %s",
                attempt.id, score.skipped_question_ids, assessment.id
            )

        time_spent = max(0, int((now - ensure_aware(attempt.started_at)).total_seconds()))
        closed = attempt.model_copy(update={
            "answers": score.graded_answers,
            "total_score": score.earned_points,
            "percentage": score.percentage,
            "passed": score.percentage >= assessment.passing_score,
            "submitted_at": now,
            "time_spent": time_spent,
            "status": status.value,
            **extra,
        })
        return closed, score

    def _refresh_stats(self, assessment_id: str) -> None:
        recompute_assessment_stats(self.assessments, self.attempts, assessment_id)

    # ============================================================
    # OPERATIONS
    # ============================================================

    def start_attempt(self, assessment_id: str, actor: Actor) -> Tuple[Attempt, bool]:
        """
        Open an attempt for the actor, or hand back the one already in progress.
        Returns (attempt, resumed).
        """
        assessment = self._load_assessment(assessment_id)
        if not assessment.is_active:
            raise AssessmentNotFound("Assessment not available")
        if not assessment.can_be_taken_by(actor):
            raise Forbidden()
        if assessment.expires_at and self.clock() > ensure_aware(assessment.expires_at):
            raise InvalidState("Assessment has expired")

        def operation() -> Tuple[Attempt, bool]:
            existing = self.attempts.find_in_progress(assessment.id, actor.user_id)
            if existing is not None:
                return existing, True
            attempt = Attempt(assessment_id=assessment.id, user_id=actor.user_id, started_at=self.clock())
            return self.attempts.insert(attempt), False

        attempt, resumed = run_with_retries(operation, self.settings.max_write_retries, "start_attempt")
        if not resumed:
            self._refresh_stats(assessment.id)
            logger.info("Attempt %s started on assessment %s by %s", attempt.id, assessment.id, actor.user_id)
            audit_safely(self.audit, "START_ASSESSMENT", actor.user_id,
                         f"Started attempt {attempt.id} on assessment {assessment.id}")
        return attempt, resumed

    def open_attempt(self, assessment_id: str, actor: Actor) -> StartAttemptResponse:
        """start_attempt() shaped for the HTTP response."""
        attempt, resumed = self.start_attempt(assessment_id, actor)
        assessment = self._load_assessment(attempt.assessment_id)
        return StartAttemptResponse(
            message="Resuming existing attempt" if resumed else "Assessment started",
            attempt=attempt,
            duration=assessment.duration,
            resumed=resumed,
        )

    def save_answer(
        self,
        attempt_id: str,
        actor: Actor,
        question_id: str,
        answer,
        time_taken: Optional[float] = None
    ) -> Attempt:
        """Upsert the answer for one question. Last writer wins per question, other answers are kept."""
        if time_taken is not None and time_taken < 0:
            raise ValidationError("time_taken must not be negative", field="time_taken")

        def operation() -> Attempt:
            attempt = self.attempts.get(attempt_id)
            if attempt is None or attempt.user_id != actor.user_id:
                raise AttemptNotFound("Attempt not found or already submitted")
            if attempt.status != AttemptStatus.in_progress:
                raise AttemptClosed()

            assessment = self._load_assessment(attempt.assessment_id)
            if assessment.question_by_id(question_id) is None:
                raise NotFound("Question not found in this assessment")
            if self._is_overdue(attempt, assessment, self.clock()):
                raise InvalidState("Time limit exceeded, submit the attempt")

            entry = AnswerEntry(question_id=question_id, answer=answer, time_taken=time_taken)
            answers = list(attempt.answers)
            index = next((i for i, a in enumerate(answers) if a.question_id == question_id), -1)
            if index >= 0:
                answers[index] = entry
            else:
                answers.append(entry)
            return self.attempts.save(attempt.model_copy(update={"answers": answers}))

        return run_with_retries(operation, self.settings.max_write_retries, "save_answer")

    def submit_attempt(self, attempt_id: str, actor: Actor) -> SubmitResponse:
        """Grade and close the attempt. Only the first call takes effect."""

        def operation() -> Tuple[Attempt, AttemptScore, Assessment]:
            attempt = self._load_owned_attempt(attempt_id, actor)
            if attempt.is_terminal:
                raise AlreadySubmitted()
            assessment = self._load_assessment(attempt.assessment_id)

            now = self.clock()
            status = AttemptStatus.expired if self._is_overdue(attempt, assessment, now) else AttemptStatus.submitted
            closed, score = self._close(attempt, assessment, status, now)
            return self.attempts.save(closed), score, assessment

        attempt, score, assessment = run_with_retries(
            operation, self.settings.max_write_retries, "submit_attempt"
        )
        self._refresh_stats(assessment.id)

        logger.info("Attempt %s %s: %.2f%% (passed=%s)", attempt.id, attempt.status, attempt.percentage, attempt.passed)
        if attempt.status == AttemptStatus.expired:
            message = "Time limit exceeded, attempt recorded as expired"
        elif attempt.passed:
            message = "Congratulations! You passed!"
        else:
            message = "Assessment submitted"

        notify_safely(
            self.notifier, actor.user_id,
            f"Result: {assessment.title}",
            f"You scored {attempt.percentage}% on \"{assessment.title}\". {message}.",
            type="assessment"
        )
        audit_safely(self.audit, "SUBMIT_ASSESSMENT", actor.user_id,
                     f"Submitted attempt {attempt.id} on assessment {assessment.id} ({attempt.percentage}%)")

        return SubmitResponse(
            message=message,
            result=SubmitResult(
                score=score.earned_points,
                total_points=score.total_points,
                percentage=attempt.percentage,
                passed=attempt.passed,
                time_spent=attempt.time_spent or 0,
                status=attempt.status,
            ),
            attempt=attempt,
        )

    def report_tab_switch(self, attempt_id: str, actor: Actor) -> TabSwitchResult:
        """Count one tab switch; at the limit the attempt is flagged and auto-submitted."""

        def operation():
            attempt = self._load_owned_attempt(attempt_id, actor)
            assessment = self._load_assessment(attempt.assessment_id)
            outcome = self.monitor.report_violation(
                attempt.tab_switches, assessment.tab_switch_limit, terminal=attempt.is_terminal
            )
            if outcome.ignored:
                return attempt, outcome, assessment
            if outcome.flagged:
                closed, _ = self._close(
                    attempt, assessment, AttemptStatus.flagged, self.clock(),
                    tab_switches=outcome.tab_switches,
                    flagged=True,
                    flag_reason=outcome.flag_reason,
                )
                return self.attempts.save(closed), outcome, assessment
            counted = attempt.model_copy(update={"tab_switches": outcome.tab_switches})
            return self.attempts.save(counted), outcome, assessment

        attempt, outcome, assessment = run_with_retries(
            operation, self.settings.max_write_retries, "report_tab_switch"
        )

        if outcome.ignored:
            return TabSwitchResult(
                message="Attempt already closed",
                tab_switches=attempt.tab_switches,
                limit=outcome.limit,
                flagged=attempt.flagged,
                ignored=True,
                status=attempt.status,
            )

        if outcome.flagged:
            self._refresh_stats(assessment.id)
            logger.warning("Attempt %s flagged: %s", attempt.id, outcome.flag_reason)
            notify_safely(
                self.notifier, actor.user_id,
                f"Assessment flagged: {assessment.title}",
                f"Your attempt was auto-submitted. {outcome.flag_reason}.",
                type="assessment"
            )
            audit_safely(self.audit, "ASSESSMENT_FLAGGED", actor.user_id,
                         f"Attempt {attempt.id} flagged: {outcome.flag_reason}")
            return TabSwitchResult(
                message="Assessment flagged for suspicious activity",
                tab_switches=attempt.tab_switches,
                limit=outcome.limit,
                flagged=True,
                auto_submit=True,
                status=attempt.status,
            )

        return TabSwitchResult(
            message="Tab switch recorded",
            tab_switches=attempt.tab_switches,
            limit=outcome.limit,
            warning=outcome.warning,
            status=attempt.status,
        )

    def get_attempt_result(self, attempt_id: str, actor: Actor) -> AttemptResultResponse:
        attempt = self._load_owned_attempt(attempt_id, actor)
        if not attempt.is_terminal:
            raise InvalidState("Assessment not yet submitted")
        assessment = self._load_assessment(attempt.assessment_id)
        if not assessment.allow_review:
            attempt = attempt.model_copy(update={"answers": []})
        return AttemptResultResponse(attempt=attempt, assessment=to_public(assessment))

    def list_my_attempts(self, actor: Actor) -> List[Attempt]:
        return self.attempts.list_for_user(actor.user_id)
