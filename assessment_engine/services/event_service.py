"""
Event Service - multi-round participant progression and the embedded quiz.

PARTICIPANT JOURNEY:
    register -> round 1 (pending) -> qualified -> next round ... -> reviewed
                                  -> disqualified -> rejected (frozen)

RULES:
- One participant entry per user per event
- current_round only moves forward, and only on `qualified`
- Qualifying the last round ends the journey as `reviewed`
- A disqualified participant is frozen: no more evaluations, entries or quizzes
- score stays None until a numeric score arrives; feedback-only
  evaluations never clear it
- rank / is_winner are written only by finalize_results()

Participants are embedded in the event document, so every participant
change is one compare-and-swap write of the event. Quiz attempts and
entry submissions are separate documents keyed by (event, user).
"""

import logging
import math
from typing import Any, Dict, List, Optional, Tuple, Union

from assessment_engine.core.config import Settings, get_settings
from assessment_engine.core.errors import (
    AlreadyRegistered, AlreadySubmitted, ConcurrentUpdateError, EngineError, EventNotFound, Forbidden,
    InvalidState, NotFound, ParticipantDisqualified, ParticipantNotFound, RegistrationClosed,
    ValidationError, parse_payload
)
from assessment_engine.schemas.schemas import (
    Actor, AttemptStatus, EntryStatus, Event, EventCreate, EventDetailResponse, EventListResponse,
    EventPublic, EventUpdate, Participant, QuizAttempt, Quiz, QuizPublic, QuizQuestion,
    QuizQuestionPublic, QuizSubmitResult, Registration, RegistrationsResponse, Round, RoundResult,
    RoundStatus, RoundType, Submission, SubmissionListResponse, SubmissionStatus, TabSwitchResult
)
from assessment_engine.services.assessment_service import CREATOR_ROLES
from assessment_engine.services.interfaces import (
    AuditLog, EventRepository, Notifier, QuizAttemptRepository, SubmissionRepository
)
from assessment_engine.services.leaderboard_service import rank, standing_from_participant
from assessment_engine.services.notification_service import audit_safely, notify_safely
from assessment_engine.services.proctoring_service import ProctoringMonitor, get_proctoring_monitor
from assessment_engine.services.scoring_service import QuizScore, score_quiz
from assessment_engine.utils.helpers import ensure_aware, run_with_retries, utcnow

logger = logging.getLogger(__name__)


def replace_participant(event: Event, participant: Participant) -> Event:
    """Copy of the event with one participant swapped in."""
    participants = [participant if p.user_id == participant.user_id else p for p in event.participants]
    return event.model_copy(update={"participants": participants})


def to_public_event(event: Event, now) -> EventPublic:
    """Event as shown to anyone: quiz answers stripped, participants reduced to a count."""
    quiz = None
    if event.quiz is not None:
        quiz = QuizPublic(
            questions=[
                QuizQuestionPublic(id=q.id, question=q.question, options=q.options, marks=q.marks)
                for q in event.quiz.questions
            ],
            duration=event.quiz.duration,
            tab_switch_limit=event.quiz.tab_switch_limit,
        )
    return EventPublic(
        id=event.id,
        title=event.title,
        subtitle=event.subtitle,
        description=event.description,
        organizer=event.organizer,
        category=event.category,
        tags=event.tags,
        location=event.location,
        start_date=event.start_date,
        end_date=event.end_date,
        registration_deadline=event.registration_deadline,
        status=event.phase(now),
        rounds=event.rounds,
        quiz=quiz,
        max_team_size=event.max_team_size,
        visibility=event.visibility,
        created_by=event.created_by,
        participant_count=len(event.participants),
    )


def reseed_rounds(participant: Participant, rounds: List[Round]) -> Participant:
    """
    Fit a participant's round_status to a new round list.

    New rounds start pending and untouched rounds that disappear are
    dropped. A round the participant is in, or one already evaluated,
    cannot be removed.
    """
    numbers = [r.round_number for r in rounds]
    results = {r.round_id: r for r in participant.round_status}
    evaluated = [
        round_id for round_id, r in results.items()
        if round_id not in numbers and (r.status != RoundStatus.pending or r.score is not None)
    ]
    if evaluated:
        raise InvalidState(f"Round {evaluated[0]} already has results and cannot be removed")
    if numbers and participant.current_round not in numbers:
        raise InvalidState(f"Round {participant.current_round} has participants in it and cannot be removed")
    return participant.model_copy(update={
        "round_status": [results.get(n) or RoundResult(round_id=n) for n in numbers],
    })


class EventService:

    def __init__(
        self,
        events: EventRepository,
        quiz_attempts: QuizAttemptRepository,
        submissions: SubmissionRepository,
        notifier: Notifier,
        audit: AuditLog,
        settings: Optional[Settings] = None,
        clock=utcnow,
        monitor: Optional[ProctoringMonitor] = None
    ):
        self.events = events
        self.quiz_attempts = quiz_attempts
        self.submissions = submissions
        self.notifier = notifier
        self.audit = audit
        self.settings = settings or get_settings()
        self.clock = clock
        self.monitor = monitor or get_proctoring_monitor()

    # ============================================================
    # LOOKUPS
    # ============================================================

    def _load(self, event_id: str) -> Event:
        event = self.events.get(event_id)
        if event is None:
            raise EventNotFound()
        return event

    def _load_managed(self, event_id: str, actor: Actor) -> Event:
        event = self._load(event_id)
        if not event.can_be_managed_by(actor):
            raise Forbidden("Only the organizer or an admin can manage this event")
        return event

    @staticmethod
    def _active_participant(event: Event, actor: Actor, action: str) -> Participant:
        participant = event.participant_for(actor.user_id)
        if participant is None:
            raise Forbidden(f"Please register before {action}")
        if participant.submission_status == SubmissionStatus.rejected:
            raise ParticipantDisqualified()
        return participant

    @staticmethod
    def _quiz_of(event: Event) -> Quiz:
        if event.quiz is None or not event.quiz.questions:
            raise InvalidState("This event has no quiz")
        return event.quiz

    # ============================================================
    # EVENT LIFECYCLE
    # ============================================================

    def create_event(self, actor: Actor, payload: Union[EventCreate, dict]) -> Event:
        if actor.role not in CREATOR_ROLES:
            raise Forbidden("Only recruiters and admins can create events")
        data = parse_payload(EventCreate, payload)

        quiz = None
        if data.quiz is not None:
            quiz = Quiz(
                questions=[
                    QuizQuestion(
                        question=q.question.strip(),
                        options=[o.strip() for o in q.options],
                        correct_option=q.correct_option,
                        marks=q.marks,
                    )
                    for q in data.quiz.questions
                ],
                duration=data.quiz.duration or self.settings.default_quiz_duration,
                tab_switch_limit=(
                    data.quiz.tab_switch_limit if data.quiz.tab_switch_limit is not None
                    else self.settings.default_tab_switch_limit
                ),
            )

        now = self.clock()
        event = Event(
            **data.model_dump(exclude={"rounds", "quiz"}),
            rounds=[Round(**r.model_dump()) for r in data.rounds],
            quiz=quiz,
            created_by=actor.user_id,
            created_at=now,
            updated_at=now,
        )
        self.events.insert(event)
        logger.info("Event %s created by %s with %d rounds", event.id, actor.user_id, len(event.rounds))
        audit_safely(self.audit, "CREATE_EVENT", actor.user_id, f'Created event "{event.title}" ({event.id})')
        return event

    def update_event(self, event_id: str, actor: Actor, changes: Union[EventUpdate, dict]) -> Event:
        """Edit details, schedule or rounds. Participants follow the new round list."""
        data = parse_payload(EventUpdate, changes)
        fields = data.model_dump(exclude_unset=True, exclude_none=True, exclude={"rounds"})

        def operation() -> Event:
            event = self._load_managed(event_id, actor)
            update: Dict[str, Any] = dict(fields)
            if data.rounds is not None:
                rounds = [Round(**r.model_dump()) for r in data.rounds]
                update["rounds"] = rounds
                update["participants"] = [reseed_rounds(p, rounds) for p in event.participants]
            update["updated_at"] = self.clock()

            updated = Event.model_validate({**event.model_dump(), **update})
            if ensure_aware(updated.end_date) < ensure_aware(updated.start_date):
                raise ValidationError("end_date must not be before start_date", field="end_date")
            return self.events.save(updated)

        event = run_with_retries(operation, self.settings.max_write_retries, "update_event")
        changed = sorted(data.model_dump(exclude_unset=True, exclude_none=True))
        logger.info("Event %s updated by %s: %s", event.id, actor.user_id, changed)
        audit_safely(self.audit, "UPDATE_EVENT", actor.user_id,
                     f'Updated event "{event.title}" ({event.id}): {", ".join(changed) or "no fields"}')
        return event

    def delete_event(self, event_id: str, actor: Actor) -> None:
        """Bulk delete: the event, its participants, quiz attempts and entry records."""
        event = self._load_managed(event_id, actor)
        self.events.delete(event.id)
        quiz_count = self.quiz_attempts.delete_for_event(event.id)
        entry_count = self.submissions.delete_for_event(event.id)
        logger.info("Event %s deleted (%d quiz attempts, %d submissions)", event.id, quiz_count, entry_count)
        audit_safely(self.audit, "DELETE_EVENT", actor.user_id,
                     f'Deleted event "{event.title}" ({event.id}) with {len(event.participants)} participants')

    # ============================================================
    # READS
    # ============================================================

    def get_event(self, event_id: str, actor: Actor) -> EventDetailResponse:
        """Public view plus the caller's own progress; organizers also get every participant."""
        event = self._load(event_id)
        if not event.can_be_seen_by(actor):
            raise EventNotFound()
        participant = event.participant_for(actor.user_id)
        return EventDetailResponse(
            event=to_public_event(event, self.clock()),
            is_registered=participant is not None,
            participant=participant,
            participants=event.participants if event.can_be_managed_by(actor) else [],
        )

    def list_events(
        self,
        actor: Actor,
        search: Optional[str] = None,
        category: Optional[str] = None,
        status: Optional[str] = None,
        page: int = 1,
        limit: Optional[int] = None
    ) -> EventListResponse:
        """Visible events, earliest start first, filtered then paginated."""
        if page < 1:
            raise ValidationError("page must be at least 1", field="page")
        limit = self.settings.event_page_size if limit is None else limit
        if not 1 <= limit <= self.settings.event_max_page_size:
            raise ValidationError(
                f"limit must be between 1 and {self.settings.event_max_page_size}", field="limit"
            )

        now = self.clock()
        needle = search.strip().casefold() if search else ""
        matches = []
        for event in self.events.list_all():
            if not event.can_be_seen_by(actor):
                continue
            if category and event.category != category:
                continue
            if status and event.phase(now) != status:
                continue
            if needle and needle not in event.title.casefold() and not any(needle == t.casefold() for t in event.tags):
                continue
            matches.append(event)

        start = (page - 1) * limit
        return EventListResponse(
            events=[to_public_event(e, now) for e in matches[start:start + limit]],
            total=len(matches),
            page=page,
            pages=math.ceil(len(matches) / limit) or 1,
        )

    def list_my_registrations(self, actor: Actor) -> RegistrationsResponse:
        now = self.clock()
        registrations = []
        for event in self.events.list_for_participant(actor.user_id):
            participant = event.participant_for(actor.user_id)
            if participant is None:
                continue
            registrations.append(Registration(
                event_id=event.id,
                title=event.title,
                category=event.category,
                status=event.phase(now),
                start_date=event.start_date,
                end_date=event.end_date,
                registration_deadline=event.registration_deadline,
                registered_at=participant.registered_at,
                team_name=participant.team_name,
                current_round=participant.current_round,
                submission_status=participant.submission_status,
                score=participant.score,
                feedback=participant.feedback,
                rank=participant.rank,
                is_winner=participant.is_winner,
            ))
        return RegistrationsResponse(registrations=registrations)

    def list_submissions(self, event_id: str, actor: Actor) -> SubmissionListResponse:
        """Every entry record for the event, most recently updated first (organizer/admin)."""
        event = self._load_managed(event_id, actor)
        submissions = self.submissions.list_for_event(event.id)
        return SubmissionListResponse(event_id=event.id, total=len(submissions), submissions=submissions)

    # ============================================================
    # REGISTRATION & ENTRIES
    # ============================================================

    def register_participant(
        self,
        event_id: str,
        identity: Actor,
        team_name: str = "",
        name: Optional[str] = None,
        email: Optional[str] = None
    ) -> Participant:
        """Add the identity to the event at the first round, every round pre-seeded as pending."""

        def operation() -> Tuple[Event, Participant]:
            event = self._load(event_id)
            now = self.clock()
            if now > ensure_aware(event.registration_deadline):
                raise RegistrationClosed()
            if event.participant_for(identity.user_id) is not None:
                raise AlreadyRegistered()

            numbers = sorted(event.round_numbers())
            participant = Participant(
                user_id=identity.user_id,
                name=name or identity.name,
                email=(email or identity.email or None),
                team_name=team_name.strip(),
                current_round=numbers[0] if numbers else 1,
                round_status=[RoundResult(round_id=n) for n in numbers],
                registered_at=now,
                last_updated=now,
            )
            saved = self.events.save(
                event.model_copy(update={"participants": [*event.participants, participant]})
            )
            return saved, participant

        event, participant = run_with_retries(operation, self.settings.max_write_retries, "register_participant")

        logger.info("User %s registered for event %s", identity.user_id, event.id)
        notify_safely(self.notifier, identity.user_id, f"Registered: {event.title}",
                      f'You have successfully registered for "{event.title}".', type="event")
        audit_safely(self.audit, "REGISTER_EVENT", identity.user_id,
                     f'Registered for event "{event.title}" ({event.id})')
        return participant

    def submit_entry(self, event_id: str, actor: Actor, submission_link: str = "", file_url: str = "") -> Submission:
        """Record the participant's entry for the current round (file already stored, only its URL here)."""
        if not submission_link.strip() and not file_url.strip():
            raise ValidationError("Provide a submission link or an uploaded file", field="submission_link")

        def operation() -> Tuple[Event, Participant]:
            event = self._load(event_id)
            participant = self._active_participant(event, actor, "submitting")
            updated = participant.model_copy(update={
                "submission_status": SubmissionStatus.submitted.value,
                "last_updated": self.clock(),
            })
            return self.events.save(replace_participant(event, updated)), updated

        event, participant = run_with_retries(operation, self.settings.max_write_retries, "submit_entry")

        submission = self.submissions.upsert(Submission(
            event_id=event.id,
            user_id=actor.user_id,
            team_name=participant.team_name,
            submission_link=submission_link.strip(),
            file_url=file_url.strip(),
            status=EntryStatus.submitted,
        ))
        notify_safely(self.notifier, actor.user_id, f"Submission Confirmed: {event.title}",
                      f'Your submission for "{event.title}" has been received.', type="event")
        audit_safely(self.audit, "SUBMIT_ENTRY", actor.user_id,
                     f'User submitted entry for "{event.title}" ({event.id})')
        return submission

    # ============================================================
    # ROUND EVALUATION
    # ============================================================

    def evaluate_round(
        self,
        event_id: str,
        actor: Actor,
        participant_id: str,
        round_id: int,
        score: Optional[float] = None,
        feedback: str = "",
        status: Union[RoundStatus, str] = RoundStatus.pending
    ) -> Participant:
        """
        Record a round decision for one participant.

        qualified    -> advance to the next round, or `reviewed` after the last one
        disqualified -> `rejected`, current_round frozen
        pending      -> score / feedback only
        """
        try:
            status = RoundStatus(status)
        except ValueError:
            raise ValidationError(f"Unknown round status: {status}", field="status")
        if score is not None:
            if isinstance(score, bool) or not isinstance(score, (int, float)) or score < 0:
                raise ValidationError("score must be a non-negative number", field="score")

        def operation() -> Tuple[Event, Participant]:
            event = self._load_managed(event_id, actor)
            participant = event.participant_for(participant_id)
            if participant is None:
                raise ParticipantNotFound()
            if event.rounds and event.round_by_number(round_id) is None:
                raise ValidationError(f"Round {round_id} is not defined for this event", field="round_id")
            if participant.submission_status == SubmissionStatus.rejected:
                raise ParticipantDisqualified()

            now = self.clock()
            previous = participant.result_for(round_id) or RoundResult(round_id=round_id)
            result = previous.model_copy(update={
                "status": status.value,
                "score": score if score is not None else previous.score,
                "feedback": feedback or previous.feedback,
                "evaluated_at": now,
            })
            round_status = [r for r in participant.round_status if r.round_id != round_id] + [result]
            round_status.sort(key=lambda r: r.round_id)

            update: Dict[str, Any] = {"round_status": round_status, "last_updated": now}
            if score is not None:
                update["score"] = score
            if feedback:
                update["feedback"] = feedback

            if status == RoundStatus.qualified:
                next_round = event.next_round_after(round_id)
                if next_round is None:
                    update["submission_status"] = SubmissionStatus.reviewed.value
                elif next_round.round_number > participant.current_round:
                    update["current_round"] = next_round.round_number
                    update["submission_status"] = SubmissionStatus.not_submitted.value
            elif status == RoundStatus.disqualified:
                update["submission_status"] = SubmissionStatus.rejected.value

            updated = participant.model_copy(update=update)
            return self.events.save(replace_participant(event, updated)), updated

        event, participant = run_with_retries(operation, self.settings.max_write_retries, "evaluate_round")

        self._mirror_on_submission(event.id, participant)
        logger.info("Event %s round %s: %s -> %s (round now %s)",
                    event.id, round_id, participant_id, status.value, participant.current_round)
        notify_safely(self.notifier, participant_id, f"Round {round_id} result: {event.title}",
                      self._result_message(event, participant, round_id, status), type="event")
        audit_safely(self.audit, "EVALUATE_ROUND", actor.user_id,
                     f"Evaluated participant {participant_id} in event {event.id} round {round_id}: {status.value}")
        return participant

    def _mirror_on_submission(self, event_id: str, participant: Participant) -> None:
        """Keep an existing entry record's score and status in step with the evaluation."""
        submission = self.submissions.get(event_id, participant.user_id)
        if submission is None:
            return
        entry_status = (
            EntryStatus.rejected if participant.submission_status == SubmissionStatus.rejected
            else EntryStatus.reviewed
        )
        self.submissions.upsert(submission.model_copy(update={
            "final_score": participant.score,
            "feedback": participant.feedback,
            "status": entry_status.value,
        }))

    @staticmethod
    def _result_message(event: Event, participant: Participant, round_id: int, status: RoundStatus) -> str:
        if status == RoundStatus.disqualified:
            return f'Thank you for taking part in "{event.title}". You did not qualify past round {round_id}.'
        if status == RoundStatus.qualified:
            if participant.submission_status == SubmissionStatus.reviewed:
                return f'You cleared the final round of "{event.title}". Results will be announced soon.'
            return f'You qualified for round {participant.current_round} of "{event.title}".'
        return f'Your round {round_id} evaluation for "{event.title}" was updated.'

    # ============================================================
    # EMBEDDED QUIZ
    # ============================================================

    def _quiz_attempt_for(self, event: Event, actor: Actor) -> QuizAttempt:
        existing = self.quiz_attempts.get(event.id, actor.user_id)
        if existing is not None:
            return existing
        return QuizAttempt(event_id=event.id, user_id=actor.user_id, started_at=self.clock())

    def _record_quiz_score(self, event_id: str, actor: Actor, result: QuizScore) -> Participant:
        """Write the quiz score onto the participant (and onto the current round when it is a quiz round)."""

        def operation() -> Tuple[Event, Participant]:
            event = self._load(event_id)
            participant = self._active_participant(event, actor, "taking the quiz")
            now = self.clock()
            round_status = list(participant.round_status)
            current = event.round_by_number(participant.current_round)
            if current is not None and current.type == RoundType.quiz:
                previous = participant.result_for(current.round_number) or RoundResult(round_id=current.round_number)
                round_status = [r for r in round_status if r.round_id != current.round_number]
                round_status.append(previous.model_copy(update={"score": result.score}))
                round_status.sort(key=lambda r: r.round_id)
            updated = participant.model_copy(update={
                "score": result.score,
                "submission_status": SubmissionStatus.submitted.value,
                "round_status": round_status,
                "last_updated": now,
            })
            return self.events.save(replace_participant(event, updated)), updated

        _, participant = run_with_retries(operation, self.settings.max_write_retries, "record_quiz_score")
        return participant

    def _restore_quiz_attempt(self, closed: QuizAttempt, previous: QuizAttempt) -> None:
        """Put back the quiz attempt as it was before a close whose participant write failed."""
        try:
            self.quiz_attempts.save(previous.model_copy(update={"version": closed.version}))
        except ConcurrentUpdateError:
            logger.warning("Quiz attempt %s changed before it could be restored", closed.id)

    def save_quiz_answer(self, event_id: str, actor: Actor, question_id: str, option: Any) -> QuizAttempt:
        """Progressively store one quiz answer while the quiz attempt is open."""
        event = self._load(event_id)
        quiz = self._quiz_of(event)
        self._active_participant(event, actor, "taking the quiz")
        if quiz.question_by_id(question_id) is None:
            raise NotFound("Question not found in this quiz")

        def operation() -> QuizAttempt:
            quiz_attempt = self._quiz_attempt_for(event, actor)
            if quiz_attempt.status != AttemptStatus.in_progress:
                raise AlreadySubmitted("Quiz already submitted")
            answers = {**quiz_attempt.answers, question_id: option}
            return self.quiz_attempts.save(quiz_attempt.model_copy(update={"answers": answers}))

        return run_with_retries(operation, self.settings.max_write_retries, "save_quiz_answer")

    def submit_quiz(self, event_id: str, actor: Actor, answers: Optional[Dict[str, Any]] = None) -> QuizSubmitResult:
        """
        Grade the quiz and write the score onto the participant.
        Re-submitting replaces the previous result on the same quiz attempt;
        a flagged quiz attempt stays closed.
        """
        event = self._load(event_id)
        quiz = self._quiz_of(event)
        self._active_participant(event, actor, "taking the quiz")

        submitted = dict(answers or {})
        unknown = [q_id for q_id in submitted if quiz.question_by_id(q_id) is None]
        if unknown:
            logger.warning("Quiz on event %s: ignoring answers to unknown questions %s", event.id, unknown)

        def operation() -> Tuple[QuizAttempt, QuizAttempt, QuizScore]:
            self._active_participant(self._load(event_id), actor, "taking the quiz")
            quiz_attempt = self._quiz_attempt_for(event, actor)
            if quiz_attempt.status == AttemptStatus.flagged:
                raise InvalidState("Quiz attempt was flagged for suspicious activity")
            merged = {**quiz_attempt.answers, **submitted}
            result = score_quiz(quiz.questions, merged)
            closed = quiz_attempt.model_copy(update={
                "answers": merged,
                "score": result.score,
                "max_score": result.max_score,
                "correct_count": result.correct_count,
                "status": AttemptStatus.submitted.value,
                "submitted_at": self.clock(),
            })
            return self.quiz_attempts.save(closed), quiz_attempt, result

        quiz_attempt, previous, result = run_with_retries(operation, self.settings.max_write_retries, "submit_quiz")
        try:
            self._record_quiz_score(event.id, actor, result)
        except EngineError:
            self._restore_quiz_attempt(quiz_attempt, previous)
            raise

        logger.info("Quiz on event %s submitted by %s: %s/%s", event.id, actor.user_id, result.score, result.max_score)
        notify_safely(self.notifier, actor.user_id, f"Quiz submitted: {event.title}",
                      f"You scored {result.score} out of {result.max_score}.", type="event")
        audit_safely(self.audit, "SUBMIT_QUIZ", actor.user_id,
                     f"Submitted quiz for event {event.id} ({result.score}/{result.max_score})")
        return QuizSubmitResult(
            message="Quiz submitted",
            score=result.score,
            max_score=result.max_score,
            correct_count=result.correct_count,
            total_questions=len(quiz.questions),
        )

    def report_quiz_tab_switch(self, event_id: str, actor: Actor) -> TabSwitchResult:
        """Proctoring for the embedded quiz; at the limit the saved answers are auto-submitted."""
        event = self._load(event_id)
        quiz = self._quiz_of(event)
        self._active_participant(event, actor, "taking the quiz")

        def operation():
            quiz_attempt = self._quiz_attempt_for(event, actor)
            outcome = self.monitor.report_violation(
                quiz_attempt.tab_switches, quiz.tab_switch_limit,
                terminal=quiz_attempt.status != AttemptStatus.in_progress
            )
            if outcome.ignored:
                return quiz_attempt, outcome, None
            if outcome.flagged:
                result = score_quiz(quiz.questions, quiz_attempt.answers)
                closed = quiz_attempt.model_copy(update={
                    "tab_switches": outcome.tab_switches,
                    "flagged": True,
                    "flag_reason": outcome.flag_reason,
                    "score": result.score,
                    "max_score": result.max_score,
                    "correct_count": result.correct_count,
                    "status": AttemptStatus.flagged.value,
                    "submitted_at": self.clock(),
                })
                return self.quiz_attempts.save(closed), outcome, result
            counted = quiz_attempt.model_copy(update={"tab_switches": outcome.tab_switches})
            return self.quiz_attempts.save(counted), outcome, None

        quiz_attempt, outcome, result = run_with_retries(
            operation, self.settings.max_write_retries, "report_quiz_tab_switch"
        )

        if outcome.ignored:
            return TabSwitchResult(
                message="Quiz already closed",
                tab_switches=quiz_attempt.tab_switches,
                limit=outcome.limit,
                flagged=quiz_attempt.flagged,
                ignored=True,
                status=quiz_attempt.status,
            )

        if outcome.flagged:
            self._record_quiz_score(event.id, actor, result)
            logger.warning("Quiz on event %s flagged for %s: %s", event.id, actor.user_id, outcome.flag_reason)
            notify_safely(self.notifier, actor.user_id, f"Quiz flagged: {event.title}",
                          f"Your quiz was auto-submitted. {outcome.flag_reason}.", type="event")
            audit_safely(self.audit, "QUIZ_FLAGGED", actor.user_id,
                         f"Quiz for event {event.id} flagged: {outcome.flag_reason}")
            return TabSwitchResult(
                message="Quiz flagged for suspicious activity",
                tab_switches=quiz_attempt.tab_switches,
                limit=outcome.limit,
                flagged=True,
                auto_submit=True,
                status=quiz_attempt.status,
            )

        return TabSwitchResult(
            message="Tab switch recorded",
            tab_switches=quiz_attempt.tab_switches,
            limit=outcome.limit,
            warning=outcome.warning,
            status=quiz_attempt.status,
        )

    # ============================================================
    # FINALIZATION
    # ============================================================

    def finalize_results(self, event_id: str, actor: Actor, winners: int = 3) -> List[Participant]:
        """Persist rank and is_winner from a fresh ranking. Winners are everyone ranked <= `winners`."""
        if winners < 0:
            raise ValidationError("winners must not be negative", field="winners")

        def operation() -> Event:
            event = self._load_managed(event_id, actor)
            ranks = {entry.user_id: entry.rank for entry in rank([standing_from_participant(p) for p in event.participants])}
            participants = [
                p.model_copy(update={
                    "rank": ranks.get(p.user_id),
                    "is_winner": ranks.get(p.user_id) is not None and ranks[p.user_id] <= winners,
                })
                for p in event.participants
            ]
            return self.events.save(event.model_copy(update={"participants": participants, "updated_at": self.clock()}))

        event = run_with_retries(operation, self.settings.max_write_retries, "finalize_results")

        for participant in event.participants:
            if participant.is_winner:
                notify_safely(self.notifier, participant.user_id, f"Winner: {event.title}",
                              f'Congratulations! You placed #{participant.rank} in "{event.title}".', type="event")
        logger.info("Event %s finalized: %d winners", event.id, sum(p.is_winner for p in event.participants))
        audit_safely(self.audit, "FINALIZE_EVENT", actor.user_id, f"Finalized results for event {event.id}")
        return event.participants
