import pytest

from assessment_engine.core.errors import (
    AlreadySubmitted, AssessmentNotFound, AttemptClosed, AttemptNotFound,
    ConcurrentUpdateError, Forbidden, InvalidState, NotFound
)
from assessment_engine.schemas.schemas import AttemptStatus
from assessment_engine.services.attempt_service import AttemptService

from conftest import MemoryAttemptRepository, RecordingAuditLog


def answer_all_correctly(service, attempt, assessment, actor):
    first, second = assessment.questions
    service.save_answer(attempt.id, actor, first.id, "def")
    service.save_answer(attempt.id, actor, second.id, ["B", "A"])


class TestStart:
    def test_start_is_idempotent_while_in_progress(self, attempt_service, make_assessment, student):
        assessment = make_assessment()

        first, resumed_first = attempt_service.start_attempt(assessment.id, student)
        second, resumed_second = attempt_service.start_attempt(assessment.id, student)

        assert first.id == second.id
        assert (resumed_first, resumed_second) == (False, True)

    def test_new_attempt_after_submission(self, attempt_service, make_assessment, student):
        assessment = make_assessment()
        first, _ = attempt_service.start_attempt(assessment.id, student)
        attempt_service.submit_attempt(first.id, student)

        second, resumed = attempt_service.start_attempt(assessment.id, student)

        assert second.id != first.id
        assert not resumed

    def test_start_counts_the_attempt(self, attempt_service, assessments, make_assessment, student):
        assessment = make_assessment()
        attempt_service.start_attempt(assessment.id, student)
        assert assessments.get(assessment.id).total_attempts == 1

    def test_unknown_or_inactive_assessment(self, attempt_service, assessment_service, make_assessment, student, recruiter):
        with pytest.raises(AssessmentNotFound):
            attempt_service.start_attempt("missing", student)

        assessment = make_assessment()
        assessment_service.deactivate_assessment(assessment.id, recruiter)
        with pytest.raises(AssessmentNotFound):
            attempt_service.start_attempt(assessment.id, student)

    def test_private_assessment_needs_an_invitation(self, attempt_service, make_assessment, student, other_student):
        assessment = make_assessment(is_public=False, allowed_users=[other_student.user_id])

        with pytest.raises(Forbidden):
            attempt_service.start_attempt(assessment.id, student)
        attempt, _ = attempt_service.start_attempt(assessment.id, other_student)
        assert attempt.user_id == other_student.user_id

    def test_open_attempt_reports_duration(self, attempt_service, make_assessment, student):
        assessment = make_assessment()
        response = attempt_service.open_attempt(assessment.id, student)
        assert response.duration == 30
        assert response.message == "Assessment started"
        assert attempt_service.open_attempt(assessment.id, student).resumed


class TestSaveAnswer:
    def test_answer_is_upserted_per_question(self, attempt_service, make_assessment, student):
        assessment = make_assessment()
        attempt, _ = attempt_service.start_attempt(assessment.id, student)
        question_id = assessment.questions[0].id

        attempt_service.save_answer(attempt.id, student, question_id, "func")
        saved = attempt_service.save_answer(attempt.id, student, question_id, "def", time_taken=12)

        assert len(saved.answers) == 1
        assert saved.answers[0].answer == "def"
        assert saved.answers[0].time_taken == 12

    def test_unknown_question(self, attempt_service, make_assessment, student):
        assessment = make_assessment()
        attempt, _ = attempt_service.start_attempt(assessment.id, student)
        with pytest.raises(NotFound):
            attempt_service.save_answer(attempt.id, student, "nope", "def")

    def test_someone_elses_attempt_looks_missing(self, attempt_service, make_assessment, student, other_student):
        assessment = make_assessment()
        attempt, _ = attempt_service.start_attempt(assessment.id, student)
        with pytest.raises(AttemptNotFound):
            attempt_service.save_answer(attempt.id, other_student, assessment.questions[0].id, "def")

    def test_save_after_submit_is_rejected(self, attempt_service, make_assessment, student):
        assessment = make_assessment()
        attempt, _ = attempt_service.start_attempt(assessment.id, student)
        attempt_service.submit_attempt(attempt.id, student)

        with pytest.raises(AttemptClosed) as excinfo:
            attempt_service.save_answer(attempt.id, student, assessment.questions[0].id, "def")
        assert isinstance(excinfo.value, AttemptNotFound)
        assert isinstance(excinfo.value, InvalidState)

    def test_save_after_time_limit(self, attempt_service, make_assessment, student, clock):
        assessment = make_assessment(duration=10)
        attempt, _ = attempt_service.start_attempt(assessment.id, student)
        clock.advance(minutes=11)
        with pytest.raises(InvalidState):
            attempt_service.save_answer(attempt.id, student, assessment.questions[0].id, "def")


class TestSubmit:
    def test_two_correct_answers_pass(self, attempt_service, make_assessment, student, clock):
        assessment = make_assessment()
        attempt, _ = attempt_service.start_attempt(assessment.id, student)
        answer_all_correctly(attempt_service, attempt, assessment, student)
        clock.advance(minutes=5)

        response = attempt_service.submit_attempt(attempt.id, student)

        assert response.result.score == 2
        assert response.result.percentage == 100
        assert response.result.passed
        assert response.result.time_spent == 300
        assert response.attempt.status == AttemptStatus.submitted.value
        assert response.message == "Congratulations! You passed!"

    def test_second_submit_is_rejected_and_changes_nothing(self, attempt_service, attempts, make_assessment, student):
        assessment = make_assessment()
        attempt, _ = attempt_service.start_attempt(assessment.id, student)
        answer_all_correctly(attempt_service, attempt, assessment, student)
        attempt_service.submit_attempt(attempt.id, student)
        before = attempts.get(attempt.id)

        with pytest.raises(AlreadySubmitted):
            attempt_service.submit_attempt(attempt.id, student)

        after = attempts.get(attempt.id)
        assert (after.total_score, after.percentage, after.submitted_at) == (
            before.total_score, before.percentage, before.submitted_at
        )

    def test_failing_score(self, attempt_service, make_assessment, student):
        assessment = make_assessment(passing_score=75)
        attempt, _ = attempt_service.start_attempt(assessment.id, student)
        attempt_service.save_answer(attempt.id, student, assessment.questions[0].id, "def")
        attempt_service.save_answer(attempt.id, student, assessment.questions[1].id, ["A"])

        response = attempt_service.submit_attempt(attempt.id, student)

        assert response.result.percentage == 50
        assert not response.result.passed
        assert response.message == "Assessment submitted"

    def test_late_submission_is_recorded_as_expired(self, attempt_service, make_assessment, student, clock):
        assessment = make_assessment(duration=10)
        attempt, _ = attempt_service.start_attempt(assessment.id, student)
        answer_all_correctly(attempt_service, attempt, assessment, student)
        clock.advance(minutes=15)

        response = attempt_service.submit_attempt(attempt.id, student)

        assert response.attempt.status == AttemptStatus.expired.value
        assert response.result.percentage == 100

    def test_grace_period_still_counts_as_on_time(self, attempt_service, make_assessment, student, clock):
        assessment = make_assessment(duration=10)
        attempt, _ = attempt_service.start_attempt(assessment.id, student)
        clock.advance(minutes=10, seconds=20)
        assert attempt_service.submit_attempt(attempt.id, student).attempt.status == AttemptStatus.submitted.value

    def test_only_the_owner_can_submit(self, attempt_service, make_assessment, student, other_student):
        assessment = make_assessment()
        attempt, _ = attempt_service.start_attempt(assessment.id, student)
        with pytest.raises(Forbidden):
            attempt_service.submit_attempt(attempt.id, other_student)

    def test_submit_notifies_and_audits(self, attempt_service, notifier, audit, make_assessment, student):
        assessment = make_assessment()
        attempt, _ = attempt_service.start_attempt(assessment.id, student)
        attempt_service.submit_attempt(attempt.id, student)

        assert notifier.sent[-1]["recipient_id"] == student.user_id
        assert "SUBMIT_ASSESSMENT" in audit.actions()

    def test_broken_notifier_does_not_undo_the_score(
        self, assessments, attempts, audit, settings, clock, make_assessment, student
    ):
        class BrokenNotifier:
            def notify(self, *args, **kwargs):
                raise RuntimeError("smtp down")

        service = AttemptService(assessments, attempts, BrokenNotifier(), audit, settings=settings, clock=clock)
        assessment = make_assessment()
        attempt, _ = service.start_attempt(assessment.id, student)

        response = service.submit_attempt(attempt.id, student)

        assert response.attempt.status == AttemptStatus.submitted.value
        assert attempts.get(attempt.id).status == AttemptStatus.submitted.value


class TestTabSwitch:
    def test_third_switch_flags_and_auto_submits(self, attempt_service, attempts, make_assessment, student):
        assessment = make_assessment(tab_switch_limit=3)
        attempt, _ = attempt_service.start_attempt(assessment.id, student)
        attempt_service.save_answer(attempt.id, student, assessment.questions[0].id, "def")
        attempt_service.save_answer(attempt.id, student, assessment.questions[1].id, ["C"])

        first = attempt_service.report_tab_switch(attempt.id, student)
        second = attempt_service.report_tab_switch(attempt.id, student)
        third = attempt_service.report_tab_switch(attempt.id, student)

        assert not first.warning
        assert second.warning and second.status == AttemptStatus.in_progress.value
        assert third.flagged and third.auto_submit
        assert third.status == AttemptStatus.flagged.value

        stored = attempts.get(attempt.id)
        assert stored.flagged
        assert stored.flag_reason == "Exceeded tab switch limit (3/3)"
        assert stored.percentage == 50
        assert stored.submitted_at is not None

    def test_reports_after_close_are_ignored(self, attempt_service, make_assessment, student):
        assessment = make_assessment(tab_switch_limit=1)
        attempt, _ = attempt_service.start_attempt(assessment.id, student)
        attempt_service.report_tab_switch(attempt.id, student)

        again = attempt_service.report_tab_switch(attempt.id, student)

        assert again.ignored
        assert again.tab_switches == 1
        with pytest.raises(AlreadySubmitted):
            attempt_service.submit_attempt(attempt.id, student)


class TestStatsAndResults:
    def test_average_counts_only_submitted_attempts(
        self, attempt_service, assessments, make_assessment, student, other_student
    ):
        assessment = make_assessment(tab_switch_limit=1)
        good, _ = attempt_service.start_attempt(assessment.id, student)
        answer_all_correctly(attempt_service, good, assessment, student)
        attempt_service.submit_attempt(good.id, student)

        flagged, _ = attempt_service.start_attempt(assessment.id, other_student)
        attempt_service.report_tab_switch(flagged.id, other_student)

        stored = assessments.get(assessment.id)
        assert stored.total_attempts == 2
        assert stored.average_score == 100

    def test_result_only_after_submission(self, attempt_service, make_assessment, student):
        assessment = make_assessment()
        attempt, _ = attempt_service.start_attempt(assessment.id, student)
        with pytest.raises(InvalidState):
            attempt_service.get_attempt_result(attempt.id, student)

        attempt_service.submit_attempt(attempt.id, student)
        result = attempt_service.get_attempt_result(attempt.id, student)
        assert result.assessment.id == assessment.id
        assert not hasattr(result.assessment.questions[0], "correct_answer")

    def test_review_disabled_hides_answers(self, attempt_service, make_assessment, student):
        assessment = make_assessment(allow_review=False)
        attempt, _ = attempt_service.start_attempt(assessment.id, student)
        attempt_service.save_answer(attempt.id, student, assessment.questions[0].id, "def")
        attempt_service.submit_attempt(attempt.id, student)

        assert attempt_service.get_attempt_result(attempt.id, student).attempt.answers == []

    def test_my_attempts(self, attempt_service, make_assessment, student, other_student):
        assessment = make_assessment()
        attempt_service.start_attempt(assessment.id, student)
        attempt_service.start_attempt(assessment.id, other_student)
        assert [a.user_id for a in attempt_service.list_my_attempts(student)] == [student.user_id]


class FlakyAttemptRepository(MemoryAttemptRepository):
    """Loses the first `conflicts` saves as if another writer got there first."""

    def __init__(self, conflicts):
        super().__init__()
        self.conflicts = conflicts

    def save(self, attempt):
        if self.conflicts:
            self.conflicts -= 1
            raise ConcurrentUpdateError()
        return super().save(attempt)


class TestWriteRaces:
    def make_service(self, assessments, attempts, notifier, settings, clock):
        return AttemptService(assessments, attempts, notifier, RecordingAuditLog(), settings=settings, clock=clock)

    def test_lost_race_is_retried(self, assessments, notifier, settings, clock, make_assessment, student):
        attempts = FlakyAttemptRepository(conflicts=2)
        service = self.make_service(assessments, attempts, notifier, settings, clock)
        assessment = make_assessment()
        attempt, _ = service.start_attempt(assessment.id, student)

        saved = service.save_answer(attempt.id, student, assessment.questions[0].id, "def")

        assert saved.answers[0].answer == "def"
        assert attempts.get(attempt.id).version == 1

    def test_gives_up_after_max_retries(self, assessments, notifier, settings, clock, make_assessment, student):
        attempts = FlakyAttemptRepository(conflicts=settings.max_write_retries)
        service = self.make_service(assessments, attempts, notifier, settings, clock)
        assessment = make_assessment()
        attempt, _ = service.start_attempt(assessment.id, student)

        with pytest.raises(ConcurrentUpdateError):
            service.save_answer(attempt.id, student, assessment.questions[0].id, "def")
        assert attempts.get(attempt.id).answers == []

    def test_submit_losing_to_auto_submit_does_not_score_twice(
        self, assessments, attempts, notifier, settings, clock, make_assessment, student
    ):
        service = self.make_service(assessments, attempts, notifier, settings, clock)
        assessment = make_assessment(tab_switch_limit=1)
        attempt, _ = service.start_attempt(assessment.id, student)

        # Flag the attempt behind the submit's back, between its load and its write
        real_get = attempts.get
        calls = {"n": 0}

        def racing_get(attempt_id):
            loaded = real_get(attempt_id)
            calls["n"] += 1
            if calls["n"] == 1:
                service.report_tab_switch(attempt.id, student)
            return loaded

        attempts.get = racing_get
        with pytest.raises(AlreadySubmitted):
            service.submit_attempt(attempt.id, student)
        attempts.get = real_get

        assert attempts.get(attempt.id).status == AttemptStatus.flagged.value
