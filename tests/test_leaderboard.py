from datetime import datetime, timedelta, timezone

import pytest

from assessment_engine.core.errors import AssessmentNotFound, EventNotFound, ValidationError
from assessment_engine.services.leaderboard_service import Standing, paginate, rank

T0 = datetime(2024, 3, 1, tzinfo=timezone.utc)


def standings(*scores):
    return [Standing(user_id=f"u{i}", score=s, last_updated=T0 + timedelta(minutes=i)) for i, s in enumerate(scores)]


class TestRank:
    def test_competition_ranking(self):
        assert [e.rank for e in rank(standings(100, 80, 80, 50))] == [1, 2, 2, 4]

    def test_input_order_does_not_matter(self):
        entries = rank(standings(50, 80, 100, 80))
        assert [(e.score, e.rank) for e in entries] == [(100, 1), (80, 2), (80, 2), (50, 4)]

    def test_ties_break_on_earlier_update(self):
        entries = rank([
            Standing(user_id="late", score=80, last_updated=T0 + timedelta(hours=1)),
            Standing(user_id="early", score=80, last_updated=T0),
        ])
        assert [e.user_id for e in entries] == ["early", "late"]

    def test_unscored_are_left_out_but_zero_is_kept(self):
        entries = rank(standings(None, 0, 10))
        assert [(e.user_id, e.rank) for e in entries] == [("u2", 1), ("u1", 2)]

    def test_pagination_keeps_global_ranks(self):
        entries = rank(standings(*range(10, 0, -1)))
        page, total_pages = paginate(entries, page=2, limit=4)
        assert total_pages == 3
        assert [e.rank for e in page] == [5, 6, 7, 8]
        assert paginate(entries, page=9, limit=4)[0] == []


class TestEventLeaderboard:
    def test_event_leaderboard(self, leaderboard_service, event_service, make_event, recruiter, student, other_student, admin):
        event = make_event()
        for actor in (student, other_student, admin):
            event_service.register_participant(event.id, actor)
        event_service.evaluate_round(event.id, recruiter, student.user_id, 1, score=70)
        event_service.evaluate_round(event.id, recruiter, other_student.user_id, 1, score=90, feedback="Great")

        board = leaderboard_service.get_event_leaderboard(event.id)

        assert board.total_participants == 3
        assert board.total_ranked == 2
        assert board.total_pages == 1
        assert [(e.user_id, e.rank) for e in board.leaderboard] == [("stu-2", 1), ("stu-1", 2)]
        assert board.leaderboard[0].feedback == "Great"

    def test_page_bounds(self, leaderboard_service, make_event, settings):
        event = make_event()
        with pytest.raises(ValidationError):
            leaderboard_service.get_event_leaderboard(event.id, page=0)
        with pytest.raises(ValidationError):
            leaderboard_service.get_event_leaderboard(event.id, limit=settings.leaderboard_max_page_size + 1)

    def test_unknown_event(self, leaderboard_service):
        with pytest.raises(EventNotFound):
            leaderboard_service.get_event_leaderboard("missing")


class TestAssessmentLeaderboard:
    def test_best_submitted_attempt_per_candidate(
        self, leaderboard_service, attempt_service, make_assessment, student, other_student
    ):
        assessment = make_assessment()
        first_q, second_q = assessment.questions

        attempt, _ = attempt_service.start_attempt(assessment.id, student)
        attempt_service.submit_attempt(attempt.id, student)
        attempt, _ = attempt_service.start_attempt(assessment.id, student)
        attempt_service.save_answer(attempt.id, student, first_q.id, "def")
        attempt_service.save_answer(attempt.id, student, second_q.id, ["A", "B"])
        attempt_service.submit_attempt(attempt.id, student)

        attempt, _ = attempt_service.start_attempt(assessment.id, other_student)
        attempt_service.save_answer(attempt.id, other_student, first_q.id, "def")
        attempt_service.save_answer(attempt.id, other_student, second_q.id, ["A"])
        attempt_service.submit_attempt(attempt.id, other_student)

        board = leaderboard_service.get_assessment_leaderboard(assessment.id)

        assert [(e.user_id, e.score, e.rank) for e in board.leaderboard] == [("stu-1", 100, 1), ("stu-2", 50, 2)]
        assert board.total_participants == 2

    def test_unknown_assessment(self, leaderboard_service):
        with pytest.raises(AssessmentNotFound):
            leaderboard_service.get_assessment_leaderboard("missing")
