"""
Leaderboard Service

PURPOSE:
Rank everyone who has a score in an event or an assessment.

HOW IT WORKS:
1. Drop entries without a numeric score (None means "not scored yet"; 0 is a score)
2. Sort by score, highest first
3. Competition ranking: equal scores share a rank, the next score
   takes its 1-based position, so [90, 90, 80] ranks [1, 1, 3]
4. Paginate only after ranking, so rank numbers are global

Read-only. Nothing is cached and nothing is written; the stored
participant rank/is_winner fields belong to EventService.finalize_results().
"""

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence, Tuple

from assessment_engine.core.config import Settings, get_settings
from assessment_engine.core.errors import AssessmentNotFound, EventNotFound, ValidationError
from assessment_engine.schemas.schemas import (
    Attempt, AttemptStatus, LeaderboardEntry, LeaderboardPage, Participant
)
from assessment_engine.services.interfaces import AssessmentRepository, AttemptRepository, EventRepository
from assessment_engine.utils.helpers import ensure_aware

_LATEST = datetime.max.replace(tzinfo=timezone.utc)


@dataclass(slots=True)
class Standing:
    user_id: str
    score: Optional[float]
    name: Optional[str] = None
    email: Optional[str] = None
    team_name: str = ""
    feedback: str = ""
    last_updated: Optional[datetime] = None


def standing_from_participant(participant: Participant) -> Standing:
    return Standing(
        user_id=participant.user_id,
        score=participant.score,
        name=participant.name,
        email=participant.email,
        team_name=participant.team_name,
        feedback=participant.feedback,
        last_updated=participant.last_updated,
    )


def standing_from_attempt(attempt: Attempt) -> Standing:
    return Standing(
        user_id=attempt.user_id,
        score=attempt.percentage,
        last_updated=attempt.submitted_at,
    )


# ============================================================
# PURE RANKING
# ============================================================

def has_score(standing: Standing) -> bool:
    score = standing.score
    if score is None or isinstance(score, bool) or not isinstance(score, (int, float)):
        return False
    return not math.isnan(score)


def rank(standings: Sequence[Standing]) -> List[LeaderboardEntry]:
    """
    Competition-rank the scored standings.

    Ties share a rank; within a tie the earlier last_updated comes first,
    then user_id, so the order is the same on every request.
    """
    scored = [s for s in standings if has_score(s)]
    ordered = sorted(
        scored,
        key=lambda s: (
            -s.score,
            ensure_aware(s.last_updated) if s.last_updated else _LATEST,
            s.user_id,
        ),
    )

    entries: List[LeaderboardEntry] = []
    current_rank = 1
    for position, standing in enumerate(ordered):
        if position > 0 and ordered[position - 1].score != standing.score:
            current_rank = position + 1
        entries.append(LeaderboardEntry(
            rank=current_rank,
            user_id=standing.user_id,
            name=standing.name,
            email=standing.email,
            team_name=standing.team_name or "",
            score=standing.score,
            feedback=standing.feedback or "",
            last_updated=standing.last_updated,
        ))
    return entries


def paginate(entries: List[LeaderboardEntry], page: int, limit: int) -> Tuple[List[LeaderboardEntry], int]:
    """Slice an already-ranked list. Returns (page entries, total pages)."""
    start = (page - 1) * limit
    total_pages = math.ceil(len(entries) / limit) if entries else 0
    return entries[start:start + limit], total_pages


# ============================================================
# SERVICE
# ============================================================

class LeaderboardService:

    def __init__(
        self,
        events: EventRepository,
        assessments: AssessmentRepository,
        attempts: AttemptRepository,
        settings: Optional[Settings] = None
    ):
        self.events = events
        self.assessments = assessments
        self.attempts = attempts
        self.settings = settings or get_settings()

    def _check_page(self, page: int, limit: Optional[int]) -> int:
        if page < 1:
            raise ValidationError("page must be at least 1", field="page")
        limit = self.settings.leaderboard_page_size if limit is None else limit
        if not 1 <= limit <= self.settings.leaderboard_max_page_size:
            raise ValidationError(
                f"limit must be between 1 and {self.settings.leaderboard_max_page_size}", field="limit"
            )
        return limit

    def _page(self, subject_id: str, total: int, ranked: List[LeaderboardEntry], page: int, limit: int) -> LeaderboardPage:
        entries, total_pages = paginate(ranked, page, limit)
        return LeaderboardPage(
            subject_id=subject_id,
            total_participants=total,
            total_ranked=len(ranked),
            page=page,
            total_pages=total_pages,
            leaderboard=entries,
        )

    def get_event_leaderboard(self, event_id: str, page: int = 1, limit: Optional[int] = None) -> LeaderboardPage:
        limit = self._check_page(page, limit)
        event = self.events.get(event_id)
        if event is None:
            raise EventNotFound()
        ranked = rank([standing_from_participant(p) for p in event.participants])
        return self._page(event.id, len(event.participants), ranked, page, limit)

    def get_assessment_leaderboard(self, assessment_id: str, page: int = 1, limit: Optional[int] = None) -> LeaderboardPage:
        """Best submitted attempt per candidate, ranked by percentage."""
        limit = self._check_page(page, limit)
        if self.assessments.get(assessment_id) is None:
            raise AssessmentNotFound()

        best: Dict[str, Attempt] = {}
        for attempt in self.attempts.list_for_assessment(assessment_id, status=AttemptStatus.submitted.value):
            current = best.get(attempt.user_id)
            if current is None or attempt.percentage > current.percentage:
                best[attempt.user_id] = attempt

        ranked = rank([standing_from_attempt(a) for a in best.values()])
        return self._page(assessment_id, len(best), ranked, page, limit)
