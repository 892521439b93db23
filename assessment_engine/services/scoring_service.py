"""
Scoring Service

PURPOSE:
Grade submitted answers against question definitions.

HOW IT WORKS:
1. grade() checks one answer against one Question
2. grade_quiz_option() checks one option index against one QuizQuestion
3. score_attempt() grades a whole attempt and computes the percentage
4. score_quiz() totals marks for an event quiz

RULES:
- Single-choice, boolean, short-text: trimmed, case-insensitive equality
- Multi-select: exact set equality, no partial credit
- Anything malformed grades as incorrect (answers) or is skipped (questions)
- Nothing here raises on bad data and nothing here does I/O
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from assessment_engine.schemas.schemas import AnswerEntry, Question, QuestionType, QuizQuestion


TEXT_MATCH_TYPES = (
    QuestionType.single_choice.value,
    QuestionType.boolean.value,
    QuestionType.short_text.value,
)


@dataclass(slots=True)
class GradeResult:
    is_correct: bool
    points_earned: float


@dataclass(slots=True)
class AttemptScore:
    total_points: float
    earned_points: float
    percentage: float
    graded_answers: List[AnswerEntry]
    skipped_question_ids: List[str] = field(default_factory=list)


@dataclass(slots=True)
class QuizScore:
    score: float
    max_score: float
    correct_count: int
    graded: Dict[str, bool] = field(default_factory=dict)


# ============================================================
# NORMALIZATION
# ============================================================

def normalize_text(value: Any) -> Optional[str]:
    """Trim and casefold a scalar answer. Lists, dicts and None do not normalize."""
    if value is None or isinstance(value, (list, tuple, set, dict)):
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value).strip().casefold()


def normalize_selection(value: Any) -> Optional[List[str]]:
    """Turn a multi-select answer into a sorted list, or None if it is not a clean selection."""
    if not isinstance(value, (list, tuple)):
        return None
    if any(not isinstance(item, str) for item in value):
        return None
    cleaned = [item.strip() for item in value]
    if len(set(cleaned)) != len(cleaned):
        return None
    return sorted(cleaned)


def to_option_index(value: Any) -> Optional[int]:
    """Coerce a quiz submission to an option index; None when it is not a whole number."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
        return int(number) if number.is_integer() else None
    return None


# ============================================================
# SINGLE QUESTION GRADING
# ============================================================

def is_gradable(question: Question) -> bool:
    """A question can be graded when its type is known and its correct answer has the right shape."""
    if question.points is None or question.points < 0:
        return False
    if question.type in TEXT_MATCH_TYPES:
        return normalize_text(question.correct_answer) not in (None, "")
    if question.type == QuestionType.multi_select.value:
        return bool(normalize_selection(question.correct_answer))
    return False


def grade(question: Question, submitted_answer: Any) -> GradeResult:
    """Grade one answer. Callers should check is_gradable() first."""
    is_correct = False

    if question.type in TEXT_MATCH_TYPES:
        expected = normalize_text(question.correct_answer)
        given = normalize_text(submitted_answer)
        is_correct = expected is not None and given is not None and given == expected
    elif question.type == QuestionType.multi_select.value:
        expected = normalize_selection(question.correct_answer)
        given = normalize_selection(submitted_answer)
        is_correct = expected is not None and given is not None and given == expected

    return GradeResult(is_correct=is_correct, points_earned=question.points if is_correct else 0)


def grade_quiz_option(question: QuizQuestion, submitted: Any) -> GradeResult:
    """Indexed variant used by event quizzes."""
    index = to_option_index(submitted)
    is_correct = index is not None and index == question.correct_option
    return GradeResult(is_correct=is_correct, points_earned=question.marks if is_correct else 0)


# ============================================================
# WHOLE ATTEMPT SCORING
# ============================================================

def compute_percentage(earned: float, total: float) -> float:
    """earned/total as a percentage rounded to 2 decimals, 0 when there is nothing to earn."""
    if total <= 0:
        return 0.0
    percentage = (earned / total) * 100
    return round(min(max(percentage, 0.0), 100.0), 2)


def score_attempt(questions: List[Question], answers: List[AnswerEntry]) -> AttemptScore:
    """
    Grade every saved answer and total the points.

    Only answered questions count toward the total; a question the
    candidate never saved an answer for adds nothing to either side.
    Answers pointing at a question that is missing or malformed are
    skipped entirely and their ids returned for the caller to log.
    """
    gradable = {q.id: q for q in questions if is_gradable(q)}
    known_ids = {q.id for q in questions}

    total_points = 0.0
    earned_points = 0.0
    graded_answers: List[AnswerEntry] = []
    skipped: List[str] = []

    for entry in answers:
        question = gradable.get(entry.question_id)
        if question is None:
            skipped.append(entry.question_id)
            graded_answers.append(entry.model_copy(update={"is_correct": None, "points_earned": 0}))
            continue

        result = grade(question, entry.answer)
        total_points += question.points
        earned_points += result.points_earned
        graded_answers.append(
            entry.model_copy(update={"is_correct": result.is_correct, "points_earned": result.points_earned})
        )

    # Malformed questions nobody answered are still worth reporting
    malformed = sorted(known_ids - set(gradable))
    skipped.extend(q_id for q_id in malformed if q_id not in skipped)

    return AttemptScore(
        total_points=total_points,
        earned_points=earned_points,
        percentage=compute_percentage(earned_points, total_points),
        graded_answers=graded_answers,
        skipped_question_ids=skipped,
    )


def score_quiz(questions: List[QuizQuestion], answers: Dict[str, Any]) -> QuizScore:
    """Total the marks for an event quiz; questions with an out-of-range correct_option are skipped."""
    score = 0.0
    max_score = 0.0
    correct_count = 0
    graded: Dict[str, bool] = {}

    for question in questions:
        if not 0 <= question.correct_option < len(question.options) or question.marks < 0:
            continue
        max_score += question.marks
        result = grade_quiz_option(question, answers.get(question.id))
        graded[question.id] = result.is_correct
        if result.is_correct:
            score += result.points_earned
            correct_count += 1

    return QuizScore(score=score, max_score=max_score, correct_count=correct_count, graded=graded)
