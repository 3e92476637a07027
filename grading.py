# grading.py
# -----------------------------------------------------------------------------
# Sampling questions for an attempt and grading submitted answers.
# Submissions carry only (questionId, 0-based answer); the correct answer and
# option text come from the authoritative questions passed in.
# -----------------------------------------------------------------------------
import random
import time
import uuid
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, List, Optional, Sequence

from errors import InvalidSubmission
from models import Exam, Question, ReviewItem, TestResult, UserAnswer


def sample_questions(pool: Sequence[Question], requested_count: int,
                     rng: Optional[random.Random] = None) -> List[Question]:
    """Return min(requested_count, len(pool)) distinct questions in random order."""
    shuffled = list(pool)
    (rng or random).shuffle(shuffled)
    return shuffled[:max(0, min(int(requested_count), len(shuffled)))]


def coerce_answers(payload: Any) -> List[UserAnswer]:
    """Validate a wire payload: [{"questionId": int, "answer": int}, ...]."""
    if not isinstance(payload, list):
        raise InvalidSubmission("answers must be a list")
    out: List[UserAnswer] = []
    for i, item in enumerate(payload):
        if not isinstance(item, dict):
            raise InvalidSubmission(f"answers[{i}] must be an object")
        qid, ans = item.get("questionId"), item.get("answer")
        # bool is an int subclass; reject it explicitly
        if not isinstance(qid, int) or isinstance(qid, bool):
            raise InvalidSubmission(f"answers[{i}].questionId must be an integer")
        if not isinstance(ans, int) or isinstance(ans, bool) or ans < 0:
            raise InvalidSubmission(f"answers[{i}].answer must be a non-negative integer")
        out.append(UserAnswer(question_id=qid, answer=ans))
    return out


def compute_score(correct_count: int, total_questions: int) -> float:
    """Percentage to 2 places; exact halves round up (1 of 32 -> 3.13)."""
    if total_questions <= 0:
        return 0.0
    exact = Decimal(correct_count / total_questions * 100.0)
    return float(exact.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def grade_answers(exam: Exam, answers: Iterable[UserAnswer], questions: Sequence[Question],
                  user_id: str) -> TestResult:
    """Grade answers against the questions they were sampled from.

    Answers to question ids not present in `questions` still count towards
    total_questions but are neither correct nor reviewed.
    """
    by_id: Dict[int, Question] = {q.id: q for q in questions}
    answers = tuple(answers)

    correct_count = 0
    review: List[ReviewItem] = []
    for ua in answers:
        q = by_id.get(ua.question_id)
        if q is None:
            continue
        if ua.answer == q.correct_index:
            correct_count += 1
        review.append(ReviewItem(
            question_id=q.id,
            question=q.question,
            options=q.options,
            user_answer=ua.answer,
            correct_answer=q.correct_index,
        ))

    skipped = len(answers) - len(review)
    if skipped:
        print(f"[exam] {skipped} answer(s) for unknown questions in exam {exam.id}", flush=True)

    return TestResult(
        test_id=f"test-{uuid.uuid4().hex}",
        user_id=str(user_id),
        exam_id=exam.id,
        answers=answers,
        score=compute_score(correct_count, len(answers)),
        correct_count=correct_count,
        total_questions=len(answers),
        timestamp=int(time.time() * 1000),
        review=tuple(review),
    )


__all__ = ["sample_questions", "coerce_answers", "compute_score", "grade_answers"]
