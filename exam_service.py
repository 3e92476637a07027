# exam_service.py
# -----------------------------------------------------------------------------
# Exam flow: config -> pool (cached) -> sample -> attempt snapshot -> grade ->
# store result -> certificate. The HTTP layer (exam.py, dashboard.py, admin.py)
# calls into this; nothing here knows about Flask.
# -----------------------------------------------------------------------------
import random
from typing import Any, Dict, List, Optional, Sequence, Union

from catalog import ExamConfigStore
from certificate import CertificateIneligible, evaluate_certificate
from errors import ExamConfigNotFound, PoolUnavailable
from grading import grade_answers, sample_questions
from models import Attempt, CertificateData, Exam, Organization, TestResult, UserAnswer
from question_pool import QuestionPoolCache
from results import AttemptStore, InMemoryResultStore


class ExamService:
    def __init__(self, catalog: ExamConfigStore, pools: QuestionPoolCache,
                 results=None, attempts: Optional[AttemptStore] = None,
                 rng: Optional[random.Random] = None):
        self.catalog = catalog
        self.pools = pools
        self.results = results if results is not None else InMemoryResultStore()
        self.attempts = attempts if attempts is not None else AttemptStore()
        self._rng = rng

    # ------------------------------ config ----------------------------------
    def get_exam_config(self, org_id: str, exam_id: str) -> Exam:
        exam = self.catalog.get_exam_config(org_id, exam_id)
        if exam is None:
            raise ExamConfigNotFound(org_id, exam_id)
        return exam

    # ------------------------------ attempts --------------------------------
    def start_attempt(self, user_id: str, org_id: str, exam_id: str) -> Attempt:
        """Sample questions for a new attempt.

        Fetch and parse failures propagate before anything is stored, so a
        failed source never yields a partially started exam.
        """
        exam = self.get_exam_config(org_id, exam_id)
        pool = self.pools.get_pool(exam.question_source_url)
        sampled = sample_questions(pool.questions, exam.number_of_questions, rng=self._rng)
        attempt = self.attempts.start(user_id, org_id, exam_id, sampled)
        print(f"[exam] user {user_id} started {org_id}/{exam_id} "
              f"({len(sampled)} of {len(pool)} questions), attempt {attempt.attempt_id}", flush=True)
        return attempt

    # ------------------------------ grading ---------------------------------
    def grade(self, exam: Exam, answers: Sequence[UserAnswer], user_id: str) -> TestResult:
        """Grade against the cached pool for the exam's source (no attempt snapshot)."""
        pool = self.pools.peek(exam.question_source_url)
        if pool is None:
            raise PoolUnavailable(exam.question_source_url)
        return grade_answers(exam, answers, pool.questions, user_id)

    def submit(self, user_id: str, org_id: str, exam_id: str, answers: Sequence[UserAnswer],
               attempt_id: Optional[str] = None) -> TestResult:
        exam = self.get_exam_config(org_id, exam_id)
        if not attempt_id:
            result = self.grade(exam, answers, user_id)
            self.results.add(result)
        else:
            # claimed first so concurrent submits can't both grade it
            attempt = self.attempts.consume(attempt_id, user_id, org_id, exam_id)
            try:
                result = grade_answers(exam, answers, attempt.questions, user_id)
                self.results.add(result)
            except Exception as e:
                self.attempts.restore(attempt)
                print(f"[exam] submit failed for attempt {attempt_id}, attempt kept for retry: {e}", flush=True)
                raise
        print(f"[exam] graded {result.test_id}: {result.correct_count}/{result.total_questions} "
              f"= {result.score}% (pass {exam.pass_score}%)", flush=True)
        return result

    # ------------------------------ retrieval -------------------------------
    def get_result(self, test_id: str, user_id: str) -> Optional[TestResult]:
        return self.results.get(test_id, user_id)

    def results_for_user(self, user_id: str) -> List[TestResult]:
        return self.results.list_for_user(user_id)

    def evaluate_certificate_for(self, test_id: str, user: Dict[str, Any],
                                 org_id: str) -> Union[CertificateData, CertificateIneligible, None]:
        """None when the result or organization is unknown; otherwise the evaluator's verdict."""
        result = self.results.get(test_id, str(user.get("id")))
        org: Optional[Organization] = self.catalog.get_organization(org_id)
        if result is None or org is None:
            return None
        exam = org.find_exam(result.exam_id)
        if exam is None:
            return None
        return evaluate_certificate(result, exam, org, candidate_name=str(user.get("name") or ""))

    def get_certificate_data(self, test_id: str, user: Dict[str, Any], org_id: str) -> Optional[CertificateData]:
        verdict = self.evaluate_certificate_for(test_id, user, org_id)
        return verdict if isinstance(verdict, CertificateData) else None

    # ------------------------------ dashboard -------------------------------
    def user_stats(self, user_id: str, org_id: Optional[str] = None) -> Dict[str, Any]:
        """History summary: exams taken, average/best score, best per exam, pass flags."""
        org = self.catalog.get_organization(org_id) if org_id else None
        results = self.results_for_user(user_id)
        if org is not None:
            exam_ids = {e.id for e in org.exams}
            results = [r for r in results if r.exam_id in exam_ids]

        history: List[Dict[str, Any]] = []
        best_by_exam: Dict[str, float] = {}
        for r in results:
            exam = org.find_exam(r.exam_id) if org is not None else None
            history.append({
                "testId": r.test_id,
                "examId": r.exam_id,
                "examName": exam.name if exam else None,
                "score": r.score,
                "timestamp": r.timestamp,
                "passed": (r.score >= exam.pass_score) if exam else None,
            })
            best_by_exam[r.exam_id] = max(best_by_exam.get(r.exam_id, 0.0), r.score)

        scores = [r.score for r in results]
        return {
            "examsTaken": len(results),
            "avgScore": round(sum(scores) / len(scores), 2) if scores else 0.0,
            "bestScore": max(scores) if scores else 0.0,
            "bestScoreByExam": best_by_exam,
            "results": history,
        }


__all__ = ["ExamService"]
