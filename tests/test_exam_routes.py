import random
import sys
from pathlib import Path

import pytest
from flask import Flask, g

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from catalog import ExamConfigStore  # noqa: E402
from errors import AttemptNotFound, ParseError, SourceUnavailable  # noqa: E402
from exam import create_exam_blueprint  # noqa: E402
from exam_service import ExamService  # noqa: E402
from models import UserAnswer  # noqa: E402
from question_pool import QuestionPoolCache  # noqa: E402
from results import InMemoryResultStore  # noqa: E402

# every question's correct answer is the first option (0-based answer 0)
CSV = "question,options,correctAnswer\n" + "\n".join(
    f"Question {i}?,right|wrong|also wrong,1" for i in range(1, 13)
)


class FakeFetch:
    def __init__(self, body=CSV):
        self.body = body
        self.calls = 0

    def __call__(self, url):
        self.calls += 1
        if isinstance(self.body, Exception):
            raise self.body
        return self.body


@pytest.fixture
def fetch():
    return FakeFetch()


@pytest.fixture
def service(fetch):
    return ExamService(ExamConfigStore.from_file(), QuestionPoolCache(fetch=fetch), rng=random.Random(0))


def _client(service, user_id="u1", user_name="Ada Lovelace"):
    app = Flask(__name__)
    app.testing = True

    @app.before_request
    def _set_user():
        g.user_id = user_id
        g.user_name = user_name

    app.register_blueprint(create_exam_blueprint("", {"service": service}))
    return app.test_client()


def _start(client, org_id="org-mco", exam_id="exam-mco-paid"):
    resp = client.post(f"/orgs/{org_id}/exams/{exam_id}/attempts")
    assert resp.status_code == 201
    return resp.get_json()


def _answers(questions, right=None):
    right = len(questions) if right is None else right
    return [{"questionId": q["id"], "answer": 0 if i < right else 1} for i, q in enumerate(questions)]


# ------------------------------- catalog -------------------------------------
def test_catalog_hides_question_sources(service):
    client = _client(service)
    body = client.get("/orgs").get_json()
    assert [o["id"] for o in body["organizations"]] == ["org-mco", "org-hci"]
    exam = body["organizations"][0]["exams"][0]
    assert exam["isPractice"] is True
    assert "questionSourceUrl" not in exam

    assert client.get("/orgs/org-hci").get_json()["organization"]["name"] == "Healthcare Certs Inc."
    assert client.get("/orgs/org-nope").status_code == 404


# ------------------------------- attempts ------------------------------------
def test_start_samples_questions_without_answers(service, fetch):
    client = _client(service)
    body = _start(client)

    assert len(body["questions"]) == 10
    assert len({q["id"] for q in body["questions"]}) == 10
    assert all("correctAnswer" not in q for q in body["questions"])

    _start(client, exam_id="exam-mco-free")
    _start(client, org_id="org-hci", exam_id="exam-hci-pharma")
    # all three exams share one source
    assert fetch.calls == 1


def test_start_unknown_exam_is_404(service):
    client = _client(service)
    assert client.post("/orgs/org-mco/exams/exam-nope/attempts").status_code == 404
    assert client.post("/orgs/org-nope/exams/exam-mco-paid/attempts").status_code == 404


@pytest.mark.parametrize("error, status", [(SourceUnavailable("down"), 503), (ParseError("no valid questions"), 502)])
def test_start_source_failures(service, fetch, error, status):
    fetch.body = error
    client = _client(service)
    resp = client.post("/orgs/org-mco/exams/exam-mco-paid/attempts")
    assert resp.status_code == status
    assert resp.get_json()["ok"] is False
    assert len(service.attempts) == 0


def test_requires_identity(service):
    client = _client(service, user_id=None)
    assert client.post("/orgs/org-mco/exams/exam-mco-paid/attempts").status_code == 401
    assert client.post("/orgs/org-mco/exams/exam-mco-paid/submit", json={"answers": []}).status_code == 401
    assert client.get("/results/test-x").status_code == 401


# ------------------------------- submit --------------------------------------
def test_submit_grades_against_attempt(service):
    client = _client(service)
    started = _start(client)

    resp = client.post("/orgs/org-mco/exams/exam-mco-paid/submit", json={
        "attempt_id": started["attempt_id"],
        "answers": _answers(started["questions"], right=7),
    })
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["result"]["score"] == 70.0
    assert body["result"]["correctCount"] == 7
    assert body["result"]["totalQuestions"] == 10
    assert body["passed"] is True
    assert body["result"]["review"][0]["correctAnswer"] == 0

    test_id = body["result"]["testId"]
    assert client.get(f"/results/{test_id}").get_json()["result"]["score"] == 70.0


def test_attempt_cannot_be_submitted_twice(service):
    client = _client(service)
    started = _start(client)
    payload = {"attempt_id": started["attempt_id"], "answers": _answers(started["questions"])}

    assert client.post("/orgs/org-mco/exams/exam-mco-paid/submit", json=payload).status_code == 200
    assert client.post("/orgs/org-mco/exams/exam-mco-paid/submit", json=payload).status_code == 404


def test_attempt_survives_pool_invalidation(service):
    client = _client(service)
    started = _start(client)
    service.pools.invalidate()

    resp = client.post("/orgs/org-mco/exams/exam-mco-paid/submit", json={
        "attempt_id": started["attempt_id"], "answers": _answers(started["questions"]),
    })
    assert resp.get_json()["result"]["score"] == 100.0


def test_attempt_belongs_to_its_user(service):
    started = _start(_client(service, user_id="u1"))
    other = _client(service, user_id="u2")
    resp = other.post("/orgs/org-mco/exams/exam-mco-paid/submit", json={
        "attempt_id": started["attempt_id"], "answers": [],
    })
    assert resp.status_code == 404


def test_submit_without_attempt_uses_cached_pool(service):
    client = _client(service)
    resp = client.post("/orgs/org-mco/exams/exam-mco-free/submit",
                       json={"answers": [{"questionId": 1, "answer": 0}]})
    assert resp.status_code == 409

    _start(client, exam_id="exam-mco-free")
    resp = client.post("/orgs/org-mco/exams/exam-mco-free/submit",
                       json={"answers": [{"questionId": 1, "answer": 0}, {"questionId": 2, "answer": 2}]})
    assert resp.status_code == 200
    assert resp.get_json()["result"]["score"] == 50.0


def test_submit_rejects_malformed_answers(service):
    client = _client(service)
    resp = client.post("/orgs/org-mco/exams/exam-mco-paid/submit",
                       json={"answers": [{"questionId": "1", "answer": 0}]})
    assert resp.status_code == 400


# ------------------------------ results --------------------------------------
def test_results_are_private_to_their_user(service):
    client = _client(service, user_id="u1")
    started = _start(client)
    test_id = client.post("/orgs/org-mco/exams/exam-mco-paid/submit", json={
        "attempt_id": started["attempt_id"], "answers": _answers(started["questions"]),
    }).get_json()["result"]["testId"]

    assert _client(service, user_id="u2").get(f"/results/{test_id}").status_code == 404
    assert client.get("/results/test-missing").status_code == 404


# ---------------------------- certificates -----------------------------------
def _submit(client, exam_id, right, org_id="org-mco"):
    started = _start(client, org_id=org_id, exam_id=exam_id)
    return client.post(f"/orgs/{org_id}/exams/{exam_id}/submit", json={
        "attempt_id": started["attempt_id"], "answers": _answers(started["questions"], right=right),
    }).get_json()["result"]["testId"]


def test_certificate_for_paid_passing_result(service):
    client = _client(service)
    test_id = _submit(client, "exam-mco-paid", right=8)

    resp = client.get(f"/results/{test_id}/certificate?org_id=org-mco")
    assert resp.status_code == 200
    cert = resp.get_json()["certificate"]
    assert cert["candidateName"] == "Ada Lovelace"
    assert cert["finalScore"] == 80.0
    assert cert["totalQuestions"] == 10
    assert cert["template"]["id"] == "cert-mco-1"
    assert "score of 80%" in cert["bodyHtml"]
    assert "questionSourceUrl" not in str(cert)


def test_certificate_ineligible_cases(service):
    client = _client(service)
    practice = _submit(client, "exam-mco-free", right=10)
    failed = _submit(client, "exam-mco-paid", right=5)

    resp = client.get(f"/results/{practice}/certificate?org_id=org-mco")
    assert resp.status_code == 403
    assert resp.get_json()["eligible"] is False

    assert client.get(f"/results/{failed}/certificate?org_id=org-mco").status_code == 403


def test_certificate_lookup_errors(service):
    client = _client(service)
    test_id = _submit(client, "exam-mco-paid", right=10)

    assert client.get(f"/results/{test_id}/certificate").status_code == 400
    assert client.get(f"/results/{test_id}/certificate?org_id=org-hci").status_code == 404
    assert client.get("/results/test-missing/certificate?org_id=org-mco").status_code == 404


# --------------------------- store failures ----------------------------------
class FlakyResultStore(InMemoryResultStore):
    def __init__(self, failures=1):
        super().__init__()
        self.failures = failures

    def add(self, result):
        if self.failures:
            self.failures -= 1
            raise RuntimeError("db down")
        super().add(result)


def test_attempt_survives_result_store_failure(fetch):
    store = FlakyResultStore(failures=1)
    service = ExamService(ExamConfigStore.from_file(), QuestionPoolCache(fetch=fetch),
                          results=store, rng=random.Random(0))
    attempt = service.start_attempt("u1", "org-mco", "exam-mco-paid")
    answers = [UserAnswer(q.id, 0) for q in attempt.questions]

    with pytest.raises(RuntimeError):
        service.submit("u1", "org-mco", "exam-mco-paid", answers, attempt_id=attempt.attempt_id)

    result = service.submit("u1", "org-mco", "exam-mco-paid", answers, attempt_id=attempt.attempt_id)
    assert result.score == 100.0
    assert service.get_result(result.test_id, "u1") == result
    with pytest.raises(AttemptNotFound):
        service.submit("u1", "org-mco", "exam-mco-paid", answers, attempt_id=attempt.attempt_id)
