# exam.py
# -----------------------------------------------------------------------------
# Candidate-facing exam endpoints (JSON).
# - Catalog browse: organizations + exams (question source URLs stay private)
# - Start attempt: sample questions, return them WITHOUT correct answers
# - Submit: grade against the attempt snapshot, return score + review
# - Results + certificate lookups
# Identity comes from g.user_id / g.user_name (set by the app's auth layer).
# -----------------------------------------------------------------------------
from typing import Any, Dict, Optional, Tuple

from flask import Blueprint, request, jsonify, g

from certificate import CertificateIneligible, render_certificate_body
from errors import (
    AttemptNotFound, ExamConfigNotFound, InvalidSubmission, ParseError,
    PoolUnavailable, SourceUnavailable,
)
from grading import coerce_answers
from models import Organization

# core failure -> HTTP status
ERROR_STATUS = (
    (ExamConfigNotFound, 404),
    (AttemptNotFound, 404),
    (InvalidSubmission, 400),
    (PoolUnavailable, 409),
    (ParseError, 502),
    (SourceUnavailable, 503),
)


def error_response(exc: Exception) -> Tuple[Any, int]:
    for cls, status in ERROR_STATUS:
        if isinstance(exc, cls):
            return jsonify({"ok": False, "error": str(exc)}), status
    raise exc


def public_org(org: Organization) -> Dict[str, Any]:
    return {
        "id": org.id,
        "name": org.name,
        "website": org.website,
        "logo": org.logo,
        "exams": [
            {
                "id": e.id,
                "name": e.name,
                "description": e.description,
                "price": e.price,
                "numberOfQuestions": e.number_of_questions,
                "passScore": e.pass_score,
                "isPractice": e.is_practice,
            }
            for e in org.exams
        ],
    }


# -----------------------------------------------------------------------------
# Blueprint factory
# -----------------------------------------------------------------------------
def create_exam_blueprint(base_path: str, deps: Dict[str, Any], name: str = "exam") -> Blueprint:
    """
    Factory that returns a Blueprint mounted at base_path (e.g. "/portal").
    Required deps: service (ExamService)
    """
    bp = Blueprint(name, __name__, url_prefix=base_path or None)
    service = deps["service"]

    def _user_id() -> Optional[str]:
        uid = getattr(g, "user_id", None)
        return str(uid) if uid else None

    def _unauthorized():
        return jsonify({"ok": False, "error": "unauthorized"}), 401

    # ------------------------------- catalog -------------------------------
    @bp.get("/orgs")
    def list_orgs():
        return jsonify({"ok": True, "organizations": [public_org(o) for o in service.catalog.list_organizations()]})

    @bp.get("/orgs/<org_id>")
    def get_org(org_id: str):
        org = service.catalog.get_organization(org_id)
        if org is None:
            return jsonify({"ok": False, "error": "organization not found"}), 404
        return jsonify({"ok": True, "organization": public_org(org)})

    # ------------------------------- attempts ------------------------------
    @bp.post("/orgs/<org_id>/exams/<exam_id>/attempts")
    def exam_start(org_id: str, exam_id: str):
        user_id = _user_id()
        if not user_id:
            return _unauthorized()
        try:
            attempt = service.start_attempt(user_id, org_id, exam_id)
        except (ExamConfigNotFound, SourceUnavailable, ParseError) as e:
            print(f"[exam] start failed for {org_id}/{exam_id}: {e}", flush=True)
            return error_response(e)
        return jsonify({
            "ok": True,
            "attempt_id": attempt.attempt_id,
            "exam_id": exam_id,
            "started_at": attempt.started_at,
            "questions": [q.to_public_dict() for q in attempt.questions],
        }), 201

    @bp.post("/orgs/<org_id>/exams/<exam_id>/submit")
    def exam_submit(org_id: str, exam_id: str):
        user_id = _user_id()
        if not user_id:
            return _unauthorized()
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            data = {}
        try:
            answers = coerce_answers(data.get("answers"))
            result = service.submit(user_id, org_id, exam_id, answers,
                                    attempt_id=(data.get("attempt_id") or None))
        except (ExamConfigNotFound, AttemptNotFound, InvalidSubmission, PoolUnavailable) as e:
            return error_response(e)
        exam = service.catalog.get_exam_config(org_id, exam_id)
        return jsonify({
            "ok": True,
            "result": result.to_dict(),
            "passed": bool(exam and result.score >= exam.pass_score),
        })

    # ------------------------------- results -------------------------------
    @bp.get("/results/<test_id>")
    def result_detail(test_id: str):
        user_id = _user_id()
        if not user_id:
            return _unauthorized()
        result = service.get_result(test_id, user_id)
        if result is None:
            return jsonify({"ok": False, "error": "result not found"}), 404
        return jsonify({"ok": True, "result": result.to_dict()})

    @bp.get("/results/<test_id>/certificate")
    def result_certificate(test_id: str):
        user_id = _user_id()
        if not user_id:
            return _unauthorized()
        org_id = (request.args.get("org_id") or "").strip()
        if not org_id:
            return jsonify({"ok": False, "error": "org_id is required"}), 400
        user = {"id": user_id, "name": getattr(g, "user_name", None) or ""}
        verdict = service.evaluate_certificate_for(test_id, user, org_id)
        if verdict is None:
            return jsonify({"ok": False, "error": "result not found"}), 404
        if isinstance(verdict, CertificateIneligible):
            return jsonify({"ok": False, "eligible": False, "error": verdict.reason}), 403
        payload = verdict.to_dict()
        payload["bodyHtml"] = str(render_certificate_body(verdict))
        return jsonify({"ok": True, "eligible": True, "certificate": payload})

    return bp
