import hmac
import os
from typing import Any, Dict, Set

from flask import Blueprint, abort, jsonify, request

from catalog import ExamUpdate, OrganizationUpdate, TemplateUpdate
from errors import ConfigValidationError, ExamConfigNotFound

# =========================
# Admin gating / constants
# =========================
# open  -> every request is an admin request (local dev)
# token -> requests must carry X-Admin-Token == ADMIN_TOKEN
ADMIN_MODE = os.getenv("ADMIN_MODE", "open").lower()
ADMIN_TOKEN = os.getenv("ADMIN_TOKEN", "")


def create_admin_blueprint(
    url_prefix: str,
    deps: Dict[str, Any],
    name: str = "admin",
) -> Blueprint:
    """
    Admin blueprint, including:
      • Organization / exam / certificate template updates (validated commands)
      • Question pool cache inspection + invalidation
    deps:
      - service (ExamService)
      - ADMIN_MODE, ADMIN_TOKEN (optional; default to env)
    """
    service = deps["service"]
    catalog = service.catalog
    pools = service.pools
    admin_mode = (deps.get("ADMIN_MODE") or ADMIN_MODE).lower()
    admin_token = deps.get("ADMIN_TOKEN", ADMIN_TOKEN) or ""

    # Mount at /<BASE_PATH>/admin or /admin if url_prefix=""
    mount_prefix = (url_prefix.rstrip("/") + "/admin") if url_prefix else "/admin"
    bp = Blueprint(name, __name__, url_prefix=mount_prefix)

    @bp.before_request
    def require_admin():
        if admin_mode == "open":
            return
        supplied = request.headers.get("X-Admin-Token") or ""
        if admin_mode == "token" and admin_token and hmac.compare_digest(supplied, admin_token):
            return
        abort(403)

    def _sources_in_use() -> Set[str]:
        return {e.question_source_url for o in catalog.list_organizations() for e in o.exams}

    def _invalid(e: ConfigValidationError):
        return jsonify({"ok": False, "error": "validation failed", "fields": e.errors}), 400

    def _not_found(e: ExamConfigNotFound):
        return jsonify({"ok": False, "error": str(e)}), 404

    # ---------- Catalog ----------
    @bp.get("/orgs")
    def admin_orgs():
        return jsonify({"ok": True, "organizations": [o.to_dict() for o in catalog.list_organizations()]})

    @bp.patch("/orgs/<org_id>")
    def admin_update_org(org_id: str):
        try:
            cmd = OrganizationUpdate.from_dict(request.get_json(silent=True))
            org = catalog.update_organization(org_id, cmd)
        except ConfigValidationError as e:
            return _invalid(e)
        except ExamConfigNotFound as e:
            return _not_found(e)
        return jsonify({"ok": True, "organization": org.to_dict()})

    @bp.patch("/orgs/<org_id>/exams/<exam_id>")
    def admin_update_exam(org_id: str, exam_id: str):
        try:
            cmd = ExamUpdate.from_dict(request.get_json(silent=True))
            previous, exam = catalog.update_exam(org_id, exam_id, cmd)
        except ConfigValidationError as e:
            return _invalid(e)
        except ExamConfigNotFound as e:
            return _not_found(e)

        invalidated = 0
        old_url = previous.question_source_url
        if old_url != exam.question_source_url and old_url not in _sources_in_use():
            invalidated = pools.invalidate(old_url)
            print(f"[admin] {org_id}/{exam_id} source changed; dropped old pool ({invalidated})", flush=True)
        return jsonify({"ok": True, "exam": exam.to_dict(), "pools_invalidated": invalidated})

    @bp.patch("/orgs/<org_id>/templates/<template_id>")
    def admin_update_template(org_id: str, template_id: str):
        try:
            cmd = TemplateUpdate.from_dict(request.get_json(silent=True))
            tpl = catalog.update_template(org_id, template_id, cmd)
        except ConfigValidationError as e:
            return _invalid(e)
        except ExamConfigNotFound as e:
            return _not_found(e)
        return jsonify({"ok": True, "template": tpl.to_dict()})

    # ---------- Question pools ----------
    @bp.get("/pools")
    def admin_pools():
        sources = pools.cached_sources()
        return jsonify({
            "ok": True,
            "pools": [{"source_url": u, "questions": len(pools.peek(u) or ())} for u in sources],
        })

    @bp.post("/pools/invalidate")
    def admin_pools_invalidate():
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            data = {}
        source_url = data.get("source_url")
        org_id, exam_id = data.get("org_id"), data.get("exam_id")
        if not source_url and org_id and exam_id:
            exam = catalog.get_exam_config(org_id, exam_id)
            if exam is None:
                return jsonify({"ok": False, "error": "exam not found"}), 404
            source_url = exam.question_source_url
        n = pools.invalidate(source_url or None)
        return jsonify({"ok": True, "invalidated": n})

    return bp
