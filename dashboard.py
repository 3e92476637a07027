# dashboard.py
# Candidate dashboard data: past results, average / best scores, best per exam.
from typing import Any, Dict

from flask import Blueprint, g, jsonify, request


def create_dashboard_blueprint(base_path: str, deps: Dict[str, Any], name: str = "dashboard") -> Blueprint:
    """
    Registers:
      - GET "/dashboard/results" (optional ?org_id=) -> history + stats for g.user_id
    Required deps: service (ExamService)
    """
    bp = Blueprint(name, __name__, url_prefix=(base_path or "") + "/dashboard")
    service = deps["service"]

    @bp.get("/results")
    def dashboard_results():
        user_id = getattr(g, "user_id", None)
        if not user_id:
            return jsonify({"ok": False, "error": "unauthorized"}), 401
        org_id = (request.args.get("org_id") or "").strip() or None
        if org_id and service.catalog.get_organization(org_id) is None:
            return jsonify({"ok": False, "error": "organization not found"}), 404
        try:
            stats = service.user_stats(str(user_id), org_id)
        except Exception as e:
            # result store down (e.g. Postgres unreachable): degrade, don't 500
            print(f"[dashboard] stats failed for user {user_id}: {e}", flush=True)
            return jsonify({"ok": False, "error": "Dashboard data is temporarily unavailable"}), 503
        return jsonify({"ok": True, "user": {"id": str(user_id), "name": getattr(g, "user_name", None)},
                        "stats": stats})

    return bp
