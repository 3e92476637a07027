# main.py: exam portal app; config from env, optional Postgres results (psycopg3 + pooling),
# blueprint wiring. Authentication lives outside this app; it hands us an identity via the
# Flask session (user_id / user_name) or, when trusted, X-User-Id / X-User-Name headers.

import os
from contextlib import contextmanager
from typing import Optional
from urllib.parse import urlparse, parse_qs, unquote

from flask import Flask, g, jsonify, request, session

# Database (psycopg 3)
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from admin import create_admin_blueprint
from catalog import ExamConfigStore
from exam import create_exam_blueprint
from exam_service import ExamService
from dashboard import create_dashboard_blueprint
from question_pool import QuestionPoolCache, fetch_question_csv
from results import AttemptStore, InMemoryResultStore, PgResultStore

# =============================================================================
# BASE_PATH & Flask app
# =============================================================================
BASE_PATH = (os.getenv("BASE_PATH", "") or "").rstrip("/")

app = Flask(__name__)
app.url_map.strict_slashes = False
app.secret_key = os.getenv("SECRET_KEY", "dev-secret")
app.config.update(
    SESSION_COOKIE_SAMESITE="Lax",
    SESSION_COOKIE_SECURE=True,
)

# =============================================================================
# Config
# =============================================================================
TRUST_IDENTITY_HEADERS = os.getenv("TRUST_IDENTITY_HEADERS", "0").lower() in {"1", "true", "yes"}
QUESTION_FETCH_TIMEOUT_SEC = float(os.getenv("QUESTION_FETCH_TIMEOUT_SEC") or 10)
EXAM_CATALOG_PATH = os.getenv("EXAM_CATALOG_PATH")  # None -> bundled catalog/organizations.json
RESULTS_BACKEND = (os.getenv("RESULTS_BACKEND") or "memory").lower()
EXAM_ATTEMPT_TTL_MIN = float(os.getenv("EXAM_ATTEMPT_TTL_MIN") or 180)
EXAM_MAX_OPEN_ATTEMPTS = int(os.getenv("EXAM_MAX_OPEN_ATTEMPTS") or 20)

ADMIN_MODE = os.getenv("ADMIN_MODE", "open").lower()
ADMIN_TOKEN = os.getenv("ADMIN_TOKEN", "")

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_URL_LOCAL = os.getenv("DATABASE_URL_LOCAL")

# =============================================================================
# DB configuration (only used when RESULTS_BACKEND=postgres)
# =============================================================================
def _parse_database_url(url: str) -> dict:
    if not url:
        raise ValueError("Empty DATABASE_URL")
    # Normalize SA-style scheme to plain postgres for psycopg usage
    for pref in ("postgresql+psycopg://", "postgres+psycopg://",
                 "postgresql+psycopg2://", "postgres+psycopg2://"):
        if url.startswith(pref):
            url = "postgresql://" + url.split("://", 1)[1]
            break

    p = urlparse(url)
    if p.scheme not in ("postgresql", "postgres"):
        raise ValueError(f"Unsupported scheme '{p.scheme}'")
    qs = parse_qs(p.query or "", keep_blank_values=True)
    dbname = (p.path or "").lstrip("/") or (qs.get("dbname") or [""])[0]
    if not dbname:
        raise ValueError("DATABASE_URL missing dbname")
    host = (qs.get("host") or [p.hostname])[0]
    kwargs = {
        "dbname": dbname,
        "user": unquote(p.username or ""),
        "password": unquote(p.password or ""),
        "connect_timeout": 10,
        "options": "-c search_path=public",
    }
    if host:
        kwargs["host"] = host
    if p.port and not (isinstance(host, str) and host.startswith("/")):
        kwargs["port"] = p.port
    if qs.get("sslmode"):
        kwargs["sslmode"] = qs["sslmode"][0]
    return kwargs


def _connection_kwargs() -> dict:
    for origin, url in (("DATABASE_URL_LOCAL", DATABASE_URL_LOCAL), ("DATABASE_URL", DATABASE_URL)):
        if not url:
            continue
        try:
            kwargs = _parse_database_url(url)
        except ValueError as e:
            print(f"[DB] Ignoring {origin}: {e}", flush=True)
            continue
        print(f"[DB] Using {origin} -> {kwargs.get('host', 'localhost')}:{kwargs.get('port', 5432)}", flush=True)
        return kwargs
    raise RuntimeError("RESULTS_BACKEND=postgres requires DATABASE_URL or DATABASE_URL_LOCAL.")


def _to_conninfo(kwargs: dict) -> str:
    parts = []
    for k, v in kwargs.items():
        if v is None:
            continue
        s = str(v)
        if any(ch.isspace() for ch in s) or "'" in s or '"' in s:
            s = "'" + s.replace("'", r"\'") + "'"
        parts.append(f"{k}={s}")
    return " ".join(parts)

# =============================================================================
# psycopg3 Connection Pool + helpers
# =============================================================================
_pg_pool: Optional[ConnectionPool] = None

def init_pool():
    global _pg_pool
    if _pg_pool is not None:
        return
    _pg_pool = ConnectionPool(conninfo=_to_conninfo(_connection_kwargs()), min_size=1, max_size=6)

@contextmanager
def get_conn():
    if _pg_pool is None:
        init_pool()
    with _pg_pool.connection() as conn:
        yield conn

def fetch_all(q, params=None):
    with get_conn() as conn:
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(q, params or ())
            return cur.fetchall()

def fetch_one(q, params=None):
    rows = fetch_all(q, params)
    return rows[0] if rows else None

def execute(q, params=None):
    with get_conn() as conn:
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(q, params or ())
        conn.commit()

# =============================================================================
# Core wiring
# =============================================================================
def build_service() -> ExamService:
    if RESULTS_BACKEND == "postgres":
        results = PgResultStore(fetch_one, fetch_all, execute)
    else:
        if RESULTS_BACKEND != "memory":
            print(f"[exam] unknown RESULTS_BACKEND '{RESULTS_BACKEND}', using memory", flush=True)
        results = InMemoryResultStore()
    pools = QuestionPoolCache(fetch=lambda url: fetch_question_csv(url, timeout=QUESTION_FETCH_TIMEOUT_SEC))
    attempts = AttemptStore(ttl_min=EXAM_ATTEMPT_TTL_MIN, max_open_per_user=EXAM_MAX_OPEN_ATTEMPTS)
    return ExamService(ExamConfigStore.from_file(EXAM_CATALOG_PATH), pools, results=results, attempts=attempts)

exam_service = build_service()

# =============================================================================
# Identity (set by the external auth layer)
# =============================================================================
@app.before_request
def attach_identity():
    g.user_id = session.get("user_id")
    g.user_name = session.get("user_name")
    if TRUST_IDENTITY_HEADERS:
        g.user_id = request.headers.get("X-User-Id") or g.user_id
        g.user_name = request.headers.get("X-User-Name") or g.user_name

@app.get("/healthz")
def healthz():
    return jsonify({
        "ok": True,
        "organizations": len(exam_service.catalog.list_organizations()),
        "cached_pools": len(exam_service.pools.cached_sources()),
        "results_backend": RESULTS_BACKEND,
    })

# =============================================================================
# Blueprints
# =============================================================================
_deps = {"service": exam_service}
app.register_blueprint(create_exam_blueprint(BASE_PATH, _deps))
app.register_blueprint(create_dashboard_blueprint(BASE_PATH, _deps))
app.register_blueprint(create_admin_blueprint(BASE_PATH, dict(_deps, ADMIN_MODE=ADMIN_MODE, ADMIN_TOKEN=ADMIN_TOKEN)))

# =============================================================================
# Local dev entry
# =============================================================================
if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8080))
    app.run(host="0.0.0.0", port=port, debug=True)
