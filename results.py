# results.py
# -----------------------------------------------------------------------------
# Attempt snapshots and graded results.
# - AttemptStore: the exact questions sampled for an in-progress attempt, so
#   grading never depends on the pool cache still holding the same content
# - InMemoryResultStore: default (mock) result store
# - PgResultStore: same interface on public.exam_results (psycopg helpers)
# Results are written once and never updated.
# -----------------------------------------------------------------------------
import json
import os
import threading
import time
import uuid
from typing import Any, Callable, Dict, List, Optional, Sequence

from errors import AttemptNotFound
from models import Attempt, Question, TestResult

DEFAULT_ATTEMPT_TTL_MIN = float(os.getenv("EXAM_ATTEMPT_TTL_MIN") or 180)
DEFAULT_MAX_OPEN_ATTEMPTS = int(os.getenv("EXAM_MAX_OPEN_ATTEMPTS") or 20)

class AttemptStore:
    """Open attempts, dropped once submitted or older than ttl_min.

    Each user keeps at most max_open_per_user open attempts; starting one
    more drops that user's oldest.
    """

    def __init__(self, ttl_min: float = DEFAULT_ATTEMPT_TTL_MIN,
                 max_open_per_user: int = DEFAULT_MAX_OPEN_ATTEMPTS,
                 clock: Callable[[], float] = time.time):
        self._attempts: Dict[str, Attempt] = {}
        self._lock = threading.Lock()
        self._ttl_ms = int(ttl_min * 60 * 1000)
        self._max_open = max(1, int(max_open_per_user))
        self._clock = clock

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _expired(self, attempt: Attempt, now_ms: int) -> bool:
        return now_ms - attempt.started_at > self._ttl_ms

    def _prune(self, now_ms: int) -> int:
        # caller holds self._lock
        stale = [k for k, a in self._attempts.items() if self._expired(a, now_ms)]
        for k in stale:
            del self._attempts[k]
        return len(stale)

    def start(self, user_id: str, org_id: str, exam_id: str, questions: Sequence[Question]) -> Attempt:
        now_ms = self._now_ms()
        attempt = Attempt(
            attempt_id=uuid.uuid4().hex,
            user_id=str(user_id),
            org_id=org_id,
            exam_id=exam_id,
            questions=tuple(questions),
            started_at=now_ms,
        )
        with self._lock:
            pruned = self._prune(now_ms)
            mine = sorted((a for a in self._attempts.values() if a.user_id == attempt.user_id),
                          key=lambda a: a.started_at)
            for old in mine[:max(0, len(mine) - self._max_open + 1)]:
                del self._attempts[old.attempt_id]
            self._attempts[attempt.attempt_id] = attempt
        if pruned:
            print(f"[exam] pruned {pruned} expired attempt(s)", flush=True)
        return attempt

    def get(self, attempt_id: str) -> Optional[Attempt]:
        with self._lock:
            attempt = self._attempts.get(attempt_id)
        if attempt is None or self._expired(attempt, self._now_ms()):
            return None
        return attempt

    def consume(self, attempt_id: str, user_id: str, org_id: str, exam_id: str) -> Attempt:
        """Remove and return the attempt; it must belong to this user and exam and not be expired."""
        now_ms = self._now_ms()
        with self._lock:
            attempt = self._attempts.get(attempt_id)
            if attempt is not None and self._expired(attempt, now_ms):
                del self._attempts[attempt_id]
                attempt = None
            if (attempt is None or attempt.user_id != str(user_id)
                    or attempt.org_id != org_id or attempt.exam_id != exam_id):
                raise AttemptNotFound(attempt_id)
            del self._attempts[attempt_id]
        return attempt

    def restore(self, attempt: Attempt) -> None:
        """Put back an attempt taken by consume() whose grading could not be stored."""
        with self._lock:
            self._attempts.setdefault(attempt.attempt_id, attempt)

    def __len__(self) -> int:
        with self._lock:
            return len(self._attempts)

class InMemoryResultStore:
    def __init__(self):
        self._results: List[TestResult] = []
        self._lock = threading.Lock()

    def add(self, result: TestResult) -> None:
        with self._lock:
            self._results.append(result)

    def get(self, test_id: str, user_id: str) -> Optional[TestResult]:
        with self._lock:
            for r in self._results:
                if r.test_id == test_id and r.user_id == str(user_id):
                    return r
        return None

    def list_for_user(self, user_id: str) -> List[TestResult]:
        """Newest first."""
        with self._lock:
            rows = [r for r in self._results if r.user_id == str(user_id)]
        return sorted(rows, key=lambda r: r.timestamp, reverse=True)

def _payload_dict(raw: Any) -> Optional[Dict[str, Any]]:
    # JSONB comes back as dict; TEXT columns (older schemas) as str
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, (str, bytes, bytearray)):
        try:
            data = json.loads(raw)
        except ValueError:
            return None
        return data if isinstance(data, dict) else None
    return None

class PgResultStore:
    """Result store on Postgres. deps are the app's fetch_one / fetch_all / execute helpers."""

    def __init__(self, fetch_one: Callable, fetch_all: Callable, execute: Callable):
        self._fetch_one = fetch_one
        self._fetch_all = fetch_all
        self._execute = execute
        self._table_ready = False
        self._lock = threading.Lock()

    def _ensure_table(self):
        if self._table_ready:
            return
        with self._lock:
            if self._table_ready:
                return
            self._execute("""
                CREATE TABLE IF NOT EXISTS public.exam_results (
                  test_id     TEXT PRIMARY KEY,
                  user_id     TEXT NOT NULL,
                  exam_id     TEXT NOT NULL,
                  score       NUMERIC(5,2) NOT NULL,
                  created_at  TIMESTAMPTZ NOT NULL,
                  payload     JSONB NOT NULL
                );
            """, ())
            self._table_ready = True

    def add(self, result: TestResult) -> None:
        self._ensure_table()
        self._execute("""
            INSERT INTO public.exam_results
                (test_id, user_id, exam_id, score, created_at, payload)
            VALUES (%s, %s, %s, %s, to_timestamp(%s / 1000.0), %s::jsonb);
        """, (result.test_id, result.user_id, result.exam_id, result.score,
              result.timestamp, json.dumps(result.to_dict(), ensure_ascii=False)))
        print(f"[results] stored {result.test_id} for user {result.user_id}", flush=True)

    def get(self, test_id: str, user_id: str) -> Optional[TestResult]:
        self._ensure_table()
        row = self._fetch_one("""
            SELECT payload
              FROM public.exam_results
             WHERE test_id = %s AND user_id = %s
             LIMIT 1;
        """, (test_id, str(user_id)))
        data = _payload_dict((row or {}).get("payload"))
        return TestResult.from_dict(data) if data else None

    def list_for_user(self, user_id: str) -> List[TestResult]:
        self._ensure_table()
        rows = self._fetch_all("""
            SELECT payload
              FROM public.exam_results
             WHERE user_id = %s
             ORDER BY created_at DESC
             LIMIT 500;
        """, (str(user_id),))
        out: List[TestResult] = []
        for row in rows or []:
            data = _payload_dict(row.get("payload"))
            if data:
                out.append(TestResult.from_dict(data))
        return out

__all__ = ["AttemptStore", "InMemoryResultStore", "PgResultStore"]
