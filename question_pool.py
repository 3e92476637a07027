# question_pool.py
# -----------------------------------------------------------------------------
# Question pools fetched from published spreadsheet CSVs, memoized per source URL.
# - First access fetches + parses; later accesses reuse the cached pool
# - Single-flight: concurrent first accesses for one URL share one fetch and
#   all see the same pool (or the same failure)
# - Failures are not cached; the next call retries the fetch
# - An invalidate() during a fetch keeps that fetch's result out of the cache
# - No eviction; the set of source URLs is small and admin-controlled
# -----------------------------------------------------------------------------
import os
import threading
import time
from typing import Callable, Dict, List, Optional, Sequence

import requests

from errors import SourceUnavailable
from models import Question, QuestionPool
from sheet_parser import parse_questions

DEFAULT_FETCH_TIMEOUT_SEC = float(os.getenv("QUESTION_FETCH_TIMEOUT_SEC") or 10)
CSV_CONTENT_TYPE = "text/csv"


def fetch_question_csv(source_url: str, timeout: float = DEFAULT_FETCH_TIMEOUT_SEC) -> str:
    """GET the CSV body behind source_url. Raises SourceUnavailable on any failure."""
    try:
        # cache-buster: published sheets are served through a CDN
        r = requests.get(source_url, params={"_": int(time.time() * 1000)}, timeout=timeout)
        r.raise_for_status()
    except requests.Timeout as e:
        raise SourceUnavailable(f"timed out after {timeout}s fetching question source") from e
    except requests.RequestException as e:
        raise SourceUnavailable(f"failed to fetch question source: {e}") from e

    content_type = (r.headers.get("Content-Type") or "").lower()
    if CSV_CONTENT_TYPE not in content_type:
        raise SourceUnavailable(
            f"question source returned '{content_type or 'no content type'}', expected {CSV_CONTENT_TYPE}"
        )
    return r.text


class _Flight:
    __slots__ = ("done", "pool", "error", "stale")

    def __init__(self):
        self.done = threading.Event()
        self.pool: Optional[QuestionPool] = None
        self.error: Optional[BaseException] = None
        # set by invalidate() while the fetch runs; the result is then not cached
        self.stale = False


class QuestionPoolCache:
    """Memoizing, single-flight cache of parsed question pools keyed by source URL."""

    def __init__(self,
                 fetch: Optional[Callable[[str], str]] = None,
                 parse: Callable[[str], Sequence[Question]] = parse_questions):
        self._fetch = fetch or fetch_question_csv
        self._parse = parse
        self._pools: Dict[str, QuestionPool] = {}
        self._inflight: Dict[str, _Flight] = {}
        # guards the two dicts only; never held across a fetch
        self._lock = threading.Lock()

    def get_pool(self, source_url: str) -> QuestionPool:
        with self._lock:
            pool = self._pools.get(source_url)
            if pool is not None:
                return pool
            flight = self._inflight.get(source_url)
            leader = flight is None
            if leader:
                flight = _Flight()
                self._inflight[source_url] = flight

        if not leader:
            flight.done.wait()
            if flight.error is not None:
                raise flight.error
            return flight.pool

        try:
            pool = self._load(source_url)
        except BaseException as e:
            flight.error = e
            print(f"[pool] load failed for {source_url}: {e}", flush=True)
            raise
        else:
            flight.pool = pool
            with self._lock:
                if not flight.stale:
                    self._pools[source_url] = pool
            if flight.stale:
                print(f"[pool] {source_url} invalidated during fetch; not cached", flush=True)
            return pool
        finally:
            with self._lock:
                self._inflight.pop(source_url, None)
            flight.done.set()

    def _load(self, source_url: str) -> QuestionPool:
        started = time.time()
        raw = self._fetch(source_url)
        questions = tuple(self._parse(raw))
        pool = QuestionPool(source_url=source_url, questions=questions, loaded_at=time.time())
        print(f"[pool] loaded {len(pool)} questions from {source_url} "
              f"in {int((pool.loaded_at - started) * 1000)} ms", flush=True)
        return pool

    def peek(self, source_url: str) -> Optional[QuestionPool]:
        with self._lock:
            return self._pools.get(source_url)

    def invalidate(self, source_url: Optional[str] = None) -> int:
        """Drop one cached pool (or all when source_url is None). Returns how many were dropped.

        Fetches already in flight for the dropped URL(s) still answer their
        callers but are not cached.
        """
        with self._lock:
            if source_url is None:
                n = len(self._pools)
                self._pools.clear()
                flights = list(self._inflight.values())
            else:
                n = 1 if self._pools.pop(source_url, None) is not None else 0
                flights = [self._inflight[source_url]] if source_url in self._inflight else []
            for flight in flights:
                flight.stale = True
        if n:
            print(f"[pool] invalidated {n} pool(s)", flush=True)
        return n

    def cached_sources(self) -> List[str]:
        with self._lock:
            return sorted(self._pools)


__all__ = ["QuestionPoolCache", "fetch_question_csv", "DEFAULT_FETCH_TIMEOUT_SEC"]
