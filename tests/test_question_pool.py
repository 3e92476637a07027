import sys
import threading
from pathlib import Path

import pytest
import requests

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import question_pool  # noqa: E402
from errors import ParseError, SourceUnavailable  # noqa: E402
from question_pool import QuestionPoolCache, fetch_question_csv  # noqa: E402

URL = "https://sheets.example.com/pub?output=csv"
CSV = "question,options,correctAnswer\nA?,x|y,1\nB?,x|y,2\nC?,x|y|z,3"

class CountingFetch:
    def __init__(self, body=CSV, gate=None):
        self.body = body
        self.gate = gate
        self.calls = 0
        self._lock = threading.Lock()

    def __call__(self, url):
        with self._lock:
            self.calls += 1
        if self.gate is not None:
            self.gate.wait(timeout=5)
        if isinstance(self.body, Exception):
            raise self.body
        return self.body

class FakeResponse:
    def __init__(self, text="", content_type="text/csv; charset=utf-8", status=200):
        self.text = text
        self.headers = {"Content-Type": content_type} if content_type else {}
        self.status_code = status

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

# ------------------------------- cache ---------------------------------------
def test_pool_is_memoized_per_url():
    fetch = CountingFetch()
    cache = QuestionPoolCache(fetch=fetch)

    first = cache.get_pool(URL)
    second = cache.get_pool(URL)

    assert first is second
    assert len(first) == 3
    assert fetch.calls == 1
    assert cache.cached_sources() == [URL]

def test_concurrent_first_access_shares_one_fetch():
    gate = threading.Event()
    fetch = CountingFetch(gate=gate)
    cache = QuestionPoolCache(fetch=fetch)
    seen = []

    def worker():
        seen.append(cache.get_pool(URL))

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    gate.set()
    for t in threads:
        t.join(timeout=5)

    assert fetch.calls == 1
    assert len(seen) == 8
    assert all(p is seen[0] for p in seen)

def test_concurrent_waiters_see_leader_failure():
    gate = threading.Event()
    fetch = CountingFetch(body=SourceUnavailable("down"), gate=gate)
    cache = QuestionPoolCache(fetch=fetch)
    errors = []

    def worker():
        try:
            cache.get_pool(URL)
        except SourceUnavailable as e:
            errors.append(e)

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    gate.set()
    for t in threads:
        t.join(timeout=5)

    assert len(errors) == 4
    assert cache.peek(URL) is None

def test_failures_are_not_cached():
    fetch = CountingFetch(body=SourceUnavailable("down"))
    cache = QuestionPoolCache(fetch=fetch)

    with pytest.raises(SourceUnavailable):
        cache.get_pool(URL)

    fetch.body = CSV
    pool = cache.get_pool(URL)
    assert len(pool) == 3
    assert fetch.calls == 2

def test_parse_error_propagates_and_is_not_cached():
    cache = QuestionPoolCache(fetch=CountingFetch(body="question,options,correctAnswer\n"))
    with pytest.raises(ParseError):
        cache.get_pool(URL)
    assert cache.peek(URL) is None

def test_invalidate_forces_refetch():
    fetch = CountingFetch()
    cache = QuestionPoolCache(fetch=fetch)
    cache.get_pool(URL)
    cache.get_pool("https://other.example.com/x.csv")

    assert cache.invalidate(URL) == 1
    assert cache.invalidate(URL) == 0
    assert cache.peek(URL) is None

    cache.get_pool(URL)
    assert fetch.calls == 3
    assert cache.invalidate() == 2
    assert cache.cached_sources() == []

def test_invalidate_during_fetch_is_not_overwritten():
    def fetch(url):
        # an admin drops the pool while the sheet is still downloading
        cache.invalidate(url)
        return CSV

    cache = QuestionPoolCache(fetch=fetch)
    pool = cache.get_pool(URL)

    assert len(pool) == 3
    assert cache.peek(URL) is None
    assert cache.cached_sources() == []

def test_invalidate_all_during_fetch_is_not_overwritten():
    def fetch(url):
        cache.invalidate()
        return CSV

    cache = QuestionPoolCache(fetch=fetch)
    cache.get_pool(URL)
    assert cache.peek(URL) is None

# ------------------------------- fetch ---------------------------------------
def test_fetch_returns_csv_body_with_cache_buster(monkeypatch):
    captured = {}

    def fake_get(url, params=None, timeout=None):
        captured.update(url=url, params=params, timeout=timeout)
        return FakeResponse(text=CSV)

    monkeypatch.setattr(question_pool.requests, "get", fake_get)

    assert fetch_question_csv(URL, timeout=3) == CSV
    assert captured["url"] == URL
    assert captured["timeout"] == 3
    assert "_" in captured["params"]

def test_fetch_rejects_non_csv_content_type(monkeypatch):
    monkeypatch.setattr(question_pool.requests, "get",
                        lambda *a, **k: FakeResponse(text="<html>", content_type="text/html"))
    with pytest.raises(SourceUnavailable):
        fetch_question_csv(URL)

def test_fetch_rejects_missing_content_type(monkeypatch):
    monkeypatch.setattr(question_pool.requests, "get",
                        lambda *a, **k: FakeResponse(text=CSV, content_type=None))
    with pytest.raises(SourceUnavailable):
        fetch_question_csv(URL)

def test_fetch_http_error_is_source_unavailable(monkeypatch):
    monkeypatch.setattr(question_pool.requests, "get",
                        lambda *a, **k: FakeResponse(status=404))
    with pytest.raises(SourceUnavailable):
        fetch_question_csv(URL)

def test_fetch_timeout_is_source_unavailable(monkeypatch):
    def slow(*args, **kwargs):
        raise requests.Timeout("read timed out")

    monkeypatch.setattr(question_pool.requests, "get", slow)
    with pytest.raises(SourceUnavailable, match="timed out"):
        fetch_question_csv(URL, timeout=0.5)
