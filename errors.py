# errors.py
# -----------------------------------------------------------------------------
# Failure taxonomy for the exam core. Core code raises these; the blueprints
# translate them into JSON error responses.
# -----------------------------------------------------------------------------
from typing import Dict, Optional


class ExamCoreError(Exception):
    """Base class for every failure the exam core reports to its callers."""


class SourceUnavailable(ExamCoreError):
    """Question source could not be fetched (transport, timeout, status, content type). Retryable."""


class ParseError(ExamCoreError):
    """Question source yielded zero usable rows."""


class ExamConfigNotFound(ExamCoreError):
    def __init__(self, org_id: str, exam_id: Optional[str] = None, kind: str = "exam"):
        self.org_id = org_id
        self.exam_id = exam_id
        if exam_id is None:
            super().__init__(f"organization '{org_id}' not found")
        else:
            super().__init__(f"{kind} '{exam_id}' not found in organization '{org_id}'")


class PoolUnavailable(ExamCoreError):
    """Grading was attempted while the exam's question pool is not cached."""

    def __init__(self, source_url: str):
        self.source_url = source_url
        super().__init__("question pool is not loaded for this exam; start an attempt first")


class AttemptNotFound(ExamCoreError):
    def __init__(self, attempt_id: str):
        self.attempt_id = attempt_id
        super().__init__(f"attempt '{attempt_id}' not found or already graded")


class InvalidSubmission(ExamCoreError):
    """Submitted answers payload is structurally wrong."""


class ConfigValidationError(ExamCoreError, ValueError):
    """Admin update command rejected; `errors` maps field name -> message."""

    def __init__(self, errors: Dict[str, str]):
        self.errors = dict(errors)
        detail = "; ".join(f"{k}: {v}" for k, v in sorted(self.errors.items()))
        super().__init__(f"invalid configuration update ({detail})")
