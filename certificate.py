# certificate.py
# -----------------------------------------------------------------------------
# Certificate eligibility + the data a client needs to render one.
# Eligible only when: the exam is paid, the score reaches the pass mark, and
# the exam's certificate template resolves in its organization.
# -----------------------------------------------------------------------------
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Union

from markupsafe import Markup, escape

from models import CertificateData, Exam, Organization, TestResult

SCORE_PLACEHOLDER = "{finalScore}"

REASON_PRACTICE = "practice exams do not issue certificates"
REASON_BELOW_PASS = "score is below the pass mark"
REASON_NO_TEMPLATE = "exam has no certificate template"


@dataclass(frozen=True)
class CertificateIneligible:
    """Negative eligibility result. Falsy, so `if evaluate(...)` reads naturally."""
    reason: str

    def __bool__(self) -> bool:
        return False


def format_certificate_date(timestamp_ms: int) -> str:
    """Long-form date, e.g. 'October 19, 2026' (UTC)."""
    dt = datetime.fromtimestamp(timestamp_ms / 1000.0, tz=timezone.utc)
    return f"{dt:%B} {dt.day}, {dt.year}"


def evaluate_certificate(result: TestResult, exam: Exam, organization: Organization,
                         candidate_name: str) -> Union[CertificateData, CertificateIneligible]:
    if exam.price <= 0:
        return CertificateIneligible(REASON_PRACTICE)
    if result.score < exam.pass_score:
        return CertificateIneligible(REASON_BELOW_PASS)
    template = organization.find_template(exam.certificate_template_id)
    if template is None:
        return CertificateIneligible(REASON_NO_TEMPLATE)

    return CertificateData(
        certificate_number=str(result.timestamp),
        candidate_name=candidate_name,
        final_score=result.score,
        date=format_certificate_date(result.timestamp),
        total_questions=result.total_questions,
        organization=organization,
        template=template,
    )


def _format_score(score: float) -> str:
    return f"{score:.2f}".rstrip("0").rstrip(".")


def render_certificate_body(data: CertificateData) -> Markup:
    """Template body with {finalScore} filled in; admin-authored text is escaped."""
    return escape(data.template.body).replace(SCORE_PLACEHOLDER, _format_score(data.final_score))


__all__ = [
    "CertificateIneligible",
    "evaluate_certificate",
    "format_certificate_date",
    "render_certificate_body",
]
