# models.py
# -----------------------------------------------------------------------------
# Typed records shared by the parser, pool cache, grading, certificates and
# the configuration store. All records are frozen; updates build new ones.
#
# Answer indexing: spreadsheets author the correct answer as a 1-based
# ordinal. The parser converts it once, so Question.correct_index is 0-based
# like every submitted answer and every review entry.
# -----------------------------------------------------------------------------
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple


# ------------------------------- catalog ------------------------------------
@dataclass(frozen=True)
class CertificateTemplate:
    id: str
    title: str
    body: str  # contains a {finalScore} placeholder
    signature1_name: str = ""
    signature1_title: str = ""
    signature2_name: str = ""
    signature2_title: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "body": self.body,
            "signature1Name": self.signature1_name,
            "signature1Title": self.signature1_title,
            "signature2Name": self.signature2_name,
            "signature2Title": self.signature2_title,
        }


@dataclass(frozen=True)
class Exam:
    id: str
    name: str
    description: str
    price: float                      # 0 => free / practice
    number_of_questions: int          # requested sample size
    pass_score: float                 # percentage, 0..100
    question_source_url: str
    certificate_template_id: Optional[str] = None

    @property
    def is_practice(self) -> bool:
        return self.price <= 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "price": self.price,
            "numberOfQuestions": self.number_of_questions,
            "passScore": self.pass_score,
            "questionSourceUrl": self.question_source_url,
            "certificateTemplateId": self.certificate_template_id,
            "isPractice": self.is_practice,
        }


@dataclass(frozen=True)
class Organization:
    id: str
    name: str
    website: str = ""
    logo: str = ""
    exams: Tuple[Exam, ...] = ()
    certificate_templates: Tuple[CertificateTemplate, ...] = ()

    def find_exam(self, exam_id: str) -> Optional[Exam]:
        for exam in self.exams:
            if exam.id == exam_id:
                return exam
        return None

    def find_template(self, template_id: Optional[str]) -> Optional[CertificateTemplate]:
        if not template_id:
            return None
        for tpl in self.certificate_templates:
            if tpl.id == template_id:
                return tpl
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "website": self.website,
            "logo": self.logo,
            "exams": [e.to_dict() for e in self.exams],
            "certificateTemplates": [t.to_dict() for t in self.certificate_templates],
        }


# ------------------------------ questions -----------------------------------
@dataclass(frozen=True)
class Question:
    id: int                      # 1-based position among the source's valid rows
    question: str
    options: Tuple[str, ...]
    correct_index: int           # 0-based

    @property
    def correct_answer(self) -> int:
        """The 1-based ordinal as authored in the spreadsheet."""
        return self.correct_index + 1

    def to_public_dict(self) -> Dict[str, Any]:
        # what a candidate sees while taking the exam
        return {"id": self.id, "question": self.question, "options": list(self.options)}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "question": self.question,
            "options": list(self.options),
            "correctAnswer": self.correct_answer,
        }


@dataclass(frozen=True)
class QuestionPool:
    source_url: str
    questions: Tuple[Question, ...]
    loaded_at: float = 0.0

    def __len__(self) -> int:
        return len(self.questions)


@dataclass(frozen=True)
class Attempt:
    """Sampled questions owned by one in-progress attempt."""
    attempt_id: str
    user_id: str
    org_id: str
    exam_id: str
    questions: Tuple[Question, ...]
    started_at: int  # epoch ms


# ------------------------------- results ------------------------------------
@dataclass(frozen=True)
class UserAnswer:
    question_id: int
    answer: int  # 0-based selected option

    def to_dict(self) -> Dict[str, Any]:
        return {"questionId": self.question_id, "answer": self.answer}


@dataclass(frozen=True)
class ReviewItem:
    question_id: int
    question: str
    options: Tuple[str, ...]
    user_answer: int
    correct_answer: int  # 0-based

    @property
    def is_correct(self) -> bool:
        return self.user_answer == self.correct_answer

    def to_dict(self) -> Dict[str, Any]:
        return {
            "questionId": self.question_id,
            "question": self.question,
            "options": list(self.options),
            "userAnswer": self.user_answer,
            "correctAnswer": self.correct_answer,
        }


@dataclass(frozen=True)
class TestResult:
    test_id: str
    user_id: str
    exam_id: str
    answers: Tuple[UserAnswer, ...]
    score: float
    correct_count: int
    total_questions: int
    timestamp: int  # epoch ms
    review: Tuple[ReviewItem, ...] = field(default_factory=tuple)

    __test__ = False  # not a pytest class

    def to_dict(self) -> Dict[str, Any]:
        return {
            "testId": self.test_id,
            "userId": self.user_id,
            "examId": self.exam_id,
            "answers": [a.to_dict() for a in self.answers],
            "score": self.score,
            "correctCount": self.correct_count,
            "totalQuestions": self.total_questions,
            "timestamp": self.timestamp,
            "review": [r.to_dict() for r in self.review],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TestResult":
        return cls(
            test_id=str(data["testId"]),
            user_id=str(data["userId"]),
            exam_id=str(data["examId"]),
            answers=tuple(
                UserAnswer(question_id=int(a["questionId"]), answer=int(a["answer"]))
                for a in data.get("answers") or []
            ),
            score=float(data.get("score") or 0.0),
            correct_count=int(data.get("correctCount") or 0),
            total_questions=int(data.get("totalQuestions") or 0),
            timestamp=int(data.get("timestamp") or 0),
            review=tuple(
                ReviewItem(
                    question_id=int(r["questionId"]),
                    question=str(r.get("question") or ""),
                    options=tuple(r.get("options") or ()),
                    user_answer=int(r["userAnswer"]),
                    correct_answer=int(r["correctAnswer"]),
                )
                for r in data.get("review") or []
            ),
        )


@dataclass(frozen=True)
class CertificateData:
    certificate_number: str
    candidate_name: str
    final_score: float
    date: str
    total_questions: int
    organization: Organization
    template: CertificateTemplate

    def to_dict(self) -> Dict[str, Any]:
        return {
            "certificateNumber": self.certificate_number,
            "candidateName": self.candidate_name,
            "finalScore": self.final_score,
            "date": self.date,
            "totalQuestions": self.total_questions,
            "organization": {
                "id": self.organization.id,
                "name": self.organization.name,
                "website": self.organization.website,
                "logo": self.organization.logo,
            },
            "template": self.template.to_dict(),
        }
