"""Exam configuration store: organizations, their exams and certificate templates.

The store is seeded from a JSON catalog on disk and accepts administrative
updates as typed commands. Each command parses and range-checks its fields
before anything is applied; applying a command swaps in a new frozen record,
so readers never observe a half-applied edit.
"""

from __future__ import annotations

import dataclasses
import json
import os
import threading
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from errors import ConfigValidationError, ExamConfigNotFound
from models import CertificateTemplate, Exam, Organization
from certificate import SCORE_PLACEHOLDER

CATALOG_DIR = Path(__file__).resolve().parent / "catalog"
DEFAULT_CATALOG_PATH = Path(os.getenv("EXAM_CATALOG_PATH") or (CATALOG_DIR / "organizations.json"))


# ------------------------------ field parsing --------------------------------
def _text(data: Dict[str, Any], key: str, errors: Dict[str, str], required: bool = False) -> Optional[str]:
    if key not in data:
        if required:
            errors[key] = "is required"
        return None
    value = data[key]
    if not isinstance(value, str):
        errors[key] = "must be a string"
        return None
    value = value.strip()
    if required and not value:
        errors[key] = "must not be empty"
        return None
    return value


def _number(data: Dict[str, Any], key: str, errors: Dict[str, str], *,
            minimum: Optional[float] = None, maximum: Optional[float] = None,
            exclusive_min: bool = False, integer: bool = False):
    if key not in data:
        return None
    raw = data[key]
    if isinstance(raw, bool):
        errors[key] = "must be a number"
        return None
    try:
        # admin forms post numbers as strings
        value = float(raw)
    except (TypeError, ValueError):
        errors[key] = "must be a number"
        return None
    if value != value or value in (float("inf"), float("-inf")):
        errors[key] = "must be a finite number"
        return None
    if integer:
        if not value.is_integer():
            errors[key] = "must be a whole number"
            return None
        value = int(value)
    if minimum is not None and (value <= minimum if exclusive_min else value < minimum):
        errors[key] = f"must be {'greater than' if exclusive_min else 'at least'} {minimum:g}"
        return None
    if maximum is not None and value > maximum:
        errors[key] = f"must be at most {maximum:g}"
        return None
    return value


def _reject_unknown(data: Dict[str, Any], allowed: Iterable[str], errors: Dict[str, str]):
    allowed = set(allowed)
    for key in data:
        if key not in allowed:
            errors[str(key)] = "unknown or read-only field"


def _require_mapping(data: Any) -> Dict[str, Any]:
    if not isinstance(data, dict):
        raise ConfigValidationError({"_": "update must be a JSON object"})
    return data


# ------------------------------ update commands ------------------------------
@dataclass(frozen=True)
class OrganizationUpdate:
    name: Optional[str] = None
    website: Optional[str] = None
    logo: Optional[str] = None

    FIELDS = ("name", "website", "logo")

    @classmethod
    def from_dict(cls, data: Any) -> "OrganizationUpdate":
        data = _require_mapping(data)
        errors: Dict[str, str] = {}
        _reject_unknown(data, cls.FIELDS, errors)
        name = _text(data, "name", errors)
        if name == "":
            errors["name"] = "must not be empty"
        cmd = cls(name=name, website=_text(data, "website", errors), logo=_text(data, "logo", errors))
        if errors:
            raise ConfigValidationError(errors)
        return cmd

    def apply(self, org: Organization) -> Organization:
        changes = {k: v for k, v in dataclasses.asdict(self).items() if v is not None}
        return dataclasses.replace(org, **changes)


@dataclass(frozen=True)
class ExamUpdate:
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = None
    number_of_questions: Optional[int] = None
    pass_score: Optional[float] = None
    question_source_url: Optional[str] = None
    certificate_template_id: Optional[str] = None  # "" clears the reference

    # wire name -> attribute
    FIELDS = {
        "name": "name",
        "description": "description",
        "price": "price",
        "numberOfQuestions": "number_of_questions",
        "passScore": "pass_score",
        "questionSourceUrl": "question_source_url",
        "certificateTemplateId": "certificate_template_id",
    }

    @classmethod
    def from_dict(cls, data: Any, require_all: bool = False) -> "ExamUpdate":
        data = _require_mapping(data)
        errors: Dict[str, str] = {}
        _reject_unknown(data, cls.FIELDS, errors)

        name = _text(data, "name", errors, required=require_all)
        if name == "":
            errors["name"] = "must not be empty"
        url = _text(data, "questionSourceUrl", errors, required=require_all)
        if url is not None and "questionSourceUrl" not in errors and not url.startswith(("http://", "https://")):
            errors["questionSourceUrl"] = "must be an http(s) URL"
        tpl = data.get("certificateTemplateId")
        if tpl is None:
            tpl = "" if "certificateTemplateId" in data else None
        else:
            tpl = _text(data, "certificateTemplateId", errors)

        cmd = cls(
            name=name,
            description=_text(data, "description", errors),
            price=_number(data, "price", errors, minimum=0),
            number_of_questions=_number(data, "numberOfQuestions", errors, minimum=0, exclusive_min=True, integer=True),
            pass_score=_number(data, "passScore", errors, minimum=0, maximum=100),
            question_source_url=url,
            certificate_template_id=tpl,
        )
        if require_all:
            for wire in ("price", "numberOfQuestions", "passScore"):
                if wire not in data and wire not in errors:
                    errors[wire] = "is required"
        if errors:
            raise ConfigValidationError(errors)
        return cmd

    def apply(self, exam: Exam) -> Exam:
        changes = {k: v for k, v in dataclasses.asdict(self).items() if v is not None}
        if changes.get("certificate_template_id") == "":
            changes["certificate_template_id"] = None
        return dataclasses.replace(exam, **changes)


@dataclass(frozen=True)
class TemplateUpdate:
    title: Optional[str] = None
    body: Optional[str] = None
    signature1_name: Optional[str] = None
    signature1_title: Optional[str] = None
    signature2_name: Optional[str] = None
    signature2_title: Optional[str] = None

    FIELDS = {
        "title": "title",
        "body": "body",
        "signature1Name": "signature1_name",
        "signature1Title": "signature1_title",
        "signature2Name": "signature2_name",
        "signature2Title": "signature2_title",
    }

    @classmethod
    def from_dict(cls, data: Any, require_all: bool = False) -> "TemplateUpdate":
        data = _require_mapping(data)
        errors: Dict[str, str] = {}
        _reject_unknown(data, cls.FIELDS, errors)
        values = {attr: _text(data, wire, errors, required=require_all and wire in ("title", "body"))
                  for wire, attr in cls.FIELDS.items()}
        if values["title"] == "":
            errors["title"] = "must not be empty"
        body = values["body"]
        if body is not None and "body" not in errors and SCORE_PLACEHOLDER not in body:
            errors["body"] = f"must contain the {SCORE_PLACEHOLDER} placeholder"
        if errors:
            raise ConfigValidationError(errors)
        return cls(**values)

    def apply(self, template: CertificateTemplate) -> CertificateTemplate:
        changes = {k: v for k, v in dataclasses.asdict(self).items() if v is not None}
        return dataclasses.replace(template, **changes)


# ------------------------------ catalog loading ------------------------------
def exam_from_dict(data: Dict[str, Any]) -> Exam:
    exam_id = str(data.get("id") or "").strip()
    if not exam_id:
        raise ConfigValidationError({"id": "is required"})
    fields = {k: v for k, v in data.items() if k not in ("id", "isPractice")}
    cmd = ExamUpdate.from_dict(fields, require_all=True)
    return cmd.apply(Exam(
        id=exam_id, name="", description="", price=0.0, number_of_questions=1,
        pass_score=0.0, question_source_url="",
    ))


def template_from_dict(data: Dict[str, Any]) -> CertificateTemplate:
    tpl_id = str(data.get("id") or "").strip()
    if not tpl_id:
        raise ConfigValidationError({"id": "is required"})
    cmd = TemplateUpdate.from_dict({k: v for k, v in data.items() if k != "id"}, require_all=True)
    return cmd.apply(CertificateTemplate(id=tpl_id, title="", body=""))


def organization_from_dict(data: Dict[str, Any]) -> Organization:
    org_id = str(data.get("id") or "").strip()
    if not org_id:
        raise ConfigValidationError({"id": "is required"})
    meta = {k: data[k] for k in OrganizationUpdate.FIELDS if k in data}
    org = OrganizationUpdate.from_dict(meta).apply(Organization(id=org_id, name=org_id))
    exams: List[Exam] = []
    for raw in data.get("exams") or []:
        try:
            exams.append(exam_from_dict(raw))
        except ConfigValidationError as e:
            print(f"[catalog] skipping exam {raw.get('id') if isinstance(raw, dict) else raw!r} in {org_id}: {e}")
    templates: List[CertificateTemplate] = []
    for raw in data.get("certificateTemplates") or []:
        try:
            templates.append(template_from_dict(raw))
        except ConfigValidationError as e:
            print(f"[catalog] skipping template {raw.get('id') if isinstance(raw, dict) else raw!r} in {org_id}: {e}")
    return dataclasses.replace(org, exams=tuple(exams), certificate_templates=tuple(templates))


def _safe_load_json(path: Path) -> Any:
    try:
        with path.open("r", encoding="utf-8") as fh:
            return json.load(fh)
    except (OSError, ValueError) as exc:
        print(f"[catalog] failed to load '{path}': {exc}")
        return None


@lru_cache(maxsize=4)
def load_catalog(path: str = str(DEFAULT_CATALOG_PATH)) -> Tuple[Organization, ...]:
    """Load and validate the organizations catalog from disk."""
    data = _safe_load_json(Path(path))
    if isinstance(data, dict):
        data = data.get("organizations")
    if not isinstance(data, list):
        return ()

    orgs: List[Organization] = []
    for raw in data:
        if not isinstance(raw, dict):
            continue
        try:
            orgs.append(organization_from_dict(raw))
        except ConfigValidationError as e:
            print(f"[catalog] skipping organization {raw.get('id')!r}: {e}")
    return tuple(orgs)


# ---------------------------------- store ------------------------------------
class ExamConfigStore:
    """In-memory, thread-safe keyed store of organizations (insertion ordered)."""

    def __init__(self, organizations: Iterable[Organization] = ()):
        self._orgs: Dict[str, Organization] = {o.id: o for o in organizations}
        self._lock = threading.Lock()

    @classmethod
    def from_file(cls, path: Optional[str] = None) -> "ExamConfigStore":
        return cls(load_catalog(str(path or DEFAULT_CATALOG_PATH)))

    # ---- reads ----
    def list_organizations(self) -> List[Organization]:
        with self._lock:
            return list(self._orgs.values())

    def get_organization(self, org_id: str) -> Optional[Organization]:
        with self._lock:
            return self._orgs.get(org_id)

    def get_exam_config(self, org_id: str, exam_id: str) -> Optional[Exam]:
        org = self.get_organization(org_id)
        return org.find_exam(exam_id) if org else None

    def get_template(self, org_id: str, template_id: str) -> Optional[CertificateTemplate]:
        org = self.get_organization(org_id)
        return org.find_template(template_id) if org else None

    # ---- administrative writes ----
    def _org_or_raise(self, org_id: str) -> Organization:
        org = self._orgs.get(org_id)
        if org is None:
            raise ExamConfigNotFound(org_id)
        return org

    def update_organization(self, org_id: str, cmd: OrganizationUpdate) -> Organization:
        with self._lock:
            updated = cmd.apply(self._org_or_raise(org_id))
            self._orgs[org_id] = updated
        print(f"[catalog] updated organization {org_id}")
        return updated

    def update_exam(self, org_id: str, exam_id: str, cmd: ExamUpdate) -> Tuple[Exam, Exam]:
        """Apply cmd; returns (previous, updated)."""
        with self._lock:
            org = self._org_or_raise(org_id)
            previous = org.find_exam(exam_id)
            if previous is None:
                raise ExamConfigNotFound(org_id, exam_id)
            if cmd.certificate_template_id and org.find_template(cmd.certificate_template_id) is None:
                raise ConfigValidationError({"certificateTemplateId": "no such template in this organization"})
            updated = cmd.apply(previous)
            exams = tuple(updated if e.id == exam_id else e for e in org.exams)
            self._orgs[org_id] = dataclasses.replace(org, exams=exams)
        print(f"[catalog] updated exam {org_id}/{exam_id}")
        return previous, updated

    def update_template(self, org_id: str, template_id: str, cmd: TemplateUpdate) -> CertificateTemplate:
        with self._lock:
            org = self._org_or_raise(org_id)
            current = org.find_template(template_id)
            if current is None:
                raise ExamConfigNotFound(org_id, template_id, kind="certificate template")
            updated = cmd.apply(current)
            templates = tuple(updated if t.id == template_id else t for t in org.certificate_templates)
            self._orgs[org_id] = dataclasses.replace(org, certificate_templates=templates)
        print(f"[catalog] updated certificate template {org_id}/{template_id}")
        return updated


__all__ = [
    "ExamConfigStore",
    "ExamUpdate",
    "OrganizationUpdate",
    "TemplateUpdate",
    "load_catalog",
    "organization_from_dict",
]
