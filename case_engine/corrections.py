from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from case_engine.errors import ValidationError


DOCUMENT_PREFIX = "document_"

FIELD_LABELS: Dict[str, str] = {
    "name": "Name",
    "email": "Email",
    "cellphone": "Phone Number",
    "sex": "Sex",
    "jobsite": "Job Site",
    "position": "Position",
    "job_type": "Job Type",
    "employer": "Employer",
    "salary": "Salary",
    "raw_salary": "Salary",
    "salary_currency": "Salary Currency",
    "evaluator": "Evaluator",
    "passport_number": "Passport Number",
    "passport_validity": "Passport Validity",
    "visa_category": "Visa Category",
    "visa_type": "Visa Type",
    "visa_number": "Visa Number",
    "visa_validity": "Visa Validity",
    "ec_issued_date": "Employment Contract Issued Date",
    "ec_verification": "Employment Contract Verification Type",
}

DOCUMENT_LABELS: Dict[str, str] = {
    "passport": "Passport",
    "work_visa": "Work Visa",
    "employment_contract": "Employment Contract",
    "tesda_license": "TESDA/PRC License",
    "country_specific": "Country-Specific Document",
    "compliance_form": "Compliance Form",
    "medical_certificate": "Medical Certificate",
    "peos_certificate": "PEOS Certificate",
    "clearance": "Clearance",
    "insurance_coverage": "Insurance Coverage",
    "eregistration": "E-Registration",
    "pdos_certificate": "PDOS Certificate",
}


class CorrectionState(str, Enum):
    UNFLAGGED = "unflagged"
    OPEN = "open"
    NEEDS_REVIEW = "needs_review"
    RESOLVED = "resolved"


# colour / label pairs for anything rendering a flagged field
STATE_DISPLAY: Dict[CorrectionState, Dict[str, str]] = {
    CorrectionState.UNFLAGGED: {"color": "none", "label": ""},
    CorrectionState.OPEN: {"color": "red", "label": "Flagged for correction"},
    CorrectionState.NEEDS_REVIEW: {"color": "orange", "label": "Corrected - needs review"},
    CorrectionState.RESOLVED: {"color": "green", "label": "Resolved"},
}


def _title(snake: str) -> str:
    return " ".join(w[:1].upper() + w[1:] for w in snake.split("_") if w)


def is_document_field(field_key: str) -> bool:
    return field_key.startswith(DOCUMENT_PREFIX)


def document_type_of(field_key: str) -> Optional[str]:
    if not is_document_field(field_key):
        return None
    return field_key[len(DOCUMENT_PREFIX):]


def field_label(field_key: str) -> str:
    doc_type = document_type_of(field_key)
    if doc_type is not None:
        return DOCUMENT_LABELS.get(doc_type, _title(doc_type))
    return FIELD_LABELS.get(field_key, _title(field_key))


def needs_review(resolved_at: Optional[datetime], case_needs_correction: bool) -> bool:
    """Applicant resubmitted (case flag cleared) but staff has not confirmed yet."""
    return resolved_at is None and not case_needs_correction


def correction_state(exists: bool, resolved_at: Optional[datetime], case_needs_correction: bool) -> CorrectionState:
    is_flagged = exists
    is_resolved = exists and resolved_at is not None
    is_corrected = exists and needs_review(resolved_at, case_needs_correction)
    return display_state(is_flagged, is_corrected, is_resolved)


def display_state(is_flagged: bool, is_corrected: bool, is_resolved: bool) -> CorrectionState:
    # precedence: resolved > needs review > open
    if is_resolved:
        return CorrectionState.RESOLVED
    if is_corrected:
        return CorrectionState.NEEDS_REVIEW
    if is_flagged:
        return CorrectionState.OPEN
    return CorrectionState.UNFLAGGED


class StagedFlag(BaseModel):
    field_key: str
    message: str


class StagedCorrections(BaseModel):
    """
    Flags a reviewer has marked locally but not yet sent back to the applicant.
    Passed as a whole to return-for-compliance; nothing here touches storage.
    """
    items: List[StagedFlag] = Field(default_factory=list)

    def stage(self, field_key: str, message: str) -> "StagedCorrections":
        kept = [i for i in self.items if i.field_key != field_key]
        return StagedCorrections(items=kept + [StagedFlag(field_key=field_key, message=message)])

    def is_empty(self) -> bool:
        return not self.items

    def validated(self, case_id: Optional[str] = None) -> List[StagedFlag]:
        """
        Normalised entries, one per field (later entries win).
        Raises ValidationError before anything is written if the batch is unusable.
        """
        if self.is_empty():
            raise ValidationError("At least one correction item is required", case_id=case_id)

        by_field: Dict[str, StagedFlag] = {}
        for item in self.items:
            key = (item.field_key or "").strip()
            message = (item.message or "").strip()
            if not key:
                raise ValidationError("Field keys are required", case_id=case_id)
            if not message:
                raise ValidationError(f"A reason is required for {field_label(key)}", case_id=case_id, field_key=key)
            by_field.pop(key, None)
            by_field[key] = StagedFlag(field_key=key, message=message)
        return list(by_field.values())


def require_message(message: Optional[str], case_id: Optional[str] = None, field_key: Optional[str] = None) -> str:
    text = (message or "").strip()
    if not text:
        raise ValidationError("A reason is required when flagging a field", case_id=case_id, field_key=field_key)
    return text
