from __future__ import annotations

from typing import Optional


class CaseError(Exception):
    """
    Base for every typed lifecycle failure.
    Carries enough context (case id, field key) for the caller to render a message.
    """
    code = "CASE_ERROR"

    def __init__(self, message: str, case_id: Optional[str] = None, field_key: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.case_id = str(case_id) if case_id is not None else None
        self.field_key = field_key

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "detail": self.message,
            "caseId": self.case_id,
            "fieldKey": self.field_key,
        }


class InvalidStateError(CaseError):
    code = "INVALID_STATE"


class ForbiddenTransitionError(CaseError):
    code = "FORBIDDEN_TRANSITION"


class NotFoundError(CaseError):
    code = "NOT_FOUND"


class UnknownCheckpointError(NotFoundError):
    code = "UNKNOWN_CHECKPOINT"


class ValidationError(CaseError):
    code = "VALIDATION_FAILED"


class ConfirmationMismatchError(CaseError):
    code = "CONFIRMATION_MISMATCH"


class PermissionDeniedError(CaseError):
    code = "PERMISSION_DENIED"
