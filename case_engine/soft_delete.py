from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from case_engine.errors import ConfirmationMismatchError, InvalidStateError, PermissionDeniedError


RESTORE_TOKEN = "RESTORE"
DELETE_TOKEN = "DELETE"

STAFF_ROLES = {"staff", "admin", "superadmin"}
PRIVILEGED_ROLES = {"admin", "superadmin"}


class LifecycleState(str, Enum):
    ACTIVE = "active"
    DELETED = "deleted"
    PERMANENTLY_REMOVED = "permanently_removed"


def lifecycle_state(deleted_at: Optional[datetime]) -> LifecycleState:
    return LifecycleState.DELETED if deleted_at is not None else LifecycleState.ACTIVE


def deleted_label(status: Optional[str]) -> str:
    # display only; the transitions below never look at draft-ness
    return "Deleted Draft" if status == "draft" else "Deleted"


def check_soft_delete(deleted_at: Optional[datetime], case_id: Optional[str] = None) -> None:
    if deleted_at is not None:
        raise InvalidStateError("Case is already deleted", case_id=case_id)


def check_restore(
    deleted_at: Optional[datetime],
    role: Optional[str],
    confirm_token: Optional[str],
    case_id: Optional[str] = None,
) -> None:
    if role not in PRIVILEGED_ROLES:
        raise PermissionDeniedError("Restoring a case requires an administrator", case_id=case_id)
    if deleted_at is None:
        raise InvalidStateError("Case is not deleted", case_id=case_id)
    if confirm_token != RESTORE_TOKEN:
        raise ConfirmationMismatchError(f'Type "{RESTORE_TOKEN}" to confirm restoring this case', case_id=case_id)


def check_permanent_delete(
    deleted_at: Optional[datetime],
    confirm_token: Optional[str],
    case_id: Optional[str] = None,
) -> None:
    if deleted_at is None:
        raise InvalidStateError("Only deleted cases can be permanently removed", case_id=case_id)
    if confirm_token != DELETE_TOKEN:
        raise ConfirmationMismatchError(f'Type "{DELETE_TOKEN}" to confirm permanent deletion', case_id=case_id)
