from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from case_engine.errors import InvalidStateError, UnknownCheckpointError


class CaseStatus(str, Enum):
    DRAFT = "draft"
    PENDING = "pending"
    EVALUATED = "evaluated"
    FOR_CONFIRMATION = "for_confirmation"
    EMAILED_TO_DHAD = "emailed_to_dhad"
    RECEIVED_FROM_DHAD = "received_from_dhad"
    FOR_INTERVIEW = "for_interview"
    APPROVED = "approved"
    REJECTED = "rejected"


# fixed review sequence; order is significant for tie-breaks and "next" lookup
CHECKPOINTS: List[str] = [
    "evaluated",
    "for_confirmation",
    "emailed_to_dhad",
    "received_from_dhad",
    "for_interview",
]

# display-only refinement of for_confirmation, never a checkpoint of its own
CONFIRMED_FLAG = "for_confirmation_confirmed"

TERMINAL_STATUSES = {CaseStatus.APPROVED.value, CaseStatus.REJECTED.value}

FINISHED_KEY = "finished"
DELETED_KEY = "deleted"

STATUS_LABELS: Dict[str, str] = {
    "draft": "Draft",
    "pending": "Pending",
    "evaluated": "Evaluated",
    "for_confirmation": "For Confirmation",
    CONFIRMED_FLAG: "Confirmed",
    "emailed_to_dhad": "Emailed to DHAD",
    "received_from_dhad": "Received from DHAD",
    "for_interview": "For Interview",
    "approved": "Approved",
    "rejected": "Rejected",
    FINISHED_KEY: "Finished",
    DELETED_KEY: "Deleted",
}


class CheckpointState(BaseModel):
    checked: bool = False
    timestamp: Optional[datetime] = None


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _parse_ts(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def checkpoint_state(checklist: Optional[Dict[str, Any]], key: str) -> CheckpointState:
    entry = (checklist or {}).get(key)
    if not isinstance(entry, dict):
        return CheckpointState()
    return CheckpointState(checked=entry.get("checked") is True, timestamp=_parse_ts(entry.get("timestamp")))


def empty_checklist() -> Dict[str, Dict[str, Any]]:
    return {key: {"checked": False, "timestamp": None} for key in CHECKPOINTS}


def derived_status_key(status: Optional[str], checklist: Optional[Dict[str, Any]]) -> Optional[str]:
    """
    Current status of a case.
    The checked checkpoint with the latest timestamp wins; a missing timestamp
    ranks oldest and equal timestamps go to the later step in CHECKPOINTS.
    """
    if status == CaseStatus.DRAFT.value:
        return CaseStatus.DRAFT.value
    if not checklist:
        return status

    epoch = datetime.min.replace(tzinfo=timezone.utc)
    best_key: Optional[str] = None
    best_ts = epoch
    for key in CHECKPOINTS:
        state = checkpoint_state(checklist, key)
        if not state.checked:
            continue
        ts = state.timestamp or epoch
        if best_key is None or ts >= best_ts:
            best_key, best_ts = key, ts

    return best_key if best_key is not None else status


def is_finished(checklist: Optional[Dict[str, Any]]) -> bool:
    if not checklist:
        return False
    return all(checkpoint_state(checklist, key).checked for key in CHECKPOINTS)


def is_processing(checklist: Optional[Dict[str, Any]], deleted_at: Optional[datetime]) -> bool:
    return deleted_at is None and not is_finished(checklist)


def is_confirmed(checklist: Optional[Dict[str, Any]]) -> bool:
    return checkpoint_state(checklist, CONFIRMED_FLAG).checked


def next_checkpoint(status: Optional[str], checklist: Optional[Dict[str, Any]]) -> Optional[str]:
    if not checklist and status in TERMINAL_STATUSES:
        return None
    for key in CHECKPOINTS:
        if not checkpoint_state(checklist, key).checked:
            return key
    return None


def is_for_evaluation(status: Optional[str], checklist: Optional[Dict[str, Any]]) -> bool:
    # gate for flagging and return-for-compliance; always recomputed
    return status == CaseStatus.PENDING.value and not checkpoint_state(checklist, "evaluated").checked


def listing_status_key(status: Optional[str], checklist: Optional[Dict[str, Any]], deleted_at: Optional[datetime]) -> Optional[str]:
    if deleted_at is not None:
        return DELETED_KEY
    if is_finished(checklist):
        return FINISHED_KEY
    return derived_status_key(status, checklist)


def status_label(status: Optional[str], checklist: Optional[Dict[str, Any]], deleted_at: Optional[datetime] = None) -> str:
    if deleted_at is not None:
        return "Deleted Draft" if status == CaseStatus.DRAFT.value else "Deleted"
    if is_finished(checklist):
        return "Finished"
    key = derived_status_key(status, checklist)
    if key == "for_confirmation" and is_confirmed(checklist):
        key = CONFIRMED_FLAG
    return STATUS_LABELS.get(key or "", key or "")


def advance(
    checklist: Optional[Dict[str, Any]],
    checkpoint: str,
    *,
    deleted_at: Optional[datetime] = None,
    now: Optional[datetime] = None,
    case_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Return a new checklist with `checkpoint` checked at `now`. Other entries are left as they are."""
    if deleted_at is not None:
        raise InvalidStateError("Cannot change the status of a deleted case", case_id=case_id)
    if checkpoint not in CHECKPOINTS:
        raise UnknownCheckpointError(f"Unknown checkpoint: {checkpoint}", case_id=case_id, field_key=checkpoint)
    if checkpoint_state(checklist, checkpoint).checked:
        raise InvalidStateError(f"Checkpoint already checked: {checkpoint}", case_id=case_id, field_key=checkpoint)

    updated: Dict[str, Any] = {k: dict(v) if isinstance(v, dict) else v for k, v in (checklist or empty_checklist()).items()}
    for key in CHECKPOINTS:
        updated.setdefault(key, {"checked": False, "timestamp": None})
    updated[checkpoint] = {"checked": True, "timestamp": (now or now_utc()).isoformat()}
    return updated


def mark_confirmed(
    checklist: Optional[Dict[str, Any]],
    *,
    deleted_at: Optional[datetime] = None,
    now: Optional[datetime] = None,
    case_id: Optional[str] = None,
) -> Dict[str, Any]:
    if deleted_at is not None:
        raise InvalidStateError("Cannot change the status of a deleted case", case_id=case_id)
    if not checkpoint_state(checklist, "for_confirmation").checked:
        raise InvalidStateError("for_confirmation must be checked before it can be confirmed", case_id=case_id)
    if is_confirmed(checklist):
        raise InvalidStateError("Confirmation already recorded", case_id=case_id)

    updated = {k: dict(v) if isinstance(v, dict) else v for k, v in (checklist or {}).items()}
    updated[CONFIRMED_FLAG] = {"checked": True, "timestamp": (now or now_utc()).isoformat()}
    return updated
