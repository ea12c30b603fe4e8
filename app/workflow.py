"""
Case lifecycle operations.

Every function here is one atomic transition: it either commits fully or
rolls back and raises one of the case_engine.errors types. Notifications are
sent only after the commit and can never undo it.
"""
from __future__ import annotations

import os
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

from pydantic import BaseModel
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app import notifications
from app.database import APP_TIMEZONE
from app.models import Case, CaseEvent, ControlNumberSequence, Correction, Document, now_utc
from app.workflow_logger import format_actor, log_event
from case_engine import checklist as cl
from case_engine import control_numbers as cn
from case_engine import soft_delete as sd
from case_engine.corrections import StagedCorrections, field_label, require_message
from case_engine.currency import to_usd
from case_engine.errors import (
    ForbiddenTransitionError,
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)


CREATE_STATUSES = {"draft", "pending"}
SEXES = {"male", "female"}
REQUIRED_FIELDS = ("name", "sex", "jobsite", "position")
JOB_TYPES = {"household", "professional"}

# scalar attributes an applicant may change while answering a correction
EDITABLE_FIELDS = {
    "name",
    "email",
    "cellphone",
    "sex",
    "jobsite",
    "position",
    "job_type",
    "employer",
    "raw_salary",
    "salary_currency",
}


class Actor(BaseModel):
    actor_id: str
    role: str

    @property
    def is_staff(self) -> bool:
        return self.role in sd.STAFF_ROLES


def local_now() -> datetime:
    return datetime.now(ZoneInfo(APP_TIMEZONE))


def _utc(dt: Optional[datetime]) -> datetime:
    if dt is None:
        return now_utc()
    return dt.replace(tzinfo=timezone.utc) if dt.tzinfo is None else dt.astimezone(timezone.utc)


@contextmanager
def _atomic(db: Session):
    try:
        yield
        db.commit()
    except Exception:
        db.rollback()
        raise


def _require_staff(actor: Actor, case_id: Optional[str] = None) -> None:
    if not actor.is_staff:
        raise PermissionDeniedError("Staff access required", case_id=case_id)


def _parse_case_id(case_id: Any) -> uuid.UUID:
    if isinstance(case_id, uuid.UUID):
        return case_id
    try:
        return uuid.UUID(str(case_id))
    except ValueError:
        raise ValidationError("Invalid caseId (must be a UUID)", case_id=case_id)


def get_case(db: Session, case_id: Any, *, for_update: bool = False) -> Case:
    case_uuid = _parse_case_id(case_id)
    q = db.query(Case).filter(Case.case_id == case_uuid)
    if for_update:
        q = q.with_for_update()
    case = q.first()
    if not case:
        raise NotFoundError("Case not found", case_id=case_id)
    return case


def _record(db: Session, case: Case, actor: Actor, action: str, old: Optional[dict] = None, new: Optional[dict] = None) -> None:
    db.add(
        CaseEvent(
            case_id=case.case_id,
            actor_id=actor.actor_id,
            action=action,
            old_values=old,
            new_values=new,
            created_at=now_utc(),
        )
    )


def _log(case: Case, actor: Actor, event: str, extra: Optional[dict] = None) -> None:
    log_event(
        case_id=str(case.case_id),
        status=cl.listing_status_key(case.status, case.status_checklist, case.deleted_at),
        actor=format_actor(actor.role, actor.actor_id),
        control_number=case.control_number,
        event=event,
        extra=extra,
    )


def _decimal(value: Any, field_key: str, case_id: Optional[str] = None) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field_label(field_key)} must be a number", case_id=case_id, field_key=field_key)


def _clean_field(key: str, value: Any, case_id: Optional[str] = None) -> Any:
    """Normalized value for one applicant-supplied field, or ValidationError naming it."""
    if key in REQUIRED_FIELDS:
        if not str(value or "").strip():
            raise ValidationError(f"Missing required field: {key}", case_id=case_id, field_key=key)
        value = str(value).strip()
    if key == "sex":
        value = value.lower()
        if value not in SEXES:
            raise ValidationError(f"Invalid sex: {value}", case_id=case_id, field_key=key)
    elif key == "job_type":
        if value is not None and value not in JOB_TYPES:
            raise ValidationError(f"Invalid job type: {value}", case_id=case_id, field_key=key)
    elif key == "raw_salary":
        value = _decimal(value, key, case_id) if value is not None else None
    elif key == "salary_currency":
        value = str(value or "USD").upper()
    return value


# Control numbers

def _count_cases(db: Session, case_type: str, start: datetime, end: datetime) -> int:
    return (
        db.query(func.count(Case.case_id))
        .filter(
            Case.case_type == case_type,
            Case.created_at >= start.astimezone(timezone.utc),
            Case.created_at < end.astimezone(timezone.utc),
        )
        .scalar()
        or 0
    )


def _next_sequence(db: Session, case_type: str, period: str, seed: int) -> int:
    row = (
        db.query(ControlNumberSequence)
        .filter(ControlNumberSequence.case_type == case_type, ControlNumberSequence.period == period)
        .with_for_update()
        .first()
    )
    if row is None:
        try:
            with db.begin_nested():
                row = ControlNumberSequence(case_type=case_type, period=period, last_value=seed)
                db.add(row)
        except IntegrityError:
            # another transaction created the period row first
            row = (
                db.query(ControlNumberSequence)
                .filter(ControlNumberSequence.case_type == case_type, ControlNumberSequence.period == period)
                .with_for_update()
                .one()
            )
    row.last_value += 1
    db.flush()
    return row.last_value


def allocate_control_number(db: Session, case_type: str, now: datetime) -> str:
    """
    Next control number for `case_type`, numbered within the calendar month and year of `now`.
    Must run inside the caller's transaction; the counter rows stay locked until it commits.
    """
    cn.number_format(case_type)
    month_key, year_key = cn.period_keys(now)

    m_start, m_end = cn.month_bounds(now)
    y_start, y_end = cn.year_bounds(now)

    monthly = _next_sequence(db, case_type, month_key, _count_cases(db, case_type, m_start, m_end))
    yearly = _next_sequence(db, case_type, year_key, _count_cases(db, case_type, y_start, y_end))
    return cn.format_control_number(case_type, now, monthly, yearly)


def preview_control_number(db: Session, case_type: str, now: Optional[datetime] = None) -> str:
    now = now or local_now()
    month_key, year_key = cn.period_keys(now)
    values = []
    for period, (start, end) in ((month_key, cn.month_bounds(now)), (year_key, cn.year_bounds(now))):
        row = (
            db.query(ControlNumberSequence)
            .filter(ControlNumberSequence.case_type == case_type, ControlNumberSequence.period == period)
            .first()
        )
        current = row.last_value if row else _count_cases(db, case_type, start, end)
        values.append(current + 1)
    return cn.format_control_number(case_type, now, values[0], values[1])


# Case creation

def create_case(db: Session, actor: Actor, attributes: Dict[str, Any], now: Optional[datetime] = None) -> Case:
    now = now or local_now()
    attrs = {k: v for k, v in attributes.items() if v is not None}

    for key in REQUIRED_FIELDS:
        attrs[key] = _clean_field(key, attrs.get(key))
    job_type = _clean_field("job_type", attrs.get("job_type"))
    status = attrs.get("status") or "pending"
    if status not in CREATE_STATUSES:
        raise ValidationError(f"A new case must start as draft or pending, not {status}", field_key="status")

    currency = _clean_field("salary_currency", attrs.get("salary_currency"))
    raw_salary = _clean_field("raw_salary", attrs.get("raw_salary"))
    case_type = attrs.get("case_type") or "direct_hire"

    with _atomic(db):
        control_number = allocate_control_number(db, case_type, now)
        case = Case(
            control_number=control_number,
            case_type=case_type,
            name=attrs["name"],
            sex=attrs["sex"],
            job_type=job_type,
            jobsite=attrs["jobsite"],
            position=attrs["position"],
            employer=attrs.get("employer"),
            evaluator=attrs.get("evaluator"),
            email=attrs.get("email"),
            cellphone=attrs.get("cellphone"),
            raw_salary=raw_salary,
            salary_currency=currency,
            salary=to_usd(raw_salary, currency) if raw_salary is not None else None,
            applicant_user_id=attrs.get("applicant_user_id") or (actor.actor_id if actor.role == "applicant" else None),
            status=status,
            status_checklist=None,
            needs_correction=False,
            created_at=_utc(now),
            updated_at=_utc(now),
        )
        db.add(case)
        db.flush()
        _record(db, case, actor, "created", new={"control_number": control_number, "status": status})

    db.refresh(case)
    _log(case, actor, "CaseCreated", {"control_number": control_number, "case_type": case_type})
    return case


# Status checklist

def advance_status(db: Session, actor: Actor, case_id: Any, checkpoint: str, now: Optional[datetime] = None) -> Case:
    _require_staff(actor, case_id)
    with _atomic(db):
        case = get_case(db, case_id, for_update=True)
        old_key = cl.derived_status_key(case.status, case.status_checklist)
        case.status_checklist = cl.advance(
            case.status_checklist,
            checkpoint,
            deleted_at=case.deleted_at,
            now=_utc(now),
            case_id=str(case.case_id),
        )
        if checkpoint == "evaluated" and case.status in CREATE_STATUSES:
            case.status = cl.CaseStatus.EVALUATED.value
        case.updated_at = now_utc()
        _record(db, case, actor, "status_advanced", old={"status": old_key}, new={"status": checkpoint})

    db.refresh(case)
    _log(case, actor, "StatusChange", {"to": checkpoint, "from": old_key})
    notifications.dispatch(
        case_id=str(case.case_id),
        event="status_change",
        recipient=case.applicant_user_id,
        title="Application status updated",
        message=f"Your application ({case.control_number}) is now: {cl.status_label(case.status, case.status_checklist)}",
    )
    return case


def confirm_for_confirmation(db: Session, actor: Actor, case_id: Any, now: Optional[datetime] = None) -> Case:
    _require_staff(actor, case_id)
    with _atomic(db):
        case = get_case(db, case_id, for_update=True)
        case.status_checklist = cl.mark_confirmed(
            case.status_checklist,
            deleted_at=case.deleted_at,
            now=_utc(now),
            case_id=str(case.case_id),
        )
        case.updated_at = now_utc()
        _record(db, case, actor, "confirmation_recorded", new={cl.CONFIRMED_FLAG: True})

    db.refresh(case)
    _log(case, actor, "ConfirmationRecorded")
    return case


# Corrections

def _open_correction(db: Session, case: Case, field_key: str) -> Optional[Correction]:
    return (
        db.query(Correction)
        .filter(
            Correction.case_id == case.case_id,
            Correction.field_key == field_key,
            Correction.resolved_at.is_(None),
        )
        .first()
    )


def _latest_correction(db: Session, case: Case, field_key: str) -> Optional[Correction]:
    return (
        db.query(Correction)
        .filter(Correction.case_id == case.case_id, Correction.field_key == field_key)
        .order_by(Correction.created_at.desc())
        .first()
    )


def _require_for_evaluation(case: Case, field_key: Optional[str] = None) -> None:
    if case.deleted_at is not None:
        raise InvalidStateError("Case is deleted", case_id=str(case.case_id), field_key=field_key)
    if not cl.is_for_evaluation(case.status, case.status_checklist):
        raise ForbiddenTransitionError(
            "Case is not open for evaluation",
            case_id=str(case.case_id),
            field_key=field_key,
        )


def _flag(db: Session, case: Case, actor: Actor, field_key: str, message: str) -> Correction:
    existing = _open_correction(db, case, field_key)
    if existing:
        # re-flag: same open instance, new reason
        existing.message = message
        existing.created_by = actor.actor_id
        return existing
    correction = Correction(
        case_id=case.case_id,
        field_key=field_key,
        message=message,
        created_by=actor.actor_id,
        created_at=now_utc(),
    )
    db.add(correction)
    return correction


def flag_field(db: Session, actor: Actor, case_id: Any, field_key: str, message: str) -> Correction:
    _require_staff(actor, case_id)
    key = (field_key or "").strip()
    with _atomic(db):
        case = get_case(db, case_id, for_update=True)
        if not key:
            raise ValidationError("Field key is required", case_id=str(case.case_id))
        _require_for_evaluation(case, key)
        text = require_message(message, case_id=str(case.case_id), field_key=key)

        was_needed = case.needs_correction
        correction = _flag(db, case, actor, key, text)
        case.needs_correction = True
        case.updated_at = now_utc()
        db.flush()
        _record(
            db, case, actor, "correction_requested",
            old={"needs_correction": was_needed},
            new={"needs_correction": True, "field_key": key, "message": text},
        )

    db.refresh(correction)
    _log(case, actor, "CorrectionFlagged", {"field_key": key})
    notifications.dispatch(
        case_id=str(case.case_id),
        event="correction_requested",
        recipient=case.applicant_user_id or case.email,
        title="Application Sent Back for Correction",
        message=notifications.correction_message(case.control_number, [{"field_key": key, "message": text}]),
    )
    return correction


def return_for_compliance(
    db: Session,
    actor: Actor,
    case_id: Any,
    batch: StagedCorrections,
    note: Optional[str] = None,
) -> List[Correction]:
    _require_staff(actor, case_id)
    with _atomic(db):
        case = get_case(db, case_id, for_update=True)
        _require_for_evaluation(case)
        items = batch.validated(case_id=str(case.case_id))

        was_needed = case.needs_correction
        created = [_flag(db, case, actor, item.field_key, item.message) for item in items]
        case.needs_correction = True
        case.correction_note = (note or "").strip() or None
        case.updated_at = now_utc()
        db.flush()
        _record(
            db, case, actor, "correction_requested",
            old={"needs_correction": was_needed},
            new={
                "needs_correction": True,
                "correction_fields": [i.field_key for i in items],
                "correction_note": case.correction_note,
            },
        )

    for c in created:
        db.refresh(c)
    _log(case, actor, "ReturnedForCompliance", {"fields": [i.field_key for i in items]})
    notifications.dispatch(
        case_id=str(case.case_id),
        event="correction_requested",
        recipient=case.applicant_user_id or case.email,
        title="Application Sent Back for Correction",
        message=notifications.correction_message(case.control_number, [i.model_dump() for i in items]),
    )
    return created


def resolve_correction(db: Session, actor: Actor, case_id: Any, field_key: str, now: Optional[datetime] = None) -> Correction:
    _require_staff(actor, case_id)
    with _atomic(db):
        case = get_case(db, case_id, for_update=True)
        correction = _latest_correction(db, case, field_key)
        if correction is None:
            raise NotFoundError("No correction for this field", case_id=str(case.case_id), field_key=field_key)
        if correction.resolved_at is not None:
            return correction
        _require_for_evaluation(case, field_key)

        correction.resolved_at = _utc(now)
        db.flush()
        remaining = (
            db.query(func.count(Correction.correction_id))
            .filter(Correction.case_id == case.case_id, Correction.resolved_at.is_(None))
            .scalar()
        )
        if not remaining:
            case.needs_correction = False
        case.updated_at = now_utc()
        _record(
            db, case, actor, "correction_resolved",
            old={"field_key": field_key, "resolved_at": None},
            new={"field_key": field_key, "resolved_at": correction.resolved_at.isoformat()},
        )

    db.refresh(correction)
    _log(case, actor, "CorrectionResolved", {"field_key": field_key, "open_remaining": remaining})
    return correction


def submit_resubmission(db: Session, actor: Actor, case_id: Any, field_updates: Optional[Dict[str, Any]] = None) -> Case:
    """Applicant answers the open corrections. Corrections stay open until staff verify them."""
    if actor.role != "applicant":
        raise PermissionDeniedError("Only the applicant can resubmit corrections", case_id=case_id)
    updates = dict(field_updates or {})
    with _atomic(db):
        case = get_case(db, case_id, for_update=True)
        if case.applicant_user_id and case.applicant_user_id != actor.actor_id:
            raise PermissionDeniedError("Not your application", case_id=str(case.case_id))
        if case.deleted_at is not None:
            raise InvalidStateError("Case is deleted", case_id=str(case.case_id))
        if not case.needs_correction:
            raise InvalidStateError("No active corrections", case_id=str(case.case_id))

        open_fields = {c.field_key: c for c in case.corrections if c.resolved_at is None}
        for key, value in updates.items():
            if key not in open_fields:
                raise ValidationError(f"{field_label(key)} was not flagged for correction", case_id=str(case.case_id), field_key=key)
            if key not in EDITABLE_FIELDS:
                raise ValidationError(f"{field_label(key)} cannot be changed here", case_id=str(case.case_id), field_key=key)
            setattr(case, key, _clean_field(key, value, str(case.case_id)))
        if "raw_salary" in updates or "salary_currency" in updates:
            if case.raw_salary is not None:
                case.salary = to_usd(case.raw_salary, case.salary_currency or "USD")

        case.needs_correction = False
        case.updated_at = now_utc()
        _record(
            db, case, actor, "correction_resubmitted",
            old={"needs_correction": True, "correction_fields": sorted(open_fields)},
            new={"needs_correction": False, "updated_fields": sorted(updates)},
        )

    db.refresh(case)
    _log(case, actor, "CorrectionResubmitted", {"updated_fields": sorted(updates)})
    for staff_id in sorted({c.created_by for c in open_fields.values() if c.created_by}):
        fields = [k for k, c in open_fields.items() if c.created_by == staff_id]
        notifications.dispatch(
            case_id=str(case.case_id),
            event="correction_resubmitted",
            recipient=staff_id,
            title="Corrections resubmitted",
            message=f"{case.name} resubmitted {', '.join(field_label(f) for f in fields)} ({case.control_number}).",
        )
    return case


def list_corrections(db: Session, case_id: Any, include_resolved: bool = False) -> List[Correction]:
    case = get_case(db, case_id)
    q = db.query(Correction).filter(Correction.case_id == case.case_id)
    if not include_resolved:
        q = q.filter(Correction.resolved_at.is_(None))
    return q.order_by(Correction.created_at.asc()).all()


# Documents

def find_attachments(db: Session, case_id: Any, case_type: str) -> List[Document]:
    return (
        db.query(Document)
        .filter(
            Document.case_id == _parse_case_id(case_id),
            Document.case_type == case_type,
            Document.is_active == True,  # noqa: E712
        )
        .order_by(Document.created_at.asc())
        .all()
    )


def attach_document(db: Session, actor: Actor, case_id: Any, document_type: str, meta: Dict[str, Any]) -> Document:
    doc_type = (document_type or "").strip().lower()
    if not doc_type:
        raise ValidationError("documentType is required", case_id=case_id)
    with _atomic(db):
        case = get_case(db, case_id, for_update=True)
        if case.deleted_at is not None:
            raise InvalidStateError("Case is deleted", case_id=str(case.case_id))
        # one active attachment per type; older uploads stay for audit
        for old in find_attachments(db, case.case_id, case.case_type):
            if old.document_type == doc_type:
                old.is_active = False
        doc = Document(
            case_id=case.case_id,
            case_type=case.case_type,
            document_type=doc_type,
            filename=meta["filename"],
            content_type=meta["content_type"],
            sha256=meta["sha256"],
            storage_uri=meta["storage_uri"],
            size_bytes=meta.get("size_bytes"),
            is_active=True,
            created_at=now_utc(),
        )
        db.add(doc)
        case.updated_at = now_utc()
        db.flush()
        _record(db, case, actor, "document_attached", new={"document_type": doc_type, "filename": doc.filename})

    db.refresh(doc)
    _log(case, actor, "DocumentsAdded", {"document_type": doc_type, "filename": doc.filename})
    return doc


# Soft delete

def soft_delete(db: Session, actor: Actor, case_id: Any, now: Optional[datetime] = None) -> Case:
    _require_staff(actor, case_id)
    with _atomic(db):
        case = get_case(db, case_id, for_update=True)
        sd.check_soft_delete(case.deleted_at, case_id=str(case.case_id))
        case.deleted_at = _utc(now)
        case.updated_at = now_utc()
        _record(db, case, actor, "deleted", old={"deleted_at": None}, new={"deleted_at": case.deleted_at.isoformat()})

    db.refresh(case)
    _log(case, actor, "CaseDeleted", {"label": sd.deleted_label(case.status)})
    return case


def restore(db: Session, actor: Actor, case_id: Any, confirm_token: Optional[str]) -> Case:
    with _atomic(db):
        case = get_case(db, case_id, for_update=True)
        sd.check_restore(case.deleted_at, actor.role, confirm_token, case_id=str(case.case_id))
        old = case.deleted_at.isoformat()
        case.deleted_at = None
        case.updated_at = now_utc()
        _record(db, case, actor, "restored", old={"deleted_at": old}, new={"deleted_at": None})

    db.refresh(case)
    _log(case, actor, "CaseRestored")
    return case


def permanently_delete(db: Session, actor: Actor, case_id: Any, confirm_token: Optional[str]) -> Dict[str, Any]:
    _require_staff(actor, case_id)
    with _atomic(db):
        case = get_case(db, case_id, for_update=True)
        sd.check_permanent_delete(case.deleted_at, confirm_token, case_id=str(case.case_id))
        paths = [d.storage_uri for d in case.documents]
        summary = {
            "caseId": str(case.case_id),
            "controlNumber": case.control_number,
            "documentsRemoved": len(paths),
            "correctionsRemoved": len(case.corrections),
        }
        _record(db, case, actor, "permanently_deleted", old={"control_number": case.control_number}, new=None)
        db.delete(case)

    for path in paths:
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as ex:
            log_event(
                case_id=summary["caseId"],
                status=sd.LifecycleState.PERMANENTLY_REMOVED.value,
                actor="system",
                control_number=summary["controlNumber"],
                event="DocumentFileRemoveFailed",
                extra={"path": path, "error": str(ex)},
            )
    log_event(
        case_id=summary["caseId"],
        status=sd.LifecycleState.PERMANENTLY_REMOVED.value,
        actor=format_actor(actor.role, actor.actor_id),
        control_number=summary["controlNumber"],
        event="CasePermanentlyDeleted",
        extra=summary,
    )
    return summary


def case_history(db: Session, case_id: Any) -> List[CaseEvent]:
    case_uuid = _parse_case_id(case_id)
    events = (
        db.query(CaseEvent)
        .filter(CaseEvent.case_id == case_uuid)
        .order_by(CaseEvent.created_at.asc())
        .all()
    )
    if not events:
        # raises NotFoundError for unknown ids
        get_case(db, case_uuid)
    return events
