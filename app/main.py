from __future__ import annotations

import hashlib
import os
import uuid
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional, Set

from fastapi import (
    FastAPI,
    Depends,
    UploadFile,
    File,
    Form,
    Header,
    Query,
    Request,
)
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session

from app import queries, workflow
from app.database import UPLOAD_DIR, engine, get_db
from app.models import Base, Case, CaseEvent, Correction, Document
from app.schemas import (
    CaseCreateIn,
    CaseDetailOut,
    CaseOut,
    CasePageOut,
    CheckpointOut,
    ConfirmTokenIn,
    ControlNumberPreviewOut,
    CorrectionOut,
    DocumentOut,
    EventOut,
    FlagIn,
    PermanentDeleteOut,
    ResubmissionIn,
    ReturnIn,
    StatusIn,
)
from app.workflow import Actor
from case_engine import checklist as cl
from case_engine import corrections as corr
from case_engine import filters as flt
from case_engine.errors import (
    CaseError,
    ConfirmationMismatchError,
    ForbiddenTransitionError,
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)
    yield


app = FastAPI(title="Case Processing Backend", lifespan=lifespan)


HTTP_STATUS_BY_ERROR = {
    NotFoundError: 404,
    InvalidStateError: 409,
    ForbiddenTransitionError: 409,
    ValidationError: 422,
    ConfirmationMismatchError: 400,
    PermissionDeniedError: 403,
}


def http_status_for(exc: CaseError) -> int:
    for klass in type(exc).__mro__:
        if klass in HTTP_STATUS_BY_ERROR:
            return HTTP_STATUS_BY_ERROR[klass]
    return 400


@app.exception_handler(CaseError)
async def case_error_handler(request: Request, exc: CaseError):
    return JSONResponse(status_code=http_status_for(exc), content=exc.to_dict())


def get_actor(
    x_actor_id: str = Header(...),
    x_actor_role: str = Header("applicant"),
) -> Actor:
    return Actor(actor_id=x_actor_id, role=x_actor_role.strip().lower())


@app.get("/health/db")
def health_db(db: Session = Depends(get_db)):
    db.execute(text("SELECT 1"))
    return {"ok": True}


def compute_sha256(data: bytes) -> str:
    h = hashlib.sha256()
    h.update(data)
    return h.hexdigest()


def save_upload(file: UploadFile) -> Dict[str, Any]:
    raw = file.file.read()
    sha = compute_sha256(raw)
    os.makedirs(UPLOAD_DIR, exist_ok=True)
    safe_name = f"{uuid.uuid4()}_{file.filename}"
    path = os.path.join(UPLOAD_DIR, safe_name)
    with open(path, "wb") as f:
        f.write(raw)
    return {
        "filename": file.filename,
        "content_type": file.content_type or "application/octet-stream",
        "sha256": sha,
        "storage_uri": path,
        "size_bytes": len(raw),
    }


def case_to_out(c: Case) -> CaseOut:
    checklist = c.status_checklist
    return CaseOut(
        caseId=str(c.case_id),
        controlNumber=c.control_number,
        caseType=c.case_type,
        name=c.name,
        sex=c.sex,
        jobType=c.job_type,
        jobsite=c.jobsite,
        position=c.position,
        employer=c.employer,
        evaluator=c.evaluator,
        salaryUsd=c.salary,
        rawSalary=c.raw_salary,
        salaryCurrency=c.salary_currency,
        status=c.status,
        derivedStatus=cl.listing_status_key(c.status, checklist, c.deleted_at),
        statusLabel=cl.status_label(c.status, checklist, c.deleted_at),
        checklist={
            key: CheckpointOut(**cl.checkpoint_state(checklist, key).model_dump())
            for key in cl.CHECKPOINTS
        },
        confirmed=cl.is_confirmed(checklist),
        nextCheckpoint=cl.next_checkpoint(c.status, checklist),
        forEvaluation=c.deleted_at is None and cl.is_for_evaluation(c.status, checklist),
        finished=cl.is_finished(checklist),
        needsCorrection=c.needs_correction,
        correctionNote=c.correction_note,
        createdAt=c.created_at,
        updatedAt=c.updated_at,
        deletedAt=c.deleted_at,
    )


def doc_to_out(d: Document) -> DocumentOut:
    return DocumentOut(
        docId=str(d.doc_id),
        documentType=d.document_type,
        filename=d.filename,
        sha256=d.sha256,
        storageUri=d.storage_uri,
        createdAt=d.created_at,
        isActive=d.is_active,
    )


def correction_to_out(c: Correction, case_needs_correction: bool, attached_types: Set[str]) -> CorrectionOut:
    state = corr.correction_state(True, c.resolved_at, case_needs_correction)
    doc_type = corr.document_type_of(c.field_key)
    return CorrectionOut(
        correctionId=str(c.correction_id),
        fieldKey=c.field_key,
        label=corr.field_label(c.field_key),
        message=c.message,
        createdBy=c.created_by,
        createdAt=c.created_at,
        resolvedAt=c.resolved_at,
        state=state.value,
        color=corr.STATE_DISPLAY[state]["color"],
        needsReview=corr.needs_review(c.resolved_at, case_needs_correction),
        attachmentPresent=(doc_type in attached_types) if doc_type is not None else None,
    )


def corrections_out(db: Session, case: Case, rows: List[Correction]) -> List[CorrectionOut]:
    attached = {d.document_type for d in workflow.find_attachments(db, case.case_id, case.case_type)}
    return [correction_to_out(c, case.needs_correction, attached) for c in rows]


def event_to_out(e: CaseEvent) -> EventOut:
    return EventOut(
        eventId=str(e.event_id),
        action=e.action,
        actorId=e.actor_id,
        oldValues=e.old_values,
        newValues=e.new_values,
        createdAt=e.created_at,
    )


@app.post("/api/cases", response_model=CaseOut)
def create_case(body: CaseCreateIn, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    case = workflow.create_case(db, actor, body.to_attributes())
    return case_to_out(case)


@app.get("/api/cases", response_model=CasePageOut)
def list_cases(
    search: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    jobsite: Optional[str] = Query(None),
    position: Optional[str] = Query(None),
    evaluator: Optional[str] = Query(None),
    sex: Optional[str] = Query(None),
    jobType: Optional[str] = Query(None),
    dateRange: Optional[str] = Query(None),
    caseType: Optional[str] = Query(None),
    includeDeleted: bool = Query(False),
    includeFinished: bool = Query(False),
    includeProcessing: bool = Query(False),
    page: int = Query(1),
    pageSize: int = Query(10),
    db: Session = Depends(get_db),
):
    panel = {
        "status": status,
        "jobsite": jobsite,
        "position": position,
        "evaluator": evaluator,
        "sex": sex,
        "job_type": jobType,
        "date_range": dateRange,
    }
    result = queries.list_cases(
        db,
        raw_search=search,
        filters=panel,
        toggles=flt.Toggles(
            include_deleted=includeDeleted,
            include_finished=includeFinished,
            include_processing=includeProcessing,
        ),
        page=page,
        page_size=pageSize,
        case_type=caseType,
    )
    return CasePageOut(
        data=[case_to_out(c) for c in result.data],
        page=result.page,
        pageSize=result.page_size,
        total=result.total,
        totalPages=result.total_pages,
    )


@app.get("/api/cases/{caseId}", response_model=CaseDetailOut)
def get_case(caseId: str, db: Session = Depends(get_db)):
    case = workflow.get_case(db, caseId)
    docs = workflow.find_attachments(db, case.case_id, case.case_type)
    rows = workflow.list_corrections(db, case.case_id, include_resolved=True)
    return CaseDetailOut(
        case=case_to_out(case),
        documents=[doc_to_out(d) for d in docs],
        corrections=corrections_out(db, case, rows),
    )


@app.post("/api/cases/{caseId}/status", response_model=CaseOut)
def advance_status(caseId: str, body: StatusIn, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    return case_to_out(workflow.advance_status(db, actor, caseId, body.checkpoint))


@app.post("/api/cases/{caseId}/confirmation", response_model=CaseOut)
def confirm(caseId: str, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    return case_to_out(workflow.confirm_for_confirmation(db, actor, caseId))


@app.get("/api/cases/{caseId}/corrections", response_model=List[CorrectionOut])
def list_corrections(caseId: str, includeResolved: bool = Query(False), db: Session = Depends(get_db)):
    case = workflow.get_case(db, caseId)
    rows = workflow.list_corrections(db, case.case_id, include_resolved=includeResolved)
    return corrections_out(db, case, rows)


@app.post("/api/cases/{caseId}/corrections", response_model=CorrectionOut)
def flag_field(caseId: str, body: FlagIn, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    c = workflow.flag_field(db, actor, caseId, body.fieldKey, body.message)
    case = workflow.get_case(db, caseId)
    return corrections_out(db, case, [c])[0]


@app.post("/api/cases/{caseId}/corrections/return", response_model=List[CorrectionOut])
def return_for_compliance(caseId: str, body: ReturnIn, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    batch = corr.StagedCorrections()
    for item in body.items:
        batch = batch.stage(item.fieldKey, item.message)
    rows = workflow.return_for_compliance(db, actor, caseId, batch, note=body.note)
    case = workflow.get_case(db, caseId)
    return corrections_out(db, case, rows)


@app.post("/api/cases/{caseId}/corrections/{fieldKey}/resolve", response_model=CorrectionOut)
def resolve_correction(caseId: str, fieldKey: str, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    c = workflow.resolve_correction(db, actor, caseId, fieldKey)
    case = workflow.get_case(db, caseId)
    return corrections_out(db, case, [c])[0]


@app.post("/api/cases/{caseId}/resubmission", response_model=CaseOut)
def resubmit(caseId: str, body: ResubmissionIn, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    return case_to_out(workflow.submit_resubmission(db, actor, caseId, body.fields))


@app.post("/api/cases/{caseId}/documents", response_model=DocumentOut)
def add_document(
    caseId: str,
    documentType: str = Form(...),
    file: UploadFile = File(...),
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    # existence check before anything is written to disk
    workflow.get_case(db, caseId)
    meta = save_upload(file)
    return doc_to_out(workflow.attach_document(db, actor, caseId, documentType, meta))


@app.delete("/api/cases/{caseId}", response_model=CaseOut)
def soft_delete(caseId: str, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    return case_to_out(workflow.soft_delete(db, actor, caseId))


@app.post("/api/cases/{caseId}/restore", response_model=CaseOut)
def restore(caseId: str, body: ConfirmTokenIn, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    return case_to_out(workflow.restore(db, actor, caseId, body.confirm))


@app.post("/api/cases/{caseId}/permanent-delete", response_model=PermanentDeleteOut)
def permanent_delete(caseId: str, body: ConfirmTokenIn, actor: Actor = Depends(get_actor), db: Session = Depends(get_db)):
    return PermanentDeleteOut(**workflow.permanently_delete(db, actor, caseId, body.confirm))


@app.get("/api/cases/{caseId}/history", response_model=List[EventOut])
def case_history(caseId: str, db: Session = Depends(get_db)):
    return [event_to_out(e) for e in workflow.case_history(db, caseId)]


@app.get("/api/control-numbers/preview", response_model=ControlNumberPreviewOut)
def preview_control_number(caseType: str = Query("direct_hire"), db: Session = Depends(get_db)):
    return ControlNumberPreviewOut(
        caseType=caseType,
        controlNumber=workflow.preview_control_number(db, caseType),
    )
