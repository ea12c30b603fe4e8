from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Dict, Literal, Any
from pydantic import BaseModel, Field


class CaseCreateIn(BaseModel):
    name: str = Field(min_length=1)
    sex: Literal["male", "female"]
    jobsite: str = Field(min_length=1)
    position: str = Field(min_length=1)
    rawSalary: Optional[Decimal] = None
    salaryCurrency: str = "USD"
    jobType: Optional[Literal["household", "professional"]] = None
    employer: Optional[str] = None
    evaluator: Optional[str] = None
    email: Optional[str] = None
    cellphone: Optional[str] = None
    caseType: str = "direct_hire"
    status: Literal["draft", "pending"] = "pending"

    def to_attributes(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "sex": self.sex,
            "jobsite": self.jobsite,
            "position": self.position,
            "raw_salary": self.rawSalary,
            "salary_currency": self.salaryCurrency,
            "job_type": self.jobType,
            "employer": self.employer,
            "evaluator": self.evaluator,
            "email": self.email,
            "cellphone": self.cellphone,
            "case_type": self.caseType,
            "status": self.status,
        }


class CheckpointOut(BaseModel):
    checked: bool
    timestamp: Optional[datetime] = None


class CaseOut(BaseModel):
    caseId: str
    controlNumber: str
    caseType: str
    name: str
    sex: Optional[str]
    jobType: Optional[str]
    jobsite: Optional[str]
    position: Optional[str]
    employer: Optional[str]
    evaluator: Optional[str]
    salaryUsd: Optional[Decimal]
    rawSalary: Optional[Decimal]
    salaryCurrency: Optional[str]
    status: str
    derivedStatus: Optional[str]
    statusLabel: str
    checklist: Dict[str, CheckpointOut]
    confirmed: bool
    nextCheckpoint: Optional[str]
    forEvaluation: bool
    finished: bool
    needsCorrection: bool
    correctionNote: Optional[str] = None
    createdAt: datetime
    updatedAt: datetime
    deletedAt: Optional[datetime] = None


class DocumentOut(BaseModel):
    docId: str
    documentType: str
    filename: str
    sha256: str
    storageUri: str
    createdAt: datetime
    isActive: bool


class CorrectionOut(BaseModel):
    correctionId: str
    fieldKey: str
    label: str
    message: str
    createdBy: Optional[str]
    createdAt: datetime
    resolvedAt: Optional[datetime] = None
    state: str
    color: Optional[str]
    needsReview: bool
    attachmentPresent: Optional[bool] = None


class CaseDetailOut(BaseModel):
    case: CaseOut
    documents: List[DocumentOut]
    corrections: List[CorrectionOut]


class CasePageOut(BaseModel):
    data: List[CaseOut]
    page: int
    pageSize: int
    total: int
    totalPages: int


class StatusIn(BaseModel):
    checkpoint: str


class FlagIn(BaseModel):
    fieldKey: str
    message: str


class ReturnIn(BaseModel):
    items: List[FlagIn]
    note: Optional[str] = None


class ResubmissionIn(BaseModel):
    fields: Dict[str, Any] = Field(default_factory=dict)


class ConfirmTokenIn(BaseModel):
    confirm: Optional[str] = None


class PermanentDeleteOut(BaseModel):
    caseId: str
    controlNumber: str
    documentsRemoved: int
    correctionsRemoved: int


class EventOut(BaseModel):
    eventId: str
    action: str
    actorId: Optional[str]
    oldValues: Optional[Dict[str, Any]] = None
    newValues: Optional[Dict[str, Any]] = None
    createdAt: datetime


class ControlNumberPreviewOut(BaseModel):
    caseType: str
    controlNumber: str
