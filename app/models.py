import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

# JSONB on postgres, plain JSON elsewhere (sqlite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


class Case(Base):
    __tablename__ = "cases"

    case_id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    control_number = Column(Text, nullable=False, unique=True)
    case_type = Column(Text, nullable=False, default="direct_hire")

    name = Column(Text, nullable=False)
    sex = Column(Text)
    job_type = Column(Text)
    jobsite = Column(Text)
    position = Column(Text)
    employer = Column(Text)
    evaluator = Column(Text)
    email = Column(Text)
    cellphone = Column(Text)

    salary = Column(Numeric(14, 2))
    raw_salary = Column(Numeric(14, 2))
    salary_currency = Column(Text)

    applicant_user_id = Column(Text)

    status = Column(Text, nullable=False, default="pending")
    # checkpoint -> {"checked": bool, "timestamp": iso str | None}; None until the case enters review
    status_checklist = Column(JSONType)

    needs_correction = Column(Boolean, nullable=False, default=False)
    correction_note = Column(Text)

    created_at = Column(DateTime(timezone=True), nullable=False, default=now_utc)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=now_utc)
    deleted_at = Column(DateTime(timezone=True))

    corrections = relationship(
        "Correction",
        back_populates="case",
        cascade="all, delete-orphan",
        order_by="Correction.created_at",
    )
    documents = relationship("Document", back_populates="case", cascade="all, delete-orphan")


class Correction(Base):
    __tablename__ = "corrections"

    correction_id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    case_id = Column(Uuid(as_uuid=True), ForeignKey("cases.case_id", ondelete="CASCADE"), nullable=False)

    field_key = Column(Text, nullable=False)
    message = Column(Text, nullable=False)
    created_by = Column(Text)

    created_at = Column(DateTime(timezone=True), nullable=False, default=now_utc)
    resolved_at = Column(DateTime(timezone=True))

    case = relationship("Case", back_populates="corrections")

    __table_args__ = (
        # at most one open correction per field
        Index(
            "uq_corrections_open_field",
            "case_id",
            "field_key",
            unique=True,
            postgresql_where=resolved_at.is_(None),
            sqlite_where=resolved_at.is_(None),
        ),
    )


class Document(Base):
    __tablename__ = "documents"

    doc_id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    case_id = Column(Uuid(as_uuid=True), ForeignKey("cases.case_id", ondelete="CASCADE"), nullable=False)
    case_type = Column(Text, nullable=False, default="direct_hire")

    created_at = Column(DateTime(timezone=True), nullable=False, default=now_utc)

    document_type = Column(Text, nullable=False)
    filename = Column(Text, nullable=False)
    content_type = Column(Text, nullable=False)
    sha256 = Column(Text, nullable=False)
    storage_uri = Column(Text, nullable=False)

    size_bytes = Column(Integer)

    is_active = Column(Boolean, nullable=False, default=True)

    case = relationship("Case", back_populates="documents")


class CaseEvent(Base):
    __tablename__ = "case_events"

    event_id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    # no FK: history outlives a permanently removed case
    case_id = Column(Uuid(as_uuid=True), nullable=False, index=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=now_utc)

    actor_id = Column(Text)
    action = Column(Text, nullable=False)
    old_values = Column(JSONType)
    new_values = Column(JSONType)


class ControlNumberSequence(Base):
    __tablename__ = "control_number_sequences"

    sequence_id = Column(Integer, primary_key=True, autoincrement=True)
    case_type = Column(Text, nullable=False)
    # "YYYY-MM" for the monthly counter, "YYYY" for the yearly one
    period = Column(Text, nullable=False)
    last_value = Column(Integer, nullable=False, default=0)

    __table_args__ = (UniqueConstraint("case_type", "period", name="uq_control_number_period"),)
