from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy.orm import Query, Session

from app.database import APP_TIMEZONE
from app.models import Case
from case_engine import filters as flt


ROW_FIELDS = [
    "case_id",
    "control_number",
    "case_type",
    "name",
    "sex",
    "job_type",
    "jobsite",
    "position",
    "employer",
    "evaluator",
    "email",
    "salary",
    "status",
    "status_checklist",
    "needs_correction",
    "created_at",
    "deleted_at",
]


def case_to_row(case: Case) -> Dict[str, Any]:
    return {f: getattr(case, f) for f in ROW_FIELDS}


def _prefilter(q: Query, compiled: flt.CompiledQuery) -> Query:
    # narrows in SQL what the in-memory match would reject anyway
    categories = compiled.categories()
    if flt.CATEGORY_DELETED not in categories:
        q = q.filter(Case.deleted_at.is_(None))
    elif categories == {flt.CATEGORY_DELETED}:
        q = q.filter(Case.deleted_at.isnot(None))

    for attr, needle in compiled.contains.items():
        q = q.filter(getattr(Case, attr).ilike(f"%{needle}%"))
    return q


def list_cases(
    db: Session,
    raw_search: Optional[str] = None,
    filters: Optional[Mapping[str, str]] = None,
    toggles: Optional[flt.Toggles] = None,
    page: int = 1,
    page_size: int = 10,
    case_type: Optional[str] = None,
) -> flt.Page:
    """
    One page of cases, newest first.
    Search box filters are overridden by explicit `filters` on the same key.
    Date ranges are portal calendar days (APP_TIMEZONE), the same calendar as control numbers.
    """
    flt.check_paging(page, page_size)

    parsed = flt.parse(raw_search)
    compiled = flt.compile(flt.merge(parsed.filters, filters), parsed.terms, toggles, tz_name=APP_TIMEZONE)

    q = db.query(Case)
    if case_type:
        q = q.filter(Case.case_type == case_type)
    q = _prefilter(q, compiled)

    matched: List[Case] = [c for c in q.order_by(Case.created_at.desc()).all() if compiled.matches(case_to_row(c))]
    return flt.paginate(matched, page, page_size)
