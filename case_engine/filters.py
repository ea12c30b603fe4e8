from __future__ import annotations

import math
import re
from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple

from pydantic import BaseModel, Field

from case_engine import checklist as cl
from case_engine import soft_delete as sd
from case_engine.errors import ValidationError


TOKEN_SPLIT = re.compile(r"[\s,]+")
FILTER_TOKEN = re.compile(r"^([A-Za-z_]+):(.+)$")

# filter key -> attribute, substring match
CONTAINS_KEYS: Dict[str, str] = {
    "jobsite": "jobsite",
    "position": "position",
    "evaluator": "evaluator",
    "employer": "employer",
    "name": "name",
    "control_number": "control_number",
    "control": "control_number",
}

# filter key -> attribute, exact match
EQUALS_KEYS: Dict[str, str] = {
    "sex": "sex",
    "job_type": "job_type",
}

DATE_KEYS = {"date_range", "date"}

HAYSTACK_FIELDS = [
    "name",
    "control_number",
    "sex",
    "job_type",
    "jobsite",
    "position",
    "employer",
    "evaluator",
    "email",
    "salary",
]

CATEGORY_DELETED = "deleted"
CATEGORY_FINISHED = "finished"
CATEGORY_PROCESSING = "processing"

MAX_PAGE_SIZE = 500


class ParsedSearch(BaseModel):
    filters: Dict[str, str] = Field(default_factory=dict)
    terms: List[str] = Field(default_factory=list)


class Toggles(BaseModel):
    include_deleted: bool = False
    include_finished: bool = False
    include_processing: bool = False


def parse(raw: Optional[str]) -> ParsedSearch:
    """
    Split a search box string into key:value filters and free-text terms.
    "jobsite:Dubai urgent" -> filters={"jobsite": "dubai"}, terms=["urgent"]
    """
    filters: Dict[str, str] = {}
    terms: List[str] = []
    for token in TOKEN_SPLIT.split((raw or "").strip()):
        if not token:
            continue
        m = FILTER_TOKEN.match(token)
        if m:
            filters[m.group(1).lower()] = m.group(2).lower()
        else:
            terms.append(token.lower())
    return ParsedSearch(filters=filters, terms=terms)


def merge(*filter_sets: Optional[Mapping[str, str]]) -> Dict[str, str]:
    """Later sets override earlier ones on key collision."""
    merged: Dict[str, str] = {}
    for fs in filter_sets:
        for k, v in (fs or {}).items():
            if v is None or str(v).strip() == "":
                continue
            merged[str(k).lower()] = str(v).strip().lower()
    return merged


def _norm_status(value: str) -> str:
    return re.sub(r"[\s\-]+", "_", value.strip().lower())


def _parse_day(value: str, raw: str) -> Optional[date]:
    value = value.strip()
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise ValidationError(f"Malformed date range: {raw}")


def _parse_date_range(raw: str) -> Tuple[Optional[date], Optional[date]]:
    start, _, end = raw.partition("|")
    date_from = _parse_day(start, raw)
    date_to = _parse_day(end, raw)
    if date_from and date_to and date_from > date_to:
        raise ValidationError(f"Malformed date range: {raw}")
    return date_from, date_to


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value.astimezone(timezone.utc)


class CompiledQuery(BaseModel):
    contains: Dict[str, str] = Field(default_factory=dict)
    equals: Dict[str, str] = Field(default_factory=dict)
    statuses: List[str] = Field(default_factory=list)
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    text_terms: List[str] = Field(default_factory=list)
    include_deleted: bool = False
    include_finished: bool = False
    include_processing: bool = False
    # calendar used to read `created_at` as a day
    tz_name: str = "UTC"

    def categories(self) -> Set[str]:
        selected = set()
        if self.include_deleted:
            selected.add(CATEGORY_DELETED)
        if self.include_finished:
            selected.add(CATEGORY_FINISHED)
        if self.include_processing:
            selected.add(CATEGORY_PROCESSING)
        return selected or {CATEGORY_PROCESSING}

    def matches(self, row: Mapping[str, Any]) -> bool:
        status = row.get("status")
        checklist = row.get("status_checklist")
        deleted_at = row.get("deleted_at")

        if category_of(checklist, deleted_at) not in self.categories():
            return False

        for attr, needle in self.contains.items():
            if needle not in str(row.get(attr) or "").lower():
                return False
        for attr, wanted in self.equals.items():
            if str(row.get(attr) or "").lower() != wanted:
                return False

        if self.statuses:
            candidates = {
                cl.listing_status_key(status, checklist, deleted_at),
                cl.derived_status_key(status, checklist),
                status,
                _norm_status(cl.status_label(status, checklist, deleted_at)),
            }
            if not any(s in candidates for s in self.statuses):
                return False

        if self.date_from or self.date_to:
            created = _as_utc(row.get("created_at"))
            if created is None:
                return False
            day = created.astimezone(ZoneInfo(self.tz_name)).date()
            if self.date_from and day < self.date_from:
                return False
            if self.date_to and day > self.date_to:
                return False

        if self.text_terms:
            hay = haystack(row)
            if not all(term in hay for term in self.text_terms):
                return False

        return True


def category_of(checklist: Optional[Dict[str, Any]], deleted_at: Optional[datetime]) -> str:
    if sd.lifecycle_state(deleted_at) is sd.LifecycleState.DELETED:
        return CATEGORY_DELETED
    if cl.is_processing(checklist, deleted_at):
        return CATEGORY_PROCESSING
    return CATEGORY_FINISHED


def haystack(row: Mapping[str, Any]) -> str:
    status = row.get("status")
    checklist = row.get("status_checklist")
    deleted_at = row.get("deleted_at")
    parts = [str(row.get(f)) for f in HAYSTACK_FIELDS if row.get(f) not in (None, "")]
    parts.append(str(cl.derived_status_key(status, checklist) or ""))
    parts.append(str(cl.listing_status_key(status, checklist, deleted_at) or ""))
    parts.append(cl.status_label(status, checklist, deleted_at))
    return " ".join(parts).lower()


def compile(
    filters: Optional[Mapping[str, str]],
    terms: Optional[List[str]],
    toggles: Optional[Toggles] = None,
    tz_name: str = "UTC",
) -> CompiledQuery:
    """`date_range` days are read in the `tz_name` calendar."""
    toggles = toggles or Toggles()
    q = CompiledQuery(
        tz_name=tz_name,
        include_deleted=toggles.include_deleted,
        include_finished=toggles.include_finished,
        include_processing=toggles.include_processing,
        text_terms=[t.lower() for t in (terms or []) if t],
    )

    for key, value in (filters or {}).items():
        key = key.lower()
        value = str(value).strip().lower()
        if not value:
            continue
        if key == "status":
            q.statuses = [_norm_status(v) for v in value.split(",") if v.strip()]
        elif key in CONTAINS_KEYS:
            q.contains[CONTAINS_KEYS[key]] = value
        elif key in EQUALS_KEYS:
            q.equals[EQUALS_KEYS[key]] = value
        elif key in DATE_KEYS:
            q.date_from, q.date_to = _parse_date_range(value)
        else:
            # unknown keys degrade to free text
            q.text_terms.append(value)

    # an explicit deleted/finished status opts that category in for this query
    if CATEGORY_DELETED in q.statuses:
        q.include_deleted = True
    if CATEGORY_FINISHED in q.statuses:
        q.include_finished = True
    return q


class Page(BaseModel):
    data: List[Any]
    page: int
    page_size: int
    total: int
    total_pages: int


def check_paging(page: int, page_size: int) -> None:
    if page < 1:
        raise ValidationError("page must be >= 1")
    if page_size < 1 or page_size > MAX_PAGE_SIZE:
        raise ValidationError(f"page_size must be between 1 and {MAX_PAGE_SIZE}")


def paginate(rows: List[Any], page: int, page_size: int) -> Page:
    check_paging(page, page_size)
    total = len(rows)
    start = (page - 1) * page_size
    return Page(
        data=rows[start:start + page_size],
        page=page,
        page_size=page_size,
        total=total,
        total_pages=math.ceil(total / page_size) if total else 0,
    )
