from __future__ import annotations

from datetime import datetime
from typing import Dict, NamedTuple, Optional, Tuple

from case_engine.errors import ValidationError


class NumberFormat(NamedTuple):
    prefix: str
    suffix: Optional[str]
    delimiter: str


# keyed by case subtype
CONTROL_NUMBER_FORMATS: Dict[str, NumberFormat] = {
    "direct_hire": NumberFormat("DHPSW", "ROIVA", "-"),
    "watchlisted_employer": NumberFormat("WE", None, " "),
    "seafarer_position": NumberFormat("SP", None, "-"),
    "non_compliant_country": NumberFormat("NCC", None, " "),
    "no_verified_contract": NumberFormat("NVEC", None, "-"),
    "for_assessment_country": NumberFormat("FAC", None, " "),
    "critical_skill": NumberFormat("CS", None, "-"),
    "watchlisted_similar_name": NumberFormat("WSN", None, "-"),
    "balik_manggagawa": NumberFormat("BM", None, "-"),
}


def number_format(case_type: str) -> NumberFormat:
    fmt = CONTROL_NUMBER_FORMATS.get(case_type)
    if fmt is None:
        raise ValidationError(f"Unknown case type: {case_type}")
    return fmt


def period_keys(now: datetime) -> Tuple[str, str]:
    """(monthly, yearly) counter keys for the calendar period containing `now`."""
    return f"{now.year:04d}-{now.month:02d}", f"{now.year:04d}"


def month_bounds(now: datetime) -> Tuple[datetime, datetime]:
    start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if start.month == 12:
        end = start.replace(year=start.year + 1, month=1)
    else:
        end = start.replace(month=start.month + 1)
    return start, end


def year_bounds(now: datetime) -> Tuple[datetime, datetime]:
    start = now.replace(month=1, day=1, hour=0, minute=0, second=0, microsecond=0)
    return start, start.replace(year=start.year + 1)


def format_control_number(case_type: str, now: datetime, monthly_seq: int, yearly_seq: int) -> str:
    fmt = number_format(case_type)
    head = fmt.prefix if not fmt.suffix else f"{fmt.prefix}{fmt.delimiter}{fmt.suffix}"
    return f"{head}{fmt.delimiter}{now.year:04d}-{now.month:02d}{now.day:02d}-{monthly_seq:03d}-{yearly_seq:03d}"
