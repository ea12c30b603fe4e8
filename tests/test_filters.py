from datetime import date, datetime, timezone

import pytest

from case_engine import checklist as cl
from case_engine import filters as flt
from case_engine.errors import ValidationError

T0 = datetime(2025, 3, 1, 8, 0, tzinfo=timezone.utc)
FULL = {k: {"checked": True, "timestamp": T0.isoformat()} for k in cl.CHECKPOINTS}


def row(**overrides):
    base = {
        "name": "MARIA SANTOS",
        "control_number": "DHPSW-ROIVA-2025-0301-001-001",
        "sex": "female",
        "job_type": "household",
        "jobsite": "DUBAI, UAE",
        "position": "NURSE",
        "employer": "MEDICLINIC",
        "evaluator": "ANA REYES",
        "email": "maria@example.com",
        "salary": "1500.00",
        "status": "pending",
        "status_checklist": None,
        "created_at": T0,
        "deleted_at": None,
    }
    base.update(overrides)
    return base


class TestParse:

    def test_round_trip_example(self):
        parsed = flt.parse("jobsite:Dubai urgent position:nurse")
        assert parsed.filters == {"jobsite": "dubai", "position": "nurse"}
        assert parsed.terms == ["urgent"]

    def test_commas_and_blank_input(self):
        assert flt.parse("a, b,,c").terms == ["a", "b", "c"]
        assert flt.parse(None).filters == {}
        assert flt.parse("   ").terms == []

    def test_value_may_contain_colons(self):
        assert flt.parse("date_range:2025-01-01|2025-01-31").filters == {"date_range": "2025-01-01|2025-01-31"}

    def test_merge_later_sets_win(self):
        merged = flt.merge({"jobsite": "dubai", "sex": "male"}, {"jobsite": "Riyadh", "position": ""}, None)
        assert merged == {"jobsite": "riyadh", "sex": "male"}


class TestCompile:

    def test_unknown_keys_become_free_text(self):
        q = flt.compile({"colour": "blue", "jobsite": "dubai"}, ["urgent"])
        assert q.contains == {"jobsite": "dubai"}
        assert q.text_terms == ["urgent", "blue"]

    def test_control_alias(self):
        q = flt.compile({"control": "0301-001"}, [])
        assert q.contains == {"control_number": "0301-001"}

    def test_date_range(self):
        q = flt.compile({"date_range": "2025-01-01|2025-01-31"}, [])
        assert (q.date_from, q.date_to) == (date(2025, 1, 1), date(2025, 1, 31))
        q = flt.compile({"date_range": "|2025-01-31"}, [])
        assert q.date_from is None

    @pytest.mark.parametrize("raw", ["yesterday|today", "2025-02-01|2025-01-01"])
    def test_malformed_date_range(self, raw):
        with pytest.raises(ValidationError):
            flt.compile({"date_range": raw}, [])

    def test_status_filter_opts_category_in(self):
        q = flt.compile({"status": "deleted"}, [])
        assert q.categories() == {flt.CATEGORY_DELETED}
        q = flt.compile({"status": "finished"}, [], flt.Toggles(include_processing=True))
        assert q.categories() == {flt.CATEGORY_FINISHED, flt.CATEGORY_PROCESSING}


class TestMatches:

    def test_all_false_toggles_equal_default_processing(self):
        rows = [
            row(name="ACTIVE"),
            row(name="GONE", deleted_at=T0),
            row(name="DONE", status_checklist=FULL),
        ]
        explicit = flt.compile({}, [], flt.Toggles(include_deleted=False, include_finished=False, include_processing=False))
        default = flt.compile({}, [])
        assert [r["name"] for r in rows if explicit.matches(r)] == ["ACTIVE"]
        assert [r["name"] for r in rows if default.matches(r)] == ["ACTIVE"]

    def test_toggle_union(self):
        rows = [row(name="ACTIVE"), row(name="GONE", deleted_at=T0), row(name="DONE", status_checklist=FULL)]
        q = flt.compile({}, [], flt.Toggles(include_deleted=True, include_finished=True))
        assert [r["name"] for r in rows if q.matches(r)] == ["GONE", "DONE"]

    def test_contains_and_equals(self):
        q = flt.compile({"jobsite": "dub", "sex": "female"}, [])
        assert q.matches(row())
        assert not q.matches(row(sex="male"))
        assert not q.matches(row(jobsite="RIYADH"))
        # equality, not substring
        assert not flt.compile({"sex": "fem"}, []).matches(row())

    def test_status_uses_derived_state(self):
        checklist = cl.advance(None, "evaluated", now=T0)
        checklist = cl.advance(checklist, "for_confirmation", now=T0.replace(hour=9))
        r = row(status_checklist=checklist)
        assert flt.compile({"status": "for_confirmation"}, []).matches(r)
        assert flt.compile({"status": "for confirmation"}, []).matches(r)
        assert not flt.compile({"status": "evaluated"}, []).matches(r)
        assert flt.compile({"status": "evaluated,for_confirmation"}, []).matches(r)

    def test_status_finished_and_deleted(self):
        assert flt.compile({"status": "finished"}, []).matches(row(status_checklist=FULL))
        assert flt.compile({"status": "deleted"}, []).matches(row(deleted_at=T0))
        assert not flt.compile({"status": "deleted"}, []).matches(row())

    def test_date_bounds_inclusive(self):
        q = flt.compile({"date_range": "2025-03-01|2025-03-01"}, [])
        assert q.matches(row())
        assert not q.matches(row(created_at=datetime(2025, 3, 2, tzinfo=timezone.utc)))
        # naive values from sqlite are read as UTC
        assert q.matches(row(created_at=datetime(2025, 3, 1, 23, 59)))

    def test_date_range_uses_local_calendar(self):
        # 07:30 on 2 March in Manila is still 1 March in UTC
        early = row(created_at=datetime(2025, 3, 1, 23, 30, tzinfo=timezone.utc))
        march_2 = {"date_range": "2025-03-02|2025-03-02"}
        assert flt.compile(march_2, [], tz_name="Asia/Manila").matches(early)
        assert not flt.compile(march_2, []).matches(early)
        assert not flt.compile({"date_range": "2025-03-01|2025-03-01"}, [], tz_name="Asia/Manila").matches(early)

    def test_free_text_hits_every_haystack_field(self):
        assert flt.compile({}, ["mediclinic"]).matches(row())
        assert flt.compile({}, ["ana", "nurse"]).matches(row())
        assert flt.compile({}, ["pending"]).matches(row())
        assert not flt.compile({}, ["nurse", "engineer"]).matches(row())


@pytest.mark.parametrize(
    "checklist, deleted_at, expected",
    [
        (None, None, flt.CATEGORY_PROCESSING),
        ({"evaluated": {"checked": True, "timestamp": T0.isoformat()}}, None, flt.CATEGORY_PROCESSING),
        (FULL, None, flt.CATEGORY_FINISHED),
        (FULL, T0, flt.CATEGORY_DELETED),
        (None, T0, flt.CATEGORY_DELETED),
    ],
)
def test_category_of(checklist, deleted_at, expected):
    assert flt.category_of(checklist, deleted_at) == expected


class TestPaginate:

    def test_pages(self):
        page = flt.paginate(list(range(23)), page=3, page_size=10)
        assert page.data == [20, 21, 22]
        assert (page.total, page.total_pages) == (23, 3)

    def test_page_past_the_end_is_empty(self):
        page = flt.paginate(list(range(5)), page=4, page_size=10)
        assert page.data == []
        assert page.total == 5

    def test_empty(self):
        page = flt.paginate([], 1, 10)
        assert (page.total, page.total_pages) == (0, 0)

    @pytest.mark.parametrize("page,size", [(0, 10), (1, 0), (1, 501)])
    def test_invalid_paging(self, page, size):
        with pytest.raises(ValidationError):
            flt.paginate([], page, size)
