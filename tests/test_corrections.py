from datetime import datetime, timezone

import pytest

from case_engine import corrections as corr
from case_engine.errors import ValidationError

NOW = datetime(2025, 3, 1, tzinfo=timezone.utc)


class TestCorrectionState:

    def test_open_until_applicant_resubmits(self):
        assert corr.correction_state(True, None, True) is corr.CorrectionState.OPEN

    def test_needs_review_after_resubmission(self):
        assert corr.correction_state(True, None, False) is corr.CorrectionState.NEEDS_REVIEW
        assert corr.needs_review(None, False)

    def test_resolved_takes_precedence(self):
        assert corr.correction_state(True, NOW, False) is corr.CorrectionState.RESOLVED
        assert corr.correction_state(True, NOW, True) is corr.CorrectionState.RESOLVED
        assert not corr.needs_review(NOW, False)

    def test_unflagged(self):
        assert corr.correction_state(False, None, False) is corr.CorrectionState.UNFLAGGED

    def test_display_colours(self):
        assert corr.STATE_DISPLAY[corr.CorrectionState.OPEN]["color"] == "red"
        assert corr.STATE_DISPLAY[corr.CorrectionState.NEEDS_REVIEW]["color"] == "orange"
        assert corr.STATE_DISPLAY[corr.CorrectionState.RESOLVED]["color"] == "green"


class TestFieldKeys:

    def test_document_fields(self):
        assert corr.is_document_field("document_passport")
        assert corr.document_type_of("document_passport") == "passport"
        assert corr.document_type_of("jobsite") is None

    def test_labels(self):
        assert corr.field_label("jobsite") == "Job Site"
        assert corr.field_label("document_work_visa") == "Work Visa"
        assert corr.field_label("document_birth_certificate") == "Birth Certificate"
        assert corr.field_label("unknown_field") == "Unknown Field"


class TestStagedCorrections:

    def test_stage_is_pure(self):
        empty = corr.StagedCorrections()
        one = empty.stage("jobsite", "wrong city")
        assert empty.is_empty()
        assert [i.field_key for i in one.items] == ["jobsite"]
        assert not one.is_empty()

    def test_restaging_replaces_message(self):
        batch = corr.StagedCorrections().stage("jobsite", "first").stage("position", "x").stage("jobsite", "second")
        items = batch.validated()
        assert [(i.field_key, i.message) for i in items] == [("position", "x"), ("jobsite", "second")]

    def test_empty_batch_rejected(self):
        with pytest.raises(ValidationError):
            corr.StagedCorrections().validated(case_id="c-1")

    def test_blank_message_rejects_whole_batch(self):
        batch = corr.StagedCorrections().stage("jobsite", "wrong city").stage("position", "   ")
        with pytest.raises(ValidationError) as exc:
            batch.validated(case_id="c-1")
        assert exc.value.field_key == "position"
        assert exc.value.case_id == "c-1"

    def test_blank_key_rejected(self):
        batch = corr.StagedCorrections(items=[corr.StagedFlag(field_key=" ", message="m")])
        with pytest.raises(ValidationError):
            batch.validated()

    def test_messages_are_trimmed(self):
        items = corr.StagedCorrections().stage("email", "  typo  ").validated()
        assert items[0].message == "typo"


def test_require_message():
    assert corr.require_message(" ok ") == "ok"
    with pytest.raises(ValidationError):
        corr.require_message("")
    with pytest.raises(ValidationError):
        corr.require_message(None, field_key="name")
