import itertools
from datetime import datetime, timedelta, timezone

import pytest

from case_engine import checklist as cl
from case_engine.errors import InvalidStateError, UnknownCheckpointError

T0 = datetime(2025, 3, 1, 8, 0, tzinfo=timezone.utc)


def build(stamps: dict) -> dict:
    """checkpoint -> timestamp (None means checked without a timestamp)."""
    out = cl.empty_checklist()
    for key, ts in stamps.items():
        out[key] = {"checked": True, "timestamp": ts.isoformat() if ts else None}
    return out


@pytest.mark.parametrize("order", list(itertools.permutations(range(3))))
def test_derived_status_follows_latest_timestamp_not_definition_order(order):
    keys = ["evaluated", "for_confirmation", "emailed_to_dhad"]
    stamps = {k: T0 + timedelta(hours=offset) for k, offset in zip(keys, order)}
    expected = max(stamps, key=stamps.get)

    assert cl.derived_status_key("pending", build(stamps)) == expected


def test_evaluated_after_for_confirmation_wins():
    checklist = build({
        "for_confirmation": T0,
        "evaluated": T0 + timedelta(minutes=5),
    })
    assert cl.derived_status_key("pending", checklist) == "evaluated"


def test_equal_timestamps_go_to_later_step():
    checklist = build({"evaluated": T0, "emailed_to_dhad": T0, "for_confirmation": T0})
    assert cl.derived_status_key("pending", checklist) == "emailed_to_dhad"


def test_missing_timestamp_ranks_oldest():
    checklist = build({"evaluated": T0, "for_interview": None})
    assert cl.derived_status_key("pending", checklist) == "evaluated"


def test_draft_and_missing_checklist():
    assert cl.derived_status_key("draft", build({"evaluated": T0})) == "draft"
    assert cl.derived_status_key("pending", None) == "pending"
    assert cl.derived_status_key("pending", cl.empty_checklist()) == "pending"


def test_finished_only_when_all_five_checked():
    partial = build({k: T0 for k in cl.CHECKPOINTS[:4]})
    assert not cl.is_finished(partial)
    assert not cl.is_finished(None)

    full = build({k: T0 for k in cl.CHECKPOINTS})
    assert cl.is_finished(full)

    full["some_extra_step"] = {"checked": False, "timestamp": None}
    assert cl.is_finished(full)

    partial["some_extra_step"] = {"checked": True, "timestamp": T0.isoformat()}
    assert not cl.is_finished(partial)


def test_processing_excludes_deleted_and_finished():
    full = build({k: T0 for k in cl.CHECKPOINTS})
    assert cl.is_processing(None, None)
    assert not cl.is_processing(full, None)
    assert not cl.is_processing(None, T0)


def test_for_evaluation_gate():
    assert cl.is_for_evaluation("pending", None)
    assert cl.is_for_evaluation("pending", build({"for_confirmation": T0}))
    assert not cl.is_for_evaluation("pending", build({"evaluated": T0}))
    assert not cl.is_for_evaluation("draft", None)
    assert not cl.is_for_evaluation("approved", None)


def test_next_checkpoint():
    assert cl.next_checkpoint("pending", None) == "evaluated"
    assert cl.next_checkpoint("pending", build({"evaluated": T0})) == "for_confirmation"
    assert cl.next_checkpoint("pending", build({k: T0 for k in cl.CHECKPOINTS})) is None
    assert cl.next_checkpoint("approved", None) is None


def test_labels():
    assert cl.status_label("pending", None) == "Pending"
    assert cl.status_label("pending", build({"emailed_to_dhad": T0})) == "Emailed to DHAD"
    assert cl.status_label("pending", build({k: T0 for k in cl.CHECKPOINTS})) == "Finished"
    assert cl.status_label("draft", None, deleted_at=T0) == "Deleted Draft"
    assert cl.status_label("pending", None, deleted_at=T0) == "Deleted"


def test_advance_initialises_missing_checklist():
    updated = cl.advance(None, "evaluated", now=T0)
    assert set(cl.CHECKPOINTS) <= set(updated)
    assert updated["evaluated"] == {"checked": True, "timestamp": T0.isoformat()}
    assert not updated["for_confirmation"]["checked"]


def test_advance_leaves_input_untouched():
    before = build({"evaluated": T0})
    after = cl.advance(before, "for_confirmation", now=T0 + timedelta(hours=1))
    assert not before["for_confirmation"]["checked"]
    assert after["for_confirmation"]["checked"]
    assert cl.derived_status_key("pending", after) == "for_confirmation"


def test_advance_rejections():
    with pytest.raises(UnknownCheckpointError):
        cl.advance(None, "approved_by_boss")
    with pytest.raises(InvalidStateError):
        cl.advance(build({"evaluated": T0}), "evaluated")
    with pytest.raises(InvalidStateError):
        cl.advance(None, "evaluated", deleted_at=T0)


def test_confirmation_is_a_refinement_of_for_confirmation():
    with pytest.raises(InvalidStateError):
        cl.mark_confirmed(build({"evaluated": T0}), now=T0)

    checklist = cl.mark_confirmed(build({"evaluated": T0, "for_confirmation": T0}), now=T0 + timedelta(days=1))
    assert cl.is_confirmed(checklist)
    # never counted as a checkpoint
    assert cl.derived_status_key("pending", checklist) == "for_confirmation"
    assert cl.next_checkpoint("pending", checklist) == "emailed_to_dhad"
    assert cl.status_label("pending", checklist) == "Confirmed"

    with pytest.raises(InvalidStateError):
        cl.mark_confirmed(checklist)
