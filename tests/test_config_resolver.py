import pytest

from capplan.pipeline.capacity_core import period_requirement
from capplan.pipeline.config_resolver import (
    bulk_update_aht,
    copy_base_to_queue,
    reset_queue_buffer,
    reset_queue_split,
    resolve_aht,
    resolve_assumption,
    resolve_buffer,
    resolve_split,
    split_warning,
    update_buffer,
    update_queue_assumption,
    update_aht,
    update_split,
    update_weekly_global,
)


def test_assumption_precedence(state):
    assert resolve_assumption(state, "Billing", "internal", "npt", 3) == 15.0
    update_weekly_global(state, "internal", "npt", 3, 12)
    assert resolve_assumption(state, "Billing", "internal", "npt", 3) == 12.0
    update_queue_assumption(state, "Billing", "internal", "npt", 3, 8)
    assert resolve_assumption(state, "Billing", "internal", "npt", 3) == 8.0
    # other periods and queues fall through
    assert resolve_assumption(state, "Billing", "internal", "npt", 4) == 15.0
    assert resolve_assumption(state, "Tech", "internal", "npt", 3) == 12.0


def test_explicit_zero_override_is_kept(state):
    update_weekly_global(state, "external", "shrinkage", 1, 25)
    update_queue_assumption(state, "Billing", "external", "shrinkage", 1, 0)
    assert resolve_assumption(state, "Billing", "external", "shrinkage", 1) == 0.0


def test_copy_base_to_queue_fills_all_weeks(state):
    copy_base_to_queue(state, "Billing", "external")
    overrides = state.queue_assumptions["Billing"]["external"]
    assert len(overrides["occupancy"]) == 52
    assert overrides["occupancy"]["52"] == 90.0


def test_missing_aht_is_none(state):
    assert resolve_aht(state, "Billing", "external", 1) is None
    bulk_update_aht(state, "Billing", "external", 1, 3, 7.5)
    assert resolve_aht(state, "Billing", "external", 2) == 7.5
    assert resolve_aht(state, "Billing", "external", "W3") == 7.5
    assert resolve_aht(state, "Billing", "external", 4) is None


def test_blank_aht_edit_clears_the_period(planned):
    update_aht(planned, "Billing", "external", 2, "")
    assert "2" not in planned.weekly_aht["Billing"]["external"]
    row = period_requirement(planned, "Billing", "EST", "external", 2)
    assert row["aht"] is None
    assert row["required_hc"] is None
    assert period_requirement(planned, "Billing", "EST", "external", 1)["aht"] == 10.0


def test_junk_bulk_aht_edit_clears_the_range(planned):
    bulk_update_aht(planned, "Billing", "external", 1, 3, "abc")
    assert planned.weekly_aht["Billing"]["external"] == {"4": 10.0}
    update_aht(planned, "Billing", "external", 4, 0)
    assert resolve_aht(planned, "Billing", "external", 4) == 0.0


def test_split_update_derives_other_side(state):
    assert update_split(state, "Billing", "external", 70) == {"external": 70.0, "internal": 30.0}
    assert update_split(state, "Billing", "internal", 150) == {"external": 0.0, "internal": 100.0}
    assert update_split(state, "Billing", "external", -5) == {"external": 0.0, "internal": 100.0}
    assert resolve_split(state, "Tech") == {"external": 70.0, "internal": 30.0}
    reset_queue_split(state, "Billing")
    assert resolve_split(state, "Billing") == state.global_split


def test_split_rejects_unknown_side(state):
    with pytest.raises(ValueError):
        update_split(state, None, "contractor", 50)


def test_split_warning_for_inconsistent_totals():
    assert split_warning({"external": 70, "internal": 30}) is None
    assert "90" in split_warning({"external": 60, "internal": 30})


def test_buffer_override_and_reset(state):
    assert resolve_buffer(state, "Billing") == 10.0
    assert update_buffer(state, "Billing", 130) == 100.0
    assert resolve_buffer(state, "Billing") == 100.0
    reset_queue_buffer(state, "Billing")
    assert resolve_buffer(state, "Billing") == 10.0
    update_buffer(state, None, 5)
    assert resolve_buffer(state, "Tech") == 5.0
