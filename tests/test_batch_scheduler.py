import copy

import pytest

from capplan.pipeline.batch_scheduler import (
    add_batch,
    batch_contribution,
    batch_hc_for_week,
    delete_batch,
    in_training,
    normalize_batch,
    training_hc_for_week,
    update_batch,
)


def _batch(**kw):
    base = {"queue": "Billing", "type": "external", "timezone": "EST", "start_week": 10, "training_weeks": 4, "hc_count": 20}
    base.update(kw)
    return normalize_batch(base)


def test_normalize_batch_defaults_and_aliases():
    batch = normalize_batch({"queue": "Billing", "startWeek": 60, "hcCount": "5", "rampCurve": "50, 100"})
    assert batch["start_week"] == 52
    assert batch["hc_count"] == 5.0
    assert batch["ramp_curve"] == [50.0, 100.0]
    assert batch["training_weeks"] == 4
    assert batch["timezone"] == "CENTRAL"


def test_training_then_ramp():
    batch = _batch()
    assert batch_contribution(batch, 9) == 0.0
    for week in range(10, 14):
        assert in_training(batch, week)
        assert batch_contribution(batch, week) == 0.0
    assert batch_contribution(batch, 14) == 5.0
    assert batch_contribution(batch, 15) == 10.0
    assert batch_contribution(batch, 17) == 20.0
    assert not in_training(batch, 14)


def test_ramp_index_is_clamped():
    batch = _batch()
    # weeks_after 10 vs weeks_after 4
    assert batch_contribution(batch, 13 + 10) == batch_contribution(batch, 13 + 4) == 20.0


def test_monthly_ramp_steps_every_four_weeks():
    batch = _batch(ramp_granularity="month")
    assert batch_contribution(batch, 14) == 5.0
    assert batch_contribution(batch, 17) == 5.0
    assert batch_contribution(batch, 18) == 10.0


def test_year_wrap():
    batch = _batch(start_week=50, training_weeks=4)
    assert in_training(batch, 52)
    assert in_training(batch, 1)
    assert batch_contribution(batch, 2) == 5.0
    assert batch_contribution(batch, 3) == 10.0


def test_queries_are_pure(state):
    add_batch(state, _batch())
    before = copy.deepcopy(state.batches)
    first = batch_hc_for_week(state, "Billing", "external", 15)
    second = batch_hc_for_week(state, "Billing", "external", 15)
    assert first == second == 10.0
    assert state.batches == before


def test_training_hc_and_filters(state):
    add_batch(state, _batch())
    add_batch(state, _batch(timezone="PST", hc_count=10))
    assert training_hc_for_week(state, "Billing", "external", 11) == 30.0
    assert training_hc_for_week(state, "Billing", "external", 11, timezone="PST") == 10.0
    assert training_hc_for_week(state, "Billing", "internal", 11) == 0.0
    assert training_hc_for_week(state, "Tech", "external", 11) == 0.0


def test_month_period_averages_weeks(state):
    add_batch(state, _batch(start_week=1, training_weeks=2, ramp_curve=[100]))
    # Jan = weeks 1-4: two training weeks then two full weeks
    assert batch_hc_for_week(state, "Billing", "external", "Jan") == pytest.approx(10.0)
    assert training_hc_for_week(state, "Billing", "external", "Jan") == pytest.approx(10.0)


def test_batch_crud(state):
    batch = add_batch(state, {"queue": "Billing", "hc_count": 3})
    assert batch["id"] and batch["created_ts"]
    updated = update_batch(state, batch["id"], {"hcCount": 8})
    assert updated["hc_count"] == 8.0
    assert updated["queue"] == "Billing"
    assert update_batch(state, "missing", {"hc_count": 1}) is None
    assert delete_batch(state, batch["id"])
    assert not delete_batch(state, batch["id"])
    assert state.batches == []
