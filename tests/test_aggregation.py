import datetime as dt

import pandas as pd
import pytest

from capplan.pipeline.aggregation import (
    METRIC_COLS,
    derive_gap,
    leaf_metrics,
    metrics_table,
    rollup,
    site_leaves,
    summary,
)
from capplan.pipeline.batch_scheduler import add_batch
from capplan.pipeline.ingest import apply_current_hc

REQ = 6.0518


def test_leaf_metrics_averages_required_over_aht_periods(planned):
    planned.weekly_aht["Billing"]["external"].pop("4")
    leaf = leaf_metrics(planned, "Billing", "EST", "external", ["1", "2", "3", "4"])
    assert leaf["volume"] == 4000.0
    assert leaf["periods_with_aht"] == 3
    assert leaf["required_hc_without_buffer"] == pytest.approx(REQ, abs=1e-4)


def test_leaf_without_any_aht_is_none(planned):
    leaf = leaf_metrics(planned, "Tech", "EST", "external", ["1", "2"])
    assert leaf["required_hc_without_buffer"] is None
    assert leaf["required_hc_with_buffer"] is None
    assert leaf["gap"] is None
    assert leaf["gap_pct"] is None


def test_leaf_for_unknown_row_is_none(planned):
    assert leaf_metrics(planned, "Nope", "EST", "external", ["1"]) is None


def test_derive_gap():
    out = derive_gap({"required_hc_with_buffer": 10.0, "actual_hc": 8.0, "batch_hc": 1.0})
    assert out["gap"] == -2.0
    assert out["gap_pct"] == -20.0
    assert out["production_hc"] == 9.0
    zero = derive_gap({"required_hc_with_buffer": 0.0, "actual_hc": 3.0})
    assert zero["gap_pct"] == 0.0


def test_queue_rollup_sums_timezones(planned):
    rows = {r["queue"]: r for r in summary(planned, "queue", "external")}
    assert rows["Billing"]["required_hc_with_buffer"] == pytest.approx(REQ * 1.5, abs=1e-3)
    assert rows["Billing"]["volume"] == 6000.0
    assert rows["Billing"]["gap_pct"] == pytest.approx(-100.0)
    assert rows["Tech"]["required_hc_with_buffer"] is None


def test_total_rollup(planned):
    [total] = summary(planned, "total")
    assert total["required_hc_with_buffer"] == pytest.approx(REQ * 1.5, abs=1e-3)
    assert total["volume"] == 6000.0


def test_rollup_rejects_unknown_level():
    with pytest.raises(ValueError):
        rollup("region", [])


def test_batches_count_toward_production(planned):
    add_batch(planned, {"queue": "Billing", "type": "external", "timezone": "EST", "start_week": 1, "training_weeks": 0, "ramp_curve": [100], "hc_count": 4})
    leaf = leaf_metrics(planned, "Billing", "EST", "external", ["1", "2"])
    assert leaf["batch_hc"] == 4.0
    assert leaf["production_hc"] == 4.0


def test_site_allocation_by_actual_share(planned):
    apply_current_hc(
        planned,
        {
            "Billing-EST-Austin": {"queue": "Billing", "timezone": "EST", "site": "Austin", "internal": 0, "external": 6},
            "Billing-EST-Dallas": {"queue": "Billing", "timezone": "EST", "site": "Dallas", "internal": 0, "external": 2},
        },
    )
    leaves = {leaf["site"]: leaf for leaf in site_leaves(planned, planned.periods, "external")}
    assert leaves["Austin"]["required_hc_with_buffer"] == pytest.approx(REQ * 0.75, abs=1e-3)
    assert leaves["Dallas"]["actual_hc"] == 2.0
    sites = {r["site"]: r for r in summary(planned, "site", "external")}
    assert set(sites) == {"Austin", "Dallas"}


def test_monthly_table_keeps_missing_requirement_null(planned):
    table = metrics_table(planned, level="queue", grain="month", hc_type="external", today=dt.date(2024, 3, 1))
    assert list(table.columns) == ["queue", "period", "weeks"] + METRIC_COLS
    tech = table[table["queue"] == "Tech"].iloc[0]
    assert tech["period"] == "Jan"
    assert tech["weeks"] == "1,2,3,4"
    assert pd.isna(tech["required_hc_with_buffer"])


def test_weekly_table_has_row_per_week(planned):
    table = metrics_table(planned, level="queue_timezone", grain="week", hc_type="external")
    assert len(table) == 4 * 3
    assert set(table["period"]) == {"W1", "W2", "W3", "W4"}
