from __future__ import annotations

import datetime as dt
from typing import Any, Iterable, Optional

import pandas as pd

from capplan.pipeline.batch_scheduler import batch_hc_for_week, training_hc_for_week
from capplan.pipeline.capacity_core import apply_buffer, average_required_hc, period_requirement
from capplan.pipeline.config_resolver import resolve_buffer
from capplan.pipeline.period_calendar import display_periods
from capplan.pipeline.plan_state import TYPES, PlanState

LEVEL_KEYS = {
    "queue": ("queue",),
    "queue_timezone": ("queue", "timezone"),
    "site": ("site",),
    "total": (),
}
SUM_FIELDS = ("volume", "actual_hc", "training_hc", "batch_hc")
NULLABLE_SUM_FIELDS = ("required_hc_without_buffer", "required_hc_with_buffer")
METRIC_COLS = [
    "volume",
    "required_hc_without_buffer",
    "required_hc_with_buffer",
    "actual_hc",
    "training_hc",
    "batch_hc",
    "production_hc",
    "gap",
    "gap_pct",
]


def _types(hc_type: Optional[str]) -> tuple[str, ...]:
    if hc_type in TYPES:
        return (hc_type,)
    return TYPES


def derive_gap(metrics: dict) -> dict:
    required = metrics.get("required_hc_with_buffer")
    actual = float(metrics.get("actual_hc") or 0.0)
    metrics["production_hc"] = actual + float(metrics.get("batch_hc") or 0.0)
    if required is None:
        metrics["gap"] = None
        metrics["gap_pct"] = None
        return metrics
    gap = actual - required
    metrics["gap"] = gap
    metrics["gap_pct"] = (gap / required * 100.0) if required > 0 else 0.0
    return metrics


def leaf_metrics(
    state: PlanState,
    queue: str,
    timezone: str,
    hc_type: str,
    periods: Iterable[Any],
) -> Optional[dict]:
    """
    Metrics for one (queue, timezone, type) across ``periods``.

    Volume is summed. Required HC is averaged over periods that had AHT and is
    ``None`` when none did. Batch and training HC are averaged over every period.
    """
    if state.forecast_row(queue, timezone) is None:
        return None
    periods = [p for p in periods]
    if not periods:
        return None
    volume = 0.0
    required: list[Optional[float]] = []
    batch_total = 0.0
    training_total = 0.0
    for period in periods:
        req = period_requirement(state, queue, timezone, hc_type, period)
        volume += req["volume"]
        required.append(req["required_hc"])
        batch_total += batch_hc_for_week(state, queue, hc_type, period, timezone)
        training_total += training_hc_for_week(state, queue, hc_type, period, timezone)
    avg_required = average_required_hc(required)
    out = {
        "queue": queue,
        "timezone": timezone,
        "type": hc_type,
        "volume": volume,
        "required_hc_without_buffer": avg_required,
        "required_hc_with_buffer": apply_buffer(avg_required, resolve_buffer(state, queue)),
        "actual_hc": float(state.actual_hc(queue, timezone, hc_type)),
        "training_hc": training_total / len(periods),
        "batch_hc": batch_total / len(periods),
        "periods_with_aht": sum(1 for r in required if r is not None),
    }
    return derive_gap(out)


def queue_timezone_leaves(state: PlanState, periods: Iterable[Any], hc_type: Optional[str] = None) -> list[dict]:
    periods = list(periods)
    leaves = []
    for queue, timezone in state.queue_timezones():
        for t in _types(hc_type):
            metrics = leaf_metrics(state, queue, timezone, t, periods)
            if metrics is not None:
                leaves.append(metrics)
    return leaves


def site_leaves(state: PlanState, periods: Iterable[Any], hc_type: Optional[str] = None) -> list[dict]:
    """
    Queue/timezone metrics spread over the sites staffing them.

    Each site takes the share of demand equal to its share of the
    queue/timezone's actual HC of that type. Actual HC is the site's own.
    """
    periods = list(periods)
    cache: dict[tuple[str, str, str], Optional[dict]] = {}
    entries = [e for e in state.current_hc_entries() if e["site"]]
    leaves = []
    for entry in entries:
        queue, timezone = entry["queue"], entry["timezone"]
        for t in _types(hc_type):
            key = (queue, timezone, t)
            if key not in cache:
                cache[key] = leaf_metrics(state, queue, timezone, t, periods)
            base = cache[key]
            if base is None:
                continue
            total_actual = sum(e[t] for e in entries if e["queue"] == queue and e["timezone"] == timezone)
            share = (entry[t] / total_actual) if total_actual > 0 else 0.0
            leaf = {
                "queue": queue,
                "timezone": timezone,
                "site": entry["site"],
                "type": t,
                "volume": base["volume"] * share,
                "required_hc_without_buffer": None
                if base["required_hc_without_buffer"] is None
                else base["required_hc_without_buffer"] * share,
                "required_hc_with_buffer": None
                if base["required_hc_with_buffer"] is None
                else base["required_hc_with_buffer"] * share,
                "actual_hc": float(entry[t]),
                "training_hc": base["training_hc"] * share,
                "batch_hc": base["batch_hc"] * share,
            }
            leaves.append(derive_gap(leaf))
    return leaves


def rollup(level: str, metrics_by_leaf: Iterable[dict]) -> list[dict]:
    """Sum leaf metrics per ``level`` group and re-derive gap from the sums."""
    if level not in LEVEL_KEYS:
        raise ValueError(f"Unknown rollup level '{level}'.")
    keys = LEVEL_KEYS[level]
    groups: dict[tuple, dict] = {}
    for leaf in metrics_by_leaf:
        group_key = tuple(leaf.get(k) for k in keys)
        agg = groups.get(group_key)
        if agg is None:
            agg = {k: v for k, v in zip(keys, group_key)}
            agg.update({f: 0.0 for f in SUM_FIELDS})
            agg.update({f: None for f in NULLABLE_SUM_FIELDS})
            groups[group_key] = agg
        for field in SUM_FIELDS:
            agg[field] += float(leaf.get(field) or 0.0)
        for field in NULLABLE_SUM_FIELDS:
            value = leaf.get(field)
            if value is not None:
                agg[field] = (agg[field] or 0.0) + float(value)
    return [derive_gap(groups[k]) for k in groups]


def leaves_for(state: PlanState, level: str, periods: Iterable[Any], hc_type: Optional[str] = None) -> list[dict]:
    if level == "site":
        return site_leaves(state, periods, hc_type)
    return queue_timezone_leaves(state, periods, hc_type)


def summary(state: PlanState, level: str = "queue_timezone", hc_type: Optional[str] = None) -> list[dict]:
    return rollup(level, leaves_for(state, level, state.periods, hc_type))


def metrics_table(
    state: PlanState,
    level: str = "queue_timezone",
    grain: str = "week",
    hc_type: Optional[str] = None,
    today: Optional[dt.date] = None,
) -> pd.DataFrame:
    """One row per (group, display period), weeks folded into months when ``grain='month'``."""
    keys = list(LEVEL_KEYS.get(level, ()))
    rows = []
    for bucket in display_periods(state.periods, state.planning_granularity, view=grain, today=today):
        for agg in rollup(level, leaves_for(state, level, bucket["periods"], hc_type)):
            row = {"period": bucket["label"], "weeks": ",".join(bucket["periods"])}
            row.update(agg)
            rows.append(row)
    cols = keys + ["period", "weeks"] + METRIC_COLS
    if not rows:
        return pd.DataFrame(columns=cols)
    return pd.DataFrame(rows)[cols]
