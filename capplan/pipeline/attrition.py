from __future__ import annotations

from typing import Any, Iterable, Optional

import pandas as pd

from capplan.pipeline.plan_state import TYPES, PlanState, period_key


def projected_hc(starting_hc: float, weekly_rate_pct: float, week: int) -> float:
    """HC left in ``week`` after compounding the weekly rate; week 1 has no decay."""
    hc = float(starting_hc or 0.0)
    factor = 1 - float(weekly_rate_pct or 0.0) / 100.0
    for _ in range(1, int(week)):
        hc *= factor
    return hc


def update_attrition(state: PlanState, queue: str, hc_type: str, week: Any, value: Any) -> None:
    try:
        leavers = int(float(value))
    except (TypeError, ValueError):
        leavers = 0
    per_queue = state.attrition_data.setdefault(queue, {})
    per_queue.setdefault(hc_type, {})[period_key(week)] = leavers


def attrition_for_week(
    state: PlanState, queue: str, hc_type: str, week: Any, total_hc: Optional[float] = None
) -> float:
    """Queue-level leavers plus, when ``total_hc`` is given, the planned flat % of it."""
    leavers = ((state.attrition_data.get(queue) or {}).get(hc_type) or {}).get(period_key(week)) or 0
    planned = 0.0
    if total_hc:
        planned = float(total_hc) * float(state.planned_attrition.get(hc_type) or 0.0) / 100.0
    return float(leavers) + planned


def attrition_totals(state: PlanState, hc_type: str, weeks: Optional[Iterable[Any]] = None) -> float:
    weeks = list(weeks if weeks is not None else state.periods)
    total = 0.0
    for queue in state.queues:
        for week in weeks:
            total += attrition_for_week(state, queue, hc_type, week)
    total += state.total_current_hc() * float(state.planned_attrition.get(hc_type) or 0.0) / 100.0 * len(weeks)
    return total


def projection_curve(state: PlanState, weeks: Optional[int] = None) -> pd.DataFrame:
    """Long table of projected HC per (queue, timezone, site, type, week)."""
    horizon = int(weeks or len(state.periods) or 52)
    rows = []
    for entry in state.current_hc_entries():
        for hc_type in TYPES:
            rate = float(state.attrition_rate.get(hc_type) or 0.0)
            for week in range(1, horizon + 1):
                rows.append(
                    {
                        "queue": entry["queue"],
                        "timezone": entry["timezone"],
                        "site": entry["site"],
                        "type": hc_type,
                        "week": week,
                        "hc": projected_hc(entry[hc_type], rate, week),
                    }
                )
    if not rows:
        return pd.DataFrame(columns=["queue", "timezone", "site", "type", "week", "hc"])
    return pd.DataFrame(rows)


def projection_totals(state: PlanState, weeks: Optional[int] = None) -> pd.DataFrame:
    curve = projection_curve(state, weeks)
    if curve.empty:
        return pd.DataFrame(columns=["week", "internal", "external", "combined"])
    wide = curve.pivot_table(index="week", columns="type", values="hc", aggfunc="sum").reset_index()
    for hc_type in TYPES:
        if hc_type not in wide.columns:
            wide[hc_type] = 0.0
    wide["combined"] = wide["internal"] + wide["external"]
    wide.columns.name = None
    return wide[["week", "internal", "external", "combined"]]
