from __future__ import annotations

from typing import Any

import pandas as pd

from capplan.pipeline.aggregation import site_leaves
from capplan.pipeline.plan_state import TYPES, PlanState

COST_COLS = [
    "required_internal",
    "required_external",
    "current_internal",
    "current_external",
    "cost_required",
    "cost_actual",
    "cost_diff",
]


def weekly_cost(state: PlanState, annual_cost: Any) -> float:
    periods = len(state.periods)
    if not periods:
        return 0.0
    try:
        return float(annual_cost or 0.0) / periods
    except (TypeError, ValueError):
        return 0.0


def update_location_cost(state: PlanState, site: str, hc_type: str, annual_cost: Any) -> dict:
    if hc_type not in TYPES:
        raise ValueError(f"Unknown type '{hc_type}'.")
    try:
        value = max(0.0, float(annual_cost))
    except (TypeError, ValueError):
        value = 0.0
    entry = state.location_costs.setdefault(site, {t: 0.0 for t in TYPES})
    entry[hc_type] = value
    return dict(entry)


def _cost_rows(state: PlanState) -> list[dict]:
    n = len(state.periods)
    rows = []
    for leaf in site_leaves(state, state.periods):
        site_cost = state.location_costs.get(leaf["site"]) or {}
        unit = weekly_cost(state, site_cost.get(leaf["type"]))
        required = leaf["required_hc_with_buffer"] or 0.0
        rows.append(
            {
                "site": leaf["site"],
                "queue": leaf["queue"],
                "type": leaf["type"],
                "required": required,
                "current": leaf["actual_hc"],
                "cost_required": required * unit * n,
                "cost_actual": leaf["actual_hc"] * unit * n,
            }
        )
    return rows


def cost_breakdown(state: PlanState, by: str = "site") -> pd.DataFrame:
    """Required vs actual cost per site or per queue over the planning horizon."""
    if by not in ("site", "queue"):
        raise ValueError("by must be 'site' or 'queue'.")
    rows = _cost_rows(state)
    if not rows:
        return pd.DataFrame(columns=[by] + COST_COLS)
    df = pd.DataFrame(rows)
    req = df.pivot_table(index=by, columns="type", values="required", aggfunc="sum", fill_value=0.0)
    cur = df.pivot_table(index=by, columns="type", values="current", aggfunc="sum", fill_value=0.0)
    costs = df.groupby(by)[["cost_required", "cost_actual"]].sum()
    out = pd.DataFrame(index=costs.index)
    for hc_type in TYPES:
        out[f"required_{hc_type}"] = req[hc_type] if hc_type in req.columns else 0.0
        out[f"current_{hc_type}"] = cur[hc_type] if hc_type in cur.columns else 0.0
    out["cost_required"] = costs["cost_required"]
    out["cost_actual"] = costs["cost_actual"]
    out["cost_diff"] = out["cost_required"] - out["cost_actual"]
    return out.reset_index()[[by] + COST_COLS]
