from __future__ import annotations

from typing import Any, Iterable, Optional

from capplan.pipeline.config_resolver import resolve_aht, resolve_assumptions, resolve_buffer, resolve_split
from capplan.pipeline.plan_state import PlanState, period_key
from capplan.pipeline.utils import to_float

HOURS_PER_WEEK = 40.0


def required_hc(
    volume: float,
    aht_minutes: float,
    npt: float,
    shrinkage: float,
    occupancy: float,
    hours_per_week: float = HOURS_PER_WEEK,
) -> float:
    available = float(hours_per_week) * 60.0
    effective = available * (1 - npt / 100.0) * (1 - shrinkage / 100.0)
    productive = effective * (occupancy / 100.0)
    work = volume * aht_minutes
    return work / productive if productive > 0 else 0.0


def apply_buffer(value: Optional[float], buffer_pct: float) -> Optional[float]:
    if value is None:
        return None
    return value * (1 + buffer_pct / 100.0)


def average_required_hc(values: Iterable[Optional[float]]) -> Optional[float]:
    """Mean over periods that had AHT; ``None`` entries count toward neither sum nor length."""
    known = [float(v) for v in values if v is not None]
    if not known:
        return None
    return sum(known) / len(known)


def split_volume(state: PlanState, queue: str, timezone: str, hc_type: str, period: Any) -> float:
    row = state.forecast_row(queue, timezone)
    if not row:
        return 0.0
    volume = to_float((row.get("volumes") or {}).get(period_key(period)))
    split = resolve_split(state, queue)
    return volume * to_float(split.get(hc_type)) / 100.0


def period_requirement(state: PlanState, queue: str, timezone: str, hc_type: str, period: Any) -> dict:
    """
    Volume and required HC for one (queue, timezone, type, period).

    ``required_hc`` is ``None`` when the period has no AHT.
    """
    volume = split_volume(state, queue, timezone, hc_type, period)
    aht = resolve_aht(state, queue, hc_type, period)
    assumptions = resolve_assumptions(state, queue, hc_type, period)
    req = None
    if aht is not None:
        req = required_hc(
            volume,
            aht,
            assumptions["npt"],
            assumptions["shrinkage"],
            assumptions["occupancy"],
            hours_per_week=state.hours_per_week,
        )
    buffer_pct = resolve_buffer(state, queue)
    return {
        "period": period_key(period),
        "volume": volume,
        "aht": aht,
        "npt": assumptions["npt"],
        "shrinkage": assumptions["shrinkage"],
        "occupancy": assumptions["occupancy"],
        "required_hc": req,
        "required_hc_with_buffer": apply_buffer(req, buffer_pct),
    }
