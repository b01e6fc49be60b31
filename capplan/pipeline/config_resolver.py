from __future__ import annotations

import logging
from typing import Any, Optional

from capplan.pipeline.plan_state import (
    FIELDS,
    TYPES,
    PlanState,
    clamp_pct,
    empty_field_map,
    period_key,
)
from capplan.pipeline.utils import to_float

logger = logging.getLogger(__name__)


def resolve_assumption(state: PlanState, queue: str, hc_type: str, field: str, period: Any) -> float:
    """
    Effective NPT/shrinkage/occupancy for one period.

    Queue override, then weekly global override, then the base assumption.
    Only a missing value falls through; an explicit 0 is kept.
    """
    key = period_key(period)
    value = (((state.queue_assumptions.get(queue) or {}).get(hc_type) or {}).get(field) or {}).get(key)
    if value is not None:
        return float(value)
    value = (state.weekly_global(field).get(hc_type) or {}).get(key)
    if value is not None:
        return float(value)
    return float((state.base_assumptions.get(hc_type) or {}).get(field, 0.0))


def resolve_assumptions(state: PlanState, queue: str, hc_type: str, period: Any) -> dict:
    return {field: resolve_assumption(state, queue, hc_type, field, period) for field in FIELDS}


def resolve_aht(state: PlanState, queue: str, hc_type: str, period: Any) -> Optional[float]:
    value = ((state.weekly_aht.get(queue) or {}).get(hc_type) or {}).get(period_key(period))
    return None if value is None else float(value)


def resolve_split(state: PlanState, queue: Optional[str]) -> dict:
    split = state.queue_splits.get(queue) if queue is not None else None
    return dict(split or state.global_split)


def split_warning(split: dict) -> Optional[str]:
    total = to_float(split.get("external")) + to_float(split.get("internal"))
    if abs(total - 100.0) > 1e-9:
        return f"Split sums to {total:g}%, expected 100%."
    return None


def _derive_split(side: str, value: Any) -> dict:
    val = clamp_pct(value)
    if side == "external":
        return {"external": val, "internal": 100.0 - val}
    if side == "internal":
        return {"external": 100.0 - val, "internal": val}
    raise ValueError(f"Unknown split side '{side}'.")


def update_split(state: PlanState, queue: Optional[str], side: str, value: Any) -> dict:
    """Set one side of a split; the other side becomes 100 - value. ``queue=None`` edits the global default."""
    split = _derive_split(side, value)
    if queue is None:
        state.global_split = split
    else:
        state.queue_splits[queue] = split
    return dict(split)


def reset_queue_split(state: PlanState, queue: str) -> None:
    state.queue_splits.pop(queue, None)


def resolve_buffer(state: PlanState, queue: Optional[str]) -> float:
    if queue is not None and state.queue_buffers.get(queue) is not None:
        return float(state.queue_buffers[queue])
    return float(state.buffer_pct)


def update_buffer(state: PlanState, queue: Optional[str], value: Any) -> float:
    val = clamp_pct(value)
    if queue is None:
        state.buffer_pct = val
    else:
        state.queue_buffers[queue] = val
    return val


def reset_queue_buffer(state: PlanState, queue: str) -> None:
    state.queue_buffers.pop(queue, None)


def _queue_field_map(state: PlanState, queue: str, hc_type: str, field: str) -> dict:
    if field not in FIELDS:
        raise ValueError(f"Unknown assumption field '{field}'.")
    if hc_type not in TYPES:
        raise ValueError(f"Unknown type '{hc_type}'.")
    per_queue = state.queue_assumptions.setdefault(queue, {})
    per_type = per_queue.setdefault(hc_type, empty_field_map())
    return per_type.setdefault(field, {})


def update_queue_assumption(state: PlanState, queue: str, hc_type: str, field: str, period: Any, value: Any) -> None:
    _queue_field_map(state, queue, hc_type, field)[period_key(period)] = to_float(value)


def bulk_update_queue_assumption(
    state: PlanState, queue: str, hc_type: str, field: str, start_week: Any, end_week: Any, value: Any
) -> None:
    target = _queue_field_map(state, queue, hc_type, field)
    parsed = to_float(value)
    for week in range(int(start_week), int(end_week) + 1):
        target[str(week)] = parsed


def copy_base_to_queue(state: PlanState, queue: str, hc_type: str) -> None:
    base = state.base_assumptions.get(hc_type) or {}
    per_queue = state.queue_assumptions.setdefault(queue, {})
    per_queue[hc_type] = {field: {str(w): float(base.get(field, 0.0)) for w in range(1, 53)} for field in FIELDS}


def update_weekly_global(state: PlanState, hc_type: str, field: str, period: Any, value: Any) -> None:
    if hc_type not in TYPES:
        raise ValueError(f"Unknown type '{hc_type}'.")
    state.weekly_global(field).setdefault(hc_type, {})[period_key(period)] = to_float(value)


def update_base_assumptions(state: PlanState, hc_type: str, values: dict) -> dict:
    if hc_type not in TYPES:
        raise ValueError(f"Unknown type '{hc_type}'.")
    base = state.base_assumptions.setdefault(hc_type, {})
    for field in FIELDS:
        if field in (values or {}):
            base[field] = to_float(values[field])
    return dict(base)


def update_aht(state: PlanState, queue: str, hc_type: str, period: Any, value: Any) -> None:
    """Set one period's AHT; a blank or junk value removes it so the period has no AHT."""
    per_queue = state.weekly_aht.setdefault(queue, {t: {} for t in TYPES})
    target = per_queue.setdefault(hc_type, {})
    parsed = to_float(value, default=None)
    if parsed is None:
        target.pop(period_key(period), None)
    else:
        target[period_key(period)] = parsed


def bulk_update_aht(state: PlanState, queue: str, hc_type: str, start_week: Any, end_week: Any, value: Any) -> None:
    per_queue = state.weekly_aht.setdefault(queue, {t: {} for t in TYPES})
    target = per_queue.setdefault(hc_type, {})
    parsed = to_float(value, default=None)
    for week in range(int(start_week), int(end_week) + 1):
        if parsed is None:
            target.pop(str(week), None)
        else:
            target[str(week)] = parsed
    logger.info("aht bulk update queue=%s type=%s weeks=%s-%s value=%s", queue, hc_type, start_week, end_week, parsed)
