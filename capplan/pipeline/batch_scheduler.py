from __future__ import annotations

import datetime as dt
import logging
import math
import uuid
from typing import Any, Optional

from capplan.pipeline.period_calendar import WEEKS_PER_YEAR, week_number, weeks_for_period
from capplan.pipeline.plan_state import PlanState

logger = logging.getLogger(__name__)

BATCH_COLS = [
    "id",
    "queue",
    "type",
    "timezone",
    "batch_type",
    "start_week",
    "training_weeks",
    "ramp_granularity",
    "ramp_curve",
    "hc_count",
]

BATCH_DEFAULTS = {
    "type": "external",
    "timezone": "CENTRAL",
    "batch_type": "new",
    "training_weeks": 4,
    "ramp_granularity": "week",
    "ramp_curve": [25, 50, 75, 100],
    "hc_count": 0,
}

_ALIASES = {
    "startWeek": "start_week",
    "startPeriod": "start_week",
    "trainingDuration": "training_weeks",
    "trainingDurationWeeks": "training_weeks",
    "batchType": "batch_type",
    "rampGranularity": "ramp_granularity",
    "rampCurve": "ramp_curve",
    "hcCount": "hc_count",
}


def _to_int(value: Any, default: int = 0) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return default


def _ramp_curve(value: Any) -> list[float]:
    if value is None:
        return list(BATCH_DEFAULTS["ramp_curve"])
    if isinstance(value, str):
        value = [v for v in value.replace(";", ",").split(",") if v.strip()]
    out = []
    for item in value:
        try:
            out.append(min(100.0, max(0.0, float(item))))
        except (TypeError, ValueError):
            continue
    return out


def normalize_batch(raw: dict, base: Optional[dict] = None) -> dict:
    data = {_ALIASES.get(k, k): v for k, v in (raw or {}).items()}
    out = dict(base or BATCH_DEFAULTS)
    out.update({k: v for k, v in data.items() if k in BATCH_COLS and v is not None})
    out["type"] = str(out.get("type") or "external").strip().lower()
    out["batch_type"] = str(out.get("batch_type") or "new").strip().lower()
    out["ramp_granularity"] = "month" if str(out.get("ramp_granularity") or "").lower().startswith("month") else "week"
    out["start_week"] = min(WEEKS_PER_YEAR, max(1, _to_int(out.get("start_week"), 1)))
    out["training_weeks"] = max(0, _to_int(out.get("training_weeks"), 0))
    out["hc_count"] = max(0.0, float(out.get("hc_count") or 0))
    out["ramp_curve"] = _ramp_curve(out.get("ramp_curve"))
    return out


def add_batch(state: PlanState, batch: dict) -> dict:
    new_batch = normalize_batch(batch)
    new_batch["id"] = str(batch.get("id") or uuid.uuid4().hex[:12])
    new_batch["created_ts"] = dt.datetime.now(dt.timezone.utc).isoformat(timespec="seconds")
    state.batches.append(new_batch)
    logger.info(
        "batch added id=%s queue=%s type=%s start=%s training=%s hc=%s",
        new_batch["id"],
        new_batch.get("queue"),
        new_batch["type"],
        new_batch["start_week"],
        new_batch["training_weeks"],
        new_batch["hc_count"],
    )
    return new_batch


def update_batch(state: PlanState, batch_id: Any, updates: dict) -> Optional[dict]:
    for idx, batch in enumerate(state.batches):
        if str(batch.get("id")) == str(batch_id):
            merged = normalize_batch(updates, base=batch)
            merged["id"] = batch["id"]
            state.batches[idx] = merged
            return merged
    return None


def delete_batch(state: PlanState, batch_id: Any) -> bool:
    before = len(state.batches)
    state.batches = [b for b in state.batches if str(b.get("id")) != str(batch_id)]
    return len(state.batches) < before


def _normalized_query_week(start: int, training_weeks: int, week: int) -> int:
    """Place the query week on the same increasing timeline as the batch start."""
    training_end = start + training_weeks - 1
    if training_end > WEEKS_PER_YEAR:
        return week + WEEKS_PER_YEAR if week < start else week
    if start > 26 and week < start:
        return week + WEEKS_PER_YEAR
    return week


def batch_contribution(batch: dict, week: int) -> float:
    start = _to_int(batch.get("start_week"), 1)
    training_weeks = max(0, _to_int(batch.get("training_weeks"), 0))
    curve = batch.get("ramp_curve") or []
    q = _normalized_query_week(start, training_weeks, week)
    if q < start:
        return 0.0
    final_training_week = start + training_weeks - 1
    if q <= final_training_week:
        return 0.0
    if not curve:
        return 0.0
    weeks_after = q - final_training_week
    if batch.get("ramp_granularity") == "month":
        ramp_index = math.floor((weeks_after - 1) / 4)
    else:
        ramp_index = weeks_after - 1
    ramp_index = min(ramp_index, len(curve) - 1)
    return float(batch.get("hc_count") or 0) * float(curve[ramp_index]) / 100.0


def in_training(batch: dict, week: int) -> bool:
    start = _to_int(batch.get("start_week"), 1)
    training_weeks = max(0, _to_int(batch.get("training_weeks"), 0))
    q = _normalized_query_week(start, training_weeks, week)
    return start <= q <= start + training_weeks - 1


def _matching(state: PlanState, queue: str, hc_type: str, timezone: Optional[str]) -> list[dict]:
    return [
        b
        for b in state.batches
        if b.get("queue") == queue and b.get("type") == hc_type and (not timezone or b.get("timezone") == timezone)
    ]


def _per_period(state: PlanState, queue: str, hc_type: str, period: Any, timezone: Optional[str], fn) -> float:
    week = week_number(period)
    weeks = [week] if week is not None else weeks_for_period(period)
    if not weeks:
        return 0.0
    batches = _matching(state, queue, hc_type, timezone)
    total = sum(fn(b, w) for b in batches for w in weeks)
    return total / len(weeks)


def batch_hc_for_week(state: PlanState, queue: str, hc_type: str, period: Any, timezone: Optional[str] = None) -> float:
    """Productive HC from batches. A month period is the mean of its weeks."""
    return _per_period(state, queue, hc_type, period, timezone, batch_contribution)


def training_hc_for_week(state: PlanState, queue: str, hc_type: str, period: Any, timezone: Optional[str] = None) -> float:
    return _per_period(
        state,
        queue,
        hc_type,
        period,
        timezone,
        lambda b, w: float(b.get("hc_count") or 0) if in_training(b, w) else 0.0,
    )
