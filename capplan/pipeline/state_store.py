from __future__ import annotations

import copy
import datetime as dt
import json
import logging
import os
import re
from pathlib import Path
from typing import Any, Optional

from capplan.pipeline.plan_state import PlanState
from capplan.pipeline.postgres import delete_state_doc, fetch_state_doc, has_dsn, upsert_state_doc
from capplan.pipeline.scenarios import ScenarioManager
from capplan.pipeline.utils import sanitize_for_json

logger = logging.getLogger(__name__)

DOC_VERSION = "1.0"
DEFAULT_STATE_KEY = "workforce-planning-data"

# document key -> PlanState attribute
DOC_FIELDS = {
    "forecastData": "forecast",
    "weeks": "periods",
    "periods": "periods",
    "queues": "queues",
    "planningGranularity": "planning_granularity",
    "globalSplit": "global_split",
    "queueSplits": "queue_splits",
    "bufferHC": "buffer_pct",
    "queueBuffers": "queue_buffers",
    "baseAssumptions": "base_assumptions",
    "weeklyNPT": "weekly_npt",
    "weeklyShrinkage": "weekly_shrinkage",
    "weeklyOccupancy": "weekly_occupancy",
    "weeklyAHT": "weekly_aht",
    "originalUploadedAHT": "original_uploaded_aht",
    "queueSkills": "queue_skills",
    "currentHC": "current_hc",
    "attritionData": "attrition_data",
    "plannedAttrition": "planned_attrition",
    "attritionRate": "attrition_rate",
    "batches": "batches",
    "simulations": "scenarios",
    "activeSimulationId": "active_scenario_id",
    "baselineAHTData": "baseline_snapshot",
    "demandPlan": "demand_plan",
    "queueAssumptions": "queue_assumptions",
    "locationCosts": "location_costs",
}
# keys whose explicit null is meaningful and must be applied
_NULLABLE = {"activeSimulationId", "baselineAHTData"}


def _now_iso() -> str:
    return dt.datetime.now(dt.timezone.utc).isoformat(timespec="seconds")


def state_key() -> str:
    return os.getenv("CAPPLAN_STATE_KEY") or DEFAULT_STATE_KEY


def _repo_root() -> Path:
    return Path(__file__).resolve().parent.parent.parent


def _exports_dir() -> Path:
    override = os.getenv("CAPPLAN_EXPORTS_DIR")
    outdir = Path(override) if override else _repo_root() / "exports"
    outdir.mkdir(parents=True, exist_ok=True)
    return outdir


def _safe_component(value: Optional[str]) -> str:
    cleaned = re.sub(r"[^A-Za-z0-9_-]+", "_", str(value or "")).strip("_")
    return cleaned or "default"


def _state_path(key: str) -> Path:
    return _exports_dir() / f"state_{_safe_component(key)}.json"


def to_document(state: PlanState) -> dict:
    doc = {key: copy.deepcopy(getattr(state, attr)) for key, attr in DOC_FIELDS.items()}
    return sanitize_for_json(doc)


def apply_document(state: PlanState, doc: Any) -> list[str]:
    """
    Merge a saved/exported document into ``state``.

    Keys absent from the document leave the current value alone. An active
    scenario id without a matching baseline snapshot is dropped. Returns the
    keys that were applied.
    """
    if not isinstance(doc, dict):
        raise ValueError("State document must be a JSON object.")
    applied = []
    for key, attr in DOC_FIELDS.items():
        if key not in doc:
            continue
        value = doc[key]
        if value is None and key not in _NULLABLE:
            continue
        setattr(state, attr, copy.deepcopy(value))
        applied.append(key)
    if "activeSimulationId" in applied and state.active_scenario_id is not None:
        state.active_scenario_id = str(state.active_scenario_id)
    ScenarioManager(state).recover()
    return applied


def export_document(state: PlanState) -> dict:
    doc = to_document(state)
    doc.pop("originalUploadedAHT", None)
    doc["exportedAt"] = _now_iso()
    doc["version"] = DOC_VERSION
    return doc


def import_document(state: PlanState, text_or_doc: Any) -> list[str]:
    doc = text_or_doc
    if isinstance(text_or_doc, (str, bytes)):
        try:
            doc = json.loads(text_or_doc)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Invalid state JSON: {exc}") from exc
    applied = apply_document(state, doc)
    logger.info("state imported keys=%s", len(applied))
    return applied


def save_state(state: PlanState, key: Optional[str] = None) -> dict:
    key = key or state_key()
    doc = to_document(state)
    doc["savedAt"] = _now_iso()
    doc["version"] = DOC_VERSION
    if has_dsn():
        upsert_state_doc(key, doc)
    else:
        _state_path(key).write_text(json.dumps(doc, indent=2))
    logger.info("state saved key=%s backend=%s", key, "postgres" if has_dsn() else "file")
    return {"key": key, "savedAt": doc["savedAt"]}


def _read_document(key: str) -> Optional[dict]:
    if has_dsn():
        return fetch_state_doc(key)
    path = _state_path(key)
    if not path.exists():
        return None
    try:
        data = json.loads(path.read_text())
    except (OSError, json.JSONDecodeError):
        logger.exception("state file unreadable path=%s", path)
        return None
    return data if isinstance(data, dict) else None


def load_state(state: PlanState, key: Optional[str] = None) -> list[str]:
    key = key or state_key()
    doc = _read_document(key)
    if doc is None:
        return []
    applied = apply_document(state, doc)
    logger.info("state loaded key=%s keys=%s", key, len(applied))
    return applied


def clear_state(state: PlanState, key: Optional[str] = None) -> None:
    key = key or state_key()
    state.reset()
    if has_dsn():
        delete_state_doc(key)
    else:
        path = _state_path(key)
        if path.exists():
            path.unlink()
    logger.info("state cleared key=%s", key)
