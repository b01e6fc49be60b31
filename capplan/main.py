from __future__ import annotations

import logging
import os
import threading
from typing import Any, Optional

import pandas as pd
from fastapi import FastAPI, File, HTTPException, Query, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from capplan.pipeline.aggregation import LEVEL_KEYS, metrics_table, summary
from capplan.pipeline.attrition import projection_curve, projection_totals, update_attrition
from capplan.pipeline.batch_scheduler import BATCH_COLS, add_batch, delete_batch, update_batch
from capplan.pipeline.capacity_core import period_requirement
from capplan.pipeline.config_resolver import (
    bulk_update_aht,
    bulk_update_queue_assumption,
    copy_base_to_queue,
    reset_queue_buffer,
    reset_queue_split,
    resolve_buffer,
    resolve_split,
    split_warning,
    update_aht,
    update_base_assumptions,
    update_buffer,
    update_queue_assumption,
    update_split,
    update_weekly_global,
)
from capplan.pipeline.cost import cost_breakdown, update_location_cost
from capplan.pipeline.ingest import (
    ASSUMPTION_METRICS,
    ImportRejected,
    apply_aht,
    apply_current_hc,
    apply_forecast,
    apply_weekly_global,
    normalize_aht_upload,
    normalize_assumption_upload,
    normalize_current_hc,
    normalize_forecast,
    parse_upload_any,
)
from capplan.pipeline.plan_state import FIELDS, TYPES, PlanState
from capplan.pipeline.postgres import ensure_state_schema
from capplan.pipeline.scenarios import ScenarioManager
from capplan.pipeline.state_store import (
    clear_state,
    export_document,
    import_document,
    load_state,
    save_state,
)
from capplan.pipeline.utils import df_from_payload, df_to_records, sanitize_for_json

app = FastAPI(title="Capacity Planning Service")
logger = logging.getLogger("capacity-service")
if not logging.getLogger().handlers:
    logging.basicConfig(level=logging.INFO)
logger.setLevel(logging.INFO)

STATE = PlanState()
SCENARIOS = ScenarioManager(STATE)
# one writer at a time; scenario transitions must not interleave
_LOCK = threading.Lock()


class BatchRequest(BaseModel):
    queue: str
    type: str = "external"
    timezone: str = "CENTRAL"
    batch_type: str = "new"
    start_week: int = 1
    training_weeks: int = 4
    ramp_granularity: str = "week"
    ramp_curve: list[float] = [25, 50, 75, 100]
    hc_count: float = 0


class ScenarioRequest(BaseModel):
    name: str
    queue: str
    type: str = "external"
    assumptions: dict = {}
    aht: dict = {}


class SnapshotRequest(BaseModel):
    name: str
    queue: str
    type: str = "external"


def _cors_origins() -> list[str]:
    raw = os.getenv("CORS_ORIGINS", "")
    if raw:
        return [item.strip() for item in raw.split(",") if item.strip()]
    return ["http://localhost:3000", "http://127.0.0.1:3000"]


app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _require_dict(payload: Any, what: str) -> dict:
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail=f"{what} payload must be a JSON object.")
    return payload


def _require_type(value: Any) -> str:
    hc_type = str(value or "").strip().lower()
    if hc_type not in TYPES:
        raise HTTPException(status_code=400, detail="type must be 'internal' or 'external'.")
    return hc_type


def _require_field(value: Any) -> str:
    field = str(value or "").strip().lower()
    if field not in FIELDS:
        raise HTTPException(status_code=400, detail=f"field must be one of {', '.join(FIELDS)}.")
    return field


def _rows_df(payload: dict, what: str) -> pd.DataFrame:
    rows = payload.get("rows")
    if not isinstance(rows, list):
        raise HTTPException(status_code=400, detail="rows must be a list.")
    df = df_from_payload(rows)
    logger.info("%s upload rows_in=%s cols=%s", what, len(df.index), list(df.columns))
    return df


async def _file_df(file: UploadFile, preferred: Optional[list[str]] = None) -> pd.DataFrame:
    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="Empty file upload.")
    df, msg = parse_upload_any(file.filename or "upload", content, preferred)
    logger.info("file upload: %s", msg)
    if df.empty:
        raise HTTPException(status_code=400, detail=msg)
    return df


def _plan_overview() -> dict:
    return {
        "granularity": STATE.planning_granularity,
        "periods": STATE.periods,
        "queues": STATE.queues,
        "timezones": STATE.timezones(),
        "active_scenario_id": STATE.active_scenario_id,
    }


@app.get("/health")
def health():
    return {"status": "ok"}


@app.on_event("startup")
def _startup():
    ensure_state_schema()


@app.get("/api/plan")
def get_plan():
    return sanitize_for_json(_plan_overview())


# uploads -------------------------------------------------------------------


def _ingest_forecast(df: pd.DataFrame) -> dict:
    try:
        table = normalize_forecast(df)
    except ImportRejected as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    with _LOCK:
        return apply_forecast(STATE, table)


def _ingest_aht(df: pd.DataFrame) -> dict:
    with _LOCK:
        try:
            aht = normalize_aht_upload(df, STATE.planning_granularity)
            queues = apply_aht(STATE, aht)
        except ImportRejected as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"status": "saved", "queues": queues}


def _ingest_assumption(metric: str, df: pd.DataFrame) -> dict:
    if metric not in ASSUMPTION_METRICS:
        raise HTTPException(status_code=404, detail=f"Unknown assumption metric '{metric}'.")
    data = normalize_assumption_upload(df)
    if not any(data.values()):
        raise HTTPException(status_code=400, detail=f"No {metric} values were found in the upload.")
    with _LOCK:
        apply_weekly_global(STATE, metric, data)
    return {"status": "saved", "metric": metric, "counts": {t: len(data[t]) for t in TYPES}}


def _ingest_current_hc(df: pd.DataFrame) -> dict:
    hc = normalize_current_hc(df)
    if not hc:
        raise HTTPException(status_code=400, detail="No current HC rows were found in the upload.")
    with _LOCK:
        entries = apply_current_hc(STATE, hc)
    return {"status": "saved", "entries": entries, "total_hc": STATE.total_current_hc()}


@app.post("/api/uploads/forecast")
def upload_forecast(payload: dict):
    payload = _require_dict(payload, "Forecast")
    return {"status": "saved", **_ingest_forecast(_rows_df(payload, "forecast"))}


@app.post("/api/uploads/forecast/file")
async def upload_forecast_file(file: UploadFile = File(...)):
    df = await _file_df(file, ["forecast", "volume"])
    return {"status": "saved", **_ingest_forecast(df)}


@app.post("/api/uploads/aht")
def upload_aht(payload: dict):
    payload = _require_dict(payload, "AHT")
    return _ingest_aht(_rows_df(payload, "aht"))


@app.post("/api/uploads/aht/file")
async def upload_aht_file(file: UploadFile = File(...)):
    return _ingest_aht(await _file_df(file, ["aht"]))


@app.post("/api/uploads/assumptions/{metric}")
def upload_assumption(metric: str, payload: dict):
    payload = _require_dict(payload, "Assumption")
    return _ingest_assumption(metric, _rows_df(payload, metric))


@app.post("/api/uploads/assumptions/{metric}/file")
async def upload_assumption_file(metric: str, file: UploadFile = File(...)):
    return _ingest_assumption(metric, await _file_df(file, [metric]))


@app.post("/api/uploads/current-hc")
def upload_current_hc(payload: dict):
    payload = _require_dict(payload, "Current HC")
    return _ingest_current_hc(_rows_df(payload, "current hc"))


@app.post("/api/uploads/current-hc/file")
async def upload_current_hc_file(file: UploadFile = File(...)):
    return _ingest_current_hc(await _file_df(file, ["current hc", "headcount"]))


# assumptions ---------------------------------------------------------------


@app.get("/api/assumptions")
def get_assumptions(queue: Optional[str] = None):
    out = {
        "base": STATE.base_assumptions,
        "weekly": {f: STATE.weekly_global(f) for f in FIELDS},
        "split": resolve_split(STATE, queue),
        "buffer_pct": resolve_buffer(STATE, queue),
        "hours_per_week": STATE.hours_per_week,
    }
    out["split_warning"] = split_warning(out["split"])
    if queue is not None:
        out["queue"] = queue
        out["overrides"] = STATE.queue_assumptions.get(queue) or {}
        out["aht"] = STATE.weekly_aht.get(queue) or {}
    return sanitize_for_json(out)


@app.post("/api/assumptions")
def save_assumptions(payload: dict):
    """
    Edit one layer of assumptions.

    ``scope`` picks the layer: ``base`` (values per field), ``weekly`` (one
    global period cell), ``queue`` (one period or a week range of a queue
    override), ``copy_base`` (seed queue overrides from base) or ``aht``.
    """
    payload = _require_dict(payload, "Assumptions")
    scope = str(payload.get("scope") or "").strip().lower()
    hc_type = _require_type(payload.get("type"))
    queue = payload.get("queue")
    with _LOCK:
        if scope == "base":
            values = payload.get("values")
            if not isinstance(values, dict):
                raise HTTPException(status_code=400, detail="values must be an object.")
            return {"status": "saved", "base": update_base_assumptions(STATE, hc_type, values)}
        if scope == "weekly":
            field = _require_field(payload.get("field"))
            update_weekly_global(STATE, hc_type, field, payload.get("period"), payload.get("value"))
            return {"status": "saved"}
        if not queue:
            raise HTTPException(status_code=400, detail="queue is required.")
        if scope == "queue":
            field = _require_field(payload.get("field"))
            if payload.get("start_week") is not None:
                bulk_update_queue_assumption(
                    STATE,
                    queue,
                    hc_type,
                    field,
                    payload.get("start_week"),
                    payload.get("end_week"),
                    payload.get("value"),
                )
            else:
                update_queue_assumption(STATE, queue, hc_type, field, payload.get("period"), payload.get("value"))
            return {"status": "saved"}
        if scope == "copy_base":
            copy_base_to_queue(STATE, queue, hc_type)
            return {"status": "saved"}
        if scope == "aht":
            if payload.get("start_week") is not None:
                bulk_update_aht(
                    STATE, queue, hc_type, payload.get("start_week"), payload.get("end_week"), payload.get("value")
                )
            else:
                update_aht(STATE, queue, hc_type, payload.get("period"), payload.get("value"))
            return {"status": "saved"}
    raise HTTPException(status_code=400, detail=f"Unknown assumption scope '{scope}'.")


@app.post("/api/split")
def save_split(payload: dict):
    payload = _require_dict(payload, "Split")
    queue = payload.get("queue") or None
    with _LOCK:
        if payload.get("reset"):
            if not queue:
                raise HTTPException(status_code=400, detail="queue is required to reset a split.")
            reset_queue_split(STATE, queue)
            return {"status": "reset", "split": resolve_split(STATE, queue)}
        try:
            split = update_split(STATE, queue, str(payload.get("side") or ""), payload.get("value"))
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"status": "saved", "split": split}


@app.post("/api/buffer")
def save_buffer(payload: dict):
    payload = _require_dict(payload, "Buffer")
    queue = payload.get("queue") or None
    with _LOCK:
        if payload.get("reset"):
            if not queue:
                raise HTTPException(status_code=400, detail="queue is required to reset a buffer.")
            reset_queue_buffer(STATE, queue)
            return {"status": "reset", "buffer_pct": resolve_buffer(STATE, queue)}
        value = update_buffer(STATE, queue, payload.get("value"))
    return {"status": "saved", "buffer_pct": value}


# batches -------------------------------------------------------------------


@app.get("/api/batches")
def list_batches(queue: Optional[str] = None):
    rows = [b for b in STATE.batches if queue is None or b.get("queue") == queue]
    return {"rows": sanitize_for_json(rows), "columns": BATCH_COLS}


@app.post("/api/batches")
def create_batch(req: BatchRequest):
    with _LOCK:
        batch = add_batch(STATE, req.model_dump())
    return {"status": "saved", "batch": sanitize_for_json(batch)}


@app.put("/api/batches/{batch_id}")
def edit_batch(batch_id: str, payload: dict):
    payload = _require_dict(payload, "Batch")
    with _LOCK:
        batch = update_batch(STATE, batch_id, payload)
    if batch is None:
        raise HTTPException(status_code=404, detail="Batch not found.")
    return {"status": "saved", "batch": sanitize_for_json(batch)}


@app.delete("/api/batches/{batch_id}")
def remove_batch(batch_id: str):
    with _LOCK:
        removed = delete_batch(STATE, batch_id)
    if not removed:
        raise HTTPException(status_code=404, detail="Batch not found.")
    return {"status": "deleted", "id": batch_id}


# scenarios -----------------------------------------------------------------


@app.get("/api/scenarios")
def list_scenarios():
    return sanitize_for_json(
        {
            "rows": STATE.scenarios,
            "active_scenario_id": STATE.active_scenario_id,
            "demand_plan": STATE.demand_plan,
        }
    )


@app.post("/api/scenarios")
def create_scenario(req: ScenarioRequest):
    _require_type(req.type)
    with _LOCK:
        scenario = SCENARIOS.add_scenario(req.model_dump())
    return {"status": "saved", "scenario": sanitize_for_json(scenario)}


@app.post("/api/scenarios/snapshot")
def snapshot_scenario(req: SnapshotRequest):
    hc_type = _require_type(req.type)
    with _LOCK:
        scenario = SCENARIOS.snapshot_current(req.queue, hc_type, req.name)
    return {"status": "saved", "scenario": sanitize_for_json(scenario)}


@app.put("/api/scenarios/{scenario_id}")
def edit_scenario(scenario_id: str, payload: dict):
    payload = _require_dict(payload, "Scenario")
    with _LOCK:
        try:
            scenario = SCENARIOS.update_scenario(scenario_id, payload)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
    if scenario is None:
        raise HTTPException(status_code=404, detail="Scenario not found.")
    return {"status": "saved", "scenario": sanitize_for_json(scenario)}


@app.delete("/api/scenarios/{scenario_id}")
def remove_scenario(scenario_id: str):
    with _LOCK:
        try:
            removed = SCENARIOS.delete_scenario(scenario_id)
        except RuntimeError as exc:
            logger.exception("scenario delete left inconsistent state id=%s", scenario_id)
            raise HTTPException(status_code=409, detail=str(exc)) from exc
    if not removed:
        raise HTTPException(status_code=404, detail="Scenario not found.")
    return {"status": "deleted", "id": scenario_id, "active_scenario_id": STATE.active_scenario_id}


@app.post("/api/scenarios/{scenario_id}/activate")
def activate_scenario(scenario_id: str):
    with _LOCK:
        try:
            scenario = SCENARIOS.activate(scenario_id)
        except RuntimeError as exc:
            logger.exception("scenario activate left inconsistent state id=%s", scenario_id)
            raise HTTPException(status_code=409, detail=str(exc)) from exc
    if scenario is None:
        return {"status": "ignored", "active_scenario_id": STATE.active_scenario_id}
    return {"status": "active", "active_scenario_id": STATE.active_scenario_id}


@app.post("/api/scenarios/deactivate")
def deactivate_scenario():
    with _LOCK:
        try:
            SCENARIOS.deactivate()
        except RuntimeError as exc:
            logger.exception("scenario deactivate left inconsistent state")
            raise HTTPException(status_code=409, detail=str(exc)) from exc
    return {"status": "inactive", "active_scenario_id": None}


@app.post("/api/scenarios/reset")
def reset_scenario(payload: dict):
    payload = _require_dict(payload, "Reset")
    queue = payload.get("queue")
    if not queue:
        raise HTTPException(status_code=400, detail="queue is required.")
    hc_type = _require_type(payload.get("type"))
    with _LOCK:
        try:
            SCENARIOS.reset_to_base(queue, hc_type)
        except RuntimeError as exc:
            logger.exception("scenario reset left inconsistent state queue=%s type=%s", queue, hc_type)
            raise HTTPException(status_code=409, detail=str(exc)) from exc
    return {"status": "reset", "active_scenario_id": STATE.active_scenario_id}


@app.post("/api/scenarios/{scenario_id}/finalize")
def finalize_scenario(scenario_id: str):
    with _LOCK:
        entry = SCENARIOS.finalize_scenario(scenario_id)
    if entry is None:
        raise HTTPException(status_code=404, detail="Scenario not found.")
    return {"status": "finalized", "entry": sanitize_for_json(entry)}


# calculations --------------------------------------------------------------


@app.get("/api/requirements")
def get_requirements(queue: str, timezone: str, type: str = Query("external")):
    hc_type = _require_type(type)
    if STATE.forecast_row(queue, timezone) is None:
        raise HTTPException(status_code=404, detail="No forecast row for that queue and timezone.")
    rows = [period_requirement(STATE, queue, timezone, hc_type, p) for p in STATE.periods]
    return {"rows": sanitize_for_json(rows)}


@app.get("/api/metrics")
def get_metrics(
    level: str = Query("queue_timezone"),
    grain: str = Query("week"),
    type: Optional[str] = None,
):
    if level not in LEVEL_KEYS:
        raise HTTPException(status_code=400, detail=f"level must be one of {', '.join(LEVEL_KEYS)}.")
    if grain not in ("week", "month"):
        raise HTTPException(status_code=400, detail="grain must be 'week' or 'month'.")
    hc_type = _require_type(type) if type else None
    table = metrics_table(STATE, level=level, grain=grain, hc_type=hc_type)
    return {
        "level": level,
        "grain": grain,
        "rows": df_to_records(table),
        "summary": sanitize_for_json(summary(STATE, level, hc_type)),
    }


@app.get("/api/attrition/projection")
def get_attrition_projection(weeks: Optional[int] = Query(None, ge=1, le=104), detail: bool = False):
    out = {"totals": df_to_records(projection_totals(STATE, weeks)), "rate": STATE.attrition_rate}
    if detail:
        out["rows"] = df_to_records(projection_curve(STATE, weeks))
    return sanitize_for_json(out)


@app.post("/api/attrition")
def save_attrition(payload: dict):
    payload = _require_dict(payload, "Attrition")
    with _LOCK:
        if isinstance(payload.get("rate"), dict):
            for hc_type, value in payload["rate"].items():
                STATE.attrition_rate[_require_type(hc_type)] = float(value or 0.0)
        if isinstance(payload.get("planned"), dict):
            for hc_type, value in payload["planned"].items():
                STATE.planned_attrition[_require_type(hc_type)] = float(value or 0.0)
        if payload.get("queue"):
            update_attrition(
                STATE, payload["queue"], _require_type(payload.get("type")), payload.get("week"), payload.get("value")
            )
    return {"status": "saved", "rate": STATE.attrition_rate, "planned": STATE.planned_attrition}


@app.get("/api/cost")
def get_cost(by: str = Query("site")):
    if by not in ("site", "queue"):
        raise HTTPException(status_code=400, detail="by must be 'site' or 'queue'.")
    return {"by": by, "rows": df_to_records(cost_breakdown(STATE, by)), "location_costs": STATE.location_costs}


@app.post("/api/cost/location")
def save_location_cost(payload: dict):
    payload = _require_dict(payload, "Location cost")
    site = str(payload.get("site") or "").strip()
    if not site:
        raise HTTPException(status_code=400, detail="site is required.")
    with _LOCK:
        entry = update_location_cost(STATE, site, _require_type(payload.get("type")), payload.get("annual_cost"))
    return {"status": "saved", "site": site, "cost": entry}


# state ---------------------------------------------------------------------


@app.get("/api/state/export")
def export_state():
    return export_document(STATE)


@app.post("/api/state/import")
def import_state(payload: dict):
    payload = _require_dict(payload, "State")
    with _LOCK:
        try:
            applied = import_document(STATE, payload)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"status": "imported", "keys": applied, **sanitize_for_json(_plan_overview())}


@app.post("/api/state/save")
def save_state_endpoint(key: Optional[str] = None):
    with _LOCK:
        try:
            result = save_state(STATE, key)
        except Exception as exc:
            logger.exception("state save failed")
            raise HTTPException(status_code=500, detail=f"State save failed: {exc}") from exc
    return {"status": "saved", **result}


@app.post("/api/state/load")
def load_state_endpoint(key: Optional[str] = None):
    with _LOCK:
        applied = load_state(STATE, key)
    if not applied:
        return {"status": "empty", "keys": []}
    return {"status": "loaded", "keys": applied, **sanitize_for_json(_plan_overview())}


@app.post("/api/state/clear")
def clear_state_endpoint(key: Optional[str] = None):
    with _LOCK:
        clear_state(STATE, key)
    return {"status": "cleared"}
