from __future__ import annotations

import io
import logging
import re
from typing import Any, Optional, Sequence

import pandas as pd

from capplan.pipeline.period_calendar import (
    MONTHS,
    detect_granularity,
    is_week_column,
    month_number,
    weeks_for_month,
)
from capplan.pipeline.plan_state import TYPES, PlanState, normalize_type, period_key

logger = logging.getLogger(__name__)

ASSUMPTION_METRICS = ("npt", "shrinkage", "occupancy")


class ImportRejected(ValueError):
    """Upload that must not touch state (empty, header-only, nothing parseable)."""


def _normalize_sheet(name: str) -> str:
    return re.sub(r"[^a-z0-9]", "", str(name).lower())


def parse_upload_any(
    filename: str,
    content: bytes,
    preferred_sheets: Optional[Sequence[str]] = None,
) -> tuple[pd.DataFrame, str]:
    if not filename:
        return pd.DataFrame(), "No filename supplied."
    try:
        lower = filename.lower()
        sheet_note = ""
        if lower.endswith(".csv"):
            text = content.decode("utf-8-sig")
            df = pd.read_csv(io.StringIO(text), dtype=str, keep_default_na=False)
        else:
            xl = pd.ExcelFile(io.BytesIO(content))
            sheet_map = {_normalize_sheet(name): name for name in xl.sheet_names}
            selected = None
            for pref in preferred_sheets or []:
                key = _normalize_sheet(pref)
                if key in sheet_map:
                    selected = sheet_map[key]
                    break
            if not selected and xl.sheet_names:
                selected = xl.sheet_names[0]
            df = xl.parse(selected, dtype=str) if selected else pd.DataFrame()
            if selected:
                sheet_note = f" (sheet '{selected}')"
        df.columns = [str(c).strip() for c in df.columns]
        msg = f"Loaded {len(df):,} rows from {filename}{sheet_note}."
        return df, msg
    except Exception as exc:
        return pd.DataFrame(), f"Failed to read {filename}: {exc}"


def _pick_col(columns: Sequence[Any], *candidates: str) -> Optional[Any]:
    lookup = {str(c).strip().lower(): c for c in columns}
    for cand in candidates:
        key = str(cand).strip().lower()
        if key in lookup:
            return lookup[key]
    return None


def _period_columns(columns: Sequence[Any], granularity: str) -> list[tuple[Any, str]]:
    out = []
    for col in columns:
        if granularity == "month":
            if str(col).strip() in MONTHS:
                out.append((col, str(col).strip()))
        elif is_week_column(col):
            out.append((col, period_key(col)))
    return out


def _numeric(series: pd.Series) -> pd.Series:
    return pd.to_numeric(series.astype(str).str.strip().str.rstrip("%"), errors="coerce")


def _text(series: pd.Series) -> pd.Series:
    return series.fillna("").astype(str).str.strip().replace({"nan": "", "None": ""})


def normalize_forecast(df: pd.DataFrame) -> dict:
    """
    Forecast upload -> tagged period table.

    A blank queue cell reuses the last queue seen. Rows without queue or
    timezone are dropped. Volumes that do not parse become 0.
    """
    if not isinstance(df, pd.DataFrame) or df.empty:
        raise ImportRejected("Forecast upload has no data rows.")
    queue_col = _pick_col(df.columns, "queue")
    tz_col = _pick_col(df.columns, "timezone", "time zone", "tz")
    if queue_col is None or tz_col is None:
        raise ImportRejected("Forecast upload needs QUEUE and TIMEZONE columns.")
    data_cols = [c for c in df.columns if c not in (queue_col, tz_col)]
    granularity = detect_granularity(data_cols)
    period_cols = _period_columns(data_cols, granularity)
    if not period_cols:
        raise ImportRejected("Forecast upload has no period columns.")

    queues = _text(df[queue_col]).replace("", pd.NA).ffill().fillna("")
    timezones = _text(df[tz_col])
    volumes = {key: _numeric(df[col]).fillna(0.0).clip(lower=0.0) for col, key in period_cols}

    rows: dict[tuple[str, str], dict] = {}
    for idx in range(len(df.index)):
        queue, timezone = queues.iloc[idx], timezones.iloc[idx]
        if not queue or not timezone:
            continue
        rows[(queue, timezone)] = {
            "queue": queue,
            "timezone": timezone,
            "volumes": {key: float(volumes[key].iloc[idx]) for _, key in period_cols},
        }
    if not rows:
        raise ImportRejected("Forecast upload has no rows with both queue and timezone.")
    return {"granularity": granularity, "periods": [key for _, key in period_cols], "rows": list(rows.values())}


def normalize_assumption_upload(df: pd.DataFrame) -> dict:
    """TYPE + period columns -> {type: {period: value}}; negative or non-numeric cells are skipped."""
    out = {t: {} for t in TYPES}
    if not isinstance(df, pd.DataFrame) or df.empty:
        return out
    type_col = _pick_col(df.columns, "type")
    if type_col is None:
        return out
    data_cols = [c for c in df.columns if c != type_col]
    period_cols = _period_columns(data_cols, detect_granularity(data_cols))
    types = _text(df[type_col]).map(normalize_type)
    for col, key in period_cols:
        values = _numeric(df[col])
        for hc_type, value in zip(types, values):
            if hc_type and pd.notna(value) and value >= 0:
                out[hc_type][key] = float(value)
    return out


def normalize_aht_upload(df: pd.DataFrame, granularity: str = "week") -> dict:
    """
    QUEUE, TYPE, periods -> {queue: {type: {period: minutes}}}.

    Blank, non-numeric and non-positive cells are absent, not zero. Monthly
    columns spread over their 4-4-5 weeks unless the plan is monthly.
    """
    if not isinstance(df, pd.DataFrame) or df.empty:
        raise ImportRejected("AHT upload is empty.")
    queue_col = _pick_col(df.columns, "queue")
    type_col = _pick_col(df.columns, "type")
    if queue_col is None or type_col is None:
        raise ImportRejected("AHT upload needs QUEUE and TYPE columns.")
    data_cols = [c for c in df.columns if c not in (queue_col, type_col)]
    source = detect_granularity(data_cols)
    period_cols = _period_columns(data_cols, source)

    aht: dict[str, dict] = {}
    queues = _text(df[queue_col])
    types = _text(df[type_col]).map(normalize_type)
    for idx in range(len(df.index)):
        queue, hc_type = queues.iloc[idx], types.iloc[idx]
        if not queue or not hc_type:
            continue
        target = aht.setdefault(queue, {t: {} for t in TYPES})[hc_type]
        for col, key in period_cols:
            value = pd.to_numeric(str(df[col].iloc[idx]).strip(), errors="coerce")
            if pd.isna(value) or value <= 0:
                continue
            if source == "month" and granularity != "month":
                for week in weeks_for_month(month_number(key)):
                    target[str(week)] = float(value)
            else:
                target[key] = float(value)
    aht = {queue: per_type for queue, per_type in aht.items() if any(per_type.values())}
    if not aht:
        raise ImportRejected("No AHT data was found in the upload. Check the file format.")
    return aht


def normalize_current_hc(df: pd.DataFrame) -> dict:
    if not isinstance(df, pd.DataFrame) or df.empty:
        return {}
    queue_col = _pick_col(df.columns, "queue")
    tz_col = _pick_col(df.columns, "timezone")
    site_col = _pick_col(df.columns, "site", "location")
    int_col = _pick_col(df.columns, "internal", "internal_hc")
    ext_col = _pick_col(df.columns, "external", "external_hc")
    if queue_col is None:
        return {}
    queues = _text(df[queue_col])
    tzs = _text(df[tz_col]) if tz_col is not None else pd.Series([""] * len(df.index))
    sites = _text(df[site_col]) if site_col is not None else None
    internal = _numeric(df[int_col]).fillna(0) if int_col is not None else pd.Series([0] * len(df.index))
    external = _numeric(df[ext_col]).fillna(0) if ext_col is not None else pd.Series([0] * len(df.index))

    out: dict[str, dict] = {}
    for idx in range(len(df.index)):
        queue, timezone = queues.iloc[idx], tzs.iloc[idx]
        if not queue or not timezone:
            continue
        site = (sites.iloc[idx] or "N/A") if sites is not None else None
        key = f"{queue}-{timezone}-{site}" if sites is not None else f"{queue}-{timezone}"
        out[key] = {
            "queue": queue,
            "timezone": timezone,
            "site": site,
            "internal": max(0, int(internal.iloc[idx])),
            "external": max(0, int(external.iloc[idx])),
        }
    return out


def apply_forecast(state: PlanState, table: dict) -> dict:
    rows = table.get("rows") or []
    state.forecast = rows
    state.planning_granularity = table.get("granularity") or "week"
    state.periods = list(table.get("periods") or [])
    queues: list[str] = []
    for row in rows:
        if row["queue"] not in queues:
            queues.append(row["queue"])
    state.queues = queues
    for queue in queues:
        existing = state.weekly_aht.get(queue) or {}
        state.weekly_aht[queue] = {t: dict(existing.get(t) or {}) for t in TYPES}
        state.queue_skills.setdefault(queue, [queue])
    logger.info(
        "forecast applied granularity=%s periods=%s queues=%s rows=%s",
        state.planning_granularity,
        len(state.periods),
        len(queues),
        len(rows),
    )
    return {"granularity": state.planning_granularity, "periods": state.periods, "queues": queues}


def apply_weekly_global(state: PlanState, metric: str, data: dict) -> None:
    if metric not in ASSUMPTION_METRICS:
        raise ValueError(f"Unknown assumption metric '{metric}'.")
    target = state.weekly_global(metric)
    for hc_type in TYPES:
        merged = dict(target.get(hc_type) or {})
        merged.update(data.get(hc_type) or {})
        target[hc_type] = merged
    logger.info(
        "weekly %s applied internal=%s external=%s",
        metric,
        len(data.get("internal") or {}),
        len(data.get("external") or {}),
    )


def _merge_aht(target: dict, aht: dict) -> None:
    for queue, per_type in aht.items():
        current = target.setdefault(queue, {t: {} for t in TYPES})
        for hc_type in TYPES:
            merged = dict(current.get(hc_type) or {})
            merged.update(per_type.get(hc_type) or {})
            current[hc_type] = merged


def apply_aht(state: PlanState, aht: dict) -> int:
    if not aht:
        raise ImportRejected("No AHT data was found in the upload. Check the file format.")
    _merge_aht(state.weekly_aht, aht)
    _merge_aht(state.original_uploaded_aht, aht)
    logger.info("aht upload applied queues=%s", len(aht))
    return len(aht)


def apply_current_hc(state: PlanState, hc: dict) -> int:
    state.current_hc = dict(hc or {})
    logger.info("current hc applied entries=%s", len(state.current_hc))
    return len(state.current_hc)
