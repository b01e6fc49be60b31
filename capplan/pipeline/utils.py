from __future__ import annotations

import datetime as dt
from math import isfinite
from typing import Any, Optional

import numpy as np
import pandas as pd


def to_float(value: Any, default: Optional[float] = 0.0) -> Optional[float]:
    """float(value), or ``default`` for None, blanks, junk and NaN."""
    try:
        v = float(value)
    except (TypeError, ValueError):
        return default
    return default if v != v else v


def df_from_payload(payload: Any) -> pd.DataFrame:
    """Upload rows posted as JSON: a list of records, ``{"rows": [...]}`` or ``{"columns", "data"}``."""
    if payload is None:
        return pd.DataFrame()
    if isinstance(payload, pd.DataFrame):
        return payload.copy()
    if isinstance(payload, (list, tuple)):
        return pd.DataFrame(list(payload))
    if isinstance(payload, dict):
        if "columns" in payload and "data" in payload:
            return pd.DataFrame(payload.get("data") or [], columns=payload.get("columns") or [])
        for key in ("rows", "records"):
            if isinstance(payload.get(key), list):
                return pd.DataFrame(payload[key])
        return pd.DataFrame([payload])
    return pd.DataFrame()


def df_to_records(df: pd.DataFrame) -> list[dict[str, Any]]:
    if df is None or df.empty:
        return []
    return sanitize_for_json(df.to_dict("records"))


def sanitize_for_json(value: Any) -> Any:
    """Plan state and metric tables -> JSON-safe values; NaN and inf become None."""
    if isinstance(value, dict):
        return {str(key): sanitize_for_json(val) for key, val in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [sanitize_for_json(val) for val in value]
    if isinstance(value, pd.DataFrame):
        return df_to_records(value)
    if value is None or value is pd.NA or value is pd.NaT:
        return None
    if isinstance(value, (pd.Timestamp, dt.datetime, dt.date)):
        return value.isoformat()
    if isinstance(value, np.generic):
        return sanitize_for_json(value.item())
    if isinstance(value, float):
        return value if isfinite(value) else None
    return value
