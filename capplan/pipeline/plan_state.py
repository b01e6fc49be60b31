from __future__ import annotations

import copy
from typing import Any, Optional

from capplan.pipeline.period_calendar import month_number, short_month, week_number

TYPES = ("internal", "external")
FIELDS = ("npt", "shrinkage", "occupancy")

DEFAULT_SETTINGS = {
    "hours_per_week": 40.0,
    "global_split": {"external": 70.0, "internal": 30.0},
    "buffer_pct": 10.0,
    "base_assumptions": {
        "internal": {"npt": 15.0, "shrinkage": 20.0, "occupancy": 85.0},
        "external": {"npt": 10.0, "shrinkage": 15.0, "occupancy": 90.0},
    },
    "attrition_rate": {"internal": 0.3, "external": 0.3},
    "planned_attrition": {"internal": 0.0, "external": 0.0},
}


def period_key(period: Any) -> str:
    """Canonical dict key for a period: '7' for week 7, 'Mar' for March."""
    week = week_number(period)
    if week is not None:
        return str(week)
    month = month_number(period)
    if month is not None:
        return short_month(month)
    return str(period or "").strip()


def normalize_type(value: Any) -> Optional[str]:
    text = str(value or "").strip().lower()
    return text if text in TYPES else None


def clamp_pct(value: Any) -> float:
    try:
        v = float(value)
    except (TypeError, ValueError):
        return 0.0
    if v != v:
        return 0.0
    return min(100.0, max(0.0, v))


def empty_type_map() -> dict:
    return {t: {} for t in TYPES}


def empty_field_map() -> dict:
    return {f: {} for f in FIELDS}


class PlanState:
    """
    In-memory snapshot of everything a plan needs.

    Calculators receive the instance explicitly; only the scenario manager and
    the editing helpers in config_resolver/ingest mutate it.
    """

    def __init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        self.forecast: list[dict] = []
        self.periods: list[str] = []
        self.queues: list[str] = []
        self.planning_granularity: str = "week"
        self.global_split: dict = dict(DEFAULT_SETTINGS["global_split"])
        self.queue_splits: dict[str, dict] = {}
        self.buffer_pct: float = float(DEFAULT_SETTINGS["buffer_pct"])
        self.queue_buffers: dict[str, float] = {}
        self.base_assumptions: dict = copy.deepcopy(DEFAULT_SETTINGS["base_assumptions"])
        self.weekly_npt: dict = empty_type_map()
        self.weekly_shrinkage: dict = empty_type_map()
        self.weekly_occupancy: dict = empty_type_map()
        self.queue_assumptions: dict = {}
        self.weekly_aht: dict = {}
        self.original_uploaded_aht: dict = {}
        self.queue_skills: dict[str, list[str]] = {}
        self.current_hc: dict[str, dict] = {}
        self.attrition_data: dict = {}
        self.planned_attrition: dict = dict(DEFAULT_SETTINGS["planned_attrition"])
        self.attrition_rate: dict = dict(DEFAULT_SETTINGS["attrition_rate"])
        self.batches: list[dict] = []
        self.scenarios: list[dict] = []
        self.active_scenario_id: Optional[str] = None
        self.baseline_snapshot: Optional[dict] = None
        self.demand_plan: list[dict] = []
        self.location_costs: dict[str, dict] = {}
        self.hours_per_week: float = float(DEFAULT_SETTINGS["hours_per_week"])

    def weekly_global(self, field: str) -> dict:
        return {
            "npt": self.weekly_npt,
            "shrinkage": self.weekly_shrinkage,
            "occupancy": self.weekly_occupancy,
        }[field]

    def forecast_row(self, queue: str, timezone: str) -> Optional[dict]:
        for row in self.forecast:
            if row.get("queue") == queue and row.get("timezone") == timezone:
                return row
        return None

    def queue_timezones(self) -> list[tuple[str, str]]:
        seen: list[tuple[str, str]] = []
        for row in self.forecast:
            pair = (row.get("queue"), row.get("timezone"))
            if pair not in seen:
                seen.append(pair)
        return seen

    def timezones(self) -> list[str]:
        return sorted({row.get("timezone") for row in self.forecast if row.get("timezone")})

    def scenario(self, scenario_id: Any) -> Optional[dict]:
        for scenario in self.scenarios:
            if str(scenario.get("id")) == str(scenario_id):
                return scenario
        return None

    def batch(self, batch_id: Any) -> Optional[dict]:
        for batch in self.batches:
            if str(batch.get("id")) == str(batch_id):
                return batch
        return None

    def total_current_hc(self) -> int:
        return int(sum((hc.get("internal") or 0) + (hc.get("external") or 0) for hc in self.current_hc.values()))

    def current_hc_entries(self) -> list[dict]:
        """Flatten CurrentHC into rows with queue/timezone/site split out of the key."""
        out = []
        for key, hc in self.current_hc.items():
            hc = hc or {}
            queue = hc.get("queue")
            timezone = hc.get("timezone")
            site = hc.get("site")
            if queue is None or timezone is None:
                parts = str(key).split("-")
                queue = parts[0]
                timezone = parts[1] if len(parts) > 1 else ""
                site = "-".join(parts[2:]) if len(parts) > 2 else None
            out.append(
                {
                    "key": key,
                    "queue": queue,
                    "timezone": timezone,
                    "site": site,
                    "internal": int(hc.get("internal") or 0),
                    "external": int(hc.get("external") or 0),
                }
            )
        return out

    def actual_hc(self, queue: str, timezone: str, hc_type: str, site: Optional[str] = None) -> int:
        total = 0
        for entry in self.current_hc_entries():
            if entry["queue"] != queue or entry["timezone"] != timezone:
                continue
            if site is not None and entry["site"] != site:
                continue
            total += entry.get(hc_type) or 0
        return total

    def sites(self) -> list[str]:
        return sorted({e["site"] for e in self.current_hc_entries() if e["site"]})
