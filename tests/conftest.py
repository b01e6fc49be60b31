from __future__ import annotations

import pytest

from capplan.pipeline.ingest import apply_forecast
from capplan.pipeline.plan_state import PlanState


def weekly_forecast(volume: float = 1000.0, weeks=range(1, 5)) -> dict:
    periods = [str(w) for w in weeks]
    return {
        "granularity": "week",
        "periods": periods,
        "rows": [
            {"queue": "Billing", "timezone": "EST", "volumes": {p: float(volume) for p in periods}},
            {"queue": "Billing", "timezone": "PST", "volumes": {p: float(volume) / 2 for p in periods}},
            {"queue": "Tech", "timezone": "EST", "volumes": {p: 0.0 for p in periods}},
        ],
    }


@pytest.fixture
def state() -> PlanState:
    return PlanState()


@pytest.fixture
def planned(state: PlanState) -> PlanState:
    """Four weekly periods, AHT 10 on Billing external, neutral assumptions."""
    apply_forecast(state, weekly_forecast())
    state.global_split = {"external": 100.0, "internal": 0.0}
    state.buffer_pct = 0.0
    state.base_assumptions["external"] = {"npt": 10.0, "shrinkage": 15.0, "occupancy": 90.0}
    aht = {str(w): 10.0 for w in range(1, 5)}
    state.weekly_aht["Billing"]["external"] = dict(aht)
    state.original_uploaded_aht["Billing"] = {"internal": {}, "external": dict(aht)}
    return state


@pytest.fixture(autouse=True)
def _exports_dir(tmp_path, monkeypatch):
    monkeypatch.setenv("CAPPLAN_EXPORTS_DIR", str(tmp_path / "exports"))
    monkeypatch.delenv("POSTGRES_DSN", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("CAPPLAN_STATE_KEY", raising=False)
