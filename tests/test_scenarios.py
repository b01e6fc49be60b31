import copy

import pytest

from capplan.pipeline.config_resolver import update_aht, update_queue_assumption
from capplan.pipeline.plan_state import PlanState
from capplan.pipeline.scenarios import ScenarioManager
from capplan.pipeline.state_store import export_document, import_document


def _overlay(aht: float, occupancy: float) -> tuple[dict, dict]:
    return (
        {"occupancy": {"1": occupancy, "2": occupancy}},
        {str(w): aht for w in range(1, 5)},
    )


@pytest.fixture
def manager(planned):
    return ScenarioManager(planned)


def _add(manager, name, queue="Billing", hc_type="external", aht=12.0, occ=80.0):
    assumptions, aht_map = _overlay(aht, occ)
    return manager.add_scenario({"name": name, "queue": queue, "type": hc_type, "assumptions": assumptions, "aht": aht_map})


def test_round_trip_restores_exactly(manager, planned):
    update_queue_assumption(planned, "Billing", "external", "npt", 1, 5)
    before_aht = copy.deepcopy(planned.weekly_aht)
    before_overrides = copy.deepcopy(planned.queue_assumptions)
    scenario = _add(manager, "S1")

    manager.activate(scenario["id"])
    assert manager.active_id == scenario["id"]
    assert planned.weekly_aht["Billing"]["external"]["1"] == 12.0
    assert planned.queue_assumptions["Billing"]["external"]["occupancy"]["1"] == 80.0
    assert planned.baseline_snapshot["queue"] == "Billing"

    manager.deactivate()
    assert manager.active_id is None
    assert planned.baseline_snapshot is None
    assert planned.weekly_aht == before_aht
    assert planned.queue_assumptions == before_overrides


def test_round_trip_without_prior_overrides(manager, planned):
    before = copy.deepcopy(planned.queue_assumptions)
    scenario = _add(manager, "S1")
    manager.activate(scenario["id"])
    manager.deactivate()
    assert planned.queue_assumptions == before


def test_handoff_leaves_no_residue(manager, planned):
    before_aht = copy.deepcopy(planned.weekly_aht)
    s1 = _add(manager, "S1", aht=12.0)
    s2 = _add(manager, "S2", queue="Tech", aht=20.0)
    manager.activate(s1["id"])
    manager.activate(s2["id"])
    assert manager.active_id == s2["id"]
    assert planned.weekly_aht["Billing"] == before_aht["Billing"]
    assert "Billing" not in planned.queue_assumptions
    assert planned.weekly_aht["Tech"]["external"]["1"] == 20.0
    assert planned.baseline_snapshot["queue"] == "Tech"
    manager.deactivate()
    assert planned.weekly_aht == before_aht


def test_activate_unknown_is_noop(manager, planned):
    s1 = _add(manager, "S1")
    manager.activate(s1["id"])
    snapshot = copy.deepcopy(planned.baseline_snapshot)
    assert manager.activate("missing") is None
    assert manager.active_id == s1["id"]
    assert planned.baseline_snapshot == snapshot


def test_deactivate_when_inactive_is_noop(manager, planned):
    before = copy.deepcopy(planned.weekly_aht)
    manager.deactivate()
    assert planned.weekly_aht == before
    assert manager.active_id is None


def test_reset_to_base_of_active_scenario(manager, planned):
    s1 = _add(manager, "S1")
    manager.activate(s1["id"])
    manager.reset_to_base("Billing", "external")
    assert manager.active_id is None
    assert planned.baseline_snapshot is None
    assert planned.weekly_aht["Billing"]["external"] == planned.original_uploaded_aht["Billing"]["external"]
    assert "Billing" not in planned.queue_assumptions


def test_reset_to_base_of_other_queue_keeps_scenario(manager, planned):
    s1 = _add(manager, "S1")
    manager.activate(s1["id"])
    update_queue_assumption(planned, "Tech", "external", "npt", 1, 5)
    manager.reset_to_base("Tech", "external")
    assert manager.active_id == s1["id"]
    assert "Tech" not in planned.queue_assumptions


def test_library_operations(manager, planned):
    s1 = _add(manager, "S1")
    assert s1["id"] and s1["created_at"]
    assert manager.update_scenario(s1["id"], {"name": "Renamed"})["name"] == "Renamed"
    assert manager.update_scenario("missing", {"name": "x"}) is None

    manager.activate(s1["id"])
    with pytest.raises(ValueError):
        manager.update_scenario(s1["id"], {"queue": "Tech"})

    entry = manager.finalize_scenario(s1["id"])
    assert entry["finalized_at"]
    assert planned.demand_plan[-1]["id"] == s1["id"]

    assert manager.delete_scenario(s1["id"])
    assert manager.active_id is None
    assert planned.baseline_snapshot is None
    assert planned.scenarios == []


def test_snapshot_current_captures_queue_state(manager, planned):
    update_queue_assumption(planned, "Billing", "external", "npt", 2, 4)
    scenario = manager.snapshot_current("Billing", "external", "Current")
    assert scenario["aht"] == planned.weekly_aht["Billing"]["external"]
    assert scenario["assumptions"]["npt"]["2"] == 4.0
    scenario["aht"]["1"] = 99.0
    assert planned.weekly_aht["Billing"]["external"]["1"] == 10.0


def test_reset_to_base_without_upload_keeps_live_aht(manager, planned):
    update_aht(planned, "Tech", "external", 1, 7)
    update_queue_assumption(planned, "Tech", "external", "npt", 1, 5)
    manager.reset_to_base("Tech", "external")
    assert planned.weekly_aht["Tech"]["external"] == {"1": 7.0}
    assert "Tech" not in planned.queue_assumptions


def test_round_trip_when_queue_had_no_aht_entry(manager, planned):
    del planned.weekly_aht["Tech"]
    before = copy.deepcopy(planned.weekly_aht)
    scenario = _add(manager, "S1", queue="Tech", aht=20.0)
    manager.activate(scenario["id"])
    assert planned.weekly_aht["Tech"]["external"]["1"] == 20.0
    manager.deactivate()
    assert planned.weekly_aht == before


def test_export_import_while_active(manager, planned):
    baseline = copy.deepcopy(planned.weekly_aht)
    scenario = _add(manager, "S1")
    manager.activate(scenario["id"])

    fresh = PlanState()
    import_document(fresh, export_document(planned))
    assert fresh.active_scenario_id == scenario["id"]
    assert fresh.weekly_aht["Billing"]["external"]["1"] == 12.0

    other = ScenarioManager(fresh)
    other.reset_to_base("Tech", "external")
    assert other.active_id == scenario["id"]
    other.deactivate()
    assert fresh.weekly_aht == baseline
    assert fresh.baseline_snapshot is None


def test_broken_pairing_raises_runtime_error(manager, planned):
    scenario = _add(manager, "S1")
    manager.activate(scenario["id"])
    planned.baseline_snapshot = None
    with pytest.raises(RuntimeError):
        manager.reset_to_base("Tech", "external")


def test_recover_restores_snapshot_of_missing_scenario(manager, planned):
    baseline = copy.deepcopy(planned.weekly_aht)
    scenario = _add(manager, "S1")
    manager.activate(scenario["id"])
    planned.scenarios = []
    assert manager.recover() is True
    assert manager.active_id is None
    assert planned.baseline_snapshot is None
    assert planned.weekly_aht == baseline
    assert manager.recover() is False
