from __future__ import annotations

import copy
import datetime as dt
import logging
import uuid
from typing import Any, Optional

from capplan.pipeline.plan_state import TYPES, PlanState

logger = logging.getLogger(__name__)


def _now_iso() -> str:
    return dt.datetime.now(dt.timezone.utc).isoformat(timespec="seconds")


def _aht_map(state: PlanState, queue: str, hc_type: str) -> dict:
    return copy.deepcopy((state.weekly_aht.get(queue) or {}).get(hc_type) or {})


def _set_aht(state: PlanState, queue: str, hc_type: str, aht: Optional[dict]) -> None:
    per_queue = state.weekly_aht.setdefault(queue, {t: {} for t in TYPES})
    per_queue[hc_type] = copy.deepcopy(aht or {})


def _drop_aht(state: PlanState, queue: str, hc_type: str) -> None:
    per_queue = state.weekly_aht.get(queue)
    if per_queue is None:
        return
    per_queue.pop(hc_type, None)
    if not any(per_queue.values()):
        state.weekly_aht.pop(queue, None)


def _set_overrides(state: PlanState, queue: str, hc_type: str, assumptions: Optional[dict]) -> None:
    state.queue_assumptions.setdefault(queue, {})[hc_type] = copy.deepcopy(assumptions or {})


def _clear_overrides(state: PlanState, queue: str, hc_type: str) -> None:
    per_queue = state.queue_assumptions.get(queue)
    if per_queue is None:
        return
    per_queue.pop(hc_type, None)
    if not per_queue:
        state.queue_assumptions.pop(queue, None)


class ScenarioManager:
    """
    What-if library plus the Inactive / Active(id) overlay state machine.

    Only one (queue, type) baseline fits in the snapshot slot, so at most one
    scenario is active at a time. Switching scenarios restores the previous
    one before overlaying the next. Calls must not interleave.
    """

    def __init__(self, state: PlanState) -> None:
        self.state = state

    @property
    def active_id(self) -> Optional[str]:
        return self.state.active_scenario_id

    def _check_invariant(self) -> None:
        state = self.state
        if state.active_scenario_id is None:
            if state.baseline_snapshot is not None:
                raise RuntimeError("baseline snapshot held while no scenario is active")
            return
        if not isinstance(state.baseline_snapshot, dict):
            raise RuntimeError(f"scenario {state.active_scenario_id} is active without a baseline snapshot")
        active = state.scenario(state.active_scenario_id)
        if active is None:
            raise RuntimeError(f"active scenario {state.active_scenario_id} is not in the library")
        snapshot = state.baseline_snapshot
        if (snapshot.get("queue"), snapshot.get("type")) != (active.get("queue"), active.get("type")):
            raise RuntimeError(f"baseline snapshot does not match active scenario {state.active_scenario_id}")

    # library -----------------------------------------------------------

    def add_scenario(self, scenario: dict) -> dict:
        new = {
            "name": str(scenario.get("name") or "").strip() or "Untitled",
            "queue": scenario.get("queue"),
            "type": str(scenario.get("type") or "external").lower(),
            "assumptions": copy.deepcopy(scenario.get("assumptions") or {}),
            "aht": copy.deepcopy(scenario.get("aht") or {}),
        }
        new["id"] = str(scenario.get("id") or uuid.uuid4().hex[:12])
        new["created_at"] = scenario.get("created_at") or _now_iso()
        self.state.scenarios.append(new)
        logger.info("scenario saved id=%s name=%s queue=%s type=%s", new["id"], new["name"], new["queue"], new["type"])
        return new

    def snapshot_current(self, queue: str, hc_type: str, name: str) -> dict:
        """Save the queue's current overrides and AHT as a new scenario."""
        return self.add_scenario(
            {
                "name": name,
                "queue": queue,
                "type": hc_type,
                "assumptions": (self.state.queue_assumptions.get(queue) or {}).get(hc_type) or {},
                "aht": _aht_map(self.state, queue, hc_type),
            }
        )

    def update_scenario(self, scenario_id: Any, updates: dict) -> Optional[dict]:
        scenario = self.state.scenario(scenario_id)
        if scenario is None:
            return None
        if scenario_id == self.active_id and any(k in (updates or {}) for k in ("queue", "type")):
            raise ValueError("Deactivate the scenario before changing its queue or type.")
        for key in ("name", "queue", "type", "assumptions", "aht"):
            if key in (updates or {}):
                scenario[key] = copy.deepcopy(updates[key])
        return scenario

    def delete_scenario(self, scenario_id: Any) -> bool:
        if self.active_id is not None and str(self.active_id) == str(scenario_id):
            self.deactivate()
        before = len(self.state.scenarios)
        self.state.scenarios = [s for s in self.state.scenarios if str(s.get("id")) != str(scenario_id)]
        return len(self.state.scenarios) < before

    def finalize_scenario(self, scenario_id: Any) -> Optional[dict]:
        scenario = self.state.scenario(scenario_id)
        if scenario is None:
            return None
        entry = copy.deepcopy(scenario)
        entry["finalized_at"] = _now_iso()
        self.state.demand_plan.append(entry)
        return entry

    # state machine -----------------------------------------------------

    def _restore(self) -> None:
        snapshot = self.state.baseline_snapshot
        if snapshot is None:
            return
        if snapshot.get("aht") is None:
            _drop_aht(self.state, snapshot["queue"], snapshot["type"])
        else:
            _set_aht(self.state, snapshot["queue"], snapshot["type"], snapshot["aht"])
        if snapshot.get("assumptions") is None:
            _clear_overrides(self.state, snapshot["queue"], snapshot["type"])
        else:
            _set_overrides(self.state, snapshot["queue"], snapshot["type"], snapshot["assumptions"])
        self.state.baseline_snapshot = None

    def activate(self, scenario_id: Any) -> Optional[dict]:
        scenario = self.state.scenario(scenario_id)
        if scenario is None:
            logger.info("scenario activate ignored unknown id=%s", scenario_id)
            return None
        if self.active_id is not None:
            previous = self.active_id
            self._restore()
            self.state.active_scenario_id = None
            logger.info("scenario handoff from=%s to=%s", previous, scenario["id"])
        queue, hc_type = scenario["queue"], scenario["type"]
        current = self.state.weekly_aht.get(queue) or {}
        prior = (self.state.queue_assumptions.get(queue) or {}).get(hc_type)
        self.state.baseline_snapshot = {
            "queue": queue,
            "type": hc_type,
            "aht": copy.deepcopy(current[hc_type]) if hc_type in current else None,
            "assumptions": copy.deepcopy(prior) if prior is not None else None,
        }
        _set_overrides(self.state, queue, hc_type, scenario.get("assumptions"))
        _set_aht(self.state, queue, hc_type, scenario.get("aht"))
        self.state.active_scenario_id = scenario["id"]
        self._check_invariant()
        logger.info("scenario activated id=%s queue=%s type=%s", scenario["id"], queue, hc_type)
        return scenario

    def deactivate(self) -> None:
        if self.active_id is None:
            return
        previous = self.active_id
        self._restore()
        self.state.active_scenario_id = None
        self._check_invariant()
        logger.info("scenario deactivated id=%s", previous)

    def recover(self) -> bool:
        """
        Repair a loaded state whose active id and baseline snapshot disagree.

        A usable snapshot is restored before the scenario is dropped, so the
        queue gets its baseline back. Returns True when anything changed.
        """
        try:
            self._check_invariant()
            return False
        except RuntimeError as exc:
            logger.warning("scenario state inconsistent, deactivating: %s", exc)
        snapshot = self.state.baseline_snapshot
        if isinstance(snapshot, dict) and snapshot.get("queue") and snapshot.get("type"):
            self._restore()
        self.state.baseline_snapshot = None
        self.state.active_scenario_id = None
        return True

    def reset_to_base(self, queue: str, hc_type: str) -> None:
        """
        Drop queue overrides and put the upload-time AHT back, whatever is active.

        With no upload-time AHT for the queue the live AHT is left as it is.
        """
        active = self.state.scenario(self.active_id) if self.active_id is not None else None
        hits_active = active is not None and active.get("queue") == queue and active.get("type") == hc_type
        original = (self.state.original_uploaded_aht.get(queue) or {}).get(hc_type) or {}
        if original:
            _set_aht(self.state, queue, hc_type, original)
        _clear_overrides(self.state, queue, hc_type)
        if hits_active:
            self.state.baseline_snapshot = None
            self.state.active_scenario_id = None
        self._check_invariant()
        logger.info("scenario reset to base queue=%s type=%s deactivated=%s", queue, hc_type, hits_active)
