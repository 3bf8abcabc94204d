"""Training scenarios: a named set of faults, optionally on a prepared cluster.

Scenario descriptors are JSON objects::

    {
      "id": "xid-79-triage",
      "title": "GPU fell off the bus",
      "faults": [
        {"nodeId": "dgx-00", "gpuId": 3, "type": "xid-error",
         "severity": "Critical", "parameters": {"xid": 79}}
      ],
      "initialClusterState": { ... optional full cluster state ... }
    }

Loading a scenario snapshots the current cluster first, so the previous
state can always be restored.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import ConfigDict, Field, ValidationError

from clustersim.exceptions import ScenarioLoadError
from clustersim.state.faults import FaultInjectionConfig, apply_faults, clear_all_faults
from clustersim.state.models import ClusterState, StateModel
from clustersim.state.snapshots import SnapshotManager
from clustersim.state.store import ClusterStore
from clustersim.utils.logger import get_logger

logger = get_logger(__name__)


def _reason(error: Dict[str, Any]) -> str:
    loc = error["loc"]
    if error["type"] == "json_invalid":
        return "invalid json"
    if not loc:
        return "not an object"
    if loc[0] == "id":
        return "missing id"
    if loc[0] == "faults":
        return "bad faults" if len(loc) == 1 else "bad fault"
    if loc[0] in ("initialClusterState", "initial_state"):
        return "bad state"
    return "invalid"


class Scenario(StateModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="Stable scenario identifier")
    title: str = ""
    description: str = ""
    faults: List[FaultInjectionConfig] = Field(default_factory=list)
    initial_state: Optional[ClusterState] = Field(None, alias="initialClusterState")

    @classmethod
    def parse(cls, data: Union[Dict[str, Any], str, bytes], source: Optional[str] = None) -> "Scenario":
        """Validate a scenario from a dict or raw JSON, raising :class:`ScenarioLoadError`."""
        try:
            if isinstance(data, (str, bytes)):
                scenario = cls.model_validate_json(data)
            else:
                scenario = cls.model_validate(data)
        except ValidationError as e:
            first = e.errors()[0]
            location = ".".join(str(part) for part in first["loc"]) or "scenario"
            reason = _reason(first)
            if reason == "invalid json":
                message = f"Scenario file {source} is not valid JSON: {first['msg']}"
            else:
                message = f"Invalid scenario: {location}: {first['msg']}"
            raise ScenarioLoadError(message, source, reason) from e

        for fault in scenario.faults:
            if fault.params is None:
                # Unknown types are kept; applying them is a logged no-op.
                logger.warning(f"Scenario {scenario.id}: unknown fault type {fault.fault_type!r}")
        return scenario


@dataclass(frozen=True)
class ScenarioLoadResult:
    scenario: Scenario
    snapshot_id: str
    faults_applied: int


def load_scenario_file(path: Union[str, Path]) -> Scenario:
    path = Path(path)
    try:
        raw = path.read_bytes()
    except OSError as e:
        raise ScenarioLoadError(f"Cannot read scenario file {path}: {e}", str(path), "unreadable") from e
    return Scenario.parse(raw, source=str(path))


def load_scenario(
    store: ClusterStore,
    snapshots: SnapshotManager,
    scenario: Union[Scenario, Dict[str, Any]],
) -> ScenarioLoadResult:
    """Snapshot the cluster, reset it and apply ``scenario``'s faults."""
    if isinstance(scenario, dict):
        scenario = Scenario.parse(scenario)

    snapshot_id = snapshots.snapshot_before_scenario(scenario.id)
    if scenario.initial_state is not None:
        store.replace_state(scenario.initial_state)
    else:
        clear_all_faults(store)
    applied = apply_faults(store, scenario.faults)
    logger.info(f"Loaded scenario {scenario.id}: {applied}/{len(scenario.faults)} fault(s) applied")
    return ScenarioLoadResult(scenario=scenario, snapshot_id=snapshot_id, faults_applied=applied)
