"""Point-in-time snapshots of the cluster state.

Snapshots are deep copies taken from the live :class:`ClusterStore` and are
never mutated after capture. Restoring swaps a fresh deep copy back in, so
the live state and the stored snapshot never share objects.

When ``storage_path`` is given the snapshot list is persisted as a JSON list
after every change and reloaded on construction:

    [{"id": "snap-...", "name": "...", "description": "...",
      "timestamp": "2026-01-01T00:00:00+00:00", "scenarioId": null,
      "metadata": {"nodeCount": 8, "gpuCount": 64, "baseline": false},
      "clusterStateCopy": {...}}]

Eviction: once more than ``max_snapshots`` are held, the oldest
non-baseline snapshot is dropped first.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from pydantic import ConfigDict, Field, TypeAdapter, ValidationError

from clustersim.state.models import ClusterState, StateModel
from clustersim.state.store import ClusterStore
from clustersim.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_MAX_SNAPSHOTS = 20
BASELINE_NAME = "Baseline"


class SnapshotMetadata(StateModel):
    model_config = ConfigDict(frozen=True)

    node_count: int = 0
    gpu_count: int = 0
    baseline: bool = False


class StateSnapshot(StateModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    timestamp: str
    cluster_state: ClusterState = Field(alias="clusterStateCopy")
    description: Optional[str] = None
    scenario_id: Optional[str] = None
    metadata: SnapshotMetadata = Field(default_factory=SnapshotMetadata)

    @property
    def is_baseline(self) -> bool:
        return self.metadata.baseline


_SNAPSHOT_LIST = TypeAdapter(List[StateSnapshot])


class SnapshotManager:
    """Create, list, restore and delete cluster snapshots."""

    def __init__(
        self,
        store: ClusterStore,
        storage_path: Optional[Path] = None,
        max_snapshots: int = DEFAULT_MAX_SNAPSHOTS,
    ) -> None:
        self._store = store
        self._storage_path = Path(storage_path) if storage_path else None
        self._max_snapshots = max(1, int(max_snapshots))
        # Oldest first; get_snapshots() reverses.
        self._snapshots: List[StateSnapshot] = []
        self._load()

    # -------------------------------------------------------------------------
    # Capture
    # -------------------------------------------------------------------------

    def create_snapshot(
        self,
        name: str,
        description: Optional[str] = None,
        scenario_id: Optional[str] = None,
        baseline: bool = False,
    ) -> str:
        state = self._store.copy_state()
        snapshot = StateSnapshot(
            id=f"snap-{uuid.uuid4().hex[:12]}",
            name=name,
            timestamp=datetime.now(timezone.utc).isoformat(),
            cluster_state=state,
            description=description,
            scenario_id=scenario_id,
            metadata=SnapshotMetadata(node_count=len(state.nodes), gpu_count=state.gpu_count, baseline=baseline),
        )
        self._snapshots.append(snapshot)
        self._evict()
        self._save()
        logger.info(f"Created snapshot {snapshot.id} ({name})")
        return snapshot.id

    def create_baseline_snapshot(self) -> str:
        """Capture the current state as the baseline, replacing any previous one."""
        self._snapshots = [s for s in self._snapshots if not s.is_baseline]
        return self.create_snapshot(
            BASELINE_NAME,
            "Clean cluster state used for full resets",
            baseline=True,
        )

    def snapshot_before_scenario(self, scenario_id: str) -> str:
        return self.create_snapshot(
            f"Before scenario: {scenario_id}",
            f"Automatic snapshot taken before loading scenario {scenario_id}",
            scenario_id=scenario_id,
        )

    # -------------------------------------------------------------------------
    # Query / restore / delete
    # -------------------------------------------------------------------------

    def get_snapshots(self) -> List[StateSnapshot]:
        """All snapshots, newest first."""
        return list(reversed(self._snapshots))

    def get_snapshot(self, snapshot_id: str) -> Optional[StateSnapshot]:
        return next((s for s in self._snapshots if s.id == snapshot_id), None)

    def get_baseline(self) -> Optional[StateSnapshot]:
        return next((s for s in self._snapshots if s.is_baseline), None)

    def restore_snapshot(self, snapshot_id: str) -> bool:
        snapshot = self.get_snapshot(snapshot_id)
        if snapshot is None:
            logger.warning(f"Cannot restore unknown snapshot {snapshot_id}")
            return False
        self._store.replace_state(snapshot.cluster_state)
        logger.info(f"Restored snapshot {snapshot.id} ({snapshot.name})")
        return True

    def restore_baseline(self) -> bool:
        baseline = self.get_baseline()
        if baseline is None:
            logger.info("No baseline snapshot to restore")
            return False
        return self.restore_snapshot(baseline.id)

    def delete_snapshot(self, snapshot_id: str) -> bool:
        before = len(self._snapshots)
        self._snapshots = [s for s in self._snapshots if s.id != snapshot_id]
        if len(self._snapshots) == before:
            return False
        self._save()
        logger.info(f"Deleted snapshot {snapshot_id}")
        return True

    def export_snapshot(self, snapshot_id: str) -> Optional[str]:
        snapshot = self.get_snapshot(snapshot_id)
        return snapshot.model_dump_json(by_alias=True, indent=2) if snapshot else None

    # -------------------------------------------------------------------------
    # Storage
    # -------------------------------------------------------------------------

    def _evict(self) -> None:
        while len(self._snapshots) > self._max_snapshots:
            victim = next((s for s in self._snapshots if not s.is_baseline), None)
            if victim is None:
                break
            self._snapshots.remove(victim)
            logger.info(f"Evicted snapshot {victim.id} ({victim.name})")

    def _save(self) -> None:
        if self._storage_path is None:
            return
        self._storage_path.parent.mkdir(parents=True, exist_ok=True)
        self._storage_path.write_bytes(_SNAPSHOT_LIST.dump_json(self._snapshots, by_alias=True, indent=2))

    def _load(self) -> None:
        if self._storage_path is None or not self._storage_path.exists():
            return
        try:
            self._snapshots = _SNAPSHOT_LIST.validate_json(self._storage_path.read_bytes())
        except (OSError, ValidationError) as e:
            logger.warning(f"Ignoring unreadable snapshot store {self._storage_path}: {e}")
            self._snapshots = []
