import json

from clustersim.state.faults import apply_faults
from clustersim.state.snapshots import SnapshotManager


def test_snapshot_is_isolated_from_live_state(store):
    manager = SnapshotManager(store)
    gpu = store.get_gpu("dgx-00", 0)
    before = (store.state.gpu_count, gpu.temperature, gpu.utilization, list(gpu.xid_errors))
    snapshot_id = manager.create_snapshot("clean")

    apply_faults(store, [{"nodeId": "dgx-00", "gpuId": 0, "type": "xid-error", "parameters": {"xid": 79}}])
    store.get_gpu("dgx-00", 0).temperature = 99
    store.get_gpu("dgx-00", 0).utilization = 77

    stored = manager.get_snapshot(snapshot_id).cluster_state
    assert stored.nodes[0].gpus[0].xid_errors == []

    assert manager.restore_snapshot(snapshot_id)
    restored = store.get_gpu("dgx-00", 0)
    assert (store.state.gpu_count, restored.temperature, restored.utilization, restored.xid_errors) == before

    # Mutating the restored live state must not reach back into the snapshot.
    restored.temperature = 12
    assert manager.get_snapshot(snapshot_id).cluster_state.nodes[0].gpus[0].temperature == before[1]


def test_ids_are_distinct_from_names_and_listing_is_newest_first(store):
    manager = SnapshotManager(store)
    first = manager.create_snapshot("same")
    second = manager.create_snapshot("same")
    assert first != second
    assert first.startswith("snap-")
    assert [s.id for s in manager.get_snapshots()] == [second, first]
    assert manager.get_snapshot(first).metadata.node_count == 2
    assert manager.get_snapshot(first).metadata.gpu_count == 16


def test_baseline_restore_and_missing_baseline(store):
    manager = SnapshotManager(store)
    assert manager.restore_baseline() is False

    manager.create_baseline_snapshot()
    manager.create_baseline_snapshot()
    assert sum(1 for s in manager.get_snapshots() if s.is_baseline) == 1

    store.set_slurm_state("dgx-00", "drain", "broken")
    assert manager.restore_baseline()
    assert store.get_node("dgx-00").slurm_state == "idle"


def test_scenario_snapshot_is_tagged(store):
    manager = SnapshotManager(store)
    snapshot = manager.get_snapshot(manager.snapshot_before_scenario("xid-79"))
    assert snapshot.scenario_id == "xid-79"
    assert "xid-79" in snapshot.name


def test_eviction_keeps_baseline(store):
    manager = SnapshotManager(store, max_snapshots=3)
    baseline = manager.create_baseline_snapshot()
    ids = [manager.create_snapshot(f"s{i}") for i in range(4)]
    remaining = [s.id for s in manager.get_snapshots()]
    assert len(remaining) == 3
    assert baseline in remaining
    assert remaining[:2] == [ids[3], ids[2]]


def test_delete_and_unknown_ids(store):
    manager = SnapshotManager(store)
    snapshot_id = manager.create_snapshot("temp")
    assert manager.delete_snapshot(snapshot_id)
    assert not manager.delete_snapshot(snapshot_id)
    assert not manager.restore_snapshot("snap-missing")
    assert manager.export_snapshot("snap-missing") is None


def test_snapshots_persist_as_json(tmp_path, store):
    path = tmp_path / "snapshots.json"
    manager = SnapshotManager(store, storage_path=path)
    snapshot_id = manager.create_snapshot("persisted", "kept on disk")

    payload = json.loads(path.read_text())
    assert payload[0]["id"] == snapshot_id
    assert payload[0]["metadata"]["gpuCount"] == 16
    assert payload[0]["clusterStateCopy"]["nodes"][0]["id"] == "dgx-00"
    assert "clusterState" not in payload[0]

    reloaded = SnapshotManager(store, storage_path=path)
    assert [s.id for s in reloaded.get_snapshots()] == [snapshot_id]
    assert reloaded.get_snapshot(snapshot_id).description == "kept on disk"


def test_corrupt_store_is_ignored(tmp_path, store):
    path = tmp_path / "snapshots.json"
    path.write_text("{not json")
    assert SnapshotManager(store, storage_path=path).get_snapshots() == []


def test_export_uses_camel_case_keys(store):
    manager = SnapshotManager(store)
    snapshot_id = manager.snapshot_before_scenario("xid-79")
    exported = json.loads(manager.export_snapshot(snapshot_id))
    assert exported["scenarioId"] == "xid-79"
    assert exported["metadata"] == {"nodeCount": 2, "gpuCount": 16, "baseline": False}
    gpu = exported["clusterStateCopy"]["nodes"][0]["gpus"][0]
    assert "healthStatus" in gpu
    assert "health_status" not in gpu
