from pathlib import Path

from clustersim.config import SimulatorConfig, load_config


def test_defaults(tmp_path):
    assert load_config(tmp_path) == SimulatorConfig()


def test_env_file_precedence(tmp_path, monkeypatch):
    (tmp_path / ".env").write_text("# cluster size\nDCSIM_NODES=4\nDCSIM_SYSTEM_TYPE='DGX-H100'\n")
    assert load_config(tmp_path).nodes == 4
    assert load_config(tmp_path).system_type == "DGX-H100"

    (tmp_path / ".env.local").write_text("DCSIM_NODES=5\n")
    assert load_config(tmp_path).nodes == 5

    monkeypatch.setenv("DCSIM_NODES", "6")
    assert load_config(tmp_path).nodes == 6

    assert load_config(tmp_path, nodes=7).nodes == 7
    assert load_config(tmp_path, nodes=None).nodes == 6


def test_reads_current_directory_by_default(tmp_path):
    (tmp_path / ".env").write_text("DCSIM_TICK_MS=250\n")
    assert load_config().tick_ms == 250


def test_bad_integer_falls_back_to_default(tmp_path, monkeypatch):
    monkeypatch.setenv("DCSIM_MAX_SNAPSHOTS", "lots")
    assert load_config(tmp_path).max_snapshots == 20


def test_snapshot_path(tmp_path, monkeypatch):
    monkeypatch.setenv("DCSIM_SNAPSHOT_PATH", str(tmp_path / "snaps.json"))
    assert load_config(tmp_path).snapshot_path == Path(tmp_path / "snaps.json")
