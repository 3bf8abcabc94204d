import subprocess
import sys
from pathlib import Path

CODE_ROOT = Path(__file__).resolve().parents[1]


def _dcsim(*args, snapshot_file=None):
    command = [sys.executable, "-m", "cli.dcsim"]
    if snapshot_file is not None:
        command += ["--snapshot-file", str(snapshot_file)]
    return subprocess.run(
        command + list(args),
        cwd=CODE_ROOT,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        timeout=30,
    )


def test_dcsim_help_exits_cleanly():
    result = _dcsim("--help")
    assert result.returncode == 0
    assert "dcsim" in result.stdout.lower()


def test_snapshot_help():
    result = _dcsim("snapshot", "create", "--help")
    assert result.returncode == 0
    assert "--baseline" in result.stdout


def test_run_exit_code_follows_last_failure(tmp_path):
    ok = _dcsim("run", "nvidia-smi -L", snapshot_file=tmp_path / "s.json")
    assert ok.returncode == 0
    assert ok.stdout.startswith("GPU 0: NVIDIA A100-SXM4-80GB")

    failed = _dcsim("run", "sinfo", "nvidia-sm", snapshot_file=tmp_path / "s.json")
    assert failed.returncode == 1
    assert "Did you mean 'nvidia-smi'?" in failed.stdout
