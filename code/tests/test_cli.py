import io
import json
import re

import pytest
from rich.console import Console
from typer.testing import CliRunner

from cli.commands.shell import InteractiveShell
from cli.dcsim import VERSION, app
from clustersim.config import SimulatorConfig
from clustersim.engine import SimulationEngine
from clustersim.state.factory import create_cluster

SNAPSHOT_ID = re.compile(r"snap-[0-9a-f]{12}")

runner = CliRunner()


@pytest.fixture
def invoke(tmp_path):
    store = tmp_path / "snapshots.json"

    def _invoke(*args):
        return runner.invoke(app, ["--snapshot-file", str(store), "--nodes", "2", *args])

    return _invoke


def test_version():
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert result.output.strip() == f"dcsim {VERSION}"


def test_run_multiple_lines(invoke):
    result = invoke("run", "sinfo -h", "nvidia-smi -L | wc -l")
    assert result.exit_code == 0
    lines = result.output.splitlines()
    assert lines[0].split()[-1] == "dgx-00,dgx-01"
    assert lines[1].strip() == "8"


def test_run_on_other_node(invoke):
    assert invoke("run", "--node", "dgx-01", "ibstat -l").exit_code == 0
    missing = invoke("run", "--node", "dgx-09", "ibstat -l")
    assert missing.exit_code == 1
    assert "Node dgx-09 not found" in missing.output


def test_commands_table(invoke):
    result = invoke("commands")
    assert result.exit_code == 0
    assert "nvidia-smi" in result.output


def test_snapshot_lifecycle(invoke, tmp_path):
    assert "No snapshots found." in invoke("snapshot", "list").output

    created = invoke(
        "snapshot", "create", "drained",
        "-c", "scontrol update NodeName=dgx-01 State=DRAIN Reason=maint",
    )
    assert created.exit_code == 0
    snapshot_id = SNAPSHOT_ID.search(created.output).group(0)

    saved = json.loads((tmp_path / "snapshots.json").read_text())
    assert [entry["id"] for entry in saved] == [snapshot_id]

    restored = invoke("snapshot", "restore", snapshot_id, "-c", "sinfo -R -h")
    assert restored.exit_code == 0
    assert "maint" in restored.output

    exported = invoke("snapshot", "export", snapshot_id)
    assert exported.exit_code == 0
    assert snapshot_id in exported.output

    assert invoke("snapshot", "delete", snapshot_id).exit_code == 0
    assert invoke("snapshot", "delete", snapshot_id).exit_code == 1
    assert invoke("snapshot", "restore", snapshot_id).exit_code == 1


def test_scenario_load(invoke, tmp_path):
    path = tmp_path / "xid.json"
    path.write_text(json.dumps({
        "id": "xid-79-triage",
        "faults": [{"nodeId": "dgx-00", "gpuId": 0, "type": "xid-error", "parameters": {"xid": 79}}],
    }))
    result = invoke("scenario", "load", str(path), "-c", "nvidia-smi -L | wc -l")
    assert result.exit_code == 0
    assert "1/1 fault(s) applied" in result.output
    assert result.output.splitlines()[-1].strip() == "7"


def test_scenario_load_rejects_bad_file(invoke, tmp_path):
    path = tmp_path / "broken.json"
    path.write_text("[")
    result = invoke("scenario", "load", str(path))
    assert result.exit_code == 1
    assert "not valid JSON" in " ".join(result.output.split())


# -----------------------------------------------------------------------------
# Interactive shell
# -----------------------------------------------------------------------------

@pytest.fixture
def shell():
    engine = SimulationEngine(create_cluster(2), SimulatorConfig(nodes=2))
    return InteractiveShell(engine, Console(file=io.StringIO(), width=200))


def _console_text(shell):
    return shell.console.file.getvalue()


def test_shell_exit_words(shell):
    assert shell.handle("exit") == (False, 0)
    assert shell.handle("") == (True, 0)


def test_shell_runs_simulated_commands(shell, capsys):
    assert shell.handle("nvidia-smi -L | head -n 1") == (True, 0)
    assert capsys.readouterr().out.startswith("GPU 0: ")
    assert shell.handle("nvidia-smi -i 99") == (True, 1)


def test_shell_node_switch(shell):
    assert shell.handle("node dgx-01") == (True, 0)
    assert shell.engine.current_node == "dgx-01"
    assert "root@dgx-01" in shell.prompt
    assert shell.handle("node dgx-99") == (True, 1)


def test_shell_snapshot_builtins(shell):
    shell.handle("snapshot create before drain")
    snapshot_id = SNAPSHOT_ID.search(_console_text(shell)).group(0)
    shell.handle("scontrol update NodeName=dgx-00 State=DRAIN")
    assert shell.handle(f"snapshot restore {snapshot_id}") == (True, 0)
    assert shell.engine.store.get_node("dgx-00").slurm_state == "idle"
    assert shell.engine.snapshots.get_snapshot(snapshot_id).name == "before drain"

    assert shell.handle("snapshot restore snap-000000000000") == (True, 1)
    assert shell.handle("snapshot baseline --restore") == (True, 1)
    assert shell.handle("snapshot baseline") == (True, 0)
    assert shell.handle("snapshot baseline --restore") == (True, 0)
    assert shell.handle("snapshot frobnicate") == (True, 1)


def test_shell_fault_clear_and_history(shell):
    shell.engine.apply_faults([{"nodeId": "dgx-00", "gpuId": 0, "type": "xid-error", "parameters": {"xid": 79}}])
    shell.handle("fault clear")
    assert not shell.engine.store.get_gpu("dgx-00", 0).fallen_off_bus

    shell.handle("sinfo")
    shell.handle("history")
    assert "    1  sinfo" in _console_text(shell)


def test_shell_help_lists_builtins(shell):
    shell.handle("help")
    text = _console_text(shell)
    assert "snapshot restore <id>" in text
    assert "perfquery" in text
