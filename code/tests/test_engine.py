import pytest

from clustersim.engine import SimulationEngine
from clustersim.exceptions import NodeNotFoundError


def test_blank_line_is_a_no_op(engine):
    result = engine.execute("   ")
    assert result.output == ""
    assert result.exit_code == 0
    assert engine.context.history == []
    assert engine.store.state.clock_ms == 0


def test_each_command_advances_the_clock(engine):
    engine.execute("sinfo")
    engine.execute("sinfo")
    assert engine.store.state.clock_ms == 2 * engine.config.tick_ms
    assert engine.context.history == ["sinfo", "sinfo"]


def test_command_not_found_suggests_closest(engine):
    result = engine.execute("nvidia-sm -L")
    assert result.exit_code == 1
    assert result.output == "nvidia-sm: command not found\nDid you mean 'nvidia-smi'?"

    unrelated = engine.execute("frobnicate")
    assert unrelated.output == "frobnicate: command not found"


def test_internal_error_is_contained(engine, monkeypatch):
    def explode(parsed, context):
        raise RuntimeError("boom")

    monkeypatch.setattr(engine.simulator_for("dcgmi"), "execute", explode)
    result = engine.execute("dcgmi discovery -l")
    assert result.exit_code == 1
    assert result.output == "Internal simulator error: boom"
    assert engine.execute("sinfo").exit_code == 0


def test_pipes_filter_output(engine):
    assert engine.execute("nvidia-smi -L | grep 'GPU 3'").output.startswith("GPU 3: ")
    assert engine.execute("nvidia-smi -L | wc -l").output.strip() == "8"
    assert engine.execute("nvidia-smi -L | head -n 2 | tail -n 1").output.startswith("GPU 1: ")


def test_pipes_skip_failed_commands(engine):
    result = engine.execute("nvidia-smi -i 42 | grep nothing")
    assert result.exit_code == 1
    assert "GPU 42 not found" in result.output


def test_current_node_switching(engine):
    engine.set_current_node("dgx-01.cluster.local")
    assert engine.current_node == "dgx-01"
    engine.apply_faults([{"nodeId": "dgx-01", "gpuId": 0, "type": "xid-error", "parameters": {"xid": 79}}])
    assert len(engine.execute("nvidia-smi -L").output.splitlines()) == 7

    with pytest.raises(NodeNotFoundError):
        engine.set_current_node("dgx-42")
    assert engine.current_node == "dgx-01"


def test_xid79_is_consistent_across_tools(engine):
    engine.apply_faults([{"nodeId": "dgx-00", "gpuId": 5, "type": "xid-error", "parameters": {"xid": 79}}])
    uuid = engine.store.get_gpu("dgx-00", 5).uuid

    assert uuid not in engine.execute("nvidia-smi -L").output
    assert "GPU has fallen off the bus (XID 79)" in engine.execute("dcgmi health -c").output
    assert engine.execute("dcgmi diag -r 1").exit_code == 1
    assert "15:00.0 3D controller" in engine.execute("lspci | grep 'rev ff'").output
    assert "NVRM: Xid (PCI:00000000:15:00.0): 79" in engine.execute("dmesg | grep -i xid").output
    sensor = engine.execute("ipmitool sensor | grep GPU5").output
    assert "| cr" in sensor


def test_faults_cleared_everywhere(engine):
    engine.apply_faults([
        {"nodeId": "dgx-00", "gpuId": 5, "type": "xid-error", "parameters": {"xid": 79}},
        {"nodeId": "dgx-00", "gpuId": 1, "type": "thermal", "parameters": {"targetTemp": 96}},
    ])
    engine.clear_all_faults()
    assert len(engine.execute("nvidia-smi -L").output.splitlines()) == 8
    assert "rev ff" not in engine.execute("lspci").output
    assert "| cr" not in engine.execute("ipmitool sensor").output


def test_create_builds_cluster_from_config():
    engine = SimulationEngine.create(nodes=3, system_type="DGX-H100")
    assert [node.id for node in engine.store.nodes] == ["dgx-00", "dgx-01", "dgx-02"]
    assert engine.current_node == "dgx-00"
    assert "H100" in engine.execute("nvidia-smi -L").output


def test_commands_listing(engine):
    assert engine.commands[0] == "nvidia-smi"
    assert {"sinfo", "ipmitool", "perfquery"} <= set(engine.commands)
