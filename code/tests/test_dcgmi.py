def test_discovery_summary_and_list(engine):
    assert engine.execute("dcgmi discovery").output == "8 GPU(s) found. Use -l for details."

    detailed = engine.execute("dcgmi discovery -l -c")
    gpu = engine.store.get_gpu("dgx-00", 0)
    assert f"GPU 0: {gpu.uuid}" in detailed.output
    assert "PCI Bus ID:  00000000:10:00.0" in detailed.output
    assert "Compute Capability: 8.0" in detailed.output


def test_short_diag_passes_on_healthy_node(engine):
    result = engine.execute("dcgmi diag -r 1")
    assert result.exit_code == 0
    assert "Running level 1 diagnostic..." in result.output
    assert "All tests passed successfully." in result.output
    assert "ECC Check" not in result.output


def test_long_diag_fails_ecc_check(engine):
    engine.apply_faults([
        {"nodeId": "dgx-00", "gpuId": 1, "type": "ecc-error", "parameters": {"doubleBit": 2}},
    ])
    result = engine.execute("dcgmi diag -r 3")
    assert result.exit_code == 0
    assert "ECC Check" in result.output
    assert "1 test(s) failed" in result.output


def test_diag_rejects_bad_mode(engine):
    result = engine.execute("dcgmi diag -r 4")
    assert result.exit_code == 1
    assert "mode must be 1 (short), 2 (medium), or 3 (long)" in result.output


def test_diag_refuses_gpu_off_the_bus(engine):
    engine.apply_faults([{"nodeId": "dgx-00", "gpuId": 0, "type": "xid-error", "parameters": {"xid": 79}}])
    result = engine.execute("dcgmi diag -r 1")
    assert result.exit_code == 1
    assert "GPU has fallen off the bus (XID 79)" in result.output

    other_gpu = engine.execute("dcgmi diag -r 1 -i 3")
    assert other_gpu.exit_code == 0


def test_health_check_reports_faults(engine):
    engine.apply_faults([
        {"nodeId": "dgx-00", "gpuId": 0, "type": "xid-error", "parameters": {"xid": 79}},
        {"nodeId": "dgx-00", "gpuId": 2, "type": "thermal", "parameters": {"targetTemp": 93}},
        {"nodeId": "dgx-00", "gpuId": 4, "type": "nvlink-failure", "parameters": {"linkId": 1}},
    ])
    result = engine.execute("dcgmi health -c")
    assert result.exit_code == 0
    assert "GPU has fallen off the bus (XID 79)" in result.output
    assert "XID Errors: 1 (codes: 79)" in result.output
    assert "Temperature: 93°C (HIGH)" in result.output
    assert "NVLink: 1 link(s) down" in result.output


def test_health_requires_check_flag(engine):
    result = engine.execute("dcgmi health")
    assert result.exit_code == 1
    assert "-c/--check" in result.output


def test_unknown_subcommand_suggests_closest(engine):
    result = engine.execute("dcgmi dag")
    assert result.exit_code == 1
    assert "Unknown command: dag" in result.output
    assert "Did you mean 'diag'?" in result.output


def test_policy_set_validates_condition(engine):
    assert engine.execute("dcgmi policy --set").exit_code == 1
    bad = engine.execute("dcgmi policy --set --condition meteor")
    assert "Invalid condition: meteor" in bad.output

    ok = engine.execute("dcgmi policy -g 1 --set --condition ecc --threshold 10 --action log")
    assert ok.exit_code == 0
    assert ok.output == "Policy set for group 1: ecc threshold 10, action log."
