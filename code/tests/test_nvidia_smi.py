from clustersim.state.models import HEALTH_OK


def _inject_xid79(engine, gpu=0):
    engine.apply_faults([{"nodeId": "dgx-00", "gpuId": gpu, "type": "xid-error", "parameters": {"xid": 79}}])


def test_list_gpus(engine):
    result = engine.execute("nvidia-smi -L")
    assert result.exit_code == 0
    lines = result.output.splitlines()
    assert len(lines) == 8
    gpu = engine.store.get_gpu("dgx-00", 0)
    assert lines[0] == f"GPU 0: NVIDIA A100-SXM4-80GB (UUID: {gpu.uuid})"


def test_default_table_lists_every_gpu(engine):
    result = engine.execute("nvidia-smi")
    assert result.exit_code == 0
    assert "NVIDIA-SMI" in result.output
    assert "WARNING" not in result.output


def test_query_gpu_csv(engine):
    result = engine.execute("nvidia-smi --query-gpu=index,name,memory.total --format=csv")
    lines = result.output.splitlines()
    assert lines[0] == "index, name, memory.total [MiB]"
    assert lines[1] == "0, NVIDIA A100-SXM4-80GB, 81920 MiB"
    assert len(lines) == 9


def test_query_gpu_noheader_nounits(engine):
    result = engine.execute("nvidia-smi --query-gpu=index,memory.total --format=csv,noheader,nounits -i 3")
    assert result.output == "3, 81920"


def test_query_gpu_rejects_non_csv_format(engine):
    result = engine.execute("nvidia-smi --query-gpu=index --format=json")
    assert result.exit_code == 1
    assert "Only csv output is supported" in result.output


def test_detailed_query(engine):
    result = engine.execute("nvidia-smi -q")
    assert result.output.startswith("==============NVSMI LOG==============")
    assert "Attached GPUs                             : 8" in result.output


def test_detailed_query_rejects_unknown_display_section(engine):
    result = engine.execute("nvidia-smi -q -d BOGUS")
    assert result.exit_code == 1
    assert "Invalid display argument: BOGUS" in result.output


def test_unknown_flag_suggests_closest(engine):
    result = engine.execute("nvidia-smi --gpu-reet -i 0")
    assert result.exit_code == 1
    assert "Unknown option: --gpu-reet" in result.output
    assert "'--gpu-reset'" in result.output


def test_invalid_gpu_id(engine):
    result = engine.execute("nvidia-smi -i 12")
    assert result.exit_code == 1
    assert "GPU 12 not found. Valid GPU IDs: 0-7" in result.output


def test_fallen_off_bus_gpu_is_hidden(engine):
    _inject_xid79(engine)
    listing = engine.execute("nvidia-smi -L").output.splitlines()
    assert len(listing) == 7
    assert not any(line.startswith("GPU 0:") for line in listing)

    table = engine.execute("nvidia-smi").output
    assert "WARNING: 1 GPU(s) not shown" in table
    assert "XID 79" in table

    targeted = engine.execute("nvidia-smi -i 0")
    assert targeted.exit_code == 1
    assert "Unable to query GPU 0: GPU has fallen off the bus" in targeted.output


def test_gpu_reset_requires_id(engine):
    result = engine.execute("nvidia-smi -r")
    assert result.exit_code == 1
    assert "requires -i flag" in result.output


def test_gpu_reset_clears_recoverable_xid(engine):
    engine.apply_faults([{"nodeId": "dgx-00", "gpuId": 2, "type": "xid-error", "parameters": {"xid": 48}}])
    result = engine.execute("nvidia-smi --gpu-reset -i 2")
    assert result.exit_code == 0
    assert "GPU 2 reset successfully." in result.output
    assert "Cleared critical XID error(s): 48" in result.output
    gpu = engine.store.get_gpu("dgx-00", 2)
    assert gpu.xid_errors == []
    assert gpu.health_status == HEALTH_OK


def test_gpu_reset_refused_after_xid79(engine):
    _inject_xid79(engine)
    result = engine.execute("nvidia-smi -r -i 0")
    assert result.exit_code == 0
    assert "Unable to reset GPU 0" in result.output
    assert engine.store.get_gpu("dgx-00", 0).fallen_off_bus


def test_power_limit_bounds(engine):
    ok = engine.execute("nvidia-smi -i 0 -pl 300")
    assert ok.exit_code == 0
    assert "was set to 300.00 W" in ok.output
    assert engine.store.get_gpu("dgx-00", 0).power_limit == 300

    too_low = engine.execute("nvidia-smi -i 0 -pl 50")
    assert too_low.exit_code == 1
    assert "between 100 and 400 W" in too_low.output

    garbage = engine.execute("nvidia-smi -pl lots")
    assert garbage.exit_code == 1


def test_mig_enable_create_and_destroy(engine):
    assert engine.execute("nvidia-smi mig -lgip").exit_code == 1

    enabled = engine.execute("nvidia-smi -i 0 -mig 1")
    assert "Enabled MIG Mode for GPU 00000000:10:00.0" in enabled.output

    created = engine.execute("nvidia-smi mig -i 0 -cgi 19,19 -C")
    assert created.exit_code == 0
    assert created.output.count("Successfully created GPU instance") == 2
    assert created.output.count("Successfully created compute instance") == 2

    listing = engine.execute("nvidia-smi mig -lgi")
    assert "MIG 1g.5gb" in listing.output

    full = engine.execute("nvidia-smi mig -i 0 -cgi 0")
    assert full.exit_code == 1
    assert "Insufficient Resources" in full.output

    destroyed = engine.execute("nvidia-smi mig -i 0 -dgi")
    assert destroyed.output.count("Successfully destroyed GPU instance") == 2
    assert engine.store.get_gpu("dgx-00", 0).mig_instances == []


def test_mig_create_requires_mig_mode(engine):
    result = engine.execute("nvidia-smi mig -i 1 -cgi 19")
    assert result.exit_code == 1
    assert "MIG mode not enabled on GPU 1" in result.output


def test_nvlink_status_shows_down_links(engine):
    engine.apply_faults([{"nodeId": "dgx-00", "gpuId": 0, "type": "nvlink-failure", "parameters": {"linkId": 3}}])
    result = engine.execute("nvidia-smi nvlink -s -i 0")
    assert "Link 3: <inactive>" in result.output
    assert "Link 0: 600 GB/s" in result.output


def test_topology_matrix(engine):
    result = engine.execute("nvidia-smi topo -m")
    assert result.exit_code == 0
    assert result.output.splitlines()[0].startswith("\tGPU0\tGPU1")
    assert "NV12" in result.output


def test_persistence_and_ecc_settings(engine):
    result = engine.execute("nvidia-smi -i 1 -pm 0")
    assert result.output.startswith("Disabled persistence mode for GPU 00000000:11:00.0.")
    assert not engine.store.get_gpu("dgx-00", 1).persistence_mode

    assert engine.execute("nvidia-smi -pm maybe").exit_code == 1

    disabled = engine.execute("nvidia-smi -i 1 -e 0")
    assert "Disabled ECC support for GPU 00000000:11:00.0." in disabled.output
    assert disabled.output.endswith("Reboot required.")


def test_reset_volatile_ecc_keeps_aggregate(engine):
    engine.apply_faults([{"nodeId": "dgx-00", "gpuId": 0, "type": "ecc-error", "parameters": {"singleBit": 7}}])
    engine.execute("nvidia-smi -i 0 -p 0")
    ecc = engine.store.get_gpu("dgx-00", 0).ecc_errors
    assert ecc.single_bit == 0
    assert ecc.aggregated.single_bit == 7


def test_lock_and_reset_clocks(engine):
    locked = engine.execute("nvidia-smi -i 0 -lgc 900,1200")
    assert '"(gpuClkMin 900, gpuClkMax 1200)"' in locked.output
    assert engine.store.get_gpu("dgx-00", 0).clocks_sm == 1200

    engine.execute("nvidia-smi -i 0 -rgc")
    assert engine.store.get_gpu("dgx-00", 0).clocks_sm == 1410

    assert engine.execute("nvidia-smi -lgc fast").exit_code == 1


def test_gpu_reset_refused_while_job_holds_gpu(engine):
    engine.execute("sbatch --gpus=1 train.sh")
    engine.execute("squeue")
    gpu = next(g for g in engine.store.get_node("dgx-00").gpus if g.allocated_job_id == 1000)

    refused = engine.execute(f"nvidia-smi -r -i {gpu.id}")
    assert refused.exit_code == 1
    assert "currently in use" in refused.output
    assert "scancel 1000" in refused.output
    assert gpu.allocated_job_id == 1000
    assert gpu.memory_used > 0

    engine.execute("scancel 1000")
    assert engine.execute(f"nvidia-smi -r -i {gpu.id}").exit_code == 0


def test_power_limit_is_all_or_nothing(engine):
    node = engine.store.get_node("dgx-00")
    node.gpus[0].gpu_type = "H100-SXM"
    result = engine.execute("nvidia-smi -pl 500")
    assert result.exit_code == 1
    assert "for GPU 1" in result.output
    assert [gpu.power_limit for gpu in node.gpus] == [400.0] * len(node.gpus)

    ok = engine.execute("nvidia-smi -i 0 -pl 500")
    assert ok.exit_code == 0
    assert "was set to 500.00 W from 400.00 W" in ok.output
