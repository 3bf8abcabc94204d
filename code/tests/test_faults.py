from clustersim.state.faults import FaultInjectionConfig, XidParams, apply_faults, clear_all_faults
from clustersim.state.models import HEALTH_CRITICAL, HEALTH_OK, HEALTH_WARNING


def _xid(node="dgx-00", gpu=0, code=79):
    return {"nodeId": node, "gpuId": gpu, "type": "xid-error", "severity": "Critical", "parameters": {"xid": code}}


def test_descriptor_accepts_camel_case():
    fault = FaultInjectionConfig.model_validate(
        {"nodeId": "dgx-01", "gpuId": "2", "type": "thermal", "parameters": {"targetTemp": 88}}
    )
    assert fault.node_id == "dgx-01"
    assert fault.gpu_id == 2
    assert fault.params.target_temp == 88
    dumped = fault.model_dump(by_alias=True, exclude_none=True)
    assert dumped["parameters"] == {"targetTemp": 88}
    assert FaultInjectionConfig.model_validate(dumped) == fault


def test_xid_fault_marks_gpu_and_node_critical(store):
    assert apply_faults(store, [_xid()]) == 1
    gpu = store.get_gpu("dgx-00", 0)
    assert gpu.fallen_off_bus
    assert gpu.health_status == HEALTH_CRITICAL
    assert store.get_node("dgx-00").health_status == HEALTH_CRITICAL
    assert store.get_node("dgx-01").health_status == HEALTH_OK


def test_reapplying_faults_is_idempotent(store):
    faults = [
        _xid(),
        {"nodeId": "dgx-00", "gpuId": 1, "type": "ecc-error", "parameters": {"singleBit": 4, "doubleBit": 2}},
    ]
    apply_faults(store, faults)
    once = store.copy_state().model_dump()
    apply_faults(store, faults)
    assert store.state.model_dump() == once

    ecc = store.get_gpu("dgx-00", 1).ecc_errors
    assert (ecc.single_bit, ecc.double_bit) == (4, 2)
    assert (ecc.aggregated.single_bit, ecc.aggregated.double_bit) == (4, 2)
    assert len(store.get_gpu("dgx-00", 0).xid_errors) == 1


def test_thermal_severity_follows_temperature(store):
    apply_faults(store, [
        {"nodeId": "dgx-00", "gpuId": 0, "type": "thermal", "parameters": {"targetTemp": 85}},
        {"nodeId": "dgx-00", "gpuId": 1, "type": "thermal", "parameters": {"targetTemp": 95}},
    ])
    assert store.get_gpu("dgx-00", 0).health_status == HEALTH_WARNING
    assert store.get_gpu("dgx-00", 1).health_status == HEALTH_CRITICAL


def test_hang_nvlink_power_and_memory_faults(store):
    applied = apply_faults(store, [
        {"nodeId": "dgx-01", "gpuId": 0, "type": "gpu-hang"},
        {"nodeId": "dgx-01", "gpuId": 1, "type": "nvlink-failure", "parameters": {"linkId": 2}},
        {"nodeId": "dgx-01", "gpuId": 2, "type": "power", "parameters": {"powerDraw": 650}},
        {"nodeId": "dgx-01", "gpuId": 3, "type": "memory-full", "parameters": {"memoryUsed": 999999}},
    ])
    assert applied == 4
    hung = store.get_gpu("dgx-01", 0)
    assert [x.code for x in hung.xid_errors] == [43]
    assert hung.utilization == 0
    links = store.get_gpu("dgx-01", 1).nvlinks
    assert [link.link_id for link in links if link.status == "Down"] == [2]
    assert store.get_gpu("dgx-01", 2).power_draw == 650
    gpu = store.get_gpu("dgx-01", 3)
    assert gpu.memory_used == gpu.memory_total


def test_invalid_faults_are_skipped(store):
    applied = apply_faults(store, [
        {"nodeId": "dgx-00", "gpuId": 0, "type": "meteor-strike"},
        {"nodeId": "dgx-99", "gpuId": 0, "type": "thermal"},
        {"nodeId": "dgx-00", "gpuId": 42, "type": "thermal"},
        {"nodeId": "dgx-00", "type": "thermal"},
    ])
    assert applied == 0
    assert store.get_node("dgx-00").health_status == HEALTH_OK


def test_typed_params_are_used_directly(store):
    fault = FaultInjectionConfig(node_id="dgx-00", gpu_id=5, fault_type="xid-error", params=XidParams(xid=48))
    assert apply_faults(store, [fault]) == 1
    assert [x.code for x in store.get_gpu("dgx-00", 5).xid_errors] == [48]


def test_clear_all_faults_is_idempotent(store):
    apply_faults(store, [_xid(), {"nodeId": "dgx-01", "gpuId": 3, "type": "thermal"}])
    clear_all_faults(store)
    once = store.copy_state().model_dump()
    clear_all_faults(store)
    assert store.state.model_dump() == once
    for node in store.nodes:
        assert node.health_status == HEALTH_OK
        assert all(not gpu.xid_errors for gpu in node.gpus)


def test_invalid_parameters_do_not_abort_the_list(store):
    applied = apply_faults(store, [
        {"nodeId": "dgx-00", "gpuId": 0, "type": "thermal", "parameters": {"targetTemp": "hot"}},
        {"nodeId": "dgx-00", "gpuId": "first", "type": "thermal"},
        {"nodeId": "dgx-00", "gpuId": 2, "type": "ecc-error", "parameters": [1, 2]},
        {"nodeId": "dgx-00", "gpuId": 3, "type": "ecc-error", "parameters": {"doubleBit": -1}},
        "xid",
        _xid(gpu=1),
    ])
    assert applied == 1
    assert store.get_gpu("dgx-00", 0).health_status == HEALTH_OK
    assert store.get_gpu("dgx-00", 1).fallen_off_bus
    assert store.get_gpu("dgx-00", 3).ecc_errors.double_bit == 0


def test_thermal_fault_does_not_downgrade_critical_gpu(store):
    apply_faults(store, [
        _xid(),
        {"nodeId": "dgx-00", "gpuId": 0, "type": "thermal", "parameters": {"targetTemp": 85}},
    ])
    gpu = store.get_gpu("dgx-00", 0)
    assert gpu.temperature == 85
    assert gpu.health_status == HEALTH_CRITICAL
    assert store.get_node("dgx-00").health_status == HEALTH_CRITICAL


def test_lesser_faults_do_not_downgrade_each_other(store):
    apply_faults(store, [
        {"nodeId": "dgx-00", "gpuId": 0, "type": "ecc-error", "parameters": {"singleBit": 1, "doubleBit": 1}},
        {"nodeId": "dgx-00", "gpuId": 0, "type": "nvlink-failure"},
    ])
    gpu = store.get_gpu("dgx-00", 0)
    assert all(link.status == "Down" for link in gpu.nvlinks)
    assert gpu.health_status == HEALTH_CRITICAL
