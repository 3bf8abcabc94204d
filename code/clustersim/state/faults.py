"""Fault injection: force GPUs and nodes into abnormal states for training.

A fault is described by a :class:`FaultInjectionConfig`. Its ``parameters``
are validated against the variant chosen by the fault type, so a malformed
value is rejected when the descriptor is loaded rather than half-way through
applying a fault list. Descriptors usually come from scenario JSON and accept
both camelCase and snake_case keys. Unknown fault types and invalid
descriptors are logged and skipped.

Applying the same fault list twice leaves the cluster exactly as applying it
once. Aggregated ECC counters only grow by the increase of the
instantaneous counters, so they stay monotonic without double counting.
Faults only ever raise a GPU's health status; clearing is a separate step.
"""

from __future__ import annotations

from typing import Annotated, Any, Dict, Iterable, Literal, Optional, Union

from pydantic import ConfigDict, Field, ValidationError, model_validator

from clustersim.exceptions import SimulatorError
from clustersim.state.factory import BASELINE_POWER_DRAW, BASELINE_TEMPERATURE
from clustersim.state.models import (
    ECCErrors,
    HEALTH_CRITICAL,
    HEALTH_OK,
    HEALTH_WARNING,
    StateModel,
    worst_health,
)
from clustersim.state.store import ClusterStore
from clustersim.utils.logger import get_logger

logger = get_logger(__name__)

XID_GPU_STOPPED_PROCESSING = 43
THERMAL_CRITICAL_TEMPERATURE = 90


# =============================================================================
# Fault parameter variants
# =============================================================================

class FaultParameters(StateModel):
    """Parameters of one fault type; ``kind`` mirrors the owning fault's type."""

    model_config = ConfigDict(frozen=True)


class XidParams(FaultParameters):
    kind: Literal["xid-error"] = Field("xid-error", exclude=True)
    xid: int = 79
    description: str = "GPU error detected"


class ThermalParams(FaultParameters):
    kind: Literal["thermal"] = Field("thermal", exclude=True)
    target_temp: float = 95


class EccParams(FaultParameters):
    kind: Literal["ecc-error"] = Field("ecc-error", exclude=True)
    single_bit: int = Field(10, ge=0)
    double_bit: int = Field(1, ge=0)


class NvlinkParams(FaultParameters):
    kind: Literal["nvlink-failure"] = Field("nvlink-failure", exclude=True)
    link_id: Optional[int] = None  # None means every link


class HangParams(FaultParameters):
    kind: Literal["gpu-hang"] = Field("gpu-hang", exclude=True)


class PowerParams(FaultParameters):
    kind: Literal["power"] = Field("power", exclude=True)
    power_draw: float = 700


class MemoryParams(FaultParameters):
    kind: Literal["memory-full"] = Field("memory-full", exclude=True)
    memory_used: int = Field(79000, ge=0)


FaultParams = Annotated[
    Union[XidParams, ThermalParams, EccParams, NvlinkParams, HangParams, PowerParams, MemoryParams],
    Field(discriminator="kind"),
]

PARAM_TYPES: Dict[str, type] = {
    "xid-error": XidParams,
    "thermal": ThermalParams,
    "ecc-error": EccParams,
    "nvlink-failure": NvlinkParams,
    "gpu-hang": HangParams,
    "power": PowerParams,
    "memory-full": MemoryParams,
}


class FaultInjectionConfig(StateModel):
    """One fault descriptor: ``{nodeId, gpuId?, type, severity, parameters?}``."""

    model_config = ConfigDict(frozen=True)

    node_id: str
    fault_type: str = Field(alias="type")
    gpu_id: Optional[int] = None
    severity: str = HEALTH_CRITICAL
    params: Optional[FaultParams] = Field(None, alias="parameters")

    @model_validator(mode="before")
    @classmethod
    def _tag_parameters(cls, data: Any) -> Any:
        # Route the parameters to the variant of the fault type; unknown types carry none.
        if not isinstance(data, dict):
            return data
        data = dict(data)
        fault_type = data.get("type", data.get("fault_type"))
        raw = data.pop("params", None) if "params" in data else data.pop("parameters", None)
        if fault_type not in PARAM_TYPES:
            data["parameters"] = None
        elif raw is None:
            data["parameters"] = {"kind": fault_type}
        elif isinstance(raw, dict):
            data["parameters"] = {**raw, "kind": fault_type}
        else:
            data["parameters"] = raw
        return data


# =============================================================================
# Application
# =============================================================================

def _apply_one(store: ClusterStore, fault: FaultInjectionConfig) -> bool:
    params = fault.params
    if params is None:
        logger.warning(f"Unknown fault type: {fault.fault_type!r}, ignoring")
        return False
    if fault.gpu_id is None:
        logger.warning(f"Fault {fault.fault_type} on {fault.node_id} has no gpuId, ignoring")
        return False

    node_id, gpu_id = fault.node_id, fault.gpu_id
    gpu = store.get_gpu(node_id, gpu_id)

    if isinstance(params, XidParams):
        severity = fault.severity if fault.severity in (HEALTH_WARNING, HEALTH_CRITICAL) else HEALTH_CRITICAL
        store.add_xid_error(node_id, gpu_id, params.xid, params.description, severity)
    elif isinstance(params, ThermalParams):
        gpu.temperature = params.target_temp
        thermal = HEALTH_CRITICAL if gpu.temperature >= THERMAL_CRITICAL_TEMPERATURE else HEALTH_WARNING
        gpu.health_status = worst_health(gpu.health_status, thermal)
    elif isinstance(params, EccParams):
        ecc = gpu.ecc_errors
        ecc.aggregated.single_bit += max(0, params.single_bit - ecc.single_bit)
        ecc.aggregated.double_bit += max(0, params.double_bit - ecc.double_bit)
        ecc.single_bit = params.single_bit
        ecc.double_bit = params.double_bit
        gpu.health_status = worst_health(
            gpu.health_status, HEALTH_CRITICAL if ecc.double_bit > 0 else HEALTH_WARNING
        )
    elif isinstance(params, NvlinkParams):
        for link in gpu.nvlinks:
            if params.link_id is None or link.link_id == params.link_id:
                link.status = "Down"
        gpu.health_status = worst_health(gpu.health_status, HEALTH_WARNING)
    elif isinstance(params, HangParams):
        gpu.utilization = 0
        store.add_xid_error(
            node_id, gpu_id, XID_GPU_STOPPED_PROCESSING, "GPU stopped processing", HEALTH_CRITICAL
        )
    elif isinstance(params, PowerParams):
        gpu.power_draw = params.power_draw
    elif isinstance(params, MemoryParams):
        gpu.memory_used = min(params.memory_used, gpu.memory_total)

    store.refresh_node_health(node_id)
    logger.info(f"Injected {fault.fault_type} fault on {node_id} GPU {gpu_id}")
    return True


def _describe(error: ValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first["loc"]) or "descriptor"
    return f"{location}: {first['msg']}"


def apply_faults(
    store: ClusterStore,
    faults: Iterable[Union[FaultInjectionConfig, Dict[str, Any]]],
) -> int:
    """Apply ``faults`` in order; returns how many were applied."""
    applied = 0
    for index, fault in enumerate(faults):
        if not isinstance(fault, FaultInjectionConfig):
            try:
                fault = FaultInjectionConfig.model_validate(fault)
            except ValidationError as e:
                logger.warning(f"Skipping invalid fault #{index}: {_describe(e)}")
                continue
        try:
            if _apply_one(store, fault):
                applied += 1
        except SimulatorError as e:
            logger.warning(f"Skipping {fault.fault_type} fault: {e}")
    return applied


def clear_all_faults(store: ClusterStore) -> None:
    """Return every GPU and node to the healthy baseline."""
    for node in store.nodes:
        for gpu in node.gpus:
            gpu.temperature = BASELINE_TEMPERATURE
            gpu.power_draw = BASELINE_POWER_DRAW
            gpu.utilization = 0
            gpu.memory_used = 0
            gpu.health_status = HEALTH_OK
            gpu.ecc_errors = ECCErrors()
            gpu.xid_errors = []
            for link in gpu.nvlinks:
                link.status = "Active"
        node.health_status = HEALTH_OK
    logger.info("Cleared all faults")
