"""Data model of the simulated cluster.

Everything a simulator can observe lives here: nodes, GPUs, InfiniBand HCAs,
BMCs and the Slurm job table. Models are mutable pydantic models owned by a
single :class:`~clustersim.state.store.ClusterStore`. Field names are
snake_case in Python and camelCase in JSON (snapshots, scenario files);
validation accepts either spelling.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

HEALTH_OK = "OK"
HEALTH_WARNING = "Warning"
HEALTH_CRITICAL = "Critical"
HEALTH_UNKNOWN = "Unknown"

_HEALTH_RANK = {HEALTH_OK: 0, HEALTH_UNKNOWN: 0, HEALTH_WARNING: 1, HEALTH_CRITICAL: 2}

SLURM_STATES = ("idle", "alloc", "drain", "down")

JOB_PENDING = "PENDING"
JOB_RUNNING = "RUNNING"
JOB_COMPLETED = "COMPLETED"
JOB_FAILED = "FAILED"
JOB_CANCELLED = "CANCELLED"

# XID 79: the GPU has fallen off the bus and is invisible to every tool.
XID_FALLEN_OFF_BUS = 79
CRITICAL_XIDS = frozenset({48, 63, 64, 74, 79, 92, 94, 95})


def worst_health(*statuses: str) -> str:
    """The most severe of ``statuses``; ties keep the first one given."""
    return max(statuses, key=lambda status: _HEALTH_RANK.get(status, 0))


class StateModel(BaseModel):
    """Base for everything that is persisted or loaded from JSON."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


@dataclass(frozen=True)
class MIGProfile:
    id: int
    name: str
    memory: float  # GB
    compute_slices: int
    gpu_instances: int
    max_instances: int


class ComputeInstance(StateModel):
    id: int
    gi_id: int
    profile_id: int
    uuid: str


class MIGInstance(StateModel):
    id: int
    gpu_id: int
    profile_id: int
    uuid: str
    compute_instances: List[ComputeInstance] = Field(default_factory=list)


class NVLinkConnection(StateModel):
    link_id: int
    status: str = "Active"  # Active | Down | Inactive
    speed: float = 600.0  # GB/s
    tx_errors: int = 0
    rx_errors: int = 0
    replay_errors: int = 0


class AggregatedECC(StateModel):
    single_bit: int = 0
    double_bit: int = 0


class ECCErrors(StateModel):
    single_bit: int = 0
    double_bit: int = 0
    aggregated: AggregatedECC = Field(default_factory=AggregatedECC)


class XIDError(StateModel):
    code: int
    timestamp: int  # simulated clock, ms
    description: str
    severity: str = HEALTH_CRITICAL  # Info | Warning | Critical


class GPU(StateModel):
    id: int
    uuid: str
    name: str
    gpu_type: str
    pci_address: str
    temperature: float = 45.0
    power_draw: float = 300.0
    power_limit: float = 400.0
    memory_total: int = 81920  # MB
    memory_used: int = 0  # MB
    utilization: int = 0  # percent
    clocks_sm: int = 1410  # MHz
    clocks_mem: int = 1215  # MHz
    ecc_enabled: bool = True
    ecc_errors: ECCErrors = Field(default_factory=ECCErrors)
    mig_mode: bool = False
    mig_instances: List[MIGInstance] = Field(default_factory=list)
    nvlinks: List[NVLinkConnection] = Field(default_factory=list)
    health_status: str = HEALTH_OK
    xid_errors: List[XIDError] = Field(default_factory=list)
    persistence_mode: bool = True
    allocated_job_id: Optional[int] = None

    @property
    def fallen_off_bus(self) -> bool:
        return any(x.code == XID_FALLEN_OFF_BUS for x in self.xid_errors)

    @property
    def critical_xids(self) -> List[XIDError]:
        return [x for x in self.xid_errors if x.code in CRITICAL_XIDS]


class PortErrors(StateModel):
    symbol_errors: int = 0
    link_downed: int = 0
    port_rcv_errors: int = 0
    port_xmit_discards: int = 0
    port_xmit_wait: int = 0


class InfiniBandPort(StateModel):
    port_number: int
    state: str = "Active"  # Active | Down | Polling | Disabled
    physical_state: str = "LinkUp"  # LinkUp | LinkDown | Polling | Sleep
    rate: int = 200  # Gb/s
    lid: int = 0
    guid: str = ""
    link_layer: str = "InfiniBand"
    errors: PortErrors = Field(default_factory=PortErrors)


class InfiniBandHCA(StateModel):
    id: int
    device_path: str
    ca_type: str
    firmware_version: str
    ports: List[InfiniBandPort] = Field(default_factory=list)

    @property
    def name(self) -> str:
        return f"mlx5_{self.id}"


class BMCSensor(StateModel):
    name: str
    reading: float
    unit: str
    status: str = HEALTH_OK
    lower_critical: Optional[float] = None
    upper_critical: Optional[float] = None
    lower_warning: Optional[float] = None
    upper_warning: Optional[float] = None


class SELEntry(StateModel):
    id: int
    timestamp: int
    sensor: str
    event: str
    asserted: bool = True


class BMC(StateModel):
    ip_address: str
    mac_address: str
    firmware_version: str
    manufacturer: str
    sensors: List[BMCSensor] = Field(default_factory=list)
    power_state: str = "On"
    sel: List[SELEntry] = Field(default_factory=list)


class Node(StateModel):
    id: str
    hostname: str
    system_type: str
    gpus: List[GPU] = Field(default_factory=list)
    hcas: List[InfiniBandHCA] = Field(default_factory=list)
    bmc: Optional[BMC] = None
    cpu_model: str = "AMD EPYC 7742 64-Core Processor"
    cpu_count: int = 2
    ram_total: int = 1024  # GB
    ram_used: int = 128  # GB
    os_version: str = "Ubuntu 22.04.3 LTS"
    kernel_version: str = "5.15.0-91-generic"
    nvidia_driver_version: str = "535.129.03"
    cuda_version: str = "12.2"
    health_status: str = HEALTH_OK
    slurm_state: str = "idle"
    slurm_reason: Optional[str] = None
    cluster_power_limit: Optional[int] = None

    def visible_gpus(self) -> List[GPU]:
        """GPUs still reachable over PCIe (no XID 79)."""
        return [gpu for gpu in self.gpus if not gpu.fallen_off_bus]


class SlurmJob(StateModel):
    job_id: int
    name: str
    user: str
    partition: str = "gpu"
    state: str = JOB_PENDING
    nodelist: List[str] = Field(default_factory=list)
    gpu_count: int = 0
    gpu_ids: List[int] = Field(default_factory=list)
    submit_time_ms: int = 0
    start_time_ms: Optional[int] = None
    end_time_ms: Optional[int] = None
    reason: str = "Priority"


class ScheduledEvent(StateModel):
    """A deferred state mutation, dispatched by ``kind`` when the clock reaches ``due_ms``."""

    due_ms: int
    seq: int
    kind: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    description: str = ""


class ClusterState(StateModel):
    name: str
    nodes: List[Node] = Field(default_factory=list)
    system_type: str = "DGX-A100"
    simulation_speed: float = 1.0
    partitions: List[str] = Field(default_factory=lambda: ["gpu", "batch", "interactive"])
    jobs: List[SlurmJob] = Field(default_factory=list)
    next_job_id: int = 1000
    clock_ms: int = 0
    pending_events: List[ScheduledEvent] = Field(default_factory=list)
    next_event_seq: int = 0

    @property
    def gpu_count(self) -> int:
        return sum(len(node.gpus) for node in self.nodes)
