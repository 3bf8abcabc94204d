"""The single shared cluster state and its mutation helpers.

Every simulator receives the same :class:`ClusterStore` and reads its view
from it on each call, so a change made by one tool (a Slurm allocation, an
injected XID) is immediately visible to all others.
"""

from __future__ import annotations

from typing import Iterable, List, Optional

from clustersim.exceptions import GpuNotFoundError, NodeNotFoundError
from clustersim.state.events import EventQueue
from clustersim.state.models import (
    CRITICAL_XIDS,
    GPU,
    HEALTH_CRITICAL,
    HEALTH_OK,
    HEALTH_WARNING,
    JOB_RUNNING,
    SLURM_STATES,
    ClusterState,
    Node,
    SlurmJob,
    XIDError,
    worst_health,
)
from clustersim.utils.logger import get_logger

logger = get_logger(__name__)

ALLOCATED_UTILIZATION = 85
# Share of device memory a running job occupies on each of its GPUs.
ALLOCATED_MEMORY_FRACTION = 0.75


class ClusterStore:
    """Owner of the live :class:`ClusterState`."""

    def __init__(self, state: ClusterState) -> None:
        self._state = state
        self.events = EventQueue(self)

    @property
    def state(self) -> ClusterState:
        return self._state

    @property
    def nodes(self) -> List[Node]:
        return self._state.nodes

    def replace_state(self, state: ClusterState) -> None:
        """Swap in a deep copy of ``state`` as the live cluster."""
        self._state = state.model_copy(deep=True)

    def copy_state(self) -> ClusterState:
        return self._state.model_copy(deep=True)

    # -------------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------------

    def find_node(self, node_id: str) -> Optional[Node]:
        for node in self._state.nodes:
            if node.id == node_id or node.hostname == node_id:
                return node
        return None

    def get_node(self, node_id: str) -> Node:
        node = self.find_node(node_id)
        if node is None:
            raise NodeNotFoundError(node_id)
        return node

    def get_gpu(self, node_id: str, gpu_id: int) -> GPU:
        node = self.get_node(node_id)
        for gpu in node.gpus:
            if gpu.id == gpu_id:
                return gpu
        raise GpuNotFoundError(node.id, gpu_id, len(node.gpus))

    def get_job(self, job_id: int) -> Optional[SlurmJob]:
        return next((job for job in self._state.jobs if job.job_id == job_id), None)

    # -------------------------------------------------------------------------
    # GPU mutations
    # -------------------------------------------------------------------------

    def update_gpu(self, node_id: str, gpu_id: int, **changes) -> GPU:
        gpu = self.get_gpu(node_id, gpu_id)
        for key, value in changes.items():
            if not hasattr(gpu, key):
                raise AttributeError(f"GPU has no attribute '{key}'")
            setattr(gpu, key, value)
        return gpu

    def add_xid_error(
        self,
        node_id: str,
        gpu_id: int,
        code: int,
        description: str,
        severity: str = HEALTH_CRITICAL,
    ) -> XIDError:
        """Record an XID event; re-adding an already active code is a no-op."""
        gpu = self.get_gpu(node_id, gpu_id)
        existing = next((x for x in gpu.xid_errors if x.code == code), None)
        if existing is not None:
            return existing
        xid = XIDError(code=code, timestamp=self._state.clock_ms, description=description, severity=severity)
        gpu.xid_errors.append(xid)
        raised = HEALTH_CRITICAL if code in CRITICAL_XIDS or severity == HEALTH_CRITICAL else HEALTH_WARNING
        gpu.health_status = worst_health(gpu.health_status, raised)
        self.refresh_node_health(node_id)
        return xid

    def clear_xid_errors(self, node_id: str, gpu_id: int, codes: Optional[Iterable[int]] = None) -> int:
        gpu = self.get_gpu(node_id, gpu_id)
        targets = set(codes) if codes is not None else None
        before = len(gpu.xid_errors)
        gpu.xid_errors = [x for x in gpu.xid_errors if targets is not None and x.code not in targets]
        return before - len(gpu.xid_errors)

    def refresh_node_health(self, node_id: str) -> None:
        """Node health is the worst health among its GPUs."""
        node = self.get_node(node_id)
        node.health_status = worst_health(HEALTH_OK, *(gpu.health_status for gpu in node.gpus))

    # -------------------------------------------------------------------------
    # Slurm
    # -------------------------------------------------------------------------

    def set_slurm_state(self, node_id: str, state: str, reason: Optional[str] = None) -> Node:
        if state not in SLURM_STATES:
            raise ValueError(f"Invalid slurm state '{state}'")
        node = self.get_node(node_id)
        node.slurm_state = state
        node.slurm_reason = reason if state in ("drain", "down") else None
        logger.info(f"Node {node.id} slurm state -> {state}" + (f" ({reason})" if reason else ""))
        return node

    def add_job(self, job: SlurmJob) -> SlurmJob:
        self._state.jobs.append(job)
        return job

    def allocate_job(self, job: SlurmJob, node_id: str, gpu_ids: List[int]) -> None:
        node = self.get_node(node_id)
        for gpu_id in gpu_ids:
            gpu = self.get_gpu(node.id, gpu_id)
            gpu.allocated_job_id = job.job_id
            gpu.utilization = ALLOCATED_UTILIZATION
            gpu.memory_used = int(gpu.memory_total * ALLOCATED_MEMORY_FRACTION)
        node.slurm_state = "alloc"
        job.state = JOB_RUNNING
        job.nodelist = [node.id]
        job.gpu_ids = list(gpu_ids)
        job.start_time_ms = self._state.clock_ms
        job.reason = "None"

    def release_job(self, job: SlurmJob) -> None:
        """Free every GPU held by ``job`` and idle nodes left with no allocation."""
        for node in self._state.nodes:
            held = [gpu for gpu in node.gpus if gpu.allocated_job_id == job.job_id]
            for gpu in held:
                gpu.allocated_job_id = None
                gpu.utilization = 0
                gpu.memory_used = 0
            if held and node.slurm_state == "alloc" and not any(
                gpu.allocated_job_id is not None for gpu in node.gpus
            ):
                node.slurm_state = "idle"
        job.end_time_ms = self._state.clock_ms
