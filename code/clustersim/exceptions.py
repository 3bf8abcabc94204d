"""Exception hierarchy for the cluster simulator.

Lookups and persistence raise these; simulators catch them at their
boundary and turn them into exit-code-1 command results.
"""

from __future__ import annotations

from typing import Optional


class SimulatorError(Exception):
    """Base exception for all simulator errors."""
    pass


class NodeNotFoundError(SimulatorError):
    """Raised when a node id or hostname does not exist.

    Attributes:
        node_id: The id that was requested
    """

    def __init__(self, node_id: str):
        super().__init__(f"Node {node_id} not found")
        self.node_id = node_id


class GpuNotFoundError(SimulatorError):
    """Raised when a GPU index is out of range on a node.

    Attributes:
        node_id: Node that was searched
        gpu_id: GPU index that was requested
        gpu_count: Number of GPUs the node has
    """

    def __init__(self, node_id: str, gpu_id: int, gpu_count: int):
        super().__init__(f"GPU {gpu_id} not found on {node_id}")
        self.node_id = node_id
        self.gpu_id = gpu_id
        self.gpu_count = gpu_count


class SnapshotNotFoundError(SimulatorError):
    def __init__(self, snapshot_id: str):
        super().__init__(f"Snapshot {snapshot_id} not found")
        self.snapshot_id = snapshot_id


class ScenarioLoadError(SimulatorError):
    """Raised when a scenario descriptor cannot be read or is malformed.

    Attributes:
        source: File path or identifier of the scenario
        reason: Why loading failed
    """

    def __init__(self, message: str, source: Optional[str] = None, reason: str = ""):
        super().__init__(message)
        self.source = source
        self.reason = reason
