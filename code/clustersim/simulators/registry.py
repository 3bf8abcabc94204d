"""Explicit registry of simulated tools and the simulator answering each."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Type

from clustersim.parsing.fuzzy import CommandInterceptor
from clustersim.simulators.base import BaseSimulator
from clustersim.simulators.dcgmi import DcgmiSimulator
from clustersim.simulators.infiniband import InfiniBandSimulator
from clustersim.simulators.ipmitool import IpmitoolSimulator
from clustersim.simulators.nvidia_smi import NvidiaSmiSimulator
from clustersim.simulators.pci_tools import PciToolsSimulator
from clustersim.simulators.slurm import SlurmSimulator


@dataclass(frozen=True)
class ToolRoute:
    command: str
    simulator: Type[BaseSimulator]
    category: str
    description: Optional[str] = None


_ROUTES: List[ToolRoute] = [
    ToolRoute("nvidia-smi", NvidiaSmiSimulator, "gpu", "Query and manage NVIDIA GPUs"),
    ToolRoute("dcgmi", DcgmiSimulator, "gpu", "Data Center GPU Manager diagnostics"),
    ToolRoute("sinfo", SlurmSimulator, "slurm", "Partition and node state"),
    ToolRoute("squeue", SlurmSimulator, "slurm", "Job queue"),
    ToolRoute("scontrol", SlurmSimulator, "slurm", "Show or update nodes, partitions and jobs"),
    ToolRoute("sbatch", SlurmSimulator, "slurm", "Submit a batch job"),
    ToolRoute("srun", SlurmSimulator, "slurm", "Run a job step"),
    ToolRoute("scancel", SlurmSimulator, "slurm", "Cancel a job"),
    ToolRoute("sacct", SlurmSimulator, "slurm", "Job accounting"),
    ToolRoute("ipmitool", IpmitoolSimulator, "bmc", "BMC sensors, power and event log"),
    ToolRoute("lspci", PciToolsSimulator, "system", "List PCI devices"),
    ToolRoute("journalctl", PciToolsSimulator, "system", "System journal"),
    ToolRoute("dmesg", PciToolsSimulator, "system", "Kernel ring buffer"),
    ToolRoute("ibstat", InfiniBandSimulator, "network", "InfiniBand HCA status"),
    ToolRoute("perfquery", InfiniBandSimulator, "network", "InfiniBand port counters"),
]


def get_routes() -> List[ToolRoute]:
    return list(_ROUTES)


def get_commands() -> List[str]:
    return [route.command for route in _ROUTES]


def build_simulators(interceptor: CommandInterceptor) -> Dict[str, BaseSimulator]:
    """Instantiate each simulator class once and map every command to it."""
    instances: Dict[Type[BaseSimulator], BaseSimulator] = {}
    table: Dict[str, BaseSimulator] = {}
    for route in _ROUTES:
        if route.simulator not in instances:
            instances[route.simulator] = route.simulator(interceptor)
        table[route.command] = instances[route.simulator]
    return table
