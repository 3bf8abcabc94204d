"""Builders for simulated DGX clusters.

All identifiers (GPU UUIDs, port GUIDs) are derived from node and device
indices, so two clusters built with the same arguments are identical.
"""

from __future__ import annotations

import uuid
from typing import List

from clustersim.state.models import (
    BMC,
    BMCSensor,
    ClusterState,
    GPU,
    InfiniBandHCA,
    InfiniBandPort,
    MIGProfile,
    NVLinkConnection,
    Node,
)

SYSTEM_A100 = "DGX-A100"
SYSTEM_H100 = "DGX-H100"
SUPPORTED_SYSTEM_TYPES = (SYSTEM_A100, SYSTEM_H100)

GPUS_PER_NODE = 8
HCAS_PER_NODE = 8

# Baseline readings restored by a full fault reset.
BASELINE_TEMPERATURE = 45.0
BASELINE_POWER_DRAW = 300.0

MIG_PROFILES: List[MIGProfile] = [
    MIGProfile(19, "1g.5gb", 4.75, 14, 1, 7),
    MIGProfile(20, "1g.10gb", 9.62, 14, 1, 4),
    MIGProfile(14, "2g.10gb", 9.62, 28, 2, 3),
    MIGProfile(9, "3g.20gb", 19.50, 42, 3, 2),
    MIGProfile(5, "4g.20gb", 19.50, 56, 4, 1),
    MIGProfile(0, "7g.40gb", 39.25, 98, 7, 1),
]

_GPU_SPECS = {
    SYSTEM_A100: {
        "name": "NVIDIA A100-SXM4-80GB",
        "gpu_type": "A100-80GB",
        "power_limit": 400.0,
        "clocks_sm": 1410,
        "clocks_mem": 1215,
        "nvlinks": 12,
    },
    SYSTEM_H100: {
        "name": "NVIDIA H100-SXM5-80GB",
        "gpu_type": "H100-SXM",
        "power_limit": 700.0,
        "clocks_sm": 1830,
        "clocks_mem": 2619,
        "nvlinks": 18,
    },
}


def get_mig_profile(profile_id: int):
    return next((p for p in MIG_PROFILES if p.id == profile_id), None)


def gpu_defaults(gpu_type: str) -> dict:
    """Factory limits and clocks for a GPU type (A100 values for unknown types)."""
    for spec in _GPU_SPECS.values():
        if spec["gpu_type"] == gpu_type:
            return spec
    return _GPU_SPECS[SYSTEM_A100]


def node_name(index: int) -> str:
    return f"dgx-{index:02d}"


def stable_uuid(*parts: object) -> str:
    return str(uuid.uuid5(uuid.NAMESPACE_DNS, "/".join(str(p) for p in parts)))


def create_nvlinks(count: int) -> List[NVLinkConnection]:
    return [NVLinkConnection(link_id=i, status="Active", speed=600.0) for i in range(count)]


def create_gpu(node_index: int, gpu_id: int, system_type: str = SYSTEM_A100) -> GPU:
    spec = _GPU_SPECS[system_type]
    return GPU(
        id=gpu_id,
        uuid=f"GPU-{stable_uuid(node_name(node_index), 'gpu', gpu_id)}",
        name=spec["name"],
        gpu_type=spec["gpu_type"],
        pci_address=f"00000000:{0x10 + gpu_id:02x}:00.0",
        temperature=float(32 + (node_index + gpu_id * 3) % 8),
        power_draw=float(250 + (node_index * 7 + gpu_id * 11) % 100),
        power_limit=spec["power_limit"],
        memory_total=81920,
        clocks_sm=spec["clocks_sm"],
        clocks_mem=spec["clocks_mem"],
        nvlinks=create_nvlinks(spec["nvlinks"]),
    )


def create_hca(node_index: int, hca_id: int) -> InfiniBandHCA:
    port = InfiniBandPort(
        port_number=1,
        rate=200,
        lid=100 + node_index * HCAS_PER_NODE + hca_id,
        guid=f"0x{0x0c42a10300000000 + node_index * 0x100 + hca_id:016x}",
    )
    return InfiniBandHCA(
        id=hca_id,
        device_path=f"/dev/mst/mt4123_pciconf{hca_id}",
        ca_type="ConnectX-6 HCA",
        firmware_version="20.35.1012",
        ports=[port],
    )


def create_bmc_sensors() -> List[BMCSensor]:
    return [
        BMCSensor(name="CPU1 Temp", reading=45, unit="degrees C", upper_critical=95, upper_warning=85),
        BMCSensor(name="CPU2 Temp", reading=47, unit="degrees C", upper_critical=95, upper_warning=85),
        BMCSensor(name="Inlet Temp", reading=22, unit="degrees C", upper_critical=45, upper_warning=40),
        BMCSensor(name="Exhaust Temp", reading=35, unit="degrees C", upper_critical=70, upper_warning=65),
        BMCSensor(name="PSU1 Input", reading=230, unit="Volts", lower_critical=180, upper_critical=264),
        BMCSensor(name="PSU2 Input", reading=229, unit="Volts", lower_critical=180, upper_critical=264),
        BMCSensor(name="PSU1 Power", reading=850, unit="Watts", upper_critical=3000),
        BMCSensor(name="PSU2 Power", reading=840, unit="Watts", upper_critical=3000),
        BMCSensor(name="Fan1", reading=5200, unit="RPM", lower_critical=1000),
        BMCSensor(name="Fan2", reading=5150, unit="RPM", lower_critical=1000),
        BMCSensor(name="Fan3", reading=5300, unit="RPM", lower_critical=1000),
        BMCSensor(name="Fan4", reading=5180, unit="RPM", lower_critical=1000),
    ]


def create_bmc(node_index: int) -> BMC:
    return BMC(
        ip_address=f"192.168.0.{100 + node_index}",
        mac_address=f"00:0a:f7:{node_index:02x}:00:01",
        firmware_version="3.47.00",
        manufacturer="NVIDIA",
        sensors=create_bmc_sensors(),
    )


def create_node(index: int, system_type: str = SYSTEM_A100) -> Node:
    return Node(
        id=node_name(index),
        hostname=f"{node_name(index)}.cluster.local",
        system_type=system_type,
        gpus=[create_gpu(index, g, system_type) for g in range(GPUS_PER_NODE)],
        hcas=[create_hca(index, h) for h in range(HCAS_PER_NODE)],
        bmc=create_bmc(index),
    )


def create_cluster(node_count: int = 8, system_type: str = SYSTEM_A100) -> ClusterState:
    """Build a cluster of ``node_count`` identical DGX nodes."""
    if system_type not in _GPU_SPECS:
        raise ValueError(
            f"Unsupported system type '{system_type}'. "
            f"Choose one of: {', '.join(SUPPORTED_SYSTEM_TYPES)}"
        )
    name = "DGX SuperPOD" if system_type == SYSTEM_A100 else f"{system_type} Cluster"
    return ClusterState(
        name=name,
        nodes=[create_node(i, system_type) for i in range(max(0, node_count))],
        system_type=system_type,
    )
