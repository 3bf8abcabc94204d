from __future__ import annotations

import pytest

from clustersim.config import SimulatorConfig
from clustersim.engine import SimulationEngine
from clustersim.state.factory import create_cluster
from clustersim.state.store import ClusterStore


@pytest.fixture
def engine() -> SimulationEngine:
    return SimulationEngine(create_cluster(2), SimulatorConfig(nodes=2))


@pytest.fixture
def store() -> ClusterStore:
    return ClusterStore(create_cluster(2))


@pytest.fixture
def single_gpu_engine() -> SimulationEngine:
    """One node with a single healthy GPU 0."""
    state = create_cluster(1)
    state.nodes[0].gpus = state.nodes[0].gpus[:1]
    return SimulationEngine(state, SimulatorConfig(nodes=1))
