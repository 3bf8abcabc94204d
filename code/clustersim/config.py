"""Runtime configuration for the simulator.

Values come from (lowest to highest precedence) built-in defaults, a ``.env``
file, a ``.env.local`` file, real environment variables and finally explicit
overrides passed by the CLI.

Recognized variables:
    DCSIM_NODES               number of simulated nodes (default 8)
    DCSIM_SYSTEM_TYPE         DGX-A100 or DGX-H100
    DCSIM_SNAPSHOT_PATH       JSON file used to persist snapshots
    DCSIM_MAX_SNAPSHOTS       snapshot quota before eviction (default 20)
    DCSIM_LOG_LEVEL           DEBUG, INFO, WARNING, ERROR
    DCSIM_JOB_START_DELAY_MS  delay between sbatch and job start (default 100)
    DCSIM_TICK_MS             simulated time advanced per command (default 100)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Dict, Iterable, Optional

from clustersim.utils.logger import get_logger

logger = get_logger(__name__)

ENV_PREFIX = "DCSIM_"


@dataclass(frozen=True)
class SimulatorConfig:
    nodes: int = 8
    system_type: str = "DGX-A100"
    snapshot_path: Optional[Path] = None
    max_snapshots: int = 20
    log_level: str = "WARNING"
    job_start_delay_ms: int = 100
    tick_ms: int = 100


def read_env_files(root: Path, names: Iterable[str] = (".env", ".env.local")) -> Dict[str, str]:
    """Read KEY=VALUE lines; later files override earlier ones."""
    values: Dict[str, str] = {}
    for env_name in names:
        env_file = root / env_name
        if not env_file.exists():
            continue
        with open(env_file) as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith("#") and "=" in line:
                    key, _, value = line.partition("=")
                    key = key.strip()
                    value = value.strip().strip('"').strip("'")
                    if key and value:
                        values[key] = value
    return values


def _int(values: Dict[str, str], key: str, default: int) -> int:
    raw = values.get(key)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Ignoring non-integer {key}={raw!r}")
        return default


def load_config(root: Optional[Path] = None, **overrides) -> SimulatorConfig:
    """Build a :class:`SimulatorConfig` from env files, environment and overrides.

    ``None`` overrides are ignored so CLI options can be passed through as-is.
    """
    values = read_env_files(root or Path.cwd())
    values.update({k: v for k, v in os.environ.items() if k.startswith(ENV_PREFIX)})

    snapshot_path = values.get(f"{ENV_PREFIX}SNAPSHOT_PATH")
    config = SimulatorConfig(
        nodes=_int(values, f"{ENV_PREFIX}NODES", SimulatorConfig.nodes),
        system_type=values.get(f"{ENV_PREFIX}SYSTEM_TYPE", SimulatorConfig.system_type),
        snapshot_path=Path(snapshot_path) if snapshot_path else None,
        max_snapshots=_int(values, f"{ENV_PREFIX}MAX_SNAPSHOTS", SimulatorConfig.max_snapshots),
        log_level=values.get(f"{ENV_PREFIX}LOG_LEVEL", SimulatorConfig.log_level),
        job_start_delay_ms=_int(values, f"{ENV_PREFIX}JOB_START_DELAY_MS", SimulatorConfig.job_start_delay_ms),
        tick_ms=_int(values, f"{ENV_PREFIX}TICK_MS", SimulatorConfig.tick_ms),
    )
    explicit = {k: v for k, v in overrides.items() if v is not None}
    return replace(config, **explicit) if explicit else config
