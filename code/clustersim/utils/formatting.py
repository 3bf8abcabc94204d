"""Terminal text helpers shared by the simulators: ANSI colors, fixed-width
columns and timestamps derived from the simulated clock."""

from __future__ import annotations

from datetime import datetime, timedelta

RESET = "\x1b[0m"
BOLD = "\x1b[1m"
RED = "\x1b[31m"
GREEN = "\x1b[32m"
YELLOW = "\x1b[33m"
CYAN = "\x1b[36m"

# Wall-clock instant that corresponds to simulated time 0.
SIM_EPOCH = datetime(2024, 1, 15, 10, 0, 0)
# Seconds since boot at simulated time 0, for dmesg-style stamps.
UPTIME_AT_EPOCH = 3600.0


def colorize(text: str, color: str) -> str:
    return f"{color}{text}{RESET}"


def pad_col(content: str, width: int) -> str:
    """Left-align ``content`` in exactly ``width`` characters, truncating if needed."""
    return content[:width] if len(content) > width else content.ljust(width)


def sim_datetime(clock_ms: int) -> datetime:
    return SIM_EPOCH + timedelta(milliseconds=clock_ms)


def nvidia_smi_timestamp(clock_ms: int) -> str:
    # e.g. "Mon Jan 15 10:00:00 2024"
    return sim_datetime(clock_ms).strftime("%a %b %d %H:%M:%S %Y")


def iso_timestamp(clock_ms: int) -> str:
    return sim_datetime(clock_ms).isoformat(timespec="seconds")


def syslog_timestamp(clock_ms: int) -> str:
    return sim_datetime(clock_ms).strftime("%b %d %H:%M:%S")


def dmesg_timestamp(clock_ms: int) -> str:
    return f"[{UPTIME_AT_EPOCH + clock_ms / 1000.0:>12.6f}]"


def slurm_timestamp(clock_ms: int) -> str:
    return sim_datetime(clock_ms).strftime("%Y-%m-%dT%H:%M:%S")


def elapsed(start_ms: int, end_ms: int) -> str:
    """Slurm-style elapsed time ``H:MM:SS`` (or ``D-HH:MM:SS``)."""
    seconds = max(0, (end_ms - start_ms) // 1000)
    days, seconds = divmod(seconds, 86400)
    hours, seconds = divmod(seconds, 3600)
    minutes, seconds = divmod(seconds, 60)
    if days:
        return f"{days}-{hours:02d}:{minutes:02d}:{seconds:02d}"
    return f"{hours}:{minutes:02d}:{seconds:02d}"
