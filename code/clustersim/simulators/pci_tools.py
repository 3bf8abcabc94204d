"""PCI enumeration and kernel log tools: ``lspci``, ``journalctl``, ``dmesg``.

The kernel log is not stored; it is rebuilt from the GPU state on every call
(boot messages, then one line per active XID, thermal slowdown and ECC
condition), so faults injected anywhere show up here immediately.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List

from clustersim.parsing.command_parser import ParsedCommand, get_flag_string, has_flag
from clustersim.parsing.fuzzy import FlagDefinition
from clustersim.simulators.base import BaseSimulator, CommandContext, CommandResult
from clustersim.state.models import Node
from clustersim.utils.formatting import RED, YELLOW, colorize, dmesg_timestamp, sim_datetime, syslog_timestamp

NVIDIA_VENDOR_ID = "10de"
MELLANOX_VENDOR_ID = "15b3"
THROTTLE_TEMPERATURE = 80

# syslog priorities
PRIO_ERR = 3
PRIO_WARNING = 4
PRIO_INFO = 6

_PRIORITY_NAMES = {"emerg": 0, "alert": 1, "crit": 2, "err": 3, "warning": 4, "notice": 5, "info": 6, "debug": 7}

# Boot happens one hour before simulated time 0.
BOOT_OFFSET_MS = -3600 * 1000


@dataclass(frozen=True)
class KernelMessage:
    clock_ms: int
    priority: int
    source: str  # "kernel" or a systemd unit tag
    text: str


def kernel_messages(node: Node) -> List[KernelMessage]:
    """Boot log followed by the fault-derived NVRM messages, in time order."""
    boot = [
        KernelMessage(BOOT_OFFSET_MS + 1000, PRIO_INFO, "systemd[1]", "Starting Initialize hardware monitoring sensors..."),
        KernelMessage(BOOT_OFFSET_MS + 2000, PRIO_INFO, "kernel", f"Linux version {node.kernel_version}"),
        KernelMessage(
            BOOT_OFFSET_MS + 3000, PRIO_INFO, "kernel",
            f"nvidia: module verification passed, NVRM: loading NVIDIA UNIX x86_64 Kernel Module  {node.nvidia_driver_version}",
        ),
        KernelMessage(BOOT_OFFSET_MS + 5000, PRIO_INFO, "systemd[1]", "Started NVIDIA Persistence Daemon."),
        KernelMessage(BOOT_OFFSET_MS + 6000, PRIO_INFO, "systemd[1]", "Reached target Multi-User System."),
    ]
    for hca in node.hcas:
        boot.append(KernelMessage(
            BOOT_OFFSET_MS + 4000, PRIO_INFO, "kernel",
            f"mlx5_core 0000:{0xa0 + hca.id:02x}:00.0: firmware version: {hca.firmware_version}",
        ))

    faults: List[KernelMessage] = []
    for gpu in node.gpus:
        for xid in gpu.xid_errors:
            faults.append(KernelMessage(
                xid.timestamp, PRIO_ERR, "kernel",
                f"NVRM: Xid (PCI:{gpu.pci_address}): {xid.code}, {xid.description}",
            ))
            if xid.code == 79:
                faults.append(KernelMessage(
                    xid.timestamp, PRIO_ERR, "kernel",
                    f"NVRM: GPU at PCI:{gpu.pci_address}: GPU has fallen off the bus.",
                ))
        if gpu.temperature > THROTTLE_TEMPERATURE:
            faults.append(KernelMessage(
                0, PRIO_WARNING, "kernel",
                f"NVRM: GPU at {gpu.pci_address}: temperature ({round(gpu.temperature)}C) has reached slowdown threshold",
            ))
        ecc = gpu.ecc_errors
        if ecc.double_bit > 0:
            faults.append(KernelMessage(
                0, PRIO_ERR, "kernel",
                f"NVRM: GPU at {gpu.pci_address}: DOUBLE-BIT ECC error detected (count: {ecc.double_bit})",
            ))
        if ecc.single_bit > 0:
            faults.append(KernelMessage(
                0, PRIO_WARNING, "kernel",
                f"NVRM: GPU at {gpu.pci_address}: single-bit ECC error corrected (count: {ecc.single_bit})",
            ))
        down = [link.link_id for link in gpu.nvlinks if link.status != "Active"]
        if down:
            faults.append(KernelMessage(
                0, PRIO_ERR, "kernel",
                f"NVRM: GPU at {gpu.pci_address}: NVLink training failed on link(s) {','.join(map(str, down))}",
            ))
    if not faults:
        boot.append(KernelMessage(BOOT_OFFSET_MS + 10000, PRIO_INFO, "kernel", "NVRM: All GPUs initialized successfully"))
    return sorted(boot, key=lambda m: m.clock_ms) + sorted(faults, key=lambda m: m.clock_ms)


def _priority_limit(raw: str) -> int:
    raw = raw.lower()
    if raw.isdigit():
        return int(raw)
    # "err..emerg" style ranges use the upper bound
    if ".." in raw:
        raw = raw.split("..")[0]
    return _PRIORITY_NAMES.get(raw, PRIO_INFO)


class PciToolsSimulator(BaseSimulator):
    name = "pci-tools"
    version = "3.7.0"
    description = "PCI device enumeration and system logging tools"
    tools = ("lspci", "journalctl", "dmesg")
    version_flags = ("version", "V")

    def valid_flags(self):
        return (FlagDefinition("help", "h"), FlagDefinition("version", "V"))

    def handle_version(self, context: CommandContext) -> CommandResult:
        return self.success(f"pciutils {self.version}, systemd 249, util-linux 2.37.2")

    def handle_help(self, command_name, context: CommandContext) -> CommandResult:
        return self.success(
            "lspci [-v|-vv] [-d <vendor>:[<device>]] [-s <slot>]   List PCI devices\n"
            "journalctl [-b] [-k] [-p <priority>] [-n <lines>]      Query the system journal\n"
            "dmesg [-T] [-l <level>]                               Print the kernel ring buffer"
        )

    def run_default(self, parsed: ParsedCommand, context: CommandContext) -> CommandResult:
        if parsed.base_command == "lspci":
            return self.lspci(parsed, context)
        if parsed.base_command == "journalctl":
            return self.journalctl(parsed, context)
        if parsed.base_command == "dmesg":
            return self.dmesg(parsed, context)
        return self.error(f"Unknown PCI tool: {parsed.base_command}")

    # -------------------------------------------------------------------------
    # lspci
    # -------------------------------------------------------------------------

    def lspci(self, parsed: ParsedCommand, context: CommandContext) -> CommandResult:
        node = context.node()
        verbose = has_flag(parsed, "v", "vv", "vvv")
        vendor = get_flag_string(parsed, ["d"]).split(":")[0].lower()
        if has_flag(parsed, "d") and not vendor:
            return self.error("lspci: -d: Invalid vendor/device ID")
        slot = get_flag_string(parsed, ["s"])

        lines: List[str] = []
        if vendor in ("", NVIDIA_VENDOR_ID):
            for index, gpu in enumerate(node.gpus):
                address = gpu.pci_address.split(":", 1)[1]
                if slot and slot not in gpu.pci_address:
                    continue
                rev = " (rev ff)" if gpu.fallen_off_bus else " (rev a1)"
                lines.append(f"{address} 3D controller: NVIDIA Corporation {gpu.name} [{gpu.gpu_type}]{rev}")
                if not verbose:
                    continue
                lines += [
                    "\tSubsystem: NVIDIA Corporation Device 147f",
                    "\tFlags: bus master, fast devsel, latency 0, IRQ " + str(16 + index),
                    "\tMemory at fc000000 (64-bit, prefetchable) [size=32M]",
                    "\tCapabilities: [60] Power Management version 3",
                    "\tKernel driver in use: nvidia",
                    "\tKernel modules: nvidiafb, nouveau, nvidia",
                ]
                if gpu.xid_errors:
                    code = gpu.xid_errors[-1].code
                    lines.append("\t" + colorize(f"*** Device is in error state (XID {code}) ***", RED))
                if gpu.temperature > THROTTLE_TEMPERATURE:
                    lines.append(
                        "\t" + colorize(f"*** Thermal throttling active ({round(gpu.temperature)}C) ***", YELLOW)
                    )
                lines.append("")
        if vendor in ("", MELLANOX_VENDOR_ID):
            for hca in node.hcas:
                address = f"{0xa0 + hca.id:02x}:00.0"
                if slot and slot not in address:
                    continue
                lines.append(f"{address} Infiniband controller: Mellanox Technologies MT28908 Family [{hca.ca_type}]")
                if verbose:
                    lines += ["\tKernel driver in use: mlx5_core", ""]
        return self.success("\n".join(lines).rstrip("\n"))

    # -------------------------------------------------------------------------
    # journalctl / dmesg
    # -------------------------------------------------------------------------

    def journalctl(self, parsed: ParsedCommand, context: CommandContext) -> CommandResult:
        node = context.node()
        messages = kernel_messages(node)
        if has_flag(parsed, "k", "dmesg"):
            messages = [m for m in messages if m.source == "kernel"]
        if has_flag(parsed, "p", "priority"):
            limit = _priority_limit(get_flag_string(parsed, ["p", "priority"], "info"))
            messages = [m for m in messages if m.priority <= limit]
            if not messages:
                return self.success("-- No entries --")

        host = node.hostname.split(".")[0]
        clock = context.store.state.clock_ms
        lines = [
            f"-- Logs begin at {sim_datetime(BOOT_OFFSET_MS):%a %Y-%m-%d %H:%M:%S} UTC, "
            f"end at {sim_datetime(clock):%a %Y-%m-%d %H:%M:%S} UTC. --"
        ]
        for message in messages:
            lines.append(f"{syslog_timestamp(message.clock_ms)} {host} {message.source}: {message.text}")

        count = get_flag_string(parsed, ["n", "lines"])
        if count.isdigit():
            lines = lines[:1] + lines[1:][-int(count):] if int(count) else lines[:1]
        return self.success("\n".join(lines))

    def dmesg(self, parsed: ParsedCommand, context: CommandContext) -> CommandResult:
        messages = [m for m in kernel_messages(context.node()) if m.source == "kernel"]
        level = get_flag_string(parsed, ["level", "l"])
        if level:
            wanted = {_PRIORITY_NAMES.get(name.strip().lower()) for name in level.split(",")}
            if None in wanted:
                return self.error(f"dmesg: unknown level '{level}'")
            messages = [m for m in messages if m.priority in wanted]

        human = has_flag(parsed, "T", "ctime")
        lines = []
        for message in messages:
            if human:
                stamp = f"[{sim_datetime(message.clock_ms):%a %b %d %H:%M:%S %Y}]"
            else:
                stamp = dmesg_timestamp(message.clock_ms)
            lines.append(f"{stamp} {message.text}")
        return self.success("\n".join(lines))
