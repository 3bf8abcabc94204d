"""nvidia-smi simulator.

Covers the summary table, ``-L``, ``-q``, ``--query-gpu``, the device
modification options (``-r``, ``-pl``, ``-pm``, ``-mig``, ``-e``, ``-p``,
``-lgc``/``-rgc``) and the ``nvlink``, ``topo`` and ``mig`` subcommands.

A GPU carrying XID 79 has fallen off the bus: it is left out of every
listing and any command aimed at it fails.
"""

from __future__ import annotations

from typing import List, Optional, Sequence, Tuple, Union

from clustersim.parsing.command_parser import ParsedCommand, get_flag_string, get_flag_value, has_flag
from clustersim.parsing.fuzzy import FlagDefinition
from clustersim.simulators.base import (
    BaseSimulator,
    CommandContext,
    CommandMetadata,
    CommandResult,
    CommandSpec,
    FlagSpec,
)
from clustersim.state.factory import MIG_PROFILES, get_mig_profile, gpu_defaults, stable_uuid
from clustersim.state.models import (
    GPU,
    HEALTH_OK,
    XID_FALLEN_OFF_BUS,
    ComputeInstance,
    MIGInstance,
    Node,
)
from clustersim.utils.formatting import RED, YELLOW, colorize, iso_timestamp, nvidia_smi_timestamp, pad_col
from clustersim.utils.logger import get_logger

logger = get_logger(__name__)

DRIVER_VERSION = "535.129.03"
CUDA_VERSION = "12.2"
THROTTLE_TEMPERATURE = 80
MIN_POWER_LIMIT = 100
MIG_GPU_SLOTS = 7

COL_1, COL_2, COL_3 = 31, 22, 22
TOTAL_WIDTH = COL_1 + COL_2 + COL_3 + 4

FALLEN_OFF_BUS_HINT = "Check 'dmesg | grep -i xid' for details. GPU reset or system reboot may be required."

HELP_TEXT = """NVIDIA System Management Interface -- v{driver}

NVSMI provides monitoring information for Tesla and select Quadro devices.
The data is presented in either a plain text or an XML format, via stdout or a file.
NVSMI also provides several management operations for changing the device state.

nvidia-smi [OPTION1 [ARG1]] [OPTION2 [ARG2]] ...

    -h,   --help                Print usage information and exit.

  LIST OPTIONS:

    -L,   --list-gpus           Display a list of GPUs connected to the system.

  SUMMARY OPTIONS:

    <no arguments>              Show a summary of GPUs connected to the system.

  QUERY OPTIONS:

    -q,   --query               Display GPU or Unit info.
    -i,   --id=ID               Target a specific GPU.
    -d,   --display=DISPLAY     Display only selected information.
                                Valid display arguments: MEMORY, UTILIZATION, ECC,
                                TEMPERATURE, POWER, CLOCK, PCI, PERFORMANCE

  SELECTIVE QUERY OPTIONS:

          --query-gpu           Display specific GPU info.
          --format              csv[,noheader][,nounits]

  DEVICE MODIFICATION OPTIONS:

    -pm,  --persistence-mode=MODE
                                Set persistence mode: 0/DISABLED, 1/ENABLED
    -e,   --ecc-config=ECC_SETTING
                                Toggle ECC: 0/DISABLED, 1/ENABLED
    -p,   --reset-ecc-errors=RESET_TYPE
                                Reset ECC error counts: 0/VOLATILE, 1/AGGREGATE
    -pl,  --power-limit=POWER_LIMIT
                                Specifies maximum power limit in watts.
    -lgc, --lock-gpu-clocks=MIN_CLOCK,MAX_CLOCK
                                Lock GPU clocks to a specified frequency range.
    -rgc, --reset-gpu-clocks    Reset GPU clocks to the default values.
    -r,   --gpu-reset           Reset a GPU. Requires -i to specify GPU.
    -mig, --multi-instance-gpu=MODE
                                Toggle MIG mode: 0/DISABLED, 1/ENABLED

    -v,   --version             Print version information and exit.

  SUBCOMMANDS:

    nvlink                      NVLink information.
    topo                        GPU topology.
    mig                         MIG management.

Please see the nvidia-smi documentation for more detailed information."""

# field -> (header unit, getter)
_QUERY_UNITS = {
    "memory.total": "MiB",
    "memory.used": "MiB",
    "memory.free": "MiB",
    "utilization.gpu": "%",
    "utilization.memory": "%",
    "power.draw": "W",
    "power.limit": "W",
    "clocks.current.sm": "MHz",
    "clocks.sm": "MHz",
    "clocks.current.memory": "MHz",
    "clocks.mem": "MHz",
}

_QUERY_SECTIONS = ("MEMORY", "UTILIZATION", "ECC", "TEMPERATURE", "POWER", "CLOCK", "PCI", "PERFORMANCE")


def _enabled(flag: bool) -> str:
    return "Enabled" if flag else "Disabled"


def _is_throttling(gpu: GPU) -> bool:
    return gpu.temperature > THROTTLE_TEMPERATURE


def _process_id(gpu: GPU) -> int:
    # One compute process per allocated GPU, numbered from the job id.
    return 10000 + (gpu.allocated_job_id or 0) * 8 + gpu.id


class NvidiaSmiSimulator(BaseSimulator):
    name = "nvidia-smi"
    version = DRIVER_VERSION
    description = "NVIDIA System Management Interface"

    def valid_flags(self) -> Sequence[FlagDefinition]:
        return (
            FlagDefinition("help", "h"),
            FlagDefinition("version", "v"),
            FlagDefinition("list-gpus", "L"),
            FlagDefinition("query", "q"),
            FlagDefinition("id", "i"),
            FlagDefinition("display", "d"),
            FlagDefinition("query-gpu"),
            FlagDefinition("query-compute-apps"),
            FlagDefinition("format"),
            FlagDefinition("filename", "f"),
            FlagDefinition("xml-format", "x"),
            FlagDefinition("loop", "l"),
            FlagDefinition("dtd"),
            FlagDefinition("B"),
            FlagDefinition("compute-mode", "c"),
            FlagDefinition("mig", aliases=("multi-instance-gpu",)),
            FlagDefinition("pl", aliases=("power-limit",)),
            FlagDefinition("pm", aliases=("persistence-mode",)),
            FlagDefinition("ecc-config", "e"),
            FlagDefinition("reset-ecc-errors", "p"),
            FlagDefinition("lgc", aliases=("lock-gpu-clocks",)),
            FlagDefinition("rgc", aliases=("reset-gpu-clocks",)),
            FlagDefinition("gpu-reset", "r"),
        )

    def command_specs(self) -> List[CommandSpec]:
        return [
            CommandSpec("nvlink", self.handle_nvlink, CommandMetadata(
                name="nvlink",
                description="Display NVLink status",
                usage="nvidia-smi nvlink [OPTIONS]",
                flags=(
                    FlagSpec("status", "Display NVLink status", short="s"),
                    FlagSpec("id", "GPU index", short="i", takes_value=True),
                ),
                examples=("nvidia-smi nvlink --status", "nvidia-smi nvlink -s -i 0"),
            )),
            CommandSpec("topo", self.handle_topo, CommandMetadata(
                name="topo",
                description="Display GPU topology",
                usage="nvidia-smi topo [OPTIONS]",
                flags=(FlagSpec("matrix", "Display topology matrix", short="m"),),
                examples=("nvidia-smi topo -m",),
            )),
            CommandSpec("mig", self.handle_mig, CommandMetadata(
                name="mig",
                description="Manage MIG (Multi-Instance GPU) configuration",
                usage="nvidia-smi mig [OPTIONS]",
                flags=(
                    FlagSpec("id", "GPU ID", short="i", takes_value=True),
                    FlagSpec("lgip", "List GPU instance profiles"),
                    FlagSpec("lgi", "List GPU instances"),
                    FlagSpec("cgi", "Create GPU instances", takes_value=True),
                    FlagSpec("dgi", "Destroy GPU instances"),
                    FlagSpec("create-compute", "Create compute instances", short="C"),
                ),
                examples=(
                    "nvidia-smi mig -lgip",
                    "nvidia-smi mig -lgi",
                    "nvidia-smi mig -i 0 -cgi 19,19,19 -C",
                    "nvidia-smi mig -i 0 -dgi",
                ),
            )),
        ]

    # -------------------------------------------------------------------------
    # Root behavior
    # -------------------------------------------------------------------------

    def handle_version(self, context: CommandContext) -> CommandResult:
        node = context.node()
        return self.success(
            f"NVIDIA-SMI version  : {node.nvidia_driver_version}\n"
            f"NVML version        : {node.nvidia_driver_version}\n"
            f"DRIVER version      : {node.nvidia_driver_version}\n"
            f"CUDA Version        : {node.cuda_version}"
        )

    def handle_help(self, command_name: Optional[str], context: CommandContext) -> CommandResult:
        if command_name:
            return super().handle_help(command_name, context)
        return self.success(HELP_TEXT.format(driver=context.node().nvidia_driver_version))

    def dispatch(self, parsed: ParsedCommand, context: CommandContext) -> CommandResult:
        if not parsed.subcommands and not has_flag(parsed, *self.version_flags, *self.help_flags):
            flag_error = self.validate_flags(parsed)
            if flag_error is not None:
                return flag_error
        return super().dispatch(parsed, context)

    def run_default(self, parsed: ParsedCommand, context: CommandContext) -> CommandResult:
        node = context.node()

        if has_flag(parsed, "gpu-reset", "r"):
            return self.handle_gpu_reset(parsed, node, context)
        if has_flag(parsed, "mig", "multi-instance-gpu"):
            return self.handle_mig_mode(parsed, node)
        if has_flag(parsed, "pl", "power-limit"):
            return self.handle_power_limit(parsed, node)
        if has_flag(parsed, "pm", "persistence-mode"):
            return self.handle_persistence_mode(parsed, node)
        if has_flag(parsed, "ecc-config", "e"):
            return self.handle_ecc_config(parsed, node)
        if has_flag(parsed, "reset-ecc-errors", "p"):
            return self.handle_reset_ecc(parsed, node)
        if has_flag(parsed, "lgc", "lock-gpu-clocks"):
            return self.handle_lock_clocks(parsed, node)
        if has_flag(parsed, "rgc", "reset-gpu-clocks"):
            return self.handle_reset_clocks(parsed, node)
        if has_flag(parsed, "compute-mode", "c"):
            return self.handle_compute_mode(parsed, node)
        if has_flag(parsed, "list-gpus", "L"):
            return self.handle_list_gpus(node)
        if has_flag(parsed, "query-compute-apps"):
            return self.handle_query_compute_apps(parsed, node)

        query_fields = get_flag_string(parsed, ["query-gpu"])
        if query_fields:
            return self.handle_query_gpu(parsed, node, query_fields)
        if has_flag(parsed, "query", "q"):
            return self.handle_query(parsed, node, context)
        if has_flag(parsed, "id", "i"):
            selected = self._select_gpus(parsed, node)
            if isinstance(selected, CommandResult):
                return selected
            return self.success(self.format_default(node, selected, context, hidden=0))

        visible = node.visible_gpus()
        return self.success(
            self.format_default(node, visible, context, hidden=len(node.gpus) - len(visible))
        )

    # -------------------------------------------------------------------------
    # GPU targeting
    # -------------------------------------------------------------------------

    def _parse_gpu_id(self, node: Node, raw: str) -> Union[GPU, CommandResult]:
        if raw.startswith("-") or not raw.isdigit():
            return self.error(f'Error: Invalid GPU ID "{raw}". GPU ID must be a non-negative integer.')
        gpu_id = int(raw)
        gpu = next((g for g in node.gpus if g.id == gpu_id), None)
        if gpu is None:
            return self.error(
                f"Error: GPU {gpu_id} not found. Valid GPU IDs: 0-{len(node.gpus) - 1}"
            )
        return gpu

    def _select_gpus(self, parsed: ParsedCommand, node: Node, action: str = "query") -> Union[List[GPU], CommandResult]:
        """GPUs named by ``-i`` (comma separated), or every visible GPU."""
        raw = get_flag_string(parsed, ["id", "i"])
        if not raw:
            return node.visible_gpus()
        selected = []
        for part in raw.split(","):
            gpu = self._parse_gpu_id(node, part.strip())
            if isinstance(gpu, CommandResult):
                return gpu
            if gpu.fallen_off_bus:
                return self.error(
                    f"Unable to {action} GPU {gpu.id}: GPU has fallen off the bus (XID 79).\n"
                    f"{FALLEN_OFF_BUS_HINT}"
                )
            selected.append(gpu)
        return selected

    # -------------------------------------------------------------------------
    # Listing and queries
    # -------------------------------------------------------------------------

    def handle_list_gpus(self, node: Node) -> CommandResult:
        visible = node.visible_gpus()
        if not visible:
            return self.success("No devices were found")
        return self.success("\n".join(f"GPU {gpu.id}: {gpu.name} (UUID: {gpu.uuid})" for gpu in visible))

    def handle_query_gpu(self, parsed: ParsedCommand, node: Node, fields: str) -> CommandResult:
        selected = self._select_gpus(parsed, node)
        if isinstance(selected, CommandResult):
            return selected
        field_list = [f.strip() for f in fields.split(",") if f.strip()]
        fmt = get_flag_string(parsed, ["format"], "csv")
        options = {opt.strip() for opt in fmt.split(",")}
        if "csv" not in options:
            return self.error(f'Error: Invalid format "{fmt}". Only csv output is supported.')
        show_units = "nounits" not in options

        lines = []
        if "noheader" not in options:
            headers = []
            for name in field_list:
                unit = _QUERY_UNITS.get(name.lower())
                headers.append(f"{name} [{unit}]" if unit and show_units else name)
            lines.append(", ".join(headers))
        for gpu in selected:
            lines.append(", ".join(self._query_value(node, gpu, name, show_units) for name in field_list))
        return self.success("\n".join(lines))

    @staticmethod
    def _query_value(node: Node, gpu: GPU, name: str, show_units: bool) -> str:
        key = name.lower()
        values = {
            "index": str(gpu.id),
            "name": gpu.name,
            "gpu_name": gpu.name,
            "uuid": gpu.uuid,
            "gpu_uuid": gpu.uuid,
            "driver_version": node.nvidia_driver_version,
            "pci.bus_id": gpu.pci_address,
            "pci.link.gen.current": "4",
            "pci.link.width.current": "16",
            "memory.total": str(gpu.memory_total),
            "memory.used": str(gpu.memory_used),
            "memory.free": str(gpu.memory_total - gpu.memory_used),
            "utilization.gpu": str(round(gpu.utilization)),
            "utilization.memory": str(round(gpu.memory_used / gpu.memory_total * 100)) if gpu.memory_total else "0",
            "temperature.gpu": str(round(gpu.temperature)),
            "power.draw": f"{gpu.power_draw:.2f}",
            "power.limit": f"{gpu.power_limit:.2f}",
            "clocks.current.sm": str(gpu.clocks_sm),
            "clocks.sm": str(gpu.clocks_sm),
            "clocks.current.memory": str(gpu.clocks_mem),
            "clocks.mem": str(gpu.clocks_mem),
            "ecc.mode.current": _enabled(gpu.ecc_enabled),
            "ecc.errors.corrected.aggregate.total": str(gpu.ecc_errors.aggregated.single_bit),
            "ecc.errors.uncorrected.aggregate.total": str(gpu.ecc_errors.aggregated.double_bit),
            "ecc.errors.corrected.volatile.total": str(gpu.ecc_errors.single_bit),
            "ecc.errors.uncorrected.volatile.total": str(gpu.ecc_errors.double_bit),
            "mig.mode.current": _enabled(gpu.mig_mode),
            "mig.mode.pending": _enabled(gpu.mig_mode),
            "persistence_mode": _enabled(gpu.persistence_mode),
            "pstate": "P0",
            "clocks_throttle_reasons.hw_thermal_slowdown": "Active" if _is_throttling(gpu) else "Not Active",
        }
        value = values.get(key)
        if value is None:
            return "[Not Supported]"
        unit = _QUERY_UNITS.get(key)
        return f"{value} {unit}" if unit and show_units else value

    def handle_query_compute_apps(self, parsed: ParsedCommand, node: Node) -> CommandResult:
        selected = self._select_gpus(parsed, node)
        if isinstance(selected, CommandResult):
            return selected
        fields = get_flag_string(parsed, ["query-compute-apps"], "pid,process_name,used_memory")
        field_list = [f.strip() for f in fields.split(",") if f.strip()]
        options = {opt.strip() for opt in get_flag_string(parsed, ["format"], "csv").split(",")}
        lines = [] if "noheader" in options else [", ".join(field_list)]
        for gpu in selected:
            if gpu.allocated_job_id is None:
                continue
            values = {
                "pid": str(_process_id(gpu)),
                "process_name": "python",
                "name": "python",
                "used_memory": f"{gpu.memory_used} MiB" if "nounits" not in options else str(gpu.memory_used),
                "gpu_uuid": gpu.uuid,
                "gpu_bus_id": gpu.pci_address,
            }
            lines.append(", ".join(values.get(name, "[Not Supported]") for name in field_list))
        return self.success("\n".join(lines))

    def handle_query(self, parsed: ParsedCommand, node: Node, context: CommandContext) -> CommandResult:
        selected = self._select_gpus(parsed, node)
        if isinstance(selected, CommandResult):
            return selected
        display = get_flag_string(parsed, ["display", "d"]).upper()
        sections = {s.strip() for s in display.split(",") if s.strip()}
        unknown = sections - set(_QUERY_SECTIONS)
        if unknown:
            return self.error(
                f"Invalid display argument: {', '.join(sorted(unknown))}\n"
                f"Valid display arguments: {', '.join(_QUERY_SECTIONS)}"
            )
        header = (
            "==============NVSMI LOG==============\n\n"
            f"Timestamp                                 : {iso_timestamp(context.store.state.clock_ms)}\n"
            f"Driver Version                            : {node.nvidia_driver_version}\n"
            f"CUDA Version                              : {node.cuda_version}\n\n"
            f"Attached GPUs                             : {len(node.visible_gpus())}"
        )
        blocks = [header] + [self._format_query_gpu(gpu, sections) for gpu in selected]
        return self.success("\n".join(blocks))

    @staticmethod
    def _format_query_gpu(gpu: GPU, sections: set) -> str:
        def want(section: str) -> bool:
            return not sections or section in sections

        bus = gpu.pci_address.split(":")
        out = [f"GPU {gpu.pci_address}"]
        if not sections:
            out += [
                f"    Product Name                          : {gpu.name}",
                "    Product Brand                         : NVIDIA",
                f"    Persistence Mode                      : {_enabled(gpu.persistence_mode)}",
                "    MIG Mode",
                f"        Current                           : {_enabled(gpu.mig_mode)}",
                f"        Pending                           : {_enabled(gpu.mig_mode)}",
                f"    GPU UUID                              : {gpu.uuid}",
                f"    Minor Number                          : {gpu.id}",
                "    VBIOS Version                         : 92.00.5C.00.01",
            ]
        if want("PCI"):
            out += [
                "    PCI",
                f"        Bus                               : 0x{bus[1]}",
                f"        Device                            : 0x{bus[2].split('.')[0]}",
                "        Domain                            : 0x0000",
                "        Device Id                         : 0x20B210DE",
                f"        Bus Id                            : {gpu.pci_address}",
            ]
        if want("PERFORMANCE"):
            slowdown = "Active" if _is_throttling(gpu) else "Not Active"
            out += [
                "    Performance State                     : P0",
                "    Clocks Event Reasons",
                "        Idle                              : Not Active",
                "        SW Power Cap                      : Not Active",
                f"        HW Slowdown                       : {slowdown}",
                f"        HW Thermal Slowdown               : {slowdown}",
                "        SW Thermal Slowdown               : Not Active",
            ]
        if want("MEMORY"):
            out += [
                "    FB Memory Usage",
                f"        Total                             : {gpu.memory_total} MiB",
                "        Reserved                          : 625 MiB",
                f"        Used                              : {gpu.memory_used} MiB",
                f"        Free                              : {gpu.memory_total - gpu.memory_used} MiB",
            ]
        if want("UTILIZATION"):
            mem_util = round(gpu.memory_used / gpu.memory_total * 100) if gpu.memory_total else 0
            out += [
                "    Utilization",
                f"        Gpu                               : {round(gpu.utilization)} %",
                f"        Memory                            : {mem_util} %",
            ]
        if want("ECC"):
            ecc = gpu.ecc_errors
            out += [
                "    ECC Mode",
                f"        Current                           : {_enabled(gpu.ecc_enabled)}",
                f"        Pending                           : {_enabled(gpu.ecc_enabled)}",
                "    ECC Errors",
                "        Volatile",
                f"            SRAM Correctable              : {ecc.single_bit}",
                f"            SRAM Uncorrectable            : {ecc.double_bit}",
                f"            DRAM Correctable              : {ecc.single_bit}",
                f"            DRAM Uncorrectable            : {ecc.double_bit}",
                "        Aggregate",
                f"            SRAM Correctable              : {ecc.aggregated.single_bit}",
                f"            SRAM Uncorrectable            : {ecc.aggregated.double_bit}",
                f"            DRAM Correctable              : {ecc.aggregated.single_bit}",
                f"            DRAM Uncorrectable            : {ecc.aggregated.double_bit}",
            ]
        if want("TEMPERATURE"):
            out += [
                "    Temperature",
                f"        GPU Current Temp                  : {round(gpu.temperature)} C",
                "        GPU Shutdown Temp                 : 92 C",
                "        GPU Slowdown Temp                 : 89 C",
                "        GPU Max Operating Temp            : 85 C",
                f"        Memory Current Temp               : {round(gpu.temperature) - 5} C",
            ]
        if want("POWER"):
            limits = gpu_defaults(gpu.gpu_type)
            out += [
                "    GPU Power Readings",
                f"        Power Draw                        : {gpu.power_draw:.2f} W",
                f"        Current Power Limit               : {gpu.power_limit:.2f} W",
                f"        Default Power Limit               : {limits['power_limit']:.2f} W",
                f"        Min Power Limit                   : {MIN_POWER_LIMIT:.2f} W",
                f"        Max Power Limit                   : {limits['power_limit']:.2f} W",
            ]
        if want("CLOCK"):
            out += [
                "    Clocks",
                f"        Graphics                          : {gpu.clocks_sm} MHz",
                f"        SM                                : {gpu.clocks_sm} MHz",
                f"        Memory                            : {gpu.clocks_mem} MHz",
            ]
        return "\n" + "\n".join(out)

    def format_default(self, node: Node, gpus: List[GPU], context: CommandContext, hidden: int) -> str:
        top_border = "+" + "-" * (TOTAL_WIDTH - 2) + "+"
        col_separator = "+" + "-" * COL_1 + "+" + "-" * COL_2 + "+" + "-" * COL_3 + "+"
        header_sep = "|" + "-" * COL_1 + "+" + "-" * COL_2 + "+" + "-" * COL_3 + "|"
        double_sep = "|" + "=" * COL_1 + "+" + "=" * COL_2 + "+" + "=" * COL_3 + "|"

        def row(a: str, b: str, c: str) -> str:
            return "|" + pad_col(a, COL_1) + "|" + pad_col(b, COL_2) + "|" + pad_col(c, COL_3) + "|"

        def wide(text: str) -> str:
            return "|" + pad_col(text, TOTAL_WIDTH - 2) + "|"

        lines = [
            nvidia_smi_timestamp(context.store.state.clock_ms),
            top_border,
            wide(
                f" NVIDIA-SMI {node.nvidia_driver_version}   Driver Version: "
                f"{node.nvidia_driver_version}   CUDA Version: {node.cuda_version} "
            ),
            header_sep,
            row(" GPU  Name        Persistence-M", " Bus-Id        Disp.A ", " Volatile Uncorr. ECC "),
            row(" Fan  Temp  Perf  Pwr:Usage/Cap", "         Memory-Usage ", " GPU-Util  Compute M. "),
            row("", "", "               MIG M. "),
            double_sep,
        ]
        for gpu in gpus:
            persist = "On " if gpu.persistence_mode else "Off"
            ecc = str(gpu.ecc_errors.double_bit) if gpu.ecc_errors.double_bit > 0 else "0"
            lines.append(row(
                f"   {gpu.id}  {gpu.name[:16]:<16} {persist}",
                f" {gpu.pci_address:<16} Off ",
                f"{ecc:>{COL_3 - 1}} ",
            ))
            lines.append(row(
                f" N/A   {round(gpu.temperature):>3}C    P0    {round(gpu.power_draw):>3}W / {round(gpu.power_limit):>3}W ",
                f"   {round(gpu.memory_used):>5}MiB / {round(gpu.memory_total):>5}MiB ",
                f"     {round(gpu.utilization):>3}%      Default ",
            ))
            mig = "Enabled" if gpu.mig_mode else "Disabled"
            lines.append(row("", "", f"{mig:>{COL_3 - 1}} "))
            lines.append(col_separator)

        lines += [
            "",
            top_border,
            wide(" Processes:"),
            wide("  GPU   GI   CI        PID   Type   Process name                  GPU Memory "),
            wide("        ID   ID                                                   Usage      "),
            "|" + "=" * (TOTAL_WIDTH - 2) + "|",
        ]
        busy = [gpu for gpu in gpus if gpu.allocated_job_id is not None]
        if not busy:
            lines.append(wide("  No running processes found"))
        for gpu in busy:
            pid = _process_id(gpu)
            lines.append(wide(
                f"  {gpu.id:>3}   N/A  N/A  {pid:>9}      C   python{'':<24}{gpu.memory_used:>6}MiB "
            ))
        lines.append(top_border)

        if hidden > 0:
            lines.append("")
            lines.append(colorize(
                f"WARNING: {hidden} GPU(s) not shown due to critical errors (XID 79: GPU fallen off the bus)", RED
            ))
            lines.append(colorize(FALLEN_OFF_BUS_HINT, YELLOW))
        return "\n".join(lines)

    # -------------------------------------------------------------------------
    # Device modification
    # -------------------------------------------------------------------------

    def handle_gpu_reset(self, parsed: ParsedCommand, node: Node, context: CommandContext) -> CommandResult:
        raw = get_flag_value(parsed, "id", "i")
        if not isinstance(raw, str):
            return self.error(
                "Error: GPU reset requires -i flag to specify GPU ID\n"
                "Usage: nvidia-smi --gpu-reset -i <gpu_id>"
            )
        gpu = self._parse_gpu_id(node, raw)
        if isinstance(gpu, CommandResult):
            return gpu

        if gpu.fallen_off_bus:
            # The command itself completes; the failure is reported in the text.
            logger.info(f"Reset of {node.id} GPU {gpu.id} refused: XID {XID_FALLEN_OFF_BUS}")
            return self.success(
                f"Unable to reset GPU {gpu.id}: GPU has fallen off the bus.\n"
                "XID 79 indicates a severe PCIe communication failure.\n"
                "GPU reset will not work in this state. System reboot or hardware intervention required.\n"
                "Check 'dmesg | grep -i xid' for details."
            )

        if gpu.allocated_job_id is not None:
            logger.info(f"Reset of {node.id} GPU {gpu.id} refused: in use by job {gpu.allocated_job_id}")
            return self.error(
                f"GPU {gpu.pci_address} is currently in use by another process.\n\n"
                "1 device is currently being used by one or more other processes (e.g., CUDA application "
                "or a monitoring application such as another instance of nvidia-smi). "
                "Please first kill all processes using this device and all compute applications running "
                "in the system.\n"
                f"GPU {gpu.id} is allocated to Slurm job {gpu.allocated_job_id}; "
                f"run 'scancel {gpu.allocated_job_id}' first."
            )

        critical = gpu.critical_xids or [x for x in gpu.xid_errors if x.severity == "Critical"]
        terminated = f"All compute applications using GPU {gpu.id} have been terminated."
        gpu.xid_errors = []
        gpu.health_status = HEALTH_OK
        gpu.utilization = 0
        gpu.ecc_errors.single_bit = 0
        gpu.ecc_errors.double_bit = 0
        for link in gpu.nvlinks:
            link.status = "Active"
        context.store.refresh_node_health(node.id)

        if critical:
            gpu.temperature = 45.0
            codes = ", ".join(str(x.code) for x in critical)
            return self.success(
                f"GPU {gpu.id} reset successfully.\n"
                f"Cleared critical XID error(s): {codes}\n"
                f"{terminated}\n"
                "Monitor 'dmesg' for XID recurrence. If errors persist, hardware RMA may be required."
            )
        return self.success(f"GPU {gpu.id} reset successfully.\n{terminated}")

    def _targets(self, parsed: ParsedCommand, node: Node, action: str) -> Union[List[GPU], CommandResult]:
        selected = self._select_gpus(parsed, node, action)
        if isinstance(selected, CommandResult):
            return selected
        if not selected:
            return self.error("No devices were found")
        return selected

    @staticmethod
    def _toggle(parsed: ParsedCommand, *names: str) -> Optional[bool]:
        value = get_flag_value(parsed, *names)
        if value is True:
            return None
        normalized = str(value).strip().upper()
        if normalized in ("1", "ENABLED"):
            return True
        if normalized in ("0", "DISABLED"):
            return False
        return None

    def handle_mig_mode(self, parsed: ParsedCommand, node: Node) -> CommandResult:
        enable = self._toggle(parsed, "mig", "multi-instance-gpu")
        if enable is None:
            return self.error("Error: -mig requires a value: 0/DISABLED or 1/ENABLED")
        targets = self._targets(parsed, node, "configure MIG on")
        if isinstance(targets, CommandResult):
            return targets
        lines = []
        for gpu in targets:
            gpu.mig_mode = enable
            if enable:
                lines.append(f"Enabled MIG Mode for GPU {gpu.pci_address}")
            else:
                gpu.mig_instances = []
                lines.append(f"Disabled MIG Mode for GPU {gpu.pci_address}")
        if enable:
            lines.append("Warning: MIG mode is in pending enable state for GPU(s).")
            lines.append("Note: All GPU applications running on the device will be terminated.")
        lines.append("All done.")
        return self.success("\n".join(lines))

    def handle_power_limit(self, parsed: ParsedCommand, node: Node) -> CommandResult:
        raw = get_flag_string(parsed, ["pl", "power-limit"])
        try:
            limit = float(raw)
        except ValueError:
            return self.error(f'Error: Invalid power limit "{raw}". Provide a value in watts.')
        targets = self._targets(parsed, node, "set power limit on")
        if isinstance(targets, CommandResult):
            return targets
        for gpu in targets:
            maximum = gpu_defaults(gpu.gpu_type)["power_limit"]
            if limit < MIN_POWER_LIMIT or limit > maximum:
                return self.error(
                    f"Error: Power limit must be between {MIN_POWER_LIMIT} and {maximum:.0f} W "
                    f"for GPU {gpu.id}"
                )
        lines = []
        for gpu in targets:
            previous, gpu.power_limit = gpu.power_limit, limit
            lines.append(f"Power limit for GPU {gpu.pci_address} was set to {limit:.2f} W from {previous:.2f} W.")
        lines.append("All done.")
        return self.success("\n".join(lines))

    def handle_compute_mode(self, parsed: ParsedCommand, node: Node) -> CommandResult:
        modes = {"0": "Default", "DEFAULT": "Default", "2": "Prohibited", "PROHIBITED": "Prohibited",
                 "3": "Exclusive_Process", "EXCLUSIVE_PROCESS": "Exclusive_Process"}
        raw = get_flag_string(parsed, ["compute-mode", "c"]).upper()
        mode = modes.get(raw)
        if mode is None:
            return self.error("Error: -c requires a value: 0/DEFAULT, 2/PROHIBITED or 3/EXCLUSIVE_PROCESS")
        targets = self._targets(parsed, node, "set compute mode on")
        if isinstance(targets, CommandResult):
            return targets
        lines = [f'Set compute mode to {mode.upper()} for GPU {gpu.pci_address}.' for gpu in targets]
        lines.append("All done.")
        return self.success("\n".join(lines))

    def handle_persistence_mode(self, parsed: ParsedCommand, node: Node) -> CommandResult:
        enable = self._toggle(parsed, "pm", "persistence-mode")
        if enable is None:
            return self.error("Error: -pm requires a value: 0/DISABLED or 1/ENABLED")
        targets = self._targets(parsed, node, "set persistence mode on")
        if isinstance(targets, CommandResult):
            return targets
        lines = []
        for gpu in targets:
            gpu.persistence_mode = enable
            lines.append(f"{'Enabled' if enable else 'Disabled'} persistence mode for GPU {gpu.pci_address}.")
        lines.append("All done.")
        return self.success("\n".join(lines))

    def handle_ecc_config(self, parsed: ParsedCommand, node: Node) -> CommandResult:
        enable = self._toggle(parsed, "ecc-config", "e")
        if enable is None:
            return self.error("Error: -e requires a value: 0/DISABLED or 1/ENABLED")
        targets = self._targets(parsed, node, "configure ECC on")
        if isinstance(targets, CommandResult):
            return targets
        lines = []
        for gpu in targets:
            if gpu.ecc_enabled == enable:
                lines.append(f"ECC support is already {_enabled(enable)} for GPU {gpu.pci_address}.")
            else:
                gpu.ecc_enabled = enable
                lines.append(f"{_enabled(enable)} ECC support for GPU {gpu.pci_address}.")
        lines.append("All done.")
        lines.append("Reboot required.")
        return self.success("\n".join(lines))

    def handle_reset_ecc(self, parsed: ParsedCommand, node: Node) -> CommandResult:
        raw = get_flag_string(parsed, ["reset-ecc-errors", "p"]).upper()
        if raw not in ("0", "1", "VOLATILE", "AGGREGATE"):
            return self.error("Error: -p requires a value: 0/VOLATILE or 1/AGGREGATE")
        aggregate = raw in ("1", "AGGREGATE")
        targets = self._targets(parsed, node, "reset ECC errors on")
        if isinstance(targets, CommandResult):
            return targets
        lines = []
        for gpu in targets:
            if aggregate:
                gpu.ecc_errors.aggregated.single_bit = 0
                gpu.ecc_errors.aggregated.double_bit = 0
            else:
                gpu.ecc_errors.single_bit = 0
                gpu.ecc_errors.double_bit = 0
            kind = "aggregate" if aggregate else "volatile"
            lines.append(f"Reset {kind} ECC errors to zero for GPU {gpu.pci_address}.")
        lines.append("All done.")
        return self.success("\n".join(lines))

    def handle_lock_clocks(self, parsed: ParsedCommand, node: Node) -> CommandResult:
        raw = get_flag_string(parsed, ["lgc", "lock-gpu-clocks"])
        bounds = _parse_clock_range(raw)
        if bounds is None:
            return self.error(f'Error: Invalid clock range "{raw}". Use MIN_CLOCK,MAX_CLOCK in MHz.')
        low, high = bounds
        targets = self._targets(parsed, node, "lock clocks on")
        if isinstance(targets, CommandResult):
            return targets
        lines = []
        for gpu in targets:
            gpu.clocks_sm = min(high, gpu_defaults(gpu.gpu_type)["clocks_sm"])
            lines.append(
                f'GPU clocks set to "(gpuClkMin {low}, gpuClkMax {high})" for GPU {gpu.pci_address}'
            )
        lines.append("All done.")
        return self.success("\n".join(lines))

    def handle_reset_clocks(self, parsed: ParsedCommand, node: Node) -> CommandResult:
        targets = self._targets(parsed, node, "reset clocks on")
        if isinstance(targets, CommandResult):
            return targets
        for gpu in targets:
            gpu.clocks_sm = gpu_defaults(gpu.gpu_type)["clocks_sm"]
        lines = [f"All done. Reset GPU clocks for GPU {gpu.pci_address}." for gpu in targets]
        return self.success("\n".join(lines))

    # -------------------------------------------------------------------------
    # Subcommands
    # -------------------------------------------------------------------------

    def handle_nvlink(self, parsed: ParsedCommand, context: CommandContext) -> CommandResult:
        if not has_flag(parsed, "status", "s"):
            return self.error(
                "nvidia-smi nvlink: Missing required option: --status\n"
                "Try 'nvidia-smi nvlink --help' for more information."
            )
        node = context.node()
        selected = self._select_gpus(parsed, node)
        if isinstance(selected, CommandResult):
            return selected
        lines = []
        for gpu in selected:
            lines.append(f"GPU {gpu.id}: {gpu.name} (UUID: {gpu.uuid})")
            for link in gpu.nvlinks:
                state = f"{link.speed:g} GB/s" if link.status == "Active" else "<inactive>"
                lines.append(f"\t Link {link.link_id}: {state}")
        return self.success("\n".join(lines))

    def handle_topo(self, parsed: ParsedCommand, context: CommandContext) -> CommandResult:
        if not has_flag(parsed, "matrix", "m"):
            return self.error(
                "nvidia-smi topo: Missing required option: -m/--matrix\n"
                "Try 'nvidia-smi topo --help' for more information."
            )
        node = context.node()
        gpus = node.visible_gpus()
        nics = [hca.name for hca in node.hcas]
        header = "\t" + "\t".join([f"GPU{g.id}" for g in gpus] + nics + ["CPU Affinity", "NUMA Affinity"])
        lines = [header]
        half = max(1, len(node.gpus) // 2)
        for gpu in gpus:
            cells = []
            for other in gpus:
                cells.append(" X " if other.id == gpu.id else f"NV{len(gpu.nvlinks)}")
            for hca in node.hcas:
                cells.append("PXB" if hca.id == gpu.id else "SYS")
            numa = 0 if gpu.id < half else 1
            cpus = "0-63" if numa == 0 else "64-127"
            lines.append(f"GPU{gpu.id}\t" + "\t".join(cells + [cpus, str(numa)]))
        lines += [
            "",
            "Legend:",
            "",
            "  X    = Self",
            "  SYS  = Connection traversing PCIe as well as the SMP interconnect between NUMA nodes",
            "  PXB  = Connection traversing multiple PCIe bridges (without traversing the PCIe Host Bridge)",
            "  NV#  = Connection traversing a bonded set of # NVLinks",
        ]
        return self.success("\n".join(lines))

    def handle_mig(self, parsed: ParsedCommand, context: CommandContext) -> CommandResult:
        node = context.node()
        if has_flag(parsed, "lgip"):
            return self._list_gi_profiles(node)
        if has_flag(parsed, "lgi"):
            return self._list_gpu_instances(node)
        if has_flag(parsed, "cgi"):
            return self._create_gpu_instances(parsed, node)
        if has_flag(parsed, "dgi", "dci"):
            return self._destroy_gpu_instances(parsed, node)
        return self.error(
            "nvidia-smi mig: No operation specified.\n"
            "Try 'nvidia-smi mig --help' for more information."
        )

    def _mig_gpu(self, parsed: ParsedCommand, node: Node) -> Union[GPU, CommandResult]:
        raw = get_flag_string(parsed, ["id", "i"], "0")
        gpu = self._parse_gpu_id(node, raw)
        if isinstance(gpu, CommandResult):
            return gpu
        if gpu.fallen_off_bus:
            return self.error(f"Unable to access GPU {gpu.id}: GPU has fallen off the bus (XID 79).\n{FALLEN_OFF_BUS_HINT}")
        return gpu

    def _list_gi_profiles(self, node: Node) -> CommandResult:
        mig_gpus = [gpu for gpu in node.visible_gpus() if gpu.mig_mode]
        if not mig_gpus:
            return self.error("No MIG-enabled devices found.")
        lines = [
            "+-----------------------------------------------------------------------------+",
            "| GPU instance profiles:                                                      |",
            "| GPU   Name             ID    Instances   Memory     P2P    SM    DEC   ENC  |",
            "|                              Free/Total   GiB              CE    JPEG  OFA  |",
            "|=============================================================================|",
        ]
        for gpu in mig_gpus:
            for profile in MIG_PROFILES:
                used = sum(1 for gi in gpu.mig_instances if gi.profile_id == profile.id)
                free = max(0, profile.max_instances - used)
                lines.append(
                    f"|   {gpu.id}  MIG {profile.name:<12} {profile.id:>2}     {free}/{profile.max_instances}"
                    f"        {profile.memory:>5.2f}      No     {profile.compute_slices:>2}"
                    f"     {profile.gpu_instances}     0   |"
                )
        lines.append("+-----------------------------------------------------------------------------+")
        return self.success("\n".join(lines))

    def _list_gpu_instances(self, node: Node) -> CommandResult:
        mig_gpus = [gpu for gpu in node.visible_gpus() if gpu.mig_mode]
        if not mig_gpus:
            return self.error("No MIG-enabled devices found.")
        instances = [(gpu, gi) for gpu in mig_gpus for gi in gpu.mig_instances]
        if not instances:
            return self.error("No GPU instances found: Not Found")
        lines = [
            "+-------------------------------------------------------+",
            "| GPU instances:                                        |",
            "| GPU   Name             Profile  Instance   Placement  |",
            "|                          ID       ID       Start:Size |",
            "|=======================================================|",
        ]
        for gpu, gi in instances:
            profile = get_mig_profile(gi.profile_id)
            name = f"MIG {profile.name}" if profile else "Unknown"
            size = profile.gpu_instances if profile else 0
            lines.append(f"|   {gpu.id}  {name:<16} {gi.profile_id:>4}     {gi.id:>4}          0:{size:<5}|")
        lines.append("+-------------------------------------------------------+")
        return self.success("\n".join(lines))

    def _create_gpu_instances(self, parsed: ParsedCommand, node: Node) -> CommandResult:
        gpu = self._mig_gpu(parsed, node)
        if isinstance(gpu, CommandResult):
            return gpu
        if not gpu.mig_mode:
            return self.error(
                f"Error: MIG mode not enabled on GPU {gpu.id}\n"
                f"Use 'nvidia-smi -i {gpu.id} -mig 1' to enable MIG mode."
            )
        raw = get_flag_string(parsed, ["cgi"])
        try:
            profile_ids = [int(p.strip()) for p in raw.split(",") if p.strip()]
        except ValueError:
            profile_ids = []
        if not profile_ids:
            return self.error(
                "Error: No valid profile IDs specified.\n"
                "Use 'nvidia-smi mig -lgip' to list available profiles."
            )

        profiles = []
        for profile_id in profile_ids:
            profile = get_mig_profile(profile_id)
            if profile is None:
                return self.error(
                    f"Unable to create a GPU instance on GPU {gpu.id} using profile {profile_id}: Invalid Argument"
                )
            profiles.append(profile)
        used_slots = sum(
            (get_mig_profile(gi.profile_id).gpu_instances if get_mig_profile(gi.profile_id) else 0)
            for gi in gpu.mig_instances
        )
        if used_slots + sum(p.gpu_instances for p in profiles) > MIG_GPU_SLOTS:
            return self.error(
                f"Unable to create GPU instances on GPU {gpu.id}: Insufficient Resources\n"
                "Destroy existing instances with 'nvidia-smi mig -dgi' first."
            )

        create_compute = has_flag(parsed, "C", "create-compute")
        next_id = max((gi.id for gi in gpu.mig_instances), default=0) + 1
        lines = []
        for offset, profile in enumerate(profiles):
            gi_id = next_id + offset
            gi = MIGInstance(
                id=gi_id,
                gpu_id=gpu.id,
                profile_id=profile.id,
                uuid=f"MIG-{stable_uuid(gpu.uuid, 'gi', gi_id)}",
            )
            lines.append(
                f"Successfully created GPU instance ID {gi_id:>2} on GPU {gpu.id:>2} "
                f"using profile MIG {profile.name} (ID {profile.id:>2})"
            )
            if create_compute:
                gi.compute_instances.append(ComputeInstance(
                    id=0, gi_id=gi_id, profile_id=0, uuid=f"MIG-{stable_uuid(gpu.uuid, 'ci', gi_id, 0)}"
                ))
                lines.append(
                    f"Successfully created compute instance ID  0 on GPU {gpu.id:>2} GPU instance ID {gi_id:>2} "
                    f"using profile MIG {profile.name} (ID  0)"
                )
            gpu.mig_instances.append(gi)
        return self.success("\n".join(lines))

    def _destroy_gpu_instances(self, parsed: ParsedCommand, node: Node) -> CommandResult:
        gpu = self._mig_gpu(parsed, node)
        if isinstance(gpu, CommandResult):
            return gpu
        if not gpu.mig_instances:
            return self.error(f"Unable to destroy GPU instances on GPU {gpu.id}: Not Found")
        lines = [
            f"Successfully destroyed GPU instance ID {gi.id:>2} from GPU {gpu.id:>2}"
            for gi in gpu.mig_instances
        ]
        gpu.mig_instances = []
        return self.success("\n".join(lines))


def _parse_clock_range(raw: str) -> Optional[Tuple[int, int]]:
    parts = [p.strip() for p in raw.split(",")]
    if len(parts) != 2 or not all(p.isdigit() for p in parts):
        return None
    low, high = int(parts[0]), int(parts[1])
    return (low, high) if low <= high else None
