"""dcgmi (NVIDIA Data Center GPU Manager) simulator."""

from __future__ import annotations

from typing import List, Optional

from clustersim.parsing.command_parser import ParsedCommand, get_flag_string, has_flag
from clustersim.parsing.fuzzy import FlagDefinition
from clustersim.simulators.base import (
    BaseSimulator,
    CommandContext,
    CommandMetadata,
    CommandResult,
    CommandSpec,
    FlagSpec,
)
from clustersim.state.models import GPU, HEALTH_OK, HEALTH_WARNING
from clustersim.utils.formatting import GREEN, RED, YELLOW, colorize, pad_col

DCGM_VERSION = "3.1.3"
HIGH_TEMPERATURE = 80

DIAG_COL_1 = 27
DIAG_COL_2 = 48

POLICY_CONDITIONS = ("ecc", "thermal", "power", "pcie", "nvlink", "xid", "dbe", "max-pages")
POLICY_ACTIONS = ("log", "reset", "none")

FALLEN_OFF_BUS_DIAG = """Error: Unable to run diagnostics on GPU(s): {ids}
GPU {ids} is not accessible: GPU has fallen off the bus (XID 79).
This indicates a severe PCIe communication failure.

Possible causes:
  - PCIe slot failure
  - GPU hardware failure
  - Power delivery issue

Recommended actions:
  1. System reboot may restore GPU access
  2. If error persists, reseat GPU in PCIe slot
  3. If reseating fails, GPU or motherboard RMA may be required
  4. Check 'dmesg | grep -i xid' for additional details"""

# (category, test name, minimum level)
_DIAG_TESTS = (
    ("Deployment", "Blacklist", 1),
    ("Deployment", "NVML Library", 1),
    ("Deployment", "CUDA Main Library", 1),
    ("Deployment", "Permissions and OS Blocks", 1),
    ("Deployment", "Persistence Mode", 1),
    ("Deployment", "Environment Variables", 1),
    ("Deployment", "Page Retirement/Row Remap", 1),
    ("Deployment", "Graphics Processes", 1),
    ("Hardware", "GPU Memory", 1),
    ("Hardware", "Pulse Test", 1),
    ("Integration", "PCIe", 2),
    ("Performance", "SM Stress", 2),
    ("Performance", "Targeted Stress", 2),
    ("Performance", "Memory Bandwidth", 3),
    ("Performance", "Diagnostic", 3),
    ("Hardware", "ECC Check", 3),
)


def _health_symbol(status: str) -> str:
    if status == HEALTH_OK:
        return colorize(f"✓ {status}", GREEN)
    if status == HEALTH_WARNING:
        return colorize(f"⚠ {status}", YELLOW)
    return colorize(f"✗ {status}", RED)


class DcgmiSimulator(BaseSimulator):
    name = "dcgmi"
    version = DCGM_VERSION
    description = "NVIDIA Data Center GPU Manager Interface"

    def valid_flags(self):
        return (
            FlagDefinition("help", "h"),
            FlagDefinition("version", "v"),
        )

    def command_specs(self) -> List[CommandSpec]:
        return [
            CommandSpec("discovery", self.handle_discovery, CommandMetadata(
                name="discovery",
                description="Discover GPUs in the system",
                usage="dcgmi discovery [OPTIONS]",
                flags=(
                    FlagSpec("list", "List all discovered GPUs with details", short="l"),
                    FlagSpec("compute", "Show compute capability", short="c"),
                ),
                examples=("dcgmi discovery -l", "dcgmi discovery --list"),
            )),
            CommandSpec("diag", self.handle_diag, CommandMetadata(
                name="diag",
                description="Run GPU diagnostics",
                usage="dcgmi diag [OPTIONS]",
                flags=(
                    FlagSpec("mode", "Diagnostic level (1=short, 2=medium, 3=long)", short="r", takes_value=True),
                    FlagSpec("gpu-id", "Specify GPU ID to test", short="i", takes_value=True),
                ),
                examples=("dcgmi diag -r 1", "dcgmi diag --mode 2", "dcgmi diag -r 3 -i 0"),
            )),
            CommandSpec("health", self.handle_health, CommandMetadata(
                name="health",
                description="Check GPU health status",
                usage="dcgmi health [OPTIONS]",
                flags=(FlagSpec("check", "Check health status of all GPUs", short="c"),),
                examples=("dcgmi health -c", "dcgmi health --check"),
            )),
            CommandSpec("group", self.handle_group, CommandMetadata(
                name="group",
                description="Manage GPU groups",
                usage="dcgmi group [OPTIONS]",
                flags=(
                    FlagSpec("list", "List all GPU groups", short="l"),
                    FlagSpec("create", "Create a new group", short="c", takes_value=True),
                    FlagSpec("delete", "Delete a group", short="d", takes_value=True),
                ),
                examples=("dcgmi group -l", "dcgmi group -c my-group"),
            )),
            CommandSpec("stats", self.handle_stats, CommandMetadata(
                name="stats",
                description="Collect GPU statistics",
                usage="dcgmi stats [OPTIONS]",
                flags=(
                    FlagSpec("group", "Specify group ID", short="g", takes_value=True),
                    FlagSpec("enable", "Enable stats collection", short="e"),
                ),
                examples=("dcgmi stats -g 0 -e",),
            )),
            CommandSpec("policy", self.handle_policy, CommandMetadata(
                name="policy",
                description="Set health monitoring policies",
                usage="dcgmi policy [OPTIONS]",
                flags=(
                    FlagSpec("group", "Specify group ID", short="g", takes_value=True),
                    FlagSpec("get", "Show the active policies"),
                    FlagSpec("set", "Set a policy (requires --condition)"),
                    FlagSpec("condition", "Policy condition", takes_value=True),
                    FlagSpec("threshold", "Violation threshold", takes_value=True),
                    FlagSpec("action", "Action on violation: log, reset, none", takes_value=True),
                    FlagSpec("reg", "Register for policy violation notifications"),
                    FlagSpec("clear", "Clear all policies"),
                    FlagSpec("enable", "Enable a policy mask", short="e", takes_value=True),
                ),
                examples=(
                    "dcgmi policy --get",
                    "dcgmi policy --set --condition ecc --threshold 10 --action log",
                    "dcgmi policy -g 0 -e 0xFF",
                ),
            )),
        ]

    def run_default(self, parsed: ParsedCommand, context: CommandContext) -> CommandResult:
        return self.error('No command specified. Run "dcgmi --help" for usage.')

    def unknown_subcommand(self, tool: str, subcommand: str) -> CommandResult:
        result = super().unknown_subcommand(tool, subcommand)
        return self.error(result.output + '\n\nRun "dcgmi --help" for more information.')

    # -------------------------------------------------------------------------
    # discovery
    # -------------------------------------------------------------------------

    def handle_discovery(self, parsed: ParsedCommand, context: CommandContext) -> CommandResult:
        gpus = context.node().visible_gpus()
        if not has_flag(parsed, "list", "l"):
            return self.success(f"{len(gpus)} GPU(s) found. Use -l for details.")
        lines = [f"{len(gpus)} GPU(s) found."]
        for gpu in gpus:
            lines += [
                "",
                f"GPU {gpu.id}: {gpu.uuid}",
                "  Device Information:",
                f"    UUID:        {gpu.uuid}",
                f"    PCI Bus ID:  {gpu.pci_address}",
                f"    Device Name: {gpu.name}",
            ]
            if has_flag(parsed, "compute", "c"):
                capability = "9.0" if gpu.gpu_type.startswith("H100") else "8.0"
                lines.append(f"    Compute Capability: {capability}")
        return self.success("\n".join(lines))

    # -------------------------------------------------------------------------
    # diag
    # -------------------------------------------------------------------------

    def handle_diag(self, parsed: ParsedCommand, context: CommandContext) -> CommandResult:
        node = context.node()
        raw_mode = get_flag_string(parsed, ["mode", "r"], "1")
        if raw_mode not in ("1", "2", "3"):
            return self.error("mode must be 1 (short), 2 (medium), or 3 (long)")
        level = int(raw_mode)

        raw_id = get_flag_string(parsed, ["gpu-id", "i"])
        if raw_id:
            gpus = [gpu for gpu in node.gpus if raw_id.isdigit() and gpu.id == int(raw_id)]
            if not gpus:
                return self.error(f"GPU {raw_id} not found")
        else:
            gpus = list(node.gpus)

        lost = [gpu for gpu in gpus if gpu.fallen_off_bus]
        if lost:
            ids = ", ".join(str(gpu.id) for gpu in lost)
            return self.error(FALLEN_OFF_BUS_DIAG.format(ids=ids))

        return self.success(f"Running level {level} diagnostic...\n" + self.format_diag(level, gpus))

    @staticmethod
    def format_diag(level: int, gpus: List[GPU]) -> str:
        border = "+" + "-" * DIAG_COL_1 + "+" + "-" * DIAG_COL_2 + "+"
        double = "+" + "=" * DIAG_COL_1 + "+" + "=" * DIAG_COL_2 + "+"
        ecc_ok = all(gpu.ecc_errors.double_bit == 0 and gpu.ecc_errors.aggregated.double_bit == 0 for gpu in gpus)

        lines = [
            "",
            "Successfully ran diagnostic for group.",
            border,
            "| " + pad_col("Diagnostic", DIAG_COL_1 - 1) + "| " + pad_col("Result", DIAG_COL_2 - 1) + "|",
            double,
        ]
        failed = 0
        for category, test, min_level in _DIAG_TESTS:
            if level < min_level:
                continue
            passed = ecc_ok if test == "ECC Check" else True
            if not passed:
                failed += 1
            # Pad on the plain text so ANSI codes don't count toward the width.
            label = pad_col(f"{test} {'Pass' if passed else 'Fail'}", DIAG_COL_2 - 1)
            status = "Pass" if passed else "Fail"
            label = label.replace(status, colorize(status, GREEN if passed else RED), 1)
            lines.append("| " + pad_col(category, DIAG_COL_1 - 1) + "| " + label + "|")
        lines += [border, ""]
        if failed:
            lines.append(colorize(f"Warning: {failed} test(s) failed. Check GPU health.", RED))
        else:
            lines.append(colorize("All tests passed successfully.", GREEN))
        return "\n".join(lines)

    # -------------------------------------------------------------------------
    # health
    # -------------------------------------------------------------------------

    def handle_health(self, parsed: ParsedCommand, context: CommandContext) -> CommandResult:
        if not has_flag(parsed, "check", "c"):
            return self.error("Missing required flag: -c/--check")
        lines = ["Health monitoring:"]
        for gpu in context.node().gpus:
            lines.append("")
            lines.append(f"  GPU {gpu.id}: {_health_symbol(gpu.health_status)}")
            if gpu.fallen_off_bus:
                lines.append("    GPU has fallen off the bus (XID 79)")
            if gpu.xid_errors:
                codes = ", ".join(str(x.code) for x in gpu.xid_errors)
                lines.append(f"    XID Errors: {len(gpu.xid_errors)} (codes: {codes})")
            if gpu.ecc_errors.double_bit > 0 or gpu.ecc_errors.aggregated.double_bit > 0:
                count = max(gpu.ecc_errors.double_bit, gpu.ecc_errors.aggregated.double_bit)
                lines.append(f"    ECC Errors: {count} uncorrectable")
            down = [link for link in gpu.nvlinks if link.status != "Active"]
            if down:
                lines.append(f"    NVLink: {len(down)} link(s) down")
            if gpu.temperature > HIGH_TEMPERATURE:
                lines.append(f"    Temperature: {round(gpu.temperature)}°C (HIGH)")
        return self.success("\n".join(lines))

    # -------------------------------------------------------------------------
    # group / stats / policy
    # -------------------------------------------------------------------------

    def handle_group(self, parsed: ParsedCommand, context: CommandContext) -> CommandResult:
        if has_flag(parsed, "list", "l"):
            return self.success('No groups configured.\nUse "dcgmi group -c <name>" to create a group.')
        if has_flag(parsed, "create", "c"):
            name = get_flag_string(parsed, ["create", "c"], "default-group")
            return self.success(f'Successfully created group "{name}" with group ID 0.')
        if has_flag(parsed, "delete", "d"):
            group = get_flag_string(parsed, ["delete", "d"], "0")
            return self.success(f"Successfully removed group {group}")
        return self.error('Missing required flag: -l/--list or -c/--create\nRun "dcgmi group --help" for usage.')

    def handle_stats(self, parsed: ParsedCommand, context: CommandContext) -> CommandResult:
        if has_flag(parsed, "enable", "e"):
            group = get_flag_string(parsed, ["group", "g"], "0")
            return self.success(f"Successfully started process watches on group {group}.")
        return self.success('DCGM stats collection not yet configured.\nUse "dcgmi stats -g <group> -e" to enable.')

    def handle_policy(self, parsed: ParsedCommand, context: CommandContext) -> CommandResult:
        group = get_flag_string(parsed, ["group", "g"], "0")

        if has_flag(parsed, "set"):
            return self._policy_set(parsed, group)
        if has_flag(parsed, "reg"):
            condition = get_flag_string(parsed, ["condition"], "all")
            return self.success(
                f"Policy notifications registered for condition: {condition} (group {group}).\n"
                "Listening for violations... (simulated)"
            )
        if has_flag(parsed, "clear"):
            return self.success(f"Successfully cleared policies for group {group}.")
        if has_flag(parsed, "enable", "e"):
            mask = get_flag_string(parsed, ["enable", "e"], "0xFF")
            return self.success(f"Policy mask {mask} enabled for group {group}.")
        if has_flag(parsed, "get"):
            return self.success(self.format_policies(group))
        return self.success('DCGM policy management.\nUse "dcgmi policy -g <group> -e <mask>" to set health policies.')

    def _policy_set(self, parsed: ParsedCommand, group: str) -> CommandResult:
        condition = get_flag_string(parsed, ["condition"])
        if not condition:
            return self.error(
                "Error: --set requires a condition.\n"
                f"Use --condition with one of: {', '.join(POLICY_CONDITIONS)}"
            )
        if condition.lower() not in POLICY_CONDITIONS:
            return self.error(
                f"Invalid condition: {condition}\nValid conditions: {', '.join(POLICY_CONDITIONS)}"
            )
        action = get_flag_string(parsed, ["action"], "log")
        if action.lower() not in POLICY_ACTIONS:
            return self.error(f"Invalid action: {action}\nValid actions: {', '.join(POLICY_ACTIONS)}")
        threshold: Optional[str] = get_flag_string(parsed, ["threshold"]) or None
        detail = f" threshold {threshold}" if threshold else ""
        return self.success(
            f"Policy set for group {group}: {condition.lower()}{detail}, action {action.lower()}."
        )

    @staticmethod
    def format_policies(group: str) -> str:
        rows = (
            ("DBE / ECC errors", "Enabled", "1 error"),
            ("PCIe replay errors", "Enabled", "100 per minute"),
            ("Max retired pages", "Enabled", "60 pages"),
            ("Thermal violation", "Enabled", "85 C"),
            ("Power violation", "Disabled", "-"),
            ("NVLink errors", "Enabled", "any"),
            ("XID errors", "Enabled", "critical XIDs"),
        )
        lines = [
            f"Policy information for Group {group}",
            "+----------------------------+-------------+---------------------+",
            "| Policy                     | State       | Threshold           |",
            "+============================+=============+=====================+",
        ]
        for name, state, threshold in rows:
            lines.append(f"| {name:<27}| {state:<12}| {threshold:<20}|")
        lines.append("+----------------------------+-------------+---------------------+")
        return "\n".join(lines)
