"""ipmitool simulator: BMC sensors, chassis power, SEL and DCMI power readings.

GPU temperature sensors are derived from the live GPU state on every call,
so an injected thermal fault shows up here as a non-OK sensor.
"""

from __future__ import annotations

from dataclasses import replace
from typing import List

from clustersim.exceptions import SimulatorError
from clustersim.parsing.command_parser import ParsedCommand
from clustersim.parsing.fuzzy import FlagDefinition
from clustersim.simulators.base import (
    BaseSimulator,
    CommandContext,
    CommandMetadata,
    CommandResult,
    CommandSpec,
    FlagSpec,
)
from clustersim.state.models import BMC, BMCSensor, HEALTH_CRITICAL, HEALTH_OK, HEALTH_WARNING, Node, SELEntry
from clustersim.utils.formatting import sim_datetime
from clustersim.utils.logger import get_logger

logger = get_logger(__name__)

IPMITOOL_VERSION = "1.8.18"
GPU_TEMP_WARNING = 85.0
GPU_TEMP_CRITICAL = 90.0

_STATUS_CODES = {HEALTH_OK: "ok", HEALTH_WARNING: "nc", HEALTH_CRITICAL: "cr"}


def _fmt(value) -> str:
    return "na" if value is None else f"{float(value):.3f}"


def sensor_status(sensor: BMCSensor) -> str:
    """Evaluate a reading against its thresholds."""
    reading = sensor.reading
    if (sensor.upper_critical is not None and reading >= sensor.upper_critical) or (
        sensor.lower_critical is not None and reading <= sensor.lower_critical
    ):
        return HEALTH_CRITICAL
    if (sensor.upper_warning is not None and reading >= sensor.upper_warning) or (
        sensor.lower_warning is not None and reading <= sensor.lower_warning
    ):
        return HEALTH_WARNING
    return sensor.status


def gpu_sensors(node: Node) -> List[BMCSensor]:
    sensors = []
    for gpu in node.gpus:
        reading = 0.0 if gpu.fallen_off_bus else gpu.temperature
        sensors.append(BMCSensor(
            name=f"GPU{gpu.id} Temp",
            reading=reading,
            unit="degrees C",
            upper_critical=GPU_TEMP_CRITICAL,
            upper_warning=GPU_TEMP_WARNING,
            status=HEALTH_CRITICAL if gpu.fallen_off_bus else HEALTH_OK,
        ))
    return sensors


class IpmitoolSimulator(BaseSimulator):
    name = "ipmitool"
    version = IPMITOOL_VERSION
    description = "Utility for controlling IPMI-enabled devices"
    version_flags = ("V",)

    def valid_flags(self):
        return (
            FlagDefinition("help", "h"),
            FlagDefinition("V"),
            FlagDefinition("I"),
            FlagDefinition("H"),
            FlagDefinition("U"),
            FlagDefinition("P"),
        )

    def command_specs(self) -> List[CommandSpec]:
        return [
            CommandSpec("sensor", self.handle_sensor, CommandMetadata(
                name="sensor",
                description="Print detailed sensor information",
                usage="ipmitool sensor [list]",
                examples=("ipmitool sensor list",),
            )),
            CommandSpec("sdr", self.handle_sdr, CommandMetadata(
                name="sdr",
                description="Print Sensor Data Repository entries and readings",
                usage="ipmitool sdr [list|type <type>]",
                examples=("ipmitool sdr", "ipmitool sdr type Temperature"),
            )),
            CommandSpec("chassis", self.handle_chassis, CommandMetadata(
                name="chassis",
                description="Get chassis status and set power state",
                usage="ipmitool chassis <status|power status|on|off|cycle|reset>",
                examples=("ipmitool chassis status", "ipmitool chassis power cycle"),
            )),
            CommandSpec("power", self.handle_power, CommandMetadata(
                name="power",
                description="Shortcut to chassis power commands",
                usage="ipmitool power <status|on|off|cycle|reset>",
                examples=("ipmitool power status",),
            )),
            CommandSpec("mc", self.handle_mc, CommandMetadata(
                name="mc",
                description="Management Controller status and global enables",
                usage="ipmitool mc <info|reset warm|reset cold>",
                examples=("ipmitool mc info",),
            )),
            CommandSpec("lan", self.handle_lan, CommandMetadata(
                name="lan",
                description="Configure LAN channels",
                usage="ipmitool lan print [channel]",
                examples=("ipmitool lan print 1",),
            )),
            CommandSpec("sel", self.handle_sel, CommandMetadata(
                name="sel",
                description="Print System Event Log (SEL)",
                usage="ipmitool sel <list|elist|info|clear>",
                flags=(FlagSpec("verbose", "Verbose output", short="v"),),
                examples=("ipmitool sel list", "ipmitool sel clear"),
            )),
            CommandSpec("dcmi", self.handle_dcmi, CommandMetadata(
                name="dcmi",
                description="Data Center Management Interface",
                usage="ipmitool dcmi power <reading|get_limit|set_limit limit N>",
                examples=("ipmitool dcmi power reading", "ipmitool dcmi power set_limit limit 6000"),
            )),
        ]

    def dispatch(self, parsed: ParsedCommand, context: CommandContext) -> CommandResult:
        # Interface options (-I lanplus -H host ...) come first, so the
        # command words end up as positional arguments.
        if not parsed.subcommands and parsed.positional_args:
            parsed = replace(parsed, subcommands=parsed.positional_args, positional_args=())
        return super().dispatch(parsed, context)

    def handle_version(self, context: CommandContext) -> CommandResult:
        return self.success(f"ipmitool version {IPMITOOL_VERSION}")

    def run_default(self, parsed: ParsedCommand, context: CommandContext) -> CommandResult:
        lines = ["No command provided!", "Commands:"]
        lines += [f"\t{spec.name:<12}{spec.metadata.description}" for spec in self._commands.values()]
        return self.error("\n".join(lines))

    def _bmc(self, context: CommandContext) -> BMC:
        node = context.node()
        if node.bmc is None:
            raise SimulatorError(f"Could not open device at /dev/ipmi0 on {node.id}")
        return node.bmc

    def _all_sensors(self, context: CommandContext) -> List[BMCSensor]:
        node = context.node()
        base = list(node.bmc.sensors) if node.bmc else []
        return base + gpu_sensors(node)

    # -------------------------------------------------------------------------
    # Sensors
    # -------------------------------------------------------------------------

    def handle_sensor(self, parsed: ParsedCommand, context: CommandContext) -> CommandResult:
        if context.node().bmc is None:
            return self.error("Could not open device at /dev/ipmi0: No such file or directory")
        lines = []
        for sensor in self._all_sensors(context):
            status = _STATUS_CODES[sensor_status(sensor)]
            lines.append(
                f"{sensor.name:<17}| {_fmt(sensor.reading):<10} | {sensor.unit:<10} | {status:<5} | "
                f"{_fmt(sensor.lower_critical):<9} | {_fmt(sensor.lower_warning):<9} | "
                f"{_fmt(sensor.upper_warning):<9} | {_fmt(sensor.upper_critical):<9}"
            )
        return self.success("\n".join(lines))

    def handle_sdr(self, parsed: ParsedCommand, context: CommandContext) -> CommandResult:
        if context.node().bmc is None:
            return self.error("Could not open device at /dev/ipmi0: No such file or directory")
        sensors = self._all_sensors(context)
        args = list(parsed.subcommands[1:]) + list(parsed.positional_args)
        if args and args[0] == "type":
            wanted = " ".join(args[1:]).lower()
            units = {"temperature": "degrees C", "fan": "RPM", "voltage": "Volts", "power": "Watts"}
            unit = units.get(wanted)
            if unit is None:
                return self.error(f"Invalid sensor type: {' '.join(args[1:])}")
            sensors = [s for s in sensors if s.unit == unit]
        lines = []
        for sensor in sensors:
            reading = f"{sensor.reading:g} {sensor.unit}"
            lines.append(f"{sensor.name:<17}| {reading:<18}| {_STATUS_CODES[sensor_status(sensor)]}")
        return self.success("\n".join(lines))

    # -------------------------------------------------------------------------
    # Chassis / power
    # -------------------------------------------------------------------------

    def handle_chassis(self, parsed: ParsedCommand, context: CommandContext) -> CommandResult:
        action = parsed.subcommands[1] if len(parsed.subcommands) > 1 else ""
        if action == "status":
            bmc = self._bmc(context)
            on = "on" if bmc.power_state == "On" else "off"
            return self.success(
                f"System Power         : {on}\n"
                "Power Overload       : false\n"
                "Power Interlock      : inactive\n"
                "Main Power Fault     : false\n"
                "Power Control Fault  : false\n"
                "Power Restore Policy : always-off\n"
                "Last Power Event     : command\n"
                "Chassis Intrusion    : inactive\n"
                "Front-Panel Lockout  : inactive\n"
                "Drive Fault          : false\n"
                "Cooling/Fan Fault    : false"
            )
        if action == "power":
            op = parsed.subcommands[2] if len(parsed.subcommands) > 2 else ""
            return self._power(op, context)
        return self.error("Chassis Commands:  status, power, identify, policy, restart_cause, bootdev")

    def handle_power(self, parsed: ParsedCommand, context: CommandContext) -> CommandResult:
        op = parsed.subcommands[1] if len(parsed.subcommands) > 1 else ""
        return self._power(op, context)

    def _power(self, op: str, context: CommandContext) -> CommandResult:
        bmc = self._bmc(context)
        node = context.node()
        if op == "status":
            return self.success(f"Chassis Power is {bmc.power_state.lower()}")
        if op == "on":
            bmc.power_state = "On"
        elif op == "off":
            bmc.power_state = "Off"
        elif op in ("cycle", "reset"):
            bmc.power_state = "On"
        else:
            return self.error("chassis power Commands: status, on, off, cycle, reset, diag, soft")
        self._log_sel(context, "System ACPI Power State", f"Power {op}")
        logger.info(f"Chassis power {op} on {node.id}")
        labels = {"on": "Up/On", "off": "Down/Off", "cycle": "Cycle", "reset": "Reset"}
        return self.success(f"Chassis Power Control: {labels[op]}")

    # -------------------------------------------------------------------------
    # mc / lan
    # -------------------------------------------------------------------------

    def handle_mc(self, parsed: ParsedCommand, context: CommandContext) -> CommandResult:
        action = parsed.subcommands[1] if len(parsed.subcommands) > 1 else ""
        bmc = self._bmc(context)
        if action == "info":
            return self.success(
                "Device ID                 : 32\n"
                "Device Revision           : 1\n"
                f"Firmware Revision         : {bmc.firmware_version}\n"
                "IPMI Version              : 2.0\n"
                "Manufacturer ID           : 5703\n"
                f"Manufacturer Name         : {bmc.manufacturer}\n"
                "Product ID                : 4660 (0x1234)\n"
                "Device Available          : yes\n"
                "Provides Device SDRs      : yes"
            )
        if action == "reset":
            kind = parsed.subcommands[2] if len(parsed.subcommands) > 2 else ""
            if kind not in ("warm", "cold"):
                return self.error("usage: mc reset <warm|cold>")
            return self.success(f"Sent {kind} reset command to MC")
        return self.error("MC Commands:\n  reset <warm|cold>\n  info")

    def handle_lan(self, parsed: ParsedCommand, context: CommandContext) -> CommandResult:
        action = parsed.subcommands[1] if len(parsed.subcommands) > 1 else ""
        if action != "print":
            return self.error("LAN Commands:\n  print [<channel number>]")
        bmc = self._bmc(context)
        return self.success(
            "Set in Progress         : Set Complete\n"
            "IP Address Source       : Static Address\n"
            f"IP Address              : {bmc.ip_address}\n"
            "Subnet Mask             : 255.255.255.0\n"
            f"MAC Address             : {bmc.mac_address}\n"
            "Default Gateway IP      : 192.168.0.1\n"
            "802.1q VLAN ID          : Disabled"
        )

    # -------------------------------------------------------------------------
    # SEL
    # -------------------------------------------------------------------------

    def _log_sel(self, context: CommandContext, sensor: str, event: str) -> None:
        bmc = self._bmc(context)
        next_id = max((entry.id for entry in bmc.sel), default=0) + 1
        bmc.sel.append(SELEntry(id=next_id, timestamp=context.store.state.clock_ms, sensor=sensor, event=event))

    def sel_entries(self, context: CommandContext) -> List[SELEntry]:
        """Stored SEL records plus entries implied by current GPU faults."""
        node = context.node()
        entries = list(node.bmc.sel) if node.bmc else []
        next_id = max((entry.id for entry in entries), default=0) + 1
        for gpu in node.gpus:
            for xid in gpu.xid_errors:
                entries.append(SELEntry(
                    id=next_id, timestamp=xid.timestamp, sensor=f"GPU{gpu.id} Status",
                    event=f"Critical Interrupt (XID {xid.code})",
                ))
                next_id += 1
            if gpu.temperature >= GPU_TEMP_WARNING:
                entries.append(SELEntry(
                    id=next_id, timestamp=0, sensor=f"GPU{gpu.id} Temp",
                    event="Upper Non-critical going high",
                ))
                next_id += 1
        return sorted(entries, key=lambda e: (e.timestamp, e.id))

    def handle_sel(self, parsed: ParsedCommand, context: CommandContext) -> CommandResult:
        action = parsed.subcommands[1] if len(parsed.subcommands) > 1 else "list"
        bmc = self._bmc(context)
        if action in ("list", "elist"):
            entries = self.sel_entries(context)
            if not entries:
                return self.success("SEL has no entries")
            lines = []
            for entry in entries:
                stamp = sim_datetime(entry.timestamp)
                state = "Asserted" if entry.asserted else "Deasserted"
                lines.append(
                    f"{entry.id:>4x} | {stamp:%m/%d/%Y} | {stamp:%H:%M:%S} | {entry.sensor} | {entry.event} | {state}"
                )
            return self.success("\n".join(lines))
        if action == "info":
            return self.success(
                "SEL Information\n"
                "Version          : 1.5 (v1.5, v2 compliant)\n"
                f"Entries          : {len(self.sel_entries(context))}\n"
                "Free Space       : 16320 bytes"
            )
        if action == "clear":
            bmc.sel = []
            return self.success("Clearing SEL.  Please allow a few seconds to erase.")
        return self.error("SEL Commands:  info clear list elist")

    # -------------------------------------------------------------------------
    # DCMI
    # -------------------------------------------------------------------------

    def handle_dcmi(self, parsed: ParsedCommand, context: CommandContext) -> CommandResult:
        words = list(parsed.subcommands[1:]) + list(parsed.positional_args)
        if not words or words[0] != "power":
            return self.error("DCMI Commands:\n  power <reading|get_limit|set_limit>")
        action = words[1] if len(words) > 1 else ""
        node = context.node()
        gpu_power = sum(gpu.power_draw for gpu in node.gpus)
        system_power = round(gpu_power + 1200)

        if action == "reading":
            return self.success(
                f"    Instantaneous power reading:              {system_power} Watts\n"
                f"    Minimum during sampling period:           {round(system_power * 0.8)} Watts\n"
                f"    Maximum during sampling period:           {round(system_power * 1.1)} Watts\n"
                f"    Average power reading over sample period: {system_power} Watts\n"
                "    Power reading state is:                   activated"
            )
        if action == "get_limit":
            if node.cluster_power_limit is None:
                return self.success("    Current Limit State: No Active Power Limit")
            return self.success(
                "    Current Limit State: Power Limit Active\n"
                f"    Power Limit:         {node.cluster_power_limit} Watts"
            )
        if action == "set_limit":
            value = words[3] if len(words) > 3 and words[2] == "limit" else (words[2] if len(words) > 2 else "")
            if not value.isdigit():
                return self.error("usage: dcmi power set_limit limit <watts>")
            node.cluster_power_limit = int(value)
            return self.success(f"    Power Limit:         {value} Watts")
        return self.error("DCMI Power Commands:  reading, get_limit, set_limit, activate, deactivate")
