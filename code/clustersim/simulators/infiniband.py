"""InfiniBand diagnostics: ``ibstat`` and ``perfquery``."""

from __future__ import annotations

from typing import Optional, Tuple

from clustersim.parsing.command_parser import ParsedCommand, get_flag_string, has_flag
from clustersim.parsing.fuzzy import FlagDefinition
from clustersim.simulators.base import BaseSimulator, CommandContext, CommandResult
from clustersim.state.models import InfiniBandHCA, InfiniBandPort, Node

IBSTAT_VERSION = "5.9-0"
SM_LID = 1


def _port_guid(port: InfiniBandPort) -> str:
    return port.guid or "0x0000000000000000"


class InfiniBandSimulator(BaseSimulator):
    name = "infiniband-diags"
    version = IBSTAT_VERSION
    description = "InfiniBand diagnostic utilities"
    tools = ("ibstat", "perfquery")
    version_flags = ("version", "V")

    def valid_flags(self):
        return (
            FlagDefinition("help", "h"),
            FlagDefinition("version", "V"),
            FlagDefinition("list_of_cas", "l"),
            FlagDefinition("short", "s"),
            FlagDefinition("port_list", "p"),
        )

    def handle_version(self, context: CommandContext) -> CommandResult:
        return self.success(f"ibstat BUILD VERSION: {IBSTAT_VERSION}")

    def handle_help(self, command_name: Optional[str], context: CommandContext) -> CommandResult:
        return self.success(
            "Usage: ibstat [-d(ebug) -l(ist_of_cas) -s(hort) -p(ort_list) -V(ersion)] <ca_name> [portnum]\n"
            "Usage: perfquery [-x] [-r] [-C ca_name] [-P ca_port] [<lid> [<port>]]"
        )

    def run_default(self, parsed: ParsedCommand, context: CommandContext) -> CommandResult:
        if parsed.base_command == "perfquery":
            return self.perfquery(parsed, context)
        return self.ibstat(parsed, context)

    # -------------------------------------------------------------------------
    # ibstat
    # -------------------------------------------------------------------------

    def ibstat(self, parsed: ParsedCommand, context: CommandContext) -> CommandResult:
        node = context.node()
        if not node.hcas:
            return self.error("ibpanic: [ibstat] main: stat of IB device 'mlx5_0' failed: No such file or directory")

        if has_flag(parsed, "list_of_cas", "l"):
            return self.success("\n".join(hca.name for hca in node.hcas))

        hcas = node.hcas
        args = list(parsed.subcommands) + list(parsed.positional_args)
        if args:
            hca = self._find_hca(node, args[0])
            if hca is None:
                return self.error(f"ibpanic: [ibstat] main: stat of IB device '{args[0]}' failed: No such file or directory")
            hcas = [hca]

        if has_flag(parsed, "port_list", "p"):
            return self.success("\n".join(_port_guid(port) for hca in hcas for port in hca.ports))

        port_filter = int(args[1]) if len(args) > 1 and args[1].isdigit() else None
        short = has_flag(parsed, "short", "s")
        blocks = [self.format_hca(node, hca, short, port_filter) for hca in hcas]
        return self.success("\n".join(blocks))

    @staticmethod
    def _find_hca(node: Node, name: str) -> Optional[InfiniBandHCA]:
        return next((hca for hca in node.hcas if hca.name == name), None)

    @staticmethod
    def format_hca(node: Node, hca: InfiniBandHCA, short: bool, port_filter: Optional[int]) -> str:
        node_guid = _port_guid(hca.ports[0]) if hca.ports else "0x0000000000000000"
        lines = [f"CA '{hca.name}'"]
        lines += [
            f"\tCA type: {hca.ca_type}",
            f"\tNumber of ports: {len(hca.ports)}",
            f"\tFirmware version: {hca.firmware_version}",
        ]
        if short:
            return "\n".join(lines)
        lines += [
            "\tHardware version: 0",
            f"\tNode GUID: {node_guid}",
            f"\tSystem image GUID: {node_guid}",
        ]
        for port in hca.ports:
            if port_filter is not None and port.port_number != port_filter:
                continue
            lines += [
                f"\tPort {port.port_number}:",
                f"\t\tState: {port.state}",
                f"\t\tPhysical state: {port.physical_state}",
                f"\t\tRate: {port.rate if port.state == 'Active' else 10}",
                f"\t\tBase lid: {port.lid if port.state == 'Active' else 0}",
                "\t\tLMC: 0",
                f"\t\tSM lid: {SM_LID if port.state == 'Active' else 0}",
                "\t\tCapability mask: 0xa651e848",
                f"\t\tPort GUID: {_port_guid(port)}",
                f"\t\tLink layer: {port.link_layer}",
            ]
        return "\n".join(lines)

    # -------------------------------------------------------------------------
    # perfquery
    # -------------------------------------------------------------------------

    def _perf_target(self, parsed: ParsedCommand, node: Node) -> Tuple[Optional[InfiniBandHCA], Optional[InfiniBandPort]]:
        ca_name = get_flag_string(parsed, ["C"])
        port_raw = get_flag_string(parsed, ["P"])
        args = list(parsed.subcommands) + list(parsed.positional_args)

        hca: Optional[InfiniBandHCA] = None
        if ca_name:
            hca = self._find_hca(node, ca_name)
        elif args and args[0].isdigit():
            lid = int(args[0])
            hca = next((h for h in node.hcas if any(p.lid == lid for p in h.ports)), None)
            if len(args) > 1 and args[1].isdigit():
                port_raw = args[1]
        elif node.hcas:
            hca = node.hcas[0]
        if hca is None:
            return None, None
        port_number = int(port_raw) if port_raw.isdigit() else 1
        port = next((p for p in hca.ports if p.port_number == port_number), None)
        return hca, port

    def perfquery(self, parsed: ParsedCommand, context: CommandContext) -> CommandResult:
        node = context.node()
        hca, port = self._perf_target(parsed, node)
        if hca is None:
            return self.error("ibwarn: [perfquery] mad_rpc_open_port: can't open UMAD port ((null):0)")
        if port is None:
            return self.error(f"ibwarn: [perfquery] main: can't resolve port on {hca.name}")

        errors = port.errors
        counter = "PortCounters" if not has_flag(parsed, "x", "extended") else "PortCountersExtended"
        lines = [
            f"# Port counters: Lid {port.lid} port {port.port_number} (CapMask: 0x5A00)",
            f"{counter}:",
        ]
        rows = [
            ("PortSelect", port.port_number),
            ("CounterSelect", "0x0000"),
            ("SymbolErrorCounter", errors.symbol_errors),
            ("LinkErrorRecoveryCounter", 0),
            ("LinkDownedCounter", errors.link_downed),
            ("PortRcvErrors", errors.port_rcv_errors),
            ("PortRcvRemotePhysicalErrors", 0),
            ("PortRcvSwitchRelayErrors", 0),
            ("PortXmitDiscards", errors.port_xmit_discards),
            ("PortXmitConstraintErrors", 0),
            ("PortRcvConstraintErrors", 0),
            ("LocalLinkIntegrityErrors", 0),
            ("ExcessiveBufferOverrunErrors", 0),
            ("VL15Dropped", 0),
            ("PortXmitWait", errors.port_xmit_wait),
        ]
        for label, value in rows:
            lines.append(f"{label + ':':.<32}{value}")

        if has_flag(parsed, "r", "reset_after_read"):
            errors.symbol_errors = 0
            errors.link_downed = 0
            errors.port_rcv_errors = 0
            errors.port_xmit_discards = 0
            errors.port_xmit_wait = 0
        return self.success("\n".join(lines))
