"""Slurm workload manager simulator.

One simulator answers all the Slurm client commands: ``sinfo``, ``squeue``,
``scontrol``, ``sbatch``, ``srun``, ``scancel`` and ``sacct``. Jobs live in
the shared cluster state, so allocations are visible to nvidia-smi and dcgmi
through per-GPU utilization and ``allocated_job_id``.

``sbatch`` does not start a job immediately: it queues it as PENDING and
schedules a ``slurm.job_start`` event. When the simulated clock reaches it,
the job is placed on the first idle node with enough healthy GPUs, or retried
later if none is free.
"""

from __future__ import annotations

import re
from typing import Callable, Dict, List, Optional, Tuple

from clustersim.parsing.command_parser import ParsedCommand, get_flag_string, has_flag
from clustersim.parsing.fuzzy import FlagDefinition
from clustersim.simulators.base import BaseSimulator, CommandContext, CommandResult
from clustersim.state.models import (
    JOB_CANCELLED,
    JOB_COMPLETED,
    JOB_FAILED,
    JOB_PENDING,
    JOB_RUNNING,
    Node,
    SlurmJob,
)
from clustersim.state.store import ClusterStore
from clustersim.utils.formatting import elapsed, slurm_timestamp
from clustersim.utils.logger import get_logger

logger = get_logger(__name__)

SLURM_VERSION = "23.02.6"
DEFAULT_PARTITION = "gpu"
DEFAULT_USER = "root"
JOB_RETRY_MS = 1000
CORES_PER_SOCKET = 64

EVENT_JOB_START = "slurm.job_start"
EVENT_JOB_END = "slurm.job_end"

_STATE_LONG = {"idle": "idle", "alloc": "allocated", "drain": "drained", "down": "down"}
_STATE_SHOW = {"idle": "IDLE", "alloc": "ALLOCATED", "drain": "IDLE+DRAIN", "down": "DOWN"}
_JOB_CODES = {JOB_RUNNING: "R", JOB_PENDING: "PD", JOB_COMPLETED: "CD", JOB_FAILED: "F", JOB_CANCELLED: "CA"}

_FORMAT_TOKEN = re.compile(r"%(\.)?(\d+)?([a-zA-Z])")
_TIME_LIMIT = re.compile(r"^(?:(\d+)-)?(\d+)(?::(\d+))?(?::(\d+))?$")

SINFO_HELP = """Usage: sinfo [OPTIONS]
  -a, --all                  show all partitions
  -d, --dead                 show only non-responding nodes
  -h, --noheader             no headers on output
  -l, --long                 long output - displays more information
  -n, --nodes=nodes          report on specific node(s)
  -N, --Node                 Node-centric format
  -o, --format=format        format specification
  -p, --partition=partition  report on specific partition(s)
  -R, --list-reasons         list reasons nodes are down or drained
  -s, --summarize            report state summary only
  -t, --states=states        report nodes in specific state(s)
  -V, --version              output version information and exit

Help options:
      --help                 show this help message
      --usage                display brief usage message"""

SQUEUE_HELP = """Usage: squeue [OPTIONS]
  -a, --all                  display all jobs in all partitions
  -h, --noheader             no headers on output
  -j, --jobs=job_id(s)       comma separated list of jobs IDs
  -l, --long                 long report
  -n, --name=name(s)         comma separated list of job names
  -p, --partition=partition  comma separated list of partitions
  -t, --states=states        comma separated list of states
  -u, --user=user(s)         comma separated list of users
  -V, --version              output version information and exit
  -w, --nodelist=nodes       node name(s)

Help options:
      --help                 show this help message
      --usage                display brief usage message"""

SCONTROL_HELP = """Usage: scontrol [OPTIONS] COMMAND [COMMAND OPTIONS]

COMMAND may be:
  show                     show information about slurm objects
  update                   update slurm objects
  ping                     ping slurm controllers

Examples:
  scontrol show nodes
  scontrol show node dgx-00
  scontrol show partition
  scontrol show job 1000
  scontrol update NodeName=dgx-00 State=DRAIN Reason="Maintenance"

Help options:
      --help                 show this help message
  -V, --version              output version information and exit"""

SBATCH_HELP = """Usage: sbatch [OPTIONS] script [args...]
  -N, --nodes=N              number of nodes to use
  -n, --ntasks=N             number of tasks to run
  -c, --cpus-per-task=N      number of CPUs per task
  -t, --time=TIME            time limit
  -p, --partition=PARTITION  partition to submit to
  -o, --output=FILE          output file
  -e, --error=FILE           error file
  -J, --job-name=NAME        job name
      --gres=GRES            generic resources (gpu:N)
      --gpus=N               number of GPUs
  -V, --version              output version and exit
      --help                 show this help"""

SRUN_HELP = """Usage: srun [OPTIONS] command [args...]
  -N, --nodes=N              number of nodes
  -n, --ntasks=N             number of tasks
  -p, --partition=PARTITION  partition
  -w, --nodelist=NODE        run on a specific node
      --gpus=N               number of GPUs
      --container-image=IMG  container image
  -V, --version              output version and exit
      --help                 show this help"""

SCANCEL_HELP = """Usage: scancel [OPTIONS] [job_id]
  -u, --user=user            cancel jobs of a specific user
  -n, --name=name            cancel jobs with this name
  -V, --version              output version and exit
      --help                 show this help"""

SACCT_HELP = """Usage: sacct [OPTIONS]
  -a, --allusers             display all users
  -j, --jobs=job_id(s)       comma separated list of jobs
  -n, --noheader             no header
  -u, --user=user(s)         comma separated list of users
  -V, --version              output version and exit
      --help                 show this help"""


def parse_time_limit(raw: str) -> Optional[int]:
    """Slurm time limit (``M``, ``M:S``, ``H:M:S``, ``D-H[:M[:S]]``) in milliseconds."""
    match = _TIME_LIMIT.match(raw.strip())
    if not match:
        return None
    days, first, second, third = match.groups()
    values = [int(v) for v in (first, second, third) if v is not None]
    if days is not None:
        hours, minutes, seconds = (values + [0, 0])[:3]
        total = int(days) * 86400 + hours * 3600 + minutes * 60 + seconds
    elif len(values) == 1:
        total = values[0] * 60
    elif len(values) == 2:
        total = values[0] * 60 + values[1]
    else:
        total = values[0] * 3600 + values[1] * 60 + values[2]
    return total * 1000


def requested_gpus(parsed: ParsedCommand, default: int = 1) -> int:
    gres = get_flag_string(parsed, ["gres"])
    count = default
    match = re.search(r"gpu(?::[a-zA-Z0-9_]+)?:(\d+)", gres)
    if match:
        count = int(match.group(1))
    gpus = get_flag_string(parsed, ["gpus", "G"])
    if gpus.isdigit() and int(gpus) > 0:
        count = int(gpus)
    return count


def find_free_node(store: ClusterStore, gpu_count: int) -> Optional[Node]:
    for node in store.nodes:
        if node.slurm_state != "idle":
            continue
        free = [gpu for gpu in node.visible_gpus() if gpu.allocated_job_id is None]
        if len(free) >= gpu_count:
            return node
    return None


def start_job(store: ClusterStore, payload: Dict) -> None:
    """``slurm.job_start`` handler: place a pending job or retry later."""
    job = store.get_job(int(payload["job_id"]))
    if job is None or job.state != JOB_PENDING:
        return
    node = find_free_node(store, job.gpu_count)
    if node is None:
        job.reason = "Resources"
        store.events.schedule(JOB_RETRY_MS, EVENT_JOB_START, payload, f"retry start of job {job.job_id}")
        return
    gpu_ids = [gpu.id for gpu in node.visible_gpus() if gpu.allocated_job_id is None][: job.gpu_count]
    store.allocate_job(job, node.id, gpu_ids)
    logger.info(f"Job {job.job_id} started on {node.id} with GPUs {gpu_ids}")
    limit = payload.get("time_limit_ms")
    if limit:
        store.events.schedule(int(limit), EVENT_JOB_END, {"job_id": job.job_id}, f"time limit of job {job.job_id}")


def end_job(store: ClusterStore, payload: Dict) -> None:
    """``slurm.job_end`` handler: a running job reached its time limit."""
    job = store.get_job(int(payload["job_id"]))
    if job is None or job.state != JOB_RUNNING:
        return
    store.release_job(job)
    job.state = JOB_COMPLETED
    logger.info(f"Job {job.job_id} completed")


def _group_nodelist(nodes: List[Node]) -> str:
    return ",".join(node.id for node in nodes)


class SlurmSimulator(BaseSimulator):
    name = "slurm"
    version = SLURM_VERSION
    description = "Slurm Workload Manager"
    tools = ("sinfo", "squeue", "scontrol", "sbatch", "srun", "scancel", "sacct")
    version_flags = ("version", "V")
    help_flags = ("help",)

    _HELP = {
        "sinfo": SINFO_HELP,
        "squeue": SQUEUE_HELP,
        "scontrol": SCONTROL_HELP,
        "sbatch": SBATCH_HELP,
        "srun": SRUN_HELP,
        "scancel": SCANCEL_HELP,
        "sacct": SACCT_HELP,
    }

    def valid_flags(self):
        return (FlagDefinition("help"), FlagDefinition("version", "V"))

    def event_handlers(self):
        return {EVENT_JOB_START: start_job, EVENT_JOB_END: end_job}

    def dispatch(self, parsed: ParsedCommand, context: CommandContext) -> CommandResult:
        tool = parsed.base_command
        if has_flag(parsed, *self.version_flags):
            return self.success(f"slurm {SLURM_VERSION}")
        if has_flag(parsed, *self.help_flags):
            return self.success(self._HELP.get(tool, SINFO_HELP))
        return self.run_default(parsed, context)

    def run_default(self, parsed: ParsedCommand, context: CommandContext) -> CommandResult:
        handlers: Dict[str, Callable[[ParsedCommand, CommandContext], CommandResult]] = {
            "sinfo": self.sinfo,
            "squeue": self.squeue,
            "scontrol": self.scontrol,
            "sbatch": self.sbatch,
            "srun": self.srun,
            "scancel": self.scancel,
            "sacct": self.sacct,
        }
        handler = handlers.get(parsed.base_command)
        if handler is None:
            return self.error(
                "Use specific Slurm commands: sinfo, squeue, scontrol, sbatch, srun, scancel, sacct"
            )
        return handler(parsed, context)

    # =========================================================================
    # sinfo
    # =========================================================================

    def sinfo(self, parsed: ParsedCommand, context: CommandContext) -> CommandResult:
        store = context.store
        nodes = list(store.nodes)

        node_filter = get_flag_string(parsed, ["nodes", "n"])
        if node_filter:
            wanted = set(node_filter.split(","))
            nodes = [node for node in nodes if node.id in wanted]
        state_filter = get_flag_string(parsed, ["states", "t"]).lower()
        if state_filter:
            wanted_states = {s.strip() for s in state_filter.split(",")}
            nodes = [
                node for node in nodes
                if node.slurm_state in wanted_states or _STATE_LONG[node.slurm_state] in wanted_states
            ]
        no_header = has_flag(parsed, "noheader", "h")

        if has_flag(parsed, "R", "list-reasons"):
            return self.success(self._sinfo_reasons(nodes, store.state.clock_ms, no_header))

        fmt = get_flag_string(parsed, ["format", "o", "output-format"])
        if fmt:
            return self.success(self._sinfo_format(fmt, nodes, store, no_header))

        if has_flag(parsed, "Node", "N", "long", "l", "Nel"):
            return self.success(self._sinfo_nodes(nodes, no_header))

        if has_flag(parsed, "summarize", "s"):
            return self.success(self._sinfo_summary(nodes, no_header))

        header = f"{'PARTITION':<10}{'AVAIL':<7}{'TIMELIMIT':<11}{'NODES':<7}{'STATE':<6}NODELIST"
        lines = [] if no_header else [header]
        for state in ("idle", "alloc", "drain", "down"):
            group = [node for node in nodes if node.slurm_state == state]
            if group:
                lines.append(
                    f"{DEFAULT_PARTITION + '*':<10}{'up':<7}{'infinite':<11}{len(group):<7}{state:<6}"
                    f"{_group_nodelist(group)}"
                )
        return self.success("\n".join(lines))

    @staticmethod
    def _sinfo_reasons(nodes: List[Node], clock_ms: int, no_header: bool) -> str:
        unavailable = [node for node in nodes if node.slurm_state in ("drain", "down")]
        if not unavailable:
            return ""
        lines = [] if no_header else [f"{'REASON':<21}{'USER':<10}{'TIMESTAMP':<20}NODELIST"]
        for node in unavailable:
            reason = node.slurm_reason or "Not responding"
            lines.append(f"{reason:<21}{DEFAULT_USER:<10}{slurm_timestamp(clock_ms):<20}{node.id}")
        return "\n".join(lines)

    @staticmethod
    def _sinfo_nodes(nodes: List[Node], no_header: bool) -> str:
        columns = (
            ("NODELIST", 16), ("NODES", 6), ("PARTITION", 16), ("STATE", 10), ("CPUS", 8),
            ("S:C:T", 9), ("MEMORY", 9), ("TMP_DISK", 9), ("WEIGHT", 7), ("AVAIL_FE", 9),
        )
        lines = [] if no_header else ["".join(f"{title:<{width}}" for title, width in columns) + "REASON"]
        for node in nodes:
            values = (
                node.id,
                "1",
                f"{DEFAULT_PARTITION}*",
                _STATE_LONG[node.slurm_state],
                str(node.cpu_count * CORES_PER_SOCKET),
                f"{node.cpu_count}:{CORES_PER_SOCKET}:1",
                str(node.ram_total * 1024),
                "0",
                "1",
                "(null)",
            )
            row = "".join(f"{value:<{width}}" for value, (_, width) in zip(values, columns))
            lines.append(row + (node.slurm_reason or "none"))
        return "\n".join(lines)

    @staticmethod
    def _sinfo_summary(nodes: List[Node], no_header: bool) -> str:
        allocated = sum(1 for n in nodes if n.slurm_state == "alloc")
        idle = sum(1 for n in nodes if n.slurm_state == "idle")
        other = len(nodes) - allocated - idle
        lines = [] if no_header else [f"{'PARTITION':<10}{'AVAIL':<7}{'TIMELIMIT':<11}{'NODES(A/I/O/T)':<16}NODELIST"]
        lines.append(
            f"{DEFAULT_PARTITION + '*':<10}{'up':<7}{'infinite':<11}"
            f"{f'{allocated}/{idle}/{other}/{len(nodes)}':<16}{_group_nodelist(nodes)}"
        )
        return "\n".join(lines)

    @staticmethod
    def _gres(node: Node) -> str:
        if not node.gpus:
            return "(null)"
        model = node.gpus[0].gpu_type.split("-")[0].lower()
        return f"gpu:{model}:{len(node.gpus)}"

    def _sinfo_format(self, fmt: str, nodes: List[Node], store: ClusterStore, no_header: bool) -> str:
        """Render a ``%``-format; node-level fields produce one row per node."""
        tokens = [(m.start(), m.end(), m.group(2), m.group(3)) for m in _FORMAT_TOKEN.finditer(fmt)]
        per_node = any(code in "nGcmEe" for *_, code in tokens)

        def field(code: str, group: List[Node]) -> Tuple[str, str]:
            first = group[0] if group else None
            table = {
                "P": ("PARTITION", f"{DEFAULT_PARTITION}*"),
                "a": ("AVAIL", "up"),
                "l": ("TIMELIMIT", "infinite"),
                "D": ("NODES", str(len(group))),
                "t": ("STATE", first.slurm_state if first else ""),
                "T": ("STATE", _STATE_LONG[first.slurm_state] if first else ""),
                "N": ("NODELIST", _group_nodelist(group)),
                "n": ("HOSTNAMES", first.id if first else ""),
                "G": ("GRES", self._gres(first) if first else "(null)"),
                "c": ("CPUS", str(first.cpu_count * CORES_PER_SOCKET) if first else "0"),
                "m": ("MEMORY", str(first.ram_total * 1024) if first else "0"),
                "E": ("REASON", (first.slurm_reason or "none") if first else "none"),
                "e": ("FREE_MEM", str((first.ram_total - first.ram_used) * 1024) if first else "0"),
            }
            return table.get(code, (code.upper(), "N/A"))

        if per_node:
            groups = [[node] for node in nodes]
        else:
            groups = [[n for n in nodes if n.slurm_state == s] for s in ("idle", "alloc", "drain", "down")]
            groups = [g for g in groups if g]

        rows = [[field(code, group) for *_, code in tokens] for group in groups]
        widths = []
        for index, (_, _, width, code) in enumerate(tokens):
            if width:
                widths.append(int(width))
            else:
                header = field(code, [])[0]
                widths.append(max([len(header)] + [len(row[index][1]) for row in rows]))

        def render(values: List[str]) -> str:
            out, cursor = "", 0
            for (start, end, _, _), width, value in zip(tokens, widths, values):
                out += fmt[cursor:start] + f"{value[:width]:<{width}}"
                cursor = end
            return (out + fmt[cursor:]).rstrip()

        lines = [] if no_header else [render([field(code, [])[0] for *_, code in tokens])]
        lines += [render([value for _, value in row]) for row in rows]
        return "\n".join(lines)

    # =========================================================================
    # squeue
    # =========================================================================

    def squeue(self, parsed: ParsedCommand, context: CommandContext) -> CommandResult:
        state = context.store.state
        jobs = [job for job in state.jobs if job.state in (JOB_PENDING, JOB_RUNNING)]

        user = get_flag_string(parsed, ["user", "u"])
        if user:
            jobs = [job for job in jobs if job.user in user.split(",")]
        job_ids = get_flag_string(parsed, ["jobs", "j"])
        if job_ids:
            wanted = {int(j) for j in job_ids.split(",") if j.strip().isdigit()}
            jobs = [job for job in jobs if job.job_id in wanted]
        partition = get_flag_string(parsed, ["partition", "p"])
        if partition:
            jobs = [job for job in jobs if job.partition in partition.split(",")]
        states = get_flag_string(parsed, ["states", "t"]).upper()
        if states:
            wanted_states = set(states.split(","))
            jobs = [job for job in jobs if job.state in wanted_states or _JOB_CODES[job.state] in wanted_states]

        lines = []
        if not has_flag(parsed, "noheader", "h"):
            lines.append(
                f"{'JOBID':>8} {'PARTITION':<9} {'NAME':<8} {'USER':<8} {'ST':>2} {'TIME':>10} {'NODES':>5} NODELIST(REASON)"
            )
        for job in jobs:
            if job.state == JOB_RUNNING:
                run_time = elapsed(job.start_time_ms or 0, state.clock_ms)
                where = ",".join(job.nodelist)
            else:
                run_time = "0:00"
                where = f"({job.reason})"
            lines.append(
                f"{job.job_id:>8} {job.partition:<9} {job.name[:8]:<8} {job.user[:8]:<8} "
                f"{_JOB_CODES[job.state]:>2} {run_time:>10} {1:>5} {where}"
            )
        return self.success("\n".join(lines))

    # =========================================================================
    # scontrol
    # =========================================================================

    def scontrol(self, parsed: ParsedCommand, context: CommandContext) -> CommandResult:
        command = parsed.subcommands[0] if parsed.subcommands else ""
        if command == "show":
            return self._scontrol_show(parsed, context)
        if command == "update":
            return self._scontrol_update(parsed, context)
        if command == "ping":
            return self.success("Slurmctld(primary) at slurm-ctl is UP")
        return self.error("Usage: scontrol <show|update> <nodes|node|partition|job> [options]")

    def _scontrol_show(self, parsed: ParsedCommand, context: CommandContext) -> CommandResult:
        store = context.store
        what = parsed.subcommands[1] if len(parsed.subcommands) > 1 else ""
        target = parsed.subcommands[2] if len(parsed.subcommands) > 2 else (
            parsed.positional_args[0] if parsed.positional_args else ""
        )

        if what in ("nodes", "node"):
            nodes = list(store.nodes)
            if target:
                node = store.find_node(target)
                if node is None:
                    return self.error(f"Node {target} not found")
                nodes = [node]
            blocks = [self._format_node(node, store.state.clock_ms) for node in nodes]
            return self.success("\n\n".join(blocks))

        if what in ("partition", "partitions"):
            nodes = store.nodes
            node_names = ",".join(node.id for node in nodes) or "(null)"
            total_cpus = sum(node.cpu_count * CORES_PER_SOCKET for node in nodes)
            return self.success(
                f"PartitionName={DEFAULT_PARTITION}\n"
                "   AllowGroups=ALL AllowAccounts=ALL AllowQos=ALL\n"
                "   AllocNodes=ALL Default=YES QoS=N/A\n"
                "   DefaultTime=NONE DisableRootJobs=NO ExclusiveUser=NO GraceTime=0 Hidden=NO\n"
                "   MaxNodes=UNLIMITED MaxTime=UNLIMITED MinNodes=0 LLN=NO MaxCPUsPerNode=UNLIMITED\n"
                f"   Nodes={node_names}\n"
                "   PriorityJobFactor=1 PriorityTier=1 RootOnly=NO ReqResv=NO OverSubscribe=NO\n"
                "   OverTimeLimit=NONE PreemptMode=OFF\n"
                f"   State=UP TotalCPUs={total_cpus} TotalNodes={len(nodes)} SelectTypeParameters=NONE\n"
                "   DefMemPerCPU=1024 MaxMemPerCPU=UNLIMITED"
            )

        if what in ("job", "jobs"):
            jobs = list(store.state.jobs)
            if target:
                if not target.isdigit() or store.get_job(int(target)) is None:
                    return self.error("slurm_load_jobs error: Invalid job id specified")
                jobs = [store.get_job(int(target))]
            if not jobs:
                return self.success("No jobs in the system")
            return self.success("\n\n".join(self._format_job(job, store.state.clock_ms) for job in jobs))

        return self.error("Usage: scontrol show <nodes|node NAME|partition|job ID>")

    @staticmethod
    def _format_node(node: Node, clock_ms: int) -> str:
        cpus = node.cpu_count * CORES_PER_SOCKET
        allocated = sum(1 for gpu in node.gpus if gpu.allocated_job_id is not None)
        lines = [
            f"NodeName={node.id} Arch=x86_64 CoresPerSocket={CORES_PER_SOCKET}",
            f"   CPUAlloc={cpus if node.slurm_state == 'alloc' else 0} CPUTot={cpus} CPULoad=0.50",
            "   AvailableFeatures=(null)",
            "   ActiveFeatures=(null)",
            f"   Gres={SlurmSimulator._gres(node)}",
            f"   GresUsed=gpu:{allocated}",
            f"   NodeAddr={node.id} NodeHostName={node.hostname}",
            f"   Version={SLURM_VERSION}",
            f"   OS=Linux {node.kernel_version} #101-Ubuntu SMP",
            f"   RealMemory={node.ram_total * 1024} AllocMem=0 FreeMem={(node.ram_total - node.ram_used) * 1024}",
            f"   Sockets={node.cpu_count} Boards=1",
            f"   State={_STATE_SHOW[node.slurm_state]} ThreadsPerCore=1 TmpDisk=0 Weight=1 Owner=N/A MCS_label=N/A",
            f"   Partitions={DEFAULT_PARTITION}",
            "   BootTime=2024-01-10T08:00:00 SlurmdStartTime=2024-01-10T08:05:00",
        ]
        if node.slurm_reason:
            lines.append(f"   Reason={node.slurm_reason} [{DEFAULT_USER}@{slurm_timestamp(clock_ms)}]")
        return "\n".join(lines)

    @staticmethod
    def _format_job(job: SlurmJob, clock_ms: int) -> str:
        start = slurm_timestamp(job.start_time_ms) if job.start_time_ms is not None else "Unknown"
        end = slurm_timestamp(job.end_time_ms) if job.end_time_ms is not None else "Unknown"
        run_time = elapsed(job.start_time_ms, job.end_time_ms or clock_ms) if job.start_time_ms is not None else "0:00:00"
        return "\n".join([
            f"JobId={job.job_id} JobName={job.name}",
            f"   UserId={job.user}(0) GroupId={job.user}(0)",
            f"   JobState={job.state} Reason={job.reason}",
            f"   RunTime={run_time}",
            f"   SubmitTime={slurm_timestamp(job.submit_time_ms)} StartTime={start} EndTime={end}",
            f"   Partition={job.partition}",
            f"   NodeList={','.join(job.nodelist) or '(null)'}",
            f"   NumNodes=1 TRES=gres/gpu={job.gpu_count}",
            f"   GpuIds={','.join(str(g) for g in job.gpu_ids) or '(null)'}",
        ])

    def _scontrol_update(self, parsed: ParsedCommand, context: CommandContext) -> CommandResult:
        assignments: Dict[str, str] = {}
        for arg in parsed.positional_args:
            key, sep, value = arg.partition("=")
            if sep:
                assignments[key.lower()] = value.strip('"')

        node_name = assignments.get("nodename")
        if not node_name:
            return self.error("Error: NodeName not specified")
        node = context.store.find_node(node_name)
        if node is None:
            return self.error(f"Error: Node {node_name} not found")

        requested = assignments.get("state", "").lower()
        if requested:
            valid = ("idle", "drain", "resume", "down", "undrain")
            if requested not in valid:
                return self.error(f'Error: Invalid state "{requested}". Valid: {", ".join(valid)}')
            new_state = "idle" if requested in ("resume", "undrain") else requested
            context.store.set_slurm_state(node.id, new_state, assignments.get("reason"))
        return self.success(f"Node {node.id} updated successfully")

    # =========================================================================
    # sbatch / srun / scancel / sacct
    # =========================================================================

    def _new_job(self, store: ClusterStore, name: str, partition: str, gpu_count: int) -> SlurmJob:
        state = store.state
        job = SlurmJob(
            job_id=state.next_job_id,
            name=name,
            user=DEFAULT_USER,
            partition=partition,
            gpu_count=gpu_count,
            submit_time_ms=state.clock_ms,
        )
        state.next_job_id += 1
        return store.add_job(job)

    def sbatch(self, parsed: ParsedCommand, context: CommandContext) -> CommandResult:
        args = list(parsed.subcommands) + list(parsed.positional_args)
        wrap = get_flag_string(parsed, ["wrap"])
        if not args and not wrap:
            return self.error("Error: Batch script not specified")

        time_limit = None
        raw_time = get_flag_string(parsed, ["time", "t"])
        if raw_time:
            time_limit = parse_time_limit(raw_time)
            if time_limit is None:
                return self.error("sbatch: error: Invalid --time specification")

        script = args[0] if args else "wrap"
        default_name = script.rsplit("/", 1)[-1]
        if default_name.endswith(".sh"):
            default_name = default_name[:-3]
        name = get_flag_string(parsed, ["job-name", "J"], default_name or "job")
        partition = get_flag_string(parsed, ["partition", "p"], DEFAULT_PARTITION)
        if partition not in context.store.state.partitions:
            return self.error("sbatch: error: invalid partition specified: " + partition)

        job = self._new_job(context.store, name, partition, requested_gpus(parsed))
        payload = {"job_id": job.job_id}
        if time_limit:
            payload["time_limit_ms"] = time_limit
        context.store.events.schedule(
            context.job_start_delay_ms, EVENT_JOB_START, payload, f"start of job {job.job_id}"
        )
        logger.info(f"Queued job {job.job_id} ({job.name}) requesting {job.gpu_count} GPU(s)")
        return self.success(f"Submitted batch job {job.job_id}")

    def srun(self, parsed: ParsedCommand, context: CommandContext) -> CommandResult:
        store = context.store
        gpu_count = requested_gpus(parsed)
        image = get_flag_string(parsed, ["container-image"])
        command = " ".join(list(parsed.subcommands) + list(parsed.positional_args))

        target = get_flag_string(parsed, ["nodelist", "w"])
        node = store.find_node(target) if target else find_free_node(store, gpu_count)
        job = self._new_job(store, command.split(" ")[0] or "bash", DEFAULT_PARTITION, gpu_count)
        if node is None or node.slurm_state in ("drain", "down"):
            job.state = JOB_FAILED
            job.end_time_ms = store.state.clock_ms
            job.reason = "Resources"
            return self.error(
                "srun: error: Unable to allocate resources: Requested node configuration is not available"
            )

        lines = []
        if image:
            lines += [f"srun: Pulling container image {image}...", "srun: Container ready"]
        lines.append(f"srun: job {job.job_id} queued and waiting for resources")
        lines.append(f"srun: job {job.job_id} has been allocated resources")

        gpus = [gpu for gpu in node.visible_gpus() if gpu.allocated_job_id is None][:gpu_count]
        if "nvidia-smi" in command:
            lines.append("")
            lines.append(f"Allocated {len(gpus)} GPU(s) from {node.id}")
            lines += [f"GPU {index}: {gpu.name} (UUID: {gpu.uuid})" for index, gpu in enumerate(gpus)]
        elif command:
            lines += ["", f"Executing: {command}", "Job completed successfully"]

        job.state = JOB_COMPLETED
        job.nodelist = [node.id]
        job.gpu_ids = [gpu.id for gpu in gpus]
        job.start_time_ms = store.state.clock_ms
        job.end_time_ms = store.state.clock_ms
        job.reason = "None"
        return self.success("\n".join(lines))

    def scancel(self, parsed: ParsedCommand, context: CommandContext) -> CommandResult:
        store = context.store
        ids = list(parsed.positional_args) + list(parsed.subcommands)
        user = get_flag_string(parsed, ["user", "u"])
        name = get_flag_string(parsed, ["name", "n"])

        if not ids and (user or name):
            victims = [
                job for job in store.state.jobs
                if job.state in (JOB_PENDING, JOB_RUNNING)
                and (not user or job.user == user)
                and (not name or job.name == name)
            ]
            for job in victims:
                self._cancel(store, job)
            return self.success("")
        if not ids:
            return self.error("Error: Job ID not specified")

        raw = ids[0]
        job = store.get_job(int(raw)) if raw.isdigit() else None
        if job is None:
            return self.error(f"scancel: error: Kill job error on job id {raw}: Invalid job id specified")
        if job.state not in (JOB_PENDING, JOB_RUNNING):
            return self.error(
                f"scancel: error: Kill job error on job id {raw}: Job/step already completing or completed"
            )
        self._cancel(store, job)
        return self.success(f"scancel: Terminating job {job.job_id}")

    @staticmethod
    def _cancel(store: ClusterStore, job: SlurmJob) -> None:
        if job.state == JOB_RUNNING:
            store.release_job(job)
        else:
            job.end_time_ms = store.state.clock_ms
        job.state = JOB_CANCELLED
        logger.info(f"Cancelled job {job.job_id}")

    def sacct(self, parsed: ParsedCommand, context: CommandContext) -> CommandResult:
        jobs = list(context.store.state.jobs)
        raw_ids = get_flag_string(parsed, ["jobs", "j"])
        if raw_ids:
            wanted = {int(j) for j in raw_ids.split(",") if j.strip().isdigit()}
            jobs = [job for job in jobs if job.job_id in wanted]
        else:
            jobs = jobs[-10:]
        user = get_flag_string(parsed, ["user", "u"])
        if user:
            jobs = [job for job in jobs if job.user in user.split(",")]

        columns = (("JobID", 13), ("JobName", 11), ("Partition", 11), ("Account", 11),
                   ("AllocCPUS", 11), ("State", 11), ("ExitCode", 9))
        lines = []
        if not has_flag(parsed, "noheader", "n"):
            lines.append("".join(f"{title:<{width}}" for title, width in columns).rstrip())
            lines.append(" ".join("-" * (width - 1) for _, width in columns))
        for job in jobs:
            exit_code = {JOB_COMPLETED: "0:0", JOB_FAILED: "1:0", JOB_CANCELLED: "0:15"}.get(job.state, "0:0")
            cpus = 0 if job.state == JOB_PENDING else 16 * max(1, job.gpu_count)
            state = "CANCELLED by 0" if job.state == JOB_CANCELLED else job.state
            values = (str(job.job_id), job.name[:10], job.partition, DEFAULT_USER, str(cpus), state[:10], exit_code)
            lines.append("".join(f"{v:<{w}}" for v, (_, w) in zip(values, columns)).rstrip())
        return self.success("\n".join(lines))
