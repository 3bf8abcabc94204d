from clustersim.simulators.slurm import parse_time_limit
from clustersim.state.models import JOB_CANCELLED, JOB_COMPLETED


def test_parse_time_limit():
    assert parse_time_limit("30") == 30 * 60 * 1000
    assert parse_time_limit("1:30") == 90 * 1000
    assert parse_time_limit("1:00:00") == 3600 * 1000
    assert parse_time_limit("1-2") == (86400 + 7200) * 1000
    assert parse_time_limit("soon") is None


def test_sinfo_groups_nodes_by_state(engine):
    lines = engine.execute("sinfo").output.splitlines()
    assert lines[0].startswith("PARTITION")
    assert len(lines) == 2
    assert lines[1].split() == ["gpu*", "up", "infinite", "2", "idle", "dgx-00,dgx-01"]


def test_drain_shows_in_sinfo_and_reasons(engine):
    result = engine.execute('scontrol update NodeName=dgx-01 State=DRAIN Reason="bad gpu"')
    assert result.output == "Node dgx-01 updated successfully"

    rows = [line.split() for line in engine.execute("sinfo -h").output.splitlines()]
    assert ["gpu*", "up", "infinite", "1", "drain", "dgx-01"] in rows

    reasons = engine.execute("sinfo -R").output.splitlines()
    assert reasons[0].startswith("REASON")
    assert reasons[1].startswith("bad gpu")
    assert reasons[1].endswith("dgx-01")

    shown = engine.execute("scontrol show node dgx-01").output
    assert "State=IDLE+DRAIN" in shown
    assert "Reason=bad gpu" in shown

    engine.execute("scontrol update NodeName=dgx-01 State=RESUME")
    assert engine.store.get_node("dgx-01").slurm_state == "idle"
    assert engine.execute("sinfo -R").output == ""


def test_scontrol_update_validation(engine):
    assert "NodeName not specified" in engine.execute("scontrol update State=DRAIN").output
    assert "Node dgx-99 not found" in engine.execute("scontrol update NodeName=dgx-99 State=DRAIN").output
    bad = engine.execute("scontrol update NodeName=dgx-00 State=asleep")
    assert bad.exit_code == 1
    assert 'Invalid state "asleep"' in bad.output


def test_sbatch_job_runs_on_next_command(engine):
    assert engine.execute("sbatch --gpus=4 train.sh").output == "Submitted batch job 1000"
    queue = engine.execute("squeue").output.splitlines()
    assert len(queue) == 2
    fields = queue[1].split()
    assert fields[0] == "1000"
    assert fields[2] == "train"
    assert fields[4] == "R"
    assert fields[-1] == "dgx-00"

    node = engine.store.get_node("dgx-00")
    assert node.slurm_state == "alloc"
    assert sum(1 for gpu in node.gpus if gpu.allocated_job_id == 1000) == 4


def test_job_completes_at_time_limit(engine):
    engine.execute("sbatch --time=0:01 --job-name=short job.sh")
    engine.execute("squeue")
    engine.advance(2000)
    job = engine.store.get_job(1000)
    assert job.state == JOB_COMPLETED
    assert engine.store.get_node("dgx-00").slurm_state == "idle"
    assert engine.execute("squeue -h").output == ""


def test_job_waits_for_resources(engine):
    engine.execute("scontrol update NodeName=dgx-00 State=DRAIN Reason=maint")
    engine.execute("scontrol update NodeName=dgx-01 State=DOWN")
    engine.execute("sbatch train.sh")
    row = engine.execute("squeue -h").output.split()
    assert row[4] == "PD"
    assert row[-1] == "(Resources)"


def test_sbatch_errors(engine):
    assert engine.execute("sbatch").output == "Error: Batch script not specified"
    assert "Invalid --time" in engine.execute("sbatch --time=later x.sh").output
    assert "invalid partition specified: debug" in engine.execute("sbatch -p debug x.sh").output


def test_scancel(engine):
    engine.execute("sbatch train.sh")
    engine.execute("squeue")
    assert engine.execute("scancel 1000").output == "scancel: Terminating job 1000"
    assert engine.store.get_job(1000).state == JOB_CANCELLED
    assert engine.store.get_node("dgx-00").slurm_state == "idle"

    again = engine.execute("scancel 1000")
    assert again.exit_code == 1
    assert "Job/step already completing or completed" in again.output

    missing = engine.execute("scancel 42")
    assert missing.exit_code == 1
    assert "Invalid job id specified" in missing.output

    assert engine.execute("scancel").output == "Error: Job ID not specified"


def test_scancel_by_name(engine):
    engine.execute("sbatch -J sweep a.sh")
    engine.execute("sbatch -J sweep b.sh")
    engine.execute("sbatch -J keep c.sh")
    assert engine.execute("scancel --name=sweep").exit_code == 0
    states = [job.state for job in engine.store.state.jobs]
    assert states[:2] == [JOB_CANCELLED, JOB_CANCELLED]
    assert states[2] != JOB_CANCELLED


def test_srun_reports_allocated_gpus(engine):
    result = engine.execute("srun --gpus=2 nvidia-smi -L")
    assert result.exit_code == 0
    assert "Allocated 2 GPU(s) from dgx-00" in result.output
    assert engine.store.get_job(1000).state == JOB_COMPLETED


def test_srun_on_drained_node_fails(engine):
    engine.execute("scontrol update NodeName=dgx-01 State=DRAIN Reason=maint")
    result = engine.execute("srun -w dgx-01 hostname")
    assert result.exit_code == 1
    assert "Unable to allocate resources" in result.output


def test_sacct_lists_job_history(engine):
    engine.execute("sbatch train.sh")
    engine.execute("scancel 1000")
    lines = engine.execute("sacct").output.splitlines()
    assert lines[0].split() == ["JobID", "JobName", "Partition", "Account", "AllocCPUS", "State", "ExitCode"]
    assert lines[2].startswith("1000")
    assert "CANCELLED" in lines[2]
    assert lines[2].endswith("0:15")


def test_version_and_help(engine):
    assert engine.execute("sinfo -V").output == "slurm 23.02.6"
    assert engine.execute("squeue --help").output.startswith("Usage: squeue")


def test_running_job_holds_gpu_memory_until_cancelled(engine):
    engine.execute("sbatch --gpus=2 train.sh")
    engine.execute("squeue")
    node = engine.store.get_node("dgx-00")
    held = [gpu for gpu in node.gpus if gpu.allocated_job_id == 1000]
    assert len(held) == 2
    assert all(gpu.memory_used == int(gpu.memory_total * 0.75) for gpu in held)
    assert all(gpu.memory_used == 0 for gpu in node.gpus if gpu.allocated_job_id is None)

    engine.execute("scancel 1000")
    assert all(gpu.memory_used == 0 and gpu.utilization == 0 for gpu in held)
