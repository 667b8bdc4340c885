# plan.py
from __future__ import annotations

from typing import List, Optional, Set, Tuple

from .model import ACTIVE_RUN_POLICIES, Job, RunPolicy, WorkflowDocument

JobKey = Tuple[str, str]  # (type, name)


def is_active(job: Job, *, stage_exec_mode: bool = False) -> bool:
    if job.skipped:
        return False
    if stage_exec_mode:
        return job.run_policy != RunPolicy.SKIP.value
    return job.run_policy in ACTIVE_RUN_POLICIES


def active_jobs(document: WorkflowDocument, *, stage_exec_mode: bool = False) -> List[Job]:
    """
    Jobs eligible for display, validation and submission, in document order.

    In stage-execution mode only stages flagged `execStage` are considered.
    """
    out: List[Job] = []
    for stage in document.stages:
        if stage_exec_mode and not stage.exec_stage:
            continue
        out.extend(j for j in stage.jobs if is_active(j, stage_exec_mode=stage_exec_mode))
    return out


def active_job_keys(document: WorkflowDocument, *, stage_exec_mode: bool = False) -> Set[JobKey]:
    return {j.key for j in active_jobs(document, stage_exec_mode=stage_exec_mode)}


def prune_handles(handles: dict, active: Set[JobKey]) -> List[JobKey]:
    """Drop per-job handles for jobs that are no longer active. Returns removed keys."""
    stale = [k for k in handles if k not in active]
    for k in stale:
        del handles[k]
    return stale


# ----------------------------------------------------------------------
# Skip toggles (pure: return the new job, or None when not allowed)
# ----------------------------------------------------------------------

def toggled(job: Job) -> Optional[Job]:
    """Flip `skipped`. Skipping also resets run_policy; force_run jobs are locked."""
    if job.run_policy == RunPolicy.FORCE_RUN.value:
        return None
    if job.skipped:
        return job.evolve(skipped=False)
    return job.evolve(skipped=True, run_policy=RunPolicy.DEFAULT.value, ref_info=None)


def exec_stage_toggled(job: Job) -> Optional[Job]:
    """Stage-execution variant: flips run_policy between "" and "skip"."""
    if job.run_policy == RunPolicy.FORCE_RUN.value:
        return None
    if job.run_policy:
        return job.evolve(run_policy=RunPolicy.DEFAULT.value)
    return job.evolve(run_policy=RunPolicy.SKIP.value)
