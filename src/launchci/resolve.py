# resolve.py
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from .errors import ReferenceCycleError
from .model import Job, JobType, RefInfo, WorkflowDocument, module_key


@dataclass(frozen=True)
class Resolution:
    """
    Result of following a job's fromjob pointers.

      root:     the job actually supplying data (None if not fromjob or dangling)
      ref:      the job the pointer names directly (may itself be fromjob)
      ref_info: root name + skipped flag, used for "missing source" reporting
    """
    root: Optional[Job] = None
    ref: Optional[Job] = None
    ref_info: Optional[RefInfo] = None

    @property
    def broken(self) -> bool:
        return self.ref_info is not None and self.ref_info.broken

    @property
    def missing(self) -> bool:
        """True when a fromjob job has no usable root."""
        return self.root is None or self.broken


NOT_FROMJOB = Resolution()


def _by_name(jobs: Iterable[Job]) -> Dict[str, Job]:
    return {j.name: j for j in jobs}


def resolve_reference(job: Job, jobs: Iterable[Job]) -> Resolution:
    """
    Walk origin pointers until a job whose source is not `fromjob`.

    The walk is bounded by the number of jobs; needing more hops than that
    means the pointers cycle, which is a ReferenceCycleError.
    """
    if not job.is_fromjob:
        return NOT_FROMJOB

    by_name = _by_name(jobs)
    ref = by_name.get(job.origin_job_name)
    current: Optional[Job] = ref
    visited: List[str] = [job.name]

    hops = 0
    while current is not None and current.is_fromjob:
        hops += 1
        if hops > len(by_name):
            raise ReferenceCycleError(
                kind="reference_cycle",
                job=job.name,
                message=f"fromjob chain of '{job.name}' does not terminate",
                details={"chain": " -> ".join(visited + [current.name])},
            )
        visited.append(current.name)
        current = by_name.get(current.origin_job_name)

    if current is None:
        return Resolution(root=None, ref=ref, ref_info=None)

    return Resolution(root=current, ref=ref, ref_info=RefInfo(job_name=current.name, skipped=current.skipped))


def resolve_document(document: WorkflowDocument) -> Dict[str, Resolution]:
    jobs = document.jobs
    return {j.name: resolve_reference(j, jobs) for j in jobs}


def missing_source_jobs(document: WorkflowDocument) -> List[str]:
    """Root names of broken chains among non-skipped fromjob jobs, in document order."""
    out: List[str] = []
    jobs = document.jobs
    for job in jobs:
        if job.skipped or not job.is_fromjob:
            continue
        res = resolve_reference(job, jobs)
        if res.broken and res.ref_info.job_name not in out:
            out.append(res.ref_info.job_name)
    return out


def refresh_ref_info(document: WorkflowDocument) -> WorkflowDocument:
    """Recompute `ref_info` for every job (skipped jobs carry none)."""
    jobs = document.jobs

    def _update(job: Job) -> Job:
        info = None if job.skipped else resolve_reference(job, jobs).ref_info
        if info == job.ref_info:
            return job
        return job.evolve(ref_info=info)

    return document.map_jobs(_update)


# ----------------------------------------------------------------------
# Data signature
# ----------------------------------------------------------------------

def _sorted_keys(items) -> str:
    return ",".join(sorted(module_key(t) for t in items or []))


def data_signature(root: Optional[Job]) -> str:
    """
    Compact digest of what a root job exposes to its dependents.

    Only used to decide "did upstream change enough to recompute".
    """
    if root is None:
        return ""

    sig = f"{root.name}-{root.type}"
    spec = root.spec
    picked = root.selection.picked_targets or []
    kind = root.kind

    if kind is JobType.BUILD:
        builds = picked or spec.get("service_and_builds") or []
        sig += f"-builds:{len(builds)}"
        sig += f"-bsig:{_sorted_keys(builds)[:50]}"
    elif kind is JobType.SCANNING:
        targets = spec.get("target_services") or []
        sig += f"-targets:{len(targets)}"
        sig += f"-picked:{len(picked)}"
        if targets:
            sig += f"-tsig:{_sorted_keys(targets)[:50]}"
        if picked:
            sig += f"-psig:{_sorted_keys(picked)[:50]}"
    elif kind is JobType.TEST:
        sig += f"-targets:{len(spec.get('target_services') or [])}"
        sig += f"-picked:{len(picked)}"
        if picked:
            sig += f"-psig:{_sorted_keys(picked)[:50]}"
    elif kind is JobType.DEPLOY:
        modules = root.selection.picked_modules or []
        sig += f"-modules:{len(modules)}"
        sig += f"-services:{len(spec.get('services') or [])}"
        if modules:
            sig += f"-msig:{_sorted_keys(modules)[:50]}"
    else:
        sig += f"-generic:{json.dumps(spec, sort_keys=True, ensure_ascii=False)[:100]}"

    if root.skipped:
        sig += "-skipped"
    return sig
