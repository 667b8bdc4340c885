# adapters/build.py
from __future__ import annotations

import copy
from typing import Any, Dict, List, Optional

from ..model import Job, JobType
from ..resolve import Resolution
from .base import (
    DeriveMode,
    Derivation,
    JobAdapter,
    Record,
    apply_branches,
    clean_records,
    filter_by_keys,
    has_code_reference,
    inherit_all,
    invalid_pull_requests,
    key_set,
    keyed,
    preserve_picks,
    sync_ref_repos,
    wire_job,
)


def _picks(job: Job) -> List[Record]:
    if job.selection.picked_targets is not None:
        return job.selection.picked_targets
    return job.spec.get("service_and_builds") or []


class BuildAdapter(JobAdapter):
    """Build jobs: which service modules to build, and from which code reference."""
    kind = JobType.BUILD

    def preprocess(self, job: Job) -> Job:
        return job.with_spec(
            service_and_builds=keyed(job.spec.get("service_and_builds")),
            service_and_builds_options=keyed(job.spec.get("service_and_builds_options")),
        )

    def exposed_targets(self, job: Job) -> List[Record]:
        return _picks(job)

    def derive(
        self,
        job: Job,
        resolution: Resolution,
        upstream: Optional[List[Record]],
        snapshot: Optional[Any] = None,
        mode: DeriveMode = DeriveMode(),
    ) -> Derivation:
        options = keyed(job.spec.get("service_and_builds_options"))
        previous = keyed(job.selection.picked_targets) if job.selection.picked_targets is not None else None

        if not job.is_fromjob:
            if previous is None:
                previous = keyed(job.spec.get("service_and_builds"))
            # without options the preset's own list is everything on offer
            candidates = options or keyed(job.spec.get("service_and_builds"))
            picks = preserve_picks(candidates, previous)
            return Derivation(
                job=job.with_selection(picked_targets=picks).evolve(missing_source=False),
                candidates=candidates,
            )

        if resolution.missing or upstream is None:
            return self.missing(job)

        base = options
        if mode.reuse_saved:
            merged = {c["key"]: c for c in options}
            for saved in keyed(job.spec.get("service_and_builds")):
                merged[saved["key"]] = {**merged.get(saved["key"], {}), **saved}
            base = list(merged.values())

        candidates = filter_by_keys(base, key_set(upstream))
        if job.spec.get("ref_repos"):
            sync_ref_repos(candidates, upstream)
        picks = inherit_all(candidates, previous)
        return Derivation(
            job=job.with_selection(picked_targets=picks).evolve(missing_source=False),
            candidates=candidates,
        )

    def validate(self, job: Job, resolution: Resolution) -> Optional[str]:
        picks = job.selection.picked_targets or []
        if not picks:
            return "select at least one service module"
        for service in picks:
            for repo in service.get("repos") or []:
                if not has_code_reference(repo):
                    return (
                        f"repository {repo.get('repo_name', '')} of service "
                        f"{service.get('service_name', '')} has no branch, tag or pull request"
                    )
                bad = invalid_pull_requests(repo.get("prs"))
                if bad:
                    return f"repository {repo.get('repo_name', '')} has invalid pull request numbers: {', '.join(bad)}"
        return None

    def serialize(self, job: Job, mode: DeriveMode = DeriveMode()) -> Dict[str, Any]:
        out = wire_job(job)
        spec = out["spec"]
        picks = clean_records(copy.deepcopy(job.selection.picked_targets))
        if job.selection.picked_targets is not None:
            spec["service_and_builds"] = picks
        else:
            spec["service_and_builds"] = clean_records(spec.get("service_and_builds"))
        if spec["service_and_builds"]:
            spec["default_service_and_builds"] = copy.deepcopy(spec["service_and_builds"])
        spec.pop("service_and_builds_options", None)
        return out

    def apply_enrichment(self, job: Job, kind: str, key: str, result: Any) -> Job:
        """`branches`: per-repo branch/tag/PR lists for the service module `key`."""
        if kind != "branches" or job.selection.picked_targets is None:
            return job
        picks = apply_branches(copy.deepcopy(job.selection.picked_targets), key, result)
        return job.with_selection(picked_targets=picks)
