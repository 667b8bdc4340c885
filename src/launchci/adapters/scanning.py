# adapters/scanning.py
from __future__ import annotations

import copy
from typing import Any, Dict, List, Optional

from ..model import Job, JobType, module_key
from ..resolve import Resolution
from .base import (
    DeriveMode,
    Derivation,
    JobAdapter,
    Record,
    apply_branches,
    clean_records,
    filter_by_keys,
    inherit_all,
    key_set,
    keyed,
    preserve_picks,
    strip_keys,
    sync_ref_repos,
    wire_job,
)


def _plain_records(records) -> List[Record]:
    """Plain entries go out without the identity fields added on load."""
    return [strip_keys(r, ("service_name", "service_module")) for r in clean_records(records)]


class ServiceTargetAdapter(JobAdapter):
    """
    Shared strategy for scanning and test jobs.

    Both come in two flavours selected by `type_field`:
      ""            plain entries (no service), picked from `plain_options`
      service mode  service/module targets restricted to `target_services`
    """
    type_field = ""
    service_mode = ""
    plain_field = ""
    plain_options = ""
    service_options = ""
    service_picks = ""
    empty_plain_message = ""

    def is_service_mode(self, job: Job) -> bool:
        return job.spec.get(self.type_field, "") == self.service_mode

    def preprocess(self, job: Job) -> Job:
        job = job.with_spec(target_services=keyed(job.spec.get("target_services")))
        if self.is_service_mode(job):
            return job
        # plain entries have no service; identify them by their own name
        changes = {}
        for field in (self.plain_field, self.plain_options):
            entries = copy.deepcopy(job.spec.get(field)) if field else None
            if not entries:
                continue
            for n, entry in enumerate(entries, start=1):
                entry["service_name"] = entry.get("name") or f"entry-{n}"
                entry["service_module"] = entry["service_name"]
                entry["key"] = module_key(entry)
            changes[field] = entries
        return job.with_spec(**changes) if changes else job

    def exposed_targets(self, job: Job) -> List[Record]:
        if job.selection.picked_targets:
            return job.selection.picked_targets
        return job.spec.get("target_services") or []

    def derive(
        self,
        job: Job,
        resolution: Resolution,
        upstream: Optional[List[Record]],
        snapshot: Optional[Any] = None,
        mode: DeriveMode = DeriveMode(),
    ) -> Derivation:
        if not self.is_service_mode(job):
            return self._derive_plain(job)

        data_source = keyed(job.spec.get(self.service_picks if mode.reuse_saved else self.service_options))

        if job.is_fromjob:
            if resolution.missing or upstream is None:
                return self.missing(job)
            candidates = filter_by_keys(data_source, key_set(upstream))
            if job.spec.get("ref_repos"):
                sync_ref_repos(candidates, upstream)
            picks = inherit_all(candidates, job.selection.picked_targets)
            return Derivation(job=job.with_selection(picked_targets=picks).evolve(missing_source=False), candidates=candidates)

        previous = job.selection.picked_targets
        if previous is None:
            previous = keyed(job.spec.get("target_services"))
        picks = preserve_picks(data_source, previous)
        if mode.reuse_saved:
            # saved targets no longer offered are kept as they were
            offered = key_set(picks)
            picks += [copy.deepcopy(t) for t in previous if module_key(t) not in offered]
        return Derivation(job=job.with_selection(picked_targets=picks).evolve(missing_source=False), candidates=data_source)

    def _derive_plain(self, job: Job) -> Derivation:
        options = keyed(job.spec.get(self.plain_options)) if self.plain_options else []
        current = keyed(job.spec.get(self.plain_field))
        candidates = options or current
        previous = job.selection.picked_targets
        if previous is None:
            # nothing saved yet: every offered entry runs
            previous = current or options
        picks = preserve_picks(candidates, previous)
        return Derivation(job=job.with_selection(picked_targets=picks).evolve(missing_source=False), candidates=candidates)

    def validate(self, job: Job, resolution: Resolution) -> Optional[str]:
        if job.selection.picked_targets:
            return None
        if self.is_service_mode(job):
            return "select at least one service module"
        return self.empty_plain_message

    def serialize(self, job: Job, mode: DeriveMode = DeriveMode()) -> Dict[str, Any]:
        out = wire_job(job)
        spec = out["spec"]
        picks = job.selection.picked_targets
        if self.is_service_mode(job):
            if picks is not None:
                spec[self.service_picks] = clean_records(copy.deepcopy(picks))
                spec["target_services"] = [
                    {"service_name": p.get("service_name", ""), "service_module": p.get("service_module", "")}
                    for p in picks
                ]
            else:
                spec[self.service_picks] = clean_records(spec.get(self.service_picks))
        else:
            if picks is not None:
                spec[self.plain_field] = _plain_records(copy.deepcopy(picks))
            else:
                spec[self.plain_field] = _plain_records(spec.get(self.plain_field))
        for name in ("target_services", self.service_options):
            if name and isinstance(spec.get(name), list):
                spec[name] = clean_records(spec[name])
        if self.plain_options and isinstance(spec.get(self.plain_options), list):
            spec[self.plain_options] = _plain_records(spec[self.plain_options])
        return out

    def apply_enrichment(self, job: Job, kind: str, key: str, result: Any) -> Job:
        if kind != "branches" or job.selection.picked_targets is None:
            return job
        picks = apply_branches(copy.deepcopy(job.selection.picked_targets), key, result)
        return job.with_selection(picked_targets=picks)


class ScanningAdapter(ServiceTargetAdapter):
    kind = JobType.SCANNING
    type_field = "scanning_type"
    service_mode = "service_scanning"
    plain_field = "scannings"
    plain_options = "scanning_options"
    service_options = "service_scanning_options"
    service_picks = "service_and_scannings"
    empty_plain_message = "select at least one scan"
