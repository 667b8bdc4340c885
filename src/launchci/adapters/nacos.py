# adapters/nacos.py
from __future__ import annotations

import copy
from typing import Any, Dict, List, Optional

from ..diffing import diff_lines, has_real_change
from ..model import Job, JobType, RunPolicy, Source, config_key
from ..resolve import Resolution
from .base import DeriveMode, Derivation, JobAdapter, Record, keyed, strip_keys, wire_job

CONFIG_UI_KEYS = ("diff", "key", "cloneData", "label")


def _same_item(a: Record, b: Record, with_namespace: bool = True) -> bool:
    if a.get("group") != b.get("group") or a.get("data_id") != b.get("data_id"):
        return False
    return not with_namespace or a.get("namespace_name") == b.get("namespace_name")


def with_diff(item: Record) -> Record:
    """Recompute an item's diff; no original content means nothing to compare yet."""
    if item.get("original_content"):
        item["diff"] = diff_lines(item["original_content"], item.get("content", ""))
    return item


def real_change(item: Record) -> bool:
    return has_real_change(item.get("diff"))


class NacosAdapter(JobAdapter):
    """
    Config-change jobs: which config items to publish, with their new content.

    Picks live in the selection and are written back to `spec.nacos_datas`.
    """
    kind = JobType.NACOS

    def preprocess(self, job: Job) -> Job:
        return job.with_spec(nacos_datas=keyed(job.spec.get("nacos_datas"), key=config_key))

    def exposed_targets(self, job: Job) -> List[Record]:
        if job.selection.picked_targets is not None:
            return job.selection.picked_targets
        return job.spec.get("nacos_datas") or []

    def listing(self, job: Job, snapshot: Optional[List[Record]]) -> Optional[List[Record]]:
        """Config items on offer; fixed jobs only see their allowed items."""
        configs = snapshot if snapshot is not None else job.spec.get("nacos_configs")
        if configs is None:
            return None
        items = []
        allowed = job.spec.get("nacos_filtered_data") or []
        for item in configs:
            if job.source == Source.FIXED.value and allowed:
                if not any(_same_item(item, a, with_namespace=False) for a in allowed):
                    continue
            item = copy.deepcopy(item)
            item.setdefault("content", "")
            item.setdefault("original_content", "")
            item["key"] = config_key(item)
            items.append(item)
        return items

    def derive(
        self,
        job: Job,
        resolution: Resolution,
        upstream: Optional[List[Record]],
        snapshot: Optional[Any] = None,
        mode: DeriveMode = DeriveMode(),
    ) -> Derivation:
        listing = self.listing(job, snapshot)

        if mode.reuse_saved:
            return self._derive_saved(job, listing)

        previous = job.selection.picked_targets
        if previous is None:
            if listing is None:
                return Derivation(job=job, candidates=[], confirmed_empty=False)
            previous = []
            for default in job.spec.get("default_nacos_datas") or []:
                match = next((c for c in listing if _same_item(c, default, with_namespace=False)), None)
                if match is None:
                    continue
                item = copy.deepcopy(default)
                item["namespace_name"] = match.get("namespace_name")
                item["namespace_id"] = match.get("namespace_id")
                item["key"] = config_key(item)
                item["diff"] = []
                item["original_content"] = ""
                item["format"] = ""
                previous.append(item)
            picks = previous
        else:
            picks = [with_diff(copy.deepcopy(p)) for p in previous]

        updated = job.with_selection(picked_targets=picks)
        return Derivation(job=updated, candidates=listing or [], confirmed_empty=listing is not None)

    def _derive_saved(self, job: Job, listing: Optional[List[Record]]) -> Derivation:
        """Stage execution / editing: saved items must still be allowed."""
        allowed = job.spec.get("nacos_filtered_data") or []
        saved = job.selection.picked_targets
        if saved is None:
            saved = keyed(job.spec.get("nacos_datas"), key=config_key)
            for item in saved:
                item["cloneData"] = True
                item.pop("original_content", None)

        if saved and job.spec.get("nacos_filtered_data") is not None:
            if any(not any(_same_item(s, a) for a in allowed) for s in saved):
                # an item outside the allowed set invalidates the whole saved selection
                return Derivation(job=job.with_selection(picked_targets=[]), candidates=listing or [])

        picks = copy.deepcopy(saved)
        if allowed:
            for item in picks:
                match = next((a for a in allowed if _same_item(item, a)), None)
                if match is not None:
                    item["original_content"] = match.get("content", "")
                with_diff(item)
        return Derivation(job=job.with_selection(picked_targets=picks), candidates=listing or [])

    def with_content(self, job: Job, item_key: str, content: str) -> Job:
        picks = copy.deepcopy(job.selection.picked_targets or [])
        for item in picks:
            if config_key(item) == item_key:
                item["content"] = content
                with_diff(item)
        return job.with_selection(picked_targets=picks)

    def validate(self, job: Job, resolution: Resolution) -> Optional[str]:
        if not job.selection.picked_targets:
            return "select at least one config item"
        return None

    def serialize(self, job: Job, mode: DeriveMode = DeriveMode()) -> Dict[str, Any]:
        out = wire_job(job)
        spec = out["spec"]
        items = job.selection.picked_targets
        if items is None:
            items = spec.get("nacos_datas") or []

        if not mode.release_plan:
            changed = any(real_change(i) for i in items)
            out["skipped"] = not (changed or job.run_policy == RunPolicy.FORCE_RUN.value)

        spec["nacos_datas"] = [strip_keys(copy.deepcopy(i), CONFIG_UI_KEYS) for i in items]
        spec.pop("nacos_filtered_data", None)
        spec.pop("nacos_configs", None)
        return out

    def apply_enrichment(self, job: Job, kind: str, key: str, result: Any) -> Job:
        """
        `configs`:       config listing of the job's namespace
        `config_detail`: current server content of item `key` (group/namespace/data_id)
        """
        if kind == "configs":
            return job.with_spec(nacos_configs=list(result or []))
        if kind != "config_detail" or job.selection.picked_targets is None:
            return job

        detail = result or {}
        picks = copy.deepcopy(job.selection.picked_targets)
        for item in picks:
            if config_key(item) != key or item.get("original_content"):
                continue
            if not item.get("cloneData"):
                item["content"] = detail.get("content", "") or ""
            item["format"] = detail.get("format") or item.get("format") or "TEXT"
            item["original_content"] = detail.get("content", "") or ""
            item["diff"] = []
            with_diff(item)
        return job.with_selection(picked_targets=picks)
