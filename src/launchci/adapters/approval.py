# adapters/approval.py
from __future__ import annotations

import copy
from typing import Any, Dict, List, Optional

from ..model import Job, JobType, Source
from ..resolve import Resolution
from .base import DeriveMode, Derivation, JobAdapter, Record, wire_job

NODE_APPROVAL_TYPES = ("lark", "lark_intl", "dingtalk")
APPROVER_STRUCTURES = ("native_approval", "lark_approval", "dingtalk_approval", "workwx_approval")

NO_NODES = "add at least one approval node"
NO_APPROVER = "choose an approver for every approval node"


def approval_block(job: Job) -> Dict[str, Any]:
    kind = job.spec.get("type") or "native"
    name = "lark_approval" if kind == "lark_intl" else f"{kind}_approval"
    return job.spec.get(name) or {}


def node_error(nodes: Optional[List[Record]], workwx: bool = False) -> Optional[str]:
    if not nodes:
        return NO_NODES
    for node in nodes:
        if workwx:
            if not node.get("users"):
                return NO_APPROVER
            continue
        node_type = node.get("approve_node_type", "")
        if node_type == "" and not node.get("approve_users"):
            return NO_APPROVER
        if node_type == "user_group" and not node.get("approve_groups"):
            return NO_APPROVER
    return None


class ApprovalAdapter(JobAdapter):
    """
    Approval jobs. Runtime jobs need approvers on every node; fromjob jobs
    copy the approver structure of their root.
    """
    kind = JobType.APPROVAL

    def derive(
        self,
        job: Job,
        resolution: Resolution,
        upstream: Optional[List[Record]],
        snapshot: Optional[Any] = None,
        mode: DeriveMode = DeriveMode(),
    ) -> Derivation:
        if not job.is_fromjob:
            return Derivation(job=job)
        if resolution.missing:
            return self.missing(job)

        root = resolution.root
        changes: Dict[str, Any] = {}
        for name in APPROVER_STRUCTURES:
            block = root.spec.get(name)
            if not block:
                continue
            own = copy.deepcopy(job.spec.get(name) or {})
            if name == "native_approval":
                own.setdefault("needed_approvers", 1)
                own["approve_users"] = copy.deepcopy(block.get("approve_users") or [])
            else:
                own["approval_nodes"] = copy.deepcopy(block.get("approval_nodes") or [])
            changes[name] = own
        updated = job.with_spec(**changes) if changes else job
        return Derivation(job=updated.evolve(missing_source=False))

    def validate(self, job: Job, resolution: Resolution) -> Optional[str]:
        if job.is_fromjob:
            if resolution.missing:
                return "approval source job is missing or skipped"
            return None
        if job.source != Source.RUNTIME.value:
            return None

        kind = job.spec.get("type") or "native"
        block = approval_block(job)
        if kind == "native":
            return None if block.get("approve_users") else "choose at least one approver"
        if kind in NODE_APPROVAL_TYPES:
            return node_error(block.get("approval_nodes"))
        if kind == "workwx":
            return node_error(block.get("approval_nodes"), workwx=True)
        return None

    def serialize(self, job: Job, mode: DeriveMode = DeriveMode()) -> Dict[str, Any]:
        out = wire_job(job)
        out["spec"].pop("directory", None)
        return out

    def apply_enrichment(self, job: Job, kind: str, key: str, result: Any) -> Job:
        """`directory`: user/group lookups keyed by search term (UI cache)."""
        if kind != "directory":
            return job
        directory = copy.deepcopy(job.spec.get("directory") or {})
        directory[key] = list(result or [])
        return job.with_spec(directory=directory)
