# adapters/__init__.py
"""
Single dispatch point over job kinds.

Every JobType maps to exactly one adapter; resolver consumers, the
validator and the serializer all go through `adapter_for`.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from ..model import Job, JobType, WorkflowDocument, module_key
from ..resolve import Resolution
from .approval import ApprovalAdapter
from .base import DeriveMode, Derivation, JobAdapter, Record, key_set
from .build import BuildAdapter
from .deploy import DeployAdapter
from .nacos import NacosAdapter
from .scanning import ScanningAdapter
from .sql import SqlAdapter
from .testing import TestAdapter

ADAPTERS: Dict[JobType, JobAdapter] = {
    JobType.BUILD: BuildAdapter(),
    JobType.DEPLOY: DeployAdapter(),
    JobType.SCANNING: ScanningAdapter(),
    JobType.TEST: TestAdapter(),
    JobType.SQL: SqlAdapter(),
    JobType.NACOS: NacosAdapter(),
    JobType.APPROVAL: ApprovalAdapter(),
}

_missing = [k.value for k in JobType if k not in ADAPTERS]
if _missing:
    raise RuntimeError(f"no adapter registered for job types: {_missing}")


def adapter_for(job: Job) -> Optional[JobAdapter]:
    """Adapter for a job, or None for types this engine does not know."""
    kind = job.kind
    return ADAPTERS[kind] if kind is not None else None


def exposed_targets(job: Job) -> List[Record]:
    adapter = adapter_for(job)
    if adapter is not None:
        return adapter.exposed_targets(job)
    # unknown kinds: best effort over the common field names
    if job.selection.picked_targets is not None:
        return job.selection.picked_targets
    return job.spec.get("services") or job.spec.get("targets") or []


def upstream_targets(resolution: Resolution) -> Optional[List[Record]]:
    """
    What a fromjob job may pick from, or None when there is no usable root.

    A build as the immediate reference narrows the root's targets to the
    modules that build produces, even when the chain continues past it.
    """
    root = resolution.root
    if root is None:
        return None
    targets = exposed_targets(root)
    ref = resolution.ref
    if ref is not None and ref.name != root.name and ref.kind is JobType.BUILD:
        allowed = key_set(exposed_targets(ref))
        targets = [t for t in targets if module_key(t) in allowed]
    return targets


def derive(job: Job, resolution: Resolution, snapshot: Optional[Any] = None, mode: DeriveMode = DeriveMode()) -> Optional[Derivation]:
    adapter = adapter_for(job)
    if adapter is None:
        return None
    upstream = upstream_targets(resolution) if job.is_fromjob else None
    return adapter.derive(job, resolution, upstream, snapshot=snapshot, mode=mode)


def preprocess_document(document: WorkflowDocument) -> WorkflowDocument:
    def _pre(job: Job) -> Job:
        adapter = adapter_for(job)
        return adapter.preprocess(job) if adapter is not None else job

    return document.map_jobs(_pre)


__all__ = [
    "ADAPTERS",
    "ApprovalAdapter",
    "BuildAdapter",
    "DeployAdapter",
    "DeriveMode",
    "Derivation",
    "JobAdapter",
    "NacosAdapter",
    "ScanningAdapter",
    "SqlAdapter",
    "TestAdapter",
    "adapter_for",
    "derive",
    "exposed_targets",
    "preprocess_document",
    "upstream_targets",
]
