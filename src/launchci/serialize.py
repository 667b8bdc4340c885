# serialize.py
from __future__ import annotations

import copy
import json
from typing import Any, Dict

from .adapters import adapter_for
from .adapters.base import DeriveMode, wire_job
from .errors import ValidationFailure
from .model import Job, WorkflowDocument
from .ui.console import get_console


def serialize_job(job: Job, mode: DeriveMode = DeriveMode()) -> Dict[str, Any]:
    adapter = adapter_for(job)
    if adapter is None:
        get_console().print_warning(f"job {job.name} has unknown type '{job.type}', sent unchanged")
        return wire_job(job)
    try:
        return adapter.serialize(job, mode)
    except ValidationFailure as e:
        if not e.job:
            e.job = job.name
        raise


def build_payload(document: WorkflowDocument, *, debug: bool = False, mode: DeriveMode = DeriveMode()) -> Dict[str, Any]:
    """
    Flatten the edited document into the backend's run request.

    Skipped jobs stay in the payload (the backend needs `skipped=true`) but
    go through the same transforms, so no editor state leaks out.
    """
    payload = copy.deepcopy(document.extra)
    payload["name"] = document.name
    payload["remark"] = document.remark
    payload["params"] = copy.deepcopy(document.params)

    stages = []
    for stage in document.stages:
        data = stage.to_dict()
        data["jobs"] = [serialize_job(job, mode) for job in stage.jobs]
        stages.append(data)
    payload["stages"] = stages
    payload["debug"] = debug
    return payload


def dumps_payload(payload: Dict[str, Any]) -> str:
    """Canonical JSON: same payload, same bytes."""
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
