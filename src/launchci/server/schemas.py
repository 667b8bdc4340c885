from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field

# -------------------- Requests --------------------

class CreateSessionRequest(BaseModel):
    # host parameters (workflowName, projectName, stageExecMode, ...)
    context: dict[str, Any] = Field(default_factory=dict)
    # preset or cloned run; fetched from the gateway when omitted
    document: Optional[dict[str, Any]] = None

class SelectRequest(BaseModel):
    keys: list[str]

class SpecEditRequest(BaseModel):
    changes: dict[str, Any]

class ContentEditRequest(BaseModel):
    # group/namespace_name/data_id of a picked config item
    item: str
    content: str

class LookupRequest(BaseModel):
    kind: str
    key: str = ""

class SubmitRequest(BaseModel):
    debug: bool = False

# -------------------- Responses --------------------

class JobSummary(BaseModel):
    stage: str
    name: str
    type: str
    source: str
    active: bool
    skipped: bool
    run_policy: str
    missing_source: bool
    ref_job: Optional[str] = None
    picked_targets: int
    picked_modules: int
    version: int

class SessionView(BaseModel):
    session_id: str
    workflow: str
    jobs: list[JobSummary]
    missing_source_jobs: list[str]

class JobView(BaseModel):
    job: dict[str, Any]
    candidates: list[dict[str, Any]]
    version: int

class MergeView(BaseModel):
    status: str
    version: int

class ValidationIssue(BaseModel):
    job: str
    message: str

class ValidationView(BaseModel):
    ok: bool
    failures: list[ValidationIssue]

class SubmitResponse(BaseModel):
    task_id: int
