from __future__ import annotations

import uuid
from typing import Any, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, Response

from .. import settings
from ..api_client import APIClient, SubmissionGateway
from ..context import HostContext
from ..errors import ImmutableFieldError, LaunchError, SubmissionError, UnknownJobError, ValidationFailure
from ..session import RunSession
from ..sync import MergeResult
from .schemas import (
    ContentEditRequest,
    CreateSessionRequest,
    JobSummary,
    JobView,
    LookupRequest,
    MergeView,
    SelectRequest,
    SessionView,
    SpecEditRequest,
    SubmitRequest,
    SubmitResponse,
    ValidationIssue,
    ValidationView,
)

app = FastAPI(title="LaunchCI Run Editor")

# sessions live in memory for as long as the client keeps them open
SESSIONS: dict[str, RunSession] = {}

# -------------------- Dependencies --------------------

def get_gateway() -> SubmissionGateway:
    return APIClient(settings.API_URL, settings.API_TOKEN)

def get_session(session_id: str) -> RunSession:
    session = SESSIONS.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return session

# -------------------- Error mapping --------------------

@app.exception_handler(LaunchError)
async def launch_error_handler(request: Request, exc: LaunchError) -> JSONResponse:
    if isinstance(exc, UnknownJobError):
        code = 404
    elif isinstance(exc, (ValidationFailure, ImmutableFieldError)):
        code = 422
    elif isinstance(exc, SubmissionError):
        code = 502 if exc.kind == "rejected" else 409
    else:
        code = 400
    return JSONResponse(
        status_code=code,
        content={"kind": exc.kind, "job": exc.job, "detail": exc.message},
    )

def view(session_id: str, session: RunSession) -> SessionView:
    return SessionView(
        session_id=session_id,
        workflow=session.document.name or session.context.workflow_name,
        jobs=[JobSummary(**row) for row in session.summary()],
        missing_source_jobs=session.missing_source_jobs(),
    )

def merge_view(result: MergeResult) -> MergeView:
    return MergeView(status=result.status, version=result.version)

# -------------------- Endpoints --------------------

@app.post("/sessions", response_model=SessionView)
def create_session(req: CreateSessionRequest, gateway: SubmissionGateway = Depends(get_gateway)):
    session = RunSession(HostContext.from_dict(req.context), gateway=gateway)
    if req.document is not None:
        session.open_preset(req.document)
    else:
        session.open_from_gateway()
    session_id = str(uuid.uuid4())
    SESSIONS[session_id] = session
    return view(session_id, session)

@app.get("/sessions/{session_id}", response_model=SessionView)
def get_session_view(session_id: str):
    return view(session_id, get_session(session_id))

@app.get("/sessions/{session_id}/jobs/{job_name}", response_model=JobView)
def get_job(session_id: str, job_name: str):
    session = get_session(session_id)
    job = session.job(job_name)
    return JobView(job=job.to_dict(), candidates=session.candidates(job_name), version=session.sync.version(job_name))

@app.post("/sessions/{session_id}/jobs/{job_name}/toggle", response_model=SessionView)
def toggle_job(session_id: str, job_name: str):
    session = get_session(session_id)
    if session.mode.stage_exec_mode:
        session.toggle_exec_stage_job(job_name)
    else:
        session.toggle_job(job_name)
    return view(session_id, session)

@app.post("/sessions/{session_id}/jobs/{job_name}/select", response_model=MergeView)
def select_targets(session_id: str, job_name: str, req: SelectRequest):
    return merge_view(get_session(session_id).select(job_name, req.keys))

@app.patch("/sessions/{session_id}/jobs/{job_name}/spec", response_model=MergeView)
def edit_spec(session_id: str, job_name: str, req: SpecEditRequest):
    return merge_view(get_session(session_id).edit_spec(job_name, req.changes))

@app.patch("/sessions/{session_id}/jobs/{job_name}/content", response_model=MergeView)
def edit_content(session_id: str, job_name: str, req: ContentEditRequest):
    return merge_view(get_session(session_id).edit_config_content(job_name, req.item, req.content))

@app.post("/sessions/{session_id}/jobs/{job_name}/lookup", response_model=Optional[MergeView])
async def run_lookup(session_id: str, job_name: str, req: LookupRequest):
    # null when the lookup failed or the job is no longer active
    result = await get_session(session_id).lookup(job_name, req.kind, req.key)
    return merge_view(result) if result is not None else None

@app.post("/sessions/{session_id}/validate", response_model=ValidationView)
def validate_session(session_id: str):
    report = get_session(session_id).validate()
    return ValidationView(
        ok=report.ok,
        failures=[ValidationIssue(job=job, message=message) for job, message in report.messages()],
    )

@app.get("/sessions/{session_id}/payload")
def get_payload(session_id: str, debug: bool = False) -> dict[str, Any]:
    return get_session(session_id).build_payload(debug=debug)

@app.post("/sessions/{session_id}/submit", response_model=SubmitResponse)
def submit(session_id: str, req: SubmitRequest):
    task_id = get_session(session_id).submit(debug=req.debug)
    return SubmitResponse(task_id=task_id)

@app.delete("/sessions/{session_id}", status_code=204)
def close_session(session_id: str):
    session = get_session(session_id)
    session.close()
    del SESSIONS[session_id]
    return Response(status_code=204)
