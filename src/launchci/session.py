# session.py
from __future__ import annotations

import copy
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Union

from . import settings
from .adapters import adapter_for, derive, preprocess_document
from .adapters.nacos import NacosAdapter
from .api_client import APIError, SubmissionGateway
from .context import HostContext
from .enrichment import EnrichmentBroker, Fetch
from .errors import ImmutableFieldError, LaunchError, SubmissionError
from .lookups import fetch_for
from .model import Job, JobType, WorkflowDocument, config_key, module_key
from .plan import JobKey, active_job_keys, active_jobs, is_active, prune_handles
from .resolve import data_signature, missing_source_jobs, refresh_ref_info, resolve_reference
from .serialize import build_payload
from .sync import ChangeSynchronizer, EditIntent, MergeResult
from .ui.console import get_console
from .validate import ValidationReport, validate_document

# wiring of the fromjob graph; fixed once the session is open
CORE_SPEC_FIELDS = ("source", "origin_job_name", "job_name", "type")


class RunSession:
    """
    One editing session over one pipeline run.

    Owns everything that lives exactly as long as the session: the
    synchronizer (and with it the document), per-job adapter handles, the
    notification de-dup set and the last built payload.
    """

    def __init__(self, context: HostContext, gateway: Optional[SubmissionGateway] = None):
        self.context = context
        self.gateway = gateway
        self.mode = context.mode
        self.handles: Dict[JobKey, Dict[str, Any]] = {}
        self.last_payload: Optional[Dict[str, Any]] = None
        self.task_id: Optional[int] = None
        self.closed = False

        self._sync: Optional[ChangeSynchronizer] = None
        self._broker: Optional[EnrichmentBroker] = None
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._signatures: Dict[str, str] = {}
        self._snapshots: Dict[str, Any] = {}
        self._notified: Set[str] = set()
        self._propagating = False

    # ------------------------------------------------------------------
    # Opening
    # ------------------------------------------------------------------

    def open_preset(self, document: Union[WorkflowDocument, Dict[str, Any]]) -> WorkflowDocument:
        self._ensure_usable()
        if isinstance(document, dict):
            document = WorkflowDocument.from_dict(document)
        document = refresh_ref_info(preprocess_document(document))

        if self._unsubscribe is not None:
            self._unsubscribe()
        self._sync = ChangeSynchronizer(document)
        self._broker = EnrichmentBroker(self._sync, is_active=self.is_active)
        self._unsubscribe = self._sync.subscribe(self._on_change)
        self.handles.clear()
        self._signatures.clear()

        get_console().print_debug(f"opened {document.name or self.context.workflow_name} with {len(document.jobs)} jobs")
        self.refresh_all()
        return self.document

    def open_clone(self, previous_run: Dict[str, Any]) -> WorkflowDocument:
        """Start from a prior run's request instead of the preset."""
        return self.open_preset(copy.deepcopy(previous_run))

    def open_from_gateway(self) -> WorkflowDocument:
        """A clone handed over by the host always wins over fetching the preset."""
        if self.context.has_clone:
            return self.open_clone(self.context.clone_workflow)
        if self.gateway is None:
            raise SubmissionError(kind="no_gateway", job="", message="no gateway configured to fetch the preset")
        preset = self.gateway.get_workflow_preset(
            self.context.workflow_name,
            self.context.project_name,
            self.context.approval_ticket_id,
        )
        return self.open_preset(preset)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def sync(self) -> ChangeSynchronizer:
        self._ensure_open()
        return self._sync

    @property
    def broker(self) -> EnrichmentBroker:
        self._ensure_open()
        return self._broker

    @property
    def document(self) -> WorkflowDocument:
        return self.sync.document

    def job(self, name: str) -> Job:
        return self.document.get(name)

    def active_keys(self) -> Set[JobKey]:
        return active_job_keys(self.document, stage_exec_mode=self.mode.stage_exec_mode)

    def is_active(self, name: str) -> bool:
        document = self.document
        job = document.get(name)
        if self.mode.stage_exec_mode and not document.stage_of(name).exec_stage:
            return False
        return is_active(job, stage_exec_mode=self.mode.stage_exec_mode)

    def missing_source_jobs(self) -> List[str]:
        return missing_source_jobs(self.document)

    def candidates(self, name: str) -> List[Dict[str, Any]]:
        handle = self.handles.get(self.job(name).key)
        if handle is None:
            return []
        return copy.deepcopy(handle["candidates"])

    # ------------------------------------------------------------------
    # Derivation and propagation
    # ------------------------------------------------------------------

    def set_snapshot(self, name: str, snapshot: Any) -> Optional[MergeResult]:
        """Provide external data for a job (e.g. an environment's services) and recompute it."""
        self.job(name)
        self._snapshots[name] = copy.deepcopy(snapshot)
        return self.refresh(name)

    def refresh(self, name: str, origin: str = "adapter") -> Optional[MergeResult]:
        """Recompute one job's candidates and selection and merge the result."""
        sync = self.sync
        document = sync.document
        job = document.get(name)
        base_version = sync.version(name)
        resolution = resolve_reference(job, document.jobs)
        derivation = derive(job, resolution, snapshot=self._snapshots.get(name), mode=self.mode)
        self._signatures[name] = data_signature(resolution.root)
        if derivation is None:
            return None

        self.handles[job.key] = {
            "candidates": derivation.candidates,
            "confirmed_empty": derivation.confirmed_empty,
            "missing_source": derivation.missing_source,
        }
        return sync.merge(
            EditIntent(derivation.job, base_version, confirmed_empty=derivation.confirmed_empty, origin=origin)
        )

    def refresh_all(self) -> None:
        for job in self.document.jobs:
            self.refresh(job.name)
        self._propagate()

    def _on_change(self, name: str, result: MergeResult) -> None:
        self._propagate()

    def _propagate(self) -> None:
        """
        Recompute fromjob jobs whose root changed what it exposes.

        Each pass settles at least one more link of every chain, so the
        number of passes is bounded by the job count.
        """
        if self._propagating:
            return
        self._propagating = True
        try:
            passes = max(1, min(len(self.document.jobs), settings.MAX_PROPAGATION_PASSES))
            for _ in range(passes):
                stale = self._outdated_dependents()
                if not stale:
                    return
                for name in stale:
                    self.refresh(name)
            if self._outdated_dependents():
                get_console().print_warning("fromjob recomputation did not settle; some jobs may show old targets")
        finally:
            self._propagating = False

    def _outdated_dependents(self) -> List[str]:
        document = self.document
        jobs = document.jobs
        out = []
        for job in jobs:
            if not job.is_fromjob:
                continue
            root = resolve_reference(job, jobs).root
            if data_signature(root) != self._signatures.get(job.name):
                out.append(job.name)
        return out

    # ------------------------------------------------------------------
    # Edits
    # ------------------------------------------------------------------

    def edit(self, name: str, fn: Callable[[Job], Job]) -> MergeResult:
        """Apply a user edit. Users may deliberately clear a selection."""
        return self.sync.edit(name, fn, confirmed_empty=True, origin="user")

    def select(self, name: str, keys: Iterable[str]) -> MergeResult:
        """Pick targets of a job by identity key, in the given order."""
        job = self.job(name)
        key_fn = config_key if job.kind is JobType.NACOS else module_key
        offered = {key_fn(c): c for c in self.candidates(name)}
        keys = list(keys)
        unknown = [k for k in keys if k not in offered]
        if unknown:
            raise LaunchError(
                kind="unknown_target",
                job=name,
                message=f"not offered by {name}: {', '.join(unknown)}",
                details={"offered": sorted(offered)},
            )
        picks = [offered[k] for k in keys]

        if job.kind is JobType.DEPLOY and not job.is_fromjob:
            result = self.edit(name, lambda j: j.with_selection(picked_modules=picks))
            # rebuild service targets and variables for the new modules
            self.refresh(name)
            return result
        return self.edit(name, lambda j: j.with_selection(picked_targets=picks))

    def edit_spec(self, name: str, changes: Dict[str, Any]) -> MergeResult:
        """Change leaf values of a job's spec and recompute the job."""
        fixed = sorted(k for k in changes if k in CORE_SPEC_FIELDS)
        if fixed:
            raise ImmutableFieldError(
                kind="immutable_field",
                job=name,
                message=f"cannot change {', '.join(fixed)} during a session",
                details={"fields": fixed},
            )
        result = self.edit(name, lambda j: j.with_spec(**changes))
        self.refresh(name)
        return result

    def edit_config_content(self, name: str, item_key: str, content: str) -> MergeResult:
        """Set the new content of a picked config item; its diff is recomputed."""
        job = self.job(name)
        if job.kind is not JobType.NACOS:
            raise LaunchError(kind="wrong_job_type", job=name, message=f"{name} is not a config-change job")
        if not any(config_key(i) == item_key for i in job.selection.picked_targets or []):
            raise LaunchError(kind="unknown_target", job=name, message=f"{name} has no picked config {item_key}")
        return self.edit(name, lambda j: NacosAdapter().with_content(j, item_key, content))

    def toggle_job(self, name: str) -> MergeResult:
        result = self.sync.toggle_job(name)
        self._prune()
        return result

    def toggle_exec_stage_job(self, name: str) -> MergeResult:
        result = self.sync.toggle_exec_stage_job(name)
        self._prune()
        return result

    def _prune(self) -> None:
        dropped = prune_handles(self.handles, self.active_keys())
        for key in dropped:
            get_console().print_debug(f"released handle of inactive job {key[1]}")
        # jobs that came back get their handle again
        for job in active_jobs(self.document, stage_exec_mode=self.mode.stage_exec_mode):
            if job.key not in self.handles:
                self.refresh(job.name)

    # ------------------------------------------------------------------
    # Enrichment
    # ------------------------------------------------------------------

    async def enrich(self, name: str, kind: str, key: str, fetch: Fetch) -> Optional[MergeResult]:
        """Run one lookup for a job; an applied answer triggers a recompute of that job."""
        result = await self.broker.request(name, kind, key, fetch)
        if result is not None and result.changed:
            # follow-up of the lookup, not a user change
            self.refresh(name, origin="enrichment")
        return result

    async def lookup(self, name: str, kind: str, key: str) -> Optional[MergeResult]:
        """Run a gateway lookup for a job (see `lookups.fetch_for` for the kinds)."""
        if self.gateway is None:
            raise SubmissionError(kind="no_gateway", job=name, message="no gateway configured for lookups")
        fetch = fetch_for(self.gateway, self.job(name), kind, key, self.context.project_name)
        return await self.enrich(name, kind, key, fetch)

    # ------------------------------------------------------------------
    # Validation and submission
    # ------------------------------------------------------------------

    def validate(self) -> ValidationReport:
        return validate_document(self.document, stage_exec_mode=self.mode.stage_exec_mode)

    def pending_jobs(self) -> List[str]:
        """Active jobs still waiting on a lookup that must finish before submit."""
        out = []
        for job in active_jobs(self.document, stage_exec_mode=self.mode.stage_exec_mode):
            adapter = adapter_for(job)
            if adapter is not None and adapter.pending(job):
                out.append(job.name)
        return out

    def build_payload(self, debug: bool = False) -> Dict[str, Any]:
        self.last_payload = build_payload(self.document, debug=debug, mode=self.mode)
        return self.last_payload

    def submit(self, debug: bool = False) -> int:
        """
        Validate, serialize and submit. All or nothing: any failure leaves the
        document exactly as it was so the user can fix it and retry.
        """
        self._ensure_open()
        if self.gateway is None:
            raise SubmissionError(kind="no_gateway", job="", message="no gateway configured to submit the run")

        pending = self.pending_jobs()
        if pending:
            raise SubmissionError(
                kind="pending",
                job=pending[0],
                message=f"still loading data for: {', '.join(pending)}",
                details={"jobs": pending},
            )

        self.validate().raise_first()
        payload = self.build_payload(debug=debug)
        try:
            task_id = self.gateway.run_workflow(self.context.workitem_type_key, self.context.workitem_id, payload)
        except APIError as e:
            message = str(e) or "workflow run failed"
            self.notify(message)
            raise SubmissionError(kind="rejected", job="", message=message, details={"status": e.status}) from e

        self.task_id = task_id
        self.notify(f"run created (task {task_id})")
        if self.context.navigate is not None:
            self.context.navigate(str(task_id))
        return task_id

    # ------------------------------------------------------------------
    # Notifications and lifetime
    # ------------------------------------------------------------------

    def notify(self, message: str) -> bool:
        """Show a message once per session. Returns False for repeats."""
        if message in self._notified:
            return False
        self._notified.add(message)
        get_console().print_info(message)
        return True

    def summary(self) -> List[Dict[str, Any]]:
        """Per-job overview for CLI and HTTP views."""
        document = self.document
        active = self.active_keys()
        out = []
        for stage in document.stages:
            for job in stage.jobs:
                sel = job.selection
                out.append(
                    {
                        "stage": stage.name,
                        "name": job.name,
                        "type": job.type,
                        "source": job.source,
                        "active": job.key in active,
                        "skipped": job.skipped,
                        "run_policy": job.run_policy,
                        "missing_source": job.missing_source,
                        "ref_job": job.ref_info.job_name if job.ref_info else None,
                        "picked_targets": len(sel.picked_targets or []),
                        "picked_modules": len(sel.picked_modules or []),
                        "version": self.sync.version(job.name),
                    }
                )
        return out

    def close(self) -> None:
        if self.closed:
            return
        if self._unsubscribe is not None:
            self._unsubscribe()
        self.handles.clear()
        self._snapshots.clear()
        self._signatures.clear()
        self._notified.clear()
        self.last_payload = None
        self._sync = None
        self._broker = None
        self.closed = True

    def __enter__(self) -> "RunSession":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def _ensure_usable(self) -> None:
        if self.closed:
            raise LaunchError(kind="session_closed", job="", message="session is closed")

    def _ensure_open(self) -> None:
        self._ensure_usable()
        if self._sync is None:
            raise LaunchError(kind="session_not_open", job="", message="no workflow loaded in this session")
