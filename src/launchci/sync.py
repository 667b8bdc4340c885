# sync.py
from __future__ import annotations

import json
from dataclasses import dataclass, replace
from typing import Callable, Dict, List, Optional

from .model import Job, WorkflowDocument
from .plan import exec_stage_toggled, toggled
from .resolve import refresh_ref_info
from .ui.console import get_console

APPLIED = "applied"
NOOP = "noop"
STALE = "stale"
GUARDED = "guarded"


@dataclass(frozen=True)
class EditIntent:
    """
    A locally edited job, submitted for merge.

      base_version:    job version the edit was computed against
      confirmed_empty: an empty selection is real, not a transient render
      origin:          "user", "adapter", "enrichment" or "toggle"
    """
    job: Job
    base_version: int
    confirmed_empty: bool = False
    origin: str = "user"


@dataclass(frozen=True)
class MergeResult:
    status: str
    version: int
    job_name: str = ""

    @property
    def changed(self) -> bool:
        return self.status == APPLIED


Listener = Callable[[str, MergeResult], None]


def content_of(job: Job) -> str:
    """Canonical text of everything an edit may change on a job."""
    return json.dumps(
        {
            "spec": job.spec,
            "selection": job.selection.to_dict(),
            "skipped": job.skipped,
            "run_policy": job.run_policy,
            "ref_info": [job.ref_info.job_name, job.ref_info.skipped] if job.ref_info else None,
            "missing_source": job.missing_source,
        },
        sort_keys=True,
        default=str,
    )


class ChangeSynchronizer:
    """
    Sole writer of the WorkflowDocument.

    Each job carries a version that goes up on every applied write; edits
    computed against an older version are rejected as stale. The revision
    counts only writes that change what the user configured, so lookup
    bookkeeping (loading flags, fetched lists) does not outdate other lookups.
    """

    def __init__(self, document: WorkflowDocument):
        self._document = document
        self._versions: Dict[str, int] = {j.name: 0 for j in document.iter_jobs()}
        self._revisions: Dict[str, int] = {j.name: 0 for j in document.iter_jobs()}
        self._snapshots: Dict[str, str] = {j.name: content_of(j) for j in document.iter_jobs()}
        self._listeners: List[Listener] = []

    @property
    def document(self) -> WorkflowDocument:
        return self._document

    def version(self, name: str) -> int:
        self._document.get(name)
        return self._versions[name]

    def revision(self, name: str) -> int:
        self._document.get(name)
        return self._revisions[name]

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ------------------------------------------------------------------
    # Merge
    # ------------------------------------------------------------------

    def merge(self, intent: EditIntent) -> MergeResult:
        name = intent.job.name
        current = self._document.get(name)
        version = self._versions[name]
        incoming = intent.job

        if content_of(incoming) == self._snapshots[name]:
            return MergeResult(NOOP, version, name)

        if intent.base_version < version:
            get_console().print_debug(
                f"discarded {intent.origin} edit of {name}: computed at v{intent.base_version}, now v{version}"
            )
            return MergeResult(STALE, version, name)

        if (
            not current.selection.is_empty()
            and incoming.selection.is_empty()
            and not intent.confirmed_empty
        ):
            # an unconfirmed empty selection must not erase a real one
            incoming = replace(incoming, selection=current.selection)
            get_console().print_debug(f"kept selection of {name}: incoming empty selection is unconfirmed")
            if content_of(incoming) == self._snapshots[name]:
                return MergeResult(GUARDED, version, name)

        result = self._write(incoming, APPLIED, intent.origin)
        self._notify(result)
        return result

    def edit(self, name: str, fn: Callable[[Job], Job], *, confirmed_empty: bool = False, origin: str = "user") -> MergeResult:
        """Read-modify-merge against the current version."""
        job = self._document.get(name)
        return self.merge(EditIntent(fn(job), self._versions[name], confirmed_empty, origin))

    # ------------------------------------------------------------------
    # Skip toggles
    # ------------------------------------------------------------------

    def toggle_job(self, name: str) -> MergeResult:
        return self._toggle(name, toggled)

    def toggle_exec_stage_job(self, name: str) -> MergeResult:
        return self._toggle(name, exec_stage_toggled)

    def _toggle(self, name: str, flip: Callable[[Job], Optional[Job]]) -> MergeResult:
        job = self._document.get(name)
        flipped = flip(job)
        if flipped is None:
            get_console().print_debug(f"{name} is force_run and cannot be skipped")
            return MergeResult(NOOP, self._versions[name], name)

        result = self._write(flipped, APPLIED, "toggle")
        changed = [result]
        # skipping a job may break (or repair) chains elsewhere
        refreshed = refresh_ref_info(self._document)
        for job in refreshed.iter_jobs():
            if content_of(job) != self._snapshots[job.name]:
                changed.append(self._write(job, APPLIED, "toggle"))
        for r in changed:
            self._notify(r)
        return result

    # ------------------------------------------------------------------

    def _write(self, job: Job, status: str, origin: str = "user") -> MergeResult:
        self._document = self._document.replace_job(job)
        self._versions[job.name] += 1
        if origin != "enrichment":
            self._revisions[job.name] += 1
        self._snapshots[job.name] = content_of(job)
        return MergeResult(status, self._versions[job.name], job.name)

    def _notify(self, result: MergeResult) -> None:
        for listener in list(self._listeners):
            listener(result.job_name, result)
