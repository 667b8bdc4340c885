# enrichment.py
from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from .adapters import adapter_for
from .errors import EnrichmentFailure
from .sync import STALE, ChangeSynchronizer, MergeResult
from .ui.console import get_console

Fetch = Callable[[], Awaitable[Any]]
RequestKey = Tuple[str, str, str]  # (job, kind, key)


class EnrichmentBroker:
    """
    Runs lookups for adapters and applies the answers.

    A response is applied only if nothing the user configured on the job
    changed since the request was made (see `ChangeSynchronizer.revision`)
    and the job is still active. Lookups on one job do not outdate each
    other. Lookup failures stop here: they are reported and remembered as
    unavailable, never raised.
    """

    def __init__(self, sync: ChangeSynchronizer, is_active: Optional[Callable[[str], bool]] = None):
        self._sync = sync
        self._is_active = is_active or (lambda name: True)
        self.failures: Dict[RequestKey, EnrichmentFailure] = {}

    def unavailable(self, job_name: str, kind: str, key: str) -> bool:
        return (job_name, kind, key) in self.failures

    async def request(self, job_name: str, kind: str, key: str, fetch: Fetch) -> Optional[MergeResult]:
        console = get_console()
        job = self._sync.document.get(job_name)
        adapter = adapter_for(job)
        if adapter is None:
            console.print_warning(f"no enrichment for job {job_name} of unknown type {job.type}")
            return None

        self._sync.edit(job_name, lambda j: adapter.begin_enrichment(j, kind, key), origin="enrichment")
        revision = self._sync.revision(job_name)

        try:
            result = await fetch()
        except Exception as exc:
            failure = EnrichmentFailure(
                kind=kind,
                job=job_name,
                message=f"{kind} lookup failed: {exc}",
                details={"key": key},
            )
            self.failures[(job_name, kind, key)] = failure
            console.print_warning(f"{job_name}: {kind} for {key} is unavailable ({exc})")
            self._sync.edit(job_name, lambda j: adapter.fail_enrichment(j, kind, key), origin="enrichment")
            return None

        current_revision = self._sync.revision(job_name)
        if current_revision != revision:
            console.print_debug(f"dropped stale {kind} for {job_name}: requested at r{revision}, now r{current_revision}")
            # the answer is dropped, the in-flight marker must not outlive it
            self._sync.edit(job_name, lambda j: adapter.fail_enrichment(j, kind, key), origin="enrichment")
            return MergeResult(STALE, self._sync.version(job_name), job_name)
        if not self._is_active(job_name):
            console.print_debug(f"dropped {kind} for {job_name}: job is no longer active")
            self._sync.edit(job_name, lambda j: adapter.fail_enrichment(j, kind, key), origin="enrichment")
            return None

        self.failures.pop((job_name, kind, key), None)
        return self._sync.edit(
            job_name,
            lambda j: adapter.apply_enrichment(j, kind, key, result),
            confirmed_empty=True,
            origin="enrichment",
        )
