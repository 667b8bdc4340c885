# validate.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from .adapters import adapter_for
from .errors import ValidationFailure
from .model import WorkflowDocument
from .plan import active_jobs
from .resolve import missing_source_jobs, resolve_reference


@dataclass
class ValidationReport:
    """Every failure found, in document order. Only the first one blocks."""
    failures: List[ValidationFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def first(self) -> Optional[ValidationFailure]:
        return self.failures[0] if self.failures else None

    def messages(self) -> List[Tuple[str, str]]:
        return [(f.job, f.message) for f in self.failures]

    def raise_first(self) -> None:
        if self.failures:
            raise self.failures[0]


def validate_document(document: WorkflowDocument, *, stage_exec_mode: bool = False) -> ValidationReport:
    """
    Check every active job.

    Broken fromjob chains come first: while a root is skipped nothing
    depending on it can be submitted. A fromjob job whose chain leads to
    no job at all fails in its own place.
    """
    report = ValidationReport()

    for name in missing_source_jobs(document):
        report.failures.append(
            ValidationFailure(
                kind="missing_source",
                job=name,
                message=f"job {name} is skipped but other jobs take their data from it",
            )
        )

    jobs = document.jobs
    for job in active_jobs(document, stage_exec_mode=stage_exec_mode):
        adapter = adapter_for(job)
        if adapter is None:
            continue
        resolution = resolve_reference(job, jobs)
        if job.is_fromjob and resolution.root is None:
            # dangling pointer; saved picks are not trusted
            report.failures.append(
                ValidationFailure(
                    kind="missing_source",
                    job=job.name,
                    message=f"job {job.name} takes its data from {job.origin_job_name or 'an unnamed job'}, which does not exist",
                )
            )
            continue
        message = adapter.validate(job, resolution)
        if message:
            report.failures.append(ValidationFailure(kind="validation", job=job.name, message=message))

    return report
