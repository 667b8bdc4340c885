# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict


@dataclass
class LaunchError(Exception):
    """
    Structured error with enough context for:
      - clean CLI output
      - rendering next to the offending job
      - debugging without full tracebacks
    """
    kind: str
    job: str
    message: str
    details: Dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}"]
        if self.job:
            lines.append(f"job={self.job}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


# ----------------------------------------------------------------------
# Illegal internal states (programmer faults, fail loudly)
# ----------------------------------------------------------------------

@dataclass
class ReferenceCycleError(LaunchError):
    """fromjob pointers loop back on themselves."""


@dataclass
class DuplicateJobError(LaunchError):
    pass


@dataclass
class UnknownJobError(LaunchError):
    pass


# ----------------------------------------------------------------------
# User-facing / recoverable
# ----------------------------------------------------------------------

@dataclass
class ValidationFailure(LaunchError):
    """A job is not ready to submit. `message` is shown to the user as-is."""

    def __str__(self) -> str:
        return f"{self.job}: {self.message}"


@dataclass
class ImmutableFieldError(LaunchError):
    """An edit tried to change a field fixed for the whole session (source, pointers, type)."""


@dataclass
class EnrichmentFailure(LaunchError):
    """A lookup (branches, images, configs...) failed. Absorbed by the broker."""


@dataclass
class SubmissionError(LaunchError):
    """The run could not be submitted; the document is left untouched."""

    def __str__(self) -> str:
        return self.message
