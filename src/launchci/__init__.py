from .errors import ImmutableFieldError, LaunchError, SubmissionError, ValidationFailure
from .model import Job, JobType, Selection, Stage, WorkflowDocument
from .session import RunSession
from .sync import ChangeSynchronizer, EditIntent, MergeResult

__version__ = "0.1.0"

__all__ = [
    "Job",
    "JobType",
    "Selection",
    "Stage",
    "WorkflowDocument",
    "ChangeSynchronizer",
    "EditIntent",
    "MergeResult",
    "RunSession",
    "LaunchError",
    "ImmutableFieldError",
    "SubmissionError",
    "ValidationFailure",
]
