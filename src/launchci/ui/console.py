"""Console output formatting utilities for LaunchCI."""

from __future__ import annotations

import sys
from typing import Iterable, List, Optional, Tuple


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
        """
        self.debug = debug

    def print_session_opened(self, workflow: str, project: str, job_count: int) -> None:
        """Print session start information."""
        print("\nSESSION OPENED")
        print(f"Workflow: {workflow}")
        print(f"Project: {project}")
        print(f"Jobs: {job_count}")
        print()

    def print_plan_job(self, name: str, kind: str) -> None:
        """Print one active job of the plan."""
        print(f"  {name} ({kind})")

    def print_plan_job_skipped(self, name: str, reason: str) -> None:
        """Print job left out of the plan."""
        print(f"  {name} (skipped: {reason})")

    def print_missing_sources(self, names: Iterable[str]) -> None:
        names = list(names)
        if not names:
            return
        print("\nMISSING SOURCE JOBS")
        for name in names:
            print(f"  {name} is skipped but other jobs take data from it")

    def print_validation(self, failures: List[Tuple[str, str]]) -> None:
        """Print validation outcome; the first failure is the blocking one."""
        if not failures:
            print("VALIDATION: ok")
            return
        job, message = failures[0]
        print(f"VALIDATION FAILED: {job}", file=sys.stderr)
        print(f"Error: {message}", file=sys.stderr)
        if self.debug:
            for job, message in failures[1:]:
                print(f"  also: {job}: {message}", file=sys.stderr)

    def print_submitted(self, task_id: int, workflow: str) -> None:
        print("\nRUN SUBMITTED")
        print(f"Workflow: {workflow}")
        print(f"Task ID: {task_id}")

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        print(f"\nERROR: {title}", file=sys.stderr)
        print(f"{message}", file=sys.stderr)
        if details:
            for detail in details:
                print(f"  {detail}", file=sys.stderr)
        if suggestion:
            print(f"\n{suggestion}", file=sys.stderr)

    def print_exception(self, exc: Exception) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            traceback.print_exc()
        else:
            print(f"Error: {exc}", file=sys.stderr)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        print(message)

    def print_warning(self, message: str) -> None:
        """Print a warning; engine problems that were absorbed end up here."""
        print(f"WARNING: {message}", file=sys.stderr)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            print(f"[DEBUG] {message}", file=sys.stderr)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
