# adapters/sql.py
from __future__ import annotations

from typing import Any, Dict, List, Optional

from ..diffing import diff_lines
from ..model import Job, JobType
from ..resolve import Resolution
from .base import DeriveMode, Derivation, JobAdapter, Record, strip_keys, wire_job

# editor-only spec keys
SQL_UI_KEYS = ("database_options", "preset_sql", "sql_diff", "sql_errors")


class SqlAdapter(JobAdapter):
    """Database-change jobs: a statement run against one chosen connection."""
    kind = JobType.SQL

    def preprocess(self, job: Job) -> Job:
        if "preset_sql" in job.spec:
            return job
        return job.with_spec(preset_sql=job.spec.get("sql", "") or "")

    def derive(
        self,
        job: Job,
        resolution: Resolution,
        upstream: Optional[List[Record]],
        snapshot: Optional[Any] = None,
        mode: DeriveMode = DeriveMode(),
    ) -> Derivation:
        databases = snapshot if snapshot is not None else job.spec.get("database_options")
        diff = diff_lines(job.spec.get("preset_sql", ""), job.spec.get("sql", ""))
        if databases is None:
            # connection listing not loaded: keep the chosen id as is
            return Derivation(job=job.with_spec(sql_diff=diff), candidates=[], confirmed_empty=False)

        changes: Dict[str, Any] = {"sql_diff": diff}
        chosen = job.spec.get("id")
        if chosen and not any(d.get("id") == chosen for d in databases):
            changes["id"] = ""
            changes["type"] = None
        return Derivation(job=job.with_spec(**changes), candidates=list(databases))

    def with_database(self, job: Job, database_id: str) -> Job:
        """Choosing another connection clears the statement."""
        databases = job.spec.get("database_options") or []
        match = next((d for d in databases if d.get("id") == database_id), None)
        return job.with_spec(
            id=database_id,
            sql="",
            type=match.get("type") if (database_id and match) else None,
            sql_errors=[],
        )

    def validate(self, job: Job, resolution: Resolution) -> Optional[str]:
        if not job.spec.get("id"):
            return "select a database"
        if not (job.spec.get("sql") or "").strip():
            return "SQL statement is empty"
        return None

    def serialize(self, job: Job, mode: DeriveMode = DeriveMode()) -> Dict[str, Any]:
        out = wire_job(job)
        strip_keys(out["spec"], SQL_UI_KEYS)
        return out

    def apply_enrichment(self, job: Job, kind: str, key: str, result: Any) -> Job:
        """
        `databases`: connection listing for the project
        `sql_check`: statement errors for the current statement (key = statement)
        """
        if kind == "databases":
            return job.with_spec(database_options=list(result or []))
        if kind == "sql_check":
            # a check for an older statement says nothing about the current one
            if key != (job.spec.get("sql") or ""):
                return job
            return job.with_spec(sql_errors=list(result) if isinstance(result, list) else [])
        return job
