# model.py
from __future__ import annotations

import copy
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple

from .errors import DuplicateJobError, UnknownJobError


class JobType(str, Enum):
    """Job kinds the editor knows how to handle (backend wire names)."""
    BUILD = "zadig-build"
    DEPLOY = "zadig-deploy"
    SCANNING = "zadig-scanning"
    TEST = "zadig-test"
    SQL = "sql"
    NACOS = "nacos"
    APPROVAL = "approval"

    @classmethod
    def parse(cls, value: str) -> Optional["JobType"]:
        try:
            return cls(value)
        except ValueError:
            return None


class Source(str, Enum):
    RUNTIME = "runtime"
    FROMJOB = "fromjob"
    FIXED = "fixed"


class RunPolicy(str, Enum):
    FORCE_RUN = "force_run"
    DEFAULT = ""
    DEFAULT_NOT_RUN = "default_not_run"
    SKIP = "skip"


ACTIVE_RUN_POLICIES = (RunPolicy.FORCE_RUN.value, RunPolicy.DEFAULT.value, RunPolicy.DEFAULT_NOT_RUN.value)


def module_key(item: Dict[str, Any]) -> str:
    """Stable identity of a service/module record."""
    return f"{item.get('service_name', '')}/{item.get('service_module', '')}"


def config_key(item: Dict[str, Any]) -> str:
    """Stable identity of a config item (group + namespace + data id)."""
    return f"{item.get('group', '')}/{item.get('namespace_name', '')}/{item.get('data_id', '')}"


@dataclass(frozen=True)
class RefInfo:
    """Where a fromjob chain ends, and whether that root is skipped."""
    job_name: str
    skipped: bool

    @property
    def broken(self) -> bool:
        return self.skipped


@dataclass(frozen=True)
class Selection:
    """
    User-confirmed picks for a job.

    None  -> never set (adapters may seed defaults from the preset)
    []    -> explicitly empty
    """
    picked_targets: Optional[List[Dict[str, Any]]] = None
    picked_modules: Optional[List[Dict[str, Any]]] = None

    def is_empty(self) -> bool:
        return not self.picked_targets and not self.picked_modules

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        if self.picked_targets is not None:
            out["pickedTargets"] = copy.deepcopy(self.picked_targets)
        if self.picked_modules is not None:
            out["pickedModules"] = copy.deepcopy(self.picked_modules)
        return out


@dataclass(frozen=True)
class Job:
    """
    One configurable unit of a pipeline run.

    `spec` is the backend's polymorphic job spec, kept as plain data.
    Core fields (type, source, reference pointers) never change during a
    session; selection, skip state, run policy and leaf values do.
    """
    name: str
    type: str
    spec: Dict[str, Any] = field(default_factory=dict)
    skipped: bool = False
    run_policy: str = ""
    selection: Selection = field(default_factory=Selection)
    ref_info: Optional[RefInfo] = None
    # set by adapters when a fromjob chain yields no usable root; never serialized
    missing_source: bool = False
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def kind(self) -> Optional[JobType]:
        return JobType.parse(self.type)

    @property
    def source(self) -> str:
        return self.spec.get("source", "") or ""

    @property
    def is_fromjob(self) -> bool:
        return self.source == Source.FROMJOB.value

    @property
    def origin_job_name(self) -> str:
        # origin_job_name wins over the legacy job_name alias
        return self.spec.get("origin_job_name") or self.spec.get("job_name") or ""

    @property
    def key(self) -> Tuple[str, str]:
        return self.type, self.name

    def evolve(self, **changes: Any) -> "Job":
        """Copy-on-write update; nested data passed in is deep-copied."""
        return replace(self, **{k: copy.deepcopy(v) for k, v in changes.items()})

    def with_spec(self, **spec_changes: Any) -> "Job":
        spec = copy.deepcopy(self.spec)
        spec.update(copy.deepcopy(spec_changes))
        return replace(self, spec=spec)

    def with_selection(
        self,
        picked_targets: Optional[List[Dict[str, Any]]] = None,
        picked_modules: Optional[List[Dict[str, Any]]] = None,
    ) -> "Job":
        sel = Selection(
            picked_targets=copy.deepcopy(picked_targets) if picked_targets is not None else self.selection.picked_targets,
            picked_modules=copy.deepcopy(picked_modules) if picked_modules is not None else self.selection.picked_modules,
        )
        return replace(self, selection=sel)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Job":
        data = copy.deepcopy(data)
        selection_data = data.pop("selection", None) or {}
        picked_targets = data.pop("pickedTargets", selection_data.get("pickedTargets"))
        picked_modules = data.pop("pickedModules", selection_data.get("pickedModules"))
        ref = data.pop("refInfo", None)
        job = cls(
            name=data.pop("name"),
            type=data.pop("type", ""),
            spec=data.pop("spec", None) or {},
            skipped=bool(data.pop("skipped", False)),
            run_policy=data.pop("run_policy", "") or "",
            selection=Selection(picked_targets=picked_targets, picked_modules=picked_modules),
            ref_info=RefInfo(job_name=ref["jobName"], skipped=bool(ref["skipped"])) if ref else None,
            extra=data,
        )
        return job

    def to_dict(self) -> Dict[str, Any]:
        out = copy.deepcopy(self.extra)
        out.update(
            {
                "name": self.name,
                "type": self.type,
                "skipped": self.skipped,
                "run_policy": self.run_policy,
                "spec": copy.deepcopy(self.spec),
            }
        )
        out.update(self.selection.to_dict())
        if self.ref_info is not None:
            out["refInfo"] = {"jobName": self.ref_info.job_name, "skipped": self.ref_info.skipped}
        return out


@dataclass(frozen=True)
class Stage:
    name: str
    jobs: Tuple[Job, ...] = ()
    exec_stage: bool = False
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Stage":
        data = copy.deepcopy(data)
        jobs = tuple(Job.from_dict(j) for j in data.pop("jobs", None) or [])
        return cls(
            name=data.pop("name", ""),
            jobs=jobs,
            exec_stage=bool(data.pop("execStage", False)),
            extra=data,
        )

    def to_dict(self) -> Dict[str, Any]:
        out = copy.deepcopy(self.extra)
        out["name"] = self.name
        out["jobs"] = [j.to_dict() for j in self.jobs]
        if self.exec_stage:
            out["execStage"] = True
        return out


@dataclass(frozen=True)
class WorkflowDocument:
    """
    The shared configuration tree: ordered stages of ordered jobs.

    Shape is fixed at load; only job contents change, and only through
    `replace_job` (which returns a new document).
    """
    stages: Tuple[Stage, ...] = ()
    name: str = ""
    remark: str = ""
    params: List[Dict[str, Any]] = field(default_factory=list)
    extra: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        names = [j.name for j in self.iter_jobs()]
        if len(set(names)) != len(names):
            dupes = sorted({n for n in names if names.count(n) > 1})
            raise DuplicateJobError(
                kind="duplicate_job",
                job=dupes[0],
                message=f"Duplicate job names found: {dupes}",
                details={"duplicates": dupes},
            )

    def iter_jobs(self) -> Iterator[Job]:
        for stage in self.stages:
            yield from stage.jobs

    @property
    def jobs(self) -> List[Job]:
        return list(self.iter_jobs())

    def job_map(self) -> Dict[str, Job]:
        return {j.name: j for j in self.iter_jobs()}

    def get(self, name: str) -> Job:
        for job in self.iter_jobs():
            if job.name == name:
                return job
        raise UnknownJobError(
            kind="unknown_job",
            job=name,
            message=f"No job named '{name}' in workflow",
            details={},
        )

    def stage_of(self, name: str) -> Stage:
        for stage in self.stages:
            if any(j.name == name for j in stage.jobs):
                return stage
        raise UnknownJobError(kind="unknown_job", job=name, message=f"No job named '{name}' in workflow", details={})

    def replace_job(self, job: Job) -> "WorkflowDocument":
        self.get(job.name)
        stages = tuple(
            replace(stage, jobs=tuple(job if j.name == job.name else j for j in stage.jobs))
            for stage in self.stages
        )
        return replace(self, stages=stages)

    def map_jobs(self, fn) -> "WorkflowDocument":
        stages = tuple(replace(stage, jobs=tuple(fn(j) for j in stage.jobs)) for stage in self.stages)
        return replace(self, stages=stages)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkflowDocument":
        data = copy.deepcopy(data)
        stages = tuple(Stage.from_dict(s) for s in data.pop("stages", None) or [])
        return cls(
            stages=stages,
            name=data.pop("name", "") or data.get("workflow_name", "") or "",
            remark=data.pop("remark", "") or "",
            params=data.pop("params", None) or [],
            extra=data,
        )

    def to_dict(self) -> Dict[str, Any]:
        out = copy.deepcopy(self.extra)
        out["name"] = self.name
        out["remark"] = self.remark
        out["params"] = copy.deepcopy(self.params)
        out["stages"] = [s.to_dict() for s in self.stages]
        return out
