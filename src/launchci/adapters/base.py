# adapters/base.py
from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional

from ..errors import ValidationFailure
from ..model import Job, JobType, module_key
from ..resolve import Resolution

Record = Dict[str, Any]
KeyFn = Callable[[Record], str]


@dataclass(frozen=True)
class DeriveMode:
    """How the session was opened; changes where adapters read defaults from."""
    stage_exec_mode: bool = False
    edit_runner: bool = False
    release_plan: bool = False

    @property
    def reuse_saved(self) -> bool:
        # stage execution and editing start from what was saved, not from options
        return self.stage_exec_mode or self.edit_runner


@dataclass(frozen=True)
class Derivation:
    """
    Output of an adapter pass over one job.

      job:             the job with recomputed selection (not yet merged)
      candidates:      what the job could select right now
      confirmed_empty: candidates were computed from complete data, so an
                       empty result is real and may overwrite a selection
      missing_source:  fromjob job whose chain yields no usable root
    """
    job: Job
    candidates: List[Record] = field(default_factory=list)
    confirmed_empty: bool = True
    missing_source: bool = False


# Keys that only exist for the editor (loading flags, fetched caches).
UI_RECORD_KEYS = (
    "fetched",
    "loading",
    "images",
    "filter_images",
    "is_expand",
    "key",
    "cloneData",
    "repoIsFetched",
    "activeNames",
    "showAdvanced",
)

UI_REPO_KEYS = (
    "branch_names",
    "branch_prs_map",
    "branch_and_tag_list",
    "branch_or_tag",
    "pr_number_prop_name",
    "_id_",
    "tags",
    "repoSync",
)

REPO_SYNC_FIELDS = ("commit_id", "branch", "tag", "branch_or_tag", "prs")


# ---------------------------------------------------------------------
# Record helpers
# ---------------------------------------------------------------------

def keyed(items: Optional[Iterable[Record]], key: KeyFn = module_key) -> List[Record]:
    """Deep copies of items with their identity `key` filled in."""
    out = []
    for item in items or []:
        item = copy.deepcopy(item)
        item["key"] = key(item)
        out.append(item)
    return out


def key_set(items: Optional[Iterable[Record]], key: KeyFn = module_key) -> set:
    return {key(i) for i in items or []}


def filter_by_keys(items: Iterable[Record], keys: set, key: KeyFn = module_key) -> List[Record]:
    return [copy.deepcopy(i) for i in items if key(i) in keys]


def preserve_picks(candidates: List[Record], previous: Optional[List[Record]], key: KeyFn = module_key) -> List[Record]:
    """
    Keep every previous pick still offered, in the user's order.

    The user's own edits on a record win over fresh candidate data.
    """
    if not previous:
        return []
    offered = {key(c): c for c in candidates}
    out = []
    for pick in previous:
        k = key(pick)
        if k in offered:
            merged = copy.deepcopy(offered[k])
            merged.update(copy.deepcopy(pick))
            out.append(merged)
    return out


def inherit_all(candidates: List[Record], previous: Optional[List[Record]], key: KeyFn = module_key) -> List[Record]:
    """fromjob jobs select every candidate; upstream data wins over old picks."""
    prev = {key(p): p for p in previous or []}
    out = []
    for cand in candidates:
        merged = copy.deepcopy(prev.get(key(cand), {}))
        merged.update(copy.deepcopy(cand))
        out.append(merged)
    return out


def strip_keys(record: Record, keys: Iterable[str]) -> Record:
    for k in keys:
        record.pop(k, None)
    return record


def sync_ref_repos(targets: List[Record], upstream: List[Record]) -> List[Record]:
    """Copy resolved code references from matching upstream repos (marks repoSync)."""
    by_key = {module_key(u): u for u in upstream}
    for target in targets:
        origin = by_key.get(module_key(target))
        if not origin or not target.get("repos") or not origin.get("repos"):
            continue
        for repo in target["repos"]:
            match = next(
                (
                    r for r in origin["repos"]
                    if r.get("repo_owner") == repo.get("repo_owner")
                    and r.get("repo_namespace") == repo.get("repo_namespace")
                    and r.get("repo_name") == repo.get("repo_name")
                ),
                None,
            )
            if match is None:
                continue
            for f in REPO_SYNC_FIELDS:
                repo[f] = copy.deepcopy(match.get(f))
            repo["repoSync"] = True
    return targets


def _pr_parts(prs: str) -> List[str]:
    return [p for p in (x.strip() for x in prs.split(",")) if p]


def invalid_pull_requests(prs: Any) -> List[str]:
    """Entries of a comma-separated PR list that are not numbers."""
    if not isinstance(prs, str):
        return []
    return [p for p in _pr_parts(prs) if not p.isdigit()]


def normalize_repo(repo: Record) -> Record:
    """Collapse editor-side code reference fields into what the backend expects."""
    prs = repo.get("prs")
    if isinstance(prs, str):
        bad = invalid_pull_requests(prs)
        if bad:
            raise ValidationFailure(
                kind="validation",
                job="",
                message=f"repository {repo.get('repo_name', '')} has invalid pull request numbers: {', '.join(bad)}",
            )
        repo["prs"] = [int(p) for p in _pr_parts(prs)]
    choice = repo.get("branch_or_tag")
    if isinstance(choice, dict):
        if choice.get("type") == "branch":
            repo["branch"] = choice.get("name", "")
        elif choice.get("type") == "tag":
            repo["tag"] = choice.get("name", "")
    if repo.get("source") == "perforce":
        if repo.get("changelist_id", "") == "":
            repo["changelist_id"] = 0
        if repo.get("shelve_id", "") == "":
            repo["shelve_id"] = 0
    return strip_keys(repo, UI_REPO_KEYS)


def clean_record(record: Record) -> Record:
    """Normalize repos and drop UI caches from one service/module record."""
    for repo in record.get("repos") or []:
        normalize_repo(repo)
    for module in record.get("modules") or []:
        if isinstance(module, dict):
            strip_keys(module, UI_RECORD_KEYS)
    return strip_keys(record, UI_RECORD_KEYS)


def clean_records(records: Optional[Iterable[Record]]) -> List[Record]:
    return [clean_record(r) for r in records or []]


def has_code_reference(repo: Record) -> bool:
    if repo.get("repoSync"):
        return True
    choice = repo.get("branch_or_tag")
    if isinstance(choice, dict) and choice.get("name"):
        return True
    if repo.get("branch") or repo.get("tag"):
        return True
    prs = repo.get("prs")
    if isinstance(prs, str):
        return bool(prs.strip())
    return bool(prs)


def apply_branches(records: List[Record], key: str, result: Any) -> List[Record]:
    """Fill per-repo branch/tag/PR caches of the record identified by `key`."""
    infos = {r.get("repo_name"): r for r in result or []}
    for record in records:
        if module_key(record) != key:
            continue
        for repo in record.get("repos") or []:
            info = infos.get(repo.get("repo_name"))
            if info is None:
                continue
            branches = [b.get("name") for b in info.get("branches") or []]
            tags = [t.get("name") for t in info.get("tags") or []]
            repo["branch_names"] = branches
            repo["branch_and_tag_list"] = (
                [{"type": "branch", "name": b, "id": f"branch-{b}"} for b in branches]
                + [{"type": "tag", "name": t, "id": f"tag-{t}"} for t in tags]
            )
            repo["branch_prs_map"] = _prs_by_branch(info.get("prs") or [])
            if not repo.get("branch_or_tag"):
                if repo.get("branch"):
                    repo["branch_or_tag"] = {"type": "branch", "name": repo["branch"], "id": f"branch-{repo['branch']}"}
                elif repo.get("tag"):
                    repo["branch_or_tag"] = {"type": "tag", "name": repo["tag"], "id": f"tag-{repo['tag']}"}
        record["repoIsFetched"] = True
    return records


def _prs_by_branch(prs: List[Record]) -> Dict[str, List[Record]]:
    out: Dict[str, List[Record]] = {}
    for pr in prs:
        out.setdefault(pr.get("targetBranch", ""), []).append(pr)
    return out


# ---------------------------------------------------------------------
# Adapter contract
# ---------------------------------------------------------------------

class JobAdapter:
    """
    Per-kind editing strategy.

    Adapters never touch the shared document: they take a job snapshot and
    return a new job (via Derivation) for the synchronizer to merge.
    """
    kind: JobType

    # ---- load-time normalisation ----
    def preprocess(self, job: Job) -> Job:
        """Fill identity keys and defaults once, when the preset is loaded."""
        return job

    # ---- what dependents may read from this job ----
    def exposed_targets(self, job: Job) -> List[Record]:
        return []

    # ---- candidate computation ----
    def derive(
        self,
        job: Job,
        resolution: Resolution,
        upstream: Optional[List[Record]],
        snapshot: Optional[Any] = None,
        mode: DeriveMode = DeriveMode(),
    ) -> Derivation:
        raise NotImplementedError

    def missing(self, job: Job) -> Derivation:
        """fromjob with no usable root: nothing to offer, flag the job."""
        return Derivation(job=job.evolve(missing_source=True), candidates=[], confirmed_empty=False, missing_source=True)

    # ---- validation ----
    def validate(self, job: Job, resolution: Resolution) -> Optional[str]:
        return None

    # ---- serialization ----
    def serialize(self, job: Job, mode: DeriveMode = DeriveMode()) -> Dict[str, Any]:
        raise NotImplementedError

    # ---- asynchronous enrichment ----
    def begin_enrichment(self, job: Job, kind: str, key: str) -> Job:
        """Mark a request in flight (e.g. a loading flag); default: no change."""
        return job

    def apply_enrichment(self, job: Job, kind: str, key: str, result: Any) -> Job:
        return job

    def fail_enrichment(self, job: Job, kind: str, key: str) -> Job:
        return job

    def pending(self, job: Job) -> bool:
        """True while an enrichment this job needs before submit is in flight."""
        return False


def wire_job(job: Job) -> Dict[str, Any]:
    """Start of every serializer transform: job dict without editor state."""
    out = job.to_dict()
    out.pop("pickedTargets", None)
    out.pop("pickedModules", None)
    out.pop("refInfo", None)
    return out
