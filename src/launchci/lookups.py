# lookups.py
# Gateway lookups behind each enrichment kind.
from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

from .enrichment import Fetch
from .errors import LaunchError
from .model import Job, config_key, module_key

Record = Dict[str, Any]


def _picked(job: Job, key: str, key_fn=module_key) -> Optional[Record]:
    return next((r for r in job.selection.picked_targets or [] if key_fn(r) == key), None)


def branch_query(record: Record) -> List[Record]:
    """Repos of one service module, in the shape the codehost lookup expects."""
    return [
        {
            "source": r.get("source"),
            "repo_owner": r.get("repo_owner"),
            "repo": r.get("repo_name"),
            "default_branch": r.get("branch"),
            "codehost_id": r.get("codehost_id"),
            "repo_namespace": r.get("repo_namespace"),
            "filter_regexp": r.get("filter_regexp"),
        }
        for r in record.get("repos") or []
        if r.get("source_from") != "param"
    ]


def registry_of(job: Job) -> str:
    env = job.spec.get("env")
    for option in job.spec.get("env_options") or []:
        if option.get("env") == env:
            return option.get("registry_id") or ""
    return ""


def _image_name(job: Job, key: str) -> str:
    for service in job.selection.picked_targets or []:
        for module in service.get("modules") or []:
            if f"{service.get('service_name', '')}/{module.get('service_module', '')}" == key:
                return module.get("image_name") or module.get("service_module", "")
    raise LaunchError(kind="unknown_target", job=job.name, message=f"{job.name} has no picked module {key}")


def _users(response: Any) -> List[Record]:
    users = (response or {}).get("users") or []
    return [
        {
            "type": "user",
            "user_id": u.get("uid"),
            "user_name": u.get("name"),
            "account": u.get("account"),
            "identity_type": u.get("identity_type"),
        }
        for u in users
    ]


def fetch_for(client: Any, job: Job, kind: str, key: str, project_name: str = "") -> Fetch:
    """
    Build the coroutine that answers one lookup.

    The client is synchronous (urllib), so every call runs in a worker
    thread to keep the event loop free for other lookups.

      branches       key = service/module of a picked record
      images         key = service/module of a picked deploy module
      configs        key = config namespace id
      config_detail  key = group/namespace/data_id of a picked config item
      databases      key ignored
      sql_check      key = statement to check
      directory      key = user search term
    """
    spec = job.spec

    if kind == "branches":
        record = _picked(job, key)
        if record is None:
            raise LaunchError(kind="unknown_target", job=job.name, message=f"{job.name} has no picked module {key}")
        query = branch_query(record)
        call = lambda: client.get_branch_info(query)
    elif kind == "images":
        names = [_image_name(job, key)]
        registry = registry_of(job)
        call = lambda: client.list_images(project_name, names, registry)
    elif kind == "configs":
        call = lambda: client.list_nacos_configs(spec.get("nacos_id", ""), key)
    elif kind == "config_detail":
        item = _picked(job, key, config_key)
        if item is None:
            raise LaunchError(kind="unknown_target", job=job.name, message=f"{job.name} has no picked config {key}")
        call = lambda: client.get_nacos_config_detail(
            spec.get("nacos_id", ""),
            spec.get("namespace_id", ""),
            item.get("group", ""),
            item.get("data_id", ""),
            project_name,
        )
    elif kind == "databases":
        call = lambda: client.list_databases(project_name)
    elif kind == "sql_check":
        call = lambda: client.validate_sql(spec.get("type", ""), key)
    elif kind == "directory":
        query = {"page": 1, "per_page": 99999, "name": key}
        call = lambda: _users(client.get_brief_users(query, project_name))
    else:
        raise LaunchError(kind="unknown_lookup", job=job.name, message=f"no lookup named {kind!r}")

    async def fetch() -> Any:
        return await asyncio.to_thread(call)

    return fetch
