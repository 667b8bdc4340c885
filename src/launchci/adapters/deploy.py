# adapters/deploy.py
from __future__ import annotations

import copy
from typing import Any, Dict, List, Optional

from ..model import Job, JobType, module_key
from ..resolve import Resolution
from .base import (
    DeriveMode,
    Derivation,
    JobAdapter,
    Record,
    clean_record,
    key_set,
    keyed,
    preserve_picks,
    strip_keys,
    wire_job,
)

MODULE_CACHE = {"fetched": False, "loading": False, "images": [], "filter_images": []}


# ---------------------------------------------------------------------
# Environment snapshot
# ---------------------------------------------------------------------

def env_services(job: Job, snapshot: Optional[List[Record]] = None) -> Optional[List[Record]]:
    """
    Services of the environment chosen in `spec.env`.

    None means the environment listing has not arrived yet (unknown), which
    is different from an environment with no services.
    """
    if snapshot is not None:
        return snapshot
    options = job.spec.get("env_options")
    if options is None:
        return None
    env = job.spec.get("env")
    for option in options:
        if option.get("env") == env:
            return option.get("services") or []
    return []


def env_modules(services: List[Record]) -> List[Record]:
    out = []
    for service in services:
        for module in service.get("modules") or []:
            item = {"service_name": service.get("service_name", ""), "service_module": module.get("service_module", ""), "source": "config"}
            item["key"] = module_key(item)
            out.append(item)
    return out


def flatten_modules(services: Optional[List[Record]]) -> List[Record]:
    """Saved deploy services -> service/module records."""
    return env_modules(services or [])


# ---------------------------------------------------------------------
# Variable inheritance
# ---------------------------------------------------------------------

def _with_origin(kvs: Optional[List[Record]], service_name: str, spec: Dict[str, Any]) -> List[Record]:
    """Tag each variable with the `source` configured for it on the job."""
    config = next(
        (c for c in spec.get("service_variable_config") or [] if c.get("service_name") == service_name),
        None,
    )
    out = []
    for variable in kvs or []:
        variable = dict(variable)
        if config is not None:
            variable_configs = config.get("variable_configs")
            if variable_configs is None:
                variable["source"] = "runtime"
            else:
                match = next((vc for vc in variable_configs if vc.get("variable_key") == variable.get("key")), None)
                if match is not None:
                    variable["source"] = match.get("source")
        out.append(variable)
    return out


def apply_variables(target: Record, env_service: Record, spec: Dict[str, Any], mode: DeriveMode) -> Record:
    """
    Pull variable values for one picked service from the environment.

    Already deployed -> the environment's values, otherwise the service's
    defaults. `update_config` (use latest) forces the service's newest values.
    """
    env_vars = env_service.get("env_variable") or {}
    svc_vars = env_service.get("service_variable") or {}

    target["auto_sync"] = env_service.get("auto_sync")
    target["deployed"] = bool(env_service.get("deployed"))
    target["updatable"] = bool(env_service.get("updatable"))

    if mode.reuse_saved:
        target["modules"] = [{**copy.deepcopy(MODULE_CACHE), **m} for m in target.get("modules") or []]
        if not target.get("value_merge_strategy"):
            saved = next((s for s in spec.get("services") or [] if s.get("service_name") == target.get("service_name")), None)
            if saved is not None:
                target["value_merge_strategy"] = saved.get("value_merge_strategy")
        kvs = (svc_vars if target.get("update_config") else env_vars).get("variable_kvs") or []
        target["variable_kvs"] = _with_origin(kvs, target.get("service_name", ""), spec)
        target["key_vals"] = target["variable_kvs"]
        target["latest_key_vals"] = _with_origin(svc_vars.get("variable_kvs"), target.get("service_name", ""), spec)
        return target

    base = env_vars if target["deployed"] else svc_vars
    if target["updatable"]:
        target["update_config"] = True
    use_latest = bool(target.get("update_config"))

    latest_kvs = svc_vars.get("variable_kvs") or []
    kvs = latest_kvs if use_latest else base.get("variable_kvs") or []
    yaml = svc_vars.get("variable_yaml", "") if use_latest else base.get("variable_yaml", "")
    override_kvs = env_vars.get("override_kvs", "") if use_latest else base.get("override_kvs", "")

    wanted = {m.get("service_module") for m in target.get("modules") or []}
    target["modules"] = [
        {**copy.deepcopy(m), **copy.deepcopy(MODULE_CACHE)}
        for m in env_service.get("modules") or []
        if m.get("service_module") in wanted
    ]
    target["variable_kvs"] = _with_origin(kvs, target.get("service_name", ""), spec)
    target["key_vals"] = target["variable_kvs"]
    target["latest_key_vals"] = _with_origin(latest_kvs, target.get("service_name", ""), spec)
    target["value_merge_strategy"] = spec.get("value_merge_strategy")

    contents = spec.get("deploy_contents") or []
    if "image" in contents or "vars" in contents:
        if target["value_merge_strategy"] == "reuse-values":
            target["variable_yaml"] = ""
        elif target["value_merge_strategy"] == "override":
            target["variable_yaml"] = yaml

    target["override_kvs"] = override_kvs
    target["is_expand"] = len(target["variable_kvs"]) > 0
    return target


def build_targets(
    modules: List[Record],
    services: List[Record],
    spec: Dict[str, Any],
    mode: DeriveMode,
    env: List[Record],
    previous: Optional[List[Record]] = None,
) -> List[Record]:
    """
    Group picked modules by service and attach each service's variables.

    What the user set on `previous` targets (use-latest toggle, variable
    values, chosen images, fetched image lists) survives the recompute.
    """
    prev_by_name = {p.get("service_name"): p for p in previous or []}
    grouped: Dict[str, Record] = {}
    for module in modules:
        service = next((s for s in services if s.get("service_name") == module.get("service_name")), None)
        if service is None:
            continue
        matched = [m for m in service.get("modules") or [] if m.get("service_module") == module.get("service_module")]
        if not matched:
            continue
        name = service["service_name"]
        if name in grouped:
            grouped[name]["modules"].extend(copy.deepcopy(matched))
        else:
            target = copy.deepcopy(service)
            target["modules"] = copy.deepcopy(matched)
            grouped[name] = target

    targets = list(grouped.values())
    for target in targets:
        prev = prev_by_name.get(target.get("service_name"))
        if prev is not None and "update_config" in prev:
            target["update_config"] = prev["update_config"]
        env_service = next((s for s in env if s.get("service_name") == target.get("service_name")), None)
        if env_service is not None:
            apply_variables(target, env_service, spec, mode)
        if prev is not None:
            _carry_edits(target, prev)
    return targets


def _carry_edits(target: Record, prev: Record) -> Record:
    if prev.get("update_config") == target.get("update_config"):
        for f in ("variable_kvs", "key_vals", "variable_yaml"):
            if f in prev:
                target[f] = copy.deepcopy(prev[f])
    old_modules = {m.get("service_module"): m for m in prev.get("modules") or []}
    for module in target.get("modules") or []:
        old = old_modules.get(module.get("service_module"))
        if old is None:
            continue
        for f in ("image", *MODULE_CACHE):
            if f in old:
                module[f] = copy.deepcopy(old[f])
    return target


# ---------------------------------------------------------------------
# Adapter
# ---------------------------------------------------------------------

class DeployAdapter(JobAdapter):
    kind = JobType.DEPLOY

    def exposed_targets(self, job: Job) -> List[Record]:
        if job.selection.picked_modules:
            return job.selection.picked_modules
        if job.selection.picked_targets:
            return flatten_modules(job.selection.picked_targets)
        return flatten_modules(job.spec.get("services"))

    def derive(
        self,
        job: Job,
        resolution: Resolution,
        upstream: Optional[List[Record]],
        snapshot: Optional[Any] = None,
        mode: DeriveMode = DeriveMode(),
    ) -> Derivation:
        if job.is_fromjob and (resolution.missing or upstream is None):
            return self.missing(job)

        services = env_services(job, snapshot)
        if services is None:
            # environment listing not loaded yet: nothing is known to be empty
            return Derivation(job=job, candidates=[], confirmed_empty=False)

        offered = env_modules(services)
        if job.is_fromjob:
            wanted = key_set(upstream)
            candidates = [c for c in offered if c["key"] in wanted]
            modules = copy.deepcopy(candidates)
        else:
            candidates = offered
            previous = job.selection.picked_modules
            if previous is None:
                previous = flatten_modules(job.spec.get("services"))
            modules = preserve_picks(candidates, keyed(previous))

        # stage execution keeps its own saved services when the environment lists none
        source = services if services or not mode.reuse_saved else job.spec.get("services") or []
        targets = build_targets(modules, source, job.spec, mode, services, previous=job.selection.picked_targets)

        if job.is_fromjob and mode.edit_runner:
            targets = _keep_saved_edits(targets, job.spec.get("services") or [])

        updated = job.with_selection(picked_targets=targets, picked_modules=modules).evolve(missing_source=False)
        return Derivation(job=updated, candidates=candidates)

    def with_env(self, job: Job, env: str) -> Job:
        """Switch environment; runtime picks do not carry across environments."""
        job = job.with_spec(env=env)
        if not job.is_fromjob:
            job = job.with_selection(picked_targets=[], picked_modules=[])
        return job

    def validate(self, job: Job, resolution: Resolution) -> Optional[str]:
        if job.is_fromjob:
            ok = bool(job.selection.picked_targets)
        else:
            ok = bool(job.selection.picked_modules)
        return None if ok else "select at least one service module"

    def serialize(self, job: Job, mode: DeriveMode = DeriveMode()) -> Dict[str, Any]:
        out = wire_job(job)
        spec = out["spec"]
        if job.selection.picked_targets is not None:
            targets = copy.deepcopy(job.selection.picked_targets)
            for service in targets:
                strip_keys(service, ("is_expand", "registry_id"))
                if service.get("updatable") and service.get("update_config"):
                    service["key_vals"] = service.get("latest_key_vals")
                service.pop("latest_key_vals", None)
                clean_record(service)
            spec["services"] = targets
        spec.pop("env_options", None)
        return out

    def pending(self, job: Job) -> bool:
        for service in job.selection.picked_targets or []:
            if any(m.get("loading") for m in service.get("modules") or []):
                return True
        return False

    def begin_enrichment(self, job: Job, kind: str, key: str) -> Job:
        if kind != "images":
            return job
        return self._update_module(job, key, {"loading": True})

    def apply_enrichment(self, job: Job, kind: str, key: str, result: Any) -> Job:
        """
        `images`:      image tags for module `key` ("service/module")
        `environment`: service listing for environment `key`
        """
        if kind == "images":
            images = list(result or [])
            return self._update_module(job, key, {"images": images, "filter_images": images, "fetched": True, "loading": False})
        if kind == "environment":
            options = copy.deepcopy(job.spec.get("env_options") or [])
            for option in options:
                if option.get("env") == key:
                    option["services"] = copy.deepcopy(result or [])
                    break
            else:
                options.append({"env": key, "services": copy.deepcopy(result or [])})
            return job.with_spec(env_options=options)
        return job

    def fail_enrichment(self, job: Job, kind: str, key: str) -> Job:
        if kind != "images":
            return job
        return self._update_module(job, key, {"loading": False, "fetched": False})

    @staticmethod
    def _update_module(job: Job, key: str, values: Dict[str, Any]) -> Job:
        targets = copy.deepcopy(job.selection.picked_targets or [])
        for service in targets:
            for module in service.get("modules") or []:
                if f"{service.get('service_name', '')}/{module.get('service_module', '')}" == key:
                    module.update(copy.deepcopy(values))
        return job.with_selection(picked_targets=targets)


def _keep_saved_edits(targets: List[Record], saved: List[Record]) -> List[Record]:
    """Editing a saved run: keep its variables and its service order."""
    by_name = {s.get("service_name"): s for s in saved}
    for target in targets:
        prev = by_name.get(target.get("service_name"))
        if prev is not None:
            for f in ("variable_kvs", "variable_yaml", "update_config"):
                if f in prev:
                    target[f] = copy.deepcopy(prev[f])
    order = [s.get("service_name") for s in saved]
    return sorted(targets, key=lambda t: order.index(t.get("service_name")) if t.get("service_name") in order else len(order))
