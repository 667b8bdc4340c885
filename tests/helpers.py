# helpers.py
# Builders for workflow documents in the backend's wire shape.
from __future__ import annotations

from typing import Any, Dict, List, Optional

from launchci.api_client import APIError


def svc(service: str, module: str, **extra: Any) -> Dict[str, Any]:
    return {"service_name": service, "service_module": module, **extra}


def repo(name: str = "app", **extra: Any) -> Dict[str, Any]:
    return {"repo_owner": "acme", "repo_namespace": "acme", "repo_name": name, "source": "gitlab", **extra}


def job(name: str, job_type: str, source: str = "runtime", origin: Optional[str] = None, skipped: bool = False, run_policy: str = "", **spec: Any) -> Dict[str, Any]:
    spec = {"source": source, **spec}
    if origin is not None:
        spec["job_name"] = origin
    return {"name": name, "type": job_type, "skipped": skipped, "run_policy": run_policy, "spec": spec}


def build_job(name: str, picks: List[Dict[str, Any]], options: Optional[List[Dict[str, Any]]] = None, **kw: Any) -> Dict[str, Any]:
    return job(name, "zadig-build", service_and_builds=picks, service_and_builds_options=options if options is not None else picks, **kw)


def env_service(name: str, *modules: str, deployed: bool = False, updatable: bool = False, env_kvs=None, svc_kvs=None) -> Dict[str, Any]:
    return {
        "service_name": name,
        "modules": [{"service_module": m, "image": f"registry/{m}:1"} for m in modules],
        "deployed": deployed,
        "updatable": updatable,
        "env_variable": {"variable_kvs": env_kvs or [], "variable_yaml": "env: yaml"},
        "service_variable": {"variable_kvs": svc_kvs or [], "variable_yaml": "svc: yaml"},
    }


def deploy_job(name: str, env_services: Optional[List[Dict[str, Any]]] = None, services=None, env: str = "dev", **kw: Any) -> Dict[str, Any]:
    spec: Dict[str, Any] = {"env": env, "services": services or [], "deploy_contents": ["image"]}
    if env_services is not None:
        spec["env_options"] = [{"env": env, "services": env_services}]
    spec.update(kw.pop("spec", {}))
    return job(name, "zadig-deploy", **spec, **kw)


def document(*stages, name: str = "release") -> Dict[str, Any]:
    """stages: (stage_name, [jobs]) or (stage_name, [jobs], exec_stage)."""
    out = []
    for stage in stages:
        data = {"name": stage[0], "jobs": list(stage[1])}
        if len(stage) > 2 and stage[2]:
            data["execStage"] = True
        out.append(data)
    return {"name": name, "remark": "", "params": [{"name": "VERSION", "key": "VERSION", "value": "1.0"}], "stages": out}


def build_then_deploy() -> Dict[str, Any]:
    """A build of svcA/modA feeding a deploy from the build."""
    return document(
        ("build", [build_job("build", [svc("svcA", "modA", repos=[repo(branch="main")])], [
            svc("svcA", "modA", repos=[repo(branch="main")]),
            svc("svcB", "modB", repos=[repo(branch="main")]),
        ])]),
        ("deploy", [deploy_job(
            "deploy",
            env_services=[env_service("svcA", "modA"), env_service("svcB", "modB")],
            source="fromjob",
            origin="build",
        )]),
    )


class FakeGateway:
    """In-memory stand-in for the workflow gateway."""

    def __init__(self, preset=None, task_id: int = 42, error: Optional[str] = None):
        self.preset = preset
        self.task_id = task_id
        self.error = error
        self.preset_calls = 0
        self.runs = []
        # canned lookup answers by method name, and the calls made
        self.answers = {}
        self.lookups = []

    def get_workflow_preset(self, workflow_name, project_name, approval_ticket_id=""):
        self.preset_calls += 1
        return self.preset

    def run_workflow(self, workitem_type_key, workitem_id, payload):
        if self.error:
            raise APIError(self.error, status=400)
        self.runs.append((workitem_type_key, workitem_id, payload))
        return self.task_id

    def _answer(self, method, *args):
        self.lookups.append((method, *args))
        answer = self.answers.get(method)
        if isinstance(answer, Exception):
            raise answer
        return answer

    def get_branch_info(self, repos, param=""):
        return self._answer("get_branch_info", repos)

    def list_images(self, project_name, names, registry_id=""):
        return self._answer("list_images", project_name, names, registry_id)

    def list_nacos_configs(self, nacos_id, namespace_id):
        return self._answer("list_nacos_configs", nacos_id, namespace_id)

    def get_nacos_config_detail(self, nacos_id, namespace_id, group, data_id, project_name):
        return self._answer("get_nacos_config_detail", nacos_id, namespace_id, group, data_id)

    def list_databases(self, project_name):
        return self._answer("list_databases", project_name)

    def validate_sql(self, db_type, sql):
        return self._answer("validate_sql", db_type, sql)

    def get_brief_users(self, query, project_name=""):
        return self._answer("get_brief_users", query["name"])
