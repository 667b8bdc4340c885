import json

import pytest

from helpers import build_job, build_then_deploy, deploy_job, document, env_service, job, repo, svc

from launchci.adapters.base import DeriveMode, normalize_repo
from launchci.adapters.nacos import NacosAdapter
from launchci.errors import ValidationFailure
from launchci.model import Job, WorkflowDocument
from launchci.serialize import build_payload, dumps_payload, serialize_job

EDITOR_KEYS = {
    "pickedTargets",
    "pickedModules",
    "refInfo",
    "fetched",
    "loading",
    "images",
    "filter_images",
    "is_expand",
    "repoSync",
    "branch_names",
    "branch_and_tag_list",
    "branch_prs_map",
    "latest_key_vals",
    "env_options",
    "service_and_builds_options",
    "repoIsFetched",
}


def all_keys(value):
    if isinstance(value, dict):
        for k, v in value.items():
            yield k
            yield from all_keys(v)
    elif isinstance(value, list):
        for v in value:
            yield from all_keys(v)


def test_payload_is_deterministic_and_free_of_editor_state(open_session):
    first = open_session(build_then_deploy())
    second = open_session(build_then_deploy())
    a = dumps_payload(first.build_payload())
    b = dumps_payload(second.build_payload())
    assert a == b
    assert dumps_payload(first.build_payload()) == a

    payload = json.loads(a)
    assert not EDITOR_KEYS & set(all_keys(payload))
    for stage in payload["stages"]:
        for j in stage["jobs"]:
            for service in j["spec"].get("services") or j["spec"].get("service_and_builds") or []:
                assert "key" not in service


def test_payload_carries_workflow_fields(open_session):
    session = open_session(build_then_deploy())
    payload = session.build_payload(debug=True)
    assert payload["name"] == "release"
    assert payload["debug"] is True
    assert payload["params"] == [{"name": "VERSION", "key": "VERSION", "value": "1.0"}]
    assert [s["name"] for s in payload["stages"]] == ["build", "deploy"]


def test_build_payload_sends_picks_as_defaults(open_session):
    session = open_session(build_then_deploy())
    spec = session.build_payload()["stages"][0]["jobs"][0]["spec"]
    assert [s["service_name"] for s in spec["service_and_builds"]] == ["svcA"]
    assert spec["default_service_and_builds"] == spec["service_and_builds"]


def test_skipped_job_is_sent_with_skip_flag(open_session):
    raw = document(
        ("build", [build_job("build", [svc("svcA", "modA", repos=[repo(branch="main")])])]),
        ("deploy", [deploy_job("deploy", env_services=[env_service("svcA", "modA")], services=[{"service_name": "svcA", "modules": [{"service_module": "modA"}]}])]),
    )
    session = open_session(raw)
    session.toggle_job("deploy")
    payload = session.build_payload()
    deploy = payload["stages"][1]["jobs"][0]
    assert deploy["skipped"] is True
    assert "env_options" not in deploy["spec"]
    assert not EDITOR_KEYS & set(all_keys(deploy))


def test_deploy_sends_latest_values_when_updating_config(open_session):
    latest = [{"key": "replicas", "value": "1"}]
    raw = document(("deploy", [deploy_job(
        "deploy",
        env_services=[env_service("svcA", "modA", deployed=True, updatable=True, env_kvs=[{"key": "replicas", "value": "3"}], svc_kvs=latest)],
        services=[{"service_name": "svcA", "modules": [{"service_module": "modA"}]}],
    )]))
    session = open_session(raw)
    service = session.build_payload()["stages"][0]["jobs"][0]["spec"]["services"][0]
    assert service["key_vals"] == latest
    assert service["update_config"] is True
    assert service["modules"] == [{"service_module": "modA", "image": "registry/modA:1"}]


def test_repo_normalization():
    assert normalize_repo({"prs": "12, 15,"})["prs"] == [12, 15]
    assert normalize_repo({"branch_or_tag": {"type": "tag", "name": "v1.2"}})["tag"] == "v1.2"
    picked = normalize_repo({"branch_or_tag": {"type": "branch", "name": "dev"}, "branch_names": ["dev"]})
    assert picked == {"branch": "dev"}
    perforce = normalize_repo({"source": "perforce", "changelist_id": "", "shelve_id": ""})
    assert perforce["changelist_id"] == 0
    assert perforce["shelve_id"] == 0


def test_unknown_job_type_passes_through(capsys):
    j = Job.from_dict({"name": "custom", "type": "freestyle", "spec": {"steps": [{"name": "x"}]}, "pickedTargets": []})
    out = serialize_job(j)
    assert out["spec"] == {"steps": [{"name": "x"}]}
    assert "pickedTargets" not in out
    assert "unknown type 'freestyle'" in capsys.readouterr().err


def test_unknown_job_type_does_not_block_the_payload():
    doc = WorkflowDocument.from_dict(document(("misc", [{"name": "custom", "type": "freestyle", "spec": {"a": 1}}])))
    payload = build_payload(doc)
    assert payload["stages"][0]["jobs"][0]["spec"] == {"a": 1}


def nacos_job(diff, run_policy=""):
    item = {"group": "g", "namespace_name": "ns", "data_id": "app.yaml", "content": "a: 2", "key": "g/ns/app.yaml", "diff": diff, "cloneData": True}
    return Job.from_dict(job("config", "nacos", run_policy=run_policy, nacos_filtered_data=[], nacos_configs=[])).with_selection(picked_targets=[item])


def test_unchanged_config_job_is_skipped():
    same = [{"value": "a: 2", "added": False, "removed": False}]
    out = NacosAdapter().serialize(nacos_job(same))
    assert out["skipped"] is True
    assert out["spec"]["nacos_datas"] == [{"group": "g", "namespace_name": "ns", "data_id": "app.yaml", "content": "a: 2"}]
    assert "nacos_filtered_data" not in out["spec"]
    assert "nacos_configs" not in out["spec"]


def test_changed_or_forced_config_job_runs():
    changed = [{"value": "a: 1\n", "added": False, "removed": True}, {"value": "a: 2\n", "added": True, "removed": False}]
    same = [{"value": "a: 2", "added": False, "removed": False}]
    assert NacosAdapter().serialize(nacos_job(changed))["skipped"] is False
    assert NacosAdapter().serialize(nacos_job(same, run_policy="force_run"))["skipped"] is False


def test_release_plan_keeps_config_skip_flag():
    same = [{"value": "a: 2", "added": False, "removed": False}]
    out = NacosAdapter().serialize(nacos_job(same), DeriveMode(release_plan=True))
    assert out["skipped"] is False


def test_single_sided_config_diff_keeps_job_skipped():
    # clearing an item's whole content is one "removed" segment
    cleared = [{"value": "a: 1\n", "added": False, "removed": True}]
    assert NacosAdapter().serialize(nacos_job(cleared))["skipped"] is True


def test_content_edit_produces_a_real_change():
    adapter = NacosAdapter()
    item = {"group": "g", "namespace_name": "ns", "data_id": "app.yaml", "content": "a: 1\nb: 2\n", "original_content": "a: 1\nb: 2\n"}
    config = Job.from_dict(job("config", "nacos")).with_selection(picked_targets=[item])

    edited = adapter.with_content(config, "g/ns/app.yaml", "a: 1\nb: 3\n")
    diff = edited.selection.picked_targets[0]["diff"]
    assert [(d["added"], d["removed"]) for d in diff] == [(False, False), (False, True), (True, False)]
    out = adapter.serialize(edited)
    assert out["skipped"] is False
    assert out["spec"]["nacos_datas"][0]["content"] == "a: 1\nb: 3\n"


def test_unparseable_pull_requests_fail_serialization():
    raw = document(("build", [build_job("build", [svc("svcA", "modA", repos=[repo(prs="12,abc")])])]))
    with pytest.raises(ValidationFailure) as exc:
        build_payload(WorkflowDocument.from_dict(raw))
    assert exc.value.job == "build"
    assert "abc" in exc.value.message
