import pytest
from fastapi.testclient import TestClient

from helpers import FakeGateway, build_then_deploy, document, job

from launchci.server.app import SESSIONS, app, get_gateway


@pytest.fixture
def gateway():
    return FakeGateway(task_id=5)


@pytest.fixture
def client(gateway):
    app.dependency_overrides[get_gateway] = lambda: gateway
    yield TestClient(app)
    app.dependency_overrides.clear()
    SESSIONS.clear()


def create(client, doc=None, **context):
    context.setdefault("workitemTypeKey", "story")
    context.setdefault("workItemId", "7")
    body = {"context": context}
    if doc is not None:
        body["document"] = doc
    res = client.post("/sessions", json=body)
    assert res.status_code == 200, res.text
    return res.json()


def test_create_and_view(client):
    view = create(client, build_then_deploy())
    names = [j["name"] for j in view["jobs"]]
    assert names == ["build", "deploy"]
    again = client.get(f"/sessions/{view['session_id']}").json()
    assert again == view


def test_create_from_gateway(client, gateway):
    gateway.preset = build_then_deploy()
    view = create(client, workflowName="release")
    assert gateway.preset_calls == 1
    assert view["workflow"] == "release"


def test_job_candidates_and_select(client):
    sid = create(client, build_then_deploy())["session_id"]
    res = client.post(f"/sessions/{sid}/jobs/build/select", json={"keys": ["svcB/modB"]})
    assert res.status_code == 200
    assert res.json()["status"] == "applied"

    deploy = client.get(f"/sessions/{sid}/jobs/deploy").json()
    assert [c["service_name"] for c in deploy["candidates"]] == ["svcB"]


def test_toggle_and_validate(client):
    sid = create(client, build_then_deploy())["session_id"]
    view = client.post(f"/sessions/{sid}/jobs/build/toggle").json()
    assert view["missing_source_jobs"] == ["build"]

    report = client.post(f"/sessions/{sid}/validate").json()
    assert report["ok"] is False
    assert report["failures"][0]["job"] == "build"


def test_spec_edit_and_payload(client):
    sid = create(client, document(("sql", [job("sql", "sql", id="db1", sql="")])))["session_id"]
    res = client.patch(f"/sessions/{sid}/jobs/sql/spec", json={"changes": {"sql": "select 1"}})
    assert res.json()["status"] == "applied"
    payload = client.get(f"/sessions/{sid}/payload", params={"debug": True}).json()
    assert payload["debug"] is True
    assert payload["stages"][0]["jobs"][0]["spec"]["sql"] == "select 1"


def test_submit(client, gateway):
    sid = create(client, build_then_deploy())["session_id"]
    res = client.post(f"/sessions/{sid}/submit", json={})
    assert res.status_code == 200
    assert res.json() == {"task_id": 5}
    assert gateway.runs[0][:2] == ("story", "7")


def test_submit_validation_failure(client, gateway):
    sid = create(client, document(("sql", [job("sql", "sql", id="", sql="")])))["session_id"]
    res = client.post(f"/sessions/{sid}/submit", json={})
    assert res.status_code == 422
    assert res.json()["job"] == "sql"
    assert gateway.runs == []


def test_rejected_submit(client, gateway):
    gateway.error = "workflow is disabled"
    sid = create(client, build_then_deploy())["session_id"]
    res = client.post(f"/sessions/{sid}/submit", json={})
    assert res.status_code == 502
    assert res.json()["detail"] == "workflow is disabled"


def test_unknown_session_and_job(client):
    assert client.get("/sessions/nope").status_code == 404
    sid = create(client, build_then_deploy())["session_id"]
    res = client.get(f"/sessions/{sid}/jobs/ghost")
    assert res.status_code == 404
    assert res.json()["kind"] == "unknown_job"


def test_close(client):
    sid = create(client, build_then_deploy())["session_id"]
    assert client.delete(f"/sessions/{sid}").status_code == 204
    assert client.get(f"/sessions/{sid}").status_code == 404


def test_core_spec_fields_cannot_be_edited(client):
    sid = create(client, build_then_deploy())["session_id"]
    res = client.patch(f"/sessions/{sid}/jobs/deploy/spec", json={"changes": {"job_name": "other"}})
    assert res.status_code == 422
    assert res.json()["kind"] == "immutable_field"
    deploy = client.get(f"/sessions/{sid}/jobs/deploy").json()
    assert deploy["job"]["spec"]["job_name"] == "build"


def test_lookup_and_content_edit(client, gateway):
    gateway.answers["get_nacos_config_detail"] = {"content": "a: 1\n"}
    doc = document(("config", [job(
        "config",
        "nacos",
        nacos_id="n1",
        namespace_id="ns-1",
        nacos_configs=[{"group": "g", "namespace_name": "ns", "namespace_id": "ns-1", "data_id": "app.yaml"}],
        default_nacos_datas=[{"group": "g", "data_id": "app.yaml"}],
    )]))
    sid = create(client, doc)["session_id"]

    res = client.post(f"/sessions/{sid}/jobs/config/lookup", json={"kind": "config_detail", "key": "g/ns/app.yaml"})
    assert res.status_code == 200
    assert res.json()["status"] == "applied"

    res = client.patch(f"/sessions/{sid}/jobs/config/content", json={"item": "g/ns/app.yaml", "content": "a: 2\n"})
    assert res.json()["status"] == "applied"
    sent = client.get(f"/sessions/{sid}/payload").json()["stages"][0]["jobs"][0]
    assert sent["skipped"] is False
    assert sent["spec"]["nacos_datas"][0]["content"] == "a: 2\n"


def test_unknown_lookup_kind(client):
    sid = create(client, build_then_deploy())["session_id"]
    res = client.post(f"/sessions/{sid}/jobs/build/lookup", json={"kind": "weather"})
    assert res.status_code == 400
    assert res.json()["kind"] == "unknown_lookup"
