import json

import pytest
from click.testing import CliRunner

from helpers import build_then_deploy, document, job

from launchci.api_client import APIClient
from launchci.cli import cli


@pytest.fixture
def run_file(tmp_path):
    path = tmp_path / "run.json"
    path.write_text(json.dumps(build_then_deploy()), encoding="utf-8")
    return str(path)


def invoke(*args):
    return CliRunner().invoke(cli, list(args), catch_exceptions=False)


def test_plan_lists_jobs(run_file):
    result = invoke("--project", "shop", "plan", run_file)
    assert result.exit_code == 0
    assert "Project: shop" in result.output
    assert "build (zadig-build)" in result.output
    assert "deploy (zadig-deploy)" in result.output


def test_plan_with_skipped_root(run_file):
    result = invoke("plan", run_file, "--skip", "build")
    assert result.exit_code == 0
    assert "build (skipped: skipped)" in result.output
    assert "MISSING SOURCE JOBS" in result.output


def test_validate_ok(run_file):
    result = invoke("validate", run_file)
    assert result.exit_code == 0
    assert "VALIDATION: ok" in result.output


def test_validate_failure_exits_nonzero(tmp_path):
    path = tmp_path / "bad.json"
    path.write_text(json.dumps(document(("sql", [job("migrate", "sql", id="", sql="")]))), encoding="utf-8")
    result = invoke("validate", str(path))
    assert result.exit_code == 1
    assert "VALIDATION FAILED: migrate" in result.output
    assert "select a database" in result.output


def test_render_applies_selection(run_file):
    result = invoke("render", run_file, "--select", "build=svcA/modA,svcB/modB")
    assert result.exit_code == 0
    payload = json.loads(result.output)
    deploy = payload["stages"][1]["jobs"][0]
    assert [s["service_name"] for s in deploy["spec"]["services"]] == ["svcA", "svcB"]


def test_unknown_selection_is_reported(run_file):
    result = invoke("render", run_file, "--select", "build=svcZ/modZ")
    assert result.exit_code == 1
    assert "unknown target" in result.output


def test_missing_file(tmp_path):
    result = invoke("plan", str(tmp_path / "nope.json"))
    assert result.exit_code == 1
    assert "Workflow file not found" in result.output


def test_submit(run_file, monkeypatch):
    sent = []

    def run_workflow(self, workitem_type_key, workitem_id, payload):
        sent.append((workitem_type_key, workitem_id))
        return 99

    monkeypatch.setattr(APIClient, "run_workflow", run_workflow)
    result = invoke("--workflow", "release", "submit", run_file, "--workitem-type", "story", "--workitem-id", "7")
    assert result.exit_code == 0
    assert "Task ID: 99" in result.output
    assert sent == [("story", "7")]
