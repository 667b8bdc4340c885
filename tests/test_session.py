import pytest

from helpers import FakeGateway, build_then_deploy, document, job

from launchci.adapters.deploy import DeployAdapter
from launchci.context import HostContext
from launchci.errors import ImmutableFieldError, LaunchError, SubmissionError, ValidationFailure
from launchci.session import RunSession


def host(**params):
    base = {"workitemTypeKey": "story", "workItemId": 7, "workflowName": "release", "projectName": "shop"}
    base.update(params)
    return base


def test_submit_sends_payload_and_navigates():
    gateway = FakeGateway(task_id=42)
    visited = []
    session = RunSession(HostContext.from_dict(host(), navigate=visited.append), gateway=gateway)
    session.open_preset(build_then_deploy())

    assert session.submit() == 42
    (type_key, item_id, payload), = gateway.runs
    assert (type_key, item_id) == ("story", "7")
    assert payload == session.last_payload
    assert session.task_id == 42
    assert visited == ["42"]
    session.close()


def test_submit_refuses_while_lookups_are_pending(open_session):
    gateway = FakeGateway()
    session = open_session(build_then_deploy(), gateway=gateway)
    session.edit("deploy", lambda j: DeployAdapter().begin_enrichment(j, "images", "svcA/modA"))

    with pytest.raises(SubmissionError) as exc:
        session.submit()
    assert exc.value.kind == "pending"
    assert exc.value.job == "deploy"
    assert gateway.runs == []


def test_submit_stops_at_first_validation_failure(open_session):
    gateway = FakeGateway()
    raw = document(("sql", [job("sql", "sql", id="", sql="")]))
    session = open_session(raw, gateway=gateway)
    with pytest.raises(ValidationFailure) as exc:
        session.submit()
    assert exc.value.job == "sql"
    assert gateway.runs == []


def test_rejected_run_leaves_document_untouched(open_session, capsys):
    gateway = FakeGateway(error="quota exceeded")
    session = open_session(build_then_deploy(), gateway=gateway)
    before = session.document.to_dict()

    for _ in range(2):
        with pytest.raises(SubmissionError) as exc:
            session.submit()
        assert exc.value.kind == "rejected"
        assert str(exc.value) == "quota exceeded"

    assert session.document.to_dict() == before
    assert session.task_id is None
    # the same message is shown once per session
    assert capsys.readouterr().out.count("quota exceeded") == 1


def test_submit_without_gateway(open_session):
    session = open_session(build_then_deploy())
    with pytest.raises(SubmissionError) as exc:
        session.submit()
    assert exc.value.kind == "no_gateway"


def test_clone_wins_over_preset():
    gateway = FakeGateway(preset=document(("other", [job("other", "sql")])))
    clone = build_then_deploy()
    session = RunSession(HostContext.from_dict(host(cloneWorkflow=clone)), gateway=gateway)
    session.open_from_gateway()
    assert gateway.preset_calls == 0
    assert [j.name for j in session.document.jobs] == ["build", "deploy"]


def test_preset_is_fetched_without_clone():
    gateway = FakeGateway(preset=build_then_deploy())
    session = RunSession(HostContext.from_dict(host()), gateway=gateway)
    session.open_from_gateway()
    assert gateway.preset_calls == 1
    assert session.candidates("deploy")


def test_toggling_releases_and_restores_handles(open_session):
    session = open_session(build_then_deploy())
    key = session.job("deploy").key
    assert key in session.handles

    session.toggle_job("deploy")
    assert key not in session.handles
    assert not session.is_active("deploy")

    session.toggle_job("deploy")
    assert key in session.handles
    assert session.is_active("deploy")


def test_skipping_root_reports_missing_source(open_session):
    session = open_session(build_then_deploy())
    session.toggle_job("build")
    assert session.missing_source_jobs() == ["build"]
    assert session.job("deploy").missing_source is True
    assert session.validate().first.kind == "missing_source"

    session.toggle_job("build")
    assert session.missing_source_jobs() == []
    assert session.job("deploy").missing_source is False


def test_stage_execution_toggle(open_session):
    raw = build_then_deploy()
    for stage in raw["stages"]:
        stage["execStage"] = True
    session = open_session(raw, stageExecMode=True)
    session.toggle_exec_stage_job("deploy")
    assert session.job("deploy").run_policy == "skip"
    assert not session.is_active("deploy")


def test_select_rejects_targets_not_on_offer(open_session):
    session = open_session(build_then_deploy())
    with pytest.raises(LaunchError) as exc:
        session.select("build", ["svcZ/modZ"])
    assert exc.value.kind == "unknown_target"
    assert exc.value.details["offered"] == ["svcA/modA", "svcB/modB"]


def test_notify_deduplicates(open_session):
    session = open_session(build_then_deploy())
    assert session.notify("hello") is True
    assert session.notify("hello") is False


def test_summary(open_session):
    session = open_session(build_then_deploy())
    rows = {r["name"]: r for r in session.summary()}
    assert rows["deploy"]["source"] == "fromjob"
    assert rows["deploy"]["ref_job"] == "build"
    assert rows["deploy"]["picked_modules"] == 1
    assert rows["build"]["active"] is True


def test_closed_session_is_unusable():
    session = RunSession(HostContext.from_dict(host()))
    session.open_preset(build_then_deploy())
    with session:
        pass
    assert session.closed
    with pytest.raises(LaunchError) as exc:
        session.open_preset(build_then_deploy())
    assert exc.value.kind == "session_closed"
    with pytest.raises(LaunchError):
        session.document


def test_submit_refuses_a_dangling_source(open_session):
    gateway = FakeGateway()
    raw = document(("deploy", [job("deploy", "zadig-deploy", source="fromjob", origin="gone")]))
    raw["stages"][0]["jobs"][0]["pickedTargets"] = [{"service_name": "svcA", "modules": [{"service_module": "modA"}]}]
    session = open_session(raw, gateway=gateway)
    with pytest.raises(ValidationFailure) as exc:
        session.submit()
    assert exc.value.kind == "missing_source"
    assert gateway.runs == []


def test_core_spec_fields_are_fixed(open_session):
    session = open_session(build_then_deploy())
    with pytest.raises(ImmutableFieldError) as exc:
        session.edit_spec("deploy", {"source": "runtime", "production": True})
    assert exc.value.details["fields"] == ["source"]
    assert session.job("deploy").source == "fromjob"
    assert "production" not in session.job("deploy").spec

    assert session.edit_spec("deploy", {"production": True}).status == "applied"
