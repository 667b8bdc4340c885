import pytest

from helpers import build_job, document, job, repo, svc

from launchci.errors import ValidationFailure
from launchci.model import WorkflowDocument
from launchci.validate import validate_document


def test_missing_source_comes_first():
    doc = WorkflowDocument.from_dict(
        document(
            ("sql", [job("sql", "sql", id="", sql="")]),
            ("build", [build_job("build", [svc("svcA", "modA", repos=[repo(branch="main")])], skipped=True)]),
            ("deploy", [job("deploy", "zadig-deploy", source="fromjob", origin="build")]),
        )
    )
    report = validate_document(doc)
    assert report.first.kind == "missing_source"
    assert report.first.job == "build"
    assert [name for name, _ in report.messages()][1:] == ["sql", "deploy"]


def test_failures_follow_document_order():
    doc = WorkflowDocument.from_dict(
        document(
            ("one", [job("b", "sql", id="db", sql="")]),
            ("two", [job("a", "sql", id="", sql="select 1")]),
        )
    )
    report = validate_document(doc)
    assert report.messages() == [("b", "SQL statement is empty"), ("a", "select a database")]


def test_inactive_jobs_are_not_checked():
    doc = WorkflowDocument.from_dict(
        document(
            ("one", [job("off", "sql", skipped=True), job("policy", "sql", run_policy="skip")]),
            ("two", [job("later", "sql")]),
        )
    )
    assert [j for j, _ in validate_document(doc).messages()] == ["later"]
    # stage execution: only flagged stages count, and "skip" is the only inactive policy
    doc = WorkflowDocument.from_dict(
        document(
            ("one", [job("x", "sql")], True),
            ("two", [job("y", "sql")]),
        )
    )
    assert [j for j, _ in validate_document(doc, stage_exec_mode=True).messages()] == ["x"]


def test_raise_first():
    doc = WorkflowDocument.from_dict(document(("one", [job("a", "sql", id="db", sql="  ")])))
    with pytest.raises(ValidationFailure) as exc:
        validate_document(doc).raise_first()
    assert str(exc.value) == "a: SQL statement is empty"


def test_clean_document_passes():
    doc = WorkflowDocument.from_dict(document(("one", [job("a", "sql", id="db", sql="select 1")])))
    report = validate_document(doc)
    assert report.ok
    assert report.first is None


def test_dangling_origin_blocks_saved_picks():
    raw = document(("deploy", [job("deploy", "zadig-deploy", source="fromjob", origin="gone")]))
    raw["stages"][0]["jobs"][0]["pickedTargets"] = [{"service_name": "svcA", "modules": [{"service_module": "modA"}]}]
    doc = WorkflowDocument.from_dict(raw)
    assert doc.get("deploy").selection.picked_targets

    report = validate_document(doc)
    assert report.first.kind == "missing_source"
    assert report.first.job == "deploy"
    assert "gone" in report.first.message
    assert len(report.failures) == 1
