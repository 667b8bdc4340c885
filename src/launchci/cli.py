# cli.py
from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import click

from launchci import settings
from launchci.api_client import APIClient, APIError
from launchci.context import HostContext
from launchci.errors import LaunchError, ValidationFailure
from launchci.serialize import dumps_payload
from launchci.session import RunSession
from launchci.ui.console import Console, get_console, set_console


def load_document(path: str) -> Dict[str, Any]:
    """
    Read a workflow document (preset or cloned run) from a JSON file, or
    stdin when path is "-".
    """
    console = get_console()
    try:
        if path == "-":
            return json.load(sys.stdin)
        return json.loads(Path(path).read_text(encoding="utf-8"))
    except FileNotFoundError:
        console.print_error(
            "Workflow file not found",
            f"Could not find workflow file: {path}",
            suggestion="Fetch one first:\n  launchci fetch --workflow my-workflow --project my-project -o run.json",
        )
        sys.exit(1)
    except json.JSONDecodeError as e:
        console.print_error("Invalid workflow file", f"{path} is not valid JSON: {e}")
        sys.exit(1)


def open_session(
    ctx: click.Context,
    document: str,
    skip: Tuple[str, ...],
    select: Tuple[str, ...],
    gateway: Optional[APIClient] = None,
) -> RunSession:
    """Open a session over a document file and replay --skip/--select edits."""
    params = dict(ctx.obj["host"])
    session = RunSession(HostContext.from_dict(params), gateway=gateway)
    session.open_preset(load_document(document))

    for name in skip:
        if session.mode.stage_exec_mode:
            session.toggle_exec_stage_job(name)
        else:
            session.toggle_job(name)
    for item in select:
        name, _, keys = item.partition("=")
        session.select(name, [k for k in keys.split(",") if k])
    return session


def mode_options(fn):
    fn = click.option("--stage-exec", is_flag=True, default=False, help="Only run stages marked for execution")(fn)
    fn = click.option("--edit-runner", is_flag=True, default=False, help="Editing a saved run (keep its choices)")(fn)
    fn = click.option("--release-plan", is_flag=True, default=False, help="Run inside a release plan")(fn)
    return fn


def edit_options(fn):
    fn = click.option("--skip", multiple=True, help="Toggle a job off (repeatable)")(fn)
    fn = click.option(
        "--select",
        multiple=True,
        help="Pick targets of a job: JOB=KEY[,KEY...] (keys are service/module or group/namespace/data_id)",
    )(fn)
    return fn


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=settings.DEBUG,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.option("--api", default=settings.API_URL, envvar="LAUNCHCI_API_URL", show_default=True, help="Gateway base URL")
@click.option("--token", default=settings.API_TOKEN, envvar="LAUNCHCI_API_TOKEN", help="Gateway API token")
@click.option("--project", default="", help="Project name")
@click.option("--workflow", default="", help="Workflow name")
@click.pass_context
def cli(ctx, debug, api, token, project, workflow):
    """LaunchCI: configure and launch pipeline runs."""
    # Initialize console with debug flag
    console = Console(debug=debug)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    ctx.obj["api"] = api
    ctx.obj["token"] = token
    ctx.obj["host"] = {"projectName": project, "workflowName": workflow}


def _apply_mode(ctx, stage_exec, edit_runner, release_plan) -> None:
    ctx.obj["host"].update(
        {"stageExecMode": stage_exec, "editRunner": edit_runner, "releasePlanMode": release_plan}
    )


def _fail(exc: Exception) -> None:
    console = get_console()
    if isinstance(exc, ValidationFailure):
        console.print_validation([(exc.job, exc.message)])
    elif isinstance(exc, LaunchError):
        console.print_error(exc.kind.replace("_", " "), exc.message)
    else:
        console.print_exception(exc)
    sys.exit(1)


@cli.command()
@click.option("--approval-ticket", default="", help="Approval ticket id")
@click.option("-o", "--output", default="-", help="Where to write the preset (default: stdout)")
@click.pass_context
def fetch(ctx, approval_ticket, output):
    """Fetch a workflow preset from the gateway."""
    host = ctx.obj["host"]
    if not host["workflowName"]:
        get_console().print_error("Missing workflow", "Pass --workflow to choose the workflow to fetch.")
        sys.exit(1)
    client = APIClient(ctx.obj["api"], ctx.obj["token"])
    try:
        preset = client.get_workflow_preset(host["workflowName"], host["projectName"], approval_ticket)
    except APIError as e:
        _fail(e)
        return
    text = json.dumps(preset, indent=2, ensure_ascii=False)
    if output == "-":
        click.echo(text)
    else:
        Path(output).write_text(text + "\n", encoding="utf-8")
        get_console().print_info(f"Wrote preset to {output}")


@cli.command()
@click.argument("document")
@mode_options
@edit_options
@click.pass_context
def plan(ctx, document, stage_exec, edit_runner, release_plan, skip, select):
    """Show which jobs would run."""
    _apply_mode(ctx, stage_exec, edit_runner, release_plan)
    console = get_console()
    try:
        with open_session(ctx, document, skip, select) as session:
            console.print_session_opened(
                session.document.name or session.context.workflow_name or document,
                session.context.project_name,
                len(session.document.jobs),
            )
            for row in session.summary():
                if row["active"]:
                    console.print_plan_job(row["name"], row["type"])
                else:
                    reason = "skipped" if row["skipped"] else f"run policy '{row['run_policy']}'"
                    if session.mode.stage_exec_mode and not row["skipped"]:
                        reason = "stage not executed" if row["run_policy"] != "skip" else "skip"
                    console.print_plan_job_skipped(row["name"], reason)
            console.print_missing_sources(session.missing_source_jobs())
    except LaunchError as e:
        _fail(e)


@cli.command()
@click.argument("document")
@mode_options
@edit_options
@click.pass_context
def validate(ctx, document, stage_exec, edit_runner, release_plan, skip, select):
    """Check a run is ready to submit."""
    _apply_mode(ctx, stage_exec, edit_runner, release_plan)
    try:
        with open_session(ctx, document, skip, select) as session:
            report = session.validate()
    except LaunchError as e:
        _fail(e)
        return
    get_console().print_validation(report.messages())
    if not report.ok:
        sys.exit(1)


@cli.command()
@click.argument("document")
@mode_options
@edit_options
@click.option("--debug-run", is_flag=True, default=False, help="Mark the run as a debug run")
@click.option("--pretty/--compact", default=False, help="Indent the output")
@click.pass_context
def render(ctx, document, stage_exec, edit_runner, release_plan, skip, select, debug_run, pretty):
    """Print the request body that submit would send."""
    _apply_mode(ctx, stage_exec, edit_runner, release_plan)
    try:
        with open_session(ctx, document, skip, select) as session:
            payload = session.build_payload(debug=debug_run)
    except LaunchError as e:
        _fail(e)
        return
    if pretty:
        click.echo(json.dumps(payload, indent=2, sort_keys=True, ensure_ascii=False))
    else:
        click.echo(dumps_payload(payload))


@cli.command()
@click.argument("document")
@mode_options
@edit_options
@click.option("--workitem-type", required=True, help="Work item type key")
@click.option("--workitem-id", required=True, help="Work item id")
@click.option("--debug-run", is_flag=True, default=False, help="Mark the run as a debug run")
@click.pass_context
def submit(ctx, document, stage_exec, edit_runner, release_plan, skip, select, workitem_type, workitem_id, debug_run):
    """Validate and submit a run."""
    _apply_mode(ctx, stage_exec, edit_runner, release_plan)
    ctx.obj["host"].update({"workitemTypeKey": workitem_type, "workItemId": workitem_id})
    client = APIClient(ctx.obj["api"], ctx.obj["token"])
    console = get_console()
    try:
        with open_session(ctx, document, skip, select, gateway=client) as session:
            task_id = session.submit(debug=debug_run)
            console.print_submitted(task_id, session.document.name or ctx.obj["host"]["workflowName"])
    except LaunchError as e:
        _fail(e)


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
