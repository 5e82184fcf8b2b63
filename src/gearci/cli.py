# cli.py
from __future__ import annotations

import json
import subprocess
import sys
from pathlib import Path

import click

from . import settings
from .cache import CacheStore
from .definition import load_pipeline
from .errors import DefinitionError, TriggerMismatch
from .git_facts.git import current_branch, head_sha
from .model import PushEvent
from .publish import ArtifactStore
from .runner import new_run_id, plan, run_pipeline
from .ui.console import Console, get_console, set_console


def find_workflow_files() -> list[Path]:
    """
    Find all workflow files in the current directory.

    Returns:
        List of Path objects for workflow files
    """
    current_dir = Path(".")
    found = set(current_dir.glob("*_workflow.py"))
    found.update(current_dir.glob(".github/workflows/*.yml"))
    found.update(current_dir.glob(".github/workflows/*.yaml"))
    return sorted(found)


def discover_workflow(workflow_arg: str | None) -> Path:
    """
    Discover workflow file from argument or default.

    Raises:
        SystemExit: If workflow cannot be found or multiple workflows exist
    """
    console = get_console()

    if workflow_arg:
        workflow_path = Path(workflow_arg)
        if not workflow_path.exists() and workflow_path.suffix == "":
            workflow_path = Path(str(workflow_path) + ".py")
        if not workflow_path.exists():
            console.print_error(
                "Workflow file not found",
                f"Could not find workflow file: {workflow_arg}",
                suggestion="Specify a different path:\n  gearci run --workflow gearbot_workflow.py",
            )
            sys.exit(1)
        return workflow_path

    workflow_files = find_workflow_files()

    if len(workflow_files) == 0:
        console.print_error(
            "No workflow file found",
            "Could not find any workflow files.",
            details=[
                "Looked for:",
                "  *_workflow.py",
                "  .github/workflows/*.yml",
            ],
            suggestion="Specify a workflow explicitly:\n  gearci run --workflow my_workflow.py",
        )
        sys.exit(1)

    if len(workflow_files) > 1:
        console.print_error(
            "Multiple workflow files found",
            "Found multiple workflow files. Please specify which one to use:",
            details=[str(f) for f in workflow_files],
            suggestion="Specify a workflow explicitly:\n  gearci run --workflow gearbot_workflow.py",
        )
        sys.exit(1)

    return workflow_files[0]


def _load(workflow: str | None):
    console = get_console()
    workflow_path = discover_workflow(workflow)
    try:
        return workflow_path, load_pipeline(workflow_path)
    except (DefinitionError, FileNotFoundError) as e:
        console.print_error("Failed to load workflow", f"Could not load workflow from {workflow_path}",
                            details=str(e).splitlines())
        sys.exit(1)


def _git_default(fn, source: str, fallback: str) -> str:
    try:
        return fn(source)
    except (subprocess.CalledProcessError, FileNotFoundError):
        return fallback


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and process output)",
)
@click.pass_context
def cli(ctx, debug):
    """gearci: push-triggered build pipeline runner."""
    set_console(Console(debug=debug))
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.option("--workflow", default=None, help="Workflow file (.py or .yml)")
@click.option("--branch", default=None, help="Pushed branch (defaults to the current git branch)")
@click.option("--sha", default=None, help="Pushed commit (defaults to git HEAD)")
@click.option("--source", default=".", show_default=True, help="Source tree checked out by each job")
@click.option("--run-id", default=None, help="Run identity for published artifacts")
@click.option("--workers", default=None, type=int, help="Number of parallel jobs")
@click.option("--cache-dir", default=None, help=f"Cache directory [default: {settings.CACHE_DIR}]")
@click.option("--artifact-dir", default=None, help=f"Artifact directory [default: {settings.ARTIFACT_DIR}]")
@click.option("--work-dir", default=None, help=f"Job sandbox directory [default: {settings.WORK_DIR}]")
@click.option("--keep-sandbox/--no-keep-sandbox", default=settings.KEEP_SANDBOX, help="Keep job sandboxes after the run")
@click.option("--json", "as_json", is_flag=True, default=False, help="Print the run result as JSON")
@click.pass_context
def run(ctx, workflow, branch, sha, source, run_id, workers, cache_dir, artifact_dir, work_dir, keep_sandbox, as_json):
    """Run the pipeline for a push event."""
    console = get_console()
    workflow_path, pipeline = _load(workflow)

    event = PushEvent(
        branch=branch or _git_default(current_branch, source, "HEAD"),
        sha=sha or _git_default(head_sha, source, ""),
        source=Path(source),
    )

    if not pipeline.trigger.matches(event):
        console.print_info(
            f"No run: '{pipeline.name}' triggers on pushes to '{pipeline.trigger.branch}', "
            f"this push is to '{event.branch}'."
        )
        return

    try:
        run_id = run_id or new_run_id()
        console.print_run_started(
            pipeline=pipeline.name,
            branch=event.branch,
            sha=event.sha,
            run_id=run_id,
            job_count=len(pipeline.jobs),
        )
        result = run_pipeline(
            pipeline,
            event,
            cache=CacheStore(cache_dir or settings.CACHE_DIR),
            artifacts=ArtifactStore(artifact_dir or settings.ARTIFACT_DIR),
            secrets=settings.load_secrets(),
            run_id=run_id,
            work_root=work_dir or settings.WORK_DIR,
            max_workers=workers,
            keep_sandbox=keep_sandbox,
        )
    except (DefinitionError, TriggerMismatch) as e:
        console.print_error("Pipeline rejected", str(e))
        sys.exit(1)
    except KeyboardInterrupt:
        console.print_warning("Interrupted, run abandoned.")
        sys.exit(130)

    console.print_results(result)
    if as_json:
        click.echo(console.mask(json.dumps(result.to_dict(), indent=2)))

    if result.cancelled:
        sys.exit(130)
    if not result.succeeded:
        sys.exit(1)


@cli.command("plan")
@click.option("--workflow", default=None, help="Workflow file (.py or .yml)")
def plan_cmd(workflow):
    """Show the job stages without running anything."""
    console = get_console()
    _path, pipeline = _load(workflow)
    console.print_header(f"Pipeline: {pipeline.name} (on push to {pipeline.trigger.branch})")
    stages = plan(pipeline)
    console.print_plan(stages)
    for stage in stages:
        for name in stage:
            job = pipeline.job(name)
            needs = f" needs {', '.join(job.needs)}" if job.needs else ""
            console.print_info(f"  {job.name}:{needs}")
            for step in job.steps:
                console.print_info(f"    - {step.name} [{step.kind}]")


@cli.command()
@click.argument("run_id", required=False)
@click.option("--artifact-dir", default=None, help=f"Artifact directory [default: {settings.ARTIFACT_DIR}]")
def artifacts(run_id, artifact_dir):
    """List artifacts uploaded by a run, or the runs that uploaded any."""
    store = ArtifactStore(artifact_dir or settings.ARTIFACT_DIR)
    if run_id is None:
        for rid in store.runs():
            click.echo(rid)
        return
    names = store.list(run_id)
    if not names:
        get_console().print_info(f"No artifacts for run {run_id}")
        return
    for name in names:
        for f in store.files(run_id, name):
            click.echo(f"{name}\t{f}")


@cli.command("cache-keys")
@click.option("--cache-dir", default=None, help=f"Cache directory [default: {settings.CACHE_DIR}]")
def cache_keys(cache_dir):
    """List stored cache keys."""
    for key in CacheStore(cache_dir or settings.CACHE_DIR).keys():
        click.echo(key)


if __name__ == "__main__":
    cli()
