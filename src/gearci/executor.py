# executor.py
from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional

from . import expressions
from .cache import CacheStore, hash_files
from .environment import ExecutionEnvironment
from .errors import TOOL_HINTS, CIError, ExpressionError, StepFailure
from .model import FAILED, SKIPPED, SUCCEEDED, Job, JobResult, PushEvent, Step, StepResult
from .publish import ArtifactStore
from .ui.console import get_console


@dataclass
class JobContext:
    """
    Everything a step handler may touch while its job runs.

    The cache store and artifact store are shared services handed in by
    reference; everything else belongs to this one job run.
    """
    job: Job
    env: ExecutionEnvironment
    event: PushEvent
    run_id: str
    cache: CacheStore
    artifacts: ArtifactStore
    secrets: Mapping[str, str] = field(default_factory=dict)
    cancel: threading.Event = field(default_factory=threading.Event)
    step_outputs: Dict[str, Dict[str, str]] = field(default_factory=dict)
    cache_events: List[str] = field(default_factory=list)
    # run after every step succeeded, in registration order
    post_hooks: List[Callable[["JobContext"], None]] = field(default_factory=list)

    def expression_context(self) -> Dict:
        return expressions.build_context(
            os_name=self.env.os_name,
            event=self.event,
            run_id=self.run_id,
            step_outputs=self.step_outputs,
            secrets=self.secrets,
            env={**self.job.env, **self.env.env},
        )

    def render(self, value):
        functions = {"hashFiles": lambda *patterns: hash_files(self.env.workspace, *patterns)}
        return expressions.render(value, self.expression_context(), functions)

    def fail(self, step: Step, cmd: str, exit_code: int, stdout: str = "", stderr: str = "") -> StepFailure:
        return StepFailure(job=self.job.name, step=step.name, cmd=cmd, exit_code=exit_code, stdout=stdout, stderr=stderr)


def _render_step(ctx: JobContext, step: Step) -> Step:
    return Step(
        name=step.name,
        kind=step.kind,
        params=ctx.render(dict(step.params)),
        id=step.id,
        run=ctx.render(step.run) if step.run is not None else None,
        cwd=step.cwd,
    )


def _run_step(ctx: JobContext, step: Step) -> Dict[str, str]:
    from .step_workflows import handler_for

    try:
        handler = handler_for(step.kind)
    except KeyError:
        raise CIError(kind="unknown_step", job=ctx.job.name, step=step.name,
                      message=f"No handler for step kind {step.kind!r}")
    try:
        rendered = _render_step(ctx, step)
    except ExpressionError as e:
        raise CIError(kind="expression", job=ctx.job.name, step=step.name, message=str(e))
    return handler(ctx, rendered) or {}


def run_job(job: Job, env: ExecutionEnvironment, ctx: JobContext) -> JobResult:
    """
    Run a job's steps strictly in order inside env.

      - first failing step -> job failed, remaining steps skipped
      - cancel set before a step -> job skipped, remaining steps skipped
      - all steps succeeded -> post hooks (cache save), job succeeded
    """
    console = get_console()
    started = time.time()
    results: List[StepResult] = []
    failure: Optional[Exception] = None
    cancelled = False

    for step in job.steps:
        if failure is not None or cancelled or ctx.cancel.is_set():
            cancelled = cancelled or (failure is None and ctx.cancel.is_set())
            results.append(StepResult(name=step.name, status=SKIPPED))
            continue

        console.print_step(job.name, step.name)
        step_started = time.time()
        try:
            outputs = _run_step(ctx, step)
        except StepFailure as e:
            failure = e
            results.append(StepResult(name=step.name, status=FAILED, exit_code=e.exit_code,
                                      duration=time.time() - step_started))
            console.print_failure(step.name, str(e), exit_code=e.exit_code, output=e.stderr or e.stdout)
            continue
        except (CIError, OSError) as e:
            detail = str(e)
            if isinstance(e, FileNotFoundError) and e.filename:
                hint = TOOL_HINTS.get(Path(str(e.filename)).name)
                if hint:
                    detail = f"{detail}. {hint}"
            failure = StepFailure(job=job.name, step=step.name, cmd=step.run or step.kind, exit_code=-1, stderr=detail)
            results.append(StepResult(name=step.name, status=FAILED, exit_code=-1,
                                      duration=time.time() - step_started))
            console.print_failure(step.name, detail)
            continue

        if step.id:
            ctx.step_outputs[step.id] = dict(outputs)
        results.append(StepResult(name=step.name, status=SUCCEEDED, outputs=dict(outputs),
                                  duration=time.time() - step_started))

    if failure is not None:
        status = FAILED
    elif cancelled:
        status = SKIPPED
    else:
        status = SUCCEEDED
        for hook in ctx.post_hooks:
            hook(ctx)

    return JobResult(
        job=job.name,
        status=status,
        steps=results,
        error=failure,
        cache_events=list(ctx.cache_events),
        duration=time.time() - started,
    )
