# runner.py
from __future__ import annotations

import os
import threading
import time
import uuid
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional

from . import settings
from .cache import CacheStore
from .dag import build_dag, topo_levels
from .environment import provision
from .errors import GateSkip, StepFailure, TriggerMismatch
from .executor import JobContext, run_job
from .expressions import referenced_secrets
from .gate import ADMIT, SKIP, admit, blocking_prerequisites
from .model import (
    FAILED,
    PENDING,
    RUNNING,
    SKIPPED,
    Job,
    JobResult,
    Pipeline,
    PipelineResult,
    PushEvent,
)
from .publish import ArtifactStore
from .ui.console import get_console

# (job name, old status, new status, result or None)
TransitionObserver = Callable[[str, str, str, Optional[JobResult]], None]


def plan(pipeline: Pipeline) -> List[List[str]]:
    """Topological stages; raises DefinitionError / CyclicDependencyError."""
    adj, indeg = build_dag(pipeline.jobs)
    return topo_levels(adj, indeg)


def new_run_id() -> str:
    return f"{time.strftime('%Y%m%d%H%M%S')}-{uuid.uuid4().hex[:8]}"


def _console_observer(job: str, old: str, new: str, result: Optional[JobResult]) -> None:
    detail = None
    if result is not None and result.error is not None:
        detail = str(result.error).splitlines()[0]
    get_console().print_transition(job, old, new, detail)


def _execute(
    job: Job,
    *,
    event: PushEvent,
    run_id: str,
    cache: CacheStore,
    artifacts: ArtifactStore,
    secrets: Mapping[str, str],
    cancel: threading.Event,
    work_root: Path,
    keep_sandbox: bool,
) -> JobResult:
    """One job on its own freshly provisioned environment."""
    with provision(job.name, work_root, env=job.env, keep=keep_sandbox) as env:
        get_console().print_debug(f"[{job.name}] sandbox: {env.root}")
        ctx = JobContext(
            job=job,
            env=env,
            event=event,
            run_id=run_id,
            cache=cache,
            artifacts=artifacts,
            secrets=secrets,
            cancel=cancel,
        )
        return run_job(job, env, ctx)


def run_pipeline(
    pipeline: Pipeline,
    event: PushEvent,
    *,
    cache: CacheStore | None = None,
    artifacts: ArtifactStore | None = None,
    secrets: Mapping[str, str] | None = None,
    run_id: str | None = None,
    work_root: str | Path | None = None,
    max_workers: int | None = None,
    keep_sandbox: bool = False,
    cancel: threading.Event | None = None,
    observer: TransitionObserver | None = None,
) -> PipelineResult:
    """
    Scheduler:

    - Checks the push event against the pipeline trigger.
    - Builds the job DAG and rejects cycles / unknown needs up front.
    - Re-evaluates the gate for every pending job after each completion:
      admit -> submit to the pool, skip -> mark skipped (propagates), wait -> keep.
    - Returns once every job is terminal. Failed jobs are never retried.
    """
    if not pipeline.trigger.matches(event):
        raise TriggerMismatch(
            f"Pipeline '{pipeline.name}' runs on pushes to '{pipeline.trigger.branch}', "
            f"not '{event.branch}'"
        )

    plan(pipeline)

    console = get_console()
    cache = cache or CacheStore(settings.CACHE_DIR)
    artifacts = artifacts or ArtifactStore(settings.ARTIFACT_DIR)
    secrets = dict(secrets or {})
    run_id = run_id or new_run_id()
    work_root_p = Path(work_root or settings.WORK_DIR)
    cancel = cancel or threading.Event()
    notify = observer or _console_observer

    # only secrets the definition references are handed to jobs
    wanted = {
        name
        for job in pipeline.jobs
        for step in job.steps
        for name in referenced_secrets([step.params, step.run, job.env])
    }
    secrets = {k: v for k, v in secrets.items() if k in wanted}
    console.add_secrets(secrets.values())

    if max_workers is None:
        max_workers = settings.WORKERS or max(1, (os.cpu_count() or 2) - 1)

    statuses: Dict[str, str] = {j.name: PENDING for j in pipeline.jobs}
    results: Dict[str, JobResult] = {}
    in_flight: Dict[Future, str] = {}
    cancelled = False

    def _set(name: str, new: str, result: Optional[JobResult] = None) -> None:
        old = statuses[name]
        statuses[name] = new
        if result is not None:
            results[name] = result
        notify(name, old, new, result)

    def _skip_pending(reason_for: Callable[[str], Exception]) -> None:
        for name, status in statuses.items():
            if status == PENDING:
                _set(name, SKIPPED, JobResult(job=name, status=SKIPPED, error=reason_for(name)))

    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        while True:
            if cancel.is_set():
                cancelled = True
                _skip_pending(lambda n: GateSkip(job=n, blocked_by={}, reason="run cancelled"))
            else:
                # gate evaluation until fixpoint so skips propagate transitively
                changed = True
                while changed:
                    changed = False
                    for job in pipeline.jobs:
                        if statuses[job.name] != PENDING:
                            continue
                        decision = admit(job, statuses)
                        if decision == SKIP:
                            blocked = blocking_prerequisites(job, statuses)
                            _set(job.name, SKIPPED,
                                 JobResult(job=job.name, status=SKIPPED, error=GateSkip(job=job.name, blocked_by=blocked)))
                            changed = True
                        elif decision == ADMIT:
                            _set(job.name, RUNNING)
                            fut = pool.submit(
                                _execute,
                                job,
                                event=event,
                                run_id=run_id,
                                cache=cache,
                                artifacts=artifacts,
                                secrets=secrets,
                                cancel=cancel,
                                work_root=work_root_p,
                                keep_sandbox=keep_sandbox,
                            )
                            in_flight[fut] = job.name

            if not in_flight:
                break

            try:
                done, _pending = wait(list(in_flight), return_when=FIRST_COMPLETED)
            except KeyboardInterrupt:
                # fail-forward: running jobs stop before their next step
                cancel.set()
                continue

            for fut in done:
                name = in_flight.pop(fut)
                try:
                    result = fut.result()
                except Exception as e:
                    result = JobResult(
                        job=name,
                        status=FAILED,
                        error=StepFailure(job=name, step="<job>", cmd=type(e).__name__, exit_code=-1, stderr=str(e)),
                    )
                    console.print_exception(e)
                _set(name, result.status, result)

    return PipelineResult(
        run_id=run_id,
        event=event,
        statuses=dict(statuses),
        results=results,
        cancelled=cancelled or cancel.is_set(),
    )
