# step_workflows/shell.py
from __future__ import annotations

from typing import TYPE_CHECKING

from ..environment import tail
from ..model import RUN, Step

if TYPE_CHECKING:
    from ..executor import JobContext


def sh(name: str, cmd: str, *, cwd: str | None = None, id: str | None = None) -> Step:
    """Create a shell step."""
    return Step(name=name, kind=RUN, run=cmd, cwd=cwd, id=id)


def run_step(ctx: "JobContext", step: Step) -> None:
    """Run a shell command in the job's workspace; non-zero exit fails the step."""
    proc = ctx.env.run(step.run or "", cwd=step.cwd, env=ctx.job.env)
    if proc.returncode != 0:
        raise ctx.fail(step, step.run or "", proc.returncode, tail(proc.stdout), tail(proc.stderr))
