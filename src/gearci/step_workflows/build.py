# step_workflows/build.py
from __future__ import annotations

import shlex
from typing import TYPE_CHECKING, List, Sequence

from .. import settings
from ..environment import command_line, tail
from ..model import BUILD, Step

if TYPE_CHECKING:
    from ..executor import JobContext

MODES = ("test", "release")


def build(mode: str, args: Sequence[str] | str = (), *, name: str | None = None) -> Step:
    """
    Invoke the project build.
      mode="test"    -> cargo test <args>
      mode="release" -> cargo build --release <args>
    """
    if mode not in MODES:
        raise ValueError(f"Unknown build mode {mode!r}; expected one of {MODES}")
    default_name = "Run cargo test" if mode == "test" else "Create release build"
    return Step(name=name or default_name, kind=BUILD, params={"mode": mode, "args": _split(args)})


def cargo(command: str, args: Sequence[str] | str = (), *, name: str | None = None) -> Step:
    """Raw cargo invocation, mapped onto a build mode where one fits."""
    extra = _split(args)
    if command == "test":
        return build("test", extra, name=name)
    if command == "build" and "--release" in extra:
        return build("release", [a for a in extra if a != "--release"], name=name)
    return Step(name=name or f"cargo {command}", kind=BUILD, params={"command": command, "args": extra})


def _split(args: Sequence[str] | str) -> List[str]:
    if isinstance(args, str):
        return shlex.split(args)
    return [str(a) for a in args]


def command_for(step: Step) -> List[str]:
    mode = step.params.get("mode")
    args = _split(step.params.get("args") or [])
    if mode == "test":
        return [settings.CARGO, "test", *args]
    if mode == "release":
        return [settings.CARGO, "build", "--release", *args]
    command = step.params.get("command")
    if not command:
        raise ValueError(f"build step {step.name!r} has neither a mode nor a command")
    return [settings.CARGO, str(command), *args]


def run_step(ctx: "JobContext", step: Step) -> None:
    try:
        argv = command_for(step)
    except ValueError as e:
        raise ctx.fail(step, settings.CARGO, 1, stderr=str(e))
    proc = ctx.env.run(argv, cwd=step.cwd, env=ctx.job.env)
    if proc.returncode != 0:
        raise ctx.fail(step, command_line(argv), proc.returncode, tail(proc.stdout), tail(proc.stderr))
