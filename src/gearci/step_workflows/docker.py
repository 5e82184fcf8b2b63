# step_workflows/docker.py
from __future__ import annotations

import subprocess
from typing import TYPE_CHECKING, Dict, List

from .. import settings
from ..environment import command_line, tail
from ..errors import PublishFailure
from ..expressions import secret
from ..model import BUILD_IMAGE, PUSH_IMAGE, REGISTRY_LOGIN, Step
from ..ui.console import get_console

if TYPE_CHECKING:
    from ..executor import JobContext


# ---------------------------------------------------------------------
# Container step helpers
# ---------------------------------------------------------------------

def registry_login(
    username: str,
    password: str = secret("DOCKERHUB_TOKEN"),
    *,
    registry: str | None = None,
    name: str = "Login to Docker Hub",
) -> Step:
    """password is normally a secret reference, e.g. secret("DOCKERHUB_TOKEN")."""
    params = {"username": username, "password": password}
    if registry:
        params["registry"] = registry
    return Step(name=name, kind=REGISTRY_LOGIN, params=params)


def build_image(tag: str, *, context: str = ".", name: str = "Build Docker image") -> Step:
    return Step(name=name, kind=BUILD_IMAGE, params={"tag": tag, "context": context})


def push_image(tag: str, *, name: str = "Push container to Docker Hub") -> Step:
    return Step(name=name, kind=PUSH_IMAGE, params={"tag": tag})


def image_ref(repository: str, tag: str = "latest") -> str:
    return f"{repository}:{tag}"


# ---------------------------------------------------------------------
# Container step execution
# ---------------------------------------------------------------------

def _docker(ctx: "JobContext", step: Step, args: List[str], *, input: str | None = None) -> subprocess.CompletedProcess:
    argv = [settings.DOCKER, *args]
    try:
        return ctx.env.run(argv, input=input)
    except FileNotFoundError as e:
        raise PublishFailure(job=ctx.job.name, step=step.name, cmd=command_line(argv), exit_code=127,
                             stderr=f"{e}. Install Docker and ensure the daemon is running.",
                             sink="container registry")


def _raise_for(ctx: "JobContext", step: Step, args: List[str], proc: subprocess.CompletedProcess) -> None:
    if proc.returncode != 0:
        raise PublishFailure(job=ctx.job.name, step=step.name, cmd=command_line([settings.DOCKER, *args]),
                             exit_code=proc.returncode, stdout=tail(proc.stdout), stderr=tail(proc.stderr),
                             sink="container registry")


def run_login(ctx: "JobContext", step: Step) -> None:
    """docker login with the token on stdin, never on the command line."""
    username = str(step.params.get("username") or "")
    password = str(step.params.get("password") or "")
    if not username or not password:
        raise PublishFailure(job=ctx.job.name, step=step.name, cmd="docker login", exit_code=1,
                             stderr="registry username and password are required", sink="container registry")

    args = ["login", "--username", username, "--password-stdin"]
    registry = step.params.get("registry")
    if registry:
        args.append(str(registry))
    _raise_for(ctx, step, args, _docker(ctx, step, args, input=password))


def run_build(ctx: "JobContext", step: Step) -> Dict[str, str]:
    tag = str(step.params["tag"])
    args = ["build", "-t", tag, str(step.params.get("context") or ".")]
    _raise_for(ctx, step, args, _docker(ctx, step, args))
    return {"tag": tag}


def run_push(ctx: "JobContext", step: Step) -> Dict[str, str]:
    """Push the tag; PUSH_RETRIES extra attempts after a failed push."""
    tag = str(step.params["tag"])
    args = ["push", tag]
    attempts = 1 + max(0, settings.PUSH_RETRIES)
    proc = None
    for attempt in range(1, attempts + 1):
        proc = _docker(ctx, step, args)
        if proc.returncode == 0:
            break
        if attempt < attempts:
            get_console().print_warning(f"[{ctx.job.name}] push of {tag} failed (attempt {attempt}/{attempts}), retrying")
    _raise_for(ctx, step, args, proc)
    return {"tag": tag}
