# step_workflows/artifact.py
from __future__ import annotations

from typing import TYPE_CHECKING, Dict

from ..errors import PublishFailure
from ..model import UPLOAD_ARTIFACT, Step
from ..ui.console import get_console

if TYPE_CHECKING:
    from ..executor import JobContext


def upload_artifact(name: str, path: str, *, step_name: str = "Upload artifact") -> Step:
    return Step(name=step_name, kind=UPLOAD_ARTIFACT, params={"name": name, "path": path})


def run_step(ctx: "JobContext", step: Step) -> Dict[str, str]:
    name = str(step.params.get("name") or "artifact")
    path = str(step.params.get("path") or "")
    cmd = f"upload {path} as {name}"

    source = ctx.env.resolve(path)
    try:
        stored = ctx.artifacts.upload(ctx.run_id, name, source)
    except (OSError, ValueError) as e:
        raise PublishFailure(job=ctx.job.name, step=step.name, cmd=cmd, exit_code=1,
                             stderr=str(e), sink="artifact store")

    get_console().print_info(f"[{ctx.job.name}] artifact '{name}' uploaded for run {ctx.run_id}")
    return {"artifact": name, "path": str(stored.path)}
