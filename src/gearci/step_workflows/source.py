# step_workflows/source.py
from __future__ import annotations

import shutil
from pathlib import Path
from typing import TYPE_CHECKING, Dict

from ..model import CHECKOUT, Step

if TYPE_CHECKING:
    from ..executor import JobContext

# never copied into a job workspace
CHECKOUT_EXCLUDES = (".git", ".gearci", "__pycache__")


def checkout(name: str = "Checkout sources") -> Step:
    return Step(name=name, kind=CHECKOUT)


def run_step(ctx: "JobContext", step: Step) -> Dict[str, str]:
    """Copy the pushed source tree into the job's fresh workspace."""
    src = Path(ctx.event.source).expanduser().resolve()
    if not src.is_dir():
        raise ctx.fail(step, f"checkout {src}", 1, stderr=f"source directory not found: {src}")

    shutil.copytree(
        src,
        ctx.env.workspace,
        ignore=shutil.ignore_patterns(*CHECKOUT_EXCLUDES),
        dirs_exist_ok=True,
        symlinks=True,
    )
    return {"ref": ctx.event.branch, "sha": ctx.event.sha}
