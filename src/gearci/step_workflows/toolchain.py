# step_workflows/toolchain.py
from __future__ import annotations

import re
from typing import TYPE_CHECKING, Dict

from .. import settings
from ..environment import command_line, tail
from ..model import INSTALL_TOOLCHAIN, Step

if TYPE_CHECKING:
    from ..executor import JobContext

# "rustc 1.75.0 (82e1608df 2023-12-21)"
_RUSTC_VERSION = re.compile(r"^rustc\s+(\S+)\s+\((\w+)\s+(\S+)\)")


def install_toolchain(
    version: str = "stable",
    *,
    override: bool = False,
    name: str = "Install toolchain",
    id: str | None = "toolchain",
) -> Step:
    """
    Install a compiler toolchain. Outputs (steps.<id>.outputs.*):
      rustc       full version string
      rustc_hash  short commit hash of the compiler
    """
    return Step(name=name, kind=INSTALL_TOOLCHAIN, id=id,
                params={"toolchain": version, "override": bool(override)})


def parse_rustc_version(text: str) -> Dict[str, str]:
    m = _RUSTC_VERSION.match(text.strip())
    if not m:
        return {"rustc": text.strip(), "rustc_hash": ""}
    return {"rustc": m.group(1), "rustc_hash": m.group(2), "rustc_date": m.group(3)}


def run_step(ctx: "JobContext", step: Step) -> Dict[str, str]:
    version = str(step.params.get("toolchain") or "stable")
    override = step.params.get("override") in (True, "true", "True")

    commands = [[settings.RUSTUP, "toolchain", "install", version, "--profile", "minimal"]]
    if override:
        commands.append([settings.RUSTUP, "override", "set", version])

    for argv in commands:
        proc = ctx.env.run(argv)
        if proc.returncode != 0:
            raise ctx.fail(step, command_line(argv), proc.returncode, tail(proc.stdout), tail(proc.stderr))

    argv = [settings.RUSTC, "-V"]
    proc = ctx.env.run(argv)
    if proc.returncode != 0:
        raise ctx.fail(step, command_line(argv), proc.returncode, tail(proc.stdout), tail(proc.stderr))

    outputs = parse_rustc_version(proc.stdout)
    outputs["toolchain"] = version
    return outputs
