# src/gearci/dsl.py
from __future__ import annotations

from dataclasses import replace
from typing import Dict, List, Optional

from .errors import DefinitionError
from .expressions import secret
from .model import Job, Pipeline, PushTrigger, Step
from .step_workflows.artifact import upload_artifact
from .step_workflows.build import build, cargo
from .step_workflows.cache import cache, rust_cache
from .step_workflows.docker import build_image, image_ref, push_image, registry_login
from .step_workflows.shell import sh
from .step_workflows.source import checkout
from .step_workflows.toolchain import install_toolchain

__all__ = [
    "pipeline", "job", "on_push", "JobBuilder", "builder",
    "sh", "checkout", "install_toolchain", "cache", "rust_cache", "build", "cargo",
    "upload_artifact", "registry_login", "build_image", "push_image", "image_ref", "secret",
]


# ---------------------------------------------------------------------
# Functional Job helper
# ---------------------------------------------------------------------

def job(
    name: str,
    *steps: Step,  # allow: job("x", sh(...), sh(...))
    steps_list: Optional[List[Step]] = None,  # allow: job("x", steps_list=[...])
    needs: Optional[List[str] | str] = None,
    title: Optional[str] = None,
    runs_on: str = "ubuntu-latest",
    env: Optional[Dict[str, str]] = None,
    cwd: str | None = None,  # default cwd applied to steps missing cwd
) -> Job:
    steps_final: List[Step] = []
    if steps_list:
        steps_final.extend(list(steps_list))
    steps_final.extend(list(steps))

    if not steps_final:
        raise DefinitionError(f"job({name!r}) must have at least one step")

    if cwd is not None:
        steps_final = [s if s.cwd is not None else replace(s, cwd=cwd) for s in steps_final]

    if isinstance(needs, str):
        needs = [needs]

    return Job(
        name=name,
        steps=steps_final,
        needs=list(needs or []),
        title=title,
        runs_on=runs_on,
        env={k: str(v) for k, v in (env or {}).items()},
    )


def on_push(branch: str) -> PushTrigger:
    return PushTrigger(branch=branch)


def pipeline(name: str, *jobs: Job, branch: str = "main") -> Pipeline:
    """
    Pipeline definition helper:

        PIPELINE = pipeline(
            "Build",
            job("test", checkout(), build("test")),
            job("publish", checkout(), ..., needs=["test"]),
            branch="live",
        )
    """
    return Pipeline(name=name, trigger=on_push(branch), jobs=list(jobs))


# ---------------------------------------------------------------------
# Builder API
# ---------------------------------------------------------------------

class JobBuilder:
    def __init__(self, name: str):
        self.name = name
        self._needs: list[str] = []
        self._steps: list[Step] = []
        self._env: dict[str, str] = {}
        self._title: Optional[str] = None

    def depends_on(self, *job_names: str):
        self._needs.extend(job_names)
        return self

    def titled(self, title: str):
        self._title = title
        return self

    def step(self, step: Step):
        self._steps.append(step)
        return self

    def define_step(self, name: str, run: str, cwd: str | None = None):
        return self.step(sh(name, run, cwd=cwd))

    def with_env(self, **env):
        # force values to str for env compatibility
        self._env.update({k: str(v) for k, v in env.items()})
        return self

    def build(self) -> Job:
        if not self._steps:
            raise DefinitionError(f"Job '{self.name}' has no steps")
        return Job(
            name=self.name,
            steps=list(self._steps),
            needs=list(self._needs),
            title=self._title,
            env=dict(self._env),
        )


def builder(name: str) -> JobBuilder:
    """Convenience: builder('test').define_step(...).build()"""
    return JobBuilder(name)
