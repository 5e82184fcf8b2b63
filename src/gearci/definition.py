# definition.py
#
# Loading pipeline definitions from disk:
#   *.py            defines pipeline() -> Pipeline or PIPELINE = Pipeline(...)
#   *.yml / *.yaml  GitHub-Actions-shaped workflow (on.push.branches + jobs)

from __future__ import annotations

import re
import runpy
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .dag import validate
from .errors import DefinitionError
from .model import Job, Pipeline, PushTrigger, Step
from .step_workflows.artifact import upload_artifact
from .step_workflows.build import cargo
from .step_workflows.cache import cache
from .step_workflows.docker import build_image, push_image, registry_login
from .step_workflows.shell import sh
from .step_workflows.source import checkout
from .step_workflows.toolchain import install_toolchain

# -------------------- Schemas --------------------


class StepSpec(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    name: Optional[str] = None
    id: Optional[str] = None
    uses: Optional[str] = None
    run: Optional[str] = None
    with_: Dict[str, Any] = Field(default_factory=dict, alias="with")
    working_directory: Optional[str] = Field(default=None, alias="working-directory")

    @model_validator(mode="after")
    def _uses_or_run(self) -> "StepSpec":
        if bool(self.uses) == bool(self.run):
            raise ValueError("a step needs exactly one of 'uses' or 'run'")
        return self


class JobSpec(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    name: Optional[str] = None
    runs_on: str = Field(default="ubuntu-latest", alias="runs-on")
    needs: List[str] = Field(default_factory=list)
    env: Dict[str, str] = Field(default_factory=dict)
    steps: List[StepSpec] = Field(min_length=1)

    @field_validator("needs", mode="before")
    @classmethod
    def _needs_list(cls, v: Any) -> Any:
        if isinstance(v, str):
            return [v]
        return v or []

    @field_validator("env", mode="before")
    @classmethod
    def _env_str(cls, v: Any) -> Any:
        if isinstance(v, dict):
            return {k: str(val) for k, val in v.items()}
        return v


class PushSpec(BaseModel):
    branches: List[str] = Field(min_length=1)

    @field_validator("branches", mode="before")
    @classmethod
    def _branch_list(cls, v: Any) -> Any:
        return [v] if isinstance(v, str) else v


class OnSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    push: PushSpec


class WorkflowSpec(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    name: str = "workflow"
    on: OnSpec
    env: Dict[str, str] = Field(default_factory=dict)
    jobs: Dict[str, JobSpec] = Field(min_length=1)


# -------------------- uses: -> step kinds --------------------

_DOCKER_BUILD = re.compile(r"^docker\s+build\s+-t\s+(\S+)\s+(\S+)$")
_DOCKER_PUSH = re.compile(r"^docker\s+push\s+(\S+)$")


def _truthy(v: Any) -> bool:
    return v is True or str(v).lower() == "true"


def _action(spec: StepSpec) -> Step:
    action = (spec.uses or "").split("@", 1)[0]
    w = spec.with_

    if action == "actions/checkout":
        return checkout(spec.name or "Checkout sources")
    if action == "actions-rs/toolchain":
        return install_toolchain(str(w.get("toolchain", "stable")), override=_truthy(w.get("override")),
                                 name=spec.name or "Install toolchain", id=spec.id)
    if action == "actions/cache":
        paths = w.get("path", "")
        paths = [str(p) for p in paths] if isinstance(paths, list) else str(paths).splitlines()
        return cache(str(w.get("key", "")), paths, name=spec.name or "Setup cache", id=spec.id)
    if action == "actions-rs/cargo":
        return cargo(str(w.get("command", "build")), str(w.get("args", "")), name=spec.name)
    if action == "actions/upload-artifact":
        return upload_artifact(str(w.get("name", "artifact")), str(w.get("path", "")),
                               step_name=spec.name or "Upload artifact")
    if action == "docker/login-action":
        return registry_login(str(w.get("username", "")), str(w.get("password", "")),
                              registry=w.get("registry"), name=spec.name or "Login to registry")
    raise DefinitionError(f"Unsupported action: uses: {spec.uses}")


def _shell(spec: StepSpec) -> Step:
    cmd = (spec.run or "").strip()
    name = spec.name or cmd.splitlines()[0]
    if "\n" not in cmd and not spec.working_directory:
        m = _DOCKER_BUILD.match(cmd)
        if m:
            return build_image(m.group(1), context=m.group(2), name=name)
        m = _DOCKER_PUSH.match(cmd)
        if m:
            return push_image(m.group(1), name=name)
    return sh(name, cmd, cwd=spec.working_directory, id=spec.id)


def _to_step(spec: StepSpec) -> Step:
    step = _action(spec) if spec.uses else _shell(spec)
    if spec.id and step.id != spec.id:
        step = Step(name=step.name, kind=step.kind, params=step.params, id=spec.id, run=step.run, cwd=step.cwd)
    return step


def pipeline_from_dict(data: Dict[str, Any]) -> Pipeline:
    # YAML 1.1 reads a bare `on:` key as boolean True
    if True in data and "on" not in data:
        data = dict(data)
        data["on"] = data.pop(True)

    try:
        spec = WorkflowSpec.model_validate(data)
    except ValidationError as e:
        raise DefinitionError(f"Invalid workflow definition:\n{e}") from e

    branches = spec.on.push.branches
    if len(branches) != 1:
        raise DefinitionError(f"Exactly one push branch is supported, got {branches}")

    jobs: List[Job] = []
    for job_id, js in spec.jobs.items():
        jobs.append(
            Job(
                name=job_id,
                title=js.name,
                runs_on=js.runs_on,
                needs=list(js.needs),
                env={**spec.env, **js.env},
                steps=[_to_step(s) for s in js.steps],
            )
        )

    pipeline = Pipeline(name=spec.name, trigger=PushTrigger(branch=branches[0]), jobs=jobs)
    validate(pipeline.jobs)
    return pipeline


def load_yaml(path: str | Path) -> Pipeline:
    text = Path(path).read_text(encoding="utf-8")
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise DefinitionError(f"Could not parse {path}: {e}") from e
    if not isinstance(data, dict):
        raise DefinitionError(f"Workflow {path} must be a mapping at the top level")
    return pipeline_from_dict(data)


def load_python(path: str | Path) -> Pipeline:
    """
    Load a pipeline from a python file.

    The file must define either:
      - pipeline() -> Pipeline
      - PIPELINE = Pipeline(...)
    """
    wf_path = Path(path)
    module_name = f"gearci_workflow_{wf_path.stem}"
    globals_dict = runpy.run_path(str(wf_path), run_name=module_name)

    found = None
    if "PIPELINE" in globals_dict:
        found = globals_dict["PIPELINE"]
    elif callable(globals_dict.get("pipeline")):
        try:
            found = globals_dict["pipeline"]()
        except TypeError as e:
            raise DefinitionError(
                "pipeline() is being called with arguments (name collision with the helper "
                "gearci.dsl.pipeline). Assign PIPELINE = pipeline(...) instead."
            ) from e

    if not isinstance(found, Pipeline):
        raise DefinitionError(
            f"{wf_path.name} must define PIPELINE = Pipeline(...) or pipeline() -> Pipeline."
        )
    validate(found.jobs)
    return found


def load_pipeline(path: str | Path) -> Pipeline:
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise FileNotFoundError(f"Workflow file not found: {wf_path}")
    if wf_path.suffix == ".py":
        return load_python(wf_path)
    if wf_path.suffix in (".yml", ".yaml"):
        return load_yaml(wf_path)
    raise DefinitionError(f"Workflow must be a .py, .yml or .yaml file, got: {wf_path.name}")
