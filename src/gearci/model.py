# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

# Job statuses
PENDING = "pending"
RUNNING = "running"
SUCCEEDED = "succeeded"
FAILED = "failed"
SKIPPED = "skipped"

TERMINAL = frozenset({SUCCEEDED, FAILED, SKIPPED})

# Step kinds
RUN = "run"
CHECKOUT = "checkout-source"
INSTALL_TOOLCHAIN = "install-toolchain"
CACHE = "restore-or-seed-cache"
BUILD = "invoke-build"
UPLOAD_ARTIFACT = "upload-artifact"
REGISTRY_LOGIN = "authenticate-registry"
BUILD_IMAGE = "build-container-image"
PUSH_IMAGE = "push-container-image"


@dataclass(frozen=True)
class Step:
    """A single ordered operation inside a job."""
    name: str
    kind: str = RUN
    params: Dict[str, Any] = field(default_factory=dict)
    id: str | None = None
    run: str | None = None
    cwd: str | None = None


@dataclass
class Job:
    """
    A CI job: ordered steps + prerequisite jobs.

    `needs` holds the names of jobs that must succeed BEFORE this job runs.
    """
    name: str
    steps: list[Step]
    needs: list[str] = field(default_factory=list)
    title: str | None = None
    runs_on: str = "ubuntu-latest"
    env: Dict[str, str] = field(default_factory=dict)

    @property
    def display_name(self) -> str:
        return self.title or self.name


@dataclass(frozen=True)
class PushTrigger:
    """The only trigger kind: a push to one named branch."""
    branch: str

    def matches(self, event: "PushEvent") -> bool:
        return _short_ref(event.branch) == _short_ref(self.branch)


@dataclass(frozen=True)
class PushEvent:
    branch: str
    sha: str = ""
    source: Path = Path(".")


def _short_ref(ref: str) -> str:
    prefix = "refs/heads/"
    return ref[len(prefix):] if ref.startswith(prefix) else ref


@dataclass
class Pipeline:
    name: str
    trigger: PushTrigger
    jobs: List[Job] = field(default_factory=list)

    def job(self, name: str) -> Job:
        for j in self.jobs:
            if j.name == name:
                return j
        raise KeyError(name)


# ---------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------

@dataclass
class StepResult:
    name: str
    status: str
    exit_code: Optional[int] = None
    outputs: Dict[str, str] = field(default_factory=dict)
    duration: float = 0.0


@dataclass
class JobResult:
    job: str
    status: str
    steps: List[StepResult] = field(default_factory=list)
    # StepFailure for failed jobs, GateSkip for gate-skipped jobs
    error: Optional[Exception] = None
    cache_events: List[str] = field(default_factory=list)
    duration: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.status == SUCCEEDED


@dataclass
class PipelineResult:
    run_id: str
    event: PushEvent
    statuses: Dict[str, str]
    results: Dict[str, JobResult] = field(default_factory=dict)
    cancelled: bool = False

    @property
    def status(self) -> str:
        if all(s == SUCCEEDED for s in self.statuses.values()):
            return SUCCEEDED
        return FAILED

    @property
    def succeeded(self) -> bool:
        return self.status == SUCCEEDED

    def jobs_with(self, status: str) -> List[str]:
        return [name for name, s in self.statuses.items() if s == status]

    def to_dict(self) -> Dict[str, Any]:
        jobs = {}
        for name, status in self.statuses.items():
            res = self.results.get(name)
            jobs[name] = {
                "status": status,
                "error": str(res.error) if res and res.error else None,
                "steps": [
                    {"name": s.name, "status": s.status, "exit_code": s.exit_code}
                    for s in (res.steps if res else [])
                ],
            }
        return {
            "run_id": self.run_id,
            "branch": self.event.branch,
            "sha": self.event.sha,
            "status": self.status,
            "cancelled": self.cancelled,
            "jobs": jobs,
        }
