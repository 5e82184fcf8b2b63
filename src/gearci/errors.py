# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List


@dataclass
class CIError(Exception):
    """
    Structured CI error with enough context for:
      - clean CLI output
      - debugging without full tracebacks
    """
    kind: str
    job: str
    step: str | None
    message: str
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}", f"job={self.job}"]
        if self.step:
            lines.append(f"step={self.step}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


@dataclass
class StepFailure(Exception):
    job: str
    step: str
    cmd: str
    exit_code: int
    stdout: str = ""
    stderr: str = ""

    def __str__(self) -> str:
        return f"[{self.job}] step '{self.step}' failed (exit={self.exit_code}): {self.cmd}"


@dataclass
class PublishFailure(StepFailure):
    """Artifact upload, registry authentication or image push failed."""
    sink: str = ""

    def __str__(self) -> str:
        return f"[{self.job}] publish to {self.sink or 'sink'} failed at '{self.step}' (exit={self.exit_code}): {self.cmd}"


@dataclass
class GateSkip(Exception):
    """A job never ran because a prerequisite did not succeed."""
    job: str
    blocked_by: Dict[str, str]
    reason: str = ""

    def __str__(self) -> str:
        if self.reason:
            return f"[{self.job}] skipped: {self.reason}"
        deps = ", ".join(f"{n}={s}" for n, s in sorted(self.blocked_by.items()))
        return f"[{self.job}] skipped: prerequisite did not succeed ({deps})"


class DefinitionError(ValueError):
    """The pipeline definition is malformed."""


class CyclicDependencyError(DefinitionError):
    def __init__(self, stuck: List[str]):
        self.stuck = stuck
        super().__init__(f"Job graph has a cycle. Stuck jobs: {stuck}")


class TriggerMismatch(ValueError):
    """The push event does not match the pipeline's trigger branch."""


class ExpressionError(ValueError):
    """A ${{ ... }} expression could not be evaluated."""


TOOL_HINTS = {
    "cargo": "Install the Rust toolchain (rustup) or fix PATH.",
    "rustup": "Install rustup from https://rustup.rs or fix PATH.",
    "rustc": "Install the Rust toolchain (rustup) or fix PATH.",
    "docker": "Install Docker and ensure the daemon is running.",
}
