"""Console output formatting utilities for gearci."""

from __future__ import annotations

import sys
import threading
from typing import TYPE_CHECKING, Iterable, List, Optional

from ..model import FAILED, SKIPPED, SUCCEEDED

if TYPE_CHECKING:
    from ..model import PipelineResult

MASK = "***"


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
        """
        self.debug = debug
        self._secrets: List[str] = []
        # jobs run on worker threads; keep multi-line blocks together
        self._lock = threading.Lock()

    # ---- secrets ----

    def add_secrets(self, values: Iterable[str]) -> None:
        """Register values that must never be printed."""
        for v in values:
            if v and v not in self._secrets:
                self._secrets.append(v)
        self._secrets.sort(key=len, reverse=True)

    def mask(self, text: str) -> str:
        for s in self._secrets:
            text = text.replace(s, MASK)
        return text

    def _out(self, *lines: str, err: bool = False) -> None:
        stream = sys.stderr if err else sys.stdout
        with self._lock:
            for line in lines:
                print(self.mask(line), file=stream)

    # ---- run lifecycle ----

    def print_header(self, title: str) -> None:
        """Print a section header."""
        self._out(f"\n{title}", "-" * len(title))

    def print_run_started(
        self,
        pipeline: str,
        branch: str,
        sha: str,
        run_id: str,
        job_count: int,
    ) -> None:
        """Print run start information."""
        self._out(
            "\nRUN STARTED",
            f"Pipeline: {pipeline}",
            f"Branch: {branch}",
            f"Commit: {sha or '(unknown)'}",
            f"Run ID: {run_id}",
            f"Jobs: {job_count}",
            "",
        )

    def print_transition(self, job: str, old: str, new: str, detail: str | None = None) -> None:
        """Print a job status transition."""
        line = f"JOB {job}: {old} -> {new}"
        if detail:
            line += f" ({detail})"
        self._out(line)

    def print_step(self, job: str, step: str) -> None:
        """Print step start message."""
        self._out(f"[{job}] STEP: {step}")

    def print_failure(
        self,
        name: str,
        reason: str,
        exit_code: Optional[int] = None,
        output: Optional[str] = None,
    ) -> None:
        """
        Print failure message.

        Args:
            name: Step name
            reason: Failure reason/error message
            exit_code: Optional exit code
            output: Captured process output, shown in debug mode
        """
        lines = [f"STEP FAILED: {name}"]
        if exit_code is not None:
            lines.append(f"Exit code: {exit_code}")
        if self.debug:
            lines.append(f"Error details: {reason}")
            if output:
                lines.append("Output (tail):")
                lines.append(output.rstrip())
        else:
            # first line only outside debug mode
            lines.append(f"Error: {reason.splitlines()[0] if reason else 'Unknown error'}")
        self._out(*lines)

    def print_cache_hit(self, job: str, key: str) -> None:
        self._out(f"[{job}] CACHE: hit ({key})")

    def print_cache_miss(self, job: str, reason: str) -> None:
        self._out(f"[{job}] CACHE: miss ({reason})")

    def print_cache_saved(self, job: str, key: str, reason: str = "saved") -> None:
        self._out(f"[{job}] CACHE: {reason} ({key})")

    def print_cache_unchanged(self, job: str, key: str) -> None:
        self._out(f"[{job}] CACHE: unchanged, not saved ({key})")

    def print_plan(self, stages: List[List[str]]) -> None:
        """Print the stages of a pipeline."""
        for idx, stage in enumerate(stages, start=1):
            self._out(f"=== Stage {idx}: {', '.join(stage)} ===")

    def print_results(self, result: "PipelineResult") -> None:
        """Print final results summary."""
        lines = ["\n" + "=" * 40, "RESULTS", "=" * 40]
        for job, status in result.statuses.items():
            res = result.results.get(job)
            suffix = ""
            if res is not None and res.error is not None and status != SUCCEEDED:
                suffix = f"  <- {str(res.error).splitlines()[0]}"
            lines.append(f"  {job}: {status.upper()}{suffix}")
        lines.append("-" * 40)
        counts = {s: len(result.jobs_with(s)) for s in (SUCCEEDED, FAILED, SKIPPED)}
        lines.append("  " + ", ".join(f"{n} {s}" for s, n in counts.items()))
        overall = result.status.upper()
        if result.cancelled:
            overall += " (cancelled)"
        lines.append(f"  pipeline: {overall}")
        self._out(*lines)

    # ---- generic ----

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        lines = [f"\nERROR: {title}", message]
        for detail in details or []:
            lines.append(f"  {detail}")
        if suggestion:
            lines.append(f"\n{suggestion}")
        self._out(*lines, err=True)

    def print_exception(self, exc: Exception) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            self._out("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)), err=True)
        else:
            self._out(f"Error: {exc}", err=True)

    def print_warning(self, message: str) -> None:
        self._out(f"WARNING: {message}", err=True)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._out(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._out(f"[DEBUG] {message}", err=True)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
