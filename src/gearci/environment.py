# environment.py
from __future__ import annotations

import os
import platform
import re
import shutil
import subprocess
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence, Union

RUNNER_OS = {"Linux": "Linux", "Darwin": "macOS", "Windows": "Windows"}


def runner_os() -> str:
    system = platform.system()
    return RUNNER_OS.get(system, system)


@dataclass
class ExecutionEnvironment:
    """
    A freshly provisioned sandbox for one job run:

      root/
        workspace/   checkout target, cwd for every step
        home/        HOME for every step (so ~/... never touches the host)

    Nothing in here outlives the job except what the cache store saves.
    """
    root: Path
    os_name: str = field(default_factory=runner_os)
    env: Dict[str, str] = field(default_factory=dict)

    @property
    def workspace(self) -> Path:
        return self.root / "workspace"

    @property
    def home(self) -> Path:
        return self.root / "home"

    def resolve(self, path: str) -> Path:
        """~/x -> sandbox home, relative -> workspace, absolute stays absolute."""
        path = path.strip()
        if path == "~" or path.startswith("~/"):
            return self.home / path[2:]
        p = Path(path)
        if p.is_absolute():
            return p
        return self.workspace / p

    def relative(self, path: Path) -> str:
        """Path relative to the sandbox root (stable archive name). Symlinks are not followed."""
        return Path(os.path.abspath(path)).relative_to(os.path.abspath(self.root)).as_posix()

    def contains(self, path: str | Path) -> bool:
        """True if path, with every symlink followed, ends up inside the sandbox."""
        root = os.path.realpath(self.root)
        return os.path.commonpath([os.path.realpath(path), root]) == root

    def process_env(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        env = os.environ.copy()
        # installed toolchains stay on the host; everything else under ~ is per sandbox
        env.setdefault("RUSTUP_HOME", os.path.expanduser("~/.rustup"))
        env.update(self.env)
        env["HOME"] = str(self.home)
        env["CI"] = "true"
        if extra:
            env.update(extra)
        return env

    def run(
        self,
        cmd: Union[str, Sequence[str]],
        *,
        cwd: str | None = None,
        input: str | None = None,
        env: Optional[Dict[str, str]] = None,
    ) -> subprocess.CompletedProcess:
        """Run an external process inside the sandbox. Never raises on non-zero exit."""
        workdir = self.resolve(cwd) if cwd else self.workspace
        if not workdir.exists():
            raise FileNotFoundError(f"step cwd not found: {workdir}")
        return subprocess.run(
            cmd if isinstance(cmd, str) else list(cmd),
            shell=isinstance(cmd, str),
            cwd=str(workdir),
            env=self.process_env(env),
            input=input,
            text=True,
            capture_output=True,
        )


_UNSAFE = re.compile(r"[^A-Za-z0-9_.-]+")


@contextmanager
def provision(
    job_name: str,
    work_root: str | Path,
    *,
    env: Optional[Dict[str, str]] = None,
    keep: bool = False,
) -> Iterator[ExecutionEnvironment]:
    """Create an isolated sandbox for one job run and remove it afterwards."""
    base = Path(work_root).expanduser().resolve()
    base.mkdir(parents=True, exist_ok=True)
    root = Path(tempfile.mkdtemp(prefix=f"{_UNSAFE.sub('_', job_name)}-", dir=str(base)))

    sandbox = ExecutionEnvironment(root=root, env=dict(env or {}))
    sandbox.workspace.mkdir()
    sandbox.home.mkdir()
    try:
        yield sandbox
    finally:
        if not keep:
            shutil.rmtree(root, ignore_errors=True)


def tail(text: str | None, limit: int = 4000) -> str:
    return (text or "")[-limit:]


def command_line(argv: List[str]) -> str:
    return " ".join(argv)
