import stat
from pathlib import Path

import pytest

from gearci import settings
from gearci.cache import CacheStore
from gearci.executor import JobContext
from gearci.model import PushEvent
from gearci.publish import ArtifactStore

REPO_ROOT = Path(__file__).resolve().parent.parent

FAKE_CARGO = """#!/bin/sh
echo "cargo $*" >> "$GEARCI_TEST_LOG"
case "$1" in
  test)
    [ -n "$FAKE_FAIL_TEST" ] && exit 101
    mkdir -p target/debug && echo debug-state > target/debug/state
    ;;
  build)
    [ -n "$FAKE_FAIL_RELEASE" ] && exit 101
    mkdir -p target/release && echo gearbot-binary > target/release/gearbot
    ;;
esac
exit 0
"""

FAKE_RUSTUP = """#!/bin/sh
echo "rustup $*" >> "$GEARCI_TEST_LOG"
exit 0
"""

FAKE_RUSTC = """#!/bin/sh
echo "rustc 1.75.0 (82e1608df 2023-12-21)"
"""

FAKE_DOCKER = """#!/bin/sh
echo "docker $*" >> "$GEARCI_TEST_LOG"
case "$1" in
  login)
    cat > "$GEARCI_TEST_LOG.stdin"
    [ -n "$FAKE_FAIL_LOGIN" ] && exit 1
    ;;
  push)
    [ -n "$FAKE_FAIL_PUSH" ] && exit 1
    ;;
esac
exit 0
"""


def _script(path: Path, body: str) -> Path:
    path.write_text(body, encoding="utf-8")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def tool_log(tmp_path, monkeypatch):
    log = tmp_path / "tools.log"
    log.write_text("", encoding="utf-8")
    monkeypatch.setenv("GEARCI_TEST_LOG", str(log))
    return log


@pytest.fixture
def fake_tools(tmp_path, monkeypatch, tool_log):
    """Replace cargo/rustup/rustc/docker with scripts that log their arguments."""
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    monkeypatch.setattr(settings, "CARGO", str(_script(bin_dir / "cargo", FAKE_CARGO)))
    monkeypatch.setattr(settings, "RUSTUP", str(_script(bin_dir / "rustup", FAKE_RUSTUP)))
    monkeypatch.setattr(settings, "RUSTC", str(_script(bin_dir / "rustc", FAKE_RUSTC)))
    monkeypatch.setattr(settings, "DOCKER", str(_script(bin_dir / "docker", FAKE_DOCKER)))
    for var in ("FAKE_FAIL_TEST", "FAKE_FAIL_RELEASE", "FAKE_FAIL_LOGIN", "FAKE_FAIL_PUSH"):
        monkeypatch.delenv(var, raising=False)
    return tool_log


@pytest.fixture
def source_tree(tmp_path):
    src = tmp_path / "source"
    (src / "src").mkdir(parents=True)
    (src / "Cargo.toml").write_text('[package]\nname = "gearbot"\nversion = "0.1.0"\n', encoding="utf-8")
    (src / "Cargo.lock").write_text("# lock v1\n", encoding="utf-8")
    (src / "src" / "main.rs").write_text("fn main() {}\n", encoding="utf-8")
    (src / "Dockerfile").write_text("FROM scratch\n", encoding="utf-8")
    (src / ".git").mkdir()
    (src / ".git" / "HEAD").write_text("ref: refs/heads/live\n", encoding="utf-8")
    return src


@pytest.fixture
def cache_store(tmp_path):
    return CacheStore(tmp_path / "cache")


@pytest.fixture
def artifact_store(tmp_path):
    return ArtifactStore(tmp_path / "artifacts")


@pytest.fixture
def make_ctx(tmp_path, cache_store, artifact_store, source_tree):
    def _make(job, env, **kwargs):
        kwargs.setdefault("event", PushEvent(branch="live", sha="abc123", source=source_tree))
        kwargs.setdefault("run_id", "run-1")
        return JobContext(job=job, env=env, cache=cache_store, artifacts=artifact_store, **kwargs)

    return _make


@pytest.fixture
def gearbot_pipeline():
    from gearci.definition import load_pipeline

    return load_pipeline(REPO_ROOT / "gearbot_workflow.py")
