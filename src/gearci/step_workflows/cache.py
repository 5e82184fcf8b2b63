# step_workflows/cache.py
from __future__ import annotations

import tarfile
from typing import TYPE_CHECKING, Dict, List, Sequence

from ..cache import describe, fingerprint
from ..model import CACHE, Step
from ..ui.console import get_console

if TYPE_CHECKING:
    from ..executor import JobContext

RUST_CACHE_PATHS = ["~/.cargo/registry", "~/.cargo/git", "target"]


def cache(key: str, paths: Sequence[str], *, name: str = "Setup cache", id: str | None = None) -> Step:
    """
    Restore build state stored under key; after the job succeeds, save the
    same paths back under the same key if their contents changed.
    """
    return Step(name=name, kind=CACHE, id=id, params={"key": key, "path": list(paths)})


def rust_cache(
    prefix: str,
    paths: Sequence[str] = tuple(RUST_CACHE_PATHS),
    *,
    toolchain_step: str = "toolchain",
    lock_pattern: str = "**/Cargo.lock",
    name: str = "Setup cache",
) -> Step:
    """Cache keyed by (os, prefix, compiler hash, lock file hash)."""
    key = (
        "${{ runner.os }}-%s-${{ steps.%s.outputs.rustc_hash }}-${{ hashFiles('%s') }}"
        % (prefix, toolchain_step, lock_pattern)
    )
    return cache(key, paths, name=name)


def _paths(step: Step) -> List[str]:
    raw = step.params.get("path") or []
    if isinstance(raw, str):
        raw = raw.splitlines()
    return [p.strip() for p in raw if p and p.strip()]


def run_step(ctx: "JobContext", step: Step) -> Dict[str, str]:
    console = get_console()
    key = str(step.params.get("key") or "")
    paths = _paths(step)

    for p in paths:
        resolved = ctx.env.resolve(p)
        if not resolved.resolve().is_relative_to(ctx.env.root.resolve()):
            raise ctx.fail(step, f"cache {p}", 1, stderr=f"cache path escapes the job sandbox: {p}")

    hit = ctx.cache.restore(key, ctx.env, paths)
    ctx.cache_events.append(f"restore: {describe(hit)}")
    if hit.hit:
        console.print_cache_hit(ctx.job.name, hit.key)
    else:
        console.print_cache_miss(ctx.job.name, hit.reason)

    restored = _fingerprint(ctx, paths) if hit.hit else None

    def _save(inner: "JobContext") -> None:
        # a failed save never fails a job that already succeeded
        try:
            if restored is not None and fingerprint(inner.env, paths) == restored:
                inner.cache_events.append(f"save: unchanged ({key})")
                console.print_cache_unchanged(inner.job.name, key)
                return
            saved = inner.cache.save(key, inner.env, paths)
        except (OSError, ValueError, tarfile.TarError) as e:
            inner.cache_events.append(f"save: failed ({e})")
            console.print_warning(f"[{inner.job.name}] cache save failed: {e}")
            return
        for name in saved.manifest.get("skipped", []):
            console.print_warning(f"[{inner.job.name}] cache: not saving {name}, it links outside the job sandbox")
        inner.cache_events.append(f"save: {describe(saved)}")
        console.print_cache_saved(inner.job.name, key, saved.reason)

    if key:
        ctx.post_hooks.append(_save)

    return {"cache-hit": "true" if hit.hit else "false"}


def _fingerprint(ctx: "JobContext", paths: List[str]) -> str | None:
    try:
        return fingerprint(ctx.env, paths)
    except (OSError, ValueError) as e:
        # without a baseline the post-job save always runs
        get_console().print_warning(f"[{ctx.job.name}] cache: cannot fingerprint restored paths: {e}")
        return None
