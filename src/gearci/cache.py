# cache.py
from __future__ import annotations

import hashlib
import json
import os
import tarfile
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from .environment import ExecutionEnvironment

# ---------------------------------------------------------------------
# Core idea
# ---------------------------------------------------------------------
# Keyed build-state cache shared by every job of every run:
#
#   key   = "<os>-<prefix>-<toolchain hash>-<lock file hash>"
#   value = tar.gz of the cached paths (sandbox-relative) + manifest.json
#
# Layout on disk:
#   root/
#     <sha256(key)>.tar.gz
#     <sha256(key)>.manifest.json
#
# Saving the same key twice replaces the entry (last writer wins). Entries
# are never deleted here; eviction belongs to whoever owns the directory.
# Jobs that must not share state use different prefixes.
# ---------------------------------------------------------------------

MANIFEST_VERSION = 1


@dataclass(frozen=True)
class CacheHit:
    hit: bool
    key: str
    reason: str  # human readable
    manifest: Dict = field(default_factory=dict)


def _sha256_str(s: str) -> str:
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def _json_dumps_stable(obj) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _iter_files_under(root: Path) -> Iterable[Path]:
    # deterministic traversal; symlinks are yielded as links, never descended into
    for p in sorted(root.rglob("*")):
        if p.is_symlink() or p.is_file():
            yield p


def _hash_file_contents(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        while True:
            chunk = f.read(1024 * 1024)
            if not chunk:
                break
            h.update(chunk)
    return h.hexdigest()


def cache_key(os_name: str, prefix: str, toolchain_hash: str, lock_hash: str) -> str:
    """Key convention used by the shipped pipeline."""
    return f"{os_name}-{prefix}-{toolchain_hash}-{lock_hash}"


def hash_files(root: str | Path, *patterns: str) -> str:
    """
    sha256 over the relative paths and contents of every file matching the
    glob patterns under root. Empty string when nothing matches.
    """
    base = Path(root)
    matched: Dict[str, Path] = {}
    for pat in patterns:
        pat = pat.strip()
        if not pat:
            continue
        for p in base.glob(pat):
            if p.is_file():
                matched[p.relative_to(base).as_posix()] = p

    if not matched:
        return ""

    h = hashlib.sha256()
    for rel in sorted(matched):
        h.update(rel.encode("utf-8"))
        h.update(b"\0")
        h.update(_hash_file_contents(matched[rel]).encode("ascii"))
        h.update(b"\0")
    return h.hexdigest()


def _link_is_portable(env: ExecutionEnvironment, link: Path) -> bool:
    """A relative symlink whose target stays inside the sandbox survives a restore."""
    target = os.readlink(link)
    return not os.path.isabs(target) and env.contains(link)


def _members(env: ExecutionEnvironment, paths: List[str]) -> Tuple[List[Path], List[str]]:
    """
    Files and symlinks to archive for paths, plus the sandbox-relative names
    of symlinks left out because they point outside the sandbox.
    """
    members: List[Path] = []
    skipped: List[str] = []
    for entry in paths:
        src = env.resolve(entry)
        if src.is_symlink() or src.is_file():
            found: Iterable[Path] = [src]
        elif src.is_dir():
            found = _iter_files_under(src)
        else:
            continue
        for p in found:
            if p.is_symlink() and not _link_is_portable(env, p):
                skipped.append(env.relative(p))
            else:
                members.append(p)
    return members, skipped


def fingerprint(env: ExecutionEnvironment, paths: List[str]) -> str:
    """Content fingerprint of the cached paths, used to skip no-op saves."""
    members, _skipped = _members(env, paths)
    entries: List[Tuple[str, str]] = []
    for p in members:
        digest = f"link:{os.readlink(p)}" if p.is_symlink() else _hash_file_contents(p)
        entries.append((env.relative(p), digest))
    entries.sort()
    return _sha256_str(_json_dumps_stable(entries))


class CacheStore:
    """
    File-based cache store, shared by reference between concurrent jobs.
    """

    def __init__(self, root: str | Path):
        self.root = Path(root).expanduser().resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _stem(self, key: str) -> str:
        return _sha256_str(key)

    def artifact_path(self, key: str) -> Path:
        return self.root / f"{self._stem(key)}.tar.gz"

    def manifest_path(self, key: str) -> Path:
        return self.root / f"{self._stem(key)}.manifest.json"

    def exists(self, key: str) -> bool:
        return self.artifact_path(key).exists()

    def keys(self) -> List[str]:
        out = []
        for man in sorted(self.root.glob("*.manifest.json")):
            try:
                out.append(json.loads(man.read_text(encoding="utf-8"))["key"])
            except (OSError, ValueError, KeyError):
                continue
        return sorted(out)

    def manifest(self, key: str) -> Optional[Dict]:
        man = self.manifest_path(key)
        if not man.exists():
            return None
        return json.loads(man.read_text(encoding="utf-8"))

    def restore(self, key: str, env: ExecutionEnvironment, paths: List[str]) -> CacheHit:
        """
        Extract the entry stored under key into the sandbox.

        A miss is not an error: the job simply continues from a cold state.
        """
        if not key:
            return CacheHit(hit=False, key=key, reason="empty cache key")

        art = self.artifact_path(key)
        if not art.exists():
            return CacheHit(hit=False, key=key, reason="cache miss")

        try:
            with tarfile.open(str(art), mode="r:gz") as tar:
                tar.extractall(path=str(env.root), filter="data")
        except (OSError, tarfile.TarError, ValueError) as e:
            return CacheHit(hit=False, key=key, reason=f"cache exists but restore failed: {e}")

        stored = self.manifest(key) or {}
        return CacheHit(hit=True, key=key, reason="cache hit: restored", manifest=stored)

    def save(self, key: str, env: ExecutionEnvironment, paths: List[str]) -> CacheHit:
        """
        Archive paths from the sandbox under key, replacing any previous entry.

        Symlinks are stored as links. Links that point outside the sandbox
        would not survive a restore, so they are left out and listed under
        "skipped" in the manifest.
        """
        members, skipped = _members(env, paths)
        if not members:
            return CacheHit(hit=False, key=key, reason="nothing to save: cached paths are empty")

        manifest = {
            "v": MANIFEST_VERSION,
            "key": key,
            "paths": list(paths),
            "fingerprint": fingerprint(env, paths),
            "files": len(members),
            "skipped": skipped,
            "saved_at_unix": int(time.time()),
        }

        # unique temp files per writer, then atomic rename
        fd, tmp_name = tempfile.mkstemp(dir=str(self.root), suffix=".tar.tmp")
        os.close(fd)
        tmp = Path(tmp_name)
        man_tmp = tmp.with_suffix(".json.tmp")
        try:
            with tarfile.open(str(tmp), mode="w:gz") as tar:
                for p in members:
                    tar.add(str(p), arcname=env.relative(p), recursive=False)

            payload = json.dumps(manifest, sort_keys=True, indent=2, ensure_ascii=False)
            man_tmp.write_text(payload, encoding="utf-8")

            os.replace(tmp, self.artifact_path(key))
            os.replace(man_tmp, self.manifest_path(key))
        finally:
            tmp.unlink(missing_ok=True)
            man_tmp.unlink(missing_ok=True)

        return CacheHit(hit=False, key=key, reason="saved", manifest=manifest)


def describe(hit: CacheHit) -> str:
    short = hit.key[:48] + "..." if len(hit.key) > 48 else hit.key
    return f"{hit.reason} ({short})" if hit.key else hit.reason
