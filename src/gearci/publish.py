# publish.py
from __future__ import annotations

import json
import os
import re
import shutil
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

_NAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


@dataclass(frozen=True)
class StoredArtifact:
    run_id: str
    name: str
    path: Path
    uploaded_at_unix: int


class ArtifactStore:
    """
    Binary artifact sink:
      root/
        <run_id>/
          <name>/
            <file or directory contents>
            .artifact.json

    Uploading a name twice within one run replaces the earlier upload.
    Artifacts carry no version; a later run supersedes, it never merges.
    """

    META = ".artifact.json"

    def __init__(self, root: str | Path):
        self.root = Path(root).expanduser().resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _dir(self, run_id: str, name: str) -> Path:
        for part in (run_id, name):
            if not _NAME.match(part):
                raise ValueError(f"Invalid artifact run id or name: {part!r}")
        return self.root / run_id / name

    def upload(self, run_id: str, name: str, source: str | Path) -> StoredArtifact:
        src = Path(source)
        if not src.exists():
            raise FileNotFoundError(f"artifact path not found: {src}")

        dest = self._dir(run_id, name)
        dest.parent.mkdir(parents=True, exist_ok=True)

        # stage next to the destination, then swap it in
        staging = Path(tempfile.mkdtemp(prefix=f".{name}-", dir=str(dest.parent)))
        try:
            if src.is_dir():
                shutil.copytree(src, staging, dirs_exist_ok=True)
            else:
                shutil.copy2(src, staging / src.name)

            uploaded_at = int(time.time())
            (staging / self.META).write_text(
                json.dumps({"name": name, "run_id": run_id, "source": src.name, "uploaded_at_unix": uploaded_at}),
                encoding="utf-8",
            )

            if dest.exists():
                shutil.rmtree(dest)
            os.replace(staging, dest)
        finally:
            if staging.exists():
                shutil.rmtree(staging, ignore_errors=True)

        return StoredArtifact(run_id=run_id, name=name, path=dest, uploaded_at_unix=uploaded_at)

    def fetch(self, run_id: str, name: str) -> Optional[Path]:
        """Directory holding the uploaded content, or None."""
        dest = self._dir(run_id, name)
        return dest if dest.exists() else None

    def files(self, run_id: str, name: str) -> List[Path]:
        dest = self.fetch(run_id, name)
        if dest is None:
            return []
        return sorted(p for p in dest.rglob("*") if p.is_file() and p.name != self.META)

    def list(self, run_id: str) -> List[str]:
        run_dir = self.root / run_id
        if not run_dir.is_dir():
            return []
        return sorted(p.name for p in run_dir.iterdir() if p.is_dir() and not p.name.startswith("."))

    def runs(self) -> List[str]:
        return sorted(p.name for p in self.root.iterdir() if p.is_dir())
