from __future__ import annotations

import os
from typing import Dict, Mapping, Optional

GEARCI_HOME = os.environ.get("GEARCI_HOME", ".gearci")
CACHE_DIR = os.environ.get("GEARCI_CACHE_DIR", os.path.join(GEARCI_HOME, "cache"))
ARTIFACT_DIR = os.environ.get("GEARCI_ARTIFACT_DIR", os.path.join(GEARCI_HOME, "artifacts"))
WORK_DIR = os.environ.get("GEARCI_WORK_DIR", os.path.join(GEARCI_HOME, "work"))
WORKERS: Optional[int] = int(os.environ["GEARCI_WORKERS"]) if os.environ.get("GEARCI_WORKERS") else None
KEEP_SANDBOX = os.environ.get("GEARCI_KEEP_SANDBOX", "0") in ("1", "true", "yes")

# External tools invoked by steps
DOCKER = os.environ.get("GEARCI_DOCKER", "docker")
CARGO = os.environ.get("GEARCI_CARGO", "cargo")
RUSTUP = os.environ.get("GEARCI_RUSTUP", "rustup")
RUSTC = os.environ.get("GEARCI_RUSTC", "rustc")

# Extra attempts for `docker push` after the first one fails
PUSH_RETRIES = int(os.environ.get("GEARCI_PUSH_RETRIES", "0"))

SECRET_PREFIX = "GEARCI_SECRET_"


def load_secrets(environ: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    """Collect GEARCI_SECRET_<NAME> variables into {NAME: value}."""
    environ = os.environ if environ is None else environ
    return {
        k[len(SECRET_PREFIX):]: v
        for k, v in environ.items()
        if k.startswith(SECRET_PREFIX) and len(k) > len(SECRET_PREFIX)
    }
