from __future__ import annotations

from typing import Callable, Dict, Optional

from ..model import (
    BUILD,
    BUILD_IMAGE,
    CACHE,
    CHECKOUT,
    INSTALL_TOOLCHAIN,
    PUSH_IMAGE,
    REGISTRY_LOGIN,
    RUN,
    UPLOAD_ARTIFACT,
)
from . import artifact, build, cache, docker, shell, source, toolchain

Handler = Callable[..., Optional[Dict[str, str]]]

HANDLERS: Dict[str, Handler] = {
    RUN: shell.run_step,
    CHECKOUT: source.run_step,
    INSTALL_TOOLCHAIN: toolchain.run_step,
    CACHE: cache.run_step,
    BUILD: build.run_step,
    UPLOAD_ARTIFACT: artifact.run_step,
    REGISTRY_LOGIN: docker.run_login,
    BUILD_IMAGE: docker.run_build,
    PUSH_IMAGE: docker.run_push,
}


def handler_for(kind: str) -> Handler:
    """Raises KeyError for unknown step kinds."""
    return HANDLERS[kind]
