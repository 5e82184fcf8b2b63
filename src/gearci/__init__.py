from .dsl import (
    build,
    build_image,
    builder,
    cache,
    checkout,
    install_toolchain,
    job,
    pipeline,
    push_image,
    registry_login,
    rust_cache,
    secret,
    sh,
    upload_artifact,
)
from .model import Job, Pipeline, PipelineResult, PushEvent, Step
from .runner import plan, run_pipeline

__all__ = [
    "build", "build_image", "builder", "cache", "checkout", "install_toolchain", "job", "pipeline",
    "push_image", "registry_login", "rust_cache", "secret", "sh", "upload_artifact",
    "Job", "Pipeline", "PipelineResult", "PushEvent", "Step", "plan", "run_pipeline",
]
