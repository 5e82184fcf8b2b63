# gearbot_workflow.py
# Build pipeline for GearBot: test on every push to `live`, then publish the
# release binary and the container image in parallel.
from __future__ import annotations

from gearci.dsl import (
    build,
    build_image,
    checkout,
    image_ref,
    install_toolchain,
    job,
    pipeline,
    push_image,
    registry_login,
    rust_cache,
    secret,
    upload_artifact,
)

IMAGE = image_ref("gearbot/gearbot", "latest")

PIPELINE = pipeline(
    "Build",
    job(
        "test",
        checkout(),
        install_toolchain("stable", override=True),
        rust_cache("test"),
        build("test"),
        title="Test",
    ),
    job(
        "github_artifact",
        checkout(),
        install_toolchain("stable", override=True),
        # separate prefix: release state never mixes with the debug build's
        rust_cache("release"),
        build("release"),
        upload_artifact("GearBot", "target/release/gearbot", step_name="upload artifact"),
        needs=["test"],
        title="Github Artifact",
    ),
    job(
        "docker_container",
        checkout(),
        registry_login("aenterprise", secret("DOCKERHUB_TOKEN")),
        build_image(IMAGE),
        push_image(IMAGE),
        needs=["test"],
        title="Create Docker Container",
    ),
    branch="live",
)
