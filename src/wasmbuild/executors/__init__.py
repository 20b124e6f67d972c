"""Executor registry and utilities."""

from __future__ import annotations

from pathlib import Path

from wasmbuild.executors.base import TIMEOUT_EXIT_CODE, Executor
from wasmbuild.executors.docker import DockerExecutor
from wasmbuild.executors.shell import ShellExecutor

EXECUTORS: dict[str, type[Executor]] = {
    "docker": DockerExecutor,
    "shell": ShellExecutor,
}

DEFAULT_EXECUTOR = "shell"


def get_executor(
    name: str | None = None,
    image: str | None = None,
    timeout: float | None = None,
    quiet: bool = False,
    mount_root: Path | None = None,
    log_dir: Path | None = None,
    env: dict[str, str] | None = None,
) -> Executor:
    """Get an executor instance by name. Defaults to shell.

    Args:
        name: Executor name ("shell" or "docker"). Defaults to shell.
        image: Toolchain image (required for the docker executor).
        timeout: Seconds before a running command is terminated.
        quiet: Suppress console output when True.
        mount_root: Host directory mounted into the container (docker only).
        log_dir: Directory for session log files.
        env: Extra environment variables for step commands.
    """
    executor_name = name or DEFAULT_EXECUTOR
    if executor_name not in EXECUTORS:
        raise ValueError(f"Unknown executor: {executor_name}")

    if executor_name == "docker":
        if not image:
            raise ValueError("The docker executor requires an image (--image)")
        return DockerExecutor(
            image=image,
            mount_root=mount_root,
            timeout=timeout,
            quiet=quiet,
            log_dir=log_dir,
            env=env,
        )

    return ShellExecutor(timeout=timeout, quiet=quiet, log_dir=log_dir, env=env)


__all__ = [
    "DEFAULT_EXECUTOR",
    "EXECUTORS",
    "TIMEOUT_EXIT_CODE",
    "DockerExecutor",
    "Executor",
    "ShellExecutor",
    "get_executor",
]
