"""Docker executor implementation."""

from __future__ import annotations

import logging
import os
import threading
from collections.abc import Iterator
from pathlib import Path

import docker
from docker.models.containers import Container

from wasmbuild.console import console
from wasmbuild.errors import ExecutorError
from wasmbuild.executors.base import TIMEOUT_EXIT_CODE, Executor

logger = logging.getLogger(__name__)


class DockerExecutor(Executor):
    """Executor that runs commands inside a toolchain container.

    The mount root is bind-mounted at the same path inside the container so
    that absolute and relative paths in step commands mean the same thing on
    both sides. It must contain every path a step reads or writes.
    """

    name = "docker"

    def __init__(
        self,
        image: str,
        mount_root: Path | None = None,
        timeout: float | None = None,
        quiet: bool = False,
        log_dir: Path | None = None,
        env: dict[str, str] | None = None,
    ) -> None:
        self.image = image
        self.mount_root = (mount_root or Path.cwd()).resolve()
        self.timeout = timeout
        self.quiet = quiet
        self.log_dir = log_dir
        self._env = env
        self._command: str | None = None
        self._client: docker.DockerClient | None = None
        self._container: Container | None = None
        self._exit_code: int | None = None

    def _get_client(self) -> docker.DockerClient:
        """Get or create Docker client."""
        if self._client is None:
            self._client = docker.from_env()
        return self._client

    def _pull_image(self, client: docker.DockerClient, image: str) -> None:
        """Pull the Docker image if not available locally."""
        try:
            client.images.get(image)
            if not self.quiet:
                console.print(f"[dim]Image found locally: {image}[/dim]")
        except docker.errors.ImageNotFound:
            if not self.quiet:
                console.print(f"[dim]Pulling image: {image}[/dim]")
            client.images.pull(image)

    def _get_volume_mounts(self) -> dict[str, dict[str, str]]:
        root = str(self.mount_root)
        return {root: {"bind": root, "mode": "rw"}}

    def _get_user(self) -> str | None:
        """Run as the host user so generated files are not root-owned."""
        if hasattr(os, "getuid"):
            return f"{os.getuid()}:{os.getgid()}"
        return None

    def setup(self, command: str, cwd: Path) -> None:
        """Create a stopped container for command, working in cwd."""
        cwd = cwd.resolve()
        if not cwd.is_relative_to(self.mount_root):
            raise ExecutorError(
                f"Working directory {cwd} is outside the mount root {self.mount_root}"
            )

        self._command = command
        self._exit_code = None
        try:
            client = self._get_client()
            self._pull_image(client, self.image)
            self._container = client.containers.create(
                image=self.image,
                command=["sh", "-c", command],
                working_dir=str(cwd),
                detach=True,
                user=self._get_user(),
                volumes=self._get_volume_mounts(),
                environment=self._env or None,
            )
        except docker.errors.DockerException as e:
            raise ExecutorError(
                f"Cannot create container from {self.image}: {e}"
            ) from e
        logger.debug("Created container %s for: %s", self._container.short_id, command)

        self._open_log()
        self._write_log(f"$ {command}  [cwd: {cwd}, image: {self.image}]")

    def run(self, cancel_event: threading.Event | None = None) -> Iterator[str]:
        """Run the command in the container.

        Yields output lines as they are produced.
        """
        if self._container is None:
            raise RuntimeError("setup() must be called before run()")

        try:
            self._container.start()
        except docker.errors.APIError as e:
            raise ExecutorError(f"Cannot start container: {e}") from e
        self._start_watchdog(cancel_event)
        try:
            # Stream logs in real-time, buffering into lines
            buffer = ""
            for chunk in self._container.logs(stream=True, follow=True):
                buffer += chunk.decode("utf-8", errors="replace")
                while "\n" in buffer:
                    line, buffer = buffer.split("\n", 1)
                    self._write_log(line)
                    yield line

            # Yield any remaining content
            if buffer:
                self._write_log(buffer)
                yield buffer

            result = self._container.wait()
        finally:
            self._stop_watchdog()

        if self.timed_out:
            self._write_log(f"[timed out after {self.timeout}s]")
            self._exit_code = TIMEOUT_EXIT_CODE
        else:
            self._exit_code = result.get("StatusCode", 1)

    def terminate(self) -> None:
        """Kill the running container."""
        if self._container is None:
            return
        try:
            self._container.kill()
        except docker.errors.APIError:
            # Not running (already exited) or already removed
            logger.debug("Container %s not running", self._container.short_id)

    def teardown(self) -> None:
        """Remove the container and close the client."""
        self._stop_watchdog()
        self._close_log()

        if self._container is not None:
            try:
                self._container.remove(force=True)
            except docker.errors.NotFound:
                pass  # Already removed
            self._container = None

        if self._client is not None:
            self._client.close()
            self._client = None

    @property
    def exit_code(self) -> int | None:
        """Return the exit code after run() completes, or None if still running."""
        return self._exit_code
