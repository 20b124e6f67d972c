"""Shell executor implementation."""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import threading
from collections.abc import Iterator
from pathlib import Path

from wasmbuild.errors import ExecutorError
from wasmbuild.executors.base import TIMEOUT_EXIT_CODE, Executor

logger = logging.getLogger(__name__)

# Seconds to wait after SIGTERM before killing the process group
TERMINATE_GRACE_SECONDS = 5.0


class ShellExecutor(Executor):
    """Executor that runs commands through the host shell."""

    name = "shell"

    def __init__(
        self,
        timeout: float | None = None,
        quiet: bool = False,
        log_dir: Path | None = None,
        env: dict[str, str] | None = None,
    ) -> None:
        self.timeout = timeout
        self.quiet = quiet
        self.log_dir = log_dir
        self._env = env
        self._command: str | None = None
        self._cwd: Path | None = None
        self._process: subprocess.Popen[str] | None = None
        self._exit_code: int | None = None

    def setup(self, command: str, cwd: Path) -> None:
        """Record the command to run and open the session log."""
        self._command = command
        self._cwd = cwd
        self._process = None
        self._exit_code = None
        self._open_log()
        self._write_log(f"$ {command}  [cwd: {cwd}]")

    def run(self, cancel_event: threading.Event | None = None) -> Iterator[str]:
        """Run the command in the shell.

        Yields output lines as they are produced.
        """
        if self._command is None or self._cwd is None:
            raise RuntimeError("setup() must be called before run()")

        env = {**os.environ, **self._env} if self._env else None
        try:
            self._process = subprocess.Popen(
                self._command,
                shell=True,
                cwd=self._cwd,
                env=env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                errors="replace",
                # Own process group, so terminate() reaches the shell's children
                start_new_session=os.name == "posix",
            )
        except OSError as e:
            raise ExecutorError(
                f"Cannot start command in {self._cwd}: {e.strerror or e}"
            ) from e
        self._start_watchdog(cancel_event)
        try:
            assert self._process.stdout is not None
            for line in self._process.stdout:
                line = line.rstrip("\n")
                self._write_log(line)
                yield line
            returncode = self._process.wait()
        finally:
            self._stop_watchdog()

        if self.timed_out:
            self._write_log(f"[timed out after {self.timeout}s]")
            self._exit_code = TIMEOUT_EXIT_CODE
        else:
            self._exit_code = returncode

    def _signal(self, sig: int) -> None:
        process = self._process
        if process is None:
            return
        if os.name == "posix":
            try:
                os.killpg(process.pid, sig)
            except ProcessLookupError:
                pass  # Already exited
        elif sig == signal.SIGTERM:
            process.terminate()
        else:
            process.kill()

    def terminate(self) -> None:
        """Send SIGTERM to the command, then kill it after a grace period."""
        process = self._process
        if process is None or process.poll() is not None:
            return
        logger.debug("Terminating process %d: %s", process.pid, self._command)
        self._signal(signal.SIGTERM)
        try:
            process.wait(timeout=TERMINATE_GRACE_SECONDS)
        except subprocess.TimeoutExpired:
            logger.warning("Process %d ignored SIGTERM, killing", process.pid)
            self._signal(getattr(signal, "SIGKILL", signal.SIGTERM))

    def teardown(self) -> None:
        """Make sure nothing is left running and close the log."""
        self._stop_watchdog()
        if self._process is not None and self._process.poll() is None:
            self.terminate()
        if self._process is not None and self._process.stdout is not None:
            self._process.stdout.close()
        self._close_log()

    @property
    def exit_code(self) -> int | None:
        """Return the exit code after run() completes, or None if still running."""
        return self._exit_code
