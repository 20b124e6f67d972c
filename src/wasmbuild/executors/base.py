"""Base executor class."""

from __future__ import annotations

import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Iterator
from datetime import datetime
from pathlib import Path
from typing import TextIO

# Exit code reported when a command is stopped by the executor timeout
TIMEOUT_EXIT_CODE = 124

# Seconds between watchdog checks for cancellation and timeout
WATCHDOG_INTERVAL = 0.1


class Executor(ABC):
    """Base class for environments that run step commands.

    Lifecycle per command: setup() -> run() (iterate to completion) ->
    teardown(). terminate() may be called from another thread while run()
    is iterating.
    """

    name: str
    quiet: bool = False
    timeout: float | None = None
    log_dir: Path | None = None
    _log_file: TextIO | None = None
    _session_id: str | None = None
    _finished: threading.Event | None = None
    _watchdog: threading.Thread | None = None
    _cancelled: bool = False
    _timed_out: bool = False

    def _generate_session_id(self) -> str:
        """Generate a session ID with format: YYYYMMDD_HHMMSS_{executor name}."""
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        return f"{timestamp}_{self.name}"

    @property
    def log_path(self) -> Path:
        """Path of the log file shared by every command of this session."""
        if self._session_id is None:
            self._session_id = self._generate_session_id()
        log_dir = self.log_dir or Path.cwd() / ".wasmbuild" / "logs"
        return log_dir / f"{self._session_id}.log"

    def _open_log(self) -> None:
        """Open the session log file for appending."""
        log_path = self.log_path
        log_path.parent.mkdir(parents=True, exist_ok=True)
        self._log_file = open(log_path, "a", encoding="utf-8")

    def _write_log(self, line: str) -> None:
        """Write a line to the log file."""
        if self._log_file is not None:
            self._log_file.write(line + "\n")
            self._log_file.flush()

    def _close_log(self) -> None:
        """Close the log file."""
        if self._log_file is not None:
            self._log_file.close()
            self._log_file = None

    def _start_watchdog(self, cancel_event: threading.Event | None) -> None:
        """Terminate the running command on cancellation or timeout.

        The watchdog runs on a daemon thread until _stop_watchdog() is called.
        """
        self._finished = threading.Event()
        self._cancelled = False
        self._timed_out = False
        self._watchdog = None
        if cancel_event is None and self.timeout is None:
            return

        finished = self._finished
        deadline = None if self.timeout is None else time.monotonic() + self.timeout

        def watch() -> None:
            while not finished.wait(WATCHDOG_INTERVAL):
                if cancel_event is not None and cancel_event.is_set():
                    self._cancelled = True
                    self.terminate()
                    return
                if deadline is not None and time.monotonic() >= deadline:
                    self._timed_out = True
                    self.terminate()
                    return

        self._watchdog = threading.Thread(
            target=watch, name=f"{self.name}-watchdog", daemon=True
        )
        self._watchdog.start()

    def _stop_watchdog(self) -> None:
        if self._finished is not None:
            self._finished.set()
        if self._watchdog is not None:
            self._watchdog.join()
            self._watchdog = None

    @property
    def cancelled(self) -> bool:
        """True if the last command was terminated because of cancellation."""
        return self._cancelled

    @property
    def timed_out(self) -> bool:
        """True if the last command was terminated by the timeout."""
        return self._timed_out

    @abstractmethod
    def setup(self, command: str, cwd: Path) -> None:
        """Prepare to run command with cwd as its working directory."""
        ...

    @abstractmethod
    def run(self, cancel_event: threading.Event | None = None) -> Iterator[str]:
        """Run the prepared command.

        Yields output lines (stdout and stderr merged) as they are produced.
        Setting cancel_event terminates the command.
        """
        ...

    @abstractmethod
    def terminate(self) -> None:
        """Stop the running command, if any. Safe to call from another thread."""
        ...

    @abstractmethod
    def teardown(self) -> None:
        """Clean up the execution environment."""
        ...

    @property
    @abstractmethod
    def exit_code(self) -> int | None:
        """Return the exit code after run() completes, or None if still running."""
        ...
