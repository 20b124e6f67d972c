"""Run a single resolved build step through an executor."""

from __future__ import annotations

import logging
import threading
from pathlib import Path

from wasmbuild.console import console
from wasmbuild.errors import Cancelled, StepExecutionFailed
from wasmbuild.executors.base import Executor
from wasmbuild.manifest.base import BuildStep

logger = logging.getLogger(__name__)


def run_step(
    executor: Executor,
    step: BuildStep,
    base_dir: Path,
    cancel_event: threading.Event | None = None,
) -> int:
    """Run step's command in its working directory and wait for it to exit.

    Output lines are echoed to the console unless the executor is quiet.

    Returns:
        The command's exit code (always 0).

    Raises:
        StepExecutionFailed: The command exited with a non-zero status.
        Cancelled: cancel_event was set, or the user interrupted the command.
        ExecutorError: The executor could not start the command.
    """
    cwd = step.working_dir(base_dir)
    logger.debug("Running in %s: %s", cwd, step.command)

    try:
        executor.setup(step.command, cwd)
        for line in executor.run(cancel_event):
            if not executor.quiet:
                console.print(line, markup=False, highlight=False)
    except KeyboardInterrupt:
        executor.terminate()
        raise Cancelled(step.command) from None
    finally:
        executor.teardown()

    if executor.cancelled:
        raise Cancelled(step.command)

    exit_code = executor.exit_code
    if exit_code is None:
        # run() finished without reporting a status
        raise StepExecutionFailed(step.command, 1)
    if exit_code != 0:
        raise StepExecutionFailed(step.command, exit_code)
    return exit_code
