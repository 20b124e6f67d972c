"""Build orchestrator: sequential, fail-fast execution of a profile's steps."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from rich.markup import escape

from wasmbuild.build.lifecycle import clean_paths, prepare_directories
from wasmbuild.build.staleness import ScanOptions, check_staleness
from wasmbuild.build.step_runner import run_step
from wasmbuild.console import console
from wasmbuild.errors import BuildError, Cancelled, StepExecutionFailed
from wasmbuild.executors import get_executor
from wasmbuild.executors.base import Executor
from wasmbuild.manifest.base import BuildStep, Manifest, Profile, select_profile
from wasmbuild.manifest.loader import load_manifest
from wasmbuild.templating import FilterRegistry, TemplateResolver

logger = logging.getLogger(__name__)

# Exit status reported for a cancelled build (128 + SIGINT)
CANCELLED_EXIT_CODE = 130


class BuildState(Enum):
    """Lifecycle of one profile build."""

    IDLE = "idle"
    LOADED = "loaded"
    PROFILE_SELECTED = "profile_selected"
    RESOLVING = "resolving"
    EXECUTING = "executing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class StepStatus(Enum):
    """What happened to a step during a build."""

    EXECUTED = "executed"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class StepResult:
    """Result of evaluating and possibly running a single step."""

    step_index: int
    command: str
    status: StepStatus
    reason: str  # Staleness reason, or the error for failed steps
    exit_code: int | None = None
    duration_ms: int = 0


@dataclass
class BuildRun:
    """Runtime state for one orchestrator invocation.

    Errors raised while executing steps are recorded here rather than
    propagated; call raise_for_status() to re-raise them.
    """

    template_id: str
    action: str = "build"  # "build", "custom:<name>" or "clean"
    state: BuildState = BuildState.IDLE
    profile: Profile | None = None
    results: list[StepResult] = field(default_factory=list)
    removed: list[Path] = field(default_factory=list)  # Paths deleted by clean
    error: BuildError | None = None

    @property
    def succeeded(self) -> bool:
        return self.state is BuildState.SUCCEEDED

    @property
    def executed(self) -> list[StepResult]:
        return [r for r in self.results if r.status is StepStatus.EXECUTED]

    @property
    def skipped(self) -> list[StepResult]:
        return [r for r in self.results if r.status is StepStatus.SKIPPED]

    @property
    def exit_code(self) -> int:
        """Process exit status for this build.

        0 on success, the failing command's own exit code, 130 when
        cancelled and 1 for any other failure. A command killed by signal N
        maps to 128 + N.
        """
        if self.state is BuildState.SUCCEEDED:
            return 0
        if isinstance(self.error, StepExecutionFailed):
            code = self.error.exit_code
            return 128 - code if code < 0 else code
        if isinstance(self.error, Cancelled):
            return CANCELLED_EXIT_CODE
        return 1

    def raise_for_status(self) -> None:
        """Re-raise the recorded error, if the build failed."""
        if self.error is not None:
            raise self.error
        if self.state is not BuildState.SUCCEEDED:
            raise BuildError(f"Build did not complete (state: {self.state.value})")

    def to_dict(self) -> dict[str, Any]:
        """Serialize a summary of the run, e.g. for machine-readable output."""
        return {
            "template": self.template_id,
            "action": self.action,
            "profile": self.profile.name if self.profile else None,
            "state": self.state.value,
            "exit_code": self.exit_code,
            "error": str(self.error) if self.error else None,
            "steps": [
                {
                    "index": r.step_index,
                    "command": r.command,
                    "status": r.status.value,
                    "reason": r.reason,
                    "exit_code": r.exit_code,
                    "duration_ms": r.duration_ms,
                }
                for r in self.results
            ],
        }


class BuildOrchestrator:
    """Selects, resolves and runs profiles of one manifest.

    The manifest is passed in and never mutated; one orchestrator runs one
    step at a time.
    """

    def __init__(
        self,
        manifest: Manifest,
        executor: Executor | None = None,
        scan_options: ScanOptions | None = None,
        filters: FilterRegistry | None = None,
        quiet: bool = False,
    ) -> None:
        self.manifest = manifest
        self.executor = executor or get_executor(quiet=quiet)
        self.scan_options = scan_options or ScanOptions()
        self.filters = filters
        self.quiet = quiet

    @property
    def base_dir(self) -> Path:
        return self.manifest.base_dir

    def _echo(self, message: str) -> None:
        if not self.quiet:
            console.print(message)

    def resolve_profile(
        self,
        template_id: str,
        profile_name: str | None = None,
        variables: Mapping[str, Any] | None = None,
    ) -> Profile:
        """Select a profile and resolve every placeholder in it.

        Raises:
            UnknownTemplate: template_id is not in the manifest.
            UnknownProfile: profile_name is not defined by the template.
            TemplateError: A placeholder cannot be resolved.
        """
        return self._prepare(
            BuildRun(template_id=template_id), profile_name, variables
        )

    def _prepare(
        self,
        run: BuildRun,
        profile_name: str | None,
        variables: Mapping[str, Any] | None,
    ) -> Profile:
        run.state = BuildState.LOADED
        template = self.manifest.get_template(run.template_id)

        profile = select_profile(template, profile_name)
        run.state = BuildState.PROFILE_SELECTED
        run.profile = profile
        logger.info("Selected profile %s/%s", template.id, profile.name)

        run.state = BuildState.RESOLVING
        resolved = profile.render(TemplateResolver(variables, self.filters))
        run.profile = resolved
        return resolved

    def build(
        self,
        template_id: str,
        profile_name: str | None = None,
        variables: Mapping[str, Any] | None = None,
        cancel_event: threading.Event | None = None,
    ) -> BuildRun:
        """Run a profile's build steps in order.

        Manifest, profile and placeholder errors are raised before anything
        touches the filesystem. Errors while executing steps end the build
        and are recorded on the returned BuildRun.
        """
        run = BuildRun(template_id=template_id)
        profile = self._prepare(run, profile_name, variables)
        self._echo(
            f"[bold]Building {template_id} ({profile.name}): "
            f"{len(profile.build)} step(s)[/bold]"
        )
        return self._execute(run, profile.build, cancel_event)

    def run_custom(
        self,
        command_name: str,
        template_id: str,
        profile_name: str | None = None,
        variables: Mapping[str, Any] | None = None,
        cancel_event: threading.Event | None = None,
    ) -> BuildRun:
        """Run one of the profile's custom commands.

        Raises:
            KeyError: The profile defines no such custom command.
        """
        run = BuildRun(template_id=template_id, action=f"custom:{command_name}")
        profile = self._prepare(run, profile_name, variables)
        steps = profile.get_custom_command(command_name)
        self._echo(
            f"[bold]Running {command_name} for {template_id} ({profile.name}): "
            f"{len(steps)} step(s)[/bold]"
        )
        return self._execute(run, steps, cancel_event)

    def clean(
        self,
        template_id: str,
        profile_name: str | None = None,
        variables: Mapping[str, Any] | None = None,
    ) -> BuildRun:
        """Remove the profile's clean paths relative to the template root."""
        run = BuildRun(template_id=template_id, action="clean")
        profile = self._prepare(run, profile_name, variables)
        run.state = BuildState.EXECUTING
        try:
            run.removed = clean_paths(profile.clean, self.base_dir)
        except BuildError as e:
            run.error = e
            run.state = BuildState.FAILED
            self._echo(f"[red]Clean failed: {escape(str(e))}[/red]")
            return run

        for path in run.removed:
            self._echo(f"[dim]Removed {escape(str(path))}[/dim]")
        self._echo(f"[green]Cleaned {len(run.removed)} path(s)[/green]")
        run.state = BuildState.SUCCEEDED
        return run

    def _execute(
        self,
        run: BuildRun,
        steps: tuple[BuildStep, ...],
        cancel_event: threading.Event | None,
    ) -> BuildRun:
        run.state = BuildState.EXECUTING
        total = len(steps)

        for index, step in enumerate(steps):
            step_num = index + 1
            if cancel_event is not None and cancel_event.is_set():
                self._fail(run, index, total, step, Cancelled())
                break

            start = time.monotonic()
            try:
                check = check_staleness(step, self.base_dir, self.scan_options)
                if not check:
                    logger.info(
                        "Skipping step %d/%d: %s", step_num, total, check.reason
                    )
                    self._echo(
                        f"[dim]Step {step_num}/{total} up to date: "
                        f"{escape(step.command)}[/dim]"
                    )
                    run.results.append(
                        StepResult(
                            index, step.command, StepStatus.SKIPPED, check.reason
                        )
                    )
                    continue

                logger.info("Running step %d/%d: %s", step_num, total, check.reason)
                self._echo(
                    f"\n[bold]Step {step_num}/{total}: {escape(step.command)}[/bold]"
                )
                prepare_directories(step, self.base_dir)
                exit_code = run_step(self.executor, step, self.base_dir, cancel_event)
            except BuildError as e:
                self._fail(run, index, total, step, e, start)
                break
            except KeyboardInterrupt:
                self._fail(run, index, total, step, Cancelled(step.command), start)
                break
            except OSError as e:
                # Source or target tree became unreadable while scanning
                self._fail(run, index, total, step, BuildError(str(e)), start)
                break

            run.results.append(
                StepResult(
                    index,
                    step.command,
                    StepStatus.EXECUTED,
                    check.reason,
                    exit_code=exit_code,
                    duration_ms=_elapsed_ms(start),
                )
            )
            self._echo(f"[green]Step {step_num}/{total} completed[/green]")
        else:
            run.state = BuildState.SUCCEEDED
            executed = len(run.executed)
            self._echo(
                f"[green]Build succeeded: {executed} executed, "
                f"{total - executed} up to date[/green]"
            )

        return run

    def _fail(
        self,
        run: BuildRun,
        index: int,
        total: int,
        step: BuildStep,
        error: BuildError,
        start: float | None = None,
    ) -> None:
        exit_code = error.exit_code if isinstance(error, StepExecutionFailed) else None
        run.results.append(
            StepResult(
                index,
                step.command,
                StepStatus.FAILED,
                str(error),
                exit_code=exit_code,
                duration_ms=_elapsed_ms(start) if start is not None else 0,
            )
        )
        run.error = error
        run.state = BuildState.FAILED
        logger.warning("Step %d/%d failed: %s", index + 1, total, error)
        self._echo(f"[red]Step {index + 1}/{total} failed: {escape(str(error))}[/red]")


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def build(
    manifest_path: Path | str,
    template_id: str,
    profile_name: str | None = None,
    variables: Mapping[str, Any] | None = None,
    executor: Executor | None = None,
    scan_options: ScanOptions | None = None,
    filters: FilterRegistry | None = None,
    cancel_event: threading.Event | None = None,
    quiet: bool = False,
) -> BuildRun:
    """Load a manifest and build one profile of one template.

    Returns:
        The BuildRun; its exit_code is the process exit status.

    Raises:
        InvalidManifest: The manifest cannot be loaded.
        UnknownTemplate: template_id is not in the manifest.
        UnknownProfile: profile_name is not defined by the template.
        TemplateError: A placeholder cannot be resolved.
    """
    manifest = load_manifest(Path(manifest_path))
    orchestrator = BuildOrchestrator(
        manifest,
        executor=executor,
        scan_options=scan_options,
        filters=filters,
        quiet=quiet,
    )
    return orchestrator.build(
        template_id, profile_name, variables, cancel_event=cancel_event
    )
