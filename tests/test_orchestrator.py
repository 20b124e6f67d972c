"""Tests for the build orchestrator and step runner."""

import os
import threading
import time
from collections.abc import Iterator
from pathlib import Path
from typing import Any
from unittest.mock import patch

import pytest
import yaml

from wasmbuild.build import (
    CANCELLED_EXIT_CODE,
    BuildOrchestrator,
    BuildRun,
    BuildState,
    StepStatus,
    build,
    run_step,
)
from wasmbuild.errors import (
    BuildError,
    Cancelled,
    ExecutorError,
    FilesystemError,
    StepExecutionFailed,
    UnknownProfile,
    UnknownTemplate,
    UnresolvedVariable,
)
from wasmbuild.executors import ShellExecutor
from wasmbuild.executors.base import Executor
from wasmbuild.manifest import BuildStep, load_manifest

posix_only = pytest.mark.skipif(os.name != "posix", reason="requires a POSIX shell")

# Fixed modification times (nanoseconds)
OLD = 1_600_000_000_000_000_000
NEW = 1_700_000_000_000_000_000


class FakeExecutor(Executor):
    """Executor that records commands instead of running them."""

    name = "fake"

    def __init__(
        self,
        exit_codes: dict[str, int | None] | None = None,
        raises: dict[str, BaseException] | None = None,
        output: list[str] | None = None,
    ) -> None:
        self.exit_codes = exit_codes or {}
        self.raises = raises or {}
        self.output = output or []
        self.calls: list[tuple[str, Path]] = []
        self.terminated = 0
        self.torn_down = 0
        self._command: str | None = None
        self._exit_code: int | None = None

    def setup(self, command: str, cwd: Path) -> None:
        self._command = command
        self._exit_code = None
        self.calls.append((command, cwd))

    def run(self, cancel_event: threading.Event | None = None) -> Iterator[str]:
        assert self._command is not None
        if self._command in self.raises:
            raise self.raises[self._command]
        yield from self.output
        self._exit_code = self.exit_codes.get(self._command, 0)

    def terminate(self) -> None:
        self.terminated += 1

    def teardown(self) -> None:
        self.torn_down += 1

    @property
    def exit_code(self) -> int | None:
        return self._exit_code

    @property
    def commands(self) -> list[str]:
        return [command for command, _ in self.calls]


def write_manifest(
    directory: Path,
    steps: list[dict[str, Any]],
    **profile: Any,
) -> Path:
    """Write a single-template manifest with a debug profile."""
    data = {
        "templates": {
            "go": {
                "profiles": {
                    "debug": {"build": steps, **profile},
                    "release": {"build": [{"command": "echo release"}]},
                },
                "defaultProfile": "debug",
            }
        }
    }
    path = directory / "wasmbuild.yaml"
    path.write_text(yaml.safe_dump(data, sort_keys=False))
    return path


def make_orchestrator(
    directory: Path, steps: list[dict[str, Any]], executor: Executor, **profile: Any
) -> BuildOrchestrator:
    manifest = load_manifest(write_manifest(directory, steps, **profile))
    return BuildOrchestrator(manifest, executor=executor, quiet=True)


class TestRunStep:
    """Tests for run_step."""

    def test_success_returns_zero(self, tmp_path: Path) -> None:
        """Test a zero exit code is returned and the executor torn down."""
        executor = FakeExecutor()
        step = BuildStep(command="make", dir="component")

        assert run_step(executor, step, tmp_path) == 0
        assert executor.calls == [("make", tmp_path / "component")]
        assert executor.torn_down == 1

    def test_non_zero_exit_raises(self, tmp_path: Path) -> None:
        """Test a failing command raises StepExecutionFailed with its code."""
        executor = FakeExecutor(exit_codes={"make": 2})

        with pytest.raises(StepExecutionFailed) as exc_info:
            run_step(executor, BuildStep(command="make"), tmp_path)

        assert exc_info.value.exit_code == 2
        assert exc_info.value.command == "make"
        assert executor.torn_down == 1

    def test_missing_exit_code_is_failure(self, tmp_path: Path) -> None:
        """Test a command without an exit status is treated as failed."""
        executor = FakeExecutor(exit_codes={"make": None})

        with pytest.raises(StepExecutionFailed) as exc_info:
            run_step(executor, BuildStep(command="make"), tmp_path)

        assert exc_info.value.exit_code == 1

    def test_keyboard_interrupt_terminates(self, tmp_path: Path) -> None:
        """Test an interrupt terminates the command and raises Cancelled."""
        executor = FakeExecutor(raises={"make": KeyboardInterrupt()})

        with pytest.raises(Cancelled):
            run_step(executor, BuildStep(command="make"), tmp_path)

        assert executor.terminated == 1
        assert executor.torn_down == 1

    def test_executor_error_propagates(self, tmp_path: Path) -> None:
        """Test executor failures propagate after teardown."""
        executor = FakeExecutor(raises={"make": ExecutorError("no daemon")})

        with pytest.raises(ExecutorError, match="no daemon"):
            run_step(executor, BuildStep(command="make"), tmp_path)
        assert executor.torn_down == 1

    def test_output_echoed_unless_quiet(self, tmp_path: Path) -> None:
        """Test command output goes to the console only when not quiet."""
        executor = FakeExecutor(output=["compiling [main]"])

        with patch("wasmbuild.build.step_runner.console") as mock_console:
            run_step(executor, BuildStep(command="make"), tmp_path)
            mock_console.print.assert_called_once_with(
                "compiling [main]", markup=False, highlight=False
            )

            executor.quiet = True
            mock_console.reset_mock()
            run_step(executor, BuildStep(command="make"), tmp_path)
            mock_console.print.assert_not_called()


class TestBuild:
    """Tests for BuildOrchestrator.build with a recording executor."""

    def test_runs_default_profile_in_order(self, tmp_path: Path) -> None:
        """Test steps run in declaration order in their working directories."""
        executor = FakeExecutor()
        orchestrator = make_orchestrator(
            tmp_path,
            [{"command": "gen"}, {"command": "compile", "dir": "component"}],
            executor,
        )

        run = orchestrator.build("go")

        base = tmp_path.resolve()
        assert executor.calls == [("gen", base), ("compile", base / "component")]
        assert run.state is BuildState.SUCCEEDED
        assert run.succeeded
        assert run.exit_code == 0
        assert run.profile is not None and run.profile.name == "debug"
        assert [r.status for r in run.results] == [StepStatus.EXECUTED] * 2
        assert all(r.reason == "no targets declared" for r in run.results)
        run.raise_for_status()

    def test_named_profile(self, tmp_path: Path) -> None:
        """Test a named profile is used instead of the default."""
        executor = FakeExecutor()
        orchestrator = make_orchestrator(tmp_path, [{"command": "gen"}], executor)

        run = orchestrator.build("go", "release")

        assert executor.commands == ["echo release"]
        assert run.profile is not None and run.profile.name == "release"

    def test_variables_are_resolved(self, tmp_path: Path) -> None:
        """Test placeholders are rendered before commands run."""
        executor = FakeExecutor()
        orchestrator = make_orchestrator(
            tmp_path,
            [{"command": "tinygo build -o {{ component_name | to_snake_case }}.wasm"}],
            executor,
        )

        orchestrator.build("go", variables={"component_name": "MyComponent"})

        assert executor.commands == ["tinygo build -o my_component.wasm"]

    def test_fail_fast(self, tmp_path: Path) -> None:
        """Test no step after a failing one is started."""
        executor = FakeExecutor(exit_codes={"b": 3})
        orchestrator = make_orchestrator(
            tmp_path,
            [{"command": "a"}, {"command": "b"}, {"command": "c"}],
            executor,
        )

        run = orchestrator.build("go")

        assert executor.commands == ["a", "b"]
        assert [r.status for r in run.results] == [
            StepStatus.EXECUTED,
            StepStatus.FAILED,
        ]
        assert run.results[1].exit_code == 3
        assert run.state is BuildState.FAILED
        assert run.exit_code == 3
        assert isinstance(run.error, StepExecutionFailed)
        with pytest.raises(StepExecutionFailed):
            run.raise_for_status()

    def test_killed_step_maps_to_signal_status(self, tmp_path: Path) -> None:
        """Test a command killed by a signal exits with 128 plus its number."""
        executor = FakeExecutor(exit_codes={"a": -9})
        orchestrator = make_orchestrator(tmp_path, [{"command": "a"}], executor)

        run = orchestrator.build("go")

        assert run.results[0].exit_code == -9
        assert run.state is BuildState.FAILED
        assert run.exit_code == 137

    def test_failed_step_directories_are_not_undone(self, tmp_path: Path) -> None:
        """Test directory changes made before a failing command are kept."""
        executor = FakeExecutor(exit_codes={"gen": 1})
        (tmp_path / "binding").mkdir()
        (tmp_path / "binding" / "old.go").write_text("old")
        orchestrator = make_orchestrator(
            tmp_path,
            [{"command": "gen", "rmdirs": ["binding"], "mkdirs": ["binding"]}],
            executor,
        )

        run = orchestrator.build("go")

        assert not run.succeeded
        assert (tmp_path / "binding").is_dir()
        assert list((tmp_path / "binding").iterdir()) == []

    def test_unknown_template_raises(self, tmp_path: Path) -> None:
        """Test an unknown template id is raised before execution."""
        executor = FakeExecutor()
        orchestrator = make_orchestrator(tmp_path, [{"command": "a"}], executor)

        with pytest.raises(UnknownTemplate):
            orchestrator.build("rust")
        assert executor.calls == []

    def test_unknown_profile_raises(self, tmp_path: Path) -> None:
        """Test an unknown profile name is raised before execution."""
        executor = FakeExecutor()
        orchestrator = make_orchestrator(tmp_path, [{"command": "a"}], executor)

        with pytest.raises(UnknownProfile):
            orchestrator.build("go", "profiling")
        assert executor.calls == []

    def test_unresolved_variable_touches_nothing(self, tmp_path: Path) -> None:
        """Test a bad placeholder in a later step fails before any side effect."""
        executor = FakeExecutor()
        (tmp_path / "binding").mkdir()
        (tmp_path / "binding" / "keep.go").write_text("keep")
        orchestrator = make_orchestrator(
            tmp_path,
            [
                {"command": "gen", "rmdirs": ["binding"]},
                {"command": "build {{ component_name }}"},
            ],
            executor,
        )

        with pytest.raises(UnresolvedVariable):
            orchestrator.build("go")

        assert executor.calls == []
        assert (tmp_path / "binding" / "keep.go").exists()

    def test_cancel_before_first_step(self, tmp_path: Path) -> None:
        """Test a cancelled build starts nothing and exits with 130."""
        executor = FakeExecutor()
        orchestrator = make_orchestrator(tmp_path, [{"command": "a"}], executor)
        cancel = threading.Event()
        cancel.set()

        run = orchestrator.build("go", cancel_event=cancel)

        assert executor.calls == []
        assert isinstance(run.error, Cancelled)
        assert run.results[0].status is StepStatus.FAILED
        assert run.exit_code == CANCELLED_EXIT_CODE

    def test_interrupt_is_recorded_as_cancelled(self, tmp_path: Path) -> None:
        """Test an interrupt during a step ends the build as cancelled."""
        executor = FakeExecutor(raises={"b": KeyboardInterrupt()})
        orchestrator = make_orchestrator(
            tmp_path, [{"command": "b"}, {"command": "c"}], executor
        )

        run = orchestrator.build("go")

        assert executor.commands == ["b"]
        assert isinstance(run.error, Cancelled)
        assert run.exit_code == CANCELLED_EXIT_CODE

    def test_executor_error_is_recorded(self, tmp_path: Path) -> None:
        """Test an executor failure ends the build with exit code 1."""
        executor = FakeExecutor(raises={"a": ExecutorError("no daemon")})
        orchestrator = make_orchestrator(tmp_path, [{"command": "a"}], executor)

        run = orchestrator.build("go")

        assert isinstance(run.error, ExecutorError)
        assert run.exit_code == 1
        assert run.results[0].reason == "no daemon"

    def test_directory_failure_is_recorded(self, tmp_path: Path) -> None:
        """Test a failing mkdir stops the build before the command runs."""
        executor = FakeExecutor()
        (tmp_path / "out").write_text("a file, not a directory")
        orchestrator = make_orchestrator(
            tmp_path, [{"command": "a", "mkdirs": ["out"]}], executor
        )

        run = orchestrator.build("go")

        assert executor.calls == []
        assert run.state is BuildState.FAILED
        assert run.exit_code == 1

    def test_unreadable_source_fails_the_build(self, tmp_path: Path) -> None:
        """Test a source tree that cannot be scanned fails instead of skipping."""
        executor = FakeExecutor()
        for name, mtime in (("src/main.go", OLD), ("out.wasm", NEW)):
            path = tmp_path / name
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text("x")
            os.utime(path, ns=(mtime, mtime))
        (tmp_path / "src" / "locked").mkdir()
        orchestrator = make_orchestrator(
            tmp_path,
            [{"command": "a", "sources": ["src"], "targets": ["out.wasm"]}],
            executor,
        )
        real_scandir = os.scandir

        def scandir(path):
            if Path(path).name == "locked":
                raise PermissionError(13, "Permission denied", os.fspath(path))
            return real_scandir(path)

        with patch("os.scandir", side_effect=scandir):
            run = orchestrator.build("go")

        assert executor.calls == []
        assert isinstance(run.error, FilesystemError)
        assert run.results[0].status is StepStatus.FAILED
        assert run.exit_code == 1

    def test_up_to_date_step_is_skipped(self, tmp_path: Path) -> None:
        """Test a step whose targets are newer than its sources is skipped."""
        executor = FakeExecutor()
        src = tmp_path / "main.go"
        out = tmp_path / "out.wasm"
        src.write_text("package main")
        out.write_bytes(b"\0asm")
        os.utime(src, ns=(OLD, OLD))
        os.utime(out, ns=(NEW, NEW))
        orchestrator = make_orchestrator(
            tmp_path,
            [{"command": "a", "sources": ["main.go"], "targets": ["out.wasm"]}],
            executor,
        )

        run = orchestrator.build("go")

        assert executor.calls == []
        assert run.succeeded
        assert [r.status for r in run.skipped] == [StepStatus.SKIPPED]
        assert run.executed == []

    def test_to_dict(self, tmp_path: Path) -> None:
        """Test the run summary lists steps with their status."""
        executor = FakeExecutor(exit_codes={"b": 2})
        orchestrator = make_orchestrator(
            tmp_path, [{"command": "a"}, {"command": "b"}], executor
        )

        summary = orchestrator.build("go").to_dict()

        assert summary["template"] == "go"
        assert summary["action"] == "build"
        assert summary["profile"] == "debug"
        assert summary["state"] == "failed"
        assert summary["exit_code"] == 2
        assert [s["status"] for s in summary["steps"]] == ["executed", "failed"]


class TestBuildRun:
    """Tests for BuildRun."""

    def test_incomplete_run_raises(self) -> None:
        """Test raise_for_status fails for a run that never finished."""
        run = BuildRun(template_id="go")
        assert run.exit_code == 1
        with pytest.raises(BuildError, match="state: idle"):
            run.raise_for_status()


class TestResolveProfile:
    """Tests for BuildOrchestrator.resolve_profile."""

    def test_renders_every_field(self, tmp_path: Path) -> None:
        """Test commands and paths are resolved without running anything."""
        executor = FakeExecutor()
        orchestrator = make_orchestrator(
            tmp_path,
            [{"command": "build {{ name }}", "targets": ["{{ name }}.wasm"]}],
            executor,
            componentWasm="out/{{ name }}.wasm",
        )

        profile = orchestrator.resolve_profile("go", variables={"name": "demo"})

        assert profile.build[0].command == "build demo"
        assert profile.build[0].targets == ("demo.wasm",)
        assert profile.component_wasm == "out/demo.wasm"
        assert executor.calls == []


class TestRunCustom:
    """Tests for BuildOrchestrator.run_custom."""

    def test_runs_custom_command(self, tmp_path: Path) -> None:
        """Test a custom command's steps run in their directory."""
        executor = FakeExecutor()
        orchestrator = make_orchestrator(
            tmp_path,
            [{"command": "build"}],
            executor,
            customCommands={"fmt": [{"command": "go fmt ./...", "dir": "component"}]},
        )

        run = orchestrator.run_custom("fmt", "go")

        assert executor.calls == [("go fmt ./...", tmp_path.resolve() / "component")]
        assert run.action == "custom:fmt"
        assert run.succeeded

    def test_unknown_custom_command(self, tmp_path: Path) -> None:
        """Test an undefined custom command raises KeyError."""
        executor = FakeExecutor()
        orchestrator = make_orchestrator(tmp_path, [{"command": "build"}], executor)

        with pytest.raises(KeyError, match="no custom command 'lint'"):
            orchestrator.run_custom("lint", "go")
        assert executor.calls == []


class TestClean:
    """Tests for BuildOrchestrator.clean."""

    def test_removes_clean_paths(self, tmp_path: Path) -> None:
        """Test clean removes the profile's clean paths and nothing else."""
        (tmp_path / "binding").mkdir()
        (tmp_path / "out.wasm").write_text("x")
        (tmp_path / "main.go").write_text("package main")
        executor = FakeExecutor()
        orchestrator = make_orchestrator(
            tmp_path,
            [{"command": "build"}],
            executor,
            clean=["binding", "out.wasm", "missing"],
        )

        run = orchestrator.clean("go")

        base = tmp_path.resolve()
        assert run.succeeded
        assert run.action == "clean"
        assert run.removed == [base / "binding", base / "out.wasm"]
        assert (tmp_path / "main.go").exists()
        assert executor.calls == []

    def test_failure_is_recorded(self, tmp_path: Path) -> None:
        """Test a removal failure ends the clean as failed."""
        (tmp_path / "binding").mkdir()
        orchestrator = make_orchestrator(
            tmp_path, [{"command": "build"}], FakeExecutor(), clean=["binding"]
        )

        with patch(
            "wasmbuild.build.lifecycle.shutil.rmtree",
            side_effect=PermissionError(13, "Permission denied"),
        ):
            run = orchestrator.clean("go")

        assert run.state is BuildState.FAILED
        assert run.exit_code == 1


@posix_only
class TestShellBuild:
    """End-to-end builds through the shell executor."""

    def make_orchestrator(
        self, tmp_path: Path, steps: list[dict[str, Any]]
    ) -> BuildOrchestrator:
        executor = ShellExecutor(quiet=True, log_dir=tmp_path / "logs")
        return make_orchestrator(tmp_path, steps, executor)

    def test_fail_fast(self, tmp_path: Path) -> None:
        """Test a failing command stops the build with its exit code."""
        orchestrator = self.make_orchestrator(
            tmp_path,
            [
                {"command": "echo a > a.txt"},
                {"command": "exit 3"},
                {"command": "echo c > c.txt"},
            ],
        )

        run = orchestrator.build("go")

        assert (tmp_path / "a.txt").exists()
        assert not (tmp_path / "c.txt").exists()
        assert run.exit_code == 3
        assert len(run.results) == 2

    def test_second_build_is_a_no_op(self, tmp_path: Path) -> None:
        """Test an unchanged tree rebuilds nothing."""
        src = tmp_path / "main.go"
        src.write_text("package main")
        os.utime(src, ns=(OLD, OLD))
        orchestrator = self.make_orchestrator(
            tmp_path,
            [
                {
                    "command": "touch out.wasm",
                    "sources": ["main.go"],
                    "targets": ["out.wasm"],
                }
            ],
        )

        first = orchestrator.build("go")
        second = orchestrator.build("go")

        assert len(first.executed) == 1
        assert second.succeeded
        assert second.executed == []
        assert len(second.skipped) == 1

    def test_touched_source_rebuilds_dependents(self, tmp_path: Path) -> None:
        """Test touching a generated source reruns its step and the next one."""
        wit = tmp_path / "wit-generated" / "world.wit"
        wit.parent.mkdir()
        wit.write_text("package demo:component;")
        os.utime(wit, ns=(OLD, OLD))
        orchestrator = self.make_orchestrator(
            tmp_path,
            [
                {
                    "command": "echo package binding > binding/binding.go",
                    "rmdirs": ["binding"],
                    "mkdirs": ["binding"],
                    "sources": ["wit-generated"],
                    "targets": ["binding"],
                },
                {
                    "command": "touch out.wasm",
                    "sources": ["binding"],
                    "targets": ["out.wasm"],
                },
            ],
        )

        assert len(orchestrator.build("go").executed) == 2
        assert orchestrator.build("go").executed == []

        # Let the filesystem clock move past the first build's outputs
        time.sleep(0.05)
        future = time.time_ns() + 60 * 1_000_000_000
        os.utime(wit, ns=(future, future))
        rebuilt = orchestrator.build("go")

        assert [r.step_index for r in rebuilt.executed] == [0, 1]
        assert (tmp_path / "binding" / "binding.go").exists()


class TestBuildFunction:
    """Tests for the module-level build function."""

    def test_loads_manifest_and_builds(self, tmp_path: Path) -> None:
        """Test build loads the manifest and runs the requested profile."""
        path = write_manifest(tmp_path, [{"command": "gen"}])
        executor = FakeExecutor()

        run = build(path, "go", "release", executor=executor, quiet=True)

        assert run.succeeded
        assert executor.calls == [("echo release", tmp_path.resolve())]
