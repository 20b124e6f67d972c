"""Staleness, directory lifecycle and sequential step execution."""

from wasmbuild.build.lifecycle import (
    clean_paths,
    create_directory,
    prepare_directories,
    remove_path,
)
from wasmbuild.build.orchestrator import (
    CANCELLED_EXIT_CODE,
    BuildOrchestrator,
    BuildRun,
    BuildState,
    StepResult,
    StepStatus,
    build,
)
from wasmbuild.build.staleness import (
    ScanOptions,
    StalenessCheck,
    check_staleness,
    effective_mtime,
    is_stale,
)
from wasmbuild.build.step_runner import run_step

__all__ = [
    "CANCELLED_EXIT_CODE",
    "BuildOrchestrator",
    "BuildRun",
    "BuildState",
    "ScanOptions",
    "StalenessCheck",
    "StepResult",
    "StepStatus",
    "build",
    "check_staleness",
    "clean_paths",
    "create_directory",
    "effective_mtime",
    "is_stale",
    "prepare_directories",
    "remove_path",
    "run_step",
]
