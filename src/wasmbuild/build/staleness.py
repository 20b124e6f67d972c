"""Staleness evaluation: decide whether a build step must run.

A step is stale when it declares no targets, when any target is missing, or
when any source is strictly newer than the oldest target. Directories count
as fresh as their newest file, found by a recursive scan, so regenerated
bindings are noticed even when the directory's own timestamp is unchanged.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from wasmbuild.errors import FilesystemError
from wasmbuild.manifest.base import BuildStep

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScanOptions:
    """How directory trees are scanned for modification times."""

    follow_symlinks: bool = False  # Descend into symlinked dirs, time link targets
    ignore_hidden: bool = False  # Skip dot-entries found inside a scanned directory


@dataclass(frozen=True)
class StalenessCheck:
    """Outcome of a staleness evaluation, with the reason for logging."""

    stale: bool
    reason: str

    def __bool__(self) -> bool:
        return self.stale


def _stat_mtime(path: Path, follow_symlinks: bool) -> int:
    return os.stat(path, follow_symlinks=follow_symlinks).st_mtime_ns


def _raise_scan_error(error: OSError) -> None:
    # An unlistable directory could hide newer files
    path = Path(error.filename) if error.filename else Path()
    raise FilesystemError(path, "scan", error.strerror or str(error)) from error


def effective_mtime(path: Path, options: ScanOptions | None = None) -> int | None:
    """Return the effective modification time of path in nanoseconds.

    Files report their own mtime. Directories report the newest mtime of any
    file beneath them, or their own mtime when they hold no files. Returns
    None if path does not exist.

    Raises:
        FilesystemError: A directory beneath path cannot be listed.
    """
    options = options or ScanOptions()
    if not os.path.lexists(path):
        return None

    if options.follow_symlinks:
        is_dir = path.is_dir()
    else:
        is_dir = path.is_dir() and not path.is_symlink()
    if not is_dir:
        try:
            return _stat_mtime(path, options.follow_symlinks)
        except FileNotFoundError:
            # Dangling symlink followed to nothing
            return None

    newest: int | None = None
    for root, dirnames, filenames in os.walk(
        path, onerror=_raise_scan_error, followlinks=options.follow_symlinks
    ):
        if options.ignore_hidden:
            dirnames[:] = [d for d in dirnames if not d.startswith(".")]
            filenames = [f for f in filenames if not f.startswith(".")]
        if not options.follow_symlinks:
            # os.walk lists symlinks to directories under dirnames; time the link
            filenames = [
                *filenames,
                *(d for d in dirnames if (Path(root) / d).is_symlink()),
            ]
        for filename in filenames:
            entry = Path(root) / filename
            try:
                mtime = _stat_mtime(entry, options.follow_symlinks)
            except FileNotFoundError:
                logger.debug("Skipping vanished or dangling entry: %s", entry)
                continue
            if newest is None or mtime > newest:
                newest = mtime

    if newest is None:
        return _stat_mtime(path, options.follow_symlinks)
    return newest


def check_staleness(
    step: BuildStep,
    base_dir: Path,
    options: ScanOptions | None = None,
) -> StalenessCheck:
    """Evaluate whether a resolved step must run.

    Relative sources and targets are taken relative to the step's working
    directory under base_dir.
    """
    options = options or ScanOptions()
    cwd = step.working_dir(base_dir)

    if not step.targets:
        return StalenessCheck(True, "no targets declared")

    oldest_target: int | None = None
    oldest_target_path = ""
    for target in step.targets:
        mtime = effective_mtime(cwd / target, options)
        if mtime is None:
            return StalenessCheck(True, f"target missing: {target}")
        if oldest_target is None or mtime < oldest_target:
            oldest_target = mtime
            oldest_target_path = target

    for source in step.sources:
        mtime = effective_mtime(cwd / source, options)
        if mtime is None:
            logger.debug("Source does not exist, ignoring: %s", cwd / source)
            continue
        if oldest_target is not None and mtime > oldest_target:
            return StalenessCheck(
                True, f"source newer than target: {source} > {oldest_target_path}"
            )

    return StalenessCheck(False, "targets up to date")


def is_stale(
    step: BuildStep,
    base_dir: Path,
    options: ScanOptions | None = None,
) -> bool:
    """Return True if the step's targets are missing or older than its sources."""
    return check_staleness(step, base_dir, options).stale
