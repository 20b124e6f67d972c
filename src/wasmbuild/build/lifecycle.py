"""Directory lifecycle around step execution."""

from __future__ import annotations

import logging
import os
import shutil
from collections.abc import Iterable
from pathlib import Path

from wasmbuild.errors import FilesystemError
from wasmbuild.manifest.base import BuildStep

logger = logging.getLogger(__name__)


def remove_path(path: Path) -> bool:
    """Remove a directory tree, file or symlink.

    A missing path is not an error. Symlinks are unlinked, never followed.
    Returns True if something was removed.

    Raises:
        FilesystemError: If removal fails for any other reason.
    """
    if not os.path.lexists(path):
        logger.debug("Nothing to remove: %s", path)
        return False
    try:
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        else:
            path.unlink()
    except FileNotFoundError:
        return False
    except OSError as e:
        raise FilesystemError(path, "remove", e.strerror or str(e)) from e
    logger.debug("Removed %s", path)
    return True


def create_directory(path: Path) -> None:
    """Create a directory and its parents; an existing directory is not an error.

    Raises:
        FilesystemError: If the directory cannot be created, including when
            a file already occupies the path.
    """
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise FilesystemError(path, "create", e.strerror or str(e)) from e
    logger.debug("Created %s", path)


def prepare_directories(step: BuildStep, base_dir: Path) -> None:
    """Apply a step's rmdirs and then its mkdirs.

    Every removal finishes before the first creation, so a directory listed
    in both ends up existing and empty. Nothing is rolled back on failure.

    Raises:
        FilesystemError: On the first removal or creation that fails.
    """
    cwd = step.working_dir(base_dir)
    for rmdir in step.rmdirs:
        remove_path(cwd / rmdir)
    for mkdir in step.mkdirs:
        create_directory(cwd / mkdir)


def clean_paths(paths: Iterable[str], base_dir: Path) -> list[Path]:
    """Remove each path relative to base_dir.

    Returns the paths that existed and were removed.
    """
    removed: list[Path] = []
    for raw in paths:
        path = base_dir / raw
        if remove_path(path):
            removed.append(path)
    return removed
