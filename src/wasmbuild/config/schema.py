"""Configuration schema and validation for wasmbuild."""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any, Literal, cast

ExecutorType = Literal["docker", "shell"]


@dataclass
class WasmbuildConfig:
    """wasmbuild configuration schema.

    All fields correspond to options of `wasmbuild build`.
    None values indicate "not set" and will use defaults or be inherited.
    """

    # Executor settings
    executor: ExecutorType | None = None
    image: str | None = None
    timeout: float | None = None

    # Staleness scanning
    follow_symlinks: bool | None = None
    ignore_hidden: bool | None = None

    # Output
    quiet: bool | None = None

    # Manifest path, used when none is found by walking up from the cwd
    manifest: str | None = None

    def merge(self, other: WasmbuildConfig) -> WasmbuildConfig:
        """Merge another config into this one.

        Values from `other` take precedence when they are not None.
        Returns a new WasmbuildConfig instance.
        """
        return WasmbuildConfig(
            executor=other.executor if other.executor is not None else self.executor,
            image=other.image if other.image is not None else self.image,
            timeout=other.timeout if other.timeout is not None else self.timeout,
            follow_symlinks=(
                other.follow_symlinks
                if other.follow_symlinks is not None
                else self.follow_symlinks
            ),
            ignore_hidden=(
                other.ignore_hidden
                if other.ignore_hidden is not None
                else self.ignore_hidden
            ),
            quiet=other.quiet if other.quiet is not None else self.quiet,
            manifest=other.manifest if other.manifest is not None else self.manifest,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert config to dictionary, excluding None values."""
        result: dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is not None:
                result[f.name] = value
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WasmbuildConfig:
        """Create a WasmbuildConfig from a dictionary.

        Unknown keys are ignored. Values are coerced to the field types;
        an executor other than "docker" or "shell" is treated as unset.
        """
        executor_raw = data.get("executor")
        executor: ExecutorType | None = None
        if executor_raw in ("docker", "shell"):
            executor = cast(ExecutorType, executor_raw)
        image_raw = data.get("image")
        image = str(image_raw) if image_raw is not None else None
        timeout_raw = data.get("timeout")
        timeout = float(timeout_raw) if timeout_raw is not None else None
        follow_raw = data.get("follow_symlinks")
        follow_symlinks = bool(follow_raw) if follow_raw is not None else None
        hidden_raw = data.get("ignore_hidden")
        ignore_hidden = bool(hidden_raw) if hidden_raw is not None else None
        quiet_raw = data.get("quiet")
        quiet = bool(quiet_raw) if quiet_raw is not None else None
        manifest_raw = data.get("manifest")
        manifest = str(manifest_raw) if manifest_raw is not None else None

        return cls(
            executor=executor,
            image=image,
            timeout=timeout,
            follow_symlinks=follow_symlinks,
            ignore_hidden=ignore_hidden,
            quiet=quiet,
            manifest=manifest,
        )


# Default configuration values (used when not specified anywhere)
DEFAULT_CONFIG = WasmbuildConfig(
    executor="shell",
    follow_symlinks=False,
    ignore_hidden=False,
    quiet=False,
)
