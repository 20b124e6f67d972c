"""Exceptions raised while loading manifests and running builds."""

from __future__ import annotations

from pathlib import Path


class BuildError(Exception):
    """Base exception for wasmbuild."""


class InvalidManifest(BuildError):
    """Raised when a manifest is structurally invalid.

    Carries the dotted key path of the offending entry when known,
    e.g. ``templates.go.profiles.debug.build[0].command``.
    """

    def __init__(self, message: str, key_path: str | None = None) -> None:
        self.message = message
        self.key_path = key_path
        if key_path:
            super().__init__(f"{key_path}: {message}")
        else:
            super().__init__(message)


class UnknownTemplate(BuildError):
    """Raised when a language template id is not defined in the manifest."""

    def __init__(self, template_id: str, available: list[str]) -> None:
        self.template_id = template_id
        self.available = available
        super().__init__(
            f"Unknown template: {template_id} "
            f"(available: {', '.join(available) or 'none'})"
        )


class UnknownProfile(BuildError):
    """Raised when a requested profile does not exist in a template."""

    def __init__(self, profile_name: str, available: list[str]) -> None:
        self.profile_name = profile_name
        self.available = available
        super().__init__(
            f"Unknown profile: {profile_name} "
            f"(available: {', '.join(available) or 'none'})"
        )


class TemplateError(BuildError):
    """Base exception for placeholder resolution failures."""


class UnresolvedVariable(TemplateError):
    """Raised when a placeholder names a variable with no bound value."""

    def __init__(self, name: str, template: str) -> None:
        self.name = name
        self.template = template
        super().__init__(f"Unresolved variable '{name}' in: {template}")


class UnknownFilter(TemplateError):
    """Raised when a placeholder names a filter that is not registered."""

    def __init__(self, name: str, template: str) -> None:
        self.name = name
        self.template = template
        super().__init__(f"Unknown filter '{name}' in: {template}")


class FilesystemError(BuildError):
    """Raised when a directory removal or creation fails."""

    def __init__(self, path: Path, operation: str, reason: str) -> None:
        self.path = path
        self.operation = operation
        self.reason = reason
        super().__init__(f"Failed to {operation} {path}: {reason}")


class StepExecutionFailed(BuildError):
    """Raised when a step command exits with a non-zero status."""

    def __init__(self, command: str, exit_code: int) -> None:
        self.command = command
        self.exit_code = exit_code
        super().__init__(f"Command exited with status {exit_code}: {command}")


class Cancelled(BuildError):
    """Raised when the caller cancels a build while a step is running."""

    def __init__(self, command: str | None = None) -> None:
        self.command = command
        if command:
            super().__init__(f"Build cancelled while running: {command}")
        else:
            super().__init__("Build cancelled")


class ExecutorError(BuildError):
    """Raised when an executor cannot start or manage a step command."""
