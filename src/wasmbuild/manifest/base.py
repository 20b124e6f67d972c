"""Build manifest model: language templates, profiles and build steps."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from wasmbuild.errors import InvalidManifest, UnknownProfile, UnknownTemplate

if TYPE_CHECKING:
    from wasmbuild.templating.resolver import TemplateResolver

STEP_KEYS = frozenset({"command", "dir", "rmdirs", "mkdirs", "sources", "targets"})
PROFILE_KEYS = frozenset(
    {
        "build",
        "sourceWit",
        "generatedWit",
        "componentWasm",
        "linkedWasm",
        "clean",
        "customCommands",
    }
)
TEMPLATE_KEYS = frozenset({"profiles", "defaultProfile"})


def _expect_mapping(value: Any, key_path: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise InvalidManifest(
            f"expected a mapping, got {type(value).__name__}", key_path
        )
    for key in value:
        if not isinstance(key, str):
            raise InvalidManifest(f"expected string keys, got {key!r}", key_path)
    return value


def _expect_str(value: Any, key_path: str) -> str:
    if not isinstance(value, str):
        raise InvalidManifest(
            f"expected a string, got {type(value).__name__}", key_path
        )
    return value


def _optional_str(data: dict[str, Any], key: str, key_path: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    return _expect_str(value, f"{key_path}.{key}")


def _str_list(data: dict[str, Any], key: str, key_path: str) -> tuple[str, ...]:
    """Read a list of strings; a missing or empty (null) entry is an empty list."""
    value = data.get(key)
    if value is None:
        return ()
    if not isinstance(value, list):
        raise InvalidManifest(
            f"expected a list, got {type(value).__name__}", f"{key_path}.{key}"
        )
    return tuple(
        _expect_str(item, f"{key_path}.{key}[{i}]") for i, item in enumerate(value)
    )


def _reject_unknown_keys(
    data: dict[str, Any], allowed: frozenset[str], key_path: str
) -> None:
    unknown = sorted(set(data) - allowed)
    if unknown:
        raise InvalidManifest(
            f"unknown key '{unknown[0]}' (allowed: {', '.join(sorted(allowed))})",
            key_path,
        )


def _steps_from_list(value: Any, key_path: str) -> tuple[BuildStep, ...]:
    if value is None:
        return ()
    if not isinstance(value, list):
        raise InvalidManifest(
            f"expected a list of steps, got {type(value).__name__}", key_path
        )
    return tuple(
        BuildStep.from_dict(item, key_path=f"{key_path}[{i}]")
        for i, item in enumerate(value)
    )


@dataclass(frozen=True)
class BuildStep:
    """One external command plus its declared filesystem effects.

    All path fields may hold unresolved placeholders until rendered.
    """

    command: str
    dir: str | None = None  # Working directory, relative to the template root
    rmdirs: tuple[str, ...] = ()
    mkdirs: tuple[str, ...] = ()
    sources: tuple[str, ...] = ()
    targets: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the manifest format, omitting empty fields."""
        result: dict[str, Any] = {"command": self.command}
        if self.dir is not None:
            result["dir"] = self.dir
        for key in ("rmdirs", "mkdirs", "sources", "targets"):
            values = getattr(self, key)
            if values:
                result[key] = list(values)
        return result

    @classmethod
    def from_dict(cls, data: Any, key_path: str = "step") -> BuildStep:
        """Create a BuildStep from a parsed manifest entry."""
        data = _expect_mapping(data, key_path)
        _reject_unknown_keys(data, STEP_KEYS, key_path)
        if "command" not in data:
            raise InvalidManifest("missing required key 'command'", key_path)

        return cls(
            command=_expect_str(data["command"], f"{key_path}.command"),
            dir=_optional_str(data, "dir", key_path),
            rmdirs=_str_list(data, "rmdirs", key_path),
            mkdirs=_str_list(data, "mkdirs", key_path),
            sources=_str_list(data, "sources", key_path),
            targets=_str_list(data, "targets", key_path),
        )

    def render(self, resolver: TemplateResolver) -> BuildStep:
        """Return a new BuildStep with every string field resolved."""
        return BuildStep(
            command=resolver.resolve(self.command),
            dir=resolver.resolve_optional(self.dir),
            rmdirs=resolver.resolve_all(self.rmdirs),
            mkdirs=resolver.resolve_all(self.mkdirs),
            sources=resolver.resolve_all(self.sources),
            targets=resolver.resolve_all(self.targets),
        )

    def working_dir(self, base_dir: Path) -> Path:
        """Return the directory the command runs in."""
        if self.dir is None:
            return base_dir
        return base_dir / self.dir


@dataclass(frozen=True)
class Profile:
    """A named, ordered build recipe for one language template."""

    name: str
    build: tuple[BuildStep, ...] = ()
    source_wit: str | None = None
    generated_wit: str | None = None
    component_wasm: str | None = None
    linked_wasm: str | None = None
    clean: tuple[str, ...] = ()
    custom_commands: Mapping[str, tuple[BuildStep, ...]] = field(
        default_factory=dict
    )

    def __post_init__(self) -> None:
        # Read-only view so a loaded manifest cannot be mutated in place
        object.__setattr__(
            self, "custom_commands", MappingProxyType(dict(self.custom_commands))
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the manifest format, excluding the name."""
        result: dict[str, Any] = {"build": [step.to_dict() for step in self.build]}
        for key, value in (
            ("sourceWit", self.source_wit),
            ("generatedWit", self.generated_wit),
            ("componentWasm", self.component_wasm),
            ("linkedWasm", self.linked_wasm),
        ):
            if value is not None:
                result[key] = value
        if self.clean:
            result["clean"] = list(self.clean)
        if self.custom_commands:
            result["customCommands"] = {
                name: [step.to_dict() for step in steps]
                for name, steps in self.custom_commands.items()
            }
        return result

    @classmethod
    def from_dict(cls, name: str, data: Any, key_path: str = "profile") -> Profile:
        """Create a Profile from a parsed manifest entry."""
        data = _expect_mapping(data, key_path)
        _reject_unknown_keys(data, PROFILE_KEYS, key_path)

        custom_raw = data.get("customCommands")
        custom_commands: dict[str, tuple[BuildStep, ...]] = {}
        if custom_raw is not None:
            custom_raw = _expect_mapping(custom_raw, f"{key_path}.customCommands")
            for command_name, steps_raw in custom_raw.items():
                custom_commands[command_name] = _steps_from_list(
                    steps_raw, f"{key_path}.customCommands.{command_name}"
                )

        return cls(
            name=name,
            build=_steps_from_list(data.get("build"), f"{key_path}.build"),
            source_wit=_optional_str(data, "sourceWit", key_path),
            generated_wit=_optional_str(data, "generatedWit", key_path),
            component_wasm=_optional_str(data, "componentWasm", key_path),
            linked_wasm=_optional_str(data, "linkedWasm", key_path),
            clean=_str_list(data, "clean", key_path),
            custom_commands=custom_commands,
        )

    def render(self, resolver: TemplateResolver) -> Profile:
        """Return a new Profile with every string field resolved.

        Everything is resolved up front so that a bad placeholder anywhere in
        the profile fails before any step touches the filesystem.
        """
        return Profile(
            name=self.name,
            build=tuple(step.render(resolver) for step in self.build),
            source_wit=resolver.resolve_optional(self.source_wit),
            generated_wit=resolver.resolve_optional(self.generated_wit),
            component_wasm=resolver.resolve_optional(self.component_wasm),
            linked_wasm=resolver.resolve_optional(self.linked_wasm),
            clean=resolver.resolve_all(self.clean),
            custom_commands={
                name: tuple(step.render(resolver) for step in steps)
                for name, steps in self.custom_commands.items()
            },
        )

    def get_custom_command(self, name: str) -> tuple[BuildStep, ...]:
        """Return the steps of a custom command.

        Raises:
            KeyError: If the profile defines no such command.
        """
        if name not in self.custom_commands:
            available = ", ".join(sorted(self.custom_commands)) or "none"
            raise KeyError(
                f"Profile '{self.name}' has no custom command '{name}' "
                f"(available: {available})"
            )
        return self.custom_commands[name]


@dataclass(frozen=True)
class LanguageTemplate:
    """Named profiles for one source language plus the default profile."""

    id: str
    profiles: Mapping[str, Profile]
    default_profile: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "profiles", MappingProxyType(dict(self.profiles)))

    def to_dict(self) -> dict[str, Any]:
        return {
            "profiles": {
                name: profile.to_dict() for name, profile in self.profiles.items()
            },
            "defaultProfile": self.default_profile,
        }

    @classmethod
    def from_dict(
        cls, template_id: str, data: Any, key_path: str = "template"
    ) -> LanguageTemplate:
        """Create a LanguageTemplate, enforcing the defaultProfile invariant."""
        data = _expect_mapping(data, key_path)
        _reject_unknown_keys(data, TEMPLATE_KEYS, key_path)

        profiles_raw = data.get("profiles")
        if profiles_raw is None:
            raise InvalidManifest("missing required key 'profiles'", key_path)
        profiles_raw = _expect_mapping(profiles_raw, f"{key_path}.profiles")
        if not profiles_raw:
            raise InvalidManifest(
                "at least one profile is required", f"{key_path}.profiles"
            )

        profiles = {
            name: Profile.from_dict(name, raw, key_path=f"{key_path}.profiles.{name}")
            for name, raw in profiles_raw.items()
        }

        if "defaultProfile" not in data:
            raise InvalidManifest("missing required key 'defaultProfile'", key_path)
        default_profile = _expect_str(
            data["defaultProfile"], f"{key_path}.defaultProfile"
        )
        if default_profile not in profiles:
            raise InvalidManifest(
                f"default profile '{default_profile}' is not defined "
                f"(profiles: {', '.join(profiles)})",
                f"{key_path}.defaultProfile",
            )

        return cls(id=template_id, profiles=profiles, default_profile=default_profile)

    def profile_names(self) -> list[str]:
        """Return profile names in declaration order."""
        return list(self.profiles)

    def select_profile(self, profile_name: str | None = None) -> Profile:
        return select_profile(self, profile_name)


def select_profile(
    template: LanguageTemplate, profile_name: str | None = None
) -> Profile:
    """Select a profile by name, or the template's default profile.

    Raises:
        UnknownProfile: A name was given that the template does not define.
        InvalidManifest: No name was given and defaultProfile names no profile.
    """
    if profile_name is not None:
        if profile_name not in template.profiles:
            raise UnknownProfile(profile_name, template.profile_names())
        return template.profiles[profile_name]

    if template.default_profile not in template.profiles:
        raise InvalidManifest(
            f"default profile '{template.default_profile}' is not defined",
            f"templates.{template.id}.defaultProfile",
        )
    return template.profiles[template.default_profile]


@dataclass(frozen=True)
class Manifest:
    """Immutable set of language templates loaded from one manifest file."""

    templates: Mapping[str, LanguageTemplate]
    source: Path | None = None  # Manifest file the templates were loaded from

    def __post_init__(self) -> None:
        object.__setattr__(self, "templates", MappingProxyType(dict(self.templates)))

    @property
    def base_dir(self) -> Path:
        """Template root: the directory holding the manifest file."""
        if self.source is None:
            return Path.cwd()
        return self.source.parent

    def template_ids(self) -> list[str]:
        return list(self.templates)

    def get_template(self, template_id: str) -> LanguageTemplate:
        """Return a language template by id.

        Raises:
            UnknownTemplate: If the manifest does not define template_id.
        """
        if template_id not in self.templates:
            raise UnknownTemplate(template_id, self.template_ids())
        return self.templates[template_id]

    def to_dict(self) -> dict[str, Any]:
        return {
            "templates": {
                template_id: template.to_dict()
                for template_id, template in self.templates.items()
            }
        }

    @classmethod
    def from_dict(cls, data: Any, source: Path | None = None) -> Manifest:
        """Create a Manifest from the parsed document."""
        data = _expect_mapping(data, "<root>")
        _reject_unknown_keys(data, frozenset({"templates"}), "<root>")
        if "templates" not in data:
            raise InvalidManifest("missing required key 'templates'", "<root>")

        templates_raw = _expect_mapping(data["templates"], "templates")
        templates = {
            template_id: LanguageTemplate.from_dict(
                template_id, raw, key_path=f"templates.{template_id}"
            )
            for template_id, raw in templates_raw.items()
        }
        return cls(templates=templates, source=source)
