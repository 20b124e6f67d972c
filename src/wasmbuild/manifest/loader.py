"""Manifest file discovery and loading."""

from __future__ import annotations

from collections.abc import Hashable
from pathlib import Path
from typing import Any

import yaml
from yaml.constructor import ConstructorError
from yaml.nodes import MappingNode

from wasmbuild.errors import InvalidManifest
from wasmbuild.manifest.base import Manifest

# Constants
MANIFEST_FILENAME = "wasmbuild.yaml"


class _ManifestLoader(yaml.SafeLoader):
    """Safe loader that rejects duplicate mapping keys.

    PyYAML silently keeps the last of two equal keys, which would hide a
    duplicated profile name.
    """


def _construct_mapping(
    loader: _ManifestLoader, node: MappingNode
) -> dict[Any, Any]:
    loader.flatten_mapping(node)
    mapping: dict[Any, Any] = {}
    for key_node, value_node in node.value:
        key = loader.construct_object(key_node, deep=True)
        if not isinstance(key, Hashable):
            raise ConstructorError(
                "while constructing a mapping",
                node.start_mark,
                "found unhashable key",
                key_node.start_mark,
            )
        if key in mapping:
            raise ConstructorError(
                "while constructing a mapping",
                node.start_mark,
                f"found duplicate key '{key}'",
                key_node.start_mark,
            )
        mapping[key] = loader.construct_object(value_node, deep=True)
    return mapping


_ManifestLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG, _construct_mapping
)


def find_manifest(start: Path | None = None) -> Path | None:
    """Find the nearest manifest file, walking up from start (default: cwd)."""
    current = (start or Path.cwd()).resolve()
    for directory in (current, *current.parents):
        candidate = directory / MANIFEST_FILENAME
        if candidate.is_file():
            return candidate
    return None


def parse_manifest(text: str, source: Path | None = None) -> Manifest:
    """Parse manifest YAML text.

    Raises:
        InvalidManifest: On YAML syntax errors, duplicate keys or schema errors.
    """
    try:
        data = yaml.load(text, Loader=_ManifestLoader)
    except yaml.YAMLError as e:
        raise InvalidManifest(f"invalid YAML: {e}") from e

    if data is None:
        raise InvalidManifest("manifest is empty")
    return Manifest.from_dict(data, source=source)


def load_manifest(path: Path) -> Manifest:
    """Load a manifest from a YAML file.

    The resolved file location is kept on the manifest; its directory is the
    template root for all relative paths.

    Raises:
        InvalidManifest: If the file is missing, unreadable or invalid.
    """
    path = Path(path)
    if not path.is_file():
        raise InvalidManifest(f"manifest not found: {path}")
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise InvalidManifest(f"cannot read manifest {path}: {e}") from e
    except UnicodeDecodeError as e:
        raise InvalidManifest(f"cannot decode manifest {path}: {e}") from e
    return parse_manifest(text, source=path.resolve())


def dump_manifest(manifest: Manifest) -> str:
    """Serialize a manifest back to YAML."""
    return yaml.safe_dump(
        manifest.to_dict(), default_flow_style=False, sort_keys=False
    )
