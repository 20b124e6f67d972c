"""Build manifest model and loading."""

from wasmbuild.manifest.base import (
    BuildStep,
    LanguageTemplate,
    Manifest,
    Profile,
    select_profile,
)
from wasmbuild.manifest.loader import (
    MANIFEST_FILENAME,
    dump_manifest,
    find_manifest,
    load_manifest,
    parse_manifest,
)

__all__ = [
    "MANIFEST_FILENAME",
    "BuildStep",
    "LanguageTemplate",
    "Manifest",
    "Profile",
    "dump_manifest",
    "find_manifest",
    "load_manifest",
    "parse_manifest",
    "select_profile",
]
