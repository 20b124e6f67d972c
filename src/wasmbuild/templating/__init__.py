"""Placeholder resolution and the filter registry."""

from wasmbuild.templating.filters import (
    DEFAULT_FILTERS,
    Filter,
    FilterRegistry,
    default_registry,
    split_words,
    to_kebab_case,
    to_lower_camel_case,
    to_pascal_case,
    to_shouty_snake_case,
    to_snake_case,
    to_title_case,
)
from wasmbuild.templating.resolver import TemplateResolver, has_placeholder

__all__ = [
    "DEFAULT_FILTERS",
    "Filter",
    "FilterRegistry",
    "TemplateResolver",
    "default_registry",
    "has_placeholder",
    "split_words",
    "to_kebab_case",
    "to_lower_camel_case",
    "to_pascal_case",
    "to_shouty_snake_case",
    "to_snake_case",
    "to_title_case",
]
