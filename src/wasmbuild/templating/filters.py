"""Named string filters usable inside manifest placeholders."""

from __future__ import annotations

import re
from collections.abc import Callable, Iterator, Mapping

Filter = Callable[[str], str]

# Acronym runs stop before a capitalised word ("HTTPServer" -> "HTTP", "Server");
# digits stay attached to the word they follow.
_WORD_RE = re.compile(r"[A-Z]+(?=[A-Z][a-z])|[A-Z]?[a-z]+[0-9]*|[A-Z]+[0-9]*|[0-9]+")


def split_words(value: str) -> list[str]:
    """Split an identifier into words on separators and case boundaries."""
    return _WORD_RE.findall(value)


def to_kebab_case(value: str) -> str:
    """Convert to kebab-case: ``ShoppingCart`` -> ``shopping-cart``."""
    return "-".join(word.lower() for word in split_words(value))


def to_snake_case(value: str) -> str:
    """Convert to snake_case: ``shopping-cart`` -> ``shopping_cart``."""
    return "_".join(word.lower() for word in split_words(value))


def to_shouty_snake_case(value: str) -> str:
    return "_".join(word.upper() for word in split_words(value))


def to_pascal_case(value: str) -> str:
    """Convert to PascalCase: ``shopping-cart`` -> ``ShoppingCart``."""
    return "".join(word.capitalize() for word in split_words(value))


def to_lower_camel_case(value: str) -> str:
    words = split_words(value)
    if not words:
        return ""
    return words[0].lower() + "".join(word.capitalize() for word in words[1:])


def to_title_case(value: str) -> str:
    return " ".join(word.capitalize() for word in split_words(value))


DEFAULT_FILTERS: dict[str, Filter] = {
    "to_kebab_case": to_kebab_case,
    "to_snake_case": to_snake_case,
    "to_shouty_snake_case": to_shouty_snake_case,
    "to_pascal_case": to_pascal_case,
    "to_upper_camel_case": to_pascal_case,
    "to_lower_camel_case": to_lower_camel_case,
    "to_title_case": to_title_case,
}


class FilterRegistry:
    """Mapping from filter name to a pure string transform.

    Additional filters can be registered without touching the resolver:

        registry = default_registry()

        @registry.register("reverse")
        def reverse(value: str) -> str:
            return value[::-1]
    """

    def __init__(self, filters: Mapping[str, Filter] | None = None) -> None:
        self._filters: dict[str, Filter] = dict(filters or {})

    def register(
        self, name: str, func: Filter | None = None
    ) -> Filter | Callable[[Filter], Filter]:
        """Register a filter, directly or as a decorator.

        Re-registering a name replaces the previous filter.
        """
        if func is not None:
            self._filters[name] = func
            return func

        def decorator(f: Filter) -> Filter:
            self._filters[name] = f
            return f

        return decorator

    def get(self, name: str) -> Filter | None:
        """Return the filter registered under name, or None."""
        return self._filters.get(name)

    def names(self) -> list[str]:
        """Return registered filter names, sorted."""
        return sorted(self._filters)

    def as_dict(self) -> dict[str, Filter]:
        """Return a copy of the name -> filter mapping."""
        return dict(self._filters)

    def copy(self) -> FilterRegistry:
        return FilterRegistry(self._filters)

    def __contains__(self, name: object) -> bool:
        return name in self._filters

    def __iter__(self) -> Iterator[str]:
        return iter(self._filters)

    def __len__(self) -> int:
        return len(self._filters)


def default_registry() -> FilterRegistry:
    """Return a fresh registry holding the built-in case filters."""
    return FilterRegistry(DEFAULT_FILTERS)
