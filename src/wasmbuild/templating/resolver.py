"""Placeholder resolution for manifest strings.

Placeholders use the Jinja expression syntax, ``{{ identifier | filter }}``,
and are rendered with jinja2. Every identifier must be bound and every filter
registered before rendering starts, so a malformed template never produces a
partially substituted string.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping
from typing import Any

from jinja2 import (
    Environment,
    StrictUndefined,
    TemplateSyntaxError,
    UndefinedError,
    meta,
    nodes,
)
from jinja2 import TemplateError as JinjaTemplateError

from wasmbuild.errors import TemplateError, UnknownFilter, UnresolvedVariable
from wasmbuild.templating.filters import FilterRegistry, default_registry

logger = logging.getLogger(__name__)

PLACEHOLDER_MARKERS: tuple[str, ...] = ("{{", "{%", "{#")

_LEFTOVER_RE = re.compile(r"\{\{.*?\}\}|\{%.*?%\}|\{#.*?#\}|\{\{|\{%|\{#", re.DOTALL)


def has_placeholder(text: str) -> bool:
    """Return True if text contains any placeholder syntax."""
    return any(marker in text for marker in PLACEHOLDER_MARKERS)


class TemplateResolver:
    """Resolves placeholders against bound variables and a filter registry."""

    def __init__(
        self,
        variables: Mapping[str, Any] | None = None,
        filters: FilterRegistry | None = None,
    ) -> None:
        self.variables: dict[str, Any] = dict(variables or {})
        self.filters = filters if filters is not None else default_registry()

        self._env = Environment(
            undefined=StrictUndefined,  # Error on undefined variables
            autoescape=False,  # Paths and shell commands, never markup
            keep_trailing_newline=True,
        )
        # Only registered filters are available; jinja's builtins are not.
        self._env.filters = self.filters.as_dict()

    def resolve(self, text: str) -> str:
        """Substitute every placeholder in text.

        Strings without placeholder syntax are returned unchanged.

        Raises:
            UnresolvedVariable: An identifier has no bound value, or the
                rendered result still contains placeholder syntax.
            UnknownFilter: A filter is not registered.
            TemplateError: The placeholder syntax is malformed, a filter is
                given arguments, or the expression fails to evaluate.
        """
        if not has_placeholder(text):
            return text

        try:
            ast = self._env.parse(text)
        except TemplateSyntaxError as e:
            raise TemplateError(
                f"Malformed placeholder in: {text} ({e.message})"
            ) from e

        for name in sorted(meta.find_undeclared_variables(ast)):
            if name not in self.variables:
                raise UnresolvedVariable(name, text)

        for node in ast.find_all(nodes.Filter):
            if node.name not in self.filters:
                raise UnknownFilter(node.name, text)
            if node.args or node.kwargs or node.dyn_args or node.dyn_kwargs:
                raise TemplateError(
                    f"Filter '{node.name}' takes no arguments in: {text}"
                )

        try:
            rendered = self._env.from_string(ast).render(self.variables)
        except UndefinedError as e:
            raise UnresolvedVariable(e.message or "<undefined>", text) from e
        except (JinjaTemplateError, TypeError, ValueError, ArithmeticError) as e:
            raise TemplateError(f"Cannot render placeholder in: {text} ({e})") from e

        leftover = _LEFTOVER_RE.search(rendered)
        if leftover is not None:
            raise UnresolvedVariable(leftover.group(0), text)

        logger.debug("Resolved %r -> %r", text, rendered)
        return rendered

    def resolve_optional(self, text: str | None) -> str | None:
        if text is None:
            return None
        return self.resolve(text)

    def resolve_all(self, texts: Iterable[str]) -> tuple[str, ...]:
        """Resolve each string, preserving order."""
        return tuple(self.resolve(text) for text in texts)
