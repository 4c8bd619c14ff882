"""Placeholder rendering helpers for notification templates and action parameters."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from string import Template
from typing import Any

from .logger import get_logger

logger = get_logger("templates")


@dataclass(slots=True)
class RenderedTemplate:
    """Represents a rendered notification ready to be delivered."""

    subject: str | None
    body: str


class TemplateRenderError(RuntimeError):
    """Raised when a template cannot be rendered."""


class PlaceholderTemplate(Template):
    """``string.Template`` variant that understands ``{{ dotted.path }}`` placeholders."""

    delimiter = "{{"
    pattern = r"""
    (?P<escaped>(?!))                          |
    \{\{\s*(?P<named>[A-Za-z_][A-Za-z0-9_.]*)\s*\}\} |
    (?P<braced>(?!))                           |
    (?P<invalid>(?!))
    """


def lookup_path(data: Any, path: str) -> Any:
    """Resolve a dotted path against nested mappings and sequences.

    Raises:
        KeyError: When any segment of the path is missing.
    """

    current = data
    for part in path.split("."):
        if isinstance(current, Mapping):
            if part not in current:
                raise KeyError(path)
            current = current[part]
        elif isinstance(current, (list, tuple)) and part.isdigit():
            index = int(part)
            if index >= len(current):
                raise KeyError(path)
            current = current[index]
        else:
            raise KeyError(path)
    return current


class _PathLookup(Mapping[str, str]):
    """Mapping view that resolves dotted keys and stringifies the result."""

    def __init__(self, variables: Mapping[str, Any]):
        self._variables = variables

    def __getitem__(self, key: str) -> str:
        value = lookup_path(self._variables, key)
        if value is None:
            return ""
        return str(value)

    def __iter__(self) -> Iterator[str]:
        return iter(self._variables)

    def __len__(self) -> int:
        return len(self._variables)


def render(text: str, variables: Mapping[str, Any] | None = None) -> str:
    """Substitute ``{{ name }}`` placeholders, leaving unknown ones verbatim."""

    if not text or "{{" not in text:
        return text
    return PlaceholderTemplate(text).safe_substitute(_PathLookup(variables or {}))


def render_value(value: Any, variables: Mapping[str, Any] | None = None) -> Any:
    """Apply :func:`render` recursively through dicts and lists."""

    if isinstance(value, str):
        return render(value, variables)
    if isinstance(value, dict):
        return {key: render_value(item, variables) for key, item in value.items()}
    if isinstance(value, list):
        return [render_value(item, variables) for item in value]
    return value


def render_notification(
    subject: str | None,
    body: str,
    variables: Mapping[str, Any] | None = None,
) -> RenderedTemplate:
    """Render a notification template's subject and body."""

    try:
        return RenderedTemplate(
            subject=render(subject, variables) if subject else subject,
            body=render(body, variables),
        )
    except (TypeError, ValueError) as exc:
        logger.error("Failed to render notification template: %s", exc, exc_info=True)
        raise TemplateRenderError(str(exc)) from exc


__all__ = [
    "PlaceholderTemplate",
    "RenderedTemplate",
    "TemplateRenderError",
    "lookup_path",
    "render",
    "render_notification",
    "render_value",
]
