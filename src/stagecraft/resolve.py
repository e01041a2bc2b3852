"""Resolver: walk parsed HCL data and resolve ${...} variable interpolation."""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Iterator, Mapping
from typing import Any

logger = logging.getLogger(__name__)

_INTERP_PATTERN = re.compile(r"\$\$\{|(\$\{([^{}]+)\})")
_FULL_PATTERN = re.compile(r"\$\{([^{}]+)\}")


class Environment(Mapping[str, str]):
    """Process environment view; unset variables resolve to '' with a warning."""

    def __init__(self, environ: Mapping[str, str] | None = None) -> None:
        self._environ = os.environ if environ is None else environ

    def __getitem__(self, name: str) -> str:
        if name not in self._environ:
            logger.warning("Environment variable '%s' is not set", name)
            return ""
        return self._environ[name]

    def __contains__(self, name: object) -> bool:
        return name in self._environ

    def __iter__(self) -> Iterator[str]:
        return iter(self._environ)

    def __len__(self) -> int:
        return len(self._environ)


class Resolver:
    """Resolve ${...} references against a context dict."""

    def __init__(self, context: dict[str, Any] | None = None) -> None:
        self._context = context or {}

    @classmethod
    def for_image(cls, name: str, context: dict[str, Any] | None = None) -> Resolver:
        """Resolver with the built-in variables available to an image block."""
        builtins: dict[str, Any] = {
            "env": Environment(),
            "CWD": os.getcwd,
            "name": name,
        }
        return cls({**builtins, **(context or {})})

    def _lookup(self, ref: str) -> Any:
        """Follow a dotted reference (e.g. 'env.HOME') through the context."""
        current: Any = self._context
        for part in ref.split("."):
            if isinstance(current, Environment):
                current = current[part]
            elif isinstance(current, Mapping):
                if part not in current:
                    raise ValueError(f"undefined variable '{ref}'")
                current = current[part]
            elif hasattr(current, part):
                current = getattr(current, part)
            else:
                raise ValueError(f"undefined variable '{ref}'")

        if callable(current) and not isinstance(current, type):
            current = current()
        return current

    def _resolve_string(self, value: str) -> Any:
        """Interpolate one string.

        A string that is exactly one ${ref} yields the referenced object
        unchanged, so lists and numbers keep their type. Embedded references
        are stringified. $${ produces a literal ${.
        """
        if "${" not in value:
            return value

        whole = _FULL_PATTERN.fullmatch(value)
        if whole:
            return self._lookup(whole.group(1).strip())

        def _substitute(m: re.Match[str]) -> str:
            if m.group(0) == "$${":
                return "${"
            return str(self._lookup(m.group(2).strip()))

        return _INTERP_PATTERN.sub(_substitute, value)

    def resolve(self, data: dict[str, Any]) -> dict[str, Any]:
        """Return a copy of data with every string interpolated."""
        return self._walk(data)

    def _walk(self, obj: Any) -> Any:
        if isinstance(obj, dict):
            return {key: self._walk(value) for key, value in obj.items()}
        if isinstance(obj, list):
            return [self._walk(item) for item in obj]
        if isinstance(obj, str):
            return self._resolve_string(obj)
        return obj
