"""Step ABC and step registration."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import ClassVar

from .context import Context

_step_registry: dict[str, type] = {}


def step(name: str):
    """Register a Step class as an HCL block decoder."""

    def decorator(cls):
        _step_registry[name] = cls
        cls.kind = name
        return cls

    return decorator


class Step[P](ABC):
    """Base class for all recipe steps."""

    kind: ClassVar[str] = "step"
    mutates_filesystem: ClassVar[bool] = True

    @abstractmethod
    def render(self, ctx: Context[P]) -> list[str]:
        """Recipe instructions for this step."""

    def matches(self, ctx: Context[P], text: str) -> bool:
        """Engine failure output points at this step."""
        return False

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.kind!r})"
