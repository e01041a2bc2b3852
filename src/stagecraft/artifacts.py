"""Build artifact model: the single binary handed off between stages."""

from __future__ import annotations

import re
from pathlib import PurePosixPath

from pydantic import BaseModel, field_validator

_BINARY_NAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.\-]*$")

# Directories on the PATH of common minimal base images.
DEFAULT_PATH = (
    "/usr/local/sbin",
    "/usr/local/bin",
    "/usr/sbin",
    "/usr/bin",
    "/sbin",
    "/bin",
)


def check_binary_name(name: str) -> str:
    """Raise ValueError unless name is usable as a file name and command."""
    if not _BINARY_NAME.match(name):
        raise ValueError(f"Invalid binary name: '{name}'")
    return name


class Artifact(BaseModel):
    """The one binary that crosses the stage boundary."""

    model_config = {"frozen": True}

    name: str
    source: PurePosixPath
    destination: PurePosixPath

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        return check_binary_name(value)

    @field_validator("source", "destination")
    @classmethod
    def _check_absolute(cls, value: PurePosixPath) -> PurePosixPath:
        if not value.is_absolute():
            raise ValueError(f"Artifact paths must be absolute: '{value}'")
        return value

    @property
    def command(self) -> list[str]:
        """Default command that runs the artifact with no arguments."""
        if str(self.destination.parent) in DEFAULT_PATH:
            return [self.destination.name]
        return [str(self.destination)]
