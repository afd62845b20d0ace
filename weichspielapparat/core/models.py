# weichspielapparat/core/models.py
"""
weichspielapparat – shared data models
======================================

All runtime-lifecycle modules (resolver, installer, environment,
supervisor, HTTP surface) communicate through **typed** value objects
defined here.  Business logic belongs in the other `core/` modules.
"""

from __future__ import annotations

import enum
import os
import platform
from functools import lru_cache
from typing import Mapping, Optional

from pydantic import BaseModel, ConfigDict, field_validator

from weichspielapparat.core import config
from weichspielapparat.core.errors import VersionUnparseable


# ──────────────────────────────────────────────
# 1. Platform
# ──────────────────────────────────────────────
VLC_PLUGIN_VAR = "VLC_PLUGIN_PATH"


class PlatformDescriptor(BaseModel):
    """
    Everything that differs between host operating systems, computed once.

    `library_path_var` is None where no default VLC location is known;
    the environment resolver then leaves the variables alone.
    """

    model_config = ConfigDict(frozen=True)

    system: str
    executable_name: str
    path_delimiter: str
    requires_exec_bit: bool = True
    library_path_var: Optional[str] = None
    library_dir: Optional[str] = None
    plugin_path_var: str = VLC_PLUGIN_VAR
    plugin_dir: Optional[str] = None

    @property
    def is_windows(self) -> bool:
        return self.system == "Windows"

    @classmethod
    def detect(
        cls,
        system: Optional[str] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "PlatformDescriptor":
        system = system or platform.system()
        environ = os.environ if environ is None else environ

        if system == "Darwin":
            # without the lib, the loader searches in that subdirectory automatically
            macos = "/Applications/VLC.app/Contents/MacOS"
            return cls(
                system=system,
                executable_name=config.RUNTIME_NAME,
                path_delimiter=":",
                library_path_var="DYLD_LIBRARY_PATH",
                library_dir=f"{macos}:{macos}/lib",
                plugin_dir=f"{macos}/plugins",
            )

        if system == "Windows":
            program_files = environ.get("ProgramFiles", r"C:\Program Files")
            vlc = program_files + r"\VideoLAN\VLC"
            return cls(
                system=system,
                executable_name=f"{config.RUNTIME_NAME}.exe",
                path_delimiter=";",
                requires_exec_bit=False,   # X_OK is meaningless on Windows
                library_path_var="PATH",
                library_dir=vlc,
                plugin_dir=vlc + r"\plugins",
            )

        return cls(
            system=system,
            executable_name=config.RUNTIME_NAME,
            path_delimiter=":",
        )


@lru_cache(maxsize=1)
def current_platform() -> PlatformDescriptor:
    return PlatformDescriptor.detect()


# ──────────────────────────────────────────────
# 2. Versions & releases
# ──────────────────────────────────────────────
class RuntimeVersion(BaseModel):
    """Parsed output of `fernspielapparat --version`."""

    model_config = ConfigDict(frozen=True)

    name: str
    version: str

    @classmethod
    def parse(cls, output: str) -> "RuntimeVersion":
        """Parse `"fernspielapparat 0.1.0"`; anything but two tokens is rejected."""
        words = output.split()
        if len(words) != 2:
            raise VersionUnparseable(
                f"Unexpected output from {config.RUNTIME_NAME} runtime: {output.strip()!r}",
                tokens=len(words),
            )
        return cls(name=words[0], version=words[1])

    def __str__(self) -> str:
        return self.version


class Release(BaseModel):
    """A downloadable runtime release for the current platform."""

    model_config = ConfigDict(frozen=True)

    version: str
    url: str
    sha256: Optional[str] = None

    @field_validator("sha256")
    @classmethod
    def normalise_sha256(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip().lower()
        if v.startswith("sha256:"):
            v = v[len("sha256:"):]
        if len(v) != 64 or any(c not in "0123456789abcdef" for c in v):
            raise ValueError("sha256 must be 64 hex characters")
        return v


# ──────────────────────────────────────────────
# 3. Runtime status
# ──────────────────────────────────────────────
class RuntimeStatus(str, enum.Enum):
    starting = "starting"
    ready = "ready"
    failed = "failed"
    exited = "exited"
