# weichspielapparat/core/config.py
"""
weichspielapparat – central configuration helper
================================================

All modules import *only* from this file when they need:
• application constants (name, executable names, bind address, timings)
• the resolved per-user install directory
• the `RuntimeSettings` value that is handed to the launch operation

Nothing here reads or writes global state at import time.  The install
directory is resolved (and created) on first use and then cached for the
rest of the process lifetime.
"""

from __future__ import annotations

import os
import platform
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

# ──────────────────────────────────────────────
# 1. Application constants
# ──────────────────────────────────────────────
APP_NAME: str = "weichspielapparat"
APP_ID: str = "weichspielapparat"
APP_VERSION: str = "0.18.3"

RUNTIME_NAME: str = "fernspielapparat"
EXECUTABLE_NAMES = (RUNTIME_NAME, f"{RUNTIME_NAME}.exe")

# runtime server; binding is always to all interfaces, clients use loopback
BIND_HOST: str = "0.0.0.0"
ADVERTISED_HOST: str = "127.0.0.1"
RUNTIME_PORT: int = 38397

PROBE_INTERVAL: float = 0.15   # seconds between connection attempts
PROBE_TIMEOUT: float = 5.0     # overall startup deadline
TERMINATE_GRACE: float = 3.0   # seconds before a terminated child is killed

# upstream releases
RELEASES_REPO: str = "krachzack/fernspielapparat"
RELEASES_API: str = os.getenv(
    "WEICHSPIELAPPARAT_RELEASES_URL", "https://api.github.com"
).rstrip("/")
ARCHIVE_FILE_NAME: str = f"{RUNTIME_NAME}.tar.gz"

# HTTP control service
SERVICE_HOST: str = os.getenv("WEICHSPIELAPPARAT_SERVICE_HOST", "127.0.0.1")
SERVICE_PORT: int = int(os.getenv("WEICHSPIELAPPARAT_SERVICE_PORT", "5151"))


# ──────────────────────────────────────────────
# 2. Directory resolution
# ──────────────────────────────────────────────
def _home_base() -> Path:
    """Return the root folder for all user data (`~/.weichspielapparat/` on
    Unix, `%LOCALAPPDATA%\\Weichspielapparat\\` on Windows). Can be
    overridden with the env variable `WEICHSPIELAPPARAT_HOME`."""
    if env := os.getenv("WEICHSPIELAPPARAT_HOME"):
        return Path(env).expanduser().resolve()

    if platform.system() == "Windows":
        root = Path(os.getenv("LOCALAPPDATA", Path.home() / "AppData" / "Local"))
        return (root / "Weichspielapparat").resolve()

    return (Path.home() / ".weichspielapparat").resolve()


@lru_cache(maxsize=None)
def install_dir() -> Path:
    """
    Directory that caches the downloaded runtime between launches.

    Created on first call; raises RuntimeError if it cannot be created.
    """
    base = _home_base()
    try:
        base.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise RuntimeError(f"Could not create user data directory {base}: {exc}") from exc
    return base


# ──────────────────────────────────────────────
# 3. Launch settings
# ──────────────────────────────────────────────
class RuntimeSettings(BaseModel):
    """
    Explicit configuration for a single launch.

    The runtime has no bind option and always listens on
    BIND_HOST:RUNTIME_PORT.  `host` and `port` only say where the
    readiness probe connects and which URL is handed out.
    """

    model_config = ConfigDict(frozen=True)

    install_dir: Path
    host: str = ADVERTISED_HOST
    port: int = Field(
        RUNTIME_PORT, gt=0, lt=65536,
        description="probe target and advertised port; not passed to the runtime",
    )
    probe_interval: float = Field(PROBE_INTERVAL, gt=0)
    probe_timeout: float = Field(PROBE_TIMEOUT, gt=0)
    verify_checksum: bool = True

    @property
    def control_url(self) -> str:
        return f"ws://{self.host}:{self.port}"


def default_settings(home: Optional[Path] = None) -> RuntimeSettings:
    """Settings with the default advertised address, rooted in the user data dir."""
    return RuntimeSettings(install_dir=home if home is not None else install_dir())
