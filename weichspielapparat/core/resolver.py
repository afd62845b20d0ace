# weichspielapparat/core/resolver.py
"""
weichspielapparat – runtime binary resolver
===========================================

Decides which fernspielapparat executable to launch:

1. a system-provided runtime on the search path, if it answers
   `--version` with `<name> <version>`  → bare executable name
2. otherwise a runtime previously installed into the install dir,
   if it is readable (and executable, except on Windows) → absolute path
3. otherwise raise BinaryNotFound; the launcher then installs one.

Public helpers
--------------
• version_on_path(plat, env)            -> RuntimeVersion
• installed_binary(install_dir, plat)   -> Path
• resolve_binary(install_dir, plat, env) -> str
"""

from __future__ import annotations

import asyncio
import os
import sys
from pathlib import Path
from typing import Mapping, Optional

from weichspielapparat.core.environment import resolve_environment
from weichspielapparat.core.errors import BinaryNotFound, VersionUnparseable
from weichspielapparat.core.models import (
    PlatformDescriptor,
    RuntimeVersion,
    current_platform,
)

VERSION_TIMEOUT = 5.0  # seconds a `--version` call may take


# ──────────────────────────────────────────────
# 1. System-provided runtime
# ──────────────────────────────────────────────
async def version_on_path(
    plat: PlatformDescriptor,
    env: Mapping[str, str],
) -> RuntimeVersion:
    """
    Run `<exe> --version` using the search path of `env`.

    Raises BinaryNotFound if it cannot be run or exits non-zero,
    VersionUnparseable if the output is not exactly two tokens.
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            plat.executable_name,
            "--version",   # only print version and then exit
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            env=dict(env),
        )
    except OSError as exc:
        raise BinaryNotFound(f"No {plat.executable_name} on path, error: {exc}") from exc

    try:
        raw, _ = await asyncio.wait_for(proc.communicate(), timeout=VERSION_TIMEOUT)
    except asyncio.TimeoutError as exc:
        proc.kill()
        await proc.wait()
        raise BinaryNotFound(
            f"{plat.executable_name} --version did not finish within {VERSION_TIMEOUT}s"
        ) from exc

    output = raw.decode(errors="replace")
    if proc.returncode:
        raise BinaryNotFound(
            f"Unsuccessful exit status: {proc.returncode}, Output: {output.strip()!r}"
        )

    return RuntimeVersion.parse(output)


# ──────────────────────────────────────────────
# 2. Previously installed runtime
# ──────────────────────────────────────────────
def installed_binary_path(install_dir: Path, plat: PlatformDescriptor) -> Path:
    """Where the installer puts (or has put) the runtime executable."""
    return Path(install_dir) / plat.executable_name


def installed_binary(install_dir: Path, plat: PlatformDescriptor) -> Path:
    binary = installed_binary_path(install_dir, plat)
    mode = os.R_OK | os.X_OK if plat.requires_exec_bit else os.R_OK

    if not binary.is_file() or not os.access(binary, mode):
        raise BinaryNotFound(
            f"Lacking execution permissions for runtime binary at: {binary}"
        )
    return binary.resolve()


# ──────────────────────────────────────────────
# 3. Public entry
# ──────────────────────────────────────────────
async def resolve_binary(
    install_dir: Path,
    plat: Optional[PlatformDescriptor] = None,
    env: Optional[Mapping[str, str]] = None,
) -> str:
    """
    Return the bare executable name (search path) or an absolute path.

    Raises BinaryNotFound if neither is usable.
    """
    plat = plat or current_platform()
    env = resolve_environment(env, plat)

    try:
        version = await version_on_path(plat, env)
    except (BinaryNotFound, VersionUnparseable) as exc:
        sys.stdout.write(f"[resolver] no system-provided runtime: {exc}\n")
    else:
        sys.stdout.write(
            f"[resolver] using system-provided {version.name} runtime, version {version}\n"
        )
        return plat.executable_name

    binary = installed_binary(install_dir, plat)
    sys.stdout.write(f"[resolver] using previously downloaded runtime {binary}\n")
    return str(binary)
