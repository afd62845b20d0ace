# weichspielapparat/core/launcher.py
"""
weichspielapparat – runtime bootstrapper
========================================

Chains the lifecycle stages into one operation:

    resolve_binary ──(BinaryNotFound)──▶ install_runtime
          │                                   │
          └──────────────┬────────────────────┘
                         ▼
              resolve_environment ─▶ start_runtime ─▶ RuntimeHandle

Public helpers
--------------
• launch(settings, ...) -> RuntimeHandle

Only the resolver's failure is recovered (by installing); every other
error reaches the caller as a RuntimeLaunchError subclass.  The UI and
HTTP layers call **launch** – they don’t need to know any filesystem
or process details.
"""

from __future__ import annotations

import asyncio
import sys
from typing import Mapping, Optional

from weichspielapparat.core import config
from weichspielapparat.core.environment import resolve_environment
from weichspielapparat.core.errors import BinaryNotFound, ProbeTimeout
from weichspielapparat.core.installer import install_runtime
from weichspielapparat.core.models import PlatformDescriptor, current_platform
from weichspielapparat.core.releases import Fetcher, ReleaseSource
from weichspielapparat.core.resolver import resolve_binary
from weichspielapparat.core.supervisor import RuntimeHandle, start_runtime


async def launch(
    settings: Optional[config.RuntimeSettings] = None,
    *,
    plat: Optional[PlatformDescriptor] = None,
    ambient_env: Optional[Mapping[str, str]] = None,
    releases: Optional[ReleaseSource] = None,
    fetch: Optional[Fetcher] = None,
) -> RuntimeHandle:
    """
    Start a fernspielapparat runtime in server mode.

    A system-provided runtime is preferred, then one installed by an
    earlier launch; if neither exists the latest release is downloaded
    into `settings.install_dir`.
    """
    settings = settings or config.default_settings()
    plat = plat or current_platform()

    try:
        binary = await resolve_binary(settings.install_dir, plat, ambient_env)
    except BinaryNotFound as exc:
        sys.stdout.write(f"[launcher] {exc}; installing runtime\n")
        installed = await install_runtime(
            settings.install_dir,
            plat,
            releases=releases,
            fetch=fetch,
            verify_checksum=settings.verify_checksum,
        )
        binary = str(installed)

    env = resolve_environment(ambient_env, plat)
    return await start_runtime(binary, env, settings)


# ──────────────────────────────────────────────
# Quick CLI for debugging
# ──────────────────────────────────────────────
async def _run_cli(settings: config.RuntimeSettings) -> int:
    try:
        handle = await launch(settings)
    except ProbeTimeout as exc:
        if exc.handle is not None:
            await exc.handle.terminate()
        raise
    sys.stdout.write(f"{handle.url}\n")
    try:
        return await handle.wait()
    finally:
        await handle.terminate()


if __name__ == "__main__":  # pragma: no cover
    import argparse
    from pathlib import Path

    from weichspielapparat.core.errors import RuntimeLaunchError

    p = argparse.ArgumentParser(description="Launch the fernspielapparat runtime manually")
    p.add_argument("--home", type=Path, help="install directory (default: user data dir)")
    p.add_argument("--timeout", type=float, default=config.PROBE_TIMEOUT)
    args = p.parse_args()

    cli_settings = config.RuntimeSettings(
        install_dir=args.home or config.install_dir(),
        probe_timeout=args.timeout,
    )
    try:
        sys.exit(asyncio.run(_run_cli(cli_settings)))
    except RuntimeLaunchError as err:
        sys.stderr.write(f"[launcher] {err}\n")
        sys.exit(1)
    except KeyboardInterrupt:
        sys.exit(130)
