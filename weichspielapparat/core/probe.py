# weichspielapparat/core/probe.py
"""Readiness probe: wait until a TCP port accepts connections."""

from __future__ import annotations

import asyncio

from weichspielapparat.core import config
from weichspielapparat.core.errors import ProbeTimeout


async def _try_connect(host: str, port: int, timeout: float) -> bool:
    try:
        _, writer = await asyncio.wait_for(
            asyncio.open_connection(host, port), timeout=timeout
        )
    except (OSError, asyncio.TimeoutError):
        return False
    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass  # peer may reset a connection it never meant to serve
    return True


async def wait_for_port(
    host: str = config.ADVERTISED_HOST,
    port: int = config.RUNTIME_PORT,
    interval: float = config.PROBE_INTERVAL,
    timeout: float = config.PROBE_TIMEOUT,
) -> None:
    """
    Attempt a connection every `interval` seconds.

    Returns on the first accepted connection, raises ProbeTimeout once
    `timeout` seconds have passed without one.
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout

    while True:
        remaining = deadline - loop.time()
        if remaining <= 0:
            break
        if await _try_connect(host, port, min(interval, remaining)):
            return
        remaining = deadline - loop.time()
        if remaining <= 0:
            break
        await asyncio.sleep(min(interval, remaining))

    raise ProbeTimeout(
        f"{config.RUNTIME_NAME} server not available on port {port} "
        f"after {timeout:g} seconds, giving up.",
        port=port,
        timeout=timeout,
    )
