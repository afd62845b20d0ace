# weichspielapparat/core/supervisor.py
"""
weichspielapparat – runtime process supervisor
==============================================

Spawns the runtime in server mode and decides how its startup ended.

During the startup window three events race each other:

• the readiness probe connects            → READY   (launch resolves)
• the readiness probe times out           → FAILED  (ProbeTimeout)
• the child exits                         → FAILED  (PrematureExit)

`_StartupMonitor` is a tiny state machine fed by those events; the
first one settles the outcome and every later one is ignored.  Exits
after a successful startup only move the handle to EXITED and are
logged – dealing with them is up to whoever owns the handle.

Child stdout/stderr is forwarded line by line as it arrives.
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import List, Mapping, Optional

from weichspielapparat.core import config
from weichspielapparat.core.errors import (
    PrematureExit,
    ProbeTimeout,
    RuntimeLaunchError,
    SpawnFailed,
)
from weichspielapparat.core.models import RuntimeStatus
from weichspielapparat.core.probe import wait_for_port

RUNTIME_ARGS = (
    "-vvvv",  # print debug and info logs on stderr, not only warnings and errors
    "-s",     # start in server mode
)
_LINE_LIMIT = 1024 * 1024


# ──────────────────────────────────────────────
# 1. Handle
# ──────────────────────────────────────────────
class RuntimeHandle:
    """
    A running runtime process plus the URL of its WebSocket server.

    The caller owns the handle and must `terminate()` it when done.
    """

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        url: str,
        binary: str,
    ) -> None:
        self.process = process
        self.url = url
        self.binary = binary
        self.status = RuntimeStatus.starting
        self._tasks: List[asyncio.Task] = []

    def __repr__(self) -> str:
        return f"<RuntimeHandle pid={self.pid} url={self.url} status={self.status.value}>"

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def returncode(self) -> Optional[int]:
        return self.process.returncode

    @property
    def running(self) -> bool:
        return self.process.returncode is None

    async def wait(self) -> int:
        code = await self.process.wait()
        await self._drain()
        return code

    async def terminate(self, grace: float = config.TERMINATE_GRACE) -> int:
        """Terminate the child, killing it if it ignores that for `grace` seconds."""
        if self.process.returncode is None:
            try:
                self.process.terminate()
                try:
                    await asyncio.wait_for(self.process.wait(), timeout=grace)
                except asyncio.TimeoutError:
                    sys.stderr.write(f"[supervisor] pid {self.pid} ignored terminate, killing\n")
                    self.process.kill()
            except ProcessLookupError:
                pass  # already gone
        code = await self.process.wait()
        await self._drain()
        return code

    async def _drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)


# ──────────────────────────────────────────────
# 2. Output forwarding
# ──────────────────────────────────────────────
async def _pump(stream: Optional[asyncio.StreamReader], to_stderr: bool) -> None:
    if stream is None:
        return
    sink = sys.stderr if to_stderr else sys.stdout
    while True:
        try:
            line = await stream.readline()
        except ValueError:
            # readline already discarded the buffered part of the line
            sink.write(f"[{config.RUNTIME_NAME}] <line longer than {_LINE_LIMIT} bytes dropped>\n")
            continue
        if not line:
            return
        sink.write(f"[{config.RUNTIME_NAME}] {line.decode(errors='replace').rstrip()}\n")


# ──────────────────────────────────────────────
# 3. Startup state machine
# ──────────────────────────────────────────────
class _StartupMonitor:
    def __init__(self, handle: RuntimeHandle) -> None:
        self.handle = handle
        self.outcome: asyncio.Future = asyncio.get_running_loop().create_future()

    def _settle(self, status: RuntimeStatus, exc: Optional[BaseException] = None) -> bool:
        if self.outcome.done():
            return False
        self.handle.status = status
        if exc is None:
            self.outcome.set_result(self.handle)
        else:
            self.outcome.set_exception(exc)
        return True

    def on_probe_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            self._settle(RuntimeStatus.ready)
        else:
            if isinstance(exc, ProbeTimeout):
                exc.handle = self.handle
            self._settle(RuntimeStatus.failed, exc)

    def on_exit(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        code = task.result()
        if code:
            sys.stdout.write(f"[supervisor] server exited with code {code}\n")
        else:
            sys.stdout.write("[supervisor] server exited\n")

        failure = PrematureExit(
            f"{config.RUNTIME_NAME} unexpected exit at startup with code {code}",
            code=code,
        )
        if not self._settle(RuntimeStatus.failed, failure):
            self.handle.status = RuntimeStatus.exited


# ──────────────────────────────────────────────
# 4. Public entry
# ──────────────────────────────────────────────
def working_dir_for(binary: str) -> Optional[str]:
    """Directory of an absolute binary path; None for a search-path name."""
    path = Path(binary)
    return str(path.parent) if path.is_absolute() else None


async def start_runtime(
    binary: str,
    env: Mapping[str, str],
    settings: config.RuntimeSettings,
) -> RuntimeHandle:
    """
    Spawn `binary` in server mode and wait until its port is reachable.

    Raises SpawnFailed, PrematureExit or ProbeTimeout.  If the caller is
    cancelled during startup, the child is terminated first.
    """
    # running from the binary's own directory works around paths with spaces on Windows
    cwd = working_dir_for(binary)
    sys.stdout.write(
        f"[supervisor] starting {binary} {' '.join(RUNTIME_ARGS)} "
        f"(binds {config.BIND_HOST}:{config.RUNTIME_PORT}, "
        f"probing {settings.host}:{settings.port})\n"
    )
    try:
        process = await asyncio.create_subprocess_exec(
            binary,
            *RUNTIME_ARGS,
            cwd=cwd,
            env=dict(env),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            limit=_LINE_LIMIT,
        )
    except OSError as exc:
        raise SpawnFailed(
            f"{config.RUNTIME_NAME} could not be started, error: {exc}", binary=binary
        ) from exc

    handle = RuntimeHandle(process, settings.control_url, binary)
    monitor = _StartupMonitor(handle)

    exit_task = asyncio.create_task(process.wait())
    exit_task.add_done_callback(monitor.on_exit)
    probe_task = asyncio.create_task(
        wait_for_port(
            settings.host,
            settings.port,
            interval=settings.probe_interval,
            timeout=settings.probe_timeout,
        )
    )
    probe_task.add_done_callback(monitor.on_probe_done)
    handle._tasks = [
        asyncio.create_task(_pump(process.stdout, to_stderr=False)),
        asyncio.create_task(_pump(process.stderr, to_stderr=True)),
        exit_task,
    ]

    try:
        await monitor.outcome
    except asyncio.CancelledError:
        probe_task.cancel()
        await handle.terminate()
        raise
    except RuntimeLaunchError as exc:
        probe_task.cancel()
        sys.stderr.write(f"[supervisor] startup failed: {exc}\n")
        if isinstance(exc, PrematureExit):
            await handle._drain()
        raise

    sys.stdout.write(f"[supervisor] runtime ready at {handle.url} (pid {handle.pid})\n")
    return handle
