# weichspielapparat/api/runtime.py
"""
weichspielapparat – runtime control API
=======================================

Three endpoints for the frontend:

1) GET  /api/runtime
      -> whether a runtime is running, its pid and WebSocket URL.

2) POST /api/runtime/launch
      -> resolves / installs / starts the runtime (core.launcher) and
         responds once it accepts connections.  502 with the failure
         message if any stage fails, 409 if one is already running.

3) POST /api/runtime/stop
      -> terminates the running runtime.

At most one runtime is owned by this process; the handle lives in this
module and is terminated on application shutdown.
"""

from __future__ import annotations

import asyncio
import sys
from typing import Optional

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel

from weichspielapparat.core import config, launcher
from weichspielapparat.core.errors import ProbeTimeout, RuntimeLaunchError
from weichspielapparat.core.models import RuntimeStatus
from weichspielapparat.core.supervisor import RuntimeHandle

router = APIRouter(tags=["runtime"])

_handle: Optional[RuntimeHandle] = None
_launch_lock = asyncio.Lock()


# ──────────────────────────────────────────────
# Response models
# ──────────────────────────────────────────────
class RuntimeInfo(BaseModel):
    running: bool
    status: Optional[RuntimeStatus] = None
    pid: Optional[int] = None
    url: Optional[str] = None
    exitCode: Optional[int] = None


# ──────────────────────────────────────────────
# Helpers
# ──────────────────────────────────────────────
def _info(handle: Optional[RuntimeHandle]) -> RuntimeInfo:
    if handle is None:
        return RuntimeInfo(running=False)
    return RuntimeInfo(
        running=handle.running,
        status=handle.status,
        pid=handle.pid,
        url=handle.url,
        exitCode=handle.returncode,
    )


def current_handle() -> Optional[RuntimeHandle]:
    return _handle


async def shutdown() -> None:
    """Terminate the owned runtime, if any (called on app shutdown)."""
    global _handle
    handle, _handle = _handle, None
    if handle is not None and handle.running:
        sys.stdout.write(f"[api] terminating runtime pid {handle.pid}\n")
        await handle.terminate()


# ──────────────────────────────────────────────
# Routes
# ──────────────────────────────────────────────
@router.get("/runtime", response_model=RuntimeInfo)
async def get_runtime():
    return _info(_handle)


@router.post("/runtime/launch", response_model=RuntimeInfo)
async def launch_runtime():
    """
    Launch the runtime from scratch; retries are the client's business.
    """
    global _handle
    async with _launch_lock:
        if _handle is not None and _handle.running:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"Runtime already running at {_handle.url}",
            )

        try:
            _handle = await launcher.launch(config.default_settings())
        except ProbeTimeout as exc:
            if exc.handle is not None:
                await exc.handle.terminate()
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)
            ) from exc
        except RuntimeLaunchError as exc:
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)
            ) from exc

    return _info(_handle)


@router.post("/runtime/stop", response_model=RuntimeInfo)
async def stop_runtime():
    handle = _handle
    if handle is None or not handle.running:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No runtime running",
        )
    await handle.terminate()
    return _info(handle)
