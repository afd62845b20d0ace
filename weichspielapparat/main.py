# weichspielapparat/main.py
"""
weichspielapparat – FastAPI entry point
=======================================

Serves the runtime control API that the frontend talks to.

Run options
-----------
• Development:   python -m weichspielapparat.main
• Service:       python run_weichspielapparat.py
"""

from __future__ import annotations

import importlib
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from weichspielapparat.core import config

runtime = importlib.import_module("weichspielapparat.api.runtime")


@asynccontextmanager
async def _lifespan(_app: FastAPI):
    yield
    # the runtime child must not outlive the service
    await runtime.shutdown()


app = FastAPI(
    title=config.APP_NAME,
    version=config.APP_VERSION,
    docs_url=None,
    redoc_url=None,
    lifespan=_lifespan,
)

app.include_router(runtime.router, prefix="/api")


def run_server(host: str = config.SERVICE_HOST, port: int = config.SERVICE_PORT) -> None:
    uvicorn.run(app, host=host, port=port, log_level="info")


if __name__ == "__main__":  # pragma: no cover
    run_server()
