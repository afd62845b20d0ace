# weichspielapparat/core/errors.py
"""
Error kinds raised while bringing up the fernspielapparat runtime.

Every stage raises its own subclass of `RuntimeLaunchError`, so callers
can either catch the base class and show `str(exc)` to the user, or
branch on the specific kind.
"""

from __future__ import annotations

from typing import Any, Optional


class RuntimeLaunchError(Exception):
    """Base class; carries a human-readable message plus optional context."""

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} ({context_str})"
        return self.message


# ──────────────────────────────────────────────
# Resolver (recovered locally by installing)
# ──────────────────────────────────────────────
class BinaryNotFound(RuntimeLaunchError):
    """No usable system-provided or previously installed runtime."""


class VersionUnparseable(RuntimeLaunchError):
    """`--version` did not print exactly `<name> <version>`."""


# ──────────────────────────────────────────────
# Installer
# ──────────────────────────────────────────────
class DownloadFailed(RuntimeLaunchError):
    """Release lookup or archive transfer failed."""


class ChecksumMismatch(DownloadFailed):
    """Downloaded archive does not match the published sha256 digest."""


class ExtractFailed(RuntimeLaunchError):
    """Archive could not be read or the executable could not be written."""


class ExecutableNotInArchive(ExtractFailed):
    """Archive is readable but contains no runtime executable."""


# ──────────────────────────────────────────────
# Supervisor / prober
# ──────────────────────────────────────────────
class SpawnFailed(RuntimeLaunchError):
    """The child process could not be created at all."""


class PrematureExit(RuntimeLaunchError):
    """The child exited before its server became reachable."""

    def __init__(self, message: str, code: Optional[int], **context: Any) -> None:
        super().__init__(message, **context)
        self.code = code


class ProbeTimeout(RuntimeLaunchError):
    """
    The server port never accepted a connection before the deadline.

    The child may still be running; its RuntimeHandle is exposed as
    `handle` so the caller can decide to terminate it.
    """

    def __init__(
        self,
        message: str,
        port: int,
        timeout: float,
        handle: Any = None,
        **context: Any,
    ) -> None:
        super().__init__(message, **context)
        self.port = port
        self.timeout = timeout
        self.handle = handle

    @property
    def process(self) -> Any:
        return self.handle.process if self.handle is not None else None
