"""Shared fixtures for runtime lifecycle tests.

Provides platform descriptors, launch settings bound to free ports,
fake runtime executables (small Python scripts with a shebang) and a
factory for release tarballs.
"""

import io
import os
import socket
import stat
import sys
import tarfile
import textwrap
from pathlib import Path
from typing import Dict, Optional

import pytest

from weichspielapparat.core.config import RuntimeSettings
from weichspielapparat.core.models import PlatformDescriptor


# ---------------------------------------------------------------------------
# Platform fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def linux():
    """Descriptor without any VLC defaults and with the execute-bit check."""
    return PlatformDescriptor.detect("Linux")


@pytest.fixture
def macos():
    return PlatformDescriptor.detect("Darwin")


@pytest.fixture
def windows():
    return PlatformDescriptor.detect("Windows", environ={"ProgramFiles": r"C:\Program Files"})


# ---------------------------------------------------------------------------
# Ports & settings
# ---------------------------------------------------------------------------

def free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture
def settings_factory(tmp_path):
    """Factory for RuntimeSettings rooted in tmp_path on a free port.

    Usage:
        settings = settings_factory(probe_timeout=0.5)
    """
    def _factory(**overrides) -> RuntimeSettings:
        values = {
            "install_dir": tmp_path / "home",
            "port": free_port(),
            "probe_timeout": 2.0,
        }
        values.update(overrides)
        values["install_dir"].mkdir(parents=True, exist_ok=True)
        return RuntimeSettings(**values)
    return _factory


# ---------------------------------------------------------------------------
# Fake runtime executables
# ---------------------------------------------------------------------------

def runtime_script(
    version_output: Optional[str] = "fernspielapparat 0.4.2",
    port: Optional[int] = None,
    exit_code: int = 0,
    prelude: str = "",
) -> str:
    """Python source of a fake runtime.

    `--version` prints `version_output` (or exits 1 if None); server mode
    runs `prelude`, then listens on `port` forever, or exits with
    `exit_code` when no port is given.
    """
    body = textwrap.dedent(f"""
        import os, socket, sys, time

        VERSION_OUTPUT = {version_output!r}
        if "--version" in sys.argv:
            if VERSION_OUTPUT is None:
                sys.exit(1)
            print(VERSION_OUTPUT)
            sys.exit(0)

    """)
    body += textwrap.dedent(prelude)
    if port is None:
        body += f"sys.exit({exit_code})\n"
    else:
        body += textwrap.dedent(f"""
            sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind(("127.0.0.1", {port}))
            sock.listen(16)
            print("server listening", flush=True)
            while True:
                conn, _ = sock.accept()
                conn.close()
        """)
    return body


def write_executable(path: Path, source: str, mode: int = 0o755) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(f"#!{sys.executable}\n{source}", encoding="utf-8")
    path.chmod(mode)
    return path


@pytest.fixture
def bin_dir(tmp_path):
    """Empty directory used as the only PATH entry of the ambient environment."""
    d = tmp_path / "bin"
    d.mkdir()
    return d


@pytest.fixture
def ambient(bin_dir):
    return {"PATH": str(bin_dir)}


# ---------------------------------------------------------------------------
# Release archives
# ---------------------------------------------------------------------------

def make_tarball(dest: Path, entries: Dict[str, bytes]) -> Path:
    """Write a .tar.gz with the given regular-file entries."""
    with tarfile.open(dest, "w:gz") as tar:
        for name, data in entries.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            info.mode = 0o644
            tar.addfile(info, io.BytesIO(data))
    return dest


def is_executable(path: Path) -> bool:
    return bool(path.stat().st_mode & stat.S_IXUSR) and os.access(path, os.X_OK)


posix_only = pytest.mark.skipif(
    sys.platform == "win32", reason="spawns shebang scripts"
)
