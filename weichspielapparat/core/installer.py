# weichspielapparat/core/installer.py
"""
weichspielapparat – runtime installer
=====================================

Used when no runtime is available locally.

Flow
----
1. ask the release source for the newest archive for this platform
2. download it into a temporary directory
3. verify its sha256 digest (when the release publishes one)
4. extract *only* the runtime executable into the install dir, under
   its canonical platform name; every other archive entry is skipped

Filesystem layout
-----------------
<install_dir>/
    └─ fernspielapparat[.exe]     ← the only file we ever write
"""

from __future__ import annotations

import asyncio
import hashlib
import shutil
import sys
import tarfile
import tempfile
import zlib
from pathlib import Path
from typing import Optional

import aiohttp

from weichspielapparat.core import config
from weichspielapparat.core.errors import (
    ChecksumMismatch,
    DownloadFailed,
    ExecutableNotInArchive,
    ExtractFailed,
)
from weichspielapparat.core.models import PlatformDescriptor, Release, current_platform
from weichspielapparat.core.releases import (
    Fetcher,
    GitHubReleases,
    ReleaseSource,
    fetch_to_file,
)

_TRANSFER_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, OSError)


# ──────────────────────────────────────────────
# 1. Integrity
# ──────────────────────────────────────────────
def _calc_sha256(file_path: Path) -> str:
    h = hashlib.sha256()
    with file_path.open("rb") as fh:
        for chunk in iter(lambda: fh.read(65536), b""):
            h.update(chunk)
    return h.hexdigest()


def verify_archive(archive: Path, release: Release) -> None:
    """Raise ChecksumMismatch if the archive does not match the release digest."""
    if release.sha256 is None:
        sys.stderr.write(
            f"[installer] release {release.version} publishes no sha256, "
            "installing unverified\n"
        )
        return

    actual = _calc_sha256(archive)
    if actual != release.sha256:
        raise ChecksumMismatch(
            f"SHA256 mismatch for {archive.name}",
            expected=release.sha256,
            actual=actual,
        )


# ──────────────────────────────────────────────
# 2. Extraction
# ──────────────────────────────────────────────
def _is_executable_entry(name: str) -> bool:
    return name.endswith(config.EXECUTABLE_NAMES)


def extract_executable(
    archive: Path,
    dest_dir: Path,
    plat: PlatformDescriptor,
) -> Path:
    """
    Write the runtime executable found in a .tar.gz to `dest_dir`.

    The entry is renamed to `plat.executable_name`; nothing else in the
    archive touches the disk.
    """
    target = Path(dest_dir) / plat.executable_name
    tmp = target.with_name(target.name + ".tmp")

    try:
        with tarfile.open(archive, "r:gz") as tar:
            member = next(
                (m for m in tar if m.isfile() and _is_executable_entry(m.name)),
                None,
            )
            if member is None:
                raise ExecutableNotInArchive(
                    "Could not find executable in tarball", archive=archive.name
                )

            src = tar.extractfile(member)
            if src is None:
                raise ExtractFailed(f"Unreadable archive entry {member.name}")

            target.parent.mkdir(parents=True, exist_ok=True)
            with src, tmp.open("wb") as fh:
                shutil.copyfileobj(src, fh)
        tmp.chmod(0o755)
        tmp.replace(target)
    except (tarfile.TarError, EOFError, zlib.error, OSError) as exc:
        tmp.unlink(missing_ok=True)
        raise ExtractFailed(f"Failed to decompress release, error: {exc}.") from exc

    sys.stdout.write(f"[installer] extracted binary: {member.name} -> {target}\n")
    return target


# ──────────────────────────────────────────────
# 3. Public entry
# ──────────────────────────────────────────────
async def install_runtime(
    install_dir: Path,
    plat: Optional[PlatformDescriptor] = None,
    releases: Optional[ReleaseSource] = None,
    fetch: Optional[Fetcher] = None,
    verify_checksum: bool = True,
) -> Path:
    """
    Download the latest release and install its executable.

    Returns the path of the installed executable.  Raises DownloadFailed
    (incl. ChecksumMismatch) or ExtractFailed (incl. ExecutableNotInArchive).
    """
    plat = plat or current_platform()
    releases = releases or GitHubReleases()
    fetch = fetch or fetch_to_file

    try:
        release = await releases.latest(plat)
    except _TRANSFER_ERRORS as exc:
        raise DownloadFailed(f"Release lookup failed: {exc}") from exc
    sys.stdout.write(f"[installer] downloading runtime {release.version} from {release.url}\n")

    with tempfile.TemporaryDirectory(prefix=f"{config.APP_ID}-") as tmp_dir:
        archive = Path(tmp_dir) / config.ARCHIVE_FILE_NAME
        try:
            await fetch(release.url, archive)
        except _TRANSFER_ERRORS as exc:
            raise DownloadFailed(f"Failed to download release: {exc}", url=release.url) from exc

        if verify_checksum:
            await asyncio.to_thread(verify_archive, archive, release)

        return await asyncio.to_thread(extract_executable, archive, Path(install_dir), plat)
