# weichspielapparat/core/releases.py
"""
weichspielapparat – release lookup & download transport
=======================================================

The installer only needs two things from the outside world:

• "which archive should I download for this platform?"  → ReleaseSource
• "put the bytes behind this URL into that file"          → Fetcher

The defaults talk to the GitHub releases API of the runtime project
with aiohttp.  Tests (and alternative mirrors) pass their own
implementations to the installer instead.
"""

from __future__ import annotations

import asyncio
import platform
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

import aiohttp

from weichspielapparat.core import config
from weichspielapparat.core.errors import DownloadFailed
from weichspielapparat.core.models import PlatformDescriptor, Release

Fetcher = Callable[[str, Path], Awaitable[Path]]

_TIMEOUT = aiohttp.ClientTimeout(total=300, connect=15)

_SYSTEM_KEYWORDS: Dict[str, tuple] = {
    "Linux": ("linux",),
    "Darwin": ("darwin", "apple", "macos", "osx"),
    "Windows": ("windows", "win64", "win32"),
}
_ARCH_ALIASES: Dict[str, tuple] = {
    "x86_64": ("x86_64", "amd64", "x64"),
    "amd64": ("x86_64", "amd64", "x64"),
    "aarch64": ("aarch64", "arm64"),
    "arm64": ("aarch64", "arm64"),
}


class ReleaseSource(Protocol):
    async def latest(self, plat: PlatformDescriptor) -> Release: ...


# ──────────────────────────────────────────────
# 1. Release lookup
# ──────────────────────────────────────────────
def pick_asset(
    assets: List[Dict[str, Any]],
    plat: PlatformDescriptor,
    machine: Optional[str] = None,
) -> Optional[Dict[str, Any]]:
    """
    Choose the `.tar.gz` asset built for `plat`.

    Assets naming the host architecture win over ones that only name the OS.
    """
    keywords = _SYSTEM_KEYWORDS.get(plat.system, (plat.system.lower(),))
    candidates = [
        a for a in assets
        if a.get("name", "").lower().endswith(".tar.gz")
        and any(k in a["name"].lower() for k in keywords)
    ]
    if not candidates:
        return None

    machine = (machine or platform.machine()).lower()
    arch_names = _ARCH_ALIASES.get(machine, (machine,))
    for asset in candidates:
        if any(arch in asset["name"].lower() for arch in arch_names):
            return asset
    return candidates[0]


class GitHubReleases:
    """Looks up the latest runtime release on GitHub."""

    def __init__(
        self,
        repo: str = config.RELEASES_REPO,
        api_url: str = config.RELEASES_API,
    ) -> None:
        self.url = f"{api_url.rstrip('/')}/repos/{repo}/releases/latest"

    async def latest(self, plat: PlatformDescriptor) -> Release:
        headers = {"Accept": "application/vnd.github+json"}
        try:
            async with aiohttp.ClientSession(timeout=_TIMEOUT) as session:
                async with session.get(self.url, headers=headers) as resp:
                    if resp.status != 200:
                        raise DownloadFailed(
                            f"Release lookup failed with HTTP {resp.status}",
                            url=self.url,
                        )
                    raw = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            raise DownloadFailed(f"Release lookup failed: {exc}", url=self.url) from exc

        if not isinstance(raw, dict) or not isinstance(raw.get("assets"), list):
            raise DownloadFailed("Malformed release metadata", url=self.url)

        asset = pick_asset(raw["assets"], plat)
        if asset is None or not asset.get("browser_download_url"):
            raise DownloadFailed(
                f"No runtime release available for {plat.system}",
                release=raw.get("tag_name"),
            )

        try:
            return Release(
                version=str(raw.get("tag_name") or "unknown").lstrip("v"),
                url=asset["browser_download_url"],
                sha256=asset.get("digest") or None,
            )
        except ValueError as exc:
            raise DownloadFailed(f"Malformed release metadata: {exc}", url=self.url) from exc


# ──────────────────────────────────────────────
# 2. Download
# ──────────────────────────────────────────────
async def fetch_to_file(url: str, dest: Path) -> Path:
    """
    Stream `url` into `dest` (via a .tmp sibling, replaced atomically).

    Raises DownloadFailed; no partial file is left behind.
    """
    dest = Path(dest)
    tmp = dest.with_name(dest.name + ".tmp")
    try:
        async with aiohttp.ClientSession(timeout=_TIMEOUT) as session:
            async with session.get(url) as resp:
                resp.raise_for_status()
                with tmp.open("wb") as fh:
                    async for chunk in resp.content.iter_chunked(65536):
                        fh.write(chunk)
    except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
        tmp.unlink(missing_ok=True)
        raise DownloadFailed(f"Failed to download release: {exc}", url=url) from exc

    tmp.replace(dest)
    sys.stdout.write(f"[releases] downloaded {url} -> {dest}\n")
    return dest
