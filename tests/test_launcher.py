"""Tests for launch(): stage ordering with mocked stages, and end-to-end
runs against fake runtimes on the search path / from a release archive."""

import socket
import sys
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from conftest import make_tarball, posix_only, runtime_script, write_executable
from weichspielapparat.core import config
from weichspielapparat.core.errors import (
    BinaryNotFound,
    DownloadFailed,
    ExecutableNotInArchive,
    PrematureExit,
    ProbeTimeout,
)
from weichspielapparat.core.launcher import _run_cli, launch
from weichspielapparat.core.models import Release, RuntimeStatus


def _stages(resolve_result=None, resolve_error=None):
    """Mocks for the three stages, attached to one parent to record order."""
    manager = MagicMock()
    manager.resolve = AsyncMock(return_value=resolve_result, side_effect=resolve_error)
    manager.install = AsyncMock(return_value="/home/me/.weichspielapparat/fernspielapparat")
    manager.start = AsyncMock(return_value="HANDLE")
    return manager


def _patched(manager):
    return (
        patch("weichspielapparat.core.launcher.resolve_binary", manager.resolve),
        patch("weichspielapparat.core.launcher.install_runtime", manager.install),
        patch("weichspielapparat.core.launcher.start_runtime", manager.start),
    )


# ============================================================================
# TestStageOrdering
# ============================================================================

class TestStageOrdering:

    @pytest.mark.asyncio
    async def test_system_binary_never_installs(self, settings_factory, linux):
        manager = _stages(resolve_result="fernspielapparat")
        p1, p2, p3 = _patched(manager)
        with p1, p2, p3:
            result = await launch(settings_factory(), plat=linux, ambient_env={})

        assert result == "HANDLE"
        manager.install.assert_not_awaited()
        assert manager.start.await_args.args[0] == "fernspielapparat"

    @pytest.mark.asyncio
    async def test_installs_once_before_spawn(self, settings_factory, linux):
        manager = _stages(resolve_error=BinaryNotFound("nothing here"))
        settings = settings_factory()
        p1, p2, p3 = _patched(manager)
        with p1, p2, p3:
            await launch(settings, plat=linux, ambient_env={})

        manager.install.assert_awaited_once()
        assert manager.install.await_args.args[0] == settings.install_dir
        names = [c[0] for c in manager.mock_calls]
        assert names == ["resolve", "install", "start"]
        assert manager.start.await_args.args[0] == "/home/me/.weichspielapparat/fernspielapparat"

    @pytest.mark.asyncio
    async def test_install_failure_stops_launch(self, settings_factory, linux):
        manager = _stages(resolve_error=BinaryNotFound("nothing here"))
        manager.install.side_effect = DownloadFailed("offline")
        p1, p2, p3 = _patched(manager)
        with p1, p2, p3:
            with pytest.raises(DownloadFailed):
                await launch(settings_factory(), plat=linux, ambient_env={})

        manager.start.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_environment_overlay_passed_to_spawn(self, settings_factory, macos):
        manager = _stages(resolve_result="fernspielapparat")
        ambient = {"PATH": "/usr/bin"}
        p1, p2, p3 = _patched(manager)
        with p1, p2, p3:
            await launch(settings_factory(), plat=macos, ambient_env=ambient)

        env = manager.start.await_args.args[1]
        assert env["VLC_PLUGIN_PATH"] == "/Applications/VLC.app/Contents/MacOS/plugins"
        assert ambient == {"PATH": "/usr/bin"}


# ============================================================================
# TestDebugCli
# ============================================================================

class TestDebugCli:

    @pytest.mark.asyncio
    async def test_timed_out_child_is_terminated(self, settings_factory):
        orphan = MagicMock()
        orphan.terminate = AsyncMock(return_value=-15)
        error = ProbeTimeout("not available", port=38397, timeout=5.0, handle=orphan)

        with patch("weichspielapparat.core.launcher.launch", AsyncMock(side_effect=error)):
            with pytest.raises(ProbeTimeout):
                await _run_cli(settings_factory())

        orphan.terminate.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_other_failures_propagate(self, settings_factory):
        with patch(
            "weichspielapparat.core.launcher.launch",
            AsyncMock(side_effect=PrematureExit("crashed", code=1)),
        ):
            with pytest.raises(PrematureExit):
                await _run_cli(settings_factory())


# ============================================================================
# TestEndToEnd
# ============================================================================

class FakeReleases:
    def __init__(self):
        self.calls = 0

    async def latest(self, plat):
        self.calls += 1
        return Release(version="0.4.2", url="https://dl.test/runtime.tar.gz")


def _archive_fetcher(archive):
    async def _fetch(url, dest):
        dest.write_bytes(archive.read_bytes())
        return dest
    return _fetch


@posix_only
class TestEndToEnd:

    @pytest.mark.asyncio
    async def test_system_runtime(self, settings_factory, linux, bin_dir, ambient):
        settings = settings_factory()
        write_executable(bin_dir / "fernspielapparat", runtime_script(port=settings.port))
        releases = FakeReleases()

        handle = await launch(settings, plat=linux, ambient_env=ambient, releases=releases)
        try:
            assert handle.url == settings.control_url
            assert handle.binary == "fernspielapparat"
            assert handle.status is RuntimeStatus.ready
            assert releases.calls == 0
        finally:
            await handle.terminate()

    @pytest.mark.asyncio
    async def test_installs_then_launches(self, tmp_path, settings_factory, linux, ambient):
        settings = settings_factory()
        script = f"#!{sys.executable}\n{runtime_script(port=settings.port)}"
        archive = make_tarball(tmp_path / "release.tar.gz", {
            "fernspielapparat-0.4.2/README.md": b"readme",
            "fernspielapparat-0.4.2/fernspielapparat": script.encode(),
        })
        releases = FakeReleases()

        handle = await launch(
            settings, plat=linux, ambient_env=ambient,
            releases=releases, fetch=_archive_fetcher(archive),
        )
        try:
            assert releases.calls == 1
            assert handle.binary == str(settings.install_dir / "fernspielapparat")
            assert sorted(p.name for p in settings.install_dir.iterdir()) == ["fernspielapparat"]
        finally:
            await handle.terminate()

        # second launch reuses the cached install
        handle = await launch(settings, plat=linux, ambient_env=ambient, releases=releases)
        try:
            assert releases.calls == 1
        finally:
            await handle.terminate()

    @pytest.mark.asyncio
    async def test_archive_without_runtime_never_spawns(
        self, tmp_path, settings_factory, linux, ambient
    ):
        archive = make_tarball(tmp_path / "release.tar.gz", {"README.md": b"readme"})
        with patch("weichspielapparat.core.launcher.start_runtime") as start:
            with pytest.raises(ExecutableNotInArchive):
                await launch(
                    settings_factory(), plat=linux, ambient_env=ambient,
                    releases=FakeReleases(), fetch=_archive_fetcher(archive),
                )
        start.assert_not_called()

    @pytest.mark.asyncio
    async def test_crashing_runtime(self, settings_factory, linux, bin_dir, ambient):
        write_executable(bin_dir / "fernspielapparat", runtime_script(exit_code=1))
        with pytest.raises(PrematureExit) as exc_info:
            await launch(settings_factory(), plat=linux, ambient_env=ambient)
        assert exc_info.value.code == 1

    @pytest.mark.asyncio
    async def test_default_port_url(self, tmp_path, linux, bin_dir, ambient):
        with socket.socket() as probe:
            if probe.connect_ex(("127.0.0.1", config.RUNTIME_PORT)) == 0:
                pytest.skip("port 38397 already in use")

        write_executable(bin_dir / "fernspielapparat", runtime_script(port=config.RUNTIME_PORT))
        settings = config.RuntimeSettings(install_dir=tmp_path)

        handle = await launch(settings, plat=linux, ambient_env=ambient)
        try:
            assert handle.url == "ws://127.0.0.1:38397"
        finally:
            await handle.terminate()
