"""Tests for the mount coordinator."""

import pytest
from unittest.mock import AsyncMock

from machineutil.errors import BusError, BusErrorKind
from machineutil.models.config import SystemdConfig, WaitConfig
from machineutil.models.machine import MachineSpec
from machineutil.providers.manager import MachineManager
from machineutil.providers.mount import MountCoordinator


@pytest.fixture
def manager(tmp_path):
    return MachineManager(
        AsyncMock(),
        SystemdConfig(system_dir=str(tmp_path)),
        WaitConfig(poll_interval_seconds=0.001, job_timeout_seconds=0.05),
    )


@pytest.fixture
def coordinator(manager):
    return MountCoordinator(manager)


@pytest.fixture
def spec():
    spec = MachineSpec(
        fqdn="db.dev.local",
        mounts=[
            {"name": "data", "device": "/dev/vdb", "target": "/srv/data", "fs": "xfs"},
            {"name": "logs", "device": "/dev/vdc", "target": "/var/log/app"},
        ],
    )
    spec.normalize()
    return spec


class TestMountPaths:
    """Test unit file placement."""

    def test_unit_path(self, coordinator, spec, tmp_path):
        assert coordinator.unit_path(spec.mounts[0]) == tmp_path / "var-lib-machines-data.mount"


@pytest.mark.asyncio
class TestMountCoordinator:
    """Test creating, stopping and removing mount units."""

    async def test_ensure_mounts(self, coordinator, spec, tmp_path):
        assert await coordinator.ensure_mounts(spec) is True

        text = (tmp_path / "var-lib-machines-data.mount").read_text()
        assert "What=/dev/vdb\n" in text
        assert "Where=/var/lib/machines/data\n" in text
        assert "Type=xfs\n" in text
        assert "After=blockdev@dev-vdb.target\n" in text
        assert (tmp_path / "var-lib-machines-logs.mount").exists()

    async def test_ensure_mounts_idempotent(self, coordinator, spec):
        await coordinator.ensure_mounts(spec)

        assert await coordinator.ensure_mounts(spec) is False

    async def test_any_change_reports_changed(self, coordinator, spec, tmp_path):
        await coordinator.ensure_mounts(spec)
        (tmp_path / "var-lib-machines-logs.mount").unlink()

        assert await coordinator.ensure_mounts(spec) is True

    async def test_remove_mounts(self, coordinator, spec, tmp_path):
        await coordinator.ensure_mounts(spec)

        assert await coordinator.remove_mounts(spec) is True
        assert list(tmp_path.iterdir()) == []
        assert await coordinator.remove_mounts(spec) is False

    async def test_no_mounts(self, coordinator):
        spec = MachineSpec(fqdn="web.dev.local")

        assert await coordinator.ensure_mounts(spec) is False
        assert await coordinator.remove_mounts(spec) is False
        await coordinator.unmount(spec)

    async def test_unmount(self, coordinator, manager, spec):
        manager.bus.stop_unit.side_effect = ["/job/1", "/job/2"]
        manager.bus.get_job_state.side_effect = BusError(BusErrorKind.NO_SUCH_OBJECT)

        await coordinator.unmount(spec)

        stopped = [call.args[0] for call in manager.bus.stop_unit.await_args_list]
        assert stopped == ["var-lib-machines-data.mount", "var-lib-machines-logs.mount"]
        assert manager.bus.get_job_state.await_count == 2

    async def test_unmount_skips_unknown_unit(self, coordinator, manager, spec):
        manager.bus.stop_unit.side_effect = [
            BusError(BusErrorKind.NO_SUCH_UNIT, "org.freedesktop.systemd1.NoSuchUnit"),
            "/job/2",
        ]
        manager.bus.get_job_state.side_effect = BusError(BusErrorKind.NO_SUCH_OBJECT)

        await coordinator.unmount(spec)

        manager.bus.get_job_state.assert_awaited_once_with("/job/2")

    async def test_unmount_propagates_failures(self, coordinator, manager, spec):
        manager.bus.stop_unit.side_effect = BusError(BusErrorKind.FAILED, "org.freedesktop.DBus.Error.AccessDenied")

        with pytest.raises(BusError):
            await coordinator.unmount(spec)
