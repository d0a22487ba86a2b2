"""Tests for machine runtime handles."""

import ipaddress

import pytest
from unittest.mock import AsyncMock, Mock

from machineutil.errors import BusError, BusErrorKind, OperationTimedOut
from machineutil.models.config import SystemdConfig, WaitConfig
from machineutil.models.unit import UnitOption
from machineutil.providers.machine import Machine, usable_addresses
from machineutil.providers.manager import MachineManager


MACHINE_PATH = "/org/freedesktop/machine1/machine/web"


def _gone():
    return BusError(BusErrorKind.NO_SUCH_MACHINE, "org.freedesktop.machine1.NoSuchMachine")


@pytest.fixture
def manager(tmp_path):
    """Create a manager over a mocked bus with fast waits."""
    return MachineManager(
        AsyncMock(),
        SystemdConfig(nspawn_dir=str(tmp_path / "nspawn"), system_dir=str(tmp_path / "system")),
        WaitConfig(
            poll_interval_seconds=0.001,
            max_poll_interval_seconds=0.001,
            state_timeout_seconds=0.05,
            address_timeout_seconds=0.05,
            job_timeout_seconds=0.05,
        ),
    )


@pytest.fixture
def machine(manager):
    return Machine("web.dev.local", MACHINE_PATH, manager)


class TestUsableAddresses:
    """Test address filtering."""

    def test_filters_local_addresses(self):
        addresses = [ipaddress.ip_address(a) for a in ("127.0.0.1", "fe80::1", "203.0.113.5")]

        assert usable_addresses(addresses) == [ipaddress.ip_address("203.0.113.5")]

    @pytest.mark.parametrize("address", [
        "0.0.0.0",
        "::",
        "::1",
        "169.254.10.1",
        "224.0.0.251",
        "239.1.1.1",
        "ff01::1",
        "ff02::1",
        "ff05::2",
    ])
    def test_rejected(self, address):
        assert usable_addresses([ipaddress.ip_address(address)]) == []

    @pytest.mark.parametrize("address", ["10.0.0.2", "192.168.1.20", "2001:db8::5", "fd00::1"])
    def test_accepted(self, address):
        assert usable_addresses([ipaddress.ip_address(address)]) == [ipaddress.ip_address(address)]


class TestMachinePaths:
    """Test fragment paths derived from the machine name."""

    def test_paths(self, machine, tmp_path):
        assert machine.service_unit == "systemd-nspawn@web.dev.local.service"
        assert machine.options_path == tmp_path / "nspawn" / "web.dev.local.nspawn"
        assert machine.override_path == (
            tmp_path / "system" / "systemd-nspawn@web.dev.local.service.d" / "machineutil.conf"
        )


@pytest.mark.asyncio
class TestMachine:
    """Test machine lifecycle operations."""

    async def test_is_running(self, machine, manager):
        manager.bus.get_machine_state.return_value = "running"
        assert await machine.is_running() is True

        manager.bus.get_machine_state.return_value = "closing"
        assert await machine.is_running() is False

        manager.bus.get_machine_state.side_effect = _gone()
        assert await machine.is_running() is False

    async def test_addresses(self, machine, manager):
        manager.bus.get_machine_addresses.return_value = [
            (2, bytes([127, 0, 0, 1])),
            (10, ipaddress.ip_address("fe80::1").packed),
            (2, bytes([203, 0, 113, 5])),
        ]

        assert await machine.addresses() == [
            ipaddress.ip_address("127.0.0.1"),
            ipaddress.ip_address("fe80::1"),
            ipaddress.ip_address("203.0.113.5"),
        ]
        assert await machine.wait_for_address() == [ipaddress.ip_address("203.0.113.5")]

    async def test_invalid_address(self, machine, manager):
        manager.bus.get_machine_addresses.return_value = [(2, b"\x01\x02\x03")]

        with pytest.raises(BusError) as exc_info:
            await machine.addresses()

        assert exc_info.value.kind is BusErrorKind.MALFORMED_REPLY

    async def test_wait_for_address_polls(self, machine, manager):
        manager.bus.get_machine_addresses.side_effect = [
            [(2, bytes([127, 0, 0, 1]))],
            [(2, bytes([127, 0, 0, 1])), (2, bytes([10, 0, 0, 7]))],
        ]

        assert await machine.wait_for_address() == [ipaddress.ip_address("10.0.0.7")]

    async def test_wait_for_address_times_out(self, machine, manager):
        manager.bus.get_machine_addresses.return_value = [(2, bytes([127, 0, 0, 1]))]

        with pytest.raises(OperationTimedOut):
            await machine.wait_for_address()

    async def test_start(self, machine, manager):
        """Test start waits for the job and then for the running state."""
        manager.bus.get_machine_state.side_effect = [_gone(), _gone(), "opening", "running"]
        manager.bus.start_unit.return_value = "/org/freedesktop/systemd1/job/9"
        manager.bus.get_job_state.side_effect = BusError(BusErrorKind.NO_SUCH_OBJECT)

        await machine.start()

        manager.bus.start_unit.assert_awaited_once_with("systemd-nspawn@web.dev.local.service")
        manager.bus.get_job_state.assert_awaited_with("/org/freedesktop/systemd1/job/9")

    async def test_start_already_running(self, machine, manager):
        manager.bus.get_machine_state.return_value = "running"

        await machine.start()

        manager.bus.start_unit.assert_not_awaited()

    async def test_start_propagates_unexpected_errors(self, machine, manager):
        manager.bus.get_machine_state.side_effect = [_gone(), BusError(BusErrorKind.FAILED, "x.Failed")]
        manager.bus.get_job_state.side_effect = BusError(BusErrorKind.NO_SUCH_OBJECT)

        with pytest.raises(BusError) as exc_info:
            await machine.start()

        assert exc_info.value.kind is BusErrorKind.FAILED

    async def test_start_times_out(self, machine, manager):
        manager.bus.get_machine_state.side_effect = _gone()
        manager.bus.get_job_state.side_effect = BusError(BusErrorKind.NO_SUCH_OBJECT)

        with pytest.raises(OperationTimedOut):
            await machine.start()

    async def test_stop(self, machine, manager):
        manager.bus.get_machine_state.side_effect = ["running", "running", "closing", _gone()]
        manager.bus.stop_unit.return_value = "/org/freedesktop/systemd1/job/10"
        manager.bus.get_job_state.side_effect = ["running", BusError(BusErrorKind.NO_SUCH_OBJECT)]

        await machine.stop()

        manager.bus.stop_unit.assert_awaited_once_with("systemd-nspawn@web.dev.local.service")
        assert manager.bus.get_job_state.await_count == 2

    async def test_stop_not_running(self, machine, manager):
        manager.bus.get_machine_state.side_effect = _gone()

        await machine.stop()

        manager.bus.stop_unit.assert_not_awaited()

    async def test_remove(self, machine, manager):
        await machine.remove()

        manager.bus.remove_image.assert_awaited_once_with("web.dev.local")

    async def test_ensure_options_and_override(self, machine):
        options = [UnitOption("Network", "VirtualEthernet", "yes")]
        overrides = [UnitOption("Unit", "RequiresMountsFor", "/var/lib/machines/data")]

        assert await machine.ensure_options(options) is True
        assert await machine.ensure_override(overrides) is True
        assert await machine.ensure_options(options) is False
        assert machine.options_path.read_text() == "[Network]\nVirtualEthernet=yes\n"
        assert machine.override_path.read_text() == "[Unit]\nRequiresMountsFor=/var/lib/machines/data\n"
