"""Tests for job handles."""

import pytest
from unittest.mock import AsyncMock

from machineutil.errors import BusError, BusErrorKind, OperationTimedOut
from machineutil.models.config import WaitConfig
from machineutil.providers.job import Job


FAST = WaitConfig(
    poll_interval_seconds=0.001,
    max_poll_interval_seconds=0.001,
    job_timeout_seconds=0.05,
)


@pytest.mark.asyncio
class TestJob:
    """Test Job.wait."""

    async def test_wait_until_vanished(self):
        bus = AsyncMock()
        bus.get_job_state.side_effect = ["waiting", "running", BusError(BusErrorKind.NO_SUCH_OBJECT)]
        job = Job("/org/freedesktop/systemd1/job/3", bus, FAST)

        await job.wait()

        assert bus.get_job_state.await_count == 3
        assert job.done is True

    async def test_any_read_failure_completes(self):
        bus = AsyncMock()
        bus.get_job_state.side_effect = BusError(BusErrorKind.FAILED, "org.example.Error")

        await Job("/job/3", bus, FAST).wait()

    async def test_wait_twice_is_noop(self):
        bus = AsyncMock()
        bus.get_job_state.side_effect = BusError(BusErrorKind.NO_SUCH_OBJECT)
        job = Job("/job/3", bus, FAST)

        await job.wait()
        await job.wait()

        assert bus.get_job_state.await_count == 1

    async def test_timeout(self):
        bus = AsyncMock()
        bus.get_job_state.return_value = "running"

        with pytest.raises(OperationTimedOut):
            await Job("/job/3", bus, FAST).wait()
