"""
Pytest fixtures for drivervisor tests.
"""

import asyncio
import sys
from pathlib import Path

import pytest
import pytest_asyncio

from drivervisor.core.supervisor import ProcessSupervisor, SupervisorConfig

FAKE_DRIVER = str(Path(__file__).parent / "fixtures" / "fake_driver.py")


def fake_driver_args(*args: str) -> list[str]:
    """Argument list that runs the fake driver through the current interpreter."""
    return [FAKE_DRIVER, *args]


@pytest.fixture
def fake_driver():
    """Path to the fake driver script."""
    return FAKE_DRIVER


@pytest_asyncio.fixture
async def make_supervisor():
    """
    Factory for supervisors running the fake driver.

    Every supervisor created through it is stopped and reaped after the test.
    """
    created: list[ProcessSupervisor] = []

    def _make(*args: str, **config) -> ProcessSupervisor:
        config.setdefault("start_timeout", 10.0)
        supervisor = ProcessSupervisor(
            sys.executable,
            fake_driver_args(*args),
            SupervisorConfig(**config),
        )
        created.append(supervisor)
        return supervisor

    yield _make

    for supervisor in created:
        supervisor.stop()
        await asyncio.wait_for(supervisor.wait(), timeout=10)
