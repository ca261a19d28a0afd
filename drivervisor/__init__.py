"""Drivervisor: supervise an external UI-automation driver process."""

from drivervisor.core.launcher import DriverLauncher
from drivervisor.core.supervisor import ProcessSupervisor, Ready, StartError, SupervisorState

__all__ = [
    "DriverLauncher",
    "ProcessSupervisor",
    "Ready",
    "StartError",
    "SupervisorState",
]
