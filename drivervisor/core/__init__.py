"""Core module for drivervisor."""

from drivervisor.core.decoding import StreamDecoder, detect_encoding
from drivervisor.core.fanout import LogMirror, LogRedirectError, OutputFanout
from drivervisor.core.launcher import DriverLauncher
from drivervisor.core.supervisor import (
    AlreadyStartedError,
    ExitedBeforeReadyError,
    InitializationFailedError,
    ProcessSupervisor,
    Ready,
    SpawnFailedError,
    StartAbortedError,
    StartError,
    StartTimeoutError,
    StdinMode,
    SupervisorConfig,
    SupervisorState,
)

__all__ = [
    "AlreadyStartedError",
    "DriverLauncher",
    "ExitedBeforeReadyError",
    "InitializationFailedError",
    "LogMirror",
    "LogRedirectError",
    "OutputFanout",
    "ProcessSupervisor",
    "Ready",
    "SpawnFailedError",
    "StartAbortedError",
    "StartError",
    "StartTimeoutError",
    "StdinMode",
    "StreamDecoder",
    "SupervisorConfig",
    "SupervisorState",
    "detect_encoding",
]
