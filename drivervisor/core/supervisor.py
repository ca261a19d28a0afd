"""
Process supervisor for an external driver executable.

Spawns the driver without a shell, watches its output for a readiness or
failure marker, mirrors output into a log file on request, and kills the
driver on shutdown. Each supervisor owns exactly one child process.
"""

from __future__ import annotations

import asyncio
import logging
import subprocess
import sys
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Sequence

from drivervisor.core.decoding import AUTO, StreamDecoder
from drivervisor.core.fanout import LogMirror, OutputFanout

logger = logging.getLogger(__name__)

IS_WINDOWS = sys.platform == "win32"

READ_CHUNK_SIZE = 4096
EXIT_POLL_INTERVAL = 0.05
# Seconds the pipe readers get to flush after the driver exited
EXIT_DRAIN_TIMEOUT = 1.0

# The driver prints one of these once it accepts sessions. Older builds
# write UTF-16LE and ask for ENTER, newer ones announce the listener.
DEFAULT_READY_MARKERS = ["listening for requests", "Press ENTER to exit."]
DEFAULT_FAILURE_MARKERS = ["Failed to initialize"]


class SupervisorState(Enum):
    """Lifecycle state of a supervised driver."""

    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    STOPPED = "stopped"
    FAILED = "failed"


class StdinMode(Enum):
    """How the driver's standard input is wired."""

    PIPE = "pipe"  # Held open, never written
    IGNORE = "ignore"  # /dev/null


class StartError(RuntimeError):
    """Base class for everything that can go wrong in ProcessSupervisor.start()."""


class SpawnFailedError(StartError):
    """The executable could not be launched at all."""

    def __init__(self, command: str, reason: OSError):
        self.command = command
        self.reason = reason
        super().__init__(f"Failed to spawn driver '{command}': {reason}")


class InitializationFailedError(StartError):
    """The driver reported that it could not initialize."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(f"Driver failed to initialize: {message}")


class ExitedBeforeReadyError(StartError):
    """The driver exited before printing a readiness marker."""

    def __init__(self, exit_code: int | None):
        self.exit_code = exit_code
        super().__init__(f"Driver exited before it was ready (exit code: {exit_code})")


class StartTimeoutError(StartError):
    """No readiness marker arrived within the configured deadline."""

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"Driver was not ready within {timeout}s")


class AlreadyStartedError(StartError):
    """start() was called on a supervisor that is not idle."""

    def __init__(self, state: SupervisorState):
        self.state = state
        super().__init__(
            f"Supervisor cannot start from state '{state.value}'; "
            "create a new supervisor to launch the driver again"
        )


class StartAbortedError(StartError):
    """stop() was called while start() was still waiting for the driver."""

    def __init__(self) -> None:
        super().__init__("Driver start aborted by stop()")


@dataclass
class Ready:
    """Successful outcome of start()."""

    pid: int
    marker: str
    elapsed: float


@dataclass
class SupervisorConfig:
    """Configuration for the ProcessSupervisor."""

    stdin: StdinMode = StdinMode.PIPE
    encoding: str = AUTO
    ready_markers: list[str] = field(
        default_factory=lambda: list(DEFAULT_READY_MARKERS)
    )
    failure_markers: list[str] = field(
        default_factory=lambda: list(DEFAULT_FAILURE_MARKERS)
    )
    # None waits forever
    start_timeout: float | None = 60.0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SupervisorConfig":
        """Create config from dictionary."""
        config = cls()

        if "stdin" in data:
            config.stdin = StdinMode(data["stdin"])
        if "encoding" in data:
            config.encoding = str(data["encoding"])
        if "ready_markers" in data:
            config.ready_markers = list(data["ready_markers"])
        if "failure_markers" in data:
            config.failure_markers = list(data["failure_markers"])
        if "start_timeout" in data:
            timeout = data["start_timeout"]
            config.start_timeout = float(timeout) if timeout is not None else None

        return config


def _build_subprocess_kwargs() -> dict[str, Any]:
    """Detach the driver from our console so Ctrl-C reaches us, not it."""
    if IS_WINDOWS:
        return {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}
    return {"start_new_session": True}


class ProcessSupervisor:
    """
    Supervises a single driver process.

    start() resolves on the first of: a readiness marker (Ready), a failure
    marker (InitializationFailedError), the driver exiting
    (ExitedBeforeReadyError) or the start timeout (StartTimeoutError).
    Output keeps being drained after that, so a log file attached later
    still receives everything from the point of attachment.
    """

    def __init__(
        self,
        command: str | Path,
        args: Sequence[str] | None = None,
        config: SupervisorConfig | None = None,
    ):
        """
        Initialize the supervisor.

        Args:
            command: Path or name of the driver executable
            args: Arguments passed verbatim to the driver
            config: Supervisor configuration (uses defaults if not provided)
        """
        self.command = str(command)
        self.args = list(args or [])
        self.config = config or SupervisorConfig()

        # Validate the codec up front rather than on the first output chunk
        StreamDecoder(self.config.encoding)

        self._state = SupervisorState.IDLE
        self._process: asyncio.subprocess.Process | None = None
        self._exit_code: int | None = None
        self._started_at = 0.0

        self._fanout = OutputFanout()
        self._mirror: LogMirror | None = None
        self._outcome: asyncio.Future[Ready] | None = None
        self._readers: list[asyncio.Task[None]] = []
        self._watcher: asyncio.Task[None] | None = None

        self._decoders: dict[str, StreamDecoder] = {}
        self._tails: dict[str, str] = {}

    @property
    def state(self) -> SupervisorState:
        return self._state

    @property
    def process(self) -> asyncio.subprocess.Process | None:
        """The live driver process, exposed only while it is running."""
        if self._state is SupervisorState.RUNNING:
            return self._process
        return None

    @property
    def pid(self) -> int | None:
        process = self.process
        return process.pid if process else None

    @property
    def exit_code(self) -> int | None:
        return self._exit_code

    @property
    def log_file(self) -> Path | None:
        return self._mirror.path if self._mirror else None

    async def start(self) -> Ready:
        """
        Launch the driver and wait until it is ready.

        Returns:
            Ready with the pid and the marker that was matched

        Raises:
            AlreadyStartedError: If the supervisor is not idle
            SpawnFailedError: If the executable cannot be launched
            InitializationFailedError: If the driver printed a failure marker
            ExitedBeforeReadyError: If the driver exited first
            StartTimeoutError: If nothing happened within config.start_timeout
            StartAbortedError: If stop() was called in the meantime
        """
        if self._state is not SupervisorState.IDLE:
            raise AlreadyStartedError(self._state)

        self._state = SupervisorState.STARTING
        logger.debug(f"spawn CLI process: {self.command} {' '.join(self.args)}")

        stdin = (
            asyncio.subprocess.PIPE
            if self.config.stdin is StdinMode.PIPE
            else asyncio.subprocess.DEVNULL
        )
        try:
            process = await asyncio.create_subprocess_exec(
                self.command,
                *self.args,
                stdin=stdin,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                **_build_subprocess_kwargs(),
            )
        except OSError as e:
            if self._state is SupervisorState.STARTING:
                self._state = SupervisorState.FAILED
            self._close_mirror()
            raise SpawnFailedError(self.command, e) from e

        if self._state is not SupervisorState.STARTING:
            # stop() ran while the spawn was in flight
            self._kill(process)
            await process.wait()
            raise StartAbortedError()

        self._process = process
        self._started_at = time.monotonic()
        self._outcome = asyncio.get_running_loop().create_future()
        self._fanout.subscribe(self._match_markers)
        self._readers = [
            asyncio.create_task(self._pump("stdout", process.stdout)),
            asyncio.create_task(self._pump("stderr", process.stderr)),
        ]
        self._watcher = asyncio.create_task(self._watch_exit(process))

        try:
            return await asyncio.wait_for(
                asyncio.shield(self._outcome),
                timeout=self.config.start_timeout,
            )
        except asyncio.TimeoutError:
            error = StartTimeoutError(self.config.start_timeout)
            if not self._settle(error):
                # Lost the race against another trigger; report that one
                return self._outcome.result()
            self._fail(process)
            raise error from None

    def attach_log_file(self, path: Path | str) -> Path:
        """
        Mirror stdout and stderr of the driver into a file.

        The file and its directories are created and truncated right away.
        Before start() the mirror waits for the driver; after the driver is
        gone only the empty file is left behind. Calling this again replaces
        the previous mirror.

        Returns:
            The resolved path of the log file

        Raises:
            LogRedirectError: If the file cannot be created
        """
        mirror = LogMirror(path).open()
        self._close_mirror()

        if self._state in (SupervisorState.STOPPED, SupervisorState.FAILED):
            logger.debug(f"Driver is not running; leaving empty log at {mirror.path}")
            mirror.close()
            return mirror.path

        self._mirror = mirror
        self._fanout.subscribe(mirror)
        return mirror.path

    def stop(self) -> None:
        """
        Kill the driver if it is alive. Safe to call any number of times.

        Does not wait for the process to exit; use wait() for that.
        """
        process, self._process = self._process, None

        if self._state is not SupervisorState.FAILED:
            self._state = SupervisorState.STOPPED
        self._settle(StartAbortedError())

        if process is not None and process.returncode is None:
            logger.debug(f"Driver (pid: {process.pid}) is killed")
            self._kill(process)

        self._close_mirror()

    async def wait(self) -> int | None:
        """Wait until the driver process has exited and return its exit code."""
        if self._watcher is not None:
            await asyncio.shield(self._watcher)
        return self._exit_code

    def _settle(self, outcome: Ready | StartError) -> bool:
        """Resolve start() unless another trigger already did."""
        if self._outcome is None or self._outcome.done():
            return False

        self._fanout.unsubscribe(self._match_markers)
        if isinstance(outcome, Ready):
            self._outcome.set_result(outcome)
        else:
            self._outcome.set_exception(outcome)
        return True

    def _fail(self, process: asyncio.subprocess.Process) -> None:
        self._state = SupervisorState.FAILED
        self._process = None
        self._kill(process)

    def _kill(self, process: asyncio.subprocess.Process) -> None:
        if process.stdin is not None:
            process.stdin.close()
        if process.returncode is not None:
            return
        try:
            process.kill()
        except ProcessLookupError:
            pass

    def _close_mirror(self) -> None:
        if self._mirror is None:
            return
        self._fanout.unsubscribe(self._mirror)
        self._mirror.close()
        self._mirror = None

    async def _pump(self, name: str, stream: asyncio.StreamReader | None) -> None:
        """Read one pipe until EOF and hand every chunk to the fan-out."""
        if stream is None:
            return
        while True:
            chunk = await stream.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            self._fanout.publish(name, chunk)
        self._flush_decoder(name)

    async def _wait_for_exit(self, process: asyncio.subprocess.Process) -> int:
        """
        Return the exit code as soon as the driver itself is gone.

        process.wait() may not return while a descendant still holds the
        driver's pipes, so the return code is polled instead.
        """
        while process.returncode is None:
            await asyncio.sleep(EXIT_POLL_INTERVAL)
        return process.returncode

    async def _watch_exit(self, process: asyncio.subprocess.Process) -> None:
        exit_code = await self._wait_for_exit(process)
        self._exit_code = exit_code

        # Let the readers catch output written just before exit, so it is
        # matched before the exit itself is reported
        done, pending = await asyncio.wait(self._readers, timeout=EXIT_DRAIN_TIMEOUT)
        for task in done:
            if not task.cancelled() and task.exception() is not None:
                logger.warning(f"Reading driver output failed: {task.exception()!r}")
        if pending:
            # A descendant still holds the pipes
            logger.debug(f"Driver (pid: {process.pid}) exited with its output still open")
            for task in pending:
                task.cancel()
        self._close_mirror()

        if self._settle(ExitedBeforeReadyError(exit_code)):
            logger.debug(f"Driver exited before it was ready (exit code: {exit_code})")
            self._fail(process)
        elif self._state is SupervisorState.RUNNING:
            logger.warning(
                f"Driver (pid: {process.pid}) exited unexpectedly (exit code: {exit_code})"
            )
            self._fail(process)

    def _flush_decoder(self, stream: str) -> None:
        """Decode whatever the stream's decoder still buffers once it hits EOF."""
        decoder = self._decoders.get(stream)
        if decoder is None or self._outcome is None or self._outcome.done():
            return
        self._scan(stream, decoder.decode(b"", final=True))

    def _match_markers(self, stream: str, data: bytes) -> None:
        decoder = self._decoders.get(stream)
        if decoder is None:
            decoder = self._decoders[stream] = StreamDecoder(self.config.encoding)
        self._scan(stream, decoder.decode(data))

    def _scan(self, stream: str, fresh: str) -> None:
        if not fresh:
            return
        if stream == "stderr":
            logger.warning(f"Driver stderr: {fresh.rstrip()}")

        text = self._tails.get(stream, "") + fresh
        hit = self._earliest_marker(text)
        if hit is None:
            longest = max(
                (len(m) for m in self.config.ready_markers + self.config.failure_markers),
                default=1,
            )
            self._tails[stream] = text[-(longest - 1):] if longest > 1 else ""
            return

        index, marker, failed = hit
        process = self._process
        if failed:
            message = _line_at(text, index)
            if self._settle(InitializationFailedError(message)) and process:
                self._fail(process)
            return

        if process is None:
            return
        ready = Ready(
            pid=process.pid,
            marker=marker,
            elapsed=time.monotonic() - self._started_at,
        )
        if self._settle(ready):
            self._state = SupervisorState.RUNNING
            logger.debug(f"Driver started with ID: {process.pid}")

    def _earliest_marker(self, text: str) -> tuple[int, str, bool] | None:
        """Find the first marker in text; failure wins a tie."""
        best: tuple[int, str, bool] | None = None
        candidates = [(m, True) for m in self.config.failure_markers]
        candidates += [(m, False) for m in self.config.ready_markers]
        for marker, failed in candidates:
            if not marker:
                continue
            index = text.find(marker)
            if index != -1 and (best is None or index < best[0]):
                best = (index, marker, failed)
        return best


def _line_at(text: str, index: int) -> str:
    """Return the stripped line of text that contains position index."""
    start = text.rfind("\n", 0, index) + 1
    end = text.find("\n", index)
    if end == -1:
        end = len(text)
    return text[start:end].strip()
