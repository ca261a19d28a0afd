"""
Fan-out of child process output to independent consumers.

The supervisor owns the only readers of the child's pipes. Every chunk it
reads is handed to each subscriber in turn, so the readiness matcher and the
log mirror never compete for the same bytes.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import BinaryIO, Callable

logger = logging.getLogger(__name__)

# (stream name, raw chunk)
OutputListener = Callable[[str, bytes], None]


class LogRedirectError(OSError):
    """Raised when the driver log file cannot be created or opened."""

    def __init__(self, path: Path, reason: OSError):
        self.path = path
        self.reason = reason
        super().__init__(f"Cannot write driver log {path}: {reason}")
        self.errno = reason.errno


class OutputFanout:
    """Deliver each output chunk to every registered listener, in arrival order."""

    def __init__(self) -> None:
        self._listeners: list[OutputListener] = []

    def subscribe(self, listener: OutputListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: OutputListener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def __len__(self) -> int:
        return len(self._listeners)

    def publish(self, stream: str, data: bytes) -> None:
        # Copy so listeners may unsubscribe themselves while being called
        for listener in list(self._listeners):
            listener(stream, data)


class LogMirror:
    """
    Passive copy of stdout and stderr into a single log file.

    The file is created (with its parent directories) and truncated as soon
    as the mirror is opened, even if no output ever arrives. Chunks go into
    the file object's buffer and reach the disk when it fills or the mirror
    is closed, so the pipe readers never wait on a flush. Write failures
    close the mirror and are logged; they never reach the child's readers.
    """

    def __init__(self, path: Path | str):
        self.path = Path(path).resolve()
        self.error: OSError | None = None
        self.bytes_written = 0
        self._handle: BinaryIO | None = None

    @property
    def closed(self) -> bool:
        return self._handle is None

    def open(self) -> "LogMirror":
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._handle = open(self.path, "wb")
        except OSError as e:
            raise LogRedirectError(self.path, e) from e
        logger.debug(f"Driver logs written to: {self.path}")
        return self

    def __call__(self, stream: str, data: bytes) -> None:
        if self._handle is None:
            return
        try:
            self._handle.write(data)
            self.bytes_written += len(data)
        except OSError as e:
            self.error = e
            logger.warning(f"Stopped mirroring driver output to {self.path}: {e}")
            self.close()

    def close(self) -> None:
        if self._handle is None:
            return
        handle, self._handle = self._handle, None
        try:
            handle.close()
        except OSError as e:
            self.error = e
            logger.warning(f"Failed to close driver log {self.path}: {e}")
