"""
Test-runner service that launches the driver around a test session.

The host calls on_prepare() once before the session and on_complete() once
after it. Everything process related is delegated to ProcessSupervisor.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Any

from drivervisor.core.fanout import LogRedirectError
from drivervisor.core.supervisor import ProcessSupervisor, Ready
from drivervisor.models.service_config import (
    LOG_FILE_NAME,
    DriverServiceConfig,
    parse_service_config,
)

logger = logging.getLogger(__name__)


def _output_dir(host_config: dict[str, Any] | None) -> str | None:
    """Output directory of the host config, in either key spelling."""
    if not host_config:
        return None
    return host_config.get("output_dir") or host_config.get("outputDir")


class DriverLauncher:
    """
    Launcher service for the Windows Application Driver.

    On platforms outside ``options.platforms`` the service does nothing
    except say so once.
    """

    def __init__(
        self,
        options: DriverServiceConfig | dict[str, Any] | None = None,
        capabilities: dict[str, Any] | None = None,
        host_config: dict[str, Any] | None = None,
        platform: str | None = None,
    ):
        if not isinstance(options, DriverServiceConfig):
            options = parse_service_config(options)
        self.options = options
        self.capabilities = capabilities or {}
        self.platform = platform or sys.platform

        self.log_path: str | None = options.log_path or _output_dir(host_config)

        self.supervisor = ProcessSupervisor(
            options.command,
            options.args,
            options.to_supervisor_config(),
        )
        self.ready: Ready | None = None
        self.log_error: LogRedirectError | None = None

    @property
    def supported(self) -> bool:
        return self.platform in self.options.platforms

    async def on_prepare(
        self,
        host_config: dict[str, Any] | None = None,
        capabilities: list[dict[str, Any]] | None = None,
    ) -> Ready | None:
        """
        Start the driver before the session.

        Start failures propagate and abort the session. A log file that
        cannot be written is reported through ``log_error`` and a warning;
        the driver keeps running without it.
        """
        if not self.supported:
            logger.info(
                f"Driver service is ignored on platform '{self.platform}' "
                f"(supported: {', '.join(self.options.platforms)})"
            )
            return None

        if self.log_path is None:
            self.log_path = _output_dir(host_config)

        self.ready = await self.supervisor.start()

        if self.log_path is not None:
            try:
                self.supervisor.attach_log_file(Path(self.log_path) / LOG_FILE_NAME)
            except LogRedirectError as e:
                self.log_error = e
                logger.warning(f"{e}; continuing without a driver log")

        return self.ready

    def on_complete(self, *args: Any, **kwargs: Any) -> None:
        """Stop the driver after the session."""
        self.supervisor.stop()
