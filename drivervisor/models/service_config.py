"""
Driver service configuration models.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from drivervisor.core.decoding import AUTO, StreamDecoder
from drivervisor.core.supervisor import (
    DEFAULT_FAILURE_MARKERS,
    DEFAULT_READY_MARKERS,
    StdinMode,
    SupervisorConfig,
)

logger = logging.getLogger(__name__)

LOG_FILE_NAME = "winappdriver.log"
WINAPPDRIVER_BIN = r"c:\Program Files (x86)\Windows Application Driver\WinAppDriver.exe"


class DriverServiceConfig(BaseModel):
    """
    Options for the driver service, usually loaded from YAML.

    Accepts the camelCase keys used by test-runner configs
    (``logPath``, ``startTimeout``, ...) as well as snake_case.
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    command: str = Field(
        default=WINAPPDRIVER_BIN,
        min_length=1,
        description="Driver executable (absolute path or name on PATH)",
    )
    args: list[str] = Field(default_factory=list, description="Arguments passed verbatim to the driver")
    log_path: str | None = Field(
        default=None,
        alias="logPath",
        description=f"Directory for {LOG_FILE_NAME}; defaults to the host's output directory",
    )
    stdin: Literal["pipe", "ignore"] = Field(default="pipe")
    encoding: str = Field(
        default=AUTO,
        description="Codec of the driver output, or 'auto' to detect UTF-8/UTF-16LE",
    )
    ready_markers: list[str] = Field(
        default_factory=lambda: list(DEFAULT_READY_MARKERS),
        alias="readyMarkers",
        min_length=1,
    )
    failure_markers: list[str] = Field(
        default_factory=lambda: list(DEFAULT_FAILURE_MARKERS),
        alias="failureMarkers",
    )
    start_timeout: float | None = Field(
        default=60.0,
        gt=0,
        alias="startTimeout",
        description="Seconds to wait for readiness (null waits forever)",
    )
    platforms: list[str] = Field(
        default_factory=lambda: ["win32"],
        description="sys.platform values on which the driver is launched",
    )

    @field_validator("encoding")
    @classmethod
    def _known_encoding(cls, value: str) -> str:
        try:
            StreamDecoder(value)
        except LookupError:
            raise ValueError(f"unknown encoding '{value}'") from None
        return value

    @field_validator("ready_markers", "failure_markers")
    @classmethod
    def _non_empty_markers(cls, value: list[str]) -> list[str]:
        if any(not marker for marker in value):
            raise ValueError("markers cannot be empty strings")
        return value

    def to_supervisor_config(self) -> SupervisorConfig:
        return SupervisorConfig(
            stdin=StdinMode(self.stdin),
            encoding=self.encoding,
            ready_markers=list(self.ready_markers),
            failure_markers=list(self.failure_markers),
            start_timeout=self.start_timeout,
        )


class ServiceConfigError(Exception):
    """Raised when a service configuration is invalid, with a user-friendly message."""

    def __init__(self, source: str, issues: list[str]):
        self.source = source
        self.issues = issues
        msg = f"Invalid driver service configuration in {source}:\n" + "\n".join(
            f"  - {issue}" for issue in issues
        )
        super().__init__(msg)


def _friendly_validation_errors(source: str, exc: ValidationError) -> ServiceConfigError:
    """Convert Pydantic ValidationError to a user-friendly ServiceConfigError."""
    issues: list[str] = []
    for error in exc.errors():
        loc = ".".join(str(x) for x in error["loc"])
        msg = error["msg"]
        err_type = error["type"]

        if err_type == "extra_forbidden":
            issues.append(f"{loc}: unknown option")
        elif err_type == "literal_error":
            allowed = error.get("ctx", {}).get("expected", "")
            issues.append(f"{loc}: must be one of {allowed}")
        elif err_type == "string_too_short":
            issues.append(f"{loc} cannot be empty")
        else:
            issues.append(f"{loc}: {msg}")

    return ServiceConfigError(source, issues)


def parse_service_config(data: dict | None, source: str = "<options>") -> DriverServiceConfig:
    """
    Validate raw service options.

    Raises:
        ServiceConfigError: If the options are invalid (with friendly messages)
    """
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ServiceConfigError(source, ["expected a mapping of options"])

    try:
        return DriverServiceConfig(**data)
    except ValidationError as e:
        raise _friendly_validation_errors(source, e) from e


def load_service_config(path: Path | str) -> DriverServiceConfig:
    """
    Load and validate a service configuration from YAML.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ServiceConfigError: If the YAML is invalid (with friendly messages)
    """
    config_path = Path(path)

    with open(config_path) as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ServiceConfigError(str(config_path), [f"YAML syntax error: {e}"]) from e

    if data is None:
        raise ServiceConfigError(str(config_path), ["YAML file is empty"])

    logger.debug(f"Loaded driver service config from {config_path}")
    return parse_service_config(data, source=str(config_path))
