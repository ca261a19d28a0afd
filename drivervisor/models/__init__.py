"""Data models for drivervisor."""

from drivervisor.models.service_config import (
    DriverServiceConfig,
    ServiceConfigError,
    load_service_config,
    parse_service_config,
)

__all__ = [
    "DriverServiceConfig",
    "ServiceConfigError",
    "load_service_config",
    "parse_service_config",
]
