from chartfleet.config.settings import (
    APIConfig,
    AuditConfig,
    ChartFleetConfig,
    ControllerConfig,
    LoggingConfig,
    StoreConfig,
    default_config_path,
)

__all__ = [
    "APIConfig",
    "AuditConfig",
    "ChartFleetConfig",
    "ControllerConfig",
    "LoggingConfig",
    "StoreConfig",
    "default_config_path",
]
