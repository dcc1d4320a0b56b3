"""
Configuration settings for ChartFleet.
"""

import os
from pathlib import Path
from typing import List, Literal, Optional, Union

import yaml
from pydantic import BaseModel, Field

DEFAULT_CONFIG_PATH = "/etc/chartfleet/config.yml"


def default_config_path() -> str:
    """Config path from CHARTFLEET_CONFIG, falling back to the system location."""
    return os.environ.get("CHARTFLEET_CONFIG", DEFAULT_CONFIG_PATH)


class StoreConfig(BaseModel):
    """Resource store backend."""

    backend: Literal["memory", "kubernetes"] = Field(
        "memory", description="Where ChartDeployments, ClusterReleases and Clusters live"
    )
    snapshot_path: Optional[str] = Field(
        None, description="JSON file persisting the memory backend, unset keeps it in memory"
    )
    in_cluster: bool = Field(False, description="Use the in-cluster service account")
    context: Optional[str] = Field(None, description="kubeconfig context name")
    api_group: str = Field("chartfleet.io", description="API group of ChartFleet resources")
    api_version: str = Field("v1alpha1", description="API version of ChartFleet resources")
    cluster_api_group: str = Field("cluster.x-k8s.io", description="API group of Clusters")
    cluster_api_version: str = Field("v1beta1", description="API version of Clusters")


class ControllerConfig(BaseModel):
    """Work queue and worker pool."""

    max_concurrent_reconciles: int = Field(10, ge=1, description="Worker pool size")
    requeue_after_seconds: float = Field(
        10.0, gt=0, description="Delay before a pass that asked for requeue runs again"
    )
    backoff_base_seconds: float = Field(0.5, gt=0, description="First retry delay after an error")
    backoff_max_seconds: float = Field(300.0, gt=0, description="Retry delay ceiling")
    resync_interval_seconds: float = Field(
        300.0, gt=0, description="Interval for enqueueing every ChartDeployment"
    )
    namespaces: List[str] = Field(
        default_factory=list, description="Namespaces to reconcile, empty means all"
    )


class APIConfig(BaseModel):
    """Status API server."""

    enabled: bool = Field(True)
    host: str = Field("127.0.0.1")
    port: int = Field(8890)


class LoggingConfig(BaseModel):
    """Log destinations and levels."""

    log_dir: str = Field("/var/log/chartfleet")
    console_level: str = Field("INFO")
    file_level: str = Field("DEBUG")
    use_json: bool = Field(False, description="Write JSON lines to log files")


class AuditConfig(BaseModel):
    """Rollout audit trail."""

    enabled: bool = Field(True)
    path: str = Field("/var/log/chartfleet/audit.jsonl")


class ChartFleetConfig(BaseModel):
    """Complete ChartFleet configuration."""

    store: StoreConfig = Field(default_factory=StoreConfig)
    controller: ControllerConfig = Field(default_factory=ControllerConfig)
    api: APIConfig = Field(default_factory=APIConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    audit: AuditConfig = Field(default_factory=AuditConfig)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "ChartFleetConfig":
        """
        Load configuration from a YAML file.

        A missing file yields the defaults.

        Args:
            path: YAML file path

        Returns:
            Validated configuration
        """
        config_path = Path(path)
        if not config_path.exists():
            return cls()

        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}

        return cls.model_validate(data)

    def save(self, path: Union[str, Path]) -> None:
        """Write configuration to a YAML file."""
        config_path = Path(path)
        config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(config_path, "w") as f:
            yaml.safe_dump(self.model_dump(), f, default_flow_style=False, sort_keys=False)
