"""Configuration data structures."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum


class FailurePolicy(StrEnum):
    """What to do when a resource tracker fails."""

    FATAL = "fatal"
    DEGRADE = "degrade"


@dataclass
class ResourceWatchConfig:
    """Custom resource watch configuration."""

    group: str = "camel.apache.org"
    version: str = "v1"
    plural: str = "integrations"
    namespace: str = ""
    timeout_seconds: int = 300


@dataclass
class PodWatchConfig:
    """Pod watch and log-following configuration."""

    label_selector: str = "camel.apache.org/integration"
    namespace: str = ""
    timeout_seconds: int = 300
    kubectl: str = "kubectl"
    pod_running_timeout: str = "5m"


@dataclass
class OutputConfig:
    """Output directory configuration."""

    base_dir: str = "./kpersist-logs"


@dataclass
class TrackerConfig:
    """Resource change tracker configuration."""

    inbox_capacity: int = 10
    failure_policy: FailurePolicy = FailurePolicy.FATAL


@dataclass
class LogConfig:
    """Logging configuration."""

    level: str = "info"
    format: str = "json"


@dataclass
class KPersistConfig:
    """Top-level kpersist configuration."""

    kubeconfig: str = ""
    resources: ResourceWatchConfig = field(default_factory=ResourceWatchConfig)
    pods: PodWatchConfig = field(default_factory=PodWatchConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    tracker: TrackerConfig = field(default_factory=TrackerConfig)
    log: LogConfig = field(default_factory=LogConfig)
