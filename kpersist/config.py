"""Configuration loading from environment variables."""

from __future__ import annotations

import os
import re

from kpersist.models.config import (
    FailurePolicy,
    KPersistConfig,
    LogConfig,
    OutputConfig,
    PodWatchConfig,
    ResourceWatchConfig,
    TrackerConfig,
)


def _env(key: str, default: str = "") -> str:
    return os.environ.get(f"KPERSIST_{key}", default)


def _env_int(key: str, default: int, min_val: int | None = None, max_val: int | None = None) -> int:
    val = int(_env(key, str(default)))
    if min_val is not None:
        val = max(val, min_val)
    if max_val is not None:
        val = min(val, max_val)
    return val


def _validate_duration(value: str) -> str:
    if not re.match(r"^[0-9]+(s|m|h)$", value):
        raise ValueError(f"Invalid duration format: {value}")
    return value


def _validate_log_level(value: str) -> str:
    valid = {"debug", "info", "warning", "error"}
    if value.lower() not in valid:
        raise ValueError(f"Invalid log level: {value}. Must be one of {valid}")
    return value.lower()


def _validate_log_format(value: str) -> str:
    if value.lower() not in ("json", "console"):
        raise ValueError(f"Invalid log format: {value}. Must be 'json' or 'console'")
    return value.lower()


def _validate_failure_policy(value: str) -> FailurePolicy:
    try:
        return FailurePolicy(value.lower())
    except ValueError:
        valid = {p.value for p in FailurePolicy}
        raise ValueError(f"Invalid tracker failure policy: {value}. Must be one of {valid}") from None


def load_config() -> KPersistConfig:
    """Load configuration from KPERSIST_* environment variables.

    ``KUBECONFIG`` is read unprefixed, the way kubectl reads it.
    """
    namespace = _env("NAMESPACE", "")
    return KPersistConfig(
        kubeconfig=os.environ.get("KUBECONFIG", ""),
        resources=ResourceWatchConfig(
            group=_env("RESOURCE_GROUP", "camel.apache.org"),
            version=_env("RESOURCE_VERSION", "v1"),
            plural=_env("RESOURCE_PLURAL", "integrations"),
            namespace=namespace,
            timeout_seconds=_env_int("WATCH_TIMEOUT", 300, min_val=10, max_val=3600),
        ),
        pods=PodWatchConfig(
            label_selector=_env("POD_LABEL_SELECTOR", "camel.apache.org/integration"),
            namespace=namespace,
            timeout_seconds=_env_int("WATCH_TIMEOUT", 300, min_val=10, max_val=3600),
            kubectl=_env("KUBECTL", "kubectl"),
            pod_running_timeout=_validate_duration(_env("POD_RUNNING_TIMEOUT", "5m")),
        ),
        output=OutputConfig(
            base_dir=_env("OUTPUT_DIR", "./kpersist-logs"),
        ),
        tracker=TrackerConfig(
            inbox_capacity=_env_int("INBOX_CAPACITY", 10, min_val=1, max_val=1000),
            failure_policy=_validate_failure_policy(_env("TRACKER_FAILURE_POLICY", "fatal")),
        ),
        log=LogConfig(
            level=_validate_log_level(_env("LOG_LEVEL", "info")),
            format=_validate_log_format(_env("LOG_FORMAT", "json")),
        ),
    )
