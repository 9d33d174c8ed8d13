"""Environment configuration for the operator and the varnish-controller sidecar.

Every field is read by an explicit reader so a missing or malformed variable
fails with a ConfigurationError naming it.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass

from labels import format_selector, parse_selector
from models import ConfigurationError

_MISSING = object()

LOG_LEVELS = {"debug", "info", "warning", "error", "critical"}
LOG_FORMATS = {"json", "console"}


def env_str(environ: Mapping[str, str], name: str, default: object = _MISSING) -> str:
    raw = environ.get(name)
    if raw is None or raw.strip() == "":
        if default is _MISSING:
            raise ConfigurationError(f"{name} is required")
        return str(default)
    return raw.strip()


def env_int(
    environ: Mapping[str, str],
    name: str,
    default: object = _MISSING,
    *,
    minimum: int | None = None,
    maximum: int | None = None,
) -> int:
    raw = env_str(environ, name, default)
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be an integer, got: {raw!r}") from exc

    if minimum is not None and value < minimum:
        raise ConfigurationError(f"{name} must be >= {minimum}, got: {value}")
    if maximum is not None and value > maximum:
        raise ConfigurationError(f"{name} must be <= {maximum}, got: {value}")
    return value


def env_choice(
    environ: Mapping[str, str], name: str, choices: set[str], default: object = _MISSING
) -> str:
    value = env_str(environ, name, default).lower()
    if value not in choices:
        raise ConfigurationError(
            f"{name} must be one of {sorted(choices)}, got: {value!r}"
        )
    return value


def env_selector(environ: Mapping[str, str], name: str) -> dict[str, str]:
    raw = env_str(environ, name)
    selector = parse_selector(raw)
    if not selector:
        raise ConfigurationError(
            f"{name} must contain at least one key=value pair, got: {raw!r}"
        )
    return selector


def log_level_number(level: str) -> int:
    """Map a configured level name to its ``logging`` constant."""
    return getattr(logging, level.upper(), logging.INFO)


@dataclass(frozen=True)
class OperatorConfig:
    """Settings of the operator process."""

    watch_namespace: str = ""
    metrics_port: int = 9090
    varnish_image: str = "varnish:6.6"
    varnish_controller_image: str = "varnish-controller:latest"
    default_replicas: int = 1
    retry_delay_seconds: int = 60
    conflict_retry_delay_seconds: int = 1
    log_level: str = "info"
    log_format: str = "json"

    @classmethod
    def from_env(cls, environ: Mapping[str, str]) -> "OperatorConfig":
        """Read the operator settings from ``environ``."""
        defaults = cls()
        return cls(
            watch_namespace=env_str(environ, "WATCH_NAMESPACE", ""),
            metrics_port=env_int(
                environ, "METRICS_PORT", defaults.metrics_port, minimum=1, maximum=65535
            ),
            varnish_image=env_str(environ, "VARNISH_IMAGE", defaults.varnish_image),
            varnish_controller_image=env_str(
                environ, "VARNISH_CONTROLLER_IMAGE", defaults.varnish_controller_image
            ),
            default_replicas=env_int(
                environ, "DEFAULT_REPLICAS", defaults.default_replicas, minimum=0
            ),
            retry_delay_seconds=env_int(
                environ, "RETRY_DELAY_SECONDS", defaults.retry_delay_seconds, minimum=1
            ),
            conflict_retry_delay_seconds=env_int(
                environ,
                "CONFLICT_RETRY_DELAY_SECONDS",
                defaults.conflict_retry_delay_seconds,
                minimum=0,
            ),
            log_level=env_choice(environ, "LOG_LEVEL", LOG_LEVELS, defaults.log_level),
            log_format=env_choice(environ, "LOG_FORMAT", LOG_FORMATS, defaults.log_format),
        )


@dataclass(frozen=True)
class ControllerConfig:
    """Settings of the varnish-controller sidecar, injected by the Deployment."""

    endpoint_selector: dict[str, str]
    config_map_name: str
    namespace: str
    pod_name: str
    varnish_cluster_name: str
    varnish_cluster_uid: str
    varnish_cluster_group: str
    varnish_cluster_version: str
    varnish_cluster_kind: str
    log_format: str
    log_level: str
    vcl_dir: str = "/etc/varnish"
    metrics_port: int = 8235
    reload_timeout_seconds: int = 60

    @property
    def endpoint_selector_string(self) -> str:
        return format_selector(self.endpoint_selector)

    @property
    def owner_reference(self) -> dict[str, str]:
        """Minimal object body of the owning VarnishCluster, usable for events."""
        return {
            "apiVersion": f"{self.varnish_cluster_group}/{self.varnish_cluster_version}",
            "kind": self.varnish_cluster_kind,
            "metadata": {
                "name": self.varnish_cluster_name,
                "namespace": self.namespace,
                "uid": self.varnish_cluster_uid,
            },
        }

    @classmethod
    def from_env(cls, environ: Mapping[str, str]) -> "ControllerConfig":
        """Read the sidecar settings from ``environ``."""
        return cls(
            endpoint_selector=env_selector(environ, "ENDPOINT_SELECTOR_STRING"),
            config_map_name=env_str(environ, "CONFIGMAP_NAME"),
            namespace=env_str(environ, "NAMESPACE"),
            pod_name=env_str(environ, "POD_NAME"),
            varnish_cluster_name=env_str(environ, "VARNISH_CLUSTER_NAME"),
            varnish_cluster_uid=env_str(environ, "VARNISH_CLUSTER_UID"),
            varnish_cluster_group=env_str(environ, "VARNISH_CLUSTER_GROUP"),
            varnish_cluster_version=env_str(environ, "VARNISH_CLUSTER_VERSION"),
            varnish_cluster_kind=env_str(environ, "VARNISH_CLUSTER_KIND"),
            log_format=env_choice(environ, "LOG_FORMAT", LOG_FORMATS),
            log_level=env_choice(environ, "LOG_LEVEL", LOG_LEVELS),
            vcl_dir=env_str(environ, "VCL_DIR", "/etc/varnish"),
            metrics_port=env_int(environ, "METRICS_PORT", 8235, minimum=1, maximum=65535),
            reload_timeout_seconds=env_int(
                environ, "VCL_RELOAD_TIMEOUT_SECONDS", 60, minimum=1
            ),
        )
