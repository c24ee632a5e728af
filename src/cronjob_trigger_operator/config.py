"""Cluster-wide settings consumed by the operator."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any

from kubernetes import client

from .constants import (
    CONFIG_BUILDER_IMAGE_SECRET,
    CONFIG_FUNCTIONS_NAMESPACE,
    CONFIG_PROVISION_IMAGE,
    CONFIG_PROVISION_IMAGE_SECRET,
    DEFAULT_KUBELESS_CONFIG,
    DEFAULT_KUBELESS_NAMESPACE,
    KUBELESS_CONFIG_ENV,
    KUBELESS_NAMESPACE_ENV,
    MAX_RETRIES,
    METRICS_PORT_ENV,
    WORKERS_ENV,
)
from .errors import ConfigError


@dataclass(frozen=True)
class ControllerConfig:
    """Settings read once at startup and handed to every component."""

    functions_namespace: str = ""
    provision_image: str = ""
    image_pull_secrets: list[dict[str, str]] = field(default_factory=list)
    workers: int = 1
    max_retries: int = MAX_RETRIES
    metrics_port: int = 8080


def secrets_as_local_object_references(*secrets: str | None) -> list[dict[str, str]]:
    """Convert secret names into a pod imagePullSecrets list, skipping empty ones."""
    refs: list[dict[str, str]] = []
    seen: set[str] = set()
    for secret in secrets:
        if not secret or secret in seen:
            continue
        seen.add(secret)
        refs.append({"name": secret})
    return refs


def _int_from_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from e
    if value < 1:
        raise ConfigError(f"{name} must be at least 1, got {value}")
    return value


def config_from_data(data: dict[str, Any] | None) -> ControllerConfig:
    """Build the controller settings from the settings ConfigMap data."""
    data = data or {}
    return ControllerConfig(
        functions_namespace=data.get(CONFIG_FUNCTIONS_NAMESPACE) or "",
        provision_image=data.get(CONFIG_PROVISION_IMAGE) or "",
        image_pull_secrets=secrets_as_local_object_references(
            data.get(CONFIG_PROVISION_IMAGE_SECRET),
            data.get(CONFIG_BUILDER_IMAGE_SECRET),
        ),
        workers=_int_from_env(WORKERS_ENV, 1),
        metrics_port=_int_from_env(METRICS_PORT_ENV, 8080),
    )


def load_controller_config(core_api: client.CoreV1Api | None = None) -> ControllerConfig:
    """Read the settings ConfigMap.

    Raises:
        ConfigError: the ConfigMap cannot be read or the environment is invalid.
    """
    namespace = os.getenv(KUBELESS_NAMESPACE_ENV) or DEFAULT_KUBELESS_NAMESPACE
    name = os.getenv(KUBELESS_CONFIG_ENV) or DEFAULT_KUBELESS_CONFIG
    core_api = core_api or client.CoreV1Api()

    try:
        config_map = core_api.read_namespaced_config_map(name=name, namespace=namespace)
    except client.exceptions.ApiException as e:
        raise ConfigError(
            f"Unable to read the configmap {namespace}/{name}: {e.status} {e.reason}"
        ) from e

    return config_from_data(config_map.data)
