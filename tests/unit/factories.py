"""Builders for CronJobTrigger and Function objects used across unit tests."""

from __future__ import annotations

from typing import Any
from unittest.mock import MagicMock

from cronjob_trigger_operator.informer import ResourceInformer


def make_trigger(
    name: str = "t1",
    namespace: str = "ns",
    function_name: str = "fn1",
    schedule: str = "*/5 * * * *",
    payload: Any = None,
    finalizers: list[str] | None = None,
    deletion_timestamp: str | None = None,
    resource_version: str = "1",
    labels: dict[str, str] | None = None,
    annotations: dict[str, str] | None = None,
) -> dict[str, Any]:
    metadata: dict[str, Any] = {
        "name": name,
        "namespace": namespace,
        "uid": f"uid-{name}",
        "resourceVersion": resource_version,
    }
    if finalizers is not None:
        metadata["finalizers"] = finalizers
    if deletion_timestamp is not None:
        metadata["deletionTimestamp"] = deletion_timestamp
    if labels is not None:
        metadata["labels"] = labels
    if annotations is not None:
        metadata["annotations"] = annotations
    spec: dict[str, Any] = {"function-name": function_name, "schedule": schedule}
    if payload is not None:
        spec["payload"] = payload
    return {
        "apiVersion": "kubeless.io/v1beta1",
        "kind": "CronJobTrigger",
        "metadata": metadata,
        "spec": spec,
    }


def make_function(
    name: str = "fn1",
    namespace: str = "ns",
    timeout: str | None = None,
    ports: list[dict[str, Any]] | None = None,
    labels: dict[str, str] | None = None,
    annotations: dict[str, str] | None = None,
) -> dict[str, Any]:
    metadata: dict[str, Any] = {"name": name, "namespace": namespace, "resourceVersion": "1"}
    if labels is not None:
        metadata["labels"] = labels
    if annotations is not None:
        metadata["annotations"] = annotations
    spec: dict[str, Any] = {}
    if timeout is not None:
        spec["timeout"] = timeout
    if ports is not None:
        spec["service"] = {"ports": ports}
    return {
        "apiVersion": "kubeless.io/v1beta1",
        "kind": "Function",
        "metadata": metadata,
        "spec": spec,
    }


def make_informer(resource: str, items: list[dict[str, Any]] | None = None) -> ResourceInformer:
    informer = ResourceInformer(MagicMock(), {}, resource)
    if items is not None:
        informer.replace(items, "100")
    return informer


