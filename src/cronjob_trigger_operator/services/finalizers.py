"""Add and remove the operator finalizer on CronJobTriggers."""

from __future__ import annotations

import copy
from typing import Any

from kubernetes import client

from ..constants import API_GROUP, API_VERSION, FINALIZER, TRIGGER_PLURAL


def has_finalizer(trigger: dict[str, Any]) -> bool:
    return FINALIZER in ((trigger.get("metadata") or {}).get("finalizers") or [])


def add_finalizer(custom_api: client.CustomObjectsApi, trigger: dict[str, Any]) -> dict[str, Any]:
    """Persist a copy of ``trigger`` carrying the finalizer.

    The cached object passed in is never modified.
    """
    clone = copy.deepcopy(trigger)
    metadata = clone.setdefault("metadata", {})
    finalizers = list(metadata.get("finalizers") or [])
    if FINALIZER not in finalizers:
        finalizers.append(FINALIZER)
    metadata["finalizers"] = finalizers
    return _update_trigger(custom_api, clone)


def remove_finalizer(
    custom_api: client.CustomObjectsApi, trigger: dict[str, Any]
) -> dict[str, Any]:
    """Persist a copy of ``trigger`` without the finalizer."""
    clone = copy.deepcopy(trigger)
    metadata = clone.setdefault("metadata", {})
    finalizers = [f for f in metadata.get("finalizers") or [] if f != FINALIZER]
    metadata["finalizers"] = finalizers or None
    return _update_trigger(custom_api, clone)


def _update_trigger(custom_api: client.CustomObjectsApi, trigger: dict[str, Any]) -> dict[str, Any]:
    # A full replace carries metadata.resourceVersion, so a concurrent
    # writer makes this fail with 409 and the key is retried.
    metadata = trigger["metadata"]
    return custom_api.replace_namespaced_custom_object(
        group=API_GROUP,
        version=API_VERSION,
        namespace=metadata["namespace"],
        plural=TRIGGER_PLURAL,
        name=metadata["name"],
        body=trigger,
    )
