"""Create, update and delete the CronJobs derived from CronJobTriggers."""

from __future__ import annotations

import copy
from typing import Any

from kubernetes import client

from ..builders.cronjob_builder import has_default_label
from ..errors import CronJobConflict


def _as_dict(batch_api: client.BatchV1Api, obj: Any) -> dict[str, Any]:
    if isinstance(obj, dict):
        return copy.deepcopy(obj)
    return batch_api.api_client.sanitize_for_serialization(obj)


def ensure_cronjob(batch_api: client.BatchV1Api, manifest: dict[str, Any]) -> str:
    """Create the CronJob, or bring an existing operator-owned one in line.

    Returns ``"created"`` or ``"updated"``.

    Raises:
        CronJobConflict: a CronJob of the same name exists without the
            ownership label. It is left untouched.
    """
    namespace = manifest["metadata"]["namespace"]
    name = manifest["metadata"]["name"]

    try:
        batch_api.create_namespaced_cron_job(namespace=namespace, body=manifest)
        return "created"
    except client.exceptions.ApiException as e:
        if e.status != 409:
            raise

    try:
        existing = batch_api.read_namespaced_cron_job(name=name, namespace=namespace)
    except client.exceptions.ApiException as e:
        if e.status == 404:
            # Deleted between the create attempt and the read
            batch_api.create_namespaced_cron_job(namespace=namespace, body=manifest)
            return "created"
        raise

    current = _as_dict(batch_api, existing)
    metadata = current.setdefault("metadata", {})
    if not has_default_label(metadata.get("labels")):
        raise CronJobConflict(namespace, name)

    metadata["labels"] = copy.deepcopy(manifest["metadata"]["labels"])
    metadata["ownerReferences"] = copy.deepcopy(manifest["metadata"]["ownerReferences"])
    current["spec"] = copy.deepcopy(manifest["spec"])
    batch_api.replace_namespaced_cron_job(name=name, namespace=namespace, body=current)
    return "updated"


def delete_cronjob(
    batch_api: client.BatchV1Api, namespace: str, name: str, owner_uid: str | None
) -> str:
    """Delete an operator-owned CronJob.

    CronJobs without the ownership label, or whose owner reference points at
    another trigger, are not touched. Returns ``"deleted"``, ``"absent"`` or
    ``"skipped"``.
    """
    try:
        existing = batch_api.read_namespaced_cron_job(name=name, namespace=namespace)
    except client.exceptions.ApiException as e:
        if e.status == 404:
            return "absent"
        raise

    metadata = _as_dict(batch_api, existing).get("metadata") or {}
    if not has_default_label(metadata.get("labels")):
        return "skipped"
    owner_uids = {ref.get("uid") for ref in metadata.get("ownerReferences") or []}
    if owner_uids and owner_uid not in owner_uids:
        return "skipped"

    try:
        batch_api.delete_namespaced_cron_job(
            name=name,
            namespace=namespace,
            propagation_policy="Background",
        )
    except client.exceptions.ApiException as e:
        if e.status == 404:
            return "absent"
        raise
    return "deleted"
