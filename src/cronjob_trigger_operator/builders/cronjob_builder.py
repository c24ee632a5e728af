from __future__ import annotations

import json
import re
from typing import Any

from ..constants import (
    API_GROUP_VERSION,
    CREATED_BY_VALUE,
    CRONJOB_CONTAINER_NAME,
    CRONJOB_NAME_PREFIX,
    DEFAULT_FUNCTION_PORT,
    DEFAULT_TIMEOUT_SECONDS,
    FAILED_JOBS_HISTORY_LIMIT,
    LABEL_CREATED_BY,
    SUCCESSFUL_JOBS_HISTORY_LIMIT,
    TRIGGER_KIND,
)
from ..errors import InvalidFunctionSpec, InvalidPayload

PAYLOAD_CONTENT_TYPE = "application/json"
EVENT_NAMESPACE = "cronjobtrigger.kubeless.io"

_INTEGER_RE = re.compile(r"[+-]?[0-9]+")


def cronjob_name_for(function_name: str) -> str:
    return f"{CRONJOB_NAME_PREFIX}{function_name}"


def parse_timeout(value: str | None) -> int:
    """Parse a Function timeout given as a string of whole seconds.

    An unset or empty timeout falls back to the default. Only an optional sign
    followed by ASCII digits is accepted.
    """
    if value is None or value == "":
        return DEFAULT_TIMEOUT_SECONDS
    text = str(value)
    if not _INTEGER_RE.fullmatch(text):
        raise InvalidFunctionSpec(f"Unable to convert {text!r} to a valid timeout")
    return int(text)


def function_endpoint(function: dict[str, Any]) -> str:
    metadata = function.get("metadata") or {}
    ports = ((function.get("spec") or {}).get("service") or {}).get("ports") or []
    port = DEFAULT_FUNCTION_PORT
    if ports:
        if not isinstance(ports, list):
            raise InvalidFunctionSpec(f"Invalid service ports {ports!r}")
        first = ports[0]
        if not isinstance(first, dict):
            raise InvalidFunctionSpec(f"Invalid service port entry {first!r}")
        raw = first.get("port")
        if raw is not None:
            if isinstance(raw, bool) or not _INTEGER_RE.fullmatch(str(raw)):
                raise InvalidFunctionSpec(f"Invalid service port {raw!r}")
            port = int(raw)
    return f"http://{metadata.get('name')}.{metadata.get('namespace')}.svc.cluster.local:{port}"


def serialize_payload(payload: Any) -> str:
    """Render the trigger payload as compact JSON with sorted keys."""
    try:
        return json.dumps(
            payload,
            separators=(",", ":"),
            sort_keys=True,
            ensure_ascii=False,
            allow_nan=False,
        )
    except (TypeError, ValueError) as e:
        raise InvalidPayload(f"Found an error during JSON parsing on your payload: {e}") from e


def build_http_command(endpoint: str, payload_json: str) -> str:
    """Build the curl invocation fired by every scheduled run."""
    headers = [
        '"Event-Id: $(POD_UID)"',
        '"Event-Time: $(date --rfc-3339=seconds --utc)"',
        f'"Event-Namespace: {EVENT_NAMESPACE}"',
        f'"Event-Type: {PAYLOAD_CONTENT_TYPE}"',
        f'"Content-Type: {PAYLOAD_CONTENT_TYPE}"',
    ]
    command = " ".join(["curl -Lv", *(f"-H {h}" for h in headers), endpoint])
    if payload_json != "null":
        # Close, escape and reopen the single-quoted shell string
        quoted = payload_json.replace("'", "'\\''")
        command += f" -d '{quoted}'"
    return command


def merge_maps(base: dict[str, str] | None, override: dict[str, str] | None) -> dict[str, str]:
    """Merge two string maps; keys in ``override`` win."""
    merged: dict[str, str] = dict(base or {})
    merged.update(override or {})
    return merged


def add_default_label(labels: dict[str, str] | None) -> dict[str, str]:
    """Return a copy of ``labels`` stamped with the ownership marker."""
    stamped = dict(labels or {})
    stamped[LABEL_CREATED_BY] = CREATED_BY_VALUE
    return stamped


def has_default_label(labels: dict[str, str] | None) -> bool:
    return (labels or {}).get(LABEL_CREATED_BY) == CREATED_BY_VALUE


def build_owner_reference(trigger: dict[str, Any]) -> dict[str, Any]:
    metadata = trigger.get("metadata") or {}
    return {
        "apiVersion": API_GROUP_VERSION,
        "kind": TRIGGER_KIND,
        "name": metadata.get("name"),
        "uid": metadata.get("uid"),
        "blockOwnerDeletion": True,
    }


def build_cronjob(
    *,
    trigger: dict[str, Any],
    function: dict[str, Any],
    provision_image: str,
    image_pull_secrets: list[dict[str, str]] | None = None,
) -> dict[str, Any]:
    """Render the CronJob manifest that fires a Function on the trigger's schedule.

    This function is pure and safe to unit-test.

    Raises:
        InvalidFunctionSpec: the Function timeout is not an integer.
        InvalidPayload: the trigger payload cannot be serialized.
    """
    trigger_meta = trigger.get("metadata") or {}
    trigger_spec = trigger.get("spec") or {}
    function_meta = function.get("metadata") or {}
    function_spec = function.get("spec") or {}

    timeout = parse_timeout(function_spec.get("timeout"))
    payload_json = serialize_payload(trigger_spec.get("payload"))
    command = build_http_command(function_endpoint(function), payload_json)

    # Trigger labels and annotations take precedence over the Function's
    labels = add_default_label(merge_maps(function_meta.get("labels"), trigger_meta.get("labels")))
    annotations = merge_maps(function_meta.get("annotations"), trigger_meta.get("annotations"))

    manifest: dict[str, Any] = {
        "apiVersion": "batch/v1",
        "kind": "CronJob",
        "metadata": {
            "name": cronjob_name_for(function_meta.get("name", "")),
            "namespace": function_meta.get("namespace"),
            "labels": labels,
            "annotations": annotations,
            "ownerReferences": [build_owner_reference(trigger)],
        },
        "spec": {
            "schedule": trigger_spec.get("schedule"),
            "successfulJobsHistoryLimit": SUCCESSFUL_JOBS_HISTORY_LIMIT,
            "failedJobsHistoryLimit": FAILED_JOBS_HISTORY_LIMIT,
            "jobTemplate": {
                "spec": {
                    "activeDeadlineSeconds": timeout,
                    "template": {
                        "metadata": {
                            "labels": dict(labels),
                            "annotations": dict(annotations),
                        },
                        "spec": {
                            "restartPolicy": "Never",
                            **(
                                {"imagePullSecrets": list(image_pull_secrets)}
                                if image_pull_secrets
                                else {}
                            ),
                            "containers": [
                                {
                                    "name": CRONJOB_CONTAINER_NAME,
                                    "image": provision_image,
                                    "env": [
                                        {
                                            "name": "POD_UID",
                                            "valueFrom": {
                                                "fieldRef": {"fieldPath": "metadata.uid"}
                                            },
                                        }
                                    ],
                                    "command": ["/bin/sh", "-c"],
                                    "args": [command],
                                    "resources": {
                                        "limits": {"memory": "64Mi", "cpu": "100m"},
                                        "requests": {"memory": "16Mi", "cpu": "10m"},
                                    },
                                }
                            ],
                        },
                    },
                }
            },
        },
    }
    return manifest
