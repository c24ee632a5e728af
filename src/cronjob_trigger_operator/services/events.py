from __future__ import annotations

from typing import Any

from kubernetes import client

from ..constants import API_GROUP_VERSION, TRIGGER_KIND
from ..logging import logger


def emit_event(
    *,
    namespace: str,
    name: str,
    reason: str,
    message: str,
    type_: str = "Normal",
    uid: str | None = None,
    core_api: Any = None,
) -> None:
    """Record a Kubernetes Event against a CronJobTrigger.

    Failures are logged and never raised.
    """
    try:
        v1 = core_api or client.CoreV1Api()
        involved = client.V1ObjectReference(
            api_version=API_GROUP_VERSION,
            kind=TRIGGER_KIND,
            name=name,
            namespace=namespace,
            uid=uid,
        )
        event = client.CoreV1Event(
            metadata=client.V1ObjectMeta(generate_name=f"{name}-"),
            type=type_,
            reason=reason,
            message=message,
            involved_object=involved,
        )
        v1.create_namespaced_event(namespace=namespace, body=event)
    except Exception as e:
        logger.warning(
            f"Failed to emit {reason} event: {e}",
            controller=TRIGGER_KIND,
            resource=f"{namespace}/{name}",
            uid=uid,
            event="event",
            reason="EventEmitFailed",
        )
