"""Delete CronJobTriggers whose Function has been deleted."""

from __future__ import annotations

from typing import Any, Protocol

from kubernetes import client

from .. import metrics
from ..constants import API_GROUP, API_VERSION, TRIGGER_PLURAL
from ..handlers import resolve_object
from ..informer import Tombstone
from ..logging import logger


class TriggerLister(Protocol):
    def list(self, namespace: str | None = None) -> list[dict[str, Any]]: ...


class CascadingCleanup:
    def __init__(self, custom_api: client.CustomObjectsApi, triggers: TriggerLister):
        self.custom_api = custom_api
        self.triggers = triggers

    def function_changed(self, obj: dict[str, Any]) -> None:
        metadata = obj.get("metadata") or {}
        logger.debug(
            "Observed Function change",
            controller="Function",
            resource=f"{metadata.get('namespace')}/{metadata.get('name')}",
            event="function",
            reason="FunctionObserved",
        )

    def function_deleted(self, obj: dict[str, Any] | Tombstone) -> list[str]:
        """Delete every trigger in the Function's namespace that references it.

        Returns the names of the triggers deleted.
        """
        try:
            function = resolve_object(obj)
        except TypeError as e:
            logger.error(
                f"Couldn't get Function from delete notification: {e}",
                controller="Function",
                event="function",
                reason="UnknownPayload",
            )
            return []

        metadata = function.get("metadata") or {}
        namespace = metadata.get("namespace")
        function_name = metadata.get("name")
        if not namespace or not function_name:
            return []

        logger.info(
            "Function deleted, removing associated CronJobTriggers",
            controller="Function",
            resource=f"{namespace}/{function_name}",
            event="function",
            reason="FunctionDeleted",
        )

        deleted: list[str] = []
        for trigger in self.triggers.list(namespace):
            if (trigger.get("spec") or {}).get("function-name") != function_name:
                continue
            trigger_name = (trigger.get("metadata") or {}).get("name")
            try:
                self.custom_api.delete_namespaced_custom_object(
                    group=API_GROUP,
                    version=API_VERSION,
                    namespace=namespace,
                    plural=TRIGGER_PLURAL,
                    name=trigger_name,
                )
            except client.exceptions.ApiException as e:
                if e.status == 404:
                    continue
                logger.error(
                    f"Failed to delete CronJobTrigger for deleted Function: {e}",
                    controller="CronJobTrigger",
                    resource=f"{namespace}/{trigger_name}",
                    event="function",
                    reason="CascadeDeleteFailed",
                    function=function_name,
                )
                raise
            metrics.CASCADE_DELETIONS_TOTAL.inc()
            deleted.append(trigger_name)
            logger.info(
                "Deleted CronJobTrigger referencing deleted Function",
                controller="CronJobTrigger",
                resource=f"{namespace}/{trigger_name}",
                event="function",
                reason="CascadeDeleted",
                function=function_name,
            )
        return deleted
