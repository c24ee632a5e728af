"""Filter informer notifications into reconcile keys and cleanup calls."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Protocol

from .informer import Tombstone, deletion_handling_key, meta_namespace_key
from .logging import logger


class KeyQueue(Protocol):
    def add(self, item: str) -> None: ...


class FunctionListener(Protocol):
    def function_changed(self, obj: dict[str, Any]) -> object: ...

    def function_deleted(self, obj: dict[str, Any] | Tombstone) -> object: ...


def resolve_object(obj: Any) -> dict[str, Any]:
    """Return the full object behind a notification payload.

    A plain dict is the object itself; a ``Tombstone`` carries the last
    known state. Anything else is rejected.
    """
    if isinstance(obj, Tombstone):
        obj = obj.obj
    if not isinstance(obj, dict):
        raise TypeError(f"couldn't get object from notification payload {obj!r}")
    return obj


def trigger_changed(old: dict[str, Any], new: dict[str, Any]) -> bool:
    """Whether an update carries a change the reconciler must act on."""
    old_meta = old.get("metadata") or {}
    new_meta = new.get("metadata") or {}
    if old_meta.get("deletionTimestamp") != new_meta.get("deletionTimestamp"):
        return True
    if old_meta.get("resourceVersion") != new_meta.get("resourceVersion"):
        return True
    return (old.get("spec") or {}).get("schedule") != (new.get("spec") or {}).get("schedule")


class TriggerEventHandler:
    """Enqueue ``namespace/name`` keys for CronJobTrigger notifications."""

    def __init__(self, queue: KeyQueue):
        self.queue = queue

    def on_add(self, obj: dict[str, Any]) -> None:
        self._enqueue(meta_namespace_key, obj)

    def on_update(self, old: dict[str, Any], new: dict[str, Any]) -> None:
        if trigger_changed(old, new):
            self._enqueue(meta_namespace_key, new)

    def on_delete(self, obj: dict[str, Any] | Tombstone) -> None:
        self._enqueue(deletion_handling_key, obj)

    def _enqueue(self, key_func: Callable[[Any], str], obj: Any) -> None:
        try:
            key = key_func(obj)
        except (ValueError, AttributeError) as e:
            logger.warning(
                f"Unable to compute key for CronJobTrigger notification: {e}",
                controller="CronJobTrigger",
                event="enqueue",
                reason="InvalidKey",
            )
            return
        self.queue.add(key)


class FunctionEventHandler:
    """Route Function notifications to the cascading cleanup hook."""

    def __init__(self, listener: FunctionListener):
        self.listener = listener

    def on_add(self, obj: dict[str, Any]) -> None:
        self.listener.function_changed(obj)

    def on_update(self, old: dict[str, Any], new: dict[str, Any]) -> None:
        self.listener.function_changed(new)

    def on_delete(self, obj: dict[str, Any] | Tombstone) -> None:
        self.listener.function_deleted(obj)
