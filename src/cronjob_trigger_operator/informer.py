"""Watch-synchronized local cache of namespaced custom resources."""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any, Protocol

from kubernetes import watch
from kubernetes.client import ApiException

from . import metrics
from .logging import logger


@dataclass(frozen=True)
class Tombstone:
    """Last known state of an object whose deletion was missed by the watch.

    Delivered to ``on_delete`` when a relist no longer contains an object
    that was cached.
    """

    key: str
    obj: dict[str, Any]


def meta_namespace_key(obj: dict[str, Any]) -> str:
    metadata = obj.get("metadata") or {}
    name = metadata.get("name")
    if not name:
        raise ValueError("object has no metadata.name")
    namespace = metadata.get("namespace")
    return f"{namespace}/{name}" if namespace else name


def deletion_handling_key(obj: dict[str, Any] | Tombstone) -> str:
    if isinstance(obj, Tombstone):
        return obj.key
    return meta_namespace_key(obj)


def split_meta_namespace_key(key: str) -> tuple[str, str]:
    """Split ``namespace/name`` (or a bare ``name``) into its parts."""
    parts = key.split("/")
    if len(parts) == 1 and parts[0]:
        return "", parts[0]
    if len(parts) == 2 and parts[1]:
        return parts[0], parts[1]
    raise ValueError(f"unexpected key format: {key!r}")


class EventHandler(Protocol):
    def on_add(self, obj: dict[str, Any]) -> None: ...

    def on_update(self, old: dict[str, Any], new: dict[str, Any]) -> None: ...

    def on_delete(self, obj: dict[str, Any] | Tombstone) -> None: ...


class ResourceInformer:
    """Maintain an in-memory cache of a custom resource via list and watch.

    Args:
        list_func: ``CustomObjectsApi.list_namespaced_custom_object`` or
            ``list_cluster_custom_object``; ``list_kwargs`` are passed on every
            list and watch call.
        resource: name used in logs and metrics.
    """

    def __init__(
        self,
        list_func: Callable[..., Any],
        list_kwargs: dict[str, Any],
        resource: str,
        watch_timeout_seconds: int = 60,
        max_backoff_seconds: float = 30.0,
    ):
        self.list_func = list_func
        self.list_kwargs = list_kwargs
        self.resource = resource
        self.watch_timeout_seconds = watch_timeout_seconds
        self.max_backoff_seconds = max_backoff_seconds

        self._cache: dict[str, dict[str, Any]] = {}
        self._lock = threading.RLock()
        self._handlers: list[EventHandler] = []
        self._resource_version: str | None = None
        self._has_synced = False
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def add_event_handler(self, handler: EventHandler) -> None:
        with self._lock:
            self._handlers.append(handler)

    def has_synced(self) -> bool:
        """Return True once an initial list has completed."""
        return self._has_synced

    def start(self) -> None:
        """Start the background list/watch thread if not already running."""
        if self._thread and self._thread.is_alive():
            return
        self._thread = threading.Thread(
            target=self._run,
            name=f"informer-{self.resource}",
            daemon=True,
        )
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()

    def get(self, namespace: str, name: str) -> tuple[dict[str, Any] | None, bool]:
        return self.get_by_key(f"{namespace}/{name}" if namespace else name)

    def get_by_key(self, key: str) -> tuple[dict[str, Any] | None, bool]:
        with self._lock:
            obj = self._cache.get(key)
        return obj, obj is not None

    def list(self, namespace: str | None = None) -> list[dict[str, Any]]:
        with self._lock:
            items = list(self._cache.values())
        if namespace:
            items = [o for o in items if (o.get("metadata") or {}).get("namespace") == namespace]
        return items

    def _run(self) -> None:
        backoff = 1.0
        while not self._stop_event.is_set():
            try:
                if not self._has_synced:
                    self._full_resync()
                    backoff = 1.0
                self._run_watch_loop()
                backoff = 1.0
            except ApiException as e:
                if e.status == 410:
                    # Resource version too old; relist on next loop
                    self._mark_unsynced()
                    continue
                logger.warning(
                    f"Informer watch error for {self.resource}: {e}",
                    controller="Informer",
                    resource=self.resource,
                    event="watch",
                    reason="WatchFailed",
                )
                self._mark_unsynced()
                self._stop_event.wait(min(backoff, self.max_backoff_seconds))
                backoff = min(backoff * 2, self.max_backoff_seconds)
            except Exception as e:
                logger.error(
                    f"Unexpected informer error for {self.resource}: {e}",
                    controller="Informer",
                    resource=self.resource,
                    event="watch",
                    reason="WatchFailed",
                    exc_info=True,
                )
                self._mark_unsynced()
                self._stop_event.wait(min(backoff, self.max_backoff_seconds))
                backoff = min(backoff * 2, self.max_backoff_seconds)

    def _mark_unsynced(self) -> None:
        # Cached objects stay readable; the next relist reconciles them.
        self._has_synced = False
        self._resource_version = None
        metrics.CACHE_SYNCED.labels(resource=self.resource).set(0)

    def _full_resync(self) -> None:
        """List every object and diff the result against the cache."""
        resp = self.list_func(**self.list_kwargs)
        # list response is a dict for CustomObjectsApi
        if not isinstance(resp, dict):
            resp = {}
        items = resp.get("items") or []
        resource_version = (resp.get("metadata") or {}).get("resourceVersion")
        self.replace(items, resource_version)

    def replace(self, items: Iterable[dict[str, Any]], resource_version: str | None) -> None:
        """Swap the cache contents for ``items``, notifying handlers of differences."""
        new_cache: dict[str, dict[str, Any]] = {}
        for item in items:
            try:
                new_cache[meta_namespace_key(item)] = item
            except ValueError:
                continue

        with self._lock:
            old_cache = self._cache
            self._cache = new_cache
            self._resource_version = resource_version
            handlers = list(self._handlers)

        for key, old in old_cache.items():
            if key not in new_cache:
                self._dispatch(handlers, "on_delete", Tombstone(key=key, obj=old))
        for key, new in new_cache.items():
            old = old_cache.get(key)
            if old is None:
                self._dispatch(handlers, "on_add", new)
            elif _resource_version_of(old) != _resource_version_of(new):
                self._dispatch(handlers, "on_update", old, new)

        self._has_synced = True
        metrics.CACHE_SYNCED.labels(resource=self.resource).set(1)
        logger.info(
            f"Informer cache for {self.resource} synced with {len(new_cache)} objects",
            controller="Informer",
            resource=self.resource,
            event="list",
            reason="CacheSynced",
        )

    def _run_watch_loop(self) -> None:
        w = watch.Watch()
        try:
            for event in w.stream(
                self.list_func,
                resource_version=self._resource_version,
                timeout_seconds=self.watch_timeout_seconds,
                **self.list_kwargs,
            ):
                if self._stop_event.is_set():
                    break
                self.handle_event(event)
        finally:
            w.stop()

    def handle_event(self, event: dict[str, Any]) -> None:
        """Apply one watch event to the cache and notify handlers."""
        event_type = event.get("type")
        obj = event.get("object")

        if event_type == "ERROR":
            status = obj if isinstance(obj, dict) else {}
            code = status.get("code")
            raise ApiException(status=code or 500, reason=status.get("message") or "watch error")

        if not isinstance(obj, dict):
            return
        try:
            key = meta_namespace_key(obj)
        except ValueError:
            return

        with self._lock:
            old = self._cache.get(key)
            if event_type == "DELETED":
                self._cache.pop(key, None)
            elif event_type in ("ADDED", "MODIFIED"):
                self._cache[key] = obj
            else:
                return
            resource_version = _resource_version_of(obj)
            if resource_version:
                self._resource_version = resource_version
            handlers = list(self._handlers)

        if event_type == "DELETED":
            self._dispatch(handlers, "on_delete", obj)
        elif old is None:
            self._dispatch(handlers, "on_add", obj)
        else:
            self._dispatch(handlers, "on_update", old, obj)

    def _dispatch(self, handlers: list[EventHandler], method: str, *args: Any) -> None:
        for handler in handlers:
            try:
                getattr(handler, method)(*args)
            except Exception as e:
                logger.error(
                    f"Event handler {method} failed for {self.resource}: {e}",
                    controller="Informer",
                    resource=self.resource,
                    event="dispatch",
                    reason="HandlerFailed",
                    exc_info=True,
                )


def _resource_version_of(obj: dict[str, Any]) -> str | None:
    return (obj.get("metadata") or {}).get("resourceVersion")


def wait_for_cache_sync(
    stop_event: threading.Event,
    *informers: ResourceInformer,
    poll_interval: float = 0.1,
) -> bool:
    """Block until every informer has synced, or return False if stopped first."""
    while not all(informer.has_synced() for informer in informers):
        if stop_event.wait(poll_interval):
            return False
    return True
