from __future__ import annotations

import threading
from collections.abc import Callable
from time import monotonic
from typing import Any

from kubernetes import client

from . import metrics
from .builders.cronjob_builder import build_cronjob, cronjob_name_for
from .config import ControllerConfig
from .constants import API_GROUP, API_VERSION, FUNCTION_PLURAL, TRIGGER_PLURAL
from .errors import CronJobConflict, FunctionNotFound, PermanentError
from .handlers import FunctionEventHandler, TriggerEventHandler
from .informer import ResourceInformer, split_meta_namespace_key, wait_for_cache_sync
from .logging import logger
from .services.cleanup import CascadingCleanup
from .services.cronjobs import delete_cronjob, ensure_cronjob
from .services.events import emit_event
from .services.finalizers import add_finalizer, has_finalizer, remove_finalizer
from .workqueue import RateLimitingQueue

ErrorSink = Callable[[str, Exception], None]

CONTROLLER = "CronJobTrigger"


def build_informer(
    custom_api: client.CustomObjectsApi, namespace: str, plural: str
) -> ResourceInformer:
    """Informer over ``plural`` in ``namespace``, or cluster-wide when it is empty."""
    list_kwargs: dict[str, Any] = {"group": API_GROUP, "version": API_VERSION, "plural": plural}
    if namespace:
        list_kwargs["namespace"] = namespace
        return ResourceInformer(custom_api.list_namespaced_custom_object, list_kwargs, plural)
    return ResourceInformer(custom_api.list_cluster_custom_object, list_kwargs, plural)


class CronJobTriggerController:
    """Keeps one CronJob per CronJobTrigger in line with its Function."""

    def __init__(
        self,
        config: ControllerConfig,
        custom_api: client.CustomObjectsApi | None = None,
        batch_api: client.BatchV1Api | None = None,
        core_api: client.CoreV1Api | None = None,
        trigger_informer: ResourceInformer | None = None,
        function_informer: ResourceInformer | None = None,
        queue: RateLimitingQueue | None = None,
        error_sink: ErrorSink | None = None,
    ):
        self.config = config
        self.custom_api = custom_api or client.CustomObjectsApi()
        self.batch_api = batch_api or client.BatchV1Api()
        self.core_api = core_api or client.CoreV1Api()
        self.trigger_informer = trigger_informer or build_informer(
            self.custom_api, config.functions_namespace, TRIGGER_PLURAL
        )
        self.function_informer = function_informer or build_informer(
            self.custom_api, config.functions_namespace, FUNCTION_PLURAL
        )
        self.queue = queue or RateLimitingQueue()
        self.error_sink = error_sink or self._report_dropped_key
        self.cleanup = CascadingCleanup(self.custom_api, self.trigger_informer)

        self.trigger_informer.add_event_handler(TriggerEventHandler(self.queue))
        self.function_informer.add_event_handler(FunctionEventHandler(self.cleanup))

        self._workers: list[threading.Thread] = []
        self._thread: threading.Thread | None = None

    def has_synced(self) -> bool:
        return self.trigger_informer.has_synced() and self.function_informer.has_synced()

    def start(self, stop_event: threading.Event) -> threading.Thread:
        """Run the controller in a background thread until ``stop_event`` is set."""
        self._thread = threading.Thread(
            target=self.run, args=(stop_event,), name="cronjob-trigger-controller", daemon=True
        )
        self._thread.start()
        return self._thread

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def run(self, stop_event: threading.Event) -> bool:
        """Serve until ``stop_event`` is set.

        Returns False without starting any worker if the stop event fires
        before both caches have synced.
        """
        logger.info("Starting CronJobTrigger controller", controller=CONTROLLER, event="startup")
        self.trigger_informer.start()
        self.function_informer.start()
        try:
            if not wait_for_cache_sync(stop_event, self.trigger_informer, self.function_informer):
                logger.error(
                    "Timed out waiting for caches required for CronJobTrigger controller to sync",
                    controller=CONTROLLER,
                    event="startup",
                    reason="CacheSyncFailed",
                )
                return False

            logger.info(
                "CronJobTrigger controller synced and ready",
                controller=CONTROLLER,
                event="startup",
                reason="CacheSynced",
                workers=self.config.workers,
            )
            self._workers = [
                threading.Thread(
                    target=self.run_worker, name=f"cronjob-trigger-worker-{i}", daemon=True
                )
                for i in range(self.config.workers)
            ]
            for worker in self._workers:
                worker.start()
            stop_event.wait()
            return True
        finally:
            # Workers finish the key they hold, then get() reports shutdown
            self.queue.shut_down()
            for worker in self._workers:
                worker.join()
            self.trigger_informer.stop()
            self.function_informer.stop()
            logger.info("CronJobTrigger controller stopped", controller=CONTROLLER, event="shutdown")

    def run_worker(self) -> None:
        while self.process_next_item():
            pass

    def process_next_item(self) -> bool:
        """Reconcile one key from the queue. Returns False once the queue is shut down."""
        key, shutdown = self.queue.get()
        if shutdown or key is None:
            return False

        started_at = monotonic()
        try:
            self.sync_trigger(key)
        except PermanentError as e:
            self.queue.forget(key)
            metrics.RECONCILE_TOTAL.labels(result="permanent_error").inc()
            metrics.WORKQUEUE_DROPPED_TOTAL.labels(reason="permanent").inc()
            logger.error(
                f"Error processing {key} (not retrying): {e}",
                controller=CONTROLLER,
                resource=key,
                event="reconcile",
                reason="PermanentError",
            )
            self.error_sink(key, e)
        except Exception as e:
            metrics.RECONCILE_TOTAL.labels(result="error").inc()
            retries = self.queue.num_requeues(key)
            if retries < self.config.max_retries:
                logger.error(
                    f"Error processing {key} (will retry): {e}",
                    controller=CONTROLLER,
                    resource=key,
                    event="reconcile",
                    reason="RetryScheduled",
                    retries=retries,
                )
                metrics.WORKQUEUE_RETRIES_TOTAL.inc()
                self.queue.add_rate_limited(key)
            else:
                logger.error(
                    f"Error processing {key} (giving up): {e}",
                    controller=CONTROLLER,
                    resource=key,
                    event="reconcile",
                    reason="RetriesExhausted",
                    retries=retries,
                )
                self.queue.forget(key)
                metrics.WORKQUEUE_DROPPED_TOTAL.labels(reason="max_retries").inc()
                self.error_sink(key, e)
        else:
            self.queue.forget(key)
            metrics.RECONCILE_TOTAL.labels(result="success").inc()
        finally:
            metrics.RECONCILE_DURATION.observe(monotonic() - started_at)
            self.queue.done(key)
        return True

    def sync_trigger(self, key: str) -> None:
        """Drive the CronJob of one CronJobTrigger towards its desired state.

        Raises on failure; the caller decides whether to retry.
        """
        namespace, name = split_meta_namespace_key(key)
        logger.info(
            "Processing update to CronJobTrigger",
            controller=CONTROLLER,
            resource=key,
            event="reconcile",
            reason="ReconcileStarted",
        )

        trigger, exists = self.trigger_informer.get_by_key(key)
        if not exists or trigger is None:
            logger.info(
                "CronJobTrigger not found, ignoring",
                controller=CONTROLLER,
                resource=key,
                event="reconcile",
                reason="NotFound",
            )
            return

        metadata = trigger.get("metadata") or {}
        spec = trigger.get("spec") or {}
        uid = metadata.get("uid")

        if metadata.get("deletionTimestamp"):
            if not has_finalizer(trigger):
                # Deletion already processed
                return
            function_name = spec.get("function-name")
            if function_name:
                cronjob_name = cronjob_name_for(function_name)
                outcome = delete_cronjob(self.batch_api, namespace, cronjob_name, uid)
                logger.info(
                    f"CronJob cleanup finished: {outcome}",
                    controller=CONTROLLER,
                    resource=key,
                    uid=uid,
                    event="finalizer",
                    reason="CronJobDeleted" if outcome == "deleted" else "CronJobNotDeleted",
                    cronjob_name=cronjob_name,
                    outcome=outcome,
                )
                if outcome == "deleted":
                    emit_event(
                        namespace=namespace,
                        name=name,
                        uid=uid,
                        reason="CronJobDeleted",
                        message=f"CronJob '{cronjob_name}' deleted",
                        core_api=self.core_api,
                    )
            remove_finalizer(self.custom_api, trigger)
            logger.info(
                "CronJobTrigger has been processed and released for deletion",
                controller=CONTROLLER,
                resource=key,
                uid=uid,
                event="finalizer",
                reason="FinalizerRemoved",
            )
            return

        if not has_finalizer(trigger):
            add_finalizer(self.custom_api, trigger)
            logger.info(
                "Added CronJobTrigger finalizer",
                controller=CONTROLLER,
                resource=key,
                uid=uid,
                event="finalizer",
                reason="FinalizerAdded",
            )
            return

        function_name = spec.get("function-name") or ""
        function, found = (
            self.function_informer.get(namespace, function_name) if function_name else (None, False)
        )
        if not found or function is None:
            emit_event(
                namespace=namespace,
                name=name,
                uid=uid,
                reason="FunctionNotFound",
                message=f"Function '{function_name}' not found in namespace '{namespace}'",
                type_="Warning",
                core_api=self.core_api,
            )
            raise FunctionNotFound(namespace, function_name)

        try:
            manifest = build_cronjob(
                trigger=trigger,
                function=function,
                provision_image=self.config.provision_image,
                image_pull_secrets=self.config.image_pull_secrets,
            )
            outcome = ensure_cronjob(self.batch_api, manifest)
        except PermanentError as e:
            emit_event(
                namespace=namespace,
                name=name,
                uid=uid,
                reason="CronJobConflict" if isinstance(e, CronJobConflict) else "InvalidSpec",
                message=str(e),
                type_="Warning",
                core_api=self.core_api,
            )
            raise

        cronjob_name = manifest["metadata"]["name"]
        reason = "CronJobCreated" if outcome == "created" else "CronJobUpdated"
        logger.info(
            f"CronJob {outcome}",
            controller=CONTROLLER,
            resource=key,
            uid=uid,
            event="reconcile",
            reason=reason,
            cronjob_name=cronjob_name,
        )
        if outcome == "created":
            emit_event(
                namespace=namespace,
                name=name,
                uid=uid,
                reason=reason,
                message=f"CronJob '{cronjob_name}' created",
                core_api=self.core_api,
            )

    def _report_dropped_key(self, key: str, error: Exception) -> None:
        # sync_trigger already recorded a specific Warning for permanent errors
        if isinstance(error, PermanentError):
            return
        try:
            namespace, name = split_meta_namespace_key(key)
        except ValueError:
            return
        trigger, _ = self.trigger_informer.get_by_key(key)
        emit_event(
            namespace=namespace,
            name=name,
            uid=((trigger or {}).get("metadata") or {}).get("uid"),
            reason="ReconcileFailed",
            message=f"Reconciliation abandoned: {error}",
            type_="Warning",
            core_api=self.core_api,
        )
