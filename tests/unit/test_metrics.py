"""Unit tests for metrics functionality."""

from unittest.mock import MagicMock

from factories import make_function, make_informer, make_trigger
from kubernetes.client.exceptions import ApiException

from cronjob_trigger_operator import metrics
from cronjob_trigger_operator.constants import FINALIZER
from cronjob_trigger_operator.controller import CronJobTriggerController
from cronjob_trigger_operator.workqueue import RateLimitingQueue


def _sample(counter, **labels):
    if labels:
        return counter.labels(**labels)._value.get()
    return counter._value.get()


class TestMetrics:
    def test_metrics_definitions(self):
        assert metrics.RECONCILE_TOTAL._type == "counter"
        assert metrics.RECONCILE_DURATION._type == "histogram"
        assert metrics.WORKQUEUE_DEPTH._type == "gauge"
        assert metrics.WORKQUEUE_RETRIES_TOTAL._type == "counter"
        assert metrics.WORKQUEUE_DROPPED_TOTAL._type == "counter"
        assert metrics.CASCADE_DELETIONS_TOTAL._type == "counter"
        assert metrics.CACHE_SYNCED._type == "gauge"

    def test_queue_depth_tracks_pending_keys(self):
        queue = RateLimitingQueue()
        queue.add("ns/a")
        queue.add("ns/b")

        assert metrics.WORKQUEUE_DEPTH._value.get() == 2

        queue.get()
        assert metrics.WORKQUEUE_DEPTH._value.get() == 1

    def test_cache_synced_gauge(self):
        informer = make_informer("metrics-test")
        informer.replace([], "1")

        assert _sample(metrics.CACHE_SYNCED, resource="metrics-test") == 1

        informer._mark_unsynced()
        assert _sample(metrics.CACHE_SYNCED, resource="metrics-test") == 0

    def test_reconcile_outcomes_are_counted(self, controller_config):
        trigger = make_trigger(finalizers=[FINALIZER])
        batch_api = MagicMock()
        controller = CronJobTriggerController(
            controller_config,
            custom_api=MagicMock(),
            batch_api=batch_api,
            core_api=MagicMock(),
            trigger_informer=make_informer("cronjobtriggers", [trigger]),
            function_informer=make_informer("functions", [make_function()]),
        )
        success_before = _sample(metrics.RECONCILE_TOTAL, result="success")
        error_before = _sample(metrics.RECONCILE_TOTAL, result="error")
        retries_before = _sample(metrics.WORKQUEUE_RETRIES_TOTAL)

        controller.queue.add("ns/t1")
        controller.process_next_item()

        assert _sample(metrics.RECONCILE_TOTAL, result="success") == success_before + 1

        batch_api.create_namespaced_cron_job.side_effect = ApiException(status=500)
        controller.queue.add("ns/t1")
        controller.process_next_item()

        assert _sample(metrics.RECONCILE_TOTAL, result="error") == error_before + 1
        assert _sample(metrics.WORKQUEUE_RETRIES_TOTAL) == retries_before + 1
