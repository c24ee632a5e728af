from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

RECONCILE_TOTAL = Counter(
    "cronjob_trigger_reconcile_total",
    "Number of CronJobTrigger reconciliations",
    labelnames=("result",),
)

RECONCILE_DURATION = Histogram(
    "cronjob_trigger_reconcile_duration_seconds",
    "Duration of CronJobTrigger reconciliations in seconds",
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10),
)

WORKQUEUE_DEPTH = Gauge(
    "cronjob_trigger_workqueue_depth",
    "Current depth of the workqueue",
)

WORKQUEUE_RETRIES_TOTAL = Counter(
    "cronjob_trigger_workqueue_retries_total",
    "Number of keys requeued with backoff",
)

WORKQUEUE_DROPPED_TOTAL = Counter(
    "cronjob_trigger_workqueue_dropped_total",
    "Number of keys dropped from the workqueue without success",
    labelnames=("reason",),
)

CASCADE_DELETIONS_TOTAL = Counter(
    "cronjob_trigger_cascade_deletions_total",
    "Number of CronJobTriggers deleted because their Function was deleted",
)

CACHE_SYNCED = Gauge(
    "cronjob_trigger_cache_synced",
    "Whether the local cache of a resource is synced (1) or not (0)",
    labelnames=("resource",),
)
