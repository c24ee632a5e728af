from __future__ import annotations

import threading
from contextlib import suppress
from typing import Any

import kopf
from kubernetes import client, config
from prometheus_client import start_http_server

from . import logging as structured_logging
from .config import load_controller_config
from .controller import CronJobTriggerController
from .errors import ConfigError


def _load_kube_config() -> None:
    try:
        config.load_incluster_config()
    except config.ConfigException:
        config.load_kube_config()


@kopf.on.startup()
def configure(settings: kopf.OperatorSettings, memo: kopf.Memo, **_: Any) -> None:
    structured_logging.setup_structured_logging()

    settings.posting.level = 0
    settings.networking.request_timeout = 30.0

    _load_kube_config()

    try:
        controller_config = load_controller_config(client.CoreV1Api())
    except ConfigError as e:
        structured_logging.logger.error(
            f"Unable to load operator settings: {e}",
            controller="CronJobTrigger",
            event="startup",
            reason="ConfigFailed",
        )
        raise kopf.PermanentError(str(e)) from e

    # Metrics are optional; a busy port must not block the operator
    with suppress(OSError):
        start_http_server(controller_config.metrics_port)

    controller = CronJobTriggerController(controller_config)
    stop_event = threading.Event()
    memo.controller = controller
    memo.stop_event = stop_event
    controller.start(stop_event)

    structured_logging.logger.info(
        "CronJobTrigger operator started",
        controller="CronJobTrigger",
        event="startup",
        reason="OperatorStarted",
        functions_namespace=controller_config.functions_namespace or "*",
        workers=controller_config.workers,
    )


@kopf.on.cleanup()
def shutdown(memo: kopf.Memo, **_: Any) -> None:
    stop_event: threading.Event | None = getattr(memo, "stop_event", None)
    controller: CronJobTriggerController | None = getattr(memo, "controller", None)
    if stop_event is None or controller is None:
        return
    stop_event.set()
    controller.join(timeout=30.0)
    structured_logging.logger.info(
        "CronJobTrigger operator stopped",
        controller="CronJobTrigger",
        event="shutdown",
        reason="OperatorStopped",
    )


@kopf.on.probe(id="caches_synced")
def caches_synced(memo: kopf.Memo, **_: Any) -> bool:
    controller: CronJobTriggerController | None = getattr(memo, "controller", None)
    return bool(controller and controller.has_synced())
