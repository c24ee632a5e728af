"""Shared fixtures for unit tests."""

from __future__ import annotations

from typing import Any

import pytest
from factories import make_trigger

from cronjob_trigger_operator.config import ControllerConfig
from cronjob_trigger_operator.constants import FINALIZER


@pytest.fixture
def controller_config() -> ControllerConfig:
    return ControllerConfig(
        functions_namespace="ns",
        provision_image="kubeless/unzip@sha256:abc",
        image_pull_secrets=[{"name": "pull-secret"}],
    )


@pytest.fixture
def active_trigger() -> dict[str, Any]:
    return make_trigger(payload={"a": 1}, finalizers=[FINALIZER])
