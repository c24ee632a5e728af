from unittest.mock import MagicMock

import pytest
from kubernetes.client.exceptions import ApiException

from cronjob_trigger_operator.config import (
    ControllerConfig,
    config_from_data,
    load_controller_config,
    secrets_as_local_object_references,
)
from cronjob_trigger_operator.constants import MAX_RETRIES
from cronjob_trigger_operator.errors import ConfigError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "KUBELESS_NAMESPACE",
        "KUBELESS_CONFIG",
        "CRONJOB_TRIGGER_WORKERS",
        "CRONJOB_TRIGGER_METRICS_PORT",
    ):
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    cfg = ControllerConfig()
    assert cfg.functions_namespace == ""
    assert cfg.image_pull_secrets == []
    assert cfg.workers == 1
    assert cfg.max_retries == MAX_RETRIES == 11


def test_secrets_as_local_object_references():
    assert secrets_as_local_object_references("a", None, "", "b", "a") == [
        {"name": "a"},
        {"name": "b"},
    ]
    assert secrets_as_local_object_references() == []


def test_config_from_data():
    cfg = config_from_data(
        {
            "functions-namespace": "fns",
            "provision-image": "kubeless/unzip@sha256:abc",
            "provision-image-secret": "p-secret",
            "builder-image-secret": "b-secret",
        }
    )

    assert cfg.functions_namespace == "fns"
    assert cfg.provision_image == "kubeless/unzip@sha256:abc"
    assert cfg.image_pull_secrets == [{"name": "p-secret"}, {"name": "b-secret"}]


def test_config_from_empty_data_watches_all_namespaces():
    cfg = config_from_data(None)
    assert cfg.functions_namespace == ""
    assert cfg.provision_image == ""
    assert cfg.image_pull_secrets == []


def test_workers_and_metrics_port_from_env(monkeypatch):
    monkeypatch.setenv("CRONJOB_TRIGGER_WORKERS", "4")
    monkeypatch.setenv("CRONJOB_TRIGGER_METRICS_PORT", "9100")

    cfg = config_from_data({})

    assert cfg.workers == 4
    assert cfg.metrics_port == 9100


@pytest.mark.parametrize("value", ["zero", "0", "-2"])
def test_invalid_workers_env(monkeypatch, value):
    monkeypatch.setenv("CRONJOB_TRIGGER_WORKERS", value)

    with pytest.raises(ConfigError):
        config_from_data({})


def test_load_controller_config_reads_default_configmap():
    core_api = MagicMock()
    core_api.read_namespaced_config_map.return_value = MagicMock(
        data={"provision-image": "img"}
    )

    cfg = load_controller_config(core_api)

    core_api.read_namespaced_config_map.assert_called_once_with(
        name="kubeless-config", namespace="kubeless"
    )
    assert cfg.provision_image == "img"


def test_load_controller_config_honours_env(monkeypatch):
    monkeypatch.setenv("KUBELESS_NAMESPACE", "serverless")
    monkeypatch.setenv("KUBELESS_CONFIG", "settings")
    core_api = MagicMock()
    core_api.read_namespaced_config_map.return_value = MagicMock(data=None)

    load_controller_config(core_api)

    core_api.read_namespaced_config_map.assert_called_once_with(
        name="settings", namespace="serverless"
    )


def test_load_controller_config_unreadable_configmap():
    core_api = MagicMock()
    core_api.read_namespaced_config_map.side_effect = ApiException(status=404, reason="Not Found")

    with pytest.raises(ConfigError, match="kubeless/kubeless-config"):
        load_controller_config(core_api)
