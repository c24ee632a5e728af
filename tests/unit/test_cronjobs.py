from unittest.mock import MagicMock

import pytest
from factories import make_function, make_trigger
from kubernetes.client.exceptions import ApiException

from cronjob_trigger_operator.builders.cronjob_builder import build_cronjob
from cronjob_trigger_operator.errors import CronJobConflict
from cronjob_trigger_operator.services.cronjobs import delete_cronjob, ensure_cronjob


def _manifest(**trigger_kwargs):
    return build_cronjob(
        trigger=make_trigger(**trigger_kwargs), function=make_function(), provision_image="img"
    )


def _existing(labels=None, owner_uid="uid-t1", annotations=None):
    metadata = {"name": "trigger-fn1", "namespace": "ns", "resourceVersion": "9"}
    if labels is not None:
        metadata["labels"] = labels
    if owner_uid is not None:
        metadata["ownerReferences"] = [{"kind": "CronJobTrigger", "uid": owner_uid}]
    if annotations is not None:
        metadata["annotations"] = annotations
    return {"metadata": metadata, "spec": {"schedule": "* * * * *"}}


class TestEnsureCronJob:
    def test_creates_when_absent(self):
        batch_api = MagicMock()
        manifest = _manifest()

        assert ensure_cronjob(batch_api, manifest) == "created"

        batch_api.create_namespaced_cron_job.assert_called_once_with(namespace="ns", body=manifest)
        batch_api.replace_namespaced_cron_job.assert_not_called()

    def test_updates_owned_cronjob_in_place(self):
        batch_api = MagicMock()
        batch_api.create_namespaced_cron_job.side_effect = ApiException(status=409)
        batch_api.read_namespaced_cron_job.return_value = _existing(
            labels={"created-by": "kubeless", "stale": "yes"}, annotations={"keep": "me"}
        )
        manifest = _manifest(schedule="0 * * * *")

        assert ensure_cronjob(batch_api, manifest) == "updated"

        kwargs = batch_api.replace_namespaced_cron_job.call_args.kwargs
        assert kwargs["name"] == "trigger-fn1"
        assert kwargs["namespace"] == "ns"
        body = kwargs["body"]
        assert body["spec"] == manifest["spec"]
        assert body["metadata"]["labels"] == manifest["metadata"]["labels"]
        assert body["metadata"]["ownerReferences"] == manifest["metadata"]["ownerReferences"]
        assert body["metadata"]["annotations"] == {"keep": "me"}
        assert body["metadata"]["resourceVersion"] == "9"

    def test_foreign_cronjob_is_a_conflict_and_left_alone(self):
        batch_api = MagicMock()
        batch_api.create_namespaced_cron_job.side_effect = ApiException(status=409)
        batch_api.read_namespaced_cron_job.return_value = _existing(labels={"app": "other"})

        with pytest.raises(CronJobConflict):
            ensure_cronjob(batch_api, _manifest())

        batch_api.replace_namespaced_cron_job.assert_not_called()
        batch_api.delete_namespaced_cron_job.assert_not_called()

    def test_recreates_when_deleted_between_create_and_read(self):
        batch_api = MagicMock()
        batch_api.create_namespaced_cron_job.side_effect = [ApiException(status=409), None]
        batch_api.read_namespaced_cron_job.side_effect = ApiException(status=404)

        assert ensure_cronjob(batch_api, _manifest()) == "created"
        assert batch_api.create_namespaced_cron_job.call_count == 2

    def test_other_create_errors_propagate(self):
        batch_api = MagicMock()
        batch_api.create_namespaced_cron_job.side_effect = ApiException(status=500)

        with pytest.raises(ApiException):
            ensure_cronjob(batch_api, _manifest())

    def test_model_objects_are_sanitized(self):
        batch_api = MagicMock()
        batch_api.create_namespaced_cron_job.side_effect = ApiException(status=409)
        model = object()
        batch_api.read_namespaced_cron_job.return_value = model
        batch_api.api_client.sanitize_for_serialization.return_value = _existing(
            labels={"created-by": "kubeless"}
        )

        assert ensure_cronjob(batch_api, _manifest()) == "updated"
        batch_api.api_client.sanitize_for_serialization.assert_called_once_with(model)


class TestDeleteCronJob:
    def test_absent(self):
        batch_api = MagicMock()
        batch_api.read_namespaced_cron_job.side_effect = ApiException(status=404)

        assert delete_cronjob(batch_api, "ns", "trigger-fn1", "uid-t1") == "absent"
        batch_api.delete_namespaced_cron_job.assert_not_called()

    def test_deletes_owned_cronjob(self):
        batch_api = MagicMock()
        batch_api.read_namespaced_cron_job.return_value = _existing(
            labels={"created-by": "kubeless"}
        )

        assert delete_cronjob(batch_api, "ns", "trigger-fn1", "uid-t1") == "deleted"
        batch_api.delete_namespaced_cron_job.assert_called_once_with(
            name="trigger-fn1", namespace="ns", propagation_policy="Background"
        )

    def test_skips_unlabelled_cronjob(self):
        batch_api = MagicMock()
        batch_api.read_namespaced_cron_job.return_value = _existing(labels={"app": "other"})

        assert delete_cronjob(batch_api, "ns", "trigger-fn1", "uid-t1") == "skipped"
        batch_api.delete_namespaced_cron_job.assert_not_called()

    def test_skips_cronjob_owned_by_another_trigger(self):
        batch_api = MagicMock()
        batch_api.read_namespaced_cron_job.return_value = _existing(
            labels={"created-by": "kubeless"}, owner_uid="uid-sibling"
        )

        assert delete_cronjob(batch_api, "ns", "trigger-fn1", "uid-t1") == "skipped"
        batch_api.delete_namespaced_cron_job.assert_not_called()

    def test_labelled_cronjob_without_owner_is_deleted(self):
        batch_api = MagicMock()
        batch_api.read_namespaced_cron_job.return_value = _existing(
            labels={"created-by": "kubeless"}, owner_uid=None
        )

        assert delete_cronjob(batch_api, "ns", "trigger-fn1", "uid-t1") == "deleted"

    def test_concurrent_delete_is_absent(self):
        batch_api = MagicMock()
        batch_api.read_namespaced_cron_job.return_value = _existing(
            labels={"created-by": "kubeless"}
        )
        batch_api.delete_namespaced_cron_job.side_effect = ApiException(status=404)

        assert delete_cronjob(batch_api, "ns", "trigger-fn1", "uid-t1") == "absent"

    def test_read_errors_propagate(self):
        batch_api = MagicMock()
        batch_api.read_namespaced_cron_job.side_effect = ApiException(status=403)

        with pytest.raises(ApiException):
            delete_cronjob(batch_api, "ns", "trigger-fn1", "uid-t1")
