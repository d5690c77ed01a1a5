"""Tests for custom resource models and small helpers."""

import base64
from datetime import datetime, timezone

import pytest

from helm_conductor.models import Lifecycle, ReleaseState, parse_time
from helm_conductor.models.chart import ChartVersion, data_key_in_storage
from helm_conductor.models.release import Release
from helm_conductor.models.repo import Repository
from helm_conductor.utils.history import prepend_bounded, shorten
from helm_conductor.utils.idutils import new_application_id, new_version_id
from helm_conductor.utils.version_compare import latest_version, parse_version


class TestRelease:
    def _obj(self, **metadata):
        return {
            "metadata": {
                "name": "web-rls",
                "resourceVersion": "7",
                "labels": {
                    "kubesphere.io/namespace": "demo",
                    "kubesphere.io/cluster": "member-1",
                    "kubesphere.io/workspace": "ws1",
                },
                **metadata,
            },
            "spec": {
                "name": "web",
                "repoId": "bitnami",
                "version": 3,
                "values": base64.b64encode(b"replicaCount: 2\n").decode(),
            },
            "status": {
                "state": "active",
                "version": 3,
                "deployStatus": [{"state": "failed", "message": "boom", "deployTime": "2024-05-01T12:00:00Z"}],
            },
        }

    def test_from_dict(self):
        rls = Release.from_dict(self._obj())
        assert rls.namespace == "demo"
        assert rls.cluster == "member-1"
        assert rls.workspace == "ws1"
        assert rls.spec.values == "replicaCount: 2\n"
        assert rls.status.state is ReleaseState.ACTIVE
        assert rls.status.deploy_status[0].time == datetime(2024, 5, 1, 12, tzinfo=timezone.utc)
        assert rls.lifecycle is Lifecycle.ACTIVE
        assert rls.up_to_date

    def test_deletion_timestamp_means_terminating(self):
        rls = Release.from_dict(self._obj(deletionTimestamp="2024-05-01T12:00:00Z"))
        assert rls.lifecycle is Lifecycle.TERMINATING

    def test_to_dict_round_trips_spec(self):
        rls = Release.from_dict(self._obj())
        again = Release.from_dict(rls.to_dict())
        assert again.spec == rls.spec
        assert again.status == rls.status


class TestRepository:
    def test_from_dict(self):
        repo = Repository.from_dict({
            "metadata": {
                "name": "bitnami",
                "labels": {"application.kubesphere.io/repo-builtin": "true"},
                "annotations": {"application.kubesphere.io/sync-requested-at": "2024-05-01T12:00:00Z"},
            },
            "spec": {"url": "https://charts.example.com/", "syncPeriod": 600,
                     "credential": {"username": "u", "password": "p"}},
        })
        assert repo.builtin
        assert repo.sync_requested
        assert repo.sync_period == 600
        assert repo.credential.has_basic_auth
        assert repo.index_url() == "https://charts.example.com/index.yaml"


class TestHelpers:
    def test_version_name(self):
        assert ChartVersion(version="1.2.3", app_version="4.5.6").version_name == "1.2.3 [4.5.6]"
        assert ChartVersion(version="1.2.3").version_name == "1.2.3"

    def test_data_key_in_storage(self):
        assert data_key_in_storage("ws1", "appv-1") == "ws1/appv-1"
        assert data_key_in_storage("", "appv-1") == "appv-1"

    def test_ids(self):
        assert new_application_id().startswith("app-")
        assert new_version_id().startswith("appv-")
        assert len(new_version_id()) == len("appv-") + 14
        assert new_version_id() != new_version_id()

    def test_prepend_bounded(self):
        history = list(range(10))
        out = prepend_bounded(history, -1, 10)
        assert out[0] == -1
        assert len(out) == 10
        assert history == list(range(10))

    def test_shorten(self):
        assert shorten("  short  ", 512) == "short"
        assert shorten("x" * 600, 512) == "x" * 509 + "..."

    def test_versions(self):
        assert parse_version("1.10.0") > parse_version("1.2.0")
        assert parse_version("garbage") is None
        versions = [ChartVersion(version=v) for v in ("v1.0.0", "0.9.0", "nightly")]
        assert latest_version(versions).version == "v1.0.0"
        assert latest_version([]) is None

    def test_parse_time(self):
        assert parse_time("") is None
        assert parse_time("garbage") is None
        assert parse_time("2024-05-01T12:00:00Z").tzinfo is not None
