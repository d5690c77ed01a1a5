"""Tests for the release state machine."""

import pytest

from conftest import REPO_URL, SAMPLE_INDEX, FakeClusters, FakeStorage
from helm_conductor.core.index_merger import merge_index, parse_index
from helm_conductor.core.release_reconciler import ReleaseReconciler, deploy_backoff
from helm_conductor.core.repo_cache import RepoCache
from helm_conductor.models import DeployState, Lifecycle, ReleaseState
from helm_conductor.models.chart import StoreVersion
from helm_conductor.models.release import Release, ReleaseSpec
from helm_conductor.models.repo import Repository
from helm_conductor.utils.encoding import encode_snapshot

CHART_URL = f"{REPO_URL}/charts/nginx-1.1.0.tgz"


@pytest.fixture
def catalog(store, loader):
    """Store a synced repository and return (app id, version id) of nginx 1.1.0."""
    snapshot = merge_index(parse_index(SAMPLE_INDEX), None)
    repo = Repository(name="bitnami", url=REPO_URL)
    repo.status.data = encode_snapshot(snapshot)
    store.create_repo(repo)
    loader.documents[CHART_URL] = b"nginx-archive"
    nginx = snapshot.applications["nginx"]
    version = next(v for v in nginx.versions if v.version == "1.1.0")
    return nginx.application_id, version.version_id


@pytest.fixture
def release(store, catalog):
    app_id, version_id = catalog
    spec = ReleaseSpec(
        name="web",
        namespace="demo",
        repo_id="bitnami",
        application_id=app_id,
        application_version_id=version_id,
        chart_name="nginx",
        version=1,
        values="replicaCount: 2\n",
    )
    return store.create_release(Release(name="web-rls", spec=spec))


@pytest.fixture
def reconciler(store, loader, executors, clock):
    return ReleaseReconciler(store, loader, executor_factory=executors, clock=clock)


def _settle(reconciler, name="web-rls", passes=5):
    """Run passes until one asks for a non-immediate requeue."""
    result = None
    for _ in range(passes):
        result = reconciler.reconcile(name)
        if result.requeue_after != 0:
            break
    return result


def _bump(store, name="web-rls", version=2):
    rls = store.get_release(name)
    rls.spec.version = version
    store.update_release(rls)


class TestInstallAndUpgrade:
    def test_new_release_is_installed(self, reconciler, store, release, executors):
        first = reconciler.reconcile("web-rls")
        assert first.requeue_after == 0
        assert store.get_release("web-rls").status.state is ReleaseState.CREATING
        assert executors.calls == []

        result = reconciler.reconcile("web-rls")

        rls = store.get_release("web-rls")
        assert result.error is None
        assert rls.status.state is ReleaseState.ACTIVE
        assert rls.status.version == 1
        assert rls.status.deploy_status[0].state is DeployState.SUCCESSFUL
        op, namespace, name, kubeconfig, chart_name, data, values = executors.calls[0]
        assert (op, namespace, name, kubeconfig) == ("install", "demo", "web", "")
        assert (chart_name, data, values) == ("nginx", b"nginx-archive", "replicaCount: 2\n")

    def test_active_release_is_left_alone(self, reconciler, store, release, executors):
        _settle(reconciler)
        for _ in range(3):
            result = reconciler.reconcile("web-rls")
            assert result.requeue_after == 600
        assert executors.ops() == ["install"]
        assert len(store.get_release("web-rls").status.deploy_status) == 1

    def test_version_bump_upgrades(self, reconciler, store, release, executors):
        _settle(reconciler)
        _bump(store)

        result = reconciler.reconcile("web-rls")
        assert result.requeue_after == 0
        assert store.get_release("web-rls").status.state is ReleaseState.UPGRADING
        assert executors.ops() == ["install"]

        reconciler.reconcile("web-rls")
        rls = store.get_release("web-rls")
        assert rls.status.state is ReleaseState.ACTIVE
        assert rls.status.version == 2
        assert executors.ops() == ["install", "upgrade"]

    def test_interrupted_upgrade_resumes(self, reconciler, store, release, executors, loader):
        _settle(reconciler)
        _bump(store)
        reconciler.reconcile("web-rls")

        # a fresh reconciler picks up the persisted Upgrading state
        ReleaseReconciler(store, loader, executor_factory=executors).reconcile("web-rls")
        assert executors.ops() == ["install", "upgrade"]

    def test_missing_release_is_done(self, reconciler):
        result = reconciler.reconcile("nope")
        assert result.error is None
        assert not result.requeue


class TestFailures:
    def test_backoff_bounds(self):
        delays = [deploy_backoff(n) for n in range(1, 11)]
        assert delays == sorted(delays)
        assert delays[0] == 2
        assert max(delays) == 180

    def test_failed_install_backs_off(self, reconciler, store, release, executors, clock):
        executors.fail["install"] = "Error: INSTALLATION FAILED: chart is broken"
        reconciler.reconcile("web-rls")

        delays = []
        for _ in range(12):
            result = reconciler.reconcile("web-rls")
            assert result.error is None
            delays.append(result.requeue_after)
            early = reconciler.reconcile("web-rls")
            assert early.requeue_after == pytest.approx(result.requeue_after)
            clock.advance(result.requeue_after)

        rls = store.get_release("web-rls")
        assert rls.status.state is ReleaseState.FAILED
        assert rls.status.message == "Error: INSTALLATION FAILED: chart is broken"
        assert delays == sorted(delays)
        assert delays[:3] == [2, 4, 8]
        assert delays[-1] == 180
        assert executors.ops() == ["install"] * 12
        assert len(rls.status.deploy_status) == 10
        assert rls.status.deploy_status[0].time > rls.status.deploy_status[1].time

    def test_recovery_after_failure(self, reconciler, store, release, executors, clock):
        executors.fail["install"] = "Error: INSTALLATION FAILED"
        _settle(reconciler)
        executors.fail.clear()
        clock.advance(2)

        reconciler.reconcile("web-rls")

        rls = store.get_release("web-rls")
        assert rls.status.state is ReleaseState.ACTIVE
        assert rls.status.consecutive_failures() == 0
        assert [e.state for e in rls.status.deploy_status] == [DeployState.SUCCESSFUL, DeployState.FAILED]

    def test_failed_upgrade_retries_as_upgrade(self, reconciler, store, release, executors, clock):
        _settle(reconciler)
        _bump(store)
        executors.fail["upgrade"] = "Error: UPGRADE FAILED"
        _settle(reconciler)
        assert store.get_release("web-rls").status.state is ReleaseState.FAILED

        executors.fail.clear()
        clock.advance(2)
        reconciler.reconcile("web-rls")

        rls = store.get_release("web-rls")
        assert executors.ops() == ["install", "upgrade", "upgrade"]
        assert rls.status.state is ReleaseState.ACTIVE
        assert rls.status.version == 2

    def test_stderr_is_truncated(self, reconciler, store, release, executors):
        executors.fail["install"] = "E" * 5000
        _settle(reconciler)
        rls = store.get_release("web-rls")
        assert len(rls.status.message) == 512
        assert len(rls.status.deploy_status[0].message) == 512


class TestDeletion:
    def test_delete_uninstalls_once_and_removes(self, reconciler, store, release, executors):
        _settle(reconciler)
        store.delete_release("web-rls")

        result = reconciler.reconcile("web-rls")

        assert result.error is None
        assert executors.ops() == ["install", "uninstall"]
        assert not store.has_release("web-rls")
        assert reconciler.reconcile("web-rls").error is None
        assert executors.ops() == ["install", "uninstall"]

    def test_failed_uninstall_keeps_object(self, reconciler, store, release, executors):
        _settle(reconciler)
        store.delete_release("web-rls")
        executors.fail["uninstall"] = "Error: cluster unreachable"

        result = reconciler.reconcile("web-rls")

        assert result.error is not None
        rls = store.get_release("web-rls")
        assert rls.lifecycle is Lifecycle.TERMINATING
        assert rls.status.state is ReleaseState.DELETING

        executors.fail.clear()
        reconciler.reconcile("web-rls")
        assert not store.has_release("web-rls")

    def test_delete_before_first_pass(self, reconciler, store, release, executors):
        store.delete_release("web-rls")
        reconciler.reconcile("web-rls")
        assert executors.ops() == ["uninstall"]
        assert not store.has_release("web-rls")


class TestClusters:
    def _release_on(self, store, release, cluster):
        rls = store.get_release(release.name)
        rls.spec.cluster = cluster
        return store.update_release(rls)

    def test_remote_kubeconfig_is_used(self, store, loader, executors, clock, release):
        self._release_on(store, release, "member-1")
        clusters = FakeClusters({"member-1": "apiVersion: v1\nkind: Config\n"})
        reconciler = ReleaseReconciler(store, loader, cluster_clients=clusters, executor_factory=executors, clock=clock)
        _settle(reconciler)
        assert executors.calls[0][3] == "apiVersion: v1\nkind: Config\n"

    def test_vanished_cluster_removes_release(self, store, loader, executors, clock, release):
        self._release_on(store, release, "member-1")
        reconciler = ReleaseReconciler(
            store, loader, cluster_clients=FakeClusters(), executor_factory=executors, clock=clock,
        )
        _settle(reconciler)
        assert not store.has_release("web-rls")
        assert executors.calls == []

    def test_host_cluster_never_self_deletes(self, store, loader, executors, clock, release):
        self._release_on(store, release, "host")
        reconciler = ReleaseReconciler(
            store, loader, cluster_clients=FakeClusters(), executor_factory=executors, clock=clock,
        )
        _settle(reconciler)
        assert store.get_release("web-rls").status.state is ReleaseState.ACTIVE
        assert executors.calls[0][3] == ""

    def test_vanished_cluster_during_delete_skips_uninstall(self, store, loader, executors, clock, release):
        self._release_on(store, release, "member-1")
        store.delete_release("web-rls")
        reconciler = ReleaseReconciler(
            store, loader, cluster_clients=FakeClusters(), executor_factory=executors, clock=clock,
        )
        reconciler.reconcile("web-rls")
        assert executors.calls == []
        assert not store.has_release("web-rls")


class TestChartSources:
    def _app_store_release(self, store, version_id="appv-curated"):
        spec = ReleaseSpec(
            name="store-app",
            namespace="demo",
            repo_id="repo-helm",
            application_id="app-curated",
            application_version_id=version_id,
            chart_name="fallback",
            version=1,
        )
        return store.create_release(Release(name="store-rls", spec=spec))

    def test_missing_storage_client_is_a_failure(self, reconciler, store, executors):
        self._app_store_release(store)
        result = _settle(reconciler, "store-rls")

        rls = store.get_release("store-rls")
        assert result.requeue_after == 2
        assert rls.status.state is ReleaseState.FAILED
        assert "object storage client is not configured" in rls.status.message
        assert executors.calls == []

    def test_reads_curated_chart_from_storage(self, store, loader, executors, clock):
        self._app_store_release(store)
        store.add_store_version(StoreVersion(version_id="appv-curated", chart_name="mysql", workspace="ws1"))
        storage = FakeStorage({"ws1/appv-curated": b"mysql-archive"})
        reconciler = ReleaseReconciler(store, loader, storage=storage, executor_factory=executors, clock=clock)

        _settle(reconciler, "store-rls")

        assert storage.reads == ["ws1/appv-curated"]
        assert executors.calls[0][4:6] == ("mysql", b"mysql-archive")
        assert store.get_release("store-rls").status.state is ReleaseState.ACTIVE

    def test_empty_chart_data_is_a_failure(self, store, loader, executors, clock):
        self._app_store_release(store)
        store.add_store_version(StoreVersion(version_id="appv-curated", chart_name="mysql", workspace="ws1"))
        reconciler = ReleaseReconciler(
            store, loader, storage=FakeStorage({"ws1/appv-curated": b""}), executor_factory=executors, clock=clock,
        )
        _settle(reconciler, "store-rls")
        assert store.get_release("store-rls").status.message == "app version data is empty"

    def test_inline_chart_data_wins(self, reconciler, store, executors):
        spec = ReleaseSpec(name="inline", namespace="demo", chart_name="demo", chart_data=b"inline-archive", version=1)
        store.create_release(Release(name="inline-rls", spec=spec))
        _settle(reconciler, "inline-rls")
        assert executors.calls[0][4:6] == ("demo", b"inline-archive")

    def test_unknown_version_in_repository(self, reconciler, store, catalog, executors):
        app_id, _ = catalog
        spec = ReleaseSpec(name="x", namespace="demo", repo_id="bitnami", application_id=app_id,
                           application_version_id="appv-gone", version=1)
        store.create_release(Release(name="x-rls", spec=spec))
        _settle(reconciler, "x-rls")
        rls = store.get_release("x-rls")
        assert rls.status.state is ReleaseState.FAILED
        assert "appv-gone" in rls.status.message

    def test_repo_cache_serves_chart_data(self, store, loader, executors, clock, release):
        cache = RepoCache(loader)
        cache.add_repo(store.get_repo("bitnami"))
        reconciler = ReleaseReconciler(store, loader, repo_cache=cache, executor_factory=executors, clock=clock)

        _settle(reconciler)
        _bump(store)
        _settle(reconciler)

        assert loader.calls.count(CHART_URL) == 1
        assert executors.ops() == ["install", "upgrade"]
