"""Per-release control loop driving install / upgrade / uninstall through helm.

State machine::

                  <==> upgrading ==========
                 |                         \\
   creating ==> active =====> deleting ==> (removed)
          \\      ^            /            |
           \\     |   /=======>             /
            \\=> failed <===================

Every transition is written to the release status before the action it
announces is attempted.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Protocol

from helm_conductor.config.settings import settings
from helm_conductor.core.chart_loader import ChartLoader, resolve_chart_url
from helm_conductor.core.helm_executor import HelmExecutor
from helm_conductor.core.repo_cache import RepoCache
from helm_conductor.core.storage import ObjectStorage
from helm_conductor.core.store import ObjectStore
from helm_conductor.errors import ClusterNotFoundError, HelmConductorError, NotFoundError, StorageError
from helm_conductor.models import DeployState, Lifecycle, ReconcileResult, ReleaseState, utcnow
from helm_conductor.models.chart import data_key_in_storage
from helm_conductor.models.release import DeployEntry, Release
from helm_conductor.utils.encoding import decode_snapshot
from helm_conductor.utils.history import prepend_bounded, shorten

logger = logging.getLogger(__name__)

ExecutorFactory = Callable[[str, str, str], HelmExecutor]


class ClusterResolver(Protocol):
    def get_cluster_kubeconfig(self, cluster_name: str) -> str: ...


def deploy_backoff(failures: int) -> int:
    """Seconds to wait before retrying after ``failures`` consecutive failures."""
    return int(min(2 ** max(failures, 0), settings.max_deploy_backoff))


class ReleaseReconciler:
    def __init__(
        self,
        store: ObjectStore,
        loader: ChartLoader | None = None,
        *,
        storage: ObjectStorage | None = None,
        cluster_clients: ClusterResolver | None = None,
        repo_cache: RepoCache | None = None,
        executor_factory: ExecutorFactory | None = None,
        helm_mock: bool = False,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.loader = loader or ChartLoader()
        self.storage = storage
        self.cluster_clients = cluster_clients
        self.repo_cache = repo_cache
        self.helm_mock = helm_mock
        self.executor_factory = executor_factory or self._default_executor
        self.clock = clock

    def _default_executor(self, kubeconfig: str, namespace: str, release_name: str) -> HelmExecutor:
        return HelmExecutor(kubeconfig, namespace, release_name, mock=self.helm_mock)

    def reconcile(self, name: str) -> ReconcileResult:
        """Handle one release; never raises for domain failures."""
        try:
            rls = self.store.get_release(name)
        except NotFoundError:
            # deleted in the meantime, nothing left to clean up
            return ReconcileResult()
        except HelmConductorError as e:
            return ReconcileResult(error=e)

        try:
            return self._reconcile(rls)
        except HelmConductorError as e:
            logger.error("reconcile release %s failed: %s", name, e)
            return ReconcileResult(error=e)

    def _reconcile(self, rls: Release) -> ReconcileResult:
        if rls.lifecycle is Lifecycle.TERMINATED:
            self.store.remove_release(rls.name)
            return ReconcileResult()
        if rls.lifecycle is Lifecycle.TERMINATING:
            return self._cleanup_then_finalize(rls)

        if rls.status.state is ReleaseState.NONE:
            rls.status.state = ReleaseState.CREATING
            rls.status.last_update = self.clock()
            self.store.update_release(rls)
            return ReconcileResult(requeue_after=0)

        try:
            kubeconfig = self._cluster_config(rls)
        except ClusterNotFoundError:
            logger.warning("cluster %s of release %s no longer exists, deleting release", rls.cluster, rls.name)
            self.store.remove_release(rls.name)
            return ReconcileResult()

        if rls.up_to_date:
            return ReconcileResult(requeue_after=settings.active_recheck_interval)

        now = self.clock()
        failures = rls.status.consecutive_failures()
        if rls.status.state is ReleaseState.FAILED and failures > 0:
            remaining = self._backoff_remaining(rls, failures, now)
            if remaining > 0:
                return ReconcileResult(requeue_after=remaining)

        state = rls.status.state
        if state is ReleaseState.DELETING:
            return ReconcileResult()
        if state is ReleaseState.ACTIVE:
            logger.info("release %s: version %d -> %d, upgrading", rls.name, rls.status.version, rls.spec.version)
            rls.status.state = ReleaseState.UPGRADING
            rls.status.last_update = now
            self.store.update_release(rls)
            return ReconcileResult(requeue_after=0)

        upgrade = state is ReleaseState.UPGRADING or (state is ReleaseState.FAILED and rls.status.version > 0)
        error: HelmConductorError | None = None
        try:
            self._deploy(rls, kubeconfig, upgrade)
        except HelmConductorError as e:
            error = e

        return self._record(rls, error)

    def _backoff_remaining(self, rls: Release, failures: int, now: datetime) -> float:
        retry_after = deploy_backoff(failures)
        last = rls.status.deploy_status[0].time or rls.status.last_deployed or rls.status.last_update
        if last is None:
            return 0.0
        return max(0.0, (last + timedelta(seconds=retry_after) - now).total_seconds())

    def _record(self, rls: Release, error: HelmConductorError | None) -> ReconcileResult:
        now = self.clock()
        entry = DeployEntry(time=now)
        if error is not None:
            rls.status.state = ReleaseState.FAILED
            rls.status.message = shorten(str(error), settings.message_len)
            entry.state = DeployState.FAILED
            entry.message = rls.status.message
            logger.error("deploy release %s failed: %s", rls.name, rls.status.message)
        else:
            rls.status.state = ReleaseState.ACTIVE
            rls.status.message = ""
            rls.status.version = rls.spec.version
            entry.state = DeployState.SUCCESSFUL
            logger.info("deploy release %s version %d success", rls.name, rls.spec.version)

        rls.status.deploy_status = prepend_bounded(rls.status.deploy_status, entry, settings.history_len)
        rls.status.last_update = now
        rls.status.last_deployed = now
        self.store.update_release(rls)

        if error is not None:
            return ReconcileResult(requeue_after=deploy_backoff(rls.status.consecutive_failures()))
        return ReconcileResult(requeue_after=settings.active_recheck_interval)

    def _deploy(self, rls: Release, kubeconfig: str, upgrade: bool) -> None:
        chart_name, chart_data = self.get_chart_data(rls)
        if not chart_data:
            logger.error("empty chart data, release name %s, chart name: %s", rls.name, rls.spec.chart_name)
            raise NotFoundError("app version data is empty")

        executor = self.executor_factory(kubeconfig, rls.namespace, rls.spec.name)
        if upgrade:
            executor.upgrade(chart_name, chart_data, rls.spec.values)
        else:
            executor.install(chart_name, chart_data, rls.spec.values)

    def _cleanup_then_finalize(self, rls: Release) -> ReconcileResult:
        if rls.status.state is not ReleaseState.DELETING:
            rls.status.state = ReleaseState.DELETING
            rls.status.last_update = self.clock()
            rls = self.store.update_release(rls)

        try:
            kubeconfig = self._cluster_config(rls)
        except ClusterNotFoundError:
            logger.info("cluster %s of release %s is gone, skip uninstall", rls.cluster, rls.name)
        else:
            logger.info("helm uninstall %s/%s", rls.namespace, rls.spec.name)
            executor = self.executor_factory(kubeconfig, rls.namespace, rls.spec.name)
            executor.uninstall()

        rls.lifecycle = Lifecycle.TERMINATED
        logger.info("release %s terminated, removing", rls.name)
        self.store.remove_release(rls.name)
        return ReconcileResult()

    def _cluster_config(self, rls: Release) -> str:
        """Kubeconfig of the release's target cluster; empty means the local context."""
        cluster = rls.cluster
        if not cluster or cluster == settings.host_cluster_name or self.cluster_clients is None:
            return ""
        return self.cluster_clients.get_cluster_kubeconfig(cluster)

    def get_chart_data(self, rls: Release) -> tuple[str, bytes]:
        """Resolve the chart name and archive bytes a release should deploy."""
        spec = rls.spec
        if spec.chart_data:
            return spec.chart_name, spec.chart_data

        if spec.repo_id and spec.repo_id != settings.app_store_repo_id:
            if self.repo_cache is not None:
                cached = self.repo_cache.get_app_version_with_data(spec.application_version_id)
                if cached is not None:
                    return cached.name, cached.data

            repo = self.store.get_repo(spec.repo_id)
            snapshot = decode_snapshot(repo.status.data)
            version = snapshot.get_application_version(spec.application_id, spec.application_version_id)
            if version is None:
                logger.error("get app version %s failed", spec.application_version_id)
                raise NotFoundError(f"app version {spec.application_version_id} not found in repo {spec.repo_id}")
            if not version.urls:
                raise NotFoundError(f"app version {spec.application_version_id} has no download url")
            url = resolve_chart_url(version.urls[0], repo.url)
            return version.name, self.loader.load_chart(url, repo.credential)

        if self.storage is None:
            raise StorageError("object storage client is not configured")
        store_version = self.store.get_store_version(spec.application_version_id)
        data = self.storage.read(data_key_in_storage(store_version.workspace, store_version.version_id))
        return store_version.chart_name or spec.chart_name, data
