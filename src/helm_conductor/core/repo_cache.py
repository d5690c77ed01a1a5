"""In-memory, concurrently readable projection of all synchronized repositories."""

from __future__ import annotations

import dataclasses
import logging
from typing import Callable

from readerwriterlock import rwlock

from helm_conductor.config.settings import settings
from helm_conductor.core.chart_loader import ChartLoader, resolve_chart_url
from helm_conductor.errors import HelmConductorError, NotFoundError
from helm_conductor.models.chart import Application, ChartVersion
from helm_conductor.models.repo import Repository
from helm_conductor.models.snapshot import Snapshot
from helm_conductor.utils.encoding import decode_snapshot
from helm_conductor.utils.version_compare import latest_version

logger = logging.getLogger(__name__)

CATEGORY_ANNOTATION = "category"
CATEGORY_LABEL = "application.kubesphere.io/app-category-id"
REPO_LABEL = "application.kubesphere.io/repo-id"
WORKSPACE_LABEL = "kubesphere.io/workspace"

CategoryResolver = Callable[[str], "str | None"]


class RepoCache:
    """Answers catalog queries without decoding snapshots per request.

    The cache is never authoritative: every entry is derived from a
    repository's persisted snapshot and a repository's entries are always
    replaced wholesale. One reader-writer lock guards all maps; writers hold
    it for a whole ingest/evict pass, readers only while copying references
    out. Chart downloads happen outside the lock.
    """

    def __init__(
        self,
        loader: ChartLoader | None = None,
        category_resolver: CategoryResolver | None = None,
    ):
        self.loader = loader or ChartLoader()
        self.category_resolver = category_resolver or (lambda name: None)
        self._lock = rwlock.RWLockFair()

        self._repos: dict[str, Repository] = {}
        self._repo_apps: dict[str, list[str]] = {}
        self._apps: dict[str, Application] = {}
        self._app_repo: dict[str, str] = {}
        self._app_labels: dict[str, dict[str, str]] = {}
        self._versions: dict[str, ChartVersion] = {}
        self._version_repo: dict[str, str] = {}
        self._latest: dict[str, str] = {}
        self._chart_data: dict[str, bytes] = {}
        # workspace -> number of charts
        self._chart_counts: dict[str, int] = {}
        # category id -> number of curated applications
        self._category_counts: dict[str, int] = {}

    # -- change notifications --------------------------------------------

    def add_repo(self, repo: Repository) -> None:
        snapshot = self._decode(repo)
        if snapshot is None:
            return
        with self._lock.gen_wlock():
            if repo.name in self._repos:
                self._evict(repo.name)
            self._ingest(repo, snapshot)

    def delete_repo(self, repo: Repository) -> None:
        with self._lock.gen_wlock():
            self._evict(repo.name)

    def update_repo(self, old: Repository, new: Repository) -> None:
        if old.status.data == new.status.data:
            with self._lock.gen_wlock():
                if new.name in self._repos:
                    # catalog unchanged; keep url / credential current for downloads
                    self._repos[new.name] = new
            return
        snapshot = self._decode(new)
        if snapshot is None:
            return
        with self._lock.gen_wlock():
            self._evict(old.name)
            self._ingest(new, snapshot)

    # -- queries ---------------------------------------------------------

    def get_repo(self, name: str) -> Repository | None:
        with self._lock.gen_rlock():
            return self._repos.get(name)

    def get_application(self, app_id: str) -> Application | None:
        with self._lock.gen_rlock():
            return self._apps.get(app_id)

    def get_app_version(self, version_id: str) -> ChartVersion | None:
        with self._lock.gen_rlock():
            return self._versions.get(version_id)

    def get_app_version_with_data(self, version_id: str) -> ChartVersion | None:
        """Like :meth:`get_app_version` but with the chart archive populated.

        Archives that are not embedded in the snapshot are downloaded on
        demand and kept; archive bytes of a version never change once
        published.
        """
        with self._lock.gen_rlock():
            version = self._versions.get(version_id)
            if version is None:
                return None
            data = self._chart_data.get(version_id) or version.data
            repo = self._repos.get(self._version_repo.get(version_id, ""))

        if data:
            return dataclasses.replace(version, data=data)
        if not version.urls:
            raise NotFoundError(f"app version {version_id} has no download url")
        if repo is None:
            raise NotFoundError(f"repository of app version {version_id} is gone")

        url = resolve_chart_url(version.urls[0], repo.url)
        data = self.loader.load_chart(url, repo.credential)

        with self._lock.gen_wlock():
            if version_id in self._versions:
                self._chart_data[version_id] = data
        return dataclasses.replace(version, data=data)

    def list_app_versions_by_app_id(self, app_id: str) -> list[ChartVersion] | None:
        with self._lock.gen_rlock():
            app = self._apps.get(app_id)
            if app is None:
                return None
            return list(app.versions)

    def get_latest_app_version(self, app_id: str) -> ChartVersion | None:
        with self._lock.gen_rlock():
            version_id = self._latest.get(app_id)
            return self._versions.get(version_id) if version_id else None

    def list_applications_in_repo(self, repo_name: str) -> list[Application]:
        with self._lock.gen_rlock():
            return [self._apps[app_id] for app_id in self._repo_apps.get(repo_name, [])]

    def list_applications_in_builtin_repo(self, selector: dict[str, str] | None = None) -> list[Application]:
        """List curated applications whose labels match every key of ``selector``."""
        selector = selector or {}
        with self._lock.gen_rlock():
            out = []
            for repo_name, repo in self._repos.items():
                if not repo.builtin:
                    continue
                for app_id in self._repo_apps.get(repo_name, []):
                    labels = self._app_labels.get(app_id, {})
                    if all(labels.get(k) == v for k, v in selector.items()):
                        out.append(self._apps[app_id])
            return out

    def application_labels(self, app_id: str) -> dict[str, str]:
        with self._lock.gen_rlock():
            return dict(self._app_labels.get(app_id, {}))

    def category_counts(self) -> dict[str, int]:
        with self._lock.gen_rlock():
            return dict(self._category_counts)

    def chart_count(self, workspace: str) -> int:
        with self._lock.gen_rlock():
            return self._chart_counts.get(workspace, 0)

    # -- internals, caller holds the write lock ---------------------------

    @staticmethod
    def _decode(repo: Repository) -> Snapshot | None:
        try:
            return decode_snapshot(repo.status.data)
        except HelmConductorError:
            logger.error("decode snapshot of repository %s failed", repo.name, exc_info=True)
            return None

    def _ingest(self, repo: Repository, snapshot: Snapshot) -> None:
        self._repos[repo.name] = repo
        app_ids: list[str] = []
        for app in snapshot.applications.values():
            app_ids.append(app.application_id)
            self._apps[app.application_id] = app
            self._app_repo[app.application_id] = repo.name
            for version in app.versions:
                self._versions[version.version_id] = version
                self._version_repo[version.version_id] = repo.name

            latest = latest_version(app.versions)
            if latest is not None:
                self._latest[app.application_id] = latest.version_id

            labels = {REPO_LABEL: repo.name}
            if repo.workspace:
                labels[WORKSPACE_LABEL] = repo.workspace
            if repo.builtin:
                category_id = self._category_of(latest or (app.versions[0] if app.versions else None))
                labels[CATEGORY_LABEL] = category_id
                self._category_counts[category_id] = self._category_counts.get(category_id, 0) + 1
            self._app_labels[app.application_id] = labels

        self._repo_apps[repo.name] = app_ids
        self._chart_counts[repo.workspace] = self._chart_counts.get(repo.workspace, 0) + len(app_ids)
        logger.debug("cache repository %s with %d applications", repo.name, len(app_ids))

    def _evict(self, repo_name: str) -> None:
        repo = self._repos.pop(repo_name, None)
        if repo is None:
            return
        app_ids = self._repo_apps.pop(repo_name, [])
        for app_id in app_ids:
            app = self._apps.pop(app_id, None)
            self._app_repo.pop(app_id, None)
            self._latest.pop(app_id, None)
            labels = self._app_labels.pop(app_id, {})
            if repo.builtin and CATEGORY_LABEL in labels:
                category_id = labels[CATEGORY_LABEL]
                remaining = self._category_counts.get(category_id, 0) - 1
                if remaining > 0:
                    self._category_counts[category_id] = remaining
                else:
                    self._category_counts.pop(category_id, None)
            if app is None:
                continue
            for version in app.versions:
                self._versions.pop(version.version_id, None)
                self._version_repo.pop(version.version_id, None)
                self._chart_data.pop(version.version_id, None)

        remaining = self._chart_counts.get(repo.workspace, 0) - len(app_ids)
        if remaining > 0:
            self._chart_counts[repo.workspace] = remaining
        else:
            self._chart_counts.pop(repo.workspace, None)
        logger.debug("evict repository %s with %d applications", repo_name, len(app_ids))

    def _category_of(self, version: ChartVersion | None) -> str:
        name = version.annotations.get(CATEGORY_ANNOTATION, "") if version is not None else ""
        if name:
            category_id = self.category_resolver(name)
            if category_id:
                return category_id
        return settings.uncategorized_id
