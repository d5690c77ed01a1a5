"""Object storage port for repositories and releases, plus an in-memory implementation."""

from __future__ import annotations

import copy
import logging
import threading
from typing import Callable, Protocol, TypeVar

from helm_conductor.errors import NotFoundError, UpdateConflict
from helm_conductor.models import Lifecycle
from helm_conductor.models.chart import StoreVersion
from helm_conductor.models.release import Release
from helm_conductor.models.repo import Repository

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RepoListener(Protocol):
    def add_repo(self, repo: Repository) -> None: ...

    def update_repo(self, old: Repository, new: Repository) -> None: ...

    def delete_repo(self, repo: Repository) -> None: ...


class ObjectStore(Protocol):
    """What the sync and release reconcilers need from the resource layer."""

    def get_repo(self, name: str) -> Repository: ...

    def update_repo(self, repo: Repository) -> Repository: ...

    def get_release(self, name: str) -> Release: ...

    def update_release(self, release: Release) -> Release: ...

    def remove_release(self, name: str) -> None: ...

    def get_store_version(self, version_id: str) -> StoreVersion: ...


def retry_on_conflict(fn: Callable[[], T], attempts: int = 5) -> T:
    """Run a read-modify-write function, retrying when the write conflicts."""
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except UpdateConflict:
            if attempt == attempts:
                raise
            logger.debug("update conflict, retrying (%d/%d)", attempt, attempts)
    raise AssertionError("unreachable")


class InMemoryStore:
    """Thread-safe store with optimistic concurrency on ``resource_version``.

    Objects are copied on the way in and out, so callers never share state
    with the store or with each other.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._repos: dict[str, Repository] = {}
        self._releases: dict[str, Release] = {}
        self._store_versions: dict[str, StoreVersion] = {}
        self._listeners: list[RepoListener] = []

    def add_repo_listener(self, listener: RepoListener) -> None:
        self._listeners.append(listener)

    # -- repositories ----------------------------------------------------

    def create_repo(self, repo: Repository) -> Repository:
        with self._lock:
            if repo.name in self._repos:
                raise UpdateConflict(f"repository {repo.name} already exists")
            stored = copy.deepcopy(repo)
            stored.resource_version = "1"
            self._repos[repo.name] = stored
            out = copy.deepcopy(stored)
        for listener in self._listeners:
            listener.add_repo(copy.deepcopy(out))
        return out

    def get_repo(self, name: str) -> Repository:
        with self._lock:
            repo = self._repos.get(name)
            if repo is None:
                raise NotFoundError(f"repository {name} not found")
            return copy.deepcopy(repo)

    def update_repo(self, repo: Repository) -> Repository:
        with self._lock:
            current = self._repos.get(repo.name)
            if current is None:
                raise NotFoundError(f"repository {repo.name} not found")
            if repo.resource_version != current.resource_version:
                raise UpdateConflict(f"repository {repo.name} was modified concurrently")
            stored = copy.deepcopy(repo)
            stored.resource_version = str(int(current.resource_version) + 1)
            self._repos[repo.name] = stored
            old, out = copy.deepcopy(current), copy.deepcopy(stored)
        for listener in self._listeners:
            listener.update_repo(old, copy.deepcopy(out))
        return out

    def delete_repo(self, name: str) -> None:
        with self._lock:
            repo = self._repos.pop(name, None)
        if repo is None:
            raise NotFoundError(f"repository {name} not found")
        for listener in self._listeners:
            listener.delete_repo(copy.deepcopy(repo))

    # -- releases --------------------------------------------------------

    def create_release(self, release: Release) -> Release:
        with self._lock:
            if release.name in self._releases:
                raise UpdateConflict(f"release {release.name} already exists")
            stored = copy.deepcopy(release)
            stored.resource_version = "1"
            self._releases[release.name] = stored
            return copy.deepcopy(stored)

    def get_release(self, name: str) -> Release:
        with self._lock:
            release = self._releases.get(name)
            if release is None:
                raise NotFoundError(f"release {name} not found")
            return copy.deepcopy(release)

    def update_release(self, release: Release) -> Release:
        with self._lock:
            current = self._releases.get(release.name)
            if current is None:
                raise NotFoundError(f"release {release.name} not found")
            if release.resource_version != current.resource_version:
                raise UpdateConflict(f"release {release.name} was modified concurrently")
            stored = copy.deepcopy(release)
            stored.resource_version = str(int(current.resource_version) + 1)
            self._releases[release.name] = stored
            return copy.deepcopy(stored)

    def delete_release(self, name: str) -> None:
        """Request deletion; the object stays until its cleanup has finished."""
        with self._lock:
            current = self._releases.get(name)
            if current is None:
                raise NotFoundError(f"release {name} not found")
            if current.lifecycle is Lifecycle.ACTIVE:
                current.lifecycle = Lifecycle.TERMINATING
                current.resource_version = str(int(current.resource_version) + 1)

    def remove_release(self, name: str) -> None:
        with self._lock:
            if self._releases.pop(name, None) is None:
                raise NotFoundError(f"release {name} not found")

    def has_release(self, name: str) -> bool:
        with self._lock:
            return name in self._releases

    # -- curated app store -----------------------------------------------

    def add_store_version(self, version: StoreVersion) -> None:
        with self._lock:
            self._store_versions[version.version_id] = copy.deepcopy(version)

    def get_store_version(self, version_id: str) -> StoreVersion:
        with self._lock:
            version = self._store_versions.get(version_id)
            if version is None:
                raise NotFoundError(f"app version {version_id} not found")
            return copy.deepcopy(version)
