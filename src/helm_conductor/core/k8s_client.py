"""Kubernetes API wrapper and custom-resource backed store."""

from __future__ import annotations

import base64
import logging
from typing import Any

from kubernetes import client, config
from kubernetes.client import ApiException

from helm_conductor.config.settings import settings
from helm_conductor.errors import ClusterNotFoundError, HelmConductorError, NotFoundError, UpdateConflict
from helm_conductor.models import Lifecycle
from helm_conductor.models.chart import StoreVersion
from helm_conductor.models.release import LIFECYCLE_ANNOTATION, Release
from helm_conductor.models.repo import SYNC_REQUEST_ANNOTATION, Repository

logger = logging.getLogger(__name__)

RELEASE_FINALIZER = "helmrelease.application.kubesphere.io"

HELM_REPOS = "helmrepos"
HELM_RELEASES = "helmreleases"
HELM_APP_VERSIONS = "helmapplicationversions"
CLUSTERS = "clusters"


def _translate(e: ApiException, what: str) -> HelmConductorError:
    if e.status == 404:
        return NotFoundError(f"{what} not found")
    if e.status == 409:
        return UpdateConflict(f"{what} was modified concurrently")
    return HelmConductorError(f"{what}: api error {e.status} {e.reason}")


class K8sClient:
    """Thin wrapper around the Kubernetes Python client."""

    def __init__(self, context: str | None = None):
        self.context = context
        self._custom: client.CustomObjectsApi | None = None
        self._api_client: client.ApiClient | None = None

    def _load_config(self) -> client.ApiClient:
        if self._api_client is not None:
            return self._api_client
        try:
            cfg = client.Configuration()
            config.load_kube_config(
                context=self.context,
                client_configuration=cfg,
            )
            # Prevent indefinite hangs on unreachable clusters
            cfg.retries = 1
            self._api_client = client.ApiClient(configuration=cfg)
        except config.ConfigException:
            config.load_incluster_config()
            self._api_client = client.ApiClient()
        return self._api_client

    @property
    def custom(self) -> client.CustomObjectsApi:
        if self._custom is None:
            self._custom = client.CustomObjectsApi(api_client=self._load_config())
        return self._custom

    def get_object(self, plural: str, name: str, group: str | None = None, version: str | None = None) -> dict:
        try:
            return self.custom.get_cluster_custom_object(
                group=group or settings.api_group,
                version=version or settings.api_version,
                plural=plural,
                name=name,
                _request_timeout=settings.request_timeout,
            )
        except ApiException as e:
            raise _translate(e, f"{plural}/{name}") from e

    def replace_status(self, plural: str, name: str, body: dict) -> dict:
        try:
            return self.custom.replace_cluster_custom_object_status(
                group=settings.api_group, version=settings.api_version, plural=plural, name=name, body=body,
            )
        except ApiException as e:
            raise _translate(e, f"{plural}/{name}") from e

    def patch_object(self, plural: str, name: str, patch: dict) -> dict:
        try:
            return self.custom.patch_cluster_custom_object(
                group=settings.api_group, version=settings.api_version, plural=plural, name=name, body=patch,
            )
        except ApiException as e:
            raise _translate(e, f"{plural}/{name}") from e

    def delete_object(self, plural: str, name: str) -> None:
        try:
            self.custom.delete_cluster_custom_object(
                group=settings.api_group, version=settings.api_version, plural=plural, name=name,
            )
        except ApiException as e:
            if e.status == 404:
                return
            raise _translate(e, f"{plural}/{name}") from e


class KubeStore:
    """Repository / release storage on top of the platform's custom resources."""

    def __init__(self, k8s: K8sClient):
        self.k8s = k8s

    def get_repo(self, name: str) -> Repository:
        return Repository.from_dict(self.k8s.get_object(HELM_REPOS, name))

    def update_repo(self, repo: Repository) -> Repository:
        current = self.k8s.get_object(HELM_REPOS, repo.name)
        body = repo.to_dict()
        body["metadata"] = current["metadata"]
        body["metadata"]["resourceVersion"] = repo.resource_version
        updated = self.k8s.replace_status(HELM_REPOS, repo.name, body)
        if repo.sync_requested_at is None:
            metadata = updated.get("metadata", {}) or {}
            if SYNC_REQUEST_ANNOTATION in (metadata.get("annotations") or {}):
                # resourceVersion makes the removal conditional on the request we just consumed
                patch = {
                    "metadata": {
                        "resourceVersion": metadata.get("resourceVersion"),
                        "annotations": {SYNC_REQUEST_ANNOTATION: None},
                    },
                }
                try:
                    updated = self.k8s.patch_object(HELM_REPOS, repo.name, patch)
                except UpdateConflict:
                    logger.info("sync request on repository %s changed during update, keeping it", repo.name)
                    updated = self.k8s.get_object(HELM_REPOS, repo.name)
        return Repository.from_dict(updated)

    def get_release(self, name: str) -> Release:
        return Release.from_dict(self.k8s.get_object(HELM_RELEASES, name))

    def update_release(self, release: Release) -> Release:
        current = self.k8s.get_object(HELM_RELEASES, release.name)
        body = release.to_dict()
        metadata = current["metadata"]
        metadata["resourceVersion"] = release.resource_version
        body["metadata"] = metadata
        updated = self.k8s.replace_status(HELM_RELEASES, release.name, body)

        finalizers = list(metadata.get("finalizers") or [])
        patch: dict[str, Any] = {"metadata": {"annotations": {LIFECYCLE_ANNOTATION: release.lifecycle.value}}}
        if release.lifecycle is Lifecycle.ACTIVE and RELEASE_FINALIZER not in finalizers:
            patch["metadata"]["finalizers"] = finalizers + [RELEASE_FINALIZER]
        updated = self.k8s.patch_object(HELM_RELEASES, release.name, patch)
        return Release.from_dict(updated)

    def remove_release(self, name: str) -> None:
        current = self.k8s.get_object(HELM_RELEASES, name)
        finalizers = [f for f in (current["metadata"].get("finalizers") or []) if f != RELEASE_FINALIZER]
        self.k8s.patch_object(HELM_RELEASES, name, {"metadata": {"finalizers": finalizers}})
        self.k8s.delete_object(HELM_RELEASES, name)

    def get_store_version(self, version_id: str) -> StoreVersion:
        return StoreVersion.from_dict(self.k8s.get_object(HELM_APP_VERSIONS, version_id))


class ClusterClients:
    """Resolves member-cluster kubeconfigs from the platform's Cluster objects."""

    def __init__(self, k8s: K8sClient):
        self.k8s = k8s

    def get_cluster_kubeconfig(self, cluster_name: str) -> str:
        try:
            obj = self.k8s.get_object(
                CLUSTERS, cluster_name, group=settings.cluster_api_group, version=settings.cluster_api_version,
            )
        except NotFoundError as e:
            raise ClusterNotFoundError(f"cluster {cluster_name} not found") from e
        connection = (obj.get("spec", {}) or {}).get("connection", {}) or {}
        raw = connection.get("kubeconfig", "")
        if not raw:
            return ""
        return base64.b64decode(raw).decode("utf-8")
