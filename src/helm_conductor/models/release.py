"""Helm release models."""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from datetime import datetime

from helm_conductor.models import DeployState, Lifecycle, ReleaseState, format_time, parse_time

CLUSTER_LABEL = "kubesphere.io/cluster"
NAMESPACE_LABEL = "kubesphere.io/namespace"
WORKSPACE_LABEL = "kubesphere.io/workspace"
LIFECYCLE_ANNOTATION = "application.kubesphere.io/lifecycle"


@dataclass
class ReleaseSpec:
    # helm release name
    name: str = ""
    namespace: str = ""
    # empty means the host cluster
    cluster: str = ""
    repo_id: str = ""
    application_id: str = ""
    application_version_id: str = ""
    chart_name: str = ""
    chart_version: str = ""
    chart_app_version: str = ""
    # bumped by the user on every change that should trigger an upgrade
    version: int = 0
    values: str = ""
    # inline chart archive, takes precedence over repo/app-store lookups
    chart_data: bytes = b""

    @classmethod
    def from_dict(cls, d: dict | None) -> ReleaseSpec:
        if not d:
            return cls()
        values = d.get("values", "")
        if values:
            # values are stored base64 encoded on the custom resource
            values = base64.b64decode(values).decode("utf-8")
        chart_data = d.get("chartData", "")
        return cls(
            name=d.get("name", ""),
            repo_id=d.get("repoId", ""),
            application_id=d.get("applicationId", ""),
            application_version_id=d.get("applicationVersionId", ""),
            chart_name=d.get("chartName", ""),
            chart_version=d.get("chartVersion", ""),
            chart_app_version=d.get("chartAppVersion", ""),
            version=int(d.get("version", 0) or 0),
            values=values,
            chart_data=base64.b64decode(chart_data) if chart_data else b"",
        )

    def to_dict(self) -> dict:
        out = {
            "name": self.name,
            "repoId": self.repo_id,
            "applicationId": self.application_id,
            "applicationVersionId": self.application_version_id,
            "chartName": self.chart_name,
            "chartVersion": self.chart_version,
            "chartAppVersion": self.chart_app_version,
            "version": self.version,
            "values": base64.b64encode(self.values.encode("utf-8")).decode("ascii") if self.values else "",
        }
        if self.chart_data:
            out["chartData"] = base64.b64encode(self.chart_data).decode("ascii")
        return out


@dataclass
class DeployEntry:
    state: DeployState = DeployState.SUCCESSFUL
    message: str = ""
    time: datetime | None = None

    @property
    def failed(self) -> bool:
        return self.state is DeployState.FAILED

    @classmethod
    def from_dict(cls, d: dict) -> DeployEntry:
        return cls(
            state=DeployState.from_str(d.get("state", "")),
            message=d.get("message", ""),
            time=parse_time(d.get("deployTime")),
        )

    def to_dict(self) -> dict:
        return {"state": self.state.value, "message": self.message, "deployTime": format_time(self.time)}


@dataclass
class ReleaseStatus:
    state: ReleaseState = ReleaseState.NONE
    # last successfully applied spec version
    version: int = 0
    message: str = ""
    # newest first, bounded by settings.history_len
    deploy_status: list[DeployEntry] = field(default_factory=list)
    last_update: datetime | None = None
    last_deployed: datetime | None = None

    def consecutive_failures(self) -> int:
        """Number of failed attempts at the head of the history."""
        count = 0
        for entry in self.deploy_status:
            if not entry.failed:
                break
            count += 1
        return count

    @classmethod
    def from_dict(cls, d: dict | None) -> ReleaseStatus:
        if not d:
            return cls()
        return cls(
            state=ReleaseState.from_str(d.get("state")),
            version=int(d.get("version", 0) or 0),
            message=d.get("message", ""),
            deploy_status=[DeployEntry.from_dict(e) for e in d.get("deployStatus") or []],
            last_update=parse_time(d.get("lastUpdate")),
            last_deployed=parse_time(d.get("lastDeployed")),
        )

    def to_dict(self) -> dict:
        return {
            "state": self.state.value,
            "version": self.version,
            "message": self.message,
            "deployStatus": [e.to_dict() for e in self.deploy_status],
            "lastUpdate": format_time(self.last_update),
            "lastDeployed": format_time(self.last_deployed),
        }


@dataclass
class Release:
    # object name, also the work-queue key
    name: str = ""
    workspace: str = ""
    lifecycle: Lifecycle = Lifecycle.ACTIVE
    resource_version: str = ""
    spec: ReleaseSpec = field(default_factory=ReleaseSpec)
    status: ReleaseStatus = field(default_factory=ReleaseStatus)

    @property
    def cluster(self) -> str:
        return self.spec.cluster

    @property
    def namespace(self) -> str:
        return self.spec.namespace

    @property
    def up_to_date(self) -> bool:
        return self.status.state is ReleaseState.ACTIVE and self.status.version == self.spec.version

    @classmethod
    def from_dict(cls, d: dict) -> Release:
        metadata = d.get("metadata", {}) or {}
        labels = metadata.get("labels", {}) or {}
        annotations = metadata.get("annotations", {}) or {}
        spec = ReleaseSpec.from_dict(d.get("spec"))
        spec.namespace = labels.get(NAMESPACE_LABEL, "")
        spec.cluster = labels.get(CLUSTER_LABEL, "")
        lifecycle = Lifecycle.from_str(annotations.get(LIFECYCLE_ANNOTATION))
        if metadata.get("deletionTimestamp") and lifecycle is Lifecycle.ACTIVE:
            lifecycle = Lifecycle.TERMINATING
        return cls(
            name=metadata.get("name", ""),
            workspace=labels.get(WORKSPACE_LABEL, ""),
            lifecycle=lifecycle,
            resource_version=metadata.get("resourceVersion", ""),
            spec=spec,
            status=ReleaseStatus.from_dict(d.get("status")),
        )

    def to_dict(self) -> dict:
        labels = {NAMESPACE_LABEL: self.spec.namespace}
        if self.spec.cluster:
            labels[CLUSTER_LABEL] = self.spec.cluster
        if self.workspace:
            labels[WORKSPACE_LABEL] = self.workspace
        metadata = {
            "name": self.name,
            "labels": labels,
            "annotations": {LIFECYCLE_ANNOTATION: self.lifecycle.value},
        }
        if self.resource_version:
            metadata["resourceVersion"] = self.resource_version
        return {"metadata": metadata, "spec": self.spec.to_dict(), "status": self.status.to_dict()}
