"""Chart repository models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from helm_conductor.models import SyncState, format_time, parse_time

WORKSPACE_LABEL = "kubesphere.io/workspace"
BUILTIN_LABEL = "application.kubesphere.io/repo-builtin"
SYNC_REQUEST_ANNOTATION = "application.kubesphere.io/sync-requested-at"


@dataclass
class Credential:
    username: str = ""
    password: str = ""
    # PEM encoded contents, not file paths
    cert_data: str = ""
    key_data: str = ""
    ca_data: str = ""
    insecure_skip_tls_verify: bool = False

    @property
    def has_basic_auth(self) -> bool:
        return bool(self.username)

    @classmethod
    def from_dict(cls, d: dict | None) -> Credential:
        if not d:
            return cls()
        return cls(
            username=d.get("username", ""),
            password=d.get("password", ""),
            cert_data=d.get("certFile", ""),
            key_data=d.get("keyFile", ""),
            ca_data=d.get("caFile", ""),
            insecure_skip_tls_verify=bool(d.get("insecureSkipTLSVerify", False)),
        )

    def to_dict(self) -> dict:
        return {
            "username": self.username,
            "password": self.password,
            "certFile": self.cert_data,
            "keyFile": self.key_data,
            "caFile": self.ca_data,
            "insecureSkipTLSVerify": self.insecure_skip_tls_verify,
        }


@dataclass
class SyncEntry:
    state: SyncState = SyncState.SUCCESSFUL
    message: str = ""
    sync_time: datetime | None = None

    @classmethod
    def from_dict(cls, d: dict) -> SyncEntry:
        return cls(
            state=SyncState.from_str(d.get("state", "")),
            message=d.get("message", ""),
            sync_time=parse_time(d.get("syncTime")),
        )

    def to_dict(self) -> dict:
        return {"state": self.state.value, "message": self.message, "syncTime": format_time(self.sync_time)}


@dataclass
class RepoStatus:
    # encoded snapshot, see helm_conductor.utils.encoding
    data: str = ""
    sync_state: list[SyncEntry] = field(default_factory=list)
    last_update_time: datetime | None = None
    total_applications: int = 0
    total_versions: int = 0

    @classmethod
    def from_dict(cls, d: dict | None) -> RepoStatus:
        if not d:
            return cls()
        return cls(
            data=d.get("data", ""),
            sync_state=[SyncEntry.from_dict(e) for e in d.get("syncState") or []],
            last_update_time=parse_time(d.get("lastUpdateTime")),
            total_applications=int(d.get("totalApplications", 0) or 0),
            total_versions=int(d.get("totalVersions", 0) or 0),
        )

    def to_dict(self) -> dict:
        return {
            "data": self.data,
            "syncState": [e.to_dict() for e in self.sync_state],
            "lastUpdateTime": format_time(self.last_update_time),
            "totalApplications": self.total_applications,
            "totalVersions": self.total_versions,
        }


@dataclass
class Repository:
    name: str = ""
    url: str = ""
    credential: Credential = field(default_factory=Credential)
    # seconds; 0 means only on-demand syncs
    sync_period: int = 0
    sync_requested_at: datetime | None = None
    workspace: str = ""
    builtin: bool = False
    resource_version: str = ""
    status: RepoStatus = field(default_factory=RepoStatus)

    @property
    def sync_requested(self) -> bool:
        return self.sync_requested_at is not None

    def base_url(self) -> str:
        return self.url.rstrip("/")

    def index_url(self) -> str:
        return f"{self.base_url()}/index.yaml"

    @classmethod
    def from_dict(cls, d: dict) -> Repository:
        """Build from a custom resource dict as returned by the Kubernetes API."""
        metadata = d.get("metadata", {}) or {}
        labels = metadata.get("labels", {}) or {}
        annotations = metadata.get("annotations", {}) or {}
        spec = d.get("spec", {}) or {}
        return cls(
            name=metadata.get("name", ""),
            url=spec.get("url", ""),
            credential=Credential.from_dict(spec.get("credential")),
            sync_period=int(spec.get("syncPeriod", 0) or 0),
            sync_requested_at=parse_time(annotations.get(SYNC_REQUEST_ANNOTATION)),
            workspace=labels.get(WORKSPACE_LABEL, ""),
            builtin=labels.get(BUILTIN_LABEL, "") == "true",
            resource_version=metadata.get("resourceVersion", ""),
            status=RepoStatus.from_dict(d.get("status")),
        )

    def to_dict(self) -> dict:
        labels = {}
        if self.workspace:
            labels[WORKSPACE_LABEL] = self.workspace
        if self.builtin:
            labels[BUILTIN_LABEL] = "true"
        annotations = {}
        if self.sync_requested_at is not None:
            annotations[SYNC_REQUEST_ANNOTATION] = format_time(self.sync_requested_at)
        metadata = {"name": self.name, "labels": labels, "annotations": annotations}
        if self.resource_version:
            metadata["resourceVersion"] = self.resource_version
        return {
            "metadata": metadata,
            "spec": {
                "url": self.url,
                "credential": self.credential.to_dict(),
                "syncPeriod": self.sync_period,
            },
            "status": self.status.to_dict(),
        }
