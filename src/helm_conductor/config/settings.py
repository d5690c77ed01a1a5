"""Application configuration and defaults."""

from __future__ import annotations

import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "")
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _default_workspace_base() -> Path:
    """Return the directory where per-invocation helm workspaces are created."""
    base = os.environ.get("HELM_CONDUCTOR_WORKSPACE", "")
    if base:
        return Path(base)
    return Path("/tmp/helm-operator")


def _default_helm_path() -> str:
    explicit = os.environ.get("HELM_BIN", "")
    if explicit:
        return explicit
    return shutil.which("helm") or "/usr/local/bin/helm"


@dataclass
class Settings:
    workspace_base: Path = field(default_factory=_default_workspace_base)
    helm_path: str = field(default_factory=_default_helm_path)
    # seconds; 0 disables the timeout on helm invocations
    helm_timeout: int = field(default_factory=lambda: _env_int("HELM_CONDUCTOR_HELM_TIMEOUT", 600))
    request_timeout: int = field(default_factory=lambda: _env_int("HELM_CONDUCTOR_REQUEST_TIMEOUT", 30))
    host_cluster_name: str = field(default_factory=lambda: os.environ.get("HELM_CONDUCTOR_HOST_CLUSTER", "host"))
    default_s3_region: str = field(default_factory=lambda: os.environ.get("HELM_CONDUCTOR_S3_REGION", "us-east-1"))

    history_len: int = 10
    message_len: int = 512
    min_sync_period: int = 180
    sync_backoff_step: int = 60
    max_sync_backoff: int = 600
    max_deploy_backoff: int = 180
    active_recheck_interval: int = 600
    app_store_repo_id: str = "repo-helm"
    uncategorized_id: str = "ctg-uncategorized"

    # custom resource coordinates used by the kubernetes-backed store
    api_group: str = "application.kubesphere.io"
    api_version: str = "v1alpha1"
    cluster_api_group: str = "cluster.kubesphere.io"
    cluster_api_version: str = "v1alpha1"


# Global singleton
settings = Settings()
