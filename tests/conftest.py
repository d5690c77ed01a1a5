"""Pytest fixtures and fakes for Helm Conductor tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from helm_conductor.core.helm_executor import HelmResult
from helm_conductor.core.process import ProcessResult
from helm_conductor.core.store import InMemoryStore
from helm_conductor.errors import ClusterNotFoundError, ExecError, NetworkError, StorageError

SAMPLE_INDEX = """\
apiVersion: v1
generated: "2024-05-01T10:00:00Z"
entries:
  nginx:
    - name: nginx
      version: 1.1.0
      appVersion: 1.25.3
      description: NGINX web server
      icon: https://example.com/nginx.png
      urls:
        - charts/nginx-1.1.0.tgz
      annotations:
        category: web
    - name: nginx
      version: 1.0.0
      appVersion: 1.25.0
      description: NGINX web server
      urls:
        - charts/nginx-1.0.0.tgz
  redis:
    - name: redis
      version: 17.0.0
      appVersion: "7.0"
      description: Redis key-value store
      urls:
        - https://charts.example.com/redis-17.0.0.tgz
"""

REPO_URL = "https://charts.example.com"


class FakeClock:
    """Deterministic clock that only moves when told to."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeLoader:
    """ChartLoader stand-in serving canned documents by URL."""

    def __init__(self, documents: dict[str, bytes] | None = None):
        self.documents = dict(documents or {})
        self.error: Exception | None = None
        self.calls: list[str] = []

    def load_index(self, repo_url, credential=None) -> bytes:
        return self.load(f"{repo_url.rstrip('/')}/index.yaml", credential)

    def load_chart(self, url, credential=None) -> bytes:
        return self.load(url, credential)

    def load(self, url, credential=None) -> bytes:
        self.calls.append(url)
        if self.error is not None:
            raise self.error
        if url not in self.documents:
            raise NetworkError(f"fetch {url} failed: 404")
        return self.documents[url]


class FakeExecutor:
    """Records helm operations instead of running them."""

    def __init__(self, log: list, kubeconfig: str, namespace: str, release_name: str, fail: dict):
        self.log = log
        self.kubeconfig = kubeconfig
        self.namespace = namespace
        self.release_name = release_name
        self.fail = fail

    def _call(self, op: str, *args) -> HelmResult:
        self.log.append((op, self.namespace, self.release_name, self.kubeconfig) + args)
        message = self.fail.get(op)
        if message:
            raise ExecError(message, stderr=message, returncode=1, result=HelmResult(message=message))
        return HelmResult(message=f"{op} ok")

    def install(self, chart_name, chart_data, values=""):
        return self._call("install", chart_name, chart_data, values)

    def upgrade(self, chart_name, chart_data, values=""):
        return self._call("upgrade", chart_name, chart_data, values)

    def uninstall(self):
        return self._call("uninstall")


class FakeExecutorFactory:
    def __init__(self):
        self.calls: list[tuple] = []
        self.fail: dict[str, str] = {}

    def __call__(self, kubeconfig: str, namespace: str, release_name: str) -> FakeExecutor:
        return FakeExecutor(self.calls, kubeconfig, namespace, release_name, self.fail)

    def ops(self) -> list[str]:
        return [c[0] for c in self.calls]


class FakeRunner:
    """ProcessRunner stand-in; snapshots the workspace when invoked."""

    def __init__(self, result: ProcessResult | None = None):
        self.result = result or ProcessResult(stdout="ok")
        self.calls: list[list[str]] = []
        self.cwd_files: list[set[str]] = []

    def execute(self, args, cwd=None, env=None) -> ProcessResult:
        self.calls.append(list(args))
        if cwd is not None:
            root = Path(cwd)
            self.cwd_files.append({str(p.relative_to(root)) for p in root.rglob("*")})
        return self.result


class FakeStorage:
    def __init__(self, objects: dict[str, bytes] | None = None):
        self.objects = dict(objects or {})
        self.reads: list[str] = []

    def read(self, path: str) -> bytes:
        self.reads.append(path)
        if path not in self.objects:
            raise StorageError(f"read {path} failed: NoSuchKey")
        return self.objects[path]


class FakeClusters:
    def __init__(self, kubeconfigs: dict[str, str] | None = None):
        self.kubeconfigs = dict(kubeconfigs or {})

    def get_cluster_kubeconfig(self, cluster_name: str) -> str:
        if cluster_name not in self.kubeconfigs:
            raise ClusterNotFoundError(f"cluster {cluster_name} not found")
        return self.kubeconfigs[cluster_name]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def loader() -> FakeLoader:
    return FakeLoader({f"{REPO_URL}/index.yaml": SAMPLE_INDEX.encode("utf-8")})


@pytest.fixture
def executors() -> FakeExecutorFactory:
    return FakeExecutorFactory()
