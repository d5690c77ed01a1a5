"""Tests for the hcon command line."""

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

import helm_conductor
from conftest import REPO_URL, SAMPLE_INDEX, FakeClusters, FakeLoader
from helm_conductor.cli import options
from helm_conductor.cli.app import app
from helm_conductor.cli.commands import release_cmd, repo_cmd
from helm_conductor.core.store import InMemoryStore
from helm_conductor.models import ReleaseState
from helm_conductor.models.release import Release, ReleaseSpec
from helm_conductor.utils.encoding import decode_snapshot

runner = CliRunner()


@pytest.fixture
def fake_loader(monkeypatch):
    loader = FakeLoader({f"{REPO_URL}/index.yaml": SAMPLE_INDEX.encode("utf-8")})
    monkeypatch.setattr(repo_cmd, "ChartLoader", lambda: loader)
    return loader


class TestRepoCommands:
    def test_sync_writes_snapshot(self, tmp_path, fake_loader):
        snapshot = tmp_path / "bitnami.snapshot"
        result = runner.invoke(app, ["repo", "sync", REPO_URL, "--snapshot", str(snapshot), "-o", "json"])

        assert result.exit_code == 0, result.output
        decoded = decode_snapshot(snapshot.read_text().strip())
        assert sorted(decoded.applications) == ["nginx", "redis"]

        again = runner.invoke(app, ["repo", "sync", REPO_URL, "--snapshot", str(snapshot)])
        assert again.exit_code == 0, again.output
        assert "Sync History" in again.output
        assert decode_snapshot(snapshot.read_text().strip()) == decoded

    def test_sync_failure_exits_non_zero(self, tmp_path, fake_loader):
        snapshot = tmp_path / "broken.snapshot"
        fake_loader.documents.clear()
        result = runner.invoke(app, ["repo", "sync", REPO_URL, "--snapshot", str(snapshot)])
        assert result.exit_code == 1
        assert not snapshot.exists()

    def test_apps_lists_snapshot(self, tmp_path, fake_loader):
        snapshot = tmp_path / "bitnami.snapshot"
        runner.invoke(app, ["repo", "sync", REPO_URL, "--snapshot", str(snapshot)])

        result = runner.invoke(app, ["repo", "apps", str(snapshot), "-o", "json"])

        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        nginx = next(a for a in data["applications"] if a["name"] == "nginx")
        assert nginx["latest_version"] == "1.1.0"
        assert len(nginx["versions"]) == 2

    def test_apps_missing_file(self, tmp_path):
        result = runner.invoke(app, ["repo", "apps", str(tmp_path / "missing")])
        assert result.exit_code == 1


class TestReleaseCommands:
    @pytest.fixture(autouse=True)
    def _mock_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("PYTHONPATH", str(Path(helm_conductor.__file__).resolve().parents[1]))
        monkeypatch.delenv("HELM_MOCK_FAIL", raising=False)
        monkeypatch.delenv("HELM_MOCK_NOT_FOUND", raising=False)
        monkeypatch.setattr("helm_conductor.config.settings.settings.workspace_base", tmp_path / "ws")

    def test_install_with_mock(self, tmp_path):
        chart = tmp_path / "nginx-1.1.0.tgz"
        chart.write_bytes(b"archive")
        result = runner.invoke(app, ["release", "install", "web", str(chart), "-n", "demo", "--mock"])
        assert result.exit_code == 0, result.output
        assert "STATUS: deployed" in result.stdout

    def test_install_failure(self, tmp_path, monkeypatch):
        monkeypatch.setenv("HELM_MOCK_FAIL", "install")
        chart = tmp_path / "nginx.tgz"
        chart.write_bytes(b"archive")
        result = runner.invoke(app, ["release", "install", "web", str(chart), "-n", "demo", "--mock"])
        assert result.exit_code == 1

    def test_missing_chart(self, tmp_path):
        result = runner.invoke(app, ["release", "upgrade", "web", str(tmp_path / "nope.tgz"), "-n", "demo", "--mock"])
        assert result.exit_code == 1

    def test_uninstall_not_found_succeeds(self, monkeypatch):
        monkeypatch.setenv("HELM_MOCK_NOT_FOUND", "1")
        result = runner.invoke(app, ["release", "uninstall", "web", "-n", "demo", "--mock"])
        assert result.exit_code == 0, result.output

    def test_status_json(self):
        result = runner.invoke(app, ["release", "status", "web", "-n", "demo", "--mock", "-o", "json"])
        assert result.exit_code == 0, result.output
        assert json.loads(result.stdout)["info"]["status"] == "deployed"

    def test_reconcile_release(self, monkeypatch):
        store = InMemoryStore()
        spec = ReleaseSpec(name="web", namespace="demo", chart_name="nginx", chart_data=b"archive", version=1)
        store.create_release(Release(name="web-rls", spec=spec))
        monkeypatch.setattr(release_cmd, "K8sClient", lambda context=None: None)
        monkeypatch.setattr(release_cmd, "KubeStore", lambda k8s: store)
        monkeypatch.setattr(release_cmd, "ClusterClients", lambda k8s: FakeClusters())

        for _ in range(2):
            result = runner.invoke(app, ["release", "reconcile", "web-rls", "--mock"])
            assert result.exit_code == 0, result.output

        assert store.get_release("web-rls").status.state is ReleaseState.ACTIVE


class TestOptions:
    def test_parse_pairs(self):
        assert options.parse_pairs(["a=1", "b = 2"]) == {"a": "1", "b": "2"}
        assert options.parse_pairs(None) == {}

    def test_parse_pairs_rejects_garbage(self):
        import typer

        with pytest.raises(typer.BadParameter):
            options.parse_pairs(["novalue"])
