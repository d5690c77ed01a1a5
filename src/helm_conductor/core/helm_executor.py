"""Run one helm operation inside an ephemeral workspace."""

from __future__ import annotations

import json
import logging
import os
import shlex
import shutil
import stat
import sys
import time
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

from helm_conductor.config.settings import settings
from helm_conductor.core import post_render
from helm_conductor.core.helm_mock import MOCK_ENV, UNINSTALL_NOT_FOUND_FORMAT
from helm_conductor.core.process import ProcessResult, ProcessRunner
from helm_conductor.errors import ExecError
from helm_conductor.utils.idutils import get_uuid36

logger = logging.getLogger(__name__)

KUBECONFIG_FILE = "kube.config"
VALUES_FILE = "values.yaml"
POST_RENDER_EXEC_FILE = "helm-post-render.sh"


@dataclass
class HelmResult:
    """Display-only outcome of a helm invocation; errors are raised separately."""

    message: str = ""


class HelmExecutor:
    """Wraps the helm binary for a single release.

    Every public operation creates a private workspace directory, stages the
    chart archive, values and kubeconfig there, runs helm, and removes the
    workspace again whatever the outcome. The random workspace suffix keeps
    retried or concurrent invocations for the same release apart.
    """

    def __init__(
        self,
        kubeconfig: str,
        namespace: str,
        release_name: str,
        *,
        mock: bool = False,
        dry_run: bool = False,
        labels: dict[str, str] | None = None,
        annotations: dict[str, str] | None = None,
        runner: ProcessRunner | None = None,
        base: Path | None = None,
        helm_path: str | None = None,
    ):
        self.kubeconfig = kubeconfig
        self.namespace = namespace
        self.release_name = release_name
        self.chart_name = ""
        self.mock = mock
        self.dry_run = dry_run
        self.labels = labels or {}
        self.annotations = annotations or {}
        self.runner = runner or ProcessRunner(timeout=settings.helm_timeout)
        self.base = Path(base) if base is not None else settings.workspace_base
        self.helm_path = helm_path or settings.helm_path
        self.workspace_suffix = get_uuid36()

    # -- workspace ---------------------------------------------------------

    @property
    def workspace(self) -> Path:
        return self.base / f"{self.namespace}_{self.release_name}_{self.workspace_suffix}"

    @property
    def chart_dir(self) -> Path:
        return self.workspace / "chart"

    @property
    def chart_path(self) -> Path:
        return self.chart_dir / f"{self.chart_name}.tgz"

    @property
    def kubeconfig_path(self) -> Path | None:
        if not self.kubeconfig:
            return None
        return self.workspace / KUBECONFIG_FILE

    @contextmanager
    def _staged_workspace(self) -> Iterator[Path]:
        self.chart_dir.mkdir(parents=True, exist_ok=True)
        try:
            if self.kubeconfig_path is not None:
                self.kubeconfig_path.write_text(self.kubeconfig, encoding="utf-8")
                self.kubeconfig_path.chmod(0o600)
            yield self.workspace
        finally:
            self._cleanup()

    def _cleanup(self) -> None:
        try:
            shutil.rmtree(self.workspace)
        except FileNotFoundError:
            pass
        except OSError:
            logger.error("remove dir %s failed", self.workspace, exc_info=True)

    def _write_chart(self, chart_name: str, chart_data: bytes, values: str) -> None:
        self.chart_name = chart_name
        self.chart_path.write_bytes(chart_data)
        (self.workspace / VALUES_FILE).write_text(values or "", encoding="utf-8")

    def _setup_post_render(self) -> Path | None:
        if not self.labels and not self.annotations:
            return None
        config = self.workspace / post_render.CONFIG_FILE
        post_render.write_config(config, self.labels, self.annotations)
        script = self.workspace / POST_RENDER_EXEC_FILE
        script.write_text(
            "#!/bin/sh\n"
            f"exec {shlex.quote(sys.executable)} -m helm_conductor.core.post_render {shlex.quote(str(config))}\n",
            encoding="utf-8",
        )
        script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return script

    # -- command construction ----------------------------------------------

    def _command(self, *args: str) -> list[str]:
        if self.mock:
            cmd = [sys.executable, "-m", "helm_conductor.core.helm_mock", "--", self.helm_path]
        else:
            cmd = [self.helm_path]
        cmd.extend(args)
        return cmd

    def _env(self) -> dict[str, str] | None:
        if self.mock:
            return {**os.environ, MOCK_ENV: "1"}
        return None

    def _cluster_flags(self) -> list[str]:
        flags = ["--namespace", self.namespace]
        if self.kubeconfig_path is not None:
            flags += ["--kubeconfig", str(self.kubeconfig_path)]
        return flags

    def _run(self, cmd: list[str]) -> ProcessResult:
        start = time.monotonic()
        try:
            return self.runner.execute(cmd, cwd=str(self.workspace), env=self._env())
        finally:
            logger.debug(
                "run command end, namespace: %s, name: %s, elapsed: %.2fs",
                self.namespace, self.release_name, time.monotonic() - start,
            )

    # -- operations --------------------------------------------------------

    def install(self, chart_name: str, chart_data: bytes, values: str = "") -> HelmResult:
        return self._install(chart_name, chart_data, values, upgrade=False)

    def upgrade(self, chart_name: str, chart_data: bytes, values: str = "") -> HelmResult:
        return self._install(chart_name, chart_data, values, upgrade=True)

    def _install(self, chart_name: str, chart_data: bytes, values: str, upgrade: bool) -> HelmResult:
        with self._staged_workspace():
            post_renderer = self._setup_post_render()
            self._write_chart(chart_name, chart_data, values)
            logger.debug("namespace: %s, name: %s, chart values: %s", self.namespace, self.release_name, values)

            args = ["upgrade" if upgrade else "install", self.release_name, str(self.chart_path)]
            args += self._cluster_flags()
            if values:
                args += ["--values", str(self.workspace / VALUES_FILE)]
            if self.dry_run:
                args.append("--dry-run")
            if post_renderer is not None:
                args += ["--post-renderer", str(post_renderer)]
            if logger.isEnabledFor(logging.DEBUG):
                args.append("--debug")

            cmd = self._command(*args)
            res = self._run(cmd)

        if not res.ok:
            logger.error(
                "namespace: %s, name: %s, run command: %s failed, stderr: %s",
                self.namespace, self.release_name, " ".join(cmd), res.stderr.strip(),
            )
            message = res.stderr.strip()
            raise ExecError(message, stderr=res.stderr, returncode=res.returncode, result=HelmResult(message=message))
        logger.info("namespace: %s, name: %s, helm %s success", self.namespace, self.release_name, args[0])
        return HelmResult(message=res.stdout.strip())

    def uninstall(self) -> HelmResult:
        """Uninstall the release; a release that is already gone counts as success."""
        with self._staged_workspace():
            args = ["uninstall", self.release_name] + self._cluster_flags()
            if self.dry_run:
                args.append("--dry-run")
            res = self._run(self._command(*args))

        if res.ok:
            logger.info("namespace: %s, name: %s, helm uninstall success", self.namespace, self.release_name)
            return HelmResult(message=res.stdout.strip())

        message = res.stderr.strip()
        if message == UNINSTALL_NOT_FOUND_FORMAT.format(self.release_name):
            logger.info("namespace: %s, name: %s, release already removed", self.namespace, self.release_name)
            return HelmResult()
        logger.error("namespace: %s, name: %s, helm uninstall failed, stderr: %s", self.namespace, self.release_name, message)
        raise ExecError(message, stderr=res.stderr, returncode=res.returncode, result=HelmResult(message=message))

    def status(self) -> dict:
        """Return the parsed output of ``helm status --output json``."""
        with self._staged_workspace():
            args = ["status", self.release_name] + self._cluster_flags() + ["--output", "json"]
            res = self._run(self._command(*args))

        if not res.ok:
            message = res.stderr.strip()
            logger.error("namespace: %s, name: %s, helm status failed, stderr: %s", self.namespace, self.release_name, message)
            raise ExecError(message, stderr=res.stderr, returncode=res.returncode, result=HelmResult(message=message))
        try:
            return json.loads(res.stdout)
        except json.JSONDecodeError as e:
            raise ExecError(f"cannot decode helm status output: {e}", stderr=res.stdout) from e

    def manifest(self) -> str:
        """Return the rendered manifest of the deployed release."""
        with self._staged_workspace():
            args = ["get", "manifest", self.release_name] + self._cluster_flags()
            if logger.isEnabledFor(logging.DEBUG):
                args.append("--debug")
            res = self._run(self._command(*args))

        if not res.ok:
            message = res.stderr.strip()
            logger.error("namespace: %s, name: %s, helm get manifest failed, stderr: %s", self.namespace, self.release_name, message)
            raise ExecError(message, stderr=res.stderr, returncode=res.returncode, result=HelmResult(message=message))
        return res.stdout
