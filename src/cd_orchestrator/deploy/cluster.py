"""Cluster interface and its Helm implementation."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol

from pydantic import SecretStr

from cd_orchestrator.errors import ReleaseApplyFailed
from cd_orchestrator.image.registry import split_image_reference
from cd_orchestrator.models import ReleaseApplyResult
from cd_orchestrator.utils.commands import run_command

LOGGER = logging.getLogger(__name__)

_WAIT_TIMEOUT_MARKERS: tuple[str, ...] = (
    "timed out waiting for the condition",
    "context deadline exceeded",
)
_RELEASE_NOT_FOUND_MARKER = "release: not found"


class ClusterClient(Protocol):
    """Apply releases to the cluster and report readiness."""

    def release_exists(self, release: str, namespace: str) -> bool: ...

    def apply_release(
        self,
        service: str,
        namespace: str,
        image_reference: str,
        *,
        install: bool,
        force: bool,
        wait_timeout_sec: int,
    ) -> ReleaseApplyResult: ...


class HelmClusterClient:
    """ClusterClient backed by the helm command line tool."""

    def __init__(
        self,
        *,
        repo_root: Path,
        charts: dict[str, str],
        api_server: str | None = None,
        ca_file: Path | None = None,
        token: SecretStr | None = None,
        helm_bin: str = "helm",
        logger: logging.Logger | None = None,
    ) -> None:
        self._repo_root = repo_root
        self._charts = dict(charts)
        self._helm_bin = helm_bin
        self._logger = logger or LOGGER
        self._env: dict[str, str] = {}
        if api_server:
            self._env["HELM_KUBEAPISERVER"] = api_server
        if ca_file is not None:
            self._env["HELM_KUBECAFILE"] = str(ca_file)
        if token is not None:
            self._env["HELM_KUBETOKEN"] = token.get_secret_value()

    def release_exists(self, release: str, namespace: str) -> bool:
        result = run_command(
            [self._helm_bin, "status", release, "--namespace", namespace],
            env=self._env,
            logger=self._logger,
        )
        if result.ok:
            return True
        if _RELEASE_NOT_FOUND_MARKER in f"{result.stdout}\n{result.stderr}".lower():
            return False
        raise ReleaseApplyFailed(release, f"helm status exited {result.returncode}: {result.tail()}")

    def apply_release(
        self,
        service: str,
        namespace: str,
        image_reference: str,
        *,
        install: bool,
        force: bool,
        wait_timeout_sec: int,
    ) -> ReleaseApplyResult:
        chart = self._charts.get(service)
        if not chart:
            raise ReleaseApplyFailed(service, "no chart configured")
        repository, tag = split_image_reference(image_reference)

        args = [
            self._helm_bin,
            "upgrade",
            "--install",
            service,
            str(self._repo_root / chart),
            "--namespace",
            namespace,
            "--create-namespace",
            "--set",
            f"image.repository={repository}",
            "--set",
            f"image.tag={tag}",
            "--wait",
            "--timeout",
            f"{wait_timeout_sec}s",
        ]
        if force and not install:
            args.append("--force")

        action = "install" if install else "upgrade"
        result = run_command(args, cwd=self._repo_root, env=self._env, logger=self._logger)
        if result.ok:
            return ReleaseApplyResult(action=action, ready=True)

        output = f"{result.stdout}\n{result.stderr}".lower()
        if any(marker in output for marker in _WAIT_TIMEOUT_MARKERS):
            return ReleaseApplyResult(action=action, ready=False)
        raise ReleaseApplyFailed(service, f"helm {action} exited {result.returncode}: {result.tail()}")
